"""Database operations for Nervos.

This module provides the on-device store using SQLite: the settings
singleton and the item table. Item payloads are encrypted with the data
secret before every write and decrypted after every read.

A single connection is opened and every access is serialized on it, so the
sync worker and the debounced writer can share one Database.

CRITICAL: This module must have NO UI dependencies.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from pathlib import Path
from typing import List, Union

from .crypto import decrypt_text, encrypt_text
from .models import SETTINGS_VERSION, Item, Settings

logger = logging.getLogger(__name__)

__all__ = ["Database"]

SCHEMA = (
    "CREATE TABLE IF NOT EXISTS settings ("
    "version INTEGER, username TEXT, password_check BLOB, last_sync INTEGER)",
    "CREATE TABLE IF NOT EXISTS items ("
    "id INTEGER PRIMARY KEY, rev INTEGER, data BLOB)",
)


class Database:
    """SQLite-backed store for settings and encrypted items."""

    def __init__(self, db_path: Union[Path, str]) -> None:
        """Initialize database connection and schema.

        Args:
            db_path: Path to the SQLite database file, or ':memory:' for in-memory
        """
        path_str = str(db_path)
        if path_str != ":memory:":
            Path(path_str).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self.conn = sqlite3.connect(path_str, check_same_thread=False)
        with self._lock, self.conn:
            for statement in SCHEMA:
                self.conn.execute(statement)
        logger.info(f"Opened database at {path_str}")

    def load_settings(self) -> Settings:
        """Load the settings row, creating the default row if none exists."""
        with self._lock, self.conn:
            row = self.conn.execute(
                "SELECT version, username, password_check, last_sync FROM settings LIMIT 1"
            ).fetchone()
            if row is not None:
                version, username, password_check, last_sync = row
                return Settings(
                    version=version,
                    username=username or "",
                    password_check=bytes(password_check or b""),
                    last_sync=last_sync or 0,
                )

            settings = Settings()
            self.conn.execute(
                "INSERT INTO settings (version, username, password_check, last_sync) "
                "VALUES (?, ?, ?, ?)",
                (SETTINGS_VERSION, settings.username, settings.password_check, settings.last_sync),
            )
            logger.info("Created default settings")
            return settings

    def save_settings(self, settings: Settings) -> None:
        """Persist the settings singleton."""
        with self._lock, self.conn:
            self.conn.execute(
                "UPDATE settings SET version = ?, username = ?, password_check = ?, last_sync = ?",
                (settings.version, settings.username, settings.password_check, settings.last_sync),
            )

    def load_items(self, data_secret: bytes) -> List[Item]:
        """Load every stored item with its payload decrypted.

        Empty payloads are returned as-is; callers treat them as
        placeholders of notes never written to.
        """
        with self._lock:
            rows = self.conn.execute("SELECT id, rev, data FROM items").fetchall()
        return [
            Item(id=item_id, rev=rev, data=decrypt_text(data_secret, bytes(data or b"")))
            for item_id, rev, data in rows
        ]

    def save_item(self, data_secret: bytes, item: Item) -> None:
        """Insert an item, or replace the revision and payload of an existing one.

        Revisions are not compared here; callers pass the state they intend
        as authoritative.
        """
        ciphertext = encrypt_text(data_secret, item.data)
        with self._lock, self.conn:
            self.conn.execute(
                "INSERT INTO items (id, rev, data) VALUES (?, ?, ?) "
                "ON CONFLICT (id) DO UPDATE SET rev = excluded.rev, data = excluded.data",
                (item.id, item.rev, ciphertext),
            )

    def get_item_count(self) -> int:
        """Count stored items, placeholders included."""
        with self._lock:
            return self.conn.execute("SELECT COUNT(*) FROM items").fetchone()[0]

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self.conn.close()
        logger.info("Closed database connection")
