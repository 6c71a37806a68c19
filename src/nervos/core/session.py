"""Device session for Nervos.

The Session is the context shared by the sync worker, the debounced writer
and any front end: the settings, the derived credentials, the in-memory item
map and the last error. One re-entrant lock guards all of it.

CRITICAL: This module must have NO UI dependencies.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
from typing import Callable, Dict, Iterable, List, Optional

from .clock import RevisionClock, default_clock
from .crypto import (
    PBKDF2_ITERATIONS,
    Credentials,
    derive_credentials,
    make_password_check,
    verify_password_check,
)
from .database import Database
from .models import Item, Settings
from .validation import AuthenticationError, ValidationError
from .writer import DebouncedWriter

logger = logging.getLogger(__name__)

__all__ = ["Session"]


class Session:
    """Unlocked state of one device.

    Attributes:
        db: Local store
        settings: Settings singleton (None until start())
        credentials: Derived secrets (None while locked)
        error: Last user-visible error message, if any
    """

    def __init__(
        self,
        db: Database,
        clock: Optional[RevisionClock] = None,
        kdf_iterations: int = PBKDF2_ITERATIONS,
        save_delay: float = 1.0,
        on_error: Optional[Callable[[str], None]] = None,
    ) -> None:
        """Initialize a locked session.

        Args:
            db: Local store
            clock: Revision clock (the process-wide one if None)
            kdf_iterations: PBKDF2 iteration count
            save_delay: Debounce delay of the writer in seconds
            on_error: Called with the message of every reported error
        """
        self.db = db
        self.clock = clock or default_clock
        self.kdf_iterations = kdf_iterations
        self.save_delay = save_delay
        self.on_error = on_error
        self.lock = threading.RLock()
        self.settings: Optional[Settings] = None
        self.credentials: Optional[Credentials] = None
        self.items: Dict[int, Item] = {}
        self.error: Optional[str] = None
        self._writer: Optional[DebouncedWriter] = None

    # ===== Lifecycle =====

    def start(self) -> Settings:
        """Load (or create) the settings row."""
        with self.lock:
            self.settings = self.db.load_settings()
            return self.settings

    @property
    def needs_login(self) -> bool:
        """True until a username has been stored on this device."""
        with self.lock:
            return self.settings is None or not self.settings.username

    @property
    def is_unlocked(self) -> bool:
        with self.lock:
            return self.credentials is not None

    @property
    def checkpoint(self) -> int:
        with self.lock:
            return self.settings.last_sync if self.settings else 0

    def login(self, username: str, password: str) -> None:
        """Record the account name on a fresh device, then unlock."""
        if not username:
            raise ValidationError("username", "cannot be empty")
        with self.lock:
            if self.settings is None:
                self.start()
            if self.settings.username and self.settings.username != username:
                raise ValidationError("username", "this device is bound to another account")
            self.settings.username = username
        self.unlock(password)

    def unlock(self, password: str) -> None:
        """Derive the secrets, check the password and load items.

        The first unlock stores the password verifier. Later unlocks with a
        different password raise AuthenticationError and change nothing.
        """
        with self.lock:
            if self.settings is None:
                self.start()
            settings = self.settings
            if not settings.username:
                raise ValidationError("username", "login required before unlock")

            credentials = derive_credentials(settings.username, password, self.kdf_iterations)

            if not settings.password_check:
                settings.password_check = make_password_check(
                    credentials.data_secret, credentials.user_hash
                )
                self.db.save_settings(settings)
                logger.info("Stored password verifier")
            elif not verify_password_check(
                credentials.data_secret, credentials.user_hash, settings.password_check
            ):
                logger.warning("Unlock rejected: wrong password")
                raise AuthenticationError("wrong password")

            items = {}
            for item in self.db.load_items(credentials.data_secret):
                if item.data == "":
                    continue
                items[item.id] = item

            self.credentials = credentials
            self.items = items
            self.error = None
            if self._writer is None:
                data_secret = credentials.data_secret
                self._writer = DebouncedWriter(
                    lambda item: self._persist_edit(data_secret, item),
                    delay=self.save_delay,
                    on_error=self.report_error,
                )
                self._writer.start()
        logger.info(f"Unlocked {credentials.user_hash} with {len(items)} items")

    def lock_session(self) -> None:
        """Flush pending edits and forget the secrets and items.

        New edits are refused as soon as the credentials are cleared. Edits
        that got past that check still reach the detached writer, which
        persists them while it stops.
        """
        with self.lock:
            writer = self._writer
            self._writer = None
            self.credentials = None
        if writer is not None:
            writer.stop()
        with self.lock:
            if self.credentials is None:
                self.items = {}
        logger.info("Session locked")

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Persist pending edits now."""
        writer = self._writer
        return writer.flush(timeout) if writer is not None else True

    def report_error(self, message: str) -> None:
        """Surface a background failure to the user."""
        with self.lock:
            self.error = message
        logger.error(message)
        if self.on_error:
            self.on_error(message)

    # ===== Items =====

    def _require_credentials(self) -> Credentials:
        if self.credentials is None:
            raise AuthenticationError("session is locked")
        return self.credentials

    def new_item(self) -> Item:
        """Create an empty item and persist its placeholder."""
        with self.lock:
            credentials = self._require_credentials()
            item_id = self.clock.next_id()
            item = Item(id=item_id, rev=item_id, data="")
            self.db.save_item(credentials.data_secret, item)
            self.items[item.id] = item
            return item

    def get_item(self, item_id: int) -> Optional[Item]:
        with self.lock:
            return self.items.get(item_id)

    def edit_item(self, item_id: int, text: str) -> Item:
        """Record a new revision of an item and hand it to the writer."""
        with self.lock:
            self._require_credentials()
            current = self.items.get(item_id)
            if current is None:
                raise ValidationError("item_id", f"unknown item {item_id}")
            if current.data == text:
                return current
            item = dataclasses.replace(current, rev=self.clock.next_id(), data=text)
            self.items[item_id] = item
            writer = self._writer
        writer.submit(item)
        return item

    def _persist_edit(self, data_secret: bytes, item: Item) -> None:
        with self.lock:
            current = self.items.get(item.id)
            # A newer revision (e.g. adopted from the server) supersedes this edit
            if current is not None and current.rev > item.rev:
                return
            self.db.save_item(data_secret, item)

    def search(self, query: str = "") -> List[Item]:
        """Find items by exact ID or case-insensitive substring, newest first."""
        query = query.lower()
        with self.lock:
            results = [
                item for item in self.items.values()
                if not query or str(item.id) == query or query in item.data.lower()
            ]
        results.sort(key=lambda i: i.rev, reverse=True)
        return results

    # ===== Sync =====

    def changes_since_checkpoint(self) -> List[Item]:
        """Items changed locally since the last successful sync."""
        with self.lock:
            last_sync = self.checkpoint
            return sorted(
                (i for i in self.items.values() if i.rev > last_sync),
                key=lambda i: i.rev,
            )

    def merge_remote(self, remote_items: Iterable[Item]) -> int:
        """Merge items received from the server, last writer wins.

        Unknown items are inserted. Known items are replaced only when the
        remote revision is strictly greater; on a tie the local item stays.

        Returns:
            Number of remote items adopted
        """
        adopted = 0
        with self.lock:
            credentials = self._require_credentials()
            for remote in remote_items:
                local = self.items.get(remote.id)
                if local is not None and not remote.is_newer_than(local):
                    continue
                self.db.save_item(credentials.data_secret, remote)
                self.items[remote.id] = remote
                adopted += 1
        return adopted

    def advance_checkpoint(self, checkpoint: int) -> None:
        """Record the server checkpoint after a successful merge."""
        with self.lock:
            self.settings.last_sync = checkpoint
            self.db.save_settings(self.settings)
