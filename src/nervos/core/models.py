"""Data models for Nervos.

This module defines the dataclasses shared by the device and the server:
Item, Settings and the server-side Metadata record.

Item IDs and revisions both come from the revision clock (see clock.py),
so an item's ID is also the revision it was created at.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List

__all__ = ["Item", "Settings", "Metadata", "SETTINGS_VERSION"]

SETTINGS_VERSION = 1


@dataclass(frozen=True)
class Item:
    """A user record (a note).

    Attributes:
        id: 64-bit identifier minted once at creation, never reused
        rev: 64-bit revision, strictly greater on every mutation
        data: Opaque text payload
    """

    id: int
    rev: int
    data: str = ""

    def is_newer_than(self, other: "Item") -> bool:
        """Check whether this item supersedes another state of the same item."""
        return self.id == other.id and self.rev > other.rev


@dataclass
class Settings:
    """Per-device account state, stored as a singleton row.

    Attributes:
        version: Schema version of the settings row
        username: Account name ("" until the first login)
        password_check: Verifier proving knowledge of the data secret
        last_sync: Checkpoint revision received from the server
    """

    version: int = SETTINGS_VERSION
    username: str = ""
    password_check: bytes = b""
    last_sync: int = 0


@dataclass
class Metadata:
    """Per-user record kept by the sync server.

    Attributes:
        user_hash: Hex SHA-256 of the username ("" when the user is unknown)
        pass_hash: bcrypt hash of the authentication secret
        chunks: Ascending chunk boundary revisions, one per chunk
    """

    user_hash: str = ""
    pass_hash: bytes = b""
    chunks: List[int] = field(default_factory=lambda: [0])

    @property
    def exists(self) -> bool:
        return bool(self.user_hash)

    @property
    def last_chunk_index(self) -> int:
        return len(self.chunks) - 1
