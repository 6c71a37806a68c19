"""Revision clock for Nervos.

Produces the 64-bit values used both as item IDs and as revision stamps:
a millisecond timestamp relative to EPOCH_MS shifted left 12 bits, with a
process-wide counter (modulo 4096) in the low bits.

Also provides functions to convert a revision back to the time it was
minted, for display purposes.
"""

from __future__ import annotations

import threading
import time
from datetime import datetime, timezone
from typing import Callable, Optional

__all__ = [
    "EPOCH_MS",
    "SEQUENCE_BITS",
    "RevisionClock",
    "default_clock",
    "next_id",
    "id_time",
    "format_revision",
]

# 2010-01-01T00:00:00Z
EPOCH_MS = 1262304000000
SEQUENCE_BITS = 12
SEQUENCE_MODULO = 1 << SEQUENCE_BITS


class RevisionClock:
    """Mints strictly increasing revision values within one process.

    Uniqueness across processes or machines is not guaranteed: two devices
    minting in the same millisecond with the same counter collide.
    """

    def __init__(self, time_fn: Optional[Callable[[], float]] = None) -> None:
        self._time_fn = time_fn or time.time
        self._lock = threading.Lock()
        self._sequence = 0
        self._last = 0

    def next_id(self) -> int:
        """Mint the next revision value."""
        with self._lock:
            sequence = self._sequence
            self._sequence += 1
            millis = int(self._time_fn() * 1000) - EPOCH_MS
            value = (millis << SEQUENCE_BITS) | (sequence % SEQUENCE_MODULO)
            # The counter wraps within a busy millisecond
            if value <= self._last:
                value = self._last + 1
            self._last = value
            return value


# Shared by every session in the process
default_clock = RevisionClock()


def next_id() -> int:
    """Mint a revision from the process-wide clock."""
    return default_clock.next_id()


def id_time(value: int) -> datetime:
    """Recover the UTC time a revision was minted at (millisecond precision)."""
    millis = (value >> SEQUENCE_BITS) + EPOCH_MS
    return datetime.fromtimestamp(millis / 1000, tz=timezone.utc)


def format_revision(value: Optional[int]) -> str:
    """Format a revision's mint time in the local timezone for display.

    Args:
        value: Revision or item ID, or None

    Returns:
        Formatted string "YYYY-MM-DD HH:MM", or empty string if value is None
    """
    if value is None:
        return ""
    return id_time(value).astimezone().strftime("%Y-%m-%d %H:%M")
