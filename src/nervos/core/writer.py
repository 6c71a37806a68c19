"""Debounced persistence of edited items.

Edits arrive far faster than they need to reach storage (one per
keystroke). The writer holds the most recent edit as pending and only
persists it once no further edit arrived for `delay` seconds, or as soon
as an edit to a different item arrives.

CRITICAL: This module must have NO UI dependencies.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from typing import Callable, Optional

from .models import Item

logger = logging.getLogger(__name__)

__all__ = ["DebouncedWriter"]

_STOP = object()


class _FlushRequest:
    def __init__(self) -> None:
        self.done = threading.Event()


class DebouncedWriter:
    """Single-consumer queue coalescing edits per item.

    Attributes:
        delay: Seconds of inactivity before the pending item is persisted
    """

    def __init__(
        self,
        save: Callable[[Item], None],
        delay: float = 1.0,
        on_error: Optional[Callable[[str], None]] = None,
        maxsize: int = 100,
    ) -> None:
        """Initialize the writer.

        Args:
            save: Persists one item
            delay: Debounce delay in seconds
            on_error: Receives a message when a save fails
            maxsize: Capacity of the edit queue
        """
        self.delay = delay
        self._save = save
        self._on_error = on_error
        self._queue: "queue.Queue[object]" = queue.Queue(maxsize=maxsize)
        self._thread: Optional[threading.Thread] = None
        self._state = threading.Lock()
        self._closed = False

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the consumer thread."""
        if self.running:
            return
        self._thread = threading.Thread(target=self._run, name="nervos-writer", daemon=True)
        self._thread.start()

    def submit(self, item: Item) -> None:
        """Queue an edited item, blocking while the queue is full.

        Once the writer is stopped, the item is persisted immediately on the
        calling thread instead.
        """
        with self._state:
            if not self._closed:
                self._queue.put(item)
                return
        self._persist(item)

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Persist everything submitted so far.

        Returns:
            True if the consumer confirmed the flush within the timeout
        """
        if not self.running:
            return False
        request = _FlushRequest()
        self._queue.put(request)
        return request.done.wait(timeout)

    def stop(self, timeout: Optional[float] = None) -> None:
        """Flush the pending item and stop the consumer thread."""
        with self._state:
            if self._closed:
                return
            self._closed = True
            if not self.running:
                return
            self._queue.put(_STOP)
        self._thread.join(timeout)
        self._thread = None

    def _persist(self, item: Optional[Item]) -> None:
        if item is None or item.id == 0:
            return
        try:
            self._save(item)
        except Exception as e:
            message = f"saving: {e}"
            logger.error(f"Failed to save item {item.id}: {e}")
            if self._on_error:
                self._on_error(message)

    def _run(self) -> None:
        pending: Optional[Item] = None
        deadline = 0.0
        while True:
            timeout = None if pending is None else max(0.0, deadline - time.monotonic())
            try:
                message = self._queue.get(timeout=timeout)
            except queue.Empty:
                self._persist(pending)
                pending = None
                continue

            if message is _STOP:
                self._persist(pending)
                return
            if isinstance(message, _FlushRequest):
                self._persist(pending)
                pending = None
                message.done.set()
                continue

            if pending is not None and pending.id != message.id:
                self._persist(pending)
            pending = message
            deadline = time.monotonic() + self.delay
