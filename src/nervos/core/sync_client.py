"""Sync client for Nervos.

This module provides the device side of the sync protocol:
- Upload every local item changed since the checkpoint
- Merge the items returned by the server (last writer wins)
- Advance the checkpoint only after a fully successful cycle
- Run cycles periodically in a background worker while unlocked

CRITICAL: This module must have NO UI dependencies.
"""

from __future__ import annotations

import json
import logging
import threading
import urllib.error
import urllib.request
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .codec import ITEMS_CONTENT_TYPE, CodecError, decode_items, encode_items
from .session import Session
from .validation import ValidationError, parse_checkpoint, validate_api_url

logger = logging.getLogger(__name__)

__all__ = ["SyncResult", "SyncClient", "SyncWorker"]


@dataclass
class SyncResult:
    """Result of a sync cycle."""

    success: bool
    pushed: int = 0  # Items uploaded
    pulled: int = 0  # Items received from the server
    applied: int = 0  # Received items adopted locally
    checkpoint: Optional[int] = None
    errors: List[str] = field(default_factory=list)


class SyncClient:
    """Client for syncing a session with the sync server."""

    def __init__(self, session: Session, api_url: str, timeout: float = 30) -> None:
        """Initialize sync client.

        Args:
            session: Unlocked (or later unlocked) device session
            api_url: Sync server URL
            timeout: Request timeout in seconds
        """
        self.session = session
        self.api_url = validate_api_url(api_url)
        self.timeout = timeout

    def sync_changes(self) -> SyncResult:
        """Run one upload/merge cycle.

        Any failure leaves the checkpoint where it was, so the next cycle
        uploads and requests the same range again.

        Returns:
            SyncResult with summary of the cycle
        """
        credentials = self.session.credentials
        if credentials is None:
            return SyncResult(success=False, errors=["Session is locked"])

        result = SyncResult(success=True)
        try:
            with self.session.lock:
                changes = self.session.changes_since_checkpoint()
                checkpoint = self.session.checkpoint
            headers = {
                "Content-Type": ITEMS_CONTENT_TYPE,
                "userhash": credentials.user_hash,
                "passkey": credentials.passkey,
                "checkpoint": str(checkpoint),
            }

            response = self._make_request(self.api_url, data=encode_items(changes), headers=headers)
            if not response["success"]:
                result.success = False
                result.errors.append(response["error"])
                return result

            new_checkpoint = parse_checkpoint(response["headers"].get("checkpoint"))
            updates = decode_items(response["body"])

            result.pushed = len(changes)
            result.pulled = len(updates)
            result.applied = self.session.merge_remote(updates)
            self.session.advance_checkpoint(new_checkpoint)
            result.checkpoint = new_checkpoint

            logger.info(
                f"Synced {result.pushed} changes, {result.pulled} updates "
                f"({result.applied} applied), checkpoint {checkpoint} -> {new_checkpoint}"
            )

        except (CodecError, ValidationError) as e:
            logger.error(f"Sync error: invalid server response: {e}")
            result.success = False
            result.errors.append(f"Invalid server response: {e}")
        except Exception as e:
            logger.error(f"Sync error: {e}")
            result.success = False
            result.errors.append(str(e))

        return result

    def _make_request(
        self,
        url: str,
        method: str = "POST",
        data: Optional[bytes] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """Make an HTTP request to the sync server.

        Args:
            url: URL to request
            method: HTTP method
            data: Raw request body
            headers: Request headers

        Returns:
            Dict with success, status, headers and body, or success and error
        """
        request = urllib.request.Request(url, data=data, headers=headers or {}, method=method)
        try:
            with urllib.request.urlopen(request, timeout=self.timeout) as response:
                status = response.status
                body = response.read()
                response_headers = {k.lower(): v for k, v in response.headers.items()}
            if status != 200:
                error_msg = f"non 200 status code: {status}"
                logger.error(f"Request to {url} failed: {error_msg}")
                return {"success": False, "status": status, "error": error_msg}
            return {
                "success": True,
                "status": status,
                "headers": response_headers,
                "body": body,
            }

        except urllib.error.HTTPError as e:
            error_msg = f"HTTP {e.code}"
            try:
                error_body = json.loads(e.read().decode("utf-8"))
                if isinstance(error_body, dict) and "error" in error_body:
                    error_msg = f"HTTP {e.code}: {error_body['error']}"
            except (ValueError, UnicodeDecodeError):
                pass
            logger.error(f"Request to {url} failed: {error_msg}")
            return {"success": False, "status": e.code, "error": error_msg}

        except urllib.error.URLError as e:
            error_msg = f"Connection failed: {e.reason}"
            logger.error(error_msg)
            return {"success": False, "error": error_msg}

        except OSError as e:
            error_msg = f"Request failed: {e}"
            logger.error(error_msg)
            return {"success": False, "error": error_msg}


class SyncWorker:
    """Background thread running sync cycles while the session is unlocked."""

    def __init__(
        self,
        session: Session,
        client: SyncClient,
        interval: float = 30.0,
        locked_poll: float = 1.0,
    ) -> None:
        """Initialize the worker.

        Args:
            session: Device session
            client: Sync client performing the cycles
            interval: Seconds between cycles
            locked_poll: Seconds between checks while locked
        """
        self.session = session
        self.client = client
        self.interval = interval
        self.locked_poll = locked_poll
        self.last_result: Optional[SyncResult] = None
        self._stop = threading.Event()
        self._wake = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="nervos-sync", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop after the current cycle; an in-flight request is not interrupted."""
        self._stop.set()
        self._wake.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def trigger(self) -> None:
        """Start the next cycle now instead of waiting for the interval."""
        self._wake.set()

    def _sleep(self, seconds: float) -> None:
        self._wake.wait(seconds)
        self._wake.clear()

    def _run(self) -> None:
        while not self._stop.is_set():
            if not self.session.is_unlocked:
                self._sleep(self.locked_poll)
                continue
            try:
                self.last_result = self.client.sync_changes()
            except Exception as e:
                self.session.report_error(f"sync: {e}")
            if self._stop.is_set():
                break
            self._sleep(self.interval)
