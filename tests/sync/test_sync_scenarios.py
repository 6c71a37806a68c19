"""End-to-end sync scenarios over real HTTP.

A threaded werkzeug server hosts the sync app; devices reach it with raw
requests or through SyncClient and its urllib transport.
"""

from __future__ import annotations

import time
from typing import Callable

import pytest
import requests

from nervos.core.codec import decode_items, decode_metadata, encode_items
from nervos.core.crypto import Credentials
from nervos.core.database import Database
from nervos.core.models import Item
from nervos.core.object_store import MemoryObjectStore
from nervos.core.session import Session
from nervos.core.sync import chunk_key, meta_key
from nervos.core.sync_client import SyncClient, SyncWorker

from tests.helpers import TEST_KDF_ITERATIONS, TEST_USERNAME

from .conftest import sync_headers


def raw_sync(url: str, credentials: Credentials, checkpoint: int, items: list) -> requests.Response:
    return requests.post(
        url,
        data=encode_items(items),
        headers=sync_headers(credentials, checkpoint),
        timeout=5,
    )


@pytest.mark.sync
class TestRawScenarios:
    """Scenarios with hand-picked revisions."""

    def test_upload_then_download(
        self, live_server: str, credentials: Credentials, store: MemoryObjectStore
    ) -> None:
        """A uploads one item; B starting from zero receives it."""
        resp_a = raw_sync(live_server, credentials, 0, [Item(100, 100, "hello")])
        assert resp_a.status_code == 200
        assert resp_a.headers["checkpoint"] == "100"
        assert decode_items(store.get(chunk_key(credentials.user_hash, 0))) == [Item(100, 100, "hello")]
        assert decode_metadata(store.get(meta_key(credentials.user_hash))).chunks == [0]

        resp_b = raw_sync(live_server, credentials, 0, [])
        assert decode_items(resp_b.content) == [Item(100, 100, "hello")]
        assert resp_b.headers["checkpoint"] == "100"

    def test_concurrent_edits_last_writer_wins(
        self,
        live_server: str,
        credentials: Credentials,
        store: MemoryObjectStore,
        make_device: Callable[[str], Session],
    ) -> None:
        """B's older unsynced edit is uploaded, then B adopts A's newer revision."""
        raw_sync(live_server, credentials, 0, [Item(100, 100, "hello")])
        raw_sync(live_server, credentials, 100, [Item(100, 150, "edited on A")])

        device_b = make_device("b")
        device_b.merge_remote([Item(100, 140, "edited on B")])
        device_b.advance_checkpoint(100)

        result = SyncClient(device_b, live_server, timeout=5).sync_changes()

        assert result.success
        assert result.pushed == 1
        assert device_b.get_item(100) == Item(100, 150, "edited on A")

        stored = decode_items(store.get(chunk_key(credentials.user_hash, 0)))
        assert [i.rev for i in stored] == [100, 150, 140]

    def test_wrong_passkey_rejected(self, live_server: str, credentials: Credentials) -> None:
        raw_sync(live_server, credentials, 0, [Item(1, 1, "x")])
        bad = Credentials(credentials.user_hash, b"\x00" * 32, credentials.data_secret)

        resp = raw_sync(live_server, bad, 0, [])
        assert resp.status_code == 403
        assert resp.json()["error"] == "wrong password"

    def test_status_over_http(self, live_server: str) -> None:
        resp = requests.get(f"{live_server}/status", timeout=5)
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"


@pytest.mark.sync
class TestDeviceScenarios:
    """Scenarios between full device sessions using SyncClient."""

    def test_note_travels_between_devices(
        self, live_server: str, make_device: Callable[[str], Session]
    ) -> None:
        device_a = make_device("a")
        device_b = make_device("b")
        note = device_a.edit_item(device_a.new_item().id, "# Groceries\nmilk")

        result_a = SyncClient(device_a, live_server, timeout=5).sync_changes()
        assert result_a.success
        assert device_a.checkpoint == note.rev

        result_b = SyncClient(device_b, live_server, timeout=5).sync_changes()
        assert result_b.success
        assert result_b.applied == 1
        assert device_b.get_item(note.id) == note
        assert device_b.checkpoint == note.rev

    def test_newer_edit_wins_on_both_devices(
        self, live_server: str, make_device: Callable[[str], Session]
    ) -> None:
        device_a = make_device("a")
        device_b = make_device("b")
        note = device_a.edit_item(device_a.new_item().id, "original")
        SyncClient(device_a, live_server, timeout=5).sync_changes()
        SyncClient(device_b, live_server, timeout=5).sync_changes()

        older = device_b.edit_item(note.id, "older edit on B")
        time.sleep(0.01)
        newer = device_a.edit_item(note.id, "newer edit on A")
        assert newer.rev > older.rev

        SyncClient(device_a, live_server, timeout=5).sync_changes()
        SyncClient(device_b, live_server, timeout=5).sync_changes()
        SyncClient(device_a, live_server, timeout=5).sync_changes()

        assert device_a.get_item(note.id) == newer
        assert device_b.get_item(note.id) == newer

    def test_resync_is_idempotent(
        self, live_server: str, make_device: Callable[[str], Session]
    ) -> None:
        device_a = make_device("a")
        device_a.edit_item(device_a.new_item().id, "once")
        client = SyncClient(device_a, live_server, timeout=5)
        client.sync_changes()
        checkpoint = device_a.checkpoint

        result = client.sync_changes()
        assert result.success
        assert result.pushed == 0
        assert result.applied == 0
        assert device_a.checkpoint == checkpoint

    def test_wrong_password_device_keeps_checkpoint(
        self, live_server: str, make_device: Callable[[str], Session], tmp_path
    ) -> None:
        device_a = make_device("a")
        device_a.edit_item(device_a.new_item().id, "registered")
        SyncClient(device_a, live_server, timeout=5).sync_changes()

        db = Database(tmp_path / "intruder" / "nervos.db")
        intruder = Session(db, kdf_iterations=TEST_KDF_ITERATIONS, save_delay=10.0)
        intruder.start()
        intruder.login(TEST_USERNAME, "a different password")
        try:
            result = SyncClient(intruder, live_server, timeout=5).sync_changes()
            assert not result.success
            assert result.errors == ["HTTP 403: wrong password"]
            assert intruder.checkpoint == 0
            assert intruder.items == {}
        finally:
            intruder.lock_session()
            db.close()

    def test_unreachable_server(self, make_device: Callable[[str], Session]) -> None:
        device_a = make_device("a")
        result = SyncClient(device_a, "http://127.0.0.1:9", timeout=2).sync_changes()
        assert not result.success
        assert device_a.checkpoint == 0

    def test_worker_syncs_in_background(
        self, live_server: str, make_device: Callable[[str], Session]
    ) -> None:
        device_a = make_device("a")
        device_b = make_device("b")
        note = device_a.edit_item(device_a.new_item().id, "background")

        worker = SyncWorker(device_a, SyncClient(device_a, live_server, timeout=5), interval=0.1)
        worker.start()
        try:
            deadline = time.monotonic() + 5
            while device_a.checkpoint < note.rev and time.monotonic() < deadline:
                time.sleep(0.05)
        finally:
            worker.stop(5)

        assert device_a.checkpoint == note.rev
        SyncClient(device_b, live_server, timeout=5).sync_changes()
        assert device_b.get_item(note.id) == note
