"""Pytest fixtures for sync tests.

This module provides fixtures for:
- A sync server app backed by an in-memory object store
- A real HTTP server on a free port, run in a background thread
- Devices: independent databases and sessions for the same account
"""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Any, Callable, Dict, Generator, List, Optional

import pytest
from flask import Flask
from flask.testing import FlaskClient
from werkzeug.serving import make_server

from nervos.core.codec import ITEMS_CONTENT_TYPE, encode_items
from nervos.core.config import ServerConfig
from nervos.core.crypto import Credentials, derive_credentials
from nervos.core.database import Database
from nervos.core.models import Item
from nervos.core.object_store import MemoryObjectStore
from nervos.core.session import Session
from nervos.core.sync import ChunkedLog
from nervos.web import create_app

from tests.helpers import (
    TEST_BCRYPT_ROUNDS,
    TEST_KDF_ITERATIONS,
    TEST_PASSWORD,
    TEST_USERNAME,
)


@pytest.fixture
def store() -> MemoryObjectStore:
    return MemoryObjectStore()


@pytest.fixture
def server_config() -> ServerConfig:
    return ServerConfig(object_store="memory", bcrypt_rounds=TEST_BCRYPT_ROUNDS)


@pytest.fixture
def app(server_config: ServerConfig, store: MemoryObjectStore) -> Flask:
    """Create the sync server app for testing."""
    application = create_app(server_config, store=store)
    application.config["TESTING"] = True
    return application


@pytest.fixture
def log(app: Flask) -> ChunkedLog:
    return app.extensions["nervos_log"]


@pytest.fixture
def client(app: Flask) -> FlaskClient:
    """Create Flask test client."""
    return app.test_client()


@pytest.fixture(scope="session")
def credentials() -> Credentials:
    return derive_credentials(TEST_USERNAME, TEST_PASSWORD, TEST_KDF_ITERATIONS)


def sync_headers(credentials: Credentials, checkpoint: int) -> Dict[str, str]:
    return {
        "Content-Type": ITEMS_CONTENT_TYPE,
        "userhash": credentials.user_hash,
        "passkey": credentials.passkey,
        "checkpoint": str(checkpoint),
    }


def post_sync(
    client: FlaskClient,
    credentials: Credentials,
    checkpoint: int,
    items: Optional[List[Item]] = None,
) -> Any:
    """POST a batch of changes through the test client."""
    return client.post(
        "/",
        data=encode_items(items or []),
        headers=sync_headers(credentials, checkpoint),
    )


@pytest.fixture
def live_server(app: Flask) -> Generator[str, None, None]:
    """Serve the app over real HTTP on a free port.

    Yields:
        Base URL of the server
    """
    server = make_server("127.0.0.1", 0, app, threaded=True)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield f"http://127.0.0.1:{server.server_port}"
    finally:
        server.shutdown()
        thread.join(5)


@pytest.fixture
def make_device(tmp_path: Path) -> Generator[Callable[[str], Session], None, None]:
    """Factory creating logged-in device sessions with their own database."""
    sessions: List[Session] = []

    def _make(name: str) -> Session:
        db = Database(tmp_path / name / "nervos.db")
        session = Session(db, kdf_iterations=TEST_KDF_ITERATIONS, save_delay=10.0)
        session.start()
        session.login(TEST_USERNAME, TEST_PASSWORD)
        sessions.append(session)
        return session

    yield _make

    for session in sessions:
        session.lock_session()
        session.db.close()
