"""Pytest fixtures for Nervos tests.

This module provides fixtures for test configuration, the local database
and device sessions. Key derivation runs with a low iteration count so
unlocking stays fast.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Generator

import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from nervos.core.config import Config
from nervos.core.database import Database
from nervos.core.session import Session

from tests.helpers import TEST_KDF_ITERATIONS, TEST_PASSWORD, TEST_SAVE_DELAY, TEST_USERNAME


@pytest.fixture
def test_config_dir(tmp_path: Path) -> Path:
    """Create temporary config directory for tests.

    Args:
        tmp_path: pytest temporary directory fixture

    Returns:
        Path to temporary config directory.
    """
    config_dir = tmp_path / "nervos_test"
    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


@pytest.fixture
def test_config(test_config_dir: Path) -> Config:
    """Create test configuration with fast key derivation.

    Args:
        test_config_dir: Temporary config directory

    Returns:
        Config instance for testing.
    """
    config = Config(config_dir=test_config_dir)
    config.set("kdf_iterations", TEST_KDF_ITERATIONS)
    config.set("save_delay", TEST_SAVE_DELAY)
    return config


@pytest.fixture
def db(tmp_path: Path) -> Generator[Database, None, None]:
    """Create a database in a temporary directory.

    Yields:
        Database instance, closed after the test.
    """
    database = Database(tmp_path / "nervos.db")
    yield database
    database.close()


@pytest.fixture
def session(db: Database) -> Generator[Session, None, None]:
    """Create a started, still locked session.

    Yields:
        Session instance, locked again after the test.
    """
    s = Session(db, kdf_iterations=TEST_KDF_ITERATIONS, save_delay=TEST_SAVE_DELAY)
    s.start()
    yield s
    s.lock_session()


@pytest.fixture
def unlocked_session(session: Session) -> Session:
    """Session logged in as the test user."""
    session.login(TEST_USERNAME, TEST_PASSWORD)
    return session
