"""Test helpers for Nervos tests.

Shared constants and small builders used across the test suites.
"""

from __future__ import annotations

from typing import List

from nervos.core.models import Item

# Low iteration count so unlocking stays fast
TEST_KDF_ITERATIONS = 1000
TEST_SAVE_DELAY = 0.05
TEST_BCRYPT_ROUNDS = 4

TEST_USERNAME = "alice"
TEST_PASSWORD = "correct horse battery staple"


def make_items(revs: List[int], prefix: str = "note") -> List[Item]:
    """Build items whose ID equals their revision."""
    return [Item(id=rev, rev=rev, data=f"{prefix} {rev}") for rev in revs]
