"""Shared test fixtures."""

import pytest

from lumis.diagnosis.limiter import ReleaseLimiter
from lumis.journal.store import JournalStore


@pytest.fixture(autouse=False)
def _no_turso(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ensure tests use local file, not remote Turso."""
    monkeypatch.setattr("lumis.config.settings.turso_database_url", "")


@pytest.fixture(autouse=True)
def _reset_singletons():
    """Drop shared store instances between tests."""
    JournalStore._reset()
    ReleaseLimiter._reset()
    yield
    JournalStore._reset()
    ReleaseLimiter._reset()
