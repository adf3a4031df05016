"""Shared fixtures for account-guard tests."""

import pytest

from account_guard.storage import InMemoryKeyValueStore, RecordStore

# 2026-01-01T00:00:00Z, aligned to a 30 s TOTP step
START_MS = 1_767_225_600_000


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, now_ms: int = START_MS) -> None:
        self.current = now_ms

    def now_ms(self) -> int:
        return self.current

    def advance(self, ms: int) -> None:
        self.current += ms


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def backend() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def records(backend: InMemoryKeyValueStore) -> RecordStore:
    return RecordStore(backend)


@pytest.fixture(autouse=True)
def _no_config_env(monkeypatch):
    """Keep a developer's ACCOUNT_GUARD_CONFIG from leaking into tests."""
    monkeypatch.delenv("ACCOUNT_GUARD_CONFIG", raising=False)
