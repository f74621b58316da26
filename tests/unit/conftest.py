"""Shared test fixtures."""

import sqlite3

import pytest

from tests.unit.fakes import SAMPLE_OUTLINE, FakeClock, FakeWorkflowyApi
from workflowy_cache.core.database.store import CacheStore
from workflowy_cache.core.sync.engine import SyncEngine


@pytest.fixture
def store() -> CacheStore:
    """Return an empty in-memory cache store."""
    return CacheStore(sqlite3.connect(":memory:"))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_api() -> FakeWorkflowyApi:
    """Return a fake remote seeded with the sample outline."""
    return FakeWorkflowyApi(list(SAMPLE_OUTLINE))


@pytest.fixture
def engine(store: CacheStore, fake_api: FakeWorkflowyApi, clock: FakeClock) -> SyncEngine:
    """Return an engine over the empty store, driven by the fake clock."""
    return SyncEngine(store, fake_api, clock=clock)


@pytest.fixture
def synced_engine(engine: SyncEngine) -> SyncEngine:
    """Return an engine whose store holds the full sample outline."""
    engine.full_sync()
    return engine


@pytest.fixture
def populated_store(synced_engine: SyncEngine) -> CacheStore:
    return synced_engine.store
