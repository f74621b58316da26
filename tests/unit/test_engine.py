"""Tests for full sync, freshness, leases and partial sync."""

import sqlite3
from datetime import UTC, datetime

import pytest

from tests.unit.fakes import FakeClock, FakeWorkflowyApi, remote
from workflowy_cache.core.database.store import CacheStore
from workflowy_cache.core.sync.engine import (
    META_IN_PROGRESS,
    META_LAST_FULL_SYNC,
    META_NODE_COUNT,
    META_STARTED_AT,
    SyncEngine,
)
from workflowy_cache.errors import (
    AuthenticationError,
    RateLimitedError,
    SyncInProgressError,
    WorkflowyApiError,
)


def _hold_lease(engine: SyncEngine, clock: FakeClock, age: float) -> None:
    started = datetime.fromtimestamp(clock() - age, tz=UTC).isoformat()
    engine.store.set_meta(META_IN_PROGRESS, "true")
    engine.store.set_meta(META_STARTED_AT, started)


def _snapshot(engine: SyncEngine) -> list[tuple[str, str, str | None, int]]:
    return [(n.id, n.name, n.parent_id, n.children_count) for n in engine.store.all_nodes()]


# --- full sync ---


def test_full_sync_populates_cache_with_child_counts(engine: SyncEngine) -> None:
    result = engine.full_sync()

    assert result.nodes_synced == 15
    assert engine.store.count_nodes() == 15
    assert engine.store.get_meta(META_NODE_COUNT) == "15"
    assert engine.store.get_meta(META_LAST_FULL_SYNC) == result.synced_at
    p = engine.store.get_node("p")
    assert p is not None
    assert p.children_count == 2
    assert engine.store.get_meta(META_IN_PROGRESS) == "false"
    assert engine.store.get_meta(META_STARTED_AT) is None


def test_full_sync_replaces_previous_contents(
    synced_engine: SyncEngine, fake_api: FakeWorkflowyApi, clock: FakeClock
) -> None:
    fake_api.remove("p")
    fake_api.nodes["z"] = remote("z", "Zebra")
    clock.advance(61)

    synced_engine.full_sync()

    assert synced_engine.store.get_node("p1a") is None
    assert synced_engine.store.get_node("z") is not None
    assert synced_engine.store.count_nodes() == 11


def test_second_full_sync_within_a_minute_is_rate_limited(
    synced_engine: SyncEngine, fake_api: FakeWorkflowyApi, clock: FakeClock
) -> None:
    clock.advance(10)
    with pytest.raises(RateLimitedError) as exc_info:
        synced_engine.full_sync()
    assert exc_info.value.retry_after_seconds == 50
    assert len(fake_api.called("export_nodes")) == 1

    clock.advance(50)
    synced_engine.full_sync()
    assert len(fake_api.called("export_nodes")) == 2


def test_back_to_back_full_syncs_are_idempotent(synced_engine: SyncEngine) -> None:
    first = _snapshot(synced_engine)
    synced_engine.full_sync(ignore_rate_limit=True)
    assert _snapshot(synced_engine) == first


def test_failed_export_keeps_previous_cache(
    synced_engine: SyncEngine, fake_api: FakeWorkflowyApi, clock: FakeClock
) -> None:
    before = _snapshot(synced_engine)
    clock.advance(61)
    fake_api.fail("export_nodes", WorkflowyApiError("API error: 500"))

    with pytest.raises(WorkflowyApiError):
        synced_engine.full_sync()

    assert _snapshot(synced_engine) == before
    assert synced_engine.store.get_meta(META_IN_PROGRESS) == "false"


def test_failure_while_writing_rolls_back(
    synced_engine: SyncEngine, clock: FakeClock, monkeypatch: pytest.MonkeyPatch
) -> None:
    before = _snapshot(synced_engine)
    clock.advance(61)

    def broken_insert(_nodes: object) -> None:
        raise sqlite3.OperationalError("disk I/O error")

    monkeypatch.setattr(synced_engine.store, "insert_nodes", broken_insert)
    with pytest.raises(sqlite3.OperationalError):
        synced_engine.full_sync()

    assert _snapshot(synced_engine) == before
    assert not synced_engine.is_syncing()


def test_fresh_lease_refuses_sync(
    engine: SyncEngine, fake_api: FakeWorkflowyApi, clock: FakeClock
) -> None:
    _hold_lease(engine, clock, age=30)
    assert engine.is_syncing()

    with pytest.raises(SyncInProgressError):
        engine.full_sync()
    assert fake_api.called("export_nodes") == []


def test_stale_lease_is_broken(engine: SyncEngine, clock: FakeClock) -> None:
    _hold_lease(engine, clock, age=301)
    assert not engine.is_syncing()

    result = engine.full_sync()
    assert result.nodes_synced == 15


def test_lease_without_start_time_is_broken(engine: SyncEngine) -> None:
    engine.store.set_meta(META_IN_PROGRESS, "true")
    assert engine.full_sync().nodes_synced == 15


# --- freshness ---


def test_needs_sync_tracks_emptiness_and_age(
    engine: SyncEngine, clock: FakeClock
) -> None:
    assert engine.needs_sync()
    engine.full_sync()
    assert not engine.needs_sync()
    clock.advance(3601)
    assert engine.is_stale()
    assert engine.needs_sync()


def test_ensure_fresh_syncs_empty_cache_once(
    engine: SyncEngine, fake_api: FakeWorkflowyApi
) -> None:
    first = engine.ensure_fresh()
    second = engine.ensure_fresh()

    assert first.synced is True
    assert second.synced is False
    assert second.error is None
    assert len(fake_api.called("export_nodes")) == 1


def test_ensure_fresh_when_rate_limited_uses_existing_cache(
    engine: SyncEngine, fake_api: FakeWorkflowyApi
) -> None:
    engine.rate_limiter.mark()
    result = engine.ensure_fresh()

    assert result.synced is False
    assert result.error == "Rate limited - using existing cache"
    assert fake_api.called("export_nodes") == []


def test_ensure_fresh_with_lease_held_uses_existing_cache(
    engine: SyncEngine, clock: FakeClock
) -> None:
    _hold_lease(engine, clock, age=5)
    result = engine.ensure_fresh()
    assert result.error == "Sync in progress - using existing cache"


def test_ensure_fresh_reports_remote_failures(
    engine: SyncEngine, fake_api: FakeWorkflowyApi
) -> None:
    fake_api.fail("export_nodes", WorkflowyApiError("API error: 502"))
    result = engine.ensure_fresh()
    assert result.synced is False
    assert result.error == "API error: 502"


def test_ensure_fresh_propagates_authentication_errors(
    engine: SyncEngine, fake_api: FakeWorkflowyApi
) -> None:
    fake_api.fail("export_nodes", AuthenticationError("bad key", status=401))
    with pytest.raises(AuthenticationError):
        engine.ensure_fresh()


def test_status_reports_cache_state(synced_engine: SyncEngine, clock: FakeClock) -> None:
    clock.advance(20)
    status = synced_engine.status()
    assert status["cache_node_count"] == 15
    assert status["last_sync_node_count"] == 15
    assert status["cache_is_stale"] is False
    assert status["sync_in_progress"] is False
    assert status["rate_limit_wait_seconds"] == 40.0


# --- partial sync ---


def test_sync_children_removes_missing_child_subtree(
    synced_engine: SyncEngine, fake_api: FakeWorkflowyApi
) -> None:
    fake_api.remove("d1")

    assert synced_engine.sync_children("d") == 2

    store = synced_engine.store
    assert store.get_node("d1") is None
    assert store.get_node("d1a") is None
    assert store.get_node("d1b") is None
    assert store.child_ids("d") == {"d2", "d3"}
    d = store.get_node("d")
    assert d is not None
    assert d.children_count == 2
    assert store.count_nodes() == 12


def test_sync_children_adds_new_children_and_keeps_counts(
    synced_engine: SyncEngine, fake_api: FakeWorkflowyApi
) -> None:
    fake_api.nodes["d4"] = remote("d4", "Water plants", "d", priority=3)

    assert synced_engine.sync_children("d") == 4

    d4 = synced_engine.store.get_node("d4")
    assert d4 is not None
    assert d4.parent_id == "d"
    d1 = synced_engine.store.get_node("d1")
    assert d1 is not None
    assert d1.children_count == 2


def test_sync_children_is_idempotent(
    synced_engine: SyncEngine, fake_api: FakeWorkflowyApi
) -> None:
    fake_api.remove("d2")
    synced_engine.sync_children("d")
    once = _snapshot(synced_engine)
    synced_engine.sync_children("d")
    assert _snapshot(synced_engine) == once


def test_sync_children_of_top_level(
    synced_engine: SyncEngine, fake_api: FakeWorkflowyApi
) -> None:
    fake_api.remove("msg")
    assert synced_engine.sync_children("None") == 3
    assert fake_api.called("list_children")[-1] == (None,)
    assert synced_engine.store.get_node("msg1") is None


def test_sync_children_of_deleted_parent_forgets_it(
    synced_engine: SyncEngine, fake_api: FakeWorkflowyApi
) -> None:
    fake_api.remove("p1")

    assert synced_engine.sync_children("p1") == 0

    assert synced_engine.store.get_node("p1") is None
    assert synced_engine.store.get_node("p1a") is None
    p = synced_engine.store.get_node("p")
    assert p is not None
    assert p.children_count == 1


def test_sync_children_of_uncached_parent_writes_nothing(
    synced_engine: SyncEngine, fake_api: FakeWorkflowyApi
) -> None:
    fake_api.nodes["x"] = remote("x", "Added elsewhere")
    fake_api.nodes["x1"] = remote("x1", "Its child", "x")

    assert synced_engine.sync_children("x") == 0

    assert fake_api.called("list_children") == []
    assert synced_engine.store.get_node("x1") is None


def test_sync_children_recurses_to_requested_depth(
    synced_engine: SyncEngine, fake_api: FakeWorkflowyApi
) -> None:
    synced_engine.sync_children("d", depth=2)
    parents = [args[0] for args in fake_api.called("list_children")]
    assert parents == ["d", "d1"]


def test_sync_children_of_inbox_only_refreshes_known_nodes(
    synced_engine: SyncEngine, fake_api: FakeWorkflowyApi
) -> None:
    fake_api.nodes["i1"] = remote("i1", "Inbox item", "inbox")
    before = synced_engine.store.count_nodes()

    assert synced_engine.sync_children("inbox") == 1
    assert synced_engine.store.count_nodes() == before


def test_sync_node_refreshes_fields_and_keeps_parent(
    synced_engine: SyncEngine, fake_api: FakeWorkflowyApi
) -> None:
    fake_api.rename("d1", "Today's tasks")

    node = synced_engine.sync_node("d1")

    assert node is not None
    assert node.name == "Today's tasks"
    assert node.parent_id == "d"
    assert node.children_count == 2


def test_sync_node_deleted_remotely_removes_subtree(
    synced_engine: SyncEngine, fake_api: FakeWorkflowyApi
) -> None:
    fake_api.remove("d1")

    assert synced_engine.sync_node("d1") is None

    assert synced_engine.store.get_node("d1") is None
    assert synced_engine.store.get_node("d1a") is None
    d = synced_engine.store.get_node("d")
    assert d is not None
    assert d.children_count == 2


def test_reconcile_depth_comes_from_engine(
    store: CacheStore, fake_api: FakeWorkflowyApi, clock: FakeClock
) -> None:
    deep = SyncEngine(store, fake_api, clock=clock, reconcile_depth=2)
    deep.full_sync()
    deep.sync_children("p")
    parents = [args[0] for args in fake_api.called("list_children")]
    assert parents == ["p", "p1"]
