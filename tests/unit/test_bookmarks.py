"""Tests for bookmarks and the AI instructions bookmark."""

import pytest

from tests.unit.fakes import FakeWorkflowyApi, remote
from workflowy_cache.core.bookmarks import (
    delete_bookmark,
    get_ai_instructions,
    list_bookmarks,
    refresh_ai_instructions,
    save_bookmark,
)
from workflowy_cache.core.sync.engine import SyncEngine
from workflowy_cache.errors import AuthenticationError, WorkflowyApiError


def test_list_without_instructions_asks_to_find_them(synced_engine: SyncEngine) -> None:
    result = list_bookmarks(synced_engine)
    assert result["bookmarks"] == []
    assert "action_required" in result
    assert "user_instructions" not in result


def test_list_returns_rendered_user_instructions(
    synced_engine: SyncEngine, fake_api: FakeWorkflowyApi
) -> None:
    save_bookmark(synced_engine.store, name="ai_instructions", node_id="ai")
    fake_api.nodes["ai2"] = remote("ai2", "Use metric units", "ai", priority=1)

    result = list_bookmarks(synced_engine)

    assert fake_api.called("list_children") == [("ai",)]
    assert result["user_instructions"] == (
        "Follow these rules\n\n- Answer briefly\n- Use metric units"
    )
    assert [b["name"] for b in result["bookmarks"]] == ["ai_instructions"]


def test_empty_instructions_node(synced_engine: SyncEngine) -> None:
    save_bookmark(synced_engine.store, name="ai_instructions", node_id="p2")
    result = list_bookmarks(synced_engine)
    assert result["user_instructions"] == "(No custom instructions configured yet)"
    assert "action_required" not in result


def test_other_bookmarks_refresh_in_background(
    synced_engine: SyncEngine, fake_api: FakeWorkflowyApi
) -> None:
    save_bookmark(synced_engine.store, name="daily", node_id="d", context="Daily log")

    result = list_bookmarks(synced_engine)

    assert result["bookmarks"][0]["context"] == "Daily log"
    assert synced_engine.background.pending_count == 1
    synced_engine.background.run_pending()
    assert fake_api.called("list_children") == [("d",)]


def test_refresh_ignores_remote_failures(
    synced_engine: SyncEngine, fake_api: FakeWorkflowyApi
) -> None:
    save_bookmark(synced_engine.store, name="ai_instructions", node_id="ai")
    fake_api.fail("list_children", WorkflowyApiError("API error: 503"))

    refresh_ai_instructions(synced_engine)

    assert get_ai_instructions(synced_engine.store) == "Follow these rules\n\n- Answer briefly"


def test_refresh_propagates_authentication_errors(
    synced_engine: SyncEngine, fake_api: FakeWorkflowyApi
) -> None:
    save_bookmark(synced_engine.store, name="ai_instructions", node_id="ai")
    fake_api.fail("list_children", AuthenticationError("bad key", status=401))
    with pytest.raises(AuthenticationError):
        refresh_ai_instructions(synced_engine)


def test_get_ai_instructions_for_uncached_node(synced_engine: SyncEngine) -> None:
    save_bookmark(synced_engine.store, name="ai_instructions", node_id="gone")
    assert get_ai_instructions(synced_engine.store) is None


def test_save_bookmark_validates_and_replaces(synced_engine: SyncEngine) -> None:
    store = synced_engine.store
    assert save_bookmark(store, name="  ", node_id="d")["success"] is False

    save_bookmark(store, name="daily", node_id="d")
    result = save_bookmark(store, name="daily", node_id="d1", context="today only")
    assert result == {"success": True, "name": "daily", "node_id": "d1", "context": "today only"}
    assert len(store.list_bookmarks()) == 1


def test_delete_bookmark(synced_engine: SyncEngine) -> None:
    store = synced_engine.store
    save_bookmark(store, name="daily", node_id="d")
    assert delete_bookmark(store, name="daily") == {"success": True, "name": "daily"}
    assert delete_bookmark(store, name="daily")["success"] is False
