"""Tests for CacheStore reads, writes and transactions."""

import pytest

from workflowy_cache.core.database.store import CacheStore
from workflowy_cache.models.node import Node


def _add(store: CacheStore, node_id: str, parent_id: str | None = None, **kw: object) -> None:
    store.upsert_node(Node(id=node_id, name=kw.pop("name", node_id), parent_id=parent_id, **kw))


def test_upsert_and_get_node_round_trip(store: CacheStore) -> None:
    _add(store, "a", name="Alpha", note="first", completed=True, priority=3)
    node = store.get_node("a")
    assert node is not None
    assert node.name == "Alpha"
    assert node.note == "first"
    assert node.completed is True
    assert node.priority == 3
    assert store.get_node("missing") is None


def test_query_children_orders_by_priority_then_name(store: CacheStore) -> None:
    _add(store, "c", "p", name="Charlie", priority=1)
    _add(store, "b", "p", name="Bravo", priority=0)
    _add(store, "a", "p", name="Alpha", priority=1)
    _add(store, "top")

    assert [n.name for n in store.query_children("p")] == ["Bravo", "Alpha", "Charlie"]
    assert [n.id for n in store.query_children("p", limit=2)] == ["b", "a"]
    assert [n.id for n in store.query_children(None)] == ["top"]


def test_delete_node_cascade_leaves_no_orphans(populated_store: CacheStore) -> None:
    before = populated_store.count_nodes()
    deleted = populated_store.delete_node_cascade("p")

    assert deleted == 5
    assert populated_store.count_nodes() == before - 5
    ids = {n.id for n in populated_store.all_nodes()}
    orphans = [n for n in populated_store.all_nodes() if n.parent_id and n.parent_id not in ids]
    assert orphans == []


def test_delete_node_cascade_tolerates_cycles(store: CacheStore) -> None:
    _add(store, "x", "y")
    _add(store, "y", "x")
    assert store.delete_node_cascade("x") == 2
    assert store.count_nodes() == 0


def test_delete_node_cascade_of_missing_node_returns_zero(store: CacheStore) -> None:
    assert store.delete_node_cascade("nope") == 0


def test_transaction_rolls_back_on_error(populated_store: CacheStore) -> None:
    before = populated_store.count_nodes()
    with pytest.raises(RuntimeError), populated_store.transaction():
        populated_store.delete_all_nodes()
        raise RuntimeError("boom")
    assert populated_store.count_nodes() == before


def test_nested_transaction_commits_with_outer(store: CacheStore) -> None:
    with store.transaction():
        _add(store, "a")
        with store.transaction():
            _add(store, "b")
    store.conn.rollback()
    assert store.count_nodes() == 2


def test_adjust_children_count_never_goes_negative(store: CacheStore) -> None:
    _add(store, "a", children_count=1)
    store.adjust_children_count("a", -3)
    node = store.get_node("a")
    assert node is not None
    assert node.children_count == 0
    store.adjust_children_count(None, 1)  # top level has no row


def test_patch_node_updates_only_given_fields(store: CacheStore) -> None:
    _add(store, "a", name="Old", note="keep")
    assert store.patch_node("a", name="New", completed=True) is True
    node = store.get_node("a")
    assert node is not None
    assert (node.name, node.note, node.completed) == ("New", "keep", True)
    assert store.patch_node("missing", name="x") is False


def test_patch_node_rejects_unknown_columns(store: CacheStore) -> None:
    _add(store, "a")
    with pytest.raises(ValueError, match="id"):
        store.patch_node("a", id="b")


def test_query_by_text_pattern_treats_wildcards_literally(store: CacheStore) -> None:
    _add(store, "pct", name="100% done")
    _add(store, "plain", name="1000 done")
    assert [n.id for n in store.query_by_text_pattern(["100%"])] == ["pct"]


def test_query_by_text_pattern_and_or_and_completed(populated_store: CacheStore) -> None:
    both = populated_store.query_by_text_pattern(["today", "tasks"], require_all=True)
    assert {n.id for n in both} == {"d1"}
    either = populated_store.query_by_text_pattern(["today", "tasks"])
    assert {n.id for n in either} == {"d1", "d2"}

    assert populated_store.query_by_text_pattern(["palette"]) == []
    done = populated_store.query_by_text_pattern(["palette"], include_completed=True)
    assert [n.id for n in done] == ["p1b"]


def test_query_by_text_pattern_searches_notes(populated_store: CacheStore) -> None:
    assert [n.id for n in populated_store.query_by_text_pattern(["spring"])] == ["p1"]


def test_query_by_text_pattern_folds_non_ascii_case(store: CacheStore) -> None:
    _add(store, "uber", name="Über uns")
    _add(store, "overview", name="Überblick Aufgaben")
    _add(store, "elan", name="Motivation", note="Élan vital")
    _add(store, "other", name="Unter uns")

    assert {n.id for n in store.query_by_text_pattern(["über"])} == {"uber", "overview"}
    assert [n.id for n in store.query_by_text_pattern(["ÉLAN"])] == ["elan"]


def test_is_descendant(populated_store: CacheStore) -> None:
    assert populated_store.is_descendant("p1a", "p")
    assert populated_store.is_descendant("p", "p")
    assert not populated_store.is_descendant("p", "p1a")


def test_sibling_priority_range(populated_store: CacheStore) -> None:
    assert populated_store.sibling_priority_range("d") == (0, 2)
    assert populated_store.sibling_priority_range("p2") is None


def test_meta_set_get_delete(store: CacheStore) -> None:
    store.set_meta("k", "v1")
    store.set_meta("k", "v2")
    assert store.get_meta("k") == "v2"
    store.delete_meta("k")
    assert store.get_meta("k") is None


def test_bookmarks_replace_by_name(store: CacheStore) -> None:
    store.save_bookmark("daily", "d", "Daily log")
    store.save_bookmark("daily", "d1", None)
    store.save_bookmark("work", "p")

    bookmark = store.get_bookmark("daily")
    assert bookmark is not None
    assert bookmark.node_id == "d1"
    assert bookmark.context is None
    assert [b.name for b in store.list_bookmarks()] == ["daily", "work"]

    assert store.delete_bookmark("daily") is True
    assert store.delete_bookmark("daily") is False
