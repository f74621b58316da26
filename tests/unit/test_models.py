"""Tests for domain models and error classification."""

import pytest

from workflowy_cache.errors import (
    AuthenticationError,
    NotFoundError,
    RateLimitedError,
    SyncInProgressError,
    WorkflowyApiError,
    error_type,
)
from workflowy_cache.models.node import RemoteNode, SyncResult


def test_remote_node_from_export_payload() -> None:
    node = RemoteNode.from_payload(
        {
            "id": "a",
            "name": "Alpha",
            "note": None,
            "parent_id": "p",
            "completed": True,
            "priority": 4,
            "createdAt": 1700000000,
            "modifiedAt": 1700000060,
        }
    )
    assert node.parent_id == "p"
    assert node.note == ""
    assert node.completed is True
    assert node.priority == 4
    assert node.created_at == "2023-11-14T22:13:20+00:00"
    assert node.updated_at == "2023-11-14T22:14:20+00:00"


def test_remote_node_completed_at_marks_completion() -> None:
    assert RemoteNode.from_payload({"id": "a", "completedAt": 1700000000}).completed is True
    assert RemoteNode.from_payload({"id": "a", "completedAt": None}).completed is False


def test_remote_node_requires_id() -> None:
    with pytest.raises(ValueError, match="without id"):
        RemoteNode.from_payload({"name": "nameless"})


def test_to_node_uses_given_parent_and_count() -> None:
    node = RemoteNode(id="a", name="Alpha", parent_id=None).to_node(
        parent_id="p", children_count=3
    )
    assert (node.parent_id, node.children_count) == ("p", 3)


def test_sync_result_to_dict() -> None:
    assert SyncResult(nodes_synced=3, synced_at="t").to_dict() == {
        "success": True,
        "nodes_synced": 3,
        "synced_at": "t",
    }


def test_rate_limited_message_rounds_up() -> None:
    err = RateLimitedError(12.2)
    assert err.retry_after_seconds == 13
    assert str(err) == "Rate limited. Please wait 13 seconds."


@pytest.mark.parametrize(
    ("exc", "expected"),
    [
        (AuthenticationError("x"), "authentication"),
        (NotFoundError("x"), "not_found"),
        (RateLimitedError(1), "rate_limited"),
        (SyncInProgressError(), "sync_in_progress"),
        (WorkflowyApiError("x"), "remote_unavailable"),
        (ValueError("x"), "internal"),
    ],
)
def test_error_type(exc: Exception, expected: str) -> None:
    assert error_type(exc) == expected
