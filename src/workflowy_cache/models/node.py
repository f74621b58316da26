"""Domain models for the Workflowy cache."""

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any


def _epoch_to_iso(value: Any) -> str | None:
    if value is None or value == "":
        return None
    try:
        return datetime.fromtimestamp(float(value), tz=UTC).isoformat()
    except (TypeError, ValueError, OverflowError):
        return None


@dataclass(frozen=True)
class Node:
    """A node as stored in the local cache."""

    id: str
    name: str
    note: str = ""
    parent_id: str | None = None
    completed: bool = False
    priority: int = 0
    children_count: int = 0
    created_at: str | None = None
    updated_at: str | None = None


@dataclass(frozen=True)
class RemoteNode:
    """A node record returned by the remote API.

    The export endpoint includes ``parent_id`` and a boolean ``completed``;
    the single-node and child-list endpoints omit the parent and report
    completion as a ``completedAt`` timestamp.
    """

    id: str
    name: str = ""
    note: str = ""
    parent_id: str | None = None
    completed: bool = False
    priority: int = 0
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "RemoteNode":
        if not isinstance(data, dict):
            msg = f"Remote node is not an object: {data!r}"
            raise ValueError(msg)
        node_id = data.get("id")
        if not isinstance(node_id, str) or not node_id:
            msg = f"Remote node without id: {data!r}"
            raise ValueError(msg)

        completed = bool(data.get("completed")) or data.get("completedAt") is not None
        priority = data.get("priority")
        return cls(
            id=node_id,
            name=data.get("name") or "",
            note=data.get("note") or "",
            parent_id=data.get("parent_id") or None,
            completed=completed,
            priority=int(priority) if isinstance(priority, int | float) else 0,
            created_at=_epoch_to_iso(data.get("createdAt")),
            updated_at=_epoch_to_iso(data.get("modifiedAt")),
        )

    def to_node(self, *, parent_id: str | None, children_count: int) -> Node:
        return Node(
            id=self.id,
            name=self.name,
            note=self.note,
            parent_id=parent_id,
            completed=self.completed,
            priority=self.priority,
            children_count=children_count,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


@dataclass(frozen=True)
class Bookmark:
    """A named shortcut to a node, with notes for future sessions."""

    name: str
    node_id: str
    context: str | None = None
    created_at: str | None = None


@dataclass
class NodeTree:
    """A node with its children expanded down to a depth bound.

    ``children`` is None when the node was not expanded (depth boundary or
    leaf); ``children_count`` tells the two apart.
    """

    id: str
    name: str
    note: str | None
    parent_id: str | None
    completed: bool
    children_count: int
    children: list["NodeTree"] | None = None

    @classmethod
    def from_node(cls, node: Node) -> "NodeTree":
        return cls(
            id=node.id,
            name=node.name,
            note=node.note or None,
            parent_id=node.parent_id,
            completed=node.completed,
            children_count=node.children_count,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "note": self.note,
            "parent_id": self.parent_id,
            "completed": self.completed,
            "children_count": self.children_count,
        }
        if self.children:
            data["children"] = [c.to_dict() for c in self.children]
        return data


@dataclass(frozen=True)
class ChildPreview:
    name: str
    children_count: int


@dataclass(frozen=True)
class SearchResult:
    """A scored search hit with its ancestor path and first children."""

    node: Node
    score: float
    path: tuple[str, ...] = ()
    path_display: str = ""
    children_preview: tuple[ChildPreview, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.node.id,
            "name": self.node.name,
            "note": self.node.note or None,
            "parent_id": self.node.parent_id,
            "completed": self.node.completed,
            "children_count": self.node.children_count,
            "children_preview": [
                {"name": c.name, "children_count": c.children_count}
                for c in self.children_preview
            ],
            "path": list(self.path),
            "path_display": self.path_display,
            "score": round(self.score, 3),
        }


@dataclass(frozen=True)
class SyncResult:
    """Outcome of a successful full sync."""

    nodes_synced: int
    synced_at: str

    def to_dict(self) -> dict[str, Any]:
        return {"success": True, "nodes_synced": self.nodes_synced, "synced_at": self.synced_at}


@dataclass(frozen=True)
class FreshnessResult:
    """Outcome of a freshness check before a read.

    ``synced`` is True when a full sync ran; ``error`` carries the reason the
    existing cache is used as-is (rate limited, lease held, remote failure).
    """

    synced: bool
    error: str | None = None
