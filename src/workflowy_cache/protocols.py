"""Protocols for dependency injection of the remote Workflowy collaborator."""

from typing import Protocol, runtime_checkable

from workflowy_cache.models.node import RemoteNode


@runtime_checkable
class WorkflowyApiProtocol(Protocol):
    """Protocol for Workflowy API clients.

    Every method raises ``WorkflowyApiError`` (or a subclass) on failure.
    ``parent_id`` arguments accept a node id, ``None`` for the top level, or
    a target shortcut such as ``"inbox"``.
    """

    def export_nodes(self) -> list[RemoteNode]:
        """Return every node in the account (rate limited remotely)."""
        ...

    def get_node(self, node_id: str) -> RemoteNode:
        """Return one node; raises NotFoundError if it was deleted."""
        ...

    def list_children(self, parent_id: str | None) -> list[RemoteNode]:
        """Return the direct children of a parent."""
        ...

    def create_node(
        self,
        *,
        name: str,
        parent_id: str | None,
        note: str | None = None,
        position: str | None = None,
    ) -> str:
        """Create a node and return its new id."""
        ...

    def update_node(
        self, node_id: str, *, name: str | None = None, note: str | None = None
    ) -> None:
        """Change a node's name and/or note."""
        ...

    def set_completed(self, node_id: str, completed: bool) -> None:
        """Mark a node complete or incomplete."""
        ...

    def delete_node(self, node_id: str) -> None:
        """Delete a node and its subtree."""
        ...

    def move_node(self, node_id: str, parent_id: str | None) -> None:
        """Move a node under a new parent."""
        ...
