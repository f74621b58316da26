"""Write operations against the Workflowy API with optimistic cache updates."""

import sqlite3
from typing import Any

from loguru import logger

from workflowy_cache.config import normalize_parent_id
from workflowy_cache.core.sync.engine import SyncEngine
from workflowy_cache.errors import WorkflowyApiError, error_type


def _failure(e: Exception) -> dict[str, Any]:
    return {"success": False, "error": str(e), "error_type": error_type(e)}


def _api_parent(parent_id: str | None) -> str | None:
    """Top-level shortcuts become None; target shortcuts pass through."""
    return normalize_parent_id(parent_id)


def create_node(
    engine: SyncEngine,
    *,
    name: str,
    parent_id: str | None,
    note: str | None = None,
    position: str | None = None,
) -> dict[str, Any]:
    """Create a node via the Workflowy API.

    Args:
        engine: Sync engine (for the optimistic cache insert).
        name: Text of the new node.
        parent_id: Parent node id, "inbox", "home" or "None" for top level.
        note: Optional note text.
        position: "top" (default) or "bottom".
    """
    if position not in (None, "top", "bottom"):
        return {"success": False, "error": f"Invalid position {position!r}, use 'top' or 'bottom'."}

    try:
        new_id = engine.api.create_node(
            name=name, parent_id=_api_parent(parent_id), note=note, position=position
        )
    except WorkflowyApiError as e:
        return _failure(e)

    try:
        engine.apply_created(new_id, name=name, parent_id=parent_id, note=note, position=position)
    except sqlite3.Error:
        logger.exception("Failed to mirror created node {}", new_id)

    return {"success": True, "node_id": new_id, "parent_id": _api_parent(parent_id)}


def update_node(
    engine: SyncEngine,
    *,
    node_id: str,
    name: str | None = None,
    note: str | None = None,
    completed: bool | None = None,
) -> dict[str, Any]:
    """Edit a node's name, note, or completed state via the Workflowy API.

    Args:
        engine: Sync engine (for the optimistic cache patch).
        node_id: ID of the node to edit.
        name: New name text.
        note: New note text.
        completed: True to complete, False to uncomplete.
    """
    if name is None and note is None and completed is None:
        return {"success": False, "error": "No changes specified. Provide name, note, or completed."}

    text_updated = False
    try:
        if name is not None or note is not None:
            engine.api.update_node(node_id, name=name, note=note)
            text_updated = True
        if completed is not None:
            engine.api.set_completed(node_id, completed)
    except WorkflowyApiError as e:
        if text_updated:
            # The remote already has the new text; pull it into the cache.
            engine.schedule_sync_node(node_id)
        return _failure(e)

    try:
        engine.apply_updated(node_id, name=name, note=note, completed=completed)
    except sqlite3.Error:
        logger.exception("Failed to mirror update of node {}", node_id)

    return {"success": True, "node_id": node_id}


def delete_node(engine: SyncEngine, *, node_id: str) -> dict[str, Any]:
    """Delete a node and its subtree via the Workflowy API."""
    cached = engine.store.get_node(node_id)
    parent_id = cached.parent_id if cached else None

    try:
        engine.api.delete_node(node_id)
    except WorkflowyApiError as e:
        return _failure(e)

    try:
        removed = engine.apply_deleted(node_id, parent_id=parent_id)
    except sqlite3.Error:
        logger.exception("Failed to mirror deletion of node {}", node_id)
        removed = 0

    return {"success": True, "node_id": node_id, "cached_nodes_removed": removed}


def move_node(engine: SyncEngine, *, node_id: str, parent_id: str | None) -> dict[str, Any]:
    """Move a node under a new parent via the Workflowy API."""
    cached = engine.store.get_node(node_id)
    old_parent_id = cached.parent_id if cached else None
    new_parent_id = _api_parent(parent_id)

    if new_parent_id == node_id:
        return {"success": False, "error": "Cannot move a node under itself."}

    try:
        engine.api.move_node(node_id, new_parent_id)
    except WorkflowyApiError as e:
        return _failure(e)

    try:
        engine.apply_moved(node_id, new_parent_id=new_parent_id, old_parent_id=old_parent_id)
    except sqlite3.Error:
        logger.exception("Failed to mirror move of node {}", node_id)

    return {
        "success": True,
        "node_id": node_id,
        "old_parent_id": old_parent_id,
        "parent_id": new_parent_id,
    }
