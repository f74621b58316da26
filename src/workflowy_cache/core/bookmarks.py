"""Named bookmarks to nodes, and the user's AI instructions bookmark."""

from typing import Any

from loguru import logger

from workflowy_cache.config import AI_INSTRUCTIONS_BOOKMARK
from workflowy_cache.core.database.store import CacheStore
from workflowy_cache.core.sync.engine import SyncEngine
from workflowy_cache.core.tree.builder import get_node_tree
from workflowy_cache.core.tree.markdown import format_instruction_tree
from workflowy_cache.errors import AuthenticationError, WorkflowyApiError

_INSTRUCTIONS_DEPTH = 3


def get_ai_instructions(store: CacheStore) -> str | None:
    """Render the ai_instructions bookmark's node as text, or None if unset or empty."""
    bookmark = store.get_bookmark(AI_INSTRUCTIONS_BOOKMARK)
    if bookmark is None:
        return None
    tree = get_node_tree(store, bookmark.node_id, _INSTRUCTIONS_DEPTH)
    if tree is None:
        return None
    return format_instruction_tree(tree)


def refresh_ai_instructions(engine: SyncEngine) -> None:
    """Refresh the children of the ai_instructions node, ignoring remote failures."""
    bookmark = engine.store.get_bookmark(AI_INSTRUCTIONS_BOOKMARK)
    if bookmark is None:
        return
    try:
        engine.sync_children(bookmark.node_id)
    except AuthenticationError:
        raise
    except WorkflowyApiError as e:
        logger.debug("Could not refresh AI instructions: {}", e)


def list_bookmarks(engine: SyncEngine) -> dict[str, Any]:
    """List bookmarks with the user's AI instructions.

    The ai_instructions node is refreshed before answering; every other
    bookmarked node is refreshed in the background.
    """
    bookmarks = engine.store.list_bookmarks()

    refresh_ai_instructions(engine)
    for b in bookmarks:
        if b.name != AI_INSTRUCTIONS_BOOKMARK:
            engine.schedule_sync_children(b.node_id)

    response: dict[str, Any] = {
        "_instructions": (
            "READ THIS FIRST: Check user_instructions below for the user's custom AI "
            "preferences. Follow them for this entire conversation."
        ),
        "bookmarks": [
            {
                "name": b.name,
                "node_id": b.node_id,
                "context": b.context,
                "created_at": b.created_at,
            }
            for b in bookmarks
        ],
    }

    instructions = get_ai_instructions(engine.store)
    if instructions:
        response["user_instructions"] = instructions
    elif not any(b.name == AI_INSTRUCTIONS_BOOKMARK for b in bookmarks):
        response["action_required"] = (
            "No 'ai_instructions' bookmark found. Search for a node named 'AI Instructions' "
            "using search_nodes. If found, read it with get_node_tree and save it as "
            "bookmark 'ai_instructions' for future sessions."
        )
    else:
        response["user_instructions"] = "(No custom instructions configured yet)"
    return response


def save_bookmark(
    store: CacheStore, *, name: str, node_id: str, context: str | None = None
) -> dict[str, Any]:
    """Save (or replace) a bookmark."""
    name = name.strip()
    if not name or not node_id.strip():
        return {"success": False, "error": "Bookmark name and node_id are required."}
    store.save_bookmark(name, node_id.strip(), context or None)
    return {"success": True, "name": name, "node_id": node_id.strip(), "context": context or None}


def delete_bookmark(store: CacheStore, *, name: str) -> dict[str, Any]:
    if store.delete_bookmark(name):
        return {"success": True, "name": name}
    return {"success": False, "error": f"Bookmark '{name}' not found."}
