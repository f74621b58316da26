"""MCP server exposing cached Workflowy search, tree reads and writes."""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from loguru import logger
from mcp.server.fastmcp import Context, FastMCP

from workflowy_cache.api import WorkflowyApi
from workflowy_cache.config import (
    EXCLUDED_NODE_NAMES,
    clamp_depth,
    clamp_limit,
    load_config,
    normalize_parent_id,
    resolve_data_directory,
    resolve_reconcile_depth,
)
from workflowy_cache.core.bookmarks import (
    delete_bookmark,
    get_ai_instructions,
    list_bookmarks,
    refresh_ai_instructions,
    save_bookmark,
)
from workflowy_cache.core.database.store import CacheStore
from workflowy_cache.core.search.searcher import search_nodes
from workflowy_cache.core.sync.background import BackgroundTasks
from workflowy_cache.core.sync.engine import SyncEngine
from workflowy_cache.core.tree.builder import build_node_tree, get_node_tree
from workflowy_cache.core.tree.markdown import format_tree_compact, render_node_compact
from workflowy_cache.core.write import client
from workflowy_cache.errors import AuthenticationError, SyncError, WorkflowyApiError, error_type
from workflowy_cache.models.node import FreshnessResult

DEFAULT_SERVER_INSTRUCTIONS = """\
This MCP server connects to a user's Workflowy account. Workflowy is an outliner
where notes are organized as nested bullet points (nodes).

## Key Concepts
- Nodes have a UUID (id), name (text content), and optional note.
- Nodes nest without limit under other nodes (parent_id).
- Special locations: 'inbox', 'home', or 'None' (top level).

## Start with Bookmarks
Call list_bookmarks first. It returns saved locations with context notes and
the user's custom instructions. If a bookmark matches, read it with
get_node_tree; otherwise use search_nodes.

## Displaying Node Trees
get_node_tree returns a pre-formatted outline. Show it to the user as-is.
Items marked "(N children)" have nested content that can be expanded with a
follow-up get_node_tree call on that node.

## Search with Child Previews
search_nodes returns matches ranked by relevance, each with its path and a
preview of its first 5 children. Use the preview to pick the right result
without extra reads.

## Tips
- Search before creating date or project nodes; update existing nodes instead
  of creating duplicates.
- Save bookmarks with detailed context to speed up future sessions.
- The cache auto-syncs when stale (>1 hour); sync_nodes forces a refresh
  (rate limited to once per minute).
"""


def _error(e: Exception, **extra: Any) -> dict[str, Any]:
    return {"error": str(e), "error_type": error_type(e), **extra}


def _freshness_payload(freshness: FreshnessResult) -> dict[str, Any]:
    payload: dict[str, Any] = {"synced": freshness.synced}
    if freshness.error:
        payload["note"] = freshness.error
    return payload


def _empty_cache_response(**extra: Any) -> dict[str, Any]:
    return {
        "error": "Cache is empty. Run sync_nodes first.",
        "cache_status": "empty",
        "needs_sync": True,
        **extra,
    }


# --- Core functions (testable without MCP context) ---


def workflowy_search(
    engine: SyncEngine,
    *,
    query: str,
    include_completed: bool = False,
    limit: int = 5,
    auto_sync: bool = True,
) -> dict[str, Any]:
    """Search cached nodes with fuzzy ranking.

    Args:
        query: Search text, matched against names and notes.
        include_completed: Include completed nodes.
        limit: Max results (1-100, default 5).
        auto_sync: Run a freshness check (and full sync if needed) first.
    """
    if not query.strip():
        return {"error": "No search query provided.", "results": [], "total_found": 0}
    limit = clamp_limit(limit)

    freshness = FreshnessResult(synced=False)
    if auto_sync:
        try:
            freshness = engine.ensure_fresh()
        except AuthenticationError as e:
            return _error(e)

    node_count = engine.store.count_nodes()
    if node_count == 0:
        return _empty_cache_response(query=query, sync=_freshness_payload(freshness))

    results = search_nodes(
        engine.store, query=query, limit=limit, include_completed=include_completed
    )
    status = engine.status()
    return {
        "query": query,
        "results": [r.to_dict() for r in results],
        "total_found": len(results),
        "cache_status": "populated",
        "cache_last_synced": status["cache_last_synced"],
        "cache_is_stale": status["cache_is_stale"],
        "cache_node_count": node_count,
        "sync": _freshness_payload(freshness),
    }


def workflowy_get_node_tree(
    engine: SyncEngine,
    *,
    node_id: str,
    depth: int = 2,
    output_format: str = "compact",
    refresh: bool = True,
    auto_sync: bool = True,
) -> dict[str, Any]:
    """Read a node (or the top level) and its children from the cache.

    Args:
        node_id: Node ID, or "None" for top-level nodes.
        depth: Levels of children to include (1-10, default 2).
        output_format: "compact" (outline text) or "json" (nested records).
        refresh: Re-fetch the node's direct children first; failures are ignored.
        auto_sync: Run a freshness check (and full sync if needed) first.
    """
    depth = clamp_depth(depth)
    if output_format not in ("compact", "json"):
        return {"error": f"Unknown format {output_format!r}, use 'compact' or 'json'."}
    parent_id = normalize_parent_id(node_id)

    try:
        if auto_sync:
            engine.ensure_fresh()
        if refresh:
            try:
                engine.sync_children(parent_id)
            except AuthenticationError:
                raise
            except WorkflowyApiError as e:
                logger.debug("Child refresh of {} failed, using cache: {}", node_id, e)
    except AuthenticationError as e:
        return _error(e)

    if engine.store.count_nodes() == 0:
        return _empty_cache_response(node_id=node_id)

    if parent_id is None:
        nodes = build_node_tree(engine.store, None, depth, exclude_names=EXCLUDED_NODE_NAMES)
        if output_format == "compact":
            return {
                "content": format_tree_compact(nodes) or "(no nodes)",
                "node_id": None,
                "depth": depth,
            }
        return {"parent_id": None, "depth": depth, "children": [n.to_dict() for n in nodes]}

    tree = get_node_tree(engine.store, parent_id, depth, exclude_names=EXCLUDED_NODE_NAMES)
    if tree is None:
        return {"error": f"Node not found: {node_id}", "error_type": "not_found"}
    if output_format == "compact":
        return {"content": render_node_compact(tree), "node_id": tree.id, "depth": depth}
    return {"node": tree.to_dict(), "depth": depth}


def workflowy_sync_nodes(engine: SyncEngine, *, force: bool = False) -> dict[str, Any]:
    """Run a full sync.

    Without force, a fresh non-empty cache is left alone. The export rate
    limit applies either way.
    """
    if not force and not engine.needs_sync():
        return {"success": True, "skipped": True, "reason": "Cache is fresh.", **engine.status()}
    try:
        result = engine.full_sync()
    except SyncError as e:
        output: dict[str, Any] = {"success": False, **_error(e)}
        retry_after = getattr(e, "retry_after_seconds", None)
        if retry_after is not None:
            output["retry_after_seconds"] = retry_after
        return output
    except WorkflowyApiError as e:
        return {"success": False, **_error(e)}
    return result.to_dict()


def workflowy_server_instructions(engine: SyncEngine, *, base: str | None = None) -> str:
    """Server instructions with the user's AI instructions appended when bookmarked."""
    text = base or load_config().get("serverDescription") or DEFAULT_SERVER_INSTRUCTIONS
    user_instructions = get_ai_instructions(engine.store)
    if user_instructions:
        text += (
            "\n\n## User's Custom Instructions\n"
            "The user has configured the following custom instructions in their Workflowy "
            '"AI Instructions" node. Follow these preferences:\n\n' + user_instructions
        )
    return text


# --- MCP Server Setup ---


@dataclass
class ServerContext:
    """Shared resources for the MCP server lifetime."""

    store: CacheStore
    engine: SyncEngine
    data_dir: Path
    sync_lock: asyncio.Lock = field(default_factory=asyncio.Lock)


def _startup_sync(engine: SyncEngine) -> None:
    if not engine.needs_sync():
        logger.info("Cache is fresh, skipping startup sync")
        return
    logger.info("Cache is stale or empty, starting background sync")
    result = engine.full_sync()
    logger.info("Background sync complete: {} nodes synced", result.nodes_synced)


@asynccontextmanager
async def server_lifespan(_server: FastMCP) -> AsyncIterator[ServerContext]:
    """Open the cache on startup, drain background jobs and close on shutdown."""
    data_dir = resolve_data_directory()
    store = CacheStore.open(data_dir / "cache.db")
    background = BackgroundTasks()
    engine = SyncEngine(
        store,
        WorkflowyApi(),
        background=background,
        reconcile_depth=resolve_reconcile_depth(),
    )

    background.spawn("ai-instructions", refresh_ai_instructions, engine)
    background.spawn("startup-sync", _startup_sync, engine)
    try:
        yield ServerContext(store=store, engine=engine, data_dir=data_dir)
    finally:
        await background.drain()
        store.close()


mcp_server = FastMCP(
    "workflowy-cache",
    instructions=load_config().get("serverDescription") or DEFAULT_SERVER_INSTRUCTIONS,
    lifespan=server_lifespan,
)


def _ctx(mcp_ctx: Context) -> ServerContext:
    return mcp_ctx.request_context.lifespan_context  # type: ignore[return-value]


# --- MCP Tool Wrappers ---


@mcp_server.tool(name="list_bookmarks")
async def list_bookmarks_tool(ctx: Context) -> dict[str, Any]:
    """**START EVERY CONVERSATION BY CALLING THIS TOOL.**

    Returns saved Workflowy locations with context notes AND the user's custom
    AI instructions (user_instructions). Follow those instructions for the
    entire conversation.
    """
    try:
        return list_bookmarks(_ctx(ctx).engine)
    except AuthenticationError as e:
        return _error(e)


@mcp_server.tool(name="save_bookmark")
async def save_bookmark_tool(
    ctx: Context, name: str, node_id: str, context: str | None = None
) -> dict[str, Any]:
    """Save a Workflowy node under a name with context notes.

    The context field is for YOU: describe what the node contains, how items
    are formatted, and when to use it. Check existing bookmarks first to avoid
    duplicates.

    Args:
        name: Friendly name (e.g. 'daily_tasks').
        node_id: The node UUID to bookmark.
        context: Notes for future sessions about this node.
    """
    return save_bookmark(_ctx(ctx).store, name=name, node_id=node_id, context=context)


@mcp_server.tool(name="delete_bookmark")
async def delete_bookmark_tool(ctx: Context, name: str) -> dict[str, Any]:
    """Delete a saved bookmark by name."""
    return delete_bookmark(_ctx(ctx).store, name=name)


@mcp_server.tool(name="search_nodes")
async def search_nodes_tool(
    ctx: Context,
    query: str,
    include_completed: bool = False,
    limit: int = 5,
) -> dict[str, Any]:
    """Search Workflowy nodes by text, tolerating reordered words and typos.

    Returns matches ranked by relevance with their path AND a preview of their
    first 5 children. Use children_preview to judge which result is relevant
    without additional reads.

    Args:
        query: Search text (matches names and notes).
        include_completed: Include completed nodes (default false).
        limit: Max results (1-100, default 5).
    """
    server_ctx = _ctx(ctx)
    async with server_ctx.sync_lock:
        return workflowy_search(
            server_ctx.engine, query=query, include_completed=include_completed, limit=limit
        )


@mcp_server.tool(name="get_node_tree")
async def get_node_tree_tool(
    ctx: Context,
    node_id: str,
    depth: int = 2,
    format: str = "compact",
) -> dict[str, Any]:
    """Get a node and its nested children.

    The compact format is an outline where items show '(N children)' when they
    have nested content. Show it to the user as-is. Use format='json' when
    you need node IDs for follow-up writes.

    Args:
        node_id: Node UUID, or 'None' for top-level nodes.
        depth: Levels of children to include (default 2, max 10).
        format: 'compact' (default) or 'json'.
    """
    server_ctx = _ctx(ctx)
    async with server_ctx.sync_lock:
        return workflowy_get_node_tree(
            server_ctx.engine, node_id=node_id, depth=depth, output_format=format
        )


@mcp_server.tool(name="create_node")
async def create_node_tool(
    ctx: Context,
    name: str,
    parent_id: str,
    note: str | None = None,
    position: str | None = None,
) -> dict[str, Any]:
    """Create a new node.

    Workflowy parses markdown in the name: use a double newline between
    siblings, '#'/'##' for headers, '- ' for bullets and '- [ ] ' for todos,
    so a whole structure can be created in one call.

    Args:
        name: Text content of the node.
        parent_id: 'inbox', 'home', 'None' for top level, or a node UUID.
        note: Optional note.
        position: 'top' (default) or 'bottom'.
    """
    return client.create_node(
        _ctx(ctx).engine, name=name, parent_id=parent_id, note=note, position=position
    )


@mcp_server.tool(name="update_node")
async def update_node_tool(
    ctx: Context,
    node_id: str,
    name: str | None = None,
    note: str | None = None,
    completed: bool | None = None,
) -> dict[str, Any]:
    """Update a node's name, note, or completed status.

    Args:
        node_id: The node UUID to update.
        name: New text.
        note: New note.
        completed: true to mark complete, false to mark incomplete.
    """
    return client.update_node(
        _ctx(ctx).engine, node_id=node_id, name=name, note=note, completed=completed
    )


@mcp_server.tool(name="delete_node")
async def delete_node_tool(ctx: Context, node_id: str) -> dict[str, Any]:
    """Permanently delete a node and all its children. Use with caution."""
    return client.delete_node(_ctx(ctx).engine, node_id=node_id)


@mcp_server.tool(name="move_node")
async def move_node_tool(ctx: Context, node_id: str, parent_id: str) -> dict[str, Any]:
    """Move a node to a different parent.

    Args:
        node_id: The node UUID to move.
        parent_id: 'inbox', 'home', 'None' for top level, or a node UUID.
    """
    return client.move_node(_ctx(ctx).engine, node_id=node_id, parent_id=parent_id)


@mcp_server.tool(name="sync_nodes")
async def sync_nodes_tool(ctx: Context, force: bool = False) -> dict[str, Any]:
    """Sync all Workflowy nodes into the local cache.

    Rate limited to once per minute. Reads sync automatically when the cache
    is empty or stale; use this to force a refresh.

    Args:
        force: Sync even if the cache is fresh (the rate limit still applies).
    """
    server_ctx = _ctx(ctx)
    async with server_ctx.sync_lock:
        return workflowy_sync_nodes(server_ctx.engine, force=force)


@mcp_server.prompt(
    name="server_instructions",
    description="Current server instructions and the user's custom AI instructions",
)
async def server_instructions_prompt() -> str:
    server_ctx: ServerContext = mcp_server.get_context().request_context.lifespan_context
    async with server_ctx.sync_lock:
        try:
            server_ctx.engine.ensure_fresh()
        except AuthenticationError as e:
            logger.warning("Auto-sync on conversation start failed: {}", e)
    return workflowy_server_instructions(server_ctx.engine)


def run_mcp_server() -> None:
    """Run the MCP server with stdio transport."""
    from workflowy_cache.logging_config import configure_logging

    configure_logging(verbose=False)
    mcp_server.run(transport="stdio")
