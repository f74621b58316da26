"""CLI for the Workflowy cache (sync, search, tree, MCP server)."""

import json
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Annotated, NoReturn

import typer
from loguru import logger

from workflowy_cache.api import WorkflowyApi
from workflowy_cache.config import resolve_data_directory, resolve_reconcile_depth
from workflowy_cache.core.database.store import CacheStore
from workflowy_cache.core.sync.engine import SyncEngine
from workflowy_cache.errors import WorkflowyApiError
from workflowy_cache.logging_config import configure_logging
from workflowy_cache.mcp.server import (
    run_mcp_server,
    workflowy_get_node_tree,
    workflowy_search,
    workflowy_sync_nodes,
)

app = typer.Typer(help="Workflowy cache: sync, search and browse your Workflowy outline.")

DataDirOption = Annotated[
    Path | None,
    typer.Option("--data-dir", "-d", help="Cache database directory"),
]


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    configure_logging(verbose=verbose)


@contextmanager
def _open_engine(data_dir: Path | None) -> Iterator[SyncEngine]:
    """Open the cache, yield an engine, then run queued reconciliation and close."""
    dst = data_dir or resolve_data_directory()
    dst.mkdir(parents=True, exist_ok=True)
    store = CacheStore.open(dst / "cache.db")
    engine = SyncEngine(store, WorkflowyApi(), reconcile_depth=resolve_reconcile_depth())
    try:
        yield engine
        engine.background.run_pending()
    finally:
        store.close()


def _fail(message: str) -> NoReturn:
    logger.error(message)
    raise typer.Exit(1)


@app.command()
def sync(
    force: bool = typer.Option(False, "--force", "-f", help="Sync even if the cache is fresh"),
    data_dir: DataDirOption = None,
) -> None:
    """Replace the local cache with a full export."""
    with _open_engine(data_dir) as engine:
        result = workflowy_sync_nodes(engine, force=force)
    if not result.get("success"):
        _fail(f"Sync failed: {result.get('error')}")
    if result.get("skipped"):
        typer.echo(f"Cache is fresh ({result['cache_node_count']} nodes), use --force to resync.")
    else:
        typer.echo(f"Synced {result['nodes_synced']} nodes at {result['synced_at']}")


@app.command()
def search(
    query: str = typer.Argument(..., help="Search query"),
    limit: int = typer.Option(5, "--limit", "-n", help="Max results (1-100)"),
    include_completed: bool = typer.Option(
        False, "--all", "-a", help="Include completed nodes"
    ),
    no_sync: bool = typer.Option(False, "--no-sync", help="Do not sync a stale cache first"),
    data_dir: DataDirOption = None,
    output_json: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
) -> None:
    """Search cached nodes by fuzzy text match."""
    with _open_engine(data_dir) as engine:
        result = workflowy_search(
            engine,
            query=query,
            limit=limit,
            include_completed=include_completed,
            auto_sync=not no_sync,
        )

    if output_json:
        typer.echo(json.dumps(result, indent=2))
        return
    if "error" in result:
        _fail(result["error"])

    typer.echo(f"Found {result['total_found']} results:\n")
    for r in result["results"]:
        typer.echo(f"  {r['name'][:80]}  ({r['score']})")
        if r["note"]:
            typer.echo(f"    note: {r['note'][:60]}")
        typer.echo(f"    id={r['id']}  path={r['path_display']}")
        typer.echo()


@app.command()
def tree(
    node_id: str = typer.Argument("None", help="Node ID, or 'None' for the top level"),
    depth: int = typer.Option(2, "--depth", "-D", help="Levels of children (1-10)"),
    no_refresh: bool = typer.Option(
        False, "--no-refresh", help="Read the cache without refreshing children"
    ),
    data_dir: DataDirOption = None,
    output_json: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
) -> None:
    """Print a node and its children as an outline."""
    with _open_engine(data_dir) as engine:
        result = workflowy_get_node_tree(
            engine,
            node_id=node_id,
            depth=depth,
            output_format="json" if output_json else "compact",
            refresh=not no_refresh,
        )

    if "error" in result:
        _fail(result["error"])
    if output_json:
        typer.echo(json.dumps(result, indent=2))
    else:
        typer.echo(result["content"])


@app.command()
def status(data_dir: DataDirOption = None) -> None:
    """Show cache size, freshness and sync state."""
    dst = data_dir or resolve_data_directory()
    db_path = dst / "cache.db"
    if not db_path.exists():
        _fail(f"Cache database not found: {db_path}. Run 'sync' first.")

    store = CacheStore.open(db_path)
    try:
        # Status never calls the API, so no key is needed.
        engine = SyncEngine(store, WorkflowyApi(api_key=""))
        info = engine.status()
    finally:
        store.close()

    typer.echo(f"Database:     {db_path}")
    typer.echo(f"Nodes:        {info['cache_node_count']}")
    typer.echo(f"Last synced:  {info['cache_last_synced']}")
    typer.echo(f"Stale:        {'yes' if info['cache_is_stale'] else 'no'}")
    typer.echo(f"Sync running: {'yes' if info['sync_in_progress'] else 'no'}")


@app.command()
def serve() -> None:
    """Start the MCP server (stdio transport)."""
    run_mcp_server()


@app.command(name="check-key")
def check_key() -> None:
    """Verify that the configured API key is accepted."""
    try:
        WorkflowyApi().validate_token()
    except WorkflowyApiError as e:
        _fail(str(e))
    typer.echo("API key OK")
