"""Tree navigation: breadcrumb paths and child previews."""

from workflowy_cache.config import CHILDREN_PREVIEW_SIZE
from workflowy_cache.core.database.store import CacheStore
from workflowy_cache.models.node import ChildPreview


def build_node_path(store: CacheStore, node_id: str) -> tuple[str, ...]:
    """Names from the top-level ancestor down to the node itself.

    Stops at the first uncached ancestor; a visited set guards against
    parent cycles in cached data.
    """
    path: list[str] = []
    current: str | None = node_id
    visited: set[str] = set()

    while current and current not in visited:
        visited.add(current)
        node = store.get_node(current)
        if node is None:
            break
        path.append(node.name)
        current = node.parent_id

    return tuple(reversed(path))


def format_path(path: tuple[str, ...] | list[str]) -> str:
    """Display a path, eliding the middle of long ones: ``A > ... > Parent > Node``."""
    if not path:
        return "(root)"
    if len(path) > 4:
        return f"{path[0]} > ... > {path[-2]} > {path[-1]}"
    return " > ".join(path)


def get_children_preview(
    store: CacheStore, node_id: str, *, count: int = CHILDREN_PREVIEW_SIZE
) -> tuple[ChildPreview, ...]:
    """First few children of a node, in outline order."""
    return tuple(
        ChildPreview(name=c.name, children_count=c.children_count)
        for c in store.query_children(node_id, limit=count)
    )
