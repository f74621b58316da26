"""Rebuild nested subtrees from the flat node cache."""

from collections.abc import Collection

from workflowy_cache.config import clamp_depth
from workflowy_cache.core.database.store import CacheStore
from workflowy_cache.models.node import NodeTree


def build_node_tree(
    store: CacheStore,
    node_id: str | None,
    depth: int,
    *,
    exclude_names: Collection[str] = (),
    _current_depth: int = 0,
) -> list[NodeTree]:
    """Return the children of node_id (None = top level) nested down to depth levels.

    Nodes at the depth boundary keep their ``children_count`` but get no
    ``children``. Children whose name is in exclude_names are dropped along
    with their subtrees.
    """
    depth = clamp_depth(depth)
    if _current_depth >= depth:
        return []

    result: list[NodeTree] = []
    for child in store.query_children(node_id):
        if child.name in exclude_names:
            continue
        tree = NodeTree.from_node(child)
        if _current_depth + 1 < depth:
            grandchildren = build_node_tree(
                store,
                child.id,
                depth,
                exclude_names=exclude_names,
                _current_depth=_current_depth + 1,
            )
            if grandchildren:
                tree.children = grandchildren
        result.append(tree)
    return result


def get_node_tree(
    store: CacheStore,
    node_id: str,
    depth: int,
    *,
    exclude_names: Collection[str] = (),
) -> NodeTree | None:
    """Return one cached node with its children expanded, or None if not cached."""
    node = store.get_node(node_id)
    if node is None:
        return None
    tree = NodeTree.from_node(node)
    children = build_node_tree(store, node_id, depth, exclude_names=exclude_names)
    if children:
        tree.children = children
    return tree
