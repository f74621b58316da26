"""Fuzzy search over the node cache without a full-text index."""

from workflowy_cache.config import CANDIDATE_LIMIT, MIN_SEARCH_SCORE
from workflowy_cache.core.database.store import CacheStore
from workflowy_cache.core.search.scoring import normalize, score_text, tokenize
from workflowy_cache.core.tree.navigation import (
    build_node_path,
    format_path,
    get_children_preview,
)
from workflowy_cache.models.node import Node, SearchResult


def find_candidates(
    store: CacheStore,
    query: str,
    *,
    include_completed: bool = False,
    candidate_limit: int = CANDIDATE_LIMIT,
) -> list[Node]:
    """Coarse pre-filter: union of three substring passes, de-duplicated by id.

    1. The whole phrase (unbounded, always relevant).
    2. Every query word somewhere (bounded), for reordered words.
    3. Any query word (bounded), for partial and misspelled matches.

    Passes 2 and 3 only run for multi-word queries.
    """
    phrase = normalize(query)
    if not phrase:
        return []

    candidates: dict[str, Node] = {}

    def add(nodes: list[Node]) -> None:
        for n in nodes:
            candidates.setdefault(n.id, n)

    add(store.query_by_text_pattern([phrase], include_completed=include_completed))

    words = list(dict.fromkeys(tokenize(query)))
    if len(words) >= 2:
        add(
            store.query_by_text_pattern(
                words,
                require_all=True,
                include_completed=include_completed,
                limit=candidate_limit,
            )
        )
        add(
            store.query_by_text_pattern(
                words,
                include_completed=include_completed,
                limit=candidate_limit,
            )
        )

    return list(candidates.values())


def search_nodes(
    store: CacheStore,
    *,
    query: str,
    limit: int = 5,
    include_completed: bool = False,
    min_score: float = MIN_SEARCH_SCORE,
) -> list[SearchResult]:
    """Rank cached nodes against a free-text query.

    Args:
        store: The cache store.
        query: Search text, matched against names and notes.
        limit: Max results to return.
        include_completed: Include completed nodes.
        min_score: Discard candidates scoring below this.

    Returns:
        Results sorted by descending score, each with its breadcrumb path and
        a preview of its first children.
    """
    scored: list[tuple[float, Node]] = []
    for node in find_candidates(store, query, include_completed=include_completed):
        score = score_text(query, node.name, node.note)
        if score >= min_score:
            scored.append((score, node))

    scored.sort(key=lambda item: (-item[0], item[1].name, item[1].id))

    results: list[SearchResult] = []
    for score, node in scored[:limit]:
        path = build_node_path(store, node.id)
        preview = get_children_preview(store, node.id) if node.children_count > 0 else ()
        results.append(
            SearchResult(
                node=node,
                score=score,
                path=path,
                path_display=format_path(path),
                children_preview=preview,
            )
        )
    return results
