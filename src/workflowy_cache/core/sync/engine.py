"""Keep the local node cache consistent with the remote Workflowy account.

Full syncs replace the whole cache from the rate-limited export endpoint
inside one transaction. Partial syncs refresh a single node or one parent's
children. After a successful remote write the cache is patched at once and
a background partial sync reconciles whatever the server did differently.
"""

import time
from collections import Counter
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from loguru import logger

from workflowy_cache.config import (
    EXPORT_RATE_LIMIT_SECONDS,
    STALE_THRESHOLD_SECONDS,
    SYNC_LEASE_TIMEOUT_SECONDS,
    TARGET_SHORTCUTS,
    normalize_parent_id,
)
from workflowy_cache.core.database.store import CacheStore
from workflowy_cache.core.sync.background import BackgroundTasks
from workflowy_cache.core.sync.rate_limit import RateLimiter
from workflowy_cache.errors import (
    AuthenticationError,
    NotFoundError,
    RateLimitedError,
    SyncError,
    SyncInProgressError,
    WorkflowyApiError,
)
from workflowy_cache.models.node import FreshnessResult, Node, RemoteNode, SyncResult
from workflowy_cache.protocols import WorkflowyApiProtocol

META_LAST_FULL_SYNC = "last_full_sync"
META_NODE_COUNT = "last_sync_node_count"
META_IN_PROGRESS = "sync_in_progress"
META_STARTED_AT = "sync_started_at"


def _parse_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


class SyncEngine:
    """Sync state and operations for one cache store.

    The rate limiter and the lease settings live on the instance, so each
    engine (and each test) is isolated.

    Args:
        store: The cache store to keep in sync.
        api: Remote Workflowy collaborator.
        background: Runner for fire-and-forget reconciliation jobs.
        rate_limiter: Limiter for the export endpoint.
        clock: Wall-clock source in epoch seconds.
        stale_after: Cache age (seconds) after which reads trigger a full sync.
        lease_timeout: Age (seconds) after which a held lease is broken.
        reconcile_depth: Levels refreshed by a child sync (1 = direct children).
    """

    def __init__(
        self,
        store: CacheStore,
        api: WorkflowyApiProtocol,
        *,
        background: BackgroundTasks | None = None,
        rate_limiter: RateLimiter | None = None,
        clock: Callable[[], float] = time.time,
        stale_after: float = STALE_THRESHOLD_SECONDS,
        lease_timeout: float = SYNC_LEASE_TIMEOUT_SECONDS,
        reconcile_depth: int = 1,
    ) -> None:
        self.store = store
        self.api = api
        self.background = background or BackgroundTasks()
        self._clock = clock
        self.rate_limiter = rate_limiter or RateLimiter(EXPORT_RATE_LIMIT_SECONDS, clock=clock)
        self.stale_after = stale_after
        self.lease_timeout = lease_timeout
        self.reconcile_depth = max(1, reconcile_depth)

    def _now_iso(self) -> str:
        return datetime.fromtimestamp(self._clock(), tz=UTC).isoformat()

    # --- state ---

    def last_full_sync(self) -> datetime | None:
        return _parse_iso(self.store.get_meta(META_LAST_FULL_SYNC))

    def is_stale(self) -> bool:
        last = self.last_full_sync()
        if last is None:
            return True
        return self._clock() - last.timestamp() > self.stale_after

    def needs_sync(self) -> bool:
        """Empty cache, no recorded sync, or a sync older than the staleness threshold."""
        if self.store.count_nodes() == 0:
            return True
        return self.is_stale()

    def lease_age(self) -> float | None:
        """Seconds the current lease has been held, or None if no lease is held."""
        if self.store.get_meta(META_IN_PROGRESS) != "true":
            return None
        started = _parse_iso(self.store.get_meta(META_STARTED_AT))
        if started is None:
            return float("inf")
        return self._clock() - started.timestamp()

    def is_syncing(self) -> bool:
        age = self.lease_age()
        return age is not None and age < self.lease_timeout

    def status(self) -> dict[str, Any]:
        last = self.store.get_meta(META_LAST_FULL_SYNC)
        count = self.store.get_meta(META_NODE_COUNT)
        return {
            "cache_node_count": self.store.count_nodes(),
            "cache_last_synced": last or "never",
            "cache_is_stale": self.is_stale(),
            "last_sync_node_count": int(count) if count else None,
            "sync_in_progress": self.is_syncing(),
            "rate_limit_wait_seconds": round(self.rate_limiter.wait_time(), 1),
        }

    # --- lease ---

    def _acquire_lease(self) -> None:
        age = self.lease_age()
        if age is not None:
            if age < self.lease_timeout:
                raise SyncInProgressError()
            logger.warning("Breaking stale sync lease held for {:.0f}s", age)
        with self.store.transaction():
            self.store.set_meta(META_IN_PROGRESS, "true")
            self.store.set_meta(META_STARTED_AT, self._now_iso())

    def _release_lease(self) -> None:
        with self.store.transaction():
            self.store.set_meta(META_IN_PROGRESS, "false")
            self.store.delete_meta(META_STARTED_AT)

    # --- full sync ---

    def full_sync(self, *, ignore_rate_limit: bool = False) -> SyncResult:
        """Replace the whole cache with a fresh export.

        Raises:
            RateLimitedError: The export endpoint was called too recently.
            SyncInProgressError: Another sync holds a fresh lease.
            WorkflowyApiError: The export failed; the previous cache is kept.
        """
        if not ignore_rate_limit:
            wait = self.rate_limiter.wait_time()
            if wait > 0:
                raise RateLimitedError(wait)

        self._acquire_lease()
        try:
            self.rate_limiter.mark()
            remote_nodes = self.api.export_nodes()
            children_counts = Counter(n.parent_id for n in remote_nodes if n.parent_id)
            synced_at = self._now_iso()

            with self.store.transaction():
                self.store.delete_all_nodes()
                self.store.insert_nodes(
                    n.to_node(parent_id=n.parent_id, children_count=children_counts[n.id])
                    for n in remote_nodes
                )
                self.store.set_meta(META_LAST_FULL_SYNC, synced_at)
                self.store.set_meta(META_NODE_COUNT, str(len(remote_nodes)))
        except Exception as e:
            logger.warning("Full sync failed, keeping previous cache: {}", e)
            raise
        finally:
            self._release_lease()

        logger.info("Full sync complete: {} nodes", len(remote_nodes))
        return SyncResult(nodes_synced=len(remote_nodes), synced_at=synced_at)

    def ensure_fresh(self) -> FreshnessResult:
        """Run a full sync if the cache needs one and the rate limit allows it.

        Never raises for sync problems: a refused or failed sync returns the
        reason and the caller reads the existing cache. Authentication
        failures do propagate.
        """
        if not self.needs_sync():
            return FreshnessResult(synced=False)

        if not self.rate_limiter.allowed():
            return FreshnessResult(synced=False, error="Rate limited - using existing cache")

        try:
            self.full_sync()
        except AuthenticationError:
            raise
        except SyncInProgressError:
            return FreshnessResult(synced=False, error="Sync in progress - using existing cache")
        except (SyncError, WorkflowyApiError) as e:
            return FreshnessResult(synced=False, error=str(e))
        return FreshnessResult(synced=True)

    # --- partial sync ---

    def sync_node(self, node_id: str) -> Node | None:
        """Refresh one node's fields, keeping its cached parent and child count.

        A node the remote no longer has is removed with its subtree; returns
        None in that case.
        """
        try:
            remote = self.api.get_node(node_id)
        except NotFoundError:
            self._forget_node(node_id)
            return None

        cached = self.store.get_node(node_id)
        parent_id = cached.parent_id if cached else remote.parent_id
        children_count = cached.children_count if cached else 0
        node = remote.to_node(parent_id=parent_id, children_count=children_count)
        self.store.upsert_node(node)
        return node

    def sync_children(self, parent_id: str | None, *, depth: int | None = None) -> int:
        """Reconcile one parent's cached children with the remote list.

        Children missing from the fresh list are deleted with their subtrees.
        A parent that is not cached is skipped, so no orphan rows are written.
        With depth > 1, children that have children of their own are
        reconciled in turn, one remote call each. Returns the fresh child
        count.
        """
        depth = self.reconcile_depth if depth is None else max(1, depth)
        parent_id = normalize_parent_id(parent_id)

        if (
            parent_id is not None
            and parent_id not in TARGET_SHORTCUTS
            and self.store.get_node(parent_id) is None
        ):
            logger.debug("Skipping child refresh of uncached node {}", parent_id)
            return 0

        try:
            fresh = self.api.list_children(parent_id)
        except NotFoundError:
            if parent_id is None or parent_id in TARGET_SHORTCUTS:
                raise
            self._forget_node(parent_id)
            return 0

        if parent_id in TARGET_SHORTCUTS:
            self._refresh_known_nodes(fresh)
            return len(fresh)

        with self.store.transaction():
            existing_ids = self.store.child_ids(parent_id)
            for remote in fresh:
                cached = self.store.get_node(remote.id)
                count = cached.children_count if cached else 0
                self.store.upsert_node(remote.to_node(parent_id=parent_id, children_count=count))

            gone = existing_ids - {r.id for r in fresh}
            for node_id in gone:
                self.store.delete_node_cascade(node_id)
            if parent_id is not None:
                self.store.set_children_count(parent_id, len(fresh))

        if gone:
            logger.debug("Removed {} stale children of {}", len(gone), parent_id)

        if depth > 1:
            for remote in fresh:
                cached = self.store.get_node(remote.id)
                if cached and cached.children_count > 0:
                    self.sync_children(remote.id, depth=depth - 1)
        return len(fresh)

    def _refresh_known_nodes(self, fresh: list[RemoteNode]) -> None:
        """Update nodes listed under a target whose own id is unknown locally."""
        with self.store.transaction():
            for remote in fresh:
                cached = self.store.get_node(remote.id)
                if cached is None and remote.parent_id is None:
                    continue
                parent_id = remote.parent_id or (cached.parent_id if cached else None)
                count = cached.children_count if cached else 0
                self.store.upsert_node(remote.to_node(parent_id=parent_id, children_count=count))

    def _forget_node(self, node_id: str) -> None:
        cached = self.store.get_node(node_id)
        with self.store.transaction():
            deleted = self.store.delete_node_cascade(node_id)
            if deleted and cached is not None:
                self.store.adjust_children_count(cached.parent_id, -1)
        if deleted:
            logger.debug("Node {} deleted remotely, removed {} cached rows", node_id, deleted)

    # --- background reconciliation ---

    def schedule_sync_children(self, parent_id: str | None) -> None:
        self.background.spawn(f"sync-children:{parent_id}", self.sync_children, parent_id)

    def schedule_sync_node(self, node_id: str) -> None:
        self.background.spawn(f"sync-node:{node_id}", self.sync_node, node_id)

    # --- optimistic updates after remote writes ---

    def apply_created(
        self,
        node_id: str,
        *,
        name: str,
        parent_id: str | None,
        note: str | None = None,
        position: str | None = None,
    ) -> Node | None:
        """Insert a node created remotely, then reconcile its parent in the background."""
        parent_id = normalize_parent_id(parent_id)
        if parent_id in TARGET_SHORTCUTS:
            # The target's node id is unknown; the next full sync places it.
            logger.debug("Created {} under {}, not mirrored until next sync", node_id, parent_id)
            return None

        bounds = self.store.sibling_priority_range(parent_id)
        if bounds is None:
            priority = 0
        elif position == "bottom":
            priority = bounds[1] + 1
        else:
            priority = bounds[0] - 1

        now = self._now_iso()
        node = Node(
            id=node_id,
            name=name,
            note=note or "",
            parent_id=parent_id,
            priority=priority,
            created_at=now,
            updated_at=now,
        )
        with self.store.transaction():
            self.store.upsert_node(node)
            self.store.adjust_children_count(parent_id, 1)

        self.schedule_sync_children(parent_id)
        return node

    def apply_updated(
        self,
        node_id: str,
        *,
        name: str | None = None,
        note: str | None = None,
        completed: bool | None = None,
    ) -> None:
        fields: dict[str, Any] = {}
        if name is not None:
            fields["name"] = name
        if note is not None:
            fields["note"] = note
        if completed is not None:
            fields["completed"] = completed
        self.store.patch_node(node_id, **fields)
        self.schedule_sync_node(node_id)

    def apply_deleted(self, node_id: str, *, parent_id: str | None = None) -> int:
        """Remove a remotely deleted node and its subtree.

        ``parent_id`` is the parent looked up before the remote call; it is
        used when the node is no longer cached.
        """
        cached = self.store.get_node(node_id)
        if cached is not None:
            parent_id = cached.parent_id

        with self.store.transaction():
            deleted = self.store.delete_node_cascade(node_id)
            if deleted:
                self.store.adjust_children_count(parent_id, -1)

        self.schedule_sync_children(parent_id)
        return deleted

    def apply_moved(
        self,
        node_id: str,
        *,
        new_parent_id: str | None,
        old_parent_id: str | None = None,
    ) -> None:
        """Re-parent a remotely moved node, then reconcile both parents."""
        new_parent_id = normalize_parent_id(new_parent_id)
        cached = self.store.get_node(node_id)
        if cached is not None:
            old_parent_id = cached.parent_id

        if new_parent_id in TARGET_SHORTCUTS:
            # Destination unknown locally: the old parent's resync drops the node.
            self.schedule_sync_children(old_parent_id)
            return

        if cached is not None:
            if new_parent_id is not None and self.store.is_descendant(new_parent_id, node_id):
                logger.warning("Move of {} under its own descendant, leaving cache as is", node_id)
            else:
                with self.store.transaction():
                    self.store.patch_node(node_id, parent_id=new_parent_id)
                    self.store.adjust_children_count(old_parent_id, -1)
                    self.store.adjust_children_count(new_parent_id, 1)

        self.schedule_sync_children(old_parent_id)
        if new_parent_id != old_parent_id:
            self.schedule_sync_children(new_parent_id)
