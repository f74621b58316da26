"""Local SQLite mirror of a Workflowy outline with fuzzy search and MCP tools."""

from workflowy_cache.api import WorkflowyApi
from workflowy_cache.core.database.store import CacheStore
from workflowy_cache.core.sync.engine import SyncEngine
from workflowy_cache.protocols import WorkflowyApiProtocol

__all__ = ["CacheStore", "SyncEngine", "WorkflowyApi", "WorkflowyApiProtocol"]
