"""Persistent cache store: nodes, sync metadata and bookmarks in one SQLite file."""

import sqlite3
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from loguru import logger

from workflowy_cache.core.database.schema import migrate_schema
from workflowy_cache.models.node import Bookmark, Node

_NODE_COLUMNS = (
    "id, name, note, parent_id, completed, children_count, priority, created_at, updated_at"
)


def _row_to_node(row: sqlite3.Row | tuple) -> Node:
    return Node(
        id=row[0],
        name=row[1] or "",
        note=row[2] or "",
        parent_id=row[3],
        completed=bool(row[4]),
        children_count=row[5] or 0,
        priority=row[6] or 0,
        created_at=row[7],
        updated_at=row[8],
    )


def _node_params(n: Node) -> tuple[Any, ...]:
    return (
        n.id, n.name, n.note, n.parent_id, int(n.completed),
        n.children_count, n.priority, n.created_at, n.updated_at,
    )


def _like_pattern(term: str) -> str:
    escaped = term.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _unicode_lower(value: str | None) -> str | None:
    return value.lower() if value else value


def _parent_clause(parent_id: str | None) -> tuple[str, list[Any]]:
    if parent_id is None:
        return "parent_id IS NULL", []
    return "parent_id = ?", [parent_id]


class CacheStore:
    """Owner of every persisted row.

    Each mutating call is committed (flushed to disk) immediately unless it
    runs inside ``transaction()``, in which case the whole block commits or
    rolls back as one.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn
        self._tx_depth = 0
        # SQLite's lower() only folds ASCII.
        conn.create_function("unicode_lower", 1, _unicode_lower, deterministic=True)
        migrate_schema(conn)

    @classmethod
    def open(cls, db_path: Path) -> "CacheStore":
        db_path.parent.mkdir(parents=True, exist_ok=True)
        logger.debug("Opening cache store {}", db_path)
        return cls(sqlite3.connect(str(db_path)))

    def close(self) -> None:
        self.conn.close()

    # --- transactions ---

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Group mutations so they commit together or not at all."""
        if self._tx_depth:
            yield
            return
        self.conn.commit()
        self._tx_depth = 1
        try:
            yield
        except BaseException:
            self.conn.rollback()
            raise
        else:
            self.conn.commit()
        finally:
            self._tx_depth = 0

    def _flush(self) -> None:
        if not self._tx_depth:
            self.conn.commit()

    # --- node reads ---

    def count_nodes(self) -> int:
        return self.conn.execute("SELECT COUNT(*) FROM nodes").fetchone()[0]

    def get_node(self, node_id: str) -> Node | None:
        row = self.conn.execute(
            f"SELECT {_NODE_COLUMNS} FROM nodes WHERE id = ?", (node_id,)
        ).fetchone()
        return _row_to_node(row) if row else None

    def all_nodes(self) -> list[Node]:
        rows = self.conn.execute(f"SELECT {_NODE_COLUMNS} FROM nodes ORDER BY id").fetchall()
        return [_row_to_node(r) for r in rows]

    def query_children(self, parent_id: str | None, *, limit: int | None = None) -> list[Node]:
        """Direct children of a parent (None = top level), ordered by priority then name."""
        where, params = _parent_clause(parent_id)
        sql = f"SELECT {_NODE_COLUMNS} FROM nodes WHERE {where} ORDER BY priority, name"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        return [_row_to_node(r) for r in self.conn.execute(sql, params).fetchall()]

    def child_ids(self, parent_id: str | None) -> set[str]:
        where, params = _parent_clause(parent_id)
        rows = self.conn.execute(f"SELECT id FROM nodes WHERE {where}", params).fetchall()
        return {r[0] for r in rows}

    def sibling_priority_range(self, parent_id: str | None) -> tuple[int, int] | None:
        where, params = _parent_clause(parent_id)
        row = self.conn.execute(
            f"SELECT MIN(priority), MAX(priority) FROM nodes WHERE {where}", params
        ).fetchone()
        if row is None or row[0] is None:
            return None
        return row[0], row[1]

    def query_by_text_pattern(
        self,
        terms: Iterable[str],
        *,
        require_all: bool = False,
        include_completed: bool = False,
        limit: int | None = None,
    ) -> list[Node]:
        """Nodes whose name or note contains the terms as case-insensitive substrings.

        Args:
            terms: Substrings to look for.
            require_all: Every term must match (AND) instead of any (OR).
            include_completed: Include completed nodes.
            limit: Max rows, None for unbounded.
        """
        term_list = [t for t in terms if t]
        if not term_list:
            return []

        clauses: list[str] = []
        params: list[Any] = []
        for term in term_list:
            pattern = _like_pattern(term)
            clauses.append(
                "(unicode_lower(name) LIKE ? ESCAPE '\\' "
                "OR unicode_lower(COALESCE(note, '')) LIKE ? ESCAPE '\\')"
            )
            params.extend([pattern, pattern])

        joiner = " AND " if require_all else " OR "
        sql = f"SELECT {_NODE_COLUMNS} FROM nodes WHERE ({joiner.join(clauses)})"
        if not include_completed:
            sql += " AND completed = 0"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        return [_row_to_node(r) for r in self.conn.execute(sql, params).fetchall()]

    def is_descendant(self, node_id: str, ancestor_id: str) -> bool:
        """True if ancestor_id appears on node_id's parent chain (or is node_id)."""
        current: str | None = node_id
        visited: set[str] = set()
        while current and current not in visited:
            if current == ancestor_id:
                return True
            visited.add(current)
            row = self.conn.execute(
                "SELECT parent_id FROM nodes WHERE id = ?", (current,)
            ).fetchone()
            current = row[0] if row else None
        return False

    # --- node writes ---

    def upsert_node(self, node: Node) -> None:
        self.conn.execute(
            f"INSERT OR REPLACE INTO nodes ({_NODE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            _node_params(node),
        )
        self._flush()

    def insert_nodes(self, nodes: Iterable[Node]) -> None:
        self.conn.executemany(
            f"INSERT OR REPLACE INTO nodes ({_NODE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            [_node_params(n) for n in nodes],
        )
        self._flush()

    def delete_all_nodes(self) -> None:
        self.conn.execute("DELETE FROM nodes")
        self._flush()

    def patch_node(self, node_id: str, **fields: Any) -> bool:
        """Update the given columns of one node. Returns False if it is not cached."""
        allowed = {"name", "note", "parent_id", "completed", "priority", "children_count"}
        unknown = set(fields) - allowed
        if unknown:
            msg = f"Cannot patch columns {sorted(unknown)!r}"
            raise ValueError(msg)
        if not fields:
            return self.get_node(node_id) is not None

        assignments = ", ".join(f"{k} = ?" for k in fields)
        values = [int(v) if k == "completed" else v for k, v in fields.items()]
        cur = self.conn.execute(
            f"UPDATE nodes SET {assignments} WHERE id = ?", [*values, node_id]
        )
        self._flush()
        return cur.rowcount > 0

    def set_children_count(self, node_id: str, count: int) -> None:
        self.conn.execute("UPDATE nodes SET children_count = ? WHERE id = ?", (count, node_id))
        self._flush()

    def adjust_children_count(self, node_id: str | None, delta: int) -> None:
        if node_id is None:
            return
        self.conn.execute(
            "UPDATE nodes SET children_count = MAX(0, COALESCE(children_count, 0) + ?) "
            "WHERE id = ?",
            (delta, node_id),
        )
        self._flush()

    def delete_node_cascade(self, node_id: str) -> int:
        """Remove a node and all of its descendants. Returns the number of rows deleted."""
        # Walk the subtree with an explicit stack; the visited set tolerates cycles.
        stack = [node_id]
        doomed: list[str] = []
        visited: set[str] = set()
        while stack:
            current = stack.pop()
            if current in visited:
                continue
            visited.add(current)
            doomed.append(current)
            rows = self.conn.execute(
                "SELECT id FROM nodes WHERE parent_id = ?", (current,)
            ).fetchall()
            stack.extend(r[0] for r in rows)

        deleted = 0
        # Children first, so a failure midway never leaves an orphan behind.
        for current in reversed(doomed):
            deleted += self.conn.execute("DELETE FROM nodes WHERE id = ?", (current,)).rowcount
        self._flush()
        return deleted

    # --- sync metadata ---

    def get_meta(self, key: str) -> str | None:
        row = self.conn.execute("SELECT value FROM sync_meta WHERE key = ?", (key,)).fetchone()
        return row[0] if row else None

    def set_meta(self, key: str, value: str) -> None:
        self.conn.execute(
            "INSERT OR REPLACE INTO sync_meta (key, value) VALUES (?, ?)", (key, value)
        )
        self._flush()

    def delete_meta(self, key: str) -> None:
        self.conn.execute("DELETE FROM sync_meta WHERE key = ?", (key,))
        self._flush()

    # --- bookmarks ---

    def save_bookmark(self, name: str, node_id: str, context: str | None = None) -> None:
        with self.transaction():
            self.conn.execute("DELETE FROM bookmarks WHERE name = ?", (name,))
            self.conn.execute(
                "INSERT INTO bookmarks (name, node_id, context) VALUES (?, ?, ?)",
                (name, node_id, context),
            )

    def get_bookmark(self, name: str) -> Bookmark | None:
        row = self.conn.execute(
            "SELECT name, node_id, context, created_at FROM bookmarks WHERE name = ?", (name,)
        ).fetchone()
        return Bookmark(*row) if row else None

    def list_bookmarks(self) -> list[Bookmark]:
        rows = self.conn.execute(
            "SELECT name, node_id, context, created_at FROM bookmarks ORDER BY name"
        ).fetchall()
        return [Bookmark(*r) for r in rows]

    def delete_bookmark(self, name: str) -> bool:
        cur = self.conn.execute("DELETE FROM bookmarks WHERE name = ?", (name,))
        self._flush()
        return cur.rowcount > 0
