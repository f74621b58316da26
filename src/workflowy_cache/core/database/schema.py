"""SQLite schema creation and migration for the Workflowy cache."""

import sqlite3

SCHEMA_VERSION = 1

_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS nodes (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL DEFAULT '',
    note TEXT DEFAULT '',
    parent_id TEXT,
    completed INTEGER DEFAULT 0,
    children_count INTEGER DEFAULT 0,
    priority INTEGER DEFAULT 0,
    created_at TEXT,
    updated_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_nodes_parent_id ON nodes(parent_id);
CREATE INDEX IF NOT EXISTS idx_nodes_completed ON nodes(completed);
CREATE INDEX IF NOT EXISTS idx_nodes_priority ON nodes(parent_id, priority);
CREATE INDEX IF NOT EXISTS idx_nodes_name ON nodes(name);
CREATE INDEX IF NOT EXISTS idx_nodes_note ON nodes(note);

CREATE TABLE IF NOT EXISTS sync_meta (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS bookmarks (
    name TEXT PRIMARY KEY,
    node_id TEXT NOT NULL,
    context TEXT,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS metadata (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""

# Columns added after the first release, applied to older files in place.
_ADDED_COLUMNS: dict[str, dict[str, str]] = {
    "nodes": {
        "children_count": "INTEGER DEFAULT 0",
        "priority": "INTEGER DEFAULT 0",
        "created_at": "TEXT",
        "updated_at": "TEXT",
    },
    "bookmarks": {"context": "TEXT"},
}


def create_schema(conn: sqlite3.Connection) -> None:
    """Create all tables and indexes."""
    conn.executescript(_SCHEMA_SQL)
    conn.execute(
        "INSERT OR REPLACE INTO metadata (key, value) VALUES (?, ?)",
        ("schema_version", str(SCHEMA_VERSION)),
    )
    conn.commit()


def get_schema_version(conn: sqlite3.Connection) -> int | None:
    """Return the current schema version, or None if metadata table doesn't exist."""
    try:
        row = conn.execute(
            "SELECT value FROM metadata WHERE key = 'schema_version'"
        ).fetchone()
    except sqlite3.OperationalError:
        return None
    return int(row[0]) if row else None


def _table_columns(conn: sqlite3.Connection, table: str) -> set[str]:
    return {row[1] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()}


def _add_missing_columns(conn: sqlite3.Connection) -> None:
    for table, columns in _ADDED_COLUMNS.items():
        existing = _table_columns(conn, table)
        for column, decl in columns.items():
            if column not in existing:
                conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {decl}")
    conn.commit()


def migrate_schema(conn: sqlite3.Connection) -> None:
    """Create or migrate the database schema to the latest version.

    Files written before the metadata table existed get their tables
    created if missing and any later columns added.
    """
    version = get_schema_version(conn)
    if version is None:
        conn.executescript(
            "CREATE TABLE IF NOT EXISTS nodes (id TEXT PRIMARY KEY, name TEXT NOT NULL DEFAULT '',"
            " note TEXT DEFAULT '', parent_id TEXT, completed INTEGER DEFAULT 0);"
            "CREATE TABLE IF NOT EXISTS bookmarks (name TEXT PRIMARY KEY, node_id TEXT NOT NULL,"
            " created_at TEXT DEFAULT CURRENT_TIMESTAMP);"
        )
        _add_missing_columns(conn)
        create_schema(conn)
