"""SQLite schema for the Aurora file index.

The schema uses:
- files: One row per indexed file, unique on absolute path
- files_fts: FTS5 shadow index over path and name (external content)
- tags / file_tags: Named color labels, many-to-many with files
- file_metadata: Optional per-file mood/season/notes row
- clusters: Visual groupings, seeded with a default set

IMPORTANT: files_fts must always mirror files.path and files.name. The
triggers below do this inside the same statement as the write to files,
so no caller can leave the shadow index stale.
"""

from __future__ import annotations

import logging
import os
import sqlite3
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .disk import FileRecord

logger = logging.getLogger(__name__)

# Current schema version for migrations
SCHEMA_VERSION = 1

# Default PRAGMAs for all connections (centralized to avoid drift)
DEFAULT_PRAGMAS = {
    "journal_mode": "WAL",  # Better concurrent read performance
    "synchronous": "NORMAL",  # Good balance of safety and speed
    "busy_timeout": 5000,  # Wait up to 5s for locks
    "foreign_keys": "ON",  # Required for ON DELETE CASCADE
}

# Column list shared by every query that builds a FileRecord
FILE_COLUMNS = """id, path, name, file_type, size, created_at, modified_at,
    last_opened_at, open_count, thumbnail_path, tile_x, tile_y,
    tile_cluster, indexed_at"""

# Key-based merge on path: metadata from disk wins, usage history is kept
UPSERT_FILE_SQL = """INSERT INTO files
    (path, name, file_type, size, created_at, modified_at)
    VALUES (?, ?, ?, ?, ?, ?)
    ON CONFLICT(path) DO UPDATE SET
        name = excluded.name,
        file_type = excluded.file_type,
        size = excluded.size,
        modified_at = excluded.modified_at,
        indexed_at = strftime('%s', 'now')"""

DEFAULT_CLUSTERS = [
    ("Ideas I Started", "#FF9500", 1),
    ("In Progress", "#34C759", 2),
    ("Unfinished Projects", "#FF3B30", 3),
    ("Seasonal Files", "#007AFF", 4),
    ("High Energy", "#FFCC00", 5),
    ("Low Energy", "#AF52DE", 6),
]


def file_to_row(file: FileRecord) -> tuple[str, str, str, int, int, int]:
    """
    Convert a FileRecord to a row tuple for UPSERT_FILE_SQL.

    Centralizes field extraction so scans and the watcher write the
    same columns in the same order.
    """
    return (
        file.path,
        file.name,
        file.file_type,
        int(file.size),
        int(file.created_at),
        int(file.modified_at),
    )


def create_connection(db_path: Path | str) -> sqlite3.Connection:
    """
    Create a database connection with standard configuration.

    Args:
        db_path: Path to the SQLite database file (or ":memory:")

    Returns:
        Configured connection with WAL mode, foreign keys and Row factory
    """
    conn = sqlite3.connect(db_path, check_same_thread=False)
    conn.row_factory = sqlite3.Row

    # Apply standard PRAGMAs
    for pragma, value in DEFAULT_PRAGMAS.items():
        conn.execute(f"PRAGMA {pragma}={value}")

    return conn


def get_schema_sql() -> str:
    """Return the complete schema creation SQL."""
    return """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

-- Indexed files (path is the natural key, id is stable across updates)
CREATE TABLE IF NOT EXISTS files (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    path TEXT UNIQUE NOT NULL,
    name TEXT NOT NULL,
    file_type TEXT,
    size INTEGER,
    created_at INTEGER,
    modified_at INTEGER,
    last_opened_at INTEGER,
    open_count INTEGER NOT NULL DEFAULT 0 CHECK (open_count >= 0),
    thumbnail_path TEXT,
    tile_x REAL,                     -- Spatial placement in the grid
    tile_y REAL,
    tile_cluster TEXT,
    indexed_at INTEGER DEFAULT (strftime('%s', 'now'))
);

CREATE INDEX IF NOT EXISTS idx_files_modified ON files(modified_at DESC);
CREATE INDEX IF NOT EXISTS idx_files_cluster ON files(tile_cluster);
CREATE INDEX IF NOT EXISTS idx_files_activity
    ON files(COALESCE(last_opened_at, modified_at));

-- Color labels (color is a Finder-style code 0-6)
CREATE TABLE IF NOT EXISTS tags (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT UNIQUE NOT NULL,
    color INTEGER NOT NULL DEFAULT 0 CHECK (color BETWEEN 0 AND 6)
);

CREATE TABLE IF NOT EXISTS file_tags (
    file_id INTEGER NOT NULL REFERENCES files(id) ON DELETE CASCADE,
    tag_id INTEGER NOT NULL REFERENCES tags(id) ON DELETE CASCADE,
    PRIMARY KEY (file_id, tag_id)
);
CREATE INDEX IF NOT EXISTS idx_file_tags_tag ON file_tags(tag_id);

-- Per-file emotional metadata (at most one row per file)
CREATE TABLE IF NOT EXISTS file_metadata (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    file_id INTEGER UNIQUE NOT NULL
        REFERENCES files(id) ON DELETE CASCADE,
    mood TEXT,
    season TEXT,
    vibe_color TEXT,
    location TEXT,
    energy_level TEXT,
    notes TEXT,
    created_at INTEGER DEFAULT (strftime('%s', 'now')),
    updated_at INTEGER DEFAULT (strftime('%s', 'now'))
);

-- Visual groupings
CREATE TABLE IF NOT EXISTS clusters (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT UNIQUE NOT NULL,
    color TEXT,
    sort_order INTEGER DEFAULT 0
);

-- FTS5 shadow index (external content - shares storage with files table)
-- Only path and name are indexed, never file contents.
-- Trigram tokenizer gives substring matching on names like "q3_report".
CREATE VIRTUAL TABLE IF NOT EXISTS files_fts USING fts5(
    path,
    name,
    content='files',
    content_rowid='id',
    tokenize='trigram'
);

-- Triggers to keep FTS index in sync with files table
CREATE TRIGGER IF NOT EXISTS files_ai AFTER INSERT ON files BEGIN
    INSERT INTO files_fts(rowid, path, name)
    VALUES (new.id, new.path, new.name);
END;

CREATE TRIGGER IF NOT EXISTS files_ad AFTER DELETE ON files BEGIN
    INSERT INTO files_fts(files_fts, rowid, path, name)
    VALUES('delete', old.id, old.path, old.name);
END;

CREATE TRIGGER IF NOT EXISTS files_au AFTER UPDATE OF path, name ON files
BEGIN
    INSERT INTO files_fts(files_fts, rowid, path, name)
    VALUES('delete', old.id, old.path, old.name);
    INSERT INTO files_fts(rowid, path, name)
    VALUES (new.id, new.path, new.name);
END;
"""


def seed_defaults(conn: sqlite3.Connection) -> None:
    """Insert the default clusters (idempotent)."""
    conn.executemany(
        "INSERT OR IGNORE INTO clusters (name, color, sort_order) "
        "VALUES (?, ?, ?)",
        DEFAULT_CLUSTERS,
    )


def init_database(db_path: Path) -> sqlite3.Connection:
    """
    Initialize the database with schema, creating parent directories if needed.

    Safe to call on every startup: the schema and seed data are only
    created when missing.

    Args:
        db_path: Path to the SQLite database file

    Returns:
        Open database connection with check_same_thread=False

    Security:
        Sets file permissions to 0600 (owner read/write only) on new databases
        since the index reveals the layout of the user's files.
    """
    # Ensure parent directory exists
    db_path.parent.mkdir(parents=True, exist_ok=True)

    # Track if this is a new database for permission setting
    is_new_db = not db_path.exists()

    # Create connection with standard configuration
    conn = create_connection(db_path)

    # Must be done after sqlite3.connect() creates the file
    if is_new_db:
        try:
            os.chmod(db_path, 0o600)
            logger.debug("Set secure permissions (0600) on %s", db_path)
        except OSError as e:
            logger.warning(
                "Could not set secure permissions on %s: %s", db_path, e
            )

    # Check current schema version
    sql = "SELECT name FROM sqlite_master "
    sql += "WHERE type='table' AND name='schema_version'"
    cursor = conn.execute(sql)
    if cursor.fetchone() is None:
        # Fresh database - create schema and seed data
        logger.info(
            "Creating fresh database schema (version %d)", SCHEMA_VERSION
        )
        conn.executescript(get_schema_sql())
        conn.execute(
            "INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,)
        )
        seed_defaults(conn)
        conn.commit()
    else:
        cursor = conn.execute("SELECT version FROM schema_version LIMIT 1")
        row = cursor.fetchone()
        current_version = row[0] if row else 0

        if current_version < SCHEMA_VERSION:
            logger.info(
                "Migrating database from version %d to %d",
                current_version,
                SCHEMA_VERSION,
            )
            _run_migrations(conn, current_version, SCHEMA_VERSION)

    return conn


def _run_migrations(
    conn: sqlite3.Connection, from_version: int, to_version: int
) -> None:
    """
    Run schema migrations.

    Args:
        conn: Database connection
        from_version: Current schema version
        to_version: Target schema version
    """
    if from_version < 1:
        # Unversioned database (interrupted first run): create whatever
        # is missing. Every statement is IF NOT EXISTS / OR IGNORE.
        logger.info("Migrating schema v0→v1: creating missing tables")
        conn.executescript(get_schema_sql())
        seed_defaults(conn)

    conn.execute("DELETE FROM schema_version")
    conn.execute("INSERT INTO schema_version (version) VALUES (?)", (to_version,))
    conn.commit()


def rebuild_fts_index(conn: sqlite3.Connection) -> None:
    """
    Rebuild the FTS index from the files table.

    Use this to repair a shadow index that drifted (e.g. after manual edits
    with triggers disabled).
    """
    conn.execute("INSERT INTO files_fts(files_fts) VALUES('rebuild')")
    conn.commit()


def optimize_fts_index(conn: sqlite3.Connection) -> None:
    """
    Optimize the FTS index for better query performance.

    Call periodically after many insertions.
    """
    conn.execute("INSERT INTO files_fts(files_fts) VALUES('optimize')")
    conn.commit()


def check_fts_integrity(conn: sqlite3.Connection) -> bool:
    """
    Verify that files_fts matches the files table exactly.

    Returns:
        True if the shadow index is consistent, False otherwise
    """
    try:
        # rank=1 also compares the index against the content table
        conn.execute(
            "INSERT INTO files_fts(files_fts, rank) VALUES('integrity-check', 1)"
        )
    except sqlite3.DatabaseError as e:
        logger.warning("FTS integrity check failed: %s", e)
        conn.rollback()
        return False
    conn.commit()
    return True
