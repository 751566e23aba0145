"""IndexManager - Central interface for the Aurora file index.

Provides:
- scan(): Extract metadata from directories and upsert it
- upsert_files() / delete_files(): Index mutations
- get_all() / search(): Snapshot reads and FTS5 search
- record_open(): Usage tracking
- get_resurfaced(): Files worth revisiting
- watch_set_paths() / watch_stop(): Live watching

Thread Safety:
- One connection, guarded by an RLock; every public method takes it
- Every mutation runs in a transaction (commit on success, else rollback)
- The watcher thread receives this manager and writes through it
"""

from __future__ import annotations

import logging
import os
import sqlite3
import threading
import time
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

from ..config import (
    get_all_limit,
    get_index_path,
    get_resurface_pool_size,
    get_search_limit,
)
from .disk import FileRecord, scan_directories
from .resurface import ResurfacedFile, select_resurfaced
from .schema import (
    FILE_COLUMNS,
    UPSERT_FILE_SQL,
    check_fts_integrity,
    file_to_row,
    init_database,
    optimize_fts_index,
    rebuild_fts_index,
)
from .watcher import (
    DEBOUNCE_SECONDS,
    IndexWatcher,
    WatchPathError,
    validate_watch_paths,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Iterator

    from .watcher import ChangeKind

logger = logging.getLogger(__name__)

METADATA_FIELDS = (
    "mood",
    "season",
    "vibe_color",
    "location",
    "energy_level",
    "notes",
)

MAX_TAG_COLOR = 6


@dataclass
class IndexStats:
    """Statistics about the file index."""

    file_count: int
    tag_count: int
    cluster_count: int
    last_indexed: datetime | None
    db_size_mb: float


@dataclass
class Tag:
    name: str
    color: int


@dataclass
class FileMetadata:
    """User-supplied metadata attached to one file."""

    file_id: int
    mood: str | None = None
    season: str | None = None
    vibe_color: str | None = None
    location: str | None = None
    energy_level: str | None = None
    notes: str | None = None
    created_at: int | None = None
    updated_at: int | None = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class Cluster:
    id: int
    name: str
    color: str | None
    sort_order: int


class IndexManager:
    """
    Manages the SQLite file index and its live watcher.

    The index is stored at ~/.aurora/aurora.db by default.
    Use environment variables to customize:
    - AURORA_INDEX_PATH: Database location
    - AURORA_GET_ALL_LIMIT / AURORA_SEARCH_LIMIT: Result ceilings
    - AURORA_RESURFACE_POOL: Resurfacing candidate pool (5000)

    Components that need the index (watcher, server tools) are handed an
    IndexManager; get_instance() is only for the process entry points.
    """

    _instance: IndexManager | None = None
    _instance_lock = threading.Lock()

    def __init__(
        self,
        db_path: Path | None = None,
        on_change: Callable[[ChangeKind, list[str]], None] | None = None,
        watch_debounce: float = DEBOUNCE_SECONDS,
    ):
        """
        Initialize the IndexManager.

        Args:
            db_path: Custom database path (uses config default if None)
            on_change: Default callback(kind, paths) for watcher updates
            watch_debounce: Quiet period for watcher batches, in seconds
        """
        self._db_path = db_path or get_index_path()
        self._conn: sqlite3.Connection | None = None
        self._conn_lock = threading.RLock()
        self._on_change = on_change
        self._watch_debounce = watch_debounce
        self._watcher: IndexWatcher | None = None
        self._watch_lock = threading.Lock()

    @classmethod
    def get_instance(cls) -> IndexManager:
        """Get the process-wide IndexManager instance (thread-safe)."""
        with cls._instance_lock:
            if cls._instance is None:
                cls._instance = IndexManager()
            return cls._instance

    @property
    def db_path(self) -> Path:
        """Get the database file path."""
        return self._db_path

    def _get_conn(self) -> sqlite3.Connection:
        """Get or create the database connection (thread-safe)."""
        with self._conn_lock:
            if self._conn is None:
                self._conn = init_database(self._db_path)
            return self._conn

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Hold the connection lock for the duration of a read."""
        with self._conn_lock:
            yield self._get_conn()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block as one transaction: commit on success, else rollback."""
        with self._connection() as conn:
            try:
                yield conn
            except BaseException:
                conn.rollback()
                raise
            conn.commit()

    def close(self) -> None:
        """Stop the watcher and close the database connection."""
        self.watch_stop()
        with self._conn_lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def has_index(self) -> bool:
        """Check if an index database exists."""
        return self._db_path.exists()

    # ─────────────────────────────────────────────────────────────────
    # Mutations
    # ─────────────────────────────────────────────────────────────────

    def upsert_files(self, files: Iterable[FileRecord]) -> int:
        """
        Insert or update files, keyed by path, in one transaction.

        Name, type, size and modified time come from the incoming record.
        Id, created time, open count and last-opened time of an existing
        row are kept. A record that fails is logged and skipped; the rest
        still commit.

        Returns:
            Number of records written
        """
        saved = 0
        with self._transaction() as conn:
            for file in files:
                try:
                    conn.execute(UPSERT_FILE_SQL, file_to_row(file))
                    saved += 1
                except (sqlite3.Error, TypeError, ValueError) as e:
                    logger.warning(
                        "Failed to upsert %s: %s",
                        getattr(file, "path", file),
                        e,
                    )
        return saved

    def delete_file(self, path: str) -> bool:
        """
        Remove one file from the index.

        Tags associations, metadata and the search entry go with it.

        Returns:
            True if a row was removed
        """
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM files WHERE path = ?", (path,))
            return cursor.rowcount > 0

    def delete_files(self, paths: Iterable[str]) -> int:
        """
        Remove files, and everything indexed beneath any path that was a
        directory, in one transaction.

        Returns:
            Number of rows removed
        """
        deleted = 0
        with self._transaction() as conn:
            for path in paths:
                cursor = conn.execute(
                    "DELETE FROM files WHERE path = ?", (path,)
                )
                deleted += cursor.rowcount

                prefix = path.rstrip(os.sep) + os.sep
                cursor = conn.execute(
                    "DELETE FROM files WHERE substr(path, 1, ?) = ?",
                    (len(prefix), prefix),
                )
                deleted += cursor.rowcount
        return deleted

    def record_open(self, path: str, now: float | None = None) -> bool:
        """
        Record that the user opened a file.

        Sets last_opened_at and increments open_count in a single
        statement. Unknown paths are ignored.

        Args:
            path: Absolute path of the file
            now: Unix time of the open (defaults to the current time)

        Returns:
            True if the file was known
        """
        opened_at = int(time.time() if now is None else now)
        with self._transaction() as conn:
            cursor = conn.execute(
                """UPDATE files
                   SET last_opened_at = ?,
                       open_count = open_count + 1
                   WHERE path = ?""",
                (opened_at, path),
            )
            return cursor.rowcount > 0

    def scan(self, directories: Iterable[str | Path]) -> list[FileRecord]:
        """
        Index every regular file under the given directories.

        Invalid directories are skipped. If saving to the database fails
        the error is logged and the scanned files are still returned.

        Returns:
            FileRecords for every file found
        """
        files = scan_directories(directories)
        logger.info("Found %d files total", len(files))

        try:
            saved = self.upsert_files(files)
            logger.info("Saved %d files to database", saved)
        except (sqlite3.Error, OSError) as e:
            logger.error("Failed to save scan results: %s", e)

        return files

    # ─────────────────────────────────────────────────────────────────
    # Reads
    # ─────────────────────────────────────────────────────────────────

    def get_all(self, limit: int | None = None) -> list[FileRecord]:
        """
        Get indexed files, most recently modified first.

        Args:
            limit: Maximum files (default: AURORA_GET_ALL_LIMIT, 1000)
        """
        if limit is None:
            limit = get_all_limit()
        limit = max(1, limit)
        with self._connection() as conn:
            cursor = conn.execute(
                f"SELECT {FILE_COLUMNS} FROM files "
                "ORDER BY modified_at DESC, id DESC LIMIT ?",
                (limit,),
            )
            return [FileRecord.from_row(row) for row in cursor]

    def get_file(self, path: str) -> FileRecord | None:
        """Get a single file by path."""
        with self._connection() as conn:
            row = conn.execute(
                f"SELECT {FILE_COLUMNS} FROM files WHERE path = ?", (path,)
            ).fetchone()
        return FileRecord.from_row(row) if row else None

    def file_count(self) -> int:
        with self._connection() as conn:
            return conn.execute("SELECT COUNT(*) FROM files").fetchone()[0]

    def search(self, query: str, limit: int | None = None) -> list[FileRecord]:
        """
        Search file paths and names.

        Args:
            query: Search query (substring terms, phrases, OR/AND/NOT)
            limit: Maximum results (default: AURORA_SEARCH_LIMIT, 50)

        Returns:
            Matching files ordered by relevance (BM25)
        """
        from .search import search_fts

        if limit is None:
            limit = get_search_limit()
        limit = max(1, limit)
        with self._connection() as conn:
            return search_fts(conn, query, limit=limit)

    def get_resurfaced(
        self, count: int | None = 3, now: datetime | None = None
    ) -> list[ResurfacedFile]:
        """
        Pick files worth showing again.

        The most idle AURORA_RESURFACE_POOL files are considered.

        Args:
            count: Number of recommendations, clamped to [1, 12]
            now: Current time (defaults to now, UTC)
        """
        with self._connection() as conn:
            cursor = conn.execute(
                f"SELECT {FILE_COLUMNS} FROM files "
                "ORDER BY COALESCE(last_opened_at, modified_at) ASC LIMIT ?",
                (get_resurface_pool_size(),),
            )
            files = [FileRecord.from_row(row) for row in cursor]

        return select_resurfaced(files, now=now, count=count)

    def get_stats(self) -> IndexStats:
        """
        Get index statistics.

        Returns:
            IndexStats with counts, size, and last indexing time
        """
        with self._connection() as conn:
            file_count = conn.execute("SELECT COUNT(*) FROM files").fetchone()[0]
            tag_count = conn.execute("SELECT COUNT(*) FROM tags").fetchone()[0]
            cluster_count = conn.execute(
                "SELECT COUNT(*) FROM clusters"
            ).fetchone()[0]
            row = conn.execute("SELECT MAX(indexed_at) FROM files").fetchone()

        last_indexed = None
        if row and row[0]:
            last_indexed = datetime.fromtimestamp(row[0])

        db_size_mb = 0.0
        if self._db_path.exists():
            db_size_mb = self._db_path.stat().st_size / (1024 * 1024)

        return IndexStats(
            file_count=file_count,
            tag_count=tag_count,
            cluster_count=cluster_count,
            last_indexed=last_indexed,
            db_size_mb=db_size_mb,
        )

    # ─────────────────────────────────────────────────────────────────
    # Tags, metadata and placement
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    def _file_id(conn: sqlite3.Connection, path: str) -> int | None:
        row = conn.execute(
            "SELECT id FROM files WHERE path = ?", (path,)
        ).fetchone()
        return row[0] if row else None

    def add_tag(self, path: str, name: str, color: int = 0) -> bool:
        """
        Attach a tag to a file, creating the tag if needed.

        An existing tag takes the given color.

        Returns:
            True if the file is indexed and now carries the tag

        Raises:
            ValueError: If the name is blank or the color is not 0-6
        """
        name = name.strip()
        if not name:
            raise ValueError("Tag name must not be empty")
        if not 0 <= color <= MAX_TAG_COLOR:
            raise ValueError(f"Tag color must be 0-{MAX_TAG_COLOR}, got {color}")

        with self._transaction() as conn:
            file_id = self._file_id(conn, path)
            if file_id is None:
                return False
            conn.execute(
                "INSERT INTO tags (name, color) VALUES (?, ?) "
                "ON CONFLICT(name) DO UPDATE SET color = excluded.color",
                (name, color),
            )
            tag_id = conn.execute(
                "SELECT id FROM tags WHERE name = ?", (name,)
            ).fetchone()[0]
            conn.execute(
                "INSERT OR IGNORE INTO file_tags (file_id, tag_id) "
                "VALUES (?, ?)",
                (file_id, tag_id),
            )
        return True

    def remove_tag(self, path: str, name: str) -> bool:
        """Detach a tag from a file. Returns True if it was attached."""
        with self._transaction() as conn:
            cursor = conn.execute(
                """DELETE FROM file_tags
                   WHERE file_id = (SELECT id FROM files WHERE path = ?)
                     AND tag_id = (SELECT id FROM tags WHERE name = ?)""",
                (path, name),
            )
            return cursor.rowcount > 0

    def get_tags(self, path: str) -> list[Tag]:
        """Tags attached to a file, by name."""
        with self._connection() as conn:
            cursor = conn.execute(
                """SELECT t.name, t.color
                   FROM tags t
                   JOIN file_tags ft ON ft.tag_id = t.id
                   JOIN files f ON f.id = ft.file_id
                   WHERE f.path = ?
                   ORDER BY t.name""",
                (path,),
            )
            return [Tag(name=row["name"], color=row["color"]) for row in cursor]

    def set_metadata(self, path: str, **fields: str | None) -> bool:
        """
        Create or update the metadata row of a file.

        Only the given fields are written; others keep their value.

        Args:
            path: Absolute path of the file
            **fields: Any of mood, season, vibe_color, location,
                energy_level, notes

        Returns:
            True if the file is indexed

        Raises:
            ValueError: If no field or an unknown field is given
        """
        unknown = set(fields) - set(METADATA_FIELDS)
        if unknown:
            raise ValueError(f"Unknown metadata fields: {sorted(unknown)}")
        if not fields:
            raise ValueError("No metadata fields given")

        # Column names come from METADATA_FIELDS, never from user input
        columns = [c for c in METADATA_FIELDS if c in fields]
        placeholders = ", ".join("?" for _ in columns)
        updates = ", ".join(f"{c} = excluded.{c}" for c in columns)
        sql = (
            f"INSERT INTO file_metadata (file_id, {', '.join(columns)}) "
            f"VALUES (?, {placeholders}) "
            f"ON CONFLICT(file_id) DO UPDATE SET {updates}, "
            "updated_at = strftime('%s', 'now')"
        )

        with self._transaction() as conn:
            file_id = self._file_id(conn, path)
            if file_id is None:
                return False
            conn.execute(sql, [file_id, *(fields[c] for c in columns)])
        return True

    def get_metadata(self, path: str) -> FileMetadata | None:
        """Metadata row of a file, if any."""
        with self._connection() as conn:
            row = conn.execute(
                """SELECT m.* FROM file_metadata m
                   JOIN files f ON f.id = m.file_id
                   WHERE f.path = ?""",
                (path,),
            ).fetchone()
        if row is None:
            return None
        return FileMetadata(
            file_id=row["file_id"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            **{c: row[c] for c in METADATA_FIELDS},
        )

    def list_clusters(self) -> list[Cluster]:
        """All clusters in display order."""
        with self._connection() as conn:
            cursor = conn.execute(
                "SELECT id, name, color, sort_order FROM clusters "
                "ORDER BY sort_order, name"
            )
            return [
                Cluster(
                    id=row["id"],
                    name=row["name"],
                    color=row["color"],
                    sort_order=row["sort_order"],
                )
                for row in cursor
            ]

    def set_tile(
        self,
        path: str,
        x: float | None,
        y: float | None,
        cluster: str | None = None,
    ) -> bool:
        """Store a file's position in the spatial grid."""
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE files SET tile_x = ?, tile_y = ?, tile_cluster = ? "
                "WHERE path = ?",
                (x, y, cluster, path),
            )
            return cursor.rowcount > 0

    # ─────────────────────────────────────────────────────────────────
    # Maintenance
    # ─────────────────────────────────────────────────────────────────

    def rebuild_search_index(self) -> int:
        """
        Rebuild and optimize the FTS shadow index from the files table.

        Returns:
            Number of files in the rebuilt index
        """
        with self._connection() as conn:
            rebuild_fts_index(conn)
            optimize_fts_index(conn)
            return conn.execute("SELECT COUNT(*) FROM files").fetchone()[0]

    def check_integrity(self) -> bool:
        """True if the FTS shadow index matches the files table."""
        with self._connection() as conn:
            return check_fts_integrity(conn)

    # ─────────────────────────────────────────────────────────────────
    # File Watcher Methods
    # ─────────────────────────────────────────────────────────────────

    def watch_set_paths(
        self,
        paths: Iterable[str | Path],
        on_change: Callable[[ChangeKind, list[str]], None] | None = None,
    ) -> list[Path]:
        """
        Replace the watched directory set.

        Any running watcher is stopped, and its thread joined, before the
        new one starts, so two sessions never write at the same time.

        Args:
            paths: Absolute directory paths; invalid entries are dropped
            on_change: Callback(kind, paths) after each index update
                (defaults to the one given at construction)

        Returns:
            The directories now being watched

        Raises:
            WatchPathError: If no path is valid (no watcher is started)
        """
        valid = validate_watch_paths(paths)
        if not valid:
            raise WatchPathError(
                "No valid directories to watch "
                "(paths must be absolute, existing directories)"
            )

        with self._watch_lock:
            self._stop_watcher()
            watcher = IndexWatcher(
                self,
                valid,
                on_change=on_change or self._on_change,
                debounce_seconds=self._watch_debounce,
            )
            watcher.start()
            self._watcher = watcher

        return valid

    def watch_stop(self) -> None:
        """Stop the file watcher if running."""
        with self._watch_lock:
            self._stop_watcher()

    def _stop_watcher(self) -> None:
        if self._watcher is not None:
            self._watcher.stop()
            self._watcher = None

    @property
    def watcher_running(self) -> bool:
        """Check if the file watcher is running."""
        return self._watcher is not None and self._watcher.is_running

    @property
    def watch_paths(self) -> list[Path]:
        """Directories of the current watch session (empty if none)."""
        return list(self._watcher.paths) if self._watcher else []

    @property
    def watcher(self) -> IndexWatcher | None:
        return self._watcher
