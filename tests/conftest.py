"""Shared pytest fixtures for aurora-mcp tests."""

from __future__ import annotations

import os
import sqlite3
from pathlib import Path

import pytest

from aurora_mcp.index.disk import FileRecord
from aurora_mcp.index.manager import IndexManager
from aurora_mcp.index.schema import (
    SCHEMA_VERSION,
    UPSERT_FILE_SQL,
    file_to_row,
    get_schema_sql,
    seed_defaults,
)

# 2024-01-15 00:00:00 UTC
BASE_TS = 1705276800


@pytest.fixture
def temp_db():
    """Create an in-memory database with the schema."""
    conn = sqlite3.connect(":memory:")
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys=ON")
    conn.executescript(get_schema_sql())
    conn.execute(
        "INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,)
    )
    seed_defaults(conn)
    conn.commit()
    yield conn
    conn.close()


@pytest.fixture
def temp_db_path(tmp_path_factory) -> Path:
    """Return a temporary database path outside tmp_path.

    Tests watch and scan tmp_path; the database must not be part of it.
    """
    return tmp_path_factory.mktemp("db") / "test_index.db"


@pytest.fixture
def manager(temp_db_path: Path):
    """IndexManager on a temporary database, closed after the test."""
    m = IndexManager(db_path=temp_db_path, watch_debounce=0.2)
    yield m
    m.close()


def make_record(
    path: str,
    modified_at: int = BASE_TS,
    size: int = 100,
    last_opened_at: int | None = None,
) -> FileRecord:
    """Build a FileRecord without touching the filesystem."""
    name = path.rsplit("/", 1)[-1]
    _, dot, ext = name.rpartition(".")
    return FileRecord(
        path=path,
        name=name,
        file_type=ext if dot else "",
        size=size,
        created_at=modified_at,
        modified_at=modified_at,
        last_opened_at=last_opened_at,
    )


@pytest.fixture
def record_factory():
    """Return make_record for tests that build their own records."""
    return make_record


@pytest.fixture
def sample_files() -> list[FileRecord]:
    """Return sample file records for testing."""
    return [
        make_record("/home/me/Documents/Q3_report.pdf", BASE_TS - 100),
        make_record("/home/me/Documents/notes.md", BASE_TS - 200),
        make_record("/home/me/Music/summer mix.mp3", BASE_TS - 300),
        make_record("/home/me/Projects/aurora/draft-v2.txt", BASE_TS - 400),
        make_record("/home/me/Pictures/IMG_0042.jpg", BASE_TS - 500),
    ]


@pytest.fixture
def populated_db(temp_db: sqlite3.Connection, sample_files: list[FileRecord]):
    """Database with sample files inserted.

    Uses UPSERT_FILE_SQL from schema.py to ensure consistency with
    production code.
    """
    for record in sample_files:
        temp_db.execute(UPSERT_FILE_SQL, file_to_row(record))
    temp_db.commit()
    return temp_db


@pytest.fixture
def file_tree(tmp_path: Path) -> Path:
    """Create a small directory tree of real files.

    Layout:
        tree/report.pdf
        tree/README
        tree/sub/notes.md
        tree/sub/deeper/photo.jpg
    """
    root = tmp_path / "tree"
    (root / "sub" / "deeper").mkdir(parents=True)
    (root / "report.pdf").write_bytes(b"%PDF-1.4 fake")
    (root / "README").write_text("readme")
    (root / "sub" / "notes.md").write_text("# notes\n")
    (root / "sub" / "deeper" / "photo.jpg").write_bytes(b"\xff\xd8\xff")

    old = BASE_TS - 30 * 86400
    os.utime(root / "report.pdf", (old, old))
    return root
