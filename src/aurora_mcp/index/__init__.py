"""SQLite file index with FTS5 search and live watching.

This module provides:
- IndexManager: Main interface for scanning, searching and tracking files
- IndexWatcher: Real-time file watcher for automatic index updates
- select_resurfaced(): Pick idle files worth showing again
- FTS5 substring search over paths and names with BM25 ranking
"""

from .disk import FileRecord
from .manager import IndexManager, IndexStats
from .resurface import ResurfacedFile, select_resurfaced
from .watcher import ChangeKind, IndexWatcher, WatchPathError

__all__ = [
    "ChangeKind",
    "FileRecord",
    "IndexManager",
    "IndexStats",
    "IndexWatcher",
    "ResurfacedFile",
    "WatchPathError",
    "select_resurfaced",
]
