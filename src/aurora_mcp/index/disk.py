"""Filesystem metadata extraction for the file index.

Turns directory entries into FileRecord values. Only filesystem metadata
is read (stat, name, extension); file contents are never opened.

Traversal rules:
    - Recursive, capped at MAX_SCAN_DEPTH levels below the root
    - Symbolic links are never followed or indexed
    - Unreadable directories and files are logged and skipped
"""

from __future__ import annotations

import logging
import os
import stat
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import sqlite3
    from collections.abc import Iterable, Iterator

logger = logging.getLogger(__name__)

# Guard against pathological or cyclic directory structures
MAX_SCAN_DEPTH = 20


@dataclass
class FileRecord:
    """A single indexed file."""

    path: str
    name: str
    file_type: str
    size: int
    created_at: int
    modified_at: int
    id: int | None = None
    last_opened_at: int | None = None
    open_count: int = 0
    thumbnail_path: str | None = None
    tile_x: float | None = None
    tile_y: float | None = None
    tile_cluster: str | None = None
    indexed_at: int | None = None

    @property
    def activity_at(self) -> int:
        """Last time the user touched the file (opened, else modified)."""
        if self.last_opened_at is not None:
            return self.last_opened_at
        return self.modified_at

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> FileRecord:
        """Build a record from a `files` table row."""
        return cls(
            id=row["id"],
            path=row["path"],
            name=row["name"],
            file_type=row["file_type"] or "",
            size=row["size"] or 0,
            created_at=row["created_at"] or 0,
            modified_at=row["modified_at"] or 0,
            last_opened_at=row["last_opened_at"],
            open_count=row["open_count"] or 0,
            thumbnail_path=row["thumbnail_path"],
            tile_x=row["tile_x"],
            tile_y=row["tile_y"],
            tile_cluster=row["tile_cluster"],
            indexed_at=row["indexed_at"],
        )

    def to_dict(self) -> dict:
        return asdict(self)


def _to_unix(value: float | None) -> int:
    """Convert a stat timestamp to whole unix seconds (0 if unusable)."""
    if value is None:
        return 0
    try:
        seconds = int(value)
    except (TypeError, ValueError, OverflowError):
        return 0
    # Pre-epoch timestamps are treated as unknown
    return max(seconds, 0)


def is_regular_file(path: Path | str) -> bool:
    """True for regular files that are not symbolic links."""
    try:
        st = os.lstat(path)
    except OSError:
        return False
    return stat.S_ISREG(st.st_mode)


def extract_metadata(path: Path | str) -> FileRecord:
    """
    Build a FileRecord from filesystem metadata.

    Args:
        path: Path to a regular file

    Returns:
        FileRecord with id unset

    Raises:
        OSError: If the file's metadata cannot be read at all
            (permission denied, deleted in the meantime, ...)
    """
    abs_path = Path(os.path.abspath(path))
    st = abs_path.stat()

    # st_birthtime only exists on macOS/BSD (and Windows on 3.12+)
    created = getattr(st, "st_birthtime", None)
    if created is None:
        created = st.st_ctime

    suffix = abs_path.suffix
    return FileRecord(
        path=str(abs_path),
        name=abs_path.name or "Unknown",
        file_type=suffix[1:] if suffix else "",
        size=st.st_size,
        created_at=_to_unix(created),
        modified_at=_to_unix(st.st_mtime),
    )


def walk_files(root: Path | str, max_depth: int = MAX_SCAN_DEPTH) -> Iterator[Path]:
    """
    Yield every regular file under root.

    Depth is counted from the root: its direct children are at depth 1.
    Directories at max_depth are not descended into.

    Args:
        root: Directory to walk
        max_depth: Maximum depth of yielded entries

    Yields:
        Paths of regular files, in a stable (name-sorted) order
    """
    stack: list[tuple[Path, int]] = [(Path(root), 0)]

    while stack:
        directory, depth = stack.pop()
        try:
            with os.scandir(directory) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError as e:
            logger.warning("Cannot read directory %s: %s", directory, e)
            continue

        subdirs: list[Path] = []
        for entry in entries:
            try:
                if entry.is_symlink():
                    continue
                if entry.is_dir(follow_symlinks=False):
                    if depth + 1 < max_depth:
                        subdirs.append(Path(entry.path))
                elif entry.is_file(follow_symlinks=False):
                    yield Path(entry.path)
            except OSError as e:
                logger.debug("Skipping %s: %s", entry.path, e)

        # Reversed so the first subdirectory is walked first
        stack.extend((d, depth + 1) for d in reversed(subdirs))


def scan_directory(root: Path | str) -> list[FileRecord]:
    """
    Extract metadata for every regular file under a directory.

    Files whose metadata cannot be read are logged and skipped.
    """
    files: list[FileRecord] = []
    for path in walk_files(root):
        try:
            files.append(extract_metadata(path))
        except OSError as e:
            logger.warning("Skipping file %s: %s", path, e)
    return files


def scan_directories(directories: Iterable[Path | str]) -> list[FileRecord]:
    """
    Scan several directories.

    Nonexistent and non-directory paths are skipped with a warning.

    Args:
        directories: Root directories to scan

    Returns:
        FileRecords for all files found, in directory order
    """
    all_files: list[FileRecord] = []

    for directory in directories:
        root = Path(directory).expanduser()
        if not root.is_dir():
            logger.warning("Skipping non-directory path: %s", directory)
            continue

        files = scan_directory(root)
        logger.info("Scanned %s: %d files", root, len(files))
        all_files.extend(files)

    return all_files
