"""
Aurora MCP Server

Provides MCP tools over the Aurora file index: metadata for files on disk,
substring search on paths and names, open tracking, and resurfacing of
files the user has not touched in a while.

TOOLS:
- scan(directories) - Index every file under directories
- get_all_files() - Indexed files, newest first
- search_files(query) - FTS5 search on path and name
- record_open(path) - Track that a file was opened
- get_resurfaced(count?) - Files worth revisiting
- watch_set_paths(paths) / watch_stop() - Live index updates
- get_file_count(), list_clusters()
- tag_file(path, tag, color?), get_file_tags(path)
- update_file_metadata(path, ...), get_file_metadata(path)
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from typing_extensions import TypedDict

from fastmcp import FastMCP

if TYPE_CHECKING:
    from .index import ChangeKind

logger = logging.getLogger(__name__)

mcp = FastMCP("Aurora")


# ========== Response Type Definitions ==========


class FileInfo(TypedDict):
    """An indexed file."""

    id: int | None
    path: str
    name: str
    file_type: str
    size: int
    created_at: int
    modified_at: int
    last_opened_at: int | None
    open_count: int
    thumbnail_path: str | None
    tile_x: float | None
    tile_y: float | None
    tile_cluster: str | None
    indexed_at: int | None


class ResurfacedInfo(TypedDict):
    """A file recommended for another look."""

    file: FileInfo
    reason: str
    explanation: str


class TagInfo(TypedDict):
    name: str
    color: int


class MetadataInfo(TypedDict, total=False):
    """User-supplied metadata for one file."""

    file_id: int
    mood: str | None
    season: str | None
    vibe_color: str | None
    location: str | None
    energy_level: str | None
    notes: str | None
    created_at: int | None
    updated_at: int | None


class ClusterInfo(TypedDict):
    id: int
    name: str
    color: str | None
    sort_order: int


class WatchStatus(TypedDict):
    """State of the file watcher."""

    watching: bool
    paths: list[str]


# ========== Helper Functions ==========


def _log_change(kind: ChangeKind, paths: list[str]) -> None:
    """Report watcher updates (file-created, file-modified, file-removed)."""
    logger.info("%s: %d paths", kind.value, len(paths))
    for path in paths:
        logger.debug("%s %s", kind.value, path)


def _get_index_manager():
    """Get the IndexManager singleton, lazily imported."""
    from .index import IndexManager

    return IndexManager.get_instance()


def _watch_status(manager) -> WatchStatus:
    return {
        "watching": manager.watcher_running,
        "paths": [str(p) for p in manager.watch_paths],
    }


# ========== MCP Tools ==========


@mcp.tool
async def scan(directories: list[str]) -> list[FileInfo]:
    """
    Index every regular file under the given directories.

    Directories that do not exist are skipped. Files already in the index
    keep their id, open count and last-opened time.

    Args:
        directories: Absolute directory paths to scan (recursive)

    Returns:
        Metadata for every file found.

    Example:
        >>> scan(["/Users/me/Documents"])
        [{"path": "/Users/me/Documents/notes.md", "name": "notes.md", ...}]
    """
    manager = _get_index_manager()
    files = await asyncio.to_thread(manager.scan, directories)
    return [f.to_dict() for f in files]


@mcp.tool
async def get_all_files(limit: int | None = None) -> list[FileInfo]:
    """
    List indexed files, most recently modified first.

    Args:
        limit: Maximum files (default: AURORA_GET_ALL_LIMIT, 1000)

    Returns:
        List of file dictionaries.
    """
    manager = _get_index_manager()
    files = await asyncio.to_thread(manager.get_all, limit)
    return [f.to_dict() for f in files]


@mcp.tool
async def search_files(query: str, limit: int | None = None) -> list[FileInfo]:
    """
    Search indexed files by path and name.

    Every term matches as a case-insensitive substring, so "port" finds
    "Q3_report.pdf". Quoted phrases and OR/AND/NOT are supported.
    File contents are never searched.

    Args:
        query: Search terms
        limit: Maximum results (default: AURORA_SEARCH_LIMIT, 50)

    Returns:
        Matching files ordered by relevance; empty if nothing matches.

    Examples:
        >>> search_files("invoice")
        >>> search_files('"tax return" OR receipt')
    """
    manager = _get_index_manager()
    files = await asyncio.to_thread(manager.search, query, limit)
    return [f.to_dict() for f in files]


@mcp.tool
async def record_open(path: str) -> bool:
    """
    Record that the user opened a file.

    Increments the open count and sets the last-opened time to now.

    Args:
        path: Absolute path of an indexed file

    Returns:
        True if the file is indexed, False if the path is unknown.
    """
    manager = _get_index_manager()
    return await asyncio.to_thread(manager.record_open, path)


@mcp.tool
async def get_resurfaced(count: int = 3) -> list[ResurfacedInfo]:
    """
    Suggest files worth revisiting.

    Picks, in order: a long-forgotten file, one last touched around this
    time of year, and a daily surprise, then fills up with the most idle
    files. The same index gives the same answer all day.

    Args:
        count: Number of suggestions, clamped to 1-12 (default: 3)

    Returns:
        List of {file, reason, explanation}; empty if nothing is indexed.

    Example:
        >>> get_resurfaced()
        [{"file": {...}, "reason": "Forgotten",
          "explanation": "Asleep for ~45 days"}, ...]
    """
    manager = _get_index_manager()
    picks = await asyncio.to_thread(manager.get_resurfaced, count)
    return [p.to_dict() for p in picks]


@mcp.tool
async def watch_set_paths(paths: list[str]) -> WatchStatus:
    """
    Watch directories and keep the index up to date.

    Replaces any previous watch set. Created and modified files are
    re-indexed and removed files dropped, in debounced batches.

    Args:
        paths: Absolute directory paths; entries that are missing or not
            directories are ignored

    Returns:
        Whether the watcher runs and which directories it watches.

    Raises:
        ValueError: If none of the paths is a usable directory.
    """
    manager = _get_index_manager()
    await asyncio.to_thread(manager.watch_set_paths, paths, _log_change)
    return _watch_status(manager)


@mcp.tool
async def watch_stop() -> WatchStatus:
    """Stop watching directories. Safe to call when nothing is watched."""
    manager = _get_index_manager()
    await asyncio.to_thread(manager.watch_stop)
    return _watch_status(manager)


@mcp.tool
async def get_file_count() -> int:
    """Number of files in the index."""
    manager = _get_index_manager()
    return await asyncio.to_thread(manager.file_count)


@mcp.tool
async def tag_file(path: str, tag: str, color: int = 0) -> list[TagInfo]:
    """
    Attach a tag to an indexed file.

    Args:
        path: Absolute path of an indexed file
        tag: Tag name (created if new)
        color: Color code 0-6 (0 = none)

    Returns:
        All tags of the file after the change.
    """
    manager = _get_index_manager()
    if not await asyncio.to_thread(manager.add_tag, path, tag, color):
        raise ValueError(f"File not in index: {path}")
    tags = await asyncio.to_thread(manager.get_tags, path)
    return [{"name": t.name, "color": t.color} for t in tags]


@mcp.tool
async def get_file_tags(path: str) -> list[TagInfo]:
    """Tags attached to a file."""
    manager = _get_index_manager()
    tags = await asyncio.to_thread(manager.get_tags, path)
    return [{"name": t.name, "color": t.color} for t in tags]


@mcp.tool
async def update_file_metadata(
    path: str,
    mood: str | None = None,
    season: str | None = None,
    vibe_color: str | None = None,
    location: str | None = None,
    energy_level: str | None = None,
    notes: str | None = None,
) -> MetadataInfo:
    """
    Set personal metadata on an indexed file.

    Only the fields given are changed.

    Args:
        path: Absolute path of an indexed file
        mood, season, vibe_color, location, energy_level, notes: Free text

    Returns:
        The file's metadata after the change.
    """
    fields = {
        k: v
        for k, v in {
            "mood": mood,
            "season": season,
            "vibe_color": vibe_color,
            "location": location,
            "energy_level": energy_level,
            "notes": notes,
        }.items()
        if v is not None
    }
    if not fields:
        raise ValueError("Give at least one metadata field to update.")

    manager = _get_index_manager()
    if not await asyncio.to_thread(
        lambda: manager.set_metadata(path, **fields)
    ):
        raise ValueError(f"File not in index: {path}")
    metadata = await asyncio.to_thread(manager.get_metadata, path)
    return metadata.to_dict()


@mcp.tool
async def get_file_metadata(path: str) -> MetadataInfo | None:
    """Personal metadata of a file, or null if none was set."""
    manager = _get_index_manager()
    metadata = await asyncio.to_thread(manager.get_metadata, path)
    return metadata.to_dict() if metadata else None


@mcp.tool
async def list_clusters() -> list[ClusterInfo]:
    """Visual groupings for the spatial view, in display order."""
    manager = _get_index_manager()
    clusters = await asyncio.to_thread(manager.list_clusters)
    return [
        {
            "id": c.id,
            "name": c.name,
            "color": c.color,
            "sort_order": c.sort_order,
        }
        for c in clusters
    ]


if __name__ == "__main__":
    mcp.run()
