"""Configuration for the Aurora file index."""

import os
from pathlib import Path

# Default index location
DEFAULT_INDEX_PATH = Path.home() / ".aurora" / "aurora.db"


def get_index_path() -> Path:
    """
    Get the index database path.

    Set AURORA_INDEX_PATH to customize the location.
    Defaults to ~/.aurora/aurora.db

    Returns:
        Path to the index database file.
    """
    env_path = os.environ.get("AURORA_INDEX_PATH")
    if env_path:
        return Path(env_path).expanduser()
    return DEFAULT_INDEX_PATH


def get_watch_paths() -> list[str]:
    """
    Get the directories to watch when the server starts with --watch.

    Set AURORA_WATCH_PATHS to a list of directories separated by the
    platform path separator (":" on macOS/Linux).

    Returns:
        List of directory strings (possibly empty).
    """
    env_val = os.environ.get("AURORA_WATCH_PATHS", "")
    return [
        str(Path(p.strip()).expanduser())
        for p in env_val.split(os.pathsep)
        if p.strip()
    ]


# ========== Query Limits ==========


def get_all_limit() -> int:
    """
    Get the maximum number of files returned by get_all.

    Set AURORA_GET_ALL_LIMIT to customize. Defaults to 1000.
    """
    return int(os.environ.get("AURORA_GET_ALL_LIMIT", "1000"))


def get_search_limit() -> int:
    """
    Get the maximum number of search results.

    Set AURORA_SEARCH_LIMIT to customize. Defaults to 50.
    """
    return int(os.environ.get("AURORA_SEARCH_LIMIT", "50"))


def get_resurface_pool_size() -> int:
    """
    Get the number of candidate files considered for resurfacing.

    Files are loaded oldest activity first, so the pool always holds the
    most idle part of the index.

    Set AURORA_RESURFACE_POOL to customize. Defaults to 5000.
    """
    return int(os.environ.get("AURORA_RESURFACE_POOL", "5000"))
