"""Command-line interface for aurora-mcp.

Provides commands for:
- serve: Run the MCP server (default)
- scan: Index directories
- search: Search indexed paths and names
- resurface: Suggest files worth revisiting
- status: Show index statistics
- rebuild: Rebuild the search index from the files table
- watch: Keep the index updated in the foreground

Usage:
    aurora-mcp                    # Run MCP server (default)
    aurora-mcp --watch            # Run with real-time index updates
    aurora-mcp scan ~/Documents   # Index a directory
    aurora-mcp search report      # Search the index
    aurora-mcp resurface -n 5     # Five suggestions
    aurora-mcp status             # Show index status
    aurora-mcp watch ~/Documents  # Watch until Ctrl+C
"""

import logging
import sys
import time
from datetime import datetime
from typing import TYPE_CHECKING, Annotated

import cyclopts

from .config import get_index_path, get_watch_paths

if TYPE_CHECKING:
    from .index import ChangeKind

app = cyclopts.App(
    name="aurora-mcp",
    help="MCP server for the Aurora file index with FTS5 search.",
)

Verbose = Annotated[
    bool,
    cyclopts.Parameter(
        name=["--verbose", "-v"],
        help="Enable verbose output",
    ),
]


def _configure_logging(verbose: bool) -> None:
    """Log to stderr; stdout belongs to the MCP stdio transport."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _format_size(size_mb: float) -> str:
    """Format file size for display."""
    if size_mb < 1:
        return f"{size_mb * 1024:.1f} KB"
    return f"{size_mb:.1f} MB"


def _format_time(seconds: float) -> str:
    """Format duration for display."""
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes = int(seconds // 60)
    secs = seconds % 60
    return f"{minutes}m {secs:.1f}s"


def _format_timestamp(ts: int | None) -> str:
    if not ts:
        return "never"
    return datetime.fromtimestamp(ts).strftime("%Y-%m-%d %H:%M")


def _print_change(kind: "ChangeKind", paths: list[str]) -> None:
    for path in paths:
        print(f"{kind.value}: {path}", file=sys.stderr, flush=True)


def _run_serve(watch: bool = False) -> None:
    """Internal function to run the MCP server."""
    from .index import IndexManager, WatchPathError
    from .server import _log_change, mcp

    if watch:
        paths = get_watch_paths()
        if not paths:
            print(
                "Warning: --watch needs AURORA_WATCH_PATHS, watcher not started",
                file=sys.stderr,
            )
        else:
            manager = IndexManager.get_instance()
            try:
                watched = manager.watch_set_paths(paths, on_change=_log_change)
                print(
                    f"File watcher started for {len(watched)} directories",
                    file=sys.stderr,
                )
            except WatchPathError as e:
                print(f"Warning: File watcher failed: {e}", file=sys.stderr)

    mcp.run()


@app.command
def serve(
    watch: Annotated[
        bool,
        cyclopts.Parameter(
            name=["--watch", "-w"],
            help="Watch AURORA_WATCH_PATHS and update the index in real-time",
        ),
    ] = False,
    verbose: Verbose = False,
) -> None:
    """
    Run the MCP server.

    This is the default command when no subcommand is specified.
    The server provides file search and resurfacing tools to MCP clients.

    Use --watch to keep the index current while the server runs. The
    directories come from AURORA_WATCH_PATHS (separated like PATH).
    """
    _configure_logging(verbose)
    _run_serve(watch=watch)


@app.command
def scan(*directories: str, verbose: Verbose = False) -> None:
    """
    Index every file under the given directories.

    Directories are walked recursively (symlinks are not followed).
    Files already indexed keep their open history.
    """
    _configure_logging(verbose)

    if not directories:
        print("✗ Error: give at least one directory", file=sys.stderr)
        sys.exit(1)

    from .index import IndexManager

    print(f"Index location: {get_index_path()}")

    manager = IndexManager()
    start = time.time()
    try:
        files = manager.scan(directories)
        elapsed = time.time() - start
        print(f"✓ Scanned {len(files):,} files in {_format_time(elapsed)}")
        print(f"  Indexed total: {manager.file_count():,}")
    except Exception as e:
        print(f"\n✗ Error: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        manager.close()


@app.command
def search(
    query: str,
    limit: Annotated[
        int | None,
        cyclopts.Parameter(name=["--limit", "-l"], help="Maximum results"),
    ] = None,
    verbose: Verbose = False,
) -> None:
    """Search indexed file paths and names."""
    _configure_logging(verbose)

    from .index import IndexManager

    manager = IndexManager()
    try:
        results = manager.search(query, limit=limit)
    except Exception as e:
        print(f"✗ Error: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        manager.close()

    if not results:
        print("No matches.")
        return
    for f in results:
        print(f.path)


@app.command
def resurface(
    count: Annotated[
        int,
        cyclopts.Parameter(
            name=["--count", "-n"], help="Number of suggestions (1-12)"
        ),
    ] = 3,
    verbose: Verbose = False,
) -> None:
    """Suggest files worth revisiting."""
    _configure_logging(verbose)

    from .index import IndexManager

    manager = IndexManager()
    try:
        picks = manager.get_resurfaced(count)
    except Exception as e:
        print(f"✗ Error: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        manager.close()

    if not picks:
        print("Nothing to resurface yet. Run 'aurora-mcp scan DIR' first.")
        return
    for pick in picks:
        print(f"{pick.reason:<15} {pick.file.path}")
        print(f"{'':<15} {pick.explanation}")


@app.command
def status(verbose: Verbose = False) -> None:
    """
    Show index statistics.

    Displays:
    - File, tag and cluster counts
    - Last indexing time
    - Database file size and search index health
    """
    _configure_logging(verbose)

    from .index import IndexManager

    manager = IndexManager()

    if not manager.has_index():
        print("No index found.")
        print(f"Expected location: {get_index_path()}")
        print()
        print("Run 'aurora-mcp scan DIR' to build the index.")
        sys.exit(1)

    try:
        stats = manager.get_stats()
        healthy = manager.check_integrity()
    finally:
        manager.close()

    print("Aurora Index Status")
    print("=" * 40)
    print(f"Location:     {get_index_path()}")
    print(f"Files:        {stats.file_count:,}")
    print(f"Tags:         {stats.tag_count}")
    print(f"Clusters:     {stats.cluster_count}")
    print(f"Database:     {_format_size(stats.db_size_mb)}")
    if stats.last_indexed:
        indexed = stats.last_indexed.strftime("%Y-%m-%d %H:%M:%S")
        print(f"Last indexed: {indexed}")
    else:
        print("Last indexed: Never")
    print()

    if not healthy:
        print("⚠ Search index is inconsistent. Run 'aurora-mcp rebuild'.")


@app.command
def rebuild(verbose: Verbose = False) -> None:
    """Rebuild the search index from the files table."""
    _configure_logging(verbose)

    from .index import IndexManager

    manager = IndexManager()
    start = time.time()
    try:
        count = manager.rebuild_search_index()
        elapsed = time.time() - start
        print(
            f"✓ Rebuilt search index for {count:,} files "
            f"in {_format_time(elapsed)}"
        )
    except Exception as e:
        print(f"\n✗ Error: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        manager.close()


@app.command
def watch(
    *directories: str,
    initial_scan: Annotated[
        bool,
        cyclopts.Parameter(
            name=["--scan"], help="Scan the directories before watching"
        ),
    ] = True,
    verbose: Verbose = False,
) -> None:
    """
    Watch directories and update the index until interrupted.

    Uses AURORA_WATCH_PATHS when no directory is given.
    """
    _configure_logging(verbose)

    from .index import IndexManager, WatchPathError

    paths = list(directories) or [str(p) for p in get_watch_paths()]
    manager = IndexManager()
    try:
        if initial_scan:
            files = manager.scan(paths)
            print(f"✓ Scanned {len(files):,} files", file=sys.stderr)

        watched = manager.watch_set_paths(paths, on_change=_print_change)
        print(
            "Watching " + ", ".join(map(str, watched)) + " (Ctrl+C to stop)",
            file=sys.stderr,
        )
        while manager.watcher_running:
            time.sleep(0.5)

        watcher = manager.watcher
        if watcher is not None and watcher.error is not None:
            print(f"✗ Error: {watcher.error}", file=sys.stderr)
            sys.exit(1)
    except WatchPathError as e:
        print(f"✗ Error: {e}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nStopping...", file=sys.stderr)
    finally:
        manager.close()


@app.default
def default_handler(
    watch: Annotated[
        bool,
        cyclopts.Parameter(
            name=["--watch", "-w"],
            help="Watch AURORA_WATCH_PATHS and update the index in real-time",
        ),
    ] = False,
    verbose: Verbose = False,
) -> None:
    """Run the MCP server (default when no command specified)."""
    _configure_logging(verbose)
    _run_serve(watch=watch)


def main() -> None:
    """Entry point for the CLI."""
    app()
