"""Aurora MCP - File index with FTS5 search, live watching and resurfacing.

Features:
- Metadata index of local files in SQLite, safe to rescan at any time
- FTS5 substring search over file paths and names
- Debounced file watcher that keeps the index current
- Daily suggestions of forgotten and seasonal files

Usage:
    aurora-mcp                # Run MCP server (default)
    aurora-mcp scan DIR       # Index a directory
    aurora-mcp status         # Show index statistics
    aurora-mcp watch DIR      # Keep the index updated
"""

from .cli import main
from .server import mcp

__all__ = ["main", "mcp"]
