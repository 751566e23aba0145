"""File watcher for real-time index updates.

Watches a set of directories and keeps the index in step with them.

Uses watchfiles (Rust-based, efficient) to monitor:
- Created files → extract metadata and upsert
- Modified files → re-extract metadata and upsert
- Removed files → delete from index

Raw notifications are collected until the watched trees have been quiet
for DEBOUNCE_SECONDS, then applied as one deduplicated batch. One editor
save therefore produces one upsert, not a burst of them.

Each IndexWatcher is one watch session: it owns a cancellation event and
a single background thread. A stopped watcher is not restarted; create a
new one instead.
"""

from __future__ import annotations

import enum
import logging
import os
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from watchfiles import Change, watch

from .disk import extract_metadata, is_regular_file, scan_directory

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from .disk import FileRecord
    from .manager import IndexManager

logger = logging.getLogger(__name__)

# Quiet period before a batch of changes is applied
DEBOUNCE_SECONDS = 2.0

# watchfiles timing: how often the Rust side checks for changes and the
# stop event, and how often it yields an empty batch so we can flush
STEP_MS = 50
TICK_MS = 250

# Constants for safety limits
MAX_PENDING_CHANGES = 10000  # Flush early instead of growing unbounded
FILE_RETRY_DELAY_MS = 200  # Wait for the writer to finish
MAX_FILE_RETRIES = 3


class WatchPathError(ValueError):
    """Raised when none of the requested watch paths is usable."""


class ChangeKind(str, enum.Enum):
    """What happened to a set of paths. Values are the notification names."""

    CREATE = "file-created"
    MODIFY = "file-modified"
    REMOVE = "file-removed"


# Removes first so a path replaced by a directory of the same name is clean
EVENT_ORDER = (ChangeKind.REMOVE, ChangeKind.CREATE, ChangeKind.MODIFY)


@dataclass(frozen=True)
class WatchEvent:
    """A debounced change: one kind, sorted absolute paths."""

    kind: ChangeKind
    paths: tuple[str, ...]


class WatchState(str, enum.Enum):
    IDLE = "idle"
    WATCHING = "watching"
    STOPPED = "stopped"


def validate_watch_paths(paths: Iterable[str | Path]) -> list[Path]:
    """
    Keep only usable watch roots.

    A path must be absolute (after ~ expansion), exist and be a directory.
    Invalid entries are dropped with a warning; duplicates are removed.

    Returns:
        Valid directories in the order given
    """
    valid: list[Path] = []
    for raw in paths:
        path = Path(raw).expanduser()
        if not path.is_absolute():
            logger.warning("Ignoring relative watch path: %s", raw)
            continue
        if not path.exists():
            logger.warning("Watch path does not exist: %s", raw)
            continue
        if not path.is_dir():
            logger.warning("Watch path is not a directory: %s", raw)
            continue
        if path not in valid:
            valid.append(path)
    return valid


def _resolve_kind(path: str, seen: set[Change]) -> ChangeKind:
    """
    Collapse every raw change seen for one path into a single kind.

    watchfiles reports changes as an unordered set, so the order of
    "added" and "deleted" within a batch is unknown. The filesystem's
    current state decides instead.
    """
    if not os.path.lexists(path):
        return ChangeKind.REMOVE
    if Change.added in seen:
        return ChangeKind.CREATE
    return ChangeKind.MODIFY


def coalesce_changes(changes: Iterable[tuple[Change, str]]) -> list[WatchEvent]:
    """
    Turn raw watchfiles changes into at most one event per kind.

    Args:
        changes: (Change, path) pairs, possibly with repeats

    Returns:
        Events in EVENT_ORDER, each with sorted, unique paths
    """
    seen: dict[str, set[Change]] = {}
    for change, path in changes:
        seen.setdefault(path, set()).add(change)

    buckets: dict[ChangeKind, list[str]] = {kind: [] for kind in ChangeKind}
    for path, kinds in seen.items():
        buckets[_resolve_kind(path, kinds)].append(path)

    return [
        WatchEvent(kind, tuple(sorted(buckets[kind])))
        for kind in EVENT_ORDER
        if buckets[kind]
    ]


class IndexWatcher:
    """
    Watches directories for changes and updates the index.

    Usage:
        watcher = IndexWatcher(manager, [Path("/Users/me/Documents")])
        watcher.start()
        # ... later ...
        watcher.stop()
    """

    def __init__(
        self,
        manager: IndexManager,
        paths: Iterable[Path],
        on_change: Callable[[ChangeKind, list[str]], None] | None = None,
        debounce_seconds: float = DEBOUNCE_SECONDS,
    ):
        """
        Initialize the watcher.

        Args:
            manager: Index to write changes to
            paths: Validated directories to watch (see validate_watch_paths)
            on_change: Optional callback(kind, paths) after each mutation
            debounce_seconds: Quiet period before applying changes
        """
        self.manager = manager
        self.paths = list(paths)
        self.on_change = on_change
        self.debounce_seconds = debounce_seconds

        self.state = WatchState.IDLE
        self.error: Exception | None = None

        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

        # Pending changes (debounced), only touched by the watch thread
        self._pending: list[tuple[Change, str]] = []
        self._last_change = 0.0

    def start(self) -> bool:
        """
        Start watching for changes.

        Returns:
            True if the worker started, False if there is nothing to watch
            or this session was already used
        """
        if self.state is not WatchState.IDLE:
            logger.warning("Watcher session already %s", self.state.value)
            return False
        if not self.paths:
            logger.warning("No directories to watch, watcher not started")
            return False

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._watch_loop,
            name="IndexWatcher",
            daemon=True,
        )
        self.state = WatchState.WATCHING
        self._thread.start()
        logger.info(
            "File watcher started for %s", ", ".join(map(str, self.paths))
        )
        return True

    def stop(self, timeout: float | None = None) -> bool:
        """
        Stop watching and wait for the worker thread to finish.

        A batch that is already being applied runs to completion first.

        Args:
            timeout: Seconds to wait for the worker (default: no limit)

        Returns:
            True once the worker has exited, False if it is still busy
            after timeout
        """
        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)
            if thread.is_alive():
                logger.warning(
                    "File watcher still busy after %.1fs", timeout
                )
                return False
        self._thread = None
        self.state = WatchState.STOPPED
        logger.info("File watcher stopped")
        return True

    @property
    def is_running(self) -> bool:
        """Check if watcher is running."""
        return self._thread is not None and self._thread.is_alive()

    def _watch_loop(self) -> None:
        """Main watch loop (runs in background thread)."""
        logger.debug("Starting watch loop on %s", self.paths)

        try:
            # No filter: every file a scan indexes must be tracked
            for changes in watch(
                *self.paths,
                stop_event=self._stop_event,
                step=STEP_MS,
                rust_timeout=TICK_MS,
                yield_on_timeout=True,
                recursive=True,
                raise_interrupt=False,
                watch_filter=None,
                ignore_permission_denied=True,
            ):
                if self._stop_event.is_set():
                    break

                if changes:
                    self._pending.extend(changes)
                    self._last_change = time.monotonic()

                quiet = time.monotonic() - self._last_change
                if self._pending and (
                    quiet >= self.debounce_seconds
                    or len(self._pending) >= MAX_PENDING_CHANGES
                ):
                    self._process_pending()

        except (OSError, RuntimeError) as e:
            # Could not create or keep the OS subscription
            self.error = e
            logger.error("File watcher failed for %s: %s", self.paths, e)
        finally:
            self.state = WatchState.STOPPED

        # Changes still pending at shutdown are dropped; the next scan
        # picks them up.
        if self._pending:
            logger.debug(
                "Discarding %d pending changes on stop", len(self._pending)
            )
            self._pending.clear()

    def _process_pending(self) -> None:
        """Apply the pending batch."""
        pending, self._pending = self._pending, []
        self.process_changes(pending)

    def process_changes(
        self, changes: Iterable[tuple[Change, str]]
    ) -> list[WatchEvent]:
        """
        Apply a batch of raw changes to the index and notify.

        Args:
            changes: (Change, path) pairs as yielded by watchfiles

        Returns:
            The events that were applied
        """
        events = coalesce_changes(changes)

        for event in events:
            try:
                count = self._apply(event)
            except Exception as e:  # Broad: keep watching on store errors
                logger.error(
                    "Failed to apply %s for %d paths: %s",
                    event.kind.value,
                    len(event.paths),
                    e,
                )
                continue

            logger.debug(
                "Applied %s: %d paths, %d rows",
                event.kind.value,
                len(event.paths),
                count,
            )
            self._notify(event)

        return events

    def _apply(self, event: WatchEvent) -> int:
        """Run the index mutation for one event. Returns rows affected."""
        if event.kind is ChangeKind.REMOVE:
            return self.manager.delete_files(event.paths)
        if event.kind in (ChangeKind.CREATE, ChangeKind.MODIFY):
            records = self._extract(event)
            return self.manager.upsert_files(records) if records else 0
        raise ValueError(f"Unhandled change kind: {event.kind!r}")

    def _extract(self, event: WatchEvent) -> list[FileRecord]:
        """Re-read metadata for the paths of a create/modify event."""
        records: list[FileRecord] = []

        for path_str in event.paths:
            path = Path(path_str)

            # A directory moved into a watched tree arrives as one event
            if event.kind is ChangeKind.CREATE and path.is_dir():
                if not path.is_symlink():
                    records.extend(scan_directory(path))
                continue

            if not is_regular_file(path):
                continue

            # Retry logic for files still being written
            for attempt in range(MAX_FILE_RETRIES):
                try:
                    records.append(extract_metadata(path))
                    break
                except FileNotFoundError:
                    logger.debug("File vanished before indexing: %s", path)
                    break
                except OSError as e:
                    if attempt < MAX_FILE_RETRIES - 1:
                        logger.debug(
                            "Retry %d for %s: %s", attempt + 1, path, e
                        )
                        time.sleep(FILE_RETRY_DELAY_MS / 1000)
                    else:
                        logger.warning(
                            "Failed to read %s after retries: %s", path, e
                        )

        return records

    def _notify(self, event: WatchEvent) -> None:
        """Fire-and-forget notification; failures never undo the mutation."""
        if not self.on_change:
            return
        try:
            self.on_change(event.kind, list(event.paths))
        except Exception as e:  # Broad: user callback
            logger.warning("Error in on_change callback: %s", e)
