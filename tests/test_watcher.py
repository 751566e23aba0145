"""Tests for the debounced file watcher."""

from __future__ import annotations

import shutil
import threading
import time
from pathlib import Path
from unittest.mock import MagicMock, patch

from watchfiles import Change

from aurora_mcp.index.watcher import (
    ChangeKind,
    IndexWatcher,
    WatchEvent,
    WatchState,
    coalesce_changes,
    validate_watch_paths,
)


def _wait_for(predicate, timeout: float = 10.0) -> bool:
    """Poll until predicate() is true or the timeout passes."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.05)
    return predicate()


class TestValidateWatchPaths:
    def test_keeps_existing_directories(self, tmp_path: Path):
        assert validate_watch_paths([tmp_path]) == [tmp_path]

    def test_drops_invalid_entries(self, tmp_path: Path):
        a_file = tmp_path / "file.txt"
        a_file.write_text("x")
        paths = [
            "relative/dir",
            tmp_path / "missing",
            a_file,
            tmp_path,
        ]
        assert validate_watch_paths(paths) == [tmp_path]

    def test_removes_duplicates(self, tmp_path: Path):
        assert validate_watch_paths([tmp_path, str(tmp_path)]) == [tmp_path]

    def test_empty(self):
        assert validate_watch_paths([]) == []


class TestCoalesceChanges:
    """Raw changes collapse to one kind per path, decided by disk state."""

    def test_added_existing_file_is_create(self, tmp_path: Path):
        path = tmp_path / "new.txt"
        path.write_text("x")
        events = coalesce_changes(
            [(Change.added, str(path)), (Change.modified, str(path))]
        )
        assert events == [WatchEvent(ChangeKind.CREATE, (str(path),))]

    def test_modified_file_is_modify(self, tmp_path: Path):
        path = tmp_path / "old.txt"
        path.write_text("x")
        events = coalesce_changes([(Change.modified, str(path))] * 3)
        assert events == [WatchEvent(ChangeKind.MODIFY, (str(path),))]

    def test_missing_path_is_remove(self, tmp_path: Path):
        path = str(tmp_path / "gone.txt")
        events = coalesce_changes(
            [(Change.added, path), (Change.deleted, path)]
        )
        assert events == [WatchEvent(ChangeKind.REMOVE, (path,))]

    def test_event_order_and_sorted_paths(self, tmp_path: Path):
        b = tmp_path / "b.txt"
        a = tmp_path / "a.txt"
        m = tmp_path / "m.txt"
        for p in (a, b, m):
            p.write_text("x")
        gone = str(tmp_path / "gone.txt")

        events = coalesce_changes(
            [
                (Change.modified, str(m)),
                (Change.added, str(b)),
                (Change.added, str(a)),
                (Change.deleted, gone),
            ]
        )

        assert [e.kind for e in events] == [
            ChangeKind.REMOVE,
            ChangeKind.CREATE,
            ChangeKind.MODIFY,
        ]
        assert events[1].paths == (str(a), str(b))

    def test_empty(self):
        assert coalesce_changes([]) == []

    def test_kind_values_are_notification_names(self):
        assert ChangeKind.CREATE.value == "file-created"
        assert ChangeKind.MODIFY.value == "file-modified"
        assert ChangeKind.REMOVE.value == "file-removed"


class TestProcessChanges:
    """Apply batches directly, without a running watch thread."""

    def test_create_indexes_file(self, manager, tmp_path: Path):
        path = tmp_path / "note.md"
        path.write_text("hello")
        callback = MagicMock()
        watcher = IndexWatcher(manager, [tmp_path], on_change=callback)

        watcher.process_changes([(Change.added, str(path))])

        record = manager.get_file(str(path))
        assert record is not None
        assert record.file_type == "md"
        callback.assert_called_once_with(ChangeKind.CREATE, [str(path)])

    def test_modify_keeps_usage(self, manager, tmp_path: Path):
        path = tmp_path / "note.md"
        path.write_text("hello")
        manager.scan([tmp_path])
        manager.record_open(str(path))

        path.write_text("hello, longer now")
        watcher = IndexWatcher(manager, [tmp_path])
        watcher.process_changes([(Change.modified, str(path))])

        record = manager.get_file(str(path))
        assert record.size == len("hello, longer now")
        assert record.open_count == 1

    def test_remove_deletes_file(self, manager, tmp_path: Path):
        path = tmp_path / "note.md"
        path.write_text("hello")
        manager.scan([tmp_path])
        path.unlink()

        callback = MagicMock()
        watcher = IndexWatcher(manager, [tmp_path], on_change=callback)
        watcher.process_changes([(Change.deleted, str(path))])

        assert manager.get_file(str(path)) is None
        callback.assert_called_once_with(ChangeKind.REMOVE, [str(path)])

    def test_removed_directory_drops_contents(self, manager, file_tree: Path):
        manager.scan([file_tree])
        sub = file_tree / "sub"
        shutil.rmtree(sub)

        watcher = IndexWatcher(manager, [file_tree])
        watcher.process_changes([(Change.deleted, str(sub))])

        assert manager.file_count() == 2

    def test_created_directory_is_scanned(self, manager, tmp_path: Path):
        moved = tmp_path / "moved_in"
        (moved / "inner").mkdir(parents=True)
        (moved / "a.txt").write_text("a")
        (moved / "inner" / "b.txt").write_text("b")

        watcher = IndexWatcher(manager, [tmp_path])
        watcher.process_changes([(Change.added, str(moved))])

        assert manager.file_count() == 2

    def test_skips_symlinks_and_vanished(self, manager, tmp_path: Path):
        target = tmp_path / "target.txt"
        target.write_text("x")
        link = tmp_path / "link.txt"
        link.symlink_to(target)

        watcher = IndexWatcher(manager, [tmp_path])
        watcher.process_changes([(Change.modified, str(link))])

        assert manager.file_count() == 0

    def test_callback_failure_does_not_undo(self, manager, tmp_path: Path):
        path = tmp_path / "note.md"
        path.write_text("hello")
        callback = MagicMock(side_effect=RuntimeError("boom"))
        watcher = IndexWatcher(manager, [tmp_path], on_change=callback)

        watcher.process_changes([(Change.added, str(path))])

        assert manager.get_file(str(path)) is not None
        callback.assert_called_once()

    def test_store_failure_is_logged_not_raised(
        self, manager, tmp_path: Path
    ):
        path = tmp_path / "note.md"
        path.write_text("hello")
        callback = MagicMock()
        watcher = IndexWatcher(manager, [tmp_path], on_change=callback)

        with patch.object(
            manager, "upsert_files", side_effect=RuntimeError("db gone")
        ):
            events = watcher.process_changes([(Change.added, str(path))])

        assert len(events) == 1
        callback.assert_not_called()


class TestWatcherLifecycle:
    def test_start_without_paths(self, manager):
        watcher = IndexWatcher(manager, [])
        assert watcher.start() is False
        assert watcher.state is WatchState.IDLE

    def test_session_is_single_use(self, manager, tmp_path: Path):
        watcher = IndexWatcher(manager, [tmp_path])
        assert watcher.start() is True
        assert watcher.is_running
        assert watcher.start() is False

        watcher.stop()
        assert not watcher.is_running
        assert watcher.state is WatchState.STOPPED
        assert watcher.start() is False

    def test_stop_before_start(self, manager, tmp_path: Path):
        watcher = IndexWatcher(manager, [tmp_path])
        watcher.stop()
        assert watcher.state is WatchState.STOPPED

    def test_subscription_failure_is_recorded(self, manager, tmp_path: Path):
        watcher = IndexWatcher(manager, [tmp_path / "never_created"])
        watcher.start()

        assert _wait_for(lambda: not watcher.is_running)
        assert isinstance(watcher.error, (OSError, RuntimeError))
        assert watcher.state is WatchState.STOPPED


class TestBusyWorker:
    """Stopping waits for a batch that is still being applied."""

    def _start_busy(self, manager, root: Path, delay: float):
        entered = threading.Event()
        finished = threading.Event()

        def slow(kind, paths):
            entered.set()
            time.sleep(delay)
            finished.set()

        manager.watch_set_paths([root], on_change=slow)
        time.sleep(1.0)
        (root / "a.txt").write_text("a")
        assert entered.wait(10)
        return manager.watcher, finished

    def test_replacement_joins_busy_worker(self, manager, tmp_path: Path):
        first = tmp_path / "first"
        second = tmp_path / "second"
        first.mkdir()
        second.mkdir()
        old, finished = self._start_busy(manager, first, delay=1.5)

        manager.watch_set_paths([second])

        assert finished.is_set()
        assert not old.is_running
        assert old.state is WatchState.STOPPED
        assert manager.watcher is not old
        assert manager.watcher_running
        workers = [
            t for t in threading.enumerate() if t.name == "IndexWatcher"
        ]
        assert len(workers) == 1

    def test_stop_timeout_reports_busy_worker(self, manager, tmp_path: Path):
        watcher, finished = self._start_busy(manager, tmp_path, delay=1.0)

        assert watcher.stop(timeout=0.1) is False
        assert watcher.state is WatchState.WATCHING

        assert watcher.stop() is True
        assert finished.is_set()
        assert watcher.state is WatchState.STOPPED


class TestLiveWatching:
    """End-to-end with a real watchfiles subscription."""

    def test_create_and_delete_reach_index(self, manager, tmp_path: Path):
        events: list[tuple[ChangeKind, list[str]]] = []
        manager.watch_set_paths(
            [tmp_path], on_change=lambda k, p: events.append((k, p))
        )
        # Give the OS subscription time to settle
        time.sleep(1.0)

        path = tmp_path / "live.txt"
        path.write_text("hello")

        assert _wait_for(lambda: manager.get_file(str(path)) is not None)
        assert any(str(path) in paths for _, paths in events)

        path.unlink()

        assert _wait_for(lambda: manager.get_file(str(path)) is None)
        assert _wait_for(
            lambda: any(k is ChangeKind.REMOVE for k, _ in events)
        )
        manager.watch_stop()
        assert not manager.watcher_running

    def test_tracks_editor_and_tool_files(self, manager, tmp_path: Path):
        (tmp_path / "node_modules").mkdir()
        leftovers = [
            tmp_path / "draft.txt~",
            tmp_path / "tool.pyc",
            tmp_path / "node_modules" / "readme.md",
        ]
        for path in leftovers:
            path.write_text("x")
        manager.scan([tmp_path])
        assert manager.file_count() == 3

        manager.watch_set_paths([tmp_path])
        time.sleep(1.0)
        for path in leftovers:
            path.unlink()
        created = tmp_path / "new.pyc"
        created.write_text("x")

        assert _wait_for(
            lambda: [f.path for f in manager.get_all()] == [str(created)]
        )
