"""
Tests for Directory Tree Watcher.

Requires Python 3.11+.
"""

import os
import shutil
import threading
from pathlib import Path

import pytest
from watchdog.events import (
    DirCreatedEvent,
    DirDeletedEvent,
    DirModifiedEvent,
    DirMovedEvent,
    FileClosedNoWriteEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
    FileOpenedEvent,
)

from conftest import wait_for
from utils.config import WatcherSettings
from utils.errors import SetupError, WatchPointLostError
from watcher.file_watcher import TreeWatcher


class Submissions:
    """Records submitted run requests."""

    def __init__(self) -> None:
        self.calls: list[tuple[float, str]] = []
        self._lock = threading.Lock()

    def __call__(self, timestamp: float, source: str) -> None:
        with self._lock:
            self.calls.append((timestamp, source))

    def __len__(self) -> int:
        return len(self.calls)


@pytest.fixture
def submissions() -> Submissions:
    return Submissions()


@pytest.fixture
def watcher(tree: Path, submissions: Submissions) -> TreeWatcher:
    """Create a watcher for the sample tree, with the tree registered."""
    w = TreeWatcher(tree, submissions)
    w.register_tree(tree)
    return w


class TestRegistration:
    """Test cases for recursive registration."""

    def test_registers_every_non_excluded_directory(self, watcher: TreeWatcher, tree: Path):
        """Test that the walk covers the tree but skips .git and Godep."""
        assert watcher.watched_paths == {
            str(tree),
            str(tree / "src"),
            str(tree / "src" / "pkg"),
            str(tree / "docs"),
        }
        assert watcher.is_dir

    def test_registration_is_idempotent(self, watcher: TreeWatcher, tree: Path):
        """Test that registering again adds nothing."""
        before = watcher.watched_paths

        assert watcher.register_tree(tree) == 0
        assert watcher.register_tree(tree / "src") == 0
        assert watcher.watched_paths == before

    def test_custom_exclusions(self, tree: Path, submissions: Submissions):
        """Test that excluded names come from the settings."""
        settings = WatcherSettings(exclude_names=["docs"])
        w = TreeWatcher(tree, submissions, settings=settings)
        w.register_tree(tree)

        assert str(tree / "docs") not in w.watched_paths
        assert str(tree / ".git") in w.watched_paths
        assert str(tree / ".git" / "objects") in w.watched_paths

    def test_exclusions_from_comma_string(self):
        """Test that a comma-separated exclusion list is accepted."""
        settings = WatcherSettings(exclude_names=".git, node_modules ,")
        assert settings.exclude_names == [".git", "node_modules"]

    def test_file_root_watches_only_the_file(self, tree: Path, submissions: Submissions):
        """Test that a regular-file root is registered without a walk."""
        root = tree / "main.txt"
        w = TreeWatcher(root, submissions)

        assert w.register_tree(root) == 1
        assert w.watched_paths == {str(tree)}
        assert not w.is_dir

    def test_missing_root_is_setup_error(self, tmp_path: Path, submissions: Submissions):
        """Test that an unreadable root cannot be watched."""
        w = TreeWatcher(tmp_path / "missing", submissions)

        with pytest.raises(SetupError):
            w.resolve_root()
        with pytest.raises(SetupError):
            w.register_tree(tmp_path / "missing")

    def test_vanished_path_is_skipped(self, watcher: TreeWatcher, tree: Path):
        """Test that a path gone before registration is not an error."""
        assert watcher.register_tree(tree / "gone") == 0

    def test_new_subtree_is_registered(self, watcher: TreeWatcher, tree: Path):
        """Test that a new directory and everything already inside it get watched."""
        (tree / "new" / "inner").mkdir(parents=True)

        assert watcher.register_tree(tree / "new") == 2
        assert str(tree / "new" / "inner") in watcher.watched_paths

    def test_symlinked_directories_are_not_followed(self, watcher: TreeWatcher, tree: Path):
        """Test that a symlink cycle does not recurse forever."""
        os.symlink(tree, tree / "src" / "loop")

        assert watcher.register_tree(tree / "src") == 0


class TestEventHandling:
    """Test cases for event filtering and handling."""

    def test_file_change_queues_a_change(self, watcher: TreeWatcher, tree: Path, submissions: Submissions):
        """Test that a modified file becomes one run request."""
        change = watcher.handle_event(FileModifiedEvent(str(tree / "main.txt")))

        assert change is not None
        assert watcher.pending_count == 1
        assert watcher.submit_pending() == 1
        assert submissions.calls == [(change.timestamp, "watcher")]

    def test_waiting_changes_collapse_to_newest(self, watcher: TreeWatcher, tree: Path, submissions: Submissions):
        """Test that a change still waiting is replaced by a newer one."""
        first = watcher.handle_event(FileModifiedEvent(str(tree / "main.txt")))
        second = watcher.handle_event(FileCreatedEvent(str(tree / "docs" / "new.txt")))

        assert first.timestamp <= second.timestamp
        assert watcher.pending_count == 1
        assert watcher.coalesced_count == 1
        assert watcher.submit_pending() == 1
        assert submissions.calls == [(second.timestamp, "watcher")]
        assert watcher.submit_pending() == 0

    def test_pending_changes_stay_bounded(self, watcher: TreeWatcher, tree: Path):
        """Test that a burst of changes leaves a single change waiting."""
        for _ in range(1000):
            watcher.handle_event(FileModifiedEvent(str(tree / "main.txt")))

        assert watcher.pending_count == 1
        assert watcher.coalesced_count == 999

    @pytest.mark.parametrize(
        "event_factory",
        [
            lambda t: FileOpenedEvent(str(t / "main.txt")),
            lambda t: FileClosedNoWriteEvent(str(t / "main.txt")),
            lambda t: DirModifiedEvent(str(t / "src")),
            lambda t: FileModifiedEvent(str(t / ".git" / "index")),
            lambda t: FileCreatedEvent(str(t / "Godep" / "_workspace" / "x")),
        ],
    )
    def test_ignored_events(self, watcher: TreeWatcher, tree: Path, event_factory):
        """Test that reads, directory modifications and excluded paths are dropped."""
        assert watcher.handle_event(event_factory(tree)) is None
        assert watcher.pending_count == 0

    def test_created_directory_is_registered(self, watcher: TreeWatcher, tree: Path):
        """Test that a creation event extends the watch set."""
        (tree / "build" / "out").mkdir(parents=True)

        assert watcher.handle_event(DirCreatedEvent(str(tree / "build"))) is not None
        assert str(tree / "build") in watcher.watched_paths
        assert str(tree / "build" / "out") in watcher.watched_paths

    def test_removed_root_is_fatal(self, watcher: TreeWatcher, tree: Path):
        """Test that deleting the root is a lost watch point."""
        shutil.rmtree(tree)

        with pytest.raises(WatchPointLostError):
            watcher.handle_event(DirDeletedEvent(str(tree)))

    def test_removed_ancestor_is_fatal(self, watcher: TreeWatcher, tree: Path):
        """Test that deleting an ancestor of the root is a lost watch point."""
        shutil.rmtree(tree)

        with pytest.raises(WatchPointLostError):
            watcher.handle_event(DirDeletedEvent(str(tree.parent)))

    def test_removed_descendant_is_not_fatal(self, watcher: TreeWatcher, tree: Path):
        """Test that deleting a subdirectory only drops its watches."""
        shutil.rmtree(tree / "src")

        assert watcher.handle_event(DirDeletedEvent(str(tree / "src"))) is not None
        assert str(tree / "src") not in watcher.watched_paths
        assert str(tree / "src" / "pkg") not in watcher.watched_paths
        assert str(tree) in watcher.watched_paths

    def test_recreated_directory_is_registered_again(self, watcher: TreeWatcher, tree: Path):
        """Test that a directory removed and re-created is watched again."""
        shutil.rmtree(tree / "docs")
        watcher.handle_event(DirDeletedEvent(str(tree / "docs")))
        (tree / "docs").mkdir()
        watcher.handle_event(DirCreatedEvent(str(tree / "docs")))

        assert str(tree / "docs") in watcher.watched_paths

    def test_removed_sibling_is_ignored(self, watcher: TreeWatcher, tree: Path):
        """Test that deleting something next to the root changes nothing."""
        sibling = tree.parent / "other"
        sibling.mkdir()
        sibling.rmdir()

        assert watcher.handle_event(DirDeletedEvent(str(sibling))) is None

    def test_moved_directory(self, watcher: TreeWatcher, tree: Path):
        """Test that a rename drops the old path and registers the new one."""
        (tree / "docs").rename(tree / "manual")

        assert watcher.handle_event(DirMovedEvent(str(tree / "docs"), str(tree / "manual"))) is not None
        assert str(tree / "docs") not in watcher.watched_paths
        assert str(tree / "manual") in watcher.watched_paths

    def test_directory_moved_out_of_tree(self, watcher: TreeWatcher, tree: Path, tmp_path: Path):
        """Test that a directory moved outside the root is not registered."""
        outside = tmp_path / "outside"
        (tree / "docs").rename(outside)

        watcher.handle_event(DirMovedEvent(str(tree / "docs"), str(outside)))
        assert str(outside) not in watcher.watched_paths

    def test_file_root_filters_siblings(self, tree: Path, submissions: Submissions):
        """Test that only the watched file matters when the root is a file."""
        root = tree / "main.txt"
        w = TreeWatcher(root, submissions)
        w.register_tree(root)

        assert w.handle_event(FileModifiedEvent(str(tree / "other.txt"))) is None
        assert w.handle_event(FileModifiedEvent(str(root))) is not None

    def test_file_root_deleted_is_fatal(self, tree: Path, submissions: Submissions):
        """Test that deleting a file root is a lost watch point."""
        root = tree / "main.txt"
        w = TreeWatcher(root, submissions)
        w.register_tree(root)
        root.unlink()

        with pytest.raises(WatchPointLostError):
            w.handle_event(FileDeletedEvent(str(root)))

    def test_file_root_saved_through_rename(self, tree: Path, submissions: Submissions):
        """Test that a file root renamed to a backup and rewritten stays watched."""
        root = tree / "main.txt"
        backup = tree / "main.txt~"
        w = TreeWatcher(root, submissions)
        w.register_tree(root)

        os.rename(root, backup)
        root.write_text("saved\n")

        assert w.handle_event(FileMovedEvent(str(root), str(backup))) is not None
        assert w.handle_event(FileCreatedEvent(str(root))) is not None
        assert w.watched_paths == {str(tree)}

    def test_directory_root_replaced(self, watcher: TreeWatcher, tree: Path):
        """Test that a root directory removed and re-created is watched afresh."""
        shutil.rmtree(tree)
        (tree / "lib").mkdir(parents=True)

        assert watcher.handle_event(DirDeletedEvent(str(tree))) is not None
        assert watcher.watched_paths == {str(tree), str(tree / "lib")}

    def test_handler_reports_fatal_once(self, tree: Path, submissions: Submissions):
        """Test that the handler routes fatal errors and then goes quiet."""
        errors = []
        w = TreeWatcher(tree, submissions, on_fatal=errors.append)
        w.register_tree(tree)

        shutil.rmtree(tree)
        w.handler.dispatch(DirDeletedEvent(str(tree.parent)))
        w.handler.dispatch(FileModifiedEvent(str(tree / "main.txt")))

        assert len(errors) == 1
        assert isinstance(errors[0], WatchPointLostError)
        assert w.pending_count == 0


class TestObserver:
    """Test cases with a running observer."""

    def test_changes_in_new_subdirectory_are_seen(self, tree: Path, submissions: Submissions):
        """Test that a directory created while watching is watched too."""
        with TreeWatcher(tree, submissions) as w:
            (tree / "fresh").mkdir()
            assert wait_for(lambda: str(tree / "fresh") in w.watched_paths)

            count = len(submissions)
            (tree / "fresh" / "file.txt").write_text("data\n")
            assert wait_for(lambda: len(submissions) > count)

    def test_root_removal_reported(self, tree: Path, submissions: Submissions):
        """Test that removing the watched root reaches on_fatal."""
        errors = []
        with TreeWatcher(tree, submissions, on_fatal=errors.append):
            shutil.rmtree(tree)
            assert wait_for(lambda: len(errors) > 0)

        assert isinstance(errors[0], WatchPointLostError)

    def test_start_while_directories_appear(self, tmp_path: Path, submissions: Submissions):
        """Test that directories created during the startup walk do not stall it."""
        root = tmp_path / "big"
        for i in range(300):
            (root / f"a{i}" / "b").mkdir(parents=True)

        done = threading.Event()

        def make_dirs():
            n = 0
            while not done.is_set() and n < 500:
                (root / f"new{n}").mkdir()
                n += 1

        maker = threading.Thread(target=make_dirs, daemon=True)
        w = TreeWatcher(root, submissions)
        starter = threading.Thread(target=w.start, daemon=True)
        maker.start()
        starter.start()
        starter.join(20)
        done.set()
        maker.join(5)

        try:
            assert not starter.is_alive()
            assert w.is_running
            assert str(root / "a299" / "b") in w.watched_paths
        finally:
            w.stop()

    def test_start_missing_root(self, tmp_path: Path, submissions: Submissions):
        """Test that starting on a missing root fails before observing."""
        w = TreeWatcher(tmp_path / "missing", submissions)

        with pytest.raises(SetupError):
            w.start()
        assert not w.is_running
