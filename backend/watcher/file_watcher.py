"""
Rewatch Directory Tree Watcher.

Registers a watchdog watch for the root and every non-excluded
subdirectory, and turns file system events into run requests.
Requires Python 3.11+.
"""

import contextlib
import os
import stat
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import PurePath
from typing import Any

from watchdog.events import (
    EVENT_TYPE_CLOSED_NO_WRITE,
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    EVENT_TYPE_OPENED,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver, ObservedWatch

from utils.config import WatcherSettings
from utils.errors import ChannelClosedError, FatalError, SetupError, WatchPointLostError
from utils.logger import LoggerMixin

# Reads of the tree, including the command's own, are not changes
IGNORED_EVENT_TYPES = frozenset({EVENT_TYPE_OPENED, EVENT_TYPE_CLOSED_NO_WRITE})


def _is_within(path: str, parent: str) -> bool:
    """Check if path is parent or lies beneath it."""
    return PurePath(path).is_relative_to(parent)


@dataclass(frozen=True)
class TreeChange:
    """A change to the watched tree, stamped when it was detected."""

    timestamp: float
    event_type: str
    path: str


class WatchSet:
    """Directories currently registered with the observer."""

    def __init__(self) -> None:
        self._watches: dict[str, ObservedWatch] = {}
        self._reserved: set[str] = set()
        self._lock = threading.Lock()

    def __contains__(self, path: object) -> bool:
        return path in self._watches

    def __len__(self) -> int:
        return len(self._watches)

    def paths(self) -> set[str]:
        with self._lock:
            return set(self._watches)

    def reserve(self, path: str) -> bool:
        """Claim path for registration; False if it is registered or claimed."""
        with self._lock:
            if path in self._watches or path in self._reserved:
                return False
            self._reserved.add(path)
            return True

    def release(self, path: str) -> None:
        with self._lock:
            self._reserved.discard(path)

    def add(self, path: str, watch: ObservedWatch) -> None:
        with self._lock:
            self._reserved.discard(path)
            self._watches[path] = watch

    def pop_tree(self, path: str) -> list[ObservedWatch]:
        """Remove and return the watches for path and everything beneath it."""
        with self._lock:
            gone = [p for p in self._watches if _is_within(p, path)]
            return [self._watches.pop(p) for p in gone]


class PendingChange:
    """
    The newest change not yet submitted.

    A change detected while another is still waiting replaces it. The
    coordinator skips requests stamped before its last run started, so
    submitting only the newest triggers the same runs.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._change: TreeChange | None = None
        self._closed = False
        self._coalesced = 0

    def __len__(self) -> int:
        return int(self._change is not None)

    @property
    def coalesced(self) -> int:
        """Get number of changes replaced before they were submitted."""
        return self._coalesced

    def put(self, change: TreeChange) -> None:
        with self._cond:
            if self._change is not None:
                self._coalesced += 1
            self._change = change
            self._cond.notify()

    def take(self, block: bool = True) -> TreeChange | None:
        """
        Take the waiting change.

        Returns:
            The change, or None if closed (or, without blocking, if empty)
        """
        with self._cond:
            if block:
                self._cond.wait_for(lambda: self._change is not None or self._closed)
            if self._closed:
                return None
            change, self._change = self._change, None
            return change

    def close(self) -> None:
        with self._cond:
            self._closed = True
            self._cond.notify_all()


class TreeEventHandler(FileSystemEventHandler, LoggerMixin):
    """
    Receives watchdog events on the observer thread.

    Fatal errors cannot be raised out of the observer thread, so they
    are handed to ``on_fatal`` and every later event is ignored.
    """

    def __init__(
        self,
        watcher: "TreeWatcher",
        on_fatal: Callable[[FatalError], Any] | None = None,
    ) -> None:
        super().__init__()
        self._watcher = watcher
        self._on_fatal = on_fatal
        self._failed = False

    def on_any_event(self, event: FileSystemEvent) -> None:
        if self._failed:
            return
        try:
            self._watcher.handle_event(event)
        except FatalError as e:
            self._failed = True
            self.log.error("watch_failed", error=str(e))
            if self._on_fatal is None:
                raise
            self._on_fatal(e)


class TreeWatcher(LoggerMixin):
    """
    Watches a file or a directory tree for changes.

    Directories are registered one by one, without watchdog's recursive
    mode, so that excluded directories are never watched. Registration
    and root-loss checks happen on the observer thread as events
    arrive. Each change is stamped there and left pending, replacing
    any change still waiting; a pump thread submits pending changes as
    run requests one at a time, waiting for each to be acknowledged.
    """

    def __init__(
        self,
        root: str | os.PathLike[str],
        submit: Callable[[float, str], Any],
        settings: WatcherSettings | None = None,
        clock: Callable[[], float] = time.monotonic,
        on_fatal: Callable[[FatalError], Any] | None = None,
        observer: BaseObserver | None = None,
    ) -> None:
        """
        Initialize the tree watcher.

        Args:
            root: File or directory to watch
            submit: Blocking run request submission (timestamp, source)
            settings: Watcher settings (exclusions, observer timeout)
            clock: Time source for change timestamps
            on_fatal: Receives fatal errors raised on the observer thread
            observer: Observer to schedule watches on (default: platform Observer)
        """
        settings = settings or WatcherSettings()

        self._root = os.path.abspath(root)
        self._is_dir: bool | None = None
        self._submit = submit
        self._clock = clock
        self._exclude = frozenset(settings.exclude_names)
        self._observer = observer or Observer(timeout=settings.observer_timeout)
        self._handler = TreeEventHandler(self, on_fatal)
        self._watch_set = WatchSet()
        self._pending = PendingChange()
        self._pump_thread: threading.Thread | None = None
        self._running = False

    @property
    def root(self) -> str:
        return self._root

    @property
    def is_dir(self) -> bool:
        """Whether the root is a directory; resolves the root on first use."""
        if self._is_dir is None:
            self.resolve_root()
        return bool(self._is_dir)

    @property
    def watched_paths(self) -> set[str]:
        return self._watch_set.paths()

    @property
    def handler(self) -> TreeEventHandler:
        return self._handler

    @property
    def pending_count(self) -> int:
        """Get number of changes waiting to be submitted."""
        return len(self._pending)

    @property
    def coalesced_count(self) -> int:
        """Get number of changes replaced by a newer one before submission."""
        return self._pending.coalesced

    def resolve_root(self) -> bool:
        """
        Stat the root.

        Returns:
            True if the root is a directory

        Raises:
            SetupError: If the root cannot be stat'd
        """
        try:
            st = os.stat(self._root)
        except OSError as e:
            raise SetupError(f"cannot watch {self._root}: {e.strerror or e}") from e
        self._is_dir = stat.S_ISDIR(st.st_mode)
        return self._is_dir

    # Registration

    def _schedule(self, path: str) -> bool:
        """Register one directory; a no-op if it is already registered."""
        if not self._watch_set.reserve(path):
            return False
        # Outside the watch set lock: the observer holds its own lock while dispatching
        try:
            watch = self._observer.schedule(self._handler, path, recursive=False)
        except OSError as e:
            self._watch_set.release(path)
            if not os.path.exists(path):
                return False
            raise SetupError(f"cannot watch {path}: {e.strerror or e}") from e
        self._watch_set.add(path, watch)
        self.log.debug("watch_registered", path=path)
        return True

    def register_tree(self, path: str | os.PathLike[str]) -> int:
        """
        Register path and, if it is a directory, every directory below it.

        Paths that vanish during the walk are skipped unless the path is
        the root. A regular-file root is watched through its parent
        directory with events filtered down to the file.

        Returns:
            Number of newly registered directories

        Raises:
            SetupError: If the root or a directory cannot be read
        """
        path = os.path.abspath(path)
        is_root = path == self._root

        try:
            st = os.stat(path)
        except FileNotFoundError as e:
            if is_root:
                raise SetupError(f"cannot watch {path}: {e.strerror}") from e
            return 0
        except OSError as e:
            raise SetupError(f"cannot stat {path}: {e.strerror or e}") from e

        if not stat.S_ISDIR(st.st_mode):
            if is_root:
                self._is_dir = False
                return int(self._schedule(os.path.dirname(path)))
            return 0

        if is_root:
            self._is_dir = True
        elif os.path.basename(path) in self._exclude:
            return 0

        added = int(self._schedule(path))
        try:
            with os.scandir(path) as it:
                children = [entry.path for entry in it if entry.is_dir(follow_symlinks=False)]
        except FileNotFoundError:
            return added
        except OSError as e:
            raise SetupError(f"cannot read {path}: {e.strerror or e}") from e

        for child in children:
            added += self.register_tree(child)
        return added

    def forget(self, path: str) -> int:
        """Drop the watches for a removed directory and everything below it."""
        watches = self._watch_set.pop_tree(path)
        for watch in watches:
            with contextlib.suppress(KeyError):
                self._observer.unschedule(watch)
        if watches:
            self.log.debug("watches_dropped", path=path, count=len(watches))
        return len(watches)

    # Event handling

    def is_lost(self, removed: str) -> bool:
        """Check if removing a path took the root away."""
        return _is_within(self._root, removed) or not os.path.exists(self._root)

    def _covers(self, path: str) -> bool:
        if _is_within(self._root, path):
            # The root itself or one of its ancestors
            return True
        if not self.is_dir or not _is_within(path, self._root):
            return False
        rel = PurePath(path).relative_to(self._root)
        return not any(part in self._exclude for part in rel.parts)

    def is_relevant(self, event: FileSystemEvent) -> bool:
        """Check if an event is a change to the watched tree."""
        if event.event_type in IGNORED_EVENT_TYPES:
            return False
        if event.is_directory and event.event_type == EVENT_TYPE_MODIFIED:
            return False
        paths = [os.fsdecode(event.src_path)]
        if event.event_type == EVENT_TYPE_MOVED and event.dest_path:
            paths.append(os.fsdecode(event.dest_path))
        return any(self._covers(p) for p in paths)

    def _removed(self, path: str) -> None:
        if not self.is_lost(path):
            self.forget(path)
            return
        if not os.path.exists(self._root):
            raise WatchPointLostError(self._root)
        # Root replaced in place, as by an editor saving through a rename
        self.log.info("watch_point_replaced", path=self._root, removed=path)
        self.forget(path)
        self.register_tree(self._root)

    def handle_event(self, event: FileSystemEvent) -> TreeChange | None:
        """
        React to one file system event and queue the resulting change.

        Returns:
            The queued change, or None if the event was filtered out

        Raises:
            WatchPointLostError: If the root or an ancestor was removed and the root is gone
            SetupError: If a new directory cannot be registered
        """
        if not self.is_relevant(event):
            return None

        src = os.fsdecode(event.src_path)
        if event.event_type == EVENT_TYPE_CREATED:
            self.register_tree(src)
        elif event.event_type == EVENT_TYPE_DELETED:
            self._removed(src)
        elif event.event_type == EVENT_TYPE_MOVED:
            self._removed(src)
            dest = os.fsdecode(event.dest_path)
            if self._covers(dest):
                self.register_tree(dest)

        change = TreeChange(timestamp=self._clock(), event_type=event.event_type, path=src)
        self.log.debug("tree_changed", event_type=change.event_type, path=src)
        self._pending.put(change)
        return change

    def _forward(self, change: TreeChange) -> bool:
        try:
            self._submit(change.timestamp, "watcher")
        except ChannelClosedError:
            self.log.debug("change_after_shutdown", path=change.path)
            return False
        return True

    def submit_pending(self) -> int:
        """
        Submit the waiting change, if any, without waiting for more.

        Returns:
            Number of changes submitted
        """
        change = self._pending.take(block=False)
        if change is None or not self._forward(change):
            return 0
        return 1

    def _pump(self) -> None:
        while (change := self._pending.take()) is not None:
            if not self._forward(change):
                break

    # Lifecycle

    def start(self) -> None:
        """
        Start the observer and the pump, then register the tree.

        Raises:
            SetupError: If the observer or the root cannot be set up
        """
        if self._running:
            return

        self.resolve_root()
        try:
            self._observer.start()
        except OSError as e:
            raise SetupError(f"cannot start file system observer: {e}") from e

        self._pump_thread = threading.Thread(
            target=self._pump, name="rewatch-watch-pump", daemon=True
        )
        self._pump_thread.start()
        self._running = True

        count = self.register_tree(self._root)
        self.log.info(
            "tree_watcher_started",
            path=self._root,
            is_dir=self._is_dir,
            directories=count,
        )

    def stop(self) -> None:
        """Stop the observer and the pump."""
        if not self._running:
            return

        self._pending.close()
        self._observer.stop()
        self._observer.join(timeout=5.0)
        if self._pump_thread is not None:
            self._pump_thread.join(timeout=5.0)
            self._pump_thread = None
        self._running = False
        self.log.info("tree_watcher_stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    def __enter__(self) -> "TreeWatcher":
        """Context manager entry."""
        self.start()
        return self

    def __exit__(self, *args: Any) -> None:
        """Context manager exit."""
        self.stop()
