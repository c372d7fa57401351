"""
Rewatch Test Configuration.

Pytest fixtures and configuration.
Requires Python 3.11+.
"""

import queue
import threading
import time
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

from sink.base import Directive, EventKind, InteractionEvent, Region
from utils.errors import SinkIOError


class RecordingSink:
    """
    In-memory sink double.

    Records every call, keeps a body the way an editor window would and
    takes a snapshot of the body each time the sink is asked to show it,
    which happens once at the end of every command run.
    """

    def __init__(
        self,
        max_write: int | None = None,
        fail_body_after: int | None = None,
    ) -> None:
        self.max_write = max_write
        self.fail_body_after = fail_body_after
        self.title = ""
        self.tag = bytearray()
        self.body = bytearray()
        self.addr = ","
        self.ops: list[tuple[str, str, bytes | str]] = []
        self.snapshots: list[str] = []
        self.forwarded: list[InteractionEvent] = []
        self.deleted = False
        self._body_writes = 0
        self._events: queue.Queue[InteractionEvent | None] = queue.Queue()
        self._lock = threading.Lock()

    # Sink protocol

    def set_title(self, name: str) -> None:
        self.title = name

    def control(self, directive: Directive, arg: str = "") -> None:
        with self._lock:
            self.ops.append(("control", str(directive), arg))
            if directive == Directive.SHOW:
                self.snapshots.append(self.body.decode())
            elif directive == Directive.DELETE:
                self.deleted = True
                self._events.put(None)

    def write_region(self, region: Region, data: bytes) -> int:
        with self._lock:
            self.ops.append(("write", str(region), data))
            match region:
                case Region.ADDR:
                    self.addr = data.decode()
                case Region.DATA:
                    if self.addr == ",":
                        self.body.clear()
                    self.body += data
                case Region.TAG:
                    self.tag += data
                case Region.BODY:
                    self._body_writes += 1
                    if self.fail_body_after is not None and self._body_writes > self.fail_body_after:
                        raise SinkIOError("body closed")
                    n = len(data) if self.max_write is None else min(len(data), self.max_write)
                    self.body += data[:n]
                    return n
            return len(data)

    def read_region(self, region: Region) -> bytes:
        return bytes(self.body) if region == Region.BODY else bytes(self.tag)

    def read_selection(self) -> tuple[int, int]:
        return (0, 0)

    def events(self) -> Iterator[InteractionEvent]:
        while (event := self._events.get()) is not None:
            yield event

    def forward_event(self, event: InteractionEvent) -> None:
        self.forwarded.append(event)

    def close(self) -> None:
        self._events.put(None)

    # Test helpers

    def push(self, text: str, kind: EventKind = EventKind.EXECUTE) -> None:
        self._events.put(InteractionEvent(kind, text))

    def body_writes(self) -> list[bytes]:
        return [data for op, region, data in self.ops if op == "write" and region == "body"]

    def controls(self) -> list[str]:
        return [directive for op, directive, _ in self.ops if op == "control"]

    @property
    def text(self) -> str:
        return self.body.decode()


def wait_for(predicate: Callable[[], bool], timeout: float = 10.0) -> bool:
    """Poll predicate until it holds or the timeout expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


@pytest.fixture
def sink() -> RecordingSink:
    """Create a recording sink."""
    return RecordingSink()


@pytest.fixture
def tree(tmp_path: Path) -> Path:
    """
    Create a small project tree.

    root/
      main.txt
      src/pkg/mod.txt
      docs/
      .git/objects/
      Godep/_workspace/
    """
    root = tmp_path / "project"
    (root / "src" / "pkg").mkdir(parents=True)
    (root / "docs").mkdir()
    (root / ".git" / "objects").mkdir(parents=True)
    (root / "Godep" / "_workspace").mkdir(parents=True)
    (root / "main.txt").write_text("hello\n")
    (root / "src" / "pkg" / "mod.txt").write_text("module\n")
    return root
