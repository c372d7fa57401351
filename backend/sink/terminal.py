"""
Rewatch Terminal Sink.

Renders the sink body on stdout and reads interaction commands from
stdin, one per line. Typing ``Get`` re-runs the command and ``Del``
quits.
Requires Python 3.11+.
"""

import sys
import threading
from collections.abc import Iterator
from typing import BinaryIO, TextIO

from sink.base import Directive, EventKind, InteractionEvent, Region
from utils.errors import SinkIOError
from utils.logger import LoggerMixin

CLEAR_SCREEN = b"\x1b[H\x1b[2J"


class TerminalSink(LoggerMixin):
    """
    Sink backed by the controlling terminal.

    Keeps an in-memory copy of the tag and body so that regions can be
    read back and addressed the same way as in an editor window.
    """

    def __init__(
        self,
        stdin: TextIO | None = None,
        stdout: BinaryIO | None = None,
    ) -> None:
        """
        Initialize the terminal sink.

        Args:
            stdin: Source of interaction commands (default: sys.stdin)
            stdout: Destination for body output (default: sys.stdout.buffer)
        """
        self._stdin = stdin if stdin is not None else sys.stdin
        self._stdout = stdout if stdout is not None else sys.stdout.buffer
        self._lock = threading.Lock()
        self._deleted = threading.Event()

        self._title = ""
        self._tag = bytearray()
        self._body = bytearray()
        self._addr = (0, 0)
        self._dot = (0, 0)
        self.dirty = False
        self.dump_dir: str | None = None
        self.dump_command: str | None = None

    @property
    def title(self) -> str:
        return self._title

    @property
    def deleted(self) -> bool:
        return self._deleted.is_set()

    def _isatty(self) -> bool:
        isatty = getattr(self._stdout, "isatty", None)
        return bool(isatty and isatty())

    def _emit(self, data: bytes) -> None:
        try:
            self._stdout.write(data)
            self._stdout.flush()
        except (OSError, ValueError) as e:
            raise SinkIOError(f"terminal write failed: {e}") from e

    def _parse_addr(self, text: str) -> tuple[int, int]:
        """Resolve an address: ``,`` (all), ``$`` (end) or ``#n`` (offset)."""
        size = len(self._body)
        text = text.strip()
        if text == ",":
            return (0, size)
        if text == "$":
            return (size, size)
        if text.startswith("#") and text[1:].isdigit():
            offset = min(int(text[1:]), size)
            return (offset, offset)
        raise SinkIOError(f"bad address: {text!r}")

    def set_title(self, name: str) -> None:
        self._title = name
        if self._isatty():
            self._emit(f"\x1b]0;{name}\x07".encode())

    def control(self, directive: Directive, arg: str = "") -> None:
        with self._lock:
            match directive:
                case Directive.CLEAN:
                    self.dirty = False
                case Directive.DELETE:
                    self._deleted.set()
                case Directive.DOT_TO_ADDR:
                    self._dot = self._addr
                case Directive.SHOW:
                    self._emit(b"")
                case Directive.DUMPDIR:
                    self.dump_dir = arg
                case Directive.DUMP:
                    self.dump_command = arg
                case _:
                    raise SinkIOError(f"unsupported directive: {directive}")
        self.log.debug("sink_control", directive=str(directive), arg=arg)

    def write_region(self, region: Region, data: bytes) -> int:
        with self._lock:
            match region:
                case Region.TAG:
                    self._tag += data
                case Region.BODY:
                    self._body += data
                    self.dirty = True
                    self._emit(data)
                case Region.ADDR:
                    self._addr = self._parse_addr(data.decode())
                case Region.DATA:
                    start, end = self._addr
                    redraw = end > start
                    self._body[start:end] = data
                    self._addr = (start + len(data), start + len(data))
                    self.dirty = True
                    if redraw and self._isatty():
                        self._emit(CLEAR_SCREEN + bytes(self._body))
                    elif data:
                        self._emit(data)
                case _:
                    raise SinkIOError(f"region {region} is not writable")
        return len(data)

    def read_region(self, region: Region) -> bytes:
        with self._lock:
            match region:
                case Region.TAG:
                    return bytes(self._tag)
                case Region.BODY:
                    return bytes(self._body)
                case Region.DATA:
                    start, end = self._dot
                    return bytes(self._body[start:end])
                case Region.ADDR:
                    return f"{self._addr[0]} {self._addr[1]}".encode()
        raise SinkIOError(f"region {region} is not readable")

    def read_selection(self) -> tuple[int, int]:
        return self._dot

    def events(self) -> Iterator[InteractionEvent]:
        """Yield one execute event per non-empty input line until deleted."""
        while not self._deleted.is_set():
            try:
                line = self._stdin.readline()
            except (OSError, ValueError) as e:
                raise SinkIOError(f"terminal read failed: {e}") from e
            if not line:
                return
            text = line.strip()
            if text:
                yield InteractionEvent(EventKind.EXECUTE, text)

    def forward_event(self, event: InteractionEvent) -> None:
        # The terminal has no built-in commands of its own
        if event.kind == EventKind.EXECUTE and not self.deleted:
            self.log.warning("unknown_command", text=event.text)

    def close(self) -> None:
        self._deleted.set()
