"""
Rewatch Sink Interface.

The narrow capability interface the pipeline uses to talk to the
display surface that shows command output.
Requires Python 3.11+.
"""

from collections.abc import Iterator
from dataclasses import dataclass
from enum import StrEnum
from typing import Protocol, runtime_checkable


class Region(StrEnum):
    """Writable regions of a sink."""

    TAG = "tag"  # title bar / command strip
    BODY = "body"  # content
    DATA = "data"  # replaces the text at the current address
    ADDR = "addr"  # sets the current address


class Directive(StrEnum):
    """Control directives understood by a sink."""

    DUMPDIR = "dumpdir"  # working directory hint
    DUMP = "dump"  # invocation recorded for history
    CLEAN = "clean"
    DELETE = "delete"
    DOT_TO_ADDR = "dot=addr"  # selection := address
    SHOW = "show"  # scroll selection into view


class EventKind(StrEnum):
    """Kinds of user interaction reported by a sink."""

    EXECUTE = "execute"
    LOOK = "look"
    INSERT = "insert"
    DELETE = "delete"


@dataclass(frozen=True)
class InteractionEvent:
    """A user interaction with the sink."""

    kind: EventKind
    text: str


@runtime_checkable
class Sink(Protocol):
    """
    Display surface for command output.

    Implementations raise SinkIOError when the surface cannot be
    written to or controlled.
    """

    def set_title(self, name: str) -> None: ...

    def control(self, directive: Directive, arg: str = "") -> None: ...

    def write_region(self, region: Region, data: bytes) -> int: ...

    def read_region(self, region: Region) -> bytes: ...

    def read_selection(self) -> tuple[int, int]: ...

    def events(self) -> Iterator[InteractionEvent]: ...

    def forward_event(self, event: InteractionEvent) -> None: ...

    def close(self) -> None: ...
