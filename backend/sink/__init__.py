"""
Rewatch Sink Package.

Display surface interface, adapters and the interaction event dispatcher.
Requires Python 3.11+.
"""

from sink.base import Directive, EventKind, InteractionEvent, Region, Sink
from sink.dispatcher import EventDispatcher
from sink.terminal import TerminalSink
from utils.config import SinkSettings
from utils.errors import SetupError


def open_sink(settings: SinkSettings) -> Sink:
    """
    Open the sink selected by the settings.

    Raises:
        SetupError: If the sink kind is unknown or cannot be opened
    """
    if settings.kind == "terminal":
        try:
            return TerminalSink()
        except (OSError, AttributeError) as e:
            raise SetupError(f"cannot open terminal sink: {e}") from e
    raise SetupError(f"unknown sink kind: {settings.kind}")


__all__ = [
    "Directive",
    "EventKind",
    "InteractionEvent",
    "Region",
    "Sink",
    "EventDispatcher",
    "TerminalSink",
    "open_sink",
]
