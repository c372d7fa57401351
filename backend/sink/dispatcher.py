"""
Rewatch Event Dispatcher.

Routes sink interaction events: the trigger command becomes a manual
run request, the delete command deletes the sink, everything else is
handed back to the sink untouched.
Requires Python 3.11+.
"""

import time
from collections.abc import Callable
from typing import Any

from sink.base import Directive, EventKind, InteractionEvent, Sink
from utils.logger import LoggerMixin


class EventDispatcher(LoggerMixin):
    """Consumes the sink's event stream on behalf of the pipeline."""

    def __init__(
        self,
        sink: Sink,
        submit: Callable[[float, str], Any],
        clock: Callable[[], float] = time.monotonic,
        trigger_text: str = "Get",
        delete_text: str = "Del",
    ) -> None:
        """
        Initialize the dispatcher.

        Args:
            sink: Sink whose events are consumed
            submit: Blocking run request submission (timestamp, source)
            clock: Time source for manual request timestamps
            trigger_text: Execute text that re-runs the command
            delete_text: Execute text that deletes the sink
        """
        self._sink = sink
        self._submit = submit
        self._clock = clock
        self._trigger_text = trigger_text
        self._delete_text = delete_text

    def dispatch(self, event: InteractionEvent) -> bool:
        """
        Handle a single event.

        Returns:
            True if the event was consumed, False if it was forwarded
        """
        if event.kind == EventKind.EXECUTE:
            if event.text == self._trigger_text:
                self.log.info("manual_trigger")
                self._submit(self._clock(), "manual")
                return True
            if event.text == self._delete_text:
                self.log.info("sink_delete_requested")
                self._sink.control(Directive.DELETE)

        self._sink.forward_event(event)
        return False

    def serve(self) -> None:
        """Dispatch events until the sink's event stream ends."""
        for event in self._sink.events():
            self.dispatch(event)
        self.log.info("sink_events_closed")
