"""
Rewatch Run Channel.

Synchronous hand-off of run requests from the watcher and the event
dispatcher to the run coordinator.
Requires Python 3.11+.
"""

import queue
import threading
from dataclasses import dataclass, field

from utils.errors import ChannelClosedError
from utils.logger import LoggerMixin


@dataclass
class RunRequest:
    """A request to re-run the command, acknowledged exactly once."""

    timestamp: float
    source: str = "manual"  # watcher, manual
    _done: threading.Event = field(default_factory=threading.Event, repr=False)

    def acknowledge(self) -> None:
        """Release the submitter."""
        self._done.set()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until acknowledged; False if the timeout expired."""
        return self._done.wait(timeout)

    @property
    def acknowledged(self) -> bool:
        return self._done.is_set()


class RunChannel(LoggerMixin):
    """
    Rendezvous channel of run requests.

    ``submit`` does not return until the receiver has acknowledged the
    request, so every submitter has at most one request outstanding and
    requests are handled in submission order.
    """

    def __init__(self) -> None:
        self._queue: queue.Queue[RunRequest | None] = queue.Queue()
        self._closed = threading.Event()
        self._lock = threading.Lock()

    def submit(self, timestamp: float, source: str = "manual") -> RunRequest:
        """
        Send a run request and wait for its acknowledgment.

        Args:
            timestamp: Clock reading at detection or trigger time
            source: Where the request came from, for logging

        Returns:
            The acknowledged request

        Raises:
            ChannelClosedError: If the channel was closed
        """
        request = RunRequest(timestamp=timestamp, source=source)
        # Every accepted request is queued ahead of the close sentinel
        with self._lock:
            if self._closed.is_set():
                raise ChannelClosedError("run channel is closed")
            self._queue.put(request)
        request.wait()
        return request

    def receive(self, timeout: float | None = None) -> RunRequest | None:
        """
        Take the next request.

        Returns:
            The request, or None once the channel has been closed

        Raises:
            queue.Empty: If the timeout expired
        """
        request = self._queue.get(timeout=timeout)
        if request is None:
            # Keep the sentinel visible to later receivers
            self._queue.put(None)
        return request

    def close(self) -> None:
        """Stop accepting requests and wake the receiver."""
        with self._lock:
            if not self._closed.is_set():
                self._closed.set()
                self._queue.put(None)

    def drain(self) -> int:
        """Close the channel and acknowledge, without handling, every request still queued."""
        self.close()
        count = 0
        while True:
            try:
                request = self._queue.get_nowait()
            except queue.Empty:
                break
            if request is not None:
                request.acknowledge()
                count += 1
        if count:
            self.log.debug("run_requests_drained", count=count)
        return count

    @property
    def closed(self) -> bool:
        return self._closed.is_set()
