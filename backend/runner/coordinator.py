"""
Rewatch Run Coordinator.

Serializes run requests and decides which of them re-run the command.
Requires Python 3.11+.
"""

import time
from collections.abc import Callable

from runner.channel import RunChannel, RunRequest
from runner.command import CommandRunner, RunResult
from utils.logger import LoggerMixin


class RunCoordinator(LoggerMixin):
    """
    Single-threaded loop in front of the command runner.

    A request re-runs the command only if it was made after the start of
    the most recent run; older requests are already covered by that run
    and are acknowledged without running. Only the thread calling
    ``serve`` touches the last run start, so it needs no lock.
    """

    def __init__(
        self,
        channel: RunChannel,
        runner: CommandRunner,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the coordinator.

        Args:
            channel: Channel the requests arrive on
            runner: Runner invoked for each accepted request
            clock: Time source shared with the request producers
        """
        self._channel = channel
        self._runner = runner
        self._clock = clock
        self._last_run_start: float | None = None
        self._run_count = 0

    @property
    def last_run_start(self) -> float | None:
        return self._last_run_start

    @property
    def run_count(self) -> int:
        return self._run_count

    def run_now(self) -> RunResult:
        """Run the command, recording its start time first."""
        self._last_run_start = self._clock()
        self._run_count += 1
        return self._runner.run()

    def handle(self, request: RunRequest) -> bool:
        """
        Run the command for a request unless it is stale.

        The request is acknowledged on every path.

        Returns:
            True if the command was run
        """
        try:
            if self._last_run_start is None or self._last_run_start < request.timestamp:
                self.log.debug("run_request_accepted", source=request.source)
                self.run_now()
                return True
            self.log.debug(
                "run_request_stale",
                source=request.source,
                timestamp=request.timestamp,
                last_run_start=self._last_run_start,
            )
            return False
        finally:
            request.acknowledge()

    def serve(self) -> None:
        """Run once at startup, then handle requests until the channel closes."""
        self.run_now()
        try:
            while (request := self._channel.receive()) is not None:
                self.handle(request)
        finally:
            self._channel.drain()
        self.log.info("run_coordinator_stopped", runs=self._run_count)
