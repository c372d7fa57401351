"""
Rewatch Application Context.

The one value shared by every unit of the pipeline.
Requires Python 3.11+.
"""

import queue
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from runner.channel import RunChannel, RunRequest
from sink.base import Sink
from utils.config import Settings
from utils.errors import FatalError
from utils.logger import LoggerMixin


@dataclass
class AppContext(LoggerMixin):
    """
    Explicit application state, built once at startup.

    Units receive the context instead of reaching for module globals.
    The first outcome reported through ``fail`` or ``finish`` decides
    how the process ends.
    """

    settings: Settings
    sink: Sink
    root: Path
    command: list[str]
    channel: RunChannel = field(default_factory=RunChannel)
    clock: Callable[[], float] = time.monotonic
    _outcomes: "queue.Queue[FatalError | None]" = field(default_factory=queue.Queue, init=False, repr=False)
    _threads: list[threading.Thread] = field(default_factory=list, init=False, repr=False)

    def submit(self, timestamp: float, source: str = "manual") -> RunRequest:
        """Submit a run request and wait for its acknowledgment."""
        return self.channel.submit(timestamp, source)

    def fail(self, error: FatalError) -> None:
        """Report a fatal error from any thread."""
        self._outcomes.put(error)

    def finish(self) -> None:
        """Report a clean shutdown from any thread."""
        self._outcomes.put(None)

    def wait(self, timeout: float | None = None) -> FatalError | None:
        """
        Block until the first outcome is reported.

        Returns:
            The fatal error, or None for a clean shutdown

        Raises:
            queue.Empty: If the timeout expired
        """
        return self._outcomes.get(timeout=timeout)

    def _guard(self, name: str, target: Callable[[], object], finish: bool) -> None:
        try:
            target()
        except FatalError as e:
            self.log.error("unit_failed", unit=name, error=str(e))
            self.fail(e)
            return
        except Exception as e:
            self.log.exception("unit_crashed", unit=name)
            self.fail(FatalError(f"{name}: {e}"))
            return
        if finish:
            self.finish()

    def spawn(self, name: str, target: Callable[[], object], finish: bool = False) -> threading.Thread:
        """
        Run a unit in a daemon thread.

        Args:
            name: Unit name for logs and the thread name
            target: The unit's entry point
            finish: Report a clean shutdown when the target returns

        Returns:
            The started thread
        """
        thread = threading.Thread(
            target=self._guard,
            args=(name, target, finish),
            name=f"rewatch-{name}",
            daemon=True,
        )
        thread.start()
        self._threads.append(thread)
        return thread
