"""
Rewatch Command Runner.

Runs the configured command and streams its merged output to the sink.
Requires Python 3.11+.
"""

import io
import signal
import subprocess
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import cast

from sink.base import Directive, Region, Sink
from utils.config import RunnerSettings
from utils.errors import CommandError, SetupError, SinkIOError
from utils.logger import LoggerMixin

MAX_CHUNK_SIZE = 1024


@dataclass
class RunResult:
    """Outcome of one command execution."""

    command: str
    started_at: datetime
    finished_at: datetime
    returncode: int | None = None  # None if the process never started
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class BoundedWriter:
    """
    Writes to a sink region in chunks of at most ``limit`` bytes.

    Sinks cannot be relied on to take large writes atomically.
    """

    def __init__(self, sink: Sink, region: Region = Region.BODY, limit: int = MAX_CHUNK_SIZE) -> None:
        if not 0 < limit <= MAX_CHUNK_SIZE:
            raise ValueError(f"limit must be between 1 and {MAX_CHUNK_SIZE}")
        self._sink = sink
        self._region = region
        self._limit = limit

    def write(self, data: bytes) -> int:
        """
        Deliver all of ``data`` in order.

        Returns:
            Number of bytes written, always len(data)

        Raises:
            SinkIOError: If the sink accepts no bytes
        """
        view = memoryview(data)
        while view:
            written = self._sink.write_region(self._region, bytes(view[: self._limit]))
            if written <= 0:
                raise SinkIOError(f"short write to {self._region}")
            view = view[written:]
        return len(data)


def describe_exit(returncode: int) -> str:
    """Describe an unsuccessful exit status the way a shell user expects."""
    if returncode < 0:
        try:
            return f"signal: {signal.Signals(-returncode).name}"
        except ValueError:
            return f"signal: {-returncode}"
    return f"exit status {returncode}"


class CommandRunner(LoggerMixin):
    """
    Executes the command and renders one run into the sink body.

    Each run clears the body, writes a ``$ command`` banner, the merged
    stdout/stderr of the process, any failure, and a completion
    timestamp, then scrolls back to the top of the output.
    """

    def __init__(
        self,
        sink: Sink,
        command: Sequence[str],
        settings: RunnerSettings | None = None,
        cwd: Path | None = None,
        now: Callable[[], datetime] = lambda: datetime.now().astimezone(),
    ) -> None:
        """
        Initialize the command runner.

        Args:
            sink: Sink receiving the output
            command: Program and arguments
            settings: Runner settings (chunk and read sizes)
            cwd: Working directory of the command (default: inherited)
            now: Wall clock used for the completion line
        """
        self._sink = sink
        self._command = list(command)
        self._settings = settings or RunnerSettings()
        self._cwd = cwd
        self._now = now
        self._writer = BoundedWriter(sink, Region.BODY, self._settings.chunk_size)

    @property
    def command_line(self) -> str:
        return " ".join(self._command)

    def _write(self, text: str) -> None:
        self._writer.write(text.encode())

    def _reset_body(self) -> None:
        self._sink.write_region(Region.ADDR, b",")
        self._sink.write_region(Region.DATA, b"")
        self._sink.control(Directive.CLEAN)

    def _show_latest(self) -> None:
        self._sink.write_region(Region.ADDR, b"#0")
        self._sink.control(Directive.DOT_TO_ADDR)
        self._sink.control(Directive.SHOW)
        self._sink.control(Directive.CLEAN)

    def _execute(self) -> int:
        """
        Spawn the command and copy its output into the sink.

        Returns:
            The process return code

        Raises:
            CommandError: If the process cannot be started
        """
        try:
            proc = subprocess.Popen(
                self._command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                cwd=self._cwd,
            )
        except OSError as e:
            raise CommandError(self.command_line, str(e)) from e

        # Leaving the block closes the pipe and reaps the child
        with proc:
            stdout = cast(io.BufferedReader, proc.stdout)
            while chunk := stdout.read1(self._settings.read_size):
                self._writer.write(chunk)
            return proc.wait()

    def run(self) -> RunResult:
        """
        Run the command once.

        Command failures are written into the output and reported in the
        result; sink failures propagate.

        Raises:
            SetupError: If no command was configured
            SinkIOError: If the sink cannot be written
        """
        if not self._command:
            raise SetupError("must supply a command")

        result = RunResult(
            command=self.command_line,
            started_at=self._now(),
            finished_at=self._now(),
        )
        self.log.info("command_started", command=result.command)

        try:
            self._reset_body()
            self._write(f"$ {result.command}\n")
            try:
                result.returncode = self._execute()
                if result.returncode != 0:
                    raise CommandError(result.command, describe_exit(result.returncode))
            except CommandError as e:
                result.error = e.reason
                self.log.warning("command_failed", command=result.command, error=e.reason)
                self._write(f"{e}\n")
            result.finished_at = self._now()
            self._write(f"{result.finished_at}\n")
        finally:
            self._show_latest()

        self.log.info(
            "command_finished",
            command=result.command,
            returncode=result.returncode,
            elapsed=(result.finished_at - result.started_at).total_seconds(),
        )
        return result
