"""
Rewatch Runner Package.

Single-flight execution of the watched command.
Requires Python 3.11+.
"""

from runner.channel import RunChannel, RunRequest
from runner.command import BoundedWriter, CommandRunner, RunResult
from runner.coordinator import RunCoordinator

__all__ = [
    "RunChannel",
    "RunRequest",
    "BoundedWriter",
    "CommandRunner",
    "RunResult",
    "RunCoordinator",
]
