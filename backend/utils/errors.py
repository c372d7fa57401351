"""
Rewatch Error Types.

Fatal errors end the process through the top-level handler; command
errors are rendered into the output and the pipeline carries on.
"""


class RewatchError(Exception):
    """Base class for all rewatch errors."""


class FatalError(RewatchError):
    """An error the process cannot recover from."""


class SetupError(FatalError):
    """The sink, the watch root or the watch facility could not be set up."""


class WatchPointLostError(FatalError):
    """The watch root or one of its ancestors was removed."""

    def __init__(self, root: str) -> None:
        super().__init__(f"watch point {root} deleted")
        self.root = root


class SinkIOError(FatalError):
    """A write or control call to the sink failed."""


class CommandError(RewatchError):
    """The command failed to start or exited unsuccessfully."""

    def __init__(self, command: str, reason: str) -> None:
        super().__init__(f"{command}: {reason}")
        self.command = command
        self.reason = reason


class ChannelClosedError(RewatchError):
    """A run request was submitted after the run channel was closed."""
