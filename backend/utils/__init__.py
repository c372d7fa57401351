"""
Rewatch Utilities Package.

Common utilities shared across all packages.
Requires Python 3.11+.
"""

from utils.config import Settings, get_settings
from utils.errors import (
    ChannelClosedError,
    CommandError,
    FatalError,
    RewatchError,
    SetupError,
    SinkIOError,
    WatchPointLostError,
)
from utils.logger import configure_logging, get_logger, LoggerMixin

__all__ = [
    "Settings",
    "get_settings",
    "configure_logging",
    "get_logger",
    "LoggerMixin",
    "RewatchError",
    "FatalError",
    "SetupError",
    "WatchPointLostError",
    "SinkIOError",
    "CommandError",
    "ChannelClosedError",
]
