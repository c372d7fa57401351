"""
Rewatch Command Line Entry Point.

Watches a file or directory tree and re-runs a command whenever it
changes, or when ``Get`` is executed in the sink.
Requires Python 3.11+.

Usage:
    rewatch [-p PATH] command [args...]
"""

import argparse
import os
import sys
import time
from collections.abc import Callable, Sequence
from pathlib import Path

from app.context import AppContext
from runner.command import CommandRunner
from runner.coordinator import RunCoordinator
from sink import open_sink
from sink.base import Directive, Region, Sink
from sink.dispatcher import EventDispatcher
from utils.config import Settings, SinkSettings, get_settings
from utils.errors import FatalError, SinkIOError
from utils.logger import configure_logging, get_logger
from watcher.file_watcher import TreeWatcher

logger = get_logger("rewatch")


def build_parser(settings: Settings) -> argparse.ArgumentParser:
    """Create the command line parser."""
    ap = argparse.ArgumentParser(
        prog=settings.app_name,
        description="Re-run a command whenever a file or directory tree changes.",
    )
    ap.add_argument(
        "-p", "--path", default=".",
        help="File or directory to watch (default: current directory)",
    )
    ap.add_argument(
        "-v", "--verbose", action="store_true",
        help="Enable debug logging on stderr",
    )
    ap.add_argument(
        "--version", action="version",
        version=f"%(prog)s {settings.app_version}",
    )
    ap.add_argument(
        "command", nargs=argparse.REMAINDER,
        help="Command and arguments to run",
    )
    return ap


def parse_args(argv: Sequence[str], settings: Settings) -> argparse.Namespace:
    """
    Parse the command line.

    Exits with status 2 if no command was given.
    """
    ap = build_parser(settings)
    args = ap.parse_args(list(argv))
    if args.command and args.command[0] == "--":
        args.command = args.command[1:]
    if not args.command:
        ap.error("must supply a command")
    return args


def window_title(root: str, is_dir: bool, suffix: str) -> str:
    """Name the sink after the watched path; directories end in a slash."""
    return f"{root}{'/' if is_dir else ''}{suffix}"


def prepare_sink(sink: Sink, title: str, invocation: str, settings: SinkSettings) -> None:
    """Record how to re-create the sink, then title and tag it."""
    try:
        sink.control(Directive.DUMPDIR, os.getcwd())
    except OSError as e:
        logger.warning("cwd_unavailable", error=str(e))
    sink.control(Directive.DUMP, invocation)
    sink.set_title(title)
    sink.control(Directive.CLEAN)
    sink.write_region(Region.TAG, settings.tag_text.encode())


def delete_sink(sink: Sink | None) -> None:
    """Best-effort sink deletion on the way out."""
    if sink is None:
        return
    try:
        sink.control(Directive.DELETE)
    except SinkIOError as e:
        logger.warning("sink_delete_failed", error=str(e))


def run(
    argv: Sequence[str] | None = None,
    sink_factory: Callable[[SinkSettings], Sink] = open_sink,
    clock: Callable[[], float] = time.monotonic,
) -> int:
    """
    Run the watch pipeline until the sink goes away or a fatal error.

    Args:
        argv: Command line arguments (default: sys.argv[1:])
        sink_factory: Opens the display sink
        clock: Time source shared by every unit

    Returns:
        Process exit status
    """
    argv = sys.argv[1:] if argv is None else list(argv)
    settings = get_settings()
    args = parse_args(argv, settings)
    configure_logging("DEBUG" if args.verbose else None)

    sink: Sink | None = None
    context: AppContext | None = None
    watcher: TreeWatcher | None = None

    try:
        sink = sink_factory(settings.sink)
        context = AppContext(
            settings=settings,
            sink=sink,
            root=Path(os.path.abspath(args.path)),
            command=args.command,
            clock=clock,
        )

        watcher = TreeWatcher(
            context.root,
            context.submit,
            settings=settings.watcher,
            clock=clock,
            on_fatal=context.fail,
        )
        is_dir = watcher.resolve_root()
        prepare_sink(
            sink,
            window_title(watcher.root, is_dir, settings.sink.title_suffix),
            " ".join([settings.app_name, *argv]),
            settings.sink,
        )

        coordinator = RunCoordinator(
            context.channel,
            CommandRunner(sink, context.command, settings.runner),
            clock=clock,
        )
        dispatcher = EventDispatcher(
            sink,
            context.submit,
            clock=clock,
            trigger_text=settings.sink.trigger_text,
            delete_text=settings.sink.delete_text,
        )

        context.spawn("coordinator", coordinator.serve)
        context.spawn("dispatcher", dispatcher.serve, finish=True)
        watcher.start()

        error = context.wait()
        if error is not None:
            raise error
        logger.info("shutdown")
        return 0

    except FatalError as e:
        logger.error("fatal_error", error=str(e), error_type=type(e).__name__)
        delete_sink(sink)
        print(f"{settings.app_name}: {e}", file=sys.stderr)
        return 1

    except KeyboardInterrupt:
        logger.info("interrupted")
        delete_sink(sink)
        return 130

    finally:
        if context is not None:
            context.channel.close()
        if watcher is not None:
            watcher.stop()


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":
    main()
