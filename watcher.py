from __future__ import annotations

import argparse
import logging
import os
import sys
import threading
from logging.handlers import RotatingFileHandler
from typing import Callable, Optional

from coalescing import (
    DEFAULT_POLL_INTERVAL_MS,
    DEFAULT_SLIDING_EXPIRATION_MS,
    Coalescer,
    ReleaseQueue,
    Strategy,
    create_coalescer,
)
from processors.batch import FILE_TYPE_PATTERNS, process_directory, process_single_file
from processors.dispatcher import TypeDispatcher, default_dispatcher
from processors.errors import ProcessingError
from processors.file_processor import process_file

try:
    from watchdog.observers import Observer
    from watchdog.events import FileSystemEventHandler
except Exception:  # watchdog not available
    print("Required package 'watchdog' is not installed. Install with: python -m pip install watchdog")
    sys.exit(1)


class CoalescingEventHandler(FileSystemEventHandler):
    """Feeds watchdog notifications for one folder into a coalescer."""

    def __init__(self, logger: logging.Logger, coalescer: Coalescer, watch_path: str) -> None:
        super().__init__()
        self.logger = logger
        self.coalescer = coalescer
        self.watch_path = os.path.abspath(watch_path)

    def on_created(self, event):
        if event.is_directory:
            return
        self.logger.info("File created: %s", event.src_path)
        self.coalescer.submit(event.src_path)

    def on_modified(self, event):
        if event.is_directory:
            return
        self.logger.info("File changed: %s", event.src_path)
        self.coalescer.submit(event.src_path)

    def on_deleted(self, event):
        if event.is_directory:
            return
        self.logger.info("File deleted: %s", event.src_path)

    def on_moved(self, event):
        if event.is_directory:
            return
        self.logger.info("File renamed: %s to %s", event.src_path, event.dest_path)
        # A file renamed into the folder is a new arrival
        if os.path.dirname(os.path.abspath(event.dest_path)) == self.watch_path:
            self.coalescer.submit(event.dest_path)

    def on_error(self, exc: BaseException) -> None:
        self.logger.error("File system watching may no longer be active: %s", exc)


def ensure_dir(path: str) -> None:
    os.makedirs(path, exist_ok=True)


def setup_logger(logfile: str) -> logging.Logger:
    logger = logging.getLogger("folder_watcher")
    logger.setLevel(logging.INFO)
    formatter = logging.Formatter("%(asctime)s %(levelname)s %(message)s")

    # Rotating file handler to avoid unbounded log growth
    handler = RotatingFileHandler(logfile, maxBytes=10 * 1024 * 1024, backupCount=5, encoding="utf-8")
    handler.setFormatter(formatter)
    logger.addHandler(handler)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    logger.addHandler(console)

    return logger


def scan_existing_files(directory: str, coalescer: Coalescer, logger: logging.Logger) -> int:
    """Submit every file already in `directory`; returns how many were found."""
    logger.info("Checking %s for existing files", directory)
    count = 0
    for entry in sorted(os.scandir(directory), key=lambda e: e.name):
        if not entry.is_file():
            continue
        logger.info(" - Found %s", entry.path)
        coalescer.submit(entry.path)
        count += 1
    return count


def run_watch(
    watch_path: str,
    logger: logging.Logger,
    strategy: "str | Strategy" = Strategy.EXPIRING_CACHE,
    poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
    sliding_expiration_ms: int = DEFAULT_SLIDING_EXPIRATION_MS,
    stop_event: Optional[threading.Event] = None,
    dispatcher: Optional[TypeDispatcher] = None,
    observer_factory: Callable[[], object] = Observer,
) -> int:
    """Watch `watch_path` until `stop_event` is set or the user interrupts.

    Files already present are processed first, then every settled change.
    Returns the process exit status.
    """
    if not os.path.isdir(watch_path):
        logger.error("%s does not exist", watch_path)
        return 1

    dispatcher = dispatcher or default_dispatcher(logger)
    stop_event = stop_event or threading.Event()
    releases = ReleaseQueue(lambda path: process_file(path, dispatcher=dispatcher, logger=logger), logger=logger)
    coalescer = create_coalescer(
        strategy,
        releases.put,
        poll_interval_ms=poll_interval_ms,
        sliding_expiration_ms=sliding_expiration_ms,
        logger=logger,
    )
    event_handler = CoalescingEventHandler(logger, coalescer, watch_path)

    logger.info("Watching directory %s for changes (%s)", watch_path, coalescer.strategy.value)
    observer_started = False
    error_reported = False
    releases.start()
    try:
        coalescer.start()
        scan_existing_files(watch_path, coalescer, logger)

        observer = observer_factory()
        observer.schedule(event_handler, watch_path, recursive=False)
        observer.start()
        observer_started = True

        while not stop_event.wait(1):
            if not error_reported and not observer.is_alive():
                event_handler.on_error(RuntimeError("observer thread exited"))
                error_reported = True
    except KeyboardInterrupt:
        logger.info("Shutdown requested, stopping observer")
    finally:
        if observer_started:
            observer.stop()
            observer.join()
        coalescer.stop()
        releases.stop()
    logger.info("Stopped")
    return 0


DEFAULT_WATCH_PATH = os.path.join(os.path.expanduser("~"), "FolderWatcher", "DataIn")
DEFAULT_LOG_DIR = os.path.join(os.path.expanduser("~"), "FolderWatcher", "Logs")


def _strategy_arg(value: str) -> Strategy:
    try:
        return Strategy.parse(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def _positive_int(value: str) -> int:
    number = int(value)
    if number <= 0:
        raise argparse.ArgumentTypeError(f"{value} is not a positive integer")
    return number


def parse_args(argv: Optional[list] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Watch a folder and run each new file through the processing pipeline")
    parser.add_argument(
        "--path", "-p",
        default=DEFAULT_WATCH_PATH,
        help=f"Directory to watch (default {DEFAULT_WATCH_PATH})"
    )
    parser.add_argument(
        "--logdir", "-l",
        default=DEFAULT_LOG_DIR,
        help=f"Directory to write logs to (default {DEFAULT_LOG_DIR})"
    )
    parser.add_argument(
        "--strategy", "-s",
        type=_strategy_arg,
        default=Strategy.EXPIRING_CACHE,
        help="Duplicate-event handling: immediate, polled or expiring (also 1, 2, 3; default expiring)"
    )
    parser.add_argument("--poll-interval", type=_positive_int, default=DEFAULT_POLL_INTERVAL_MS, help="Milliseconds between drains for the polled strategy")
    parser.add_argument("--expiration", type=_positive_int, default=DEFAULT_SLIDING_EXPIRATION_MS, help="Quiet period in milliseconds for the expiring strategy")

    batch = parser.add_mutually_exclusive_group()
    batch.add_argument("--file", "-f", help="Process a single file and exit")
    batch.add_argument("--dir", "-D", help="Process the matching files in a directory and exit")
    parser.add_argument(
        "--type", "-t",
        default="TEXT",
        choices=sorted(FILE_TYPE_PATTERNS),
        type=str.upper,
        help="File type to pick up with --dir (default TEXT)"
    )
    return parser.parse_args(argv)


def main() -> int:
    args = parse_args()

    log_dir = os.path.abspath(args.logdir)
    ensure_dir(log_dir)

    logfile = os.path.join(log_dir, "folder_watcher.log")
    logger = setup_logger(logfile)
    logger.info("Logging to: %s", logfile)

    if args.file:
        task = process_single_file(os.path.abspath(args.file), logger=logger)
        return 0 if task.succeeded else 1

    if args.dir:
        try:
            tasks = process_directory(os.path.abspath(args.dir), args.type, logger=logger)
        except (ValueError, ProcessingError) as exc:
            logger.error("ERROR: %s", exc)
            return 1
        failed = [task for task in tasks if not task.succeeded]
        logger.info("Processed %d file(s), %d failed", len(tasks), len(failed))
        return 1 if failed else 0

    return run_watch(
        os.path.abspath(args.path),
        logger,
        strategy=args.strategy,
        poll_interval_ms=args.poll_interval,
        sliding_expiration_ms=args.expiration,
    )


if __name__ == "__main__":
    raise SystemExit(main())
