#!/usr/bin/env python3
"""
Main entry point for the Course Watcher.

Loads configuration from the environment, builds the snapshot, user
store, fetcher and transport, then runs watch cycles either once or on a
fixed interval until interrupted.
"""

import os
import signal
import sys
import threading
from typing import Optional

from course_watcher.errors import SnapshotError
from course_watcher.fetch import CatalogFetcher
from course_watcher.notify import SentLedger, create_transport
from course_watcher.snapshot import SnapshotStore
from course_watcher.updater import Updater
from course_watcher.users import UserStore
from course_watcher.utils import WatcherConfig, get_logger, load_watcher_config, setup_logging


# Exit codes
EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_ENV_ERROR = 2


def build_updater(config: WatcherConfig) -> Updater:
    """
    Wire the collaborators for a configuration.

    Raises:
        SnapshotError: If the snapshot cannot be loaded.
        ValueError: If the notification channel is misconfigured.
    """
    snapshot = SnapshotStore.load(config.snapshot_path)
    transport = create_transport(config.notify_channel)

    ledger = None
    if config.suppress_repeats:
        ledger = SentLedger(config.ledger_path, config.repeat_window_hours).load()

    fetcher = CatalogFetcher(
        timeout=config.fetch_timeout,
        max_retries=config.fetch_max_retries,
    )

    return Updater(
        snapshot=snapshot,
        user_store=UserStore(config.users_path),
        fetcher=fetcher,
        transport=transport,
        config=config,
        ledger=ledger,
    )


def run_forever(updater: Updater, interval_seconds: int, stop_event: threading.Event) -> int:
    """
    Run cycles back to back, waiting ``interval_seconds`` between starts.

    A cycle always finishes before the next one begins.

    Returns:
        Exit code.
    """
    logger = get_logger("main")

    while not stop_event.is_set():
        report = updater.run_cycle(stop_event=stop_event)
        if report.aborted:
            logger.warning("Cycle aborted, will try again next interval")

        elapsed = ((report.finished_at or report.started_at) - report.started_at).total_seconds()
        wait = max(0.0, interval_seconds - elapsed)
        if wait:
            logger.debug(f"Next cycle in {wait:.0f}s")
        stop_event.wait(wait)

    logger.info("Watcher stopped")
    return EXIT_SUCCESS


def install_signal_handlers(stop_event: threading.Event) -> None:
    """Set the stop event on SIGINT/SIGTERM."""
    logger = get_logger("main")

    def handle(signum, frame):
        logger.warning(f"Received signal {signum}, stopping after the current cycle")
        stop_event.set()

    signal.signal(signal.SIGTERM, handle)
    signal.signal(signal.SIGINT, handle)


def main(config: Optional[WatcherConfig] = None) -> int:
    """
    Main entry point for the Course Watcher.

    Sets up logging and runs the watcher with proper error handling.

    Returns:
        Exit code for the process.
    """
    log_level = os.environ.get("LOG_LEVEL", "INFO").upper()

    setup_logging(log_level)
    logger = get_logger("main")

    config = config or load_watcher_config()

    if config.dry_run:
        logger.info("Running in DRY RUN mode - notifications will be skipped")

    try:
        updater = build_updater(config)
    except SnapshotError as e:
        logger.error(str(e))
        return EXIT_ENV_ERROR
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        return EXIT_ENV_ERROR

    logger.info(f"Course Watcher starting with {config}")

    stop_event = threading.Event()

    try:
        if config.run_once:
            report = updater.run_cycle(stop_event=stop_event)
            return EXIT_SUCCESS if report.ok else EXIT_FAILURE

        install_signal_handlers(stop_event)
        return run_forever(updater, config.interval_seconds, stop_event)

    except KeyboardInterrupt:
        logger.warning("Watcher interrupted by user")
        stop_event.set()
        return EXIT_FAILURE

    except Exception as e:
        logger.exception(f"Unexpected error in watcher: {e}")
        return EXIT_FAILURE

    finally:
        updater.close()


if __name__ == "__main__":
    sys.exit(main())
