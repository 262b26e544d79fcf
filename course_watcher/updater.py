"""
Cycle orchestration for the Course Watcher pipeline.

One cycle runs:
users → watch index → consistency check → fetch (concurrent) →
diff + commit (per class, as each fetch completes) → notify

Only a failure to read the user store aborts a cycle. Every other error
is collected and reported once when the cycle ends.
"""

import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List, Optional

from course_watcher.consistency import check_consistency
from course_watcher.differ import diff_catalog
from course_watcher.errors import CourseWatcherError, OrphanedWatch, UserStoreError
from course_watcher.fetch import fetch_watched_classes, resolve_fetch_targets
from course_watcher.models import Event
from course_watcher.notify import SentLedger, dispatch_notifications, route_events
from course_watcher.snapshot import SnapshotStore
from course_watcher.users import UserStore, get_user_summary
from course_watcher.utils import WatcherConfig, get_logger
from course_watcher.watch_index import build_watch_index


logger = get_logger("updater")

TOTAL_STAGES = 6


@dataclass
class CycleReport:
    """Everything one cycle did, including the errors it tolerated."""
    started_at: datetime = field(default_factory=datetime.utcnow)
    finished_at: Optional[datetime] = None
    users: int = 0
    classes_fetched: int = 0
    classes_skipped: int = 0
    classes_cancelled: int = 0
    events: List[Event] = field(default_factory=list)
    notifications_sent: int = 0
    notifications_suppressed: int = 0
    orphans: List[OrphanedWatch] = field(default_factory=list)
    errors: List[CourseWatcherError] = field(default_factory=list)
    aborted: bool = False

    @property
    def ok(self) -> bool:
        return not self.aborted

    def log_summary(self) -> None:
        """Report the cycle, and every non-fatal error, in one place."""
        elapsed = ((self.finished_at or datetime.utcnow()) - self.started_at).total_seconds()

        logger.info("=" * 60)
        logger.info(f"Cycle {'ABORTED' if self.aborted else 'complete'} in {elapsed:.1f}s")
        logger.info(
            f"Summary: {self.users} user(s), {self.classes_fetched} class(es) refreshed, "
            f"{self.classes_skipped} skipped, {self.classes_cancelled} cancelled"
        )
        logger.info(
            f"Events: {len(self.events)}, notifications: {self.notifications_sent} sent, "
            f"{self.notifications_suppressed} suppressed"
        )

        if self.orphans:
            logger.warning(f"{len(self.orphans)} orphaned watch(es):")
            for orphan in self.orphans:
                logger.warning(f"  - {orphan.message}")

        if self.errors:
            logger.warning(f"{len(self.errors)} error(s) this cycle:")
            for error in self.errors:
                logger.warning(f"  - {type(error).__name__}: {error.message}")

        logger.info("=" * 60)


class Updater:
    """
    Runs watch cycles against a snapshot and a user store.

    Create one per process; call ``run_cycle`` on each interval.
    """

    def __init__(
        self,
        snapshot: SnapshotStore,
        user_store: UserStore,
        fetcher: Any,
        transport: Any,
        config: Optional[WatcherConfig] = None,
        ledger: Optional[SentLedger] = None
    ):
        self.snapshot = snapshot
        self.user_store = user_store
        self.fetcher = fetcher
        self.transport = transport
        self.config = config or WatcherConfig()
        self.ledger = ledger
        self._cycle_lock = threading.Lock()

    def run_cycle(self, stop_event: Optional[threading.Event] = None) -> CycleReport:
        """
        Run one complete watch cycle.

        Cycles never overlap; a second caller waits for the running one.

        Args:
            stop_event: Optional event signalling shutdown; pending fetches
                        are cancelled once it is set.

        Returns:
            CycleReport for the cycle.
        """
        with self._cycle_lock:
            report = CycleReport()
            try:
                self._run(report, stop_event)
            finally:
                report.finished_at = datetime.utcnow()
                report.log_summary()
            return report

    def _run(self, report: CycleReport, stop_event: Optional[threading.Event]) -> None:
        logger.info(f"[Stage 1/{TOTAL_STAGES}] Reading users...")
        try:
            users = self.user_store.list_users()
        except UserStoreError as e:
            logger.error(f"Aborting cycle: {e}")
            report.errors.append(e)
            report.aborted = True
            return

        report.users = len(users)
        logger.debug(f"User summary: {get_user_summary(users)}")

        logger.info(f"[Stage 2/{TOTAL_STAGES}] Building watch index...")
        index = build_watch_index(users)
        report.errors.extend(index.errors)

        logger.info(f"[Stage 3/{TOTAL_STAGES}] Checking watch consistency...")
        report.orphans.extend(check_consistency(index, self.snapshot))

        logger.info(f"[Stage 4/{TOTAL_STAGES}] Resolving watched classes...")
        targets, missing = resolve_fetch_targets(index, self.snapshot)
        report.orphans.extend(missing)

        logger.info(f"[Stage 5/{TOTAL_STAGES}] Fetching and diffing {len(targets)} class(es)...")
        results = fetch_watched_classes(
            targets,
            self.fetcher.refresh,
            max_workers=self.config.max_workers,
            stop_event=stop_event,
            class_timeout=self.config.fetch_timeout,
        )
        for result in results:
            if result.cancelled:
                report.classes_cancelled += 1
                continue

            if not result.success:
                report.classes_skipped += 1
                if result.error is not None:
                    report.errors.append(result.error)
                continue

            events = diff_catalog(result.catalog, self.snapshot)
            self.snapshot.commit(result.catalog.classes, result.catalog.sections)

            report.classes_fetched += 1
            report.events.extend(events)

        logger.info(f"[Stage 6/{TOTAL_STAGES}] Notifying subscribers...")
        notifications = route_events(report.events, index)
        summary = dispatch_notifications(
            notifications,
            self.transport,
            ledger=self.ledger,
            dry_run=self.config.dry_run,
        )
        report.notifications_sent = summary.delivered
        report.notifications_suppressed = summary.suppressed
        report.errors.extend(summary.errors)

        if self.ledger is not None and not self.config.dry_run:
            self.ledger.save()

        if self.config.persist_snapshot and report.classes_fetched:
            self.snapshot.save(self.config.snapshot_path)

    def close(self) -> None:
        self.fetcher.close()
        self.transport.close()
