"""
Fetch module for the Course Watcher pipeline.

This module refreshes watched classes from their catalog pages. Each
class is fetched in a bounded worker pool with its own timeout, and a
failure is confined to the class it happened in.
"""

import threading
import time
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, List, Optional, Tuple
from urllib.parse import urlparse

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from course_watcher.errors import CourseWatcherError, FetchError, OrphanedWatch, ParseError
from course_watcher.models import ClassRecord, NormalizedCatalog
from course_watcher.parse import normalize, parse_class_page
from course_watcher.snapshot import SnapshotStore
from course_watcher.utils import get_logger
from course_watcher.watch_index import WatchIndex


# Module logger
logger = get_logger("fetch")

# Default configuration
DEFAULT_TIMEOUT = 30  # seconds
DEFAULT_MAX_RETRIES = 2
DEFAULT_BACKOFF_FACTOR = 1.0
DEFAULT_MAX_WORKERS = 4
POLL_INTERVAL = 0.25  # seconds between per-class deadline checks
DEFAULT_USER_AGENT = "CourseWatcher/1.0 (+seat availability monitor)"


@dataclass
class FetchTarget:
    """A watched class to refresh."""
    class_key: str
    record: ClassRecord

    @property
    def url(self) -> str:
        return self.record.url


@dataclass
class ClassFetchResult:
    """
    Outcome of refreshing one class.

    Attributes:
        target: The class that was refreshed.
        catalog: Normalized records if the fetch succeeded.
        error: FetchError or ParseError if it failed.
        cancelled: True if the fetch never ran because the cycle stopped.
    """
    target: FetchTarget
    catalog: Optional[NormalizedCatalog] = None
    error: Optional[CourseWatcherError] = None
    cancelled: bool = False

    @property
    def success(self) -> bool:
        return self.catalog is not None and self.error is None and not self.cancelled


def create_session(
    max_retries: int = DEFAULT_MAX_RETRIES,
    backoff_factor: float = DEFAULT_BACKOFF_FACTOR
) -> requests.Session:
    """
    Create a requests session with retry configuration.

    Configures automatic retries with exponential backoff for
    transient failures (5xx errors, connection errors). Read timeouts are
    never retried, so a slow class is skipped for the cycle after one
    timeout.

    Args:
        max_retries: Maximum number of retry attempts.
        backoff_factor: Multiplier for exponential backoff between retries.

    Returns:
        Configured requests.Session instance.
    """
    session = requests.Session()

    retry_strategy = Retry(
        total=max_retries,
        connect=max_retries,
        read=False,
        status=max_retries,
        backoff_factor=backoff_factor,
        status_forcelist=[429, 500, 502, 503, 504],
        allowed_methods=["GET", "HEAD"],
        raise_on_status=False
    )

    adapter = HTTPAdapter(max_retries=retry_strategy)
    session.mount("http://", adapter)
    session.mount("https://", adapter)

    session.headers.update({
        "User-Agent": DEFAULT_USER_AGENT,
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        "Accept-Language": "en-US,en;q=0.5",
    })

    return session


def validate_url(url: str) -> bool:
    """
    Validate that a URL is well-formed and uses HTTP/HTTPS.

    Args:
        url: URL string to validate.

    Returns:
        True if URL is valid, False otherwise.
    """
    try:
        parsed = urlparse(url)
        return parsed.scheme in ("http", "https") and bool(parsed.netloc)
    except (TypeError, ValueError, AttributeError):
        return False


def fetch_page(url: str, session: requests.Session, timeout: int = DEFAULT_TIMEOUT) -> str:
    """
    Fetch a single catalog page.

    Args:
        url: URL to fetch.
        session: Configured requests session.
        timeout: Request timeout in seconds.

    Returns:
        Page HTML.

    Raises:
        FetchError: On invalid URL, timeout, connection or HTTP error.
    """
    logger.debug(f"Fetching URL: {url}")

    if not validate_url(url):
        raise FetchError(url, "Invalid URL format")

    try:
        response = session.get(url, timeout=timeout)
    except requests.exceptions.Timeout:
        raise FetchError(url, f"Request timeout after {timeout}s")
    except requests.exceptions.ConnectionError as e:
        raise FetchError(url, f"Connection error: {e}")
    except requests.exceptions.RequestException as e:
        raise FetchError(url, f"Request failed: {e}")

    if response.status_code != 200:
        raise FetchError(url, f"HTTP {response.status_code}", status_code=response.status_code)

    logger.debug(f"Fetched {url} ({len(response.text)} bytes)")
    return response.text


class CatalogFetcher:
    """
    Default scrape/parse collaborator.

    Each worker thread gets its own requests session.
    """

    def __init__(
        self,
        timeout: int = DEFAULT_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        backoff_factor: float = DEFAULT_BACKOFF_FACTOR
    ):
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_factor = backoff_factor
        self._local = threading.local()
        self._sessions: List[requests.Session] = []
        self._sessions_lock = threading.Lock()

    def _session(self) -> requests.Session:
        session = getattr(self._local, "session", None)
        if session is None:
            session = create_session(self.max_retries, self.backoff_factor)
            self._local.session = session
            with self._sessions_lock:
                self._sessions.append(session)
        return session

    def fetch_class(self, target: FetchTarget) -> list:
        """Fetch a class page and return its raw parsed nodes."""
        html = fetch_page(target.url, self._session(), self.timeout)
        return parse_class_page(html, target.url, target.record.to_dict())

    def refresh(self, target: FetchTarget) -> ClassFetchResult:
        """
        Fetch and normalize one class.

        Returns:
            ClassFetchResult carrying either the catalog or the error.
        """
        try:
            nodes = self.fetch_class(target)
            catalog = normalize(nodes)
            if len(catalog.classes) != 1:
                raise ParseError(target.url, f"expected one class, got {len(catalog.classes)}")
        except (FetchError, ParseError) as e:
            logger.warning(f"Skipping class {target.class_key} this cycle: {e}")
            return ClassFetchResult(target=target, error=e)

        return ClassFetchResult(target=target, catalog=catalog)

    def close(self) -> None:
        with self._sessions_lock:
            for session in self._sessions:
                session.close()
            self._sessions = []


def resolve_fetch_targets(index: WatchIndex, snapshot: SnapshotStore) -> Tuple[List[FetchTarget], List[OrphanedWatch]]:
    """
    Resolve each distinct watched class against the snapshot.

    Args:
        index: Watch index for the cycle.
        snapshot: Snapshot store.

    Returns:
        Tuple of (targets to fetch, watched classes missing from the snapshot).
    """
    targets: List[FetchTarget] = []
    missing: List[OrphanedWatch] = []

    for class_key in index.class_keys:
        record = snapshot.lookup_class(class_key)
        if record is None:
            orphan = OrphanedWatch(class_key, "watched class not found in snapshot")
            logger.warning(orphan.message)
            missing.append(orphan)
            continue
        targets.append(FetchTarget(class_key=class_key, record=record))

    return targets, missing


def fetch_watched_classes(
    targets: List[FetchTarget],
    refresh: Callable[[FetchTarget], ClassFetchResult],
    max_workers: int = DEFAULT_MAX_WORKERS,
    stop_event: Optional[threading.Event] = None,
    class_timeout: Optional[float] = None
) -> Iterator[ClassFetchResult]:
    """
    Refresh classes concurrently, yielding each result as it completes.

    Once ``stop_event`` is set, fetches that have not started are
    cancelled and reported with ``cancelled=True``; fetches already in
    flight are allowed to finish.

    A fetch still running ``class_timeout`` seconds after it started is
    reported as a FetchError and abandoned; its late result is ignored.

    Args:
        targets: Classes to refresh.
        refresh: Callable fetching and normalizing one class.
        max_workers: Upper bound on concurrent fetches.
        stop_event: Optional event signalling shutdown.
        class_timeout: Wall-clock limit per class in seconds, or None.

    Yields:
        One ClassFetchResult per target.
    """
    if not targets:
        logger.info("No watched classes to fetch")
        return

    logger.info(f"Fetching {len(targets)} class(es) with up to {max_workers} worker(s)")

    started_at: Dict[str, float] = {}

    def run(target: FetchTarget) -> ClassFetchResult:
        if stop_event is not None and stop_event.is_set():
            return ClassFetchResult(target=target, cancelled=True)
        started_at[target.class_key] = time.monotonic()
        return refresh(target)

    poll = None if class_timeout is None else min(POLL_INTERVAL, class_timeout)
    abandoned = False

    executor = ThreadPoolExecutor(max_workers=max(1, max_workers))
    try:
        future_to_target = {executor.submit(run, target): target for target in targets}
        pending = set(future_to_target)

        while pending:
            done, pending = wait(pending, timeout=poll, return_when=FIRST_COMPLETED)

            for future in done:
                target = future_to_target[future]

                if future.cancelled():
                    yield ClassFetchResult(target=target, cancelled=True)
                    continue

                try:
                    result = future.result()
                except Exception as e:
                    logger.error(f"Unexpected error refreshing {target.url}: {e}")
                    result = ClassFetchResult(target=target, error=FetchError(target.url, f"Unexpected error: {e}"))

                yield result

            if class_timeout is not None:
                now = time.monotonic()
                for future in list(pending):
                    target = future_to_target[future]
                    began = started_at.get(target.class_key)
                    if began is None or now - began < class_timeout:
                        continue
                    pending.discard(future)
                    abandoned = True
                    error = FetchError(target.url, f"Request timeout after {class_timeout}s")
                    logger.warning(f"Skipping class {target.class_key} this cycle: {error}")
                    yield ClassFetchResult(target=target, error=error)

            if stop_event is not None and stop_event.is_set():
                for future in pending:
                    future.cancel()
    finally:
        executor.shutdown(wait=not abandoned)
