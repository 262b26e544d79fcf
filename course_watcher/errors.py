"""
Exception types for the Course Watcher pipeline.

Only UserStoreError and SnapshotError abort a cycle. Every other error is
scoped to one record, class or delivery and is collected into the cycle
report instead of propagating.
"""

from typing import Any, Mapping, Optional


class CourseWatcherError(Exception):
    """Base class for application-specific errors."""

    def __init__(self, message: str = "A course watcher error occurred."):
        self.message = message
        super().__init__(self.message)


# --- Fatal errors (the cycle has nothing to diff against) ---

class UserStoreError(CourseWatcherError):
    """The user store could not be read."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"Could not read user store {path}: {reason}")
        self.path = path
        self.reason = reason


class SnapshotError(CourseWatcherError):
    """The snapshot store could not be loaded."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"Could not load snapshot {path}: {reason}")
        self.path = path
        self.reason = reason


# --- Per-record / per-class errors ---

class InvalidTupleError(CourseWatcherError):
    """Identity fields are missing or a watched key cannot be parsed."""

    def __init__(self, missing: Any = None, fields: Optional[Mapping[str, Any]] = None, message: Optional[str] = None):
        if message is None:
            message = f"Invalid identity tuple, missing {missing}"
        super().__init__(message)
        self.missing = missing
        self.fields = dict(fields) if fields else {}


class OrphanedWatch(CourseWatcherError):
    """A watched key that cannot be tied back to a watched, known class."""

    def __init__(self, key: str, reason: str):
        super().__init__(f"Orphaned watch {key}: {reason}")
        self.key = key
        self.reason = reason


class FetchError(CourseWatcherError):
    """Fetching the latest data for a class failed."""

    def __init__(self, url: str, reason: str, status_code: Optional[int] = None):
        super().__init__(f"Failed to fetch {url}: {reason}")
        self.url = url
        self.reason = reason
        self.status_code = status_code


class ParseError(CourseWatcherError):
    """A fetched page could not be turned into catalog records."""

    def __init__(self, url: str, reason: str):
        super().__init__(f"Failed to parse {url}: {reason}")
        self.url = url
        self.reason = reason


class DeliveryError(CourseWatcherError):
    """The notification transport failed to deliver to a subscriber."""

    def __init__(self, subscriber_id: str, reason: str, status_code: Optional[int] = None):
        super().__init__(f"Delivery to {subscriber_id} failed: {reason}")
        self.subscriber_id = subscriber_id
        self.reason = reason
        self.status_code = status_code
