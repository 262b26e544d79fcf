"""
Snapshot store for the Course Watcher pipeline.

Holds the last known class and section records in memory, indexed by
identity key. The store is loaded from a term dump, read during a cycle,
and only changed through an explicit commit once a class has been diffed.
"""

import threading
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from course_watcher.errors import InvalidTupleError, SnapshotError
from course_watcher.keys import section_key
from course_watcher.models import ClassRecord, SectionRecord
from course_watcher.utils import get_logger, safe_read_json, safe_write_json


logger = get_logger("snapshot")


class SnapshotStore:
    """In-memory index of class and section records keyed by identity key."""

    def __init__(
        self,
        classes: Optional[Iterable[ClassRecord]] = None,
        sections: Optional[Iterable[SectionRecord]] = None
    ):
        self._classes: Dict[str, ClassRecord] = {}
        self._sections: Dict[str, SectionRecord] = {}
        self._lock = threading.Lock()
        self.skipped_records = 0

        for record in classes or []:
            self._classes[record.key] = record
        for record in sections or []:
            self._sections[record.key] = record

    def __len__(self) -> int:
        return len(self._classes) + len(self._sections)

    @property
    def class_count(self) -> int:
        return len(self._classes)

    @property
    def section_count(self) -> int:
        return len(self._sections)

    def lookup_class(self, key: str) -> Optional[ClassRecord]:
        return self._classes.get(key)

    def lookup_section(self, key: str) -> Optional[SectionRecord]:
        return self._sections.get(key)

    def section_keys_for(self, record: ClassRecord) -> List[str]:
        """
        Keys of every section a class lists in its crns.

        Args:
            record: Class whose sections should be keyed.

        Returns:
            Section keys in crn order.
        """
        return [
            section_key({
                "host": record.host,
                "term_id": record.term_id,
                "subject": record.subject,
                "class_uid": record.class_uid,
                "crn": crn,
            })
            for crn in record.crns
        ]

    def commit(self, classes: Iterable[ClassRecord], sections: Iterable[SectionRecord]) -> None:
        """
        Replace stored records with freshly fetched ones.

        Sections that a committed class no longer lists are dropped.

        Args:
            classes: Newly fetched class records.
            sections: Newly fetched section records.
        """
        classes = list(classes)
        sections = list(sections)

        with self._lock:
            for record in classes:
                previous = self._classes.get(record.key)
                if previous is not None:
                    kept = set(self.section_keys_for(record))
                    for stale in self.section_keys_for(previous):
                        if stale not in kept:
                            self._sections.pop(stale, None)
                self._classes[record.key] = record

            for record in sections:
                self._sections[record.key] = record

        logger.debug(f"Committed {len(classes)} class(es) and {len(sections)} section(s)")

    @classmethod
    def from_term_dump(cls, data: Any) -> "SnapshotStore":
        """
        Build a store from term dump data.

        Accepts either ``{"classes": [...], "sections": [...]}`` or the
        ``{"classMap": {...}, "sectionMap": {...}}`` layout. Records with
        missing identity fields are skipped.

        Args:
            data: Parsed JSON term dump.

        Returns:
            Populated SnapshotStore.

        Raises:
            SnapshotError: If data is not a recognised term dump.
        """
        if not isinstance(data, dict):
            raise SnapshotError("<term dump>", "expected a JSON object")

        class_entries = _entries(data, "classes", "classMap")
        section_entries = _entries(data, "sections", "sectionMap")

        store = cls()
        for entry in class_entries:
            store._add(ClassRecord, entry, store._classes)
        for entry in section_entries:
            store._add(SectionRecord, entry, store._sections)

        logger.info(
            f"Loaded snapshot with {store.class_count} class(es) "
            f"and {store.section_count} section(s)"
        )
        if store.skipped_records:
            logger.warning(f"Skipped {store.skipped_records} record(s) with invalid identity")

        return store

    def _add(self, record_type, entry: Any, target: Dict[str, Any]) -> None:
        if not isinstance(entry, dict):
            self.skipped_records += 1
            return
        try:
            record = record_type.from_dict(entry)
            target[record.key] = record
        except InvalidTupleError as e:
            logger.debug(f"Skipping snapshot record: {e}")
            self.skipped_records += 1

    @classmethod
    def load(cls, filepath: str) -> "SnapshotStore":
        """
        Load a snapshot from a JSON file.

        Raises:
            SnapshotError: If the file is missing or not valid JSON.
        """
        logger.debug(f"Loading snapshot from {filepath}")

        data = safe_read_json(filepath, default=None)
        if data is None:
            raise SnapshotError(filepath, "file missing or not valid JSON")

        try:
            return cls.from_term_dump(data)
        except SnapshotError as e:
            raise SnapshotError(filepath, e.reason) from e

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "last_updated": datetime.utcnow().isoformat() + "Z",
                "classes": [r.to_dict() for r in self._classes.values()],
                "sections": [r.to_dict() for r in self._sections.values()],
            }

    def save(self, filepath: str) -> bool:
        """Persist the snapshot with an atomic write."""
        success = safe_write_json(filepath, self.to_dict())

        if success:
            logger.info(f"Saved snapshot to {filepath}")
        else:
            logger.error(f"Failed to save snapshot to {filepath}")

        return success


def _entries(data: Dict[str, Any], list_name: str, map_name: str) -> List[Any]:
    """Return term dump records whether stored as a list or a keyed map."""
    if isinstance(data.get(list_name), list):
        return data[list_name]
    if isinstance(data.get(map_name), dict):
        return list(data[map_name].values())
    return []
