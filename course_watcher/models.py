"""
Catalog records and change events shared across the pipeline.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from course_watcher.keys import class_key, section_key


def _first(data: Dict[str, Any], *names: str, default: Any = None) -> Any:
    """Return the first present value among several spellings of a field."""
    for name in names:
        if data.get(name) is not None:
            return data[name]
    return default


def _optional_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@dataclass
class ClassRecord:
    """
    A class (course offering) as known for one term.

    Attributes:
        host: Institution host name, e.g. "neu.edu".
        term_id: Term identifier, e.g. "201810".
        subject: Subject code, e.g. "CS".
        class_uid: Unique id of the class within the subject and term.
        crns: Reference numbers of the class's sections.
        title: Human readable title.
        url: Canonical catalog page used to refresh the class.
    """
    host: str
    term_id: str
    subject: str
    class_uid: str
    crns: List[str] = field(default_factory=list)
    title: str = ""
    url: str = ""

    def __post_init__(self):
        """Normalize identity fields and crns to strings."""
        self.host = str(self.host).strip()
        self.term_id = str(self.term_id).strip()
        self.subject = str(self.subject).strip()
        self.class_uid = str(self.class_uid).strip()
        self.crns = [str(crn).strip() for crn in self.crns]

    @property
    def key(self) -> str:
        return class_key(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClassRecord":
        """Build from a snapshot or term dump entry (snake or camel case)."""
        return cls(
            host=_first(data, "host", default=""),
            term_id=_first(data, "term_id", "termId", default=""),
            subject=_first(data, "subject", default=""),
            class_uid=_first(data, "class_uid", "classUid", default=""),
            crns=list(_first(data, "crns", default=[])),
            title=_first(data, "title", "name", default=""),
            url=_first(data, "url", "prettyUrl", default=""),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "host": self.host,
            "term_id": self.term_id,
            "subject": self.subject,
            "class_uid": self.class_uid,
            "crns": list(self.crns),
            "title": self.title,
            "url": self.url,
        }


@dataclass
class SectionRecord:
    """
    A single section of a class.

    ``seats_remaining`` is None when the source did not report seats.
    """
    host: str
    term_id: str
    subject: str
    class_uid: str
    crn: str
    seats_remaining: Optional[int] = None
    seats_capacity: Optional[int] = None
    url: str = ""

    def __post_init__(self):
        self.host = str(self.host).strip()
        self.term_id = str(self.term_id).strip()
        self.subject = str(self.subject).strip()
        self.class_uid = str(self.class_uid).strip()
        self.crn = str(self.crn).strip()

    @property
    def key(self) -> str:
        return section_key(self)

    @property
    def parent_key(self) -> str:
        return class_key(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SectionRecord":
        return cls(
            host=_first(data, "host", default=""),
            term_id=_first(data, "term_id", "termId", default=""),
            subject=_first(data, "subject", default=""),
            class_uid=_first(data, "class_uid", "classUid", default=""),
            crn=_first(data, "crn", default=""),
            seats_remaining=_optional_int(_first(data, "seats_remaining", "seatsRemaining")),
            seats_capacity=_optional_int(_first(data, "seats_capacity", "seatsCapacity", "seatCapacity")),
            url=_first(data, "url", default=""),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "host": self.host,
            "term_id": self.term_id,
            "subject": self.subject,
            "class_uid": self.class_uid,
            "crn": self.crn,
            "seats_remaining": self.seats_remaining,
            "seats_capacity": self.seats_capacity,
            "url": self.url,
        }


@dataclass
class NormalizedCatalog:
    """Final record lists produced from one or more fetched pages."""
    classes: List[ClassRecord] = field(default_factory=list)
    sections: List[SectionRecord] = field(default_factory=list)


class EventKind(str, Enum):
    """Kinds of change the differ classifies."""
    SEAT_OPENED = "SeatOpened"
    SECTION_ADDED = "SectionAdded"
    SECTION_REMOVED = "SectionRemoved"

    @property
    def is_class_scoped(self) -> bool:
        return self in (EventKind.SECTION_ADDED, EventKind.SECTION_REMOVED)


@dataclass(frozen=True)
class Event:
    """
    A classified change between the snapshot and freshly fetched data.

    Equality and hashing use only ``kind`` and ``subject_key``; ``detail``
    is informational.
    """
    kind: EventKind
    subject_key: str
    detail: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "subject_key": self.subject_key,
            "detail": dict(self.detail),
        }
