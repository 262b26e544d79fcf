"""
Differ module for the Course Watcher pipeline.

Compares freshly fetched records with the snapshot and classifies the
changes that users are notified about:

- SeatOpened: a section went from no remaining seats to some
- SectionAdded / SectionRemoved: a class's number of sections changed

Other field changes (titles, times) are not classified.
"""

from typing import List, Optional

from course_watcher.errors import InvalidTupleError
from course_watcher.models import ClassRecord, Event, EventKind, NormalizedCatalog, SectionRecord
from course_watcher.snapshot import SnapshotStore
from course_watcher.utils import get_logger


# Module logger
logger = get_logger("differ")


def diff_class(old: Optional[ClassRecord], new: ClassRecord) -> Optional[Event]:
    """
    Classify a change in a class's sections.

    Args:
        old: Snapshot record, or None if the class is new.
        new: Freshly fetched record.

    Returns:
        SectionAdded or SectionRemoved when the section count changed,
        otherwise None.
    """
    if old is None:
        return None

    if len(new.crns) == len(old.crns):
        return None

    kind = EventKind.SECTION_ADDED if len(new.crns) > len(old.crns) else EventKind.SECTION_REMOVED
    old_crns = set(old.crns)
    new_crns = set(new.crns)

    return Event(
        kind=kind,
        subject_key=new.key,
        detail={
            "subject": new.subject,
            "class_uid": new.class_uid,
            "title": new.title,
            "url": new.url,
            "previous_count": len(old.crns),
            "current_count": len(new.crns),
            "added_crns": sorted(new_crns - old_crns),
            "removed_crns": sorted(old_crns - new_crns),
        },
    )


def diff_section(old: Optional[SectionRecord], new: SectionRecord) -> Optional[Event]:
    """
    Classify a change in a section's availability.

    Args:
        old: Snapshot record, or None if the section is new.
        new: Freshly fetched record.

    Returns:
        SeatOpened if seats went from none to some, otherwise None.
    """
    if old is None:
        return None

    if old.seats_remaining is None or new.seats_remaining is None:
        return None

    if new.seats_remaining > 0 and old.seats_remaining <= 0:
        return Event(
            kind=EventKind.SEAT_OPENED,
            subject_key=new.key,
            detail={
                "subject": new.subject,
                "class_uid": new.class_uid,
                "crn": new.crn,
                "url": new.url,
                "previous_seats_remaining": old.seats_remaining,
                "seats_remaining": new.seats_remaining,
                "seats_capacity": new.seats_capacity,
            },
        )

    return None


def diff_catalog(catalog: NormalizedCatalog, snapshot: SnapshotStore) -> List[Event]:
    """
    Diff every fetched record against its snapshot counterpart.

    Records whose identity cannot be keyed are skipped. Each event is
    produced once even if a record appears twice.

    Args:
        catalog: Normalized records for one fetched class.
        snapshot: Snapshot store holding the previous state.

    Returns:
        Detected events, class events first.
    """
    events: List[Event] = []
    seen = set()

    for new_class in catalog.classes:
        try:
            old_class = snapshot.lookup_class(new_class.key)
        except InvalidTupleError as e:
            logger.warning(f"Skipping fetched class with invalid identity: {e}")
            continue

        if old_class is None:
            logger.debug(f"New class {new_class.subject} {new_class.class_uid}, nothing to compare")

        event = diff_class(old_class, new_class)
        if event is not None and event not in seen:
            seen.add(event)
            events.append(event)

    for new_section in catalog.sections:
        try:
            old_section = snapshot.lookup_section(new_section.key)
        except InvalidTupleError as e:
            logger.warning(f"Skipping fetched section with invalid identity: {e}")
            continue

        event = diff_section(old_section, new_section)
        if event is not None and event not in seen:
            seen.add(event)
            events.append(event)

    for event in events:
        logger.info(f"{event.kind.value} detected for {event.subject_key}")

    return events
