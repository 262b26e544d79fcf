"""
Consistency checks between the watch index and the snapshot.

A watched section is expected to resolve in the snapshot, to belong to a
known class that still lists it, and to have that class watched by at
least one user. Violations are reported as OrphanedWatch warnings; they
never stop a cycle.
"""

from typing import List

from course_watcher.errors import InvalidTupleError, OrphanedWatch
from course_watcher.snapshot import SnapshotStore
from course_watcher.utils import get_logger
from course_watcher.watch_index import WatchIndex


logger = get_logger("consistency")


def check_section_watch(section_key: str, index: WatchIndex, snapshot: SnapshotStore) -> List[OrphanedWatch]:
    """
    Check one watched section key.

    Returns:
        A single OrphanedWatch if the watch is orphaned, otherwise empty.
    """
    section = snapshot.lookup_section(section_key)
    if section is None:
        return [OrphanedWatch(section_key, "section not found in snapshot")]

    try:
        parent_key = section.parent_key
    except InvalidTupleError as e:
        return [OrphanedWatch(section_key, f"cannot derive parent class: {e}")]

    parent = snapshot.lookup_class(parent_key)
    if parent is None:
        return [OrphanedWatch(section_key, f"parent class {parent_key} not found in snapshot")]

    if section.crn not in parent.crns:
        return [OrphanedWatch(section_key, f"crn {section.crn} is not listed by its class")]

    if parent_key not in index.class_subscribers:
        return [OrphanedWatch(section_key, f"parent class {parent_key} is not watched")]

    return []


def check_consistency(index: WatchIndex, snapshot: SnapshotStore) -> List[OrphanedWatch]:
    """
    Report every watched section that cannot be tied to a watched class.

    Args:
        index: Watch index for the cycle.
        snapshot: Snapshot store to resolve keys against.

    Returns:
        One OrphanedWatch per orphaned section key.
    """
    orphans: List[OrphanedWatch] = []

    for section_key in index.section_keys:
        for orphan in check_section_watch(section_key, index, snapshot):
            logger.warning(orphan.message)
            orphans.append(orphan)

    if orphans:
        logger.warning(f"Found {len(orphans)} orphaned section watch(es)")
    else:
        logger.debug("All watched sections belong to watched classes")

    return orphans
