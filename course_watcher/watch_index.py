"""
Watch index for the Course Watcher pipeline.

Builds the reverse mappings from watched class and section keys to the
subscribers watching them. An index is built fresh for each cycle and
discarded afterwards.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Set

from course_watcher.errors import InvalidTupleError
from course_watcher.keys import is_valid_key
from course_watcher.models import Event
from course_watcher.users import User
from course_watcher.utils import get_logger


logger = get_logger("watch_index")


@dataclass
class WatchIndex:
    """
    Reverse index from identity key to subscriber ids.

    Attributes:
        class_subscribers: Watched class key -> subscriber ids.
        section_subscribers: Watched section key -> subscriber ids.
        errors: Malformed watch entries skipped while building.
    """
    class_subscribers: Dict[str, Set[str]] = field(default_factory=dict)
    section_subscribers: Dict[str, Set[str]] = field(default_factory=dict)
    errors: List[InvalidTupleError] = field(default_factory=list)

    @property
    def class_keys(self) -> List[str]:
        """Distinct watched class keys in sorted order."""
        return sorted(self.class_subscribers)

    @property
    def section_keys(self) -> List[str]:
        return sorted(self.section_subscribers)

    def subscribers_for(self, event: Event) -> Set[str]:
        """
        Resolve the subscribers affected by an event.

        Class-scoped events use the class map, section-scoped events the
        section map.
        """
        if event.kind.is_class_scoped:
            return set(self.class_subscribers.get(event.subject_key, ()))
        return set(self.section_subscribers.get(event.subject_key, ()))


def _add_watches(
    target: Dict[str, Set[str]],
    keys: Iterable,
    subscriber_id: str,
    kind: str,
    errors: List[InvalidTupleError]
) -> None:
    for watched in keys:
        if not is_valid_key(watched):
            error = InvalidTupleError(
                message=f"Unparseable {kind} key {watched!r} watched by {subscriber_id}"
            )
            logger.warning(error.message)
            errors.append(error)
            continue
        target.setdefault(watched, set()).add(subscriber_id)


def build_watch_index(users: Iterable[User]) -> WatchIndex:
    """
    Build the class and section reverse maps from all users.

    Repeated watches of the same key by one user collapse into a single
    entry. Malformed keys are skipped and recorded on the index.

    Args:
        users: Users for the current cycle.

    Returns:
        WatchIndex for this cycle.
    """
    index = WatchIndex()

    for user in users:
        _add_watches(index.class_subscribers, user.watching_classes, user.subscriber_id, "class", index.errors)
        _add_watches(index.section_subscribers, user.watching_sections, user.subscriber_id, "section", index.errors)

    logger.info(
        f"Watch index built: {len(index.class_subscribers)} class key(s), "
        f"{len(index.section_subscribers)} section key(s)"
    )
    if index.errors:
        logger.warning(f"Skipped {len(index.errors)} malformed watch entr{'y' if len(index.errors) == 1 else 'ies'}")

    return index
