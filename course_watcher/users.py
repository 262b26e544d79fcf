"""
User store access for the Course Watcher pipeline.

This module handles:
- Reading the user store (who watches which classes and sections)
- Validating user entries
- Summarizing watch-lists for logging
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from course_watcher.errors import UserStoreError
from course_watcher.utils import DEFAULT_USERS_PATH, get_logger


logger = get_logger("users")


@dataclass
class User:
    """A subscriber and the identity keys they are watching."""
    subscriber_id: str
    watching_classes: List[Any] = field(default_factory=list)
    watching_sections: List[Any] = field(default_factory=list)

    def __post_init__(self):
        """Normalize data after initialization."""
        self.subscriber_id = str(self.subscriber_id).strip()


class UserStore:
    """Read-only view over the JSON user store."""

    def __init__(self, filepath: str = DEFAULT_USERS_PATH):
        self.filepath = filepath

    def list_users(self) -> List[User]:
        """
        Read every user from the store.

        Accepts ``{"users": [...]}`` or an object mapping user ids to user
        entries. Malformed entries are skipped.

        Returns:
            List of User objects.

        Raises:
            UserStoreError: If the store is missing or unreadable.
        """
        try:
            with open(self.filepath, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            raise UserStoreError(self.filepath, "file not found")
        except json.JSONDecodeError as e:
            raise UserStoreError(self.filepath, f"invalid JSON: {e}")
        except OSError as e:
            raise UserStoreError(self.filepath, str(e))

        entries = _user_entries(data)
        if entries is None:
            raise UserStoreError(self.filepath, "expected a list of users or an object of users")

        users = []
        for entry in entries:
            user = parse_user_entry(entry)
            if user is not None:
                users.append(user)

        skipped = len(entries) - len(users)
        if skipped:
            logger.warning(f"Skipped {skipped} malformed user entr{'y' if skipped == 1 else 'ies'}")

        logger.info(f"Loaded {len(users)} user(s) from {self.filepath}")
        return users


def _user_entries(data: Any) -> Optional[List[Any]]:
    if isinstance(data, list):
        return data

    if isinstance(data, dict):
        users = data.get("users")
        if isinstance(users, list):
            return users
        if isinstance(users, dict):
            return list(users.values())
        if users is None:
            return list(data.values())

    return None


def parse_user_entry(entry: Any) -> Optional[User]:
    """
    Parse a user entry from the store.

    The subscriber id may be stored as ``subscriber_id`` or under the
    messenger id it is delivered to.

    Args:
        entry: Dictionary with user data.

    Returns:
        User object or None if invalid.
    """
    if not isinstance(entry, dict):
        return None

    subscriber_id = (
        entry.get("subscriber_id")
        or entry.get("facebookMessengerId")
        or entry.get("email")
    )
    if subscriber_id is None or not str(subscriber_id).strip():
        logger.warning("User entry without a subscriber id")
        return None

    watching_classes = entry.get("watching_classes", entry.get("watchingClasses", []))
    watching_sections = entry.get("watching_sections", entry.get("watchingSections", []))

    if not isinstance(watching_classes, list) or not isinstance(watching_sections, list):
        logger.warning(f"Watch-lists for {subscriber_id} are not lists")
        return None

    return User(
        subscriber_id=subscriber_id,
        watching_classes=watching_classes,
        watching_sections=watching_sections,
    )


def get_user_summary(users: List[User]) -> Dict[str, int]:
    """
    Get summary statistics for a user population.

    Args:
        users: List of users.

    Returns:
        Dictionary with summary statistics.
    """
    return {
        "total_users": len(users),
        "class_watches": sum(len(u.watching_classes) for u in users),
        "section_watches": sum(len(u.watching_sections) for u in users),
        "idle_users": len([u for u in users if not u.watching_classes and not u.watching_sections]),
    }
