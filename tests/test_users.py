"""
Tests for the users module.

Tests cover:
- Reading the user store in its supported layouts
- Subscriber id aliases
- Skipping malformed users
- Fatal store errors
"""

import json

import pytest

from course_watcher.errors import UserStoreError
from course_watcher.users import User, UserStore, get_user_summary, parse_user_entry


class TestUser:
    """Tests for the User dataclass."""

    def test_subscriber_id_normalized(self):
        """Test that subscriber ids are stringified and stripped."""
        user = User(subscriber_id=" 12345 ")

        assert user.subscriber_id == "12345"
        assert user.watching_classes == []
        assert user.watching_sections == []


class TestParseUserEntry:
    """Tests for parsing user entries."""

    def test_parse_snake_case(self):
        """Test parsing the native layout."""
        user = parse_user_entry({
            "subscriber_id": "alice",
            "watching_classes": ["a"],
            "watching_sections": ["b"],
        })

        assert user == User("alice", ["a"], ["b"])

    def test_parse_messenger_layout(self):
        """Test parsing the messenger id and camelCase watch-lists."""
        user = parse_user_entry({
            "facebookMessengerId": 987654321,
            "watchingClasses": ["a"],
            "watchingSections": [],
        })

        assert user is not None
        assert user.subscriber_id == "987654321"
        assert user.watching_classes == ["a"]

    def test_missing_subscriber_id(self):
        """Test that entries without an id are rejected."""
        assert parse_user_entry({"watchingClasses": ["a"]}) is None

    def test_non_list_watches(self):
        """Test that watch-lists must be lists."""
        assert parse_user_entry({"subscriber_id": "x", "watching_classes": "abc"}) is None

    def test_non_dict_entry(self):
        """Test that non-object entries are rejected."""
        assert parse_user_entry("alice") is None


class TestUserStore:
    """Tests for reading the user store file."""

    def test_list_layout(self, tmp_path):
        """Test the {"users": [...]} layout."""
        path = tmp_path / "users.json"
        path.write_text(json.dumps({"users": [
            {"subscriber_id": "alice", "watching_classes": [], "watching_sections": []},
            {"subscriber_id": "bob", "watching_classes": [], "watching_sections": []},
        ]}))

        users = UserStore(str(path)).list_users()

        assert [u.subscriber_id for u in users] == ["alice", "bob"]

    def test_keyed_object_layout(self, tmp_path):
        """Test an object of user id -> user entry."""
        path = tmp_path / "users.json"
        path.write_text(json.dumps({
            "u1": {"facebookMessengerId": "111", "watchingClasses": [], "watchingSections": []},
            "u2": {"facebookMessengerId": "222", "watchingClasses": [], "watchingSections": []},
        }))

        users = UserStore(str(path)).list_users()

        assert sorted(u.subscriber_id for u in users) == ["111", "222"]

    def test_malformed_users_skipped(self, tmp_path):
        """Test that one bad entry does not sink the store."""
        path = tmp_path / "users.json"
        path.write_text(json.dumps({"users": [
            {"subscriber_id": "alice"},
            {"watching_classes": []},
            42,
        ]}))

        users = UserStore(str(path)).list_users()

        assert len(users) == 1

    def test_missing_file_is_fatal(self, tmp_path):
        """Test that a missing store raises UserStoreError."""
        with pytest.raises(UserStoreError):
            UserStore(str(tmp_path / "missing.json")).list_users()

    def test_invalid_json_is_fatal(self, tmp_path):
        """Test that a corrupt store raises UserStoreError."""
        path = tmp_path / "users.json"
        path.write_text("[{")

        with pytest.raises(UserStoreError):
            UserStore(str(path)).list_users()

    def test_wrong_shape_is_fatal(self, tmp_path):
        """Test that a scalar store raises UserStoreError."""
        path = tmp_path / "users.json"
        path.write_text("42")

        with pytest.raises(UserStoreError):
            UserStore(str(path)).list_users()


class TestUserSummary:
    """Tests for user summary statistics."""

    def test_summary(self):
        """Test summary counts."""
        users = [
            User("a", ["c1", "c2"], ["s1"]),
            User("b", [], []),
        ]

        summary = get_user_summary(users)

        assert summary == {
            "total_users": 2,
            "class_watches": 2,
            "section_watches": 1,
            "idle_users": 1,
        }
