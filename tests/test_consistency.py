"""
Tests for the consistency module.

Tests cover:
- Watched sections with watched classes
- Each kind of orphaned watch
- One report per orphaned section key
"""

from course_watcher.consistency import check_consistency, check_section_watch
from course_watcher.errors import OrphanedWatch
from course_watcher.snapshot import SnapshotStore
from course_watcher.users import User
from course_watcher.watch_index import build_watch_index

from tests.conftest import make_class, make_section


class TestCheckConsistency:
    """Tests for the consistency checker."""

    def test_consistent_watches(self, snapshot, alice):
        """Test that a section watched alongside its class is fine."""
        index = build_watch_index([alice])

        assert check_consistency(index, snapshot) == []

    def test_class_watched_by_another_user(self, snapshot, cs2500):
        """Test that the class may be watched by a different user."""
        users = [
            User("alice", [], [make_section("111").key]),
            User("bob", [cs2500.key], []),
        ]

        assert check_consistency(build_watch_index(users), snapshot) == []

    def test_parent_class_not_watched(self, snapshot):
        """Test a section whose class nobody watches."""
        users = [User("alice", [], [make_section("111").key])]

        orphans = check_consistency(build_watch_index(users), snapshot)

        assert len(orphans) == 1
        assert isinstance(orphans[0], OrphanedWatch)
        assert orphans[0].key == make_section("111").key
        assert "not watched" in orphans[0].reason

    def test_section_missing_from_snapshot(self, snapshot, cs2500):
        """Test a watched section the snapshot does not know."""
        unknown = make_section("999").key
        users = [User("alice", [cs2500.key], [unknown])]

        orphans = check_consistency(build_watch_index(users), snapshot)

        assert [o.key for o in orphans] == [unknown]
        assert "not found in snapshot" in orphans[0].reason

    def test_parent_class_missing_from_snapshot(self):
        """Test a section whose class is not in the snapshot."""
        section = make_section("111")
        store = SnapshotStore(sections=[section])
        users = [User("alice", [make_class().key], [section.key])]

        orphans = check_consistency(build_watch_index(users), store)

        assert len(orphans) == 1
        assert "parent class" in orphans[0].reason

    def test_crn_not_listed_by_class(self, cs2500):
        """Test a section its class no longer lists."""
        stray = make_section("333")
        store = SnapshotStore(classes=[cs2500], sections=[stray])
        users = [User("alice", [cs2500.key], [stray.key])]

        orphans = check_consistency(build_watch_index(users), store)

        assert len(orphans) == 1
        assert "333" in orphans[0].reason

    def test_one_report_per_section_key(self, snapshot):
        """Test that several watchers of an orphan give a single report."""
        key = make_section("111").key
        users = [User("alice", [], [key]), User("bob", [], [key])]

        orphans = check_consistency(build_watch_index(users), snapshot)

        assert len(orphans) == 1

    def test_check_section_watch_direct(self, snapshot, alice):
        """Test checking a single key."""
        index = build_watch_index([alice])

        assert check_section_watch(make_section("111").key, index, snapshot) == []
