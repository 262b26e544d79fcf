"""
Tests for the snapshot module.

Tests cover:
- Lookups by identity key
- Loading term dumps in both layouts
- Skipping records without identity
- Committing fetched records
- Saving and reloading
"""

import json

import pytest

from course_watcher.errors import SnapshotError
from course_watcher.models import ClassRecord, SectionRecord
from course_watcher.snapshot import SnapshotStore

from tests.conftest import make_class, make_section


TERM_DUMP = {
    "classes": [
        {
            "host": "neu.edu",
            "termId": "201810",
            "subject": "CS",
            "classUid": "2500_1",
            "name": "Fundamentals of CS 1",
            "prettyUrl": "https://catalog.example.edu/cs2500",
            "crns": [111, 222],
        }
    ],
    "sections": [
        {"host": "neu.edu", "termId": "201810", "subject": "CS", "classUid": "2500_1", "crn": 111, "seatsRemaining": 0},
        {"host": "neu.edu", "termId": "201810", "subject": "CS", "classUid": "2500_1", "crn": 222, "seatsRemaining": 5},
    ],
}


class TestLookup:
    """Tests for key lookups."""

    def test_lookup_class(self, snapshot, cs2500):
        """Test that a class resolves by its key."""
        assert snapshot.lookup_class(cs2500.key) == cs2500

    def test_lookup_section(self, snapshot):
        """Test that a section resolves by its key."""
        section = snapshot.lookup_section(make_section("222").key)

        assert section is not None
        assert section.seats_remaining == 5

    def test_lookup_missing(self, snapshot):
        """Test that unknown keys resolve to None."""
        assert snapshot.lookup_class("0" * 40) is None
        assert snapshot.lookup_section("0" * 40) is None

    def test_section_keys_for(self, snapshot, cs2500):
        """Test deriving section keys from a class's crns."""
        keys = snapshot.section_keys_for(cs2500)

        assert keys == [make_section("111").key, make_section("222").key]


class TestFromTermDump:
    """Tests for building a snapshot from term dump data."""

    def test_list_layout(self):
        """Test the classes/sections list layout with camelCase fields."""
        store = SnapshotStore.from_term_dump(TERM_DUMP)

        record = store.lookup_class(make_class().key)
        assert record is not None
        assert record.crns == ["111", "222"]
        assert record.title == "Fundamentals of CS 1"
        assert record.url == "https://catalog.example.edu/cs2500"
        assert store.section_count == 2

    def test_map_layout(self):
        """Test the classMap/sectionMap layout."""
        data = {
            "classMap": {"a": TERM_DUMP["classes"][0]},
            "sectionMap": {"b": TERM_DUMP["sections"][0]},
        }

        store = SnapshotStore.from_term_dump(data)

        assert store.class_count == 1
        assert store.section_count == 1

    def test_skips_records_without_identity(self):
        """Test that records missing identity fields are skipped."""
        data = {
            "classes": [{"host": "neu.edu", "subject": "CS"}, "garbage"],
            "sections": TERM_DUMP["sections"],
        }

        store = SnapshotStore.from_term_dump(data)

        assert store.class_count == 0
        assert store.section_count == 2
        assert store.skipped_records == 2

    def test_rejects_non_object(self):
        """Test that a non-object dump is rejected."""
        with pytest.raises(SnapshotError):
            SnapshotStore.from_term_dump([1, 2, 3])


class TestLoadAndSave:
    """Tests for file persistence."""

    def test_load_from_file(self, tmp_path):
        """Test loading a term dump from disk."""
        path = tmp_path / "snapshot.json"
        path.write_text(json.dumps(TERM_DUMP))

        store = SnapshotStore.load(str(path))

        assert store.class_count == 1

    def test_load_missing_file(self, tmp_path):
        """Test that a missing snapshot is fatal."""
        with pytest.raises(SnapshotError):
            SnapshotStore.load(str(tmp_path / "missing.json"))

    def test_load_invalid_json(self, tmp_path):
        """Test that a corrupt snapshot is fatal."""
        path = tmp_path / "snapshot.json"
        path.write_text("{ not json")

        with pytest.raises(SnapshotError):
            SnapshotStore.load(str(path))

    def test_save_then_load(self, tmp_path, snapshot, cs2500):
        """Test that a saved snapshot loads back with the same records."""
        path = tmp_path / "out" / "snapshot.json"

        assert snapshot.save(str(path)) is True
        reloaded = SnapshotStore.load(str(path))

        assert reloaded.lookup_class(cs2500.key) == cs2500
        assert reloaded.lookup_section(make_section("111").key).seats_remaining == 0


class TestCommit:
    """Tests for committing freshly fetched records."""

    def test_commit_replaces_records(self, snapshot):
        """Test that committed records replace the previous ones."""
        snapshot.commit([], [make_section("111", seats_remaining=3)])

        assert snapshot.lookup_section(make_section("111").key).seats_remaining == 3

    def test_commit_adds_new_records(self, snapshot):
        """Test that unseen records are added."""
        new_class = make_class(class_uid="3500_1", crns=["999"])

        snapshot.commit([new_class], [make_section("999", 1, class_uid="3500_1")])

        assert snapshot.lookup_class(new_class.key) == new_class
        assert snapshot.class_count == 2

    def test_commit_drops_removed_sections(self, snapshot):
        """Test that sections a class no longer lists are dropped."""
        snapshot.commit([make_class(crns=["111"])], [make_section("111", 0)])

        assert snapshot.lookup_section(make_section("222").key) is None
        assert snapshot.lookup_section(make_section("111").key) is not None


class TestRecords:
    """Tests for record conversion."""

    def test_section_from_dict_parses_seats(self):
        """Test seat fields in either spelling."""
        section = SectionRecord.from_dict({
            "host": "neu.edu", "termId": "201810", "subject": "CS",
            "classUid": "2500_1", "crn": 111, "seatsRemaining": "4", "seatCapacity": 30,
        })

        assert section.crn == "111"
        assert section.seats_remaining == 4
        assert section.seats_capacity == 30

    def test_section_unknown_seats(self):
        """Test that unparseable seat counts become None."""
        section = SectionRecord.from_dict({
            "host": "neu.edu", "term_id": "201810", "subject": "CS",
            "class_uid": "2500_1", "crn": "111", "seats_remaining": "n/a",
        })

        assert section.seats_remaining is None

    def test_class_round_trip(self, cs2500):
        """Test that to_dict output rebuilds an equal record."""
        assert ClassRecord.from_dict(cs2500.to_dict()) == cs2500

    def test_section_parent_key(self, cs2500):
        """Test that a section's parent key is its class's key."""
        assert make_section("111").parent_key == cs2500.key
