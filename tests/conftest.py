"""
Shared fixtures for the Course Watcher tests.
"""

import pytest

from course_watcher.models import ClassRecord, SectionRecord
from course_watcher.snapshot import SnapshotStore
from course_watcher.users import User


CLASS_URL = "https://catalog.example.edu/bwckctlg.p_disp_listcrse?term_in=201810&subj_in=CS&crse_in=2500"


def make_class(class_uid="2500_1", crns=("111", "222"), subject="CS", url=CLASS_URL, title="Fundamentals of CS 1"):
    return ClassRecord(
        host="neu.edu",
        term_id="201810",
        subject=subject,
        class_uid=class_uid,
        crns=list(crns),
        title=title,
        url=url,
    )


def make_section(crn="111", seats_remaining=0, class_uid="2500_1", subject="CS", seats_capacity=40):
    return SectionRecord(
        host="neu.edu",
        term_id="201810",
        subject=subject,
        class_uid=class_uid,
        crn=crn,
        seats_remaining=seats_remaining,
        seats_capacity=seats_capacity,
    )


@pytest.fixture
def cs2500():
    """Class CS 2500 with sections 111 and 222."""
    return make_class()


@pytest.fixture
def snapshot(cs2500):
    """Snapshot holding CS 2500; section 111 is full, 222 has seats."""
    return SnapshotStore(
        classes=[cs2500],
        sections=[make_section("111", 0), make_section("222", 5)],
    )


@pytest.fixture
def alice(cs2500):
    """User watching CS 2500 and its full section 111."""
    return User(
        subscriber_id="alice",
        watching_classes=[cs2500.key],
        watching_sections=[make_section("111").key],
    )
