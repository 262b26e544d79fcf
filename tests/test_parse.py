"""
Tests for the parse module.

Tests cover:
- Section heading parsing
- Seat extraction
- Class page parsing into nodes
- Pages without sections and unrecognised pages
- Node normalization and idempotence
"""

import pytest

from course_watcher.errors import ParseError
from course_watcher.parse import (
    make_node,
    normalize,
    parse_class_page,
    parse_section_title,
)

from tests.conftest import CLASS_URL, make_class


def section_block(title, crn, capacity, actual, remaining):
    return f"""
    <tr><th class="ddtitle" scope="colgroup">
      <a href="/prod/bwckschd.p_disp_detail_sched?term_in=201810&amp;crn_in={crn}">{title} - {crn} - CS 2500 - 01</a>
    </th></tr>
    <tr><td class="dddefault">
      <table class="datadisplaytable" summary="This layout table is used to present the seating numbers.">
        <caption class="captiontext">Registration Availability</caption>
        <tr><td class="dddead">&nbsp;</td>
            <th class="ddheader" scope="col">Capacity</th>
            <th class="ddheader" scope="col">Actual</th>
            <th class="ddheader" scope="col">Remaining</th></tr>
        <tr><th class="ddlabel" scope="row">Seats</th>
            <td class="dddefault">{capacity}</td>
            <td class="dddefault">{actual}</td>
            <td class="dddefault">{remaining}</td></tr>
      </table>
    </td></tr>
    """


SECTIONS_PAGE = f"""
<html><body>
<table class="datadisplaytable" summary="This layout table is used to present the sections found">
{section_block("Fundamentals of CS 1", "111", 40, 40, 0)}
{section_block("Fundamentals of CS 1", "222", 40, 35, 5)}
</table>
</body></html>
"""

NO_SECTIONS_PAGE = "<html><body><span class='warningtext'>No classes were found that meet your search criteria</span></body></html>"


@pytest.fixture
def identity():
    return make_class().to_dict()


class TestParseSectionTitle:
    """Tests for section heading parsing."""

    def test_simple_heading(self):
        """Test a standard heading."""
        parsed = parse_section_title("Algorithms - 30123 - CS 3800 - 02")

        assert parsed == {"title": "Algorithms", "crn": "30123", "course": "CS 3800", "section": "02"}

    def test_title_containing_separator(self):
        """Test a title that itself contains ' - '."""
        parsed = parse_section_title("Lab - Physics - 30124 - PHYS 1151 - L1")

        assert parsed["title"] == "Lab - Physics"
        assert parsed["crn"] == "30124"

    def test_unrecognised_heading(self):
        """Test headings without a crn."""
        assert parse_section_title("Course Sections") is None
        assert parse_section_title("A - B - C - D") is None


class TestParseClassPage:
    """Tests for parsing a class page into nodes."""

    def test_sections_extracted(self, identity):
        """Test that each section becomes a node with seats."""
        nodes = parse_class_page(SECTIONS_PAGE, CLASS_URL, identity)

        assert len(nodes) == 1
        class_node = nodes[0]
        assert class_node["type"] == "class"
        assert class_node["value"]["class_uid"] == "2500_1"
        assert class_node["value"]["title"] == "Fundamentals of CS 1"

        sections = [dep["value"] for dep in class_node["deps"]]
        assert [s["crn"] for s in sections] == ["111", "222"]
        assert sections[0]["seats_remaining"] == 0
        assert sections[1]["seats_remaining"] == 5
        assert sections[1]["seats_capacity"] == 40

    def test_section_urls_resolved(self, identity):
        """Test that relative section links become absolute."""
        nodes = parse_class_page(SECTIONS_PAGE, CLASS_URL, identity)

        url = nodes[0]["deps"][0]["value"]["url"]
        assert url.startswith("https://catalog.example.edu/prod/bwckschd.p_disp_detail_sched")

    def test_page_without_sections(self, identity):
        """Test that an explicit 'no classes' page gives an empty class."""
        nodes = parse_class_page(NO_SECTIONS_PAGE, CLASS_URL, identity)

        assert nodes[0]["deps"] == []

    def test_unrecognised_page(self, identity):
        """Test that an unrelated page is a parse error."""
        with pytest.raises(ParseError):
            parse_class_page("<html><body><h1>Maintenance</h1></body></html>", CLASS_URL, identity)

    def test_empty_page(self, identity):
        """Test that an empty body is a parse error."""
        with pytest.raises(ParseError):
            parse_class_page("", CLASS_URL, identity)

    def test_changed_heading_format(self, identity):
        """Test that headings in an unreadable format fail the page instead of emptying it."""
        html = SECTIONS_PAGE.replace(" - 111 - CS 2500 - 01", " | 111 | CS 2500 | 01").replace(
            " - 222 - CS 2500 - 01", " | 222 | CS 2500 | 01"
        )

        with pytest.raises(ParseError) as exc_info:
            parse_class_page(html, CLASS_URL, identity)

        assert "heading" in exc_info.value.reason

    def test_one_unreadable_heading(self, identity):
        """Test that a single unreadable heading fails the whole page."""
        html = SECTIONS_PAGE.replace(" - 222 - CS 2500 - 01", " (222) CS 2500")

        with pytest.raises(ParseError):
            parse_class_page(html, CLASS_URL, identity)

    def test_missing_seat_table(self, identity):
        """Test that sections without seat data get None seats."""
        html = """
        <table class="datadisplaytable">
          <tr><th class="ddtitle"><a href="/x">Algorithms - 30123 - CS 3800 - 02</a></th></tr>
          <tr><td class="dddefault">Lecture</td></tr>
        </table>
        """

        nodes = parse_class_page(html, CLASS_URL, identity)

        assert nodes[0]["deps"][0]["value"]["seats_remaining"] is None


class TestNormalize:
    """Tests for reducing nodes into records."""

    def test_records_from_page(self, identity):
        """Test that a parsed page yields one class and its sections."""
        catalog = normalize(parse_class_page(SECTIONS_PAGE, CLASS_URL, identity))

        assert len(catalog.classes) == 1
        assert catalog.classes[0].key == make_class().key
        assert catalog.classes[0].crns == ["111", "222"]
        assert [s.crn for s in catalog.sections] == ["111", "222"]
        assert catalog.sections[0].class_uid == "2500_1"

    def test_normalize_is_idempotent(self, identity):
        """Test that normalizing the same nodes twice is stable."""
        nodes = parse_class_page(SECTIONS_PAGE, CLASS_URL, identity)

        assert normalize(nodes) == normalize(nodes)

    def test_ignore_nodes_are_flattened(self, identity):
        """Test grouping nodes and duplicate classes."""
        nodes = parse_class_page(SECTIONS_PAGE, CLASS_URL, identity)
        root = make_node("ignore", {}, nodes + nodes)

        catalog = normalize([root])

        assert len(catalog.classes) == 1
        assert len(catalog.sections) == 2

    def test_duplicate_crns_collapse(self, identity):
        """Test that a crn listed twice is kept once."""
        section = make_node("section", {"crn": "111", "seats_remaining": 1})
        node = make_node("class", identity, [section, section])

        catalog = normalize([node])

        assert catalog.classes[0].crns == ["111"]
        assert len(catalog.sections) == 1

    def test_class_without_identity(self):
        """Test that a class node lacking identity is a parse error."""
        with pytest.raises(ParseError):
            normalize([make_node("class", {"url": CLASS_URL})])

    def test_unexpected_node_type(self, identity):
        """Test that a stray section node at top level is rejected."""
        with pytest.raises(ParseError):
            normalize([make_node("section", {"crn": "111"})])
