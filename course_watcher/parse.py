"""
Parse module for the Course Watcher pipeline.

This module turns a fetched catalog page into raw parsed nodes and
reduces those nodes into final class and section records.

Raw nodes form a small graph::

    {"type": "class", "value": {...}, "deps": [
        {"type": "section", "value": {...}, "deps": []},
    ]}

A node of type "ignore" only groups its deps.
"""

import re
from typing import Any, Dict, List, Optional

from bs4 import BeautifulSoup, Tag

from course_watcher.errors import InvalidTupleError, ParseError
from course_watcher.models import ClassRecord, NormalizedCatalog, SectionRecord
from course_watcher.utils import get_logger, normalize_url, sanitize_text


logger = get_logger("parse")

CLASS_NODE = "class"
SECTION_NODE = "section"
IGNORE_NODE = "ignore"

IDENTITY_FIELDS = ("host", "term_id", "subject", "class_uid")

NO_SECTIONS_MARKERS = (
    "no classes were found",
    "no sections found",
)

CRN_PATTERN = re.compile(r"^\d+$")


def make_node(node_type: str, value: Dict[str, Any], deps: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
    return {"type": node_type, "value": value, "deps": deps or []}


def parse_section_title(text: str) -> Optional[Dict[str, str]]:
    """
    Split a section heading into its parts.

    Headings look like "Fundamentals of CS 1 - 10234 - CS 2500 - 01". The
    title itself may contain " - ".

    Args:
        text: Heading text.

    Returns:
        Dictionary with title, crn, course and section, or None if the
        heading does not match.
    """
    parts = [p.strip() for p in sanitize_text(text).split(" - ")]
    if len(parts) < 4:
        return None

    crn = parts[-3]
    if not CRN_PATTERN.match(crn):
        return None

    return {
        "title": " - ".join(parts[:-3]),
        "crn": crn,
        "course": parts[-2],
        "section": parts[-1],
    }


def _to_int(text: str) -> Optional[int]:
    try:
        return int(sanitize_text(text))
    except ValueError:
        return None


def extract_seats(details: Optional[Tag]) -> Dict[str, Optional[int]]:
    """
    Read capacity and remaining seats from a section's detail cell.

    Looks for the "Seats" row of the availability table (Capacity, Actual,
    Remaining).

    Args:
        details: Detail cell following the section heading.

    Returns:
        Dictionary with seats_capacity and seats_remaining (None if absent).
    """
    seats: Dict[str, Optional[int]] = {"seats_capacity": None, "seats_remaining": None}
    if details is None:
        return seats

    for label in details.find_all("th"):
        if sanitize_text(label.get_text()).lower() != "seats":
            continue
        cells = label.find_parent("tr").find_all("td")
        if len(cells) >= 3:
            seats["seats_capacity"] = _to_int(cells[0].get_text())
            seats["seats_remaining"] = _to_int(cells[2].get_text())
        break

    return seats


def parse_class_page(html: str, source_url: str, identity: Dict[str, Any]) -> List[Dict[str, Any]]:
    """
    Parse a class's section listing page into raw nodes.

    Args:
        html: Raw HTML content string.
        source_url: URL the page was fetched from.
        identity: Identity fields of the class being refreshed.

    Returns:
        A single-element list holding the class node.

    Raises:
        ParseError: If the page does not look like a section listing, or a
                    section heading cannot be read.
    """
    if not html:
        raise ParseError(source_url, "empty page")

    logger.debug(f"Parsing HTML from {source_url} ({len(html)} bytes)")

    soup = BeautifulSoup(html, "html.parser")
    headings = soup.select("th.ddtitle")

    if not headings:
        page_text = sanitize_text(soup.get_text()).lower()
        if not any(marker in page_text for marker in NO_SECTIONS_MARKERS):
            raise ParseError(source_url, "no section listing found")

    section_nodes = []
    class_title = ""

    for heading in headings:
        parsed = parse_section_title(heading.get_text())
        if parsed is None:
            raise ParseError(source_url, f"unrecognised section heading {sanitize_text(heading.get_text())!r}")

        row = heading.find_parent("tr")
        next_row = row.find_next_sibling("tr") if row else None
        details = next_row.find("td", class_="dddefault") if next_row else None

        link = heading.find("a", href=True)
        section_url = normalize_url(str(link["href"]), source_url) if link else ""

        class_title = class_title or parsed["title"]
        value = {"crn": parsed["crn"], "url": section_url}
        value.update(extract_seats(details))
        section_nodes.append(make_node(SECTION_NODE, value))

    class_value = {name: identity.get(name) for name in IDENTITY_FIELDS}
    class_value["url"] = source_url
    class_value["title"] = class_title or identity.get("title", "")

    logger.info(f"Extracted {len(section_nodes)} section(s) from {source_url}")

    return [make_node(CLASS_NODE, class_value, section_nodes)]


def _walk(node: Any, catalog: NormalizedCatalog, seen: set) -> None:
    if not isinstance(node, dict):
        raise ParseError("<nodes>", f"unexpected node {node!r}")

    node_type = node.get("type")
    deps = node.get("deps") or []

    if node_type == IGNORE_NODE:
        for dep in deps:
            _walk(dep, catalog, seen)
        return

    if node_type != CLASS_NODE:
        raise ParseError("<nodes>", f"unexpected top level node type {node_type!r}")

    value = dict(node.get("value") or {})
    identity = {name: value.get(name) for name in IDENTITY_FIELDS}

    crns: List[str] = []
    sections: List[SectionRecord] = []
    for dep in deps:
        if not isinstance(dep, dict) or dep.get("type") != SECTION_NODE:
            continue
        section_value = dict(identity)
        section_value.update(dep.get("value") or {})
        section = SectionRecord.from_dict(section_value)
        if section.crn in crns:
            continue
        crns.append(section.crn)
        sections.append(section)

    value["crns"] = crns
    record = ClassRecord.from_dict(value)

    if record.key in seen:
        return
    seen.add(record.key)

    catalog.classes.append(record)
    for section in sections:
        if section.key not in seen:
            seen.add(section.key)
            catalog.sections.append(section)


def normalize(nodes: List[Dict[str, Any]]) -> NormalizedCatalog:
    """
    Reduce raw parsed nodes into class and section records.

    Sections inherit identity fields from their class node and a class's
    crns are taken from its section nodes. Running this twice on the same
    nodes gives the same result.

    Args:
        nodes: Raw nodes from parse_class_page.

    Returns:
        NormalizedCatalog with one class per class node.

    Raises:
        ParseError: If a node is malformed or lacks identity fields.
    """
    catalog = NormalizedCatalog()
    seen: set = set()

    for node in nodes:
        try:
            _walk(node, catalog, seen)
        except InvalidTupleError as e:
            url = (node.get("value") or {}).get("url") or "<nodes>"
            raise ParseError(str(url), e.message) from e

    return catalog
