"""
Identity keying for classes and sections.

A class is identified by (host, term_id, subject, class_uid) and a section
by the same fields plus its crn. The canonical tuple is serialized as
sorted-key JSON and hashed, so equal identities always give equal keys and
a class key never equals one of its sections' keys.
"""

import hashlib
import json
import re
from typing import Any, Dict, Mapping, Optional, Union

from course_watcher.errors import InvalidTupleError


CLASS_FIELDS = ("host", "term_id", "subject", "class_uid")
SECTION_FIELDS = CLASS_FIELDS + ("crn",)

# camelCase spellings used by catalog term dumps
FIELD_ALIASES = {
    "term_id": ("termId",),
    "class_uid": ("classUid",),
}

KEY_PATTERN = re.compile(r"^[0-9a-f]{40}$")


def _read_field(source: Any, name: str) -> Optional[Any]:
    """Read a field from a mapping or an object, honouring aliases."""
    for candidate in (name,) + FIELD_ALIASES.get(name, ()):
        if isinstance(source, Mapping):
            value = source.get(candidate)
        else:
            value = getattr(source, candidate, None)
        if value is not None:
            return value
    return None


def identity_tuple(source: Any, section: Optional[bool] = None) -> Dict[str, str]:
    """
    Extract the canonical identity fields of a record.

    Args:
        source: Mapping or record object carrying identity fields.
        section: True for a section tuple, False for a class tuple, None to
                 decide from whether a crn is present.

    Returns:
        Dictionary of stripped string fields.

    Raises:
        InvalidTupleError: If a required field is missing or empty.
    """
    if section is None:
        section = _read_field(source, "crn") not in (None, "")

    names = SECTION_FIELDS if section else CLASS_FIELDS
    fields: Dict[str, str] = {}
    missing = []

    for name in names:
        value = _read_field(source, name)
        text = str(value).strip() if value is not None else ""
        if not text:
            missing.append(name)
        fields[name] = text

    if missing:
        raise InvalidTupleError(missing=missing, fields=fields)

    return fields


def key(source: Union[Mapping[str, Any], Any], section: Optional[bool] = None) -> str:
    """
    Hash an identity tuple into an opaque, stable key.

    Args:
        source: Mapping or record object with identity fields.
        section: Force class (False) or section (True) keying.

    Returns:
        Hex digest identifying the class or section.

    Raises:
        InvalidTupleError: If required identity fields are missing.
    """
    fields = identity_tuple(source, section=section)
    blob = json.dumps(fields, ensure_ascii=False, sort_keys=True).encode("utf-8")
    return hashlib.sha1(blob).hexdigest()


def class_key(source: Any) -> str:
    """Key of a class, or of the parent class of a section."""
    return key(source, section=False)


def section_key(source: Any) -> str:
    return key(source, section=True)


def is_valid_key(value: Any) -> bool:
    """Whether a watched value looks like a key produced by ``key``."""
    return isinstance(value, str) and bool(KEY_PATTERN.match(value))
