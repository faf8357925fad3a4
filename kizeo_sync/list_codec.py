"""
Kizeo Sync - External List Codec

Kizeo external lists store one string per item. Segments are separated by
"|", each written "label:value" where the label repeats the value:

    ACME:ACME\\CE2:CE2\\SEC03:SEC03|Porte sectionnelle:Porte sectionnelle|2015:2015|...

Segment 0 is itself split by "\\" into company, visit code and number.
An empty value serializes as a bare ":". Values may contain ":" but never
"|" or "\\", which are replaced by "/" on the way in.

This module is the only place that knows the layout. It has no I/O.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Optional

from .normalize import PATH_SEPARATOR, build_merge_key

SEGMENT_SEPARATOR = "|"
KEY_VALUE_SEPARATOR = ":"

# Positions after segment 0
_TAIL_FIELDS = (
    "label",
    "commissioning_year",
    "serial_number",
    "brand",
    "length",
    "width",
    "height",
    "contact_id",
    "company_id",
    "agency_code",
)
CONTACT_SEGMENT = 1 + _TAIL_FIELDS.index("contact_id")
SEGMENT_COUNT = 1 + len(_TAIL_FIELDS)


@dataclass(frozen=True)
class ListItem:
    """Decoded external list entry. Every field is a string, "" when empty."""

    company: str = ""
    visit_code: str = ""
    number: str = ""
    label: str = ""
    commissioning_year: str = ""
    serial_number: str = ""
    brand: str = ""
    length: str = ""
    width: str = ""
    height: str = ""
    contact_id: str = ""
    company_id: str = ""
    agency_code: str = ""

    @property
    def merge_key(self) -> str:
        return build_merge_key(self.contact_id, self.visit_code, self.number)

    @classmethod
    def from_values(cls, **values) -> "ListItem":
        """Build from arbitrary values (None -> "", numbers -> str, separators removed)."""
        names = {f.name for f in fields(cls)}
        return cls(**{k: _clean(v) for k, v in values.items() if k in names})


def _clean(value) -> str:
    if value is None:
        return ""
    text = str(value).strip()
    for separator in (SEGMENT_SEPARATOR, PATH_SEPARATOR):
        text = text.replace(separator, "/")
    return text


def _pair(value: str) -> str:
    value = _clean(value)
    return f"{value}{KEY_VALUE_SEPARATOR}{value}" if value else KEY_VALUE_SEPARATOR


def _value_of(segment: str) -> str:
    """
    Value of a "label:value" segment.

    Segments this module writes repeat the value on both sides, so they split
    on the middle separator and values may contain ":" themselves. Anything
    else (hand-edited entries) falls back to the text after the last ":".

    >>> _value_of("SN:1:SN:1")
    'SN:1'
    """
    middle = len(segment) // 2
    if len(segment) % 2 == 1 and segment[middle] == KEY_VALUE_SEPARATOR:
        if segment[:middle] == segment[middle + 1 :]:
            return segment[:middle].strip()
    return segment.rsplit(KEY_VALUE_SEPARATOR, 1)[-1].strip()


def encode_item(item: ListItem) -> str:
    head = PATH_SEPARATOR.join(_pair(v) for v in (item.company, item.visit_code, item.number))
    tail = [_pair(getattr(item, name)) for name in _TAIL_FIELDS]
    return SEGMENT_SEPARATOR.join([head, *tail])


def decode_item(raw: str) -> ListItem:
    """
    Parse a wire string. Missing segments decode as "".

    >>> decode_item("ACME:ACME\\\\CE2:CE2\\\\SEC03:SEC03|:").number
    'SEC03'
    """
    segments = (raw or "").split(SEGMENT_SEPARATOR)
    head = segments[0].split(PATH_SEPARATOR) if segments else []
    head_values = [_value_of(part) for part in head] + ["", "", ""]

    tail_values = {
        name: _value_of(segments[position]) if position < len(segments) else ""
        for position, name in enumerate(_TAIL_FIELDS, start=1)
    }
    return ListItem(
        company=head_values[0],
        visit_code=head_values[1],
        number=head_values[2],
        **tail_values,
    )


def merge_key_from_item(raw: str) -> Optional[str]:
    """
    Merge key of a wire string, or None when it lacks visit code, number or
    contact id (such entries can never match a local item).
    """
    segments = (raw or "").split(SEGMENT_SEPARATOR)
    if len(segments) <= CONTACT_SEGMENT:
        return None

    head = segments[0].split(PATH_SEPARATOR)
    if len(head) < 3:
        return None

    visit_code = _value_of(head[1])
    number = _value_of(head[2])
    contact_id = _value_of(segments[CONTACT_SEGMENT])
    if not (visit_code and number and contact_id):
        return None

    return build_merge_key(contact_id, visit_code, number)
