from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from .const import UNKNOWN_LOCATION, UNKNOWN_NAME


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, int | float) and not isinstance(value, bool):
        return str(value)
    return ""


def resolve_display_name(record: Mapping[str, Any] | None) -> str:
    """Return the display name for a person record.

    Tried in order: ``name``, ``firstName + lastName``, ``firstName``,
    ``lastName``, then ``"Unknown"``.
    """
    if not isinstance(record, Mapping):
        return UNKNOWN_NAME
    name = _text(record.get("name"))
    if name:
        return name
    first = _text(record.get("firstName"))
    last = _text(record.get("lastName"))
    if first and last:
        return f"{first} {last}".strip()
    if first:
        return first
    if last:
        return last
    return UNKNOWN_NAME


def _location_text(value: Any) -> str:
    text = _text(value)
    if text:
        return text
    # Some records carry a structured location; only human readable parts count.
    if isinstance(value, Mapping):
        for key in ("name", "address", "label"):
            text = _text(value.get(key))
            if text:
                return text
    return ""


def resolve_location(record: Mapping[str, Any] | None) -> str:
    """Return a location label: ``location``, ``province, district``, ``province``, ``district``."""

    if not isinstance(record, Mapping):
        return UNKNOWN_LOCATION
    location = _location_text(record.get("location"))
    if location:
        return location
    province = _text(record.get("province"))
    district = _text(record.get("district"))
    if province and district:
        return f"{province}, {district}"
    if province:
        return province
    if district:
        return district
    return UNKNOWN_LOCATION
