"""Helpers that peel the backend's assorted response envelopes."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from .const import ALTERNATE_DATA_KEYS, LIST_ENVELOPE_KEYS, SINGLE_ENVELOPE_KEYS


def _records(value: Any) -> list[Any] | None:
    if isinstance(value, list):
        return value
    return None


def unwrap_items(response: Any) -> list[Any]:
    """Return the list of records carried by a list response.

    Checked in order: ``success`` + ``data.items``, a bare array, ``data``,
    ``items``, ``results`` and ``farms`` arrays. Unknown shapes give ``[]``.
    """
    if isinstance(response, list):
        return response
    if not isinstance(response, Mapping):
        return []
    data = response.get("data")
    if response.get("success") and isinstance(data, Mapping):
        items = _records(data.get("items"))
        if items is not None:
            return items
    for key in LIST_ENVELOPE_KEYS:
        items = _records(response.get(key))
        if items is not None:
            return items
    return []


def total_items(response: Any) -> int:
    """Return the record count the backend claims to hold, ``0`` if unknown."""

    if not isinstance(response, Mapping):
        return 0
    candidates: list[Any] = []
    data = response.get("data")
    if isinstance(data, Mapping):
        candidates.extend([data.get("totalItems"), data.get("total")])
        pagination = data.get("pagination")
        if isinstance(pagination, Mapping):
            candidates.append(pagination.get("totalItems"))
    candidates.extend([response.get("totalItems"), response.get("total")])
    for value in candidates:
        if value is None or isinstance(value, bool):
            continue
        try:
            return max(0, int(value))
        except (TypeError, ValueError):
            continue
    return 0


def probe_alternate_keys(response: Any) -> tuple[str | None, list[Any]]:
    """Look for a record list under less common keys inside ``data``.

    Returns the key that matched along with its non-empty list, or
    ``(None, [])``.
    """
    if not isinstance(response, Mapping):
        return None, []
    data = response.get("data")
    if not isinstance(data, Mapping):
        return None, []
    for key in ALTERNATE_DATA_KEYS:
        items = _records(data.get(key))
        if items:
            return key, items
    return None, []


def unwrap_single(response: Any) -> Mapping[str, Any] | None:
    """Return the record from a single-object response (``{data}``/``{farm}``)."""

    if not isinstance(response, Mapping):
        return None
    for key in SINGLE_ENVELOPE_KEYS:
        inner = response.get(key)
        if isinstance(inner, Mapping):
            nested = unwrap_single(inner) if key == "data" and "farm" in inner else None
            return nested or inner
    return response
