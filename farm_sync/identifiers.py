"""Canonical identifier extraction for heterogeneously shaped backend records.

The farms backend is inconsistent about how it expresses identity. A farm's
owner may arrive as a plain string, as a populated farmer object, or nested
inside a ``farm`` wrapper; ids themselves may be strings, numbers or Mongo
``{"$oid": ...}`` objects. Everything is resolved once, at ingestion time,
into a plain ``str`` so downstream code never re-parses raw shapes.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .const import ID_KEYS, OWNER_ID_PATHS

_LOGGER = logging.getLogger(__name__)

SUFFIX_MIN_LENGTH = 4
SUFFIX_LENGTH = 6

OpaqueId = str


class IdMatch(str, Enum):
    """Outcome of comparing two identifiers."""

    EXACT = "exact"
    HEURISTIC = "heuristic"
    NONE = "none"

    def __bool__(self) -> bool:
        return self is not IdMatch.NONE

    @property
    def confident(self) -> bool:
        return self is IdMatch.EXACT


def _coerce_scalar(value: Any) -> str | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        text = value.strip()
        return text or None
    if isinstance(value, int | float):
        return str(value)
    return None


def coerce_id(value: Any) -> OpaqueId | None:
    """Return ``value`` as a canonical id string, or ``None``.

    Mappings are searched for ``_id``/``id`` (and Mongo's ``$oid``) one level
    deep so an embedded object can stand in for its id.
    """
    scalar = _coerce_scalar(value)
    if scalar is not None:
        return scalar
    if isinstance(value, Mapping):
        oid = _coerce_scalar(value.get("$oid"))
        if oid is not None:
            return oid
        for key in ID_KEYS:
            inner = value.get(key)
            scalar = _coerce_scalar(inner)
            if scalar is not None:
                return scalar
            if isinstance(inner, Mapping):
                oid = _coerce_scalar(inner.get("$oid"))
                if oid is not None:
                    return oid
    return None


def _walk(record: Any, path: Sequence[str]) -> Any:
    current = record
    for key in path:
        if not isinstance(current, Mapping):
            return None
        current = current.get(key)
        if current is None:
            return None
    return current


def extract_id(record: Any, candidate_paths: Iterable[Sequence[str]]) -> OpaqueId | None:
    """Return the first non-empty id found along ``candidate_paths``.

    A raw string or number passed as ``record`` is treated as the id itself.
    """
    direct = _coerce_scalar(record)
    if direct is not None:
        return direct
    if not isinstance(record, Mapping):
        return None
    for path in candidate_paths:
        resolved = coerce_id(_walk(record, path))
        if resolved is not None:
            return resolved
    return None


def match_ids(a: Any, b: Any) -> IdMatch:
    """Compare two ids, falling back to a suffix heuristic.

    Exact string equality wins. Otherwise, when both ids are at least four
    characters long, their last six characters are compared; a hit there is
    reported as :attr:`IdMatch.HEURISTIC` so callers can treat it with less
    confidence.
    """
    left = coerce_id(a)
    right = coerce_id(b)
    if left is None or right is None:
        return IdMatch.NONE
    if left == right:
        return IdMatch.EXACT
    if len(left) >= SUFFIX_MIN_LENGTH and len(right) >= SUFFIX_MIN_LENGTH:
        if left[-SUFFIX_LENGTH:] == right[-SUFFIX_LENGTH:]:
            _LOGGER.debug("Heuristic id match on suffix: %s ~ %s", left, right)
            return IdMatch.HEURISTIC
    return IdMatch.NONE


def ids_match(a: Any, b: Any) -> bool:
    return bool(match_ids(a, b))


@dataclass(frozen=True, slots=True)
class DirectId:
    """Owner expressed as a scalar id directly on the record."""

    key: str
    value: OpaqueId


@dataclass(frozen=True, slots=True)
class NestedId:
    """Owner expressed as an object carrying its own ``_id``/``id``."""

    path: tuple[str, ...]
    value: OpaqueId


@dataclass(frozen=True, slots=True)
class DoubleNestedId:
    """Owner nested inside a wrapper object (``farm.farmer._id``)."""

    path: tuple[str, ...]
    value: OpaqueId


OwnerRef = DirectId | NestedId | DoubleNestedId


def parse_owner_ref(record: Any, candidate_paths: Iterable[Sequence[str]] = OWNER_ID_PATHS) -> OwnerRef | None:
    """Classify how ``record`` expresses its owner and resolve the id."""

    if not isinstance(record, Mapping):
        return None
    for path in candidate_paths:
        path = tuple(path)
        raw = _walk(record, path)
        if raw is None:
            continue
        value = coerce_id(raw)
        if value is None:
            continue
        hops = len(path) - 1 + (1 if isinstance(raw, Mapping) else 0)
        if hops == 0:
            return DirectId(key=path[0], value=value)
        if hops == 1:
            return NestedId(path=path, value=value)
        return DoubleNestedId(path=path, value=value)
    return None
