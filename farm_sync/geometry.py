"""Decide whether a field currently carries usable boundary geometry."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from enum import Enum
from typing import Any

from .const import EXTERNAL_FILE_KEYS, GEOJSON_BOUNDARY_TYPES, PENDING_STATUSES, PROCESSED_STATUSES


class StatusClass(str, Enum):
    """How a backend status literal is interpreted."""

    DONE = "done"
    PENDING = "pending"
    UNRECOGNIZED = "unrecognized"


def _non_empty_sequence(value: Any) -> bool:
    return isinstance(value, Sequence) and not isinstance(value, str | bytes | bytearray) and len(value) > 0


def _feature_has_geometry(feature: Any) -> bool:
    if not isinstance(feature, Mapping):
        return False
    geometry = feature.get("geometry")
    return isinstance(geometry, Mapping) and _non_empty_sequence(geometry.get("coordinates"))


def boundary_has_geometry(boundary: Any) -> bool:
    """Return ``True`` if ``boundary`` holds at least one coordinate."""

    if boundary is None:
        return False
    if _non_empty_sequence(boundary):
        # bare polygon ring / coordinate array
        return True
    if not isinstance(boundary, Mapping):
        return False
    if _non_empty_sequence(boundary.get("coordinates")):
        return True
    kind = boundary.get("type")
    if kind not in GEOJSON_BOUNDARY_TYPES:
        return False
    if kind == "Feature":
        return _feature_has_geometry(boundary)
    if kind == "FeatureCollection":
        features = boundary.get("features")
        if not _non_empty_sequence(features):
            return False
        return any(_feature_has_geometry(feature) for feature in features)
    return False


def classify_status(status: Any) -> StatusClass:
    """Map a backend status string onto the known vocabulary.

    Matching is case sensitive on the known literals; ``None`` counts as the
    empty status.
    """
    if status is None:
        status = ""
    if not isinstance(status, str):
        return StatusClass.UNRECOGNIZED
    if status in PROCESSED_STATUSES:
        return StatusClass.DONE
    if status in PENDING_STATUSES:
        return StatusClass.PENDING
    return StatusClass.UNRECOGNIZED


def _external_ref(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def _evidence(field: Any) -> tuple[Any, Any, Any]:
    if isinstance(field, Mapping):
        boundary = field.get("boundary")
        if boundary is None:
            boundary = field.get("geometry")
        external = next((field.get(key) for key in EXTERNAL_FILE_KEYS if _external_ref(field.get(key))), None)
        return boundary, external, field.get("status")
    return (
        getattr(field, "boundary", None),
        getattr(field, "external_file_ref", None),
        getattr(field, "backend_status", None),
    )


def is_processed(field: Any) -> bool:
    """Return ``True`` when ``field`` has evidence of completed processing.

    Evidence is any of: boundary geometry, an external KML/KMZ reference, or a
    status literal in the processed set. Pending and unrecognized statuses
    without geometry are both treated as unprocessed; absence of evidence is
    never read as success. Accepts a :class:`~farm_sync.models.Field` or a raw
    backend mapping and never mutates it.
    """
    boundary, external, status = _evidence(field)
    if boundary_has_geometry(boundary):
        return True
    if _external_ref(external):
        return True
    return classify_status(status) is StatusClass.DONE
