from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any

from . import geometry
from .const import (
    EMBEDDED_FIELD_KEYS,
    EXTERNAL_FILE_KEYS,
    FARMER_ID_PATHS,
    FIELD_ID_PATHS,
)
from .identifiers import OpaqueId, OwnerRef, extract_id, parse_owner_ref
from .names import resolve_display_name, resolve_location


class InvalidRecordError(ValueError):
    """Raised when a backend record cannot be turned into a model."""


class ProcessingStatus(str, Enum):
    """Local lifecycle of a field's boundary geometry."""

    AWAITING_GEOMETRY = "awaiting_geometry"
    PROCESSING = "processing"
    PROCESSED = "processed"
    ERROR = "error"


def _first(payload: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = payload.get(key)
        if value is not None and value != "":
            return value
    return None


def parse_area(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Mapping):
        value = value.get("value", value.get("hectares"))
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _parse_date(value: Any) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip().replace("Z", "+00:00")
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        pass
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


@dataclass(slots=True)
class Field:
    """A single insurable parcel as cached by the engine."""

    field_id: OpaqueId
    owner_farmer_id: OpaqueId | None = None
    name: str = ""
    crop_type: str = ""
    area_hectares: float | None = None
    season: str = ""
    sowing_date: date | None = None
    boundary: Any = None
    location: Any = None
    external_file_ref: str | None = None
    backend_status: str | None = None
    processing_status: ProcessingStatus = ProcessingStatus.AWAITING_GEOMETRY
    # Set once an upload response has confirmed the boundary; later refreshes
    # carrying a stale backend status do not demote the field.
    upload_confirmed: bool = False
    owner_ref: OwnerRef | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any], *, owner_hint: OpaqueId | None = None) -> Field:
        if not isinstance(payload, Mapping):
            raise InvalidRecordError(f"field payload must be an object, got {type(payload).__name__}")
        field_id = extract_id(payload, FIELD_ID_PATHS)
        if not field_id:
            raise InvalidRecordError("field payload missing id")
        owner_ref = parse_owner_ref(payload)
        owner = owner_ref.value if owner_ref is not None else owner_hint
        external = next(
            (str(payload[key]).strip() for key in EXTERNAL_FILE_KEYS if _text(payload.get(key))),
            None,
        )
        boundary = payload.get("boundary")
        if boundary is None:
            boundary = payload.get("geometry")
        status = payload.get("status")
        record = cls(
            field_id=field_id,
            owner_farmer_id=owner,
            name=_text(_first(payload, "name", "fieldName", "farmName")),
            crop_type=_text(_first(payload, "cropType", "crop")),
            area_hectares=parse_area(_first(payload, "area", "areaHectares", "size")),
            season=_text(payload.get("season")),
            sowing_date=_parse_date(_first(payload, "sowingDate", "plantingDate")),
            boundary=boundary,
            location=payload.get("location"),
            external_file_ref=external,
            backend_status=status if isinstance(status, str) else None,
            owner_ref=owner_ref,
            raw=dict(payload),
        )
        if geometry.is_processed(record):
            record.processing_status = ProcessingStatus.PROCESSED
        return record

    @property
    def has_boundary(self) -> bool:
        return geometry.boundary_has_geometry(self.boundary)

    def summary(self) -> dict[str, Any]:
        return {
            "id": self.field_id,
            "farmer_id": self.owner_farmer_id,
            "name": self.name,
            "crop_type": self.crop_type,
            "area_hectares": self.area_hectares,
            "season": self.season,
            "sowing_date": self.sowing_date.isoformat() if self.sowing_date else None,
            "has_boundary": self.has_boundary,
            "backend_status": self.backend_status,
            "processing_status": self.processing_status.value,
        }


@dataclass(slots=True)
class Farmer:
    """A farmer record; identity is the only key that matters."""

    farmer_id: OpaqueId
    display_name: str
    location: str
    embedded_fields: tuple[dict[str, Any], ...] = ()
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> Farmer:
        if not isinstance(payload, Mapping):
            raise InvalidRecordError(f"farmer payload must be an object, got {type(payload).__name__}")
        farmer_id = extract_id(payload, FARMER_ID_PATHS)
        if not farmer_id:
            raise InvalidRecordError("farmer payload missing id")
        embedded: tuple[dict[str, Any], ...] = ()
        for key in EMBEDDED_FIELD_KEYS:
            items = payload.get(key)
            if isinstance(items, list) and items:
                # unpopulated references arrive as bare id strings
                embedded = tuple(
                    dict(item) if isinstance(item, Mapping) else {"_id": str(item)}
                    for item in items
                    if isinstance(item, Mapping) or (isinstance(item, str | int) and str(item).strip())
                )
                break
        return cls(
            farmer_id=farmer_id,
            display_name=resolve_display_name(payload),
            location=resolve_location(payload),
            embedded_fields=embedded,
            raw=dict(payload),
        )
