"""Authoritative in-memory store of field records.

Every piece of new field data (catalog refresh, single-farm fetch, upload
response, status change) is written through :meth:`FieldStore.apply_field_update`
or one of the refresh helpers built on it. The flat catalog, the per-farmer
index and the selected detail view are all read from this one mapping, so
they cannot drift apart.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import fields as dataclass_fields
from dataclasses import replace
from typing import Any

from .models import Field, ProcessingStatus

_LOGGER = logging.getLogger(__name__)

FieldListener = Callable[[str, Field | None, Field | None], None]

_PATCHABLE = frozenset(f.name for f in dataclass_fields(Field)) - {"field_id"}


def reconcile(existing: Field | None, incoming: Field) -> Field:
    """Merge a freshly fetched record into what we already hold.

    The backend record wins for descriptive attributes. Local processing state
    survives where the backend is known to lag: an in-flight upload stays
    ``PROCESSING``, a failed one stays ``ERROR`` until the backend shows
    geometry, and a boundary confirmed by an upload response is not demoted
    by a stale backend status.
    """
    if existing is None:
        return incoming
    merged = replace(incoming)
    if existing.processing_status is ProcessingStatus.PROCESSING:
        merged.processing_status = ProcessingStatus.PROCESSING
    elif existing.processing_status is ProcessingStatus.ERROR and (
        incoming.processing_status is not ProcessingStatus.PROCESSED
    ):
        merged.processing_status = ProcessingStatus.ERROR
    if existing.upload_confirmed:
        merged.upload_confirmed = True
        if not incoming.has_boundary and existing.has_boundary:
            merged.boundary = existing.boundary
        if merged.processing_status is not ProcessingStatus.PROCESSING:
            merged.processing_status = ProcessingStatus.PROCESSED
    if merged.owner_farmer_id is None:
        merged.owner_farmer_id = existing.owner_farmer_id
    return merged


class FieldStore:
    """Field records keyed by id, kept in catalog order."""

    def __init__(self) -> None:
        self._fields: dict[str, Field] = {}
        self._selected_id: str | None = None
        self._listeners: list[FieldListener] = []
        self.catalog_loaded = False

    def __len__(self) -> int:
        return len(self._fields)

    def __contains__(self, field_id: object) -> bool:
        return field_id in self._fields

    def get(self, field_id: str) -> Field | None:
        return self._fields.get(field_id)

    def catalog(self) -> list[Field]:
        return list(self._fields.values())

    # ------------------------------------------------------------------
    def add_listener(self, listener: FieldListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    def _notify(self, field_id: str, old: Field | None, new: Field | None) -> None:
        for listener in list(self._listeners):
            try:
                listener(field_id, old, new)
            except Exception:
                _LOGGER.exception("Field listener failed for %s", field_id)

    # ------------------------------------------------------------------
    def apply_field_update(self, field_id: str, patch: Mapping[str, Any]) -> Field | None:
        """Apply ``patch`` (attribute name -> value) to one field.

        Returns the updated record, or ``None`` when the field is not held;
        a missing target is skipped rather than treated as an error.
        """
        current = self._fields.get(field_id)
        if current is None:
            _LOGGER.debug("Skipping update for unknown field %s", field_id)
            return None
        changes = {key: value for key, value in patch.items() if key in _PATCHABLE}
        ignored = set(patch) - set(changes)
        if ignored:
            _LOGGER.debug("Ignoring unknown field attributes %s for %s", sorted(ignored), field_id)
        if not changes:
            return current
        updated = replace(current, **changes)
        self._fields[field_id] = updated
        self._notify(field_id, current, updated)
        return updated

    def upsert(self, record: Field) -> Field:
        """Insert ``record`` or reconcile it with the held copy."""

        existing = self._fields.get(record.field_id)
        merged = reconcile(existing, record)
        self._fields[record.field_id] = merged
        self._notify(record.field_id, existing, merged)
        return merged

    def replace_catalog(self, records: Iterable[Field]) -> list[str]:
        """Install a full catalog fetch; fields it no longer lists are dropped.

        Returns the ids that were removed.
        """
        incoming = {record.field_id: record for record in records}
        removed = [field_id for field_id in self._fields if field_id not in incoming]
        previous = self._fields
        self._fields = {}
        for field_id, record in incoming.items():
            merged = reconcile(previous.get(field_id), record)
            self._fields[field_id] = merged
            self._notify(field_id, previous.get(field_id), merged)
        for field_id in removed:
            self._notify(field_id, previous[field_id], None)
        if self._selected_id in removed:
            self._selected_id = None
        self.catalog_loaded = True
        return removed

    # ------------------------------------------------------------------
    @property
    def selected(self) -> Field | None:
        """The field shown in the detail view, read live from the store."""

        if self._selected_id is None:
            return None
        return self._fields.get(self._selected_id)

    def select(self, field_id: str | None) -> Field | None:
        self._selected_id = field_id
        return self.selected

    def status_counts(self) -> dict[str, int]:
        counts = {status.value: 0 for status in ProcessingStatus}
        for record in self._fields.values():
            counts[record.processing_status.value] += 1
        return counts
