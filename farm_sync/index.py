from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from .identifiers import IdMatch, coerce_id, match_ids
from .models import Farmer, Field, InvalidRecordError
from .store import FieldStore

_LOGGER = logging.getLogger(__name__)

IndexListener = Callable[[str], None]


class FarmerFieldIndex:
    """Farmer id -> ordered field ids, resolved against a :class:`FieldStore`.

    The index stores ids only; the records themselves always come from the
    store, so an update applied there is visible here immediately.
    """

    def __init__(self, store: FieldStore) -> None:
        self._store = store
        self._entries: dict[str, list[str]] = {}
        self._listeners: list[IndexListener] = []
        self.heuristic_matches: dict[str, set[str]] = {}

    @staticmethod
    def canonical_key(farmer_id: Any) -> str:
        return str(farmer_id).strip()

    def add_listener(self, listener: IndexListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    def _notify(self, farmer_key: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(farmer_key)
            except Exception:  # pragma: no cover - listener bugs must not break the index
                _LOGGER.exception("Index listener failed for farmer %s", farmer_key)

    # ------------------------------------------------------------------
    def _lookup(self, farmer_id: Any) -> list[str] | None:
        # entries are only ever written under the canonical key, so "42", 42
        # and " 42 " all resolve to one list
        return self._entries.get(self.canonical_key(farmer_id))

    def touch(self, farmer_id: Any) -> None:
        """Tell listeners a farmer's fields changed without changing the entry."""

        self._notify(self.canonical_key(farmer_id))

    def _set(self, farmer_id: Any, ids: list[str]) -> None:
        key = self.canonical_key(farmer_id)
        previous = self._entries.get(key)
        self._entries[key] = ids
        if previous != ids:
            self._notify(key)

    def _resolve(self, ids: Iterable[str]) -> list[Field]:
        resolved = []
        for field_id in ids:
            record = self._store.get(field_id)
            if record is not None:
                resolved.append(record)
        return resolved

    def get(self, farmer_id: Any) -> list[Field]:
        """Return the cached fields for ``farmer_id`` (empty on a miss)."""

        ids = self._lookup(farmer_id)
        if not ids:
            return []
        return self._resolve(ids)

    def __contains__(self, farmer_id: object) -> bool:
        return bool(self._lookup(farmer_id))

    def farmer_ids(self) -> list[str]:
        return sorted(self._entries)

    def farmers_for_field(self, field_id: str) -> list[str]:
        return sorted(key for key, ids in self._entries.items() if field_id in ids)

    # ------------------------------------------------------------------
    def _embedded_ids(self, farmer_id: Any, embedded: Iterable[Mapping[str, Any]]) -> list[str]:
        owner = coerce_id(farmer_id)
        ids: list[str] = []
        for payload in embedded:
            try:
                record = Field.from_payload(payload, owner_hint=owner)
            except InvalidRecordError as err:
                _LOGGER.debug("Ignoring embedded field for farmer %s: %s", farmer_id, err)
                continue
            if record.field_id in ids:
                continue
            if record.field_id not in self._store:
                if set(payload) <= {"_id", "id"}:
                    # bare reference to a farm the catalog does not know
                    continue
                self._store.upsert(record)
            ids.append(record.field_id)
        return ids

    def _catalog_ids(self, farmer_id: Any) -> list[str]:
        key = self.canonical_key(farmer_id)
        exact: list[str] = []
        heuristic: list[str] = []
        for record in self._store.catalog():
            outcome = match_ids(record.owner_farmer_id, farmer_id)
            if outcome is IdMatch.EXACT:
                exact.append(record.field_id)
            elif outcome is IdMatch.HEURISTIC:
                heuristic.append(record.field_id)
        if exact:
            self.heuristic_matches.pop(key, None)
            return exact
        if heuristic:
            _LOGGER.info(
                "Farmer %s matched %d fields by id suffix only: %s",
                key,
                len(heuristic),
                ", ".join(heuristic),
            )
            self.heuristic_matches[key] = set(heuristic)
        return heuristic

    def ensure(self, farmer_id: Any, embedded: Iterable[Mapping[str, Any]] | None = None) -> list[Field]:
        """Populate the entry for ``farmer_id`` on demand and return it.

        A populated entry is a cache hit. Otherwise the farmer's embedded field
        list is used when it has any resolvable fields, then the catalog is
        filtered by owner. An empty result never replaces a populated entry;
        only :meth:`rebuild` may shrink one.
        """
        cached = self._lookup(farmer_id)
        if cached:
            return self._resolve(cached)
        ids = self._embedded_ids(farmer_id, embedded or ())
        if not ids:
            ids = self._catalog_ids(farmer_id)
        if ids or cached is None:
            self._set(farmer_id, ids)
        return self._resolve(ids)

    def prime(self, farmer_id: Any, records: Iterable[Field]) -> None:
        """Seed an entry with fields the caller already holds.

        Fields already in the entry are kept, so priming never shrinks it.
        Records are written to the store only when it does not hold them yet.
        """
        ids = list(self._lookup(farmer_id) or ())
        for record in records:
            if record.field_id not in self._store:
                self._store.upsert(record)
            if record.field_id not in ids:
                ids.append(record.field_id)
        self._set(farmer_id, ids)

    def refresh_embedded(self, farmer_id: Any, embedded: Iterable[Mapping[str, Any]]) -> list[Field]:
        """Re-read a farmer's embedded list without letting it shrink the entry."""

        ids = self._embedded_ids(farmer_id, embedded)
        if ids:
            self._set(farmer_id, ids)
            return self._resolve(ids)
        cached = self._lookup(farmer_id)
        if cached:
            _LOGGER.debug("Embedded list for farmer %s is empty; keeping %d cached fields", farmer_id, len(cached))
            return self._resolve(cached)
        return []

    def rebuild(self, farmers: Iterable[Farmer] | None = None) -> None:
        """Rebuild every entry after a full catalog fetch.

        This is the one path allowed to shrink an entry, since the catalog it
        reads from was just confirmed by the backend. Known farmers without a
        :class:`Farmer` record are re-filtered from the catalog.
        """
        seen: set[str] = set()
        for farmer in farmers or ():
            key = self.canonical_key(farmer.farmer_id)
            seen.add(key)
            ids = self._embedded_ids(farmer.farmer_id, farmer.embedded_fields)
            if not ids:
                ids = self._catalog_ids(farmer.farmer_id)
            self._set(key, ids)
        for key in self.farmer_ids():
            if key in seen:
                continue
            self._set(key, self._catalog_ids(key))

    def clear(self) -> None:
        self._entries.clear()
        self.heuristic_matches.clear()
