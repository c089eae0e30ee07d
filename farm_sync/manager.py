"""Wire the catalog, store, index and upload machinery together.

:class:`FieldSyncManager` is the surface the surrounding application talks
to: field lookups per farmer, processing status, single and batch uploads,
and change notifications.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable, Sequence
from datetime import UTC, datetime
from typing import Any

from aiohttp import ClientError, ClientSession

from . import geometry
from .api import FarmsApiClient
from .batch import BatchUploadCoordinator
from .catalog import FarmCatalogFetcher
from .config import FieldSyncConfig
from .envelope import unwrap_items, unwrap_single
from .errors import BatchOutcome, PartialBackendFailure, UploadOutcome
from .files import BoundaryFile
from .identifiers import coerce_id
from .index import FarmerFieldIndex, IndexListener
from .models import Farmer, Field, InvalidRecordError, ProcessingStatus
from .state_machine import FieldProcessingStateMachine, StatusListener
from .store import FieldStore
from .utils.logging import warn_once

_LOGGER = logging.getLogger(__name__)


class FieldSyncManager:
    """Field boundary ingestion and reconciliation for one backend."""

    def __init__(
        self,
        config: FieldSyncConfig,
        *,
        session: ClientSession | None = None,
        api: FarmsApiClient | None = None,
    ) -> None:
        self.config = config
        self._owns_api = api is None
        self.api = api or FarmsApiClient(
            session,
            config.base_url,
            access_token=config.access_token,
            timeout=config.request_timeout,
            max_retries=config.max_retries,
        )
        self.store = FieldStore()
        self.index = FarmerFieldIndex(self.store)
        self.fetcher = FarmCatalogFetcher(
            self.api,
            page_size=config.page_size,
            fallback_page_size=config.fallback_page_size,
        )
        self.machine = FieldProcessingStateMachine(
            self.store,
            self.api,
            allowed_extensions=config.allowed_extensions,
            max_upload_bytes=config.max_upload_bytes,
            placeholder_prefixes=config.placeholder_prefixes,
        )
        self.batch = BatchUploadCoordinator(self.machine)
        self.farmers: dict[str, Farmer] = {}
        self._refresh_lock = asyncio.Lock()
        self._status_listeners: list[StatusListener] = []
        self.last_refresh_at: datetime | None = None
        self.last_refresh_error: str | None = None
        self.data_inconsistency: PartialBackendFailure | None = None
        self.store.add_listener(self._on_field_changed)

    async def async_close(self) -> None:
        if self._owns_api:
            await self.api.close()

    # ------------------------------------------------------------------
    # events
    def add_index_listener(self, listener: IndexListener) -> Callable[[], None]:
        """Call ``listener(farmer_id)`` whenever that farmer's field list changes."""

        return self.index.add_listener(listener)

    def add_status_listener(self, listener: StatusListener) -> Callable[[], None]:
        """Call ``listener(field_id, old, new)`` on every processing status change."""

        self._status_listeners.append(listener)

        def _remove() -> None:
            if listener in self._status_listeners:
                self._status_listeners.remove(listener)

        return _remove

    def _on_field_changed(self, field_id: str, old: Field | None, new: Field | None) -> None:
        # every write lands here, whether it came from a refresh, an upload
        # response or a status patch
        if old is not None and new is not None and old.processing_status is not new.processing_status:
            for listener in list(self._status_listeners):
                try:
                    listener(field_id, old.processing_status, new.processing_status)
                except Exception:  # pragma: no cover - listener bugs must not break writes
                    _LOGGER.exception("Status listener failed for %s", field_id)
        if old is None or new is None:
            return
        for farmer_id in self.index.farmers_for_field(field_id):
            self.index.touch(farmer_id)

    # ------------------------------------------------------------------
    # refresh
    async def async_refresh(self) -> list[Field]:
        """Fetch farmers and the full catalog, then rebuild the index.

        Raises :class:`PartialBackendFailure` when the backend claims data it
        will not return; the cached catalog is kept in that case.
        """
        async with self._refresh_lock:
            try:
                farmers = await self._fetch_farmers()
                records = await self.fetcher.fetch_all()
            except PartialBackendFailure as err:
                self.data_inconsistency = err
                self.last_refresh_error = str(err)
                _LOGGER.warning("Farm catalog is inconsistent: %s", err)
                raise
            except (ClientError, TimeoutError) as err:
                self.last_refresh_error = str(err)
                raise
            self.data_inconsistency = None
            self.last_refresh_error = None
            self.store.replace_catalog(records)
            if farmers is not None:
                self.farmers = {farmer.farmer_id: farmer for farmer in farmers}
            self.index.rebuild(self.farmers.values())
            self.last_refresh_at = datetime.now(tz=UTC)
            _LOGGER.debug("Catalog refreshed: %d fields, %d farmers", len(self.store), len(self.farmers))
            return self.store.catalog()

    async def _fetch_farmers(self) -> list[Farmer] | None:
        try:
            response = await self.api.list_assigned_farmers()
        except ClientError as err:
            # farmer scoping is best effort; the catalog alone still indexes by owner
            warn_once(_LOGGER, "assigned_farmers_failed", f"could not load assigned farmers: {err}")
            return None
        farmers: list[Farmer] = []
        for payload in unwrap_items(response):
            try:
                farmers.append(Farmer.from_payload(payload))
            except InvalidRecordError as err:
                _LOGGER.debug("Skipping farmer record: %s", err)
        return farmers

    async def refresh_field(self, field_id: Any) -> Field | None:
        """Reconcile one field from ``GET /farms/{id}``."""

        resolved = coerce_id(field_id)
        if not resolved:
            return None
        payload = unwrap_single(await self.api.get_farm(resolved))
        if payload is None:
            return self.store.get(resolved)
        try:
            record = Field.from_payload(payload)
        except InvalidRecordError as err:
            _LOGGER.warning("Backend returned an unusable record for field %s: %s", resolved, err)
            return self.store.get(resolved)
        return self.store.upsert(record)

    async def update_backend_status(self, field_id: Any, status: str) -> Field | None:
        """Send a status change to the backend and mirror it locally."""

        resolved = coerce_id(field_id)
        if not resolved:
            return None
        await self.api.update_farm(resolved, {"status": status})
        updated = self.store.apply_field_update(resolved, {"backend_status": status})
        if (
            updated is not None
            and updated.processing_status is ProcessingStatus.AWAITING_GEOMETRY
            and geometry.is_processed(updated)
        ):
            updated = self.machine.transition(resolved, ProcessingStatus.PROCESSED)
        return updated

    async def _refresh_after_upload(self) -> None:
        if not self.config.refresh_after_upload:
            return
        try:
            await self.async_refresh()
        except (PartialBackendFailure, ClientError, TimeoutError) as err:
            _LOGGER.warning("Refresh after upload failed: %s", err)

    # ------------------------------------------------------------------
    # queries
    def get_fields_for_farmer(self, farmer_id: Any) -> list[Field]:
        farmer = self.farmers.get(self.index.canonical_key(farmer_id))
        embedded = farmer.embedded_fields if farmer else None
        return self.index.ensure(farmer_id, embedded)

    def get_processing_status(self, field_id: Any) -> ProcessingStatus | None:
        resolved = coerce_id(field_id)
        return self.machine.status(resolved) if resolved else None

    def select_field(self, field_id: Any) -> Field | None:
        return self.store.select(coerce_id(field_id))

    @property
    def selected_field(self) -> Field | None:
        return self.store.selected

    def select_for_processing(self, field_ids: Iterable[Any]) -> None:
        self.batch.select(field_ids)

    def clear_processing_selection(self) -> None:
        """Drop pending selection state; uploads already running still complete."""

        self.batch.selection.clear()

    # ------------------------------------------------------------------
    # uploads
    async def begin_upload(
        self,
        field_id: Any,
        file: BoundaryFile,
        display_name: str | None = None,
    ) -> UploadOutcome:
        outcome = await self.machine.begin_upload(field_id, file, display_name)
        if outcome.ok:
            await self._refresh_after_upload()
        return outcome

    async def begin_batch_upload(
        self,
        field_ids: Iterable[Any] | None,
        files: Sequence[BoundaryFile],
    ) -> BatchOutcome:
        """Upload for ``field_ids``, or the current processing selection."""

        targets = list(field_ids) if field_ids is not None else sorted(self.batch.selection)
        outcome = await self.batch.process_many(targets, files)
        if outcome.succeeded:
            await self._refresh_after_upload()
        return outcome

    # ------------------------------------------------------------------
    def status(self) -> dict[str, Any]:
        last = self.fetcher.last_result
        return {
            "fields": len(self.store),
            "catalog_loaded": self.store.catalog_loaded,
            "farmers": len(self.farmers),
            "processing_status": self.store.status_counts(),
            "last_refresh_at": self.last_refresh_at.isoformat() if self.last_refresh_at else None,
            "last_refresh_error": self.last_refresh_error,
            "catalog_strategy": last.strategy if last else None,
            "data_inconsistency": self.data_inconsistency.total_items if self.data_inconsistency else None,
            "heuristic_matches": {key: sorted(ids) for key, ids in self.index.heuristic_matches.items()},
            "upload_errors": dict(self.machine.last_errors),
            "selected_field": self.store.selected.summary() if self.store.selected else None,
        }
