"""Retrieve the full farm catalog from an unreliable paginated backend."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from .api import FarmsApiClient, FarmsApiError
from .const import DEFAULT_FALLBACK_PAGE_SIZE, DEFAULT_PAGE_SIZE
from .envelope import probe_alternate_keys, total_items, unwrap_items
from .errors import CatalogFetchError, PartialBackendFailure
from .models import Field, InvalidRecordError
from .utils.logging import warn_once

_LOGGER = logging.getLogger(__name__)

STRATEGY_PAGE_ONE = "page_1"
STRATEGY_PAGE_ZERO = "page_0"
STRATEGY_PAGE_ZERO_LARGE = "page_0_large"
STRATEGY_UNPAGINATED = "unpaginated"
STRATEGY_ALTERNATE_KEYS = "alternate_keys"


@dataclass(slots=True)
class CatalogResult:
    """Outcome of a successful :meth:`FarmCatalogFetcher.fetch_all`."""

    fields: list[Field]
    strategy: str | None
    total_items: int = 0
    attempted: list[str] = field(default_factory=list)
    dropped: int = 0


@dataclass(slots=True)
class _Probe:
    name: str
    items: list[Any]
    response: Any


class FarmCatalogFetcher:
    """Walk an ordered chain of retrieval strategies until one yields farms.

    Probes run strictly one after another; each only fires once the previous
    one came back empty, so a backend with pagination bugs is not hammered.
    """

    def __init__(
        self,
        api: FarmsApiClient,
        *,
        page_size: int = DEFAULT_PAGE_SIZE,
        fallback_page_size: int = DEFAULT_FALLBACK_PAGE_SIZE,
    ) -> None:
        self._api = api
        self._page_size = page_size
        self._fallback_page_size = fallback_page_size
        self.last_result: CatalogResult | None = None

    async def fetch_all(self) -> list[Field]:
        """Return the de-duplicated catalog, see :meth:`fetch`."""

        return (await self.fetch()).fields

    async def fetch(self) -> CatalogResult:
        attempted: list[str] = []
        claimed = 0
        last_response: Any = None
        last_error: FarmsApiError | None = None
        failures = 0

        async def run(name: str, call: Callable[[], Awaitable[Any]]) -> _Probe | None:
            nonlocal claimed, last_response, last_error, failures
            attempted.append(name)
            try:
                response = await call()
            except FarmsApiError as err:
                failures += 1
                last_error = err
                warn_once(_LOGGER, f"catalog_{name}_failed", f"catalog probe {name} failed: {err}")
                return None
            last_response = response
            claimed = max(claimed, total_items(response))
            return _Probe(name, unwrap_items(response), response)

        probes: list[tuple[str, Callable[[], Awaitable[Any]], bool]] = [
            (STRATEGY_PAGE_ONE, lambda: self._api.list_farms(1, self._page_size), False),
            # a 0-based retry only makes sense when the server says data exists
            (STRATEGY_PAGE_ZERO, lambda: self._api.list_farms(0, self._page_size), True),
            (STRATEGY_PAGE_ZERO_LARGE, lambda: self._api.list_farms(0, self._fallback_page_size), False),
            (STRATEGY_UNPAGINATED, self._api.list_all_farms, False),
        ]
        unusable = 0

        def accept(name: str, items: list[Any]) -> CatalogResult | None:
            nonlocal unusable
            if not items:
                _LOGGER.debug("Catalog probe %s returned no farms (totalItems=%s)", name, claimed)
                return None
            fields, dropped = self.parse_records(items)
            if not fields:
                # records without a usable id are not a catalog; keep probing
                unusable = max(unusable, len(items))
                warn_once(
                    _LOGGER,
                    f"catalog_{name}_unusable",
                    f"catalog probe {name} returned {len(items)} records and none were usable",
                )
                return None
            return self._finish(name, fields, dropped, claimed, attempted)

        for name, call, needs_claim in probes:
            if needs_claim and claimed <= 0:
                continue
            probe = await run(name, call)
            if probe is None:
                continue
            result = accept(probe.name, probe.items)
            if result is not None:
                return result

        attempted.append(STRATEGY_ALTERNATE_KEYS)
        key, items = probe_alternate_keys(last_response)
        if items:
            _LOGGER.info("Catalog found %d records under data.%s", len(items), key)
            result = accept(STRATEGY_ALTERNATE_KEYS, items)
            if result is not None:
                return result

        if claimed > 0 or unusable > 0:
            raise PartialBackendFailure(max(claimed, unusable), attempted)
        # an empty catalog is only trusted when every probe actually answered
        if last_error is not None:
            raise CatalogFetchError(
                f"{failures} of {len(attempted) - 1} catalog strategies failed: {last_error}",
                status=last_error.status,
            )
        result = CatalogResult(fields=[], strategy=None, total_items=0, attempted=attempted)
        self.last_result = result
        return result

    def _finish(
        self,
        strategy: str,
        fields: list[Field],
        dropped: int,
        claimed: int,
        attempted: list[str],
    ) -> CatalogResult:
        if strategy != STRATEGY_PAGE_ONE:
            warn_once(
                _LOGGER,
                "catalog_fallback",
                f"catalog served by fallback strategy {strategy} ({len(fields)} farms)",
            )
        result = CatalogResult(
            fields=fields,
            strategy=strategy,
            total_items=claimed,
            attempted=list(attempted),
            dropped=dropped,
        )
        self.last_result = result
        return result

    @staticmethod
    def parse_records(items: list[Any]) -> tuple[list[Field], int]:
        """Convert raw records to fields, keeping the first record per id."""

        seen: dict[str, Field] = {}
        dropped = 0
        for item in items:
            try:
                record = Field.from_payload(item)
            except InvalidRecordError as err:
                dropped += 1
                warn_once(_LOGGER, "catalog_invalid_record", f"skipping farm record: {err}")
                continue
            if record.field_id in seen:
                dropped += 1
                _LOGGER.debug("Duplicate farm %s in catalog response", record.field_id)
                continue
            seen[record.field_id] = record
        return list(seen.values()), dropped
