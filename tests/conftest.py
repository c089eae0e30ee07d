from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

import pytest

from farm_sync.api import FarmsApiError
from farm_sync.files import BoundaryFile
from farm_sync.models import Field
from farm_sync.store import FieldStore
from farm_sync.utils.logging import reset_warnings

POLYGON = {
    "type": "Polygon",
    "coordinates": [[[30.06, -1.95], [30.07, -1.95], [30.07, -1.96], [30.06, -1.96], [30.06, -1.95]]],
}


class FakeFarmsApi:
    """In-memory stand-in for :class:`farm_sync.api.FarmsApiClient`."""

    def __init__(self) -> None:
        self.pages: dict[tuple[int, int], Any] = {}
        self.all_response: Any = []
        self.farms: dict[str, Any] = {}
        self.farmers_response: Any = []
        self.upload_responses: dict[str, Any] = {}
        self.upload_delay = 0.0
        self.calls: list[tuple[Any, ...]] = []
        self.uploads: list[dict[str, Any]] = []
        self.patches: list[tuple[str, dict[str, Any]]] = []

    async def list_farms(self, page: int, page_size: int) -> Any:
        self.calls.append(("list_farms", page, page_size))
        response = self.pages.get((page, page_size), [])
        if isinstance(response, Exception):
            raise response
        return response

    async def list_all_farms(self) -> Any:
        self.calls.append(("list_all_farms",))
        if isinstance(self.all_response, Exception):
            raise self.all_response
        return self.all_response

    async def get_farm(self, farm_id: str) -> Any:
        self.calls.append(("get_farm", farm_id))
        return self.farms.get(farm_id, {})

    async def update_farm(self, farm_id: str, patch: dict[str, Any]) -> Any:
        self.patches.append((farm_id, dict(patch)))
        return {"success": True, "data": {"_id": farm_id, **patch}}

    async def upload_boundary(self, farm_id: str, filename: str, content: bytes, **kwargs: Any) -> Any:
        self.uploads.append({"farm_id": farm_id, "filename": filename, "size": len(content), **kwargs})
        if self.upload_delay:
            await asyncio.sleep(self.upload_delay)
        response = self.upload_responses.get(farm_id, {"boundary": POLYGON, "status": "PROCESSED"})
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response()
        return response

    async def list_assigned_farmers(self) -> Any:
        self.calls.append(("list_assigned_farmers",))
        if isinstance(self.farmers_response, Exception):
            raise self.farmers_response
        return self.farmers_response


def farm(farm_id: str, farmer_id: str | None = "farmer-a", **extra: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {"_id": farm_id, "name": f"Plot {farm_id}", "cropType": "Maize", "status": "PENDING"}
    if farmer_id is not None:
        payload["farmerId"] = farmer_id
    payload.update(extra)
    return payload


def kml(name: str = "plot.kml", size: int = 2048) -> BoundaryFile:
    return BoundaryFile(filename=name, content=b"<kml/>".ljust(size, b" "))


@pytest.fixture(autouse=True)
def _reset_warn_once():
    reset_warnings()
    yield
    reset_warnings()


@pytest.fixture
def fake_api() -> FakeFarmsApi:
    return FakeFarmsApi()


@pytest.fixture
def store() -> FieldStore:
    return FieldStore()


@pytest.fixture
def seeded_store(store: FieldStore) -> Callable[..., FieldStore]:
    def _seed(*payloads: dict[str, Any]) -> FieldStore:
        store.replace_catalog(Field.from_payload(payload) for payload in payloads)
        return store

    return _seed


@pytest.fixture
def api_error() -> Callable[..., FarmsApiError]:
    def _make(message: str = "boom", status: int | None = 500) -> FarmsApiError:
        return FarmsApiError(message, status=status)

    return _make


@pytest.fixture
def make_farm() -> Callable[..., dict[str, Any]]:
    return farm


@pytest.fixture
def make_kml() -> Callable[..., BoundaryFile]:
    return kml


@pytest.fixture
def polygon() -> dict[str, Any]:
    return {"type": POLYGON["type"], "coordinates": [list(ring) for ring in POLYGON["coordinates"]]}
