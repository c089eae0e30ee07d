from __future__ import annotations

import pytest

from farm_sync.config import FieldSyncConfig
from farm_sync.errors import CatalogFetchError, PartialBackendFailure
from farm_sync.manager import FieldSyncManager
from farm_sync.models import ProcessingStatus


@pytest.fixture
def manager(fake_api, make_farm) -> FieldSyncManager:
    fake_api.farmers_response = {
        "success": True,
        "data": [
            {
                "_id": "farmer-a",
                "firstName": "Jane",
                "lastName": "Uwase",
                "province": "Northern",
                "district": "Musanze",
            }
        ],
    }
    fake_api.pages[(1, 100)] = {
        "success": True,
        "data": {"items": [make_farm("f1"), make_farm("f2"), make_farm("f3", "farmer-b")], "totalItems": 3},
    }
    config = FieldSyncConfig.from_options({"base_url": "https://api.example.org"})
    return FieldSyncManager(config, api=fake_api)


@pytest.mark.asyncio
async def test_refresh_builds_catalog_farmers_and_index(manager):
    records = await manager.async_refresh()

    assert [record.field_id for record in records] == ["f1", "f2", "f3"]
    assert manager.farmers["farmer-a"].display_name == "Jane Uwase"
    assert manager.farmers["farmer-a"].location == "Northern, Musanze"
    assert [record.field_id for record in manager.get_fields_for_farmer("farmer-a")] == ["f1", "f2"]
    assert [record.field_id for record in manager.get_fields_for_farmer("farmer-b")] == ["f3"]


@pytest.mark.asyncio
async def test_upload_converges_every_view(manager, fake_api, make_kml, polygon):
    await manager.async_refresh()
    manager.select_field("f1")
    fake_api.upload_responses["f1"] = {"boundary": polygon, "status": "REGISTERED"}
    status_events = []
    index_events = []
    manager.add_status_listener(lambda *args: status_events.append(args))
    manager.add_index_listener(index_events.append)

    outcome = await manager.begin_upload("f1", make_kml())

    assert outcome.ok
    from_index = next(record for record in manager.get_fields_for_farmer("farmer-a") if record.field_id == "f1")
    from_catalog = manager.store.get("f1")
    selected = manager.selected_field
    for copy in (from_index, from_catalog, selected):
        assert copy.boundary == polygon
        assert copy.processing_status is ProcessingStatus.PROCESSED
    assert status_events == [
        ("f1", ProcessingStatus.AWAITING_GEOMETRY, ProcessingStatus.PROCESSING),
        ("f1", ProcessingStatus.PROCESSING, ProcessingStatus.PROCESSED),
    ]
    assert "farmer-a" in index_events
    # the follow-up refresh saw a stale PENDING record and kept the uploaded boundary
    assert fake_api.calls.count(("list_farms", 1, 100)) == 2
    assert manager.get_processing_status("f1") is ProcessingStatus.PROCESSED


@pytest.mark.asyncio
async def test_refresh_after_upload_can_be_disabled(fake_api, make_farm, make_kml):
    fake_api.pages[(1, 100)] = [make_farm("f1")]
    config = FieldSyncConfig.from_options({"base_url": "https://api.example.org", "refresh_after_upload": False})
    manager = FieldSyncManager(config, api=fake_api)
    await manager.async_refresh()

    await manager.begin_upload("f1", make_kml())

    assert fake_api.calls.count(("list_farms", 1, 100)) == 1


@pytest.mark.asyncio
async def test_failed_follow_up_refresh_keeps_upload_outcome(manager, fake_api, make_kml, api_error):
    await manager.async_refresh()
    fake_api.pages[(1, 100)] = api_error("bad gateway", 502)

    outcome = await manager.begin_upload("f2", make_kml())

    assert outcome.ok
    assert manager.get_processing_status("f2") is ProcessingStatus.PROCESSED
    assert len(manager.store) == 3
    assert manager.status()["last_refresh_error"]


@pytest.mark.asyncio
async def test_inconsistent_backend_keeps_cached_catalog(manager, fake_api):
    await manager.async_refresh()
    fake_api.pages[(1, 100)] = {"success": True, "data": {"items": [], "totalItems": 4}}

    with pytest.raises(PartialBackendFailure):
        await manager.async_refresh()

    assert len(manager.store) == 3
    assert manager.status()["data_inconsistency"] == 4


@pytest.mark.asyncio
async def test_unreachable_backend_raises_fetch_error(manager, fake_api, api_error):
    fake_api.pages[(1, 100)] = api_error("down", 503)
    fake_api.all_response = api_error("down", 503)

    with pytest.raises(CatalogFetchError):
        await manager.async_refresh()

    assert manager.status()["fields"] == 0


@pytest.mark.asyncio
async def test_assigned_farmers_are_best_effort(manager, fake_api, api_error):
    fake_api.farmers_response = api_error("forbidden", 500)

    await manager.async_refresh()

    assert manager.farmers == {}
    assert [record.field_id for record in manager.get_fields_for_farmer("farmer-a")] == ["f1", "f2"]


@pytest.mark.asyncio
async def test_batch_upload_uses_processing_selection(manager, fake_api, make_kml):
    await manager.async_refresh()
    manager.select_for_processing(["f1", "f3"])

    batch = await manager.begin_batch_upload(None, [make_kml()])

    assert set(batch.outcomes) == {"f1", "f3"}
    assert batch.succeeded == 2
    assert manager.batch.selection == set()


@pytest.mark.asyncio
async def test_refresh_field_reconciles_one_record(manager, fake_api, make_farm, polygon):
    await manager.async_refresh()
    fake_api.farms["f2"] = {"success": True, "data": make_farm("f2", boundary=polygon, status="PROCESSED")}

    record = await manager.refresh_field("f2")

    assert record.processing_status is ProcessingStatus.PROCESSED
    assert manager.get_fields_for_farmer("farmer-a")[1].boundary == polygon


@pytest.mark.asyncio
async def test_update_backend_status(manager, fake_api):
    await manager.async_refresh()

    record = await manager.update_backend_status("f1", "PROCESSED")

    assert fake_api.patches == [("f1", {"status": "PROCESSED"})]
    assert record.backend_status == "PROCESSED"
    assert record.processing_status is ProcessingStatus.PROCESSED


@pytest.mark.asyncio
async def test_status_diagnostics(manager):
    await manager.async_refresh()
    manager.get_fields_for_farmer("farmer-a")

    status = manager.status()

    assert status["fields"] == 3
    assert status["farmers"] == 1
    assert status["processing_status"]["awaiting_geometry"] == 3
    assert status["catalog_strategy"] == "page_1"
    assert status["last_refresh_at"] is not None
    assert status["heuristic_matches"] == {}


@pytest.mark.asyncio
async def test_unusable_page_does_not_empty_the_store(manager, fake_api, make_farm):
    await manager.async_refresh()
    fake_api.pages[(1, 100)] = {"success": True, "data": {"items": [{"uuid": "x"}], "totalItems": 3}}
    fake_api.all_response = [make_farm("f1"), make_farm("f2"), make_farm("f3", "farmer-b")]

    await manager.async_refresh()

    assert len(manager.store) == 3
    assert manager.status()["catalog_strategy"] == "unpaginated"
    assert [record.field_id for record in manager.get_fields_for_farmer("farmer-a")] == ["f1", "f2"]


def test_manager_opens_no_session_at_construction():
    manager = FieldSyncManager(FieldSyncConfig.from_options({"base_url": "https://api.example.org"}))
    assert manager.api._session is None


@pytest.mark.asyncio
async def test_status_reports_selected_field(manager):
    await manager.async_refresh()
    manager.select_field("f2")

    status = manager.status()

    assert status["catalog_loaded"] is True
    assert status["selected_field"]["id"] == "f2"
    assert status["selected_field"]["processing_status"] == "awaiting_geometry"
