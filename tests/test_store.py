from __future__ import annotations

from farm_sync.models import Field, ProcessingStatus
from farm_sync.store import FieldStore, reconcile


def _field(field_id: str = "f1", **kwargs) -> Field:
    return Field(field_id=field_id, **kwargs)


def test_reconcile_keeps_in_flight_status() -> None:
    existing = _field(processing_status=ProcessingStatus.PROCESSING)
    merged = reconcile(existing, _field(name="Renamed"))
    assert merged.processing_status is ProcessingStatus.PROCESSING
    assert merged.name == "Renamed"


def test_reconcile_keeps_error_until_backend_has_geometry(polygon) -> None:
    existing = _field(processing_status=ProcessingStatus.ERROR)
    assert reconcile(existing, _field()).processing_status is ProcessingStatus.ERROR
    processed = _field(boundary=polygon, processing_status=ProcessingStatus.PROCESSED)
    assert reconcile(existing, processed).processing_status is ProcessingStatus.PROCESSED


def test_upload_confirmed_boundary_survives_stale_refresh(polygon) -> None:
    existing = _field(
        boundary=polygon,
        processing_status=ProcessingStatus.PROCESSED,
        upload_confirmed=True,
        owner_farmer_id="farmer-a",
    )
    stale = Field.from_payload({"_id": "f1", "status": "PENDING", "boundary": None})

    merged = reconcile(existing, stale)

    assert merged.processing_status is ProcessingStatus.PROCESSED
    assert merged.boundary == polygon
    assert merged.upload_confirmed is True
    assert merged.owner_farmer_id == "farmer-a"


def test_apply_field_update_notifies_and_ignores_unknown_keys(store: FieldStore) -> None:
    store.upsert(_field(name="Plot"))
    seen = []
    store.add_listener(lambda field_id, old, new: seen.append((field_id, old.name, new.name)))

    updated = store.apply_field_update("f1", {"name": "Plot 2", "colour": "green"})

    assert updated.name == "Plot 2"
    assert store.get("f1") is updated
    assert seen == [("f1", "Plot", "Plot 2")]


def test_apply_field_update_skips_missing_targets(store: FieldStore) -> None:
    assert store.apply_field_update("ghost", {"name": "x"}) is None
    assert len(store) == 0


def test_replace_catalog_drops_missing_fields_and_selection(seeded_store, make_farm) -> None:
    store = seeded_store(make_farm("f1"), make_farm("f2"))
    store.select("f2")
    assert store.selected.field_id == "f2"

    removed = store.replace_catalog([Field.from_payload(make_farm("f1"))])

    assert removed == ["f2"]
    assert "f2" not in store
    assert store.selected is None
    assert store.catalog_loaded is True


def test_selection_reads_live_records(seeded_store, make_farm, polygon) -> None:
    store = seeded_store(make_farm("f1"))
    store.select("f1")

    store.apply_field_update("f1", {"boundary": polygon})

    assert store.selected.boundary == polygon


def test_listener_errors_do_not_break_writes(store: FieldStore, caplog) -> None:
    def _broken(field_id, old, new):
        raise RuntimeError("listener bug")

    store.add_listener(_broken)
    store.upsert(_field())

    assert store.apply_field_update("f1", {"name": "still written"}).name == "still written"
    assert "Field listener failed" in caplog.text


def test_remove_listener(store: FieldStore) -> None:
    seen = []
    remove = store.add_listener(lambda *args: seen.append(args))
    remove()
    store.upsert(_field())
    assert seen == []


def test_status_counts(seeded_store, make_farm, polygon) -> None:
    store = seeded_store(make_farm("f1"), make_farm("f2", boundary=polygon), make_farm("f3"))
    counts = store.status_counts()
    assert counts["awaiting_geometry"] == 2
    assert counts["processed"] == 1
    assert counts["error"] == 0
