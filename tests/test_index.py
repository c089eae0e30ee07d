from __future__ import annotations

from farm_sync.index import FarmerFieldIndex
from farm_sync.models import Farmer, Field


def _ids(records) -> list[str]:
    return [record.field_id for record in records]


def test_ensure_filters_catalog_by_owner(seeded_store, make_farm) -> None:
    store = seeded_store(make_farm("f1"), make_farm("f2", "farmer-b"), make_farm("f3"))
    index = FarmerFieldIndex(store)

    assert _ids(index.ensure("farmer-a")) == ["f1", "f3"]
    assert _ids(index.get("farmer-a")) == ["f1", "f3"]
    assert "farmer-a" in index


def test_empty_embedded_list_never_shrinks_a_cached_entry(seeded_store, make_farm) -> None:
    store = seeded_store(make_farm("f1"), make_farm("f2"), make_farm("f3"))
    index = FarmerFieldIndex(store)
    assert len(index.ensure("farmer-a")) == 3
    assert len(index.get("farmer-a")) == 3

    assert len(index.ensure("farmer-a", embedded=[])) == 3
    assert len(index.refresh_embedded("farmer-a", [])) == 3
    assert len(index.get("farmer-a")) == 3


def test_empty_entry_is_recomputed_once_data_arrives(store, make_farm) -> None:
    index = FarmerFieldIndex(store)
    assert index.ensure("farmer-a") == []

    store.upsert(Field.from_payload(make_farm("f1")))

    assert _ids(index.ensure("farmer-a")) == ["f1"]


def test_embedded_records_seed_the_store_without_overwriting(seeded_store, make_farm) -> None:
    store = seeded_store(make_farm("f1"))
    index = FarmerFieldIndex(store)
    embedded = [
        {"_id": "f1", "name": "Stale embedded copy"},
        {"_id": "f8", "name": "Only embedded", "cropType": "Beans"},
        {"_id": "f9"},
    ]

    records = index.ensure("farmer-z", embedded)

    assert _ids(records) == ["f1", "f8"]
    assert store.get("f1").name == "Plot f1"
    assert store.get("f8").owner_farmer_id == "farmer-z"
    assert "f9" not in store


def test_prime_is_found_through_key_variants(store) -> None:
    index = FarmerFieldIndex(store)
    index.prime(42, [Field(field_id="f1", owner_farmer_id="42")])

    assert _ids(index.get(42)) == ["f1"]
    assert _ids(index.get("42")) == ["f1"]
    assert index.farmer_ids() == ["42"]


def test_heuristic_matches_are_recorded(seeded_store, make_farm) -> None:
    store = seeded_store(make_farm("f1", "507f1f77bcf86cd799439011"))
    index = FarmerFieldIndex(store)

    assert _ids(index.ensure("aaaa99439011")) == ["f1"]
    assert index.heuristic_matches == {"aaaa99439011": {"f1"}}


def test_exact_owner_matches_win_over_heuristics(seeded_store, make_farm) -> None:
    store = seeded_store(make_farm("f1", "abc-439011"), make_farm("f2", "farmer-439011"))
    index = FarmerFieldIndex(store)

    assert _ids(index.ensure("farmer-439011")) == ["f2"]
    assert index.heuristic_matches == {}


def test_rebuild_may_shrink_entries(seeded_store, make_farm) -> None:
    store = seeded_store(make_farm("f1"), make_farm("f2"), make_farm("f3"))
    index = FarmerFieldIndex(store)
    index.ensure("farmer-a")

    store.replace_catalog([Field.from_payload(make_farm("f2"))])
    index.rebuild()

    assert _ids(index.get("farmer-a")) == ["f2"]


def test_rebuild_uses_farmer_records(seeded_store, make_farm) -> None:
    store = seeded_store(make_farm("f1", None), make_farm("f2", None))
    index = FarmerFieldIndex(store)
    farmer = Farmer.from_payload({"_id": "farmer-c", "firstName": "Aline", "farms": ["f2"]})

    index.rebuild([farmer])

    assert _ids(index.get("farmer-c")) == ["f2"]
    assert index.farmers_for_field("f2") == ["farmer-c"]


def test_listeners_hear_changed_entries(seeded_store, make_farm) -> None:
    store = seeded_store(make_farm("f1"))
    index = FarmerFieldIndex(store)
    seen: list[str] = []
    remove = index.add_listener(seen.append)

    index.ensure(" farmer-a ")
    index.ensure("farmer-a")
    remove()
    index.touch("farmer-a")

    assert seen == ["farmer-a"]


def test_index_reads_updates_from_the_store(seeded_store, make_farm, polygon) -> None:
    store = seeded_store(make_farm("f1"))
    index = FarmerFieldIndex(store)
    index.ensure("farmer-a")

    store.apply_field_update("f1", {"boundary": polygon})

    assert index.get("farmer-a")[0].boundary == polygon


def test_key_spellings_share_one_entry(store, make_farm) -> None:
    index = FarmerFieldIndex(store)
    index.prime(42, [Field(field_id="f1", owner_farmer_id="42")])

    index.refresh_embedded("42", [make_farm("f1", "42"), make_farm("f2", "42")])

    assert _ids(index.get(42)) == ["f1", "f2"]
    assert _ids(index.get(" 42 ")) == ["f1", "f2"]
    assert _ids(index.get("42")) == ["f1", "f2"]


def test_prime_never_shrinks_an_entry(seeded_store, make_farm) -> None:
    store = seeded_store(make_farm("f1"), make_farm("f2"))
    index = FarmerFieldIndex(store)
    index.ensure("farmer-a")

    index.prime("farmer-a", [Field(field_id="f3", owner_farmer_id="farmer-a")])

    assert _ids(index.get("farmer-a")) == ["f1", "f2", "f3"]
