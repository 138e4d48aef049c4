"""Tests for the catalog store and its Mongo-style filters"""

import re

import pytest

from itinerary_planner.data_pipeline.catalog_store import (
    InMemoryCatalogStore, SQLiteCatalogStore, matches_filter, create_catalog_store
)
from itinerary_planner.utils.error_handler import CatalogUnavailable, PersistenceFailed


DOCUMENT = {
    "_id": "a" * 24,
    "trip_name": "Denver Hiking Weekend",
    "min_group": 1,
    "max_group": 4,
    "start_location": {"city": "Denver", "state": "CO"},
    "activities": [
        {"label": "Red Rocks", "tags": ["hiking trail", "scenic"]},
        {"label": "Brewery Tour", "tags": ["food"]},
    ],
    "lodging": ["cabin"],
}


class TestMatchesFilter:

    def test_empty_filter_matches_everything(self):
        assert matches_filter(DOCUMENT, {})
        assert matches_filter(DOCUMENT, None)

    def test_implicit_equality_and_dotted_paths(self):
        assert matches_filter(DOCUMENT, {"start_location.city": "Denver"})
        assert not matches_filter(DOCUMENT, {"start_location.city": "Boulder"})

    def test_array_fields_match_any_element(self):
        assert matches_filter(DOCUMENT, {"lodging": "cabin"})
        assert matches_filter(DOCUMENT, {"activities.tags": "food"})

    def test_comparisons(self):
        assert matches_filter(DOCUMENT, {"min_group": {"$lte": 2}, "max_group": {"$gte": 2}})
        assert not matches_filter(DOCUMENT, {"max_group": {"$gt": 4}})
        assert matches_filter(DOCUMENT, {"max_group": {"$lt": 5, "$ne": 3}})

    def test_in_with_compiled_patterns(self):
        pattern = re.compile("^denver$", re.IGNORECASE)
        assert matches_filter(DOCUMENT, {"start_location.city": {"$in": [pattern]}})
        assert not matches_filter(DOCUMENT, {"start_location.city": {"$in": [re.compile("^den$")]}})

    def test_nin_and_exists(self):
        assert matches_filter(DOCUMENT, {"lodging": {"$nin": ["hotel"]}})
        assert matches_filter(DOCUMENT, {"images": {"$exists": False}})
        assert not matches_filter(DOCUMENT, {"trip_name": {"$exists": False}})

    def test_case_insensitive_regex(self):
        assert matches_filter(DOCUMENT, {"trip_name": {"$regex": "hiking", "$options": "i"}})
        assert not matches_filter(DOCUMENT, {"trip_name": {"$regex": "hiking"}})

    def test_elem_match_with_or(self):
        pattern = {"$regex": "hiking", "$options": "i"}
        condition = {"activities": {"$elemMatch": {"$or": [{"label": pattern}, {"tags": pattern}]}}}
        assert matches_filter(DOCUMENT, condition)

        pattern = {"$regex": "skiing", "$options": "i"}
        condition = {"activities": {"$elemMatch": {"$or": [{"label": pattern}, {"tags": pattern}]}}}
        assert not matches_filter(DOCUMENT, condition)

    def test_logical_operators(self):
        assert matches_filter(DOCUMENT, {"$or": [{"trip_name": "x"}, {"min_group": 1}]})
        assert not matches_filter(DOCUMENT, {"$and": [{"trip_name": "x"}, {"min_group": 1}]})
        assert not matches_filter(DOCUMENT, {"$nor": [{"min_group": 1}]})

    def test_unsupported_operator_raises(self):
        with pytest.raises(ValueError):
            matches_filter(DOCUMENT, {"min_group": {"$near": 1}})


@pytest.fixture(params=["memory", "sqlite"])
def catalog(request):
    if request.param == "memory":
        backend = InMemoryCatalogStore()
    else:
        backend = SQLiteCatalogStore(":memory:")
    yield backend
    backend.close()


class TestCatalogStore:

    def test_insert_assigns_hex_identity(self, catalog):
        doc_id = catalog.insert_one("Featured", {"trip_name": "A"})
        assert re.fullmatch(r"[0-9a-f]{24}", doc_id)
        assert catalog.find_one("Featured", {"_id": doc_id})["trip_name"] == "A"

    def test_duplicate_identity_fails(self, catalog):
        catalog.insert_one("Featured", {"_id": "b" * 24})
        with pytest.raises(PersistenceFailed):
            catalog.insert_one("Featured", {"_id": "b" * 24})

    def test_sort_and_limit(self, catalog):
        for name, created in (("old", "2024-01-01"), ("new", "2025-01-01"), ("mid", "2024-06-01")):
            catalog.insert_one("Featured", {"trip_name": name, "created_at": created})

        found = catalog.find("Featured", {}, limit=2, sort=[("created_at", -1)])
        assert [doc["trip_name"] for doc in found] == ["new", "mid"]

    def test_collections_are_separate(self, catalog):
        catalog.insert_one("Featured", {"trip_name": "A"})
        assert catalog.find("Activities") == []
        assert catalog.count("Featured") == 1

    def test_delete_many(self, catalog):
        catalog.insert_one("Featured", {"trip_name": "A", "tag": "generated"})
        catalog.insert_one("Featured", {"trip_name": "B"})
        assert catalog.delete_many("Featured", {"tag": "generated"}) == 1
        assert [doc["trip_name"] for doc in catalog.find("Featured")] == ["B"]

    def test_invalid_filter_is_catalog_error(self, catalog):
        catalog.insert_one("Featured", {"trip_name": "A"})
        with pytest.raises(CatalogUnavailable):
            catalog.find("Featured", {"trip_name": {"$bogus": 1}})

    def test_documents_are_copied(self, catalog):
        document = {"trip_name": "A", "lodging": ["cabin"]}
        catalog.insert_one("Featured", document)
        document["lodging"].append("hotel")

        found = catalog.find_one("Featured")
        found["lodging"].append("tent")
        assert catalog.find_one("Featured")["lodging"] == ["cabin"]


def test_create_catalog_store_picks_backend(tmp_path):
    class Settings:
        CATALOG_BACKEND = "sqlite"
        CATALOG_SQLITE_PATH = str(tmp_path / "catalog.db")

    backend = create_catalog_store(Settings)
    assert isinstance(backend, SQLiteCatalogStore)
    backend.close()

    Settings.CATALOG_BACKEND = "memory"
    assert isinstance(create_catalog_store(Settings), InMemoryCatalogStore)
