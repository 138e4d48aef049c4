"""Tests for the tiered search cascade and search-or-generate"""

from datetime import date, timedelta

import pytest

from itinerary_planner.data_pipeline.catalog_store import InMemoryCatalogStore
from itinerary_planner.data_pipeline.data_models import ActivityLabel, SearchQuery
from itinerary_planner.data_pipeline.image_resolver import GcsImageResolver, ImageResolver
from itinerary_planner.ml_engine.itinerary_generator import ItineraryGenerator
from itinerary_planner.ml_engine.search_cascade import ItinerarySearchService, is_too_similar
from itinerary_planner.ml_engine.search_scorer import SearchScorer, SearchWeights
from itinerary_planner.utils.error_handler import (
    CatalogUnavailable, DependencyUnavailable, GenerationError, PersistenceFailed
)
from itinerary_planner.utils.performance_monitor import reset_performance_stats
from config import config

from conftest import ACTIVITIES, ACTIVITY_POOL, ITINERARIES, make_itinerary, object_id


class UnreachableStore(InMemoryCatalogStore):
    def _scan(self, collection):
        raise CatalogUnavailable("connection refused")


class ReadOnlyItineraries(InMemoryCatalogStore):
    def _insert(self, collection, document):
        if collection == ITINERARIES:
            raise PersistenceFailed("read-only replica")
        super()._insert(collection, document)


class StaticImages(ImageResolver):
    def resolve(self, itinerary_id):
        return [f"https://images.example/{itinerary_id}/cover.jpg"]


class FailingImages(ImageResolver):
    def resolve(self, itinerary_id):
        raise DependencyUnavailable("storage offline")


class FlakyItineraries(InMemoryCatalogStore):
    """Fails the next itinerary read once armed"""

    def __init__(self):
        super().__init__()
        self.fail_next_read = False

    def _scan(self, collection):
        if collection == ITINERARIES and self.fail_next_read:
            self.fail_next_read = False
            raise CatalogUnavailable("primary stepped down")
        return super()._scan(collection)


class RefusingGenerator(ItineraryGenerator):
    """Every variation fails"""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.calls = 0

    def generate_unique(self, query, variation_index, existing_names=None, candidates=None):
        self.calls += 1
        raise GenerationError(f"variation {variation_index} failed")


class RepeatingGenerator(ItineraryGenerator):
    """Every variation comes back under the same name"""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.calls = 0

    def generate_unique(self, query, variation_index, existing_names=None, candidates=None):
        self.calls += 1
        return self.generate(query, candidates=candidates)


def make_service(catalog, **kwargs):
    kwargs.setdefault("min_results_threshold", 5)
    kwargs.setdefault("generator", ItineraryGenerator(catalog, activity_collection=ACTIVITIES))
    return ItinerarySearchService(
        catalog,
        scorer=SearchScorer(SearchWeights(), store=catalog, activity_collection=ACTIVITIES),
        itinerary_collection=ITINERARIES,
        max_workers=2,
        **kwargs
    )


@pytest.fixture
def service(seeded_store):
    with make_service(seeded_store) as svc:
        yield svc


@pytest.fixture
def denver_hiking_query():
    return SearchQuery(locations=("Denver, CO",), activities=("hiking",), adults=2)


class TestSearchTiers:

    def test_exact_tier_finds_denver_hiking(self, service, seeded_store, denver_hiking_query):
        exact = seeded_store.find(ITINERARIES, service.build_exact_filter(denver_hiking_query))
        assert [doc["trip_name"] for doc in exact] == ["Denver Hiking Weekend"]

        found = service.search(denver_hiking_query)
        assert [itinerary.trip_name for itinerary in found] == ["Denver Hiking Weekend"]

        scored = service.scorer.score(found[0], denver_hiking_query)
        assert scored.score_breakdown.activity_score > 0

    def test_location_match_is_case_insensitive_and_exact(self, service):
        assert [i.trip_name for i in service.search(SearchQuery(locations=("aspen",)))] == ["Aspen Ski Escape"]
        assert service.search(SearchQuery(locations=("Asp",), activities=("ski",))) == []

    def test_partial_tier_when_not_every_activity_matches(self, service):
        query = SearchQuery(locations=("Denver, CO",), activities=("hiking", "rafting"), adults=2)
        assert [i.trip_name for i in service.search(query)] == ["Denver Hiking Weekend"]

    def test_location_tier_respects_group_size(self, service):
        query = SearchQuery(locations=("Denver, CO",), activities=("kayaking",), adults=2)
        assert [i.trip_name for i in service.search(query)] == ["Denver Hiking Weekend"]

        group = SearchQuery(locations=("Denver, CO",), activities=("kayaking",), adults=8)
        assert [i.trip_name for i in service.search(group)] == ["Denver Museum Tour"]

    def test_location_tier_without_locations_filters_by_group_size(self, service):
        couple = SearchQuery(activities=("kayaking",), adults=2)
        assert {i.trip_name for i in service.search(couple)} == {"Denver Hiking Weekend", "Aspen Ski Escape"}

        group = SearchQuery(activities=("kayaking",), adults=8)
        assert [i.trip_name for i in service.search(group)] == ["Denver Museum Tour"]

    def test_failed_tier_falls_through_to_next(self, denver_hiking_itinerary, denver_hiking_query):
        catalog = FlakyItineraries()
        catalog.insert_one(ITINERARIES, denver_hiking_itinerary.to_document())
        catalog.fail_next_read = True

        with make_service(catalog) as svc:
            found = svc.search(denver_hiking_query)
            errors = svc.stats()["errors"]

        # The exact tier read failed; the partial tier found the trip
        assert [i.trip_name for i in found] == ["Denver Hiking Weekend"]
        assert errors["errors_by_category"] == {"catalog_unavailable": 1}

    def test_exact_tier_requires_accommodation_for_lodging(self, service, seeded_store):
        seeded_store.insert_one(ITINERARIES, make_itinerary(
            20, "Denver Cabin Hikes", with_lodging=True,
            labels=(ActivityLabel(label="Hike", tags=["hiking"]),),
        ).to_document())

        query = SearchQuery(locations=("Denver, CO",), activities=("hiking",), adults=2, lodging=("cabin",))
        assert [i.trip_name for i in service.search(query)] == ["Denver Cabin Hikes"]

        # Without a stay the partial tier still returns the plain trip
        seeded_store.delete_many(ITINERARIES, {"trip_name": "Denver Cabin Hikes"})
        assert [i.trip_name for i in service.search(query)] == ["Denver Hiking Weekend"]

    def test_no_match_anywhere(self, service):
        assert service.search(SearchQuery(locations=("Moab, UT",), activities=("arches",))) == []

    def test_unreachable_catalog_propagates(self, denver_hiking_query):
        with make_service(UnreachableStore()) as svc:
            with pytest.raises(CatalogUnavailable):
                svc.search(denver_hiking_query)
            with pytest.raises(CatalogUnavailable):
                svc.search_or_generate(denver_hiking_query)


class TestSearchOrGenerate:

    def test_high_quality_matches_skip_generation(self, seeded_store, trip_dates):
        seeded_store.insert_one(ITINERARIES, make_itinerary(
            21, "Perfect Denver Hikes", with_lodging=True,
            activity_ids=(object_id(1), object_id(5)),
            labels=(ActivityLabel(label="Red Rocks", tags=["hiking"]),),
        ).to_document())
        query = SearchQuery(
            locations=("Denver, CO",), activities=("hiking",), adults=2, lodging=("cabin",),
            transportation="car", trip_pace="relaxed",
            arrival_datetime=trip_dates[0], departure_datetime=trip_dates[1],
        )

        with make_service(seeded_store) as svc:
            results = svc.search_or_generate(query, min_results_threshold=1)

        assert [i.trip_name for i in results] == ["Perfect Denver Hikes"]
        assert results[0].match_score == 98.0
        assert results[0].score_breakdown["location"] == 100.0
        assert results[0].score_breakdown["lodging"] == 60.0
        assert seeded_store.count(ITINERARIES, {"tag": "generated"}) == 0

    def test_empty_catalog_generates_distinct_persisted_itineraries(self, store, trip_dates):
        query = SearchQuery(activities=("hiking",), adults=2,
                            arrival_datetime=trip_dates[0], departure_datetime=trip_dates[1])

        with make_service(store) as svc:
            results = svc.search_or_generate(query, min_results_threshold=5)
            svc.flush()

        assert len(results) == 5
        names = [itinerary.trip_name for itinerary in results]
        assert len(set(names)) == 5
        assert all(itinerary.tag == "generated" for itinerary in results)
        assert all(0 <= itinerary.match_score <= 100 for itinerary in results)

        stored = store.find(ITINERARIES)
        assert sorted(doc["trip_name"] for doc in stored) == sorted(names)
        assert all("match_score" not in doc for doc in stored)

    def test_generation_fills_up_to_threshold(self, seeded_store, trip_dates, denver_hiking_query):
        query = denver_hiking_query.with_dates(*trip_dates)

        with make_service(seeded_store) as svc:
            results = svc.search_or_generate(query, min_results_threshold=3)

        # The catalog match is below the high-quality bar, so all three are generated
        assert len(results) == 3
        assert all(itinerary.tag == "generated" for itinerary in results)
        assert "Denver Hiking Weekend" not in [i.trip_name for i in results]

    def test_persistence_failure_does_not_block_results(self, trip_dates):
        catalog = ReadOnlyItineraries()
        for activity in ACTIVITY_POOL:
            catalog.insert_one(ACTIVITIES, activity.to_document())

        query = SearchQuery(activities=("hiking",), adults=2,
                            arrival_datetime=trip_dates[0], departure_datetime=trip_dates[1])
        with make_service(catalog) as svc:
            results = svc.search_or_generate(query, min_results_threshold=2)
            svc.flush()

        assert len(results) == 2
        assert catalog.find(ITINERARIES) == []

    def test_no_activities_returns_what_exists(self, trip_dates):
        query = SearchQuery(activities=("hiking",), arrival_datetime=trip_dates[0],
                            departure_datetime=trip_dates[1])
        with make_service(InMemoryCatalogStore()) as svc:
            assert svc.search_or_generate(query) == []

    def test_empty_query_against_empty_catalog(self):
        with make_service(InMemoryCatalogStore()) as svc:
            assert svc.search_or_generate(SearchQuery()) == []

    def test_dateless_query_uses_flexible_tier(self, service, denver_hiking_query):
        results = service.search_or_generate(denver_hiking_query)

        assert sorted(i.trip_name for i in results) == ["Denver Hiking Weekend", "Denver Museum Tour"]
        scores = [i.match_score for i in results]
        assert scores == sorted(scores, reverse=True)
        assert all(i.score_breakdown is not None for i in results)

    def test_dateless_query_without_criteria_returns_most_recent(self, service):
        results = service.search_or_generate(SearchQuery(adults=50))
        assert {i.trip_name for i in results} == {"Aspen Ski Escape", "Denver Museum Tour", "Denver Hiking Weekend"}

    def test_dateless_query_generates_with_default_dates(self, store):
        query = SearchQuery(locations=("Boulder, CO",), activities=("hiking",), adults=2)

        with make_service(store) as svc:
            results = svc.search_or_generate(query, min_results_threshold=2)

        expected_arrival = (date.today() + timedelta(days=7)).isoformat()
        assert len(results) == 2
        assert all(i.arrival_datetime.startswith(expected_arrival) for i in results)
        assert all(i.length_days == 3 for i in results)

    def test_images_are_attached(self, seeded_store, denver_hiking_query):
        with make_service(seeded_store, image_resolver=StaticImages()) as svc:
            results = svc.search_or_generate(denver_hiking_query)
        assert all(i.images == [f"https://images.example/{i.id}/cover.jpg"] for i in results)

    def test_image_failures_degrade_to_empty(self, seeded_store, denver_hiking_query):
        with make_service(seeded_store, image_resolver=FailingImages()) as svc:
            results = svc.search_or_generate(denver_hiking_query)
        assert results
        assert all(i.images == [] for i in results)

    def test_failing_generation_stops_at_attempt_budget(self, store, trip_dates):
        generator = RefusingGenerator(store, activity_collection=ACTIVITIES)
        query = SearchQuery(activities=("hiking",), adults=2,
                            arrival_datetime=trip_dates[0], departure_datetime=trip_dates[1])

        with make_service(store, generator=generator) as svc:
            results = svc.search_or_generate(query, min_results_threshold=5)

        assert results == []
        assert generator.calls == 15

    def test_duplicate_names_abandon_the_slot(self, store, trip_dates):
        generator = RepeatingGenerator(store, activity_collection=ACTIVITIES)
        query = SearchQuery(activities=("hiking",), adults=2,
                            arrival_datetime=trip_dates[0], departure_datetime=trip_dates[1])

        with make_service(store, generator=generator) as svc:
            results = svc.search_or_generate(query, min_results_threshold=2)

        # One accepted, then five rejected repeats give up on the second
        assert len(results) == 1
        assert generator.calls == 6


class TestStats:

    def test_reports_timings_and_resources(self, seeded_store, denver_hiking_query):
        reset_performance_stats()

        with make_service(seeded_store) as svc:
            svc.search(denver_hiking_query)
            svc.flush()
            stats = svc.stats()

        assert stats["pending_writes"] == 0
        assert stats["errors"]["total_errors"] == 0
        assert stats["timings"]["search.search"]["call_count"] == 1
        assert stats["performance"]["summary"]["total_function_calls"] >= 1
        assert stats["performance"]["resource_usage"]["memory_rss_mb"] > 0

    def test_counts_image_failures(self, seeded_store, denver_hiking_query):
        with make_service(seeded_store, image_resolver=FailingImages()) as svc:
            results = svc.search_or_generate(denver_hiking_query)
            errors = svc.stats()["errors"]

        assert results
        assert errors["errors_by_category"] == {"image_lookup_failed": len(results)}


class TestTooSimilar:

    def test_same_name(self):
        a = make_itinerary(1, "Trip")
        b = make_itinerary(2, "trip", city="Aspen")
        assert is_too_similar(a, b)

    def test_same_shape(self):
        a = make_itinerary(1, "Trip A", activity_ids=(object_id(1),))
        b = make_itinerary(2, "Trip B", activity_ids=(object_id(2), object_id(3)))
        assert is_too_similar(a, b)

    def test_different_shape(self):
        a = make_itinerary(1, "Trip A")
        assert not is_too_similar(a, make_itinerary(2, "Trip B", city="Aspen"))
        assert not is_too_similar(a, make_itinerary(3, "Trip C", length_days=4))
        assert not is_too_similar(a, make_itinerary(4, "Trip D", max_group=6))
        assert not is_too_similar(a, make_itinerary(5, "Trip E", activity_ids=(
            object_id(1), object_id(2)
        )))


class TestFromConfig:

    def test_wires_optional_providers(self):
        settings = config.model_copy(update={
            "ITINERARY_BUCKET": None,
            "GOOGLE_CLOUD_PROJECT_ID": None,
            "GOOGLE_MAPS_API_KEY": None,
        })
        with ItinerarySearchService.from_config(settings, store=InMemoryCatalogStore()) as svc:
            assert svc.image_resolver is None
            assert svc.generator.semantic_search is None
            assert svc.generator.optimizer is not None
            assert svc.min_results_threshold == settings.MIN_SEARCH_RESULTS
            assert svc.scorer.weights == SearchWeights.from_config(settings)

        with_bucket = settings.model_copy(update={"ITINERARY_BUCKET": "trip-images"})
        with ItinerarySearchService.from_config(with_bucket, store=InMemoryCatalogStore()) as svc:
            assert isinstance(svc.image_resolver, GcsImageResolver)
