"""Tests for the Vertex AI Search client and the search-result adapter"""

import pytest
import requests

from itinerary_planner.data_pipeline.semantic_search import (
    VertexSearchClient, activity_from_search_fields, build_search_query, parse_external_id
)
from itinerary_planner.data_pipeline.image_resolver import GcsImageResolver
from itinerary_planner.utils.error_handler import NotConfigured, DependencyUnavailable

from conftest import FakeResponse, FakeSession


HEX_ID = "64b7f0c2a1b2c3d4e5f60718"


def search_payload():
    return {
        "results": [
            {
                "id": "doc-1",
                "document": {"id": "doc-1", "structData": {
                    "_id": HEX_ID,
                    "title": "Red Rocks Hiking Trail",
                    "activity_type": "hiking, scenic",
                    "price_per_person": 40,
                    "duration_minutes": 120,
                    "city": "Morrison",
                    "state": "CO",
                }},
                "modelScores": {"relevance_score": {"values": [0.92]}},
            },
            {
                "id": "doc-2",
                "document": {"id": "doc-2", "structData": {"description": "No title here"}},
            },
            {
                "id": "doc-3",
                "document": {"id": "doc-3", "structData": {"name": "Clear Creek Rafting"}},
            },
        ]
    }


def make_client(session, **overrides):
    settings = dict(project_id="project", data_store_id="activities", access_token="token")
    settings.update(overrides)
    return VertexSearchClient(session=session, **settings)


class TestAdapter:

    def test_default_fill_rules(self):
        activity = activity_from_search_fields({
            "name": "Clear Creek Rafting",
            "id": "external-42",
            "tags": ["rafting", "water"],
            "price_per_person": -5,
            "duration_minutes": 0,
            "min_capacity": 2,
            "daily_time_slots": ["08:00-10:00", "bogus", {"start": "13:00", "end": "15:00"}],
        })

        assert activity.title == "Clear Creek Rafting"
        assert activity.description == "Clear Creek Rafting activity"
        assert activity.activity_types == ["rafting", "water"]
        assert activity.price_per_person == 0.0
        assert activity.duration_minutes == 120
        assert activity.capacity.minimum == 2
        assert activity.capacity.maximum == 20
        assert activity.address.country == "USA"
        assert [(slot.start, slot.end) for slot in activity.daily_time_slots] == [
            ("08:00", "10:00"), ("13:00", "15:00")
        ]

    def test_external_ids_map_to_stable_hex(self):
        assert parse_external_id(HEX_ID.upper()) == HEX_ID
        assert parse_external_id({"$oid": HEX_ID}) == HEX_ID
        hashed = parse_external_id("external-42")
        assert len(hashed) == 24
        assert hashed == parse_external_id("external-42")
        assert parse_external_id("  ") is None

    def test_non_finite_numbers_use_defaults(self):
        activity = activity_from_search_fields({
            "name": "Night Sky Tour",
            "id": HEX_ID,
            "duration_minutes": "inf",
            "price_per_person": "nan",
            "min_capacity": "-inf",
            "max_capacity": float("inf"),
        })

        assert activity.duration_minutes == 120
        assert activity.price_per_person == 0.0
        assert activity.capacity.minimum == 1
        assert activity.capacity.maximum == 20

    def test_missing_title_rejected(self):
        with pytest.raises(ValueError):
            activity_from_search_fields({"_id": HEX_ID})

    def test_query_text(self):
        assert build_search_query(["hiking", " "], "Denver, CO") == "hiking Denver, CO"
        assert build_search_query([], "") == "activities"


class TestVertexSearchClient:

    def test_unconfigured_client_raises(self):
        client = make_client(FakeSession(FakeResponse({})), data_store_id=None)
        assert not client.is_configured
        with pytest.raises(NotConfigured):
            client.search(["hiking"])

    def test_search_builds_request_and_scores(self):
        session = FakeSession(FakeResponse(search_payload()))
        hits = make_client(session).search(["hiking"], "Denver, CO")

        call = session.calls[0]
        assert call["method"] == "POST"
        assert call["url"].endswith("/dataStores/activities/servingConfigs/default_config:search")
        assert call["json"]["query"] == "hiking Denver, CO"
        assert call["json"]["pageSize"] == 20
        assert call["headers"]["Authorization"] == "Bearer token"

        assert [hit.id for hit in hits] == ["doc-1", "doc-2", "doc-3"]
        assert hits[0].score == pytest.approx(0.92)
        assert hits[2].score == pytest.approx(1 / 3)

    def test_search_activities_skips_malformed_documents(self):
        activities = make_client(FakeSession(FakeResponse(search_payload()))).search_activities(["hiking"])

        assert [activity.title for activity in activities] == ["Red Rocks Hiking Trail", "Clear Creek Rafting"]
        assert activities[0].id == HEX_ID
        assert activities[0].activity_types == ["hiking", "scenic"]
        assert activities[0].address.city == "Morrison"
        assert activities[1].id == parse_external_id("doc-3")

    @pytest.mark.parametrize("response", [
        FakeResponse({"error": "denied"}, status_code=403, text="denied"),
        FakeResponse(None),
        requests.exceptions.Timeout("slow"),
        requests.exceptions.ConnectionError("down"),
    ])
    def test_failures_are_dependency_errors(self, response):
        with pytest.raises(DependencyUnavailable):
            make_client(FakeSession(response)).search(["hiking"])


class TestImageResolver:

    def test_lists_images_under_prefix(self):
        session = FakeSession(FakeResponse({"items": [
            {"name": "abc/2.png"}, {"name": "abc/1.JPG"}, {"name": "abc/notes.txt"},
        ]}))
        resolver = GcsImageResolver("trip-images", session=session)

        assert resolver.resolve("abc") == [
            "https://storage.googleapis.com/trip-images/abc/1.JPG",
            "https://storage.googleapis.com/trip-images/abc/2.png",
        ]
        assert session.calls[0]["params"]["prefix"] == "abc/"

    def test_missing_bucket(self):
        with pytest.raises(NotConfigured):
            GcsImageResolver(None, session=FakeSession(FakeResponse({}))).resolve("abc")

    def test_storage_error(self):
        resolver = GcsImageResolver("trip-images", session=FakeSession(FakeResponse({}, status_code=500)))
        with pytest.raises(DependencyUnavailable):
            resolver.resolve("abc")
