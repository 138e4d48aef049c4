"""
Shared test fixtures: a seeded in-memory catalog, fake HTTP sessions and
a fake distance service with fixed travel times.
"""

from datetime import date, timedelta
from typing import Dict, List, Optional, Tuple

import pytest
import requests

from itinerary_planner.data_pipeline.catalog_store import InMemoryCatalogStore
from itinerary_planner.data_pipeline.data_models import (
    Activity, ActivityItem, ActivityLabel, Address, DistanceResult, Itinerary,
    Location, TransportationItem, AccommodationItem
)


ITINERARIES = "Featured"
ACTIVITIES = "Activities"

ARRIVAL = "2025-06-05T10:00:00"
DEPARTURE = "2025-06-08T10:00:00"


def object_id(n: int) -> str:
    return f"{n:024x}"


def make_activity(n: int, title: str, activity_types: List[str], city: str = "Denver",
                  state: str = "CO", price: float = 50.0, duration: int = 90,
                  tags: Optional[List[str]] = None) -> Activity:
    return Activity(
        id=object_id(n),
        title=title,
        description=f"{title} near {city}",
        activity_types=activity_types,
        tags=tags or [],
        price_per_person=price,
        duration_minutes=duration,
        address=Address(street=f"{n} Main St", city=city, state=state),
    )


def make_itinerary(n: int, trip_name: str, city: str = "Denver", state: str = "CO",
                   activity_ids: Tuple[str, ...] = (), labels: Tuple[ActivityLabel, ...] = (),
                   min_group: int = 1, max_group: int = 4, length_days: int = 3,
                   with_lodging: bool = False, transport_name: str = "Arrival (car)",
                   created_at: str = "2025-01-01T00:00:00") -> Itinerary:
    location = Location(city=city, state=state, coordinates=(39.7392, -104.9903))
    items = [TransportationItem(time="09:00", name=transport_name, location_name=city)]
    for index, activity_id in enumerate(activity_ids):
        items.append(ActivityItem(time=f"{10 + 2 * index:02d}:00", activity_id=activity_id))
    if with_lodging:
        items.append(AccommodationItem(time="20:00", accommodation_id=object_id(9000 + n)))

    itinerary = Itinerary(
        id=object_id(1000 + n),
        trip_name=trip_name,
        description=f"{trip_name} in {city}",
        min_group=min_group,
        max_group=max_group,
        length_days=length_days,
        length_hours=length_days * 24,
        start_location=location,
        end_location=location,
        days={"day1": items},
        activities=list(labels),
    )
    document = itinerary.to_document()
    document["created_at"] = created_at
    return Itinerary.from_document(document)


ACTIVITY_POOL = [
    make_activity(1, "Red Rocks Hiking Trail", ["hiking"], city="Denver", duration=120, price=40.0),
    make_activity(2, "Boulder Flatirons Hike", ["hiking"], city="Boulder", duration=150, price=25.0),
    make_activity(3, "Clear Creek Rafting", ["rafting"], city="Denver", duration=180, price=89.0),
    make_activity(4, "Denver Art Museum", ["museum"], city="Denver", duration=90, price=22.0),
    make_activity(5, "Mount Evans Scenic Hike", ["hiking", "scenic"], city="Denver", duration=120, price=0.0),
    make_activity(6, "Royal Arch Hike", ["hiking"], city="Boulder", duration=120, price=10.0),
    make_activity(7, "Cherry Creek Bike Ride", ["biking"], city="Denver", duration=60, price=30.0),
    make_activity(8, "Golden Gate Canyon Hike", ["hiking"], city="Denver", duration=90, price=15.0),
]


@pytest.fixture
def activity_pool() -> List[Activity]:
    return list(ACTIVITY_POOL)


@pytest.fixture
def store() -> InMemoryCatalogStore:
    """Catalog holding only the activity pool"""
    catalog = InMemoryCatalogStore()
    for activity in ACTIVITY_POOL:
        catalog.insert_one(ACTIVITIES, activity.to_document())
    return catalog


@pytest.fixture
def denver_hiking_itinerary() -> Itinerary:
    return make_itinerary(
        1, "Denver Hiking Weekend",
        activity_ids=(object_id(1),),
        labels=(ActivityLabel(label="Red Rocks", description="Trail walk", tags=["hiking trail"]),),
    )


@pytest.fixture
def seeded_store(store, denver_hiking_itinerary) -> InMemoryCatalogStore:
    """Catalog with the activity pool and a few itineraries"""
    store.insert_one(ITINERARIES, denver_hiking_itinerary.to_document())
    store.insert_one(ITINERARIES, make_itinerary(
        2, "Aspen Ski Escape", city="Aspen",
        labels=(ActivityLabel(label="Skiing", tags=["ski"]),),
        created_at="2025-03-01T00:00:00",
    ).to_document())
    store.insert_one(ITINERARIES, make_itinerary(
        3, "Denver Museum Tour",
        activity_ids=(object_id(4),),
        labels=(ActivityLabel(label="Art Museum", tags=["museum"]),),
        min_group=6, max_group=10,
        created_at="2025-02-01T00:00:00",
    ).to_document())
    return store


@pytest.fixture
def trip_dates() -> Tuple[str, str]:
    return ARRIVAL, DEPARTURE


@pytest.fixture
def future_dates() -> Tuple[str, str]:
    arrival = date.today() + timedelta(days=30)
    return arrival.isoformat(), (arrival + timedelta(days=3)).isoformat()


# =============================================================================
# FAKES
# =============================================================================

class FakeResponse:
    """Minimal stand-in for requests.Response"""

    def __init__(self, payload=None, status_code: int = 200, text: str = ""):
        self._payload = payload
        self.status_code = status_code
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON body")
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"HTTP {self.status_code}", response=self)


class FakeSession:
    """Records requests and replays queued responses or exceptions"""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls: List[Dict] = []

    def _next(self, method, url, **kwargs):
        self.calls.append({"method": method, "url": url, **kwargs})
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response

    def get(self, url, **kwargs):
        return self._next("GET", url, **kwargs)

    def post(self, url, **kwargs):
        return self._next("POST", url, **kwargs)


class FakeDistanceService:
    """
    Distance service with fixed travel minutes between named points

    ``minutes`` maps (origin, destination) coordinate pairs to travel
    minutes; unknown pairs cost ``default`` minutes.
    """

    def __init__(self, minutes: Optional[Dict] = None, default: float = 10.0):
        self.minutes = minutes or {}
        self.default = default
        self.batch_calls = 0

    def get_distances_batch(self, origins, destinations, mode=None, with_traffic=False):
        self.batch_calls += 1
        rows = []
        for origin in origins:
            row = []
            for destination in destinations:
                if tuple(origin) == tuple(destination):
                    minutes = 0.0
                else:
                    minutes = self.minutes.get((tuple(origin), tuple(destination)), self.default)
                row.append(DistanceResult(distance_meters=minutes * 1000.0, duration_seconds=minutes * 60.0))
            rows.append(row)
        return rows


class FakeMatrixProvider:
    """Distance Matrix provider returning the same element for every pair"""

    def __init__(self, seconds: float = 600.0, meters: float = 8000.0, error: Exception = None):
        self.api_key = "test-key"
        self.seconds = seconds
        self.meters = meters
        self.error = error
        self.calls = 0

    def get_matrix(self, origins, destinations, mode=None, with_traffic=False):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return [
            [DistanceResult(distance_meters=self.meters, duration_seconds=self.seconds) for _ in destinations]
            for _ in origins
        ]


@pytest.fixture
def fake_distance_service() -> FakeDistanceService:
    return FakeDistanceService()
