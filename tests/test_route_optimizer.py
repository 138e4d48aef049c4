"""Tests for activity ordering and day scheduling"""

from datetime import time
from itertools import permutations

import pytest

from itinerary_planner.data_pipeline.data_models import Activity, Address
from itinerary_planner.ml_engine.route_optimizer import (
    RouteOptimizer, OptimizationConfig, OptimizationStrategy
)
from itinerary_planner.utils.data_utils import CITY_COORDINATES

from conftest import FakeDistanceService, object_id


START = (39.0, -105.0)
DENVER = CITY_COORDINATES["denver"]
BOULDER = CITY_COORDINATES["boulder"]
ASPEN = CITY_COORDINATES["aspen"]
VAIL = CITY_COORDINATES["vail"]

# Symmetric travel minutes between the start and four cities
LEGS = {
    (START, DENVER): 10, (START, BOULDER): 50, (START, ASPEN): 60, (START, VAIL): 40,
    (DENVER, BOULDER): 20, (DENVER, ASPEN): 70, (DENVER, VAIL): 45,
    (BOULDER, ASPEN): 30, (BOULDER, VAIL): 80,
    (ASPEN, VAIL): 15,
}
MINUTES = {**LEGS, **{(b, a): m for (a, b), m in LEGS.items()}}


def activity(n, city, activity_types, duration=120):
    return Activity(
        id=object_id(n),
        title=f"{city} {activity_types[0]}",
        activity_types=activity_types,
        duration_minutes=duration,
        address=Address(city=city, state="CO"),
    )


@pytest.fixture
def day_activities():
    return [
        activity(1, "Denver", ["museum"]),
        activity(2, "Boulder", ["hiking"]),
        activity(3, "Aspen", ["hiking"]),
        activity(4, "Vail", ["museum"]),
    ]


def make_optimizer(strategy=OptimizationStrategy.MINIMIZE_TOTAL_TIME, **overrides):
    settings = dict(
        max_activities_per_day=4,
        min_time_between_activities=30,
        travel_time_buffer=0.05,
        day_start_time=time(9, 0),
        day_end_time=time(17, 0),
        consider_traffic=False,
        optimization_strategy=strategy,
    )
    settings.update(overrides)
    return RouteOptimizer(FakeDistanceService(MINUTES), OptimizationConfig(**settings))


def route_cost(activities, order):
    points = [START] + [RouteOptimizer.get_activity_coordinates(activities[i]) for i in order]
    travel = sum(MINUTES[(a, b)] for a, b in zip(points, points[1:]))
    return travel + sum(activities[i].duration_minutes for i in order)


def test_brute_force_matches_ground_truth(day_activities):
    optimizer = make_optimizer()

    ordered = optimizer.order_activities(day_activities, START)
    order = [day_activities.index(a) for a in ordered]

    best = min(route_cost(day_activities, list(p)) for p in permutations(range(4)))
    assert route_cost(day_activities, order) == best
    assert [a.address.city for a in ordered] == ["Denver", "Boulder", "Aspen", "Vail"]


def test_brute_force_beats_greedy_when_greedy_is_trapped():
    # Points on a line; travel minutes are the distance between positions
    positions = {START: 0, DENVER: 10, BOULDER: -20, ASPEN: 35, VAIL: 40}
    minutes = {(a, b): abs(pa - pb) for a, pa in positions.items() for b, pb in positions.items() if a != b}
    activities = [
        activity(1, "Denver", ["museum"]),
        activity(2, "Boulder", ["museum"]),
        activity(3, "Aspen", ["museum"]),
        activity(4, "Vail", ["museum"]),
    ]

    def travel(ordered):
        points = [START] + [RouteOptimizer.get_activity_coordinates(a) for a in ordered]
        return sum(minutes[(a, b)] for a, b in zip(points, points[1:]))

    def optimizer(strategy):
        return RouteOptimizer(FakeDistanceService(minutes), OptimizationConfig(optimization_strategy=strategy))

    tsp = optimizer(OptimizationStrategy.MINIMIZE_TOTAL_TIME).order_activities(activities, START)
    greedy = optimizer(OptimizationStrategy.NEAREST_FIRST).order_activities(activities, START)

    assert travel(tsp) == min(travel([activities[i] for i in p]) for p in permutations(range(4)))
    assert travel(tsp) == 80
    assert travel(greedy) == 100


def test_nearest_first(day_activities):
    ordered = make_optimizer(OptimizationStrategy.NEAREST_FIRST).order_activities(day_activities, START)
    assert [a.address.city for a in ordered] == ["Denver", "Boulder", "Aspen", "Vail"]


def test_time_preference_puts_outdoor_first(day_activities):
    ordered = make_optimizer(OptimizationStrategy.TIME_PREFERENCE).order_activities(day_activities, START)
    # Outdoor by proximity from the start, then indoor from the last outdoor stop
    assert [a.address.city for a in ordered] == ["Boulder", "Aspen", "Vail", "Denver"]


def test_is_outdoor_activity():
    assert RouteOptimizer.is_outdoor_activity(activity(1, "Denver", ["Scenic Drive"]))
    assert not RouteOptimizer.is_outdoor_activity(activity(2, "Denver", ["museum"]))


def test_travel_matrix(day_activities):
    optimizer = make_optimizer()
    coordinates = [optimizer.get_activity_coordinates(a) for a in day_activities]
    matrix = optimizer.build_travel_matrix(START, coordinates)

    assert matrix.shape == (5, 5)
    assert matrix[0, 1] == 10
    assert matrix[3, 4] == 15
    assert all(matrix[i, i] == 0 for i in range(5))


class TestScheduling:

    def test_stops_at_first_activity_past_day_end(self, day_activities):
        scheduled = make_optimizer().optimize_day(day_activities, START)

        # 09:30-11:30, 12:00-14:00, 14:31-16:31; Vail would end at 19:01
        assert [stop.activity.address.city for stop in scheduled] == ["Denver", "Boulder", "Aspen"]
        assert [stop.scheduled_time for stop in scheduled] == [time(9, 30), time(12, 0), time(14, 31)]
        assert [stop.travel_time_from_previous for stop in scheduled] == [30, 30, 31]

    def test_first_day_starts_later(self, day_activities):
        scheduled = make_optimizer().optimize_day(day_activities, START, is_first_day=True)
        assert scheduled[0].scheduled_time == time(10, 30)

    def test_last_day_ends_earlier(self, day_activities):
        scheduled = make_optimizer().optimize_day(day_activities, START, is_last_day=True)
        assert all(stop.end_time <= time(15, 0) for stop in scheduled)
        assert len(scheduled) == 2

    def test_truncates_to_max_activities(self):
        short = [activity(n, "Denver", ["museum"], duration=30) for n in range(10, 16)]
        scheduled = make_optimizer(max_activities_per_day=3).optimize_day(short, START)
        assert len(scheduled) == 3

    def test_empty_day(self):
        assert make_optimizer().optimize_day([], START) == []

    def test_route_stats(self, day_activities):
        optimizer = make_optimizer()
        stats = optimizer.get_route_stats(optimizer.optimize_day(day_activities, START))

        assert stats.total_activities == 3
        assert stats.total_travel_time_minutes == 91
        assert stats.total_activity_time_minutes == 360
        assert stats.total_day_time_minutes == 451
        assert stats.efficiency_ratio == pytest.approx(360 / 451)
        assert stats.to_dict()["start_time"] == "09:30"
        assert stats.to_dict()["end_time"] == "16:31"

    def test_stats_for_empty_day(self):
        stats = make_optimizer().get_route_stats([])
        assert stats.total_activities == 0
        assert stats.start_time is None
        assert stats.efficiency_ratio == 0.0
