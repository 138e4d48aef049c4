"""
Route Optimization Algorithm
===========================

Daily activity ordering and scheduling:
- Minimizes total travel plus activity time (exact for small days)
- Nearest-neighbor ordering from the day's starting location
- Outdoor-first ordering for time-of-day preferences
- Sequential scheduling inside the day window with travel buffers
- Route statistics (travel, activity and total minutes)

Author: Hybrid Trip Planner Team
"""

import logging
from dataclasses import dataclass
from datetime import time
from enum import Enum
from itertools import islice, permutations
from typing import List, Dict, Optional, Sequence, Tuple

import numpy as np

from ..data_pipeline.data_models import Activity
from ..data_pipeline.distance_service import DistanceService
from ..utils.data_utils import resolve_coordinates
from ..utils.performance_monitor import measure_time
from config import config


Coordinate = Tuple[float, float]

# Exhaustive search is used up to this many activities
BRUTE_FORCE_LIMIT = 6
MAX_PERMUTATIONS = 120

FIRST_DAY_START = time(10, 0)
LAST_DAY_END = time(15, 0)

OUTDOOR_KEYWORDS = (
    "outdoor", "hiking", "beach", "park", "nature", "scenic", "wildlife", "fishing", "camping",
)


def _to_minutes(value: time) -> int:
    return value.hour * 60 + value.minute


def _to_time(minutes: int) -> time:
    minutes = max(0, min(int(minutes), 24 * 60 - 1))
    return time(minutes // 60, minutes % 60)


class OptimizationStrategy(Enum):
    """How a day's activities are ordered"""
    MINIMIZE_TOTAL_TIME = "minimize_total_time"
    NEAREST_FIRST = "nearest_first"
    TIME_PREFERENCE = "time_preference"


@dataclass
class OptimizationConfig:
    """
    Scheduling constraints for one day

    Attributes:
        max_activities_per_day (int): Activities kept before ordering
        min_time_between_activities (int): Floor for buffered travel (minutes)
        travel_time_buffer (float): Fractional inflation of travel time
        day_start_time (time): Regular day start
        day_end_time (time): Regular day end
        consider_traffic (bool): Use traffic-aware travel times
        optimization_strategy (OptimizationStrategy): Ordering strategy
    """
    max_activities_per_day: int = 4
    min_time_between_activities: int = 30
    travel_time_buffer: float = 0.05
    day_start_time: time = time(9, 0)
    day_end_time: time = time(17, 0)
    consider_traffic: bool = True
    optimization_strategy: OptimizationStrategy = OptimizationStrategy.MINIMIZE_TOTAL_TIME

    @classmethod
    def from_config(cls, settings=None,
                    strategy: OptimizationStrategy = OptimizationStrategy.MINIMIZE_TOTAL_TIME) -> "OptimizationConfig":
        settings = settings or config
        return cls(
            max_activities_per_day=settings.MAX_ACTIVITIES_PER_DAY,
            min_time_between_activities=settings.MIN_TIME_BETWEEN_ACTIVITIES,
            travel_time_buffer=settings.TRAVEL_TIME_BUFFER,
            day_start_time=time(settings.DAY_START_HOUR, 0),
            day_end_time=time(settings.DAY_END_HOUR, 0),
            consider_traffic=settings.CONSIDER_TRAFFIC,
            optimization_strategy=strategy,
        )


@dataclass
class OptimizedActivity:
    """
    Scheduled stop in an optimized day

    Attributes:
        activity (Activity): Scheduled activity
        scheduled_time (time): Start time
        travel_time_from_previous (int): Buffered travel minutes to get here
        coordinates (Tuple[float, float]): Resolved (lat, lng)
    """
    activity: Activity
    scheduled_time: time
    travel_time_from_previous: int
    coordinates: Coordinate

    @property
    def end_time(self) -> time:
        return _to_time(_to_minutes(self.scheduled_time) + self.activity.duration_minutes)


@dataclass
class RouteStats:
    """
    Aggregate statistics of an optimized day

    Attributes:
        total_activities (int): Scheduled activities
        total_travel_time_minutes (int): Sum of buffered travel
        total_activity_time_minutes (int): Sum of activity durations
        total_day_time_minutes (int): Travel plus activity minutes
        start_time (time): First activity start
        end_time (time): Last activity end
        efficiency_ratio (float): Activity minutes / total minutes
    """
    total_activities: int
    total_travel_time_minutes: int
    total_activity_time_minutes: int
    total_day_time_minutes: int
    start_time: Optional[time]
    end_time: Optional[time]
    efficiency_ratio: float

    def to_dict(self) -> Dict:
        return {
            'total_activities': self.total_activities,
            'total_travel_time_minutes': self.total_travel_time_minutes,
            'total_activity_time_minutes': self.total_activity_time_minutes,
            'total_day_time_minutes': self.total_day_time_minutes,
            'start_time': self.start_time.strftime("%H:%M") if self.start_time else None,
            'end_time': self.end_time.strftime("%H:%M") if self.end_time else None,
            'efficiency_ratio': round(self.efficiency_ratio, 3),
        }


class RouteOptimizer:
    """
    Travel-time aware ordering and scheduling of daily activities
    """

    def __init__(self, distance_service: Optional[DistanceService] = None,
                 optimization_config: Optional[OptimizationConfig] = None):
        """
        Initialize Route Optimizer

        Args:
            distance_service (DistanceService): Travel time source (default:
                Haversine estimates only)
            optimization_config (OptimizationConfig): Constraints (default: from config)
        """
        self.logger = logging.getLogger(__name__)

        self.distance_service = distance_service or DistanceService()
        self.config = optimization_config or OptimizationConfig.from_config()

        self.logger.info(
            f"Route Optimizer initialized (strategy={self.config.optimization_strategy.value}, "
            f"max {self.config.max_activities_per_day}/day)"
        )

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    @measure_time(category="routing")
    def optimize_day(self, activities: List[Activity], starting_location: Coordinate,
                     is_first_day: bool = False, is_last_day: bool = False) -> List[OptimizedActivity]:
        """
        Order and schedule one day's activities

        Args:
            activities (List[Activity]): Candidate activities for the day
            starting_location (Coordinate): Where the day starts (lat, lng)
            is_first_day (bool): Arrival day, starts later
            is_last_day (bool): Departure day, ends earlier

        Returns:
            List[OptimizedActivity]: Activities that fit the day, in visit order
        """
        if not activities:
            return []

        day_start = FIRST_DAY_START if is_first_day else self.config.day_start_time
        day_end = LAST_DAY_END if is_last_day else self.config.day_end_time

        candidates = activities[:self.config.max_activities_per_day]
        coordinates = [self.get_activity_coordinates(activity) for activity in candidates]
        matrix = self.build_travel_matrix(starting_location, coordinates)

        order = self._order_indices(candidates, matrix, self.config.optimization_strategy)
        scheduled = self._schedule(candidates, coordinates, order, matrix, day_start, day_end)

        self.logger.info(
            f"Optimized day: {len(scheduled)}/{len(candidates)} activities scheduled "
            f"between {day_start.strftime('%H:%M')} and {day_end.strftime('%H:%M')}"
        )
        return scheduled

    def order_activities(self, activities: List[Activity], starting_location: Coordinate,
                         strategy: Optional[OptimizationStrategy] = None) -> List[Activity]:
        """
        Visit order for a set of activities without scheduling or truncation

        Args:
            activities (List[Activity]): Activities to order
            starting_location (Coordinate): Where the day starts
            strategy (OptimizationStrategy): Override of the configured strategy

        Returns:
            List[Activity]: Same activities in visit order
        """
        if len(activities) <= 1:
            return list(activities)

        coordinates = [self.get_activity_coordinates(activity) for activity in activities]
        matrix = self.build_travel_matrix(starting_location, coordinates)
        order = self._order_indices(activities, matrix, strategy or self.config.optimization_strategy)
        return [activities[i] for i in order]

    def build_travel_matrix(self, starting_location: Coordinate,
                            coordinates: Sequence[Coordinate]) -> np.ndarray:
        """
        Travel minutes between every pair of points

        Row/column 0 is the starting location, 1..n are the activities.
        """
        points = [tuple(starting_location)] + [tuple(c) for c in coordinates]
        results = self.distance_service.get_distances_batch(
            points, points, with_traffic=self.config.consider_traffic
        )

        matrix = np.zeros((len(points), len(points)), dtype=float)
        for i, row in enumerate(results):
            for j, result in enumerate(row):
                if i != j and points[i] != points[j]:
                    matrix[i, j] = result.travel_minutes
        return matrix

    def get_route_stats(self, optimized: List[OptimizedActivity]) -> RouteStats:
        """
        Aggregate statistics for a scheduled day

        Args:
            optimized (List[OptimizedActivity]): Output of ``optimize_day``

        Returns:
            RouteStats: Travel, activity and total minutes with start/end
        """
        travel = sum(stop.travel_time_from_previous for stop in optimized)
        activity = sum(stop.activity.duration_minutes for stop in optimized)
        total = travel + activity

        return RouteStats(
            total_activities=len(optimized),
            total_travel_time_minutes=travel,
            total_activity_time_minutes=activity,
            total_day_time_minutes=total,
            start_time=optimized[0].scheduled_time if optimized else None,
            end_time=optimized[-1].end_time if optimized else None,
            efficiency_ratio=activity / total if total > 0 else 0.0,
        )

    @staticmethod
    def get_activity_coordinates(activity: Activity) -> Coordinate:
        """Static-table coordinates for an activity's address"""
        address = activity.address
        return resolve_coordinates(address.city, address.state, address.full_address)

    @staticmethod
    def is_outdoor_activity(activity: Activity) -> bool:
        """Keyword match of activity types and tags against outdoor keywords"""
        labels = [label.lower() for label in list(activity.activity_types) + list(activity.tags)]
        return any(keyword in label for label in labels for keyword in OUTDOOR_KEYWORDS)

    # =========================================================================
    # ORDERING
    # =========================================================================

    def _order_indices(self, activities: List[Activity], matrix: np.ndarray,
                       strategy: OptimizationStrategy) -> List[int]:
        """Activity indices (0-based) in visit order"""
        indices = list(range(len(activities)))
        if len(indices) <= 1:
            return indices

        if strategy == OptimizationStrategy.MINIMIZE_TOTAL_TIME:
            if len(indices) <= BRUTE_FORCE_LIMIT:
                return self._tsp_brute_force(activities, matrix)
            return self._nearest_neighbor(indices, matrix, start=0)

        if strategy == OptimizationStrategy.NEAREST_FIRST:
            return self._nearest_neighbor(indices, matrix, start=0)

        # Outdoor activities first, nearest-neighbor inside each group
        outdoor = [i for i in indices if self.is_outdoor_activity(activities[i])]
        indoor = [i for i in indices if i not in outdoor]
        order = self._nearest_neighbor(outdoor, matrix, start=0)
        last = order[-1] + 1 if order else 0
        return order + self._nearest_neighbor(indoor, matrix, start=last)

    def _tsp_brute_force(self, activities: List[Activity], matrix: np.ndarray) -> List[int]:
        """
        Least travel plus activity time over the first permutations

        Args:
            activities (List[Activity]): Day activities
            matrix (np.ndarray): Travel minutes, row/column 0 is the start

        Returns:
            List[int]: Best permutation of activity indices
        """
        durations = np.array([activity.duration_minutes for activity in activities], dtype=float)

        best_order = list(range(len(activities)))
        best_total = float('inf')

        for perm in islice(permutations(range(len(activities))), MAX_PERMUTATIONS):
            stops = [0] + [i + 1 for i in perm]
            travel = matrix[stops[:-1], stops[1:]].sum()
            total = travel + durations[list(perm)].sum()
            if total < best_total:
                best_total = total
                best_order = list(perm)

        self.logger.debug(f"Brute-force route: {best_order} ({best_total:.1f} min)")
        return best_order

    @staticmethod
    def _nearest_neighbor(indices: List[int], matrix: np.ndarray, start: int) -> List[int]:
        """
        Greedy nearest-unvisited ordering

        Args:
            indices (List[int]): Activity indices to visit
            matrix (np.ndarray): Travel minutes, row/column 0 is the start
            start (int): Matrix row of the current location

        Returns:
            List[int]: Activity indices in visit order
        """
        unvisited = list(indices)
        route = []
        current = start

        while unvisited:
            nearest = min(unvisited, key=lambda i: matrix[current, i + 1])
            unvisited.remove(nearest)
            route.append(nearest)
            current = nearest + 1

        return route

    # =========================================================================
    # SCHEDULING
    # =========================================================================

    def _schedule(self, activities: List[Activity], coordinates: List[Coordinate],
                  order: List[int], matrix: np.ndarray,
                  day_start: time, day_end: time) -> List[OptimizedActivity]:
        """Assign start times in order until the first activity that does not fit"""
        scheduled = []
        current_minutes = _to_minutes(day_start)
        end_minutes = _to_minutes(day_end)
        current = 0

        for index in order:
            activity = activities[index]
            travel = int(matrix[current, index + 1])
            buffered = int(travel * (1.0 + self.config.travel_time_buffer))
            travel_minutes = max(buffered, self.config.min_time_between_activities)

            start = current_minutes + travel_minutes
            finish = start + activity.duration_minutes
            if finish > end_minutes:
                self.logger.debug(f"'{activity.title}' would end after {day_end.strftime('%H:%M')}, stopping")
                break

            scheduled.append(OptimizedActivity(
                activity=activity,
                scheduled_time=_to_time(start),
                travel_time_from_previous=travel_minutes,
                coordinates=coordinates[index],
            ))
            current_minutes = finish
            current = index + 1

        return scheduled
