"""
Distance Service with Google Maps Integration
=============================================

Travel distance and time between coordinates, consulting the distance
cache before the Google Maps Distance Matrix API.

Key Features:
- Single-pair and batched (origins x destinations) lookups
- Traffic-aware driving times via departure_time=now
- Cache partitioning: hits served from the cache, misses fetched in
  chunks of at most 25 x 25 dispatched concurrently
- Haversine fallback at 2 minutes per mile when no provider is
  configured or the provider is unavailable

Classes:
    GoogleMapsDistanceProvider: Distance Matrix API client
    DistanceService: Cached distance lookups with fallback

Author: Hybrid Trip Planner Team
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional, Sequence, Tuple

import requests

from .data_models import DistanceResult, TravelMode
from .distance_cache import DistanceCache
from ..utils.data_utils import calculate_distance_miles, within_tolerance
from ..utils.error_handler import (
    ErrorHandler, ErrorContext, ErrorSeverity,
    NotConfigured, DependencyUnavailable, CatalogUnavailable
)
from ..utils.performance_monitor import measure_time
from config import config


Coordinate = Tuple[float, float]

DISTANCE_MATRIX_URL = "https://maps.googleapis.com/maps/api/distancematrix/json"

# Google Maps Distance Matrix limits per request
MAX_ORIGINS_PER_REQUEST = 25
MAX_DESTINATIONS_PER_REQUEST = 25

MINUTES_PER_MILE = 2.0
METERS_PER_MILE = 1609.344


def _format_coordinates(points: Sequence[Coordinate]) -> str:
    return "|".join(f"{lat},{lng}" for lat, lng in points)


def _chunks(indices: List[int], size: int) -> List[List[int]]:
    return [indices[i:i + size] for i in range(0, len(indices), size)]


def haversine_estimate(origin: Coordinate, destination: Coordinate,
                       minutes_per_mile: float = MINUTES_PER_MILE) -> DistanceResult:
    """Straight-line estimate of travel between two points"""
    miles = calculate_distance_miles(origin[0], origin[1], destination[0], destination[1])
    if miles is None:
        miles = 0.0
    minutes = miles * minutes_per_mile
    return DistanceResult(
        distance_meters=miles * METERS_PER_MILE,
        duration_seconds=minutes * 60.0,
        estimated=True,
    )


class GoogleMapsDistanceProvider:
    """
    Google Maps Distance Matrix API client
    """

    def __init__(self, api_key: Optional[str], timeout: int = 10,
                 session: Optional[requests.Session] = None):
        """
        Initialize Distance Matrix client

        Args:
            api_key (str): Google Maps API key
            timeout (int): Request timeout in seconds
            session (requests.Session): HTTP session, created when omitted
        """
        self.logger = logging.getLogger(__name__)
        self.error_handler = ErrorHandler()
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()
        self.logger.info("Google Maps distance provider initialized")

    def get_matrix(self, origins: Sequence[Coordinate], destinations: Sequence[Coordinate],
                   mode: TravelMode = TravelMode.DRIVING,
                   with_traffic: bool = False) -> List[List[Optional[DistanceResult]]]:
        """
        Fetch a distance matrix in one request

        Args:
            origins (Sequence[Coordinate]): Up to 25 origins
            destinations (Sequence[Coordinate]): Up to 25 destinations
            mode (TravelMode): Travel mode
            with_traffic (bool): Request traffic-aware durations (driving only)

        Returns:
            List[List[DistanceResult]]: Row per origin; cells whose element
            status is not OK are None

        Raises:
            ValueError: If the request exceeds the per-call limits
            NotConfigured: If no API key is set
            DependencyUnavailable: On network errors, timeouts or a non-OK status
        """
        if not self.api_key:
            raise NotConfigured("GOOGLE_MAPS_API_KEY is not set")
        if len(origins) > MAX_ORIGINS_PER_REQUEST or len(destinations) > MAX_DESTINATIONS_PER_REQUEST:
            raise ValueError("Too many origins or destinations for a single Distance Matrix call")

        params = {
            "origins": _format_coordinates(origins),
            "destinations": _format_coordinates(destinations),
            "mode": mode.value,
            "key": self.api_key,
        }
        if mode == TravelMode.DRIVING and with_traffic:
            params["departure_time"] = "now"
            params["traffic_model"] = "best_guess"

        try:
            response = self.session.get(DISTANCE_MATRIX_URL, params=params, timeout=self.timeout)
            response.raise_for_status()
            payload = response.json()
        except requests.exceptions.Timeout as e:
            raise DependencyUnavailable(f"Distance Matrix request timed out after {self.timeout}s") from e
        except requests.exceptions.HTTPError as e:
            self.error_handler.handle_api_error(
                "google_maps", DISTANCE_MATRIX_URL,
                status_code=e.response.status_code if e.response is not None else None,
                exception=e
            )
            raise DependencyUnavailable(f"Distance Matrix request failed: {e}") from e
        except requests.exceptions.RequestException as e:
            raise DependencyUnavailable(f"Distance Matrix request failed: {e}") from e
        except ValueError as e:
            raise DependencyUnavailable("Distance Matrix returned an unparseable body") from e

        status = payload.get("status")
        if status != "OK":
            raise DependencyUnavailable(f"Google Maps API error: {status}")

        rows = payload.get("rows") or []
        matrix: List[List[Optional[DistanceResult]]] = []
        for i in range(len(origins)):
            elements = rows[i].get("elements", []) if i < len(rows) else []
            row = []
            for j in range(len(destinations)):
                element = elements[j] if j < len(elements) else {}
                row.append(self._parse_element(element))
            matrix.append(row)

        return matrix

    def _parse_element(self, element: Dict) -> Optional[DistanceResult]:
        if element.get("status") != "OK":
            self.logger.debug(f"Distance Matrix element status: {element.get('status')}")
            return None
        distance = element.get("distance") or {}
        duration = element.get("duration") or {}
        if "value" not in distance or "value" not in duration:
            return None
        traffic = element.get("duration_in_traffic") or {}
        return DistanceResult(
            distance_meters=float(distance["value"]),
            duration_seconds=float(duration["value"]),
            duration_in_traffic_seconds=float(traffic["value"]) if "value" in traffic else None,
        )


class DistanceService:
    """
    Cached distance lookups with a Haversine fallback
    """

    def __init__(self, provider: Optional[GoogleMapsDistanceProvider] = None,
                 cache: Optional[DistanceCache] = None,
                 mode: TravelMode = TravelMode.DRIVING,
                 minutes_per_mile: float = MINUTES_PER_MILE,
                 max_workers: int = MAX_ORIGINS_PER_REQUEST):
        """
        Initialize Distance Service

        Args:
            provider (GoogleMapsDistanceProvider): Live provider; None means
                Haversine estimates only
            cache (DistanceCache): Cache consulted before the provider
            mode (TravelMode): Default travel mode
            minutes_per_mile (float): Fallback travel pace
            max_workers (int): Concurrent batch requests
        """
        self.logger = logging.getLogger(__name__)
        self.error_handler = ErrorHandler()

        self.provider = provider if provider is not None and provider.api_key else None
        self.cache = cache
        self.mode = mode
        self.minutes_per_mile = minutes_per_mile
        self.max_workers = max_workers

        self.logger.info(
            f"Distance Service initialized (live provider={'yes' if self.provider else 'no'}, "
            f"cache={'yes' if self.cache else 'no'})"
        )

    @classmethod
    def from_config(cls, settings=None, store=None,
                    session: Optional[requests.Session] = None) -> "DistanceService":
        settings = settings or config
        provider = None
        if settings.GOOGLE_MAPS_API_KEY:
            provider = GoogleMapsDistanceProvider(
                settings.GOOGLE_MAPS_API_KEY, timeout=settings.GOOGLE_API_TIMEOUT, session=session
            )
        cache = DistanceCache(
            store,
            collection=settings.DISTANCE_CACHE_COLLECTION,
            ttl_static=settings.DISTANCE_CACHE_TTL_STATIC,
            ttl_traffic=settings.DISTANCE_CACHE_TTL_TRAFFIC,
            tolerance=settings.DISTANCE_COORD_TOLERANCE,
        ) if store is not None else None
        return cls(provider=provider, cache=cache)

    def estimate(self, origin: Coordinate, destination: Coordinate) -> DistanceResult:
        return haversine_estimate(origin, destination, self.minutes_per_mile)

    def _cache_get(self, origin, destination, mode, with_traffic) -> Optional[DistanceResult]:
        if self.cache is None:
            return None
        try:
            row = self.cache.get(origin, destination, mode, with_traffic)
        except CatalogUnavailable as e:
            self._report("Distance cache read failed", e, "cache_get")
            return None
        return row.to_result() if row else None

    def _cache_put(self, origin, destination, result, mode, with_traffic) -> None:
        if self.cache is not None:
            self.cache.put(origin, destination, result, mode, with_traffic)

    def _report(self, message: str, exception: Exception, function: str) -> None:
        self.error_handler.handle_error(
            message,
            exception=exception,
            severity=ErrorSeverity.LOW,
            context=ErrorContext(module=__name__, function=function)
        )

    @measure_time(category="distance")
    def get_distance(self, origin: Coordinate, destination: Coordinate,
                     mode: Optional[TravelMode] = None,
                     with_traffic: bool = False) -> DistanceResult:
        """
        Distance between two coordinates

        Args:
            origin (Coordinate): Origin (lat, lng)
            destination (Coordinate): Destination (lat, lng)
            mode (TravelMode): Travel mode (default: service mode)
            with_traffic (bool): Traffic-aware lookup

        Returns:
            DistanceResult: Cached, live or estimated result
        """
        mode = mode or self.mode

        if self.provider is None:
            return self.estimate(origin, destination)

        cached = self._cache_get(origin, destination, mode, with_traffic)
        if cached is not None:
            return cached

        try:
            result = self.provider.get_matrix([origin], [destination], mode, with_traffic)[0][0]
        except (NotConfigured, DependencyUnavailable) as e:
            self._report("Distance provider unavailable, using Haversine estimate", e, "get_distance")
            return self.estimate(origin, destination)

        if result is None:
            return self.estimate(origin, destination)

        self._cache_put(origin, destination, result, mode, with_traffic)
        return result

    @measure_time(category="distance")
    def get_distances_batch(self, origins: Sequence[Coordinate], destinations: Sequence[Coordinate],
                            mode: Optional[TravelMode] = None,
                            with_traffic: bool = False) -> List[List[DistanceResult]]:
        """
        Distances for every origin/destination pair

        Cache hits are served directly; the origins and destinations of the
        remaining pairs are fetched in chunks of at most 25 x 25, dispatched
        concurrently. Pairs the provider cannot resolve fall back to the
        Haversine estimate.

        Returns:
            List[List[DistanceResult]]: Row per origin, column per destination
        """
        mode = mode or self.mode
        results: List[List[Optional[DistanceResult]]] = [
            [None] * len(destinations) for _ in origins
        ]

        if self.provider is None:
            for i, origin in enumerate(origins):
                for j, destination in enumerate(destinations):
                    results[i][j] = self.estimate(origin, destination)
            return results

        missing = []
        for i, origin in enumerate(origins):
            for j, destination in enumerate(destinations):
                cached = self._cache_get(origin, destination, mode, with_traffic)
                if cached is not None:
                    results[i][j] = cached
                else:
                    missing.append((i, j))

        if missing:
            miss_origins = sorted({i for i, _ in missing})
            miss_destinations = sorted({j for _, j in missing})
            requests_to_make = [
                (origin_chunk, destination_chunk)
                for origin_chunk in _chunks(miss_origins, MAX_ORIGINS_PER_REQUEST)
                for destination_chunk in _chunks(miss_destinations, MAX_DESTINATIONS_PER_REQUEST)
            ]

            self.logger.info(
                f"Distance batch: {len(origins) * len(destinations) - len(missing)} cached, "
                f"{len(missing)} missing, {len(requests_to_make)} provider calls"
            )

            def fetch(chunk):
                origin_chunk, destination_chunk = chunk
                try:
                    return self.provider.get_matrix(
                        [origins[i] for i in origin_chunk],
                        [destinations[j] for j in destination_chunk],
                        mode, with_traffic
                    )
                except (NotConfigured, DependencyUnavailable) as e:
                    self._report("Distance batch chunk failed, using Haversine estimates", e,
                                 "get_distances_batch")
                    return None

            workers = max(1, min(self.max_workers, len(requests_to_make)))
            with ThreadPoolExecutor(max_workers=workers) as executor:
                matrices = list(executor.map(fetch, requests_to_make))

            for (origin_chunk, destination_chunk), matrix in zip(requests_to_make, matrices):
                if matrix is None:
                    continue
                for row_index, i in enumerate(origin_chunk):
                    for col_index, j in enumerate(destination_chunk):
                        result = matrix[row_index][col_index]
                        if results[i][j] is None and result is not None:
                            results[i][j] = result
                            self._cache_put(origins[i], destinations[j], result, mode, with_traffic)

        for i, origin in enumerate(origins):
            for j, destination in enumerate(destinations):
                if results[i][j] is None:
                    results[i][j] = self.estimate(origin, destination)

        return results

    def travel_minutes(self, origin: Coordinate, destination: Coordinate,
                       with_traffic: bool = False) -> float:
        """Travel time in minutes, zero between points within cache tolerance"""
        tolerance = self.cache.tolerance if self.cache else config.DISTANCE_COORD_TOLERANCE
        if within_tolerance(origin, destination, tolerance):
            return 0.0
        return self.get_distance(origin, destination, with_traffic=with_traffic).travel_minutes
