"""
Distance Cache
==============

Time-windowed cache of travel distances persisted in the catalog store.

Key Features:
- Coordinate tolerance matching (~10 meters) on origin and destination
- Separate TTLs for static and traffic-aware results
- Rows are never updated in place; newer rows supersede older ones
- Best-effort writes: a failed write is logged, never raised
- Hit/miss statistics and cleanup of expired rows

Classes:
    DistanceCache: Cache interface over a catalog collection
    CacheStats: Cache performance statistics

Author: Hybrid Trip Planner Team
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Optional, Tuple

from .catalog_store import CatalogStore
from .data_models import CachedDistance, DistanceResult, TravelMode, utc_now
from ..utils.error_handler import (
    ErrorHandler, ErrorContext, ErrorSeverity, CatalogUnavailable, PersistenceFailed
)
from config import config


@dataclass
class CacheStats:
    """
    Cache performance statistics

    Attributes:
        hits (int): Number of cache hits
        misses (int): Number of cache misses
        sets (int): Number of rows written
        write_failures (int): Number of writes that failed
        expired (int): Number of expired rows cleaned
    """
    hits: int = 0
    misses: int = 0
    sets: int = 0
    write_failures: int = 0
    expired: int = 0

    def hit_rate(self) -> float:
        """Calculate cache hit rate"""
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0

    def to_dict(self) -> Dict:
        """Convert stats to dictionary"""
        return {
            "hits": self.hits,
            "misses": self.misses,
            "sets": self.sets,
            "write_failures": self.write_failures,
            "expired": self.expired,
            "hit_rate": self.hit_rate()
        }


class DistanceCache:
    """
    Distance cache backed by a catalog collection
    Thread-safe statistics; storage safety is delegated to the store
    """

    def __init__(self, store: CatalogStore, collection: str = None,
                 ttl_static: int = None, ttl_traffic: int = None,
                 tolerance: float = None):
        """
        Initialize Distance Cache

        Args:
            store (CatalogStore): Backing store
            collection (str): Collection name (default from config)
            ttl_static (int): TTL in seconds for non-traffic rows (default from config)
            ttl_traffic (int): TTL in seconds for traffic-aware rows (default from config)
            tolerance (float): Coordinate tolerance in degrees (default from config)
        """
        self.logger = logging.getLogger(__name__)
        self.error_handler = ErrorHandler()

        self.store = store
        self.collection = collection or config.DISTANCE_CACHE_COLLECTION
        self.ttl_static = ttl_static if ttl_static is not None else config.DISTANCE_CACHE_TTL_STATIC
        self.ttl_traffic = ttl_traffic if ttl_traffic is not None else config.DISTANCE_CACHE_TTL_TRAFFIC
        self.tolerance = tolerance if tolerance is not None else config.DISTANCE_COORD_TOLERANCE

        self._lock = threading.Lock()
        self.stats = CacheStats()

        self.logger.info(
            f"Distance Cache initialized (collection={self.collection}, "
            f"ttl={self.ttl_static}s/{self.ttl_traffic}s, tolerance={self.tolerance})"
        )

    def _ttl(self, with_traffic: bool) -> int:
        return self.ttl_traffic if with_traffic else self.ttl_static

    def _lookup_filter(self, origin: Tuple[float, float], destination: Tuple[float, float],
                       mode: TravelMode, with_traffic: bool, now: datetime) -> Dict:
        t = self.tolerance
        return {
            "origin_lat": {"$gte": origin[0] - t, "$lte": origin[0] + t},
            "origin_lng": {"$gte": origin[1] - t, "$lte": origin[1] + t},
            "destination_lat": {"$gte": destination[0] - t, "$lte": destination[0] + t},
            "destination_lng": {"$gte": destination[1] - t, "$lte": destination[1] + t},
            "travel_mode": mode.value,
            "with_traffic": with_traffic,
            "expires_at": {"$gt": now.isoformat()},
        }

    def get(self, origin: Tuple[float, float], destination: Tuple[float, float],
            mode: TravelMode = TravelMode.DRIVING, with_traffic: bool = False,
            now: Optional[datetime] = None) -> Optional[CachedDistance]:
        """
        Find a live cache row for the pair

        Args:
            origin (Tuple[float, float]): Origin (lat, lng)
            destination (Tuple[float, float]): Destination (lat, lng)
            mode (TravelMode): Travel mode
            with_traffic (bool): Traffic-aware flag
            now (datetime): Reference time (naive UTC)

        Returns:
            CachedDistance: Newest unexpired row within tolerance, or None

        Raises:
            CatalogUnavailable: If the store cannot be read
        """
        now = now or utc_now()
        documents = self.store.find(
            self.collection,
            self._lookup_filter(origin, destination, mode, with_traffic, now),
            sort=[("cached_at", -1)],
        )

        for document in documents:
            row = CachedDistance.from_document(document)
            if not row.is_expired(now):
                with self._lock:
                    self.stats.hits += 1
                self.logger.debug(f"Distance cache hit: {origin} -> {destination} ({mode.value})")
                return row

        with self._lock:
            self.stats.misses += 1
        self.logger.debug(f"Distance cache miss: {origin} -> {destination} ({mode.value})")
        return None

    def put(self, origin: Tuple[float, float], destination: Tuple[float, float],
            result: DistanceResult, mode: TravelMode = TravelMode.DRIVING,
            with_traffic: bool = False, now: Optional[datetime] = None) -> Optional[CachedDistance]:
        """
        Write a row for a fresh lookup (best-effort)

        Returns:
            CachedDistance: The written row, None if the write failed
        """
        now = now or utc_now()
        row = CachedDistance(
            origin=origin,
            destination=destination,
            travel_mode=mode,
            with_traffic=with_traffic,
            distance_meters=result.distance_meters,
            duration_seconds=result.duration_seconds,
            duration_in_traffic_seconds=result.duration_in_traffic_seconds,
            cached_at=now,
            expires_at=now + timedelta(seconds=self._ttl(with_traffic)),
        )

        try:
            self.store.insert_one(self.collection, row.to_document())
        except (CatalogUnavailable, PersistenceFailed) as e:
            with self._lock:
                self.stats.write_failures += 1
            self.error_handler.handle_error(
                "Failed to cache distance",
                exception=e,
                severity=ErrorSeverity.LOW,
                context=ErrorContext(
                    module=__name__, function="put",
                    system_state={"origin": origin, "destination": destination}
                )
            )
            return None

        with self._lock:
            self.stats.sets += 1
        return row

    def cleanup_expired(self, now: Optional[datetime] = None) -> int:
        """Delete expired rows and return how many were removed"""
        now = now or utc_now()
        removed = self.store.delete_many(self.collection, {"expires_at": {"$lte": now.isoformat()}})
        with self._lock:
            self.stats.expired += removed
        if removed:
            self.logger.info(f"Cleaned up {removed} expired distance cache rows")
        return removed

    def get_stats(self) -> Dict:
        with self._lock:
            return self.stats.to_dict()
