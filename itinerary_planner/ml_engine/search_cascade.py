"""
Itinerary Search Cascade
========================

Tiered catalog search with a generation fallback.

Tiers, each tried only when the previous one found nothing:
1. Exact: location, every requested activity, lodging and group size
2. Partial: location and any requested activity
3. Location-only: location and group size, at most 5 results
4. Flexible: location or activity matches, at most 5 (dateless queries)

search_or_generate scores what search finds, keeps high-quality matches
and generates new itineraries to reach the requested result count.
Generated itineraries are persisted on a worker pool without blocking
the response.

Author: Hybrid Trip Planner Team
"""

import re
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, Future, wait
from datetime import date, timedelta
from typing import List, Dict, Optional, Set, Tuple

import requests

from ..data_pipeline.catalog_store import CatalogStore, create_catalog_store
from ..data_pipeline.data_models import Itinerary, SearchQuery
from ..data_pipeline.distance_service import DistanceService
from ..data_pipeline.image_resolver import ImageResolver, GcsImageResolver
from ..data_pipeline.semantic_search import VertexSearchClient
from ..utils.data_utils import parse_location, normalize_text
from ..utils.error_handler import (
    ErrorHandler, ErrorCategory, ErrorContext, ErrorSeverity, CatalogUnavailable, PersistenceFailed,
    GenerationError, MissingDates, NoActivitiesFound, UnparseableDate,
    NotConfigured, DependencyUnavailable
)
from ..utils.performance_monitor import measure_time, get_performance_report, get_performance_stats
from .itinerary_generator import ItineraryGenerator
from .route_optimizer import RouteOptimizer, OptimizationConfig
from .search_scorer import SearchScorer, SearchWeights, ScoredItinerary
from config import config


LOCATION_TIER_LIMIT = 5
FLEXIBLE_TIER_LIMIT = 5

HIGH_QUALITY_FRACTION = 0.9

# Generation budget
ATTEMPTS_PER_MISSING = 3
MAX_FAILURES_PER_ITINERARY = 5

# Dates used when a dateless query still has criteria to generate from
SYNTHESIZED_LEAD_DAYS = 7
SYNTHESIZED_TRIP_DAYS = 3


def is_too_similar(candidate: Itinerary, existing: Itinerary) -> bool:
    """
    Same trip name, or same start city, length, group range and an
    activity count within one
    """
    if normalize_text(candidate.trip_name) == normalize_text(existing.trip_name):
        return True
    return (
        normalize_text(candidate.start_location.city) == normalize_text(existing.start_location.city)
        and candidate.length_days == existing.length_days
        and candidate.min_group == existing.min_group
        and candidate.max_group == existing.max_group
        and abs(candidate.activity_count() - existing.activity_count()) <= 1
    )


class ItinerarySearchService:
    """
    Search, score and generate itineraries for traveler queries
    """

    def __init__(self, store: CatalogStore,
                 scorer: Optional[SearchScorer] = None,
                 generator: Optional[ItineraryGenerator] = None,
                 image_resolver: Optional[ImageResolver] = None,
                 itinerary_collection: Optional[str] = None,
                 min_results_threshold: Optional[int] = None,
                 max_workers: Optional[int] = None):
        """
        Initialize Itinerary Search Service

        Args:
            store (CatalogStore): Catalog of itineraries and activities
            scorer (SearchScorer): Relevance scorer (default: config weights)
            generator (ItineraryGenerator): Generator (default: catalog only)
            image_resolver (ImageResolver): Optional image lookup for results
            itinerary_collection (str): Itinerary collection name
            min_results_threshold (int): Default result count to reach
            max_workers (int): Worker pool size for persistence and images
        """
        self.logger = logging.getLogger(__name__)
        self.error_handler = ErrorHandler()

        self.store = store
        self.scorer = scorer or SearchScorer(store=store)
        self.generator = generator or ItineraryGenerator(store)
        self.image_resolver = image_resolver
        self.collection = itinerary_collection or config.ITINERARY_COLLECTION
        self.min_results_threshold = (
            min_results_threshold if min_results_threshold is not None else config.MIN_SEARCH_RESULTS
        )

        self._executor = ThreadPoolExecutor(
            max_workers=max_workers or config.WORKER_POOL_SIZE,
            thread_name_prefix="itinerary-worker"
        )
        self._pending: Set[Future] = set()
        self._pending_lock = threading.Lock()

        self.logger.info(
            f"Itinerary Search Service initialized (collection={self.collection}, "
            f"threshold={self.min_results_threshold})"
        )

    @classmethod
    def from_config(cls, settings=None, store: Optional[CatalogStore] = None,
                    session: Optional[requests.Session] = None) -> "ItinerarySearchService":
        """
        Wire the service and its collaborators from settings

        Args:
            settings: Configuration (default: global config)
            store (CatalogStore): Catalog (default: backend named in settings)
            session (requests.Session): HTTP session shared by the API clients

        Returns:
            ItinerarySearchService: Ready-to-use service
        """
        settings = settings or config
        store = store if store is not None else create_catalog_store(settings)

        distance_service = DistanceService.from_config(settings, store=store, session=session)
        optimizer = RouteOptimizer(distance_service, OptimizationConfig.from_config(settings))

        semantic_search = VertexSearchClient.from_config(settings, session=session)
        scorer = SearchScorer(
            SearchWeights.from_config(settings),
            store=store,
            activity_collection=settings.ACTIVITY_COLLECTION,
            max_workers=settings.WORKER_POOL_SIZE,
        )
        generator = ItineraryGenerator(
            store,
            semantic_search=semantic_search if semantic_search.is_configured else None,
            optimizer=optimizer,
            activity_collection=settings.ACTIVITY_COLLECTION,
        )
        image_resolver = GcsImageResolver.from_config(settings, session=session) if settings.ITINERARY_BUCKET else None

        return cls(
            store,
            scorer=scorer,
            generator=generator,
            image_resolver=image_resolver,
            itinerary_collection=settings.ITINERARY_COLLECTION,
            min_results_threshold=settings.MIN_SEARCH_RESULTS,
            max_workers=settings.WORKER_POOL_SIZE,
        )

    # =========================================================================
    # SEARCH
    # =========================================================================

    @measure_time(category="search")
    def search(self, query: SearchQuery) -> List[Itinerary]:
        """
        Return the first non-empty tier's itineraries

        A tier whose read fails is logged as degraded and the next tier is
        tried.

        Args:
            query (SearchQuery): Traveler constraints

        Returns:
            List[Itinerary]: Matches of the most exact tier that found any

        Raises:
            CatalogUnavailable: If every attempted tier failed to read
        """
        tiers = [
            ("exact", self.build_exact_filter(query), None, bool(query.lodging)),
            ("partial", self.build_partial_filter(query), None, False),
            ("location", self.build_location_only_filter(query), LOCATION_TIER_LIMIT, False),
        ]

        attempted = []
        failures = []
        for name, query_filter, limit, needs_accommodation in tiers:
            if any(query_filter == previous and not filtered for previous, filtered in attempted):
                continue
            attempted.append((query_filter, needs_accommodation))

            try:
                found = self._find_itineraries(query_filter, limit=limit)
            except CatalogUnavailable as e:
                failures.append(e)
                self.error_handler.handle_error(
                    f"Search tier '{name}' degraded",
                    exception=e,
                    context=ErrorContext(module=__name__, function="search",
                                         system_state={"tier": name})
                )
                continue

            if needs_accommodation:
                found = [itinerary for itinerary in found if itinerary.has_accommodation()]

            if found:
                self.logger.info(f"Search tier '{name}' returned {len(found)} itineraries")
                return found

            self.logger.debug(f"Search tier '{name}' returned nothing")

        if attempted and len(failures) == len(attempted):
            raise CatalogUnavailable(f"All search tiers failed: {failures[-1]}") from failures[-1]

        return []

    def flexible_search(self, query: SearchQuery) -> List[Itinerary]:
        """
        Location or activity matches, or the most recent itineraries when
        the query has no criteria

        Raises:
            CatalogUnavailable: If the catalog cannot be read
        """
        conditions = self._location_conditions(query) + [
            self._activity_condition(tag) for tag in query.activities
        ]
        if conditions:
            return self._find_itineraries({"$or": conditions}, limit=FLEXIBLE_TIER_LIMIT)
        return self._find_itineraries({}, limit=FLEXIBLE_TIER_LIMIT, sort=[("created_at", -1)])

    # =========================================================================
    # SEARCH OR GENERATE
    # =========================================================================

    @measure_time(category="search")
    def search_or_generate(self, query: SearchQuery,
                           min_results_threshold: Optional[int] = None) -> List[Itinerary]:
        """
        Search, keep high-quality matches and generate to reach the threshold

        Args:
            query (SearchQuery): Traveler constraints
            min_results_threshold (int): Result count to reach (default: configured)

        Returns:
            List[Itinerary]: Found and generated itineraries, each carrying a
                0-100 ``match_score`` and a normalized ``score_breakdown``

        Raises:
            CatalogUnavailable: If the catalog cannot be read at all
        """
        threshold = self.min_results_threshold if min_results_threshold is None else min_results_threshold

        ranked = self.scorer.score_and_rank(self.search(query), query)
        cutoff = HIGH_QUALITY_FRACTION * self.scorer.weights.max_score
        high_quality = [scored for scored in ranked if scored.total_score >= cutoff]

        self.logger.info(
            f"{len(high_quality)} of {len(ranked)} ranked itineraries are high quality "
            f"(threshold {threshold})"
        )

        if len(high_quality) >= threshold:
            return self._finalize(high_quality)

        if not query.has_dates:
            return self._search_without_dates(query, high_quality, threshold)

        generated = self._generate_missing(query, high_quality, threshold - len(high_quality))
        return self._finalize(high_quality + [self.scorer.score(it, query) for it in generated])

    def _search_without_dates(self, query: SearchQuery, high_quality: List[ScoredItinerary],
                              threshold: int) -> List[Itinerary]:
        """Flexible tier, then generation with synthesized dates"""
        try:
            flexible = self.flexible_search(query)
        except CatalogUnavailable as e:
            self.error_handler.handle_error(
                "Flexible search tier degraded",
                exception=e,
                context=ErrorContext(module=__name__, function="_search_without_dates")
            )
            flexible = []

        if flexible:
            self.logger.info(f"Flexible search returned {len(flexible)} itineraries")
            scored = [self.scorer.score(itinerary, query) for itinerary in flexible]
            scored.sort(key=lambda s: s.total_score, reverse=True)
            return self._finalize(scored)

        if not query.has_criteria:
            self.logger.info("No dates and no criteria, nothing to generate")
            return self._finalize(high_quality)

        arrival = date.today() + timedelta(days=SYNTHESIZED_LEAD_DAYS)
        departure = arrival + timedelta(days=SYNTHESIZED_TRIP_DAYS)
        dated = query.with_dates(arrival.isoformat(), departure.isoformat())
        self.logger.info(f"Generating with synthesized dates {arrival} - {departure}")

        generated = self._generate_missing(dated, high_quality, threshold - len(high_quality))
        return self._finalize(high_quality + [self.scorer.score(it, query) for it in generated])

    def _generate_missing(self, query: SearchQuery, existing: List[ScoredItinerary],
                          needed: int) -> List[Itinerary]:
        """
        Generate up to ``needed`` itineraries, each with a fresh name and not
        too similar to an existing result, persisting every accepted one

        Returns:
            List[Itinerary]: Accepted itineraries (possibly fewer than needed)
        """
        if needed <= 0:
            return []

        existing_itineraries = [scored.itinerary for scored in existing]
        names = {itinerary.trip_name for itinerary in existing_itineraries}

        try:
            candidates = self.generator.fetch_activities(query)
        except CatalogUnavailable as e:
            self.error_handler.handle_error(
                "Activity lookup for generation failed",
                exception=e,
                context=ErrorContext(module=__name__, function="_generate_missing")
            )
            return []

        produced: List[Itinerary] = []
        attempts = 0
        failures = 0
        abandoned = 0
        variation = 0

        while len(produced) + abandoned < needed and attempts < ATTEMPTS_PER_MISSING * needed:
            attempts += 1
            try:
                itinerary = self.generator.generate_unique(query, variation, names, candidates=candidates)
            except (MissingDates, UnparseableDate, NoActivitiesFound) as e:
                self.error_handler.handle_error(
                    "Itinerary generation is not possible for this query",
                    exception=e,
                    severity=ErrorSeverity.LOW,
                    context=ErrorContext(module=__name__, function="_generate_missing")
                )
                break
            except GenerationError as e:
                self.error_handler.handle_error(
                    "Itinerary generation attempt failed",
                    exception=e,
                    severity=ErrorSeverity.LOW,
                    context=ErrorContext(module=__name__, function="_generate_missing",
                                         system_state={"variation": variation})
                )
                itinerary = None
            finally:
                variation += 1

            accepted = (
                itinerary is not None
                and itinerary.trip_name not in names
                and not any(is_too_similar(itinerary, other) for other in existing_itineraries)
            )

            if not accepted:
                failures += 1
                if failures >= MAX_FAILURES_PER_ITINERARY:
                    self.logger.warning(f"Giving up on one itinerary after {failures} failed attempts")
                    abandoned += 1
                    failures = 0
                continue

            failures = 0
            names.add(itinerary.trip_name)
            produced.append(itinerary)
            self.persist_async(itinerary)

        self.logger.info(f"Generated {len(produced)} of {needed} requested itineraries in {attempts} attempts")
        return produced

    # =========================================================================
    # PERSISTENCE
    # =========================================================================

    def persist_async(self, itinerary: Itinerary) -> Future:
        """Queue a write of the itinerary; failures are logged, not raised"""
        document = itinerary.to_document()
        future = self._executor.submit(self._persist, document, itinerary.trip_name)
        with self._pending_lock:
            self._pending.add(future)
        future.add_done_callback(self._discard_pending)
        return future

    def _discard_pending(self, future: Future) -> None:
        with self._pending_lock:
            self._pending.discard(future)

    def _persist(self, document: Dict, trip_name: str) -> Optional[str]:
        try:
            itinerary_id = self.store.insert_one(self.collection, document)
        except (PersistenceFailed, CatalogUnavailable) as e:
            self.error_handler.handle_error(
                f"Failed to persist generated itinerary '{trip_name}'",
                exception=e,
                context=ErrorContext(module=__name__, function="_persist",
                                     system_state={"trip_name": trip_name})
            )
            return None

        self.logger.info(f"Persisted generated itinerary '{trip_name}' ({itinerary_id})")
        return itinerary_id

    def flush(self, timeout: Optional[float] = None) -> None:
        """Wait for queued writes to finish"""
        with self._pending_lock:
            pending = list(self._pending)
        if pending:
            wait(pending, timeout=timeout)

    def close(self) -> None:
        """Finish queued writes and stop the worker pool"""
        self.flush()
        self._executor.shutdown(wait=True)
        self.logger.info("Itinerary Search Service closed")

    def __enter__(self) -> "ItinerarySearchService":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def stats(self) -> Dict:
        """
        Service health snapshot

        Returns:
            Dict: Queued writes, swallowed-error counts by category, per-entry
                point timings and the process performance report
        """
        with self._pending_lock:
            pending = len(self._pending)
        return {
            "pending_writes": pending,
            "errors": self.error_handler.get_error_statistics(),
            "timings": get_performance_stats(),
            "performance": get_performance_report(),
        }

    # =========================================================================
    # RESULTS
    # =========================================================================

    def _finalize(self, scored: List[ScoredItinerary]) -> List[Itinerary]:
        """Attach normalized scores and images, returning the itineraries"""
        itineraries = []
        for entry in scored:
            itinerary = entry.itinerary
            itinerary.match_score, itinerary.score_breakdown = self.scorer.normalized(entry)
            itineraries.append(itinerary)

        self._attach_images(itineraries)
        return itineraries

    def _attach_images(self, itineraries: List[Itinerary]) -> None:
        if self.image_resolver is None:
            return

        targets = [itinerary for itinerary in itineraries if itinerary.id and not itinerary.images]
        for itinerary, images in zip(targets, self._executor.map(self._resolve_images, targets)):
            itinerary.images = images

    def _resolve_images(self, itinerary: Itinerary) -> List[str]:
        try:
            return self.image_resolver.resolve(itinerary.id)
        except NotConfigured:
            return []
        except DependencyUnavailable as e:
            self.error_handler.handle_error(
                "Image lookup failed",
                exception=e,
                category=ErrorCategory.IMAGE_LOOKUP_FAILED,
                severity=ErrorSeverity.LOW,
                context=ErrorContext(module=__name__, function="_resolve_images",
                                     system_state={"itinerary_id": itinerary.id})
            )
            return []

    # =========================================================================
    # FILTERS
    # =========================================================================

    @staticmethod
    def _city_patterns(query: SearchQuery) -> List["re.Pattern"]:
        cities = []
        for location in query.locations:
            city, _ = parse_location(location)
            if city:
                cities.append(re.compile(f"^{re.escape(city)}$", re.IGNORECASE))
        return cities

    def _location_conditions(self, query: SearchQuery) -> List[Dict]:
        patterns = self._city_patterns(query)
        if not patterns:
            return []
        return [
            {"start_location.city": {"$in": patterns}},
            {"end_location.city": {"$in": patterns}},
        ]

    @staticmethod
    def _activity_condition(tag: str) -> Dict:
        """Some labeled activity has the tag in its label or tags"""
        pattern = {"$regex": re.escape(tag), "$options": "i"}
        return {"activities": {"$elemMatch": {"$or": [{"label": pattern}, {"tags": pattern}]}}}

    @staticmethod
    def _group_condition(query: SearchQuery) -> Dict:
        total = query.total_travelers
        if total is None:
            return {}
        return {"min_group": {"$lte": total}, "max_group": {"$gte": total}}

    def _combine(self, query: SearchQuery, activity_clause: Optional[Dict]) -> Dict:
        clauses = []
        location = self._location_conditions(query)
        if location:
            clauses.append({"$or": location})
        if activity_clause:
            clauses.append(activity_clause)
        group = self._group_condition(query)
        if group:
            clauses.append(group)

        if not clauses:
            return {}
        if len(clauses) == 1:
            return clauses[0]
        return {"$and": clauses}

    def build_exact_filter(self, query: SearchQuery) -> Dict:
        """Location, every requested activity and group size"""
        activity_clause = None
        if query.activities:
            activity_clause = {"$and": [self._activity_condition(tag) for tag in query.activities]}
        return self._combine(query, activity_clause)

    def build_partial_filter(self, query: SearchQuery) -> Dict:
        """Location, any requested activity and group size"""
        activity_clause = None
        if query.activities:
            activity_clause = {"$or": [self._activity_condition(tag) for tag in query.activities]}
        return self._combine(query, activity_clause)

    def build_location_only_filter(self, query: SearchQuery) -> Dict:
        """Location and group size"""
        return self._combine(query, None)

    def _find_itineraries(self, query_filter: Dict, limit: Optional[int] = None,
                          sort: Optional[List[Tuple[str, int]]] = None) -> List[Itinerary]:
        documents = self.store.find(self.collection, query_filter, limit=limit, sort=sort)

        itineraries = []
        for document in documents:
            try:
                itineraries.append(Itinerary.from_document(document))
            except (ValueError, TypeError, KeyError) as e:
                self.error_handler.handle_data_error("Itinerary", str(e), document.get("_id"))
        return itineraries
