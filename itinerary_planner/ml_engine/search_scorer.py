"""
Itinerary Search Scoring
========================

Multi-criteria relevance scoring of itineraries against a search query.
Each dimension contributes at most its configured weight:
- Location (35): city/state match against start and end locations
- Activity (30): requested tags matched against the scheduled activities
- Group size (15): party size against the itinerary's group range
- Lodging (5): partial credit for any accommodation stay
- Transportation (3): requested mode against transportation legs
- Trip pace (12): activities and hours per day against the pace profile

Author: Hybrid Trip Planner Team
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import List, Dict, Optional, Tuple

from ..data_pipeline.catalog_store import CatalogStore
from ..data_pipeline.data_models import Activity, ActivityItem, Itinerary, SearchQuery
from ..utils.data_utils import parse_location, normalize_text
from ..utils.error_handler import ErrorHandler, ErrorContext, ErrorSeverity, CatalogUnavailable
from config import config


# Search term -> words that count as the same activity
ACTIVITY_SYNONYMS: Dict[Tuple[str, ...], Tuple[str, ...]] = {
    ("atving", "atv", "atvs"): (
        "quad", "four wheeler", "off road", "off-road", "4x4",
        "all terrain vehicle", "dirt bike", "trail riding",
    ),
    ("hotsprings", "hot springs", "hot spring"): (
        "thermal", "spa", "mineral springs", "geothermal", "springs",
        "natural springs", "thermal baths",
    ),
    ("goldminetours", "gold mine tours", "gold mine", "goldmine"): (
        "mining", "mine tour", "mining tour", "historical mine", "gold rush",
        "underground tour", "mine exploration", "mining history",
    ),
    ("hiking", "hike", "hikes"): ("trail", "trek", "walking", "nature walk", "mountain", "wilderness"),
    ("skiing", "ski"): ("slope", "mountain resort", "powder", "alpine"),
    ("rafting", "raft"): ("river", "whitewater", "rapids", "float"),
    ("climbing", "climb"): ("rock climbing", "bouldering", "mountaineering"),
    ("fishing", "fish"): ("angling", "fly fishing", "catch"),
    ("biking", "bike", "cycling"): ("bicycle", "mountain bike", "trail ride"),
    ("kayaking", "kayak"): ("paddle", "paddling", "water sports"),
    ("camping", "camp"): ("campground", "outdoor", "tent", "rv"),
    ("wildlife",): ("animals", "safari", "nature viewing", "bird watching"),
}

_SYNONYM_LOOKUP = {term: words for terms, words in ACTIVITY_SYNONYMS.items() for term in terms}

# Assumed activity length when the catalog record cannot be resolved
DEFAULT_ACTIVITY_HOURS = 2.0


def synonyms_for(search_term: str) -> Tuple[str, ...]:
    """Synonyms registered for a lowercase search term (empty when unknown)"""
    return _SYNONYM_LOOKUP.get(search_term, ())


def matches_activity_synonyms(search_term: str, text: str) -> bool:
    """True if any synonym of ``search_term`` occurs in ``text``"""
    return any(word in text for word in synonyms_for(search_term))


def term_matches(search_term: str, text: str) -> bool:
    """Substring or synonym match of a lowercase term against lowercase text"""
    return search_term in text or matches_activity_synonyms(search_term, text)


@dataclass(frozen=True)
class SearchWeights:
    """
    Scoring weights, loaded once and passed to the scorer

    Attributes:
        location (float): Location dimension weight
        activity (float): Activity dimension weight
        group_size (float): Group-size dimension weight
        lodging (float): Lodging dimension weight
        transportation (float): Transportation dimension weight
        trip_pace (float): Trip pace dimension weight
        minimum_score (float): Admission threshold for ranking
    """
    location: float = 35.0
    activity: float = 30.0
    group_size: float = 15.0
    lodging: float = 5.0
    transportation: float = 3.0
    trip_pace: float = 12.0
    minimum_score: float = 15.0

    def __post_init__(self):
        for name in ("location", "activity", "group_size", "lodging",
                     "transportation", "trip_pace", "minimum_score"):
            if getattr(self, name) < 0:
                raise ValueError(f"Weight '{name}' must be non-negative")

    @classmethod
    def from_config(cls, settings=None) -> "SearchWeights":
        settings = settings or config
        return cls(
            location=settings.SEARCH_LOCATION_WEIGHT,
            activity=settings.SEARCH_ACTIVITY_WEIGHT,
            group_size=settings.SEARCH_GROUP_SIZE_WEIGHT,
            lodging=settings.SEARCH_LODGING_WEIGHT,
            transportation=settings.SEARCH_TRANSPORT_WEIGHT,
            trip_pace=settings.SEARCH_TRIP_PACE_WEIGHT,
            minimum_score=settings.SEARCH_MIN_SCORE,
        )

    @property
    def max_score(self) -> float:
        """Sum of the six dimension weights"""
        return (self.location + self.activity + self.group_size +
                self.lodging + self.transportation + self.trip_pace)


@dataclass
class ScoreBreakdown:
    """Per-dimension scores, each bounded by its weight"""
    location_score: float = 0.0
    activity_score: float = 0.0
    group_size_score: float = 0.0
    lodging_score: float = 0.0
    transportation_score: float = 0.0
    trip_pace_score: float = 0.0

    @property
    def total(self) -> float:
        return (self.location_score + self.activity_score + self.group_size_score +
                self.lodging_score + self.transportation_score + self.trip_pace_score)

    def to_dict(self) -> Dict[str, float]:
        return {
            "location": self.location_score,
            "activity": self.activity_score,
            "group_size": self.group_size_score,
            "lodging": self.lodging_score,
            "transportation": self.transportation_score,
            "trip_pace": self.trip_pace_score,
        }


@dataclass
class ScoredItinerary:
    """
    Itinerary with calculated score and breakdown

    Attributes:
        itinerary (Itinerary): Scored itinerary
        total_score (float): Sum of the dimension scores
        score_breakdown (ScoreBreakdown): Per-dimension scores
    """
    itinerary: Itinerary
    total_score: float
    score_breakdown: ScoreBreakdown = field(default_factory=ScoreBreakdown)


class SearchScorer:
    """
    Relevance scoring engine for catalog and generated itineraries
    """

    def __init__(self, weights: Optional[SearchWeights] = None,
                 store: Optional[CatalogStore] = None,
                 activity_collection: Optional[str] = None,
                 max_workers: int = 1):
        """
        Initialize Search Scorer

        Args:
            weights (SearchWeights): Scoring weights (default: from config)
            store (CatalogStore): Store used to resolve scheduled activities;
                without one, activity matching uses itinerary text only
            activity_collection (str): Activities collection name
            max_workers (int): Threads used when ranking many itineraries
        """
        self.logger = logging.getLogger(__name__)
        self.error_handler = ErrorHandler()

        self.weights = weights or SearchWeights.from_config()
        self.store = store
        self.activity_collection = activity_collection or config.ACTIVITY_COLLECTION
        self.max_workers = max(1, max_workers)

        self.logger.info(f"Search Scorer initialized (max score {self.weights.max_score:.1f})")

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    def score(self, itinerary: Itinerary, query: SearchQuery) -> ScoredItinerary:
        """
        Score one itinerary against a query

        Args:
            itinerary (Itinerary): Candidate itinerary
            query (SearchQuery): Traveler constraints

        Returns:
            ScoredItinerary: Total score and per-dimension breakdown
        """
        resolved = self._resolve_activities(itinerary)

        breakdown = ScoreBreakdown(
            location_score=self._score_location(itinerary, query),
            activity_score=self._score_activities(itinerary, query, resolved),
            group_size_score=self._score_group_size(itinerary, query),
            lodging_score=self._score_lodging(itinerary, query),
            transportation_score=self._score_transportation(itinerary, query),
            trip_pace_score=self._score_trip_pace(itinerary, query, resolved),
        )

        self.logger.debug(f"Scored '{itinerary.trip_name}': {breakdown.total:.2f} {breakdown.to_dict()}")
        return ScoredItinerary(itinerary=itinerary, total_score=breakdown.total, score_breakdown=breakdown)

    def score_and_rank(self, itineraries: List[Itinerary], query: SearchQuery) -> List[ScoredItinerary]:
        """
        Score every itinerary, drop those below the minimum score and rank

        Ties keep their input order.

        Args:
            itineraries (List[Itinerary]): Candidates
            query (SearchQuery): Traveler constraints

        Returns:
            List[ScoredItinerary]: Admitted itineraries, highest score first
        """
        if not itineraries:
            return []

        if self.max_workers > 1 and len(itineraries) > 1:
            workers = min(self.max_workers, len(itineraries))
            with ThreadPoolExecutor(max_workers=workers) as executor:
                scored = list(executor.map(lambda it: self.score(it, query), itineraries))
        else:
            scored = [self.score(itinerary, query) for itinerary in itineraries]

        admitted = [s for s in scored if s.total_score >= self.weights.minimum_score]
        admitted.sort(key=lambda s: s.total_score, reverse=True)

        self.logger.info(
            f"Ranked {len(admitted)} of {len(itineraries)} itineraries "
            f"(minimum score {self.weights.minimum_score})"
        )
        return admitted

    def normalized(self, scored: ScoredItinerary) -> Tuple[float, Dict[str, float]]:
        """
        Scale a score to 0-100 of the maximum possible score and each
        dimension to 0-100 of its own weight

        Returns:
            Tuple[float, Dict[str, float]]: Match score and breakdown
        """
        weights = {
            "location": self.weights.location,
            "activity": self.weights.activity,
            "group_size": self.weights.group_size,
            "lodging": self.weights.lodging,
            "transportation": self.weights.transportation,
            "trip_pace": self.weights.trip_pace,
        }

        def percent(value: float, maximum: float) -> float:
            if maximum <= 0:
                return 0.0
            return round(min(100.0, max(0.0, value / maximum * 100.0)), 2)

        breakdown = {name: percent(value, weights[name])
                     for name, value in scored.score_breakdown.to_dict().items()}
        return percent(scored.total_score, self.weights.max_score), breakdown

    def get_score_statistics(self, scored: List[ScoredItinerary]) -> Dict:
        """Summary statistics over a ranked list"""
        if not scored:
            return {}

        scores = [s.total_score for s in scored]
        return {
            'total_itineraries': len(scored),
            'avg_score': sum(scores) / len(scores),
            'min_score': min(scores),
            'max_score': max(scores),
            'high_quality': len([s for s in scores if s >= 0.9 * self.weights.max_score]),
        }

    # =========================================================================
    # DIMENSIONS
    # =========================================================================

    @staticmethod
    def calculate_location_match(search_city: str, search_state: str,
                                 itinerary_city: str, itinerary_state: str) -> float:
        """
        Match quality of one requested location against one endpoint

        Exact city and state 1.0, exact city 0.7, exact non-empty state 0.3,
        city containment in either direction 0.5, otherwise 0.0.
        """
        if search_city == itinerary_city and search_state == itinerary_state:
            return 1.0
        if search_city == itinerary_city:
            return 0.7
        if search_state and search_state == itinerary_state:
            return 0.3
        if search_city and itinerary_city and (
                search_city in itinerary_city or itinerary_city in search_city):
            return 0.5
        return 0.0

    def _score_location(self, itinerary: Itinerary, query: SearchQuery) -> float:
        if not query.locations:
            return 0.0

        endpoints = [
            (normalize_text(location.city), normalize_text(location.state))
            for location in (itinerary.start_location, itinerary.end_location)
        ]

        best = 0.0
        for requested in query.locations:
            city, state = parse_location(requested)
            city, state = normalize_text(city), normalize_text(state)
            for endpoint_city, endpoint_state in endpoints:
                best = max(best, self.calculate_location_match(city, state, endpoint_city, endpoint_state))

        return best * self.weights.location

    def _resolve_activities(self, itinerary: Itinerary) -> Optional[List[Activity]]:
        """
        Load the catalog records of the scheduled activities

        Returns:
            List[Activity]: Resolved activities, None when resolution failed
                or produced nothing
        """
        ids = itinerary.activity_ids()
        if self.store is None or not ids:
            return None

        try:
            documents = self.store.find(self.activity_collection, {"_id": {"$in": ids}})
        except CatalogUnavailable as e:
            self.error_handler.handle_error(
                "Failed to resolve activities for scoring, using text match",
                exception=e,
                severity=ErrorSeverity.LOW,
                context=ErrorContext(module=__name__, function="_resolve_activities",
                                     system_state={"itinerary": itinerary.trip_name})
            )
            return None

        activities = []
        for document in documents:
            try:
                activities.append(Activity.from_document(document))
            except (ValueError, TypeError) as e:
                self.error_handler.handle_data_error("Activity", str(e), document)

        return activities or None

    def _score_activities(self, itinerary: Itinerary, query: SearchQuery,
                          resolved: Optional[List[Activity]]) -> float:
        if not query.activities:
            return self.weights.activity * 0.5 if itinerary.activity_count() > 0 else 0.0

        if itinerary.activity_count() == 0:
            return 0.0

        if resolved:
            texts = [text for activity in resolved for text in activity.searchable_fields()]
        else:
            # Text match on the itinerary itself
            texts = [itinerary.trip_name.lower(), itinerary.description.lower()]

        matched = 0
        for requested in query.activities:
            term = requested.lower()
            if any(term_matches(term, text) for text in texts):
                matched += 1

        return matched / len(query.activities) * self.weights.activity

    def _score_group_size(self, itinerary: Itinerary, query: SearchQuery) -> float:
        total = query.total_travelers
        if total is None:
            return 0.0

        if itinerary.min_group <= total <= itinerary.max_group:
            return self.weights.group_size
        if total == itinerary.min_group - 1 or total == itinerary.max_group + 1:
            return self.weights.group_size * 0.7
        if itinerary.min_group - 2 <= total <= itinerary.max_group + 2:
            return self.weights.group_size * 0.4
        return 0.0

    def _score_lodging(self, itinerary: Itinerary, query: SearchQuery) -> float:
        # Any stay earns partial credit; lodging types are not compared
        if query.lodging and itinerary.has_accommodation():
            return self.weights.lodging * 0.6
        return 0.0

    def _score_transportation(self, itinerary: Itinerary, query: SearchQuery) -> float:
        if not query.transportation:
            return 0.0

        legs = itinerary.transportation_items()
        requested = query.transportation.lower()
        if any(requested in leg.name.lower() for leg in legs):
            return self.weights.transportation
        if legs:
            return self.weights.transportation * 0.3
        return 0.0

    def _score_trip_pace(self, itinerary: Itinerary, query: SearchQuery,
                         resolved: Optional[List[Activity]]) -> float:
        if query.trip_pace is None:
            return self.weights.trip_pace * 0.5

        durations = {activity.id: activity.duration_hours for activity in resolved or []}

        total_activities = 0
        total_hours = 0.0
        for _, items in itinerary.ordered_days():
            for item in items:
                if isinstance(item, ActivityItem):
                    total_activities += 1
                    total_hours += durations.get(item.activity_id, DEFAULT_ACTIVITY_HOURS)

        num_days = len(itinerary.days)
        avg_activities = total_activities / num_days if num_days else 0.0
        avg_hours = total_hours / num_days if num_days else 0.0

        activity_diff = abs(avg_activities - query.trip_pace.typical_activities_per_day)
        if activity_diff <= 0.5:
            activity_match = 1.0
        elif activity_diff <= 1.0:
            activity_match = 0.8
        elif activity_diff <= 2.0:
            activity_match = 0.5
        else:
            activity_match = 0.2

        hours_diff = abs(avg_hours - query.trip_pace.max_activity_hours_per_day)
        if hours_diff <= 1.0:
            hours_match = 1.0
        elif hours_diff <= 2.0:
            hours_match = 0.8
        elif hours_diff <= 3.0:
            hours_match = 0.5
        else:
            hours_match = 0.2

        return (activity_match + hours_match) / 2.0 * self.weights.trip_pace
