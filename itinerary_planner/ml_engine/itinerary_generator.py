"""
Itinerary Generation Engine
===========================

Synthesizes new itineraries from bookable catalog activities when search
finds too few good matches.

Key Features:
- Activity candidates from semantic search with a catalog regex fallback
- Day-by-day schedules driven by the requested pace profile
- Each activity used at most once per itinerary
- Optional travel-time aware ordering of each day's activities
- Uniqueness variations (name templates, rotated candidates, start hour
  and buffer) for sibling itineraries from the same activity pool
- Per-person cost and service fee helpers

Author: Hybrid Trip Planner Team
"""

import re
import logging
from datetime import datetime
from typing import List, Dict, Optional, Sequence, Set, Tuple

from ..data_pipeline.catalog_store import CatalogStore
from ..data_pipeline.data_models import (
    Activity, ActivityItem, ActivityLabel, DayItem, Itinerary, Location,
    SearchQuery, TransportationItem, TripPace, utc_now
)
from ..data_pipeline.semantic_search import VertexSearchClient
from ..utils.data_utils import (
    parse_trip_datetime, parse_location, resolve_coordinates, minutes_to_clock,
    generate_object_id, normalize_text, DEFAULT_COORDINATES
)
from ..utils.error_handler import (
    ErrorHandler, ErrorContext, ErrorSeverity, GenerationError, MissingDates,
    NoActivitiesFound, NotConfigured, DependencyUnavailable
)
from ..utils.performance_monitor import measure_time
from .route_optimizer import RouteOptimizer
from config import config


CATALOG_FALLBACK_LIMIT = 10

DEFAULT_PACE = TripPace.MODERATE

# Variation sets indexed by variation_index % 3
VARIATION_START_HOURS = (8, 9, 10)
VARIATION_BUFFERS = (30, 45, 60)

# Candidate rotation per variation step
VARIATION_ROTATION = 7

NAME_TEMPLATES = (
    "{city} {activities} Adventure",
    "{city} {activities} Getaway",
    "Ultimate {city} {activities} Experience",
    "{city} {activities} Escape",
    "Discover {city}: {activities} Journey",
    "{city} {activities} Expedition",
    "Best of {city} {activities} Retreat",
    "{city} {activities} Explorer Trip",
)

DEPARTURE_MINUTES = 17 * 60
# Activities must finish by 22:00
LATEST_ACTIVITY_END = 22 * 60
SERVICE_FEE_RATE = 0.05
MINIMUM_SERVICE_FEE = 50.0

DEFAULT_REGION = ("Colorado", "CO")


def calculate_activity_cost(activities: Sequence[Activity]) -> float:
    """Sum of per-person prices of the scheduled activities"""
    return round(sum(activity.price_per_person for activity in activities), 2)


def calculate_service_fee(total_cost: float) -> float:
    """
    Service fee charged on a booking

    Args:
        total_cost (float): Booking total

    Returns:
        float: 5% of the total, at least $50
    """
    return max(total_cost * SERVICE_FEE_RATE, MINIMUM_SERVICE_FEE)


def describe_activity_terms(terms: Sequence[str]) -> str:
    """"a", "a and b" or "a, b, and more" for the requested activity tags"""
    if not terms:
        return ""
    if len(terms) == 1:
        return terms[0]
    if len(terms) == 2:
        return f"{terms[0]} and {terms[1]}"
    return f"{terms[0]}, {terms[1]}, and more"


class ItineraryGenerator:
    """
    Builds complete itineraries from activity candidates and a query
    """

    def __init__(self, store: CatalogStore,
                 semantic_search: Optional[VertexSearchClient] = None,
                 optimizer: Optional[RouteOptimizer] = None,
                 activity_collection: Optional[str] = None):
        """
        Initialize Itinerary Generator

        Args:
            store (CatalogStore): Catalog holding bookable activities
            semantic_search (VertexSearchClient): Optional search provider
                consulted before the catalog
            optimizer (RouteOptimizer): Optional optimizer used to order each
                day's activities by travel time
            activity_collection (str): Activities collection name
        """
        self.logger = logging.getLogger(__name__)
        self.error_handler = ErrorHandler()

        self.store = store
        self.semantic_search = semantic_search
        self.optimizer = optimizer
        self.activity_collection = activity_collection or config.ACTIVITY_COLLECTION

        self.logger.info(
            f"Itinerary Generator initialized (semantic search={'yes' if semantic_search else 'no'}, "
            f"route optimization={'yes' if optimizer else 'no'})"
        )

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    @measure_time(category="generation")
    def generate(self, query: SearchQuery, candidates: Optional[List[Activity]] = None) -> Itinerary:
        """
        Generate one itinerary for a query

        Args:
            query (SearchQuery): Traveler constraints, dates required
            candidates (List[Activity]): Pre-fetched candidates (fetched when omitted)

        Returns:
            Itinerary: Generated itinerary tagged "generated"

        Raises:
            MissingDates: If arrival or departure is absent
            UnparseableDate: If a timestamp matches no supported format
            NoActivitiesFound: If no candidate activities exist
        """
        pace = query.trip_pace or DEFAULT_PACE
        return self._build(
            query, candidates,
            start_hour=pace.day_start_hour,
            buffer_minutes=pace.buffer_minutes,
            rotation=0,
            name_template=0,
            existing_names=set(),
        )

    @measure_time(category="generation")
    def generate_unique(self, query: SearchQuery, variation_index: int,
                        existing_names: Optional[Set[str]] = None,
                        candidates: Optional[List[Activity]] = None) -> Itinerary:
        """
        Generate a sibling itinerary that differs from earlier variations

        The name template, the rotation of the candidate list, the day start
        hour and the inter-activity buffer all depend on ``variation_index``.

        Args:
            query (SearchQuery): Traveler constraints, dates required
            variation_index (int): Variation number, starting at 0
            existing_names (Set[str]): Trip names already taken
            candidates (List[Activity]): Pre-fetched candidates

        Returns:
            Itinerary: Generated itinerary with a name outside ``existing_names``

        Raises:
            MissingDates, UnparseableDate, NoActivitiesFound: As ``generate``
        """
        return self._build(
            query, candidates,
            start_hour=VARIATION_START_HOURS[variation_index % len(VARIATION_START_HOURS)],
            buffer_minutes=VARIATION_BUFFERS[variation_index % len(VARIATION_BUFFERS)],
            rotation=VARIATION_ROTATION * variation_index,
            name_template=variation_index % len(NAME_TEMPLATES),
            existing_names=existing_names or set(),
        )

    def fetch_activities(self, query: SearchQuery) -> List[Activity]:
        """
        Candidate activities for a query

        Semantic search is tried first; when it is not configured, fails
        or returns nothing, the catalog is queried with case-insensitive
        regexes of the requested tags against activity type or title.

        Returns:
            List[Activity]: Candidates with catalog identities

        Raises:
            CatalogUnavailable: If the catalog cannot be read
        """
        if self.semantic_search is not None:
            location_text = query.locations[0] if query.locations else ""
            try:
                found = self.semantic_search.search_activities(query.activities, location_text)
            except (NotConfigured, DependencyUnavailable) as e:
                self.error_handler.handle_error(
                    "Semantic search unavailable, using catalog activities",
                    exception=e,
                    severity=ErrorSeverity.LOW,
                    context=ErrorContext(module=__name__, function="fetch_activities")
                )
                found = []

            found = [activity for activity in found if activity.id]
            if found:
                self.logger.info(f"Using {len(found)} activities from semantic search")
                return found

        conditions = []
        for tag in query.activities:
            pattern = {"$regex": re.escape(tag), "$options": "i"}
            conditions.append({"activity_types": pattern})
            conditions.append({"title": pattern})
        query_filter = {"$or": conditions} if conditions else {}

        documents = self.store.find(self.activity_collection, query_filter, limit=CATALOG_FALLBACK_LIMIT)

        activities = []
        for document in documents:
            try:
                activities.append(Activity.from_document(document))
            except (ValueError, TypeError) as e:
                self.error_handler.handle_data_error("Activity", str(e), document)

        self.logger.info(f"Using {len(activities)} activities from the catalog")
        return [activity for activity in activities if activity.id]

    # =========================================================================
    # ASSEMBLY
    # =========================================================================

    def _build(self, query: SearchQuery, candidates: Optional[List[Activity]],
               start_hour: int, buffer_minutes: int, rotation: int,
               name_template: int, existing_names: Set[str]) -> Itinerary:
        if not query.has_dates:
            raise MissingDates("Arrival and departure are required to generate an itinerary")

        now = datetime.now()
        arrival = parse_trip_datetime(query.arrival_datetime, now=now)
        departure = parse_trip_datetime(query.departure_datetime, now=now)
        if departure < arrival:
            raise GenerationError(f"Departure {departure} precedes arrival {arrival}")
        length_days = max(1, (departure - arrival).days)

        if candidates is None:
            candidates = self.fetch_activities(query)
        if not candidates:
            raise NoActivitiesFound(f"No activities match {list(query.activities)}")

        if rotation:
            offset = rotation % len(candidates)
            candidates = candidates[offset:] + candidates[:offset]

        start_location, end_location = self._select_locations(query, candidates)
        pace = query.trip_pace or DEFAULT_PACE

        days, scheduled = self._build_days(
            candidates, pace, length_days, start_hour, buffer_minutes,
            start_location, end_location, query.transportation
        )

        trip_name = self._choose_name(start_location, end_location, query, name_template, existing_names)
        min_group = max(1, query.adults or 0)
        max_group = max(min_group, query.total_travelers or 0)
        timestamp = utc_now()

        itinerary = Itinerary(
            id=generate_object_id(),
            trip_name=trip_name,
            description=self._describe(candidates, start_location, end_location, query),
            min_group=min_group,
            max_group=max_group,
            length_days=length_days,
            length_hours=length_days * 24,
            start_location=start_location,
            end_location=end_location,
            days=days,
            person_cost=calculate_activity_cost(scheduled),
            arrival_datetime=arrival.isoformat(),
            departure_datetime=departure.isoformat(),
            adults=query.adults,
            children=query.children,
            infants=query.infants,
            lodging=list(query.lodging),
            transportation=query.transportation,
            activities=[
                ActivityLabel(
                    label=activity.title,
                    description=activity.description,
                    tags=list(activity.activity_types) + list(activity.tags),
                )
                for activity in scheduled
            ],
            tag="generated",
            created_at=timestamp,
            updated_at=timestamp,
        )

        self.logger.info(
            f"Generated '{trip_name}': {length_days} days, {len(scheduled)} activities, "
            f"${itinerary.person_cost:.2f} per person"
        )
        return itinerary

    def _select_locations(self, query: SearchQuery,
                          candidates: List[Activity]) -> Tuple[Location, Location]:
        """Start at the first requested location and end at the last one"""
        def locate(city: str, state: str) -> Location:
            return Location(city=city, state=state, coordinates=resolve_coordinates(city, state))

        if query.locations:
            start = locate(*parse_location(query.locations[0]))
            end = locate(*parse_location(query.locations[-1]))
            return start, end

        address = candidates[0].address
        if address.city:
            location = locate(address.city, address.state)
            return location, location

        region = Location(city=DEFAULT_REGION[0], state=DEFAULT_REGION[1], coordinates=DEFAULT_COORDINATES)
        return region, region

    def _pick_day_activities(self, candidates: List[Activity], used: Set[str],
                             pace: TripPace) -> List[Activity]:
        """
        Greedy pick of unused activities that fit the pace budget for one day

        Activities that would exceed the hour budget are skipped; picking
        stops once the activity count or the hour budget is reached.
        """
        chosen = []
        hours = 0.0
        for activity in candidates:
            if len(chosen) >= pace.typical_activities_per_day or hours >= pace.max_activity_hours_per_day:
                break
            if activity.id in used:
                continue
            if hours + activity.duration_hours > pace.max_activity_hours_per_day:
                continue
            chosen.append(activity)
            used.add(activity.id)
            hours += activity.duration_hours
        return chosen

    def _build_days(self, candidates: List[Activity], pace: TripPace, length_days: int,
                    start_hour: int, buffer_minutes: int,
                    start_location: Location, end_location: Location,
                    transportation: Optional[str]) -> Tuple[Dict[str, List[DayItem]], List[Activity]]:
        """
        Day items for every day plus the activities scheduled overall

        Times within a day never decrease.
        """
        days: Dict[str, List[DayItem]] = {}
        scheduled: List[Activity] = []
        used: Set[str] = set()
        mode = f" ({transportation})" if transportation else ""

        for day_number in range(1, length_days + 1):
            items: List[DayItem] = []
            current = start_hour * 60

            if day_number == 1:
                items.append(TransportationItem(
                    time=minutes_to_clock(current),
                    name=f"Arrival and Check-in{mode}",
                    location_name=start_location.display_name,
                    coordinates=start_location.coordinates,
                ))
                current += buffer_minutes

            chosen = self._pick_day_activities(candidates, used, pace)
            if self.optimizer is not None and len(chosen) > 1:
                chosen = self.optimizer.order_activities(chosen, start_location.coordinates)

            last_end = current
            placed = []
            for activity in chosen:
                if current + activity.duration_minutes > LATEST_ACTIVITY_END:
                    self.logger.debug(f"'{activity.title}' would end after 22:00 on day {day_number}, stopping")
                    break
                items.append(ActivityItem(time=minutes_to_clock(current), activity_id=activity.id))
                placed.append(activity)
                last_end = current + activity.duration_minutes
                current = last_end + buffer_minutes

            # Unplaced activities stay available for later days
            for activity in chosen[len(placed):]:
                used.discard(activity.id)
            scheduled.extend(placed)

            if day_number == length_days:
                items.append(TransportationItem(
                    time=minutes_to_clock(max(DEPARTURE_MINUTES, last_end)),
                    name=f"Check-out and Departure{mode}",
                    location_name=end_location.display_name,
                    coordinates=end_location.coordinates,
                ))

            days[f"day{day_number}"] = items

        return days, scheduled

    def _choose_name(self, start: Location, end: Location, query: SearchQuery,
                     template_index: int, existing_names: Set[str]) -> str:
        """Template name not in ``existing_names``, timestamp-suffixed when all collide"""
        city = start.city if normalize_text(start.city) == normalize_text(end.city) else f"{start.city} to {end.city}"
        activities = describe_activity_terms(list(query.activities))
        taken = {normalize_text(name) for name in existing_names}

        names = []
        for offset in range(len(NAME_TEMPLATES)):
            template = NAME_TEMPLATES[(template_index + offset) % len(NAME_TEMPLATES)]
            name = " ".join(template.format(city=city, activities=activities).split())
            names.append(name)
            if normalize_text(name) not in taken:
                return name

        return f"{names[0]} {datetime.now().strftime('%Y%m%d%H%M%S%f')}"

    def _describe(self, candidates: List[Activity], start: Location, end: Location,
                  query: SearchQuery) -> str:
        if normalize_text(start.city) == normalize_text(end.city):
            parts = [f"Discover the best of {start.city} with this expertly crafted itinerary"]
        else:
            parts = [f"Experience an unforgettable journey from {start.city} to {end.city}"]

        if query.activities:
            parts.append(f"featuring {', '.join(query.activities)} activities")

        activity_types = []
        for activity in candidates:
            for activity_type in activity.activity_types:
                if activity_type not in activity_types:
                    activity_types.append(activity_type)
        if activity_types:
            parts.append(f"including {', '.join(activity_types[:3])}")

        parts.append(
            "This carefully crafted itinerary combines adventure, relaxation, and local "
            "experiences to create memories that will last a lifetime."
        )
        return ". ".join(parts)
