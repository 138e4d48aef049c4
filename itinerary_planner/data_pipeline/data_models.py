"""
Data Models for the Itinerary Planner
=====================================

Centralized data models to avoid circular imports.
Contains the search query, catalog activities, itineraries with their
day items, and distance cache rows, plus conversion to and from catalog
documents.

Author: Hybrid Trip Planner Team
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, List, Tuple, Union, Iterator, Any


_CLOCK_PATTERN = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?$")


def _normalize_clock(value: str) -> str:
    """Validate HH:MM[:SS] text and return it as HH:MM:SS"""
    match = _CLOCK_PATTERN.match(str(value).strip())
    if not match:
        raise ValueError(f"Invalid day item time: {value!r}")
    hours, minutes = int(match.group(1)), int(match.group(2))
    seconds = int(match.group(3) or 0)
    if hours > 23 or minutes > 59 or seconds > 59:
        raise ValueError(f"Invalid day item time: {value!r}")
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


def _as_id(value: Any) -> Optional[str]:
    """Coerce a stored identity (str, ObjectId-like or {"$oid": ...}) to text"""
    if value is None:
        return None
    if isinstance(value, dict) and "$oid" in value:
        return str(value["$oid"])
    return str(value)


def _as_coordinates(value: Any) -> Tuple[float, float]:
    if not value or len(value) < 2:
        return 0.0, 0.0
    return float(value[0]), float(value[1])


def _as_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def utc_now() -> datetime:
    """Current time as a naive UTC datetime, the form stored in documents"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class TripPace(Enum):
    """
    Pace profile requested by travelers

    Each profile fixes how many activities a day typically holds, the
    activity-hour budget per day, the clock hour days start at and the
    buffer kept between consecutive activities.
    """
    RELAXED = "relaxed"
    MODERATE = "moderate"
    ADVENTURE = "adventure"

    @property
    def typical_activities_per_day(self) -> int:
        return {"relaxed": 2, "moderate": 3, "adventure": 5}[self.value]

    @property
    def max_activity_hours_per_day(self) -> float:
        return {"relaxed": 4.0, "moderate": 6.0, "adventure": 10.0}[self.value]

    @property
    def day_start_hour(self) -> int:
        return {"relaxed": 10, "moderate": 9, "adventure": 8}[self.value]

    @property
    def buffer_minutes(self) -> int:
        return {"relaxed": 60, "moderate": 45, "adventure": 30}[self.value]

    @classmethod
    def from_value(cls, value: Optional[str]) -> Optional["TripPace"]:
        """Parse a case-insensitive pace name; None stays None"""
        if value is None or isinstance(value, cls):
            return value
        text = str(value).strip().lower()
        if not text:
            return None
        for pace in cls:
            if pace.value == text:
                return pace
        raise ValueError(f"Unknown trip pace: {value!r}")


@dataclass(frozen=True)
class SearchQuery:
    """
    Traveler constraints for one search request

    Attributes:
        locations (Tuple[str]): Requested "City[, State]" strings in order
        arrival_datetime (str): Raw arrival timestamp, if given
        departure_datetime (str): Raw departure timestamp, if given
        adults (int): Adult travelers; group filtering only applies when set
        children (int): Child travelers
        infants (int): Infant travelers
        activities (Tuple[str]): Desired activity tags
        lodging (Tuple[str]): Desired lodging tags
        transportation (str): Desired transportation mode
        trip_pace (TripPace): Desired pace profile
    """
    locations: Tuple[str, ...] = ()
    arrival_datetime: Optional[str] = None
    departure_datetime: Optional[str] = None
    adults: Optional[int] = None
    children: Optional[int] = None
    infants: Optional[int] = None
    activities: Tuple[str, ...] = ()
    lodging: Tuple[str, ...] = ()
    transportation: Optional[str] = None
    trip_pace: Optional[TripPace] = None

    def __post_init__(self):
        for name in ("locations", "activities", "lodging"):
            values = getattr(self, name) or ()
            cleaned = tuple(str(v).strip() for v in values if v is not None and str(v).strip())
            object.__setattr__(self, name, cleaned)

        for name in ("adults", "children", "infants"):
            count = getattr(self, name)
            if count is not None and count < 0:
                raise ValueError(f"{name} must be non-negative, got {count}")

        if self.transportation is not None and not str(self.transportation).strip():
            object.__setattr__(self, "transportation", None)

        object.__setattr__(self, "trip_pace", TripPace.from_value(self.trip_pace))

    @property
    def total_travelers(self) -> Optional[int]:
        """adults + children + infants, or None when adults is not given"""
        if self.adults is None:
            return None
        return self.adults + (self.children or 0) + (self.infants or 0)

    @property
    def has_dates(self) -> bool:
        return bool(self.arrival_datetime) and bool(self.departure_datetime)

    @property
    def has_criteria(self) -> bool:
        return bool(self.locations or self.activities)

    def with_dates(self, arrival: str, departure: str) -> "SearchQuery":
        """Copy of this query with the given arrival and departure"""
        values = {name: getattr(self, name) for name in self.__dataclass_fields__}
        values.update(arrival_datetime=arrival, departure_datetime=departure)
        return SearchQuery(**values)

    @classmethod
    def from_dict(cls, data: Dict) -> "SearchQuery":
        """
        Build a query from the request payload handed over by the HTTP layer

        Args:
            data (Dict): Payload with optional lists, party counts and a
                lowercase ``trip_pace`` name

        Returns:
            SearchQuery: Validated immutable query
        """
        def _int(key):
            value = data.get(key)
            return int(value) if value is not None else None

        return cls(
            locations=tuple(data.get("locations") or ()),
            arrival_datetime=data.get("arrival_datetime"),
            departure_datetime=data.get("departure_datetime"),
            adults=_int("adults"),
            children=_int("children"),
            infants=_int("infants"),
            activities=tuple(data.get("activities") or ()),
            lodging=tuple(data.get("lodging") or ()),
            transportation=data.get("transportation"),
            trip_pace=TripPace.from_value(data.get("trip_pace")),
        )


@dataclass
class Address:
    """Street address of a bookable activity"""
    street: str = ""
    city: str = ""
    state: str = ""
    zip_code: str = ""
    country: str = "USA"

    @property
    def full_address(self) -> str:
        parts = [self.street, self.city, self.state, self.zip_code, self.country]
        return ", ".join(part for part in parts if part)

    def to_document(self) -> Dict:
        return {
            "street": self.street,
            "city": self.city,
            "state": self.state,
            "zip": self.zip_code,
            "country": self.country,
        }

    @classmethod
    def from_document(cls, doc: Optional[Dict]) -> "Address":
        doc = doc or {}
        return cls(
            street=doc.get("street") or "",
            city=doc.get("city") or "",
            state=doc.get("state") or "",
            zip_code=str(doc.get("zip") or doc.get("zip_code") or ""),
            country=doc.get("country") or "USA",
        )


@dataclass
class CapacityRange:
    """Minimum and maximum participants for an activity"""
    minimum: int = 1
    maximum: int = 20

    def __post_init__(self):
        if self.minimum < 0 or self.minimum > self.maximum:
            raise ValueError(f"Invalid capacity range {self.minimum}-{self.maximum}")

    def to_document(self) -> Dict:
        return {"minimum": self.minimum, "maximum": self.maximum}

    @classmethod
    def from_document(cls, doc: Optional[Dict]) -> "CapacityRange":
        doc = doc or {}
        return cls(minimum=int(doc.get("minimum", 1)), maximum=int(doc.get("maximum", 20)))


@dataclass
class TimeSlot:
    """Daily availability window, both ends as HH:MM"""
    start: str
    end: str

    def to_document(self) -> Dict:
        return {"start": self.start, "end": self.end}


@dataclass
class Activity:
    """
    Bookable catalog activity

    Attributes:
        id (str): Catalog identity
        title (str): Display title
        description (str): Long description
        activity_types (List[str]): One or more activity-type tags
        tags (List[str]): Free-form tags
        price_per_person (float): Non-negative price per traveler
        duration_minutes (int): Positive duration
        address (Address): Where the activity takes place
        capacity (CapacityRange): Participant range
        min_age (int): Minimum participant age, if restricted
        max_weight_lbs (int): Maximum participant weight, if restricted
        min_height_inches (int): Minimum participant height, if restricted
        daily_time_slots (List[TimeSlot]): Daily availability windows
    """
    id: Optional[str]
    title: str
    description: str = ""
    activity_types: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    price_per_person: float = 0.0
    duration_minutes: int = 120
    address: Address = field(default_factory=Address)
    capacity: CapacityRange = field(default_factory=CapacityRange)
    min_age: Optional[int] = None
    max_weight_lbs: Optional[int] = None
    min_height_inches: Optional[int] = None
    daily_time_slots: List[TimeSlot] = field(default_factory=list)

    def __post_init__(self):
        if self.price_per_person < 0:
            raise ValueError(f"price_per_person must be non-negative, got {self.price_per_person}")
        if self.duration_minutes <= 0:
            raise ValueError(f"duration_minutes must be positive, got {self.duration_minutes}")

    @property
    def duration_hours(self) -> float:
        return self.duration_minutes / 60.0

    def searchable_fields(self) -> List[str]:
        """Lowercased type, tag, title and description text used for matching"""
        values = list(self.activity_types) + list(self.tags) + [self.title, self.description]
        return [value.lower() for value in values if value]

    def to_document(self) -> Dict:
        doc = {
            "title": self.title,
            "description": self.description,
            "activity_types": list(self.activity_types),
            "tags": list(self.tags),
            "price_per_person": self.price_per_person,
            "duration_minutes": self.duration_minutes,
            "address": self.address.to_document(),
            "capacity": self.capacity.to_document(),
            "restrictions": {
                "min_age": self.min_age,
                "max_weight_lbs": self.max_weight_lbs,
                "min_height_inches": self.min_height_inches,
            },
            "daily_time_slots": [slot.to_document() for slot in self.daily_time_slots],
        }
        if self.id is not None:
            doc["_id"] = self.id
        return doc

    @classmethod
    def from_document(cls, doc: Dict) -> "Activity":
        restrictions = doc.get("restrictions") or {}
        return cls(
            id=_as_id(doc.get("_id")),
            title=doc.get("title") or "",
            description=doc.get("description") or "",
            activity_types=list(doc.get("activity_types") or []),
            tags=list(doc.get("tags") or []),
            price_per_person=float(doc.get("price_per_person") or 0.0),
            duration_minutes=int(doc.get("duration_minutes") or 120),
            address=Address.from_document(doc.get("address")),
            capacity=CapacityRange.from_document(doc.get("capacity")),
            min_age=restrictions.get("min_age"),
            max_weight_lbs=restrictions.get("max_weight_lbs"),
            min_height_inches=restrictions.get("min_height_inches"),
            daily_time_slots=[
                TimeSlot(start=slot.get("start", ""), end=slot.get("end", ""))
                for slot in doc.get("daily_time_slots") or []
            ],
        )


@dataclass
class Location:
    """City, state and (latitude, longitude) of an itinerary endpoint"""
    city: str
    state: str
    coordinates: Tuple[float, float] = (0.0, 0.0)

    @property
    def display_name(self) -> str:
        return f"{self.city}, {self.state}" if self.state else self.city

    def to_document(self) -> Dict:
        return {"city": self.city, "state": self.state, "coordinates": list(self.coordinates)}

    @classmethod
    def from_document(cls, doc: Optional[Dict]) -> "Location":
        doc = doc or {}
        return cls(
            city=doc.get("city") or "",
            state=doc.get("state") or "",
            coordinates=_as_coordinates(doc.get("coordinates")),
        )


@dataclass
class ActivityLabel:
    """Labeled activity summary stored on catalog itineraries"""
    label: str
    description: str = ""
    tags: List[str] = field(default_factory=list)

    def to_document(self) -> Dict:
        return {"label": self.label, "description": self.description, "tags": list(self.tags)}

    @classmethod
    def from_document(cls, doc: Dict) -> "ActivityLabel":
        return cls(
            label=doc.get("label") or "",
            description=doc.get("description") or "",
            tags=list(doc.get("tags") or []),
        )


# =============================================================================
# DAY ITEMS
# =============================================================================

@dataclass(frozen=True)
class TransportationItem:
    """Travel leg at a given time to a named location"""
    time: str
    name: str
    location_name: str
    coordinates: Tuple[float, float] = (0.0, 0.0)

    def __post_init__(self):
        object.__setattr__(self, "time", _normalize_clock(self.time))

    def to_document(self) -> Dict:
        return {
            "type": "transportation",
            "time": self.time,
            "name": self.name,
            "location": {"name": self.location_name, "coordinates": list(self.coordinates)},
        }


@dataclass(frozen=True)
class ActivityItem:
    """Scheduled catalog activity referenced by identity"""
    time: str
    activity_id: str

    def __post_init__(self):
        object.__setattr__(self, "time", _normalize_clock(self.time))

    def to_document(self) -> Dict:
        return {"type": "activity", "time": self.time, "activity_id": self.activity_id}


@dataclass(frozen=True)
class AccommodationItem:
    """Lodging stay referenced by identity"""
    time: str
    accommodation_id: str

    def __post_init__(self):
        object.__setattr__(self, "time", _normalize_clock(self.time))

    def to_document(self) -> Dict:
        return {"type": "accommodation", "time": self.time, "accommodation_id": self.accommodation_id}


DayItem = Union[TransportationItem, ActivityItem, AccommodationItem]


def day_item_from_document(doc: Dict) -> DayItem:
    """
    Build the day item variant named by the document's ``type`` field

    Raises:
        ValueError: For unknown variants or missing fields
    """
    item_type = doc.get("type")
    if item_type == "transportation":
        location = doc.get("location") or {}
        return TransportationItem(
            time=doc["time"],
            name=doc.get("name") or "",
            location_name=location.get("name") or "",
            coordinates=_as_coordinates(location.get("coordinates")),
        )
    elif item_type == "activity":
        return ActivityItem(time=doc["time"], activity_id=_as_id(doc["activity_id"]))
    elif item_type in ("accommodation", "accomodation"):
        return AccommodationItem(time=doc["time"], accommodation_id=_as_id(doc["accommodation_id"]))
    raise ValueError(f"Unknown day item type: {item_type!r}")


def day_sort_key(label: str) -> Tuple[int, str]:
    """Order day labels such as "day1", "day2", "day10" numerically"""
    digits = re.findall(r"\d+", label)
    return (int(digits[-1]) if digits else 0, label)


@dataclass
class Itinerary:
    """
    Planning unit returned by search and generation (a featured vacation)

    Attributes:
        id (str): Catalog identity, None until persisted
        trip_name (str): Display name
        description (str): Long description
        min_group (int): Smallest supported party
        max_group (int): Largest supported party
        length_days (int): Trip length in days
        length_hours (int): Trip length in hours
        start_location (Location): Where the trip starts
        end_location (Location): Where the trip ends
        days (Dict[str, List[DayItem]]): Day label -> ordered day items
        person_cost (float): Estimated cost per traveler
        activities (List[ActivityLabel]): Labeled activity summaries
        tag (str): Free-form marker, "generated" for synthesized trips
        images (List[str]): Display image URLs
        match_score (float): Transient 0-100 relevance set during ranking
        score_breakdown (Dict[str, float]): Transient per-dimension scores
    """
    id: Optional[str]
    trip_name: str
    description: str
    min_group: int
    max_group: int
    length_days: int
    length_hours: int
    start_location: Location
    end_location: Location
    days: Dict[str, List[DayItem]] = field(default_factory=dict)
    person_cost: float = 0.0
    min_age: Optional[int] = None
    arrival_datetime: Optional[str] = None
    departure_datetime: Optional[str] = None
    adults: Optional[int] = None
    children: Optional[int] = None
    infants: Optional[int] = None
    lodging: List[str] = field(default_factory=list)
    transportation: Optional[str] = None
    activities: List[ActivityLabel] = field(default_factory=list)
    tag: Optional[str] = None
    images: List[str] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    match_score: Optional[float] = None
    score_breakdown: Optional[Dict[str, float]] = None

    def __post_init__(self):
        if self.min_group > self.max_group:
            raise ValueError(f"min_group {self.min_group} exceeds max_group {self.max_group}")

    def ordered_days(self) -> List[Tuple[str, List[DayItem]]]:
        return sorted(self.days.items(), key=lambda entry: day_sort_key(entry[0]))

    def iter_day_items(self) -> Iterator[DayItem]:
        for _, items in self.ordered_days():
            yield from items

    def activity_ids(self) -> List[str]:
        return [item.activity_id for item in self.iter_day_items() if isinstance(item, ActivityItem)]

    def activity_count(self) -> int:
        return len(self.activity_ids())

    def has_accommodation(self) -> bool:
        return any(isinstance(item, AccommodationItem) for item in self.iter_day_items())

    def transportation_items(self) -> List[TransportationItem]:
        return [item for item in self.iter_day_items() if isinstance(item, TransportationItem)]

    def to_document(self, include_transient: bool = False) -> Dict:
        """
        Convert to a catalog document

        Args:
            include_transient (bool): Include match score metadata, which is
                never persisted

        Returns:
            Dict: Catalog document
        """
        doc = {
            "trip_name": self.trip_name,
            "description": self.description,
            "person_cost": self.person_cost,
            "min_age": self.min_age,
            "min_group": self.min_group,
            "max_group": self.max_group,
            "length_days": self.length_days,
            "length_hours": self.length_hours,
            "start_location": self.start_location.to_document(),
            "end_location": self.end_location.to_document(),
            "days": {
                label: [item.to_document() for item in items]
                for label, items in self.ordered_days()
            },
            "arrival_datetime": self.arrival_datetime,
            "departure_datetime": self.departure_datetime,
            "adults": self.adults,
            "children": self.children,
            "infants": self.infants,
            "lodging": list(self.lodging),
            "transportation": self.transportation,
            "activities": [label.to_document() for label in self.activities],
            "tag": self.tag,
            "images": list(self.images),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if self.id is not None:
            doc["_id"] = self.id
        if include_transient:
            doc["match_score"] = self.match_score
            doc["score_breakdown"] = self.score_breakdown
        return doc

    @classmethod
    def from_document(cls, doc: Dict) -> "Itinerary":
        days = {
            label: [day_item_from_document(item) for item in items or []]
            for label, items in (doc.get("days") or {}).items()
        }
        # Missing group bounds default to 1; stored values, zero included, are kept
        min_group = int(doc["min_group"]) if doc.get("min_group") is not None else 1
        max_group = int(doc["max_group"]) if doc.get("max_group") is not None else max(min_group, 1)
        return cls(
            id=_as_id(doc.get("_id")),
            trip_name=doc.get("trip_name") or "",
            description=doc.get("description") or "",
            min_group=min_group,
            max_group=max_group,
            length_days=int(doc.get("length_days") or 0),
            length_hours=int(doc.get("length_hours") or 0),
            start_location=Location.from_document(doc.get("start_location")),
            end_location=Location.from_document(doc.get("end_location")),
            days=days,
            person_cost=float(doc.get("person_cost") or 0.0),
            min_age=doc.get("min_age"),
            arrival_datetime=doc.get("arrival_datetime"),
            departure_datetime=doc.get("departure_datetime"),
            adults=doc.get("adults"),
            children=doc.get("children"),
            infants=doc.get("infants"),
            lodging=list(doc.get("lodging") or []),
            transportation=doc.get("transportation"),
            activities=[ActivityLabel.from_document(a) for a in doc.get("activities") or []],
            tag=doc.get("tag"),
            images=list(doc.get("images") or []),
            created_at=_as_datetime(doc.get("created_at")),
            updated_at=_as_datetime(doc.get("updated_at")),
        )


# =============================================================================
# DISTANCE
# =============================================================================

class TravelMode(Enum):
    """Travel modes understood by the distance provider"""
    DRIVING = "driving"
    WALKING = "walking"
    TRANSIT = "transit"
    BICYCLING = "bicycling"


@dataclass
class DistanceResult:
    """
    Resolved travel between two coordinates

    Attributes:
        distance_meters (float): Route length
        duration_seconds (float): Travel time without traffic
        duration_in_traffic_seconds (float): Traffic-aware travel time, if known
        from_cache (bool): Whether the result came from the distance cache
        estimated (bool): Whether the result is a Haversine estimate
    """
    distance_meters: float
    duration_seconds: float
    duration_in_traffic_seconds: Optional[float] = None
    from_cache: bool = False
    estimated: bool = False

    @property
    def travel_minutes(self) -> float:
        seconds = self.duration_in_traffic_seconds
        if seconds is None:
            seconds = self.duration_seconds
        return seconds / 60.0


@dataclass
class CachedDistance:
    """
    Distance cache row

    Attributes:
        origin (Tuple[float, float]): Origin (lat, lng)
        destination (Tuple[float, float]): Destination (lat, lng)
        travel_mode (TravelMode): Mode the lookup used
        with_traffic (bool): Whether the lookup was traffic-aware
        distance_meters (float): Route length
        duration_seconds (float): Travel time without traffic
        duration_in_traffic_seconds (float): Traffic-aware travel time
        cached_at (datetime): When the row was written
        expires_at (datetime): When the row stops being served
    """
    origin: Tuple[float, float]
    destination: Tuple[float, float]
    travel_mode: TravelMode
    with_traffic: bool
    distance_meters: float
    duration_seconds: float
    duration_in_traffic_seconds: Optional[float]
    cached_at: datetime
    expires_at: datetime

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utc_now()) >= self.expires_at

    def to_result(self) -> DistanceResult:
        return DistanceResult(
            distance_meters=self.distance_meters,
            duration_seconds=self.duration_seconds,
            duration_in_traffic_seconds=self.duration_in_traffic_seconds,
            from_cache=True,
        )

    def to_document(self) -> Dict:
        return {
            "origin_lat": self.origin[0],
            "origin_lng": self.origin[1],
            "destination_lat": self.destination[0],
            "destination_lng": self.destination[1],
            "travel_mode": self.travel_mode.value,
            "with_traffic": self.with_traffic,
            "distance_meters": self.distance_meters,
            "duration_seconds": self.duration_seconds,
            "duration_in_traffic_seconds": self.duration_in_traffic_seconds,
            "cached_at": self.cached_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
        }

    @classmethod
    def from_document(cls, doc: Dict) -> "CachedDistance":
        return cls(
            origin=(float(doc["origin_lat"]), float(doc["origin_lng"])),
            destination=(float(doc["destination_lat"]), float(doc["destination_lng"])),
            travel_mode=TravelMode(doc["travel_mode"]),
            with_traffic=bool(doc["with_traffic"]),
            distance_meters=float(doc["distance_meters"]),
            duration_seconds=float(doc["duration_seconds"]),
            duration_in_traffic_seconds=doc.get("duration_in_traffic_seconds"),
            cached_at=_as_datetime(doc["cached_at"]),
            expires_at=_as_datetime(doc["expires_at"]),
        )


# Export classes for easy import
__all__ = [
    'TripPace', 'SearchQuery', 'Address', 'CapacityRange', 'TimeSlot', 'Activity',
    'Location', 'ActivityLabel', 'TransportationItem', 'ActivityItem',
    'AccommodationItem', 'DayItem', 'day_item_from_document', 'day_sort_key',
    'Itinerary', 'TravelMode', 'DistanceResult', 'CachedDistance', 'utc_now'
]
