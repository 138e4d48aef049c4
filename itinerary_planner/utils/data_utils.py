"""
Data Validation and Processing Utilities
=======================================

Essential data helpers used across the planner.
Provides coordinate validation, distance calculations, date parsing and
clock-time arithmetic.

Key Features:
- Geographic coordinate validation and tolerance comparison
- Haversine distance formula in kilometers and miles
- Trip timestamp parsing across the literal formats clients send
- "City, State" splitting and text normalization
- HH:MM:SS clock formatting for day schedules

Functions:
    validate_coordinates: Check if latitude/longitude are valid
    calculate_distance: Haversine distance in kilometers
    calculate_distance_miles: Haversine distance in miles
    parse_trip_datetime: Parse a trip timestamp in any supported format
    parse_location: Split "City, State" text
    within_tolerance: Compare two coordinate pairs within a tolerance

Author: Hybrid Trip Planner Team
"""

import re
import math
import uuid
import logging
from typing import Optional, Tuple
from datetime import datetime, timezone

from .error_handler import UnparseableDate


# Module logger
logger = logging.getLogger(__name__)

# Constants for geographic calculations
EARTH_RADIUS_KM = 6371.0
EARTH_RADIUS_MILES = 3959.0
MAX_LATITUDE = 90.0
MIN_LATITUDE = -90.0
MAX_LONGITUDE = 180.0
MIN_LONGITUDE = -180.0

MINUTES_PER_DAY = 24 * 60

# "Jun 5", "June 5, 2025", "Jun. 5 2025T10:30", "Jun 5T10:30:15"
_MONTH_DAY_PATTERN = re.compile(
    r"^([A-Za-z]{3})[a-z]*\.? (\d{1,2})(?:,? (\d{4}))?(?:T(\d{1,2}):(\d{2})(?::(\d{2}))?)?$"
)

_LITERAL_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%m/%d/%Y",
    "%m/%d/%Y %H:%M",
    "%m/%d/%Y %H:%M:%S",
)

# Static geocoding table; no live geocoding is performed
CITY_COORDINATES = {
    "denver": (39.7392, -104.9903),
    "colorado springs": (38.8339, -104.8214),
    "boulder": (40.0150, -105.2705),
    "aspen": (39.1911, -106.8175),
    "vail": (39.6403, -106.3742),
    "fort collins": (40.5853, -105.0844),
    "grand junction": (39.0639, -108.5506),
    "durango": (37.2753, -107.8801),
    "steamboat springs": (40.4850, -106.8317),
    "breckenridge": (39.4817, -106.0384),
    "keystone": (39.5791, -105.9347),
    "telluride": (37.9375, -107.8123),
    "winter park": (39.8911, -105.7631),
    "crested butte": (38.8697, -106.9878),
    "estes park": (40.3772, -105.5217),
    "glenwood springs": (39.5505, -107.3248),
    "pagosa springs": (37.2694, -107.0098),
    "salida": (38.5347, -106.0001),
    "buena vista": (38.8422, -106.1312),
    "leadville": (39.2508, -106.2925),
}
CITY_STATES = {"co", "colorado"}
DEFAULT_COORDINATES = (39.5501, -105.7821)  # Central Colorado

_MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}


def validate_coordinates(latitude: float, longitude: float) -> bool:
    """
    Validate if latitude and longitude coordinates are within valid ranges

    Args:
        latitude (float): Latitude coordinate
        longitude (float): Longitude coordinate

    Returns:
        bool: True if coordinates are valid, False otherwise

    Examples:
        >>> validate_coordinates(39.7392, -104.9903)  # Denver
        True
        >>> validate_coordinates(91.0, 181.0)
        False
    """
    try:
        lat = float(latitude)
        lon = float(longitude)
    except (ValueError, TypeError):
        return False

    if math.isnan(lat) or math.isnan(lon):
        return False

    return MIN_LATITUDE <= lat <= MAX_LATITUDE and MIN_LONGITUDE <= lon <= MAX_LONGITUDE


def _haversine(lat1: float, lon1: float, lat2: float, lon2: float, radius: float) -> float:
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    dlat = lat2_rad - lat1_rad
    dlon = math.radians(lon2) - math.radians(lon1)

    a = (math.sin(dlat / 2) ** 2 +
         math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon / 2) ** 2)
    c = 2 * math.asin(min(1.0, math.sqrt(a)))
    return radius * c


def calculate_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> Optional[float]:
    """
    Calculate the great circle distance between two points using the Haversine formula

    Args:
        lat1 (float): Latitude of first point
        lon1 (float): Longitude of first point
        lat2 (float): Latitude of second point
        lon2 (float): Longitude of second point

    Returns:
        float: Distance in kilometers, None if coordinates are invalid
    """
    if not (validate_coordinates(lat1, lon1) and validate_coordinates(lat2, lon2)):
        return None
    return _haversine(lat1, lon1, lat2, lon2, EARTH_RADIUS_KM)


def calculate_distance_miles(lat1: float, lon1: float, lat2: float, lon2: float) -> Optional[float]:
    """Haversine distance in statute miles, None if coordinates are invalid"""
    if not (validate_coordinates(lat1, lon1) and validate_coordinates(lat2, lon2)):
        return None
    return _haversine(lat1, lon1, lat2, lon2, EARTH_RADIUS_MILES)


def lookup_city_coordinates(city: str, state: str = "") -> Optional[Tuple[float, float]]:
    """
    Coordinates for a city in the static table

    Args:
        city (str): City name (case-insensitive)
        state (str): State name or abbreviation; must be a table state when given

    Returns:
        Tuple[float, float]: (latitude, longitude), None if unknown
    """
    city_key = normalize_text(city)
    state_key = normalize_text(state)
    if state_key and state_key not in CITY_STATES:
        return None
    return CITY_COORDINATES.get(city_key)


def resolve_coordinates(city: str, state: str = "", full_address: str = "") -> Tuple[float, float]:
    """
    Resolve coordinates from the static table with a central default

    The city/state pair is tried first; otherwise the first table city
    contained in the full address text wins.
    """
    if city and state:
        found = lookup_city_coordinates(city, state)
        if found:
            return found
        logger.debug(f"Unknown city '{city}', '{state}' - using default coordinates")
        return DEFAULT_COORDINATES

    text = normalize_text(" ".join(part for part in (full_address, city, state) if part))
    for name in sorted(CITY_COORDINATES, key=len, reverse=True):
        if name in text:
            return CITY_COORDINATES[name]

    return DEFAULT_COORDINATES


def within_tolerance(first: Tuple[float, float], second: Tuple[float, float],
                     tolerance: float) -> bool:
    """True when both components of the two coordinate pairs differ by at most ``tolerance``"""
    return (abs(first[0] - second[0]) <= tolerance and
            abs(first[1] - second[1]) <= tolerance)


def parse_trip_datetime(value: str, now: Optional[datetime] = None) -> datetime:
    """
    Parse a trip timestamp supplied by a client

    Supported forms are ISO dates and datetimes (with "Z", offsets or
    fractional seconds), "YYYY-MM-DD HH:MM[:SS]", US slash dates with an
    optional time, and abbreviated month names such as "Jun 5" or
    "Jun 5, 2025T10:30". A missing year defaults to the current year.
    Timezone-aware values are converted to naive UTC.

    Args:
        value (str): Raw timestamp text
        now (datetime): Reference time for defaulting the year

    Returns:
        datetime: Parsed naive datetime

    Raises:
        UnparseableDate: If no supported format matches
    """
    if value is None:
        raise UnparseableDate(value)

    text = str(value).strip()
    if not text:
        raise UnparseableDate(value)

    iso_text = text[:-1] + "+00:00" if text.endswith(("Z", "z")) else text
    try:
        parsed = datetime.fromisoformat(iso_text)
    except ValueError:
        parsed = None

    if parsed is not None:
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
        return parsed

    for fmt in _LITERAL_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue

    match = _MONTH_DAY_PATTERN.match(text)
    if match:
        month = _MONTHS.get(match.group(1).lower())
        if month is not None:
            year = int(match.group(3)) if match.group(3) else (now or datetime.now()).year
            hour = int(match.group(4) or 0)
            minute = int(match.group(5) or 0)
            second = int(match.group(6) or 0)
            try:
                return datetime(year, month, int(match.group(2)), hour, minute, second)
            except ValueError:
                logger.debug(f"Month/day text out of range: {text}")

    raise UnparseableDate(text)


def parse_location(text: str) -> Tuple[str, str]:
    """
    Split free text of the form "City[, State]"

    Returns:
        Tuple[str, str]: Trimmed city and state ("" when absent)
    """
    if not text:
        return "", ""
    parts = [part.strip() for part in text.split(",")]
    city = parts[0]
    state = parts[1] if len(parts) > 1 else ""
    return city, state


def normalize_text(text: Optional[str]) -> str:
    """Lowercase and collapse whitespace for case-insensitive comparisons"""
    if not text:
        return ""
    return " ".join(str(text).lower().split())


def generate_object_id() -> str:
    """Create a new 24-character hexadecimal document identity"""
    return uuid.uuid4().hex[:24]


def minutes_to_clock(minutes: int) -> str:
    """Format minutes since midnight as HH:MM:SS (clamped to the same day)"""
    minutes = max(0, min(int(minutes), MINUTES_PER_DAY - 1))
    return f"{minutes // 60:02d}:{minutes % 60:02d}:00"


def clock_to_minutes(clock: str) -> int:
    """
    Parse HH:MM or HH:MM:SS into minutes since midnight

    Raises:
        ValueError: If the text is not a valid clock time
    """
    parts = clock.strip().split(":")
    if len(parts) not in (2, 3):
        raise ValueError(f"Invalid clock time: {clock!r}")
    hours, minutes = int(parts[0]), int(parts[1])
    seconds = int(parts[2]) if len(parts) == 3 else 0
    if not (0 <= hours < 24 and 0 <= minutes < 60 and 0 <= seconds < 60):
        raise ValueError(f"Invalid clock time: {clock!r}")
    return hours * 60 + minutes
