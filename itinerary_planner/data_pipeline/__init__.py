"""
Data Pipeline Module
===================

Domain models, the catalog store and the external providers the planner
reads from: semantic activity search, the distance matrix with its cache,
and itinerary images.

Author: Hybrid Trip Planner Team
"""

# Version info
__version__ = "1.0.0"
__module_name__ = "data_pipeline"

# Import data models
from .data_models import (
    TripPace,
    SearchQuery,
    Address,
    CapacityRange,
    TimeSlot,
    Activity,
    Location,
    ActivityLabel,
    TransportationItem,
    ActivityItem,
    AccommodationItem,
    DayItem,
    Itinerary,
    TravelMode,
    DistanceResult,
    CachedDistance,
)

# Import store and providers
from .catalog_store import CatalogStore, InMemoryCatalogStore, SQLiteCatalogStore, create_catalog_store
from .semantic_search import VertexSearchClient, SearchHit, activity_from_search_fields
from .distance_cache import DistanceCache, CacheStats
from .distance_service import DistanceService, GoogleMapsDistanceProvider
from .image_resolver import ImageResolver, GcsImageResolver

# Define public API
__all__ = [
    # Stores and providers
    "CatalogStore",
    "InMemoryCatalogStore",
    "SQLiteCatalogStore",
    "create_catalog_store",
    "VertexSearchClient",
    "SearchHit",
    "activity_from_search_fields",
    "DistanceCache",
    "CacheStats",
    "DistanceService",
    "GoogleMapsDistanceProvider",
    "ImageResolver",
    "GcsImageResolver",

    # Data models
    "TripPace",
    "SearchQuery",
    "Address",
    "CapacityRange",
    "TimeSlot",
    "Activity",
    "Location",
    "ActivityLabel",
    "TransportationItem",
    "ActivityItem",
    "AccommodationItem",
    "DayItem",
    "Itinerary",
    "TravelMode",
    "DistanceResult",
    "CachedDistance",
]


def get_supported_data_sources():
    """Return the external data sources the pipeline can use"""
    return {
        "catalog": "In-memory or SQLite document store",
        "semantic_search": "Vertex AI Search (Discovery Engine)",
        "distance": "Google Maps Distance Matrix API with Haversine fallback",
        "images": "Google Cloud Storage bucket listing"
    }
