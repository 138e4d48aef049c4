"""
ML Engine Module
================

Planning algorithms on top of the data pipeline:
- Weighted relevance scoring of catalog itineraries
- Travel-time-aware ordering and scheduling of a day's activities
- Generation of new itineraries from bookable activities
- Tiered catalog search with a generation fallback

Classes:
    SearchScorer: Six-dimension weighted relevance scoring
    RouteOptimizer: Activity ordering and day scheduling
    ItineraryGenerator: Builds itineraries from activities
    ItinerarySearchService: Search cascade with generation fallback

Author: Hybrid Trip Planner Team
"""

# Version and module info
__version__ = "1.0.0"
__module_name__ = "ml_engine"

from .search_scorer import (
    SearchScorer,
    SearchWeights,
    ScoreBreakdown,
    ScoredItinerary,
    synonyms_for,
    term_matches,
)
from .route_optimizer import (
    RouteOptimizer,
    OptimizationConfig,
    OptimizationStrategy,
    OptimizedActivity,
    RouteStats,
)
from .itinerary_generator import (
    ItineraryGenerator,
    NAME_TEMPLATES,
    calculate_activity_cost,
    calculate_service_fee,
)
from .search_cascade import ItinerarySearchService, is_too_similar

__all__ = [
    # Scoring
    "SearchScorer",
    "SearchWeights",
    "ScoreBreakdown",
    "ScoredItinerary",
    "synonyms_for",
    "term_matches",

    # Routing
    "RouteOptimizer",
    "OptimizationConfig",
    "OptimizationStrategy",
    "OptimizedActivity",
    "RouteStats",

    # Generation
    "ItineraryGenerator",
    "NAME_TEMPLATES",
    "calculate_activity_cost",
    "calculate_service_fee",

    # Search
    "ItinerarySearchService",
    "is_too_similar",
]


def get_scoring_weights():
    """
    Return the configured search scoring weights
    """
    from config import config
    return {
        "location": config.SEARCH_LOCATION_WEIGHT,
        "activity": config.SEARCH_ACTIVITY_WEIGHT,
        "group_size": config.SEARCH_GROUP_SIZE_WEIGHT,
        "lodging": config.SEARCH_LODGING_WEIGHT,
        "transportation": config.SEARCH_TRANSPORT_WEIGHT,
        "trip_pace": config.SEARCH_TRIP_PACE_WEIGHT
    }


def get_ml_engine_info():
    """
    Return information about ML engine capabilities
    """
    return {
        "module": __module_name__,
        "version": __version__,
        "algorithms": {
            "scoring": "Weighted six-dimension relevance scoring",
            "routing": "Brute-force TSP for small days, nearest-neighbor otherwise",
            "generation": "Pace-driven activity selection with name variations",
            "search": "Exact, partial, location-only and flexible catalog tiers"
        },
        "scoring_weights": get_scoring_weights()
    }
