"""
Utilities Module
===============

Common helpers used across the planner:
- Exception taxonomy and centralized error reporting
- Coordinate validation, Haversine distance and date parsing
- Performance timing for public entry points

Classes:
    ErrorHandler: Standardized error handling and reporting
    PerformanceMonitor: Tracks execution time statistics

Functions:
    validate_coordinates(): Check if latitude/longitude are valid
    calculate_distance(): Haversine distance in kilometers
    parse_trip_datetime(): Parse trip timestamps in the supported formats
    measure_time(): Performance timing decorator
"""

# Version and module info
__version__ = "1.0.0"
__module_name__ = "utils"

from .error_handler import (
    ErrorHandler,
    ErrorCategory,
    ErrorSeverity,
    ErrorContext,
    ErrorReport,
    PlannerError,
    NotConfigured,
    DependencyUnavailable,
    GenerationError,
    NoActivitiesFound,
    MissingDates,
    UnparseableDate,
    PersistenceFailed,
    CatalogUnavailable,
)
from .performance_monitor import (
    PerformanceMonitor, measure_time, get_performance_report, get_performance_stats, reset_performance_stats
)

from .data_utils import (
    validate_coordinates,
    calculate_distance,
    calculate_distance_miles,
    within_tolerance,
    parse_trip_datetime,
    parse_location,
    normalize_text,
)

__all__ = [
    # Core utility classes
    "ErrorHandler",
    "ErrorCategory",
    "ErrorSeverity",
    "ErrorContext",
    "ErrorReport",
    "PerformanceMonitor",

    # Exceptions
    "PlannerError",
    "NotConfigured",
    "DependencyUnavailable",
    "GenerationError",
    "NoActivitiesFound",
    "MissingDates",
    "UnparseableDate",
    "PersistenceFailed",
    "CatalogUnavailable",

    # Functions
    "measure_time",
    "get_performance_report",
    "get_performance_stats",
    "reset_performance_stats",
    "validate_coordinates",
    "calculate_distance",
    "calculate_distance_miles",
    "within_tolerance",
    "parse_trip_datetime",
    "parse_location",
    "normalize_text",
]
