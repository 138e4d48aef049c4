"""
Error Handler Utility
====================

Provides the exception hierarchy and centralized error reporting for the
itinerary planner.

Key Features:
- Planner exception taxonomy (fallback triggers vs. hard failures)
- Centralized error categorization and handling
- Structured error logging with context information
- Error statistics and monitoring

Classes:
    PlannerError: Base class for every planner exception
    ErrorHandler: Main error handling interface
    ErrorCategory: Enumeration of error categories
    ErrorContext: Context information for errors
    ErrorReport: Structured error report

Author: Hybrid Trip Planner Team
"""

import logging
import threading
import traceback
from typing import Optional, Dict, List
from dataclasses import dataclass
from enum import Enum
from datetime import datetime


# =============================================================================
# EXCEPTION HIERARCHY
# =============================================================================

class PlannerError(Exception):
    """Base class for all itinerary planner errors"""


class NotConfigured(PlannerError):
    """An optional external dependency has no configuration; callers fall back"""


class DependencyUnavailable(PlannerError):
    """An external call timed out, failed on the network or returned garbage"""


class GenerationError(PlannerError):
    """A single itinerary generation attempt could not be completed"""


class NoActivitiesFound(GenerationError):
    """Neither semantic search nor the catalog produced candidate activities"""


class MissingDates(GenerationError):
    """Arrival or departure timestamp is missing from the query"""


class UnparseableDate(GenerationError):
    """A timestamp matched none of the supported formats"""

    def __init__(self, value: str):
        super().__init__(f"Unable to parse date: {value!r}")
        self.value = value


class PersistenceFailed(PlannerError):
    """Writing a generated itinerary back to the catalog failed"""


class CatalogUnavailable(PlannerError):
    """The catalog store cannot be reached or rejected a query"""


class ErrorCategory(Enum):
    """
    Error categories for classification
    """
    # Catalog errors
    CATALOG_UNAVAILABLE = "catalog_unavailable"
    PERSISTENCE_FAILED = "persistence_failed"

    # API-related errors
    API_CONNECTION = "api_connection"
    API_TIMEOUT = "api_timeout"
    API_RATE_LIMIT = "api_rate_limit"
    API_AUTHENTICATION = "api_authentication"

    # Configuration errors
    NOT_CONFIGURED = "not_configured"

    # Processing errors
    DATA_VALIDATION = "data_validation"
    GENERATION_FAILED = "generation_failed"
    IMAGE_LOOKUP_FAILED = "image_lookup_failed"

    # Unknown errors
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    """
    Error severity levels
    """
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass
class ErrorContext:
    """
    Context information for errors

    Attributes:
        module (str): Module where error occurred
        function (str): Function where error occurred
        user_input (Dict): Query or input that caused the error
        system_state (Dict): Relevant system state
        timestamp (datetime): When error occurred
    """
    module: str
    function: str
    user_input: Optional[Dict] = None
    system_state: Optional[Dict] = None
    timestamp: Optional[datetime] = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.now()


@dataclass
class ErrorReport:
    """
    Structured error report

    Attributes:
        category (ErrorCategory): Error category
        severity (ErrorSeverity): Error severity
        message (str): Human-readable error message
        technical_details (str): Technical error details
        context (ErrorContext): Error context information
        stack_trace (str): Stack trace if available
        recovery_suggestions (List[str]): Suggested recovery actions
        occurred_at (datetime): When error occurred
    """
    category: ErrorCategory
    severity: ErrorSeverity
    message: str
    technical_details: str
    context: ErrorContext
    stack_trace: Optional[str] = None
    recovery_suggestions: Optional[List[str]] = None
    occurred_at: Optional[datetime] = None

    def __post_init__(self):
        if self.occurred_at is None:
            self.occurred_at = datetime.now()
        if self.recovery_suggestions is None:
            self.recovery_suggestions = []


class ErrorHandler:
    """
    Main error handling interface
    Logs swallowed failures by severity and keeps per-category statistics
    """

    def __init__(self):
        """Initialize Error Handler"""
        self.logger = logging.getLogger(__name__)

        # Error statistics, updated from worker threads
        self._lock = threading.Lock()
        self._error_counts: Dict[ErrorCategory, int] = {}
        self._total_errors = 0

        self.logger.info("Error Handler initialized")

    def handle_error(self, message: str, exception: Exception = None,
                     category: Optional[ErrorCategory] = None,
                     severity: ErrorSeverity = ErrorSeverity.MEDIUM,
                     context: ErrorContext = None) -> ErrorReport:
        """
        Handle an error with logging and reporting

        Args:
            message (str): Human-readable error message
            exception (Exception): Original exception if available
            category (ErrorCategory): Error category, derived from the exception when omitted
            severity (ErrorSeverity): Error severity
            context (ErrorContext): Error context

        Returns:
            ErrorReport: Structured error report
        """
        if category is None:
            category = self.categorize_exception(exception) if exception else ErrorCategory.UNKNOWN

        with self._lock:
            self._total_errors += 1
            self._error_counts[category] = self._error_counts.get(category, 0) + 1

        technical_details = str(exception) if exception else "No exception details"
        stack_trace = None
        if exception is not None and exception.__traceback__ is not None:
            stack_trace = "".join(traceback.format_exception(
                type(exception), exception, exception.__traceback__
            ))

        error_report = ErrorReport(
            category=category,
            severity=severity,
            message=message,
            technical_details=technical_details,
            context=context or ErrorContext(module="unknown", function="unknown"),
            stack_trace=stack_trace,
            recovery_suggestions=self._get_recovery_suggestions(category)
        )

        self._log_error(error_report)
        return error_report

    def handle_api_error(self, api_name: str, endpoint: str, status_code: int = None,
                         response_text: str = None, exception: Exception = None) -> ErrorReport:
        """
        Handle API-specific errors

        Args:
            api_name (str): Name of the API
            endpoint (str): API endpoint
            status_code (int): HTTP status code
            response_text (str): Response text
            exception (Exception): Original exception

        Returns:
            ErrorReport: Structured error report
        """
        if status_code in (401, 403):
            category = ErrorCategory.API_AUTHENTICATION
        elif status_code == 429:
            category = ErrorCategory.API_RATE_LIMIT
        elif status_code is None and exception is not None:
            category = self.categorize_exception(exception)
        else:
            category = ErrorCategory.API_CONNECTION

        context = ErrorContext(
            module="api_client",
            function=f"{api_name}_request",
            system_state={
                "api_name": api_name,
                "endpoint": endpoint,
                "status_code": status_code,
                "response_text": response_text[:500] if response_text else None
            }
        )

        message = f"{api_name} API error"
        if status_code:
            message += f" (HTTP {status_code})"

        return self.handle_error(
            message=message,
            exception=exception,
            category=category,
            severity=ErrorSeverity.HIGH if status_code and status_code >= 500 else ErrorSeverity.MEDIUM,
            context=context
        )

    def handle_data_error(self, data_type: str, issue: str, data_sample=None) -> ErrorReport:
        """
        Handle records that could not be converted into domain objects

        Args:
            data_type (str): Type of data (e.g., "Activity", "Itinerary")
            issue (str): Description of the issue
            data_sample (Any): Sample of problematic data

        Returns:
            ErrorReport: Structured error report
        """
        context = ErrorContext(
            module="data_processing",
            function="data_conversion",
            system_state={
                "data_type": data_type,
                "data_sample": str(data_sample)[:200] if data_sample else None
            }
        )

        return self.handle_error(
            message=f"Data validation error for {data_type}: {issue}",
            category=ErrorCategory.DATA_VALIDATION,
            severity=ErrorSeverity.LOW,
            context=context
        )

    def _log_error(self, error_report: ErrorReport) -> None:
        """Log error report"""
        log_message = (
            f"[{error_report.category.value}] {error_report.message}\n"
            f"Severity: {error_report.severity.value}\n"
            f"Technical: {error_report.technical_details}\n"
            f"Module: {error_report.context.module}.{error_report.context.function}"
        )

        if error_report.context.system_state:
            log_message += f"\nState: {error_report.context.system_state}"

        if error_report.recovery_suggestions:
            log_message += f"\nSuggestions: {', '.join(error_report.recovery_suggestions)}"

        if error_report.severity == ErrorSeverity.CRITICAL:
            self.logger.critical(log_message)
        elif error_report.severity == ErrorSeverity.HIGH:
            self.logger.error(log_message)
        elif error_report.severity == ErrorSeverity.MEDIUM:
            self.logger.warning(log_message)
        else:
            self.logger.info(log_message)

        if (error_report.severity in [ErrorSeverity.HIGH, ErrorSeverity.CRITICAL]
                and error_report.stack_trace):
            self.logger.debug(f"Stack trace:\n{error_report.stack_trace}")

    def categorize_exception(self, exception: Exception) -> ErrorCategory:
        """Categorize exception into error category"""
        if isinstance(exception, CatalogUnavailable):
            return ErrorCategory.CATALOG_UNAVAILABLE
        elif isinstance(exception, PersistenceFailed):
            return ErrorCategory.PERSISTENCE_FAILED
        elif isinstance(exception, NotConfigured):
            return ErrorCategory.NOT_CONFIGURED
        elif isinstance(exception, GenerationError):
            return ErrorCategory.GENERATION_FAILED
        elif isinstance(exception, (DependencyUnavailable, ConnectionError)):
            return ErrorCategory.API_CONNECTION
        elif isinstance(exception, TimeoutError):
            return ErrorCategory.API_TIMEOUT
        elif isinstance(exception, (ValueError, KeyError, TypeError)):
            return ErrorCategory.DATA_VALIDATION
        else:
            return ErrorCategory.UNKNOWN

    def _get_recovery_suggestions(self, category: ErrorCategory) -> List[str]:
        """Get recovery suggestions for error category"""
        suggestions = {
            ErrorCategory.CATALOG_UNAVAILABLE: [
                "Check catalog backend settings",
                "Verify the SQLite file is readable"
            ],
            ErrorCategory.API_CONNECTION: [
                "Check internet connection",
                "Verify API endpoint is accessible"
            ],
            ErrorCategory.API_TIMEOUT: [
                "Increase timeout settings",
                "Check network latency"
            ],
            ErrorCategory.API_RATE_LIMIT: [
                "Wait before making more requests",
                "Consider upgrading API plan"
            ],
            ErrorCategory.API_AUTHENTICATION: [
                "Check API key validity",
                "Refresh GOOGLE_CLOUD_ACCESS_TOKEN"
            ],
            ErrorCategory.NOT_CONFIGURED: [
                "Set the missing environment variables to enable the integration"
            ],
            ErrorCategory.DATA_VALIDATION: [
                "Check input data format",
                "Verify data completeness"
            ],
            ErrorCategory.IMAGE_LOOKUP_FAILED: [
                "Check ITINERARY_BUCKET and bucket read access"
            ]
        }

        return suggestions.get(category, ["Review error details"])

    def get_error_statistics(self) -> Dict:
        """Get error statistics"""
        with self._lock:
            counts = dict(self._error_counts)
            return {
                "total_errors": self._total_errors,
                "errors_by_category": {category.value: count for category, count in counts.items()},
                "most_common_error": max(counts, key=counts.get).value if counts else None
            }

    def reset_statistics(self) -> None:
        """Reset error statistics"""
        with self._lock:
            self._error_counts.clear()
            self._total_errors = 0
        self.logger.info("Error statistics reset")
