"""
Performance Monitoring Utilities
===============================

Timing statistics for the planner's public entry points.

Key Features:
- Function execution timing with decorators
- Per-function call counts, min/max/average and sliding-window averages
- Process memory and CPU snapshot attached to reports
- Slow-call logging against configurable thresholds

Classes:
    PerformanceMonitor: Main performance monitoring interface
    TimingStats: Statistics for function execution times

Functions:
    measure_time: Decorator for measuring function execution time

Author: Hybrid Trip Planner Team
"""

import os
import time
import logging
import functools
import threading
from typing import Dict, List, Optional, Callable
from dataclasses import dataclass, field
from datetime import datetime
from collections import deque

import psutil


@dataclass
class TimingStats:
    """
    Statistics for function execution times

    Attributes:
        function_name (str): Name of the function
        call_count (int): Number of times function was called
        total_time (float): Total execution time in seconds
        min_time (float): Minimum execution time
        max_time (float): Maximum execution time
        recent_times (deque): Recent execution times (sliding window)
        last_called (datetime): When function was last called
    """
    function_name: str
    call_count: int = 0
    total_time: float = 0.0
    min_time: float = float('inf')
    max_time: float = 0.0
    recent_times: deque = field(default_factory=lambda: deque(maxlen=100))
    last_called: Optional[datetime] = None

    @property
    def avg_time(self) -> float:
        """Calculate average execution time"""
        return self.total_time / self.call_count if self.call_count > 0 else 0.0

    @property
    def recent_avg_time(self) -> float:
        """Calculate average of recent execution times"""
        return sum(self.recent_times) / len(self.recent_times) if self.recent_times else 0.0

    def add_timing(self, execution_time: float) -> None:
        """Add a new timing measurement"""
        self.call_count += 1
        self.total_time += execution_time
        self.min_time = min(self.min_time, execution_time)
        self.max_time = max(self.max_time, execution_time)
        self.recent_times.append(execution_time)
        self.last_called = datetime.now()

    def to_dict(self) -> Dict:
        """Convert to dictionary for serialization"""
        return {
            "function_name": self.function_name,
            "call_count": self.call_count,
            "total_time": round(self.total_time, 4),
            "min_time": round(self.min_time, 4) if self.min_time != float('inf') else 0,
            "max_time": round(self.max_time, 4),
            "avg_time": round(self.avg_time, 4),
            "recent_avg_time": round(self.recent_avg_time, 4),
            "last_called": self.last_called.isoformat() if self.last_called else None
        }


class PerformanceMonitor:
    """
    Main performance monitoring interface
    Collects timing statistics for decorated functions
    """

    def __init__(self, slow_threshold: float = 5.0, very_slow_threshold: float = 10.0):
        """Initialize Performance Monitor"""
        self.logger = logging.getLogger(__name__)

        self._timing_stats: Dict[str, TimingStats] = {}
        self._lock = threading.RLock()

        # Performance thresholds (in seconds)
        self.slow_function_threshold = slow_threshold
        self.very_slow_function_threshold = very_slow_threshold

        self._process = psutil.Process(os.getpid())

        self.logger.info("Performance Monitor initialized")

    def record_timing(self, function_name: str, execution_time: float) -> None:
        """
        Record timing for a function

        Args:
            function_name (str): Name of the function
            execution_time (float): Execution time in seconds
        """
        with self._lock:
            if function_name not in self._timing_stats:
                self._timing_stats[function_name] = TimingStats(function_name)

            self._timing_stats[function_name].add_timing(execution_time)

        if execution_time > self.very_slow_function_threshold:
            self.logger.warning(f"Very slow function: {function_name} took {execution_time:.2f}s")
        elif execution_time > self.slow_function_threshold:
            self.logger.info(f"Slow function: {function_name} took {execution_time:.2f}s")

    def get_timing_stats(self, function_name: str = None) -> Dict:
        """
        Get timing statistics

        Args:
            function_name (str): Specific function name, or None for all

        Returns:
            Dict: Timing statistics
        """
        with self._lock:
            if function_name:
                stats = self._timing_stats.get(function_name)
                return stats.to_dict() if stats else {}
            return {name: stats.to_dict() for name, stats in self._timing_stats.items()}

    def get_slowest_functions(self, limit: int = 10) -> List[Dict]:
        """Slowest functions by average execution time"""
        with self._lock:
            sorted_stats = sorted(
                self._timing_stats.values(),
                key=lambda x: x.avg_time,
                reverse=True
            )
            return [stats.to_dict() for stats in sorted_stats[:limit]]

    def get_resource_usage(self) -> Dict:
        """Current process memory (MB) and CPU percentage"""
        memory = self._process.memory_info()
        return {
            "memory_rss_mb": round(memory.rss / (1024 * 1024), 2),
            "cpu_percent": self._process.cpu_percent(interval=None),
            "thread_count": self._process.num_threads()
        }

    def reset_stats(self) -> None:
        """Reset all performance statistics"""
        with self._lock:
            self._timing_stats.clear()
        self.logger.info("Performance statistics reset")

    def generate_performance_report(self) -> Dict:
        """
        Generate performance report

        Returns:
            Dict: Performance report with timing and resource data
        """
        with self._lock:
            total_calls = sum(stats.call_count for stats in self._timing_stats.values())
            total_time = sum(stats.total_time for stats in self._timing_stats.values())
            function_count = len(self._timing_stats)

        return {
            "report_timestamp": datetime.now().isoformat(),
            "summary": {
                "total_functions_monitored": function_count,
                "total_function_calls": total_calls,
                "total_execution_time_seconds": round(total_time, 2),
                "average_call_time": round(total_time / total_calls, 4) if total_calls > 0 else 0
            },
            "slowest_functions": self.get_slowest_functions(limit=5),
            "resource_usage": self.get_resource_usage()
        }


# Global performance monitor instance
_performance_monitor = PerformanceMonitor()


def measure_time(func: Callable = None, *, category: str = None) -> Callable:
    """
    Decorator to measure function execution time

    Args:
        func (Callable): Function to decorate
        category (str): Optional category for grouping functions

    Returns:
        Callable: Decorated function

    Examples:
        @measure_time
        def search(query):
            ...

        @measure_time(category="distance")
        def get_distance(origin, destination):
            ...
    """
    def decorator(f: Callable) -> Callable:
        @functools.wraps(f)
        def wrapper(*args, **kwargs):
            start_time = time.perf_counter()
            try:
                return f(*args, **kwargs)
            finally:
                execution_time = time.perf_counter() - start_time
                function_name = f"{category}.{f.__name__}" if category else f.__name__
                _performance_monitor.record_timing(function_name, execution_time)

        return wrapper

    # Handle both @measure_time and @measure_time() usage
    if func is None:
        return decorator
    return decorator(func)


def get_performance_stats() -> Dict:
    """Get current performance statistics"""
    return _performance_monitor.get_timing_stats()


def get_performance_report() -> Dict:
    """Generate performance report"""
    return _performance_monitor.generate_performance_report()


def reset_performance_stats() -> None:
    """Reset all performance statistics"""
    _performance_monitor.reset_stats()
