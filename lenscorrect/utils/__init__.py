"""Utility modules for the lens correction tools."""

from lenscorrect.utils.logging_utils import setup_logging
from lenscorrect.utils.performance_monitor import PerformanceMonitor

__all__ = [
    "PerformanceMonitor",
    "setup_logging",
]
