"""Health and performance reporting for feature lifecycles."""

from .performance import PerformanceTracker, Measurement
from .error_tracker import ErrorTracker
from .reporter import HealthReporter

__all__ = [
    'PerformanceTracker',
    'Measurement',
    'ErrorTracker',
    'HealthReporter',
]
