"""Feature runtime data models package."""

from .lifecycle import (
    FeatureState,
    Operation,
    ErrorCategory,
    ErrorSeverity,
    ValidationReport,
    MatchResult,
    FeatureEntry,
    ThresholdViolation,
    PerformanceRecord,
    ErrorRecord,
    HealthStatus,
)

__all__ = [
    'FeatureState',
    'Operation',
    'ErrorCategory',
    'ErrorSeverity',
    'ValidationReport',
    'MatchResult',
    'FeatureEntry',
    'ThresholdViolation',
    'PerformanceRecord',
    'ErrorRecord',
    'HealthStatus',
]
