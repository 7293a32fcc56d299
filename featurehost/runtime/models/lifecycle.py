"""Pydantic models for feature matching, lifecycle state and health data.

These models are created fresh for each scan pass or measurement and are
safe to serialize for external diagnostics collection.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field


class FeatureState(str, Enum):
    """Lifecycle state of a single feature."""
    INACTIVE = "inactive"
    INITIALIZING = "initializing"
    ACTIVE = "active"
    DEACTIVATING = "deactivating"
    ERROR = "error"


class Operation(str, Enum):
    """Lifecycle operations measured by the health reporter."""
    INIT = "init"
    CLEANUP = "cleanup"


class ErrorCategory(str, Enum):
    """Categories for tracked feature errors."""
    INITIALIZATION = "initialization"
    CLEANUP = "cleanup"
    RUNTIME = "runtime"
    VALIDATION = "validation"
    PERFORMANCE = "performance"
    NETWORK = "network"
    DOM = "dom"


class ErrorSeverity(str, Enum):
    """Severity levels for tracked feature errors."""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ValidationReport(BaseModel):
    """Result of validating a match pattern or feature descriptor."""

    is_valid: bool = Field(default=True, description="Whether validation passed")
    errors: List[str] = Field(default_factory=list, description="Blocking problems")
    warnings: List[str] = Field(default_factory=list, description="Non-blocking authoring hints")

    def add_error(self, message: str) -> None:
        self.errors.append(message)
        self.is_valid = False

    def add_warning(self, message: str) -> None:
        self.warnings.append(message)

    def merge(self, other: "ValidationReport") -> None:
        """Fold another report into this one."""
        for message in other.errors:
            self.add_error(message)
        self.warnings.extend(other.warnings)


class MatchResult(BaseModel):
    """A registered feature whose pattern matched the current location."""

    feature_name: str = Field(description="Name of the matching feature")
    capture_groups: Tuple[str, ...] = Field(
        default_factory=tuple,
        description="Ordered capture groups from the pattern match"
    )
    specificity_score: float = Field(description="Specificity of the feature pattern")
    registration_index: int = Field(
        default=0,
        description="Position of the feature in registration order"
    )


class FeatureEntry(BaseModel):
    """Live record kept in the active feature set."""

    name: str = Field(description="Feature name")
    state: FeatureState = Field(default=FeatureState.INACTIVE, description="Current state")
    activated_at: Optional[datetime] = Field(
        default=None,
        description="When the feature last became active"
    )
    generation: int = Field(default=0, description="Scan generation that created this entry")
    url: Optional[str] = Field(default=None, description="Location the feature was activated for")


class ThresholdViolation(BaseModel):
    """A performance threshold exceeded by a single operation."""

    type: str = Field(description="Violation type, e.g. 'slow_init'")
    threshold: float = Field(description="Configured threshold")
    actual: float = Field(description="Observed value")
    message: str = Field(description="Human-readable description")


class PerformanceRecord(BaseModel):
    """Timing of one lifecycle operation of one feature."""

    feature_name: str = Field(description="Feature the operation belongs to")
    operation: Operation = Field(description="Lifecycle operation measured")
    duration_ms: float = Field(description="Wall-clock duration in milliseconds")
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the operation finished"
    )
    success: bool = Field(default=True, description="Whether the operation completed without error")
    error_count: int = Field(
        default=0,
        description="Errors recorded for the feature up to and including this operation"
    )
    memory_delta_bytes: Optional[int] = Field(
        default=None,
        description="Change in process resident memory across the operation"
    )
    threshold_violations: List[ThresholdViolation] = Field(
        default_factory=list,
        description="Thresholds exceeded by this operation"
    )


class ErrorRecord(BaseModel):
    """A tracked feature error."""

    id: str = Field(description="Unique error identifier")
    feature_name: str = Field(description="Feature where the error occurred")
    context: str = Field(description="Where the error occurred (init, cleanup, ...)")
    category: ErrorCategory = Field(description="Error category")
    severity: ErrorSeverity = Field(description="Error severity")
    message: str = Field(description="Error message")
    error_type: Optional[str] = Field(default=None, description="Exception class name")
    traceback: Optional[str] = Field(default=None, description="Formatted traceback, if any")
    url: Optional[str] = Field(default=None, description="Location when the error occurred")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Additional context")
    occurred_at: datetime = Field(default_factory=datetime.utcnow, description="When it occurred")
    resolved: bool = Field(default=False, description="Whether the error was marked resolved")
    resolution: Optional[str] = Field(default=None, description="How the error was resolved")


class HealthStatus(BaseModel):
    """Derived, read-only health view of one feature."""

    feature_name: str = Field(description="Feature name")
    is_healthy: bool = Field(description="False when the last operation failed or the feature is in error")
    state: Optional[FeatureState] = Field(default=None, description="Lifecycle state, if known")
    last_error: Optional[str] = Field(default=None, description="Most recent unresolved error message")
    last_durations: List[float] = Field(
        default_factory=list,
        description="Most recent operation durations in milliseconds, oldest first"
    )
    error_count: int = Field(default=0, description="Errors recorded for the feature")
    average_duration_ms: float = Field(default=0.0, description="Mean duration over retained records")
