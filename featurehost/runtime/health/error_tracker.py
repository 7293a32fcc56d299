"""Categorised, bounded error history for features."""

import logging
import traceback
import uuid
from collections import Counter, deque
from datetime import datetime, timedelta
from typing import Any, Deque, Dict, List, Optional, Union

from ..models.lifecycle import ErrorCategory, ErrorRecord, ErrorSeverity

logger = logging.getLogger(__name__)


_CONTEXT_CATEGORIES = {
    "init": ErrorCategory.INITIALIZATION,
    "initialization": ErrorCategory.INITIALIZATION,
    "cleanup": ErrorCategory.CLEANUP,
    "validation": ErrorCategory.VALIDATION,
    "performance": ErrorCategory.PERFORMANCE,
}

_NETWORK_MARKERS = ("network", "fetch", "connection", "timeout", "http")
_DOM_MARKERS = ("element", "selector", "dom", "node")
_CRITICAL_MARKERS = ("has no attribute", "is not callable", "is not defined", "not subscriptable")
_HIGH_MARKERS = ("failed to", "timeout", "timed out", "network error")


class ErrorTracker:
    """Tracks feature errors with category and severity classification."""

    def __init__(self, max_errors_per_feature: int = 50):
        self.max_errors_per_feature = max_errors_per_feature
        self._errors: Dict[str, Deque[ErrorRecord]] = {}
        self._total_tracked: Counter = Counter()

    def track_error(self, feature_name: str, error: Union[BaseException, str],
                    context: str = "runtime", url: Optional[str] = None,
                    **metadata) -> ErrorRecord:
        """Record an error and return the stored record."""
        message = self._extract_message(error)
        record = ErrorRecord(
            id=f"{feature_name}-error-{uuid.uuid4().hex[:12]}",
            feature_name=feature_name,
            context=context,
            category=self.categorize(message, context),
            severity=self.determine_severity(message, context),
            message=message,
            error_type=type(error).__name__ if isinstance(error, BaseException) else None,
            traceback=self._extract_traceback(error),
            url=url,
            metadata=metadata,
        )

        history = self._errors.get(feature_name)
        if history is None:
            history = deque(maxlen=self.max_errors_per_feature)
            self._errors[feature_name] = history
        history.append(record)
        self._total_tracked[feature_name] += 1

        logger.debug(
            f"Tracked {record.severity.value} {record.category.value} error {record.id} "
            f"for feature {feature_name}: {message}"
        )
        return record

    @staticmethod
    def categorize(message: str, context: str) -> ErrorCategory:
        category = _CONTEXT_CATEGORIES.get(context)
        if category is not None:
            return category
        lowered = message.lower()
        if any(marker in lowered for marker in _NETWORK_MARKERS):
            return ErrorCategory.NETWORK
        if any(marker in lowered for marker in _DOM_MARKERS):
            return ErrorCategory.DOM
        return ErrorCategory.RUNTIME

    @staticmethod
    def determine_severity(message: str, context: str) -> ErrorSeverity:
        lowered = message.lower()
        if context in ("init", "initialization") or any(m in lowered for m in _CRITICAL_MARKERS):
            return ErrorSeverity.CRITICAL
        if context == "validation" or any(m in lowered for m in _HIGH_MARKERS):
            return ErrorSeverity.HIGH
        if context in ("performance", "cleanup"):
            return ErrorSeverity.MEDIUM
        return ErrorSeverity.LOW

    def get_errors(self, feature_name: Optional[str] = None, limit: int = 50,
                   severity: Optional[ErrorSeverity] = None,
                   category: Optional[ErrorCategory] = None,
                   include_resolved: bool = False) -> List[ErrorRecord]:
        """Retained errors, newest first."""
        if feature_name is not None:
            records = list(self._errors.get(feature_name, ()))
        else:
            records = [r for history in self._errors.values() for r in history]

        if not include_resolved:
            records = [r for r in records if not r.resolved]
        if severity is not None:
            records = [r for r in records if r.severity == severity]
        if category is not None:
            records = [r for r in records if r.category == category]

        records.sort(key=lambda r: r.occurred_at, reverse=True)
        return records[:limit]

    def last_error(self, feature_name: str) -> Optional[ErrorRecord]:
        """Most recent unresolved error of a feature."""
        for record in reversed(self._errors.get(feature_name, ())):
            if not record.resolved:
                return record
        return None

    def error_count(self, feature_name: str) -> int:
        """Total errors tracked for a feature, including evicted ones."""
        return self._total_tracked.get(feature_name, 0)

    def resolve_error(self, error_id: str, resolution: str = "Manual resolution") -> bool:
        for history in self._errors.values():
            for record in history:
                if record.id == error_id:
                    record.resolved = True
                    record.resolution = resolution
                    logger.info(f"Error {error_id} marked as resolved: {resolution}")
                    return True
        logger.warning(f"Error not found: {error_id}")
        return False

    def resolve_feature_errors(self, feature_name: str, resolution: str) -> int:
        count = 0
        for record in self._errors.get(feature_name, ()):
            if not record.resolved:
                record.resolved = True
                record.resolution = resolution
                count += 1
        return count

    def get_statistics(self, time_range: timedelta = timedelta(hours=24)) -> Dict[str, Any]:
        """Error counts grouped by feature, category and severity."""
        cutoff = datetime.utcnow() - time_range
        recent = [
            r for history in self._errors.values() for r in history
            if r.occurred_at >= cutoff
        ]
        return {
            "total_errors": len(recent),
            "unresolved": sum(1 for r in recent if not r.resolved),
            "by_feature": dict(Counter(r.feature_name for r in recent)),
            "by_category": dict(Counter(r.category.value for r in recent)),
            "by_severity": dict(Counter(r.severity.value for r in recent)),
            "total_tracked": dict(self._total_tracked),
        }

    def clear(self, feature_name: Optional[str] = None) -> None:
        if feature_name is None:
            self._errors.clear()
            self._total_tracked.clear()
        else:
            self._errors.pop(feature_name, None)
            self._total_tracked.pop(feature_name, None)

    @staticmethod
    def _extract_message(error: Union[BaseException, str]) -> str:
        if isinstance(error, BaseException):
            return str(error) or error.__class__.__name__
        return str(error) if error else "Unknown error"

    @staticmethod
    def _extract_traceback(error: Union[BaseException, str]) -> Optional[str]:
        if isinstance(error, BaseException) and error.__traceback__ is not None:
            return "".join(traceback.format_exception(type(error), error, error.__traceback__))
        return None
