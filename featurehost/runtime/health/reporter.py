"""Health reporting facade used by the lifecycle controller.

Wraps every feature ``init``/``cleanup`` call with timing and error capture
and turns the call into a tagged ``Outcome``.
"""

import logging
from typing import Any, Callable, Dict, Iterable, Mapping, Optional

from ..errors import ErrorKind, Outcome, invoke
from ..models.lifecycle import FeatureState, HealthStatus, Operation
from .error_tracker import ErrorTracker
from .performance import PerformanceTracker

logger = logging.getLogger(__name__)


_OPERATION_KINDS = {
    Operation.INIT: ErrorKind.INITIALIZATION,
    Operation.CLEANUP: ErrorKind.CLEANUP,
}


class HealthReporter:
    """Records performance and errors for feature lifecycle operations."""

    def __init__(self, performance: Optional[PerformanceTracker] = None,
                 errors: Optional[ErrorTracker] = None,
                 recent_durations: int = 10):
        self.performance = performance or PerformanceTracker()
        self.errors = errors or ErrorTracker()
        self.recent_durations = recent_durations

    @classmethod
    def from_config(cls, config) -> "HealthReporter":
        """Build a reporter from a ``HealthConfig``."""
        return cls(
            performance=PerformanceTracker(
                max_records_per_feature=config.max_records_per_feature,
                init_threshold_ms=config.init_threshold_ms,
                cleanup_threshold_ms=config.cleanup_threshold_ms,
                memory_growth_threshold_bytes=config.memory_growth_threshold_bytes,
                track_memory=config.track_memory,
            ),
            errors=ErrorTracker(max_errors_per_feature=config.max_errors_per_feature),
            recent_durations=config.recent_durations,
        )

    async def run(self, feature_name: str, operation: Operation,
                  callback: Callable[..., Any], *args, url: Optional[str] = None) -> Outcome:
        """Invoke a lifecycle callback, measuring it and capturing failures."""
        kind = _OPERATION_KINDS[operation]
        async with self.performance.measure(feature_name, operation) as measurement:
            outcome = await invoke(callback, kind, *args)
            if not outcome.ok:
                measurement.fail()
                error = outcome.error if outcome.error is not None else outcome.to_exception(feature_name)
                self.errors.track_error(feature_name, error, context=operation.value, url=url)
                logger.error(f"{outcome.to_exception(feature_name)}")
            measurement.error_count = self.errors.error_count(feature_name)

        record = measurement.record
        if record is not None:
            for violation in record.threshold_violations:
                self.errors.track_error(
                    feature_name,
                    f"Performance violation: {violation.message}",
                    context="performance",
                    url=url,
                    violation_type=violation.type,
                    threshold=violation.threshold,
                    actual=violation.actual,
                )
        return outcome

    def get_status(self, names: Optional[Iterable[str]] = None,
                   states: Optional[Mapping[str, FeatureState]] = None) -> Dict[str, HealthStatus]:
        """Health snapshot keyed by feature name.

        Args:
            names: Features to report on; defaults to every feature seen so far
            states: Lifecycle states to fold into the snapshot
        """
        states = states or {}
        if names is None:
            seen = dict.fromkeys(self.performance.feature_names())
            seen.update(dict.fromkeys(states))
            names = list(seen)

        return {name: self._status_for(name, states.get(name)) for name in names}

    def _status_for(self, name: str, state: Optional[FeatureState]) -> HealthStatus:
        records = self.performance.get_records(name)
        durations = [r.duration_ms for r in records]
        last_error = self.errors.last_error(name)
        last_ok = records[-1].success if records else True
        return HealthStatus(
            feature_name=name,
            is_healthy=last_ok and state != FeatureState.ERROR,
            state=state,
            last_error=last_error.message if last_error else None,
            last_durations=durations[-self.recent_durations:],
            error_count=self.errors.error_count(name),
            average_duration_ms=round(sum(durations) / len(durations), 3) if durations else 0.0,
        )

    def dump_metrics(self) -> Dict[str, Any]:
        """JSON-ready dump of everything retained, for diagnostics collection."""
        return {
            "summary": self.performance.get_summary(),
            "records": {
                name: [r.model_dump(mode="json") for r in self.performance.get_records(name)]
                for name in self.performance.feature_names()
            },
            "errors": [r.model_dump(mode="json") for r in self.errors.get_errors(limit=10_000, include_resolved=True)],
            "error_statistics": self.errors.get_statistics(),
        }

    def reset(self) -> None:
        self.performance.reset()
        self.errors.clear()
