"""Timing and resource measurement for feature lifecycle operations.

Every ``init`` and ``cleanup`` is measured; records are kept in a bounded
history per feature so a long-lived page session never grows without limit.
"""

import logging
import time
from collections import deque
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Deque, Dict, List, Optional

import psutil

from ..models.lifecycle import Operation, PerformanceRecord, ThresholdViolation

logger = logging.getLogger(__name__)


class Measurement:
    """Mutable handle yielded by :meth:`PerformanceTracker.measure`."""

    def __init__(self, feature_name: str, operation: Operation):
        self.feature_name = feature_name
        self.operation = operation
        self.success = True
        self.error_count = 0
        self.record: Optional[PerformanceRecord] = None

    def fail(self) -> None:
        self.success = False


class PerformanceTracker:
    """Bounded per-feature performance history with threshold checks."""

    def __init__(self, max_records_per_feature: int = 100,
                 init_threshold_ms: float = 500.0,
                 cleanup_threshold_ms: float = 100.0,
                 memory_growth_threshold_bytes: int = 10 * 1024 * 1024,
                 track_memory: bool = True):
        self.max_records_per_feature = max_records_per_feature
        self.thresholds = {
            Operation.INIT: init_threshold_ms,
            Operation.CLEANUP: cleanup_threshold_ms,
        }
        self.memory_growth_threshold_bytes = memory_growth_threshold_bytes
        self.track_memory = track_memory
        self._records: Dict[str, Deque[PerformanceRecord]] = {}
        self._process = psutil.Process() if track_memory else None
        self.start_time = time.time()

    @asynccontextmanager
    async def measure(self, feature_name: str, operation: Operation) -> AsyncIterator[Measurement]:
        """Time the enclosed block and append a record when it exits.

        Exceptions from the block propagate after the record is stored.
        """
        measurement = Measurement(feature_name, operation)
        start_memory = self._memory_usage()
        start = time.perf_counter()
        try:
            yield measurement
        except BaseException:
            measurement.fail()
            raise
        finally:
            duration_ms = (time.perf_counter() - start) * 1000
            memory_delta = None
            if start_memory is not None:
                end_memory = self._memory_usage()
                if end_memory is not None:
                    memory_delta = end_memory - start_memory
            measurement.record = self.record(
                feature_name,
                operation,
                duration_ms,
                success=measurement.success,
                error_count=measurement.error_count,
                memory_delta_bytes=memory_delta,
            )

    def record(self, feature_name: str, operation: Operation, duration_ms: float,
               success: bool = True, error_count: int = 0,
               memory_delta_bytes: Optional[int] = None) -> PerformanceRecord:
        """Append a record, evicting the oldest past the retention cap."""
        record = PerformanceRecord(
            feature_name=feature_name,
            operation=operation,
            duration_ms=duration_ms,
            success=success,
            error_count=error_count,
            memory_delta_bytes=memory_delta_bytes,
        )
        record.threshold_violations = self._check_thresholds(record)

        history = self._records.get(feature_name)
        if history is None:
            history = deque(maxlen=self.max_records_per_feature)
            self._records[feature_name] = history
        history.append(record)

        if record.threshold_violations:
            logger.warning(
                f"Performance threshold violations for {feature_name}:{operation.value}: "
                f"{[v.message for v in record.threshold_violations]}"
            )
        else:
            logger.debug(f"{feature_name}:{operation.value} took {duration_ms:.2f}ms")
        return record

    def _check_thresholds(self, record: PerformanceRecord) -> List[ThresholdViolation]:
        violations = []
        threshold = self.thresholds.get(record.operation)
        if threshold is not None and record.duration_ms > threshold:
            violations.append(ThresholdViolation(
                type=f"slow_{record.operation.value}",
                threshold=threshold,
                actual=record.duration_ms,
                message=(
                    f"{record.operation.value} took {record.duration_ms:.1f}ms, "
                    f"threshold is {threshold:.1f}ms"
                ),
            ))
        if (record.memory_delta_bytes is not None
                and record.memory_delta_bytes > self.memory_growth_threshold_bytes):
            violations.append(ThresholdViolation(
                type="memory_growth",
                threshold=self.memory_growth_threshold_bytes,
                actual=record.memory_delta_bytes,
                message=(
                    f"Memory grew by {record.memory_delta_bytes} bytes, "
                    f"threshold is {self.memory_growth_threshold_bytes} bytes"
                ),
            ))
        return violations

    def _memory_usage(self) -> Optional[int]:
        if self._process is None:
            return None
        try:
            return self._process.memory_info().rss
        except psutil.Error:
            return None

    def get_records(self, feature_name: str, operation: Optional[Operation] = None) -> List[PerformanceRecord]:
        """Retained records for a feature, oldest first."""
        records = list(self._records.get(feature_name, ()))
        if operation is not None:
            records = [r for r in records if r.operation == operation]
        return records

    def feature_names(self) -> List[str]:
        return list(self._records.keys())

    def get_feature_summary(self, feature_name: str) -> Dict[str, Any]:
        """Aggregate statistics over a feature's retained records."""
        records = self.get_records(feature_name)
        summary: Dict[str, Any] = {"feature_name": feature_name, "record_count": len(records)}
        for operation in Operation:
            durations = [r.duration_ms for r in records if r.operation == operation]
            if not durations:
                continue
            summary[operation.value] = {
                "count": len(durations),
                "average_ms": round(sum(durations) / len(durations), 3),
                "min_ms": round(min(durations), 3),
                "max_ms": round(max(durations), 3),
                "last_ms": round(durations[-1], 3),
            }
        summary["threshold_violations"] = sum(len(r.threshold_violations) for r in records)
        summary["failures"] = sum(1 for r in records if not r.success)
        return summary

    def get_summary(self) -> Dict[str, Any]:
        """Performance summary for all features."""
        features = {name: self.get_feature_summary(name) for name in self._records}
        return {
            "uptime_seconds": time.time() - self.start_time,
            "features": features,
            "total_records": sum(f["record_count"] for f in features.values()),
            "total_violations": sum(f["threshold_violations"] for f in features.values()),
        }

    def reset(self, feature_name: Optional[str] = None) -> None:
        if feature_name is None:
            self._records.clear()
            self.start_time = time.time()
        else:
            self._records.pop(feature_name, None)
