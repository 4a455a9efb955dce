"""
Error and performance correlation.

Pairs caught errors with the performance state at the time they happened
and scores how likely degraded performance contributed. Purely diagnostic:
analysis never raises into the caller.
"""

import logging
import threading
import time
from collections import Counter, deque
from collections.abc import Callable
from typing import Any

from .budgets import WEB_VITAL_THRESHOLDS
from .models import ErrorCorrelation, PerformanceMetrics
from .monitor import ERROR_CORRELATION_ALERT_THRESHOLD, PerformanceMonitor

logger = logging.getLogger(__name__)

PERFORMANCE_RELATED_ERRORS = ("ChunkLoadError", "NetworkError", "TimeoutError")

# (metric, weight) added when the metric is past its poor threshold
_DEGRADATION_WEIGHTS = (("lcp", 0.3), ("fid", 0.2), ("cls", 0.2))
_ERROR_NAME_WEIGHT = 0.3


def is_performance_related(error: BaseException) -> bool:
    names = {cls.__name__ for cls in type(error).__mro__}
    message = str(error)
    return any(name in names or name in message for name in PERFORMANCE_RELATED_ERRORS)


def calculate_correlation(error: BaseException, metrics: PerformanceMetrics) -> float:
    score = 0.0
    for metric, weight in _DEGRADATION_WEIGHTS:
        value = metrics.value_of(metric)
        if value is not None and value > WEB_VITAL_THRESHOLDS[metric].poor:
            score += weight
    if is_performance_related(error):
        score += _ERROR_NAME_WEIGHT
    return min(round(score, 4), 1.0)


class ErrorCorrelationAnalyzer:
    """Keeps the last ``max_entries`` correlation records."""

    def __init__(
        self,
        monitor: PerformanceMonitor,
        max_entries: int = 100,
        clock: Callable[[], float] = time.time,
    ):
        self.monitor = monitor
        self._records: deque[ErrorCorrelation] = deque(maxlen=max_entries)
        self._clock = clock
        self._lock = threading.Lock()
        monitor.attach_error_analyzer(self)

    def analyze_error_correlation(
        self,
        error: BaseException,
        metrics: PerformanceMetrics | None = None,
    ) -> ErrorCorrelation:
        """
        Correlate ``error`` with the metrics snapshot at the time it occurred.

        Args:
            error: The caught exception
            metrics: Snapshot to correlate against (the monitor's current one by default)

        Returns:
            The stored record; a zero-correlation record if analysis fails
        """
        try:
            snapshot = metrics if metrics is not None else self.monitor.get_metrics()
            record = ErrorCorrelation(
                timestamp=self._clock(),
                error_type=type(error).__name__,
                error_message=str(error),
                performance_metrics=snapshot.to_dict(),
                correlation=calculate_correlation(error, snapshot),
            )
        except Exception as e:
            logger.error(f"Error correlation analysis failed: {e}")
            return ErrorCorrelation(
                timestamp=time.time(),
                error_type=type(error).__name__,
                error_message=str(error),
                performance_metrics={},
                correlation=0.0,
            )

        with self._lock:
            self._records.append(record)
            error_count = (self.monitor.get_metrics().error_count or 0) + 1

        self.monitor.record_sample({
            "errorCount": error_count,
            "performanceErrorCorrelation": record.correlation,
        })
        self.monitor.report_error_correlation(record)
        return record

    def get_history(self) -> tuple[ErrorCorrelation, ...]:
        with self._lock:
            return tuple(self._records)

    def get_correlation_insights(self) -> dict[str, Any]:
        """High-correlation errors, the five most frequent error types, and recommendations."""
        with self._lock:
            records = list(self._records)

        high = [record for record in records if record.correlation > ERROR_CORRELATION_ALERT_THRESHOLD]
        frequent = Counter(record.error_type for record in records).most_common(5)

        return {
            "high_correlation_errors": [record.to_dict() for record in high],
            "performance_impacting_errors": [error_type for error_type, _ in frequent],
            "recommendations": correlation_recommendations(high),
        }

    def clear(self) -> None:
        with self._lock:
            self._records.clear()


def correlation_recommendations(records: list[ErrorCorrelation]) -> list[str]:
    recommendations = []
    if any(record.error_type == "ChunkLoadError" for record in records):
        recommendations.append("Implement retry logic for chunk loading failures")
        recommendations.append("Add fallback loading strategies")
    if any((record.performance_metrics.get("lcp") or 0) > WEB_VITAL_THRESHOLDS["lcp"].poor for record in records):
        recommendations.append("Optimize Largest Contentful Paint to reduce error correlation")
    if any((record.performance_metrics.get("cls") or 0) > WEB_VITAL_THRESHOLDS["cls"].poor for record in records):
        recommendations.append("Fix layout shift issues to prevent interaction errors")
    return recommendations
