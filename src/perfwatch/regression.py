"""Rolling-baseline regression detection for gallery and bundle metrics."""

import logging
import threading
import time
from collections import deque
from collections.abc import Callable

from .models import AlertSeverity, PerformanceRegression

logger = logging.getLogger(__name__)

# Metrics where a higher value is worse and a baseline is meaningful
REGRESSION_TRACKED_METRICS = frozenset({
    "artworkListLoadTime",
    "artworkDetailLoadTime",
    "searchResponseTime",
    "filterResponseTime",
    "imageLoadingTime",
    "thumbnailLoadTime",
    "artworkModalOpenTime",
    "scrollPerformance",
    "bundleSize",
})


def severity_for_degradation(degradation: float) -> AlertSeverity:
    return AlertSeverity.CRITICAL if degradation > 50 else AlertSeverity.HIGH


class PerformanceRegressionDetector:
    """
    Compares each new value with the mean of the values before it.

    The baseline is taken before the new value joins the history, so a
    single spike is measured against the steady state rather than itself.
    """

    def __init__(
        self,
        threshold_percent: float = 20.0,
        history_size: int = 50,
        clock: Callable[[], float] = time.time,
    ):
        self.threshold_percent = threshold_percent
        self.history_size = history_size
        self._clock = clock
        self._history: dict[str, deque] = {}
        self._lock = threading.Lock()

    def check(self, metric: str, value: float) -> PerformanceRegression | None:
        """Record ``value`` and return a regression if it degrades past the threshold."""
        with self._lock:
            history = self._history.setdefault(metric, deque(maxlen=self.history_size))
            baseline = sum(history) / len(history) if history else None
            history.append(value)

        if not baseline or baseline <= 0:
            return None

        degradation = (value - baseline) / baseline * 100
        if degradation <= self.threshold_percent:
            return None

        logger.debug(f"Regression on {metric}: {value:.1f} vs baseline {baseline:.1f} (+{degradation:.1f}%)")
        return PerformanceRegression(
            metric=metric,
            baseline=baseline,
            current=value,
            degradation=degradation,
            timestamp=self._clock(),
        )

    def baseline(self, metric: str) -> float | None:
        with self._lock:
            history = self._history.get(metric)
            return sum(history) / len(history) if history else None

    def reset(self, metric: str | None = None) -> None:
        with self._lock:
            if metric is None:
                self._history.clear()
            else:
                self._history.pop(metric, None)
