"""Composite performance score (0-100) over whatever has been sampled."""

from .budgets import WEB_VITAL_THRESHOLDS
from .models import PerformanceMetrics

SCORE_WEIGHTS: dict[str, float] = {
    "lcp": 0.25,
    "inp": 0.15,
    "fid": 0.10,
    "cls": 0.25,
    "fcp": 0.15,
    "ttfb": 0.10,
}


def calculate_metric_score(metric: str, value: float) -> int:
    """
    Score a single web vital.

    At or under the good threshold scores 100, at or over poor scores 0,
    and values in between are interpolated linearly.
    """
    threshold = WEB_VITAL_THRESHOLDS.get(metric)
    if threshold is None:
        return 50

    if value <= threshold.good:
        return 100
    if value >= threshold.poor:
        return 0

    ratio = (value - threshold.good) / (threshold.poor - threshold.good)
    return max(0, round(100 - ratio * 100))


def calculate_performance_score(metrics: PerformanceMetrics) -> int:
    """Weighted mean of the sub-scores of every sampled web vital."""
    score = 0.0
    total_weight = 0.0

    for metric, weight in SCORE_WEIGHTS.items():
        value = metrics.value_of(metric)
        if value is None:
            continue
        score += calculate_metric_score(metric, value) * weight
        total_weight += weight

    return round(score / total_weight) if total_weight > 0 else 0


def score_recommendations(score: int) -> list[str]:
    """Headline recommendation for a score band."""
    if score < 50:
        return ["Performance is severely degraded; immediate optimization is required"]
    if score < 75:
        return ["There is room for improvement; review the key metrics"]
    if score < 90:
        return ["Performance is good; targeted optimizations can improve it further"]
    return ["Excellent performance; keep the current state"]
