"""
Data model for the perfwatch telemetry engine.

PerformanceMetrics is a validated, immutable record where every field is
optional and ``None`` means "not sampled yet". Each merge produces a new
snapshot, so any reader holding a snapshot sees a consistent view without
locking.

Alerts and events are frozen dataclasses; reports are computed on demand
and serialize to plain JSON-compatible dictionaries.
"""

import functools
import time
from collections.abc import Iterator, Mapping
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, NonNegativeFloat, NonNegativeInt
from pydantic.alias_generators import to_camel


@functools.total_ordering
class AlertSeverity(Enum):
    """Alert severity levels, ordered low < medium < high < critical."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, AlertSeverity):
            return NotImplemented
        return self.rank < other.rank


_SEVERITY_RANK = {
    AlertSeverity.LOW: 0,
    AlertSeverity.MEDIUM: 1,
    AlertSeverity.HIGH: 2,
    AlertSeverity.CRITICAL: 3,
}


class AlertType(Enum):
    """Rule family that produced an alert."""

    BUDGET_EXCEEDED = "budget_exceeded"
    THRESHOLD_EXCEEDED = "threshold_exceeded"
    REGRESSION_DETECTED = "regression_detected"


class _MetricModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
        frozen=True,
    )


class NavigationTiming(_MetricModel):
    """Page-load timeline phases in milliseconds."""

    dns: NonNegativeFloat = 0.0
    tcp: NonNegativeFloat = 0.0
    ssl: NonNegativeFloat = 0.0
    ttfb: NonNegativeFloat = 0.0
    download: NonNegativeFloat = 0.0
    dom_content_loaded: NonNegativeFloat = 0.0
    complete: NonNegativeFloat = 0.0


class PerformanceMetrics(_MetricModel):
    """
    Canonical metric snapshot.

    Field names are snake_case; the camelCase alias of each field is the
    metric key used in samples, alerts and reports (``artworkListLoadTime``).
    """

    # Core Web Vitals
    lcp: NonNegativeFloat | None = None
    fid: NonNegativeFloat | None = None
    inp: NonNegativeFloat | None = None
    cls: NonNegativeFloat | None = None
    fcp: NonNegativeFloat | None = None
    ttfb: NonNegativeFloat | None = None

    # Page metrics
    first_interaction: NonNegativeFloat | None = None
    dom_interactive: NonNegativeFloat | None = None
    resource_load_time: NonNegativeFloat | None = None
    font_load_time: NonNegativeFloat | None = None
    image_load_time: NonNegativeFloat | None = None
    js_execution_time: NonNegativeFloat | None = None

    # Network
    connection_type: str | None = None
    effective_type: str | None = None
    downlink: NonNegativeFloat | None = None
    rtt: NonNegativeFloat | None = None

    # Device
    device_memory: NonNegativeFloat | None = None
    hardware_concurrency: NonNegativeInt | None = None
    device_type: Literal["mobile", "tablet", "desktop"] | None = None
    screen_resolution: str | None = None
    pixel_ratio: NonNegativeFloat | None = None

    # Host process resident memory, MB
    memory_usage: NonNegativeFloat | None = None

    navigation_timing: NavigationTiming | None = None

    # Gallery
    artwork_list_load_time: NonNegativeFloat | None = None
    artwork_detail_load_time: NonNegativeFloat | None = None
    search_response_time: NonNegativeFloat | None = None
    filter_response_time: NonNegativeFloat | None = None
    image_loading_time: NonNegativeFloat | None = None
    thumbnail_load_time: NonNegativeFloat | None = None
    artwork_modal_open_time: NonNegativeFloat | None = None
    scroll_performance: NonNegativeFloat | None = None
    animation_frame_rate: NonNegativeFloat | None = None

    # Bundle
    bundle_size: NonNegativeInt | None = None
    cache_hit_rate: float | None = Field(default=None, ge=0.0, le=1.0)
    compression_ratio: NonNegativeFloat | None = None
    critical_resource_count: NonNegativeInt | None = None

    # Errors
    error_count: NonNegativeInt | None = None
    performance_error_correlation: float | None = Field(default=None, ge=0.0, le=1.0)

    @classmethod
    def field_name_for(cls, key: str) -> str:
        """Resolve a metric key or field name to the field name."""
        if key in cls.model_fields:
            return key
        try:
            return _ALIAS_TO_FIELD[key]
        except KeyError:
            raise KeyError(f"Unknown metric: {key}") from None

    @classmethod
    def metric_key_for(cls, name: str) -> str:
        """Resolve a field name or metric key to the camelCase metric key."""
        return to_camel(cls.field_name_for(name))

    def value_of(self, name: str) -> Any:
        return getattr(self, self.field_name_for(name))

    def is_set(self, name: str) -> bool:
        return self.value_of(name) is not None

    def set_fields(self) -> list[str]:
        """Metric keys that currently hold a value."""
        return [to_camel(name) for name in type(self).model_fields if getattr(self, name) is not None]

    def merged(self, sample: Mapping[str, Any]) -> "PerformanceMetrics":
        """
        Return a new snapshot with ``sample`` shallow-merged over this one.

        Keys absent from the sample are carried over untouched. Raises
        KeyError for unknown keys and pydantic.ValidationError for bad values.
        """
        data = {
            name: getattr(self, name)
            for name in type(self).model_fields
            if getattr(self, name) is not None
        }
        for key, value in sample.items():
            data[self.field_name_for(key)] = value
        return type(self).model_validate(data)

    def numeric_items(self) -> Iterator[tuple[str, float]]:
        """Yield (metric key, value) for every set numeric field."""
        for name in type(self).model_fields:
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                continue
            yield to_camel(name), float(value)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


_ALIAS_TO_FIELD = {to_camel(name): name for name in PerformanceMetrics.model_fields}


@dataclass(frozen=True)
class PerformanceAlert:
    """Immutable record of one alert emission."""

    alert_id: str
    alert_type: AlertType
    severity: AlertSeverity
    metric: str
    value: float
    threshold: float
    timestamp: float
    message: str
    action_required: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        """Convert alert to dictionary for serialization."""
        data = asdict(self)
        data["alert_type"] = self.alert_type.value
        data["severity"] = self.severity.value
        data["action_required"] = list(self.action_required)
        return data


@dataclass(frozen=True)
class BudgetExceededEvent:
    """A budget overrun, consumed once to build exactly one alert."""

    budget: str
    metric: str
    actual: float
    allocated: float
    recommendations: tuple[str, ...] = ()

    @property
    def percentage(self) -> float:
        return self.actual / self.allocated * 100 if self.allocated > 0 else float("inf")

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["percentage"] = self.percentage
        data["recommendations"] = list(self.recommendations)
        return data


@dataclass(frozen=True)
class ResourceIssue:
    """A single resource load that was slow or oversized."""

    issue_type: Literal["slow_resource", "large_resource"]
    severity: AlertSeverity
    metric: str
    value: float
    threshold: float
    resource: str
    suggestion: str

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["severity"] = self.severity.value
        return data


@dataclass(frozen=True)
class UserInteraction:
    """One entry of the gallery user journey."""

    interaction_type: Literal["click", "scroll", "search", "filter", "navigation"]
    element: str
    duration: float
    timestamp: float
    context: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class LoadingPattern:
    """How resources loaded for one route."""

    route: str
    critical_resources: tuple[str, ...]
    load_time: float
    cache_utilization: float
    recommendations: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["critical_resources"] = list(self.critical_resources)
        data["recommendations"] = list(self.recommendations)
        return data


@dataclass(frozen=True)
class BundleAnalytics:
    """Bundle/chunk analytics computed at one moment."""

    total_size: int = 0
    chunk_sizes: dict[str, int] = field(default_factory=dict)
    duplicate_code: int = 0
    unused_code: int = 0
    compression_ratio: float = 1.0
    loading_patterns: tuple[LoadingPattern, ...] = ()

    @classmethod
    def empty(cls) -> "BundleAnalytics":
        return cls()

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_size": self.total_size,
            "chunk_sizes": dict(self.chunk_sizes),
            "duplicate_code": self.duplicate_code,
            "unused_code": self.unused_code,
            "compression_ratio": self.compression_ratio,
            "loading_patterns": [p.to_dict() for p in self.loading_patterns],
        }


@dataclass(frozen=True)
class RUMData:
    """Real-user-monitoring snapshot of the session environment."""

    session_id: str
    user_agent: str
    viewport: dict[str, int]
    connection_type: str
    device_type: Literal["mobile", "tablet", "desktop"]
    page_metrics: PerformanceMetrics
    user_journey: tuple[UserInteraction, ...] = ()
    errors: tuple[dict[str, Any], ...] = ()
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "user_agent": self.user_agent,
            "viewport": dict(self.viewport),
            "connection_type": self.connection_type,
            "device_type": self.device_type,
            "page_metrics": self.page_metrics.to_dict(),
            "user_journey": [i.to_dict() for i in self.user_journey],
            "errors": [dict(e) for e in self.errors],
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class ErrorCorrelation:
    """An error paired with the performance state that preceded it."""

    timestamp: float
    error_type: str
    error_message: str
    performance_metrics: dict[str, Any]
    correlation: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class PerformanceRegression:
    """A metric that degraded beyond tolerance against its rolling baseline."""

    metric: str
    baseline: float
    current: float
    degradation: float  # percent over baseline
    timestamp: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class PerformanceReport:
    """Point-in-time report combining metrics, score and alert history."""

    metrics: PerformanceMetrics
    score: int
    alerts: tuple[PerformanceAlert, ...]
    recommendations: tuple[str, ...] = ()
    correlation_insights: dict[str, Any] = field(default_factory=dict)
    user_journey: tuple[UserInteraction, ...] = ()
    bundle_analytics: BundleAnalytics | None = None
    generated_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "generated_at": self.generated_at,
            "score": self.score,
            "metrics": self.metrics.to_dict(),
            "alerts": [alert.to_dict() for alert in self.alerts],
            "recommendations": list(self.recommendations),
            "correlation_insights": self.correlation_insights,
            "user_journey": [i.to_dict() for i in self.user_journey],
            "bundle_analytics": self.bundle_analytics.to_dict() if self.bundle_analytics else None,
        }
