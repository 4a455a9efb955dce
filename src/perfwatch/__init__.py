"""perfwatch - Performance telemetry and alerting engine."""

__version__ = "0.1.0"

from .exceptions import MonitoringStartError, PerfwatchError, RuntimeCapabilityError
from .models import (
    AlertSeverity, AlertType, BudgetExceededEvent, BundleAnalytics, ErrorCorrelation,
    LoadingPattern, NavigationTiming, PerformanceAlert, PerformanceMetrics,
    PerformanceRegression, PerformanceReport, ResourceIssue, RUMData, UserInteraction
)
from .settings import PerfwatchSettings

# Budgets and scoring
from .budgets import WEB_VITAL_THRESHOLDS, PerformanceBudget, TieredThreshold, get_default_budgets, memory_threshold
from .scoring import calculate_metric_score, calculate_performance_score

# Runtime and sample sources
from .runtime import HostEnvironment, PerformanceRuntime, PerformanceTimeline
from .sources import MemoryUsageSource, MetricSource, default_sources
from .throttle import ThrottleMonitor, Throttled, get_throttle_monitor, throttle, throttle_animation_frame

# Aggregation, trackers and façade
from .pubsub import EventChannel, Subscription
from .regression import PerformanceRegressionDetector
from .monitor import MonitoringHooks, PerformanceMonitor
from .gallery_tracker import GalleryPerformanceTracker
from .bundle_analyzer import BundlePerformanceAnalyzer
from .error_correlation import ErrorCorrelationAnalyzer
from .provider import ConsumerRegistration, PerformanceProvider, ReportRefresher

# Export
from .sinks import HttpBeaconSink, StructlogAlertSink, export_report_to_json_file
from .prometheus_exporter import PrometheusPerformanceExporter

__all__ = [
    "AlertSeverity",
    "AlertType",
    "BudgetExceededEvent",
    "BundleAnalytics",
    "BundlePerformanceAnalyzer",
    "ConsumerRegistration",
    "ErrorCorrelation",
    "ErrorCorrelationAnalyzer",
    "EventChannel",
    "GalleryPerformanceTracker",
    "HostEnvironment",
    "HttpBeaconSink",
    "LoadingPattern",
    "MemoryUsageSource",
    "MetricSource",
    "MonitoringHooks",
    "MonitoringStartError",
    "NavigationTiming",
    "PerformanceAlert",
    "PerformanceBudget",
    "PerformanceMetrics",
    "PerformanceMonitor",
    "PerformanceProvider",
    "PerformanceRegression",
    "PerformanceRegressionDetector",
    "PerformanceReport",
    "PerformanceRuntime",
    "PerformanceTimeline",
    "PerfwatchError",
    "PerfwatchSettings",
    "PrometheusPerformanceExporter",
    "RUMData",
    "ResourceIssue",
    "ReportRefresher",
    "RuntimeCapabilityError",
    "StructlogAlertSink",
    "Subscription",
    "ThrottleMonitor",
    "Throttled",
    "UserInteraction",
    "WEB_VITAL_THRESHOLDS",
    "TieredThreshold",
    "calculate_metric_score",
    "calculate_performance_score",
    "default_sources",
    "export_report_to_json_file",
    "get_default_budgets",
    "get_throttle_monitor",
    "memory_threshold",
    "throttle",
    "throttle_animation_frame",
]
