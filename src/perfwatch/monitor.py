"""
Performance Monitor: metrics aggregation, budgets and alerting

Merges partial samples from sample sources and domain trackers into one
immutable metrics snapshot, scores it, and evaluates budget, web-vital,
process-memory and regression rules against every new snapshot. Sources
also report individual slow or oversized resource loads as alerts.

Design Principles:
- Single writer: every merge runs under one re-entrant lock
- Readers get immutable snapshots and never need the lock
- Alerts are edge-triggered per rule key and re-arm when the value recovers
- Subscriber failures are contained; only start_monitoring setup raises
"""

import itertools
import logging
import threading
import time
import uuid
from collections import deque
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from .budgets import (
    WEB_VITAL_THRESHOLDS,
    PerformanceBudget,
    TieredThreshold,
    get_default_budgets,
    memory_threshold,
    severity_for_budget_percentage,
)
from .exceptions import MonitoringStartError, RuntimeCapabilityError
from .models import (
    AlertSeverity,
    AlertType,
    BudgetExceededEvent,
    ErrorCorrelation,
    PerformanceAlert,
    PerformanceMetrics,
    PerformanceReport,
    ResourceIssue,
    RUMData,
)
from .pubsub import EventChannel, Subscription
from .regression import REGRESSION_TRACKED_METRICS, PerformanceRegressionDetector, severity_for_degradation
from .runtime import HostEnvironment, PerformanceRuntime, PerformanceTimeline
from .scoring import calculate_performance_score, score_recommendations
from .settings import PerfwatchSettings
from .sources import MetricSource, default_sources, device_type_for_width

if TYPE_CHECKING:
    from .error_correlation import ErrorCorrelationAnalyzer
    from .gallery_tracker import GalleryPerformanceTracker

logger = logging.getLogger(__name__)

ERROR_CORRELATION_ALERT_THRESHOLD = 0.7


@dataclass(eq=False)
class MonitoringHooks:
    """Callbacks registered through start_monitoring. Compared by identity."""

    on_metrics_update: Callable[[PerformanceMetrics], None] | None = None
    on_performance_alert: Callable[[PerformanceAlert], None] | None = None
    on_budget_exceeded: Callable[[BudgetExceededEvent], None] | None = None


class PerformanceMonitor:
    """
    Metrics aggregator and alerting engine.

    Construct one per monitored session and call dispose() when done.
    """

    def __init__(
        self,
        timeline: PerformanceTimeline | None = None,
        environment: HostEnvironment | None = None,
        budgets: Iterable[PerformanceBudget] | None = None,
        sources: Iterable[MetricSource] | None = None,
        settings: PerfwatchSettings | None = None,
        clock: Callable[[], float] = time.time,
        session_id: str | None = None,
        runtime: PerformanceRuntime | None = None,
    ):
        """
        Initialize performance monitor.

        Args:
            timeline: Entry timeline sources observe (a private one by default)
            environment: Host capabilities; non-interactive by default
            budgets: Budgets to enforce (get_default_budgets() by default)
            sources: Sample sources attached by start_monitoring (default_sources() by default)
            settings: Engine settings
            clock: Wall clock in seconds used for alert and report timestamps
            session_id: Identifier reported in RUM data (random by default)
            runtime: Shared timeline and environment, used where ``timeline`` or
                ``environment`` is not given

        Raises:
            KeyError: If a budget names an unknown metric
        """
        self.settings = settings or PerfwatchSettings()
        if runtime is not None:
            timeline = timeline or runtime.timeline
            environment = environment or runtime.environment
        self.timeline = timeline or PerformanceTimeline()
        self.environment = environment or HostEnvironment()
        self.budgets = list(get_default_budgets() if budgets is None else budgets)
        if sources is None:
            sources = default_sources(self.settings.memory_check_interval_ms)
        self.sources = list(sources)
        self.session_id = session_id or uuid.uuid4().hex
        self._clock = clock

        for budget in self.budgets:
            PerformanceMetrics.field_name_for(budget.metric)

        self._lock = threading.RLock()
        self._metrics = PerformanceMetrics()
        self._alerts: deque[PerformanceAlert] = deque(maxlen=self.settings.alert_history_size)
        self._alerted_keys: set[str] = set()
        self._alert_sequence = itertools.count(1)
        self._regression_detector = PerformanceRegressionDetector(
            threshold_percent=self.settings.regression_threshold_percent,
            clock=clock,
        )
        self._threshold_rules: list[tuple[TieredThreshold, AlertSeverity, AlertSeverity]] = [
            (threshold, AlertSeverity.LOW, AlertSeverity.HIGH) for threshold in WEB_VITAL_THRESHOLDS.values()
        ]
        self._threshold_rules.append((
            memory_threshold(self.settings.memory_warning_mb, self.settings.memory_critical_mb),
            AlertSeverity.MEDIUM,
            AlertSeverity.HIGH,
        ))

        self.metrics_channel: EventChannel[PerformanceMetrics] = EventChannel("metrics")
        self.alert_channel: EventChannel[PerformanceAlert] = EventChannel("alerts")
        self.budget_channel: EventChannel[BudgetExceededEvent] = EventChannel("budget_exceeded")

        self._hook_subscriptions: dict[MonitoringHooks, list[Subscription]] = {}
        self._attached_sources: list[MetricSource] = []
        self.is_monitoring = False

        self.gallery_tracker: "GalleryPerformanceTracker | None" = None
        self.error_analyzer: "ErrorCorrelationAnalyzer | None" = None

        logger.info(f"PerformanceMonitor initialized with {len(self.budgets)} budgets and {len(self.sources)} sources")

    # Lifecycle

    async def start_monitoring(self, hooks: MonitoringHooks | None = None) -> None:
        """
        Attach sample sources and register ``hooks``.

        Starting an already running monitor attaches nothing new; a hooks
        object that is already registered is not registered twice.

        Raises:
            MonitoringStartError: If a required source fails to attach
        """
        with self._lock:
            newly_subscribed = hooks is not None and hooks not in self._hook_subscriptions
            if newly_subscribed:
                self._subscribe_hooks(hooks)

            if self.is_monitoring:
                return

            try:
                self._attach_sources()
            except MonitoringStartError:
                if newly_subscribed:
                    self._unsubscribe_hooks(hooks)
                raise
            self.is_monitoring = True

        logger.info(f"Performance monitoring started ({len(self._attached_sources)}/{len(self.sources)} sources live)")

    def stop_monitoring(self) -> None:
        """Detach every source and hook. Metrics and alert history are kept."""
        with self._lock:
            for source in self._attached_sources:
                source.detach()
            self._attached_sources = []
            for hooks in list(self._hook_subscriptions):
                self._unsubscribe_hooks(hooks)
            was_monitoring = self.is_monitoring
            self.is_monitoring = False

        if was_monitoring:
            logger.info("Performance monitoring stopped")

    def _attach_sources(self) -> None:
        attached: list[MetricSource] = []
        for source in self.sources:
            try:
                if source.attach(self.timeline, self.environment, self.record_sample, self.report_resource_issue):
                    attached.append(source)
            except Exception as e:
                if not source.required:
                    logger.warning(f"Source {source.name} failed to attach: {e}")
                    continue
                for live in attached:
                    live.detach()
                raise MonitoringStartError(
                    f"Required source {source.name} failed to attach: {e}",
                    source_name=source.name,
                ) from e
        self._attached_sources = attached

    def _subscribe_hooks(self, hooks: MonitoringHooks) -> None:
        subscriptions = []
        if hooks.on_metrics_update:
            subscriptions.append(self.metrics_channel.subscribe(hooks.on_metrics_update))
        if hooks.on_performance_alert:
            subscriptions.append(self.alert_channel.subscribe(hooks.on_performance_alert))
        if hooks.on_budget_exceeded:
            subscriptions.append(self.budget_channel.subscribe(hooks.on_budget_exceeded))
        self._hook_subscriptions[hooks] = subscriptions

    def _unsubscribe_hooks(self, hooks: MonitoringHooks) -> None:
        for subscription in self._hook_subscriptions.pop(hooks, []):
            subscription.unsubscribe()

    def remove_hooks(self, hooks: MonitoringHooks) -> None:
        """Unsubscribe hooks registered by start_monitoring without stopping."""
        with self._lock:
            self._unsubscribe_hooks(hooks)

    def attach_gallery_tracker(self, tracker: "GalleryPerformanceTracker") -> None:
        self.gallery_tracker = tracker

    def attach_error_analyzer(self, analyzer: "ErrorCorrelationAnalyzer") -> None:
        self.error_analyzer = analyzer

    # Subscriptions

    def subscribe_metrics(self, callback: Callable[[PerformanceMetrics], None]) -> Subscription:
        return self.metrics_channel.subscribe(callback)

    def subscribe_alerts(self, callback: Callable[[PerformanceAlert], None]) -> Subscription:
        return self.alert_channel.subscribe(callback)

    def subscribe_budget_exceeded(self, callback: Callable[[BudgetExceededEvent], None]) -> Subscription:
        return self.budget_channel.subscribe(callback)

    # Recording

    def record_metric(self, name: str, value: Any) -> PerformanceMetrics | None:
        """Merge a single metric value. See record_sample."""
        return self.record_sample({name: value})

    def record_sample(self, sample: Mapping[str, Any]) -> PerformanceMetrics | None:
        """
        Merge a partial sample into the metrics snapshot and evaluate rules.

        Metrics subscribers are only notified when the snapshot changed.

        Args:
            sample: Metric key (camelCase) or field name to value

        Returns:
            The new snapshot, or None if the sample was invalid and dropped
        """
        if not sample:
            return self._metrics

        try:
            with self._lock:
                updated = self._metrics.merged(sample)
                changed = updated != self._metrics
                if changed:
                    self._metrics = updated
                else:
                    updated = self._metrics
                recorded = {PerformanceMetrics.metric_key_for(key) for key in sample}
                regression_alerts = self._check_regressions(updated, recorded)
                budget_events = self._evaluate_budgets(updated)
                threshold_alerts = self._evaluate_thresholds(updated)
        except (KeyError, ValidationError) as e:
            logger.warning(f"Dropping invalid metric sample {dict(sample)!r}: {e}")
            return None

        if changed:
            self.metrics_channel.publish(updated)
        for event in budget_events:
            self.trigger_budget_exceeded(event)
        for alert in threshold_alerts + regression_alerts:
            self.trigger_alert(alert)
        return updated

    def _evaluate_budgets(self, metrics: PerformanceMetrics) -> list[BudgetExceededEvent]:
        events = []
        for budget in self.budgets:
            if not budget.enabled:
                continue
            value = metrics.value_of(budget.metric)
            if value is None:
                continue

            key = f"budget:{budget.name}"
            if budget.is_exceeded(value):
                if key not in self._alerted_keys:
                    self._alerted_keys.add(key)
                    events.append(BudgetExceededEvent(
                        budget=budget.name,
                        metric=PerformanceMetrics.metric_key_for(budget.metric),
                        actual=float(value),
                        allocated=budget.allocated,
                        recommendations=budget.recommendations,
                    ))
            else:
                self._alerted_keys.discard(key)
        return events

    def _evaluate_thresholds(self, metrics: PerformanceMetrics) -> list[PerformanceAlert]:
        alerts = []
        for threshold, warning_severity, poor_severity in self._threshold_rules:
            value = metrics.value_of(threshold.metric)
            if value is None:
                continue

            rating = threshold.rate(value)
            warning_tier, poor_tier = threshold.tiers
            warning_key = f"threshold:{threshold.metric}:{warning_tier}"
            poor_key = f"threshold:{threshold.metric}:{poor_tier}"

            if rating == "good":
                self._alerted_keys.difference_update((warning_key, poor_key))
                continue

            if rating == poor_tier:
                fire = poor_key not in self._alerted_keys
                self._alerted_keys.update((warning_key, poor_key))
                severity, limit = poor_severity, threshold.poor
            else:
                fire = warning_key not in self._alerted_keys
                self._alerted_keys.discard(poor_key)
                self._alerted_keys.add(warning_key)
                severity, limit = warning_severity, threshold.good

            if fire:
                unit = threshold.unit
                suggestion = threshold.suggestions.get(rating)
                alerts.append(self._build_alert(
                    AlertType.THRESHOLD_EXCEEDED,
                    severity,
                    metric=threshold.metric,
                    value=value,
                    threshold=limit,
                    message=(
                        f"{threshold.display_name} is {rating.replace('-', ' ')}: "
                        f"{value:g}{unit} (threshold {limit:g}{unit})"
                    ),
                    action_required=(suggestion,) if suggestion else (),
                ))
        return alerts

    def _check_regressions(self, metrics: PerformanceMetrics, recorded: set[str]) -> list[PerformanceAlert]:
        alerts = []
        for metric in sorted(recorded & REGRESSION_TRACKED_METRICS):
            value = metrics.value_of(metric)
            if value is None:
                continue

            key = f"regression:{metric}"
            regression = self._regression_detector.check(metric, float(value))
            if regression is None:
                self._alerted_keys.discard(key)
                continue
            if key in self._alerted_keys:
                continue

            self._alerted_keys.add(key)
            alerts.append(self._build_alert(
                AlertType.REGRESSION_DETECTED,
                severity_for_degradation(regression.degradation),
                metric=metric,
                value=regression.current,
                threshold=regression.baseline,
                message=f"Performance regression detected in {metric}: {regression.degradation:.1f}% degradation",
                action_required=(
                    "Investigate recent code changes",
                    "Check for infrastructure issues",
                    "Review performance optimizations",
                    "Consider rollback if critical",
                ),
            ))
        return alerts

    # Alerting

    def _build_alert(
        self,
        alert_type: AlertType,
        severity: AlertSeverity,
        metric: str,
        value: float,
        threshold: float,
        message: str,
        action_required: tuple[str, ...] = (),
    ) -> PerformanceAlert:
        timestamp = self._clock()
        return PerformanceAlert(
            alert_id=f"{alert_type.value}_{int(timestamp * 1000)}_{next(self._alert_sequence)}",
            alert_type=alert_type,
            severity=severity,
            metric=metric,
            value=float(value),
            threshold=float(threshold),
            timestamp=timestamp,
            message=message,
            action_required=tuple(action_required),
        )

    def trigger_alert(self, alert: PerformanceAlert) -> PerformanceAlert:
        """Append ``alert`` to history and deliver it to alert subscribers."""
        with self._lock:
            self._alerts.append(alert)

        logger.log(
            logging.CRITICAL if alert.severity == AlertSeverity.CRITICAL else logging.WARNING,
            f"Performance Alert [{alert.severity.value.upper()}]: {alert.message}",
        )
        self.alert_channel.publish(alert)
        return alert

    def trigger_budget_exceeded(self, event: BudgetExceededEvent) -> PerformanceAlert:
        """Publish a budget overrun and raise exactly one alert for it."""
        alert = self._build_alert(
            AlertType.BUDGET_EXCEEDED,
            severity_for_budget_percentage(event.percentage),
            metric=event.metric,
            value=event.actual,
            threshold=event.allocated,
            message=f"Budget exceeded for {event.budget}: {event.percentage:.1f}%",
            action_required=event.recommendations,
        )
        self.budget_channel.publish(event)
        return self.trigger_alert(alert)

    def report_resource_issue(self, issue: ResourceIssue) -> PerformanceAlert:
        """Raise an alert for one slow or oversized resource load."""
        kind = "Slow" if issue.issue_type == "slow_resource" else "Large"
        return self.trigger_alert(self._build_alert(
            AlertType.THRESHOLD_EXCEEDED,
            issue.severity,
            metric=issue.metric,
            value=issue.value,
            threshold=issue.threshold,
            message=f"{kind} resource {issue.resource}: {issue.value:g} (threshold {issue.threshold:g})",
            action_required=(issue.suggestion,),
        ))

    def report_error_correlation(self, correlation: ErrorCorrelation) -> PerformanceAlert | None:
        """Raise a high alert when an error correlates strongly with degraded metrics."""
        if correlation.correlation <= ERROR_CORRELATION_ALERT_THRESHOLD:
            return None
        return self.trigger_alert(self._build_alert(
            AlertType.THRESHOLD_EXCEEDED,
            AlertSeverity.HIGH,
            metric="errorCorrelation",
            value=correlation.correlation,
            threshold=ERROR_CORRELATION_ALERT_THRESHOLD,
            message=f"High error-performance correlation detected: {correlation.error_type}",
            action_required=(
                "Investigate performance impact of errors",
                "Implement error prevention strategies",
                "Monitor user experience degradation",
            ),
        ))

    # Queries

    def get_metrics(self) -> PerformanceMetrics:
        return self._metrics

    def get_performance_score(self) -> int:
        return calculate_performance_score(self._metrics)

    def get_alerts(self, limit: int | None = None) -> list[PerformanceAlert]:
        """Alert history, oldest first; ``limit`` keeps the most recent."""
        with self._lock:
            alerts = list(self._alerts)
        if limit is None:
            return alerts
        return alerts[-limit:] if limit > 0 else []

    def clear_alerts(self) -> None:
        with self._lock:
            self._alerts.clear()

    def get_advanced_report(self) -> PerformanceReport:
        """Point-in-time report. Safe whether or not monitoring is active."""
        metrics = self._metrics
        score = calculate_performance_score(metrics)

        insights: dict[str, Any] = {}
        recommendations = list(score_recommendations(score))
        if self.error_analyzer is not None:
            insights = self.error_analyzer.get_correlation_insights()
            recommendations.extend(insights.get("recommendations", []))

        journey = self.gallery_tracker.get_user_journey() if self.gallery_tracker is not None else ()

        return PerformanceReport(
            metrics=metrics,
            score=score,
            alerts=tuple(self.get_alerts()),
            recommendations=tuple(recommendations),
            correlation_insights=insights,
            user_journey=journey,
            generated_at=self._clock(),
        )

    def collect_rum_data(self) -> RUMData:
        """
        Snapshot the session environment for real-user monitoring.

        Raises:
            RuntimeCapabilityError: If the host has no viewport
        """
        environment = self.environment
        if not environment.interactive:
            raise RuntimeCapabilityError("RUM data requires an interactive host", capability="viewport")

        width, height = environment.viewport
        metrics = self._metrics
        errors = ()
        if self.error_analyzer is not None:
            errors = tuple(record.to_dict() for record in self.error_analyzer.get_history())

        return RUMData(
            session_id=self.session_id,
            user_agent=environment.user_agent,
            viewport={"width": width, "height": height},
            connection_type=metrics.connection_type or "unknown",
            device_type=device_type_for_width(width),
            page_metrics=metrics,
            user_journey=self.gallery_tracker.get_user_journey() if self.gallery_tracker is not None else (),
            errors=errors,
            timestamp=self._clock(),
        )

    # Teardown

    def reset(self) -> None:
        """Clear metrics, alert history, alerted rule keys and regression baselines."""
        with self._lock:
            self._metrics = PerformanceMetrics()
            self._alerts.clear()
            self._alerted_keys.clear()
            self._regression_detector.reset()
            for source in self._attached_sources:
                source.reset()
        logger.info("Performance monitor reset")

    def dispose(self) -> None:
        """Stop monitoring and drop every subscriber."""
        self.stop_monitoring()
        self.metrics_channel.clear()
        self.alert_channel.clear()
        self.budget_channel.clear()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.dispose()
