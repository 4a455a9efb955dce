"""
Subscription and reporting façade over a PerformanceMonitor.

Lets any number of independent consumers (dashboards, notification layers,
log sinks) share one monitor without coordinating. Monitoring starts with
the first consumer and stops with the last. Each consumer's callbacks are
subscribed directly to the monitor's channels, so fan-out is synchronous,
in registration order, with failures isolated per callback.
"""

import asyncio
import contextlib
import dataclasses
import logging
import threading
import time
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from .bundle_analyzer import BundlePerformanceAnalyzer
from .error_correlation import ErrorCorrelationAnalyzer
from .gallery_tracker import GalleryPerformanceTracker
from .models import AlertSeverity, BundleAnalytics, ErrorCorrelation, PerformanceAlert, PerformanceReport
from .monitor import MonitoringHooks, PerformanceMonitor
from .pubsub import Subscription
from .settings import PerfwatchSettings
from .sinks import HttpBeaconSink
from .throttle import FRAME_INTERVAL_MS

logger = logging.getLogger(__name__)


@dataclasses.dataclass(eq=False)
class ConsumerRegistration:
    """One consumer's hooks as registered with the monitor."""

    consumer_id: str
    hooks: MonitoringHooks
    registered_at: float = dataclasses.field(default_factory=time.time)


class ReportRefresher:
    """
    Pulls a report every ``interval_ms`` and hands it to ``callback``.

    Runs as an asyncio task. Refreshes slower than one frame are logged,
    and a failing refresh is logged and retried on the next tick.
    """

    def __init__(
        self,
        fetch_report: Callable[[], Awaitable[PerformanceReport]],
        callback: Callable[[PerformanceReport], Any],
        interval_ms: float,
        slow_threshold_ms: float = FRAME_INTERVAL_MS,
    ):
        self.fetch_report = fetch_report
        self.callback = callback
        self.interval_ms = interval_ms
        self.slow_threshold_ms = slow_threshold_ms
        self.refresh_count = 0
        self.slow_refreshes = 0
        self.last_refresh_ms: float | None = None
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Schedule the refresh loop on the running event loop."""
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name="perfwatch-report-refresher")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_ms / 1000)
            await self.refresh()

    async def refresh(self) -> PerformanceReport | None:
        """Fetch one report and deliver it. Never raises."""
        started = time.perf_counter()
        try:
            report = await self.fetch_report()
        except Exception as e:
            logger.warning(f"Failed to refresh performance report: {e}")
            return None

        try:
            result = self.callback(report)
            if asyncio.iscoroutine(result):
                await result
        except Exception as e:
            logger.error(f"Report refresh callback failed: {e}")

        elapsed_ms = (time.perf_counter() - started) * 1000
        self.last_refresh_ms = elapsed_ms
        self.refresh_count += 1
        if elapsed_ms > self.slow_threshold_ms:
            self.slow_refreshes += 1
            logger.warning(f"Slow report refresh: {elapsed_ms:.1f}ms exceeds {self.slow_threshold_ms:.1f}ms frame budget")
        return report


class PerformanceProvider:
    """
    Reference-counted access to a shared PerformanceMonitor.

    Domain trackers are only created when their feature flag is enabled;
    tracking calls for a disabled tracker are no-ops.
    """

    def __init__(
        self,
        monitor: PerformanceMonitor | None = None,
        settings: PerfwatchSettings | None = None,
    ):
        """
        Args:
            monitor: Monitor to share (one is created from ``settings`` by default)
            settings: Feature flags, notification threshold and refresh cadence
        """
        self.settings = settings or (monitor.settings if monitor is not None else PerfwatchSettings())
        self.monitor = monitor or PerformanceMonitor(settings=self.settings)

        self.gallery_tracker: GalleryPerformanceTracker | None = None
        self.error_analyzer: ErrorCorrelationAnalyzer | None = None
        self.bundle_analyzer: BundlePerformanceAnalyzer | None = None
        if self.settings.enable_gallery_tracking:
            self.gallery_tracker = GalleryPerformanceTracker(self.monitor, max_interactions=self.settings.journey_size)
        if self.settings.enable_error_correlation:
            self.error_analyzer = ErrorCorrelationAnalyzer(self.monitor, max_entries=self.settings.error_history_size)
        if self.settings.enable_bundle_analysis:
            self.bundle_analyzer = BundlePerformanceAnalyzer(self.monitor)

        self._consumers: dict[str, ConsumerRegistration] = {}
        self._lock = threading.RLock()
        self._refreshers: list[ReportRefresher] = []
        self._sink_subscriptions: list[Subscription] = []

        self.beacon_sink: HttpBeaconSink | None = None
        if self.settings.beacon_url:
            self.beacon_sink = HttpBeaconSink(self.settings.beacon_url)
            self._sink_subscriptions.extend(self.beacon_sink.attach(self.monitor))

    # Lifecycle

    async def start_monitoring(self, consumer_id: str, hooks: MonitoringHooks | None = None) -> ConsumerRegistration:
        """
        Register a consumer, starting the monitor for the first one.

        Registering an already registered ``consumer_id`` returns the
        existing registration unchanged.

        Raises:
            MonitoringStartError: If the monitor cannot start
        """
        with self._lock:
            existing = self._consumers.get(consumer_id)
            if existing is not None:
                logger.debug(f"Consumer {consumer_id} already registered")
                return existing

            registration = ConsumerRegistration(consumer_id, hooks or MonitoringHooks())
            self._consumers[consumer_id] = registration

        try:
            await self.monitor.start_monitoring(registration.hooks)
        except Exception:
            with self._lock:
                self._consumers.pop(consumer_id, None)
            raise

        logger.info(f"Consumer {consumer_id} registered ({self.consumer_count} active)")
        return registration

    def stop_monitoring(self, consumer_id: str) -> None:
        """Unregister a consumer; the last one out stops the monitor."""
        with self._lock:
            registration = self._consumers.pop(consumer_id, None)
            if registration is None:
                logger.warning(f"stop_monitoring called for unknown consumer {consumer_id}")
                return

            self.monitor.remove_hooks(registration.hooks)
            remaining = len(self._consumers)
            if remaining == 0:
                self.monitor.stop_monitoring()

        logger.info(f"Consumer {consumer_id} unregistered ({remaining} active)")

    @property
    def consumer_count(self) -> int:
        with self._lock:
            return len(self._consumers)

    @property
    def is_monitoring(self) -> bool:
        return self.monitor.is_monitoring

    def consumers(self) -> list[str]:
        with self._lock:
            return list(self._consumers)

    # Notifications

    def should_notify(self, severity: AlertSeverity) -> bool:
        return severity >= self.settings.alert_threshold

    def subscribe_notifications(self, callback: Callable[[PerformanceAlert], None]) -> Subscription:
        """Deliver alerts at or above the configured alert threshold."""

        def notify(alert: PerformanceAlert) -> None:
            if self.should_notify(alert.severity):
                callback(alert)

        notify.__qualname__ = getattr(callback, "__qualname__", "notify")
        return self.monitor.subscribe_alerts(notify)

    # Queries

    def get_performance_score(self) -> int:
        return self.monitor.get_performance_score()

    def get_alerts(self) -> list[PerformanceAlert]:
        return self.monitor.get_alerts()

    def clear_alerts(self) -> None:
        self.monitor.clear_alerts()

    async def get_advanced_report(self) -> PerformanceReport:
        """Monitor report, with bundle analytics when bundle analysis is enabled."""
        analytics: BundleAnalytics | None = None
        if self.bundle_analyzer is not None:
            analytics = await self.bundle_analyzer.analyze_bundles()
        report = self.monitor.get_advanced_report()
        if analytics is not None:
            report = dataclasses.replace(report, bundle_analytics=analytics)
        return report

    def start_refresher(self, callback: Callable[[PerformanceReport], Any], interval_ms: float | None = None) -> ReportRefresher:
        """Start a periodic report refresh (settings.update_interval_ms by default)."""
        refresher = ReportRefresher(
            self.get_advanced_report,
            callback,
            interval_ms or self.settings.update_interval_ms,
        )
        refresher.start()
        self._refreshers.append(refresher)
        return refresher

    # Gallery tracking

    def track_gallery_load(self, start_time: float, end_time: float, artwork_count: int) -> None:
        if self.gallery_tracker is not None:
            self.gallery_tracker.track_gallery_load(start_time, end_time, artwork_count)

    def track_artwork_detail(self, artwork_id: str, load_time: float) -> None:
        if self.gallery_tracker is not None:
            self.gallery_tracker.track_artwork_detail(artwork_id, load_time)

    def track_search_performance(self, query: str, response_time: float, result_count: int) -> None:
        if self.gallery_tracker is not None:
            self.gallery_tracker.track_search_performance(query, response_time, result_count)

    def track_filter_performance(self, filters: Mapping[str, Any], response_time: float) -> None:
        if self.gallery_tracker is not None:
            self.gallery_tracker.track_filter_performance(filters, response_time)

    def track_image_loading(self, image_url: str, load_time: float, size_bytes: int) -> None:
        if self.gallery_tracker is not None:
            self.gallery_tracker.track_image_loading(image_url, load_time, size_bytes)

    def track_scroll_performance(self, frame_duration: float) -> None:
        if self.gallery_tracker is not None:
            self.gallery_tracker.track_scroll_performance(frame_duration)

    def track_modal_open(self, artwork_id: str, open_time: float) -> None:
        if self.gallery_tracker is not None:
            self.gallery_tracker.track_modal_open(artwork_id, open_time)

    def track_error(self, error: BaseException) -> ErrorCorrelation | None:
        if self.error_analyzer is None:
            return None
        return self.error_analyzer.analyze_error_correlation(error)

    # Teardown

    async def dispose(self) -> None:
        """Stop refreshers, unregister every consumer, close the beacon sink and dispose the monitor."""
        refreshers, self._refreshers = self._refreshers, []
        for refresher in refreshers:
            await refresher.stop()
        for consumer_id in self.consumers():
            self.stop_monitoring(consumer_id)
        for subscription in self._sink_subscriptions:
            subscription.unsubscribe()
        self._sink_subscriptions = []
        if self.beacon_sink is not None:
            await self.beacon_sink.aclose()
        self.monitor.dispose()
