"""
Prometheus export for perfwatch.

Publishes the performance score and every numeric metric as gauges, and
counts alerts and budget overruns as they happen. Scrapes read whatever
update_metrics() last copied from the monitor.

Performance requirements:
- update_metrics: <5ms, logged when slower
"""

import logging
import threading
import time
from typing import Any

from prometheus_client import REGISTRY, Counter, Gauge, Info, start_http_server
from prometheus_client.core import CollectorRegistry

from .models import BudgetExceededEvent, PerformanceAlert
from .monitor import PerformanceMonitor
from .pubsub import Subscription
from .throttle import ThrottleMonitor

logger = logging.getLogger(__name__)

UPDATE_BUDGET_SECONDS = 0.005


class PrometheusPerformanceExporter:
    """Mirrors a PerformanceMonitor into Prometheus metrics."""

    def __init__(
        self,
        monitor: PerformanceMonitor,
        registry: CollectorRegistry | None = None,
        metric_prefix: str = "perfwatch",
        throttle_monitor: ThrottleMonitor | None = None,
    ):
        """
        Args:
            monitor: Monitor to export
            registry: Prometheus collector registry (None for the default registry)
            metric_prefix: Prefix for all metric names
            throttle_monitor: Also export throttle counters from this monitor
        """
        self.monitor = monitor
        self.registry = registry if registry is not None else REGISTRY
        self.prefix = metric_prefix
        self.throttle_monitor = throttle_monitor
        self._lock = threading.Lock()
        self._http_server = None
        self._subscriptions: list[Subscription] = []

        self._initialize_metrics()
        self._subscriptions.append(monitor.subscribe_alerts(self.record_alert))
        self._subscriptions.append(monitor.subscribe_budget_exceeded(self.record_budget_exceeded))

    def _initialize_metrics(self):
        self.performance_score = Gauge(
            f"{self.prefix}_performance_score",
            "Composite performance score (0-100)",
            registry=self.registry,
        )
        self.metric_value = Gauge(
            f"{self.prefix}_metric_value",
            "Latest value of a sampled performance metric",
            ["metric"],
            registry=self.registry,
        )
        self.alerts_total = Counter(
            f"{self.prefix}_alerts_total",
            "Performance alerts raised",
            ["severity", "alert_type"],
            registry=self.registry,
        )
        self.budget_exceeded_total = Counter(
            f"{self.prefix}_budget_exceeded_total",
            "Performance budget overruns",
            ["budget"],
            registry=self.registry,
        )
        self.alert_history_size = Gauge(
            f"{self.prefix}_alert_history_size",
            "Alerts currently held in history",
            registry=self.registry,
        )
        self.throttled_calls = Gauge(
            f"{self.prefix}_throttled_calls",
            "Calls suppressed by a throttled function",
            ["name"],
            registry=self.registry,
        )
        self.session_info = Info(
            f"{self.prefix}_session",
            "Monitored session information",
            registry=self.registry,
        )
        self.session_info.info({"session_id": self.monitor.session_id})

    def record_alert(self, alert: PerformanceAlert) -> None:
        self.alerts_total.labels(severity=alert.severity.value, alert_type=alert.alert_type.value).inc()

    def record_budget_exceeded(self, event: BudgetExceededEvent) -> None:
        self.budget_exceeded_total.labels(budget=event.budget).inc()

    def update_metrics(self) -> None:
        """Copy the monitor's current snapshot into the gauges."""
        start_time = time.time()

        try:
            with self._lock:
                metrics = self.monitor.get_metrics()
                self.performance_score.set(self.monitor.get_performance_score())
                for metric, value in metrics.numeric_items():
                    self.metric_value.labels(metric=metric).set(value)
                self.alert_history_size.set(len(self.monitor.get_alerts()))

                if self.throttle_monitor is not None:
                    for name, stats in (self.throttle_monitor.get_metrics() or {}).items():
                        self.throttled_calls.labels(name=name).set(stats["throttled"])

            update_duration = time.time() - start_time
            if update_duration > UPDATE_BUDGET_SECONDS:
                logger.warning(
                    f"Prometheus metrics update took {update_duration:.3f}s (>{UPDATE_BUDGET_SECONDS:.3f}s threshold)"
                )
        except Exception as e:
            logger.error(f"Failed to update Prometheus metrics: {e}")

    def start_http_server(self, port: int = 8000, addr: str = "localhost"):
        """Start an HTTP server for Prometheus scraping."""
        with self._lock:
            if self._http_server is not None:
                return

            self._http_server, _ = start_http_server(port, addr, registry=self.registry)
            logger.info(f"Prometheus metrics server started on {addr}:{port}")

    def stop_http_server(self):
        with self._lock:
            if self._http_server is not None:
                self._http_server.shutdown()
                self._http_server = None
                logger.info("Prometheus metrics server stopped")

    def get_metrics_summary(self) -> dict[str, Any]:
        return {
            "last_update": time.time(),
            "score": self.monitor.get_performance_score(),
            "metrics": self.monitor.get_metrics().to_dict(),
            "prometheus_server_running": self._http_server is not None,
        }

    def close(self) -> None:
        """Stop serving and unsubscribe from the monitor."""
        self.stop_http_server()
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions = []
