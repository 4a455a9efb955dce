"""
Alert and report sinks.

Best-effort consumers that forward alerts, budget overruns and reports to
logs, a remote collector or disk. A sink failure is logged and never
propagates back into the monitor.
"""

import asyncio
import json
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Any

import httpx
import structlog

from .models import AlertSeverity, BudgetExceededEvent, PerformanceAlert, PerformanceReport
from .pubsub import Subscription

logger = logging.getLogger(__name__)

_SEVERITY_LOG_LEVELS = {
    AlertSeverity.LOW: logging.INFO,
    AlertSeverity.MEDIUM: logging.WARNING,
    AlertSeverity.HIGH: logging.ERROR,
    AlertSeverity.CRITICAL: logging.CRITICAL,
}


class StructlogAlertSink:
    """Writes alerts and budget overruns as structured log events."""

    def __init__(self, log: Any = None):
        self.log = log or structlog.get_logger("perfwatch.alerts")

    def attach(self, monitor) -> list[Subscription]:
        return [
            monitor.subscribe_alerts(self.handle_alert),
            monitor.subscribe_budget_exceeded(self.handle_budget_exceeded),
        ]

    def handle_alert(self, alert: PerformanceAlert) -> None:
        self.log.log(
            _SEVERITY_LOG_LEVELS[alert.severity],
            "performance_alert",
            alert_id=alert.alert_id,
            alert_type=alert.alert_type.value,
            severity=alert.severity.value,
            metric=alert.metric,
            value=alert.value,
            threshold=alert.threshold,
            message=alert.message,
        )

    def handle_budget_exceeded(self, event: BudgetExceededEvent) -> None:
        self.log.warning(
            "budget_exceeded",
            budget=event.budget,
            metric=event.metric,
            actual=event.actual,
            allocated=event.allocated,
            percentage=round(event.percentage, 1),
        )


class HttpBeaconSink:
    """
    POSTs alerts and budget events to a collector endpoint without blocking
    the publisher.

    On a running event loop each POST is an asyncio task on an
    ``httpx.AsyncClient``. Without a loop it runs on a single background
    worker thread with an ``httpx.Client``. Payload:
    ``{"type": ..., "data": ..., "timestamp": ...}``. Network and HTTP
    errors are logged and counted in ``failed``.
    """

    def __init__(
        self,
        url: str,
        timeout: float = 5.0,
        client: httpx.Client | None = None,
        async_client: httpx.AsyncClient | None = None,
    ):
        self.url = url
        self.timeout = timeout
        self._client = client
        self._async_client = async_client
        self._owns_client = client is None
        self._owns_async_client = async_client is None
        self._executor: ThreadPoolExecutor | None = None
        self._pending: set[asyncio.Future | Future] = set()
        self._lock = threading.Lock()
        self._closed = False
        self.sent = 0
        self.failed = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def attach(self, monitor) -> list[Subscription]:
        return [
            monitor.subscribe_alerts(self.send_alert),
            monitor.subscribe_budget_exceeded(self.send_budget_exceeded),
        ]

    def send_alert(self, alert: PerformanceAlert) -> asyncio.Future | Future | None:
        return self.send("performance-alert", alert.to_dict())

    def send_budget_exceeded(self, event: BudgetExceededEvent) -> asyncio.Future | Future | None:
        return self.send("budget-exceeded", event.to_dict())

    def send(self, event_type: str, data: dict[str, Any]) -> asyncio.Future | Future | None:
        """
        Schedule one POST and return immediately.

        Returns:
            Task or future resolving to True when the collector accepted the
            event, or None once the sink is closed
        """
        if self._closed:
            logger.warning(f"Beacon sink closed, dropping {event_type}")
            return None

        payload = {"type": event_type, "data": data, "timestamp": time.time()}
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is not None:
            pending = loop.create_task(self._post_async(event_type, payload))
        else:
            pending = self._get_executor().submit(self._post, event_type, payload)

        with self._lock:
            self._pending.add(pending)
        pending.add_done_callback(self._on_done)
        return pending

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="perfwatch-beacon")
            return self._executor

    def _post(self, event_type: str, payload: dict[str, Any]) -> bool:
        if self._client is None:
            self._client = httpx.Client(timeout=self.timeout)
        try:
            response = self._client.post(self.url, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as e:
            return self._record(False, event_type, e)
        return self._record(True, event_type)

    async def _post_async(self, event_type: str, payload: dict[str, Any]) -> bool:
        if self._async_client is None:
            self._async_client = httpx.AsyncClient(timeout=self.timeout)
        try:
            response = await self._async_client.post(self.url, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as e:
            return self._record(False, event_type, e)
        return self._record(True, event_type)

    def _record(self, success: bool, event_type: str, error: Exception | None = None) -> bool:
        with self._lock:
            if success:
                self.sent += 1
            else:
                self.failed += 1
        if error is not None:
            logger.warning(f"Failed to send {event_type} to {self.url}: {error}")
        return success

    def _on_done(self, pending: asyncio.Future | Future) -> None:
        with self._lock:
            self._pending.discard(pending)
        if pending.cancelled():
            return
        error = pending.exception()
        if error is not None:
            logger.error(f"Beacon delivery to {self.url} crashed: {error}")

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    async def drain(self) -> None:
        """Wait for every scheduled POST, task or worker thread, to finish."""
        with self._lock:
            pending = list(self._pending)
        if pending:
            await asyncio.gather(
                *(asyncio.wrap_future(p) if isinstance(p, Future) else p for p in pending),
                return_exceptions=True,
            )

    def flush(self, timeout: float | None = None) -> None:
        """Block until POSTs handed to the worker thread have finished."""
        with self._lock:
            futures = [p for p in self._pending if isinstance(p, Future)]
        wait(futures, timeout=timeout)

    def close(self) -> None:
        """Finish worker-thread POSTs and close the blocking client."""
        self._closed = True
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=True)
        if self._client is not None and self._owns_client:
            self._client.close()

    async def aclose(self) -> None:
        """Drain pending POSTs, then close both clients."""
        self._closed = True
        await self.drain()
        if self._async_client is not None and self._owns_async_client:
            await self._async_client.aclose()
        self.close()


def export_report_to_json_file(report: PerformanceReport, file_path: str | Path) -> bool:
    """
    Export a report to a JSON file.

    Returns:
        True if the file was written
    """
    try:
        with open(file_path, "w") as f:
            json.dump(report.to_dict(), f, indent=2, default=str)
    except Exception as e:
        logger.error(f"Failed to export performance report to {file_path}: {e}")
        return False
    return True
