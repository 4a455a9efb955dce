"""
Tests for alert and report sinks.

Test Categories:
- TestStructlogAlertSink: structured log events per alert and budget overrun
- TestHttpBeaconSink: worker-thread collector POSTs through an httpx mock transport
- TestAsyncHttpBeaconSink: event-loop collector POSTs through an async mock transport
- TestReportExport: JSON report export
"""

import asyncio
import json
import logging
import time

import httpx
import pytest
from structlog.testing import capture_logs

from perfwatch.budgets import PerformanceBudget
from perfwatch.models import AlertSeverity, BudgetExceededEvent
from perfwatch.monitor import PerformanceMonitor
from perfwatch.sinks import HttpBeaconSink, StructlogAlertSink, export_report_to_json_file

from helpers import make_alert


@pytest.mark.fast
class TestStructlogAlertSink:

    def test_severity_maps_to_log_level(self, mocker):
        log = mocker.Mock()
        sink = StructlogAlertSink(log)

        sink.handle_alert(make_alert(1, AlertSeverity.HIGH))

        log.log.assert_called_once()
        args, kwargs = log.log.call_args
        assert args == (logging.ERROR, "performance_alert")
        assert kwargs["alert_id"] == "alert-1"
        assert kwargs["severity"] == "high"
        assert kwargs["metric"] == "lcp"

    def test_budget_exceeded_event(self):
        sink = StructlogAlertSink()

        with capture_logs() as logs:
            sink.handle_budget_exceeded(BudgetExceededEvent("gallery_load_time", "artworkListLoadTime", 800, 700))

        assert logs == [{
            "event": "budget_exceeded",
            "log_level": "warning",
            "budget": "gallery_load_time",
            "metric": "artworkListLoadTime",
            "actual": 800,
            "allocated": 700,
            "percentage": 114.3,
        }]

    def test_attach_receives_monitor_events(self, mocker):
        monitor = PerformanceMonitor(sources=[], budgets=[PerformanceBudget("search_response", "searchResponseTime", 300)])
        log = mocker.Mock()
        StructlogAlertSink(log).attach(monitor)

        monitor.record_metric("searchResponseTime", 400)

        log.warning.assert_called_once()
        log.log.assert_called_once()
        assert log.log.call_args.args[0] == logging.ERROR


@pytest.mark.fast
class TestHttpBeaconSink:

    def _sink(self, handler):
        return HttpBeaconSink("https://collector.example/perf", client=httpx.Client(transport=httpx.MockTransport(handler)))

    def test_alert_posted_as_json(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(204)

        sink = self._sink(handler)

        assert sink.send_alert(make_alert(7, AlertSeverity.CRITICAL)).result(timeout=5)

        payload = json.loads(requests[0].content)
        assert requests[0].method == "POST"
        assert payload["type"] == "performance-alert"
        assert payload["data"]["alert_id"] == "alert-7"
        assert payload["data"]["severity"] == "critical"
        assert "timestamp" in payload
        assert sink.sent == 1
        sink.close()

    def test_budget_event_posted(self):
        requests = []

        def handler(request):
            requests.append(json.loads(request.content))
            return httpx.Response(200)

        sink = self._sink(handler)
        sink.send_budget_exceeded(BudgetExceededEvent("b", "bundleSize", 2, 1))
        sink.flush(timeout=5)

        assert requests[0]["type"] == "budget-exceeded"
        assert requests[0]["data"]["percentage"] == 200
        sink.close()

    def test_http_error_is_swallowed(self, caplog):
        sink = self._sink(lambda request: httpx.Response(503))

        with caplog.at_level("WARNING", logger="perfwatch.sinks"):
            assert not sink.send_alert(make_alert(1)).result(timeout=5)

        assert sink.failed == 1
        assert "Failed to send performance-alert" in caplog.text
        sink.close()

    def test_connection_error_is_swallowed(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        sink = self._sink(handler)

        assert not sink.send_alert(make_alert(1)).result(timeout=5)
        assert sink.failed == 1
        sink.close()

    def test_failure_does_not_reach_monitor(self):
        monitor = PerformanceMonitor(sources=[], budgets=[])
        sink = self._sink(lambda request: httpx.Response(500))
        sink.attach(monitor)

        monitor.trigger_alert(make_alert(1))
        sink.flush(timeout=5)

        assert len(monitor.get_alerts()) == 1
        assert sink.failed == 1
        sink.close()

    def test_slow_collector_does_not_block_record_metric(self):
        def handler(request):
            time.sleep(0.5)
            return httpx.Response(204)

        monitor = PerformanceMonitor(sources=[], budgets=[PerformanceBudget("gallery_load_time", "artworkListLoadTime", 700)])
        sink = self._sink(handler)
        sink.attach(monitor)

        started = time.perf_counter()
        monitor.record_metric("artworkListLoadTime", 800)
        elapsed = time.perf_counter() - started

        assert elapsed < 0.25
        assert sink.sent == 0
        sink.flush(timeout=5)
        assert sink.sent == 2
        sink.close()

    def test_close_stops_accepting_and_closes_owned_client(self, mocker):
        client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(204)))
        mocker.patch("perfwatch.sinks.httpx.Client", return_value=client)
        sink = HttpBeaconSink("https://collector.example/perf")

        sink.send_alert(make_alert(1)).result(timeout=5)
        sink.close()

        assert sink.closed
        assert client.is_closed
        assert sink.send_alert(make_alert(2)) is None

    def test_injected_client_left_open(self):
        client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(204)))
        sink = HttpBeaconSink("https://collector.example/perf", client=client)

        sink.close()

        assert not client.is_closed
        client.close()


@pytest.mark.fast
class TestAsyncHttpBeaconSink:

    @pytest.mark.asyncio
    async def test_slow_collector_does_not_block_event_loop_publisher(self):
        async def handler(request):
            await asyncio.sleep(0.5)
            return httpx.Response(204)

        monitor = PerformanceMonitor(sources=[], budgets=[PerformanceBudget("gallery_load_time", "artworkListLoadTime", 700)])
        sink = HttpBeaconSink(
            "https://collector.example/perf",
            async_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        sink.attach(monitor)

        started = time.perf_counter()
        monitor.record_metric("artworkListLoadTime", 800)
        elapsed = time.perf_counter() - started

        assert elapsed < 0.25
        assert sink.pending_count == 2
        await sink.drain()
        assert sink.sent == 2
        assert sink.pending_count == 0
        await sink.aclose()

    @pytest.mark.asyncio
    async def test_async_http_error_counted(self, caplog):
        sink = HttpBeaconSink(
            "https://collector.example/perf",
            async_client=httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(502))),
        )

        with caplog.at_level("WARNING", logger="perfwatch.sinks"):
            assert not await sink.send_alert(make_alert(1))

        assert sink.failed == 1
        assert "Failed to send performance-alert" in caplog.text
        await sink.aclose()

    @pytest.mark.asyncio
    async def test_aclose_drains_and_closes_owned_client(self, mocker):
        requests = []

        async def handler(request):
            await asyncio.sleep(0.05)
            requests.append(request)
            return httpx.Response(204)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        mocker.patch("perfwatch.sinks.httpx.AsyncClient", return_value=client)
        sink = HttpBeaconSink("https://collector.example/perf")

        sink.send_alert(make_alert(1))
        await sink.aclose()

        assert len(requests) == 1
        assert sink.sent == 1
        assert client.is_closed
        assert sink.closed


@pytest.mark.fast
class TestReportExport:

    def test_export_report(self, monitor, tmp_path):
        monitor.record_metric("lcp", 3000)
        path = tmp_path / "report.json"

        assert export_report_to_json_file(monitor.get_advanced_report(), path)

        data = json.loads(path.read_text())
        assert data["metrics"] == {"lcp": 3000.0}
        assert data["alerts"][0]["severity"] == "low"

    def test_export_failure_returns_false(self, monitor, tmp_path):
        assert not export_report_to_json_file(monitor.get_advanced_report(), tmp_path)
