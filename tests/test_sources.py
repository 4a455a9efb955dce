"""
Tests for metric sample sources.

Each source is attached to a private timeline with a list as its emit
target, so tests inspect the raw partial samples rather than merged state.
"""

import unittest

import pytest

from perfwatch.exceptions import RuntimeCapabilityError
from perfwatch.models import AlertSeverity
from perfwatch.monitor import PerformanceMonitor
from perfwatch.settings import PerfwatchSettings
from perfwatch.runtime import (
    ConnectionInfo,
    DeviceInfo,
    EventTimingEntry,
    FirstInputEntry,
    HostEnvironment,
    LargestContentfulPaintEntry,
    LayoutShiftEntry,
    NavigationTimingEntry,
    PaintEntry,
    PerformanceTimeline,
    ResourceTimingEntry,
)
from perfwatch.sources import (
    DeviceInfoSource,
    InteractionLatencySource,
    LayoutShiftSource,
    MemoryUsageSource,
    NavigationTimingSource,
    NetworkInfoSource,
    PaintTimingSource,
    ResourceTimingSource,
    default_sources,
    device_type_for_width,
)

from helpers import FakeClock, FakeScheduler


class SourceTestCase(unittest.TestCase):
    """Attaches ``source_class`` to a fresh timeline."""

    source_class = None

    def setUp(self):
        self.timeline = PerformanceTimeline()
        self.samples = []
        self.source = self.source_class()
        self.assertTrue(self.source.attach(self.timeline, HostEnvironment(), self.samples.append))

    def merged(self):
        result = {}
        for sample in self.samples:
            result.update(sample)
        return result


@pytest.mark.fast
class TestPaintTimingSource(SourceTestCase):
    source_class = PaintTimingSource

    def test_fcp_and_latest_lcp_candidate(self):
        self.timeline.add_entry(PaintEntry("first-paint", 500))
        self.timeline.add_entry(PaintEntry("first-contentful-paint", 800))
        self.timeline.add_entry(LargestContentfulPaintEntry(900, size=100))
        self.timeline.add_entry(LargestContentfulPaintEntry(1400, size=5000))

        self.assertEqual(self.merged(), {"fcp": 800, "lcp": 1400})

    def test_first_paint_alone_emits_nothing(self):
        self.timeline.add_entry(PaintEntry("first-paint", 500))
        self.assertEqual(self.samples, [])

    def test_detached_source_ignores_entries(self):
        self.source.detach()
        self.timeline.add_entry(LargestContentfulPaintEntry(900))
        self.assertEqual(self.samples, [])
        self.assertFalse(self.source.attached)


@pytest.mark.fast
class TestLayoutShiftSource(SourceTestCase):
    source_class = LayoutShiftSource

    def test_session_windows(self):
        # window 1: 0.1 + 0.05; window 2 (gap > 1s): 0.2
        for value, start in ((0.1, 100), (0.05, 600), (0.2, 3000)):
            self.timeline.add_entry(LayoutShiftEntry(value, start))

        self.assertEqual([s["cls"] for s in self.samples], [0.1, 0.15, 0.2])

    def test_window_capped_at_five_seconds(self):
        for start in range(0, 6000, 500):
            self.timeline.add_entry(LayoutShiftEntry(0.01, start))
        self.assertEqual(self.merged()["cls"], 0.1)

    def test_recent_input_excluded(self):
        self.timeline.add_entry(LayoutShiftEntry(0.3, 100, had_recent_input=True))
        self.timeline.add_entry(LayoutShiftEntry(0.02, 200))
        self.assertEqual(self.merged(), {"cls": 0.02})

    def test_smaller_window_does_not_reemit(self):
        self.timeline.add_entry(LayoutShiftEntry(0.2, 100))
        self.timeline.add_entry(LayoutShiftEntry(0.05, 5000))
        self.assertEqual(len(self.samples), 1)


@pytest.mark.fast
class TestInteractionLatencySource(SourceTestCase):
    source_class = InteractionLatencySource

    def test_inp_is_worst_for_few_interactions(self):
        for i, duration in enumerate((40, 120, 80), start=1):
            self.timeline.add_entry(EventTimingEntry("click", i * 100, duration, interaction_id=i))
        self.assertEqual(self.merged()["inp"], 120)

    def test_inp_skips_one_outlier_per_fifty(self):
        for i in range(1, 61):
            self.timeline.add_entry(EventTimingEntry("click", i * 10, i, interaction_id=i))
        self.assertEqual(self.source.estimate_inp(), 59)

    def test_events_without_interaction_id_ignored(self):
        self.timeline.add_entry(EventTimingEntry("mousemove", 10, 500))
        self.assertEqual(self.samples, [])

    def test_first_input_reported_once(self):
        self.timeline.add_entry(FirstInputEntry("pointerdown", 1000, 1012))
        self.timeline.add_entry(FirstInputEntry("keydown", 2000, 2300))
        self.assertEqual(self.samples, [{"fid": 12, "firstInteraction": 1000}])


@pytest.mark.fast
class TestNavigationTimingSource(SourceTestCase):
    source_class = NavigationTimingSource

    def test_navigation_phases(self):
        self.timeline.add_entry(NavigationTimingEntry(
            fetch_start=0,
            domain_lookup_start=5,
            domain_lookup_end=25,
            connect_start=25,
            connect_end=75,
            secure_connection_start=45,
            request_start=80,
            response_start=200,
            response_end=260,
            dom_interactive=600,
            dom_content_loaded_event_end=800,
            load_event_end=1500,
        ))

        sample = self.samples[0]
        self.assertEqual(sample["navigationTiming"], {
            "dns": 20,
            "tcp": 50,
            "ssl": 30,
            "ttfb": 120,
            "download": 60,
            "domContentLoaded": 800,
            "complete": 1500,
        })
        self.assertEqual(sample["domInteractive"], 600)
        self.assertEqual(sample["ttfb"], 200)

    def test_plain_http_has_no_ssl_phase(self):
        self.timeline.add_entry(NavigationTimingEntry(connect_start=10, connect_end=30))
        self.assertEqual(self.samples[0]["navigationTiming"]["ssl"], 0)


@pytest.mark.fast
class TestResourceTimingSource(SourceTestCase):
    source_class = ResourceTimingSource

    def test_slowest_per_category(self):
        self.timeline.add_entries([
            ResourceTimingEntry("/fonts/inter.woff2", 10, 120),
            ResourceTimingEntry("/img/hero.webp?w=800", 20, 300),
            ResourceTimingEntry("/static/main.js", 30, 200),
            ResourceTimingEntry("/api/artworks", 40, 450),
            ResourceTimingEntry("/img/thumb.png", 50, 100),
        ])

        self.assertEqual(self.merged(), {
            "fontLoadTime": 120,
            "imageLoadTime": 300,
            "jsExecutionTime": 200,
            "resourceLoadTime": 450,
        })

    def test_slow_and_large_loads_reported(self):
        issues = []
        source = ResourceTimingSource(slow_ms=500, large_bytes=100 * 1024)
        source.attach(self.timeline, HostEnvironment(), self.samples.append, issues.append)

        self.timeline.add_entries([
            ResourceTimingEntry("/img/hero.webp", 0, 800, transfer_size=50 * 1024),
            ResourceTimingEntry("/static/vendor.js", 5, 200, transfer_size=300 * 1024),
            ResourceTimingEntry("/api/artworks", 10, 100),
        ])

        self.assertEqual(
            [(issue.issue_type, issue.resource) for issue in issues],
            [("slow_resource", "/img/hero.webp"), ("large_resource", "/static/vendor.js")],
        )
        self.assertEqual(issues[0].severity, AlertSeverity.MEDIUM)
        self.assertEqual(issues[0].threshold, 500)
        self.assertEqual(issues[1].severity, AlertSeverity.LOW)
        self.assertEqual(issues[1].value, 300 * 1024)

    def test_default_issue_thresholds(self):
        self.assertEqual(self.source.slow_ms, 1000)
        self.assertEqual(self.source.large_bytes, 500 * 1024)

    def test_issues_without_reporter_are_dropped(self):
        self.timeline.add_entry(ResourceTimingEntry("/api/artworks", 0, 5000, transfer_size=2 * 1024 * 1024))
        self.assertEqual(self.merged(), {"resourceLoadTime": 5000})


@pytest.mark.fast
class TestMemoryUsageSource(unittest.TestCase):

    def setUp(self):
        self.clock = FakeClock()
        self.scheduler = FakeScheduler(self.clock)
        self.readings = iter([60.0, 62.5, 70.0, 71.0])
        self.samples = []
        self.source = MemoryUsageSource(probe=lambda: next(self.readings), clock=self.clock, scheduler=self.scheduler)

    def attach(self, emit=None):
        return self.source.attach(PerformanceTimeline(), HostEnvironment(), emit or self.samples.append)

    def test_reads_on_attach_and_every_interval(self):
        self.assertTrue(self.attach())
        self.scheduler.advance_to(10000)

        self.assertEqual(self.samples, [{"memoryUsage": 60.0}, {"memoryUsage": 62.5}, {"memoryUsage": 70.0}])

    def test_check_reads_at_most_once_per_interval(self):
        self.attach()

        self.clock.now = 4999
        self.assertIsNone(self.source.check())
        self.clock.now = 5000
        self.assertEqual(self.source.check(), 62.5)
        self.scheduler.advance_to(5000)

        self.assertEqual(len(self.samples), 2)

    def test_detach_cancels_timer(self):
        self.attach()
        self.source.detach()
        self.scheduler.advance_to(20000)

        self.assertEqual(len(self.samples), 1)
        self.assertIsNone(self.source.check())

    def test_unreadable_memory(self):
        source = MemoryUsageSource(probe=lambda: None, scheduler=self.scheduler)
        self.assertFalse(source.attach(PerformanceTimeline(), HostEnvironment(), self.samples.append))
        self.assertEqual(self.scheduler.handles, [])

        with self.assertRaises(RuntimeCapabilityError):
            MemoryUsageSource(required=True, probe=lambda: None).attach(
                PerformanceTimeline(), HostEnvironment(), self.samples.append,
            )

    def test_feeds_monitor_memory_alerts(self):
        monitor = PerformanceMonitor(sources=[], budgets=[])
        alerts = []
        monitor.subscribe_alerts(alerts.append)

        self.attach(monitor.record_sample)
        self.scheduler.advance_to(5000)

        self.assertEqual(monitor.get_metrics().memory_usage, 62.5)
        self.assertEqual([alert.severity for alert in alerts], [AlertSeverity.MEDIUM])
        self.source.detach()
        monitor.dispose()


@pytest.mark.fast
class TestEnvironmentSources(unittest.TestCase):

    def setUp(self):
        self.timeline = PerformanceTimeline()
        self.samples = []

    def test_network_info(self):
        environment = HostEnvironment(connection=ConnectionInfo("wifi", "4g", 50.0, None))
        NetworkInfoSource().attach(self.timeline, environment, self.samples.append)
        self.assertEqual(self.samples, [{"connectionType": "wifi", "effectiveType": "4g", "downlink": 50.0}])

    def test_network_info_unavailable(self):
        source = NetworkInfoSource()
        self.assertFalse(source.attach(self.timeline, HostEnvironment(), self.samples.append))
        self.assertEqual(self.samples, [])

    def test_required_source_raises(self):
        with self.assertRaises(RuntimeCapabilityError):
            NetworkInfoSource(required=True).attach(self.timeline, HostEnvironment(), self.samples.append)

    def test_device_info(self):
        environment = HostEnvironment(
            viewport=(390, 844),
            device=DeviceInfo(memory_gb=4, hardware_concurrency=6, pixel_ratio=3, screen_width=1170, screen_height=2532),
        )
        DeviceInfoSource().attach(self.timeline, environment, self.samples.append)
        self.assertEqual(self.samples[0], {
            "deviceMemory": 4,
            "hardwareConcurrency": 6,
            "pixelRatio": 3,
            "screenResolution": "1170x2532",
            "deviceType": "mobile",
        })

    def test_device_type_breakpoints(self):
        self.assertEqual(device_type_for_width(767), "mobile")
        self.assertEqual(device_type_for_width(768), "tablet")
        self.assertEqual(device_type_for_width(1024), "desktop")

    def test_default_sources_are_optional(self):
        sources = default_sources()
        self.assertEqual(len(sources), 8)
        self.assertFalse(any(source.required for source in sources))

    def test_default_memory_interval(self):
        self.assertEqual(default_sources()[-1].interval_ms, 5000)
        memory = PerformanceMonitor(budgets=[], settings=PerfwatchSettings(memory_check_interval_ms=2000)).sources[-1]
        self.assertIsInstance(memory, MemoryUsageSource)
        self.assertEqual(memory.interval_ms, 2000)
