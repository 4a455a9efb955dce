"""
Tests for the perfwatch data model and settings.

Test Categories:
- TestPerformanceMetrics: key resolution, validation and merging
- TestAlertModels: severity ordering and serialization
- TestPerfwatchSettings: defaults and PERFWATCH_* environment overrides
"""

import unittest

import pytest
from pydantic import ValidationError

from perfwatch.models import (
    AlertSeverity,
    AlertType,
    BudgetExceededEvent,
    BundleAnalytics,
    LoadingPattern,
    NavigationTiming,
    PerformanceMetrics,
)
from perfwatch.settings import PerfwatchSettings

from helpers import make_alert


@pytest.mark.fast
class TestPerformanceMetrics(unittest.TestCase):
    """Test the metric snapshot model."""

    def test_empty_snapshot_has_nothing_set(self):
        metrics = PerformanceMetrics()
        self.assertEqual(metrics.set_fields(), [])
        self.assertEqual(metrics.to_dict(), {})
        self.assertFalse(metrics.is_set("lcp"))

    def test_key_resolution(self):
        self.assertEqual(PerformanceMetrics.field_name_for("artworkListLoadTime"), "artwork_list_load_time")
        self.assertEqual(PerformanceMetrics.field_name_for("artwork_list_load_time"), "artwork_list_load_time")
        self.assertEqual(PerformanceMetrics.metric_key_for("search_response_time"), "searchResponseTime")
        with self.assertRaises(KeyError):
            PerformanceMetrics.field_name_for("unknownMetric")

    def test_merge_is_shallow_and_non_destructive(self):
        base = PerformanceMetrics(lcp=1000, cls=0.05)
        merged = base.merged({"lcp": 1500, "fcp": 900})

        self.assertEqual(base.lcp, 1000)
        self.assertEqual(merged.lcp, 1500)
        self.assertEqual(merged.cls, 0.05)
        self.assertEqual(merged.fcp, 900)

    def test_merge_with_disjoint_keys_is_order_independent(self):
        base = PerformanceMetrics(ttfb=200)
        a = {"lcp": 1000}
        b = {"searchResponseTime": 150}

        self.assertEqual(base.merged(a).merged(b), base.merged(b).merged(a))
        self.assertEqual(base.merged(a).merged(b), base.merged({**a, **b}))

    def test_merge_rejects_unknown_and_invalid(self):
        base = PerformanceMetrics()
        with self.assertRaises(KeyError):
            base.merged({"bogus": 1})
        with self.assertRaises(ValidationError):
            base.merged({"lcp": -1})
        with self.assertRaises(ValidationError):
            base.merged({"cacheHitRate": 1.5})
        with self.assertRaises(ValidationError):
            base.merged({"deviceType": "watch"})

    def test_snapshot_is_immutable(self):
        metrics = PerformanceMetrics(lcp=1000)
        with self.assertRaises(ValidationError):
            metrics.lcp = 2000

    def test_navigation_timing_nested(self):
        metrics = PerformanceMetrics().merged({
            "navigationTiming": {"dns": 20, "tcp": 50, "domContentLoaded": 800},
        })
        self.assertIsInstance(metrics.navigation_timing, NavigationTiming)
        self.assertEqual(metrics.navigation_timing.dom_content_loaded, 800)
        self.assertEqual(metrics.to_dict()["navigationTiming"]["domContentLoaded"], 800)

    def test_numeric_items_skip_strings_and_nested(self):
        metrics = PerformanceMetrics(
            lcp=1000,
            connection_type="wifi",
            navigation_timing=NavigationTiming(dns=1),
            bundle_size=2048,
        )
        self.assertEqual(dict(metrics.numeric_items()), {"lcp": 1000.0, "bundleSize": 2048.0})


@pytest.mark.fast
class TestAlertModels(unittest.TestCase):
    """Test severity ordering and event serialization."""

    def test_severity_total_order(self):
        self.assertLess(AlertSeverity.LOW, AlertSeverity.MEDIUM)
        self.assertLess(AlertSeverity.MEDIUM, AlertSeverity.HIGH)
        self.assertLess(AlertSeverity.HIGH, AlertSeverity.CRITICAL)
        self.assertGreaterEqual(AlertSeverity.HIGH, AlertSeverity.HIGH)
        self.assertEqual(max(AlertSeverity), AlertSeverity.CRITICAL)

    def test_alert_to_dict(self):
        data = make_alert(3, AlertSeverity.HIGH).to_dict()
        self.assertEqual(data["alert_id"], "alert-3")
        self.assertEqual(data["severity"], "high")
        self.assertEqual(data["alert_type"], AlertType.THRESHOLD_EXCEEDED.value)
        self.assertEqual(data["action_required"], [])

    def test_budget_event_percentage(self):
        event = BudgetExceededEvent("gallery_load_time", "artworkListLoadTime", 800, 700)
        self.assertAlmostEqual(event.percentage, 114.2857, places=3)
        self.assertEqual(event.to_dict()["budget"], "gallery_load_time")

    def test_empty_bundle_analytics(self):
        analytics = BundleAnalytics.empty()
        self.assertEqual(analytics.total_size, 0)
        self.assertEqual(analytics.compression_ratio, 1.0)
        self.assertEqual(analytics.to_dict()["loading_patterns"], [])

    def test_loading_pattern_to_dict(self):
        pattern = LoadingPattern("/gallery", ("main.js",), 120.0, 0.5)
        self.assertEqual(pattern.to_dict()["critical_resources"], ["main.js"])


@pytest.mark.fast
class TestPerfwatchSettings:
    """Test settings defaults and environment overrides."""

    def test_defaults(self, settings):
        assert settings.alert_threshold == AlertSeverity.MEDIUM
        assert settings.update_interval_ms == 30000
        assert settings.enable_gallery_tracking
        assert settings.enable_error_correlation
        assert settings.enable_bundle_analysis
        assert settings.alert_history_size == 50
        assert settings.beacon_url is None

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("PERFWATCH_ALERT_THRESHOLD", "HIGH")
        monkeypatch.setenv("PERFWATCH_UPDATE_INTERVAL_MS", "5000")
        monkeypatch.setenv("PERFWATCH_ENABLE_BUNDLE_ANALYSIS", "false")

        settings = PerfwatchSettings()

        assert settings.alert_threshold == AlertSeverity.HIGH
        assert settings.update_interval_ms == 5000
        assert not settings.enable_bundle_analysis

    def test_invalid_interval_rejected(self):
        with pytest.raises(ValidationError):
            PerfwatchSettings(update_interval_ms=0)
