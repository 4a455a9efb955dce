"""Shared pytest configuration for perfwatch tests."""

import pytest

from perfwatch.budgets import PerformanceBudget
from perfwatch.monitor import PerformanceMonitor
from perfwatch.settings import PerfwatchSettings


def pytest_configure(config):
    config.addinivalue_line("markers", "fast: quick unit tests with no I/O or real timers")


@pytest.fixture
def settings():
    return PerfwatchSettings(_env_file=None)


@pytest.fixture
def monitor(settings):
    """Monitor with no sample sources and a single gallery budget."""
    monitor = PerformanceMonitor(
        sources=[],
        budgets=[PerformanceBudget("gallery_load_time", "artworkListLoadTime", 2000)],
        settings=settings,
    )
    yield monitor
    monitor.dispose()
