"""
Performance budgets and web-vital threshold rules.

Budgets are declared per metric key. A budget is exceeded when the metric's
value is strictly greater than the allocation; the overrun percentage maps
to alert severity. Threshold rules are three-tier (good / needs improvement
/ poor for web vitals, good / high / critical for process memory) and feed
threshold alerts; the web-vital ones also feed scoring.
"""

from dataclasses import dataclass, field

from .models import AlertSeverity

KB = 1024
MB = 1024 * 1024


@dataclass(frozen=True)
class PerformanceBudget:
    """Declared numeric allowance for one metric."""

    name: str
    metric: str
    allocated: float
    recommendations: tuple[str, ...] = ()
    enabled: bool = True

    def is_exceeded(self, value: float) -> bool:
        return value > self.allocated


@dataclass(frozen=True)
class TieredThreshold:
    """Three-tier thresholds: good, a warning tier above ``good`` and a poor tier above ``poor``."""

    metric: str
    good: float
    poor: float
    suggestions: dict[str, str] = field(default_factory=dict)
    label: str = ""
    unit: str = ""
    tiers: tuple[str, str] = ("needs-improvement", "poor")

    @property
    def display_name(self) -> str:
        return self.label or self.metric.upper()

    def rate(self, value: float) -> str:
        warning_tier, poor_tier = self.tiers
        if value > self.poor:
            return poor_tier
        if value > self.good:
            return warning_tier
        return "good"


def severity_for_budget_percentage(percentage: float) -> AlertSeverity:
    """Map budget usage (actual/allocated*100) to alert severity."""
    if percentage > 150:
        return AlertSeverity.CRITICAL
    if percentage > 120:
        return AlertSeverity.HIGH
    return AlertSeverity.MEDIUM


WEB_VITAL_THRESHOLDS: dict[str, TieredThreshold] = {
    "lcp": TieredThreshold(
        "lcp", 2500, 4000,
        {
            "needs-improvement": "Optimize images and prioritize critical resources",
            "poor": "Improve server response time and remove render-blocking resources",
        },
    ),
    "fid": TieredThreshold(
        "fid", 100, 300,
        {
            "needs-improvement": "Reduce JavaScript execution time",
            "poor": "Apply code splitting and lazy loading",
        },
    ),
    "inp": TieredThreshold(
        "inp", 200, 500,
        {
            "needs-improvement": "Break up long tasks in input handlers",
            "poor": "Defer non-critical work out of event handlers",
        },
    ),
    "cls": TieredThreshold(
        "cls", 0.1, 0.25,
        {
            "needs-improvement": "Set explicit dimensions on images and embeds",
            "poor": "Avoid inserting dynamic content above existing content and optimize web font loading",
        },
    ),
    "fcp": TieredThreshold(
        "fcp", 1800, 3000,
        {
            "needs-improvement": "Optimize CSS and JavaScript delivery",
            "poor": "Inline critical CSS and defer JavaScript",
        },
    ),
    "ttfb": TieredThreshold(
        "ttfb", 800, 1800,
        {
            "needs-improvement": "Improve server-side caching",
            "poor": "Use a CDN and improve server performance",
        },
    ),
}


def memory_threshold(warning_mb: float, critical_mb: float) -> TieredThreshold:
    """Process memory tiers in MB: high above ``warning_mb``, critical above ``critical_mb``."""
    return TieredThreshold(
        "memoryUsage", warning_mb, critical_mb,
        {
            "high": "Review caches and retained objects to reduce memory usage",
            "critical": "Check for memory leaks",
        },
        label="Memory usage",
        unit="MB",
        tiers=("high", "critical"),
    )


def get_default_budgets() -> list[PerformanceBudget]:
    """Default budgets for gallery browsing and bundle size."""
    return [
        PerformanceBudget(
            name="gallery_load_time",
            metric="artworkListLoadTime",
            allocated=2000,
            recommendations=(
                "Optimize image loading strategy",
                "Implement virtual scrolling",
                "Reduce initial artwork count",
                "Add progressive loading",
            ),
        ),
        PerformanceBudget(
            name="artwork_detail_load",
            metric="artworkDetailLoadTime",
            allocated=1500,
            recommendations=(
                "Preload artwork details on hover",
                "Optimize image sizes",
                "Cache artwork metadata",
                "Implement skeleton loading",
            ),
        ),
        PerformanceBudget(
            name="search_response",
            metric="searchResponseTime",
            allocated=300,
            recommendations=(
                "Implement search debouncing",
                "Add search result caching",
                "Optimize search algorithm",
                "Consider server-side search",
            ),
        ),
        PerformanceBudget(
            name="filter_response",
            metric="filterResponseTime",
            allocated=200,
            recommendations=("Memoize filtered results", "Move filtering off the input handler"),
        ),
        PerformanceBudget(
            name="image_load_time",
            metric="imageLoadingTime",
            allocated=3000,
            recommendations=(
                "Implement progressive JPEG",
                "Add image optimization",
                "Use CDN for images",
                "Consider image format optimization",
            ),
        ),
        PerformanceBudget(
            name="thumbnail_load_time",
            metric="thumbnailLoadTime",
            allocated=500,
            recommendations=(
                "Optimize thumbnail compression",
                "Use WebP format",
                "Implement lazy loading",
                "Add blur placeholder",
            ),
        ),
        PerformanceBudget(
            name="modal_open",
            metric="artworkModalOpenTime",
            allocated=150,
            recommendations=("Prefetch modal content", "Reduce modal mount work"),
        ),
        PerformanceBudget(
            name="scroll_frame",
            metric="scrollPerformance",
            allocated=1000 / 60,
            recommendations=("Throttle scroll handlers", "Avoid layout reads during scroll"),
        ),
        PerformanceBudget(
            name="total_bundle_size",
            metric="bundleSize",
            allocated=1 * MB,
            recommendations=(
                "Enable code splitting",
                "Remove unused dependencies",
                "Implement dynamic imports",
                "Optimize vendor chunks",
            ),
        ),
    ]
