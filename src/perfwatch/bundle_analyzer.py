"""
Bundle performance analysis over loaded script resources.

Reads resource timing entries currently on the timeline, groups JavaScript
chunks by logical name (content hashes stripped), and derives size,
duplication, compression and per-route loading patterns. Results are
written back to the monitor as bundleSize / compressionRatio /
cacheHitRate so the bundle budget is enforced through the normal path.
"""

import asyncio
import logging
import re
from collections import defaultdict
from collections.abc import Sequence

from .budgets import KB
from .models import BundleAnalytics, LoadingPattern
from .monitor import PerformanceMonitor
from .runtime import PerformanceTimeline, ResourceTimingEntry
from .sources import SCRIPT_EXTENSIONS

logger = logging.getLogger(__name__)

CRITICAL_WINDOW_MS = 1000
LARGE_RESOURCE_BYTES = 100 * KB
SLOW_RESOURCE_MS = 1000

# "main.3f9a2c1b.js", "vendor-8d1e0f.js", "chunk.abc123def.mjs"; a hash needs at least one digit
_HASHED_CHUNK = re.compile(r"^(?P<name>.+?)[.\-_](?P<hash>(?=[0-9a-f]*\d)[0-9a-f]{6,})$", re.IGNORECASE)


def chunk_name(url: str) -> str:
    """Logical chunk name for a script URL, without path, extension or content hash."""
    path = url.split("?", 1)[0].split("#", 1)[0]
    filename = path.rstrip("/").rsplit("/", 1)[-1]
    for extension in SCRIPT_EXTENSIONS:
        if filename.endswith(extension):
            filename = filename[: -len(extension)]
            break
    match = _HASHED_CHUNK.match(filename)
    return match.group("name") if match else filename


def is_script(entry: ResourceTimingEntry) -> bool:
    return entry.name.split("?", 1)[0].lower().endswith(SCRIPT_EXTENSIONS)


def _entry_size(entry: ResourceTimingEntry) -> int:
    return entry.transfer_size or entry.encoded_body_size or 0


class BundlePerformanceAnalyzer:
    """Computes BundleAnalytics on demand; nothing is cached between calls."""

    def __init__(self, monitor: PerformanceMonitor, timeline: PerformanceTimeline | None = None):
        self.monitor = monitor
        self.timeline = timeline or monitor.timeline

    async def analyze_bundles(self) -> BundleAnalytics:
        """
        Analyze loaded script bundles.

        Returns:
            Computed analytics, or empty analytics if analysis fails
        """
        try:
            entries = self.timeline.get_entries_by_type(ResourceTimingEntry.entry_type)
            # yield before the synchronous pass so large timelines do not starve the loop
            await asyncio.sleep(0)
            analytics = self._analyze(entries)
        except Exception as e:
            logger.error(f"Bundle analysis failed: {e}")
            return BundleAnalytics.empty()

        sample = {
            "bundleSize": analytics.total_size,
            "compressionRatio": analytics.compression_ratio,
        }
        if entries:
            sample["cacheHitRate"] = analytics.loading_patterns[0].cache_utilization
        self.monitor.record_sample(sample)
        return analytics

    def _analyze(self, entries: Sequence[ResourceTimingEntry]) -> BundleAnalytics:
        scripts = [entry for entry in entries if is_script(entry)]

        chunks: dict[str, list[int]] = defaultdict(list)
        for entry in scripts:
            chunks[chunk_name(entry.name)].append(_entry_size(entry))

        chunk_sizes = {name: sum(sizes) for name, sizes in chunks.items()}
        duplicate_code = sum(sum(sizes) - max(sizes) for sizes in chunks.values() if len(sizes) > 1)

        return BundleAnalytics(
            total_size=sum(chunk_sizes.values()),
            chunk_sizes=chunk_sizes,
            duplicate_code=duplicate_code,
            unused_code=0,
            compression_ratio=self._compression_ratio(scripts),
            loading_patterns=(self._loading_pattern(entries),),
        )

    @staticmethod
    def _compression_ratio(scripts: Sequence[ResourceTimingEntry]) -> float:
        if not scripts:
            return 1.0
        transferred = sum(entry.transfer_size for entry in scripts)
        decoded = sum(entry.decoded_body_size or entry.transfer_size for entry in scripts)
        return transferred / decoded if decoded > 0 else 1.0

    def _loading_pattern(self, entries: Sequence[ResourceTimingEntry]) -> LoadingPattern:
        count = len(entries)
        critical = tuple(entry.name for entry in entries if entry.start_time < CRITICAL_WINDOW_MS)
        load_time = sum(entry.duration for entry in entries) / count if count else 0.0
        cached = sum(1 for entry in entries if entry.transfer_size == 0)

        return LoadingPattern(
            route=self.monitor.environment.route,
            critical_resources=critical,
            load_time=load_time,
            cache_utilization=cached / count if count else 0.0,
            recommendations=tuple(loading_recommendations(entries)),
        )


def loading_recommendations(entries: Sequence[ResourceTimingEntry]) -> list[str]:
    if not entries:
        return []

    recommendations = []
    if any(entry.transfer_size > LARGE_RESOURCE_BYTES for entry in entries):
        recommendations.append("Consider code splitting for large resources")
    if any(entry.duration > SLOW_RESOURCE_MS for entry in entries):
        recommendations.append("Optimize slow-loading resources")
    uncached = sum(1 for entry in entries if entry.transfer_size > 0)
    if uncached / len(entries) > 0.8:
        recommendations.append("Improve caching strategy")
    return recommendations
