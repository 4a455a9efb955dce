"""
Metric sample sources.

Each source watches one kind of runtime signal and emits partial samples
(``{"cls": 0.08}``) through the ``emit`` callable it is attached with. The
monitor owns merging; sources only compute values.

A source whose capability is missing on the host leaves its metrics unset
and logs at debug level. Only a source marked ``required`` turns a missing
capability into an error, which the monitor reports as MonitoringStartError.
"""

import logging
import threading
import time
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from .exceptions import RuntimeCapabilityError
from .models import AlertSeverity, ResourceIssue
from .runtime import (
    EventTimingEntry,
    FirstInputEntry,
    HostEnvironment,
    LargestContentfulPaintEntry,
    LayoutShiftEntry,
    NavigationTimingEntry,
    PaintEntry,
    PerformanceTimeline,
    ResourceTimingEntry,
    TimelineObserver,
    probe_process_memory_mb,
)
from .throttle import Scheduler, default_scheduler

logger = logging.getLogger(__name__)

Emit = Callable[[Mapping[str, Any]], None]
Report = Callable[[ResourceIssue], Any]

# Layout shift session windows
SESSION_GAP_MS = 1000
SESSION_MAX_MS = 5000

# Interactions kept for the INP estimate
MAX_INTERACTIONS = 10

FONT_EXTENSIONS = (".woff2", ".woff", ".ttf", ".otf")
IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".webp", ".avif", ".gif")
SCRIPT_EXTENSIONS = (".js", ".mjs")

SLOW_RESOURCE_ALERT_MS = 1000
LARGE_RESOURCE_ALERT_BYTES = 500 * 1024

MEMORY_CHECK_INTERVAL_MS = 5000


def device_type_for_width(width: int) -> str:
    if width < 768:
        return "mobile"
    if width < 1024:
        return "tablet"
    return "desktop"


class MetricSource:
    """
    Base class for sample sources.

    Subclasses set ``entry_types`` and implement ``handle_entries`` for
    timeline-driven signals, or override ``collect`` for one-shot reads of
    the host environment. Issues appended to ``_issues`` while handling
    entries are reported after the samples are emitted.
    """

    name = "source"
    entry_types: tuple[str, ...] = ()

    def __init__(self, required: bool = False):
        self.required = required
        self._emit: Emit | None = None
        self._report: Report | None = None
        self._issues: list[ResourceIssue] = []
        self._observer: TimelineObserver | None = None
        self._attached = False
        self._lock = threading.Lock()

    @property
    def attached(self) -> bool:
        return self._attached

    def attach(
        self,
        timeline: PerformanceTimeline,
        environment: HostEnvironment,
        emit: Emit,
        report: Report | None = None,
    ) -> bool:
        """
        Start observing.

        Returns:
            True if the source is live, False if the host lacks its capability

        Raises:
            RuntimeCapabilityError: If the capability is missing and the source is required
        """
        if self._attached:
            return True

        self._emit = emit
        self._report = report
        self._attached = True
        try:
            if self.entry_types:
                self._observer = timeline.observe(self.entry_types, self._on_entries, buffered=True)
            else:
                self.collect(environment)
        except RuntimeCapabilityError as e:
            self._attached = False
            self._emit = None
            self._report = None
            if self.required:
                raise
            logger.debug(f"Source {self.name} unavailable: {e}")
            return False
        return True

    def detach(self) -> None:
        self._attached = False
        if self._observer is not None:
            self._observer.disconnect()
            self._observer = None
        self._emit = None
        self._report = None
        self._issues = []
        self.reset()

    def reset(self) -> None:
        """Drop accumulated state."""

    def collect(self, environment: HostEnvironment) -> None:
        """Read one-shot values from the environment."""

    def handle_entries(self, entries: Sequence[Any]) -> Mapping[str, Any] | None:
        """Fold new entries into state; return a sample to emit or None."""
        return None

    def _on_entries(self, entries: Sequence[Any]) -> None:
        if not self._attached:
            return
        with self._lock:
            sample = self.handle_entries(entries)
            issues, self._issues = self._issues, []
        if sample:
            self.emit(sample)
        for issue in issues:
            self.report_issue(issue)

    def emit(self, sample: Mapping[str, Any]) -> None:
        emit = self._emit
        if self._attached and emit is not None:
            emit(sample)

    def report_issue(self, issue: ResourceIssue) -> None:
        report = self._report
        if self._attached and report is not None:
            report(issue)


class PaintTimingSource(MetricSource):
    """First contentful paint and largest contentful paint."""

    name = "paint"
    entry_types = (PaintEntry.entry_type, LargestContentfulPaintEntry.entry_type)

    def handle_entries(self, entries):
        sample = {}
        for entry in entries:
            if isinstance(entry, PaintEntry) and entry.name == "first-contentful-paint":
                sample["fcp"] = entry.start_time
            elif isinstance(entry, LargestContentfulPaintEntry):
                # later candidates supersede earlier ones
                sample["lcp"] = entry.start_time
        return sample


class LayoutShiftSource(MetricSource):
    """
    Cumulative layout shift using session windows.

    Shifts less than 1s apart (and within 5s of the window start) share a
    window; CLS is the largest window total. Shifts right after user input
    are excluded.
    """

    name = "layout_shift"
    entry_types = (LayoutShiftEntry.entry_type,)

    def __init__(self, required: bool = False):
        super().__init__(required)
        self.reset()

    def reset(self) -> None:
        self._window_value = 0.0
        self._window_start: float | None = None
        self._last_shift: float | None = None
        self._max_value = 0.0
        self._reported = False

    def handle_entries(self, entries):
        changed = False
        for entry in entries:
            if entry.had_recent_input:
                continue
            starts_new_window = (
                self._window_start is None
                or entry.start_time - self._last_shift >= SESSION_GAP_MS
                or entry.start_time - self._window_start >= SESSION_MAX_MS
            )
            if starts_new_window:
                self._window_start = entry.start_time
                self._window_value = entry.value
            else:
                self._window_value += entry.value
            self._last_shift = entry.start_time

            if self._window_value > self._max_value or not self._reported:
                self._max_value = max(self._max_value, self._window_value)
                self._reported = True
                changed = True

        return {"cls": round(self._max_value, 4)} if changed else None


class InteractionLatencySource(MetricSource):
    """
    Interaction to next paint, first input delay and first interaction time.

    INP approximates the 98th percentile: with n interactions observed, the
    worst, then the (n // 50)-th worst, is reported.
    """

    name = "interaction"
    entry_types = (EventTimingEntry.entry_type, FirstInputEntry.entry_type)

    def __init__(self, required: bool = False):
        super().__init__(required)
        self.reset()

    def reset(self) -> None:
        self._interaction_count = 0
        self._longest: dict[int, float] = {}
        self._first_input_seen = False

    def handle_entries(self, entries):
        sample = {}
        inp_changed = False
        for entry in entries:
            if isinstance(entry, FirstInputEntry):
                if not self._first_input_seen:
                    self._first_input_seen = True
                    sample["fid"] = max(0.0, entry.delay)
                    sample["firstInteraction"] = entry.start_time
                continue
            if not entry.interaction_id:
                continue
            inp_changed = self._record_interaction(entry) or inp_changed

        if inp_changed:
            sample["inp"] = self.estimate_inp()
        return sample

    def _record_interaction(self, entry: EventTimingEntry) -> bool:
        previous = self._longest.get(entry.interaction_id)
        if previous is None:
            self._interaction_count += 1
        elif entry.duration <= previous:
            return False

        if previous is None and len(self._longest) >= MAX_INTERACTIONS:
            shortest_id = min(self._longest, key=self._longest.get)
            if entry.duration <= self._longest[shortest_id]:
                return False
            del self._longest[shortest_id]

        self._longest[entry.interaction_id] = entry.duration
        return True

    def estimate_inp(self) -> float:
        durations = sorted(self._longest.values(), reverse=True)
        if not durations:
            return 0.0
        index = min(len(durations) - 1, self._interaction_count // 50)
        return durations[index]


class NavigationTimingSource(MetricSource):
    """Page load phases from the navigation entry."""

    name = "navigation"
    entry_types = (NavigationTimingEntry.entry_type,)

    def handle_entries(self, entries):
        navigation = entries[-1]

        ssl = 0.0
        if navigation.secure_connection_start > 0:
            ssl = navigation.connect_end - navigation.secure_connection_start

        timing = {
            "dns": navigation.domain_lookup_end - navigation.domain_lookup_start,
            "tcp": navigation.connect_end - navigation.connect_start,
            "ssl": ssl,
            "ttfb": navigation.response_start - navigation.request_start,
            "download": navigation.response_end - navigation.response_start,
            "domContentLoaded": navigation.dom_content_loaded_event_end - navigation.fetch_start,
            "complete": navigation.load_event_end - navigation.fetch_start,
        }
        return {
            "navigationTiming": {key: max(0.0, value) for key, value in timing.items()},
            "domInteractive": max(0.0, navigation.dom_interactive - navigation.fetch_start),
            "ttfb": max(0.0, navigation.response_start),
        }


class ResourceTimingSource(MetricSource):
    """
    Slowest font, image, script and overall resource loads.

    Each load slower than ``slow_ms`` is reported as a medium issue and each
    transfer larger than ``large_bytes`` as a low one.
    """

    name = "resource"
    entry_types = (ResourceTimingEntry.entry_type,)

    def __init__(self, required: bool = False, slow_ms: float = SLOW_RESOURCE_ALERT_MS, large_bytes: int = LARGE_RESOURCE_ALERT_BYTES):
        super().__init__(required)
        self.slow_ms = slow_ms
        self.large_bytes = large_bytes
        self.reset()

    def reset(self) -> None:
        self._max: dict[str, float] = {}

    def handle_entries(self, entries):
        sample = {}
        for entry in entries:
            path = entry.name.split("?", 1)[0].lower()
            if path.endswith(FONT_EXTENSIONS):
                key = "fontLoadTime"
            elif path.endswith(IMAGE_EXTENSIONS):
                key = "imageLoadTime"
            elif path.endswith(SCRIPT_EXTENSIONS):
                key = "jsExecutionTime"
            else:
                key = None

            for metric in (key, "resourceLoadTime"):
                if metric and entry.duration > self._max.get(metric, -1.0):
                    self._max[metric] = entry.duration
                    sample[metric] = entry.duration

            self._issues.extend(self._issues_for(entry))
        return sample

    def _issues_for(self, entry: ResourceTimingEntry) -> list[ResourceIssue]:
        issues = []
        if entry.duration > self.slow_ms:
            issues.append(ResourceIssue(
                issue_type="slow_resource",
                severity=AlertSeverity.MEDIUM,
                metric="resourceLoadTime",
                value=entry.duration,
                threshold=self.slow_ms,
                resource=entry.name,
                suggestion=f"{entry.name} took {entry.duration:.0f}ms to load; optimize it or serve it from a CDN",
            ))
        if entry.transfer_size > self.large_bytes:
            issues.append(ResourceIssue(
                issue_type="large_resource",
                severity=AlertSeverity.LOW,
                metric="resourceTransferSize",
                value=entry.transfer_size,
                threshold=self.large_bytes,
                resource=entry.name,
                suggestion=f"{entry.name} transferred {entry.transfer_size // 1024}KB; compress or split it",
            ))
        return issues


class MemoryUsageSource(MetricSource):
    """
    Resident memory of the host process, in MB.

    Read once on attach and then every ``interval_ms`` on the scheduler.
    ``check`` reads at most once per interval; earlier calls are ignored.
    """

    name = "memory"

    def __init__(
        self,
        required: bool = False,
        interval_ms: float = MEMORY_CHECK_INTERVAL_MS,
        probe: Callable[[], float | None] = probe_process_memory_mb,
        clock: Callable[[], float] | None = None,
        scheduler: Scheduler | None = None,
    ):
        """
        Args:
            required: Raise instead of skipping when memory cannot be read
            interval_ms: Minimum milliseconds between reads
            probe: Returns process memory in MB, or None when unavailable
            clock: Millisecond clock, monotonic by default
            scheduler: Periodic read scheduler, see throttle.default_scheduler
        """
        super().__init__(required)
        self.interval_ms = interval_ms
        self._probe = probe
        self._clock = clock or (lambda: time.monotonic() * 1000)
        self._scheduler = scheduler or default_scheduler
        self._handle: Any = None
        self._last_check: float | None = None

    def collect(self, environment: HostEnvironment) -> None:
        usage = self._probe()
        if usage is None:
            raise RuntimeCapabilityError("Host reports no process memory usage", capability="memory")
        self._last_check = self._clock()
        self.emit({"memoryUsage": usage})
        self._schedule()

    def check(self) -> float | None:
        """Read and emit memory usage unless the last read is under ``interval_ms`` old."""
        if not self._attached:
            return None
        now = self._clock()
        with self._lock:
            if self._last_check is not None and now - self._last_check < self.interval_ms:
                return None
            self._last_check = now

        usage = self._probe()
        if usage is not None:
            self.emit({"memoryUsage": usage})
        return usage

    def _schedule(self) -> None:
        self._handle = self._scheduler(self.interval_ms / 1000, self._tick)

    def _tick(self) -> None:
        self._handle = None
        if not self._attached:
            return
        try:
            self.check()
        except Exception as e:
            logger.error(f"Memory usage check failed: {e}")
        if self._attached:
            self._schedule()

    def detach(self) -> None:
        handle, self._handle = self._handle, None
        if handle is not None:
            handle.cancel()
        super().detach()

    def reset(self) -> None:
        self._last_check = None


class NetworkInfoSource(MetricSource):
    """Connection type, effective type, downlink and RTT."""

    name = "network"

    def collect(self, environment: HostEnvironment) -> None:
        connection = environment.connection
        if connection is None:
            raise RuntimeCapabilityError("Host reports no connection information", capability="connection")

        sample = {
            "connectionType": connection.connection_type,
            "effectiveType": connection.effective_type,
            "downlink": connection.downlink,
            "rtt": connection.rtt,
        }
        sample = {key: value for key, value in sample.items() if value is not None}
        if sample:
            self.emit(sample)


class DeviceInfoSource(MetricSource):
    """Device memory, logical CPUs, pixel ratio and screen details."""

    name = "device"

    def collect(self, environment: HostEnvironment) -> None:
        device = environment.device
        if device is None and environment.viewport is None:
            raise RuntimeCapabilityError("Host reports no device information", capability="device")

        sample: dict[str, Any] = {}
        if device is not None:
            sample["deviceMemory"] = device.memory_gb
            sample["hardwareConcurrency"] = device.hardware_concurrency
            sample["pixelRatio"] = device.pixel_ratio
            if device.screen_width and device.screen_height:
                sample["screenResolution"] = f"{device.screen_width}x{device.screen_height}"
        if environment.viewport is not None:
            sample["deviceType"] = device_type_for_width(environment.viewport[0])

        sample = {key: value for key, value in sample.items() if value is not None}
        if sample:
            self.emit(sample)


def default_sources(memory_check_interval_ms: float = MEMORY_CHECK_INTERVAL_MS) -> list[MetricSource]:
    """One instance of every built-in source, none required."""
    return [
        PaintTimingSource(),
        LayoutShiftSource(),
        InteractionLatencySource(),
        NavigationTimingSource(),
        ResourceTimingSource(),
        NetworkInfoSource(),
        DeviceInfoSource(),
        MemoryUsageSource(interval_ms=memory_check_interval_ms),
    ]
