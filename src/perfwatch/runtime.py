"""
Host runtime for perfwatch sample sources.

PerformanceTimeline is an in-process performance timeline: host code (page
instrumentation, a test harness) adds typed entries, and observers
registered per entry type are called back as entries arrive. It plays the
role a browser's PerformanceObserver plays for a page.

HostEnvironment describes what the host can report about itself (device,
connection, viewport). Any part may be missing; sources leave the matching
metrics unset. ``HostEnvironment.from_system()`` probes the local machine
through psutil, and ``probe_process_memory_mb`` reads this process's RSS.

Performance requirements:
- add_entry: observer dispatch only, no per-entry allocation beyond the buffer
- Buffer bounded per entry type (250 by default, like resource timing buffers)
"""

import logging
import platform
import threading
import time
from collections import defaultdict, deque
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any, ClassVar

import psutil

from .exceptions import RuntimeCapabilityError

logger = logging.getLogger(__name__)

DEFAULT_BUFFER_SIZE = 250


@dataclass(frozen=True)
class PaintEntry:
    """first-paint / first-contentful-paint."""

    name: str
    start_time: float
    entry_type: ClassVar[str] = "paint"


@dataclass(frozen=True)
class LargestContentfulPaintEntry:
    start_time: float
    size: int = 0
    element: str = ""
    entry_type: ClassVar[str] = "largest-contentful-paint"


@dataclass(frozen=True)
class LayoutShiftEntry:
    value: float
    start_time: float
    had_recent_input: bool = False
    entry_type: ClassVar[str] = "layout-shift"


@dataclass(frozen=True)
class EventTimingEntry:
    """A user input event; interaction_id 0 means not part of an interaction."""

    name: str
    start_time: float
    duration: float
    interaction_id: int = 0
    entry_type: ClassVar[str] = "event"


@dataclass(frozen=True)
class FirstInputEntry:
    name: str
    start_time: float
    processing_start: float
    entry_type: ClassVar[str] = "first-input"

    @property
    def delay(self) -> float:
        return self.processing_start - self.start_time


@dataclass(frozen=True)
class ResourceTimingEntry:
    name: str
    start_time: float
    duration: float
    transfer_size: int = 0
    encoded_body_size: int = 0
    decoded_body_size: int = 0
    initiator_type: str = "other"
    entry_type: ClassVar[str] = "resource"


@dataclass(frozen=True)
class NavigationTimingEntry:
    """Navigation milestones in milliseconds from the time origin."""

    fetch_start: float = 0.0
    domain_lookup_start: float = 0.0
    domain_lookup_end: float = 0.0
    connect_start: float = 0.0
    connect_end: float = 0.0
    secure_connection_start: float = 0.0
    request_start: float = 0.0
    response_start: float = 0.0
    response_end: float = 0.0
    dom_interactive: float = 0.0
    dom_content_loaded_event_end: float = 0.0
    load_event_end: float = 0.0
    name: str = "document"
    entry_type: ClassVar[str] = "navigation"


ENTRY_TYPES = frozenset({
    PaintEntry.entry_type,
    LargestContentfulPaintEntry.entry_type,
    LayoutShiftEntry.entry_type,
    EventTimingEntry.entry_type,
    FirstInputEntry.entry_type,
    ResourceTimingEntry.entry_type,
    NavigationTimingEntry.entry_type,
})

EntryCallback = Callable[[Sequence[Any]], None]


class TimelineObserver:
    """Registration handle returned by PerformanceTimeline.observe()."""

    def __init__(self, timeline: "PerformanceTimeline", entry_types: frozenset[str], callback: EntryCallback):
        self._timeline = timeline
        self.entry_types = entry_types
        self.callback = callback
        self.connected = True

    def disconnect(self) -> None:
        if self.connected:
            self.connected = False
            self._timeline._remove_observer(self)


class PerformanceTimeline:
    """
    Buffered, observable timeline of performance entries.

    Thread-safe; observer callbacks run outside the lock on the thread that
    added the entry.
    """

    def __init__(
        self,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
        supported_entry_types: Iterable[str] | None = None,
        clock: Callable[[], float] | None = None,
    ):
        """
        Args:
            buffer_size: Maximum buffered entries per entry type
            supported_entry_types: Entry types this host can produce (all by default)
            clock: Millisecond clock for now(); defaults to time since construction
        """
        self.supported_entry_types = frozenset(supported_entry_types) if supported_entry_types is not None else ENTRY_TYPES
        self._buffers: dict[str, deque] = defaultdict(lambda: deque(maxlen=buffer_size))
        self._observers: list[TimelineObserver] = []
        self._lock = threading.RLock()
        self._origin = time.perf_counter()
        self._clock = clock

    def now(self) -> float:
        """Milliseconds since the timeline's time origin."""
        if self._clock is not None:
            return self._clock()
        return (time.perf_counter() - self._origin) * 1000

    def supports(self, entry_type: str) -> bool:
        return entry_type in self.supported_entry_types

    def add_entry(self, entry: Any) -> None:
        """Buffer an entry and dispatch it to observers of its type."""
        entry_type = entry.entry_type
        if not self.supports(entry_type):
            logger.debug(f"Dropping unsupported entry type: {entry_type}")
            return

        with self._lock:
            self._buffers[entry_type].append(entry)
            observers = [o for o in self._observers if entry_type in o.entry_types]

        for observer in observers:
            if not observer.connected:
                continue
            try:
                observer.callback([entry])
            except Exception as e:
                logger.error(f"Timeline observer for {entry_type} failed: {e}")

    def add_entries(self, entries: Iterable[Any]) -> None:
        for entry in entries:
            self.add_entry(entry)

    def get_entries_by_type(self, entry_type: str) -> list[Any]:
        with self._lock:
            return list(self._buffers.get(entry_type, ()))

    def observe(self, entry_types: Iterable[str], callback: EntryCallback, buffered: bool = False) -> TimelineObserver:
        """
        Register ``callback`` for new entries of ``entry_types``.

        Args:
            entry_types: Entry types to observe
            callback: Called with a sequence of new entries
            buffered: Also deliver entries already in the buffer

        Raises:
            RuntimeCapabilityError: If an entry type is not supported by this host
        """
        types = frozenset(entry_types)
        unsupported = types - self.supported_entry_types
        if unsupported:
            raise RuntimeCapabilityError(
                f"Entry types not supported: {', '.join(sorted(unsupported))}",
                capability=sorted(unsupported)[0],
            )

        observer = TimelineObserver(self, types, callback)
        with self._lock:
            self._observers.append(observer)
            backlog = [e for t in types for e in self._buffers.get(t, ())] if buffered else []

        if backlog:
            backlog.sort(key=lambda e: getattr(e, "start_time", 0.0))
            try:
                callback(backlog)
            except Exception as e:
                logger.error(f"Buffered delivery to timeline observer failed: {e}")
        return observer

    def _remove_observer(self, observer: TimelineObserver) -> None:
        with self._lock:
            try:
                self._observers.remove(observer)
            except ValueError:
                pass

    @property
    def observer_count(self) -> int:
        with self._lock:
            return len(self._observers)

    def clear(self, entry_type: str | None = None) -> None:
        with self._lock:
            if entry_type is None:
                self._buffers.clear()
            else:
                self._buffers.pop(entry_type, None)


@dataclass(frozen=True)
class ConnectionInfo:
    connection_type: str | None = None
    effective_type: str | None = None
    downlink: float | None = None  # Mbps
    rtt: float | None = None  # ms


@dataclass(frozen=True)
class DeviceInfo:
    memory_gb: float | None = None
    hardware_concurrency: int | None = None
    pixel_ratio: float | None = None
    screen_width: int | None = None
    screen_height: int | None = None


@dataclass(frozen=True)
class HostEnvironment:
    """
    Capabilities the host reports about itself.

    A host without a viewport is non-interactive (a worker, a test runner
    without a display); RUM collection is unavailable there.
    """

    user_agent: str = ""
    viewport: tuple[int, int] | None = None
    connection: ConnectionInfo | None = None
    device: DeviceInfo | None = None
    route: str = "/"

    @property
    def interactive(self) -> bool:
        return self.viewport is not None

    @classmethod
    def from_system(cls, viewport: tuple[int, int] | None = None, route: str = "/", user_agent: str | None = None) -> "HostEnvironment":
        """Probe device and connection details of the local machine."""
        return cls(
            user_agent=user_agent or f"perfwatch Python/{platform.python_version()} ({platform.system()})",
            viewport=viewport,
            connection=probe_connection(),
            device=probe_device(),
            route=route,
        )


_DEVICE_MEMORY_BUCKETS = (0.25, 0.5, 1, 2, 4, 8)


def approximate_device_memory(total_gb: float) -> float:
    """Round memory down to the coarse buckets hosts report (0.25-8 GB)."""
    eligible = [bucket for bucket in _DEVICE_MEMORY_BUCKETS if bucket <= total_gb]
    return eligible[-1] if eligible else _DEVICE_MEMORY_BUCKETS[0]


def effective_type_for(downlink_mbps: float) -> str:
    if downlink_mbps < 0.05:
        return "slow-2g"
    if downlink_mbps < 0.07:
        return "2g"
    if downlink_mbps < 0.7:
        return "3g"
    return "4g"


def probe_device() -> DeviceInfo | None:
    try:
        memory = psutil.virtual_memory()
        return DeviceInfo(
            memory_gb=approximate_device_memory(memory.total / (1024 ** 3)),
            hardware_concurrency=psutil.cpu_count(logical=True),
        )
    except Exception as e:
        logger.debug(f"Device probe unavailable: {e}")
        return None


def probe_process_memory_mb() -> float | None:
    """Resident set size of this process in MB, or None when psutil cannot read it."""
    try:
        rss = psutil.Process().memory_info().rss
    except Exception as e:
        logger.debug(f"Process memory probe unavailable: {e}")
        return None
    return round(rss / (1024 ** 2), 1)


def probe_connection() -> ConnectionInfo | None:
    try:
        stats = psutil.net_if_stats()
    except Exception as e:
        logger.debug(f"Connection probe unavailable: {e}")
        return None

    links = [
        (name, stat.speed)
        for name, stat in stats.items()
        if stat.isup and stat.speed > 0 and not name.startswith("lo")
    ]
    if not links:
        return None

    name, speed_mbps = max(links, key=lambda link: link[1])
    connection_type = "wifi" if name.startswith(("wl", "wi")) else "ethernet"
    return ConnectionInfo(
        connection_type=connection_type,
        effective_type=effective_type_for(float(speed_mbps)),
        downlink=float(speed_mbps),
    )


@dataclass
class PerformanceRuntime:
    """Timeline plus environment: everything a sample source may read."""

    timeline: PerformanceTimeline
    environment: HostEnvironment

    @classmethod
    def create(cls, environment: HostEnvironment | None = None, **timeline_kwargs: Any) -> "PerformanceRuntime":
        return cls(PerformanceTimeline(**timeline_kwargs), environment or HostEnvironment())
