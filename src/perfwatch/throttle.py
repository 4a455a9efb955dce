"""
Throttle governor for high-frequency callbacks.

Wraps scroll/resize/pointer-driven sampling so collecting metrics does not
eat into the frame budget being measured. The first call runs immediately,
calls inside the interval are suppressed (and counted), and the most recent
suppressed call always runs once the interval reopens, so input is delayed
but never lost.

Trailing calls are scheduled on the running asyncio loop when there is one,
otherwise on a daemon threading.Timer.
"""

import asyncio
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass
from typing import Any

logger = logging.getLogger(__name__)

FRAME_INTERVAL_MS = 1000 / 60

THROTTLE_DELAYS = {
    "mouse_move": 16,
    "scroll": 16,
    "resize": 100,
    "search": 300,
    "api": 500,
    "computation": 200,
}

Scheduler = Callable[[float, Callable[[], None]], Any]


def _monotonic_ms() -> float:
    return time.monotonic() * 1000


def default_scheduler(delay_seconds: float, callback: Callable[[], None]) -> Any:
    """Schedule ``callback`` after ``delay_seconds``; the handle has cancel()."""
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        timer = threading.Timer(delay_seconds, callback)
        timer.daemon = True
        timer.start()
        return timer
    return loop.call_later(delay_seconds, callback)


@dataclass
class ThrottleStats:
    """Call counters for one throttled function."""

    calls: int = 0
    throttled: int = 0
    last_call_timestamp: float = 0.0


class ThrottleMonitor:
    """Accumulates per-name call/throttle counters for self-diagnosis."""

    def __init__(self):
        self._metrics: dict[str, ThrottleStats] = {}
        self._lock = threading.Lock()

    def track(self, name: str, was_throttled: bool) -> None:
        with self._lock:
            stats = self._metrics.setdefault(name, ThrottleStats())
            stats.calls += 1
            if was_throttled:
                stats.throttled += 1
            stats.last_call_timestamp = time.time()

    def get_metrics(self, name: str | None = None) -> dict[str, Any] | None:
        """Counters for ``name``, or for every tracked name when omitted."""
        with self._lock:
            if name is not None:
                stats = self._metrics.get(name)
                return asdict(stats) if stats else None
            return {key: asdict(stats) for key, stats in self._metrics.items()}

    def reset(self, name: str | None = None) -> None:
        with self._lock:
            if name is None:
                self._metrics.clear()
            else:
                self._metrics.pop(name, None)


_default_monitor = ThrottleMonitor()


def get_throttle_monitor() -> ThrottleMonitor:
    """Process-wide monitor used when no explicit monitor is passed."""
    return _default_monitor


class Throttled:
    """
    Callable wrapper enforcing a minimum interval between invocations.

    Calls never raise: exceptions from the wrapped function are logged.
    """

    def __init__(
        self,
        func: Callable[..., Any],
        interval_ms: float,
        name: str | None = None,
        monitor: ThrottleMonitor | None = None,
        clock: Callable[[], float] | None = None,
        scheduler: Scheduler | None = None,
    ):
        """
        Args:
            func: Function to throttle
            interval_ms: Minimum milliseconds between executions
            name: Counter name; tracking is enabled when a name or monitor is given
            monitor: ThrottleMonitor to report to (defaults to the process monitor)
            clock: Millisecond clock, monotonic by default
            scheduler: Trailing-call scheduler, see default_scheduler
        """
        if interval_ms < 0:
            raise ValueError("interval_ms must be non-negative")

        self.func = func
        self.interval_ms = interval_ms
        self.name = name or (getattr(func, "__qualname__", None) if monitor else None)
        self._monitor = monitor or (get_throttle_monitor() if name else None)
        self._clock = clock or _monotonic_ms
        self._scheduler = scheduler or default_scheduler

        self._last_invoke: float | None = None
        self._pending: tuple[tuple, dict] | None = None
        self._handle: Any = None
        self._lock = threading.RLock()

    def __call__(self, *args: Any, **kwargs: Any) -> None:
        with self._lock:
            now = self._clock()
            interval_open = self._last_invoke is None or now - self._last_invoke >= self.interval_ms

            if interval_open:
                self._cancel_handle()
                self._pending = None
                self._last_invoke = now
                self._track(False)
            else:
                self._pending = (args, kwargs)
                self._track(True)
                if self._handle is None:
                    delay_ms = max(0.0, self.interval_ms - (now - self._last_invoke))
                    self._handle = self._scheduler(delay_ms / 1000, self._run_trailing)
                return

        self._invoke(args, kwargs)

    @property
    def pending(self) -> bool:
        return self._pending is not None

    def cancel(self) -> None:
        """Drop any pending trailing call."""
        with self._lock:
            self._cancel_handle()
            self._pending = None

    def flush(self) -> None:
        """Run the pending trailing call now, if there is one."""
        with self._lock:
            pending = self._pending
            if pending is None:
                return
            self._cancel_handle()
            self._pending = None
            self._last_invoke = self._clock()
        self._invoke(*pending)

    def _run_trailing(self) -> None:
        with self._lock:
            self._handle = None
            pending = self._pending
            self._pending = None
            if pending is None:
                return
            self._last_invoke = self._clock()
        self._invoke(*pending)

    def _invoke(self, args: tuple, kwargs: dict) -> None:
        try:
            self.func(*args, **kwargs)
        except Exception as e:
            logger.error(f"Throttled function {self.name or self.func!r} failed: {e}")

    def _cancel_handle(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _track(self, was_throttled: bool) -> None:
        if self._monitor is not None and self.name:
            self._monitor.track(self.name, was_throttled)


def throttle(
    func: Callable[..., Any],
    interval_ms: float,
    name: str | None = None,
    monitor: ThrottleMonitor | None = None,
    clock: Callable[[], float] | None = None,
    scheduler: Scheduler | None = None,
) -> Throttled:
    """Throttle ``func`` to at most one execution per ``interval_ms``."""
    return Throttled(func, interval_ms, name=name, monitor=monitor, clock=clock, scheduler=scheduler)


def throttle_animation_frame(func: Callable[..., Any], **kwargs: Any) -> Throttled:
    """Throttle ``func`` to display-frame cadence (~60fps)."""
    return Throttled(func, FRAME_INTERVAL_MS, **kwargs)


def throttled_scroll_handler(handler: Callable[..., Any], delay_ms: float = THROTTLE_DELAYS["scroll"], **kwargs: Any) -> Throttled:
    return throttle(handler, delay_ms, **kwargs)


def throttled_resize_handler(handler: Callable[..., Any], delay_ms: float = THROTTLE_DELAYS["resize"], **kwargs: Any) -> Throttled:
    return throttle(handler, delay_ms, **kwargs)


def throttled_search_handler(handler: Callable[..., Any], delay_ms: float = THROTTLE_DELAYS["search"], **kwargs: Any) -> Throttled:
    return throttle(handler, delay_ms, **kwargs)
