"""Test doubles shared across the perfwatch test modules."""

from perfwatch.models import AlertSeverity, AlertType, PerformanceAlert


class FakeClock:
    """Manually advanced millisecond clock."""

    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakeHandle:
    def __init__(self, due: float, callback):
        self.due = due
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeScheduler:
    """Scheduler for Throttled that fires callbacks as the FakeClock is advanced."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.handles: list[FakeHandle] = []

    def __call__(self, delay_seconds, callback):
        handle = FakeHandle(self.clock.now + delay_seconds * 1000, callback)
        self.handles.append(handle)
        return handle

    def advance_to(self, t: float) -> None:
        while True:
            due = sorted(
                (h for h in self.handles if not h.cancelled and h.due <= t),
                key=lambda h: h.due,
            )
            if not due:
                break
            handle = due[0]
            self.handles.remove(handle)
            self.clock.now = handle.due
            handle.callback()
        self.handles = [h for h in self.handles if not h.cancelled]
        self.clock.now = t


def make_alert(index: int = 0, severity: AlertSeverity = AlertSeverity.MEDIUM) -> PerformanceAlert:
    return PerformanceAlert(
        alert_id=f"alert-{index}",
        alert_type=AlertType.THRESHOLD_EXCEEDED,
        severity=severity,
        metric="lcp",
        value=3000.0,
        threshold=2500.0,
        timestamp=1_700_000_000.0 + index,
        message=f"alert {index}",
    )
