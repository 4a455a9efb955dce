"""
Perfwatch Exception Hierarchy

Only monitoring setup failures are meant to reach the caller. Everything
else in the engine is best-effort and is logged where it happens.
"""


class PerfwatchError(Exception):
    """Base exception for all perfwatch errors."""

    def __init__(self, message: str, error_code: str = "PERFWATCH_GENERAL_ERROR"):
        super().__init__(message)
        self.error_code = error_code
        self.message = message


class MonitoringStartError(PerfwatchError):
    """
    Raised when start_monitoring cannot attach a required sample source.

    Sources attached before the failure are detached again, so the monitor
    is left in its stopped state.
    """

    def __init__(self, message: str, source_name: str):
        super().__init__(message, "MONITORING_START_FAILED")
        self.source_name = source_name


class RuntimeCapabilityError(PerfwatchError):
    """
    Raised when an operation needs a host capability that is missing.

    Sample sources never raise this; they leave their metric unset instead.
    It is only raised by explicit queries such as collect_rum_data().
    """

    def __init__(self, message: str, capability: str):
        super().__init__(message, "RUNTIME_CAPABILITY_UNAVAILABLE")
        self.capability = capability
