"""
Configuration for the perfwatch engine.

Settings load from keyword arguments or ``PERFWATCH_*`` environment
variables. Every option is optional; defaults match the dashboard
consumer's behaviour (30s refresh, medium toast threshold, all domain
trackers wired up).
"""

from __future__ import annotations

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import AlertSeverity


class PerfwatchSettings(BaseSettings):
    """Engine and façade options."""

    model_config = SettingsConfigDict(
        env_prefix="PERFWATCH_",
        extra="ignore",
    )

    alert_threshold: AlertSeverity = Field(
        default=AlertSeverity.MEDIUM,
        description="Lowest severity forwarded to user-visible notifications",
    )
    update_interval_ms: int = Field(
        default=30000,
        gt=0,
        description="Cadence for pull-based report refresh",
    )
    enable_gallery_tracking: bool = True
    enable_error_correlation: bool = True
    enable_bundle_analysis: bool = True

    alert_history_size: int = Field(default=50, gt=0)
    journey_size: int = Field(default=100, gt=0)
    error_history_size: int = Field(default=100, gt=0)
    regression_threshold_percent: float = Field(default=20.0, gt=0)

    memory_warning_mb: float = Field(default=50.0, gt=0, description="Process memory above this raises a medium alert")
    memory_critical_mb: float = Field(default=100.0, gt=0, description="Process memory above this raises a high alert")
    memory_check_interval_ms: int = Field(default=5000, gt=0, description="Minimum gap between process memory reads")

    beacon_url: str | None = Field(
        default=None,
        description="Collector endpoint for HttpBeaconSink; unset disables it",
    )

    @field_validator("alert_threshold", mode="before")
    @classmethod
    def normalize_threshold(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @model_validator(mode="after")
    def check_memory_tiers(self) -> PerfwatchSettings:
        if self.memory_critical_mb <= self.memory_warning_mb:
            raise ValueError("memory_critical_mb must be greater than memory_warning_mb")
        return self
