"""Timing configuration for per-tab synchronization."""

from __future__ import annotations

from dataclasses import dataclass, fields


class SyncConfigurationError(Exception):
    """Raised when tab synchronization timings are invalid."""


@dataclass(frozen=True)
class SyncConfig:
    """Validated tick intervals and store timeouts for one tab session."""
    reconcile_interval_seconds: float = 1.0
    self_heal_interval_seconds: float = 2.0
    hydration_timeout_seconds: float = 1.5
    settings_timeout_seconds: float = 0.3
    write_timeout_seconds: float = 0.3
    init_retry_delay_seconds: float = 1.0
    navigation_settle_seconds: float = 0.1

    def __post_init__(self) -> None:
        for item in fields(self):
            value = getattr(self, item.name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise SyncConfigurationError(f"{item.name} must be a number")
            if value < 0:
                raise SyncConfigurationError(f"{item.name} must be >= 0, got: {value}")

        for name in ("reconcile_interval_seconds", "self_heal_interval_seconds"):
            if getattr(self, name) <= 0:
                raise SyncConfigurationError(
                    f"{name} must be > 0, got: {getattr(self, name)}"
                )

    @classmethod
    def from_settings(cls, settings) -> "SyncConfig":
        return cls(
            reconcile_interval_seconds=settings.reconcile_interval_seconds,
            self_heal_interval_seconds=settings.self_heal_interval_seconds,
            hydration_timeout_seconds=settings.hydration_timeout_seconds,
            settings_timeout_seconds=settings.settings_timeout_seconds,
            write_timeout_seconds=settings.write_timeout_seconds,
            init_retry_delay_seconds=settings.init_retry_delay_seconds,
            navigation_settle_seconds=settings.navigation_settle_seconds,
        )
