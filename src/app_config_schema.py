"""Dataclass schema objects used by runtime configuration loading."""

from __future__ import annotations

from dataclasses import dataclass

DEFAULT_CONFIG_FILE = "config.toml"


class AppConfigurationError(Exception):
    """Raised when application configuration fails."""


@dataclass(frozen=True)
class StoreSettings:
    """Store host address and persistence file from `[store]`."""
    host: str = "127.0.0.1"
    port: int = 8766
    data_file: str = ""


@dataclass(frozen=True)
class SyncSettings:
    """Tick intervals and store timeouts from `[sync]`."""
    reconcile_interval_seconds: float = 1.0
    self_heal_interval_seconds: float = 2.0
    hydration_timeout_seconds: float = 1.5
    settings_timeout_seconds: float = 0.3
    write_timeout_seconds: float = 0.3
    init_retry_delay_seconds: float = 1.0
    navigation_settle_seconds: float = 0.1


@dataclass(frozen=True)
class TabSettings:
    """Headless tab launcher settings from `[tab]`."""
    url: str = ""


@dataclass(frozen=True)
class AppConfig:
    """Top-level immutable application configuration."""
    store: StoreSettings
    sync: SyncSettings
    tab: TabSettings
    source_file: str
