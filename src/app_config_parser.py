"""Typed parser for config.toml sections into immutable app settings."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping

from app_config_schema import (
    AppConfig,
    AppConfigurationError,
    StoreSettings,
    SyncSettings,
    TabSettings,
)

_SYNC_FIELDS = (
    "reconcile_interval_seconds",
    "self_heal_interval_seconds",
    "hydration_timeout_seconds",
    "settings_timeout_seconds",
    "write_timeout_seconds",
    "init_retry_delay_seconds",
    "navigation_settle_seconds",
)


def parse_app_config(
    raw: Mapping[str, Any],
    *,
    base_dir: Path,
    source_file: str,
) -> AppConfig:
    """Parse raw TOML mappings into strongly typed application settings."""
    return AppConfig(
        store=_parse_store_settings(_section(raw, "store"), base_dir=base_dir),
        sync=_parse_sync_settings(_section(raw, "sync")),
        tab=_parse_tab_settings(_section(raw, "tab")),
        source_file=source_file,
    )


def _parse_store_settings(
    section: Mapping[str, Any],
    *,
    base_dir: Path,
) -> StoreSettings:
    defaults = StoreSettings()
    data_file = _as_str(section.get("data_file", ""), "store.data_file")
    return StoreSettings(
        host=_as_str(section.get("host", defaults.host), "store.host"),
        port=_as_int(section.get("port", defaults.port), "store.port"),
        data_file=_resolve_path(base_dir, data_file),
    )


def _parse_sync_settings(section: Mapping[str, Any]) -> SyncSettings:
    defaults = SyncSettings()
    values = {}
    for name in _SYNC_FIELDS:
        value = _as_float(section.get(name, getattr(defaults, name)), f"sync.{name}")
        if value < 0:
            raise AppConfigurationError(f"sync.{name} must be >= 0.")
        values[name] = value
    return SyncSettings(**values)


def _parse_tab_settings(section: Mapping[str, Any]) -> TabSettings:
    return TabSettings(url=_as_str(section.get("url", ""), "tab.url"))


def _section(root: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    raw = root.get(name, {})
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise AppConfigurationError(f"[{name}] must be a table.")
    return raw


def _as_str(value: Any, field: str) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    raise AppConfigurationError(f"{field} must be a string.")


def _as_int(value: Any, field: str) -> int:
    if isinstance(value, bool):
        raise AppConfigurationError(f"{field} must be an integer.")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError as error:
            raise AppConfigurationError(f"{field} must be an integer.") from error
    raise AppConfigurationError(f"{field} must be an integer.")


def _as_float(value: Any, field: str) -> float:
    if isinstance(value, bool):
        raise AppConfigurationError(f"{field} must be a float.")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError as error:
            raise AppConfigurationError(f"{field} must be a float.") from error
    raise AppConfigurationError(f"{field} must be a float.")


def _resolve_path(base_dir: Path, raw: str) -> str:
    if not raw:
        return ""
    path = Path(raw).expanduser()
    if not path.is_absolute():
        path = (base_dir / path).resolve()
    return str(path)
