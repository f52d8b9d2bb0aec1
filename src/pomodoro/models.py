"""Immutable timer, settings and panic content values mirrored from the store."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from .constants import (
    DEFAULT_BREAK_MINUTES,
    DEFAULT_IMAGE_MAX_WIDTH,
    DEFAULT_PANEL_POSITION,
    DEFAULT_PANIC_ITEMS,
    DEFAULT_PANIC_TITLE,
    DEFAULT_POMODORO_BLOCKS,
    DEFAULT_SESSION_MINUTES,
    MS_PER_MINUTE,
)


@dataclass(frozen=True)
class TimerState:
    """Shared countdown state; `duration` is total length while running, remaining time otherwise."""
    is_running: bool = False
    start_time: Optional[int] = None
    duration: int = 0
    is_break: bool = False
    current_block: int = 1
    progress_start_percent: float = 0.0
    session_minutes: int = DEFAULT_SESSION_MINUTES

    @property
    def is_ready(self) -> bool:
        return not self.is_running and self.duration == 0

    def remaining_ms(self, now_ms: int) -> int:
        if self.is_running and self.start_time is not None:
            return max(0, self.duration - (now_ms - self.start_time))
        return max(0, self.duration)

    def to_store(self) -> dict[str, Any]:
        return {
            "isRunning": self.is_running,
            "startTime": self.start_time,
            "pausedAt": None,
            "duration": self.duration,
            "sessionMinutes": self.session_minutes,
            "isBreak": self.is_break,
            "currentBlock": self.current_block,
            "progressStartPercent": self.progress_start_percent,
        }

    @classmethod
    def from_store(cls, raw: Any) -> "TimerState":
        if not isinstance(raw, Mapping):
            return cls()
        is_running = _as_bool(raw.get("isRunning"), False)
        start_time = _as_optional_int(raw.get("startTime"))
        if is_running and start_time is None:
            # A running segment without an anchor cannot be counted down.
            is_running = False
        return cls(
            is_running=is_running,
            start_time=start_time,
            duration=max(0, _as_int(raw.get("duration"), 0)),
            is_break=_as_bool(raw.get("isBreak"), False),
            current_block=max(1, _as_int(raw.get("currentBlock"), 1)),
            progress_start_percent=_clamp_percent(raw.get("progressStartPercent")),
            session_minutes=max(
                1, _as_int(raw.get("sessionMinutes"), DEFAULT_SESSION_MINUTES)
            ),
        )


@dataclass(frozen=True)
class PanelPosition:
    x: int = DEFAULT_PANEL_POSITION[0]
    y: int = DEFAULT_PANEL_POSITION[1]

    def to_store(self) -> dict[str, int]:
        return {"x": self.x, "y": self.y}

    @classmethod
    def from_store(cls, raw: Any) -> "PanelPosition":
        if not isinstance(raw, Mapping):
            return cls()
        return cls(
            x=_as_int(raw.get("x"), DEFAULT_PANEL_POSITION[0]),
            y=_as_int(raw.get("y"), DEFAULT_PANEL_POSITION[1]),
        )


@dataclass(frozen=True)
class PanicContent:
    """Content shown in the panic modal."""
    title: str = DEFAULT_PANIC_TITLE
    items: tuple[str, ...] = DEFAULT_PANIC_ITEMS
    image_data_url: Optional[str] = None
    audio_data_url: Optional[str] = None
    image_max_width: int = DEFAULT_IMAGE_MAX_WIDTH

    def to_store(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "title": self.title,
            "items": list(self.items),
            "imageMaxWidth": self.image_max_width,
        }
        if self.image_data_url:
            payload["imageDataUrl"] = self.image_data_url
        if self.audio_data_url:
            payload["audioDataUrl"] = self.audio_data_url
        return payload

    @classmethod
    def from_store(cls, raw: Any) -> "PanicContent":
        if not isinstance(raw, Mapping):
            return cls()
        raw_items = raw.get("items")
        items: tuple[str, ...] = DEFAULT_PANIC_ITEMS
        if isinstance(raw_items, (list, tuple)):
            items = tuple(
                item.strip()
                for item in raw_items
                if isinstance(item, str) and item.strip()
            )
            items = items or DEFAULT_PANIC_ITEMS
        title = raw.get("title")
        return cls(
            title=title if isinstance(title, str) else DEFAULT_PANIC_TITLE,
            items=items,
            image_data_url=_as_optional_str(raw.get("imageDataUrl")),
            audio_data_url=_as_optional_str(raw.get("audioDataUrl")),
            image_max_width=_as_int(raw.get("imageMaxWidth"), DEFAULT_IMAGE_MAX_WIDTH),
        )


@dataclass(frozen=True)
class UserSettings:
    """Per-profile settings shared by every tab."""
    session_minutes: int = DEFAULT_SESSION_MINUTES
    break_minutes: int = DEFAULT_BREAK_MINUTES
    pomodoro_blocks: int = DEFAULT_POMODORO_BLOCKS
    current_block: int = 1
    panel_position: PanelPosition = field(default_factory=PanelPosition)
    panel_minimized: bool = False
    panic_content: PanicContent = field(default_factory=PanicContent)
    panel_enabled: bool = True
    blocked_urls: tuple[str, ...] = ()

    @property
    def session_ms(self) -> int:
        return self.session_minutes * MS_PER_MINUTE

    @property
    def break_ms(self) -> int:
        return self.break_minutes * MS_PER_MINUTE

    def to_store(self) -> dict[str, Any]:
        return {
            "sessionMinutes": self.session_minutes,
            "breakMinutes": self.break_minutes,
            "pomodoroBlocks": self.pomodoro_blocks,
            "currentBlock": self.current_block,
            "panelPosition": self.panel_position.to_store(),
            "panelMinimized": self.panel_minimized,
            "panicContent": self.panic_content.to_store(),
            "panelEnabled": self.panel_enabled,
            "blockedUrls": list(self.blocked_urls),
        }

    @classmethod
    def from_store(cls, raw: Any) -> "UserSettings":
        if not isinstance(raw, Mapping):
            return cls()
        raw_urls = raw.get("blockedUrls")
        blocked_urls: tuple[str, ...] = ()
        if isinstance(raw_urls, (list, tuple)):
            blocked_urls = tuple(url for url in raw_urls if isinstance(url, str) and url)
        return cls(
            session_minutes=max(
                1, _as_int(raw.get("sessionMinutes"), DEFAULT_SESSION_MINUTES)
            ),
            break_minutes=max(1, _as_int(raw.get("breakMinutes"), DEFAULT_BREAK_MINUTES)),
            pomodoro_blocks=max(
                1, _as_int(raw.get("pomodoroBlocks"), DEFAULT_POMODORO_BLOCKS)
            ),
            current_block=max(1, _as_int(raw.get("currentBlock"), 1)),
            panel_position=PanelPosition.from_store(raw.get("panelPosition")),
            panel_minimized=_as_bool(raw.get("panelMinimized"), False),
            panic_content=PanicContent.from_store(raw.get("panicContent")),
            panel_enabled=_as_bool(raw.get("panelEnabled"), True),
            blocked_urls=blocked_urls,
        )


def _as_bool(value: Any, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    return default


def _as_int(value: Any, default: int) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, float) and math.isfinite(value):
        return int(value)
    return default


def _as_optional_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int) or (isinstance(value, float) and math.isfinite(value)):
        return int(value)
    return None


def _as_optional_str(value: Any) -> Optional[str]:
    if isinstance(value, str) and value:
        return value
    return None


def _clamp_percent(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0.0
    if isinstance(value, float) and not math.isfinite(value):
        return 0.0
    return float(min(100.0, max(0.0, value)))
