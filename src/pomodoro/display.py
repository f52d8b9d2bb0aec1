"""Panel view model derived from timer state, settings and the panic flag."""

from __future__ import annotations

import math
from dataclasses import dataclass

from .constants import STATUS_BREAK, STATUS_READY, STATUS_WORKING
from .models import TimerState, UserSettings
from .service import is_time_stopped_by_panic


@dataclass(frozen=True)
class TimerView:
    """Everything the panel renderer needs for one refresh."""
    remaining_ms: int
    time_label: str
    status: str
    progress_percent: float
    block_label: str
    is_work_session: bool
    start_enabled: bool
    reset_enabled: bool


def format_remaining(remaining_ms: int) -> str:
    """Format milliseconds as `MM:SS`, rounding partial seconds up."""
    seconds = int(math.ceil(max(0, remaining_ms) / 1000))
    minutes, secs = divmod(seconds, 60)
    return f"{minutes:02d}:{secs:02d}"


def progress_percent(state: TimerState, now_ms: int, panic_open: bool) -> float:
    if state.is_running and state.start_time is not None and state.duration > 0:
        elapsed = now_ms - state.start_time
        segment = min(100.0, max(0.0, elapsed / state.duration * 100.0))
        start = state.progress_start_percent
        return min(100.0, start + segment / 100.0 * (100.0 - start))
    if is_time_stopped_by_panic(state, panic_open):
        return min(100.0, state.progress_start_percent)
    return 0.0


def build_timer_view(
    state: TimerState,
    settings: UserSettings,
    panic_open: bool,
    now_ms: int,
) -> TimerView:
    frozen_work = is_time_stopped_by_panic(state, panic_open) and not state.is_break
    if state.is_running:
        status = STATUS_BREAK if state.is_break else STATUS_WORKING
    elif frozen_work:
        status = STATUS_WORKING
    else:
        status = STATUS_READY

    remaining = state.remaining_ms(now_ms)
    return TimerView(
        remaining_ms=remaining,
        time_label=format_remaining(remaining),
        status=status,
        progress_percent=progress_percent(state, now_ms, panic_open),
        block_label=f"Block {state.current_block}/{settings.pomodoro_blocks}",
        is_work_session=(state.is_running and not state.is_break) or frozen_work,
        start_enabled=not state.is_running,
        reset_enabled=not state.is_running,
    )
