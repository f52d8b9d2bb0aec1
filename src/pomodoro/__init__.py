from .display import TimerView, build_timer_view, format_remaining
from .models import PanelPosition, PanicContent, TimerState, UserSettings
from .service import (
    PomodoroStateMachine,
    TimerAction,
    TimerPhase,
    TransitionResult,
    is_time_stopped_by_panic,
    merge_timer_state,
    ready_state,
    timer_phase,
)

__all__ = [
    "PanelPosition",
    "PanicContent",
    "PomodoroStateMachine",
    "TimerAction",
    "TimerPhase",
    "TimerState",
    "TimerView",
    "TransitionResult",
    "UserSettings",
    "build_timer_view",
    "format_remaining",
    "is_time_stopped_by_panic",
    "merge_timer_state",
    "ready_state",
    "timer_phase",
]
