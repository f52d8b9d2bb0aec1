"""Pure pomodoro state machine over shared `TimerState` values."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Literal, Optional

from .constants import (
    ACTION_PANIC_CLOSE,
    ACTION_PANIC_OPEN,
    ACTION_QUIT,
    ACTION_RESET,
    ACTION_SEGMENT_EXPIRE,
    ACTION_START,
    ACTION_TICK,
    PHASE_BREAK,
    PHASE_READY,
    PHASE_WORKING,
    REASON_ALREADY_RUNNING,
    REASON_BREAK_STARTED,
    REASON_CYCLE_COMPLETED,
    REASON_NEXT_BLOCK,
    REASON_NOT_RUNNING,
    REASON_PANIC_CLOSED,
    REASON_PANIC_FROZEN,
    REASON_PANIC_NOT_WORKING,
    REASON_PANIC_RESUMED,
    REASON_QUIT,
    REASON_RESET,
    REASON_RESUMED,
    REASON_STARTED,
    REASON_TICK,
)
from .models import TimerState, UserSettings

TimerPhase = Literal["ready", "working", "break"]
TimerAction = Literal[
    "start",
    "tick",
    "segment_expire",
    "panic_open",
    "panic_close",
    "reset",
    "quit",
]


@dataclass(frozen=True)
class TransitionResult:
    """Result envelope returned after applying a timer action.

    `panic_modal_open` and `panel_enabled` are `None` when the action leaves
    the corresponding shared value untouched.
    """
    action: TimerAction
    accepted: bool
    reason: str
    state: TimerState
    state_changed: bool = False
    panic_modal_open: Optional[bool] = None
    panel_enabled: Optional[bool] = None


def timer_phase(state: TimerState) -> TimerPhase:
    if state.is_running:
        return PHASE_BREAK if state.is_break else PHASE_WORKING
    return PHASE_READY


def is_time_stopped_by_panic(state: TimerState, panic_open: bool) -> bool:
    """Panic pauses time only: derived from the flag plus a frozen, non-empty segment."""
    return bool(panic_open and not state.is_running and state.duration > 0)


def merge_timer_state(
    local: TimerState,
    stored: TimerState,
    panic_open: bool,
) -> TimerState:
    """Pick the state a tab should display when its mirror and the store disagree.

    A panic-frozen mirror wins over a stored idle value, which is what a
    stale read looks like while the freeze write is still in flight.
    """
    frozen_in_memory = is_time_stopped_by_panic(local, panic_open)
    store_says_ready = not stored.is_running and stored.duration == 0
    if frozen_in_memory and store_says_ready:
        return local
    return stored


def ready_state(settings: UserSettings, *, duration: int = 0) -> TimerState:
    return TimerState(
        is_running=False,
        start_time=None,
        duration=duration,
        is_break=False,
        current_block=1,
        progress_start_percent=0.0,
        session_minutes=settings.session_minutes,
    )


class PomodoroStateMachine:
    """Applies Pomodoro transitions to immutable timer snapshots.

    The machine holds no timer state of its own; every tab feeds it the value
    it currently mirrors and persists whatever comes back.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self._logger = logger or logging.getLogger("pomodoro")

    def start(
        self,
        state: TimerState,
        settings: UserSettings,
        now_ms: int,
    ) -> TransitionResult:
        if state.is_running:
            return _rejected(ACTION_START, REASON_ALREADY_RUNNING, state)

        if state.duration <= 0:
            next_state = TimerState(
                is_running=True,
                start_time=now_ms,
                duration=settings.session_ms,
                is_break=False,
                current_block=1,
                progress_start_percent=0.0,
                session_minutes=settings.session_minutes,
            )
            reason = REASON_STARTED
        else:
            next_state = replace(
                state,
                is_running=True,
                start_time=now_ms,
                session_minutes=settings.session_minutes,
            )
            reason = REASON_RESUMED

        self._logger.info(
            "Timer %s: phase=%s block=%s duration=%sms progress=%.1f%%",
            reason,
            timer_phase(next_state),
            next_state.current_block,
            next_state.duration,
            next_state.progress_start_percent,
        )
        return _accepted(ACTION_START, reason, state, next_state)

    def tick(
        self,
        state: TimerState,
        settings: UserSettings,
        now_ms: int,
    ) -> TransitionResult:
        if state.is_running and state.remaining_ms(now_ms) <= 0:
            return self.segment_expire(state, settings, now_ms)
        return TransitionResult(
            action=ACTION_TICK,
            accepted=True,
            reason=REASON_TICK,
            state=state,
        )

    def segment_expire(
        self,
        state: TimerState,
        settings: UserSettings,
        now_ms: int,
    ) -> TransitionResult:
        if not state.is_running:
            return _rejected(ACTION_SEGMENT_EXPIRE, REASON_NOT_RUNNING, state)

        if not state.is_break:
            next_state = TimerState(
                is_running=True,
                start_time=now_ms,
                duration=settings.break_ms,
                is_break=True,
                current_block=state.current_block,
                progress_start_percent=0.0,
                session_minutes=settings.session_minutes,
            )
            reason = REASON_BREAK_STARTED
        elif state.current_block < settings.pomodoro_blocks:
            next_state = TimerState(
                is_running=True,
                start_time=now_ms,
                duration=settings.session_ms,
                is_break=False,
                current_block=state.current_block + 1,
                progress_start_percent=0.0,
                session_minutes=settings.session_minutes,
            )
            reason = REASON_NEXT_BLOCK
        else:
            # Pre-seed the next cycle so the idle panel shows a full session.
            next_state = ready_state(settings, duration=settings.session_ms)
            reason = REASON_CYCLE_COMPLETED

        self._logger.info(
            "Segment expired: reason=%s block=%s/%s",
            reason,
            next_state.current_block,
            settings.pomodoro_blocks,
        )
        return _accepted(ACTION_SEGMENT_EXPIRE, reason, state, next_state)

    def panic_open(
        self,
        state: TimerState,
        settings: UserSettings,
        now_ms: int,
    ) -> TransitionResult:
        # Expiry always wins over a simultaneous panic request.
        expired = self.tick(state, settings, now_ms)
        current = expired.state

        if not current.is_running or current.is_break or current.start_time is None:
            self._logger.info(
                "Panic opened without freeze: phase=%s",
                timer_phase(current),
            )
            return TransitionResult(
                action=ACTION_PANIC_OPEN,
                accepted=True,
                reason=REASON_PANIC_NOT_WORKING,
                state=current,
                state_changed=current != state,
                panic_modal_open=True,
            )

        elapsed = max(0, now_ms - current.start_time)
        remaining = max(0, current.duration - elapsed)
        progress = (
            min(100.0, elapsed / current.duration * 100.0)
            if current.duration > 0
            else 0.0
        )
        frozen = replace(
            current,
            is_running=False,
            start_time=None,
            duration=remaining,
            progress_start_percent=progress,
        )
        self._logger.info(
            "Panic froze work segment: remaining=%sms progress=%.1f%%",
            remaining,
            progress,
        )
        return TransitionResult(
            action=ACTION_PANIC_OPEN,
            accepted=True,
            reason=REASON_PANIC_FROZEN,
            state=frozen,
            state_changed=True,
            panic_modal_open=True,
        )

    def panic_close(
        self,
        state: TimerState,
        settings: UserSettings,
        now_ms: int,
        *,
        panic_open: bool,
    ) -> TransitionResult:
        if not is_time_stopped_by_panic(state, panic_open):
            self._logger.info("Panic closed")
            return TransitionResult(
                action=ACTION_PANIC_CLOSE,
                accepted=True,
                reason=REASON_PANIC_CLOSED,
                state=state,
                panic_modal_open=False,
            )

        resumed = self.start(state, settings, now_ms)
        return TransitionResult(
            action=ACTION_PANIC_CLOSE,
            accepted=True,
            reason=REASON_PANIC_RESUMED,
            state=resumed.state,
            state_changed=resumed.state_changed,
            panic_modal_open=False,
        )

    def reset(self, state: TimerState, settings: UserSettings) -> TransitionResult:
        next_state = ready_state(settings)
        self._logger.info("Timer reset")
        return _accepted(ACTION_RESET, REASON_RESET, state, next_state)

    def quit(self, state: TimerState, settings: UserSettings) -> TransitionResult:
        next_state = ready_state(settings)
        self._logger.info("Session quit: panel disabled everywhere")
        return TransitionResult(
            action=ACTION_QUIT,
            accepted=True,
            reason=REASON_QUIT,
            state=next_state,
            state_changed=next_state != state,
            panic_modal_open=False,
            panel_enabled=False,
        )


def _accepted(
    action: TimerAction,
    reason: str,
    previous: TimerState,
    state: TimerState,
) -> TransitionResult:
    return TransitionResult(
        action=action,
        accepted=True,
        reason=reason,
        state=state,
        state_changed=state != previous,
    )


def _rejected(action: TimerAction, reason: str, state: TimerState) -> TransitionResult:
    return TransitionResult(action=action, accepted=False, reason=reason, state=state)
