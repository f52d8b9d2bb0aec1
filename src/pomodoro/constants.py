"""Phase, action, reason and default constants used by the timer state machine."""

from __future__ import annotations

MS_PER_MINUTE = 60_000

DEFAULT_SESSION_MINUTES = 25
DEFAULT_BREAK_MINUTES = 5
DEFAULT_POMODORO_BLOCKS = 4
DEFAULT_PANEL_POSITION = (20, 20)
DEFAULT_IMAGE_MAX_WIDTH = 200
MIN_IMAGE_MAX_WIDTH = 50

DEFAULT_PANIC_TITLE = "Stay focused on your task"
DEFAULT_PANIC_ITEMS: tuple[str, ...] = (
    "What is the ONE most important step right now?",
    "Why did you start this session?",
    "You've got this. Break it into smaller pieces.",
    "Check your environment: no distractions?",
    "Just 5 more minutes. Then reassess.",
)
FALLBACK_PANIC_TITLE = "Stay focused"
FALLBACK_PANIC_ITEM = "Focus on your task"

PHASE_READY = "ready"
PHASE_WORKING = "working"
PHASE_BREAK = "break"

ACTION_START = "start"
ACTION_TICK = "tick"
ACTION_SEGMENT_EXPIRE = "segment_expire"
ACTION_PANIC_OPEN = "panic_open"
ACTION_PANIC_CLOSE = "panic_close"
ACTION_RESET = "reset"
ACTION_QUIT = "quit"

REASON_STARTED = "started"
REASON_RESUMED = "resumed"
REASON_ALREADY_RUNNING = "already_running"
REASON_TICK = "tick"
REASON_BREAK_STARTED = "break_started"
REASON_NEXT_BLOCK = "next_block"
REASON_CYCLE_COMPLETED = "cycle_completed"
REASON_NOT_RUNNING = "not_running"
REASON_PANIC_FROZEN = "panic_frozen"
REASON_PANIC_NOT_WORKING = "panic_not_working"
REASON_PANIC_CLOSED = "panic_closed"
REASON_PANIC_RESUMED = "panic_resumed"
REASON_RESET = "reset"
REASON_QUIT = "quit"

STATUS_READY = "READY"
STATUS_WORKING = "WORKING"
STATUS_BREAK = "BREAK"
