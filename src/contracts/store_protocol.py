"""Shared store keys and cross-context message constants."""

from __future__ import annotations

# Store keys
KEY_USER_SETTINGS = "userSettings"
KEY_TIMER_STATE = "timerState"
KEY_PANIC_MODAL_OPEN = "panicModalOpen"

# Broadcast message types
MESSAGE_SYNC_PANIC_MODAL = "SYNC_PANIC_MODAL"

# Store host wire messages
REQUEST_GET = "get"
REQUEST_SET = "set"
REQUEST_ACTIVATE = "activate"
REQUEST_BROADCAST = "broadcast"

RESPONSE_RESULT = "result"
RESPONSE_ERROR = "error"

EVENT_HELLO = "hello"
EVENT_STORAGE_CHANGED = "storage_changed"

REQUEST_TYPES: frozenset[str] = frozenset(
    {
        REQUEST_GET,
        REQUEST_SET,
        REQUEST_ACTIVATE,
        REQUEST_BROADCAST,
    }
)

# Change record fields
CHANGE_OLD_VALUE = "oldValue"
CHANGE_NEW_VALUE = "newValue"

# Substring used to recognise a torn-down context in failure messages.
CONTEXT_INVALIDATED_MARKER = "invalidated"
