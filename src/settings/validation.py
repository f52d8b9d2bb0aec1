"""Validation of settings-form input and panic media before anything is persisted."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field, replace
from typing import Any, Mapping, Optional

from blocking import (
    MAX_BLOCKED_URLS,
    count_entries,
    sanitize_and_validate_urls,
)
from pomodoro import PanicContent
from pomodoro.constants import (
    DEFAULT_BREAK_MINUTES,
    DEFAULT_IMAGE_MAX_WIDTH,
    DEFAULT_POMODORO_BLOCKS,
    DEFAULT_SESSION_MINUTES,
    FALLBACK_PANIC_ITEM,
    FALLBACK_PANIC_TITLE,
    MIN_IMAGE_MAX_WIDTH,
)

MAX_IMAGE_SOURCE_BYTES = 1 * 1024 * 1024
MAX_AUDIO_SOURCE_BYTES = 5 * 1024 * 1024
MAX_PANIC_CONTENT_BYTES = 8 * 1024 * 1024
MAX_SETTINGS_BYTES = 10 * 1024 * 1024

REASON_SAVED = "saved"
REASON_ACCEPTED = "accepted"
REASON_EMPTY_UPLOAD = "empty_upload"
REASON_IMAGE_TOO_LARGE = "image_too_large"
REASON_AUDIO_TOO_LARGE = "audio_too_large"
REASON_PANIC_CONTENT_TOO_LARGE = "panic_content_too_large"
REASON_TOO_MANY_URLS = "too_many_urls"
REASON_SETTINGS_TOO_LARGE = "settings_too_large"

_NON_DIGITS = re.compile(r"[^0-9]")


@dataclass(frozen=True)
class SettingsForm:
    """Raw text a user typed into the settings modal."""
    session_minutes: str = ""
    break_minutes: str = ""
    pomodoro_blocks: str = ""
    panic_title: str = ""
    panic_items: str = ""
    image_max_width: str = ""
    blocked_urls: str = ""


@dataclass(frozen=True)
class SettingsValidationResult:
    """Outcome of a save or upload check; `changes` is keyed by stored field names."""
    accepted: bool
    reason: str
    message: str = ""
    changes: Mapping[str, Any] = field(default_factory=dict)
    valid_url_count: int = 0
    entered_url_count: int = 0
    panic_content: Optional[PanicContent] = None


def coerce_positive_int(raw: Optional[str], default: int) -> int:
    digits = _NON_DIGITS.sub("", raw or "")
    if not digits:
        return default
    return max(1, int(digits))


def encoded_size(value: Any) -> int:
    """Size of the JSON encoding the store would hold for `value`."""
    return len(json.dumps(value).encode("utf-8"))


def attach_panic_image(
    panic_content: PanicContent,
    data_url: Optional[str],
    size_bytes: int,
) -> SettingsValidationResult:
    """Stage an image on the panic content draft; nothing is written until save."""
    if not data_url or size_bytes <= 0:
        return SettingsValidationResult(False, REASON_EMPTY_UPLOAD, "No image selected.")
    if size_bytes > MAX_IMAGE_SOURCE_BYTES:
        return SettingsValidationResult(
            False,
            REASON_IMAGE_TOO_LARGE,
            "Image too large! Maximum size is 1MB.",
        )
    return SettingsValidationResult(
        True,
        REASON_ACCEPTED,
        panic_content=replace(panic_content, image_data_url=data_url),
    )


def attach_panic_audio(
    panic_content: PanicContent,
    data_url: Optional[str],
    size_bytes: int,
) -> SettingsValidationResult:
    if not data_url or size_bytes <= 0:
        return SettingsValidationResult(False, REASON_EMPTY_UPLOAD, "No audio file selected.")
    if size_bytes > MAX_AUDIO_SOURCE_BYTES:
        return SettingsValidationResult(
            False,
            REASON_AUDIO_TOO_LARGE,
            "Audio file too large! Maximum size is 5MB.",
        )
    return SettingsValidationResult(
        True,
        REASON_ACCEPTED,
        panic_content=replace(panic_content, audio_data_url=data_url),
    )


def build_settings_update(
    form: SettingsForm,
    panic_content: PanicContent,
) -> SettingsValidationResult:
    """Validate a settings form; existing panic media is carried over unchanged."""
    items = [line.strip() for line in (form.panic_items or "").split("\n") if line.strip()]
    width_digits = _NON_DIGITS.sub("", form.image_max_width or "")
    updated_panic = PanicContent(
        title=form.panic_title or FALLBACK_PANIC_TITLE,
        items=tuple(items) if items else (FALLBACK_PANIC_ITEM,),
        image_data_url=panic_content.image_data_url,
        audio_data_url=panic_content.audio_data_url,
        image_max_width=max(
            MIN_IMAGE_MAX_WIDTH,
            int(width_digits) if width_digits and int(width_digits) > 0 else DEFAULT_IMAGE_MAX_WIDTH,
        ),
    )
    panic_payload = updated_panic.to_store()
    if encoded_size(panic_payload) > MAX_PANIC_CONTENT_BYTES:
        return SettingsValidationResult(
            False,
            REASON_PANIC_CONTENT_TOO_LARGE,
            "Media files are too large! Please use smaller images and audio files.",
        )

    # One past the cap so an overflowing list is rejected rather than truncated.
    blocked_urls = sanitize_and_validate_urls(form.blocked_urls, limit=MAX_BLOCKED_URLS + 1)
    entered = count_entries(form.blocked_urls)
    if len(blocked_urls) > MAX_BLOCKED_URLS:
        return SettingsValidationResult(
            False,
            REASON_TOO_MANY_URLS,
            f"Too many blocked URLs! Maximum {MAX_BLOCKED_URLS} URLs allowed.",
        )

    changes = {
        "sessionMinutes": coerce_positive_int(form.session_minutes, DEFAULT_SESSION_MINUTES),
        "breakMinutes": coerce_positive_int(form.break_minutes, DEFAULT_BREAK_MINUTES),
        "pomodoroBlocks": coerce_positive_int(form.pomodoro_blocks, DEFAULT_POMODORO_BLOCKS),
        "panicContent": panic_payload,
        "blockedUrls": blocked_urls,
    }
    if encoded_size(changes) > MAX_SETTINGS_BYTES:
        return SettingsValidationResult(
            False,
            REASON_SETTINGS_TOO_LARGE,
            "Settings are too large! Please reduce the amount of data (images, audio, or URLs).",
        )

    message = ""
    if entered and len(blocked_urls) != entered:
        message = (
            f"{len(blocked_urls)}/{entered} URLs are valid. Invalid URLs will be ignored."
        )
    return SettingsValidationResult(
        True,
        REASON_SAVED,
        message,
        changes=changes,
        valid_url_count=len(blocked_urls),
        entered_url_count=entered,
    )
