"""Settings-form validation and panic media capacity checks."""

from .validation import (
    MAX_AUDIO_SOURCE_BYTES,
    MAX_IMAGE_SOURCE_BYTES,
    MAX_PANIC_CONTENT_BYTES,
    MAX_SETTINGS_BYTES,
    SettingsForm,
    SettingsValidationResult,
    attach_panic_audio,
    attach_panic_image,
    build_settings_update,
    coerce_positive_int,
    encoded_size,
)

__all__ = [
    "MAX_AUDIO_SOURCE_BYTES",
    "MAX_IMAGE_SOURCE_BYTES",
    "MAX_PANIC_CONTENT_BYTES",
    "MAX_SETTINGS_BYTES",
    "SettingsForm",
    "SettingsValidationResult",
    "attach_panic_audio",
    "attach_panic_image",
    "build_settings_update",
    "coerce_positive_int",
    "encoded_size",
]
