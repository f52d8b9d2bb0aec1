"""Typed, failure-tolerant access to the shared store for one tab context."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional

from contracts.store_protocol import (
    KEY_PANIC_MODAL_OPEN,
    KEY_TIMER_STATE,
    KEY_USER_SETTINGS,
)
from pomodoro import TimerState, UserSettings

from .contracts import ChangeListener, SharedStore, Unsubscribe
from .errors import is_context_invalidated

DEFAULT_HYDRATION_TIMEOUT_SECONDS = 1.5
DEFAULT_SETTINGS_TIMEOUT_SECONDS = 0.3
DEFAULT_WRITE_TIMEOUT_SECONDS = 0.3


@dataclass(frozen=True)
class SyncSnapshot:
    """Timer state and panic flag read together; `None` means absent or unreadable."""
    timer_state: Optional[TimerState]
    panic_modal_open: Optional[bool]


class StoreClient:
    """Wraps a `SharedStore` so reads never raise and writes never block for long.

    Invalidated contexts turn every call into a silent no-op. Other failures
    and timeouts are logged and resolved to a default value.
    """

    def __init__(
        self,
        store: SharedStore,
        *,
        hydration_timeout_seconds: float = DEFAULT_HYDRATION_TIMEOUT_SECONDS,
        settings_timeout_seconds: float = DEFAULT_SETTINGS_TIMEOUT_SECONDS,
        write_timeout_seconds: float = DEFAULT_WRITE_TIMEOUT_SECONDS,
        logger: Optional[logging.Logger] = None,
    ):
        self._store = store
        self._hydration_timeout = hydration_timeout_seconds
        self._settings_timeout = settings_timeout_seconds
        self._write_timeout = write_timeout_seconds
        self._logger = logger or logging.getLogger("store")

    def is_context_valid(self) -> bool:
        try:
            return bool(self._store.is_context_valid())
        except Exception:
            return False

    async def read(
        self,
        keys: Iterable[str],
        *,
        timeout_seconds: float,
    ) -> Optional[dict[str, Any]]:
        key_list = list(keys)
        if not self.is_context_valid():
            return None
        try:
            result = await asyncio.wait_for(self._store.get(key_list), timeout_seconds)
        except asyncio.TimeoutError:
            self._logger.warning(
                "Store read timed out after %.2fs: keys=%s",
                timeout_seconds,
                key_list,
            )
            return None
        except Exception as error:
            self._log_failure("read", error)
            return None
        return dict(result) if isinstance(result, Mapping) else {}

    async def write(
        self,
        items: Mapping[str, Any],
        *,
        timeout_seconds: Optional[float] = None,
    ) -> bool:
        if not self.is_context_valid():
            self._logger.debug("Skipping store write: context invalidated")
            return False
        timeout = self._write_timeout if timeout_seconds is None else timeout_seconds
        try:
            await asyncio.wait_for(self._store.set(dict(items)), timeout)
        except asyncio.TimeoutError:
            self._logger.warning(
                "Store write timed out after %.2fs: keys=%s",
                timeout,
                sorted(items),
            )
            return False
        except Exception as error:
            self._log_failure("write", error)
            return False
        return True

    def subscribe(self, listener: ChangeListener) -> Optional[Unsubscribe]:
        if not self.is_context_valid():
            return None
        try:
            return self._store.subscribe(listener)
        except Exception as error:
            self._log_failure("subscribe", error)
            return None

    async def get_timer_state(self, default: Optional[TimerState] = None) -> TimerState:
        result = await self.read(
            [KEY_TIMER_STATE],
            timeout_seconds=self._hydration_timeout,
        )
        if not result or result.get(KEY_TIMER_STATE) is None:
            return default if default is not None else TimerState()
        return TimerState.from_store(result[KEY_TIMER_STATE])

    async def get_user_settings(
        self,
        default: Optional[UserSettings] = None,
    ) -> UserSettings:
        result = await self.read(
            [KEY_USER_SETTINGS],
            timeout_seconds=self._settings_timeout,
        )
        if not result or result.get(KEY_USER_SETTINGS) is None:
            return default if default is not None else UserSettings()
        return UserSettings.from_store(result[KEY_USER_SETTINGS])

    async def get_panic_modal_open(self) -> Optional[bool]:
        result = await self.read(
            [KEY_PANIC_MODAL_OPEN],
            timeout_seconds=self._settings_timeout,
        )
        if not result or KEY_PANIC_MODAL_OPEN not in result:
            return None
        return result[KEY_PANIC_MODAL_OPEN] is True

    async def read_sync_snapshot(self) -> SyncSnapshot:
        result = await self.read(
            [KEY_TIMER_STATE, KEY_PANIC_MODAL_OPEN],
            timeout_seconds=self._hydration_timeout,
        )
        if not result:
            return SyncSnapshot(timer_state=None, panic_modal_open=None)
        raw_state = result.get(KEY_TIMER_STATE)
        return SyncSnapshot(
            timer_state=TimerState.from_store(raw_state) if raw_state else None,
            panic_modal_open=(
                result[KEY_PANIC_MODAL_OPEN] is True
                if KEY_PANIC_MODAL_OPEN in result
                else None
            ),
        )

    async def set_timer_state(self, state: TimerState) -> bool:
        return await self.write({KEY_TIMER_STATE: state.to_store()})

    async def set_panic_modal_open(self, open_: bool) -> bool:
        return await self.write({KEY_PANIC_MODAL_OPEN: bool(open_)})

    async def update_user_settings(self, changes: Mapping[str, Any]) -> bool:
        """Read-merge-write a partial settings update keyed by stored field names."""
        result = await self.read(
            [KEY_USER_SETTINGS],
            timeout_seconds=self._settings_timeout,
        )
        if result is None:
            return False
        current = result.get(KEY_USER_SETTINGS)
        if not isinstance(current, Mapping):
            current = UserSettings().to_store()
        merged = {**current, **dict(changes)}
        return await self.write({KEY_USER_SETTINGS: merged})

    def _log_failure(self, operation: str, error: Exception) -> None:
        if is_context_invalidated(error):
            self._logger.debug("Store %s skipped: %s", operation, error)
            return
        self._logger.warning("Store %s failed: %s", operation, error)
