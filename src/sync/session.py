"""Per-tab synchronization: mirror, store/broadcast handlers, ticks and user intents."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Coroutine, Mapping, Optional

from blocking import BlockingDecision, evaluate_blocking
from contracts.store_protocol import (
    CHANGE_NEW_VALUE,
    CHANGE_OLD_VALUE,
    KEY_PANIC_MODAL_OPEN,
    KEY_TIMER_STATE,
    KEY_USER_SETTINGS,
    MESSAGE_SYNC_PANIC_MODAL,
)
from pomodoro import (
    PanelPosition,
    PanicContent,
    PomodoroStateMachine,
    TimerState,
    TimerView,
    TransitionResult,
    UserSettings,
    build_timer_view,
    merge_timer_state,
)
from settings import (
    SettingsForm,
    SettingsValidationResult,
    attach_panic_audio,
    attach_panic_image,
    build_settings_update,
)
from store import (
    BroadcastChannel,
    ContextInvalidatedError,
    StoreChanges,
    StoreClient,
    StoreUnavailableError,
    Unsubscribe,
    is_context_invalidated,
)

from .config import SyncConfig
from .renderer import PanelRendererLike
from .ticker import RepeatingTicker


def wall_clock_ms() -> int:
    return int(time.time() * 1000)


def _panic_write(result: TransitionResult, panic_open: bool) -> dict[str, Any]:
    # The mirror can lag the store; only a real transition overwrites the timer slot.
    items: dict[str, Any] = {KEY_PANIC_MODAL_OPEN: panic_open}
    if result.state_changed:
        items[KEY_TIMER_STATE] = result.state.to_store()
    return items


@dataclass
class TabMirror:
    """Last values this tab has seen; the store stays the source of truth."""
    timer_state: TimerState = field(default_factory=TimerState)
    settings: UserSettings = field(default_factory=UserSettings)
    panic_modal_open: bool = False
    blocked: Optional[bool] = None
    last_view: Optional[TimerView] = None
    last_decision: Optional[BlockingDecision] = None


@dataclass(frozen=True)
class TabDependencies:
    """Collaborators a tab session talks to."""
    store: StoreClient
    broadcast: BroadcastChannel
    renderer: PanelRendererLike
    state_machine: PomodoroStateMachine = field(default_factory=PomodoroStateMachine)
    clock: Callable[[], int] = wall_clock_ms
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger("sync.tab"))


class TabSession:
    """Keeps one tab's overlay converged with the shared timer, panic flag and blocklist.

    Three inputs feed the same reconciliation: store change notifications,
    the panic broadcast and a periodic re-read of the store. None of them
    raise; failures are logged and the next tick tries again.
    """

    def __init__(
        self,
        dependencies: TabDependencies,
        *,
        page_url: str,
        config: Optional[SyncConfig] = None,
    ):
        self._store = dependencies.store
        self._broadcast = dependencies.broadcast
        self._renderer = dependencies.renderer
        self._machine = dependencies.state_machine
        self._clock = dependencies.clock
        self._logger = dependencies.logger
        self._config = config or SyncConfig()
        self._page_url = page_url
        self._visible = True
        self._initialized = False
        self._closed = False
        self._media_draft: Optional[PanicContent] = None
        self._tasks: set[asyncio.Task[Any]] = set()
        self._unsubscribe_store: Optional[Unsubscribe] = None
        self.mirror = TabMirror()

        self._reconcile_ticker = RepeatingTicker(
            "reconcile",
            self._config.reconcile_interval_seconds,
            self.reconcile,
            self._logger,
        )
        self._self_heal_ticker = RepeatingTicker(
            "self-heal",
            self._config.self_heal_interval_seconds,
            self.ensure_panel,
            self._logger,
        )
        # Registered before any async setup so an early panic broadcast is not missed.
        self._unsubscribe_broadcast = self._broadcast.add_listener(self.handle_broadcast)

    @property
    def page_url(self) -> str:
        return self._page_url

    @property
    def is_visible(self) -> bool:
        return self._visible

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def is_reconciling(self) -> bool:
        return self._reconcile_ticker.is_running

    @property
    def is_self_healing(self) -> bool:
        return self._self_heal_ticker.is_running

    @property
    def media_draft(self) -> PanicContent:
        return self._media_draft or self.mirror.settings.panic_content

    # Lifecycle

    async def start_up(self) -> bool:
        """Initialize the tab, retrying exactly once after a delay."""
        try:
            await self._initialize()
            return True
        except Exception as error:
            if is_context_invalidated(error):
                self._logger.debug("Tab initialization skipped: %s", error)
                return False
            self._logger.warning(
                "Tab initialization failed, retrying in %.1fs: %s",
                self._config.init_retry_delay_seconds,
                error,
            )

        await asyncio.sleep(self._config.init_retry_delay_seconds)
        try:
            await self._initialize()
            return True
        except Exception as error:
            if is_context_invalidated(error):
                self._logger.debug("Tab initialization retry skipped: %s", error)
            else:
                self._logger.error("Tab initialization retry failed: %s", error)
            return False

    async def _initialize(self) -> None:
        if not self._store.is_context_valid():
            raise ContextInvalidatedError()

        self.mirror.timer_state = await self._store.get_timer_state()
        self.mirror.settings = await self._store.get_user_settings()

        if self._unsubscribe_store is None:
            self._unsubscribe_store = self._store.subscribe(self.handle_storage_change)
            if self._unsubscribe_store is None:
                raise StoreUnavailableError("Failed to subscribe to store changes")

        if not self.mirror.settings.panel_enabled:
            self._initialized = True
            self._logger.info("Panel disabled; tab stays idle until re-activated")
            return

        self._show_panel(self.mirror.settings)
        await self.check_blocking()

        panic_open = await self._store.get_panic_modal_open()
        if panic_open:
            self._set_panic_open(True)
            await self.check_blocking()

        self._self_heal_ticker.start()
        self._initialized = True
        self._logger.info("Tab initialized: url=%s", self._page_url)

    async def shutdown(self) -> None:
        """Release tickers, subscriptions and pending tasks."""
        self._closed = True
        self._reconcile_ticker.stop()
        self._self_heal_ticker.stop()
        if self._unsubscribe_store is not None:
            self._unsubscribe_store()
            self._unsubscribe_store = None
        self._unsubscribe_broadcast()
        pending = tuple(self._tasks)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._tasks.clear()

    # Push channels

    def handle_storage_change(self, changes: StoreChanges) -> None:
        if self._closed or not self._store.is_context_valid():
            return

        settings_change = changes.get(KEY_USER_SETTINGS)
        if isinstance(settings_change, Mapping):
            new_raw = settings_change.get(CHANGE_NEW_VALUE)
            old_raw = settings_change.get(CHANGE_OLD_VALUE)
            if isinstance(new_raw, Mapping):
                self._apply_settings_change(
                    UserSettings.from_store(old_raw) if isinstance(old_raw, Mapping) else None,
                    UserSettings.from_store(new_raw),
                )

        panic_change = changes.get(KEY_PANIC_MODAL_OPEN)
        timer_change = changes.get(KEY_TIMER_STATE)
        if isinstance(timer_change, Mapping):
            new_raw = timer_change.get(CHANGE_NEW_VALUE)
            if isinstance(new_raw, Mapping):
                self.mirror.timer_state = TimerState.from_store(new_raw)
                panic_open = (
                    panic_change.get(CHANGE_NEW_VALUE) is True
                    if isinstance(panic_change, Mapping)
                    else self.mirror.panic_modal_open
                )
                self._apply_blocking(self.mirror.timer_state, panic_open)

        if isinstance(panic_change, Mapping):
            self._set_panic_open(panic_change.get(CHANGE_NEW_VALUE) is True)
            self._apply_blocking(self.mirror.timer_state, self.mirror.panic_modal_open)

    def handle_broadcast(self, message: Mapping[str, Any]) -> None:
        if not isinstance(message, Mapping):
            return
        if message.get("type") != MESSAGE_SYNC_PANIC_MODAL:
            return
        if self._closed or not self._store.is_context_valid():
            return
        self._set_panic_open(message.get("open") is True)
        self._spawn(self.check_blocking())

    def _apply_settings_change(
        self,
        old: Optional[UserSettings],
        new: UserSettings,
    ) -> None:
        self.mirror.settings = new
        if not new.panel_enabled:
            self._teardown()
            return

        if not self._renderer.panel_exists():
            self._show_panel(new)
            self._spawn(self.check_blocking())
            return

        if old is None or old.panel_position != new.panel_position:
            self._renderer.move_panel(new.panel_position)
        if old is None or old.panel_minimized != new.panel_minimized:
            self._renderer.set_minimized(new.panel_minimized)
        if old is None or old.panic_content != new.panic_content:
            self._renderer.update_panic_content(new.panic_content)
        if old is None or old.blocked_urls != new.blocked_urls:
            self._spawn(self.check_blocking())

    # Pull channels

    async def reconcile(self) -> None:
        """One reconciliation pass: merge, expire, render, then re-derive blocking."""
        if self._closed or not self._store.is_context_valid():
            return

        stored = await self._store.get_timer_state(default=self.mirror.timer_state)
        state = merge_timer_state(
            self.mirror.timer_state,
            stored,
            self.mirror.panic_modal_open,
        )
        self.mirror.timer_state = state

        now = self._clock()
        if state.is_running and state.remaining_ms(now) <= 0:
            settings = await self._store.get_user_settings(default=self.mirror.settings)
            self.mirror.settings = settings
            result = self._machine.segment_expire(state, settings, now)
            if result.accepted:
                self.mirror.timer_state = result.state
                await self._store.set_timer_state(result.state)

        self._render()
        await self.check_blocking()

    async def check_blocking(self) -> Optional[BlockingDecision]:
        """Re-derive blocking from a fresh read, falling back to the mirror."""
        if self._closed or not self._store.is_context_valid():
            return None
        if not self.mirror.settings.panel_enabled:
            return self._apply_blocking(self.mirror.timer_state, self.mirror.panic_modal_open)

        snapshot = await self._store.read_sync_snapshot()
        if not self._store.is_context_valid():
            return None
        panic_open = (
            snapshot.panic_modal_open
            if snapshot.panic_modal_open is not None
            else self.mirror.panic_modal_open
        )
        if snapshot.timer_state is not None:
            self.mirror.timer_state = merge_timer_state(
                self.mirror.timer_state,
                snapshot.timer_state,
                panic_open,
            )
        if (
            snapshot.panic_modal_open is not None
            and snapshot.panic_modal_open != self.mirror.panic_modal_open
        ):
            self._set_panic_open(snapshot.panic_modal_open)
        return self._apply_blocking(self.mirror.timer_state, self.mirror.panic_modal_open)

    async def ensure_panel(self) -> None:
        """Self-heal: drop the panel when disabled, re-inject it when it went missing."""
        if self._closed or not self._store.is_context_valid():
            return
        settings = await self._store.get_user_settings(default=self.mirror.settings)
        self.mirror.settings = settings
        if not settings.panel_enabled:
            if self._renderer.panel_exists():
                self._teardown()
            return
        if not self._renderer.panel_exists():
            self._logger.info("Panel missing; re-injecting")
            self._show_panel(settings)

    async def on_visibility_change(self, visible: bool) -> None:
        self._visible = visible
        if visible:
            await self.check_blocking()

    async def navigate(self, url: str) -> None:
        if url == self._page_url:
            return
        self._page_url = url
        self._logger.info("Navigated: url=%s", url)
        await asyncio.sleep(self._config.navigation_settle_seconds)
        await self.check_blocking()

    async def reactivate(self) -> None:
        """Bring a disabled or half-initialized tab back to a running panel."""
        if self._closed or not self._store.is_context_valid():
            return
        settings = await self._store.get_user_settings(default=self.mirror.settings)
        if not settings.panel_enabled:
            await self._store.update_user_settings({"panelEnabled": True})
            settings = replace(settings, panel_enabled=True)
        self.mirror.settings = settings

        if self._unsubscribe_store is None:
            self._unsubscribe_store = self._store.subscribe(self.handle_storage_change)
        if not self._renderer.panel_exists():
            self._show_panel(settings)
        self._self_heal_ticker.ensure_started()

        snapshot = await self._store.read_sync_snapshot()
        if snapshot.timer_state is not None:
            self.mirror.timer_state = snapshot.timer_state
        self._set_panic_open(snapshot.panic_modal_open is True)
        await self.check_blocking()
        self._initialized = True

    # Intents

    async def start(self) -> TransitionResult:
        result = self._machine.start(
            self.mirror.timer_state,
            self.mirror.settings,
            self._clock(),
        )
        if not result.accepted:
            return result
        self.mirror.timer_state = result.state
        await self._store.set_timer_state(result.state)
        self._reconcile_ticker.ensure_started()
        self._render()
        self._apply_blocking(self.mirror.timer_state, self.mirror.panic_modal_open)
        return result

    async def reset(self) -> TransitionResult:
        result = self._machine.reset(self.mirror.timer_state, self.mirror.settings)
        self.mirror.timer_state = result.state
        await self._store.set_timer_state(result.state)
        self._render()
        await self.check_blocking()
        return result

    async def open_panic(self) -> TransitionResult:
        result = self._machine.panic_open(
            self.mirror.timer_state,
            self.mirror.settings,
            self._clock(),
        )
        self.mirror.timer_state = result.state
        self._set_panic_open(True)
        await self._store.write(_panic_write(result, True))
        await self._send_panic_broadcast(True)
        self._render()
        self._apply_blocking(self.mirror.timer_state, True)
        return result

    async def close_panic(self) -> TransitionResult:
        result = self._machine.panic_close(
            self.mirror.timer_state,
            self.mirror.settings,
            self._clock(),
            panic_open=self.mirror.panic_modal_open,
        )
        self.mirror.timer_state = result.state
        self._set_panic_open(False)
        await self._store.write(_panic_write(result, False))
        await self._send_panic_broadcast(False)
        if result.state.is_running:
            self._reconcile_ticker.ensure_started()
        self._render()
        self._apply_blocking(self.mirror.timer_state, False)
        return result

    async def quit(self) -> TransitionResult:
        result = self._machine.quit(self.mirror.timer_state, self.mirror.settings)
        settings = replace(self.mirror.settings, panel_enabled=False)
        self.mirror.timer_state = result.state
        self.mirror.settings = settings
        self.mirror.panic_modal_open = False
        # All three keys in one write so every tab unblocks together.
        await self._store.write(
            {
                KEY_USER_SETTINGS: settings.to_store(),
                KEY_TIMER_STATE: result.state.to_store(),
                KEY_PANIC_MODAL_OPEN: False,
            }
        )
        await self._send_panic_broadcast(False)
        self._teardown()
        return result

    async def save_settings(self, form: SettingsForm) -> SettingsValidationResult:
        result = build_settings_update(form, self.media_draft)
        if not result.accepted:
            self._renderer.notify(result.message)
            self._logger.warning("Settings rejected: reason=%s", result.reason)
            return result

        saved = await self._store.update_user_settings(result.changes)
        if not saved:
            self._logger.warning("Settings were not saved; store unavailable")
        if result.message:
            self._renderer.notify(result.message)
        self._media_draft = None
        self._logger.info(
            "Settings saved: session=%s break=%s blocks=%s urls=%s",
            result.changes["sessionMinutes"],
            result.changes["breakMinutes"],
            result.changes["pomodoroBlocks"],
            result.valid_url_count,
        )
        return result

    def attach_panic_image(self, data_url: Optional[str], size_bytes: int) -> SettingsValidationResult:
        return self._stage_media(attach_panic_image(self.media_draft, data_url, size_bytes))

    def attach_panic_audio(self, data_url: Optional[str], size_bytes: int) -> SettingsValidationResult:
        return self._stage_media(attach_panic_audio(self.media_draft, data_url, size_bytes))

    def clear_panic_image(self) -> None:
        self._media_draft = replace(self.media_draft, image_data_url=None)

    def clear_panic_audio(self) -> None:
        self._media_draft = replace(self.media_draft, audio_data_url=None)

    async def set_minimized(self, minimized: bool) -> bool:
        self._renderer.set_minimized(minimized)
        self.mirror.settings = replace(self.mirror.settings, panel_minimized=minimized)
        return await self._store.update_user_settings({"panelMinimized": minimized})

    async def move_panel(self, x: int, y: int) -> bool:
        position = PanelPosition(x=int(x), y=int(y))
        self._renderer.move_panel(position)
        self.mirror.settings = replace(self.mirror.settings, panel_position=position)
        return await self._store.update_user_settings({"panelPosition": position.to_store()})

    async def close_panel(self) -> bool:
        """Disable the panel everywhere without touching the timer."""
        self.mirror.settings = replace(self.mirror.settings, panel_enabled=False)
        self._teardown()
        return await self._store.update_user_settings({"panelEnabled": False})

    # Internals

    def _show_panel(self, settings: UserSettings) -> None:
        if not self._renderer.panel_exists():
            self._renderer.inject_panel(settings)
            if settings.panel_minimized:
                self._renderer.set_minimized(True)
        self._reconcile_ticker.ensure_started()
        self._render()

    def _teardown(self) -> None:
        had_panel = self._renderer.panel_exists()
        self._reconcile_ticker.stop()
        self._renderer.hide_panic_modal()
        self._apply_blocking(self.mirror.timer_state, self.mirror.panic_modal_open)
        self._renderer.remove_panel()
        if had_panel:
            self._logger.info("Panel torn down")

    def _set_panic_open(self, open_: bool) -> None:
        self.mirror.panic_modal_open = open_
        if open_:
            if not self._renderer.panel_exists():
                self._show_panel(self.mirror.settings)
            self._renderer.show_panic_modal(self.mirror.settings.panic_content)
        else:
            self._renderer.hide_panic_modal()

    def _apply_blocking(self, state: TimerState, panic_open: bool) -> BlockingDecision:
        decision = evaluate_blocking(self._page_url, self.mirror.settings, state, panic_open)
        self.mirror.last_decision = decision
        if decision.keep_blocked != self.mirror.blocked:
            self.mirror.blocked = decision.keep_blocked
            self._renderer.apply_blocking(decision.keep_blocked)
            self._logger.info(
                "Blocking %s: url=%s break=%s panic_paused=%s quit=%s",
                "on" if decision.keep_blocked else "off",
                self._page_url,
                decision.is_break,
                decision.time_stopped_by_panic,
                decision.is_quit,
            )
        return decision

    def _render(self) -> None:
        if not self._renderer.panel_exists():
            return
        view = build_timer_view(
            self.mirror.timer_state,
            self.mirror.settings,
            self.mirror.panic_modal_open,
            self._clock(),
        )
        self.mirror.last_view = view
        self._renderer.render_timer(view)

    def _stage_media(self, result: SettingsValidationResult) -> SettingsValidationResult:
        if not result.accepted:
            self._renderer.notify(result.message)
            return result
        self._media_draft = result.panic_content
        return result

    async def _send_panic_broadcast(self, open_: bool) -> None:
        try:
            await self._broadcast.send({"type": MESSAGE_SYNC_PANIC_MODAL, "open": open_})
        except Exception as error:
            if is_context_invalidated(error):
                self._logger.debug("Panic broadcast skipped: %s", error)
                return
            self._logger.warning("Panic broadcast failed: %s", error)

    def _spawn(self, coroutine: Coroutine[Any, Any, Any]) -> None:
        try:
            task = asyncio.get_running_loop().create_task(coroutine)
        except RuntimeError:
            # No running loop; drop the follow-up.
            coroutine.close()
            return
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is None:
            return
        if is_context_invalidated(error):
            self._logger.debug("Tab task skipped: %s", error)
            return
        self._logger.warning("Tab task failed: %s", error)
