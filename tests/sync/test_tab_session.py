import asyncio
import unittest
from dataclasses import dataclass

from pomodoro import PanelPosition, PomodoroStateMachine, TimerState, UserSettings
from settings import SettingsForm
from store import (
    BroadcastEndpoint,
    BroadcastHub,
    InMemorySharedStore,
    StoreClient,
    StoreConnection,
)
from sync import HeadlessPanelRenderer, SyncConfig, TabDependencies, TabSession

MINUTE = 60_000
BLOCKED_PAGE = "https://www.example.com/feed"
OTHER_PAGE = "https://other.org/"


async def _settle() -> None:
    for _ in range(20):
        await asyncio.sleep(0)


class _Clock:
    def __init__(self, now: int = 0):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class _FlakySubscribeStore:
    def __init__(self, inner: StoreConnection, failures: int):
        self._inner = inner
        self.failures = failures

    async def get(self, keys):
        return await self._inner.get(keys)

    async def set(self, items):
        await self._inner.set(items)

    def subscribe(self, listener):
        if self.failures > 0:
            self.failures -= 1
            raise RuntimeError("message port closed")
        return self._inner.subscribe(listener)

    def is_context_valid(self) -> bool:
        return True


@dataclass
class _Tab:
    session: TabSession
    renderer: HeadlessPanelRenderer
    connection: StoreConnection
    endpoint: BroadcastEndpoint


def _config() -> SyncConfig:
    return SyncConfig(
        reconcile_interval_seconds=60.0,
        self_heal_interval_seconds=60.0,
        init_retry_delay_seconds=0.01,
        navigation_settle_seconds=0.0,
    )


class TabSessionTestCase(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.clock = _Clock(0)
        self.store = InMemorySharedStore(
            {"userSettings": UserSettings(blocked_urls=("example.com",)).to_store()}
        )
        self.hub = BroadcastHub()
        self.tabs: list[_Tab] = []

    async def asyncTearDown(self) -> None:
        for tab in self.tabs:
            await tab.session.shutdown()

    def _new_tab(self, page_url: str = BLOCKED_PAGE, *, store=None) -> _Tab:
        connection = self.store.connect()
        endpoint = self.hub.endpoint()
        renderer = HeadlessPanelRenderer()
        session = TabSession(
            TabDependencies(
                store=StoreClient(store or connection),
                broadcast=endpoint,
                renderer=renderer,
                state_machine=PomodoroStateMachine(),
                clock=self.clock,
            ),
            page_url=page_url,
            config=_config(),
        )
        tab = _Tab(session, renderer, connection, endpoint)
        self.tabs.append(tab)
        return tab

    async def _open_tab(self, page_url: str = BLOCKED_PAGE) -> _Tab:
        tab = self._new_tab(page_url)
        self.assertTrue(await tab.session.start_up())
        return tab

    async def _stored(self, key: str):
        return (await self.store.get([key])).get(key)


class TabInitializationTests(TabSessionTestCase):
    async def test_enabled_panel_is_injected_and_unblocked_when_idle(self) -> None:
        tab = await self._open_tab()

        self.assertTrue(tab.session.is_initialized)
        self.assertTrue(tab.renderer.panel_present)
        self.assertTrue(tab.session.is_self_healing)
        self.assertTrue(tab.session.is_reconciling)
        self.assertEqual([False], tab.renderer.calls("apply_blocking"))
        self.assertEqual("READY", tab.renderer.last_view.status)

    async def test_disabled_panel_stays_idle(self) -> None:
        await self.store.set({"userSettings": UserSettings(panel_enabled=False).to_store()})
        tab = await self._open_tab()

        self.assertTrue(tab.session.is_initialized)
        self.assertFalse(tab.renderer.panel_present)
        self.assertFalse(tab.session.is_self_healing)

    async def test_existing_panic_freeze_is_restored(self) -> None:
        await self.store.set(
            {
                "timerState": TimerState(duration=10 * MINUTE, progress_start_percent=60.0).to_store(),
                "panicModalOpen": True,
            }
        )
        tab = await self._open_tab()

        self.assertTrue(tab.renderer.modal_open)
        self.assertTrue(tab.renderer.blocked)
        self.assertTrue(tab.session.mirror.panic_modal_open)

    async def test_init_retries_once_after_failure(self) -> None:
        flaky = _FlakySubscribeStore(self.store.connect(), failures=1)
        tab = self._new_tab(store=flaky)

        with self.assertLogs("sync.tab", level="WARNING") as logs:
            self.assertTrue(await tab.session.start_up())

        self.assertIn("retrying", logs.output[0])
        self.assertTrue(tab.renderer.panel_present)

    async def test_init_gives_up_after_second_failure(self) -> None:
        flaky = _FlakySubscribeStore(self.store.connect(), failures=2)
        tab = self._new_tab(store=flaky)

        with self.assertLogs("sync.tab", level="ERROR"):
            self.assertFalse(await tab.session.start_up())

        self.assertFalse(tab.session.is_initialized)
        self.assertFalse(tab.renderer.panel_present)

    async def test_invalidated_context_skips_init_without_retry(self) -> None:
        tab = self._new_tab()
        tab.connection.invalidate()

        with self.assertNoLogs("sync.tab", level="WARNING"):
            self.assertFalse(await tab.session.start_up())
        self.assertFalse(tab.renderer.panel_present)


class TimerSyncTests(TabSessionTestCase):
    async def test_start_in_one_tab_blocks_matching_tabs(self) -> None:
        first = await self._open_tab(OTHER_PAGE)
        second = await self._open_tab(BLOCKED_PAGE)

        result = await first.session.start()
        await _settle()

        self.assertEqual("started", result.reason)
        self.assertTrue((await self._stored("timerState"))["isRunning"])
        self.assertTrue(second.session.mirror.timer_state.is_running)
        self.assertTrue(second.renderer.blocked)
        self.assertFalse(first.renderer.blocked)

    async def test_reconcile_expires_work_into_break_and_unblocks(self) -> None:
        tab = await self._open_tab()
        await tab.session.start()
        self.assertTrue(tab.renderer.blocked)

        self.clock.advance(25 * MINUTE)
        await tab.session.reconcile()

        stored = await self._stored("timerState")
        self.assertTrue(stored["isBreak"])
        self.assertEqual(5 * MINUTE, stored["duration"])
        self.assertFalse(tab.renderer.blocked)
        self.assertEqual("BREAK", tab.renderer.last_view.status)

    async def test_reset_unblocks_every_tab(self) -> None:
        first = await self._open_tab()
        second = await self._open_tab()
        await first.session.start()
        await _settle()
        self.assertTrue(second.renderer.blocked)

        await second.session.reset()
        await _settle()

        self.assertFalse(first.renderer.blocked)
        self.assertFalse(second.renderer.blocked)
        self.assertTrue(first.session.mirror.timer_state.is_ready)

    async def test_navigation_re_evaluates_blocking(self) -> None:
        tab = await self._open_tab(BLOCKED_PAGE)
        await tab.session.start()
        self.assertTrue(tab.renderer.blocked)

        await tab.session.navigate(OTHER_PAGE)
        self.assertFalse(tab.renderer.blocked)
        self.assertEqual(OTHER_PAGE, tab.session.page_url)

        await tab.session.navigate(BLOCKED_PAGE)
        self.assertTrue(tab.renderer.blocked)


class PanicSyncTests(TabSessionTestCase):
    async def test_panic_freezes_time_everywhere_and_keeps_blocking(self) -> None:
        first = await self._open_tab()
        second = await self._open_tab()
        await first.session.start()
        self.clock.advance(5 * MINUTE)

        result = await first.session.open_panic()
        await _settle()

        self.assertEqual("panic_frozen", result.reason)
        self.assertTrue(await self._stored("panicModalOpen"))
        self.assertTrue(second.renderer.modal_open)
        self.assertFalse(second.session.mirror.timer_state.is_running)
        self.assertTrue(second.renderer.blocked)

        self.clock.advance(10 * MINUTE)
        await second.session.reconcile()
        self.assertEqual("20:00", second.renderer.last_view.time_label)
        self.assertEqual("WORKING", second.renderer.last_view.status)

        await first.session.close_panic()
        await _settle()

        self.assertFalse(await self._stored("panicModalOpen"))
        self.assertFalse(second.renderer.modal_open)
        state = second.session.mirror.timer_state
        self.assertTrue(state.is_running)
        self.assertEqual(20 * MINUTE, state.remaining_ms(self.clock()))
        self.assertTrue(second.renderer.blocked)

    async def test_panic_during_break_only_opens_modal(self) -> None:
        tab = await self._open_tab()
        await tab.session.start()
        self.clock.advance(25 * MINUTE)
        await tab.session.reconcile()

        result = await tab.session.open_panic()

        self.assertEqual("panic_not_working", result.reason)
        self.assertTrue(tab.renderer.modal_open)
        self.assertTrue(tab.session.mirror.timer_state.is_break)
        self.assertFalse(tab.renderer.blocked)

    async def test_stale_idle_read_does_not_unfreeze_panic(self) -> None:
        tab = await self._open_tab()
        await tab.session.start()
        self.clock.advance(5 * MINUTE)
        await tab.session.open_panic()
        await _settle()

        self.store.apply({"timerState": TimerState().to_store()})
        await tab.session.reconcile()

        self.assertEqual(20 * MINUTE, tab.session.mirror.timer_state.duration)
        self.assertTrue(tab.renderer.blocked)

    async def test_lagging_tab_opening_panic_keeps_running_session(self) -> None:
        tab = await self._open_tab(OTHER_PAGE)
        running = TimerState(is_running=True, start_time=0, duration=25 * MINUTE)
        self.store.apply({"timerState": running.to_store()})
        self.clock.advance(5 * MINUTE)

        result = await tab.session.open_panic()
        await _settle()

        self.assertEqual("panic_not_working", result.reason)
        self.assertEqual(running.to_store(), await self._stored("timerState"))
        self.assertTrue(await self._stored("panicModalOpen"))

    async def test_lagging_tab_closing_panic_keeps_frozen_remaining(self) -> None:
        tab = await self._open_tab(OTHER_PAGE)
        await tab.session.start()
        await _settle()
        frozen = TimerState(duration=20 * MINUTE, progress_start_percent=20.0)
        self.store.apply({"timerState": frozen.to_store(), "panicModalOpen": True})
        self.clock.advance(15 * MINUTE)

        await tab.session.close_panic()
        await _settle()

        stored = TimerState.from_store(await self._stored("timerState"))
        self.assertFalse(stored.is_running)
        self.assertEqual(20 * MINUTE, stored.duration)
        self.assertFalse(await self._stored("panicModalOpen"))

    async def test_broadcast_before_initialization_opens_modal(self) -> None:
        tab = self._new_tab()
        sender = self.hub.endpoint()

        await sender.send({"type": "SYNC_PANIC_MODAL", "open": True})
        await _settle()

        self.assertTrue(tab.renderer.modal_open)
        self.assertTrue(tab.session.mirror.panic_modal_open)

    async def test_unrelated_broadcasts_are_ignored(self) -> None:
        tab = await self._open_tab()
        tab.session.handle_broadcast({"type": "SOMETHING_ELSE", "open": True})
        tab.session.handle_broadcast("not a message")

        self.assertFalse(tab.renderer.modal_open)

    async def test_visibility_regain_converges_modal_to_store(self) -> None:
        tab = await self._open_tab()
        await tab.session.open_panic()
        self.assertTrue(tab.renderer.modal_open)

        self.store.apply({"panicModalOpen": False})
        await tab.session.on_visibility_change(False)
        self.assertTrue(tab.renderer.modal_open)
        self.assertFalse(tab.session.is_visible)

        await tab.session.on_visibility_change(True)
        self.assertFalse(tab.renderer.modal_open)


class PanelLifecycleTests(TabSessionTestCase):
    async def test_quit_tears_down_every_tab(self) -> None:
        first = await self._open_tab()
        second = await self._open_tab()
        await first.session.start()
        await first.session.open_panic()
        await _settle()

        result = await first.session.quit()
        await _settle()

        self.assertFalse(result.panel_enabled)
        for tab in (first, second):
            self.assertFalse(tab.renderer.panel_present)
            self.assertFalse(tab.renderer.modal_open)
            self.assertFalse(tab.renderer.blocked)
            self.assertFalse(tab.session.is_reconciling)
        self.assertFalse((await self._stored("userSettings"))["panelEnabled"])
        self.assertFalse(await self._stored("panicModalOpen"))
        self.assertFalse((await self._stored("timerState"))["isRunning"])

    async def test_close_panel_keeps_timer_and_reactivate_restores_panels(self) -> None:
        first = await self._open_tab()
        second = await self._open_tab()
        await first.session.start()
        await _settle()

        await first.session.close_panel()
        await _settle()

        self.assertFalse(first.renderer.panel_present)
        self.assertFalse(second.renderer.panel_present)
        self.assertFalse(second.renderer.blocked)
        self.assertTrue((await self._stored("timerState"))["isRunning"])

        await second.session.reactivate()
        await _settle()

        self.assertTrue((await self._stored("userSettings"))["panelEnabled"])
        self.assertTrue(first.renderer.panel_present)
        self.assertTrue(second.renderer.panel_present)
        self.assertTrue(second.renderer.blocked)

    async def test_self_heal_reinjects_missing_panel(self) -> None:
        tab = await self._open_tab()
        tab.renderer.remove_panel()

        await tab.session.ensure_panel()

        self.assertTrue(tab.renderer.panel_present)
        self.assertEqual(2, len(tab.renderer.calls("inject_panel")))

    async def test_self_heal_removes_panel_when_disabled(self) -> None:
        tab = await self._open_tab()
        self.store.apply({"userSettings": UserSettings(panel_enabled=False).to_store()})

        await tab.session.ensure_panel()

        self.assertFalse(tab.renderer.panel_present)

    async def test_position_and_minimized_sync_across_tabs(self) -> None:
        first = await self._open_tab()
        second = await self._open_tab()

        self.assertTrue(await first.session.move_panel(100, 200))
        self.assertTrue(await first.session.set_minimized(True))
        await _settle()

        self.assertEqual(PanelPosition(100, 200), second.renderer.position)
        self.assertTrue(second.renderer.minimized)
        stored = await self._stored("userSettings")
        self.assertEqual({"x": 100, "y": 200}, stored["panelPosition"])
        self.assertTrue(stored["panelMinimized"])


class SettingsIntentTests(TabSessionTestCase):
    async def test_saved_blocklist_applies_to_other_tabs(self) -> None:
        first = await self._open_tab()
        second = await self._open_tab(OTHER_PAGE)
        await first.session.start()
        await _settle()
        self.assertFalse(second.renderer.blocked)

        result = await first.session.save_settings(
            SettingsForm(blocked_urls="example.com\nother.org")
        )
        await _settle()

        self.assertTrue(result.accepted)
        self.assertEqual(("example.com", "other.org"), second.session.mirror.settings.blocked_urls)
        self.assertTrue(second.renderer.blocked)

    async def test_rejected_settings_are_not_written(self) -> None:
        tab = await self._open_tab()
        text = "\n".join(f"site{index}.com" for index in range(60))

        with self.assertLogs("sync.tab", level="WARNING"):
            result = await tab.session.save_settings(SettingsForm(blocked_urls=text))

        self.assertFalse(result.accepted)
        self.assertEqual(["Too many blocked URLs! Maximum 50 URLs allowed."], tab.renderer.notifications)
        self.assertEqual(["example.com"], (await self._stored("userSettings"))["blockedUrls"])

    async def test_partially_invalid_urls_notify_user(self) -> None:
        tab = await self._open_tab()

        await tab.session.save_settings(SettingsForm(blocked_urls="example.com\nlocalhost"))

        self.assertEqual(
            ["1/2 URLs are valid. Invalid URLs will be ignored."],
            tab.renderer.notifications,
        )

    async def test_staged_media_is_saved_with_settings(self) -> None:
        tab = await self._open_tab()

        staged = tab.session.attach_panic_image("data:image/png;base64,AAAA", 128)
        self.assertTrue(staged.accepted)
        await tab.session.save_settings(SettingsForm(panic_title="Breathe"))
        await _settle()

        panic = (await self._stored("userSettings"))["panicContent"]
        self.assertEqual("data:image/png;base64,AAAA", panic["imageDataUrl"])
        self.assertEqual("Breathe", panic["title"])
        self.assertEqual("Breathe", tab.renderer.panic_content.title)

    async def test_cleared_media_is_removed_on_save(self) -> None:
        tab = await self._open_tab()
        tab.session.attach_panic_image("data:image/png;base64,AAAA", 128)
        tab.session.attach_panic_audio("data:audio/mpeg;base64,BBBB", 128)
        await tab.session.save_settings(SettingsForm())
        await _settle()

        tab.session.clear_panic_image()
        await tab.session.save_settings(SettingsForm())
        await _settle()

        panic = (await self._stored("userSettings"))["panicContent"]
        self.assertNotIn("imageDataUrl", panic)
        self.assertEqual("data:audio/mpeg;base64,BBBB", panic["audioDataUrl"])

        tab.session.clear_panic_audio()
        self.assertIsNone(tab.session.media_draft.audio_data_url)

    async def test_oversized_media_is_rejected_before_staging(self) -> None:
        tab = await self._open_tab()

        result = tab.session.attach_panic_audio("data:audio/mpeg;base64,AAAA", 6 * 1024 * 1024)

        self.assertFalse(result.accepted)
        self.assertIsNone(tab.session.media_draft.audio_data_url)
        self.assertEqual(["Audio file too large! Maximum size is 5MB."], tab.renderer.notifications)


if __name__ == "__main__":
    unittest.main()
