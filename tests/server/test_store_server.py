import asyncio
import json
import tempfile
import unittest
from pathlib import Path

from websockets.asyncio.client import connect

from pomodoro import UserSettings
from server import StoreServer, StoreServerConfig
from store import (
    ContextInvalidatedError,
    InMemorySharedStore,
    RemoteSharedStore,
    StoreClient,
    StoreUnavailableError,
)
from sync import HeadlessPanelRenderer, SyncConfig, TabDependencies, TabSession


async def _wait_until(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


class StoreServerTestCase(unittest.IsolatedAsyncioTestCase):
    def _make_server(self) -> StoreServer:
        return StoreServer(StoreServerConfig(port=0))

    async def asyncSetUp(self) -> None:
        self.server = self._make_server()
        await self.server.open()
        self.remotes: list[RemoteSharedStore] = []

    async def asyncTearDown(self) -> None:
        for remote in self.remotes:
            await remote.close()
        await self.server.close()

    async def _connect(self) -> RemoteSharedStore:
        remote = RemoteSharedStore(self.server.url, connect_timeout_seconds=2.0)
        await remote.connect()
        self.remotes.append(remote)
        return remote


class StoreServerRoundTripTests(StoreServerTestCase):
    async def test_set_and_get_round_trip(self) -> None:
        remote = await self._connect()

        await remote.set({"timerState": {"isRunning": False, "duration": 5}})

        self.assertEqual(
            {"timerState": {"isRunning": False, "duration": 5}},
            await remote.get(["timerState", "missing"]),
        )
        self.assertEqual(1, self.server.client_count)

    async def test_changes_are_pushed_to_every_client(self) -> None:
        writer = await self._connect()
        reader = await self._connect()
        writer_changes = []
        reader_changes = []
        writer.subscribe(writer_changes.append)
        reader.subscribe(reader_changes.append)

        await writer.set({"timerState": {"duration": 1}})
        await _wait_until(lambda: reader_changes and writer_changes)

        self.assertEqual(
            {"oldValue": None, "newValue": {"duration": 1}},
            reader_changes[0]["timerState"],
        )

    async def test_broadcast_skips_sender(self) -> None:
        sender = await self._connect()
        receiver = await self._connect()
        sent_back = []
        received = []
        sender.add_listener(sent_back.append)
        receiver.add_listener(received.append)

        await sender.send({"type": "SYNC_PANIC_MODAL", "open": True})
        await _wait_until(lambda: received)
        await asyncio.sleep(0.05)

        self.assertEqual([{"type": "SYNC_PANIC_MODAL", "open": True}], received)
        self.assertEqual([], sent_back)

    async def test_panic_flag_write_is_relayed_to_writer_too(self) -> None:
        writer = await self._connect()
        messages = []
        writer.add_listener(messages.append)

        await writer.set({"panicModalOpen": True})
        await _wait_until(lambda: messages)

        self.assertEqual({"type": "SYNC_PANIC_MODAL", "open": True}, messages[0])

    async def test_activate_enables_panel(self) -> None:
        remote = await self._connect()

        self.assertFalse(await remote.activate("chrome://newtab"))
        self.assertTrue(await remote.activate("https://example.com/"))

        stored = (await self.server.store.get(["userSettings"]))["userSettings"]
        self.assertTrue(stored["panelEnabled"])

    async def test_malformed_request_gets_error_reply(self) -> None:
        async with connect(self.server.url) as websocket:
            hello = json.loads(await websocket.recv())
            self.assertEqual("hello", hello["type"])

            with self.assertLogs("store_server", level="WARNING"):
                await websocket.send("not json")
                reply = json.loads(await asyncio.wait_for(websocket.recv(), 2.0))

        self.assertEqual("error", reply["type"])
        self.assertIsNone(reply["id"])
        self.assertIn("Malformed", reply["message"])

    async def test_healthz_and_unknown_paths(self) -> None:
        for path, status in (("/healthz", b"200"), ("/nope", b"404")):
            with self.subTest(path=path):
                reader, writer = await asyncio.open_connection(self.server.host, self.server.port)
                writer.write(
                    f"GET {path} HTTP/1.1\r\nHost: {self.server.host}\r\n\r\n".encode("ascii")
                )
                await writer.drain()
                response = await asyncio.wait_for(reader.readuntil(b"\r\n\r\n"), 2.0)
                writer.close()
                await writer.wait_closed()

                self.assertTrue(response.startswith(b"HTTP/1.1 " + status))

    async def test_connecting_to_wrong_path_fails(self) -> None:
        remote = RemoteSharedStore(self.server.url.replace("/ws", "/other"))

        with self.assertRaises(StoreUnavailableError):
            await remote.connect()
        self.assertFalse(remote.is_context_valid())

    async def test_server_shutdown_invalidates_clients(self) -> None:
        remote = await self._connect()

        await self.server.close()
        await _wait_until(lambda: not remote.is_context_valid())
        self.assertFalse(self.server.is_serving)

        with self.assertRaises(ContextInvalidatedError):
            await remote.get(["timerState"])
        with self.assertRaises(ContextInvalidatedError):
            remote.subscribe(lambda changes: None)


class StoreServerConnectFailureTests(unittest.IsolatedAsyncioTestCase):
    async def test_unreachable_store_raises_unavailable(self) -> None:
        remote = RemoteSharedStore("ws://127.0.0.1:1/ws", connect_timeout_seconds=0.5)

        with self.assertRaises(StoreUnavailableError):
            await remote.connect()


class StoreServerPersistenceTests(unittest.IsolatedAsyncioTestCase):
    async def test_writes_reach_data_file(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            data_file = Path(temp_dir) / "store.json"
            server = StoreServer(StoreServerConfig(port=0, data_file=str(data_file)))
            await server.open()
            remote = RemoteSharedStore(server.url)
            try:
                await remote.connect()
                await remote.set({"panicModalOpen": True})
            finally:
                await remote.close()
                await server.close()

            self.assertEqual(
                {"panicModalOpen": True},
                json.loads(data_file.read_text(encoding="utf-8")),
            )


class StoreServerThreadTests(unittest.TestCase):
    def test_start_and_stop_on_background_thread(self) -> None:
        server = StoreServer(StoreServerConfig(port=0))

        server.start()
        try:
            self.assertTrue(server.is_running)
            self.assertTrue(server.is_serving)
            self.assertNotEqual(0, server.port)
        finally:
            server.stop()

        self.assertFalse(server.is_running)


class RemoteTabSyncTests(StoreServerTestCase):
    def _make_server(self) -> StoreServer:
        store = InMemorySharedStore(
            {"userSettings": UserSettings(blocked_urls=("example.com",)).to_store()}
        )
        return StoreServer(StoreServerConfig(port=0), store=store)

    async def _open_tab(self, page_url: str) -> tuple[TabSession, HeadlessPanelRenderer]:
        remote = await self._connect()
        renderer = HeadlessPanelRenderer()
        session = TabSession(
            TabDependencies(
                store=StoreClient(remote),
                broadcast=remote,
                renderer=renderer,
            ),
            page_url=page_url,
            config=SyncConfig(reconcile_interval_seconds=60.0, self_heal_interval_seconds=60.0),
        )
        self.assertTrue(await session.start_up())
        self.addAsyncCleanup(session.shutdown)
        return session, renderer

    async def test_two_tabs_share_timer_and_panic_over_websocket(self) -> None:
        first, _ = await self._open_tab("https://other.org/")
        second, second_renderer = await self._open_tab("https://example.com/")

        await first.start()
        await _wait_until(lambda: second_renderer.blocked)

        await first.open_panic()
        await _wait_until(lambda: second_renderer.modal_open)
        self.assertFalse(second.mirror.timer_state.is_running)
        self.assertTrue(second_renderer.blocked)

        await first.close_panic()
        await _wait_until(lambda: not second_renderer.modal_open)
        await _wait_until(lambda: second.mirror.timer_state.is_running)


if __name__ == "__main__":
    unittest.main()
