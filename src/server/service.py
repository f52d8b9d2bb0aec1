"""Websocket host that owns the shared store and fans changes out to tabs."""

from __future__ import annotations

import asyncio
import logging
import threading
from http import HTTPStatus
from typing import Any, Mapping, Optional
from urllib.parse import urlsplit

import websockets
from websockets.asyncio.server import Server, ServerConnection
from websockets.http11 import Request, Response

from background import BackgroundDispatcher
from contracts.store_protocol import (
    EVENT_HELLO,
    EVENT_STORAGE_CHANGED,
    REQUEST_ACTIVATE,
    REQUEST_GET,
    REQUEST_SET,
    RESPONSE_ERROR,
    RESPONSE_RESULT,
)
from store import (
    InMemorySharedStore,
    JsonStoreFile,
    StoreChanges,
    StoreClient,
    StoreError,
    Unsubscribe,
)

from .config import HEALTHZ_PATH, StoreServerConfig
from .events import ProtocolError, StoreRequest, make_event, parse_request


class StoreServer:
    """Asyncio websocket host for the shared store and the panic broadcast.

    Runs either inside the caller's loop (`open`/`close`) or on its own
    thread (`start`/`stop`). Every store operation happens on the server loop.
    """

    def __init__(
        self,
        config: StoreServerConfig,
        *,
        store: Optional[InMemorySharedStore] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self._config = config
        self._logger = logger or logging.getLogger("store_server")
        if store is None:
            persistence = JsonStoreFile(config.data_file) if config.data_file else None
            store = InMemorySharedStore(persistence=persistence)
        self._store = store
        self._dispatcher = BackgroundDispatcher(
            StoreClient(store),
            self.broadcast_message,
            logger=logging.getLogger("background"),
        )
        self._server: Optional[Server] = None
        self._unsubscribe_store: Optional[Unsubscribe] = None
        self._tabs: set[ServerConnection] = set()
        self._pushes: set[asyncio.Task[Any]] = set()

        self._host_thread: Optional[threading.Thread] = None
        self._host_loop: Optional[asyncio.AbstractEventLoop] = None
        self._shutdown: Optional[asyncio.Event] = None
        self._ready = threading.Event()
        self._thread_error: Optional[BaseException] = None

    @property
    def host(self) -> str:
        return self._config.host

    @property
    def port(self) -> int:
        """Bound port once serving; the configured one before that."""
        if self._server is not None:
            for sock in self._server.sockets:
                return sock.getsockname()[1]
        return self._config.port

    @property
    def url(self) -> str:
        return f"ws://{self.host}:{self.port}{self._config.websocket_path}"

    @property
    def store(self) -> InMemorySharedStore:
        return self._store

    @property
    def dispatcher(self) -> BackgroundDispatcher:
        return self._dispatcher

    @property
    def client_count(self) -> int:
        return len(self._tabs)

    @property
    def is_serving(self) -> bool:
        return self._server is not None

    @property
    def is_running(self) -> bool:
        thread = self._host_thread
        return thread is not None and thread.is_alive() and self._thread_error is None

    async def open(self) -> None:
        if self._server is not None:
            self._logger.warning("Store server is already serving")
            return

        self._server = await websockets.serve(
            self._handler,
            host=self._config.host,
            port=self._config.port,
            process_request=self._process_request,
            logger=self._logger,
        )
        self._unsubscribe_store = self._store.subscribe(self._on_store_change)
        self._dispatcher.start()
        self._logger.info("Store server running at %s", self.url)

    async def close(self) -> None:
        if self._server is None:
            return

        await self._dispatcher.stop()
        if self._unsubscribe_store is not None:
            self._unsubscribe_store()
            self._unsubscribe_store = None

        tabs = tuple(self._tabs)
        self._tabs.clear()
        await asyncio.gather(
            *(tab.close(code=1001, reason="Store host shutting down") for tab in tabs),
            return_exceptions=True,
        )
        self._server.close()
        await self._server.wait_closed()
        self._server = None

        if self._pushes:
            await asyncio.gather(*tuple(self._pushes), return_exceptions=True)
        self._logger.info("Store server stopped")

    def start(self, timeout_seconds: float = 5.0) -> None:
        """Serve on a daemon thread; returns once the socket is bound."""
        if self.is_running:
            self._logger.warning("Store server is already running")
            return

        self._thread_error = None
        self._ready.clear()
        self._host_thread = threading.Thread(
            target=self._thread_main,
            daemon=True,
            name="store-server",
        )
        self._host_thread.start()

        if not self._ready.wait(timeout_seconds):
            raise RuntimeError(
                f"Store server did not start within {timeout_seconds:.1f}s"
            )
        if self._thread_error is not None:
            raise RuntimeError(f"Store server startup failed: {self._thread_error}")

    def stop(self, timeout_seconds: float = 5.0) -> None:
        thread = self._host_thread
        if thread is None:
            return

        loop, shutdown = self._host_loop, self._shutdown
        if loop is not None and shutdown is not None:
            loop.call_soon_threadsafe(shutdown.set)

        thread.join(timeout=timeout_seconds)
        if thread.is_alive():
            self._logger.error(
                "Store server thread did not stop within %.1fs",
                timeout_seconds,
            )
        self._host_thread = None

    async def broadcast_message(
        self,
        message: Mapping[str, Any],
        *,
        exclude: Optional[ServerConnection] = None,
    ) -> int:
        """Send a tab message as an event of the same type; returns the delivered count."""
        payload = {key: value for key, value in message.items() if key != "type"}
        event = make_event(str(message.get("type")), **payload)
        return await self._send_to_tabs(event, exclude=exclude)

    def _thread_main(self) -> None:
        try:
            asyncio.run(self._serve_until_stopped())
        except Exception as error:
            self._thread_error = error
            self._logger.error("Store server failed: %s", error, exc_info=True)
        finally:
            self._host_loop = None
            self._shutdown = None
            self._ready.set()

    async def _serve_until_stopped(self) -> None:
        self._host_loop = asyncio.get_running_loop()
        self._shutdown = asyncio.Event()
        await self.open()
        try:
            self._ready.set()
            await self._shutdown.wait()
        finally:
            await self.close()

    async def _handler(self, websocket: ServerConnection) -> None:
        request = websocket.request
        if request is None or urlsplit(request.path).path != self._config.websocket_path:
            await websocket.close(code=1008, reason="Invalid websocket path")
            return

        self._tabs.add(websocket)
        self._logger.info("Tab connected: %s", websocket.remote_address)
        try:
            await websocket.send(make_event(EVENT_HELLO, message="Store connected"))
            async for raw in websocket:
                await websocket.send(await self._handle_request(raw, websocket))
        except websockets.exceptions.ConnectionClosed:
            self._logger.info("Tab disconnected: %s", websocket.remote_address)
        finally:
            self._tabs.discard(websocket)

    async def _handle_request(
        self,
        raw: str | bytes,
        websocket: ServerConnection,
    ) -> str:
        try:
            request = parse_request(raw)
        except ProtocolError as error:
            self._logger.warning("Rejected tab request: %s", error)
            return make_event(RESPONSE_ERROR, id=None, message=str(error))

        try:
            data = await self._execute(request, websocket)
        except StoreError as error:
            self._logger.warning("Store %s request failed: %s", request.type, error)
            return make_event(RESPONSE_ERROR, id=request.id, message=str(error))
        return make_event(RESPONSE_RESULT, id=request.id, data=data)

    async def _execute(
        self,
        request: StoreRequest,
        websocket: ServerConnection,
    ) -> Any:
        if request.type == REQUEST_GET:
            return await self._store.get(request.keys)
        if request.type == REQUEST_SET:
            await self._store.set(request.items)
            return None
        if request.type == REQUEST_ACTIVATE:
            return {"activated": await self._dispatcher.activate(request.url)}
        delivered = await self.broadcast_message(request.message, exclude=websocket)
        return {"delivered": delivered}

    def _on_store_change(self, changes: StoreChanges) -> None:
        # Pushed to every tab, the writer included.
        event = make_event(EVENT_STORAGE_CHANGED, changes=changes)
        task = asyncio.get_running_loop().create_task(self._send_to_tabs(event))
        self._pushes.add(task)
        task.add_done_callback(self._pushes.discard)

    async def _process_request(
        self,
        connection: ServerConnection,
        request: Request,
    ) -> Response | None:
        path = urlsplit(request.path).path
        if path == self._config.websocket_path:
            return None
        if path == HEALTHZ_PATH:
            return connection.respond(HTTPStatus.OK, "ok\n")
        return connection.respond(HTTPStatus.NOT_FOUND, "not found\n")

    async def _send_to_tabs(
        self,
        event: str,
        *,
        exclude: Optional[ServerConnection] = None,
    ) -> int:
        recipients = [tab for tab in self._tabs if tab is not exclude]
        results = await asyncio.gather(
            *(tab.send(event) for tab in recipients),
            return_exceptions=True,
        )
        delivered = 0
        for tab, result in zip(recipients, results):
            if isinstance(result, Exception):
                self._tabs.discard(tab)
                self._logger.warning("Dropping tab after failed send: %s", result)
            else:
                delivered += 1
        return delivered
