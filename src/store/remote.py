"""Websocket client for a store hosted by `server.StoreServer`."""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
from typing import Any, Iterable, Mapping, Optional

import websockets
from websockets.asyncio.client import ClientConnection, connect

from contracts.store_protocol import (
    EVENT_HELLO,
    EVENT_STORAGE_CHANGED,
    MESSAGE_SYNC_PANIC_MODAL,
    REQUEST_ACTIVATE,
    REQUEST_BROADCAST,
    REQUEST_GET,
    REQUEST_SET,
    RESPONSE_ERROR,
    RESPONSE_RESULT,
)

from .contracts import ChangeListener, MessageListener, StoreChanges, Unsubscribe
from .errors import ContextInvalidatedError, StoreError, StoreUnavailableError

DEFAULT_CONNECT_TIMEOUT_SECONDS = 5.0


class RemoteSharedStore:
    """Shared store and broadcast channel backed by one websocket connection.

    A closed connection invalidates the context for good, like a reloaded
    extension: every later call raises `ContextInvalidatedError`.
    """

    def __init__(
        self,
        url: str,
        *,
        connect_timeout_seconds: float = DEFAULT_CONNECT_TIMEOUT_SECONDS,
        logger: Optional[logging.Logger] = None,
    ):
        self._url = url
        self._connect_timeout = connect_timeout_seconds
        self._logger = logger or logging.getLogger("store")
        self._connection: Optional[ClientConnection] = None
        self._reader: Optional[asyncio.Task[None]] = None
        self._pending: dict[int, asyncio.Future[Any]] = {}
        self._ids = itertools.count(1)
        self._change_listeners: list[ChangeListener] = []
        self._message_listeners: list[MessageListener] = []
        self._valid = False

    @property
    def url(self) -> str:
        return self._url

    async def connect(self) -> None:
        try:
            self._connection = await connect(
                self._url,
                open_timeout=self._connect_timeout,
            )
            hello = json.loads(
                await asyncio.wait_for(self._connection.recv(), self._connect_timeout)
            )
        except (
            OSError,
            asyncio.TimeoutError,
            ValueError,
            websockets.exceptions.WebSocketException,
        ) as error:
            raise StoreUnavailableError(
                f"Failed to connect to store at {self._url}: {error}"
            ) from error
        if not isinstance(hello, dict) or hello.get("type") != EVENT_HELLO:
            await self._connection.close()
            raise StoreUnavailableError(f"Unexpected greeting from store at {self._url}")

        self._valid = True
        self._reader = asyncio.get_running_loop().create_task(
            self._read_loop(),
            name="remote-store-reader",
        )
        self._logger.info("Connected to store at %s", self._url)

    async def close(self) -> None:
        if self._connection is not None:
            await self._connection.close()
        if self._reader is not None:
            await asyncio.gather(self._reader, return_exceptions=True)
            self._reader = None
        self._invalidate()

    async def __aenter__(self) -> "RemoteSharedStore":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def get(self, keys: Iterable[str]) -> dict[str, Any]:
        data = await self._request(REQUEST_GET, keys=list(keys))
        return dict(data) if isinstance(data, Mapping) else {}

    async def set(self, items: Mapping[str, Any]) -> None:
        await self._request(REQUEST_SET, items=dict(items))

    async def activate(self, page_url: Optional[str] = None) -> bool:
        data = await self._request(REQUEST_ACTIVATE, url=page_url)
        return bool(isinstance(data, Mapping) and data.get("activated"))

    async def send(self, message: Mapping[str, Any]) -> None:
        await self._request(REQUEST_BROADCAST, message=dict(message))

    def subscribe(self, listener: ChangeListener) -> Unsubscribe:
        if not self._valid:
            raise ContextInvalidatedError()
        self._change_listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._change_listeners:
                self._change_listeners.remove(listener)

        return unsubscribe

    def add_listener(self, listener: MessageListener) -> Unsubscribe:
        self._message_listeners.append(listener)

        def remove() -> None:
            if listener in self._message_listeners:
                self._message_listeners.remove(listener)

        return remove

    def is_context_valid(self) -> bool:
        return self._valid

    async def _request(self, request_type: str, **payload: Any) -> Any:
        if not self._valid or self._connection is None:
            raise ContextInvalidatedError()

        request_id = next(self._ids)
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            try:
                await self._connection.send(
                    json.dumps({"type": request_type, "id": request_id, **payload})
                )
            except websockets.exceptions.ConnectionClosed as error:
                self._invalidate()
                raise ContextInvalidatedError() from error
            return await future
        finally:
            self._pending.pop(request_id, None)

    async def _read_loop(self) -> None:
        connection = self._connection
        if connection is None:
            return
        try:
            async for raw in connection:
                self._dispatch(raw)
        except websockets.exceptions.ConnectionClosed as error:
            self._logger.info("Store connection closed: %s", error)
        finally:
            self._invalidate()

    def _dispatch(self, raw: str | bytes) -> None:
        try:
            message = json.loads(raw)
        except ValueError as error:
            self._logger.warning("Ignoring malformed store message: %s", error)
            return
        if not isinstance(message, dict):
            return

        message_type = message.get("type")
        if message_type in (RESPONSE_RESULT, RESPONSE_ERROR):
            future = self._pending.get(message.get("id"))
            if future is None or future.done():
                if message_type == RESPONSE_ERROR:
                    self._logger.warning("Store reported: %s", message.get("message"))
                return
            if message_type == RESPONSE_RESULT:
                future.set_result(message.get("data"))
            else:
                future.set_exception(StoreError(str(message.get("message"))))
            return

        if message_type == EVENT_STORAGE_CHANGED:
            changes = message.get("changes")
            if isinstance(changes, dict):
                self._deliver_changes(changes)
            return

        if message_type == MESSAGE_SYNC_PANIC_MODAL:
            self._deliver_message(
                {"type": MESSAGE_SYNC_PANIC_MODAL, "open": message.get("open") is True}
            )

    def _deliver_changes(self, changes: StoreChanges) -> None:
        for listener in tuple(self._change_listeners):
            try:
                listener(changes)
            except Exception as error:
                self._logger.warning("Store change listener failed: %s", error, exc_info=True)

    def _deliver_message(self, message: Mapping[str, Any]) -> None:
        for listener in tuple(self._message_listeners):
            try:
                listener(message)
            except Exception as error:
                self._logger.warning("Broadcast listener failed: %s", error, exc_info=True)

    def _invalidate(self) -> None:
        if not self._valid and not self._pending:
            return
        self._valid = False
        for future in self._pending.values():
            if not future.done():
                future.set_exception(ContextInvalidatedError())
        self._pending.clear()
        self._change_listeners.clear()
