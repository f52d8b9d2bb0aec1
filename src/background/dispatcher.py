"""Background context: activation gesture and panic flag relay to every tab."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Mapping, Optional

from contracts.store_protocol import (
    CHANGE_NEW_VALUE,
    KEY_PANIC_MODAL_OPEN,
    MESSAGE_SYNC_PANIC_MODAL,
)
from store import StoreChanges, StoreClient, Unsubscribe

BroadcastFn = Callable[[Mapping[str, Any]], Awaitable[Any]]

_UNSCRIPTABLE_PREFIXES = ("chrome://", "edge://")


class BackgroundDispatcher:
    """Turns panel activation into a settings write and relays panic changes."""

    def __init__(
        self,
        store: StoreClient,
        broadcast: BroadcastFn,
        logger: Optional[logging.Logger] = None,
    ):
        self._store = store
        self._broadcast = broadcast
        self._logger = logger or logging.getLogger("background")
        self._unsubscribe: Optional[Unsubscribe] = None
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def is_running(self) -> bool:
        return self._unsubscribe is not None

    def start(self) -> None:
        if self._unsubscribe is not None:
            return
        self._unsubscribe = self._store.subscribe(self.handle_storage_change)
        if self._unsubscribe is None:
            self._logger.warning("Background dispatcher could not subscribe to the store")
            return
        self._logger.info("Background dispatcher started")

    async def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        pending = tuple(self._tasks)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._tasks.clear()

    async def activate(self, page_url: Optional[str] = None) -> bool:
        """Re-enable the panel everywhere; tabs inject it from the store change."""
        if page_url and page_url.startswith(_UNSCRIPTABLE_PREFIXES):
            self._logger.info("Activation ignored for browser page: %s", page_url)
            return False
        saved = await self._store.update_user_settings({"panelEnabled": True})
        if saved:
            self._logger.info("Panel activated")
        return saved

    def handle_storage_change(self, changes: StoreChanges) -> None:
        change = changes.get(KEY_PANIC_MODAL_OPEN)
        if not isinstance(change, Mapping):
            return
        open_ = change.get(CHANGE_NEW_VALUE) is True
        task = asyncio.get_running_loop().create_task(self._relay_panic(open_))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _relay_panic(self, open_: bool) -> None:
        try:
            await self._broadcast({"type": MESSAGE_SYNC_PANIC_MODAL, "open": open_})
        except Exception as error:
            # A tab without a listener only misses the push; it reads the store later.
            self._logger.debug("Panic relay failed: %s", error)
            return
        self._logger.info("Panic flag relayed to tabs: open=%s", open_)
