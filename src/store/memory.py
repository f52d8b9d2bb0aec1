"""In-process shared store with per-context connections and change notifications."""

from __future__ import annotations

import asyncio
import copy
import logging
from typing import Any, Iterable, Mapping, Optional

from contracts.store_protocol import CHANGE_NEW_VALUE, CHANGE_OLD_VALUE

from .contracts import ChangeListener, StoreChanges, Unsubscribe
from .errors import ContextInvalidatedError
from .persistence import JsonStoreFile


class InMemorySharedStore:
    """Last-writer-wins key-value store shared by every connected context.

    Listeners are notified on the next loop iteration, never from inside
    `set`, and only for keys whose value actually changed.
    """

    def __init__(
        self,
        initial: Optional[Mapping[str, Any]] = None,
        *,
        persistence: Optional[JsonStoreFile] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self._logger = logger or logging.getLogger("store")
        self._persistence = persistence
        self._data: dict[str, Any] = {}
        if persistence is not None:
            self._data.update(persistence.load())
        if initial:
            self._data.update(copy.deepcopy(dict(initial)))
        self._listeners: list[ChangeListener] = []

    async def get(self, keys: Iterable[str]) -> dict[str, Any]:
        await asyncio.sleep(0)
        return {
            key: copy.deepcopy(self._data[key])
            for key in keys
            if key in self._data
        }

    async def set(self, items: Mapping[str, Any]) -> None:
        await asyncio.sleep(0)
        changes = self.apply(items)
        if changes:
            self._notify(changes)

    def apply(self, items: Mapping[str, Any]) -> StoreChanges:
        """Replace the given slots and return the change records, without notifying."""
        changes: StoreChanges = {}
        for key, value in items.items():
            old_value = self._data.get(key)
            new_value = copy.deepcopy(value)
            if key in self._data and old_value == new_value:
                continue
            self._data[key] = new_value
            changes[key] = {
                CHANGE_OLD_VALUE: copy.deepcopy(old_value),
                CHANGE_NEW_VALUE: copy.deepcopy(new_value),
            }

        if changes and self._persistence is not None:
            self._persistence.save(self._data)
        return changes

    def subscribe(self, listener: ChangeListener) -> Unsubscribe:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def is_context_valid(self) -> bool:
        return True

    def snapshot(self) -> dict[str, Any]:
        return copy.deepcopy(self._data)

    def connect(self) -> "StoreConnection":
        """Open a connection for one tab context."""
        return StoreConnection(self)

    def _notify(self, changes: StoreChanges) -> None:
        loop = asyncio.get_running_loop()
        for listener in tuple(self._listeners):
            loop.call_soon(self._deliver, listener, copy.deepcopy(changes))

    def _deliver(self, listener: ChangeListener, changes: StoreChanges) -> None:
        try:
            listener(changes)
        except Exception as error:
            self._logger.warning("Store change listener failed: %s", error, exc_info=True)


class StoreConnection:
    """One context's view of the shared store; invalidation cuts it off for good."""

    def __init__(self, store: InMemorySharedStore):
        self._store = store
        self._valid = True
        self._unsubscribers: list[Unsubscribe] = []

    async def get(self, keys: Iterable[str]) -> dict[str, Any]:
        self._ensure_valid()
        return await self._store.get(keys)

    async def set(self, items: Mapping[str, Any]) -> None:
        self._ensure_valid()
        await self._store.set(items)

    def subscribe(self, listener: ChangeListener) -> Unsubscribe:
        self._ensure_valid()

        def guarded(changes: StoreChanges) -> None:
            if self._valid:
                listener(changes)

        unsubscribe = self._store.subscribe(guarded)
        self._unsubscribers.append(unsubscribe)
        return unsubscribe

    def is_context_valid(self) -> bool:
        return self._valid

    def invalidate(self) -> None:
        self._valid = False
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()

    def _ensure_valid(self) -> None:
        if not self._valid:
            raise ContextInvalidatedError()
