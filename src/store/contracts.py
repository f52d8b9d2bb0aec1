"""Protocols describing the shared store and broadcast channel."""

from __future__ import annotations

from typing import Any, Callable, Iterable, Mapping, Protocol

StoreChanges = dict[str, dict[str, Any]]
ChangeListener = Callable[[StoreChanges], None]
MessageListener = Callable[[Mapping[str, Any]], None]
Unsubscribe = Callable[[], None]


class SharedStore(Protocol):
    """Key-value store shared by every tab; each `set` replaces whole slots."""

    async def get(self, keys: Iterable[str]) -> dict[str, Any]:
        ...

    async def set(self, items: Mapping[str, Any]) -> None:
        ...

    def subscribe(self, listener: ChangeListener) -> Unsubscribe:
        ...

    def is_context_valid(self) -> bool:
        ...


class BroadcastChannel(Protocol):
    """Best-effort fan-out of small messages to every tab."""

    async def send(self, message: Mapping[str, Any]) -> None:
        ...

    def add_listener(self, listener: MessageListener) -> Unsubscribe:
        ...
