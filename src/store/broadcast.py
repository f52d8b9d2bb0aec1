"""In-process broadcast hub used for low-latency panic modal sync."""

from __future__ import annotations

import asyncio
import copy
import logging
from typing import Any, Mapping, Optional

from .contracts import MessageListener, Unsubscribe
from .errors import ContextInvalidatedError


class BroadcastHub:
    """Fans messages out to every registered tab endpoint."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self._logger = logger or logging.getLogger("broadcast")
        self._endpoints: list[BroadcastEndpoint] = []

    def endpoint(self) -> "BroadcastEndpoint":
        endpoint = BroadcastEndpoint(self, logger=self._logger)
        self._endpoints.append(endpoint)
        return endpoint

    async def broadcast(
        self,
        message: Mapping[str, Any],
        *,
        sender: Optional["BroadcastEndpoint"] = None,
    ) -> int:
        """Deliver `message` to every live endpoint except `sender`; returns the count."""
        await asyncio.sleep(0)
        loop = asyncio.get_running_loop()
        delivered = 0
        for endpoint in tuple(self._endpoints):
            if endpoint is sender:
                continue
            if not endpoint.is_context_valid():
                self._endpoints.remove(endpoint)
                continue
            loop.call_soon(endpoint.deliver, copy.deepcopy(dict(message)))
            delivered += 1
        return delivered

    @property
    def endpoint_count(self) -> int:
        return len(self._endpoints)


class BroadcastEndpoint:
    """A tab's receiving and sending side of the broadcast hub."""

    def __init__(self, hub: BroadcastHub, *, logger: Optional[logging.Logger] = None):
        self._hub = hub
        self._logger = logger or logging.getLogger("broadcast")
        self._listeners: list[MessageListener] = []
        self._valid = True

    async def send(self, message: Mapping[str, Any]) -> None:
        if not self._valid:
            raise ContextInvalidatedError()
        await self._hub.broadcast(message, sender=self)

    def add_listener(self, listener: MessageListener) -> Unsubscribe:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def deliver(self, message: Mapping[str, Any]) -> None:
        if not self._valid:
            return
        for listener in tuple(self._listeners):
            try:
                listener(message)
            except Exception as error:
                self._logger.warning("Broadcast listener failed: %s", error, exc_info=True)

    def is_context_valid(self) -> bool:
        return self._valid

    def invalidate(self) -> None:
        self._valid = False
        self._listeners.clear()
