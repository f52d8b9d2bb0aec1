"""Repeating asyncio task used for the reconciliation and self-heal ticks."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from store import is_context_invalidated


class RepeatingTicker:
    """Runs `callback` every `interval_seconds` until stopped.

    A ticker owns at most one task; `start` always cancels the previous one
    first, so a tab never ends up with two loops for the same concern.
    """

    def __init__(
        self,
        name: str,
        interval_seconds: float,
        callback: Callable[[], Awaitable[None]],
        logger: Optional[logging.Logger] = None,
    ):
        self._name = name
        self._interval = interval_seconds
        self._callback = callback
        self._logger = logger or logging.getLogger("sync.tab")
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def name(self) -> str:
        return self._name

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        self.stop()
        self._task = asyncio.get_running_loop().create_task(
            self._run(),
            name=f"ticker-{self._name}",
        )

    def ensure_started(self) -> None:
        if not self.is_running:
            self.start()

    def stop(self) -> None:
        if self._task is None:
            return
        # Stopping from inside the callback lets the loop exit on its own.
        if self._task is not asyncio.current_task():
            self._task.cancel()
        self._task = None

    async def _run(self) -> None:
        current = asyncio.current_task()
        while self._task is current:
            await asyncio.sleep(self._interval)
            if self._task is not current:
                break
            try:
                await self._callback()
            except asyncio.CancelledError:
                raise
            except Exception as error:
                if is_context_invalidated(error):
                    self._logger.debug("Ticker %s skipped: %s", self._name, error)
                    continue
                self._logger.warning(
                    "Ticker %s callback failed: %s",
                    self._name,
                    error,
                    exc_info=True,
                )
