"""Renderer contract used by tab sessions, plus a headless implementation."""

from __future__ import annotations

import logging
from typing import Any, Optional, Protocol

from pomodoro import PanelPosition, PanicContent, TimerView, UserSettings


class PanelRendererLike(Protocol):
    """Side effects a tab session needs from whatever draws the overlay."""
    def panel_exists(self) -> bool:
        ...

    def inject_panel(self, settings: UserSettings) -> None:
        ...

    def remove_panel(self) -> None:
        ...

    def set_minimized(self, minimized: bool) -> None:
        ...

    def move_panel(self, position: PanelPosition) -> None:
        ...

    def render_timer(self, view: TimerView) -> None:
        ...

    def show_panic_modal(self, content: PanicContent) -> None:
        ...

    def hide_panic_modal(self) -> None:
        ...

    def update_panic_content(self, content: PanicContent) -> None:
        ...

    def apply_blocking(self, blocked: bool) -> None:
        ...

    def notify(self, message: str) -> None:
        ...


class HeadlessPanelRenderer:
    """Keeps the rendered overlay as plain attributes and logs every change.

    Used by the headless tab launcher and as the renderer in tests.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self._logger = logger or logging.getLogger("sync.renderer")
        self.panel_present = False
        self.minimized = False
        self.position = PanelPosition()
        self.modal_open = False
        self.panic_content: Optional[PanicContent] = None
        self.blocked = False
        self.last_view: Optional[TimerView] = None
        self.notifications: list[str] = []
        self.history: list[tuple[str, Any]] = []

    def panel_exists(self) -> bool:
        return self.panel_present

    def inject_panel(self, settings: UserSettings) -> None:
        self.panel_present = True
        self.minimized = settings.panel_minimized
        self.position = settings.panel_position
        self._record("inject_panel", settings.panel_position)
        self._logger.info(
            "Panel injected at x=%s y=%s minimized=%s",
            settings.panel_position.x,
            settings.panel_position.y,
            settings.panel_minimized,
        )

    def remove_panel(self) -> None:
        if not self.panel_present:
            return
        self.panel_present = False
        self.modal_open = False
        self._record("remove_panel", None)
        self._logger.info("Panel removed")

    def set_minimized(self, minimized: bool) -> None:
        self.minimized = minimized
        self._record("set_minimized", minimized)

    def move_panel(self, position: PanelPosition) -> None:
        self.position = position
        self._record("move_panel", position)

    def render_timer(self, view: TimerView) -> None:
        changed = self.last_view is None or (
            self.last_view.time_label != view.time_label
            or self.last_view.status != view.status
        )
        self.last_view = view
        if changed:
            self._record("render_timer", view)
            self._logger.debug(
                "Timer %s %s %s",
                view.status,
                view.time_label,
                view.block_label,
            )

    def show_panic_modal(self, content: PanicContent) -> None:
        self.panic_content = content
        if self.modal_open:
            return
        self.modal_open = True
        self._record("show_panic_modal", content.title)
        self._logger.info("Panic modal shown: %s", content.title)

    def hide_panic_modal(self) -> None:
        if not self.modal_open:
            return
        self.modal_open = False
        self._record("hide_panic_modal", None)
        self._logger.info("Panic modal hidden")

    def update_panic_content(self, content: PanicContent) -> None:
        self.panic_content = content
        self._record("update_panic_content", content.title)

    def apply_blocking(self, blocked: bool) -> None:
        self.blocked = blocked
        self._record("apply_blocking", blocked)
        self._logger.info("Blocking overlay %s", "shown" if blocked else "removed")

    def notify(self, message: str) -> None:
        self.notifications.append(message)
        self._record("notify", message)
        self._logger.warning("%s", message)

    def calls(self, name: str) -> list[Any]:
        return [payload for call, payload in self.history if call == name]

    def _record(self, name: str, payload: Any) -> None:
        self.history.append((name, payload))
