"""Per-tab synchronization layer over the shared store."""

from .config import SyncConfig, SyncConfigurationError
from .renderer import HeadlessPanelRenderer, PanelRendererLike
from .session import TabDependencies, TabMirror, TabSession, wall_clock_ms
from .ticker import RepeatingTicker

__all__ = [
    "HeadlessPanelRenderer",
    "PanelRendererLike",
    "RepeatingTicker",
    "SyncConfig",
    "SyncConfigurationError",
    "TabDependencies",
    "TabMirror",
    "TabSession",
    "wall_clock_ms",
]
