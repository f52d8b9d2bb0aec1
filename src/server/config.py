"""Configuration model for the websocket store host."""

from __future__ import annotations

from dataclasses import dataclass


class ServerConfigurationError(Exception):
    """Raised when store server configuration is invalid."""


WEBSOCKET_PATH = "/ws"
HEALTHZ_PATH = "/healthz"
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8766


@dataclass(frozen=True)
class StoreServerConfig:
    """Validated store server configuration derived from app settings.

    Port 0 binds an ephemeral port; the bound value is exposed by the server.
    An empty `data_file` keeps the store in memory only.
    """
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    data_file: str = ""

    def __post_init__(self) -> None:
        if not self.host.strip():
            raise ServerConfigurationError("STORE_HOST cannot be empty")

        if isinstance(self.port, bool) or not isinstance(self.port, int):
            raise ServerConfigurationError(f"STORE_PORT must be an integer, got: {self.port!r}")

        if not 0 <= self.port <= 65535:
            raise ServerConfigurationError(
                f"STORE_PORT must be in [0, 65535], got: {self.port}"
            )

    @property
    def websocket_path(self) -> str:
        return WEBSOCKET_PATH

    @property
    def url(self) -> str:
        return f"ws://{self.host}:{self.port}{WEBSOCKET_PATH}"

    @classmethod
    def from_settings(cls, settings) -> "StoreServerConfig":
        data_file = settings.data_file.strip() if settings.data_file else ""
        return cls(
            host=settings.host,
            port=settings.port,
            data_file=data_file,
        )
