"""Websocket host exposing the shared store and panic broadcast to tab processes."""

from .config import ServerConfigurationError, StoreServerConfig
from .events import ProtocolError, StoreRequest, make_event, parse_request
from .service import StoreServer

__all__ = [
    "ProtocolError",
    "ServerConfigurationError",
    "StoreRequest",
    "StoreServer",
    "StoreServerConfig",
    "make_event",
    "parse_request",
]
