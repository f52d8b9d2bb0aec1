"""Serializing store host events and parsing tab requests."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Optional

from contracts.store_protocol import (
    REQUEST_ACTIVATE,
    REQUEST_GET,
    REQUEST_SET,
    REQUEST_TYPES,
)


class ProtocolError(ValueError):
    """Raised when a tab sends a message the store host cannot interpret."""


@dataclass(frozen=True)
class StoreRequest:
    """One decoded request from a tab connection."""
    type: str
    id: Optional[int]
    keys: tuple[str, ...] = ()
    items: Mapping[str, Any] = field(default_factory=dict)
    url: Optional[str] = None
    message: Mapping[str, Any] = field(default_factory=dict)


def make_event(
    event_type: str,
    *,
    now_fn: Callable[[], datetime] | None = None,
    **payload: Any,
) -> str:
    """Serialize an event payload with type and timestamp for websocket delivery."""
    now = now_fn() if now_fn is not None else datetime.now(timezone.utc)
    return json.dumps(
        {
            "type": event_type,
            "timestamp": now.isoformat(),
            **payload,
        }
    )


def parse_request(raw: str | bytes) -> StoreRequest:
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as error:
        raise ProtocolError(f"Malformed request: {error}") from error
    if not isinstance(data, dict):
        raise ProtocolError("Request must be a JSON object")

    request_type = data.get("type")
    if request_type not in REQUEST_TYPES:
        raise ProtocolError(f"Unknown request type: {request_type!r}")

    request_id = data.get("id")
    if request_id is not None and (
        isinstance(request_id, bool) or not isinstance(request_id, int)
    ):
        raise ProtocolError(f"Request id must be an integer, got: {request_id!r}")

    if request_type == REQUEST_GET:
        keys = data.get("keys")
        if not isinstance(keys, list) or not all(isinstance(key, str) for key in keys):
            raise ProtocolError("get requires a list of string keys")
        return StoreRequest(type=request_type, id=request_id, keys=tuple(keys))

    if request_type == REQUEST_SET:
        items = data.get("items")
        if not isinstance(items, dict):
            raise ProtocolError("set requires an items object")
        return StoreRequest(type=request_type, id=request_id, items=items)

    if request_type == REQUEST_ACTIVATE:
        url = data.get("url")
        if url is not None and not isinstance(url, str):
            raise ProtocolError("activate url must be a string")
        return StoreRequest(type=request_type, id=request_id, url=url)

    message = data.get("message")
    if not isinstance(message, dict) or not isinstance(message.get("type"), str):
        raise ProtocolError("broadcast requires a message object with a type")
    return StoreRequest(type=request_type, id=request_id, message=message)
