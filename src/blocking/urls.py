"""Blocklist sanitizing, validation and normalization helpers."""

from __future__ import annotations

import ipaddress
import re
from typing import Iterable, Optional

MAX_BLOCKED_URLS = 50
MAX_DOMAIN_LENGTH = 253
MIN_DOMAIN_LENGTH = 3

_ENTRY_SEPARATOR = re.compile(r"[\n,]+")
_HTML_TAG = re.compile(r"<[^>]*>")
_DANGEROUS_SCHEME = re.compile(r"(?:javascript|data|vbscript):", re.IGNORECASE)
_EVENT_HANDLER = re.compile(r"on\w+\s*=", re.IGNORECASE)
_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f-\x9f]")
_DANGEROUS_CHARS = re.compile(r"[<>'\"&]")
_WHITESPACE = re.compile(r"\s+")
_HTTP_SCHEME = re.compile(r"^https?://")
_WWW_PREFIX = re.compile(r"^www\.")
_PATH_SUFFIX = re.compile(r"/.*$")
_DOMAIN = re.compile(
    r"^[a-z0-9]([a-z0-9\-]{0,61}[a-z0-9])?(\.[a-z0-9]([a-z0-9\-]{0,61}[a-z0-9])?)*$"
)
_LOCAL_HOSTNAMES = frozenset({"localhost", "localhost.localdomain"})


def sanitize_url(url: object) -> str:
    """Strip markup, scripting schemes and whitespace from one blocklist entry."""
    if not isinstance(url, str) or not url:
        return ""
    cleaned = _HTML_TAG.sub("", url)
    cleaned = _DANGEROUS_SCHEME.sub("", cleaned)
    cleaned = _EVENT_HANDLER.sub("", cleaned)
    cleaned = _CONTROL_CHARS.sub("", cleaned)
    cleaned = _DANGEROUS_CHARS.sub("", cleaned)
    cleaned = _WHITESPACE.sub("", cleaned).lower()
    return cleaned[:MAX_DOMAIN_LENGTH]


def normalize_url(url: object) -> str:
    """Reduce an entry to its bare domain; applying it twice changes nothing."""
    if not isinstance(url, str):
        return ""
    normalized = url.strip().lower()
    previous = None
    while previous != normalized:
        previous = normalized
        normalized = _HTTP_SCHEME.sub("", normalized)
        normalized = _WWW_PREFIX.sub("", normalized)
    return _PATH_SUFFIX.sub("", normalized).strip()


def is_internal_host(host: str) -> bool:
    """Loopback, private-range and unspecified hosts are never blockable."""
    host = host.strip().lower().strip("[]")
    if not host:
        return True
    if host in _LOCAL_HOSTNAMES or host.endswith(".localhost"):
        return True
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return False
    return address.is_loopback or address.is_private or address.is_unspecified


def is_valid_domain(url: object) -> bool:
    if not isinstance(url, str):
        return False
    if not MIN_DOMAIN_LENGTH <= len(url) <= MAX_DOMAIN_LENGTH:
        return False

    host = normalize_url(url)
    if not _DOMAIN.match(host):
        return False
    if "." not in host:
        return False
    return not is_internal_host(host)


def sanitize_and_validate_urls(
    text: Optional[str],
    *,
    limit: int = MAX_BLOCKED_URLS,
) -> list[str]:
    """Turn free-text input (one entry per line or comma separated) into normalized domains."""
    if not isinstance(text, str) or not text:
        return []
    return sanitize_url_entries(_ENTRY_SEPARATOR.split(text), limit=limit)


def sanitize_url_entries(
    entries: Iterable[object],
    *,
    limit: int = MAX_BLOCKED_URLS,
) -> list[str]:
    valid: list[str] = []
    seen: set[str] = set()
    for raw in entries:
        if not isinstance(raw, str):
            continue
        cleaned = sanitize_url(raw.strip())
        if not cleaned or not is_valid_domain(cleaned):
            continue
        normalized = normalize_url(cleaned)
        if normalized in seen:
            continue
        seen.add(normalized)
        if len(valid) < limit:
            valid.append(normalized)
    return valid


def count_entries(text: Optional[str]) -> int:
    """Number of non-empty entries a user typed, valid or not."""
    if not isinstance(text, str):
        return 0
    return len([part for part in _ENTRY_SEPARATOR.split(text) if part.strip()])
