"""Keep-blocked decision for the page a tab is showing."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable
from urllib.parse import urlsplit

from pomodoro import TimerState, UserSettings, is_time_stopped_by_panic

from .urls import is_internal_host, is_valid_domain, normalize_url, sanitize_url

_logger = logging.getLogger("blocking")

_BLOCKABLE_SCHEMES = frozenset({"http", "https"})


@dataclass(frozen=True)
class BlockingDecision:
    """Inputs and outcome of one blocking evaluation."""
    url_matches: bool
    is_break: bool
    time_stopped_by_panic: bool
    is_quit: bool
    keep_blocked: bool


def page_host(page_url: str) -> str:
    """Return the lowercased host of an http(s) page, or an empty string."""
    if not isinstance(page_url, str) or not page_url:
        return ""
    try:
        parts = urlsplit(page_url.strip())
        host = parts.hostname or ""
    except ValueError:
        return ""
    if parts.scheme.lower() not in _BLOCKABLE_SCHEMES:
        return ""
    return host.lower()


def url_matches(page_url: str, blocked_urls: Iterable[str]) -> bool:
    """True when the page host equals, or is a subdomain of, a listed domain."""
    host = page_host(page_url)
    if not host or is_internal_host(host):
        return False

    for entry in blocked_urls:
        if not isinstance(entry, str) or not entry:
            continue
        # Stored entries are re-checked; the store is shared with other writers.
        cleaned = sanitize_url(entry)
        if not is_valid_domain(cleaned):
            continue
        domain = normalize_url(cleaned)
        if host == domain or host.endswith("." + domain):
            return True
    return False


def decide_blocking(
    matches: bool,
    state: TimerState,
    panic_open: bool,
) -> BlockingDecision:
    """Blocked unless on break or truly idle; a panic freeze is not idle."""
    is_break = state.is_break
    stopped_by_panic = is_time_stopped_by_panic(state, panic_open)
    is_quit = not state.is_running and not stopped_by_panic
    return BlockingDecision(
        url_matches=matches,
        is_break=is_break,
        time_stopped_by_panic=stopped_by_panic,
        is_quit=is_quit,
        keep_blocked=matches and not is_break and not is_quit,
    )


def evaluate_blocking(
    page_url: str,
    settings: UserSettings,
    state: TimerState,
    panic_open: bool,
) -> BlockingDecision:
    try:
        matches = settings.panel_enabled and url_matches(page_url, settings.blocked_urls)
    except Exception as error:
        _logger.warning("Failed to match blocked URL for %s: %s", page_url, error)
        matches = False
    return decide_blocking(matches, state, panic_open)
