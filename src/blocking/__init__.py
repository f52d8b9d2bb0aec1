"""Blocklist parsing and keep-blocked decisions."""

from .decision import (
    BlockingDecision,
    decide_blocking,
    evaluate_blocking,
    page_host,
    url_matches,
)
from .urls import (
    MAX_BLOCKED_URLS,
    MAX_DOMAIN_LENGTH,
    count_entries,
    is_internal_host,
    is_valid_domain,
    normalize_url,
    sanitize_and_validate_urls,
    sanitize_url,
    sanitize_url_entries,
)

__all__ = [
    "BlockingDecision",
    "MAX_BLOCKED_URLS",
    "MAX_DOMAIN_LENGTH",
    "count_entries",
    "decide_blocking",
    "evaluate_blocking",
    "is_internal_host",
    "is_valid_domain",
    "normalize_url",
    "page_host",
    "sanitize_and_validate_urls",
    "sanitize_url",
    "sanitize_url_entries",
    "url_matches",
]
