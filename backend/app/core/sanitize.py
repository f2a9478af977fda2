"""Input sanitization helpers applied to request bodies."""
from __future__ import annotations

import re

_BLOCK_TAGS = re.compile(
    r"<(script|iframe|object|embed)\b[^<]*(?:(?!</\1>)<[^<]*)*</\1>",
    re.IGNORECASE,
)
_JS_SCHEME = re.compile(r"javascript:", re.IGNORECASE)
_EVENT_HANDLER = re.compile(r"\bon\w+\s*=", re.IGNORECASE)

DANGEROUS_PATTERNS = (
    re.compile(r"<script", re.IGNORECASE),
    re.compile(r"<iframe", re.IGNORECASE),
    re.compile(r"<object", re.IGNORECASE),
    re.compile(r"<embed", re.IGNORECASE),
    _JS_SCHEME,
    _EVENT_HANDLER,
)


def sanitize_text(value: str) -> str:
    """Strip embedded markup blocks, ``javascript:`` schemes and inline handlers."""

    if not value:
        return ""
    cleaned = _BLOCK_TAGS.sub("", value)
    cleaned = _JS_SCHEME.sub("", cleaned)
    cleaned = _EVENT_HANDLER.sub("", cleaned)
    return cleaned.strip()


def contains_dangerous_content(value: str) -> bool:
    return any(pattern.search(value) for pattern in DANGEROUS_PATTERNS)
