"""Value masking for log output (API keys, data URLs)."""

from __future__ import annotations

import re
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

_SENSITIVE_QUERY_KEYS = frozenset({"key", "api_key", "apikey", "access_token"})
_DATA_URL_RE = re.compile(r"^data:([^;,]+)(;base64)?,", re.IGNORECASE)


def mask_for_log(value: str) -> str:
    """Return a partially-masked version of *value* safe for log output.

    Rules:
    - Preserve first 3 chars + last 2 chars for values >= 10 chars.
    - Shorter values get progressively fewer visible chars.
    - Trailing/leading whitespace is collapsed before masking.
    """
    normalized = re.sub(r"\s+", " ", value).strip()
    length = len(normalized)
    if length <= 0:
        return ""
    if length == 1:
        return "*"
    if length <= 4:
        return f"{normalized[:1]}{'*' * (length - 2)}{normalized[-1:]}"

    head = 3 if length >= 10 else 2
    tail = 2
    if head + tail >= length:
        head, tail = 1, 1
    return f"{normalized[:head]}{'*' * (length - head - tail)}{normalized[-tail:]}"


def mask_url(url: str) -> str:
    """Mask credential-bearing query parameters (Gemini passes its key as ``?key=``)."""
    parsed = urlparse(url)
    if not parsed.query:
        return url
    pairs = [
        (name, mask_for_log(value) if name.lower() in _SENSITIVE_QUERY_KEYS else value)
        for name, value in parse_qsl(parsed.query, keep_blank_values=True)
    ]
    return urlunparse(parsed._replace(query=urlencode(pairs, safe="*")))


def describe_data_url(value: str) -> str:
    """Summarize a data URL as ``data:<mime> (<n> chars)`` instead of dumping base64."""
    matched = _DATA_URL_RE.match(value or "")
    if not matched:
        return f"<non-data-url {len(value or '')} chars>"
    return f"data:{matched.group(1)} ({len(value)} chars)"
