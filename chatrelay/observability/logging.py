"""One summary line per finished chat request."""

from __future__ import annotations

from chatrelay.util.logger import logger


def _format_value(value: object) -> str:
    text = str(value)
    if not text or any(ch.isspace() or ch in '="' for ch in text):
        return '"' + text.replace("\\", "\\\\").replace('"', '\\"') + '"'
    return text


def format_event(event: str, *, request_id: str, provider: str, outcome: str, **fields: object) -> str:
    """``event request_id=... provider=... outcome=... <extra fields in call order>``."""
    pairs = [("request_id", request_id), ("provider", provider), ("outcome", outcome), *fields.items()]
    return " ".join([event, *(f"{key}={_format_value(value)}" for key, value in pairs)])


def log_event(event: str, *, request_id: str, provider: str, outcome: str, **fields: object) -> None:
    line = format_event(event, request_id=request_id, provider=provider, outcome=outcome, **fields)
    if outcome == "completed":
        logger.info(line)
    else:
        logger.warning(line)
