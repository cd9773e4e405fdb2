"""Credential lookup backed by environment settings."""

from __future__ import annotations

from chatrelay.config.settings import settings

# 凭据名 -> Settings 字段
_CREDENTIAL_FIELDS = {
    "GEMINI_API_KEY": "gemini_api_key",
    "OPENAI_API_KEY": "openai_api_key",
    "DEEPSEEK_API_KEY": "deepseek_api_key",
    "QWEN_API_KEY": "qwen_api_key",
    "OLLAMA_API_KEY": "ollama_api_key",
}


def get_credential(name: str) -> str | None:
    """Return the configured secret for *name*, or None when unset or blank."""
    field_name = _CREDENTIAL_FIELDS.get(name)
    if field_name is None:
        return None
    value = str(getattr(settings, field_name, "") or "").strip()
    return value or None
