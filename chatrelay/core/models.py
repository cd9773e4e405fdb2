"""Internal transport models."""

from __future__ import annotations

import json
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


def content_text(content: Any) -> str:
    """Plain text of a message body; list bodies keep only their text parts, one per line."""
    if isinstance(content, str):
        return content
    if not isinstance(content, list):
        raise TypeError("content is neither text nor a list of parts")
    parts: list[str] = []
    for item in content:
        if isinstance(item, str):
            parts.append(item)
        elif isinstance(item, dict) and isinstance(item.get("text"), str):
            parts.append(item["text"])
    return "\n".join(parts)


class ChatTurn(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Literal["user", "assistant", "system"]
    content: str | list[Any] = ""

    @property
    def text(self) -> str:
        return content_text(self.content)


class ImageAttachment(BaseModel):
    model_config = ConfigDict(frozen=True)

    mime_type: str
    base64_data: str
    data_url: str


class UnifiedChatRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    provider_id: str
    turns: tuple[ChatTurn, ...]
    attachment: ImageAttachment | None = None
    wants_stream: bool = False

    def last_user_index(self) -> int | None:
        for index in range(len(self.turns) - 1, -1, -1):
            if self.turns[index].role == "user":
                return index
        return None


class ProviderRequestDescriptor(BaseModel):
    url: str
    method: str = "POST"
    headers: dict[str, str] = Field(default_factory=dict)
    body: dict[str, Any] = Field(default_factory=dict)

    def encoded_body(self) -> bytes:
        return json.dumps(self.body, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
