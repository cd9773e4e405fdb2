"""OpenAI-compatible chat completions adapter (OpenAI, DeepSeek, DashScope, Ollama)."""

from __future__ import annotations

from typing import Any

from chatrelay.adapters.base import ProviderAdapter
from chatrelay.config.settings import settings
from chatrelay.core.errors import InvalidHistoryError, MissingCredentialError, UnexpectedResponseShapeError
from chatrelay.core.models import ProviderRequestDescriptor, UnifiedChatRequest, content_text


class OpenAICompatibleAdapter(ProviderAdapter):
    name = "openai_compat"
    native_stream_is_canonical = True

    def __init__(self, *, provider: str, base_url: str, model: str, requires_credential: bool = True) -> None:
        super().__init__(provider=provider, base_url=base_url, model=model)
        self.requires_credential = requires_credential

    def _messages(self, request: UnifiedChatRequest) -> list[dict[str, Any]]:
        messages: list[dict[str, Any]] = []
        if settings.system_prompt.strip():
            messages.append({"role": "system", "content": settings.system_prompt.strip()})
        last_user = None
        if request.attachment is not None:
            last_user = request.last_user_index()
            if last_user is None:
                raise InvalidHistoryError("image attachment needs a user turn")
        for index, turn in enumerate(request.turns):
            if index == last_user:
                messages.append(
                    {
                        "role": turn.role,
                        "content": [
                            {"type": "text", "text": turn.text},
                            {"type": "image_url", "image_url": {"url": request.attachment.data_url}},
                        ],
                    }
                )
                continue
            content = turn.content if isinstance(turn.content, str) else list(turn.content)
            messages.append({"role": turn.role, "content": content})
        return messages

    def build_request(self, request: UnifiedChatRequest, credential: str | None) -> ProviderRequestDescriptor:
        if self.requires_credential and not credential:
            raise MissingCredentialError(f"{self.provider} API key is not set")

        headers = {"Content-Type": "application/json"}
        if credential:
            headers["Authorization"] = f"Bearer {credential}"
        return ProviderRequestDescriptor(
            url=f"{self.base_url}/chat/completions",
            method="POST",
            headers=headers,
            body={
                "model": self.model,
                "messages": self._messages(request),
                "stream": request.wants_stream,
            },
        )

    def unwrap_reply(self, body: Any) -> str:
        try:
            return content_text(body["choices"][0]["message"]["content"])
        except (KeyError, IndexError, TypeError) as exc:
            raise UnexpectedResponseShapeError(f"unexpected response shape from {self.provider}") from exc
