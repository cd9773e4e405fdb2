"""Gemini ``generateContent`` adapter."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlencode

from chatrelay.adapters.base import ProviderAdapter
from chatrelay.config.settings import settings
from chatrelay.core.errors import InvalidHistoryError, MissingCredentialError, UnexpectedResponseShapeError
from chatrelay.core.models import ChatTurn, ImageAttachment, ProviderRequestDescriptor, UnifiedChatRequest
from chatrelay.core.stream_utils import GeminiStreamNormalizer, StreamNormalizer

_ROLE_MAP = {"user": "user", "assistant": "model"}


@dataclass(slots=True)
class _PendingTurn:
    role: str
    texts: list[str] = field(default_factory=list)
    attachment: ImageAttachment | None = None


def repair_history(turns: tuple[ChatTurn, ...], attachment: ImageAttachment | None) -> list[_PendingTurn]:
    """Make a history Gemini accepts: non-empty, starting with user, alternating roles.

    Empty turns are dropped, the leading run of model turns is dropped and
    consecutive text-only turns of one role are merged with a newline. The
    attachment rides on the last user turn, which is never merged.
    """
    last_user = None
    for index in range(len(turns) - 1, -1, -1):
        if turns[index].role == "user":
            last_user = index
            break
    if last_user is None:
        raise InvalidHistoryError("conversation has no user turn")

    kept: list[_PendingTurn] = []
    for index, turn in enumerate(turns):
        role = _ROLE_MAP[turn.role]
        carries_image = attachment is not None and index == last_user
        text = turn.text
        if not text.strip() and not carries_image:
            continue
        if not kept and role != "user":
            continue
        pending = _PendingTurn(role=role, texts=[text] if text.strip() else [], attachment=attachment if carries_image else None)
        previous = kept[-1] if kept else None
        if (
            previous is not None
            and previous.role == pending.role
            and previous.attachment is None
            and pending.attachment is None
        ):
            previous.texts.extend(pending.texts)
            continue
        kept.append(pending)

    if not kept:
        raise InvalidHistoryError()
    return kept


def _system_instruction(turns: tuple[ChatTurn, ...]) -> str:
    texts = [turn.text for turn in turns if turn.role == "system" and turn.text.strip()]
    if settings.system_prompt.strip():
        texts.insert(0, settings.system_prompt.strip())
    return "\n".join(texts)


class GeminiAdapter(ProviderAdapter):
    name = "gemini"
    native_stream_is_canonical = False

    def build_request(self, request: UnifiedChatRequest, credential: str | None) -> ProviderRequestDescriptor:
        if not credential:
            raise MissingCredentialError(f"{self.provider} API key is not set")

        conversation = tuple(turn for turn in request.turns if turn.role != "system")
        contents: list[dict[str, Any]] = []
        for pending in repair_history(conversation, request.attachment):
            parts: list[dict[str, Any]] = [{"text": "\n".join(pending.texts)}] if pending.texts else []
            if pending.attachment is not None:
                parts.append(
                    {
                        "inline_data": {
                            "mime_type": pending.attachment.mime_type,
                            "data": pending.attachment.base64_data,
                        }
                    }
                )
            contents.append({"role": pending.role, "parts": parts})

        body: dict[str, Any] = {"contents": contents}
        instruction = _system_instruction(request.turns)
        if instruction:
            body["systemInstruction"] = {"parts": [{"text": instruction}]}

        if request.wants_stream:
            query = urlencode({"alt": "sse", "key": credential})
            url = f"{self.base_url}/models/{self.model}:streamGenerateContent?{query}"
        else:
            url = f"{self.base_url}/models/{self.model}:generateContent?{urlencode({'key': credential})}"
        return ProviderRequestDescriptor(
            url=url,
            method="POST",
            headers={"Content-Type": "application/json"},
            body=body,
        )

    def unwrap_reply(self, body: Any) -> str:
        try:
            text = body["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError):
            text = None
        if isinstance(text, str):
            return text
        block_reason = ""
        if isinstance(body, dict) and isinstance(body.get("promptFeedback"), dict):
            block_reason = str(body["promptFeedback"].get("blockReason") or "")
        if block_reason:
            raise UnexpectedResponseShapeError(f"{self.provider} blocked the prompt: {block_reason}")
        raise UnexpectedResponseShapeError(f"unexpected response shape from {self.provider}")

    def new_stream_normalizer(self) -> StreamNormalizer:
        return GeminiStreamNormalizer()
