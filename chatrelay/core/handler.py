"""Chat endpoint orchestration: parse -> build -> dispatch -> normalize/unwrap."""

from __future__ import annotations

import json
import time
import uuid
from contextlib import AsyncExitStack
from typing import Any, AsyncGenerator

from fastapi import Request
from fastapi.responses import JSONResponse, Response
from pydantic import ValidationError

from chatrelay.adapters.attachment import resolve_attachment
from chatrelay.adapters.base import ProviderAdapter
from chatrelay.adapters.registry import ProviderSpec, build_provider_request
from chatrelay.core.errors import (
    ChatRelayError,
    InvalidRequestError,
    MalformedRequestError,
    UnsupportedMediaTypeError,
)
from chatrelay.core.models import ChatTurn, ProviderRequestDescriptor, UnifiedChatRequest
from chatrelay.core.stream_utils import (
    _build_streaming_response,
    _stream_done_sse_chunk,
    _stream_error_sse_chunk,
    normalize_stream,
)
from chatrelay.core.upstream import open_upstream
from chatrelay.observability.logging import log_event
from chatrelay.util.logger import logger
from chatrelay.util.masking import describe_data_url

_JSON_MEDIA_TYPES = {"application/json"}


def _is_json_content_type(raw: str) -> bool:
    media_type = (raw or "").split(";", 1)[0].strip().lower()
    return media_type in _JSON_MEDIA_TYPES or media_type.endswith("+json")


def _should_stream(payload: dict[str, Any]) -> bool:
    return bool(payload.get("stream") is True)


def _error_response(exc: ChatRelayError, request_id: str) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.message},
        headers={"x-request-id": request_id},
    )


def parse_chat_payload(payload: Any) -> UnifiedChatRequest:
    """Validate the inbound ``{model, messages, image?, stream?}`` body."""
    if not isinstance(payload, dict):
        raise MalformedRequestError("request body must be a JSON object")

    model = payload.get("model")
    if not isinstance(model, str) or not model.strip():
        raise InvalidRequestError("model is required")

    messages = payload.get("messages")
    if not isinstance(messages, list) or not messages:
        raise InvalidRequestError("messages must be a non-empty list")

    try:
        turns = tuple(ChatTurn.model_validate(item) for item in messages)
    except ValidationError as exc:
        first = exc.errors()[0] if exc.errors() else {}
        location = ".".join(str(part) for part in first.get("loc", ()))
        raise InvalidRequestError(f"invalid message {location}: {first.get('msg', 'invalid')}".strip()) from exc

    return UnifiedChatRequest(
        provider_id=model.strip(),
        turns=turns,
        attachment=resolve_attachment(payload.get("image")),
        wants_stream=_should_stream(payload),
    )


async def _read_payload(request: Request) -> Any:
    if not _is_json_content_type(request.headers.get("content-type", "")):
        raise UnsupportedMediaTypeError()
    raw = await request.body()
    try:
        return json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise MalformedRequestError() from exc


async def _execute_buffered(
    spec: ProviderSpec,
    adapter: ProviderAdapter,
    descriptor: ProviderRequestDescriptor,
    request_id: str,
) -> JSONResponse:
    async with open_upstream(descriptor, spec.name) as upstream:
        body = await upstream.read_json()
    reply = adapter.unwrap_reply(body)
    return JSONResponse(status_code=200, content={"reply": reply}, headers={"x-request-id": request_id})


async def _execute_stream(
    spec: ProviderSpec,
    adapter: ProviderAdapter,
    descriptor: ProviderRequestDescriptor,
    request_id: str,
    started: float,
) -> Response:
    exit_stack = AsyncExitStack()
    # 先建立上游连接：非 2xx 在这里抛出，仍可返回 JSON 错误信封
    upstream = await exit_stack.enter_async_context(open_upstream(descriptor, spec.name))
    normalizer = adapter.new_stream_normalizer()
    logger.debug(
        "chat stream open request_id=%s provider=%s upstream_status=%s passthrough=%s",
        request_id,
        spec.name,
        upstream.status_code,
        adapter.native_stream_is_canonical,
    )

    async def stream_generator() -> AsyncGenerator[bytes, None]:
        frames = 0
        outcome = "completed"
        try:
            async for frame in normalize_stream(normalizer, upstream.iter_bytes()):
                frames += 1
                yield frame
        except ChatRelayError as exc:
            outcome = "upstream_error"
            logger.error("chat stream upstream failure request_id=%s error=%s", request_id, exc.message)
            yield _stream_error_sse_chunk(exc.message)
            yield _stream_done_sse_chunk()
        except BaseException:
            # 客户端断开：不补发 [DONE]，只负责关闭上游连接
            outcome = "cancelled"
            raise
        finally:
            await exit_stack.aclose()
            log_event(
                "chat_stream_finished",
                request_id=request_id,
                provider=spec.name,
                frames=frames,
                outcome=outcome,
                duration_ms=int((time.monotonic() - started) * 1000),
            )

    response = _build_streaming_response(stream_generator(), on_close=exit_stack.aclose)
    response.headers["x-request-id"] = request_id
    return response


async def handle_chat(request: Request) -> Response:
    request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
    started = time.monotonic()
    try:
        payload = await _read_payload(request)
        unified = parse_chat_payload(payload)
        spec, adapter, descriptor = build_provider_request(unified)
        logger.info(
            "chat request request_id=%s provider=%s model=%s turns=%d stream=%s image=%s",
            request_id,
            spec.name,
            adapter.model,
            len(unified.turns),
            unified.wants_stream,
            describe_data_url(unified.attachment.data_url) if unified.attachment else "none",
        )
        if unified.wants_stream:
            return await _execute_stream(spec, adapter, descriptor, request_id, started)
        response = await _execute_buffered(spec, adapter, descriptor, request_id)
    except ChatRelayError as exc:
        logger.warning(
            "chat request failed request_id=%s status=%s error=%s",
            request_id,
            exc.status_code,
            exc.message,
        )
        return _error_response(exc, request_id)
    except Exception:
        logger.exception("chat request crashed request_id=%s", request_id)
        return _error_response(ChatRelayError("internal error"), request_id)

    log_event(
        "chat_reply",
        request_id=request_id,
        provider=spec.name,
        outcome="completed",
        duration_ms=int((time.monotonic() - started) * 1000),
    )
    return response
