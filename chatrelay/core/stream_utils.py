"""
流式 SSE 归一化与 chunk 构建。

Canonical frame: ``data: {"choices":[{"delta":{"content":...},"index":0,"finish_reason":null}]}\\n\\n``,
always terminated by a single ``data: [DONE]\\n\\n``.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from typing import Any, AsyncGenerator, AsyncIterable, Awaitable, Callable, Iterable

from fastapi.responses import StreamingResponse

from chatrelay.config.settings import settings
from chatrelay.util.logger import logger

_DONE_SENTINELS = (b"data: [DONE]", b"data:[DONE]")
_DONE_LINE_BYTES = max(len(item) for item in _DONE_SENTINELS) + 1
_FRAME_BOUNDARY = b"\n\n"


def _dump(payload: Any) -> str:
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":"))


def _stream_delta_sse_chunk(text: str) -> bytes:
    payload = {"choices": [{"delta": {"content": text}, "index": 0, "finish_reason": None}]}
    return f"data: {_dump(payload)}\n\n".encode("utf-8")


def _stream_error_sse_chunk(message: str) -> bytes:
    """SSE chunk 携带上游失败原因；客户端按 error 字段展示。"""
    detail = (message or "upstream_error").strip() or "upstream_error"
    return f"data: {_dump({'error': detail})}\n\n".encode("utf-8")


def _stream_done_sse_chunk() -> bytes:
    return b"data: [DONE]\n\n"


def _extract_sse_data_payload(segment: bytes) -> str | None:
    """Join the ``data:`` lines of one SSE event; None when it carries no data."""
    data_lines: list[str] = []
    for raw_line in segment.split(b"\n"):
        line = raw_line.strip()
        if not line.startswith(b"data:"):
            continue
        data_lines.append(line[5:].strip().decode("utf-8", errors="replace"))
    if not data_lines:
        return None
    return "\n".join(data_lines)


def _extract_gemini_text(event: Any) -> str:
    """``candidates[0].content.parts[0].text``; missing pieces count as empty."""
    if not isinstance(event, dict):
        return ""
    candidates = event.get("candidates")
    if not isinstance(candidates, list) or not candidates or not isinstance(candidates[0], dict):
        return ""
    content = candidates[0].get("content")
    if not isinstance(content, dict):
        return ""
    parts = content.get("parts")
    if not isinstance(parts, list) or not parts or not isinstance(parts[0], dict):
        return ""
    text = parts[0].get("text")
    return text if isinstance(text, str) else ""


class StreamNormalizer(ABC):
    """Convert a provider's native stream bytes into canonical SSE frames.

    ``feed`` is called once per network read, ``finish`` once at end-of-body.
    Neither is called after the client went away, so no terminator is
    produced for cancelled streams.
    """

    @abstractmethod
    def feed(self, chunk: bytes) -> list[bytes]:
        """Frames ready to send after one more read."""

    @abstractmethod
    def finish(self) -> list[bytes]:
        """Frames owed at end-of-body, ending with the terminator."""


class PassthroughNormalizer(StreamNormalizer):
    """Identity transform for upstreams already speaking the canonical format.

    Only watches for a ``[DONE]`` line (which may straddle reads) so that
    ``finish`` can append it when the upstream omitted it. The sentinel
    counts only as a whole line; the same bytes inside a delta do not.
    """

    def __init__(self) -> None:
        self._line = b""
        self._done_seen = False

    def feed(self, chunk: bytes) -> list[bytes]:
        if not chunk:
            return []
        if not self._done_seen:
            lines = (self._line + chunk).split(b"\n")
            if any(line.rstrip(b"\r") in _DONE_SENTINELS for line in lines[:-1]):
                self._done_seen = True
            # 只保留能判定是否为 [DONE] 行的前缀，缓冲保持有界
            self._line = lines[-1][:_DONE_LINE_BYTES]
        return [chunk]

    def finish(self) -> list[bytes]:
        if self._done_seen:
            return []
        if self._line.rstrip(b"\r") in _DONE_SENTINELS:
            # 上游以不带换行的 [DONE] 结尾：只补齐帧分隔符
            return [_FRAME_BOUNDARY]
        return [_stream_done_sse_chunk()]


class GeminiStreamNormalizer(StreamNormalizer):
    """Re-wrap Gemini ``alt=sse`` events as canonical delta frames.

    Events longer than ``max_frame_bytes`` are dropped whether they arrive in
    one read or many, so the output never depends on network chunking.
    """

    def __init__(self, max_frame_bytes: int | None = None) -> None:
        self._buffer = bytearray()
        self._discarding = False
        self._max_frame_bytes = max_frame_bytes or settings.max_stream_frame_bytes

    def feed(self, chunk: bytes) -> list[bytes]:
        if not chunk:
            return []
        self._buffer.extend(chunk)
        # 上游可能使用 \r\n；尾部单独的 \r 留在缓冲区，等下一次读取再合并
        if b"\r\n" in self._buffer:
            self._buffer = bytearray(self._buffer.replace(b"\r\n", b"\n"))

        frames: list[bytes] = []
        while True:
            boundary = self._buffer.find(_FRAME_BOUNDARY)
            if boundary < 0:
                break
            segment = bytes(self._buffer[:boundary])
            del self._buffer[: boundary + len(_FRAME_BOUNDARY)]
            if self._discarding:
                self._discarding = False
                continue
            if self._oversize(len(segment)):
                continue
            frame = self._convert_segment(segment)
            if frame is not None:
                frames.append(frame)

        # 未完成的事件后面最多挂着半个分隔符（"\n" 或 "\n\r"），丢弃时保留它
        if len(self._buffer) - len(_FRAME_BOUNDARY) > self._max_frame_bytes:
            self._oversize(len(self._buffer))
            del self._buffer[: -len(_FRAME_BOUNDARY)]
            self._discarding = True
        return frames

    def finish(self) -> list[bytes]:
        frames: list[bytes] = []
        remainder = bytes(self._buffer).strip()
        self._buffer.clear()
        if remainder and not self._discarding and not self._oversize(len(remainder)):
            frame = self._convert_segment(remainder)
            if frame is not None:
                frames.append(frame)
        self._discarding = False
        frames.append(_stream_done_sse_chunk())
        return frames

    def _oversize(self, size: int) -> bool:
        if size <= self._max_frame_bytes:
            return False
        logger.warning(
            "gemini stream frame exceeds limit, dropping buffered_bytes=%d max=%d",
            size,
            self._max_frame_bytes,
        )
        return True

    def _convert_segment(self, segment: bytes) -> bytes | None:
        data = _extract_sse_data_payload(segment)
        if data is None or data == "[DONE]":
            return None
        try:
            event = json.loads(data)
        except json.JSONDecodeError:
            logger.warning("skip malformed gemini stream frame bytes=%d", len(segment))
            return None
        return _stream_delta_sse_chunk(_extract_gemini_text(event))


async def normalize_stream(
    normalizer: StreamNormalizer,
    chunks: AsyncIterable[bytes],
) -> AsyncGenerator[bytes, None]:
    async for chunk in chunks:
        for frame in normalizer.feed(chunk):
            yield frame
    for frame in normalizer.finish():
        yield frame


class _UpstreamStreamingResponse(StreamingResponse):
    """StreamingResponse that releases the upstream once the ASGI call ends.

    The body generator's own cleanup never runs when the client leaves before
    the first chunk is pulled, so the response owns the final close as well.
    """

    def __init__(self, content: Any, *, on_close: Callable[[], Awaitable[None]], **kwargs: Any) -> None:
        super().__init__(content, **kwargs)
        self._on_close = on_close

    async def __call__(self, scope: Any, receive: Any, send: Any) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            await self._on_close()


def _build_streaming_response(
    generator: Iterable[bytes] | AsyncIterable[bytes],
    on_close: Callable[[], Awaitable[None]] | None = None,
) -> StreamingResponse:
    headers = {
        "Cache-Control": "no-cache",
        "Connection": "keep-alive",
        "X-Accel-Buffering": "no",
    }
    if on_close is None:
        return StreamingResponse(generator, media_type="text/event-stream", headers=headers)
    return _UpstreamStreamingResponse(generator, on_close=on_close, media_type="text/event-stream", headers=headers)
