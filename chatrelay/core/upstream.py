"""
上游 HTTP 调用与结果分类。

``open_upstream`` yields an :class:`UpstreamResponse` only for 2xx answers;
the body is left unread so the caller picks streamed or buffered reading
exactly once.
"""

from __future__ import annotations

import asyncio
import json
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, AsyncIterator

import httpx

from chatrelay.config.settings import settings
from chatrelay.core.errors import RateLimitedError, UpstreamRejectedError, UpstreamUnreachableError
from chatrelay.core.models import ProviderRequestDescriptor
from chatrelay.util.logger import logger
from chatrelay.util.masking import mask_url

_upstream_async_client: httpx.AsyncClient | None = None
_upstream_client_lock: asyncio.Lock | None = None


def _upstream_http_limits() -> httpx.Limits:
    return httpx.Limits(
        max_connections=max(10, int(settings.upstream_max_connections)),
        max_keepalive_connections=max(5, int(settings.upstream_max_keepalive_connections)),
    )


def _upstream_http_timeout() -> httpx.Timeout:
    timeout = float(settings.upstream_timeout_seconds)
    return httpx.Timeout(connect=timeout, read=timeout, write=timeout, pool=timeout)


async def _get_upstream_async_client() -> httpx.AsyncClient:
    global _upstream_async_client, _upstream_client_lock
    if _upstream_async_client is not None:
        return _upstream_async_client
    if _upstream_client_lock is None:
        _upstream_client_lock = asyncio.Lock()
    async with _upstream_client_lock:
        if _upstream_async_client is None:
            _upstream_async_client = httpx.AsyncClient(
                timeout=_upstream_http_timeout(),
                limits=_upstream_http_limits(),
            )
    return _upstream_async_client


async def close_upstream_async_client() -> None:
    global _upstream_async_client
    if _upstream_async_client is not None:
        await _upstream_async_client.aclose()
        _upstream_async_client = None


def _safe_error_detail(text: str) -> str:
    limit = max(1, int(settings.upstream_error_detail_chars))
    detail = (text or "").strip()
    return detail[:limit] if detail else "empty response body"


class UpstreamResponse:
    """Exclusively owned 2xx upstream response; its body can be consumed once."""

    def __init__(self, response: httpx.Response, provider: str) -> None:
        self._response = response
        self.provider = provider
        self._consumed = False

    @property
    def status_code(self) -> int:
        return self._response.status_code

    @property
    def headers(self) -> httpx.Headers:
        return self._response.headers

    def _claim(self) -> None:
        if self._consumed:
            raise RuntimeError("upstream response body already consumed")
        self._consumed = True

    async def iter_bytes(self) -> AsyncIterator[bytes]:
        self._claim()
        try:
            async for chunk in self._response.aiter_bytes():
                yield chunk
        except httpx.HTTPError as exc:
            detail = (str(exc) or "").strip() or type(exc).__name__
            logger.warning("upstream stream read failed provider=%s error=%s", self.provider, detail)
            raise UpstreamUnreachableError(
                f"upstream_unreachable: {detail}",
                timed_out=isinstance(exc, httpx.TimeoutException),
            ) from exc

    async def read_json(self) -> Any:
        self._claim()
        try:
            raw = await self._response.aread()
        except httpx.HTTPError as exc:
            detail = (str(exc) or "").strip() or type(exc).__name__
            raise UpstreamUnreachableError(
                f"upstream_unreachable: {detail}",
                timed_out=isinstance(exc, httpx.TimeoutException),
            ) from exc
        try:
            return json.loads(raw.decode("utf-8", errors="replace"))
        except json.JSONDecodeError:
            return raw.decode("utf-8", errors="replace")


@asynccontextmanager
async def open_upstream(
    descriptor: ProviderRequestDescriptor,
    provider: str,
) -> AsyncGenerator[UpstreamResponse, None]:
    body = descriptor.encoded_body()
    safe_url = mask_url(descriptor.url)
    logger.debug("upstream start provider=%s url=%s payload_bytes=%d", provider, safe_url, len(body))
    client = await _get_upstream_async_client()
    request = client.build_request(descriptor.method, descriptor.url, content=body, headers=descriptor.headers)
    try:
        response = await client.send(request, stream=True)
    except httpx.HTTPError as exc:
        detail = (str(exc) or "").strip() or "connection_failed_or_timeout"
        logger.warning("upstream http_error provider=%s url=%s error=%s", provider, safe_url, detail)
        raise UpstreamUnreachableError(
            f"upstream_unreachable: {detail}",
            timed_out=isinstance(exc, httpx.TimeoutException),
        ) from exc

    try:
        logger.debug("upstream connected provider=%s status=%s", provider, response.status_code)
        if not response.is_success:
            try:
                raw = await response.aread()
            except httpx.HTTPError:
                raw = b""
            detail = _safe_error_detail(raw.decode("utf-8", errors="replace"))
            logger.warning(
                "upstream rejected provider=%s status=%s detail=%s",
                provider,
                response.status_code,
                detail,
            )
            if response.status_code == 429:
                raise RateLimitedError(provider, response.status_code, detail)
            raise UpstreamRejectedError(provider, response.status_code, detail)
        yield UpstreamResponse(response, provider)
    finally:
        await response.aclose()
