import httpx
import pytest

from chatrelay.config.settings import settings
from chatrelay.core import upstream
from chatrelay.core.errors import RateLimitedError, UpstreamRejectedError, UpstreamUnreachableError
from chatrelay.core.models import ProviderRequestDescriptor
from chatrelay.util.masking import mask_url


def _descriptor() -> ProviderRequestDescriptor:
    return ProviderRequestDescriptor(
        url="https://upstream.example.com/v1/chat/completions",
        headers={"Content-Type": "application/json", "Authorization": "Bearer secret"},
        body={"model": "gpt-test", "messages": [{"role": "user", "content": "hello"}]},
    )


@pytest.fixture
def install_transport(monkeypatch):
    def _install(handler):
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        monkeypatch.setattr(upstream, "_upstream_async_client", client)
        return client

    return _install


@pytest.mark.asyncio
async def test_open_upstream_posts_descriptor_and_returns_unread_body(install_transport):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["auth"] = request.headers.get("authorization")
        seen["body"] = request.content
        return httpx.Response(200, json={"choices": [{"message": {"content": "hey"}}]})

    install_transport(handler)
    async with upstream.open_upstream(_descriptor(), "openai") as response:
        assert response.status_code == 200
        body = await response.read_json()
    assert body["choices"][0]["message"]["content"] == "hey"
    assert seen["method"] == "POST"
    assert seen["auth"] == "Bearer secret"
    assert seen["body"] == _descriptor().encoded_body()


@pytest.mark.asyncio
async def test_upstream_body_can_only_be_consumed_once(install_transport):
    install_transport(lambda request: httpx.Response(200, content=b"data: [DONE]\n\n"))
    async with upstream.open_upstream(_descriptor(), "openai") as response:
        chunks = [chunk async for chunk in response.iter_bytes()]
        assert b"".join(chunks) == b"data: [DONE]\n\n"
        with pytest.raises(RuntimeError):
            await response.read_json()


@pytest.mark.asyncio
async def test_non_2xx_raises_rejected_with_truncated_raw_text(install_transport, monkeypatch):
    monkeypatch.setattr(settings, "upstream_error_detail_chars", 500)
    install_transport(lambda request: httpx.Response(400, text="<html>" + "x" * 1000))
    with pytest.raises(UpstreamRejectedError) as exc_info:
        async with upstream.open_upstream(_descriptor(), "openai"):
            pass
    error = exc_info.value
    assert not isinstance(error, RateLimitedError)
    assert error.upstream_status == 400
    assert error.detail.startswith("<html>")
    assert len(error.detail) == 500
    assert error.status_code == 502


@pytest.mark.asyncio
async def test_429_is_rate_limited(install_transport):
    install_transport(lambda request: httpx.Response(429, json={"error": {"message": "quota"}}))
    with pytest.raises(RateLimitedError) as exc_info:
        async with upstream.open_upstream(_descriptor(), "gemini"):
            pass
    assert exc_info.value.status_code == 429
    assert exc_info.value.upstream_status == 429
    assert "try again later" in exc_info.value.message
    assert "quota" in exc_info.value.detail


@pytest.mark.asyncio
async def test_connect_error_is_unreachable(install_transport):
    def handler(request):
        raise httpx.ConnectError("dns lookup failed", request=request)

    install_transport(handler)
    with pytest.raises(UpstreamUnreachableError) as exc_info:
        async with upstream.open_upstream(_descriptor(), "openai"):
            pass
    assert "dns lookup failed" in exc_info.value.message
    assert exc_info.value.status_code == 502


@pytest.mark.asyncio
async def test_timeout_is_unreachable_with_gateway_timeout_status(install_transport):
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    install_transport(handler)
    with pytest.raises(UpstreamUnreachableError) as exc_info:
        async with upstream.open_upstream(_descriptor(), "openai"):
            pass
    assert exc_info.value.timed_out is True
    assert exc_info.value.status_code == 504


@pytest.mark.asyncio
async def test_close_upstream_async_client_resets_shared_client(monkeypatch):
    monkeypatch.setattr(upstream, "_upstream_async_client", None)
    first = await upstream._get_upstream_async_client()
    assert first is await upstream._get_upstream_async_client()
    await upstream.close_upstream_async_client()
    assert upstream._upstream_async_client is None


def test_mask_url_hides_query_key():
    masked = mask_url("https://gemini.example/v1beta/models/m:generateContent?alt=sse&key=AIzaSecretValue")
    assert "AIzaSecretValue" not in masked
    assert "alt=sse" in masked
