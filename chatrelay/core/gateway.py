"""FastAPI app entry."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse

from chatrelay.adapters.registry import describe_providers
from chatrelay.config.settings import settings
from chatrelay.core.handler import handle_chat
from chatrelay.core.upstream import close_upstream_async_client
from chatrelay.util.logger import logger


@asynccontextmanager
async def lifespan(_: FastAPI):
    logger.info("chatrelay starting env=%s", settings.env)
    try:
        yield
    finally:
        await close_upstream_async_client()
        logger.info("chatrelay stopped")


router = APIRouter()


@router.post("/chat")
async def chat(request: Request):
    return await handle_chat(request)


@router.get("/models")
async def models():
    return {"providers": describe_providers()}


app = FastAPI(title=settings.app_name, lifespan=lifespan)
app.include_router(router, prefix="/api")


def _blocked_response(status_code: int, detail: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": detail})


@app.middleware("http")
async def request_boundary_middleware(request: Request, call_next):
    if request.url.path == "/health":
        return await call_next(request)

    content_length_header = request.headers.get("content-length", "").strip()
    if settings.max_request_body_bytes > 0 and request.method.upper() == "POST" and content_length_header:
        try:
            content_length = int(content_length_header)
        except ValueError:
            logger.warning("boundary reject invalid content-length path=%s", request.url.path)
            return _blocked_response(400, "invalid content-length")
        if content_length > settings.max_request_body_bytes:
            logger.warning(
                "boundary reject oversize request content_length=%s max=%s path=%s",
                content_length,
                settings.max_request_body_bytes,
                request.url.path,
            )
            return _blocked_response(413, "request body too large")

    try:
        return await call_next(request)
    except Exception:  # pragma: no cover - fail-safe
        logger.exception("gateway unhandled exception path=%s", request.url.path)
        return _blocked_response(500, "internal error")


@app.get("/health")
async def health():
    return {"status": "ok"}


def main() -> None:
    import uvicorn

    uvicorn.run("chatrelay.core.gateway:app", host=settings.host, port=settings.port, log_level=settings.log_level)
