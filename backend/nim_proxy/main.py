import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Optional

import httpx
import uvicorn
from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import ValidationError
from starlette.background import BackgroundTask

from .catalog import OWNED_BY, SERVICE_NAME, list_aliases, resolve_model
from .config import Settings, get_settings
from .errors import register_exception_handlers
from .middleware import RequestLoggingMiddleware
from .providers.base import Provider
from .providers.nim import build_nim_from_settings, build_payload
from .schemas import ChatCompletion, ChatRequest, HealthResponse, ModelCard, ModelList

VERSION = "1.0.0"

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

router = APIRouter()


def get_provider(request: Request) -> Provider:
    return request.app.state.provider


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


@router.get("/health", response_model=HealthResponse)
def health():
    return HealthResponse(status="ok", service=SERVICE_NAME, models=list_aliases())


@router.get("/v1/models", response_model=ModelList)
def list_models():
    created = int(time.time())
    return ModelList(data=[ModelCard(id=alias, created=created, owned_by=OWNED_BY) for alias in list_aliases()])


@router.post("/v1/chat/completions", response_model=None)
async def chat_completions(
    req: ChatRequest,
    request: Request,
    provider: Provider = Depends(get_provider),
    settings: Settings = Depends(get_app_settings),
):
    upstream_model = resolve_model(req.model, default=settings.default_model, strict=settings.strict_models)
    payload = build_payload(req, upstream_model)
    request.state.upstream_model = upstream_model
    request.state.stream = payload["stream"]

    if payload["stream"]:
        upstream = await provider.open_stream(payload)
        return StreamingResponse(
            provider.relay(upstream),
            media_type="text/event-stream",
            headers=SSE_HEADERS,
            # covers a caller that disconnects before the first chunk is pulled
            background=BackgroundTask(upstream.aclose),
        )

    data = await provider.chat(payload)
    # echo the alias the caller asked for, not the NIM model id
    return ChatCompletion(
        id=f"chatcmpl-{uuid.uuid4().hex}",
        created=int(time.time()),
        model=req.model,
        choices=data.get("choices"),
        usage=data.get("usage"),
    )


def create_app(
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """Build the proxy app. ``transport`` replaces the network for the upstream client (tests)."""
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.provider = build_nim_from_settings(settings, transport=transport)
        logger.info("Proxying to %s with models %s", settings.nim_api_base, list_aliases())
        try:
            yield
        finally:
            await app.state.provider.aclose()
            logger.info("Shutting down...")

    app = FastAPI(title=SERVICE_NAME, version=VERSION, lifespan=lifespan)
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    if settings.enable_request_logging:
        app.add_middleware(RequestLoggingMiddleware)

    register_exception_handlers(app)
    app.include_router(router)
    return app


def run() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    try:
        settings = get_settings()
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]).upper() for err in e.errors())
        logger.error("Invalid configuration (%s): %s", fields, e)
        raise SystemExit(1)

    logging.getLogger().setLevel(settings.log_level.upper())
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    run()
