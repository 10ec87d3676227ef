"""
Request logging middleware.

One JSON line when a request arrives and one when its response starts. Chat
completions also carry the resolved NIM model and whether the reply streams;
streamed replies get a third line once the relay ends, with the byte count
and time to last byte.
"""
import json
import logging
import time
from typing import Any, AsyncIterator, Callable, Dict

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, ignore_paths: tuple = ()):
        super().__init__(app)
        self.ignore_paths = ignore_paths or ("/health", "/favicon.ico")

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in self.ignore_paths:
            return await call_next(request)

        start_time = time.time()
        logger.info(json.dumps({
            "type": "request",
            "method": request.method,
            "path": request.url.path,
            "client_ip": client_ip(request),
            "user_agent": request.headers.get("user-agent"),
        }))

        response = await call_next(request)

        process_time = time.time() - start_time
        log = {
            "type": "response",
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "process_time_ms": round(process_time * 1000, 2),
        }
        # set by the chat completions route
        upstream_model = getattr(request.state, "upstream_model", None)
        if upstream_model is not None:
            log["upstream_model"] = upstream_model
            log["stream"] = bool(getattr(request.state, "stream", False))

        _log_by_status(response.status_code, log)
        response.headers["X-Process-Time"] = str(process_time)

        if log.get("stream") and response.status_code < 400:
            response.body_iterator = self._count_stream(response.body_iterator, log, start_time)
        return response

    async def _count_stream(
        self, body: AsyncIterator[bytes], log: Dict[str, Any], start_time: float
    ) -> AsyncIterator[bytes]:
        relayed = 0
        completed = False
        try:
            async for chunk in body:
                relayed += len(chunk)
                yield chunk
            completed = True
        finally:
            logger.info(json.dumps({
                **log,
                "type": "stream_end",
                "bytes": relayed,
                "completed": completed,
                "duration_ms": round((time.time() - start_time) * 1000, 2),
            }))


def _log_by_status(status_code: int, log: Dict[str, Any]) -> None:
    if status_code >= 500:
        logger.error(json.dumps(log))
    elif status_code >= 400:
        logger.warning(json.dumps(log))
    else:
        logger.info(json.dumps(log))


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client:
        return request.client.host
    return "unknown"
