"""
Proxy exceptions and the FastAPI handlers that turn them into OpenAI-shaped
error bodies: ``{"error": {"message": ..., "type": ...}}``.
"""
import logging
from typing import Any, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .schemas import ErrorDetail, ErrorResponse

logger = logging.getLogger(__name__)

UPSTREAM_FALLBACK_MESSAGE = "NIM request failed"
NOT_FOUND_MESSAGE = "Endpoint not found"


class ProxyError(Exception):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_type = "proxy_error"
    code: Optional[str] = None

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_response(self) -> ErrorResponse:
        return ErrorResponse(error=ErrorDetail(message=self.message, type=self.error_type, code=self.code))


class UpstreamError(ProxyError):
    """Any failure talking to NIM: transport error, non-2xx status, unreadable body."""

    def __init__(self, message: Optional[str] = None, upstream_status: Optional[int] = None):
        super().__init__(message or UPSTREAM_FALLBACK_MESSAGE)
        self.upstream_status = upstream_status


class UnknownModelError(ProxyError):
    status_code = status.HTTP_400_BAD_REQUEST
    error_type = "invalid_request_error"
    code = "model_not_found"

    def __init__(self, alias: Optional[str]):
        if alias is None:
            super().__init__("You must provide a model parameter")
        else:
            super().__init__(f"The model `{alias}` does not exist")
        self.alias = alias


def extract_upstream_message(body: Any) -> Optional[str]:
    """Best-effort pick of a human readable message out of an upstream error body."""
    if not isinstance(body, dict):
        return None
    error = body.get("error")
    if isinstance(error, dict):
        message = error.get("message")
        if isinstance(message, str) and message:
            return message
    elif isinstance(error, str) and error:
        return error
    detail = body.get("detail")
    if isinstance(detail, str) and detail:
        return detail
    return None


async def proxy_error_handler(request: Request, exc: ProxyError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_response().to_content())


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    # unmatched path or method
    if exc.status_code in (status.HTTP_404_NOT_FOUND, status.HTTP_405_METHOD_NOT_ALLOWED):
        body = ErrorResponse(error=ErrorDetail(message=NOT_FOUND_MESSAGE))
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content=body.to_content())
    body = ErrorResponse(error=ErrorDetail(message=str(exc.detail)))
    return JSONResponse(status_code=exc.status_code, content=body.to_content(), headers=exc.headers)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.warning("Invalid request body on %s: %s", request.url.path, exc.errors())
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = first.get("msg", "Invalid request body")
    if location:
        message = f"{location}: {message}"
    body = ErrorResponse(error=ErrorDetail(message=message, type="invalid_request_error"))
    return JSONResponse(status_code=422, content=body.to_content())


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ProxyError, proxy_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
