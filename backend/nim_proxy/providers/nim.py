import json
import logging
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from ..config import Settings
from ..errors import UPSTREAM_FALLBACK_MESSAGE, UpstreamError, extract_upstream_message
from ..schemas import ChatRequest
from .base import Provider

logger = logging.getLogger(__name__)

DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 4096


def build_payload(req: ChatRequest, upstream_model: str) -> Dict[str, Any]:
    """
    Body sent to NIM. Defaults only fill fields that are absent or null,
    so an explicit ``temperature: 0`` survives.
    """
    payload: Dict[str, Any] = dict(req.model_extra or {})
    payload.update({
        "model": upstream_model,
        "messages": req.messages,
        "temperature": req.temperature if req.temperature is not None else DEFAULT_TEMPERATURE,
        "max_tokens": req.max_tokens if req.max_tokens is not None else DEFAULT_MAX_TOKENS,
        "stream": req.stream if req.stream is not None else False,
    })
    return payload


class NIMProvider(Provider):
    """
    NVIDIA NIM speaks OpenAI-compatible Chat Completions:
    POST {BASE_URL}/chat/completions with a bearer key.
    Non-streamed replies are JSON; streamed replies are SSE ('data: {...}\\n\\n')
    which we hand back byte for byte.
    """
    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: Optional[httpx.Timeout] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        # no connection cap: every inbound request gets its own upstream call right away
        self._client = httpx.AsyncClient(
            timeout=timeout,
            limits=httpx.Limits(max_connections=None, max_keepalive_connections=20),
            transport=transport,
        )

    @property
    def url(self) -> str:
        return f"{self.base_url}/chat/completions"

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    async def chat(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            r = await self._client.post(self.url, headers=self._headers(), json=payload)
        except httpx.HTTPError as e:
            logger.error("NIM request failed: %s", e)
            raise UpstreamError() from e

        if r.is_error:
            raise self._status_error(r.status_code, r.content)
        try:
            data = r.json()
        except ValueError as e:
            logger.error("NIM returned a non-JSON body (status %s): %r", r.status_code, r.content[:500])
            raise UpstreamError() from e
        if not isinstance(data, dict):
            logger.error("NIM returned unexpected JSON: %r", data)
            raise UpstreamError()
        return data

    async def open_stream(self, payload: Dict[str, Any]) -> httpx.Response:
        request = self._client.build_request("POST", self.url, headers=self._headers(), json=payload)
        try:
            r = await self._client.send(request, stream=True)
        except httpx.HTTPError as e:
            logger.error("NIM stream request failed: %s", e)
            raise UpstreamError() from e

        if r.is_error:
            try:
                body = await r.aread()
            except httpx.HTTPError:
                body = b""
            finally:
                await r.aclose()
            raise self._status_error(r.status_code, body)
        return r

    async def relay(self, response: httpx.Response) -> AsyncIterator[bytes]:
        # Cancellation (caller went away) lands here too; the finally closes upstream.
        try:
            async for chunk in response.aiter_bytes():
                yield chunk
        except httpx.HTTPError as e:
            logger.error("NIM stream interrupted: %s", e)
            yield sse_error(UPSTREAM_FALLBACK_MESSAGE)
        finally:
            await response.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def _status_error(self, status_code: int, body: bytes) -> UpstreamError:
        logger.error("NIM responded %s: %r", status_code, body[:500])
        try:
            decoded = json.loads(body) if body else None
        except ValueError:
            decoded = None
        return UpstreamError(extract_upstream_message(decoded), upstream_status=status_code)


def sse_error(message: str) -> bytes:
    data = {"error": {"message": message, "type": "proxy_error"}}
    return f"data: {json.dumps(data, ensure_ascii=False)}\n\n".encode("utf-8")


def build_nim_from_settings(
    settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None
) -> NIMProvider:
    timeout = httpx.Timeout(settings.request_timeout, connect=settings.connect_timeout, pool=None)
    return NIMProvider(
        base_url=settings.nim_api_base,
        api_key=settings.nim_api_key,
        timeout=timeout,
        transport=transport,
    )
