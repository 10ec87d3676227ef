import json
from typing import Any, Callable, Dict, List

import httpx
import pytest
from fastapi.testclient import TestClient

from nim_proxy.config import Settings
from nim_proxy.main import create_app

NIM_BASE = "https://nim.test/v1"

COMPLETION = {
    "id": "nim-123",
    "object": "chat.completion",
    "created": 1700000000,
    "model": "deepseek-ai/deepseek-v3.2",
    "choices": [
        {
            "index": 0,
            "message": {"role": "assistant", "content": "Hello from NIM"},
            "finish_reason": "stop",
        }
    ],
    "usage": {"prompt_tokens": 10, "completion_tokens": 4, "total_tokens": 14},
}


class FakeNIM:
    """Records what the proxy sends and answers with ``responder``."""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.responder: Callable[[httpx.Request], httpx.Response] = (
            lambda request: httpx.Response(200, json=COMPLETION)
        )

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responder(request)

    @property
    def last_payload(self) -> Dict[str, Any]:
        return json.loads(self.requests[-1].content)


def make_settings(**overrides) -> Settings:
    values = {
        "nim_api_key": "test-key",
        "nim_api_base": NIM_BASE,
        "strict_models": False,
        "enable_request_logging": True,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def nim() -> FakeNIM:
    return FakeNIM()


@pytest.fixture
def make_client(nim):
    clients = []

    def _make(**overrides) -> TestClient:
        app = create_app(make_settings(**overrides), transport=httpx.MockTransport(nim))
        client = TestClient(app)
        client.__enter__()
        clients.append(client)
        return client

    yield _make
    for client in clients:
        client.__exit__(None, None, None)


@pytest.fixture
def client(make_client) -> TestClient:
    return make_client()
