from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict

import httpx


class Provider(ABC):
    @abstractmethod
    async def chat(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Return the upstream chat completion as a decoded JSON object.
        """
        raise NotImplementedError

    @abstractmethod
    async def open_stream(self, payload: Dict[str, Any]) -> httpx.Response:
        """
        Start a streamed completion. The returned response has a success status
        and an unread body; the caller must close it.
        """
        raise NotImplementedError

    @abstractmethod
    def relay(self, response: httpx.Response) -> AsyncIterator[bytes]:
        """
        Yield the raw byte chunks of an open stream, in order.
        """
        raise NotImplementedError

    async def aclose(self) -> None:
        return None
