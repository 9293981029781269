"""
HTTP transports for the Morph API.
"""

from dataclasses import dataclass
from typing import Optional

import httpx

from shared.errors import MorphTransportError, TransportErrorKind
from shared.logging import get_logger


HEADERS = {"Accept": "application/json"}


@dataclass(frozen=True)
class TransportResponse:
    """Status and raw body of one upstream GET."""

    status_code: int
    content: bytes


class HttpxTransport:
    """Blocking GETs over a pooled ``httpx.Client``."""

    def __init__(self, timeout: float = 10.0, client: Optional[httpx.Client] = None):
        self.logger = get_logger("morph.transport")
        self._owns_client = client is None
        self.client = client or httpx.Client(timeout=timeout)

    def get(self, url: str) -> TransportResponse:
        try:
            response = self.client.get(url, headers=HEADERS)
        except httpx.HTTPError as e:
            self.logger.debug("Morph transport failure", url=url, error=str(e))
            raise MorphTransportError(
                TransportErrorKind.NETWORK,
                f"Error communicating with Morph API: {e}",
                details={"url": url}
            ) from e
        return TransportResponse(status_code=response.status_code, content=response.content)

    def close(self) -> None:
        if self._owns_client:
            self.client.close()


class AsyncHttpxTransport:
    """Non-blocking GETs over a pooled ``httpx.AsyncClient``."""

    def __init__(self, timeout: float = 10.0, client: Optional[httpx.AsyncClient] = None):
        self.logger = get_logger("morph.transport")
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def get(self, url: str) -> TransportResponse:
        try:
            response = await self.client.get(url, headers=HEADERS)
        except httpx.HTTPError as e:
            self.logger.debug("Morph transport failure", url=url, error=str(e))
            raise MorphTransportError(
                TransportErrorKind.NETWORK,
                f"Error communicating with Morph API: {e}",
                details={"url": url}
            ) from e
        return TransportResponse(status_code=response.status_code, content=response.content)

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()
