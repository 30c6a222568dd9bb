"""HTTP transport used to deliver payloads to the collector."""

from dataclasses import dataclass
from typing import Mapping, Optional, Protocol

import httpx
import structlog

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class TransportResponse:
    """Status code and raw body returned by the collector."""

    status_code: int
    body: bytes = b""


class Transport(Protocol):
    """Anything able to POST a body with headers."""

    async def post(self, url: str, headers: Mapping[str, str], body: bytes) -> TransportResponse:
        ...

    async def aclose(self) -> None:
        ...


class HttpxTransport:
    """
    Transport backed by httpx.AsyncClient.

    Timeouts are enforced here; the client itself never cancels a send.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ):
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def post(self, url: str, headers: Mapping[str, str], body: bytes) -> TransportResponse:
        response = await self.client.post(url, content=body, headers=dict(headers))
        logger.debug("collector_response", url=url, status_code=response.status_code)
        return TransportResponse(status_code=response.status_code, body=response.content)

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()
