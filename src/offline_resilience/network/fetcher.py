from __future__ import annotations

import asyncio
import logging
from typing import Mapping, Optional, Protocol

import aiohttp
from multidict import CIMultiDict

from offline_resilience.config.models import NetworkSettings
from offline_resilience.core.errors import NetworkError
from offline_resilience.core.models import HttpRequest, HttpResponse

logger = logging.getLogger(__name__)

# Headers owned by the transport; everything else (Authorization included) is forwarded verbatim.
_HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailers",
        "transfer-encoding",
        "upgrade",
        "host",
        "content-length",
    }
)


def forwardable_headers(headers: Mapping[str, str]) -> CIMultiDict:
    return CIMultiDict(
        (name, value) for name, value in headers.items() if name.lower() not in _HOP_BY_HOP_HEADERS
    )


class Fetcher(Protocol):
    async def fetch(self, request: HttpRequest) -> HttpResponse:
        """Send the request to the network. Raises NetworkError on transport failure."""
        ...


class AiohttpFetcher:
    def __init__(self, settings: NetworkSettings = NetworkSettings()) -> None:
        self._settings = settings
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self) -> AiohttpFetcher:
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()

    async def start(self) -> None:
        if self._session and not self._session.closed:
            return
        timeout = aiohttp.ClientTimeout(total=self._settings.timeout_seconds)
        # Compressed bodies are cached as received so headers and body stay consistent.
        self._session = aiohttp.ClientSession(timeout=timeout, auto_decompress=False)

    async def stop(self) -> None:
        if self._session:
            await self._session.close()
            self._session = None

    async def fetch(self, request: HttpRequest) -> HttpResponse:
        if not self._session or self._session.closed:
            await self.start()
        assert self._session is not None

        logger.debug("Fetching from network. method=%s url=%s", request.method, request.url)
        try:
            async with self._session.request(
                request.method,
                request.url,
                headers=forwardable_headers(request.headers),
                data=request.body or None,
                allow_redirects=False,
            ) as response:
                body = await response.read()
                headers = forwardable_headers(response.headers)
                return HttpResponse(status=response.status, headers=headers, body=body, url=request.url)
        except asyncio.TimeoutError as e:
            raise NetworkError(request.url, "timeout") from e
        except aiohttp.ClientError as e:
            raise NetworkError(request.url, str(e) or type(e).__name__) from e
        except OSError as e:
            raise NetworkError(request.url, str(e)) from e
