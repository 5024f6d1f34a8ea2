"""HTTP transport used for device descriptions and SOAP control requests."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import aiohttp

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HttpResponse:
    """Status and decoded body of an HTTP exchange."""

    status: int
    body: str


class HttpClient:
    """Thin wrapper around a lazily created aiohttp ClientSession.

    Any status code is returned to the caller; only network-level failures
    raise (``aiohttp.ClientError`` or ``asyncio.TimeoutError``).
    """

    def __init__(
        self,
        timeout: float = 10.0,
        session: aiohttp.ClientSession | None = None,
    ):
        """Initialize HTTP client.

        Args:
            timeout: Total request timeout in seconds
            session: Existing session to reuse (not closed by this client)

        """
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self._session

    async def get(self, url: str) -> HttpResponse:
        """Issue a GET request."""
        session = self._get_session()
        async with session.get(url) as resp:
            body = await resp.text(errors="replace")
            logger.debug("GET %s -> HTTP %d (%d bytes)", url, resp.status, len(body))
            return HttpResponse(resp.status, body)

    async def post(
        self,
        url: str,
        data: bytes,
        headers: dict[str, str],
    ) -> HttpResponse:
        """Issue a POST request with the given headers."""
        session = self._get_session()
        async with session.post(url, data=data, headers=headers) as resp:
            body = await resp.text(errors="replace")
            logger.debug("POST %s -> HTTP %d (%d bytes)", url, resp.status, len(body))
            return HttpResponse(resp.status, body)

    async def close(self) -> None:
        """Close the underlying session if this client created it."""
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None
