"""Network transport -- the only component that talks to origins.

:class:`Transport` is the boundary the policy engine and the version
manager fetch through.  Its contract is small:

* return an :class:`httpx.Response` with the body already read, for *any*
  HTTP status (a 404 or 500 is a response, not an error);
* stamp ``response.extensions["response_type"]`` (see
  :func:`~shellcache.responses.response_type`);
* raise :class:`~shellcache.exceptions.TransportFailure` when the origin
  could not be reached, or its answer could not be read (redirect loops,
  undecodable bodies).

:class:`HttpxTransport` implements it on top of :class:`httpx.AsyncClient`.
Tests pass an :class:`httpx.MockTransport` through the ``transport``
argument.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Optional

import httpx

from shellcache.exceptions import TransportFailure
from shellcache.models import Request, RequestConfig
from shellcache.responses import response_type

logger = logging.getLogger(__name__)


class Transport(ABC):
    """Performs network fetches on behalf of the engine."""

    @abstractmethod
    async def fetch(self, request: Request) -> httpx.Response:
        """Fetch *request* from the network.

        Raises:
            TransportFailure: The origin was unreachable or the fetch aborted.
        """
        ...

    async def aclose(self) -> None:
        """Release network resources.  Nothing to do by default."""

    async def __aenter__(self) -> Transport:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()


class HttpxTransport(Transport):
    """Asynchronous transport backed by :class:`httpx.AsyncClient`.

    Can be used as an async context manager; when it is not, the client is
    created on first use and released by :meth:`aclose`.

    Args:
        config: Timeout, SSL and redirect settings.
        transport: Optional :mod:`httpx` transport, e.g. an
            :class:`httpx.MockTransport` in tests.

    Example::

        async with HttpxTransport(RequestConfig(timeout=10)) as transport:
            response = await transport.fetch(Request(url="https://example.com/"))
    """

    def __init__(
        self,
        config: Optional[RequestConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._config = config or RequestConfig()
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> HttpxTransport:
        self._ensure_client()
        return self

    async def fetch(self, request: Request) -> httpx.Response:
        client = self._ensure_client()
        try:
            response = await client.send(
                request.to_httpx(),
                follow_redirects=self._config.follow_redirects,
            )
        except httpx.RequestError as exc:
            logger.debug("Fetch failed for %s %s: %s", request.method, request.url, exc)
            raise TransportFailure(f"{request.method} {request.url} failed: {exc}") from exc

        response_type(response, request)
        logger.debug(
            "Fetched %s %s -> %d (%s)",
            request.method,
            request.url,
            response.status_code,
            response.extensions.get("response_type"),
        )
        return response

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            kwargs: dict = {
                "timeout": self._config.timeout,
                "verify": self._config.verify_ssl,
            }
            if self._transport is not None:
                kwargs["transport"] = self._transport
            self._client = httpx.AsyncClient(**kwargs)
        return self._client
