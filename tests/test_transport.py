"""Tests for the httpx-backed transport."""

from __future__ import annotations

import httpx
import pytest

from shellcache.exceptions import TransportFailure
from shellcache.models import Request, RequestConfig, RequestMode
from shellcache.responses import BASIC, CORS, OPAQUE, get_response_type
from shellcache.transport import HttpxTransport


def _transport_from_handler(handler) -> HttpxTransport:
    """Create an HttpxTransport around an httpx.MockTransport."""
    return HttpxTransport(transport=httpx.MockTransport(handler))


class TestFetch:
    @pytest.mark.asyncio
    async def test_success_is_basic(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"ok")

        async with _transport_from_handler(handler) as transport:
            response = await transport.fetch(
                Request(url="https://app.example.com/app.js", mode=RequestMode.SAME_ORIGIN)
            )
        assert response.status_code == 200
        assert response.content == b"ok"
        assert get_response_type(response) == BASIC

    @pytest.mark.asyncio
    async def test_error_status_is_a_response(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, content=b"busy")

        async with _transport_from_handler(handler) as transport:
            response = await transport.fetch(Request(url="https://app.example.com/"))
        assert response.status_code == 503
        assert response.content == b"busy"

    @pytest.mark.asyncio
    async def test_connect_error_is_transport_failure(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        async with _transport_from_handler(handler) as transport:
            with pytest.raises(TransportFailure, match="refused"):
                await transport.fetch(Request(url="https://app.example.com/"))

    @pytest.mark.asyncio
    async def test_timeout_is_transport_failure(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        async with _transport_from_handler(handler) as transport:
            with pytest.raises(TransportFailure):
                await transport.fetch(Request(url="https://app.example.com/"))

    @pytest.mark.asyncio
    async def test_undecodable_body_is_transport_failure(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                headers={"content-encoding": "gzip"},
                stream=httpx.ByteStream(b"this is not gzip"),
            )

        async with _transport_from_handler(handler) as transport:
            with pytest.raises(TransportFailure) as exc_info:
                await transport.fetch(Request.navigate("https://app.example.com/"))
        assert isinstance(exc_info.value.__cause__, httpx.DecodingError)

    @pytest.mark.asyncio
    async def test_redirect_loop_is_transport_failure(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(302, headers={"location": str(request.url)})

        async with _transport_from_handler(handler) as transport:
            with pytest.raises(TransportFailure):
                await transport.fetch(Request(url="https://app.example.com/loop"))

    @pytest.mark.asyncio
    async def test_request_headers_and_method_are_sent(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(201)

        async with _transport_from_handler(handler) as transport:
            await transport.fetch(
                Request(method="post", url="https://app.example.com/api", headers={"x-a": "1"})
            )
        assert seen[0].method == "POST"
        assert seen[0].headers["x-a"] == "1"


class TestResponseTypes:
    @pytest.mark.asyncio
    async def test_cross_origin_no_cors_is_opaque(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"lib")

        async with _transport_from_handler(handler) as transport:
            response = await transport.fetch(
                Request(url="https://cdn.example.net/lib.js", mode=RequestMode.NO_CORS)
            )
        assert get_response_type(response) == OPAQUE

    @pytest.mark.asyncio
    async def test_redirect_to_other_origin_is_cors(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "app.example.com":
                return httpx.Response(302, headers={"location": "https://cdn.example.net/moved.js"})
            return httpx.Response(200, content=b"moved")

        async with _transport_from_handler(handler) as transport:
            response = await transport.fetch(
                Request(url="https://app.example.com/old.js", mode=RequestMode.SAME_ORIGIN)
            )
        assert response.content == b"moved"
        assert len(response.history) == 1
        assert get_response_type(response) == CORS

    @pytest.mark.asyncio
    async def test_redirects_not_followed_when_disabled(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(302, headers={"location": "https://app.example.com/new"})

        transport = HttpxTransport(
            RequestConfig(follow_redirects=False), transport=httpx.MockTransport(handler)
        )
        try:
            response = await transport.fetch(Request(url="https://app.example.com/old"))
        finally:
            await transport.aclose()
        assert response.status_code == 302
