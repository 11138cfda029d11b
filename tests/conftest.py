"""Shared test fixtures for shellcache.

Provides a scriptable fake origin server (served through
:class:`httpx.MockTransport`), generation configs, in-memory and disk stores,
isolated XDG directories, and output-state management.  These fixtures are
automatically discovered by pytest and available to all test modules.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

import httpx
import pytest

from shellcache.models import GenerationConfig
from shellcache.output import reset_output
from shellcache.store import DiskStore, MemoryStore
from shellcache.transport import HttpxTransport


APP_ORIGIN = "https://app.example.com"
CDN_HOST = "cdn.example.net"
CDN_LIB = f"https://{CDN_HOST}/lib.js"


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager and the shellcache log handler after every test.

    The OutputManager caches references to sys.stdout/sys.stderr at
    creation time; CliRunner swaps those streams per invocation.
    """
    yield
    reset_output()


# ---------------------------------------------------------------------------
# Fake origin
# ---------------------------------------------------------------------------


class FakeOrigin:
    """Scriptable set of origins behind an :class:`httpx.MockTransport`.

    Unknown URLs answer ``404``.  Setting :attr:`offline` (or listing a URL
    in :attr:`unreachable`) makes the fetch raise :class:`httpx.ConnectError`,
    which the transport reports as a transport failure.  URLs in
    :attr:`corrupt` answer a gzip-encoded header over a body that is not gzip.
    """

    def __init__(self) -> None:
        self.routes: dict[str, tuple[int, bytes, dict[str, str]]] = {}
        self.calls: list[str] = []
        self.offline = False
        self.unreachable: set[str] = set()
        self.corrupt: set[str] = set()

    def add(
        self,
        url: str,
        body: bytes = b"",
        status: int = 200,
        headers: Optional[dict[str, str]] = None,
    ) -> None:
        self.routes[str(httpx.URL(url))] = (status, body, headers or {})

    def count(self, url: str) -> int:
        return self.calls.count(str(httpx.URL(url)))

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.calls.append(url)
        if self.offline or url in self.unreachable:
            raise httpx.ConnectError("network unreachable", request=request)
        if url in self.corrupt:
            return httpx.Response(
                200, headers={"content-encoding": "gzip"}, stream=httpx.ByteStream(b"garbage")
            )
        route = self.routes.get(url)
        if route is None:
            return httpx.Response(404, content=b"not found")
        status, body, headers = route
        return httpx.Response(status, content=body, headers=headers)

    def transport(self) -> HttpxTransport:
        return HttpxTransport(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def origin() -> FakeOrigin:
    """An online origin serving a small app shell and one CDN library."""
    o = FakeOrigin()
    o.add(f"{APP_ORIGIN}/", b"<html>shell v1</html>", headers={"content-type": "text/html"})
    o.add(f"{APP_ORIGIN}/index.html", b"<html>shell v1</html>", headers={"content-type": "text/html"})
    o.add(f"{APP_ORIGIN}/app.js", b"console.log('v1')")
    o.add(f"{APP_ORIGIN}/app.js?v=16", b"console.log('v1')")
    o.add(f"{APP_ORIGIN}/app.css", b"body { color: black }")
    o.add(CDN_LIB, b"window.lib = 1")
    return o


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@pytest.fixture
def config() -> GenerationConfig:
    return GenerationConfig(
        version="v1",
        app_origin=APP_ORIGIN,
        pinned_primary=["/", "/index.html", "/app.js?v=16", "/app.css"],
        pinned_secondary=[CDN_LIB],
        allow_list=[CDN_HOST],
    )


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def disk_store(tmp_path: Path) -> DiskStore:
    s = DiskStore(tmp_path / "store")
    yield s
    asyncio.run(s.close())


@pytest.fixture
def isolated_dirs(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate XDG directories and the working directory under tmp_path.

    Clears the SHELLCACHE_* environment variables so a developer's setup
    never leaks into a test.

    Returns:
        The tmp_path root directory for additional file creation.
    """
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path / "cache"))
    for var in ["SHELLCACHE_CONFIG", "SHELLCACHE_VERSION", "SHELLCACHE_STORE"]:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path
