"""Tests for the per-category caching strategies."""

from __future__ import annotations

import asyncio
import logging

import pytest

from shellcache.models import GenerationConfig, Request, RequestMode
from shellcache.responses import OPAQUE, get_response_type, is_cached, is_synthetic
from shellcache.runtime import Runtime, build_runtime
from shellcache.store import MemoryStore

APP_ORIGIN = "https://app.example.com"
CDN_LIB = "https://cdn.example.net/lib.js"


class FlakyStore(MemoryStore):
    """Memory store whose writes can be switched to fail."""

    def __init__(self) -> None:
        super().__init__()
        self.fail_writes = False

    def _write(self, backend, key, data):
        if self.fail_writes:
            raise OSError("quota exceeded")
        super()._write(backend, key, data)


class GatedStore(MemoryStore):
    """Memory store whose puts wait for :attr:`release` while :attr:`gated` is set."""

    def __init__(self) -> None:
        super().__init__()
        self.gated = False
        self.release = asyncio.Event()
        self.written: list[str] = []

    async def put(self, handle, key, response):
        if self.gated:
            await self.release.wait()
        await super().put(handle, key, response)
        self.written.append(key)


async def _activated(config: GenerationConfig, store, origin) -> Runtime:
    """Build a runtime and install + activate the configured generation."""
    runtime = build_runtime(config, store=store, transport=origin.transport())
    await runtime.versions.begin_install()
    await runtime.versions.activate(config.version)
    return runtime


def _asset(path: str) -> Request:
    return Request(url=f"{APP_ORIGIN}{path}", mode=RequestMode.SAME_ORIGIN)


# ------------------------------------------------------------------ #
# Interception boundaries
# ------------------------------------------------------------------ #


class TestPassthrough:
    @pytest.mark.asyncio
    async def test_non_get_is_never_intercepted(self, config, store, origin) -> None:
        async with await _activated(config, store, origin) as runtime:
            for url in (f"{APP_ORIGIN}/app.js", f"{APP_ORIGIN}/", CDN_LIB):
                assert await runtime.engine.handle(Request(method="POST", url=url)) is None

    @pytest.mark.asyncio
    async def test_respond_sends_passthrough_to_network(self, config, store, origin) -> None:
        origin.add(f"{APP_ORIGIN}/api/save", b"saved", status=201)
        async with await _activated(config, store, origin) as runtime:
            response = await runtime.engine.respond(
                Request(method="POST", url=f"{APP_ORIGIN}/api/save")
            )
        assert response.status_code == 201
        assert not is_cached(response)

    @pytest.mark.asyncio
    async def test_unlisted_host_is_not_intercepted(self, config, store, origin) -> None:
        async with await _activated(config, store, origin) as runtime:
            request = Request(url="https://tracker.example.org/pixel.gif")
            assert await runtime.engine.handle(request) is None

    @pytest.mark.asyncio
    async def test_nothing_is_intercepted_before_activation(self, config, store, origin) -> None:
        async with build_runtime(config, store=store, transport=origin.transport()) as runtime:
            await runtime.versions.begin_install()
            assert await runtime.engine.handle(Request.navigate(f"{APP_ORIGIN}/")) is None
            assert await runtime.engine.handle(_asset("/app.js")) is None


# ------------------------------------------------------------------ #
# Navigations: network first, fallback document
# ------------------------------------------------------------------ #


class TestNavigation:
    @pytest.mark.asyncio
    async def test_online_returns_network_response(self, config, store, origin) -> None:
        async with await _activated(config, store, origin) as runtime:
            origin.add(f"{APP_ORIGIN}/", b"<html>fresh</html>")
            response = await runtime.engine.handle(Request.navigate(f"{APP_ORIGIN}/"))
        assert response.content == b"<html>fresh</html>"
        assert not is_cached(response)

    @pytest.mark.asyncio
    async def test_error_status_is_passed_through(self, config, store, origin) -> None:
        async with await _activated(config, store, origin) as runtime:
            response = await runtime.engine.handle(Request.navigate(f"{APP_ORIGIN}/no/such/page"))
        assert response.status_code == 404
        assert response.content == b"not found"

    @pytest.mark.asyncio
    async def test_offline_serves_fallback_document(self, config, store, origin) -> None:
        async with await _activated(config, store, origin) as runtime:
            origin.offline = True
            for path in ("/", "/settings/profile?tab=2"):
                response = await runtime.engine.handle(Request.navigate(f"{APP_ORIGIN}{path}"))
                assert response.status_code == 200
                assert response.content == b"<html>shell v1</html>"
                assert is_cached(response)

    @pytest.mark.asyncio
    async def test_undecodable_body_serves_fallback_document(self, config, store, origin) -> None:
        async with await _activated(config, store, origin) as runtime:
            origin.corrupt.add(f"{APP_ORIGIN}/settings")
            response = await runtime.engine.handle(Request.navigate(f"{APP_ORIGIN}/settings"))
        assert response.status_code == 200
        assert response.content == b"<html>shell v1</html>"
        assert is_cached(response)

    @pytest.mark.asyncio
    async def test_offline_without_fallback_is_synthetic_504(self, store, origin) -> None:
        config = GenerationConfig(version="v1", app_origin=APP_ORIGIN, pinned_primary=["/app.js"])
        async with await _activated(config, store, origin) as runtime:
            origin.offline = True
            response = await runtime.engine.handle(Request.navigate(f"{APP_ORIGIN}/"))
        assert response.status_code == 504
        assert response.reason_phrase == "Offline"
        assert is_synthetic(response)


# ------------------------------------------------------------------ #
# Static assets: stale while revalidate
# ------------------------------------------------------------------ #


class TestStaleWhileRevalidate:
    @pytest.mark.asyncio
    async def test_cached_copy_is_returned_then_refreshed(self, config, store, origin) -> None:
        async with await _activated(config, store, origin) as runtime:
            origin.add(f"{APP_ORIGIN}/app.js?v=16", b"console.log('v1.1')")

            first = await runtime.engine.handle(_asset("/app.js?v=16"))
            assert first.content == b"console.log('v1')"
            assert is_cached(first)

            await runtime.tasks.drain()
            origin.offline = True
            second = await runtime.engine.handle(_asset("/app.js?v=16"))
        assert second.content == b"console.log('v1.1')"

    @pytest.mark.asyncio
    async def test_revalidation_always_hits_the_network(self, config, store, origin) -> None:
        async with await _activated(config, store, origin) as runtime:
            before = origin.count(f"{APP_ORIGIN}/app.css")
            await runtime.engine.handle(_asset("/app.css"))
            await runtime.tasks.drain()
        assert origin.count(f"{APP_ORIGIN}/app.css") == before + 1

    @pytest.mark.asyncio
    async def test_offline_replay_after_one_fetch(self, config, store, origin) -> None:
        origin.add(f"{APP_ORIGIN}/chunk.js?v=3", b"chunk()")
        async with await _activated(config, store, origin) as runtime:
            first = await runtime.engine.handle(_asset("/chunk.js?v=3"))
            assert first.content == b"chunk()"
            assert not is_cached(first)
            await runtime.tasks.drain()

            origin.offline = True
            replays = [await runtime.engine.handle(_asset("/chunk.js?v=3")) for _ in range(3)]
            await runtime.tasks.drain()
        assert [r.content for r in replays] == [b"chunk()"] * 3
        assert all(r.status_code == 200 for r in replays)

    @pytest.mark.asyncio
    async def test_query_is_ignored_on_lookup(self, config, store, origin) -> None:
        origin.add(f"{APP_ORIGIN}/data.json?x=1", b'{"x": 1}')
        async with await _activated(config, store, origin) as runtime:
            await runtime.engine.handle(_asset("/data.json?x=1"))
            await runtime.tasks.drain()
            origin.offline = True
            response = await runtime.engine.handle(_asset("/data.json?x=2"))
        assert response.content == b'{"x": 1}'

    @pytest.mark.asyncio
    async def test_miss_offline_asset_is_synthetic_504(self, config, store, origin) -> None:
        async with await _activated(config, store, origin) as runtime:
            origin.offline = True
            response = await runtime.engine.handle(_asset("/never-seen.js"))
        assert response.status_code == 504
        assert response.reason_phrase == "Offline"

    @pytest.mark.asyncio
    async def test_miss_offline_document_path_gets_fallback(self, config, store, origin) -> None:
        async with await _activated(config, store, origin) as runtime:
            origin.offline = True
            for path in ("/about", "/help.html"):
                response = await runtime.engine.handle(_asset(path))
                assert response.content == b"<html>shell v1</html>"

    @pytest.mark.asyncio
    async def test_error_response_is_returned_but_not_stored(self, config, store, origin) -> None:
        async with await _activated(config, store, origin) as runtime:
            response = await runtime.engine.handle(_asset("/missing.js"))
            assert response.status_code == 404
            await runtime.tasks.drain()
            primary = await store.open("shellcache-v1")
            assert "/missing.js" not in await store.keys(primary)

    @pytest.mark.asyncio
    async def test_refill_failure_is_not_propagated(
        self, config, origin, caplog: pytest.LogCaptureFixture
    ) -> None:
        store = FlakyStore()
        origin.add(f"{APP_ORIGIN}/late.js", b"late()")
        async with await _activated(config, store, origin) as runtime:
            failures: list[str] = []
            runtime.tasks.add_error_hook(lambda label, exc: failures.append(label))
            store.fail_writes = True

            with caplog.at_level(logging.WARNING, logger="shellcache"):
                response = await runtime.engine.handle(_asset("/late.js"))
                await runtime.tasks.drain()

        assert response.content == b"late()"
        assert runtime.tasks.failures == 1
        assert failures == ["refill shellcache-v1 /late.js"]
        assert "quota exceeded" in caplog.text

    @pytest.mark.asyncio
    async def test_refill_write_completes_after_response(self, config, origin) -> None:
        store = GatedStore()
        origin.add(f"{APP_ORIGIN}/lazy.js", b"lazy()")
        async with await _activated(config, store, origin) as runtime:
            store.gated = True
            response = await runtime.engine.handle(_asset("/lazy.js"))

            assert response.content == b"lazy()"
            assert "/lazy.js" not in store.written
            primary = await store.open("shellcache-v1")
            assert "/lazy.js" not in await store.keys(primary)

            store.release.set()
            await runtime.tasks.drain()
            assert "/lazy.js" in store.written
            assert "/lazy.js" in await store.keys(primary)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("refill_opaque, expected_status", [(False, 504), (True, 200)])
    async def test_opaque_refill_is_opt_in(
        self, store, origin, refill_opaque: bool, expected_status: int
    ) -> None:
        config = GenerationConfig(
            version="v1",
            app_origin=APP_ORIGIN,
            pinned_primary=["/index.html"],
            refill_opaque=refill_opaque,
        )
        # same-origin URL answered from a foreign origin: opaque for no-cors
        origin.add(
            f"{APP_ORIGIN}/icon.png", status=302, headers={"location": "https://img.example.org/icon.png"}
        )
        origin.add("https://img.example.org/icon.png", b"png")
        request = Request(url=f"{APP_ORIGIN}/icon.png", mode=RequestMode.NO_CORS)

        async with await _activated(config, store, origin) as runtime:
            first = await runtime.engine.handle(request)
            assert get_response_type(first) == OPAQUE
            await runtime.tasks.drain()

            origin.offline = True
            replay = await runtime.engine.handle(request)
        assert replay.status_code == expected_status


# ------------------------------------------------------------------ #
# Third parties: cache first
# ------------------------------------------------------------------ #


class TestCacheFirst:
    @pytest.mark.asyncio
    async def test_primed_resource_needs_no_network(self, config, store, origin) -> None:
        async with await _activated(config, store, origin) as runtime:
            calls_after_install = origin.count(CDN_LIB)
            for _ in range(3):
                response = await runtime.engine.handle(Request(url=CDN_LIB))
                assert response.content == b"window.lib = 1"
                assert is_cached(response)
        assert origin.count(CDN_LIB) == calls_after_install == 1

    @pytest.mark.asyncio
    async def test_miss_is_fetched_and_stored(self, config, store, origin) -> None:
        font = "https://cdn.example.net/font.woff2"
        origin.add(font, b"woff")
        async with await _activated(config, store, origin) as runtime:
            first = await runtime.engine.handle(Request(url=font))
            second = await runtime.engine.handle(Request(url=font))
        assert first.content == second.content == b"woff"
        assert get_response_type(first) == OPAQUE
        assert is_cached(second)
        assert origin.count(font) == 1

    @pytest.mark.asyncio
    async def test_offline_miss_is_third_party_unavailable(self, config, store, origin) -> None:
        async with await _activated(config, store, origin) as runtime:
            origin.offline = True
            response = await runtime.engine.handle(Request(url="https://cdn.example.net/x.js"))
        assert response.status_code == 504
        assert response.reason_phrase == "Third-Party Unavailable"

    @pytest.mark.asyncio
    async def test_cors_error_response_is_not_stored(self, config, store, origin) -> None:
        broken = "https://cdn.example.net/broken.js"
        origin.add(broken, b"", status=500)
        async with await _activated(config, store, origin) as runtime:
            for _ in range(2):
                response = await runtime.engine.handle(Request(url=broken, mode=RequestMode.CORS))
                assert response.status_code == 500
        assert origin.count(broken) == 2

    @pytest.mark.asyncio
    async def test_store_failure_still_returns_response(self, config, origin) -> None:
        store = FlakyStore()
        font = "https://cdn.example.net/font.woff2"
        origin.add(font, b"woff")
        async with await _activated(config, store, origin) as runtime:
            store.fail_writes = True
            response = await runtime.engine.handle(Request(url=font))
        assert response.content == b"woff"


# ------------------------------------------------------------------ #
# Cutover
# ------------------------------------------------------------------ #


class TestCutover:
    @pytest.mark.asyncio
    async def test_new_generation_serves_after_activation(self, config, store, origin) -> None:
        async with await _activated(config, store, origin) as runtime:
            origin.add(f"{APP_ORIGIN}/index.html", b"<html>shell v2</html>")
            await runtime.versions.begin_install("v2")

            origin.offline = True
            before = await runtime.engine.handle(Request.navigate(f"{APP_ORIGIN}/"))
            assert before.content == b"<html>shell v1</html>"

            await runtime.versions.activate("v2")
            after = await runtime.engine.handle(Request.navigate(f"{APP_ORIGIN}/"))
            assert after.content == b"<html>shell v2</html>"
            assert await store.list_namespaces() == {"shellcache-v2", "shellcache-v2-third-party"}

    @pytest.mark.asyncio
    async def test_refill_into_superseded_generation_is_dropped(
        self, config, store, origin
    ) -> None:
        origin.add(f"{APP_ORIGIN}/late.js", b"late()")
        async with await _activated(config, store, origin) as runtime:
            await runtime.versions.begin_install("v2")
            response = await runtime.engine.handle(_asset("/late.js"))
            await runtime.versions.activate("v2")
            await runtime.tasks.drain()

        assert response.content == b"late()"
        assert await store.list_namespaces() == {"shellcache-v2", "shellcache-v2-third-party"}
