import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from hotdog.exceptions import ProbeError
from hotdog.poller import Poller, ProbeOutcome, forbids_caching, interpret_headers

MONDAY = "Mon, 06 Jan 2025 10:00:00 GMT"
TUESDAY = "Tue, 07 Jan 2025 10:00:00 GMT"


class TestForbidsCaching:
    def test_no_cache_and_no_store(self):
        assert forbids_caching("no-cache")
        assert forbids_caching("private, no-store")
        assert forbids_caching('no-cache="Set-Cookie", max-age=60')

    def test_other_directives(self):
        assert not forbids_caching(None)
        assert not forbids_caching("")
        assert not forbids_caching("max-age=0, must-revalidate")
        assert not forbids_caching("public")


class TestInterpretHeaders:
    def test_missing_last_modified_is_untrackable(self):
        assert interpret_headers(None, None, None).outcome is ProbeOutcome.UNTRACKABLE
        assert interpret_headers("max-age=60", "", MONDAY).outcome is ProbeOutcome.UNTRACKABLE

    def test_no_cache_is_untrackable_even_with_stamp(self):
        result = interpret_headers("no-cache", MONDAY, None)
        assert result.outcome is ProbeOutcome.UNTRACKABLE
        assert result.last_modified is None

    def test_first_stamp_is_baseline(self):
        result = interpret_headers(None, MONDAY, None)
        assert result.outcome is ProbeOutcome.BASELINE
        assert result.last_modified == MONDAY

    def test_same_stamp_is_unchanged(self):
        assert interpret_headers(None, MONDAY, MONDAY).outcome is ProbeOutcome.UNCHANGED

    def test_any_different_stamp_is_a_change(self):
        """Stamps are compared as opaque strings, not as dates"""
        result = interpret_headers(None, MONDAY, TUESDAY)
        assert result.outcome is ProbeOutcome.CHANGED
        assert result.last_modified == MONDAY


def make_asset_app(state):
    async def asset(request):
        headers = {}
        if state.get("last_modified"):
            headers["Last-Modified"] = state["last_modified"]
        if state.get("cache_control"):
            headers["Cache-Control"] = state["cache_control"]
        state["methods"].append(request.method)
        return web.Response(text="body { color: red }", headers=headers)

    async def moved(request):
        raise web.HTTPFound("/app.css")

    app = web.Application()
    app.router.add_get("/app.css", asset)
    app.router.add_get("/old.css", moved)
    return app


class TestPoller:
    @pytest.mark.asyncio
    async def test_probe_cycle_against_real_server(self):
        state = {"last_modified": MONDAY, "methods": []}
        server = TestServer(make_asset_app(state))
        await server.start_server()
        poller = Poller(timeout=2)
        try:
            url = str(server.make_url("/app.css"))

            first = await poller.check(url, None)
            assert first.outcome is ProbeOutcome.BASELINE
            assert first.last_modified == MONDAY

            second = await poller.check(url, first.last_modified)
            assert second.outcome is ProbeOutcome.UNCHANGED

            state["last_modified"] = TUESDAY
            third = await poller.check(url, first.last_modified)
            assert third.outcome is ProbeOutcome.CHANGED
            assert third.last_modified == TUESDAY

            assert state["methods"] == ["HEAD", "HEAD", "HEAD"]
        finally:
            await poller.close()
            await server.close()

    @pytest.mark.asyncio
    async def test_cache_control_no_store(self):
        state = {"last_modified": MONDAY, "cache_control": "no-store", "methods": []}
        server = TestServer(make_asset_app(state))
        await server.start_server()
        poller = Poller(timeout=2)
        try:
            result = await poller.check(str(server.make_url("/app.css")), None)
            assert result.outcome is ProbeOutcome.UNTRACKABLE
        finally:
            await poller.close()
            await server.close()

    @pytest.mark.asyncio
    async def test_follows_redirects(self):
        state = {"last_modified": MONDAY, "methods": []}
        server = TestServer(make_asset_app(state))
        await server.start_server()
        poller = Poller(timeout=2)
        try:
            cache_control, last_modified = await poller.head(str(server.make_url("/old.css")))
            assert last_modified == MONDAY
            assert cache_control is None
        finally:
            await poller.close()
            await server.close()

    @pytest.mark.asyncio
    async def test_transport_failure_raises_probe_error(self):
        server = TestServer(web.Application())
        await server.start_server()
        url = str(server.make_url("/app.css"))
        await server.close()

        poller = Poller(timeout=1)
        try:
            with pytest.raises(ProbeError) as exc_info:
                await poller.check(url, None)
            assert exc_info.value.url == url
        finally:
            await poller.close()

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self):
        poller = Poller()
        await poller.close()
        await poller.close()
