import asyncio
from collections import Counter
from unittest.mock import patch

import pytest

from hotdog.enabled_hosts import EnabledHosts
from hotdog.page.document import HIDDEN, VISIBLE
from hotdog.page.soup_document import SoupDocument
from hotdog.service import HotdogService
from hotdog.target_registry import summarize
from hotdog.targets import TargetKind, TargetState
from hotdog.tests.fakes import FakePoller, wait_until
from hotdog.utils.logger import logger
from hotdog.watch_registry import WatchRegistry

PAGE = "http://localhost:3000/"
HOST = "http://localhost:3000"
CSS = "http://localhost:3000/app.css"
JS = "http://localhost:3000/app.js"
PNG = "http://localhost:3000/logo.png"
LATE = "http://localhost:3000/late.js"
URLS = sorted([PAGE, CSS, JS, PNG])

MONDAY = "Mon, 06 Jan 2025 10:00:00 GMT"
TUESDAY = "Tue, 07 Jan 2025 10:00:00 GMT"
WEDNESDAY = "Wed, 08 Jan 2025 10:00:00 GMT"

HTML = """<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<link rel="stylesheet" href="/app.css" media="screen">
<script src="/app.js"></script>
<script src="/hotdog.js" data-hotdog-client></script>
<script src="https://cdn.example.com/lib.js"></script>
<title>Demo</title>
</head>
<body>
<img src="logo.png" alt="logo">
<img src="data:image/png;base64,AAAA">
<p>Hello</p>
</body>
</html>
"""


def make_service(tmp_path, enabled=True):
    poller = FakePoller()
    for url in URLS + [LATE]:
        poller.set(url, MONDAY)
    service = HotdogService(
        registry=WatchRegistry(poller=poller, probe_delay=0.01),
        hosts=EnabledHosts(tmp_path / "hosts.json"),
    )
    if enabled:
        service.hosts.enable(HOST)
    return service, poller


def all_subscribed(service, urls=URLS, tab_id="1"):
    def check():
        for url in urls:
            resource = service.registry.get(url)
            if resource is None or tab_id not in resource.subscribers:
                return False
        return True

    return check


def head_layout(document):
    return [tag.name for tag in document.soup.head.find_all(recursive=False)]


class TestSummary:
    def test_pluralizes_by_kind(self):
        counts = {TargetKind.DOCUMENT: 1, TargetKind.SCRIPT: 2, TargetKind.STYLESHEET: 1}
        assert summarize(counts) == "1 Document, 2 Scripts, 1 Stylesheet"

    def test_skips_empty_kinds(self):
        assert summarize({TargetKind.DOCUMENT: 1, TargetKind.IMAGE: 0}) == "1 Document"


class TestRegistration:
    @pytest.mark.asyncio
    async def test_scan_builds_one_target_per_local_asset(self, tmp_path):
        service, _ = make_service(tmp_path)
        document = SoupDocument(HTML, PAGE)
        try:
            session = await service.open_tab("1", document)
            registry = session.client.registry

            kinds = Counter(target.kind for target in registry.targets)
            assert kinds == {
                TargetKind.DOCUMENT: 1,
                TargetKind.SCRIPT: 1,
                TargetKind.STYLESHEET: 1,
                TargetKind.IMAGE: 1,
            }
            assert registry.urls() == URLS
            assert session.client.enabled

            await wait_until(all_subscribed(service))
            assert len(service.registry) == 4
        finally:
            await service.close()

    @pytest.mark.asyncio
    async def test_scan_logs_summary_by_kind(self, tmp_path):
        service, _ = make_service(tmp_path)
        try:
            with patch.object(logger, "info") as info:
                await service.open_tab("1", SoupDocument(HTML, PAGE))
            messages = [call.args[0] for call in info.call_args_list]
            assert any(
                message.endswith("Observing 1 Document, 1 Script, 1 Stylesheet, 1 Image")
                for message in messages
            )
        finally:
            await service.close()

    @pytest.mark.asyncio
    async def test_summary_pluralizes_repeated_kinds(self, tmp_path):
        service, _ = make_service(tmp_path)
        html = (
            "<html><body>"
            '<script src="/a.js"></script><script src="/b.js"></script>'
            '<img src="/a.png"><img src="/b.png"><img src="/c.png">'
            "</body></html>"
        )
        try:
            with patch.object(logger, "info") as info:
                await service.open_tab("1", SoupDocument(html, PAGE))
            messages = [call.args[0] for call in info.call_args_list]
            assert any(
                message.endswith("Observing 1 Document, 2 Scripts, 3 Images") for message in messages
            )
        finally:
            await service.close()

    @pytest.mark.asyncio
    async def test_managed_elements_are_stamped(self, tmp_path):
        service, _ = make_service(tmp_path)
        document = SoupDocument(HTML, PAGE)
        try:
            await service.open_tab("1", document)
            soup = document.soup

            assert soup.html["data-hot"] == "0"
            assert soup.select_one('link[href="/app.css"]')["data-hot"] == "0"
            assert soup.select_one('script[src="/app.js"]')["data-hot"] == "0"
            assert soup.select_one('img[src="logo.png"]')["data-hot"] == "0"

            # The client's own script and third-party assets are left alone
            assert soup.select_one("script[data-hotdog-client]").get("data-hot") is None
            assert soup.select_one('script[src^="https://cdn"]').get("data-hot") is None
            assert soup.select_one('img[src^="data:"]').get("data-hot") is None
        finally:
            await service.close()

    @pytest.mark.asyncio
    async def test_disabled_host_builds_nothing(self, tmp_path):
        service, _ = make_service(tmp_path, enabled=False)
        try:
            session = await service.open_tab("1", SoupDocument(HTML, PAGE))
            assert session.client.enabled is False
            assert session.client.registry.targets == []
            assert len(service.registry) == 0
        finally:
            await service.close()


class TestReductions:
    @pytest.mark.asyncio
    async def test_stylesheet_swap_keeps_position_and_bumps_generation(self, tmp_path):
        service, poller = make_service(tmp_path)
        document = SoupDocument(HTML, PAGE)
        try:
            session = await service.open_tab("1", document)
            await wait_until(lambda: getattr(service.registry.get(CSS), "baseline", None) == MONDAY)
            layout = head_layout(document)

            poller.set(CSS, TUESDAY)
            await wait_until(lambda: document.soup.head.find("link").get("data-hot") == "1")

            link = document.soup.head.find("link")
            assert link["href"].startswith(f"{CSS}?t=")
            assert link["rel"] == "stylesheet"
            assert link["media"] == "screen"
            assert head_layout(document) == layout
            assert len(document.soup.find_all("link")) == 1
            assert document.reload_count == 0

            targets = session.client.registry.targets
            target = next(t for t in targets if t.kind is TargetKind.STYLESHEET)
            assert target.generation == 1
            assert target.file == CSS

            # Re-subscribed under the same canonical URL
            await wait_until(
                lambda: getattr(service.registry.get(CSS), "baseline", None) == TUESDAY
            )
            poller.set(CSS, WEDNESDAY)
            await wait_until(lambda: document.soup.head.find("link").get("data-hot") == "2")
            assert target.generation == 2
        finally:
            await service.close()

    @pytest.mark.asyncio
    async def test_image_gets_cache_busted_src(self, tmp_path):
        service, poller = make_service(tmp_path)
        document = SoupDocument(HTML, PAGE)
        try:
            await service.open_tab("1", document)
            await wait_until(lambda: getattr(service.registry.get(PNG), "baseline", None) == MONDAY)

            poller.set(PNG, TUESDAY)
            await wait_until(lambda: document.soup.find("img").get("data-hot") == "1")

            img = document.soup.find("img")
            assert img["src"].startswith(f"{PNG}?t=")
            assert img["alt"] == "logo"
            assert document.reload_count == 0
        finally:
            await service.close()

    @pytest.mark.asyncio
    async def test_script_change_reloads_page_and_rebuilds_targets(self, tmp_path):
        service, poller = make_service(tmp_path)
        loads = []

        async def loader():
            loads.append(PAGE)
            return HTML

        document = SoupDocument(HTML, PAGE, loader=loader)
        try:
            session = await service.open_tab("1", document)
            old_targets = list(session.client.registry.targets)
            await wait_until(lambda: getattr(service.registry.get(JS), "baseline", None) == MONDAY)

            poller.set(JS, TUESDAY)
            await wait_until(lambda: document.reload_count == 1)
            assert loads == [PAGE]

            old_script = next(t for t in old_targets if t.kind is TargetKind.SCRIPT)
            assert old_script.state is TargetState.TERMINATED

            # The reloaded page is scanned again from scratch
            await wait_until(lambda: document.soup.html.get("data-hot") == "0")
            await wait_until(all_subscribed(service))
            assert session.client.registry.urls() == URLS
            assert not set(session.client.registry.targets) & set(old_targets)

            await asyncio.sleep(0.1)
            assert document.reload_count == 1
        finally:
            await service.close()

    @pytest.mark.asyncio
    async def test_document_change_reloads_page(self, tmp_path):
        service, poller = make_service(tmp_path)
        document = SoupDocument(HTML, PAGE)
        try:
            await service.open_tab("1", document)
            await wait_until(lambda: getattr(service.registry.get(PAGE), "baseline", None) == MONDAY)

            poller.set(PAGE, TUESDAY)
            await wait_until(lambda: document.reload_count == 1)
        finally:
            await service.close()

    @pytest.mark.asyncio
    async def test_untrackable_asset_stops_watching(self, tmp_path):
        service, poller = make_service(tmp_path)
        poller.set(PNG, MONDAY, cache_control="no-cache")
        document = SoupDocument(HTML, PAGE)
        try:
            session = await service.open_tab("1", document)
            image = next(t for t in session.client.registry.targets if t.kind is TargetKind.IMAGE)

            await wait_until(lambda: not image.watching)
            assert image.state is TargetState.IDLE
            assert image.generation == 0
            assert PNG in service.registry
        finally:
            await service.close()


class TestPageEvents:
    @pytest.mark.asyncio
    async def test_inserted_scripts_become_targets(self, tmp_path):
        service, _ = make_service(tmp_path)
        document = SoupDocument(HTML, PAGE)
        try:
            session = await service.open_tab("1", document)
            registry = session.client.registry

            await document.insert('<script src="/late.js"></script>')
            assert LATE in registry.urls()
            assert document.soup.select_one('script[src="/late.js"]')["data-hot"] == "0"
            await wait_until(all_subscribed(service, [LATE]))

            count = len(registry.targets)
            await document.insert('<script src="https://cdn.example.com/x.js"></script>')
            await document.insert('<script src="/stamped.js" data-hot="3"></script>')
            await document.insert('<img src="/new.png">')
            assert len(registry.targets) == count
        finally:
            await service.close()

    @pytest.mark.asyncio
    async def test_hidden_page_pauses_and_visible_page_resumes(self, tmp_path):
        service, _ = make_service(tmp_path)
        document = SoupDocument(HTML, PAGE)
        try:
            session = await service.open_tab("1", document)
            targets = session.client.registry.targets
            await wait_until(all_subscribed(service))

            await document.set_visibility(HIDDEN)
            assert len(service.registry) == 0
            assert all(target.state is TargetState.PAUSED for target in targets)
            assert not any(target.watching for target in targets)

            await document.set_visibility(VISIBLE)
            await wait_until(all_subscribed(service))
            assert all(target.watching for target in targets)
        finally:
            await service.close()

    @pytest.mark.asyncio
    async def test_disable_enable_round_trip(self, tmp_path):
        service, _ = make_service(tmp_path)
        document = SoupDocument(HTML, PAGE)
        try:
            session = await service.open_tab("1", document)
            urls = session.client.registry.urls()
            await wait_until(all_subscribed(service))

            assert await service.toggle_tab("1") is False
            assert session.client.registry.targets == []
            assert len(service.registry) == 0
            assert not service.hosts.is_enabled(HOST)

            # Hidden/visible no longer affects a disabled page
            await document.set_visibility(HIDDEN)
            await document.set_visibility(VISIBLE)
            assert len(service.registry) == 0

            assert await service.toggle_tab("1") is True
            assert session.client.registry.urls() == urls
            await wait_until(all_subscribed(service))
            assert service.hosts.is_enabled(HOST)

            assert await service.toggle_tab("unknown") is None
        finally:
            await service.close()

    @pytest.mark.asyncio
    async def test_closing_tab_releases_everything(self, tmp_path):
        service, _ = make_service(tmp_path)
        document = SoupDocument(HTML, PAGE)
        try:
            await service.open_tab("1", document)
            await wait_until(all_subscribed(service))

            assert await service.close_tab("1") is True
            assert len(service.registry) == 0
            assert service.hub.tab_ids() == []
            assert service.bridge.pending_count() == 0
            assert await service.close_tab("1") is False
        finally:
            await service.close()
