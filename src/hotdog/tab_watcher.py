import asyncio
from typing import Awaitable, Callable, Dict, List, NamedTuple, Optional
from urllib.parse import urlsplit

from hotdog.chrome_cdp import ChromeTab, get_chrome_info, get_tabs
from hotdog.config import REMOTE_DEBUG_PORT, TAB_CHECK_INTERVAL_SECONDS
from hotdog.exceptions import HotdogError
from hotdog.page.cdp_document import CdpDocument
from hotdog.page.document import PageDocument
from hotdog.service import HotdogService
from hotdog.utils.logger import logger
from hotdog.utils.urls import is_local_host, tab_host

DocumentFactory = Callable[[ChromeTab], Awaitable[PageDocument]]
TabSource = Callable[[], Awaitable[List[ChromeTab]]]


class TabChangeEvent(NamedTuple):
    new_tabs: List[ChromeTab]
    closed_tabs: List[str]
    navigated_tabs: List[ChromeTab]


def is_watchable_tab(tab: ChromeTab) -> bool:
    """Only pages served from this machine get a hot-reload session."""
    if not tab.url.startswith(("http://", "https://")) or not tab.webSocketDebuggerUrl:
        return False
    return is_local_host(urlsplit(tab.url).hostname)


async def connect_cdp_document(tab: ChromeTab) -> PageDocument:
    return await CdpDocument.connect(tab.webSocketDebuggerUrl)


class TabWatcher:
    """
    Polls the browser's tab list and keeps one session per local tab.

    New tabs get a session; closed tabs lose theirs and their
    subscriptions. Navigation within a local origin is picked up by the
    session itself through the page load event, so polling only acts on
    tabs that move onto or off a local origin.
    """

    def __init__(
        self,
        service: HotdogService,
        check_interval: float = TAB_CHECK_INTERVAL_SECONDS,
        port: int = REMOTE_DEBUG_PORT,
        document_factory: DocumentFactory = connect_cdp_document,
        tab_source: Optional[TabSource] = None,
    ):
        self.service = service
        self.check_interval = check_interval
        self.port = port
        self.document_factory = document_factory
        self.tab_source = tab_source or (lambda: get_tabs(self.port))
        self.tab_urls: Dict[str, str] = {}
        self._monitoring = False
        self._monitor_task: Optional[asyncio.Task] = None

    async def start_monitoring(self) -> bool:
        if self._monitoring:
            logger.warning("Tab monitoring already running")
            return False

        info = await get_chrome_info(self.port)
        if not info["connected"]:
            logger.error(
                f"No browser listening on port {self.port}. "
                f"Start Chrome with --remote-debugging-port={self.port}"
            )
            return False
        logger.success(f"Connected to {info['version']}")

        self._monitoring = True
        await self.process_tab_changes(await self.tab_source())
        self._monitor_task = asyncio.create_task(self._monitor_loop(), name="hotdog-tabs")
        return True

    async def stop_monitoring(self) -> None:
        if not self._monitoring:
            logger.debug("Monitoring already stopped.")
            return

        self._monitoring = False
        if self._monitor_task and not self._monitor_task.done():
            self._monitor_task.cancel()
            try:
                await asyncio.wait_for(self._monitor_task, timeout=2.0)
            except asyncio.CancelledError:
                logger.debug("Tab polling task cancelled.")
            except asyncio.TimeoutError:
                logger.warning("Tab polling task did not stop within timeout.")
        self._monitor_task = None

        for tab_id in list(self.tab_urls):
            await self.service.close_tab(tab_id)
        self.tab_urls.clear()
        logger.debug("Tab monitoring stopped.")

    async def _monitor_loop(self) -> None:
        while self._monitoring:
            await asyncio.sleep(self.check_interval)
            try:
                await self.process_tab_changes(await self.tab_source())
            except Exception as e:
                logger.error(f"Error during tab polling: {e}", exc_info=True)

    async def process_tab_changes(self, tabs: List[ChromeTab]) -> Optional[TabChangeEvent]:
        """Reconcile sessions with the current tab list. None when nothing changed."""
        current = {tab.id: tab for tab in tabs if is_watchable_tab(tab)}
        added = [current[tab_id] for tab_id in current.keys() - self.tab_urls.keys()]
        closed = sorted(self.tab_urls.keys() - current.keys())
        navigated = [
            tab
            for tab_id, tab in current.items()
            if tab_id in self.tab_urls and tab_host(tab.url) != tab_host(self.tab_urls[tab_id])
        ]

        for tab_id in closed:
            logger.info(f"Tab {tab_id} closed ({self.tab_urls[tab_id]})")
            del self.tab_urls[tab_id]
            await self.service.close_tab(tab_id)

        for tab in navigated:
            logger.info(f"Tab {tab.id} moved to {tab.url}")
            await self.service.close_tab(tab.id)
            await self._open(tab)

        for tab in added:
            logger.info(f"New tab {tab.id} ({tab.url})")
            await self._open(tab)

        # Same-origin navigation: the session reconnects on load
        for tab_id, tab in current.items():
            self.tab_urls[tab_id] = tab.url

        if not (added or closed or navigated):
            return None
        return TabChangeEvent(new_tabs=added, closed_tabs=closed, navigated_tabs=navigated)

    async def _open(self, tab: ChromeTab) -> None:
        # Recorded even on failure so the tab is not retried every poll
        self.tab_urls[tab.id] = tab.url
        try:
            document = await self.document_factory(tab)
            await self.service.open_tab(tab.id, document)
        except HotdogError as e:
            logger.warning(f"Could not attach to tab {tab.id}: {e}")
