import asyncio
from typing import Optional

from hotdog.bridge import SubscriptionBridge
from hotdog.channel import PageChannel
from hotdog.page.document import PageDocument
from hotdog.page_client import PageClient
from hotdog.utils.logger import logger


class TabSession:
    """
    One tab wired to the service: its document, page client and channel.

    When the document loads again (reload or navigation inside the tab)
    the old page is gone, so the tab's subscriptions are dropped and the
    client announces itself afresh.
    """

    def __init__(self, tab_id: str, document: PageDocument, bridge: SubscriptionBridge):
        self.tab_id = tab_id
        self.document = document
        self.bridge = bridge
        self.channel = PageChannel(bridge, tab_id)
        self.client = PageClient(document, self.channel)
        self._restart_task: Optional[asyncio.Task] = None

    @property
    def url(self) -> str:
        return self.channel.url

    async def start(self) -> bool:
        """Attach to the hub and connect. True when the tab's host is enabled."""
        self.bridge.hub.attach(self.tab_id, self.client.handle)
        self.document.add_load_listener(self._on_load)
        return await self.client.start()

    async def restart(self) -> bool:
        self.bridge.on_tab_updated(self.tab_id)
        await self.client.stop()
        return await self.client.start()

    async def stop(self) -> None:
        if self._restart_task and not self._restart_task.done():
            self._restart_task.cancel()
        self.document.remove_load_listener(self._on_load)
        self.bridge.hub.detach(self.tab_id, self.client.handle)
        await self.client.stop()
        self.bridge.on_tab_removed(self.tab_id)
        await self.document.close()
        logger.debug(f"Closed session for tab {self.tab_id}")

    async def _on_load(self) -> None:
        # Runs inside the reducer that triggered the reload; restart outside it
        logger.debug(f"Tab {self.tab_id} loaded, reconnecting")
        self._restart_task = asyncio.create_task(
            self.restart(), name=f"hotdog-restart:{self.tab_id}"
        )
