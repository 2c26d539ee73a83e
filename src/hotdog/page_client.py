from typing import Any

from hotdog.channel import PageChannel
from hotdog.exceptions import BridgeError
from hotdog.messages import Message, MessageType
from hotdog.page.document import HIDDEN, PageDocument
from hotdog.target_registry import TargetRegistry
from hotdog.utils.logger import logger, page_log


class PageClient:
    """Page-side half of hotdog: answers service pushes and owns the target set."""

    def __init__(self, document: PageDocument, channel: PageChannel):
        self.document = document
        self.channel = channel
        self.registry = TargetRegistry(document, channel)
        self.enabled = False

    async def start(self) -> bool:
        """Announce the page to the service. True when its host is enabled."""
        self.channel.url = await self.document.location()
        logger.debug(page_log(f"Hello? ({self.channel.url})"))
        try:
            return bool(await self.channel.request(MessageType.CONNECT))
        except BridgeError as e:
            logger.warning(page_log(f"Connect failed: {e.message}"))
            return False

    async def handle(self, message: Message) -> Any:
        if message.type == MessageType.ENABLED:
            await self._enable()
            return True
        if message.type == MessageType.DISABLED:
            await self._disable()
            return True
        logger.debug(page_log(f"Ignoring '{message.type}' from service"))
        return None

    async def stop(self) -> None:
        await self._disable()

    async def _enable(self) -> None:
        self.document.add_visibility_listener(self.registry.on_visibility_change)
        await self.registry.register()
        self.enabled = True
        if await self.document.visibility_state() == HIDDEN:
            await self.registry.on_visibility_change(HIDDEN)

    async def _disable(self) -> None:
        self.document.remove_visibility_listener(self.registry.on_visibility_change)
        await self.registry.teardown()
        self.enabled = False
