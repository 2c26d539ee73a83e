import asyncio
from functools import partial
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

from pydantic import ValidationError

from hotdog.enabled_hosts import EnabledHosts
from hotdog.messages import MISSING_FILE, UNKNOWN_TYPE, Message, MessageType, Sender, error
from hotdog.utils.logger import logger
from hotdog.utils.urls import canonical_url
from hotdog.watch_registry import WatchRegistry

PageHandler = Callable[[Message], Awaitable[Any]]

PendingKey = Tuple[str, str]  # (tab_id, file)


class TabHub:
    """Routes service-to-page pushes to whichever page client owns a tab."""

    def __init__(self):
        self._handlers: Dict[str, PageHandler] = {}

    def attach(self, tab_id: str, handler: PageHandler) -> None:
        self._handlers[tab_id] = handler

    def detach(self, tab_id: str, handler: Optional[PageHandler] = None) -> None:
        # A restarted session may already own the tab; only drop our own handler
        if handler is None or self._handlers.get(tab_id) == handler:
            self._handlers.pop(tab_id, None)

    def tab_ids(self) -> List[str]:
        return list(self._handlers)

    async def push(self, tab_id: str, message_type: MessageType) -> Any:
        """Send a message to the page. None means the page never answered."""
        handler = self._handlers.get(tab_id)
        if handler is None:
            logger.debug(f"No page client for tab {tab_id}, dropping '{message_type.value}'")
            return None
        try:
            return await handler(Message(type=message_type.value))
        except Exception as e:
            logger.error(f"Page client for tab {tab_id} failed on '{message_type.value}': {e}")
            return None


class SubscriptionBridge:
    """
    Service side of the page/service message protocol.

    Every request carries a Sender; its tab id is the subscriber identity
    in the watch registry. An `observe` request stays open until the
    registry notifies the tab about that file, or until the subscription
    is dropped, in which case it answers None.
    """

    def __init__(
        self,
        registry: WatchRegistry,
        hosts: EnabledHosts,
        hub: Optional[TabHub] = None,
    ):
        self.registry = registry
        self.hosts = hosts
        self.hub = hub if hub is not None else TabHub()
        self._pending: Dict[PendingKey, asyncio.Future] = {}

    async def handle(self, message: Union[Message, Dict[str, Any]], sender: Sender) -> Any:
        if not isinstance(message, Message):
            try:
                message = Message.model_validate(message)
            except ValidationError:
                return error(UNKNOWN_TYPE)

        if message.type == MessageType.CONNECT:
            return await self.connect(sender)

        if message.type in (MessageType.OBSERVE, MessageType.UNOBSERVE):
            file = message.file
            if file is None:
                return error(MISSING_FILE)
            if message.type == MessageType.OBSERVE:
                return await self.observe(sender.tab_id, file)
            return self.unobserve(sender.tab_id, file)

        logger.debug(f"Unknown message type '{message.type}' from tab {sender.tab_id}")
        return error(UNKNOWN_TYPE)

    # --- Protocol operations ---

    async def connect(self, sender: Sender) -> bool:
        enabled = self.hosts.is_enabled(sender.host)
        if enabled:
            await self.enable(sender)
        return enabled

    async def observe(self, tab_id: str, file: str) -> Optional[str]:
        file = canonical_url(file)
        key = (tab_id, file)
        future = self._pending.get(key)
        if future is None or future.done():
            future = asyncio.get_running_loop().create_future()
            self._pending[key] = future

        self.registry.subscribe(file, tab_id, partial(self._resolve, key, future))
        # Shield so one cancelled waiter does not cancel the shared future
        return await asyncio.shield(future)

    def unobserve(self, tab_id: str, file: str) -> bool:
        file = canonical_url(file)
        self.registry.unsubscribe(file, tab_id)
        self._settle((tab_id, file))
        return True

    def unsubscribe_all(self, tab_id: str) -> int:
        removed = self.registry.unsubscribe_all(tab_id)
        for key in [k for k in self._pending if k[0] == tab_id]:
            self._settle(key)
        return removed

    # --- Tab lifecycle signals ---

    def on_tab_updated(self, tab_id: str) -> None:
        self.unsubscribe_all(tab_id)

    def on_tab_removed(self, tab_id: str) -> None:
        self.unsubscribe_all(tab_id)

    # --- Page action ---

    async def enable(self, sender: Sender) -> bool:
        self.unsubscribe_all(sender.tab_id)
        ack = await self.hub.push(sender.tab_id, MessageType.ENABLED)
        if not ack:
            logger.warning(f"Tab {sender.tab_id} did not acknowledge 'enabled'")
            return False
        self.hosts.enable(sender.host)
        logger.success(f"Hot reload ON for {sender.host} (tab {sender.tab_id})")
        return True

    async def disable(self, sender: Sender) -> bool:
        self.unsubscribe_all(sender.tab_id)
        ack = await self.hub.push(sender.tab_id, MessageType.DISABLED)
        if not ack:
            logger.warning(f"Tab {sender.tab_id} did not acknowledge 'disabled'")
            return False
        self.hosts.disable(sender.host)
        logger.info(f"Hot reload OFF for {sender.host} (tab {sender.tab_id})")
        return True

    async def toggle(self, sender: Sender) -> bool:
        """Flip the page action for the sender's host. Returns the new enabled state."""
        if self.hosts.is_enabled(sender.host):
            await self.disable(sender)
        else:
            await self.enable(sender)
        return self.hosts.is_enabled(sender.host)

    # --- Pending observe futures ---

    def pending_count(self) -> int:
        return len(self._pending)

    def _resolve(self, key: PendingKey, future: asyncio.Future, value: Optional[str]) -> None:
        if not future.done():
            future.set_result(value)
        if self._pending.get(key) is future:
            del self._pending[key]

    def _settle(self, key: PendingKey) -> None:
        future = self._pending.pop(key, None)
        if future is not None and not future.done():
            future.set_result(None)
