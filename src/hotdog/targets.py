import asyncio
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional

from hotdog.channel import PageChannel
from hotdog.exceptions import BridgeError
from hotdog.messages import MessageType
from hotdog.page.document import HOT_ATTRIBUTE, PageDocument, PageElement
from hotdog.utils.logger import logger, page_log
from hotdog.utils.urls import cache_bust, canonical_url


class TargetKind(str, Enum):
    DOCUMENT = "Document"
    SCRIPT = "Script"
    STYLESHEET = "Stylesheet"
    IMAGE = "Image"


class TargetState(Enum):
    IDLE = "idle"  # subscribed, waiting for a change
    NOTIFIED = "notified"
    REDUCING = "reducing"
    PAUSED = "paused"  # not subscribed (page hidden, torn down)
    TERMINATED = "terminated"  # page reload under way, or element gone


class Target:
    """
    One watched DOM element.

    The watch loop asks the service to observe `file`, waits for the answer,
    and on a new modification stamp runs the reduction for its kind. Swaps
    keep the loop going; a reload ends it.
    """

    def __init__(
        self,
        kind: TargetKind,
        element: PageElement,
        file: str,
        document: PageDocument,
        channel: PageChannel,
    ):
        self.kind = kind
        self.element = element
        self.file = file
        self.document = document
        self.channel = channel
        self.generation = 0
        self.state = TargetState.PAUSED
        self._task: Optional[asyncio.Task] = None

    @classmethod
    async def create(
        cls,
        kind: TargetKind,
        element: PageElement,
        url: str,
        document: PageDocument,
        channel: PageChannel,
    ) -> "Target":
        """Stamp the element as managed and start watching its canonical URL."""
        file = canonical_url(url, base=await document.location())
        target = cls(kind, element, file, document, channel)
        await document.set_attribute(element, HOT_ATTRIBUTE, str(target.generation))
        return target.observe()

    def __repr__(self) -> str:
        return f"Target({self.kind.value}, {self.file!r}, {self.state.value}, gen={self.generation})"

    @property
    def watching(self) -> bool:
        return self._task is not None and not self._task.done()

    def observe(self) -> "Target":
        if self.state is TargetState.TERMINATED or self.watching:
            return self
        self.state = TargetState.IDLE
        self._task = asyncio.create_task(self._watch(), name=f"hotdog-target:{self.file}")
        return self

    async def unobserve(self) -> None:
        task, self._task = self._task, None
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()
        if self.state is not TargetState.TERMINATED:
            self.state = TargetState.PAUSED
        try:
            await self.channel.request(MessageType.UNOBSERVE, {"file": self.file})
        except BridgeError as e:
            logger.warning(page_log(f"Unobserve {self.file} failed: {e.message}"))

    async def _watch(self) -> None:
        while True:
            try:
                stamp = await self.channel.request(MessageType.OBSERVE, {"file": self.file})
            except BridgeError as e:
                logger.warning(page_log(f"Observe {self.file} failed: {e.message}"))
                return

            # None: untrackable, or our subscription was dropped
            if not stamp:
                return

            self.state = TargetState.NOTIFIED
            try:
                keep_watching = await self.reduce()
            except Exception as e:
                logger.warning(page_log(f"Could not update {self.file}: {e}"))
                self.state = TargetState.IDLE
                return

            if not keep_watching:
                return
            self.state = TargetState.IDLE

    async def reduce(self) -> bool:
        """Apply the change for this kind. True when the target keeps watching."""
        self.state = TargetState.REDUCING
        return await REDUCERS[self.kind](self)

    def next_generation(self) -> str:
        self.generation += 1
        return str(self.generation)


# --- Reductions ---


async def reload_page(target: Target) -> bool:
    logger.info(page_log(f"{target.kind.value} changed, reloading: {target.file}"))
    target.state = TargetState.TERMINATED
    await target.document.reload()
    return False


async def swap_stylesheet(target: Target) -> bool:
    attributes = {
        name: value
        for name, value in target.element.attributes.items()
        if name not in ("href", HOT_ATTRIBUTE)
    }
    attributes.setdefault("rel", "stylesheet")
    attributes["href"] = cache_bust(target.file)
    attributes[HOT_ATTRIBUTE] = str(target.generation + 1)

    new_element = await target.document.replace_element(target.element, "link", attributes)
    if new_element is None:
        logger.debug(page_log(f"Stylesheet for {target.file} left the page, dropping it"))
        target.state = TargetState.TERMINATED
        return False

    target.element = new_element
    target.next_generation()
    logger.info(page_log(f"Swapped stylesheet {target.file}"))
    return True


async def swap_image(target: Target) -> bool:
    document, element = target.document, target.element
    await document.set_attribute(element, "src", cache_bust(target.file))
    await document.set_attribute(element, HOT_ATTRIBUTE, target.next_generation())
    logger.info(page_log(f"Refreshed image {target.file}"))
    return True


REDUCERS: Dict[TargetKind, Callable[[Target], Awaitable[bool]]] = {
    TargetKind.DOCUMENT: reload_page,
    TargetKind.SCRIPT: reload_page,
    TargetKind.STYLESHEET: swap_stylesheet,
    TargetKind.IMAGE: swap_image,
}
