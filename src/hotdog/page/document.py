from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from hotdog.utils.logger import logger

HOT_ATTRIBUTE = "data-hot"

VISIBLE = "visible"
HIDDEN = "hidden"

NodesAddedListener = Callable[[List["PageElement"]], Awaitable[None]]
VisibilityListener = Callable[[str], Awaitable[None]]
LoadListener = Callable[[], Awaitable[None]]


@dataclass(eq=False)
class PageElement:
    """Snapshot of a DOM element plus the backend handle that addresses it."""

    tag: str
    handle: Any
    attributes: Dict[str, str] = field(default_factory=dict)

    def get(self, name: str) -> Optional[str]:
        return self.attributes.get(name)

    @property
    def hot(self) -> Optional[str]:
        """Generation stamp written by hotdog; None for elements it does not manage."""
        return self.attributes.get(HOT_ATTRIBUTE)

    def is_same(self, other: Optional["PageElement"]) -> bool:
        return other is not None and self.handle == other.handle


class PageDocument(ABC):
    """
    The slice of a page's DOM that hot reloading needs.

    Backends implement the element operations; listener bookkeeping and
    dispatch live here. Listeners are coroutines and are awaited in
    registration order; a failing listener is logged and skipped.
    """

    def __init__(self):
        self._nodes_added_listeners: List[NodesAddedListener] = []
        self._visibility_listeners: List[VisibilityListener] = []
        self._load_listeners: List[LoadListener] = []

    # --- Element operations ---

    @abstractmethod
    async def location(self) -> str: ...

    @abstractmethod
    async def root(self) -> PageElement: ...

    @abstractmethod
    async def query(self, selector: str) -> List[PageElement]: ...

    @abstractmethod
    async def current_script(self) -> Optional[PageElement]:
        """The script element running the page-side client, if any."""

    @abstractmethod
    async def set_attribute(self, element: PageElement, name: str, value: str) -> None: ...

    @abstractmethod
    async def replace_element(
        self, old: PageElement, tag: str, attributes: Dict[str, str]
    ) -> Optional[PageElement]:
        """Put a new element where `old` sits. None when `old` is no longer attached."""

    @abstractmethod
    async def reload(self) -> None: ...

    @abstractmethod
    async def visibility_state(self) -> str: ...

    async def close(self) -> None:
        pass

    # --- Listeners ---

    def add_nodes_added_listener(self, listener: NodesAddedListener) -> None:
        if listener not in self._nodes_added_listeners:
            self._nodes_added_listeners.append(listener)

    def remove_nodes_added_listener(self, listener: NodesAddedListener) -> None:
        if listener in self._nodes_added_listeners:
            self._nodes_added_listeners.remove(listener)

    def add_visibility_listener(self, listener: VisibilityListener) -> None:
        if listener not in self._visibility_listeners:
            self._visibility_listeners.append(listener)

    def remove_visibility_listener(self, listener: VisibilityListener) -> None:
        if listener in self._visibility_listeners:
            self._visibility_listeners.remove(listener)

    def add_load_listener(self, listener: LoadListener) -> None:
        if listener not in self._load_listeners:
            self._load_listeners.append(listener)

    def remove_load_listener(self, listener: LoadListener) -> None:
        if listener in self._load_listeners:
            self._load_listeners.remove(listener)

    async def _dispatch_nodes_added(self, elements: List[PageElement]) -> None:
        for listener in list(self._nodes_added_listeners):
            try:
                await listener(elements)
            except Exception as e:
                logger.error(f"Error in nodes-added listener: {e}", exc_info=True)

    async def _dispatch_visibility(self, state: str) -> None:
        for listener in list(self._visibility_listeners):
            try:
                await listener(state)
            except Exception as e:
                logger.error(f"Error in visibility listener: {e}", exc_info=True)

    async def _dispatch_load(self) -> None:
        for listener in list(self._load_listeners):
            try:
                await listener()
            except Exception as e:
                logger.error(f"Error in load listener: {e}", exc_info=True)
