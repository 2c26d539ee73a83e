from typing import Awaitable, Callable, Dict, List, Optional

from bs4 import BeautifulSoup, Tag

from hotdog.page.document import HIDDEN, VISIBLE, PageDocument, PageElement
from hotdog.utils.logger import logger

# Marks the script tag that hosts the page-side client in a served page
CURRENT_SCRIPT_SELECTOR = "script[data-hotdog-client]"

HtmlLoader = Callable[[], Awaitable[str]]


def parse_html(html: str) -> BeautifulSoup:
    # Keep class/rel as plain strings so attributes round-trip unchanged
    return BeautifulSoup(html, "html.parser", multi_valued_attributes=None)


class SoupDocument(PageDocument):
    """
    In-memory page backed by BeautifulSoup.

    Used by the headless `watch` command: the page HTML is fetched once,
    swaps edit the parsed tree, and reload() fetches it again through
    `loader`. Visibility changes and node insertions are driven
    explicitly through set_visibility() and insert().
    """

    def __init__(
        self,
        html: str,
        url: str,
        loader: Optional[HtmlLoader] = None,
        current_script_selector: str = CURRENT_SCRIPT_SELECTOR,
    ):
        super().__init__()
        self.url = url
        self.soup = parse_html(html)
        self.loader = loader
        self.current_script_selector = current_script_selector
        self.reload_count = 0
        self._visibility = VISIBLE
        self._tags: Dict[int, Tag] = {}

    def _wrap(self, tag: Tag) -> PageElement:
        self._tags[id(tag)] = tag
        attributes = {name: str(value) for name, value in tag.attrs.items()}
        return PageElement(tag=tag.name, handle=id(tag), attributes=attributes)

    def _tag(self, element: PageElement) -> Optional[Tag]:
        return self._tags.get(element.handle)

    # --- Element operations ---

    async def location(self) -> str:
        return self.url

    async def root(self) -> PageElement:
        return self._wrap(self.soup.html or self.soup)

    async def query(self, selector: str) -> List[PageElement]:
        return [self._wrap(tag) for tag in self.soup.select(selector)]

    async def current_script(self) -> Optional[PageElement]:
        tag = self.soup.select_one(self.current_script_selector)
        return self._wrap(tag) if tag else None

    async def set_attribute(self, element: PageElement, name: str, value: str) -> None:
        tag = self._tag(element)
        if tag is None:
            logger.debug(f"Cannot set {name} on detached <{element.tag}>")
            return
        tag[name] = value
        element.attributes[name] = value

    async def replace_element(
        self, old: PageElement, tag: str, attributes: Dict[str, str]
    ) -> Optional[PageElement]:
        old_tag = self._tag(old)
        if old_tag is None or old_tag.parent is None:
            return None
        new_tag = self.soup.new_tag(tag, attrs=dict(attributes))
        old_tag.replace_with(new_tag)
        self._tags.pop(old.handle, None)
        return self._wrap(new_tag)

    async def reload(self) -> None:
        self.reload_count += 1
        if self.loader is not None:
            html = await self.loader()
            self.soup = parse_html(html)
            self._tags.clear()
        logger.debug(f"Reloaded {self.url} ({self.reload_count})")
        await self._dispatch_load()

    async def visibility_state(self) -> str:
        return self._visibility

    # --- Driving the page ---

    async def set_visibility(self, state: str) -> None:
        if state not in (VISIBLE, HIDDEN):
            raise ValueError(f"Unknown visibility state: {state}")
        if state == self._visibility:
            return
        self._visibility = state
        await self._dispatch_visibility(state)

    async def insert(self, html: str, parent_selector: str = "body") -> List[PageElement]:
        """Append parsed HTML under the first element matching parent_selector."""
        parent = self.soup.select_one(parent_selector)
        if parent is None:
            raise ValueError(f"No element matches {parent_selector}")

        fragment = parse_html(html)
        added = []
        for node in list(fragment.contents):
            if isinstance(node, Tag):
                parent.append(node)
                added.append(self._wrap(node))

        if added:
            await self._dispatch_nodes_added(added)
        return added
