import json
from typing import Any, Dict, List, Optional

from hotdog.chrome_cdp import CdpSession
from hotdog.exceptions import CdpError
from hotdog.page.document import PageDocument, PageElement
from hotdog.utils.logger import logger

ADDED_EVENT = "HOTDOG_ADDED"
VISIBILITY_EVENT = "HOTDOG_VISIBILITY"

# Installed into every page load. Elements get a string handle the first
# time they are described; the handle map is how later calls find them.
PAGE_HELPER_JS = """
(function () {
  if (window.__hotdog) return true;
  const elements = new Map();
  let nextId = 1;

  function handle(el) {
    if (!el.__hotdogId) el.__hotdogId = String(nextId++);
    elements.set(el.__hotdogId, el);
    return el.__hotdogId;
  }

  function describe(el) {
    const attributes = {};
    for (const attr of el.attributes) attributes[attr.name] = attr.value;
    return {tag: el.tagName.toLowerCase(), handle: handle(el), attributes: attributes};
  }

  window.__hotdog = {
    root: () => describe(document.documentElement),
    query: (selector) => Array.from(document.querySelectorAll(selector)).map(describe),
    set: (id, name, value) => {
      const el = elements.get(id);
      if (!el) return false;
      el.setAttribute(name, value);
      return true;
    },
    replace: (id, tag, attributes) => {
      const old = elements.get(id);
      if (!old || !old.parentNode) return null;
      const el = document.createElement(tag);
      for (const [name, value] of Object.entries(attributes)) el.setAttribute(name, value);
      old.parentNode.replaceChild(el, old);
      elements.delete(id);
      return describe(el);
    },
  };

  new MutationObserver((mutations) => {
    const added = [];
    for (const mutation of mutations) {
      for (const node of mutation.addedNodes) {
        if (node.nodeType === 1 && node.tagName === "SCRIPT") added.push(describe(node));
      }
    }
    if (added.length) console.debug("HOTDOG_ADDED", JSON.stringify(added));
  }).observe(document.documentElement, {childList: true, subtree: true});

  document.addEventListener("visibilitychange", () => {
    console.debug("HOTDOG_VISIBILITY", document.visibilityState);
  });
  return true;
})()
"""


def _element(data: Dict[str, Any]) -> PageElement:
    return PageElement(
        tag=data.get("tag", ""),
        handle=data.get("handle"),
        attributes=dict(data.get("attributes") or {}),
    )


def _console_args(params: Dict[str, Any]) -> List[Any]:
    return [arg.get("value") for arg in params.get("args", [])]


class CdpDocument(PageDocument):
    """A live browser tab driven over the DevTools protocol."""

    def __init__(self, session: CdpSession):
        super().__init__()
        self.session = session

    @classmethod
    async def connect(cls, ws_url: str) -> "CdpDocument":
        document = cls(CdpSession(ws_url))
        try:
            await document.open()
        except CdpError:
            await document.close()
            raise
        return document

    async def open(self) -> None:
        await self.session.connect()
        self.session.on("Runtime.consoleAPICalled", self._on_console)
        self.session.on("Page.loadEventFired", self._on_load_event)
        await self.session.send("Runtime.enable")
        await self.session.send("Page.enable")
        await self._install_helper()

    async def close(self) -> None:
        await self.session.close()

    async def _install_helper(self) -> None:
        await self.session.evaluate(PAGE_HELPER_JS)

    async def _call(self, function: str, *args: Any) -> Any:
        arguments = ", ".join(json.dumps(arg) for arg in args)
        return await self.session.evaluate(f"window.__hotdog.{function}({arguments})")

    # --- Element operations ---

    async def location(self) -> str:
        return await self.session.evaluate("location.href")

    async def root(self) -> PageElement:
        return _element(await self._call("root"))

    async def query(self, selector: str) -> List[PageElement]:
        return [_element(data) for data in await self._call("query", selector) or []]

    async def current_script(self) -> Optional[PageElement]:
        # The client runs outside the page, so no script element is ours
        return None

    async def set_attribute(self, element: PageElement, name: str, value: str) -> None:
        if await self._call("set", element.handle, name, value):
            element.attributes[name] = value
        else:
            logger.debug(f"Element {element.handle} is gone, could not set {name}")

    async def replace_element(
        self, old: PageElement, tag: str, attributes: Dict[str, str]
    ) -> Optional[PageElement]:
        data = await self._call("replace", old.handle, tag, attributes)
        return _element(data) if data else None

    async def reload(self) -> None:
        await self.session.send("Page.reload", {"ignoreCache": False})

    async def visibility_state(self) -> str:
        return await self.session.evaluate("document.visibilityState")

    # --- CDP events ---

    async def _on_console(self, params: Dict[str, Any]) -> None:
        args = _console_args(params)
        if len(args) < 2:
            return
        event, payload = args[0], args[1]
        if event == ADDED_EVENT:
            try:
                elements = [_element(data) for data in json.loads(payload)]
            except (TypeError, ValueError) as e:
                logger.warning(f"Malformed {ADDED_EVENT} payload: {e}")
                return
            await self._dispatch_nodes_added(elements)
        elif event == VISIBILITY_EVENT:
            await self._dispatch_visibility(str(payload))

    async def _on_load_event(self, params: Dict[str, Any]) -> None:
        try:
            await self._install_helper()
        except CdpError as e:
            logger.warning(f"Could not reinstall page helper: {e}")
            return
        await self._dispatch_load()
