from typing import Dict, List, NamedTuple

from hotdog.channel import PageChannel
from hotdog.page.document import VISIBLE, PageDocument, PageElement
from hotdog.targets import Target, TargetKind
from hotdog.utils.logger import logger, page_log
from hotdog.utils.urls import is_observable


class ScanRule(NamedTuple):
    kind: TargetKind
    selector: str
    attribute: str
    skip_current_script: bool = False


SCAN_RULES = [
    ScanRule(TargetKind.SCRIPT, "script[src]", "src", skip_current_script=True),
    ScanRule(TargetKind.STYLESHEET, "link[href]", "href"),
    ScanRule(TargetKind.IMAGE, "img[src]", "src"),
]


def summarize(counts: Dict[TargetKind, int]) -> str:
    """'1 Document, 2 Scripts, 1 Image' style summary, kinds in scan order."""
    labels = []
    for kind in TargetKind:
        count = counts.get(kind, 0)
        if count:
            labels.append(f"{count} {kind.value}{'s' if count > 1 else ''}")
    return ", ".join(labels)


class TargetRegistry:
    """The page's set of watched elements."""

    def __init__(self, document: PageDocument, channel: PageChannel):
        self.document = document
        self.channel = channel
        self.targets: List[Target] = []

    async def register(self) -> Dict[TargetKind, int]:
        """Drop every current target and rebuild the set from the page."""
        await self.teardown()

        location = await self.document.location()
        root = await self.document.root()
        self.targets.append(
            await Target.create(TargetKind.DOCUMENT, root, location, self.document, self.channel)
        )
        counts: Dict[TargetKind, int] = {TargetKind.DOCUMENT: 1}

        current_script = await self.document.current_script()
        for rule in SCAN_RULES:
            count = 0
            for element in await self.document.query(rule.selector):
                value = element.get(rule.attribute)
                if not is_observable(value):
                    continue
                if rule.skip_current_script and element.is_same(current_script):
                    continue
                self.targets.append(
                    await Target.create(rule.kind, element, value, self.document, self.channel)
                )
                count += 1
            if count:
                counts[rule.kind] = count

        logger.info(page_log(f"Observing {summarize(counts)}"))
        self.document.add_nodes_added_listener(self.on_nodes_added)
        return counts

    async def teardown(self) -> None:
        self.document.remove_nodes_added_listener(self.on_nodes_added)
        targets, self.targets = self.targets, []
        for target in targets:
            await target.unobserve()

    def urls(self) -> List[str]:
        return sorted({target.file for target in self.targets})

    # --- Page events ---

    async def on_nodes_added(self, elements: List[PageElement]) -> None:
        for element in elements:
            if element.tag.lower() != "script":
                continue
            value = element.get("src")
            # Stamped elements are our own replacements, not new assets
            if not is_observable(value) or element.hot is not None:
                continue
            target = await Target.create(
                TargetKind.SCRIPT, element, value, self.document, self.channel
            )
            self.targets.append(target)
            logger.debug(page_log(f"Observing injected script {target.file}"))

    async def on_visibility_change(self, state: str) -> None:
        if state == VISIBLE:
            for target in self.targets:
                target.observe()
            logger.debug(page_log(f"Page visible, resumed {len(self.targets)} targets"))
        else:
            for target in self.targets:
                await target.unobserve()
            logger.debug(page_log(f"Page hidden, paused {len(self.targets)} targets"))
