from pathlib import Path
from typing import Any, Dict, List, Optional

from hotdog.bridge import SubscriptionBridge, TabHub
from hotdog.enabled_hosts import EnabledHosts
from hotdog.page.document import PageDocument
from hotdog.poller import Poller
from hotdog.session import TabSession
from hotdog.utils.logger import logger
from hotdog.watch_registry import WatchRegistry


class HotdogService:
    """Owns the single watch registry and everything that talks to it."""

    def __init__(
        self,
        registry: Optional[WatchRegistry] = None,
        hosts: Optional[EnabledHosts] = None,
        hosts_path: Optional[Path] = None,
    ):
        self.registry = registry if registry is not None else WatchRegistry(poller=Poller())
        self.hosts = hosts if hosts is not None else EnabledHosts(hosts_path)
        self.hub = TabHub()
        self.bridge = SubscriptionBridge(self.registry, self.hosts, self.hub)
        self.sessions: Dict[str, TabSession] = {}

    async def open_tab(self, tab_id: str, document: PageDocument) -> TabSession:
        """Start a session for a tab, replacing any previous one."""
        await self.close_tab(tab_id)
        session = TabSession(tab_id, document, self.bridge)
        self.sessions[tab_id] = session
        enabled = await session.start()
        logger.debug(f"Tab {tab_id} at {session.url}: hot reload {'on' if enabled else 'off'}")
        return session

    async def close_tab(self, tab_id: str) -> bool:
        session = self.sessions.pop(tab_id, None)
        if session is None:
            return False
        await session.stop()
        return True

    async def toggle_tab(self, tab_id: str) -> Optional[bool]:
        """Flip hot reload for the tab's host. None when the tab is unknown."""
        session = self.sessions.get(tab_id)
        if session is None:
            return None
        return await self.bridge.toggle(session.channel.sender)

    def status(self) -> Dict[str, Any]:
        resources: List[Dict[str, Any]] = []
        for url in sorted(self.registry.urls()):
            resource = self.registry.get(url)
            if resource is None:
                continue
            resources.append(
                {
                    "url": url,
                    "count": resource.count,
                    "subscribers": sorted(resource.subscribers),
                    "polling": resource.polling,
                    "last_modified": resource.baseline,
                }
            )
        tabs = [
            {
                "id": tab_id,
                "url": session.url,
                "enabled": session.client.enabled,
                "targets": len(session.client.registry.targets),
            }
            for tab_id, session in sorted(self.sessions.items())
        ]
        return {
            "resources": resources,
            "tabs": tabs,
            "pending_observes": self.bridge.pending_count(),
        }

    async def close(self) -> None:
        for tab_id in list(self.sessions):
            await self.close_tab(tab_id)
        await self.registry.close()
