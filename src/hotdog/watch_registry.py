import asyncio
import inspect
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Union

from hotdog.config import PROBE_DELAY_SECONDS, PROBE_MAX_BACKOFF_SECONDS, PROBE_RETRY_LIMIT
from hotdog.exceptions import ProbeError
from hotdog.poller import Poller, ProbeOutcome
from hotdog.utils.logger import logger

# Delivered to subscribers when a resource has no usable modification stamp
UNTRACKABLE = None

NotifyCallback = Union[
    Callable[[Optional[str]], None],  # Sync callback
    Callable[[Optional[str]], Awaitable[None]],  # Async callback
]


@dataclass
class WatchedResource:
    url: str
    baseline: Optional[str] = None
    subscribers: Dict[str, NotifyCallback] = field(default_factory=dict)
    task: Optional[asyncio.Task] = None

    @property
    def count(self) -> int:
        return len(self.subscribers)

    @property
    def polling(self) -> bool:
        return self.task is not None and not self.task.done()


class WatchRegistry:
    """
    Reference-counted set of watched resources.

    Each resource owns one probe task that HEADs the URL, sleeps, and HEADs
    again until the resource changes, turns out to be untrackable, or loses
    its last subscriber. Subscribers of a resource share that single task.

    subscribe/unsubscribe are plain methods: they run to completion without
    yielding to the event loop, so each call sees and leaves a consistent
    registry. They must be called from inside the running loop.
    """

    def __init__(
        self,
        poller: Optional[Poller] = None,
        probe_delay: float = PROBE_DELAY_SECONDS,
        retry_limit: int = PROBE_RETRY_LIMIT,
        max_backoff: float = PROBE_MAX_BACKOFF_SECONDS,
    ):
        """
        Args:
            poller: object with an async check(url, baseline) and close()
            probe_delay: seconds between consecutive probes of one resource
            retry_limit: consecutive transport failures tolerated before a
                resource goes idle
            max_backoff: upper bound for the delay between failed probes
        """
        self.poller = poller or Poller()
        self.probe_delay = probe_delay
        self.retry_limit = retry_limit
        self.max_backoff = max_backoff
        self._resources: Dict[str, WatchedResource] = {}

    # --- Subscription API ---

    def subscribe(self, url: str, subscriber_id: str, callback: NotifyCallback) -> None:
        resource = self._resources.get(url)
        if resource is None:
            resource = WatchedResource(url=url, subscribers={subscriber_id: callback})
            self._resources[url] = resource
            logger.debug(f"Watching {url} (subscriber {subscriber_id})")
            self._start(resource)
            return

        # Re-subscribing keeps the count; the newest callback wins
        resource.subscribers[subscriber_id] = callback

        if not resource.polling:
            logger.debug(f"Resuming idle watch on {url} (subscriber {subscriber_id})")
            self._start(resource)

    def unsubscribe(self, url: str, subscriber_id: str) -> bool:
        resource = self._resources.get(url)
        if resource is None or subscriber_id not in resource.subscribers:
            return False

        del resource.subscribers[subscriber_id]
        if not resource.subscribers:
            self._drop(resource)
            logger.debug(f"Stopped watching {url}")
        return True

    def unsubscribe_all(self, subscriber_id: str) -> int:
        removed = 0
        for url in list(self._resources):
            if self.unsubscribe(url, subscriber_id):
                removed += 1
        if removed:
            logger.debug(f"Dropped {removed} subscription(s) for subscriber {subscriber_id}")
        return removed

    # --- Introspection ---

    def urls(self) -> List[str]:
        return list(self._resources)

    def subscriber_count(self, url: str) -> int:
        resource = self._resources.get(url)
        return resource.count if resource else 0

    def get(self, url: str) -> Optional[WatchedResource]:
        return self._resources.get(url)

    def __contains__(self, url: str) -> bool:
        return url in self._resources

    def __len__(self) -> int:
        return len(self._resources)

    async def close(self) -> None:
        """Cancel every probe task and release the poller."""
        tasks = [r.task for r in self._resources.values() if r.task and not r.task.done()]
        for resource in list(self._resources.values()):
            self._drop(resource)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self.poller.close()

    # --- Probe task ---

    def _start(self, resource: WatchedResource) -> None:
        task = asyncio.create_task(self._poll(resource), name=f"hotdog-probe:{resource.url}")
        task.add_done_callback(self._on_poll_done)
        resource.task = task

    def _drop(self, resource: WatchedResource) -> None:
        """Remove the entry and cancel its probe, unless called from that probe."""
        if self._resources.get(resource.url) is resource:
            del self._resources[resource.url]
        task, resource.task = resource.task, None
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def _on_poll_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error:
            logger.error(f"Probe task {task.get_name()} crashed: {error}")

    async def _poll(self, resource: WatchedResource) -> None:
        failures = 0
        while True:
            try:
                result = await self.poller.check(resource.url, resource.baseline)
            except ProbeError as e:
                failures += 1
                if failures > self.retry_limit:
                    logger.warning(
                        f"Giving up on {resource.url} after {failures} failed probes: {e.reason}"
                    )
                    return
                backoff = min(self.probe_delay * 2**failures, self.max_backoff)
                logger.debug(f"{e}; retrying in {backoff:.1f}s")
                await asyncio.sleep(backoff)
                continue

            failures = 0

            if result.outcome is ProbeOutcome.UNTRACKABLE:
                logger.debug(f"{resource.url} cannot be tracked (no usable Last-Modified)")
                await self._fan_out(resource, dict(resource.subscribers), UNTRACKABLE)
                return

            if result.outcome is ProbeOutcome.BASELINE:
                resource.baseline = result.last_modified

            elif result.outcome is ProbeOutcome.CHANGED:
                subscribers = dict(resource.subscribers)
                self._drop(resource)
                logger.info(f"Changed: {resource.url} ({result.last_modified})")
                await self._fan_out(resource, subscribers, result.last_modified)
                return

            if not resource.subscribers:
                return

            await asyncio.sleep(self.probe_delay)

    async def _fan_out(
        self,
        resource: WatchedResource,
        subscribers: Dict[str, NotifyCallback],
        value: Optional[str],
    ) -> None:
        for subscriber_id, callback in subscribers.items():
            try:
                result = callback(value)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(
                    f"Error notifying subscriber {subscriber_id} about {resource.url}: {e}",
                    exc_info=True,
                )
