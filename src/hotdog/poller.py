import asyncio
from enum import Enum
from typing import NamedTuple, Optional, Tuple

import aiohttp

from hotdog.config import PROBE_TIMEOUT_SECONDS
from hotdog.exceptions import ProbeError
from hotdog.utils.logger import logger

NO_CACHE_DIRECTIVES = ("no-cache", "no-store")


class ProbeOutcome(Enum):
    BASELINE = "baseline"
    UNCHANGED = "unchanged"
    CHANGED = "changed"
    UNTRACKABLE = "untrackable"


class ProbeResult(NamedTuple):
    outcome: ProbeOutcome
    last_modified: Optional[str] = None


def forbids_caching(cache_control: Optional[str]) -> bool:
    """True when a Cache-Control header tells us the resource must not be cached."""
    if not cache_control:
        return False
    directives = {part.strip().split("=", 1)[0].lower() for part in cache_control.split(",")}
    return any(directive in directives for directive in NO_CACHE_DIRECTIVES)


def interpret_headers(
    cache_control: Optional[str], last_modified: Optional[str], baseline: Optional[str]
) -> ProbeResult:
    """
    Decide what one probe means for a resource.

    Args:
        cache_control: Cache-Control response header, if any
        last_modified: Last-Modified response header, if any
        baseline: the stamp recorded by earlier probes, None before the first one

    Returns:
        ProbeResult: UNTRACKABLE when the resource carries no usable stamp,
        BASELINE on the first usable stamp, then CHANGED or UNCHANGED.
    """
    if not last_modified or forbids_caching(cache_control):
        return ProbeResult(ProbeOutcome.UNTRACKABLE)
    if baseline is None:
        return ProbeResult(ProbeOutcome.BASELINE, last_modified)
    if last_modified != baseline:
        return ProbeResult(ProbeOutcome.CHANGED, last_modified)
    return ProbeResult(ProbeOutcome.UNCHANGED, last_modified)


class Poller:
    """Issues HEAD probes against watched resources over a shared aiohttp session."""

    def __init__(self, timeout: float = PROBE_TIMEOUT_SECONDS):
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
        return self._session

    async def head(self, url: str) -> Tuple[Optional[str], Optional[str]]:
        """HEAD the URL and return its (Cache-Control, Last-Modified) headers.

        Raises ProbeError on transport failure. Cancellation propagates so a
        caller can abort an in-flight probe.
        """
        try:
            async with self._get_session().head(url, allow_redirects=True) as response:
                headers = response.headers
                return headers.get("Cache-Control"), headers.get("Last-Modified")
        except aiohttp.ClientError as e:
            raise ProbeError(url, str(e) or type(e).__name__) from e
        except asyncio.TimeoutError as e:
            raise ProbeError(url, f"timed out after {self.timeout}s") from e

    async def check(self, url: str, baseline: Optional[str]) -> ProbeResult:
        cache_control, last_modified = await self.head(url)
        result = interpret_headers(cache_control, last_modified, baseline)
        if result.outcome is not ProbeOutcome.UNCHANGED:
            logger.debug(f"Probe {url}: {result.outcome.value} ({last_modified})")
        return result

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None
