import asyncio
import json
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

import aiohttp
import websockets
from pydantic import BaseModel, Field

from hotdog.config import REMOTE_DEBUG_PORT
from hotdog.exceptions import CdpError
from hotdog.utils.logger import logger

# Timeout for the DevTools HTTP endpoints (seconds)
CHROME_INFO_TIMEOUT = 2

# Timeout for opening/closing a tab's websocket (seconds)
CDP_CONNECT_TIMEOUT = 5

# Timeout for a single CDP command round trip (seconds)
CDP_COMMAND_TIMEOUT = 10

EventListener = Callable[[Dict[str, Any]], Awaitable[None]]


class ChromeTab(BaseModel):
    id: str
    url: str = Field(default="about:blank")
    webSocketDebuggerUrl: Optional[str] = None


async def get_tabs(port: int = REMOTE_DEBUG_PORT) -> List[ChromeTab]:
    """
    Get all Chrome page tabs via the DevTools HTTP API.

    DevTools windows, extensions and workers are skipped. Any failure is
    logged and yields an empty list.
    """
    tabs = []

    try:
        async with aiohttp.ClientSession() as session:
            async with session.get(
                f"http://localhost:{port}/json/list",
                timeout=aiohttp.ClientTimeout(total=CHROME_INFO_TIMEOUT),
            ) as response:
                if response.status != 200:
                    logger.error(f"Failed to get tabs: HTTP {response.status}")
                    return []

                cdp_tabs_json = await response.json()

        for tab_info in cdp_tabs_json:
            if tab_info.get("type") != "page":
                continue

            tab_data = {
                "id": tab_info.get("id"),
                "url": tab_info.get("url", "about:blank"),
                "webSocketDebuggerUrl": tab_info.get("webSocketDebuggerUrl"),
            }

            try:
                tabs.append(ChromeTab(**tab_data))
            except Exception as e:
                logger.error(f"Failed to parse tab data: {e}")

        return tabs

    except aiohttp.ClientError as e:
        logger.error(f"Failed to connect to Chrome DevTools API: {e}")
    except asyncio.TimeoutError:
        logger.error("Chrome DevTools API timed out")
    except json.JSONDecodeError as e:
        logger.error(f"Failed to parse Chrome DevTools API response: {e}")

    return []


async def get_chrome_info(port: int = REMOTE_DEBUG_PORT) -> Dict[str, Any]:
    """
    Check the DevTools connection and read the browser version.

    Returns:
        dict: {
            "connected": whether the endpoint answered,
            "version": browser version string ("Unknown" when not connected),
            "data": full /json/version payload, or None
        }
    """
    result: Dict[str, Any] = {"connected": False, "version": "Unknown", "data": None}

    try:
        async with aiohttp.ClientSession() as session:
            async with session.get(
                f"http://localhost:{port}/json/version",
                timeout=aiohttp.ClientTimeout(total=CHROME_INFO_TIMEOUT),
            ) as response:
                result["connected"] = response.status == 200

                if result["connected"]:
                    data = await response.json()
                    result["data"] = data
                    result["version"] = data.get("Browser", "Unknown")

    except (aiohttp.ClientError, asyncio.TimeoutError, json.JSONDecodeError) as e:
        logger.debug(f"Error getting Chrome info: {e}")

    return result


class CdpSession:
    """
    A long-lived DevTools websocket to one tab.

    Commands are matched to responses by id. Events are handed to the
    listeners registered for their method, each in its own task so a
    listener may itself send commands.
    """

    def __init__(self, ws_url: str):
        self.ws_url = ws_url
        self._ws = None
        self._next_id = 1
        self._pending: Dict[int, asyncio.Future] = {}
        self._listeners: Dict[str, List[EventListener]] = {}
        self._reader: Optional[asyncio.Task] = None
        self._event_tasks: Set[asyncio.Task] = set()

    @property
    def connected(self) -> bool:
        return self._reader is not None and not self._reader.done()

    async def connect(self) -> None:
        logger.debug(f"Connecting to tab via WebSocket: {self.ws_url}")
        try:
            self._ws = await websockets.connect(
                self.ws_url,
                open_timeout=CDP_CONNECT_TIMEOUT,
                close_timeout=CDP_CONNECT_TIMEOUT,
                max_size=20 * 1024 * 1024,  # default is 1mb, we use 20mb
            )
        except (OSError, asyncio.TimeoutError, websockets.WebSocketException) as e:
            raise CdpError(f"Could not connect to {self.ws_url}: {e}") from e
        self._reader = asyncio.create_task(self._read_loop(), name=f"hotdog-cdp:{self.ws_url}")

    def on(self, method: str, listener: EventListener) -> None:
        self._listeners.setdefault(method, []).append(listener)

    async def send(
        self,
        method: str,
        params: Optional[Dict[str, Any]] = None,
        timeout: float = CDP_COMMAND_TIMEOUT,
    ) -> Dict[str, Any]:
        """Send a command and return its `result` object."""
        if not self.connected:
            raise CdpError(f"{method}: session is not connected")

        msg_id = self._next_id
        self._next_id += 1
        command: Dict[str, Any] = {"id": msg_id, "method": method}
        if params:
            command["params"] = params

        future = asyncio.get_running_loop().create_future()
        self._pending[msg_id] = future
        try:
            await self._ws.send(json.dumps(command))
            response = await asyncio.wait_for(future, timeout=timeout)
        except asyncio.TimeoutError as e:
            raise CdpError(f"{method} timed out after {timeout}s") from e
        except websockets.ConnectionClosed as e:
            raise CdpError(f"{method}: connection closed") from e
        finally:
            self._pending.pop(msg_id, None)

        if "error" in response:
            raise CdpError(f"{method}: {response['error'].get('message', 'unknown error')}")
        return response.get("result", {})

    async def evaluate(self, expression: str) -> Any:
        """Run JavaScript in the page and return its value."""
        result = await self.send(
            "Runtime.evaluate",
            {"expression": expression, "returnByValue": True, "awaitPromise": True},
        )
        if "exceptionDetails" in result:
            details = result["exceptionDetails"]
            text = details.get("exception", {}).get("description") or details.get("text")
            raise CdpError(f"Script error: {text}")
        return result.get("result", {}).get("value")

    async def close(self) -> None:
        if self._ws is not None:
            await self._ws.close()
        if self._reader is not None:
            await asyncio.gather(self._reader, return_exceptions=True)
        for task in list(self._event_tasks):
            task.cancel()

    async def _read_loop(self) -> None:
        try:
            async for raw in self._ws:
                message = json.loads(raw)
                if "id" in message:
                    future = self._pending.get(message["id"])
                    if future is not None and not future.done():
                        future.set_result(message)
                elif "method" in message:
                    self._dispatch(message["method"], message.get("params", {}))
        except websockets.ConnectionClosed as e:
            logger.debug(f"CDP connection closed for {self.ws_url}: {e}")
        finally:
            for future in self._pending.values():
                if not future.done():
                    future.set_exception(CdpError("connection closed"))

    def _dispatch(self, method: str, params: Dict[str, Any]) -> None:
        for listener in self._listeners.get(method, []):
            task = asyncio.create_task(listener(params))
            self._event_tasks.add(task)
            task.add_done_callback(self._event_done)

    def _event_done(self, task: asyncio.Task) -> None:
        self._event_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Error in CDP event listener: {exc}")
