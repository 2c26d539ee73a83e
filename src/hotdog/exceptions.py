class HotdogError(Exception):
    """Base class for hotdog errors."""


class BridgeError(HotdogError):
    """A request across the page/service boundary failed or came back empty."""

    EMPTY_RESPONSE = "Empty Response"

    def __init__(self, message: str = EMPTY_RESPONSE):
        super().__init__(message)
        self.message = message


class ProbeError(HotdogError):
    """A HEAD probe could not reach the resource."""

    def __init__(self, url: str, reason: str):
        super().__init__(f"Probe failed for {url}: {reason}")
        self.url = url
        self.reason = reason


class CdpError(HotdogError):
    """A Chrome DevTools Protocol command failed."""
