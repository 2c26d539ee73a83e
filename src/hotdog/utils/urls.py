import ipaddress
import time
from typing import Optional
from urllib.parse import urljoin, urlsplit, urlunsplit

CACHE_BUST_PARAM = "t"
LOCAL_HOSTNAMES = ("localhost",)


def canonical_url(url: str, base: Optional[str] = None) -> str:
    """Resolve a URL against its page and reduce it to the form used as a watch key.

    - Resolves relative paths against `base` when given
    - Lowercases scheme and host
    - Keeps port, path and query
    - Drops the fragment (it never reaches the server)
    - Uses "/" for an empty path
    """
    url = url.strip()
    if base:
        url = urljoin(base, url)

    parts = urlsplit(url)
    path = parts.path or "/"
    return urlunsplit((parts.scheme.lower(), parts.netloc.lower(), path, parts.query, ""))


def is_local_host(host: Optional[str]) -> bool:
    """True for localhost names and loopback addresses."""
    if not host:
        return False
    host = host.lower().strip("[]")
    if host in LOCAL_HOSTNAMES or host.endswith(".localhost"):
        return True
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return False
    return address.is_loopback or address.is_unspecified


def is_observable(value: Optional[str]) -> bool:
    """Decide whether an element's URL attribute points at something worth watching.

    Empty values and data URIs are rejected, and so is any absolute or
    protocol-relative URL that leaves the local machine: third-party assets
    are never polled.
    """
    if not value:
        return False
    value = value.strip()
    if not value or value.startswith("data:"):
        return False

    if value.startswith("//"):
        return is_local_host(urlsplit("http:" + value).hostname)

    parts = urlsplit(value)
    if "://" in value:
        if parts.scheme.lower() not in ("http", "https"):
            return False
        return is_local_host(parts.hostname)

    # Other schemes (javascript:, blob:, mailto:) are not fetchable assets
    return not parts.scheme


def tab_host(url: str) -> str:
    """Origin of a tab's URL (scheme://host[:port]), the key for EnabledState."""
    parts = urlsplit(url)
    return f"{parts.scheme.lower()}://{parts.netloc.lower()}"


def now_ms() -> int:
    return int(time.time() * 1000)


def cache_bust(url: str, stamp: Optional[int] = None) -> str:
    """Append a time-based query parameter so the browser refetches the asset."""
    stamp = now_ms() if stamp is None else stamp
    parts = urlsplit(url)
    param = f"{CACHE_BUST_PARAM}={stamp}"
    query = f"{parts.query}&{param}" if parts.query else param
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))
