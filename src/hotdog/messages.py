from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from hotdog.utils.urls import tab_host

UNKNOWN_TYPE = "Unknown Type"
MISSING_FILE = "Missing File"


class MessageType(str, Enum):
    # page -> service
    CONNECT = "connect"
    OBSERVE = "observe"
    UNOBSERVE = "unobserve"
    # service -> page
    ENABLED = "enabled"
    DISABLED = "disabled"


class Message(BaseModel):
    type: str
    dataset: Optional[Dict[str, Any]] = None

    @property
    def file(self) -> Optional[str]:
        if not self.dataset:
            return None
        file = self.dataset.get("file")
        return file if isinstance(file, str) and file else None


class Sender(BaseModel):
    """Identity of the page a request came from."""

    tab_id: str
    url: str = Field(default="about:blank")

    @property
    def host(self) -> str:
        return tab_host(self.url)


def error(message: str) -> Dict[str, str]:
    return {"error": message}


def is_error(response: Any) -> bool:
    return isinstance(response, dict) and "error" in response
