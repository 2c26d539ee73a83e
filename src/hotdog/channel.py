from typing import Any, Dict, Optional

from hotdog.bridge import SubscriptionBridge
from hotdog.exceptions import BridgeError
from hotdog.messages import Message, MessageType, Sender, is_error
from hotdog.utils.logger import logger, page_log


class PageChannel:
    """Page-side end of the request/response channel to the service.

    A request that comes back with an error envelope, or without any
    response at all, raises BridgeError.
    """

    def __init__(self, bridge: SubscriptionBridge, tab_id: str, url: str = "about:blank"):
        self.bridge = bridge
        self.tab_id = tab_id
        self.url = url

    @property
    def sender(self) -> Sender:
        return Sender(tab_id=self.tab_id, url=self.url)

    async def request(
        self, message_type: MessageType, dataset: Optional[Dict[str, Any]] = None
    ) -> Any:
        message = Message(type=message_type.value, dataset=dataset)
        try:
            response = await self.bridge.handle(message, self.sender)
        except BridgeError:
            raise
        except Exception as e:
            logger.debug(page_log(f"'{message_type.value}' got no response: {e}"))
            raise BridgeError() from e

        if is_error(response):
            logger.warning(page_log(response["error"]))
            raise BridgeError(response["error"])
        return response
