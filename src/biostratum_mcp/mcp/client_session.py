"""
Client session used for every Biostratum MCP server connection.

This extends the base MCP client session with logging of requests,
notifications and server-side log messages.
"""

from datetime import timedelta
from typing import Optional

from mcp import ClientSession
from mcp.types import Implementation, LoggingMessageNotificationParams

from biostratum_mcp.utils.logging import get_logger

logger = get_logger(__name__)

CLIENT_INFO = Implementation(name="biostratum", version="0.1.0")


class BiostratumClientSession(ClientSession):
    """
    Client session for Biostratum connections to MCP servers.

    Supports:
    - Request/response logging
    - Notification logging
    - Forwarding server log messages into the local logger
    """

    def __init__(
        self,
        read_stream,
        write_stream,
        read_timeout_seconds: Optional[timedelta] = None,
        server_name: Optional[str] = None,
        **kwargs,
    ):
        self.server_name = server_name or "unknown"
        kwargs.setdefault("client_info", CLIENT_INFO)
        kwargs.setdefault("logging_callback", self._handle_server_log)
        super().__init__(read_stream, write_stream, read_timeout_seconds, **kwargs)

    async def send_request(self, request, result_type, *args, **kwargs):
        logger.debug(f"{self.server_name}: send_request:", data=request.model_dump())
        try:
            result = await super().send_request(request, result_type, *args, **kwargs)
            logger.debug(f"{self.server_name}: send_request: response=", data=result.model_dump())
            return result
        except Exception as e:
            logger.error(f"{self.server_name}: send_request failed: {e}")
            raise

    async def send_notification(self, notification, *args, **kwargs) -> None:
        logger.debug(f"{self.server_name}: send_notification:", data=notification.model_dump())
        return await super().send_notification(notification, *args, **kwargs)

    async def _received_notification(self, notification) -> None:
        logger.debug(
            f"{self.server_name}: _received_notification: notification=",
            data=notification.model_dump(),
        )
        return await super()._received_notification(notification)

    async def _handle_server_log(self, params: LoggingMessageNotificationParams) -> None:
        logger.info(f"{self.server_name}: server log [{params.level}]: {params.data}")
