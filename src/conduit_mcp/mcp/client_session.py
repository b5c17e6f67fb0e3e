"""
Custom client session for the Conduit MCP client.

This extends the base MCP client session with logging and with translation of
transport and framing faults into the client's typed errors.
"""

from datetime import timedelta
from typing import Optional

import anyio
from mcp import ClientSession, McpError
from mcp.shared.session import SendNotificationT
from mcp.types import Implementation, LoggingMessageNotificationParams
from pydantic import ValidationError

from conduit_mcp import __version__
from conduit_mcp.errors import ProtocolError, ServerConnectionError
from conduit_mcp.utils.logging import MCP_LOG_LEVELS, get_logger

logger = get_logger(__name__)

# JSON-RPC error codes the mcp library uses for local transport failures
REQUEST_TIMEOUT = 408
CONNECTION_CLOSED = -32000


class ConduitClientSession(ClientSession):
    """
    Client session for Conduit MCP connections to MCP servers.

    Supports:
    - Enhanced logging
    - Forwarding of server log notifications
    - Typed errors for transport faults and malformed responses
    """

    def __init__(
        self,
        read_stream,
        write_stream,
        read_timeout_seconds: Optional[timedelta] = None,
        server_name: Optional[str] = None,
    ):
        super().__init__(
            read_stream,
            write_stream,
            read_timeout_seconds,
            logging_callback=self._handle_log_message,
            client_info=Implementation(
                name=f"conduit-mcp-{server_name or 'client'}",
                version=__version__,
            ),
        )
        self.server_name = server_name

    async def send_request(self, request, result_type, *args, **kwargs):
        logger.debug(f"{self.server_name}: send_request: request=", data=request.model_dump())
        try:
            result = await super().send_request(request, result_type, *args, **kwargs)
        except McpError as e:
            if e.error.code in (REQUEST_TIMEOUT, CONNECTION_CLOSED):
                raise ServerConnectionError(
                    f"{e.error.message}",
                    server_name=self.server_name,
                    details=e.error.model_dump(exclude_none=True),
                ) from e
            logger.debug(f"{self.server_name}: send_request returned error: {e.error.message}")
            raise
        except (anyio.ClosedResourceError, anyio.BrokenResourceError, anyio.EndOfStream) as e:
            logger.error(f"{self.server_name}: send_request failed, channel closed")
            raise ServerConnectionError(
                "Connection to server is closed",
                server_name=self.server_name,
            ) from e
        except ValidationError as e:
            logger.error(f"{self.server_name}: malformed response: {e}")
            raise ProtocolError(
                f"Malformed response from server: {e.error_count()} validation error(s)",
                server_name=self.server_name,
                details=e.errors(include_url=False),
            ) from e

        logger.debug(f"{self.server_name}: send_request: response=", data=result.model_dump())
        return result

    async def send_notification(self, notification: SendNotificationT, *args, **kwargs) -> None:
        logger.debug(f"{self.server_name}: send_notification:", data=notification.model_dump())
        try:
            return await super().send_notification(notification, *args, **kwargs)
        except (anyio.ClosedResourceError, anyio.BrokenResourceError) as e:
            raise ServerConnectionError(
                "Connection to server is closed",
                server_name=self.server_name,
            ) from e

    async def _handle_log_message(self, params: LoggingMessageNotificationParams) -> None:
        """
        Forward a server log notification into the client log.
        """
        level = MCP_LOG_LEVELS.get(params.level, MCP_LOG_LEVELS["info"])
        source = params.logger or "server"
        logger.log(level, f"{self.server_name} [{source}]: {params.data}")
