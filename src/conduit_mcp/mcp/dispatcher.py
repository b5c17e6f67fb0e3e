"""
Routes calls to the connection that owns the addressed server.
"""

from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from mcp.types import CallToolResult, GetPromptResult, ReadResourceResult

from conduit_mcp.errors import ConduitError, NotConnectedError, ProtocolError
from conduit_mcp.mcp.connection_manager import ServerConnection
from conduit_mcp.mcp.server_registry import ServerRegistry
from conduit_mcp.utils.logging import get_logger

logger = get_logger(__name__)


class Dispatcher:
    """
    Thin router over the server registry.

    Unknown or disconnected identifiers fail with NotConnectedError before any
    I/O. Results and typed errors from the connection pass through unchanged;
    anything else is wrapped so callers always get a typed failure.
    """

    def __init__(self, registry: ServerRegistry):
        self.registry = registry

    def _resolve(self, server_name: str, target: Optional[str] = None) -> ServerConnection:
        server_conn = self.registry.get_connection(server_name)
        if server_conn is None:
            raise NotConnectedError(server_name, target=target)
        return server_conn

    @asynccontextmanager
    async def _typed_failures(self, server_name: str, target: Optional[str]):
        try:
            yield
        except ConduitError:
            raise
        except Exception as e:
            logger.error(f"{server_name}: Unexpected failure for {target}: {e!r}")
            raise ProtocolError(
                f"Unexpected failure: {e}", server_name=server_name, target=target
            ) from e

    async def call_tool(
        self,
        server_name: str,
        tool_name: str,
        arguments: Optional[Dict[str, Any]] = None,
    ) -> CallToolResult:
        server_conn = self._resolve(server_name, tool_name)
        logger.info(
            "Requesting tool call",
            data={"server_name": server_name, "tool_name": tool_name},
        )
        async with self._typed_failures(server_name, tool_name):
            return await server_conn.call_tool(tool_name, arguments)

    async def read_resource(self, server_name: str, uri: str) -> ReadResourceResult:
        server_conn = self._resolve(server_name, uri)
        async with self._typed_failures(server_name, uri):
            return await server_conn.read_resource(uri)

    async def get_prompt(
        self,
        server_name: str,
        prompt_name: str,
        arguments: Optional[Dict[str, str]] = None,
    ) -> GetPromptResult:
        server_conn = self._resolve(server_name, prompt_name)
        async with self._typed_failures(server_name, prompt_name):
            return await server_conn.get_prompt(prompt_name, arguments)

    async def ping(self, server_name: str) -> None:
        server_conn = self._resolve(server_name)
        async with self._typed_failures(server_name, "ping"):
            await server_conn.ping()

    async def is_alive(self, server_name: str) -> bool:
        """Ping, reporting any failure as False."""
        try:
            await self.ping(server_name)
        except ConduitError as e:
            logger.warning(f"Ping failed for {server_name}: {e}")
            return False
        return True
