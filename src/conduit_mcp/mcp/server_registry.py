"""
Server registry: the single source of truth for what is connected
and what each connected server can do.
"""

import asyncio
from asyncio import Lock, gather
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Dict, List, Mapping, Optional, Tuple

from mcp.types import Prompt, Resource, Tool
from pydantic import BaseModel, ConfigDict, Field

from conduit_mcp.config import MCPServerSettings, check_server_name
from conduit_mcp.errors import ConduitError, ServerValidationError
from conduit_mcp.mcp.client_session import ConduitClientSession
from conduit_mcp.mcp.connection_manager import (
    DEFAULT_INIT_TIMEOUT_SECONDS,
    ClientSessionFactory,
    ConnectionManager,
    ServerConnection,
)
from conduit_mcp.utils.logging import get_logger

logger = get_logger(__name__)

# Upper bound on each capability list call during discovery
DEFAULT_DISCOVERY_TIMEOUT_SECONDS = 30.0


class ServerCapabilities(BaseModel):
    """
    Capabilities captured from one server at connect time.
    Never refreshed except by reconnecting.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    display_name: Optional[str] = None
    description: Optional[str] = None
    tools: List[Tool] = Field(default_factory=list)
    resources: List[Resource] = Field(default_factory=list)
    prompts: List[Prompt] = Field(default_factory=list)


class ConnectionOutcome(BaseModel):
    """Result of connecting one configured server at startup."""

    server_name: str
    success: bool
    error: Optional[str] = None


class ServerRegistry:
    """
    Owns every server connection and its capability snapshot.

    Connect and disconnect are mutually exclusive per server identifier;
    different identifiers may be connected or disconnected concurrently.
    """

    def __init__(
        self,
        client_session_factory: ClientSessionFactory = ConduitClientSession,
        init_timeout_seconds: float = DEFAULT_INIT_TIMEOUT_SECONDS,
        discovery_timeout_seconds: float = DEFAULT_DISCOVERY_TIMEOUT_SECONDS,
    ):
        self.connection_manager = ConnectionManager(
            client_session_factory=client_session_factory,
            init_timeout_seconds=init_timeout_seconds,
        )
        self.discovery_timeout_seconds = discovery_timeout_seconds
        self._capabilities: Dict[str, ServerCapabilities] = {}
        self._server_locks: Dict[str, Lock] = {}
        self._lock_holders: Dict[str, int] = {}

    async def __aenter__(self):
        await self.connection_manager.__aenter__()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        try:
            await self.disconnect()
        finally:
            await self.connection_manager.__aexit__(exc_type, exc_val, exc_tb)

    @asynccontextmanager
    async def _server_lock(self, server_name: str):
        """
        Hold the per-server lock. The lock is dropped once nothing holds or
        waits on it, so the table only covers identifiers in use.
        """
        lock = self._server_locks.setdefault(server_name, Lock())
        self._lock_holders[server_name] = self._lock_holders.get(server_name, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_holders[server_name] -= 1
            if not self._lock_holders[server_name]:
                del self._lock_holders[server_name]
                del self._server_locks[server_name]

    async def connect(self, server_name: str, server_config: MCPServerSettings) -> ServerCapabilities:
        """
        Connect to a server and capture its capabilities before returning.

        Connecting an already-connected identifier closes the old connection first.

        Raises:
            ServerValidationError: If the identifier is unusable.
            ServerConnectionError: If the transport or handshake fails.
        """
        problem = check_server_name(server_name)
        if problem:
            raise ServerValidationError(problem, server_name=server_name)

        async with self._server_lock(server_name):
            if self.connection_manager.get(server_name) is not None:
                logger.info(f"{server_name}: Replacing existing connection")
                self._capabilities.pop(server_name, None)
                await self.connection_manager.disconnect_server(server_name)

            logger.info(f"{server_name}: Connecting...")
            server_conn = await self.connection_manager.launch_server(server_name, server_config)
            try:
                capabilities = await self._discover_capabilities(server_conn)
            except BaseException:
                await self.connection_manager.disconnect_server(server_name)
                raise
            self._capabilities[server_name] = capabilities

        logger.info(
            f"{server_name}: capabilities",
            data={
                "tools": len(capabilities.tools),
                "resources": len(capabilities.resources),
                "prompts": len(capabilities.prompts),
            },
        )
        return capabilities

    async def _discover_capabilities(self, server_conn: ServerConnection) -> ServerCapabilities:
        """
        List tools, resources and prompts concurrently. Each list is
        best-effort: a failure or timeout leaves that list empty.
        """
        server_name = server_conn.server_name

        async def settle(kind: str, call: Awaitable[List[Any]]) -> List[Any]:
            try:
                return await asyncio.wait_for(call, timeout=self.discovery_timeout_seconds)
            except asyncio.TimeoutError:
                logger.warning(f"{server_name}: Timed out listing {kind}")
            except ConduitError as e:
                logger.debug(f"{server_name}: No {kind} available: {e}")
            except Exception as e:
                logger.warning(f"{server_name}: Listing {kind} failed: {e!r}")
            return []

        tools, resources, prompts = await gather(
            settle("tools", server_conn.list_tools()),
            settle("resources", server_conn.list_resources()),
            settle("prompts", server_conn.list_prompts()),
        )

        return ServerCapabilities(
            name=server_name,
            display_name=server_conn.server_config.name,
            description=server_conn.server_config.description,
            tools=tools,
            resources=resources,
            prompts=prompts,
        )

    async def connect_all(self, servers: Mapping[str, MCPServerSettings]) -> List[ConnectionOutcome]:
        """
        Connect every configured server concurrently. Failures are reported
        per server and never abort the others.
        """

        async def connect_one(server_name: str, server_config: MCPServerSettings) -> ConnectionOutcome:
            try:
                await self.connect(server_name, server_config)
                return ConnectionOutcome(server_name=server_name, success=True)
            except ConduitError as e:
                logger.error(f"Failed to connect to {server_name}: {e}")
                return ConnectionOutcome(server_name=server_name, success=False, error=str(e))
            except Exception as e:
                logger.exception(f"Unexpected error connecting to {server_name}")
                return ConnectionOutcome(server_name=server_name, success=False, error=str(e) or type(e).__name__)

        return list(
            await gather(*(connect_one(name, config) for name, config in servers.items()))
        )

    async def disconnect(self, server_name: Optional[str] = None) -> None:
        """
        Disconnect one server, or every server when no identifier is given.
        Unknown identifiers are ignored.
        """
        if server_name is None:
            for name in reversed(list(self.connection_manager.running_servers)):
                await self.disconnect(name)
            return

        async with self._server_lock(server_name):
            self._capabilities.pop(server_name, None)
            await self.connection_manager.disconnect_server(server_name)

    def get(self, server_name: str) -> Optional[ServerCapabilities]:
        return self._capabilities.get(server_name)

    def get_all(self) -> Dict[str, ServerCapabilities]:
        return dict(self._capabilities)

    def is_connected(self, server_name: str) -> bool:
        return server_name in self._capabilities and self.connection_manager.get(server_name) is not None

    def list_ids(self) -> List[str]:
        return list(self._capabilities)

    def get_connection(self, server_name: str) -> Optional[ServerConnection]:
        """
        Live connection for a connected server, for the duration of one call.
        """
        if server_name not in self._capabilities:
            return None
        return self.connection_manager.get(server_name)

    def list_all_tools(self) -> Dict[str, List[Tool]]:
        return {name: list(caps.tools) for name, caps in self._capabilities.items()}

    def list_all_resources(self) -> Dict[str, List[Resource]]:
        return {name: list(caps.resources) for name, caps in self._capabilities.items()}

    def find_tool(self, tool_name: str) -> List[Tuple[str, Tool]]:
        """
        Every connected server exposing a tool with exactly this name.
        """
        return [
            (server_name, tool)
            for server_name, caps in self._capabilities.items()
            for tool in caps.tools
            if tool.name == tool_name
        ]
