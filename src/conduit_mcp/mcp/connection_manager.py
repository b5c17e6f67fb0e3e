"""
Manages the lifecycle of multiple MCP server connections.
"""

import os
from datetime import timedelta
from typing import (
    Any,
    AsyncContextManager,
    Callable,
    Dict,
    List,
    Optional,
    Tuple,
)

import anyio
from anyio import Event, Lock, create_task_group
from anyio.abc import TaskGroup
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream
from mcp import ClientSession, McpError
from mcp.client.sse import sse_client
from mcp.client.stdio import StdioServerParameters
from mcp.types import (
    CallToolResult,
    GetPromptResult,
    Prompt,
    ReadResourceResult,
    Resource,
    TextContent,
    Tool,
)
from pydantic import ValidationError

from conduit_mcp.config import MCPServerSettings, SseTransportSettings, StdioTransportSettings
from conduit_mcp.errors import (
    ConduitError,
    PromptError,
    ProtocolError,
    ResourceError,
    ServerConnectionError,
    ServerValidationError,
    ToolError,
)
from conduit_mcp.mcp.client_session import ConduitClientSession
from conduit_mcp.utils.logging import get_logger
from conduit_mcp.utils.stdio import stdio_client_with_rich_stderr

logger = get_logger(__name__)

# Upper bound on the initialize handshake
DEFAULT_INIT_TIMEOUT_SECONDS = 30.0

# Upper bound on waiting for a lifecycle task to finish tearing down
SHUTDOWN_TIMEOUT_SECONDS = 10.0

ClientSessionFactory = Callable[..., ClientSession]
TransportContextFactory = Callable[
    [],
    AsyncContextManager[Tuple[MemoryObjectReceiveStream, MemoryObjectSendStream]],
]


def root_cause(exc: BaseException) -> BaseException:
    """Unwrap single-member exception groups raised by task groups."""
    while isinstance(exc, BaseExceptionGroup) and len(exc.exceptions) == 1:
        exc = exc.exceptions[0]
    return exc


def open_transport(server_name: str, config: MCPServerSettings) -> AsyncContextManager:
    """
    Build the transport context for a server's descriptor.

    Stdio environment overrides are merged onto the ambient process environment.
    """
    transport = config.transport
    if isinstance(transport, StdioTransportSettings):
        server_params = StdioServerParameters(
            command=transport.command,
            args=list(transport.args),
            env={**os.environ, **transport.env},
        )
        return stdio_client_with_rich_stderr(server_params, server_name=server_name)
    elif isinstance(transport, SseTransportSettings):
        return sse_client(transport.url, headers=dict(transport.headers) or None)
    else:
        raise ServerValidationError(
            f"Unsupported transport: {transport!r}", server_name=server_name
        )


def _tool_error_text(result: CallToolResult) -> str:
    texts = [item.text for item in result.content if isinstance(item, TextContent)]
    return "\n".join(texts) if texts else "Tool reported an error"


class ServerConnection:
    """
    Represents a long-lived MCP server connection.

    Includes:
    - The ClientSession to the server
    - The transport streams (via stdio/sse, etc.)
    - The protocol operations, with failures translated into typed errors
    """

    def __init__(
        self,
        server_name: str,
        server_config: MCPServerSettings,
        transport_context_factory: TransportContextFactory,
        client_session_factory: ClientSessionFactory,
        init_timeout_seconds: float = DEFAULT_INIT_TIMEOUT_SECONDS,
    ):
        self.server_name = server_name
        self.server_config = server_config
        self.session: ClientSession | None = None
        self.error: BaseException | None = None
        self._client_session_factory = client_session_factory
        self._transport_context_factory = transport_context_factory
        self._init_timeout_seconds = init_timeout_seconds
        # Signal that session is fully up and initialized (or failed)
        self._initialized_event = Event()

        # Signal we want to shut down
        self._shutdown_event = Event()

        # Signal the transport and process are gone
        self._closed_event = Event()

    @property
    def is_open(self) -> bool:
        return (
            self.session is not None
            and self.error is None
            and not self._shutdown_event.is_set()
            and not self._closed_event.is_set()
        )

    def request_shutdown(self) -> None:
        """
        Request the server to shut down. Signals the server lifecycle task to exit.
        """
        self._shutdown_event.set()

    async def wait_for_shutdown_request(self) -> None:
        await self._shutdown_event.wait()

    async def wait_for_initialized(self) -> None:
        await self._initialized_event.wait()

    async def wait_for_closed(self) -> None:
        await self._closed_event.wait()

    async def initialize_session(self) -> None:
        """
        Runs the initialize handshake. Must be called within the lifecycle task.
        """
        with anyio.fail_after(self._init_timeout_seconds):
            await self.session.initialize()

    def create_session(
        self,
        read_stream: MemoryObjectReceiveStream,
        send_stream: MemoryObjectSendStream,
    ) -> ClientSession:
        """
        Create a new session instance for this server connection.
        """
        read_timeout = (
            timedelta(seconds=self.server_config.read_timeout_seconds)
            if self.server_config.read_timeout_seconds
            else None
        )

        session = self._client_session_factory(
            read_stream, send_stream, read_timeout, server_name=self.server_name
        )
        self.session = session
        return session

    def _require_session(self) -> ClientSession:
        if not self.is_open:
            raise ServerConnectionError(
                f"Connection to server '{self.server_name}' is closed",
                server_name=self.server_name,
            )
        return self.session

    async def list_tools(self) -> List[Tool]:
        session = self._require_session()
        try:
            result = await session.list_tools()
        except McpError as e:
            raise ProtocolError(e.error.message, server_name=self.server_name, target="tools/list") from e
        return list(result.tools or [])

    async def list_resources(self) -> List[Resource]:
        session = self._require_session()
        try:
            result = await session.list_resources()
        except McpError as e:
            raise ProtocolError(e.error.message, server_name=self.server_name, target="resources/list") from e
        return list(result.resources or [])

    async def list_prompts(self) -> List[Prompt]:
        session = self._require_session()
        try:
            result = await session.list_prompts()
        except McpError as e:
            raise ProtocolError(e.error.message, server_name=self.server_name, target="prompts/list") from e
        return list(result.prompts or [])

    async def call_tool(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> CallToolResult:
        """
        Call a tool on this server. Arguments are sent as given.

        Raises:
            ToolError: If the server rejects the call or reports a tool failure.
        """
        session = self._require_session()
        try:
            result = await session.call_tool(name=name, arguments=arguments)
        except McpError as e:
            raise ToolError(
                e.error.message,
                server_name=self.server_name,
                target=name,
                details=e.error.model_dump(exclude_none=True),
            ) from e

        if result.isError:
            raise ToolError(
                _tool_error_text(result),
                server_name=self.server_name,
                target=name,
                details=[item.model_dump(mode="json", exclude_none=True) for item in result.content],
                result=result,
            )
        return result

    async def read_resource(self, uri: str) -> ReadResourceResult:
        session = self._require_session()
        try:
            return await session.read_resource(uri)
        except McpError as e:
            raise ResourceError(
                e.error.message,
                server_name=self.server_name,
                target=uri,
                details=e.error.model_dump(exclude_none=True),
            ) from e
        except ValidationError as e:
            raise ResourceError(f"Invalid resource URI: {uri}", server_name=self.server_name, target=uri) from e

    async def get_prompt(self, name: str, arguments: Optional[Dict[str, str]] = None) -> GetPromptResult:
        session = self._require_session()
        try:
            return await session.get_prompt(name, arguments=arguments)
        except McpError as e:
            raise PromptError(
                e.error.message,
                server_name=self.server_name,
                target=name,
                details=e.error.model_dump(exclude_none=True),
            ) from e
        except ValidationError as e:
            raise PromptError(
                f"Invalid prompt arguments: {e.error_count()} validation error(s)",
                server_name=self.server_name,
                target=name,
            ) from e

    async def ping(self) -> None:
        session = self._require_session()
        try:
            await session.send_ping()
        except McpError as e:
            raise ServerConnectionError(
                f"Ping failed: {e.error.message}", server_name=self.server_name
            ) from e


async def _server_lifecycle_task(server_conn: ServerConnection) -> None:
    """
    Manage the lifecycle of a single server connection.
    Runs inside the ConnectionManager's shared TaskGroup.
    """
    server_name = server_conn.server_name
    try:
        async with server_conn._transport_context_factory() as (read_stream, write_stream):
            server_conn.create_session(read_stream, write_stream)

            async with server_conn.session:
                await server_conn.initialize_session()
                logger.info(f"{server_name}: Initialized.")
                server_conn._initialized_event.set()

                # Wait until we're asked to shut down
                await server_conn.wait_for_shutdown_request()
    except Exception as exc:
        cause = root_cause(exc)
        logger.error(f"{server_name}: Lifecycle task encountered an error: {cause}")
        server_conn.error = cause
        # Don't re-raise here, as it would cancel every other connection
        # in the shared task group.
    finally:
        server_conn.session = None
        # Make sure waiters never hang on a connection that failed to start
        server_conn._initialized_event.set()
        server_conn._closed_event.set()
        logger.debug(f"{server_name}: Lifecycle task finished.")


class ConnectionManager:
    """
    Manages the lifecycle of multiple MCP server connections.

    Connections are kept in connect order; shutdown walks them in reverse.
    """

    def __init__(
        self,
        client_session_factory: ClientSessionFactory = ConduitClientSession,
        init_timeout_seconds: float = DEFAULT_INIT_TIMEOUT_SECONDS,
    ):
        self.running_servers: Dict[str, ServerConnection] = {}
        self._client_session_factory = client_session_factory
        self._init_timeout_seconds = init_timeout_seconds
        self._lock = Lock()
        self._tg: TaskGroup | None = None

    async def __aenter__(self):
        # We create a task group to manage all server lifecycle tasks
        self._tg = create_task_group()
        await self._tg.__aenter__()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        logger.debug("ConnectionManager: shutting down all server tasks...")
        try:
            with anyio.CancelScope(shield=True):
                await self.disconnect_all()
        finally:
            tg, self._tg = self._tg, None
            if tg is not None:
                await tg.__aexit__(exc_type, exc_val, exc_tb)

    def get(self, server_name: str) -> Optional[ServerConnection]:
        return self.running_servers.get(server_name)

    async def launch_server(
        self,
        server_name: str,
        server_config: MCPServerSettings,
    ) -> ServerConnection:
        """
        Connect to a server and return a ServerConnection instance that will persist
        until explicitly disconnected.

        Raises:
            ServerConnectionError: If the transport or the handshake fails.
        """
        if not self._tg:
            raise RuntimeError(
                "ConnectionManager must be used inside an async context (i.e. 'async with' or after __aenter__)."
            )

        logger.debug(
            f"{server_name}: Found server configuration=", data=server_config.model_dump()
        )

        transport_context = open_transport(server_name, server_config)

        server_conn = ServerConnection(
            server_name=server_name,
            server_config=server_config,
            transport_context_factory=lambda: transport_context,
            client_session_factory=self._client_session_factory,
            init_timeout_seconds=self._init_timeout_seconds,
        )

        async with self._lock:
            if server_name in self.running_servers:
                raise ServerValidationError(
                    f"Server '{server_name}' is already running", server_name=server_name
                )
            self.running_servers[server_name] = server_conn
            self._tg.start_soon(_server_lifecycle_task, server_conn)

        # Wait until it's fully initialized, or an error occurs
        await server_conn.wait_for_initialized()

        if server_conn.error is not None or server_conn.session is None:
            async with self._lock:
                self.running_servers.pop(server_name, None)
            cause = server_conn.error
            if isinstance(cause, ConduitError):
                raise ServerConnectionError(
                    cause.message, server_name=server_name, details=cause.details
                ) from cause
            raise ServerConnectionError(
                f"Failed to connect: {cause!r}" if cause else "Failed to connect",
                server_name=server_name,
            ) from cause

        logger.info(f"{server_name}: Up and running with a persistent connection!")
        return server_conn

    async def disconnect_server(self, server_name: str) -> bool:
        """
        Disconnect a specific server and wait for its transport to close.

        Returns:
            True if a connection was closed, False if none was running.
        """
        async with self._lock:
            server_conn = self.running_servers.pop(server_name, None)

        if server_conn is None:
            logger.debug(f"{server_name}: No persistent connection found. Skipping server shutdown")
            return False

        logger.info(f"{server_name}: Disconnecting persistent connection to server...")
        server_conn.request_shutdown()
        with anyio.move_on_after(SHUTDOWN_TIMEOUT_SECONDS) as scope:
            await server_conn.wait_for_closed()
        if scope.cancelled_caught:
            logger.warning(f"{server_name}: Timed out waiting for connection to close")
        else:
            logger.info(f"{server_name}: Disconnected.")
        return True

    async def disconnect_all(self) -> None:
        """
        Disconnect all servers, most recently connected first.
        """
        async with self._lock:
            server_names = list(self.running_servers)
        if server_names:
            logger.info("Disconnecting all persistent server connections...")
        for server_name in reversed(server_names):
            await self.disconnect_server(server_name)
