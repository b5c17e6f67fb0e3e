"""Tests for protocol-level error translation."""

from unittest.mock import AsyncMock, MagicMock, patch

import anyio
import pytest
from mcp import ClientSession
from mcp.shared.exceptions import McpError
from mcp.types import (
    CallToolResult,
    ClientRequest,
    EmptyResult,
    ErrorData,
    ListToolsResult,
    PingRequest,
    TextContent,
    Tool,
)
from pydantic import ValidationError

from conduit_mcp.errors import (
    PromptError,
    ProtocolError,
    ResourceError,
    ServerConnectionError,
    ToolError,
)
from conduit_mcp.mcp.client_session import ConduitClientSession
from conduit_mcp.config import MCPServerSettings, SseTransportSettings, StdioTransportSettings
from conduit_mcp.mcp.connection_manager import ServerConnection, open_transport, root_cause

from conftest import make_config, make_tool


def open_connection(session) -> ServerConnection:
    server_conn = ServerConnection(
        server_name="files",
        server_config=make_config(),
        transport_context_factory=MagicMock(),
        client_session_factory=MagicMock(),
    )
    server_conn.session = session
    return server_conn


def mcp_error(code: int, message: str) -> McpError:
    return McpError(ErrorData(code=code, message=message))


class TestServerConnection:
    """Tests for ServerConnection operations against a mocked session."""

    @pytest.mark.asyncio
    async def test_list_tools(self):
        session = AsyncMock()
        session.list_tools.return_value = ListToolsResult(tools=[make_tool("read_file")])

        tools = await open_connection(session).list_tools()

        assert [t.name for t in tools] == ["read_file"]

    @pytest.mark.asyncio
    async def test_list_error_is_protocol_error(self):
        session = AsyncMock()
        session.list_prompts.side_effect = mcp_error(-32601, "Method not found")

        with pytest.raises(ProtocolError) as exc_info:
            await open_connection(session).list_prompts()

        assert exc_info.value.server_name == "files"
        assert exc_info.value.target == "prompts/list"

    @pytest.mark.asyncio
    async def test_call_tool_sends_arguments_verbatim(self):
        session = AsyncMock()
        expected = CallToolResult(content=[TextContent(type="text", text="hello")])
        session.call_tool.return_value = expected
        arguments = {"path": "/tmp/a.txt", "encoding": None, "lines": [1, 2]}

        result = await open_connection(session).call_tool("read_file", arguments)

        assert result is expected
        session.call_tool.assert_awaited_once_with(name="read_file", arguments=arguments)

    @pytest.mark.asyncio
    async def test_call_tool_rejected(self):
        session = AsyncMock()
        session.call_tool.side_effect = mcp_error(-32602, "Unknown tool: nope")

        with pytest.raises(ToolError) as exc_info:
            await open_connection(session).call_tool("nope", {})

        assert exc_info.value.target == "nope"
        assert "Unknown tool" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_call_tool_reported_failure(self):
        """A result flagged isError is raised with the result attached."""
        session = AsyncMock()
        failed = CallToolResult(
            content=[TextContent(type="text", text="file not found")], isError=True
        )
        session.call_tool.return_value = failed

        with pytest.raises(ToolError) as exc_info:
            await open_connection(session).call_tool("read_file", {"path": "/missing"})

        assert exc_info.value.result is failed
        assert exc_info.value.message == "file not found"
        assert exc_info.value.to_dict()["server"] == "files"

    @pytest.mark.asyncio
    async def test_read_resource_error(self):
        session = AsyncMock()
        session.read_resource.side_effect = mcp_error(-32002, "Resource not found")

        with pytest.raises(ResourceError) as exc_info:
            await open_connection(session).read_resource("file:///missing")

        assert exc_info.value.target == "file:///missing"

    @pytest.mark.asyncio
    async def test_get_prompt_error(self):
        session = AsyncMock()
        session.get_prompt.side_effect = mcp_error(-32602, "Missing argument: topic")

        with pytest.raises(PromptError):
            await open_connection(session).get_prompt("summarize", {})

    @pytest.mark.asyncio
    async def test_closed_connection(self):
        server_conn = open_connection(None)

        with pytest.raises(ServerConnectionError):
            await server_conn.call_tool("read_file", {})

    @pytest.mark.asyncio
    async def test_shutdown_requested_connection_is_closed(self):
        server_conn = open_connection(AsyncMock())
        server_conn.request_shutdown()

        assert not server_conn.is_open
        with pytest.raises(ServerConnectionError):
            await server_conn.ping()


class TestClientSession:
    """Tests for ConduitClientSession.send_request translation."""

    def make_session(self):
        send_stream, receive_stream = anyio.create_memory_object_stream(1)
        return ConduitClientSession(receive_stream, send_stream, server_name="files")

    def ping_request(self):
        return ClientRequest(PingRequest(method="ping"))

    @pytest.mark.asyncio
    async def test_closed_channel(self):
        session = self.make_session()

        with patch.object(ClientSession, "send_request", side_effect=anyio.ClosedResourceError()):
            with pytest.raises(ServerConnectionError) as exc_info:
                await session.send_request(self.ping_request(), EmptyResult)

        assert exc_info.value.server_name == "files"

    @pytest.mark.asyncio
    async def test_timeout(self):
        session = self.make_session()

        with patch.object(ClientSession, "send_request", side_effect=mcp_error(408, "Timed out")):
            with pytest.raises(ServerConnectionError):
                await session.send_request(self.ping_request(), EmptyResult)

    @pytest.mark.asyncio
    async def test_malformed_response(self):
        try:
            Tool.model_validate({"description": "no name"})
        except ValidationError as e:
            validation_error = e

        session = self.make_session()

        with patch.object(ClientSession, "send_request", side_effect=validation_error):
            with pytest.raises(ProtocolError):
                await session.send_request(self.ping_request(), EmptyResult)

    @pytest.mark.asyncio
    async def test_server_errors_pass_through(self):
        session = self.make_session()

        with patch.object(ClientSession, "send_request", side_effect=mcp_error(-32601, "Method not found")):
            with pytest.raises(McpError):
                await session.send_request(self.ping_request(), EmptyResult)


class TestOpenTransport:
    """Tests for building a transport from a server descriptor."""

    def test_sse_passes_url_and_headers(self):
        config = MCPServerSettings(
            transport=SseTransportSettings(
                url="https://mcp.example.com/sse",
                headers={"Authorization": "Bearer secret"},
            )
        )

        with patch("conduit_mcp.mcp.connection_manager.sse_client") as sse_client:
            transport = open_transport("remote", config)

        sse_client.assert_called_once_with(
            "https://mcp.example.com/sse", headers={"Authorization": "Bearer secret"}
        )
        assert transport is sse_client.return_value

    def test_sse_without_headers(self):
        config = MCPServerSettings(transport=SseTransportSettings(url="http://localhost:8080/sse"))

        with patch("conduit_mcp.mcp.connection_manager.sse_client") as sse_client:
            open_transport("local", config)

        sse_client.assert_called_once_with("http://localhost:8080/sse", headers=None)

    def test_stdio_env_is_merged_onto_process_environment(self, monkeypatch):
        monkeypatch.setenv("CONDUIT_AMBIENT", "from-process")
        monkeypatch.setenv("CONDUIT_SHARED", "from-process")
        config = MCPServerSettings(
            transport=StdioTransportSettings(
                command="node",
                args=["server.js"],
                env={"CONDUIT_SHARED": "from-config", "CONDUIT_ONLY_CONFIG": "yes"},
            )
        )

        with patch("conduit_mcp.mcp.connection_manager.stdio_client_with_rich_stderr") as stdio_client:
            open_transport("files", config)

        server_params = stdio_client.call_args.args[0]
        assert stdio_client.call_args.kwargs == {"server_name": "files"}
        assert server_params.command == "node"
        assert server_params.args == ["server.js"]
        assert server_params.env["CONDUIT_AMBIENT"] == "from-process"
        assert server_params.env["CONDUIT_SHARED"] == "from-config"
        assert server_params.env["CONDUIT_ONLY_CONFIG"] == "yes"


def test_root_cause_unwraps_single_member_groups():
    error = OSError("spawn failed")

    assert root_cause(BaseExceptionGroup("outer", [ExceptionGroup("inner", [error])])) is error
    assert root_cause(error) is error
