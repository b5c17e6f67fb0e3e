"""Shared fixtures: an in-memory stand-in for the connection manager."""

from typing import Dict, List, Optional
from unittest.mock import AsyncMock

import pytest
from mcp.types import Prompt, Resource, Tool

from conduit_mcp.config import MCPServerSettings, StdioTransportSettings
from conduit_mcp.mcp.server_registry import ServerRegistry


def make_tool(name: str, description: Optional[str] = None, schema: Optional[dict] = None) -> Tool:
    return Tool(
        name=name,
        description=description,
        inputSchema=schema if schema is not None else {"type": "object", "properties": {}},
    )


def make_config(command: str = "server-cmd") -> MCPServerSettings:
    return MCPServerSettings(transport=StdioTransportSettings(command=command))


class FakeConnection:
    """Live-connection double whose protocol operations are AsyncMocks."""

    def __init__(
        self,
        server_name: str,
        tools: Optional[List[Tool]] = None,
        resources: Optional[List[Resource]] = None,
        prompts: Optional[List[Prompt]] = None,
    ):
        self.server_name = server_name
        self.server_config = make_config()
        self.list_tools = AsyncMock(return_value=list(tools or []))
        self.list_resources = AsyncMock(return_value=list(resources or []))
        self.list_prompts = AsyncMock(return_value=list(prompts or []))
        self.call_tool = AsyncMock()
        self.read_resource = AsyncMock()
        self.get_prompt = AsyncMock()
        self.ping = AsyncMock()


class FakeConnectionManager:
    """Tracks launches and disconnects without opening any transport."""

    def __init__(
        self,
        connections: Dict[str, FakeConnection],
        failures: Optional[Dict[str, Exception]] = None,
    ):
        self.available = connections
        self.failures = failures or {}
        self.running_servers: Dict[str, FakeConnection] = {}
        self.launched: List[str] = []
        self.disconnected: List[str] = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.disconnect_all()

    def get(self, server_name: str) -> Optional[FakeConnection]:
        return self.running_servers.get(server_name)

    async def launch_server(self, server_name: str, server_config: MCPServerSettings) -> FakeConnection:
        if server_name in self.failures:
            raise self.failures[server_name]
        server_conn = self.available[server_name]
        server_conn.server_config = server_config
        self.running_servers[server_name] = server_conn
        self.launched.append(server_name)
        return server_conn

    async def disconnect_server(self, server_name: str) -> bool:
        if self.running_servers.pop(server_name, None) is None:
            return False
        self.disconnected.append(server_name)
        return True

    async def disconnect_all(self) -> None:
        for server_name in reversed(list(self.running_servers)):
            await self.disconnect_server(server_name)


def registry_with(connections: Dict[str, FakeConnection], failures=None) -> ServerRegistry:
    registry = ServerRegistry(discovery_timeout_seconds=1.0)
    registry.connection_manager = FakeConnectionManager(connections, failures)
    return registry


@pytest.fixture
def search_servers():
    """Two servers that both expose a tool named "search"."""
    return {
        "A": FakeConnection("A", tools=[make_tool("search", "Search A")]),
        "B": FakeConnection(
            "B",
            tools=[
                make_tool(
                    "search",
                    "Search B",
                    {"type": "object", "properties": {"q": {"type": "string"}}, "required": ["q"]},
                ),
                make_tool("get_page"),
            ],
        ),
    }
