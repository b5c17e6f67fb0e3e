"""Tests for ServerRegistry connect, discovery and disconnect."""

import asyncio
from unittest.mock import AsyncMock

import pytest
from mcp.types import Prompt, Resource

from conduit_mcp.errors import ProtocolError, ServerConnectionError, ServerValidationError

from conftest import FakeConnection, make_config, make_tool, registry_with


class TestConnect:
    """Tests for connecting a single server."""

    @pytest.mark.asyncio
    async def test_identifier_with_separator_is_rejected(self):
        """Identifiers containing the separator never reach the transport."""
        registry = registry_with({"my_server": FakeConnection("my_server")})

        with pytest.raises(ServerValidationError):
            await registry.connect("my_server", make_config())

        assert registry.connection_manager.launched == []
        assert registry.list_ids() == []

    @pytest.mark.asyncio
    async def test_empty_identifier_is_rejected(self):
        registry = registry_with({})

        with pytest.raises(ServerValidationError):
            await registry.connect("", make_config())

    @pytest.mark.asyncio
    async def test_capabilities_are_captured(self):
        conn = FakeConnection(
            "files",
            tools=[make_tool("read_file")],
            resources=[Resource(uri="file:///tmp/notes.txt", name="notes")],
            prompts=[Prompt(name="summarize")],
        )
        registry = registry_with({"files": conn})

        capabilities = await registry.connect("files", make_config())

        assert [t.name for t in capabilities.tools] == ["read_file"]
        assert [r.name for r in capabilities.resources] == ["notes"]
        assert [p.name for p in capabilities.prompts] == ["summarize"]
        assert registry.get("files") == capabilities
        assert registry.is_connected("files")

    @pytest.mark.asyncio
    async def test_failed_list_leaves_only_that_list_empty(self):
        """A server without resources support still connects with its tools."""
        conn = FakeConnection("calc", tools=[make_tool("add")], prompts=[Prompt(name="explain")])
        conn.list_resources.side_effect = ProtocolError("Method not found", server_name="calc")
        registry = registry_with({"calc": conn})

        capabilities = await registry.connect("calc", make_config())

        assert [t.name for t in capabilities.tools] == ["add"]
        assert capabilities.resources == []
        assert [p.name for p in capabilities.prompts] == ["explain"]

    @pytest.mark.asyncio
    async def test_unexpected_list_error_leaves_only_that_list_empty(self):
        conn = FakeConnection("calc", tools=[make_tool("add")])
        conn.list_prompts.side_effect = RuntimeError("unexpected payload")
        registry = registry_with({"calc": conn})

        capabilities = await registry.connect("calc", make_config())

        assert [t.name for t in capabilities.tools] == ["add"]
        assert capabilities.prompts == []
        assert registry.is_connected("calc")

    @pytest.mark.asyncio
    async def test_discovery_failure_closes_started_server(self):
        registry = registry_with({"calc": FakeConnection("calc")})
        registry._discover_capabilities = AsyncMock(side_effect=RuntimeError("boom"))

        with pytest.raises(RuntimeError):
            await registry.connect("calc", make_config())

        assert registry.connection_manager.running_servers == {}
        assert registry.connection_manager.disconnected == ["calc"]
        assert registry.list_ids() == []

    @pytest.mark.asyncio
    async def test_slow_list_times_out_to_empty(self):
        async def never_answers():
            await asyncio.sleep(10)

        conn = FakeConnection("slow", tools=[make_tool("work")])
        conn.list_prompts.side_effect = never_answers
        registry = registry_with({"slow": conn})
        registry.discovery_timeout_seconds = 0.05

        capabilities = await registry.connect("slow", make_config())

        assert [t.name for t in capabilities.tools] == ["work"]
        assert capabilities.prompts == []

    @pytest.mark.asyncio
    async def test_connect_failure_propagates(self):
        registry = registry_with(
            {}, failures={"broken": ServerConnectionError("spawn failed", server_name="broken")}
        )

        with pytest.raises(ServerConnectionError):
            await registry.connect("broken", make_config())

        assert not registry.is_connected("broken")
        assert registry.get("broken") is None

    @pytest.mark.asyncio
    async def test_reconnect_replaces_existing_connection(self):
        conn = FakeConnection("files", tools=[make_tool("read_file")])
        registry = registry_with({"files": conn})

        await registry.connect("files", make_config())
        conn.list_tools.return_value = [make_tool("read_file"), make_tool("write_file")]
        capabilities = await registry.connect("files", make_config())

        manager = registry.connection_manager
        assert manager.launched == ["files", "files"]
        assert manager.disconnected == ["files"]
        assert [t.name for t in capabilities.tools] == ["read_file", "write_file"]
        assert registry.list_ids() == ["files"]


class TestConnectAll:
    """Tests for connecting every configured server."""

    @pytest.mark.asyncio
    async def test_failures_are_reported_per_server(self, search_servers):
        registry = registry_with(
            search_servers,
            failures={"broken": ServerConnectionError("spawn failed", server_name="broken")},
        )

        outcomes = await registry.connect_all(
            {"A": make_config(), "broken": make_config(), "B": make_config()}
        )

        by_name = {outcome.server_name: outcome for outcome in outcomes}
        assert by_name["A"].success
        assert by_name["B"].success
        assert not by_name["broken"].success
        assert "spawn failed" in by_name["broken"].error
        assert sorted(registry.list_ids()) == ["A", "B"]

    @pytest.mark.asyncio
    async def test_unexpected_launch_error_is_reported_per_server(self, search_servers):
        registry = registry_with(search_servers, failures={"A": RuntimeError("boom")})

        outcomes = await registry.connect_all({"A": make_config(), "B": make_config()})

        by_name = {outcome.server_name: outcome for outcome in outcomes}
        assert not by_name["A"].success
        assert by_name["A"].error == "boom"
        assert by_name["B"].success
        assert registry.list_ids() == ["B"]

    @pytest.mark.asyncio
    async def test_unexpected_list_error_does_not_abort_startup(self, search_servers):
        search_servers["A"].list_resources.side_effect = RuntimeError("boom")
        registry = registry_with(search_servers)

        outcomes = await registry.connect_all({"A": make_config(), "B": make_config()})

        assert all(outcome.success for outcome in outcomes)
        assert sorted(registry.list_ids()) == ["A", "B"]
        assert sorted(registry.connection_manager.running_servers) == ["A", "B"]
        assert [t.name for t in registry.get("A").tools] == ["search"]


class TestDisconnect:
    """Tests for disconnect."""

    @pytest.mark.asyncio
    async def test_disconnect_unknown_is_a_noop(self):
        registry = registry_with({})

        await registry.disconnect("ghost")
        await registry.disconnect("ghost")

        assert registry.connection_manager.disconnected == []

    @pytest.mark.asyncio
    async def test_disconnect_one(self, search_servers):
        registry = registry_with(search_servers)
        await registry.connect("A", make_config())
        await registry.connect("B", make_config())

        await registry.disconnect("A")

        assert not registry.is_connected("A")
        assert registry.get("A") is None
        assert registry.list_ids() == ["B"]

    @pytest.mark.asyncio
    async def test_disconnect_all_in_reverse_order(self, search_servers):
        registry = registry_with(search_servers)
        await registry.connect("A", make_config())
        await registry.connect("B", make_config())

        await registry.disconnect()

        assert registry.connection_manager.disconnected == ["B", "A"]
        assert registry.get_all() == {}

    @pytest.mark.asyncio
    async def test_context_exit_disconnects_everything(self, search_servers):
        registry = registry_with(search_servers)

        async with registry:
            await registry.connect("A", make_config())

        assert registry.list_ids() == []
        assert registry.connection_manager.disconnected == ["A"]


class TestQueries:
    """Tests for read-only registry queries."""

    @pytest.mark.asyncio
    async def test_find_tool_returns_every_owner(self, search_servers):
        registry = registry_with(search_servers)
        await registry.connect("A", make_config())
        await registry.connect("B", make_config())

        matches = registry.find_tool("search")

        assert sorted(server_name for server_name, _ in matches) == ["A", "B"]
        assert registry.find_tool("missing") == []

    @pytest.mark.asyncio
    async def test_list_all_tools(self, search_servers):
        registry = registry_with(search_servers)
        await registry.connect("A", make_config())
        await registry.connect("B", make_config())

        all_tools = registry.list_all_tools()

        assert [t.name for t in all_tools["A"]] == ["search"]
        assert [t.name for t in all_tools["B"]] == ["search", "get_page"]

    @pytest.mark.asyncio
    async def test_list_all_resources(self):
        registry = registry_with(
            {
                "files": FakeConnection("files", resources=[Resource(uri="file:///tmp/notes.txt", name="notes")]),
                "calc": FakeConnection("calc", tools=[make_tool("add")]),
            }
        )
        await registry.connect("files", make_config())
        await registry.connect("calc", make_config())

        all_resources = registry.list_all_resources()

        assert [r.name for r in all_resources["files"]] == ["notes"]
        assert all_resources["calc"] == []


class TestServerLocks:
    """Tests for the per-server connect/disconnect lock table."""

    @pytest.mark.asyncio
    async def test_locks_are_released_after_use(self, search_servers):
        registry = registry_with(search_servers)

        await registry.connect("A", make_config())
        await registry.disconnect("A")
        await registry.disconnect("ghost")

        assert registry._server_locks == {}
        assert registry._lock_holders == {}

    @pytest.mark.asyncio
    async def test_concurrent_connects_to_one_server_are_serialized(self, search_servers):
        registry = registry_with(search_servers)

        await asyncio.gather(
            registry.connect("A", make_config()),
            registry.connect("A", make_config()),
        )

        assert registry.connection_manager.launched == ["A", "A"]
        assert registry.connection_manager.disconnected == ["A"]
        assert registry.list_ids() == ["A"]
        assert registry._server_locks == {}
