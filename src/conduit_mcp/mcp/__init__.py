"""
MCP connectivity for the Conduit MCP client.

This module provides the components for connecting to MCP servers,
managing server connections, and routing calls to the appropriate servers.
"""

from .client_session import ConduitClientSession
from .connection_manager import ConnectionManager, ServerConnection, open_transport
from .server_registry import ConnectionOutcome, ServerCapabilities, ServerRegistry
from .aggregator import (
    SEP,
    NamespacedTool,
    collect_namespaced_tools,
    qualify_tool_name,
    split_qualified_tool_name,
)
from .dispatcher import Dispatcher

__all__ = [
    "ConduitClientSession",
    "ConnectionManager",
    "ServerConnection",
    "open_transport",
    "ConnectionOutcome",
    "ServerCapabilities",
    "ServerRegistry",
    "SEP",
    "NamespacedTool",
    "collect_namespaced_tools",
    "qualify_tool_name",
    "split_qualified_tool_name",
    "Dispatcher",
]
