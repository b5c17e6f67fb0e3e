"""
Conduit MCP - A multi-server Model Context Protocol client with an LLM tool-use loop.
"""

__version__ = "0.1.0"

# Configuration
from conduit_mcp.config import load_config, Settings

# Errors
from conduit_mcp.errors import (
    ConduitError,
    ConfigurationError,
    NotConnectedError,
    PromptError,
    ProtocolError,
    ResourceError,
    ServerConnectionError,
    ServerValidationError,
    ToolError,
)

# MCP connectivity
from conduit_mcp.mcp.server_registry import ServerRegistry
from conduit_mcp.mcp.dispatcher import Dispatcher

# LLM tool-use loop
from conduit_mcp.agents.orchestrator import QueryOrchestrator

# Application
from conduit_mcp.app import ConduitApp

__all__ = [
    "load_config",
    "Settings",
    "ConduitError",
    "ConfigurationError",
    "NotConnectedError",
    "PromptError",
    "ProtocolError",
    "ResourceError",
    "ServerConnectionError",
    "ServerValidationError",
    "ToolError",
    "ServerRegistry",
    "Dispatcher",
    "QueryOrchestrator",
    "ConduitApp",
]
