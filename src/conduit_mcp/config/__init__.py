"""
Configuration management for the Conduit MCP client.
"""

from .settings import (
    TOOL_NAME_SEPARATOR,
    Settings,
    MCPServerSettings,
    StdioTransportSettings,
    SseTransportSettings,
    AnthropicSettings,
    APISettings,
    LoggingSettings,
    OrchestratorSettings,
    check_server_name,
    load_config,
    parse_servers,
    server_from_path,
    validate_config,
)

__all__ = [
    "TOOL_NAME_SEPARATOR",
    "Settings",
    "MCPServerSettings",
    "StdioTransportSettings",
    "SseTransportSettings",
    "AnthropicSettings",
    "APISettings",
    "LoggingSettings",
    "OrchestratorSettings",
    "check_server_name",
    "load_config",
    "parse_servers",
    "server_from_path",
    "validate_config",
]
