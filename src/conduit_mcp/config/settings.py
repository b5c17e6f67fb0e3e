"""
Settings models for the Conduit MCP client.
"""

import json
import os
import sys
from pathlib import Path
from typing import Annotated, Any, Dict, List, Literal, Mapping, Optional, Tuple, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from conduit_mcp.errors import ConfigurationError
from conduit_mcp.utils.secrets import get_secret, load_env_files

# Joins a server identifier and a tool name into a qualified tool name.
# Server identifiers may never contain it.
TOOL_NAME_SEPARATOR = "_"

DEFAULT_CONFIG_FILES = ("mcp-config.yaml", "mcp-config.yml", "mcp-config.json")

SERVER_ENV_PREFIX = "MCP_SERVER_"


class StdioTransportSettings(BaseModel):
    """Spawn a local subprocess and talk to it over stdin/stdout."""

    model_config = ConfigDict(frozen=True)

    type: Literal["stdio"] = "stdio"
    command: str = Field(min_length=1)
    args: List[str] = Field(default_factory=list)
    env: Dict[str, str] = Field(default_factory=dict)


class SseTransportSettings(BaseModel):
    """Open a long-lived HTTP event-stream connection to a URL."""

    model_config = ConfigDict(frozen=True)

    type: Literal["sse"] = "sse"
    url: str
    headers: Dict[str, str] = Field(default_factory=dict)

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError(f"URL must use http or https: {value!r}")
        return value


TransportSettings = Annotated[
    Union[StdioTransportSettings, SseTransportSettings],
    Field(discriminator="type"),
]


class MCPServerSettings(BaseModel):
    """Settings for an MCP server."""

    model_config = ConfigDict(frozen=True)

    name: Optional[str] = None
    description: Optional[str] = None
    transport: TransportSettings
    read_timeout_seconds: Optional[float] = None

    @model_validator(mode="before")
    @classmethod
    def _flatten_transport(cls, data: Any) -> Any:
        # Accept {"type": "stdio", "stdio": {...}} as well as the flat form
        if isinstance(data, dict) and isinstance(data.get("transport"), dict):
            transport = dict(data["transport"])
            nested = transport.pop(transport.get("type", ""), None)
            if isinstance(nested, dict):
                transport.update(nested)
            data = {**data, "transport": transport}
        return data


class AnthropicSettings(BaseModel):
    """Settings for the Anthropic language-model backend."""

    model_config = ConfigDict(frozen=True)

    api_key: Optional[str] = None
    api_base: str = "https://api.anthropic.com/v1"
    model: str = "claude-3-5-sonnet-20241022"
    max_tokens: int = 2000


class APISettings(BaseModel):
    """Settings for the HTTP front end."""

    model_config = ConfigDict(frozen=True)

    host: str = "0.0.0.0"
    port: int = 3000


class LoggingSettings(BaseModel):
    """Settings for logging configuration."""

    model_config = ConfigDict(frozen=True)

    level: str = "info"
    file_path: Optional[str] = None


class OrchestratorSettings(BaseModel):
    """Settings for the LLM tool-use loop."""

    model_config = ConfigDict(frozen=True)

    max_tool_rounds: int = Field(default=10, ge=1)
    system_prompt: Optional[str] = None


class Settings(BaseModel):
    """Root settings object for the Conduit MCP client."""

    model_config = ConfigDict(frozen=True)

    servers: Dict[str, MCPServerSettings] = Field(default_factory=dict)
    anthropic: AnthropicSettings = Field(default_factory=AnthropicSettings)
    api: APISettings = Field(default_factory=APISettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    orchestrator: OrchestratorSettings = Field(default_factory=OrchestratorSettings)


def check_server_name(server_name: str) -> Optional[str]:
    """
    Return a description of what is wrong with a server identifier,
    or None if it is usable.
    """
    if not server_name:
        return "server identifier must not be empty"
    if TOOL_NAME_SEPARATOR in server_name:
        return (
            f"server identifier '{server_name}' must not contain "
            f"'{TOOL_NAME_SEPARATOR}' (reserved for qualified tool names)"
        )
    return None


def server_from_path(server_name: str, path: str, platform: str = sys.platform) -> MCPServerSettings:
    """
    Build stdio server settings from a script or executable path,
    choosing the interpreter from the file extension.
    """
    extension = Path(path).suffix.lower()

    if extension == ".js":
        command, args = "node", [path]
    elif extension == ".py":
        command, args = ("python" if platform == "win32" else "python3"), [path]
    elif extension == ".jar":
        command, args = "java", ["-jar", path]
    else:
        # Assume it's an executable
        command, args = path, []

    return MCPServerSettings(
        name=server_name,
        transport=StdioTransportSettings(command=command, args=args),
    )


def parse_servers(raw_servers: Mapping[str, Any]) -> Tuple[Dict[str, MCPServerSettings], List[str]]:
    """
    Validate each server entry on its own.

    Returns:
        The valid servers, and one error string per offending server.
    """
    servers: Dict[str, MCPServerSettings] = {}
    errors: List[str] = []

    for server_name, entry in raw_servers.items():
        if isinstance(entry, MCPServerSettings):
            servers[server_name] = entry
            continue
        try:
            servers[server_name] = MCPServerSettings.model_validate(entry)
        except ValidationError as exc:
            problems = "; ".join(
                f"{'.'.join(str(part) for part in err['loc']) or 'server'}: {err['msg']}"
                for err in exc.errors()
            )
            errors.append(f"Server {server_name}: {problems}")

    return servers, errors


def validate_config(settings: Settings) -> List[str]:
    """
    Check a loaded configuration for problems that prevent startup.

    Returns:
        A list of error strings; empty when the configuration is usable.
    """
    errors: List[str] = []

    if not settings.servers:
        errors.append(
            "No MCP servers configured. Add servers to mcp-config.yaml "
            f"or set {SERVER_ENV_PREFIX}* environment variables."
        )

    for server_name in settings.servers:
        problem = check_server_name(server_name)
        if problem:
            errors.append(f"Server {server_name}: {problem}")

    return errors


def load_config(config_path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Resolve the configuration once, from file and environment.

    Args:
        config_path: Path to a YAML or JSON configuration file.
            If None, look for mcp-config.yaml/.yml/.json in the current directory.
        environ: Environment mapping to read instead of os.environ.
            When given, .env files are not loaded.

    Returns:
        Settings: Validated, immutable configuration object.

    Raises:
        ConfigurationError: If any server entry or value is malformed.
    """
    if environ is None:
        load_env_files()
        environ = dict(os.environ)

    path = _find_config_file(config_path)

    if path is not None:
        config_data = _read_config_file(path)
    else:
        config_data = {"servers": _servers_from_env(environ)}

    servers, errors = parse_servers(config_data.get("servers") or {})
    if errors:
        raise ConfigurationError("Invalid server configuration", errors=errors)
    config_data["servers"] = servers

    # Environment variables override file settings
    _merge_dicts(config_data, _load_from_env(environ))

    try:
        return Settings.model_validate(config_data)
    except ValidationError as exc:
        raise ConfigurationError(
            "Invalid configuration",
            errors=[f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in exc.errors()],
        ) from exc


def _find_config_file(config_path: Optional[str]) -> Optional[Path]:
    if config_path is not None:
        path = Path(config_path)
        if not path.exists():
            raise ConfigurationError(f"Configuration file not found: {config_path}")
        return path

    for candidate in DEFAULT_CONFIG_FILES:
        path = Path.cwd() / candidate
        if path.exists():
            return path
    return None


def _read_config_file(path: Path) -> Dict[str, Any]:
    with open(path, "r") as f:
        try:
            if path.suffix.lower() == ".json":
                data = json.load(f)
            else:
                data = yaml.safe_load(f)
        except (json.JSONDecodeError, yaml.YAMLError) as exc:
            raise ConfigurationError(f"Could not parse {path}: {exc}") from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration root in {path} must be a mapping")
    return data


def _servers_from_env(environ: Mapping[str, str]) -> Dict[str, MCPServerSettings]:
    """Collect MCP_SERVER_<NAME>=<path> variables into stdio servers."""
    servers: Dict[str, MCPServerSettings] = {}
    for key, value in environ.items():
        if key.startswith(SERVER_ENV_PREFIX) and value:
            server_name = key[len(SERVER_ENV_PREFIX):].lower().replace("_", "-")
            servers[server_name] = server_from_path(server_name, value)
    return servers


def _load_from_env(environ: Mapping[str, str]) -> Dict[str, Any]:
    """
    Load configuration overrides from environment variables.

    Returns:
        Dict with configuration loaded from environment variables.
    """
    config: Dict[str, Any] = {}

    _set_nested_dict(config, ["anthropic", "api_key"], get_secret("ANTHROPIC_API_KEY", environ=environ))
    _set_nested_dict(config, ["anthropic", "api_base"], get_secret("ANTHROPIC_API_BASE", environ=environ))
    _set_nested_dict(config, ["anthropic", "model"], get_secret("ANTHROPIC_MODEL", environ=environ))

    _set_nested_dict(config, ["api", "port"], get_secret("API_PORT", environ=environ))
    _set_nested_dict(config, ["api", "host"], get_secret("API_HOST", environ=environ))

    _set_nested_dict(config, ["logging", "level"], get_secret("LOG_LEVEL", environ=environ))
    _set_nested_dict(config, ["logging", "file_path"], get_secret("LOG_FILE", environ=environ))

    return config


def _set_nested_dict(d: Dict[str, Any], path: List[str], value: Any) -> None:
    """
    Set a value in a nested dictionary based on a path.

    Args:
        d: Dictionary to set value in.
        path: List of keys defining the path.
        value: Value to set.
    """
    if value is None:
        return

    if len(path) == 1:
        d[path[0]] = value
        return

    if path[0] not in d or not isinstance(d[path[0]], dict):
        d[path[0]] = {}

    _set_nested_dict(d[path[0]], path[1:], value)


def _merge_dicts(target: Dict, source: Dict) -> None:
    """
    Recursively merge source dictionary into target dictionary.
    Values in source will override values in target.

    Args:
        target: Target dictionary to merge into.
        source: Source dictionary with values to merge.
    """
    for key, value in source.items():
        if key in target and isinstance(target[key], dict) and isinstance(value, dict):
            _merge_dicts(target[key], value)
        else:
            target[key] = value
