"""
Tool aggregation across connected servers.

Tools from every server are flattened into one list whose names are qualified
with the owning server's identifier, so same-named tools on different servers
stay addressable.
"""

from typing import Iterable, List, Optional, Tuple, TYPE_CHECKING

from mcp.types import Tool
from pydantic import BaseModel

from conduit_mcp.config import TOOL_NAME_SEPARATOR
from conduit_mcp.errors import ServerValidationError

if TYPE_CHECKING:
    from conduit_mcp.mcp.server_registry import ServerRegistry

SEP = TOOL_NAME_SEPARATOR


class NamespacedTool(BaseModel):
    """
    A tool that is namespaced by server name.
    """

    tool: Tool
    server_name: str
    namespaced_tool_name: str


def qualify_tool_name(server_name: str, tool_name: str) -> str:
    return f"{server_name}{SEP}{tool_name}"


def split_qualified_tool_name(name: str) -> Tuple[str, str]:
    """
    Split a qualified tool name at the first separator.

    Server identifiers never contain the separator, so the split is
    unambiguous even when the tool name does.
    """
    server_name, sep, tool_name = name.partition(SEP)
    if not sep or not server_name or not tool_name:
        raise ServerValidationError(
            f"'{name}' is not a qualified tool name (expected <server>{SEP}<tool>)",
            target=name,
        )
    return server_name, tool_name


def collect_namespaced_tools(
    registry: "ServerRegistry",
    server_names: Optional[Iterable[str]] = None,
) -> List[NamespacedTool]:
    """
    Flatten the cached tool lists of the given (default: all) connected servers.
    """
    wanted = set(server_names) if server_names is not None else None
    namespaced_tools: List[NamespacedTool] = []

    for server_name, capabilities in registry.get_all().items():
        if wanted is not None and server_name not in wanted:
            continue
        for tool in capabilities.tools:
            namespaced_tools.append(
                NamespacedTool(
                    tool=tool,
                    server_name=server_name,
                    namespaced_tool_name=qualify_tool_name(server_name, tool.name),
                )
            )

    return namespaced_tools
