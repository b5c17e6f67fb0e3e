"""
Error taxonomy for the Conduit MCP client.

Every failure that crosses a public boundary is one of these types, so callers
always receive either a result or a typed failure.
"""

from typing import Any, Dict, List, Optional


class ConduitError(Exception):
    """
    Base class for all Conduit MCP errors.

    Carries enough structure for a front end to report which server and
    which tool/uri/prompt was involved.
    """

    def __init__(
        self,
        message: str,
        server_name: Optional[str] = None,
        target: Optional[str] = None,
        details: Any = None,
    ):
        super().__init__(message)
        self.message = message
        self.server_name = server_name
        self.target = target
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        """Structured form of the error for HTTP and shell boundaries."""
        data: Dict[str, Any] = {
            "type": type(self).__name__,
            "message": self.message,
        }
        if self.server_name is not None:
            data["server"] = self.server_name
        if self.target is not None:
            data["target"] = self.target
        if self.details is not None:
            data["details"] = self.details
        return data


class ServerConnectionError(ConduitError):
    """Transport could not be established or died (spawn, network, closed channel)."""


class NotConnectedError(ConduitError):
    """Operation addressed to a server identifier with no live connection."""

    def __init__(self, server_name: str, target: Optional[str] = None):
        super().__init__(
            f"Server '{server_name}' is not connected",
            server_name=server_name,
            target=target,
        )


class ProtocolError(ConduitError):
    """Malformed or unexpected response at the framing/protocol level."""


class ToolError(ConduitError):
    """
    The server executed a tool but reported a failure.

    `result` holds the server's CallToolResult verbatim when the failure was
    reported as a result with isError set.
    """

    def __init__(self, message: str, server_name=None, target=None, details=None, result=None):
        super().__init__(message, server_name=server_name, target=target, details=details)
        self.result = result


class ResourceError(ConduitError):
    """The server could not read the requested resource."""


class PromptError(ConduitError):
    """The server could not render the requested prompt."""


class ConfigurationError(ConduitError):
    """A required external dependency or configuration value is missing or invalid."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message, details=errors or None)
        self.errors = errors or []


class ServerValidationError(ConduitError):
    """A server identifier or transport descriptor violates an invariant."""


class LLMProviderError(ConduitError):
    """The language-model backend returned an error or an unreadable response."""
