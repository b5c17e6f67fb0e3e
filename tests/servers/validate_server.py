"""Minimal stdio MCP server used by the integration tests."""

import os

from mcp.server.fastmcp import FastMCP


app = FastMCP("validate-server")


@app.tool()
def validate(productName: str) -> str:
    """Check that a product name is non-empty and at most 40 characters."""
    if not productName.strip():
        return "invalid: name is empty"
    if len(productName) > 40:
        return "invalid: name is too long"
    return "valid"


@app.tool()
def fail(reason: str) -> str:
    """Always fails with the given reason."""
    raise ValueError(reason)


@app.tool()
def pid() -> str:
    """Process id of this server."""
    return str(os.getpid())


@app.tool()
def read_env(name: str) -> str:
    """Value of an environment variable, or an empty string."""
    return os.environ.get(name, "")


if __name__ == "__main__":
    app.run()
