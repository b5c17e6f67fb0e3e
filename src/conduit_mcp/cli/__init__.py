"""
Command line front ends for the Conduit MCP client.
"""

from .main import cli, main
from .shell import InteractiveShell, prompt_for_tool_args

__all__ = ["cli", "main", "InteractiveShell", "prompt_for_tool_args"]
