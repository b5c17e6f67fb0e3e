"""
HTTP front end for the Conduit MCP client.
"""

from .server import create_api

__all__ = ["create_api"]
