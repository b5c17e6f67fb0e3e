"""
Secret management utilities for the Conduit MCP client.

API keys and other credentials come from environment variables, optionally
seeded from .env files for local development.
"""

import os
from pathlib import Path
from typing import List, Mapping, Optional

from dotenv import load_dotenv


def default_env_paths() -> List[Path]:
    """Paths to check for .env files, in order of precedence."""
    return [
        Path.cwd() / ".env",                      # Project root .env file
        Path.cwd() / ".secrets.env",              # Alternative secrets file
        Path.home() / ".conduit_mcp" / ".env",    # User-level config
    ]


def load_env_files(paths: Optional[List[Path]] = None) -> Optional[Path]:
    """
    Load the first existing .env file into the process environment.

    Variables that are already set are not overridden.

    Returns:
        The path that was loaded, or None if no file exists.
    """
    for env_path in paths if paths is not None else default_env_paths():
        if env_path.exists():
            load_dotenv(dotenv_path=env_path)
            return env_path
    return None


def get_secret(key: str, default: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> Optional[str]:
    """
    Get a secret from environment variables with fallback.

    Args:
        key: The environment variable name containing the secret
        default: Default value if the secret is not found
        environ: Mapping to read from instead of os.environ

    Returns:
        The secret value or default if not found
    """
    source = os.environ if environ is None else environ
    value = source.get(key)
    return value if value else default
