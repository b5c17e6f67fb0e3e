"""
Conduit MCP command line.

Run `conduit-mcp shell` for the interactive shell, or `conduit-mcp serve`
for the HTTP API.
"""

import asyncio
import sys
from typing import Optional

import click
from rich.console import Console

from conduit_mcp import __version__
from conduit_mcp.app import ConduitApp, install_signal_handlers
from conduit_mcp.cli.shell import InteractiveShell
from conduit_mcp.config import Settings, load_config, validate_config
from conduit_mcp.errors import ConfigurationError
from conduit_mcp.utils.logging import parse_level

console = Console()


def _load_settings(config_path: Optional[str]) -> Settings:
    """Load and validate configuration, exiting with status 1 when unusable."""
    try:
        settings = load_config(config_path)
    except ConfigurationError as e:
        _report_config_error(e)
        sys.exit(1)

    errors = validate_config(settings)
    if errors:
        _report_config_error(ConfigurationError("Invalid configuration", errors=errors))
        sys.exit(1)
    return settings


def _report_config_error(error: ConfigurationError) -> None:
    console.print(f"[red]Configuration error:[/red] {error}")
    for problem in error.errors:
        console.print(f"  - {problem}")


async def _run_shell(settings: Settings) -> int:
    # Installed inside the loop so Ctrl-C interrupts a blocking prompt
    install_signal_handlers()
    conduit_app = ConduitApp(name="shell", settings=settings)

    console.print(f"[bold]Conduit MCP[/bold] v{__version__}")
    console.print(f"Connecting to {len(settings.servers)} servers...")

    async with conduit_app.run() as running_app:
        if not running_app.connected_servers:
            console.print("[red]No servers connected successfully.[/red]")
            return 1

        await InteractiveShell(running_app, console=console).run()
    return 0


@click.group()
@click.version_option(__version__, prog_name="conduit-mcp")
def cli() -> None:
    """
    Conduit MCP - talk to many MCP servers at once.
    """


@cli.command()
@click.option("--config", "-c", "config_path", type=click.Path(dir_okay=False), help="Configuration file")
def shell(config_path: Optional[str]) -> None:
    """Start the interactive shell."""
    settings = _load_settings(config_path)

    try:
        exit_code = asyncio.run(_run_shell(settings))
    except KeyboardInterrupt:
        console.print("\nShutting down...")
        exit_code = 0
    sys.exit(exit_code)


@cli.command()
@click.option("--config", "-c", "config_path", type=click.Path(dir_okay=False), help="Configuration file")
@click.option("--host", default=None, help="Bind address (defaults to API_HOST or 0.0.0.0)")
@click.option("--port", type=int, default=None, help="Port (defaults to API_PORT or 3000)")
def serve(config_path: Optional[str], host: Optional[str], port: Optional[int]) -> None:
    """Serve the HTTP API."""
    import uvicorn

    from conduit_mcp.api import create_api

    settings = _load_settings(config_path)
    api = create_api(ConduitApp(name="api", settings=settings))

    uvicorn.run(
        api,
        host=host or settings.api.host,
        port=port or settings.api.port,
        log_level=parse_level(settings.logging.level),
    )


def main() -> None:
    """Entry point."""
    cli()


if __name__ == "__main__":
    main()
