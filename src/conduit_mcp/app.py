"""
Main application class for the Conduit MCP client.
"""

import signal
from contextlib import asynccontextmanager
from typing import List, Optional

from conduit_mcp.agents.llm import LLMProvider
from conduit_mcp.agents.orchestrator import QueryOrchestrator
from conduit_mcp.config.settings import Settings, load_config, validate_config
from conduit_mcp.errors import ConfigurationError
from conduit_mcp.mcp.client_session import ConduitClientSession
from conduit_mcp.mcp.connection_manager import ClientSessionFactory
from conduit_mcp.mcp.dispatcher import Dispatcher
from conduit_mcp.mcp.server_registry import ConnectionOutcome, ServerRegistry
from conduit_mcp.utils.logging import configure_logging, get_logger


class ConduitApp:
    """
    Main application class that owns the server connections for one process.

    Front ends (the interactive shell and the HTTP API) use it to resolve
    configuration once, connect every configured server, and tear everything
    down in reverse connect order on exit.

    Example usage:
        app = ConduitApp()

        async with app.run() as running_app:
            result = await running_app.dispatcher.call_tool("files", "list", {})
    """

    def __init__(
        self,
        name: str = "conduit",
        config_path: Optional[str] = None,
        settings: Optional[Settings] = None,
        llm_provider: Optional[LLMProvider] = None,
        client_session_factory: ClientSessionFactory = ConduitClientSession,
    ):
        """
        Initialize the application with a name and optional settings.

        Args:
            name: Name of the application.
            config_path: Path to configuration file (if not provided, looks for mcp-config.yaml).
            settings: Application configuration object (if provided, takes precedence over config_path).
            llm_provider: Language-model backend (if not provided, built from settings).
            client_session_factory: Session class used for every server connection.
        """
        self.name = name
        self._config_path = config_path
        self._settings = settings
        self._llm_provider = llm_provider
        self._client_session_factory = client_session_factory

        self._logger = None
        self._registry: Optional[ServerRegistry] = None
        self._dispatcher: Optional[Dispatcher] = None
        self._orchestrator: Optional[QueryOrchestrator] = None
        self.connection_outcomes: List[ConnectionOutcome] = []
        self._initialized = False

    def _require_initialized(self):
        if not self._initialized:
            raise RuntimeError(
                "ConduitApp not initialized. Please call initialize() first, or use async with app.run()."
            )

    @property
    def config(self) -> Settings:
        """Get the current application configuration."""
        self._require_initialized()
        return self._settings

    @property
    def registry(self) -> ServerRegistry:
        self._require_initialized()
        return self._registry

    @property
    def dispatcher(self) -> Dispatcher:
        self._require_initialized()
        return self._dispatcher

    @property
    def orchestrator(self) -> QueryOrchestrator:
        self._require_initialized()
        return self._orchestrator

    @property
    def logger(self):
        """Get the application logger."""
        if self._logger is None:
            self._logger = get_logger(f"conduit.{self.name}")
        return self._logger

    @property
    def connected_servers(self) -> List[str]:
        return [outcome.server_name for outcome in self.connection_outcomes if outcome.success]

    async def initialize(self):
        """
        Resolve configuration and connect every configured server.

        Individual server failures are recorded in connection_outcomes and do
        not abort startup.

        Raises:
            ConfigurationError: If the configuration is unusable.
        """
        if self._initialized:
            return

        # Load configuration if needed
        if self._settings is None:
            self._settings = load_config(self._config_path)

        configure_logging(self._settings.logging.level, self._settings.logging.file_path)

        errors = validate_config(self._settings)
        if errors:
            raise ConfigurationError("Invalid configuration", errors=errors)

        registry = ServerRegistry(client_session_factory=self._client_session_factory)
        await registry.__aenter__()
        self._registry = registry
        self._dispatcher = Dispatcher(registry)
        self._orchestrator = QueryOrchestrator.from_settings(
            registry, self._dispatcher, self._settings, llm_provider=self._llm_provider
        )
        self._initialized = True

        self.logger.info(
            f"ConduitApp initialized - app_name: {self.name}, servers: {list(self._settings.servers)}"
        )
        try:
            self.connection_outcomes = await registry.connect_all(self._settings.servers)
        except BaseException:
            await self.cleanup()
            raise

        for outcome in self.connection_outcomes:
            if outcome.success:
                self.logger.info(f"Connected to {outcome.server_name}")
            else:
                self.logger.warning(f"Could not connect to {outcome.server_name}: {outcome.error}")

    async def cleanup(self):
        """Disconnect every server, most recently connected first."""
        if not self._initialized:
            return

        self.logger.info(f"ConduitApp cleaning up - app_name: {self.name}")

        registry, self._registry = self._registry, None
        self._dispatcher = None
        self._orchestrator = None
        self._initialized = False
        await registry.__aexit__(None, None, None)

    @asynccontextmanager
    async def run(self):
        """
        Run the application as an async context manager.

        Example:
            async with app.run() as running_app:
                # Servers are connected here
                pass

        Yields:
            The initialized application instance.
        """
        await self.initialize()
        try:
            yield self
        finally:
            await self.cleanup()


def _raise_keyboard_interrupt(signum, frame):
    raise KeyboardInterrupt(signal.Signals(signum).name)


def install_signal_handlers() -> None:
    """
    Turn SIGINT and SIGTERM into KeyboardInterrupt so an abrupt shutdown
    still unwinds through ConduitApp.run() and closes every connection.
    """
    signal.signal(signal.SIGINT, signal.default_int_handler)
    if hasattr(signal, "SIGTERM"):
        signal.signal(signal.SIGTERM, _raise_keyboard_interrupt)
