"""
Interactive shell over the connected servers.
"""

import json
import shlex
from typing import Any, Callable, Dict, Optional

from mcp.types import Tool
from rich.console import Console
from rich.table import Table

from conduit_mcp.app import ConduitApp
from conduit_mcp.errors import ConduitError
from conduit_mcp.utils.logging import get_logger

logger = get_logger(__name__)

PROMPT = "conduit> "

COMMANDS = [
    ("help", "Show this help"),
    ("servers", "List connected servers"),
    ("tools [server]", "List tools for all servers or one server"),
    ("resources [server]", "List resources for all servers or one server"),
    ("prompts [server]", "List prompts for all servers or one server"),
    ("call <server> <tool>", "Call a tool (will prompt for args)"),
    ("read <server> <uri>", "Read a resource"),
    ("prompt <server> <name>", "Render a prompt (will prompt for args)"),
    ("ping <server>", "Ping a server"),
    ("find <tool>", "Find which servers have a specific tool"),
    ("query <question>", "Ask a question using the LLM"),
    ("quit", "Exit"),
]


def _parse_value(value: str) -> Any:
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return value


def prompt_for_tool_args(tool: Optional[Tool], ask: Callable[[str], str]) -> Dict[str, Any]:
    """
    Collect tool arguments interactively.

    One question is asked per property of the tool's input schema; blank
    answers are omitted and each answer is parsed as JSON, falling back to
    the raw string. Without a schema, a single JSON object is requested.

    Args:
        tool: Tool descriptor, or None if the tool is unknown.
        ask: Callable that shows a prompt and returns the user's answer.
    """
    properties = (tool.inputSchema or {}).get("properties") if tool else None

    if not properties:
        answer = ask("Args (JSON): ").strip()
        if not answer:
            return {}
        try:
            parsed = json.loads(answer)
        except json.JSONDecodeError:
            logger.warning("Arguments are not valid JSON; calling with no arguments")
            return {}
        return parsed if isinstance(parsed, dict) else {}

    required = set(tool.inputSchema.get("required") or [])
    args: Dict[str, Any] = {}
    for prop_name, prop_schema in properties.items():
        prop_schema = prop_schema if isinstance(prop_schema, dict) else {}
        marker = "(required)" if prop_name in required else "(optional)"
        type_info = f" ({prop_schema['type']})" if prop_schema.get("type") else ""
        description = f" - {prop_schema['description']}" if prop_schema.get("description") else ""

        value = ask(f"{prop_name} {marker}{type_info}{description}: ")
        if value.strip():
            args[prop_name] = _parse_value(value)

    return args


class InteractiveShell:
    """
    Line-oriented command loop. Each command maps onto one registry,
    dispatcher or orchestrator call; typed errors are printed and the loop
    continues.
    """

    def __init__(self, conduit_app: ConduitApp, console: Optional[Console] = None):
        self.app = conduit_app
        self.console = console or Console()
        self._handlers = {
            "help": self.cmd_help,
            "servers": self.cmd_servers,
            "tools": self.cmd_tools,
            "resources": self.cmd_resources,
            "prompts": self.cmd_prompts,
            "call": self.cmd_call,
            "read": self.cmd_read,
            "prompt": self.cmd_prompt,
            "ping": self.cmd_ping,
            "find": self.cmd_find,
            "query": self.cmd_query,
        }

    def ask(self, prompt: str) -> str:
        return self.console.input(prompt)

    async def run(self) -> None:
        self.print_summary()
        self.cmd_help()

        while True:
            try:
                line = self.ask(f"\n{PROMPT}")
            except (KeyboardInterrupt, EOFError):
                self.console.print("\nShutting down...")
                return

            if not await self.handle(line):
                self.console.print("Goodbye!")
                return

    async def handle(self, line: str) -> bool:
        """
        Run one command line.

        Returns:
            False when the shell should exit.
        """
        line = line.strip()
        if not line:
            return True

        command, _, rest = line.partition(" ")
        command = command.lower()
        if command in ("quit", "exit"):
            return False

        handler = self._handlers.get(command)
        if handler is None:
            self.console.print('Unknown command. Type "help" for available commands.')
            return True

        try:
            result = handler(rest.strip())
            if result is not None:
                await result
        except ConduitError as e:
            self.console.print(f"[red]Error:[/red] {e}")
            if e.details:
                self.console.print_json(data=e.to_dict())
        return True

    def print_summary(self) -> None:
        outcomes = self.app.connection_outcomes
        succeeded = [o.server_name for o in outcomes if o.success]
        failed = [o for o in outcomes if not o.success]

        self.console.print(f"[green]Connected to {len(succeeded)} servers:[/green] {', '.join(succeeded)}")
        for outcome in failed:
            self.console.print(f"[yellow]Failed to connect to {outcome.server_name}:[/yellow] {outcome.error}")

        for server_name, caps in self.app.registry.get_all().items():
            self.console.print(f"\n  [bold]{server_name}[/bold]")
            if caps.tools:
                self.console.print(f"    Tools: {', '.join(t.name for t in caps.tools)}")
            if caps.resources:
                self.console.print(f"    Resources: {len(caps.resources)} available")
            if caps.prompts:
                self.console.print(f"    Prompts: {', '.join(p.name for p in caps.prompts)}")

    def _selected(self, server_name: str):
        """Capabilities for one server, or all of them when no name is given."""
        registry = self.app.registry
        if not server_name:
            return registry.get_all()
        caps = registry.get(server_name)
        if caps is None:
            self.console.print(f"Server {server_name} not found")
            return {}
        return {server_name: caps}

    def cmd_help(self, _: str = "") -> None:
        table = Table(title="Commands", show_header=False, box=None)
        for usage, description in COMMANDS:
            table.add_row(f"  {usage}", description)
        self.console.print(table)

    def cmd_servers(self, _: str) -> None:
        self.console.print(f"Connected servers: {', '.join(self.app.registry.list_ids())}")

    def cmd_tools(self, server_name: str) -> None:
        for name, caps in self._selected(server_name).items():
            self.console.print(f"\n[bold]{name}[/bold]:")
            for tool in caps.tools:
                self.console.print(f"  - {tool.name}: {tool.description or 'No description'}")

    def cmd_resources(self, server_name: str) -> None:
        for name, caps in self._selected(server_name).items():
            self.console.print(f"\n[bold]{name}[/bold]:")
            for resource in caps.resources:
                self.console.print(f"  - {resource.uri} ({resource.name or 'No name'})")

    def cmd_prompts(self, server_name: str) -> None:
        for name, caps in self._selected(server_name).items():
            self.console.print(f"\n[bold]{name}[/bold]:")
            for prompt in caps.prompts:
                self.console.print(f"  - {prompt.name}: {prompt.description or 'No description'}")

    async def cmd_call(self, rest: str) -> None:
        parts = shlex.split(rest)
        if len(parts) < 2:
            self.console.print("Usage: call <server> <tool>")
            return
        server_name, tool_name = parts[0], parts[1]

        if not self.app.registry.is_connected(server_name):
            self.console.print(f"Server {server_name} not connected")
            return

        caps = self.app.registry.get(server_name)
        tool = next((t for t in caps.tools if t.name == tool_name), None)
        self.console.print("\nEnter arguments for the tool:")
        args = prompt_for_tool_args(tool, self.ask)

        result = await self.app.dispatcher.call_tool(server_name, tool_name, args)
        self.console.print("Result:")
        self.console.print_json(data=result.model_dump(mode="json", exclude_none=True))

    async def cmd_read(self, rest: str) -> None:
        parts = rest.split(maxsplit=1)
        if len(parts) < 2:
            self.console.print("Usage: read <server> <uri>")
            return

        result = await self.app.dispatcher.read_resource(parts[0], parts[1])
        self.console.print("Resource content:")
        self.console.print_json(data=result.model_dump(mode="json", exclude_none=True))

    async def cmd_prompt(self, rest: str) -> None:
        parts = shlex.split(rest)
        if len(parts) < 2:
            self.console.print("Usage: prompt <server> <name>")
            return
        server_name, prompt_name = parts[0], parts[1]

        caps = self.app.registry.get(server_name)
        prompt = next((p for p in caps.prompts if p.name == prompt_name), None) if caps else None
        arguments: Dict[str, str] = {}
        for argument in (prompt.arguments or []) if prompt else []:
            marker = "(required)" if argument.required else "(optional)"
            value = self.ask(f"{argument.name} {marker}: ")
            if value.strip():
                arguments[argument.name] = value

        result = await self.app.dispatcher.get_prompt(server_name, prompt_name, arguments or None)
        self.console.print_json(data=result.model_dump(mode="json", exclude_none=True))

    async def cmd_ping(self, server_name: str) -> None:
        if not server_name:
            self.console.print("Usage: ping <server>")
            return
        alive = await self.app.dispatcher.is_alive(server_name)
        self.console.print(f"{server_name}: {'[green]Alive[/green]' if alive else '[red]Not responding[/red]'}")

    def cmd_find(self, tool_name: str) -> None:
        if not tool_name:
            self.console.print("Usage: find <tool>")
            return
        matches = self.app.registry.find_tool(tool_name)
        if not matches:
            self.console.print(f"Tool '{tool_name}' not found in any connected server")
            return
        self.console.print(f"Found tool '{tool_name}' in:")
        for server_name, tool in matches:
            self.console.print(f"  - {server_name}: {tool.description or 'No description'}")

    async def cmd_query(self, question: str) -> None:
        if not question:
            self.console.print("Usage: query <your question>")
            return
        with self.console.status("[bold blue]Thinking...[/bold blue]"):
            response = await self.app.orchestrator.query(question)
        self.console.print("\n[bold]Response:[/bold]")
        self.console.print(response)
