"""
LLM-driven tool-use loop across every connected server.
"""

import json
from typing import Any, Dict, List, Optional

from mcp.types import CallToolResult

from conduit_mcp.agents.llm import LLMProvider, ModelResponse, TextSegment, ToolUseSegment, create_llm_provider
from conduit_mcp.config import Settings
from conduit_mcp.errors import ConduitError, ConfigurationError
from conduit_mcp.mcp.aggregator import NamespacedTool, collect_namespaced_tools, split_qualified_tool_name
from conduit_mcp.mcp.dispatcher import Dispatcher
from conduit_mcp.mcp.server_registry import ServerRegistry
from conduit_mcp.utils.logging import get_logger

logger = get_logger(__name__)

# Role-tagged turns for one query
Conversation = List[Dict[str, Any]]

EMPTY_INPUT_SCHEMA = {"type": "object", "properties": {}}


def tool_definition(namespaced_tool: NamespacedTool) -> Dict[str, Any]:
    """
    Tool definition as presented to the model, under its qualified name.
    """
    tool = namespaced_tool.tool
    return {
        "name": namespaced_tool.namespaced_tool_name,
        "description": tool.description or f"Tool {tool.name} from {namespaced_tool.server_name}",
        "input_schema": tool.inputSchema or EMPTY_INPUT_SCHEMA,
    }


def format_tool_result(result: CallToolResult) -> str:
    return json.dumps(
        [item.model_dump(mode="json", exclude_none=True) for item in result.content],
        indent=2,
    )


class QueryOrchestrator:
    """
    Answers a natural-language query by letting a language model call tools
    on any connected server.

    One tool invocation is resolved per model turn: each successful call's
    result is fed back and the model is asked again, until it stops requesting
    tools. A failed call is recorded inline in the answer and the remaining
    segments of that turn are still processed.
    """

    def __init__(
        self,
        registry: ServerRegistry,
        dispatcher: Dispatcher,
        llm_provider: Optional[LLMProvider],
        model: str,
        max_tokens: int = 2000,
        max_tool_rounds: int = 10,
        system_prompt: Optional[str] = None,
    ):
        self.registry = registry
        self.dispatcher = dispatcher
        self.llm_provider = llm_provider
        self.model = model
        self.max_tokens = max_tokens
        self.max_tool_rounds = max_tool_rounds
        self.system_prompt = system_prompt

    @classmethod
    def from_settings(
        cls,
        registry: ServerRegistry,
        dispatcher: Dispatcher,
        settings: Settings,
        llm_provider: Optional[LLMProvider] = None,
    ) -> "QueryOrchestrator":
        return cls(
            registry=registry,
            dispatcher=dispatcher,
            llm_provider=llm_provider or create_llm_provider(settings.anthropic),
            model=settings.anthropic.model,
            max_tokens=settings.anthropic.max_tokens,
            max_tool_rounds=settings.orchestrator.max_tool_rounds,
            system_prompt=settings.orchestrator.system_prompt,
        )

    def collect_tools(self, preferred_server: Optional[str] = None) -> List[NamespacedTool]:
        server_names = [preferred_server] if preferred_server else None
        return collect_namespaced_tools(self.registry, server_names)

    async def query(self, query: str, preferred_server: Optional[str] = None) -> str:
        """
        Run the tool-use loop for one query.

        Args:
            query: The user's question.
            preferred_server: If given, only this server's tools are offered.

        Returns:
            The accumulated text of the conversation, including one line per
            tool invocation.

        Raises:
            ConfigurationError: If no language-model backend is configured.
            LLMProviderError: If the model backend fails.
        """
        if self.llm_provider is None:
            raise ConfigurationError(
                "No language-model backend configured (set ANTHROPIC_API_KEY)"
            )

        logger.info(f"Processing query: {query}")

        state = _QueryState(
            tools=[tool_definition(namespaced) for namespaced in self.collect_tools(preferred_server)],
            messages=[{"role": "user", "content": query}],
        )

        response = await self._ask(state)
        await self._process_response(response, state)

        if state.exhausted:
            state.output.append("(Note: Reached maximum number of tool call rounds)")

        return "\n".join(state.output).strip()

    async def _ask(self, state: "_QueryState") -> ModelResponse:
        return await self.llm_provider.create_message(
            messages=state.messages,
            tools=state.tools,
            model=self.model,
            max_tokens=self.max_tokens,
            system=self.system_prompt,
        )

    async def _process_response(self, response: ModelResponse, state: "_QueryState") -> None:
        """
        Walk the segments of one model turn in order.

        A successful tool call is fed back and the model's follow-up turn is
        processed before the remaining segments of this turn, so exactly one
        tool result precedes each model turn.
        """
        pending: List[Dict[str, Any]] = []

        for segment in response.segments:
            if isinstance(segment, TextSegment):
                state.output.append(segment.text)
                pending.append(segment.model_dump())
                continue

            if state.exhausted:
                logger.warning(f"Skipping {segment.name}: tool round limit reached")
                continue

            try:
                result = await self._invoke(segment)
            except ConduitError as e:
                logger.error(f"Error calling tool {segment.name}: {e}")
                state.output.append(f"[{segment.name} failed: {e}]")
                continue

            state.output.append(f"[{segment.name} executed]")
            pending.append(segment.model_dump())
            state.add_turn("assistant", pending)
            state.add_turn(
                "user",
                [
                    {
                        "type": "tool_result",
                        "tool_use_id": segment.id,
                        "content": format_tool_result(result),
                    }
                ],
            )
            pending = []

            state.tool_rounds += 1
            if state.tool_rounds >= self.max_tool_rounds:
                logger.warning(f"Hit maximum tool rounds ({self.max_tool_rounds})")
                state.exhausted = True
                continue

            follow_up = await self._ask(state)
            await self._process_response(follow_up, state)

        if pending:
            state.add_turn("assistant", pending)

    async def _invoke(self, segment: ToolUseSegment) -> CallToolResult:
        server_name, tool_name = split_qualified_tool_name(segment.name)
        logger.info(f"Calling {server_name}.{tool_name}", data=segment.input)
        return await self.dispatcher.call_tool(server_name, tool_name, segment.input)


class _QueryState:
    """Conversation and output accumulated while answering one query."""

    def __init__(self, tools: List[Dict[str, Any]], messages: Conversation):
        self.tools = tools
        self.messages = messages
        self.output: List[str] = []
        self.tool_rounds = 0
        self.exhausted = False

    def add_turn(self, role: str, content: List[Dict[str, Any]]) -> None:
        # Consecutive blocks from the same role share one turn
        if self.messages and self.messages[-1]["role"] == role and isinstance(self.messages[-1]["content"], list):
            self.messages[-1]["content"].extend(content)
        else:
            self.messages.append({"role": role, "content": list(content)})
