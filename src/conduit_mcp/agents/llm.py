"""
Language-model backends for the query orchestrator.
"""

from typing import Any, Dict, List, Literal, Optional, Union

import aiohttp
from pydantic import BaseModel, Field

from conduit_mcp.config import AnthropicSettings
from conduit_mcp.errors import LLMProviderError
from conduit_mcp.utils.logging import get_logger

logger = get_logger(__name__)

ANTHROPIC_VERSION = "2023-06-01"


class TextSegment(BaseModel):
    """Free text emitted by the model."""

    type: Literal["text"] = "text"
    text: str


class ToolUseSegment(BaseModel):
    """A request from the model to invoke a tool, correlated by id."""

    type: Literal["tool_use"] = "tool_use"
    id: str
    name: str
    input: Dict[str, Any] = Field(default_factory=dict)


Segment = Union[TextSegment, ToolUseSegment]


class ModelResponse(BaseModel):
    """One model turn, segments in the order the model emitted them."""

    segments: List[Segment] = Field(default_factory=list)
    stop_reason: Optional[str] = None

    @property
    def tool_uses(self) -> List[ToolUseSegment]:
        return [segment for segment in self.segments if isinstance(segment, ToolUseSegment)]


class LLMProvider:
    """Base class for LLM providers."""

    async def create_message(
        self,
        messages: List[Dict[str, Any]],
        tools: List[Dict[str, Any]],
        model: str,
        max_tokens: int,
        system: Optional[str] = None,
    ) -> ModelResponse:
        """
        Ask the model for the next turn.

        Args:
            messages: Conversation so far, as role-tagged turns.
            tools: Tool definitions (name, description, input_schema).
            model: Model name.
            max_tokens: Maximum tokens to generate.
            system: Optional system prompt.

        Returns:
            The model's response segments.
        """
        raise NotImplementedError("Subclasses must implement create_message()")


class AnthropicProvider(LLMProvider):
    """Anthropic Messages API provider."""

    def __init__(self, api_key: str, api_base: Optional[str] = None):
        """
        Initialize Anthropic provider.

        Args:
            api_key: Anthropic API key.
            api_base: Optional API base URL.
        """
        self.api_key = api_key
        self.api_base = (api_base or "https://api.anthropic.com/v1").rstrip("/")

    async def create_message(
        self,
        messages: List[Dict[str, Any]],
        tools: List[Dict[str, Any]],
        model: str,
        max_tokens: int,
        system: Optional[str] = None,
    ) -> ModelResponse:
        headers = {
            "Content-Type": "application/json",
            "x-api-key": self.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
        }

        payload: Dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens,
            "messages": messages,
        }
        if tools:
            payload["tools"] = tools
        if system:
            payload["system"] = system

        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    f"{self.api_base}/messages",
                    headers=headers,
                    json=payload,
                ) as response:
                    if response.status != 200:
                        error_text = await response.text()
                        raise LLMProviderError(
                            f"Anthropic API error: {response.status} - {error_text}",
                            details={"status": response.status},
                        )

                    result = await response.json()
        except aiohttp.ClientError as e:
            raise LLMProviderError(f"Anthropic API request failed: {e}") from e

        return self.parse_response(result)

    @staticmethod
    def parse_response(result: Dict[str, Any]) -> ModelResponse:
        """
        Convert a Messages API response body into a ModelResponse.
        Content blocks other than text and tool_use are skipped.
        """
        if not isinstance(result, dict) or "content" not in result:
            raise LLMProviderError(f"Unexpected Anthropic API response format: {result}")

        segments: List[Segment] = []
        for block in result["content"] or []:
            block_type = block.get("type")
            if block_type == "text":
                segments.append(TextSegment(text=block.get("text", "")))
            elif block_type == "tool_use":
                segments.append(
                    ToolUseSegment(
                        id=block["id"],
                        name=block["name"],
                        input=block.get("input") or {},
                    )
                )
            else:
                logger.debug(f"Skipping content block of type {block_type!r}")

        return ModelResponse(segments=segments, stop_reason=result.get("stop_reason"))


def create_llm_provider(settings: AnthropicSettings) -> Optional[LLMProvider]:
    """
    Create an LLM provider from configuration.

    Returns:
        The provider, or None when no API key is configured.
    """
    if not settings.api_key:
        return None
    return AnthropicProvider(api_key=settings.api_key, api_base=settings.api_base)
