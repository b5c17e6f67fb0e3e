"""
Language-model components for the Conduit MCP client.
"""

from .llm import (
    AnthropicProvider,
    LLMProvider,
    ModelResponse,
    TextSegment,
    ToolUseSegment,
    create_llm_provider,
)
from .orchestrator import QueryOrchestrator

__all__ = [
    "AnthropicProvider",
    "LLMProvider",
    "ModelResponse",
    "TextSegment",
    "ToolUseSegment",
    "create_llm_provider",
    "QueryOrchestrator",
]
