"""Pluggable backends: model streaming providers and the tool execution provider."""

from .base import ModelProvider, StreamFragment
from .gemini_provider import GeminiProvider
from .ollama import OllamaProvider
from .openai_provider import OpenAIProvider
from .tool_router import HttpToolRouterProvider, ToolExecutionProvider

__all__ = [
    "ModelProvider",
    "StreamFragment",
    "OllamaProvider",
    "OpenAIProvider",
    "GeminiProvider",
    "ToolExecutionProvider",
    "HttpToolRouterProvider",
]
