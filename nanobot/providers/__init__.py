from .base import (
    LLMProvider,
    LLMResponse,
    ProviderConfigError,
    ProviderError,
    StreamChunk,
    ToolCallChunk,
    ToolCallRequest,
)
from .factory import create_provider
from .openai_compat import OpenAICompatProvider

__all__ = [
    "LLMProvider",
    "LLMResponse",
    "ProviderConfigError",
    "ProviderError",
    "StreamChunk",
    "ToolCallChunk",
    "ToolCallRequest",
    "OpenAICompatProvider",
    "create_provider",
]
