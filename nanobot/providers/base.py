"""Provider-facing type definitions.

Chat providers speak the OpenAI message format: messages are plain
dictionaries (``{"role": ..., "content": ...}``) and tools are described
by function schemas.  A non-streaming call returns an
:class:`LLMResponse`; a streaming call yields :class:`StreamChunk`
objects, each carrying exactly one kind of payload.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol


###############################################################################
# Errors
###############################################################################


class ProviderError(RuntimeError):
    """Raised when a provider request fails or returns malformed data."""


class ProviderConfigError(RuntimeError):
    """Raised at startup when no usable provider is configured."""


###############################################################################
# Responses
###############################################################################


@dataclass
class ToolCallRequest:
    """A fully reconstructed tool call requested by the model."""

    id: str
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)

    def to_openai(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {
                "name": self.name,
                "arguments": json.dumps(self.arguments, ensure_ascii=False),
            },
        }


@dataclass
class LLMResponse:
    """Result of a non-streaming chat call."""

    content: str = ""
    tool_calls: List[ToolCallRequest] = field(default_factory=list)
    finish_reason: str = "stop"
    usage: Dict[str, int] = field(default_factory=dict)

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


@dataclass
class ToolCallChunk:
    """One fragment of a streamed tool call.

    Fragments sharing an ``index`` belong to the same call.  ``id`` and
    ``name`` usually arrive on the first fragment only; ``arguments`` is a
    slice of the JSON argument text.
    """

    index: int
    id: str = ""
    name: str = ""
    arguments: str = ""


@dataclass
class StreamChunk:
    """A single streamed event: text, a tool-call fragment, finish, usage or error."""

    content: str = ""
    tool_call: Optional[ToolCallChunk] = None
    finish_reason: str = ""
    usage: Optional[Dict[str, int]] = None
    error: str = ""


###############################################################################
# Provider protocol
###############################################################################


class LLMProvider(Protocol):
    """Interface every chat provider implements."""

    async def chat(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
        model: Optional[str] = None,
    ) -> LLMResponse:
        ...  # pragma: no cover

    def stream(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
        model: Optional[str] = None,
    ) -> AsyncIterator[StreamChunk]:
        ...  # pragma: no cover

    def get_default_model(self) -> str:
        ...  # pragma: no cover


__all__ = [
    "ProviderError",
    "ProviderConfigError",
    "ToolCallRequest",
    "LLMResponse",
    "ToolCallChunk",
    "StreamChunk",
    "LLMProvider",
]
