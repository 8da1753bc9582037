"""Type definitions for nanobot.

This module contains the dataclasses and protocols shared by the bus, the
agent loop and the tools.  Provider-facing types (tool call requests,
stream chunks) live in :mod:`nanobot.providers.base`.

The emphasis here is on clarity rather than strict type checking.  All
classes are normal Python dataclasses; extra per-message information goes
into the ``metadata`` dictionaries.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Protocol, Tuple

if TYPE_CHECKING:
    from .event_stream import ContentStream


###############################################################################
# Bus messages
###############################################################################


@dataclass(frozen=True)
class InboundMessage:
    """A message received from a chat surface.

    ``channel`` names the surface (``"cli"``, ``"telegram"``, ...) and
    ``chat_id`` the conversation on that surface.  The special channel
    ``"system"`` carries internal announcements such as subagent reports;
    for those ``chat_id`` holds the origin as ``"<channel>:<chat_id>"``.
    """

    channel: str
    sender_id: str
    chat_id: str
    content: str
    media: Tuple[str, ...] = ()
    metadata: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    @property
    def session_key(self) -> str:
        """Key identifying the conversation this message belongs to."""
        return f"{self.channel}:{self.chat_id}"


@dataclass
class OutboundMessage:
    """A message to deliver to a chat surface.

    An outbound message carries either finished ``content`` or a live
    ``stream`` of text fragments, never both.  ``message_type`` is one of
    ``text``, ``image``, ``audio`` or ``video``; non-text messages reference
    their payload through ``media``.

    Raises
    ------
    ValueError
        If both ``content`` and ``stream`` are supplied.
    """

    channel: str
    chat_id: str
    content: str = ""
    stream: Optional["ContentStream"] = None
    media: str = ""
    message_type: str = "text"
    reply_to: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.content and self.stream is not None:
            raise ValueError("OutboundMessage carries either content or a stream, not both")

    @property
    def is_stream(self) -> bool:
        return self.stream is not None

    async def collect_text(self) -> str:
        """Return the finished text, waiting for a live stream to close."""
        if self.stream is None:
            return self.content
        return await self.stream.result()


###############################################################################
# Agent tools
###############################################################################


@dataclass(frozen=True)
class ToolContext:
    """Conversation a tool invocation acts on behalf of.

    Passed explicitly to every :meth:`AgentTool.execute` call so that
    concurrent turns never share mutable per-tool state.
    """

    channel: str
    chat_id: str


@dataclass
class TextContent:
    """A chunk of plain text produced by a tool."""

    type: str = "text"
    text: str = ""


@dataclass
class AgentToolResult:
    """Represents the outcome of a tool execution.

    ``content`` is what the model sees; ``details`` is structured metadata
    for logs and tests.  Tools set ``details["ok"]`` to ``False`` on
    validation failures and ``details["blocked"]`` on policy refusals.
    """

    content: List[TextContent]
    details: Dict[str, Any]


class AgentTool(Protocol):
    """Protocol for tools that the agent can execute.

    The base fields ``name``, ``description``, ``parameters`` and
    ``label`` describe the tool for the benefit of the LLM.  The
    ``parameters`` attribute follows the JSON Schema format used by
    OpenAI-compatible function calling.
    """

    # Name of the tool as referenced by the assistant
    name: str
    # Human readable description of what the tool does
    description: str
    # JSON Schema describing accepted parameters
    parameters: Dict[str, Any]
    # Display name shown in logs
    label: str

    async def execute(
        self,
        tool_call_id: str,
        params: Dict[str, Any],
        context: Optional[ToolContext] = None,
    ) -> AgentToolResult:
        """Execute the tool and return the result.

        Parameters
        ----------
        tool_call_id : str
            The identifier assigned by the assistant to this tool call.
        params : dict
            Structured arguments parsed from the assistant request.
        context : ToolContext, optional
            The conversation the call belongs to.  Tools that address a
            conversation (messaging, spawning, scheduling) report an error
            when it is missing.

        Returns
        -------
        AgentToolResult
            The final tool result.
        """

        ...  # pragma: no cover


def tool_result_text(result: AgentToolResult) -> str:
    """Join the text content of a tool result."""
    return "".join(item.text for item in result.content if getattr(item, "text", None))


def text_result(text: str, **details: Any) -> AgentToolResult:
    """Build a single-text result; ``details`` defaults ``ok`` to ``True``."""
    details.setdefault("ok", True)
    return AgentToolResult(content=[TextContent(text=text)], details=details)


###############################################################################
# Subagents
###############################################################################


@dataclass
class SubagentTask:
    """Bookkeeping for one background subagent run."""

    task_id: str
    task: str
    label: str
    origin_channel: str
    origin_chat_id: str
    status: str = "running"
    result: str = ""
    created_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None


__all__ = [
    "InboundMessage",
    "OutboundMessage",
    "ToolContext",
    "TextContent",
    "AgentToolResult",
    "AgentTool",
    "SubagentTask",
    "tool_result_text",
    "text_result",
]
