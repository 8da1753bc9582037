"""nanobot: a small personal AI assistant runtime.

Messages from chat surfaces arrive on a :class:`~nanobot.bus.MessageBus`;
the :class:`~nanobot.agent_loop.AgentLoop` answers each one with a live
streamed reply, calling tools and background subagents along the way.

The primary entry points are:

* :class:`nanobot.bus.MessageBus` – inbound/outbound queues with
  per-channel fan-out delivery.
* :class:`nanobot.agent_loop.AgentLoop` – consumes inbound messages and
  runs streamed model/tool turns.
* :class:`nanobot.subagent.SubagentManager` – detached background tasks
  that report back through the bus.
* :func:`nanobot.runtime.build_runtime` – wires everything from
  environment settings.
"""

from .agent_loop import AgentLoop, AgentLoopConfig
from .agent_types import (
    AgentTool,
    AgentToolResult,
    InboundMessage,
    OutboundMessage,
    SubagentTask,
    TextContent,
    ToolContext,
)
from .bus import MessageBus
from .event_stream import ContentStream
from .session import Session, SessionManager
from .subagent import SubagentManager
from .tools import ToolRegistry

__all__ = [
    "AgentLoop",
    "AgentLoopConfig",
    "AgentTool",
    "AgentToolResult",
    "ContentStream",
    "InboundMessage",
    "MessageBus",
    "OutboundMessage",
    "Session",
    "SessionManager",
    "SubagentManager",
    "SubagentTask",
    "TextContent",
    "ToolContext",
    "ToolRegistry",
]
