"""The agent loop: inbound message in, streamed reply out.

:class:`AgentLoop` consumes the bus's inbound queue and handles every
message in its own task, so conversations progress independently.  A
turn builds the model context from the session history, then repeats
model/tool rounds:

* The provider is streamed.  The first text fragment of a round opens a
  live :class:`~nanobot.event_stream.ContentStream` that is published to
  the originating conversation; every further fragment is pushed to it
  and the stream is closed exactly once when the round ends.
* Tool-call fragments are reassembled by
  :class:`~nanobot.rounds.ToolCallAccumulator` and executed in index
  order with the turn's :class:`~nanobot.agent_types.ToolContext`.
* A round without tool calls ends the turn.

Every turn produces at least one outbound message: when the final answer
was not streamed (empty answer, exhausted round limit) it is published
as an ordinary message.  Failures are answered with an apology.

Messages on the ``system`` channel are internal announcements (subagent
reports).  They run a reduced, non-streaming turn and answer the
conversation named in their ``chat_id``.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from .agent_types import InboundMessage, OutboundMessage, ToolContext
from .bus import MessageBus
from .context import ContextBuilder
from .cron import CronService
from .event_stream import ContentStream
from .providers.base import LLMProvider, ProviderError, ToolCallRequest
from .rounds import (
    DEFAULT_REQUEST_TIMEOUT_S,
    ToolCallAccumulator,
    coerce_timeout,
    execute_tool_calls,
    run_chat_rounds,
)
from .session import DEFAULT_HISTORY_LIMIT, SessionManager
from .subagent import SubagentManager, build_subagent_registry
from .tools import (
    AppendFileTool,
    CronTool,
    EditFileTool,
    ExecConfig,
    ExecTool,
    ListDirTool,
    MediaConfig,
    MediaGenerationTool,
    MessageTool,
    ReadFileTool,
    SpawnTool,
    ToolRegistry,
    WebFetchTool,
    WebSearchTool,
    WriteFileTool,
)

logger = logging.getLogger(__name__)

SYSTEM_CHANNEL = "system"
NEW_TOPIC_COMMANDS = frozenset({"/new", "新话题"})
NEW_TOPIC_REPLY = "Started a new topic. The previous conversation history has been cleared."
EMPTY_REPLY = "I've completed processing but have no response to give."
MAX_ROUNDS_REPLY = "Sorry, I couldn't finish this request within the allowed number of steps."
SYSTEM_EMPTY_REPLY = "Background task completed."
ERROR_REPLY_TEMPLATE = "Sorry, I encountered an error: {error}"

EventSink = Callable[[Dict[str, Any]], None]


###############################################################################
# Configuration
###############################################################################


@dataclass
class AgentLoopConfig:
    """Configuration for :class:`AgentLoop`.

    Parameters
    ----------
    workspace : str
        Root directory for sessions, memory, skills and file tools.
    model : str, optional
        Model name passed to the provider.  Defaults to the provider's
        default model.
    max_iterations : int
        Round limit for ordinary turns.
    system_max_iterations : int
        Round limit for system (announcement) turns.
    subagent_max_iterations : int
        Round limit for each subagent run.
    history_limit : int
        Number of past turns included in the model context.
    request_timeout_s : float, optional
        Deadline for each provider round.  ``None`` or a non-positive
        value disables it.
    restrict_to_workspace : bool
        Confine file tools and ``exec`` to the workspace.
    exec_config : ExecConfig, optional
        Shell tool configuration.  Built from ``workspace`` and
        ``restrict_to_workspace`` when omitted.
    brave_api_key : str
        Key for the ``web_search`` tool.
    web_search_max_results : int
        Default result count for ``web_search``.
    web_fetch_max_chars : int
        Default truncation for ``web_fetch``.
    media_config : MediaConfig, optional
        Enables the ``media_generation`` tool when supplied.
    """

    workspace: str
    model: Optional[str] = None
    max_iterations: int = 20
    system_max_iterations: int = 10
    subagent_max_iterations: int = 15
    history_limit: int = DEFAULT_HISTORY_LIMIT
    request_timeout_s: Optional[float] = DEFAULT_REQUEST_TIMEOUT_S
    restrict_to_workspace: bool = False
    exec_config: Optional[ExecConfig] = None
    brave_api_key: str = ""
    web_search_max_results: int = 5
    web_fetch_max_chars: int = 50_000
    media_config: Optional[MediaConfig] = None


@dataclass
class TurnOutcome:
    """Result of the streaming round loop for one turn."""

    content: str = ""
    rounds: int = 0
    streamed: bool = False
    exhausted: bool = False
    streams_opened: int = 0


@dataclass
class _RoundResult:
    content: str = ""
    tool_calls: List[ToolCallRequest] = field(default_factory=list)
    stream: Optional[ContentStream] = None


def parse_origin(chat_id: str) -> Tuple[str, str]:
    """Split a system message ``chat_id`` into ``(channel, chat_id)``."""
    if ":" in chat_id:
        channel, _, origin_chat_id = chat_id.partition(":")
        return channel, origin_chat_id
    return "cli", chat_id


###############################################################################
# Agent loop
###############################################################################


class AgentLoop:
    """Consumes inbound messages and drives model/tool turns.

    Parameters
    ----------
    bus : MessageBus
        Source of inbound messages and sink for replies.
    provider : LLMProvider
        Streaming chat provider.
    config : AgentLoopConfig
        Limits, workspace and tool settings.
    cron_service : CronService, optional
        Enables the ``cron`` tool when supplied.
    sessions, context : optional
        Injected collaborators; created for the workspace when omitted.
    on_event : callable, optional
        Receives loop events (``turn_start``, ``text_delta``,
        ``tool_execution_start`` ...) for user-facing logging.
    """

    def __init__(
        self,
        bus: MessageBus,
        provider: LLMProvider,
        config: AgentLoopConfig,
        *,
        cron_service: Optional[CronService] = None,
        sessions: Optional[SessionManager] = None,
        context: Optional[ContextBuilder] = None,
        on_event: Optional[EventSink] = None,
    ) -> None:
        self.bus = bus
        self.provider = provider
        self.config = config
        self.workspace = os.path.abspath(config.workspace)
        os.makedirs(self.workspace, exist_ok=True)
        self.model = config.model or provider.get_default_model()
        self.max_iterations = max(1, int(config.max_iterations))
        self.system_max_iterations = max(1, int(config.system_max_iterations))
        self.request_timeout_s = coerce_timeout(config.request_timeout_s)
        self.sessions = sessions or SessionManager(self.workspace)
        self.context = context or ContextBuilder(self.workspace)
        self.cron_service = cron_service
        self.on_event = on_event
        self.exec_config = config.exec_config or ExecConfig(
            working_dir=self.workspace,
            restrict_to_workspace=config.restrict_to_workspace,
        )
        self.subagents = SubagentManager(
            provider,
            bus,
            self.workspace,
            model=self.model,
            max_iterations=config.subagent_max_iterations,
            request_timeout_s=self.request_timeout_s,
            registry_factory=lambda: build_subagent_registry(
                self.workspace,
                self.exec_config,
                config.brave_api_key,
                config.restrict_to_workspace,
                config.web_fetch_max_chars,
            ),
            on_event=self._emit,
        )
        self.tools = ToolRegistry()
        self._register_default_tools()
        self._running = False
        self._inflight: Set[asyncio.Task] = set()

    def _register_default_tools(self) -> None:
        workspace = self.workspace
        restrict = self.config.restrict_to_workspace
        self.tools.register(ReadFileTool(workspace, restrict))
        self.tools.register(WriteFileTool(workspace, restrict))
        self.tools.register(AppendFileTool(workspace, restrict))
        self.tools.register(EditFileTool(workspace, restrict))
        self.tools.register(ListDirTool(workspace, restrict))
        self.tools.register(ExecTool(self.exec_config))
        self.tools.register(
            WebSearchTool(api_key=self.config.brave_api_key, max_results=self.config.web_search_max_results)
        )
        self.tools.register(WebFetchTool(max_chars=self.config.web_fetch_max_chars))
        self.tools.register(MessageTool(self.bus))
        self.tools.register(SpawnTool(self.subagents))
        if self.cron_service is not None:
            self.tools.register(CronTool(self.cron_service))
        if self.config.media_config is not None:
            self.tools.register(MediaGenerationTool(self.config.media_config))

    def _emit(self, event: Dict[str, Any]) -> None:
        if self.on_event is None:
            return
        try:
            self.on_event(event)
        except Exception:
            logger.exception("Event sink failed for %s", event.get("type"))

    ###########################################################################
    # Consumption
    ###########################################################################

    async def run(self, poll_interval_s: float = 1.0) -> None:
        """Consume inbound messages until :meth:`stop` is called."""
        self._running = True
        logger.info("Agent loop started (model=%s)", self.model)
        while self._running:
            try:
                msg = await asyncio.wait_for(self.bus.consume_inbound(), timeout=poll_interval_s)
            except asyncio.TimeoutError:
                continue
            task = asyncio.create_task(self.handle_message(msg))
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)

    def stop(self) -> None:
        self._running = False

    async def wait_idle(self) -> None:
        """Wait for in-flight turns (and the subagents they spawned)."""
        while self._inflight or self.subagents.running_count():
            if self._inflight:
                await asyncio.gather(*list(self._inflight), return_exceptions=True)
            await self.subagents.wait_all()

    async def handle_message(self, msg: InboundMessage) -> None:
        """Process ``msg``; any failure is logged and answered with an apology."""
        try:
            await self.process_message(msg)
        except Exception as exc:
            logger.exception("Error processing message from %s:%s", msg.channel, msg.chat_id)
            self._emit({"type": "turn_error", "sessionKey": msg.session_key, "error": str(exc)})
            channel, chat_id = msg.channel, msg.chat_id
            if channel == SYSTEM_CHANNEL:
                channel, chat_id = parse_origin(chat_id)
            await self.bus.publish_outbound(
                OutboundMessage(channel=channel, chat_id=chat_id, content=ERROR_REPLY_TEMPLATE.format(error=exc))
            )

    ###########################################################################
    # Turns
    ###########################################################################

    async def process_message(self, msg: InboundMessage) -> None:
        """Run one turn for ``msg``.

        Raises
        ------
        ProviderError
            If the provider fails or exceeds the round deadline.
        """
        if msg.channel == SYSTEM_CHANNEL:
            await self.process_system_message(msg)
            return

        key = msg.session_key
        if msg.content.strip() in NEW_TOPIC_COMMANDS:
            await self.sessions.clear(key)
            logger.info("Cleared session %s", key)
            await self.bus.publish_outbound(
                OutboundMessage(channel=msg.channel, chat_id=msg.chat_id, content=NEW_TOPIC_REPLY)
            )
            return

        self._emit({"type": "turn_start", "sessionKey": key, "content": msg.content})
        tool_context = ToolContext(channel=msg.channel, chat_id=msg.chat_id)
        session = self.sessions.get_or_create(key)
        messages = self.context.build_messages(
            session.get_history(self.config.history_limit),
            msg.content,
            msg.media,
            msg.channel,
            msg.chat_id,
        )

        outcome = await self.run_streaming_rounds(messages, tool_context)
        final = outcome.content
        if outcome.exhausted:
            final = MAX_ROUNDS_REPLY
        elif not final:
            final = EMPTY_REPLY

        await self.sessions.append_turns(key, [("user", msg.content), ("assistant", final)])

        if not outcome.streamed:
            await self.bus.publish_outbound(OutboundMessage(channel=msg.channel, chat_id=msg.chat_id, content=final))
        self._emit({"type": "turn_end", "sessionKey": key, "rounds": outcome.rounds, "content": final})

    async def run_streaming_rounds(
        self,
        messages: List[Dict[str, Any]],
        tool_context: ToolContext,
    ) -> TurnOutcome:
        """Drive streamed rounds until the model answers without tool calls."""
        outcome = TurnOutcome()
        for round_index in range(1, self.max_iterations + 1):
            outcome.rounds = round_index
            result = await self._stream_round(messages, tool_context)
            if result.stream is not None:
                outcome.streams_opened += 1
            if not result.tool_calls:
                outcome.content = result.content
                outcome.streamed = result.stream is not None
                return outcome
            self.context.add_assistant_message(messages, result.content, result.tool_calls)
            await execute_tool_calls(self.tools, result.tool_calls, messages, tool_context, self._emit)
        outcome.exhausted = True
        return outcome

    async def _stream_round(self, messages: List[Dict[str, Any]], tool_context: ToolContext) -> _RoundResult:
        result = _RoundResult()
        parts: List[str] = []
        accumulator = ToolCallAccumulator()

        async def _consume() -> None:
            async for chunk in self.provider.stream(messages, self.tools.definitions(), self.model):
                if chunk.error:
                    raise ProviderError(chunk.error)
                if chunk.content:
                    if result.stream is None:
                        result.stream = ContentStream()
                        await self.bus.publish_outbound(
                            OutboundMessage(
                                channel=tool_context.channel,
                                chat_id=tool_context.chat_id,
                                stream=result.stream,
                            )
                        )
                    result.stream.push(chunk.content)
                    parts.append(chunk.content)
                    self._emit({"type": "text_delta", "delta": chunk.content})
                if chunk.tool_call is not None:
                    accumulator.add(chunk.tool_call)

        try:
            if self.request_timeout_s is None:
                await _consume()
            else:
                await asyncio.wait_for(_consume(), self.request_timeout_s)
        except asyncio.TimeoutError as exc:
            raise ProviderError(f"LLM request timed out after {self.request_timeout_s:.0f}s") from exc
        finally:
            if result.stream is not None:
                result.stream.end()

        result.content = "".join(parts)
        result.tool_calls = accumulator.finalize()
        return result

    async def process_system_message(self, msg: InboundMessage) -> None:
        """Turn an internal announcement into a reply to its origin conversation."""
        logger.info("Processing system message from %s", msg.sender_id)
        origin_channel, origin_chat_id = parse_origin(msg.chat_id)
        key = f"{origin_channel}:{origin_chat_id}"
        tool_context = ToolContext(channel=origin_channel, chat_id=origin_chat_id)
        session = self.sessions.get_or_create(key)
        messages = self.context.build_messages(
            session.get_history(self.config.history_limit),
            msg.content,
            (),
            origin_channel,
            origin_chat_id,
        )
        outcome = await run_chat_rounds(
            self.provider,
            self.tools,
            messages,
            model=self.model,
            max_rounds=self.system_max_iterations,
            context=tool_context,
            timeout_s=self.request_timeout_s,
            on_event=self._emit,
        )
        final = outcome.content or SYSTEM_EMPTY_REPLY
        await self.sessions.append_turns(
            key,
            [("user", f"[System: {msg.sender_id}] {msg.content}"), ("assistant", final)],
        )
        await self.bus.publish_outbound(OutboundMessage(channel=origin_channel, chat_id=origin_chat_id, content=final))


__all__ = [
    "AgentLoop",
    "AgentLoopConfig",
    "TurnOutcome",
    "parse_origin",
    "NEW_TOPIC_COMMANDS",
    "NEW_TOPIC_REPLY",
    "EMPTY_REPLY",
    "MAX_ROUNDS_REPLY",
    "SYSTEM_EMPTY_REPLY",
    "ERROR_REPLY_TEMPLATE",
]
