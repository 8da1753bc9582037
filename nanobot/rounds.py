"""Building blocks shared by every model/tool round loop.

The main agent, the system turn and subagents all repeat the same cycle:
ask the model, execute any requested tools, feed the results back, stop
when the model answers without tool calls.  This module holds the parts
of that cycle that do not depend on streaming:

* :class:`ToolCallAccumulator` rebuilds complete tool calls from streamed,
  per-index fragments.
* :func:`execute_tool_calls` runs reconstructed calls sequentially and
  appends one ``tool`` message per call.
* :func:`run_chat_rounds` drives a non-streaming round loop.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, TypeVar

from .agent_types import ToolContext, tool_result_text
from .context import ContextBuilder
from .providers.base import LLMProvider, ProviderError, ToolCallChunk, ToolCallRequest
from .tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT_S = 120.0

EventSink = Callable[[Dict[str, Any]], None]
T = TypeVar("T")


def coerce_timeout(value: Optional[float]) -> Optional[float]:
    """Return a positive timeout in seconds or None if disabled/invalid."""
    if value is None:
        return None
    try:
        timeout = float(value)
    except (TypeError, ValueError):
        return None
    if timeout <= 0:
        return None
    return timeout


async def with_timeout(awaitable: Awaitable[T], timeout_s: Optional[float]) -> T:
    """Await ``awaitable`` under a deadline, raising :class:`ProviderError` on expiry."""
    if timeout_s is None:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout_s)
    except asyncio.TimeoutError as exc:
        raise ProviderError(f"LLM request timed out after {timeout_s:.0f}s") from exc


def parse_tool_arguments(text: str) -> Dict[str, Any]:
    """Parse accumulated argument text; empty, invalid or non-object JSON gives ``{}``."""
    if not text or not text.strip():
        return {}
    try:
        parsed = json.loads(text)
    except ValueError:
        logger.warning("Discarding unparseable tool arguments: %r", text[:200])
        return {}
    return parsed if isinstance(parsed, dict) else {}


###############################################################################
# Streaming tool-call reconstruction
###############################################################################


@dataclass
class _PartialToolCall:
    id: str = ""
    name: str = ""
    argument_parts: List[str] = field(default_factory=list)


class ToolCallAccumulator:
    """Rebuilds complete tool calls from interleaved streamed fragments.

    Fragments are grouped by ``index``.  The first non-empty ``id`` and
    ``name`` seen for an index are kept; later values never overwrite
    them.  Argument fragments are concatenated in arrival order.
    """

    def __init__(self) -> None:
        self._partials: Dict[int, _PartialToolCall] = {}

    def add(self, chunk: ToolCallChunk) -> None:
        partial = self._partials.get(chunk.index)
        if partial is None:
            partial = _PartialToolCall()
            self._partials[chunk.index] = partial
        if chunk.id and not partial.id:
            partial.id = chunk.id
        if chunk.name and not partial.name:
            partial.name = chunk.name
        if chunk.arguments:
            partial.argument_parts.append(chunk.arguments)

    def __len__(self) -> int:
        return len(self._partials)

    def finalize(self) -> List[ToolCallRequest]:
        """Return the reconstructed calls in ascending index order."""
        calls: List[ToolCallRequest] = []
        for index in sorted(self._partials):
            partial = self._partials[index]
            calls.append(
                ToolCallRequest(
                    id=partial.id or f"call_{index}",
                    name=partial.name,
                    arguments=parse_tool_arguments("".join(partial.argument_parts)),
                )
            )
        return calls


###############################################################################
# Tool execution
###############################################################################


def _emit(on_event: Optional[EventSink], event: Dict[str, Any]) -> None:
    if on_event is None:
        return
    try:
        on_event(event)
    except Exception:
        logger.exception("Event sink failed for %s", event.get("type"))


async def execute_tool_calls(
    registry: ToolRegistry,
    calls: Sequence[ToolCallRequest],
    messages: List[Dict[str, Any]],
    context: Optional[ToolContext] = None,
    on_event: Optional[EventSink] = None,
) -> None:
    """Execute ``calls`` in order, appending one tool-result message each.

    Any failure, including an unknown tool name, becomes result text so
    the model can react to it; nothing propagates to the caller.
    """
    for call in calls:
        _emit(
            on_event,
            {"type": "tool_execution_start", "toolCallId": call.id, "toolName": call.name, "args": call.arguments},
        )
        is_error = False
        try:
            result = await registry.execute(call.name, call.id, call.arguments, context)
            text = tool_result_text(result)
            is_error = not result.details.get("ok", True)
        except Exception as exc:
            logger.warning("Tool %s failed: %s", call.name, exc)
            text = f"Error executing tool: {exc}"
            is_error = True
        ContextBuilder.add_tool_result(messages, call.id, call.name, text)
        _emit(
            on_event,
            {
                "type": "tool_execution_end",
                "toolCallId": call.id,
                "toolName": call.name,
                "result": text,
                "isError": is_error,
            },
        )


###############################################################################
# Non-streaming round loop
###############################################################################


@dataclass
class RoundOutcome:
    content: str
    rounds: int
    exhausted: bool = False


async def run_chat_rounds(
    provider: LLMProvider,
    registry: ToolRegistry,
    messages: List[Dict[str, Any]],
    *,
    model: Optional[str] = None,
    max_rounds: int = 20,
    context: Optional[ToolContext] = None,
    timeout_s: Optional[float] = DEFAULT_REQUEST_TIMEOUT_S,
    on_event: Optional[EventSink] = None,
) -> RoundOutcome:
    """Run non-streaming model/tool rounds until the model stops calling tools.

    Raises
    ------
    ProviderError
        If a provider call fails or exceeds ``timeout_s``.
    """
    timeout = coerce_timeout(timeout_s)
    for round_index in range(1, max(1, max_rounds) + 1):
        response = await with_timeout(provider.chat(messages, registry.definitions(), model), timeout)
        if not response.has_tool_calls:
            return RoundOutcome(content=response.content or "", rounds=round_index)
        ContextBuilder.add_assistant_message(messages, response.content or "", response.tool_calls)
        await execute_tool_calls(registry, response.tool_calls, messages, context, on_event)
    return RoundOutcome(content="", rounds=max(1, max_rounds), exhausted=True)


__all__ = [
    "ToolCallAccumulator",
    "execute_tool_calls",
    "run_chat_rounds",
    "RoundOutcome",
    "parse_tool_arguments",
    "coerce_timeout",
    "with_timeout",
    "DEFAULT_REQUEST_TIMEOUT_S",
]
