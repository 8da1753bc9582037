from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Dict, List, Optional

from nanobot.agent_loop import (
    EMPTY_REPLY,
    MAX_ROUNDS_REPLY,
    NEW_TOPIC_REPLY,
    AgentLoop,
    AgentLoopConfig,
)
from nanobot.agent_types import InboundMessage
from nanobot.bus import MessageBus
from nanobot.providers.base import LLMResponse, StreamChunk, ToolCallChunk


class _ScriptedProvider:
    """Replays one scripted chunk list per streamed round.

    A float in a script sleeps for that many seconds before the next chunk.
    """

    def __init__(self, streams: Optional[List[List[Any]]] = None, responses: Optional[List[LLMResponse]] = None):
        self.streams = list(streams or [])
        self.responses = list(responses or [])
        self.stream_calls: List[List[Dict[str, Any]]] = []
        self.chat_calls = 0

    def get_default_model(self) -> str:
        return "stub-model"

    async def chat(self, messages, tools=None, model=None):
        self.chat_calls += 1
        return self.responses.pop(0)

    async def stream(self, messages, tools=None, model=None):
        self.stream_calls.append([dict(m) for m in messages])
        for item in self.streams.pop(0):
            if isinstance(item, float):
                await asyncio.sleep(item)
                continue
            yield item


def _text(*fragments: str) -> List[Any]:
    return [StreamChunk(content=f) for f in fragments] + [StreamChunk(finish_reason="stop")]


def _tool(index: int, call_id: str, name: str, *argument_parts: str) -> List[Any]:
    chunks = [ToolCallChunk(index=index, id=call_id, name=name)]
    chunks.extend(ToolCallChunk(index=index, arguments=part) for part in argument_parts)
    return [StreamChunk(tool_call=c) for c in chunks]


class _Outbox:
    """Collects every outbound message delivered to one channel."""

    def __init__(self) -> None:
        self.records: List[Dict[str, Any]] = []

    async def __call__(self, msg) -> None:
        if msg.is_stream:
            text = "".join([fragment async for fragment in msg.stream])
        else:
            text = msg.content
        self.records.append(
            {
                "channel": msg.channel,
                "chat_id": msg.chat_id,
                "text": text,
                "stream": msg.stream,
                "type": msg.message_type,
            }
        )


def _make_loop(tmp_path: Path, provider, **config: Any):
    bus = MessageBus()
    events: List[Dict[str, Any]] = []
    loop = AgentLoop(bus, provider, AgentLoopConfig(workspace=str(tmp_path), **config), on_event=events.append)
    return bus, loop, events


async def _deliver(bus: MessageBus, channel: str, outbox: _Outbox, coro) -> None:
    bus.subscribe_outbound(channel, outbox)
    dispatcher = asyncio.create_task(bus.dispatch_outbound(poll_interval_s=0.02))
    try:
        await coro
        await bus.drain()
    finally:
        bus.stop()
        await dispatcher


def _cli(content: str, chat_id: str = "direct") -> InboundMessage:
    return InboundMessage(channel="cli", sender_id="user", chat_id=chat_id, content=content)


def test_plain_answer_is_streamed_once_and_persisted(tmp_path: Path):
    provider = _ScriptedProvider(streams=[_text("4")])
    bus, loop, events = _make_loop(tmp_path, provider)
    outbox = _Outbox()

    asyncio.run(_deliver(bus, "cli", outbox, loop.handle_message(_cli("What is 2+2?"))))

    assert len(outbox.records) == 1
    record = outbox.records[0]
    assert (record["channel"], record["chat_id"], record["text"]) == ("cli", "direct", "4")
    assert record["stream"] is not None and record["stream"].closed
    session = loop.sessions.get_or_create("cli:direct")
    assert [(m["role"], m["content"]) for m in session.messages] == [
        ("user", "What is 2+2?"),
        ("assistant", "4"),
    ]
    assert [e["type"] for e in events if e["type"].startswith("turn")] == ["turn_start", "turn_end"]


def test_stream_concatenates_fragments_and_closes_once(tmp_path: Path):
    provider = _ScriptedProvider(streams=[_text("Hel", "lo ", "there")])
    bus, loop, _ = _make_loop(tmp_path, provider)
    outbox = _Outbox()

    asyncio.run(_deliver(bus, "cli", outbox, loop.handle_message(_cli("hi"))))

    assert len(outbox.records) == 1
    stream = outbox.records[0]["stream"]
    assert outbox.records[0]["text"] == "Hello there"
    assert stream.fragment_count == 3
    assert stream.closed


def test_tool_round_then_answer(tmp_path: Path):
    (tmp_path / "x.txt").write_text("hello", encoding="utf-8")
    provider = _ScriptedProvider(
        streams=[
            _tool(0, "call_1", "read_file", '{"path": ', '"x.txt"}'),
            _text("File says hello"),
        ]
    )
    bus, loop, events = _make_loop(tmp_path, provider)
    outbox = _Outbox()

    asyncio.run(_deliver(bus, "cli", outbox, loop.handle_message(_cli("read x"))))

    assert len(provider.stream_calls) == 2
    second_round = provider.stream_calls[1]
    assistant = second_round[-2]
    tool_turn = second_round[-1]
    assert assistant["role"] == "assistant"
    assert assistant["tool_calls"][0]["function"]["name"] == "read_file"
    assert tool_turn == {"role": "tool", "tool_call_id": "call_1", "name": "read_file", "content": "hello"}
    assert [r["text"] for r in outbox.records] == ["File says hello"]
    assert [e["toolName"] for e in events if e["type"] == "tool_execution_end"] == ["read_file"]


def test_tool_only_round_opens_no_stream(tmp_path: Path):
    provider = _ScriptedProvider(
        streams=[
            _tool(0, "call_1", "list_dir", '{"path": "."}'),
            [StreamChunk(finish_reason="stop")],
        ]
    )
    bus, loop, _ = _make_loop(tmp_path, provider)
    outbox = _Outbox()

    asyncio.run(_deliver(bus, "cli", outbox, loop.handle_message(_cli("look around"))))

    assert len(outbox.records) == 1
    assert outbox.records[0]["stream"] is None
    assert outbox.records[0]["text"] == EMPTY_REPLY


def test_validation_failure_continues_the_loop(tmp_path: Path):
    provider = _ScriptedProvider(
        streams=[
            _tool(0, "call_1", "edit_file", '{"path": "missing.txt"}'),
            _tool(0, "call_2", "no_such_tool", "{}"),
            _text("gave up"),
        ]
    )
    bus, loop, events = _make_loop(tmp_path, provider)
    outbox = _Outbox()

    asyncio.run(_deliver(bus, "cli", outbox, loop.handle_message(_cli("edit"))))

    assert len(provider.stream_calls) == 3
    tool_turns = [m for m in provider.stream_calls[2] if m["role"] == "tool"]
    assert tool_turns[0]["content"].startswith("edit_file error:")
    assert tool_turns[1]["content"] == "Error executing tool: Tool no_such_tool not found"
    ends = [e for e in events if e["type"] == "tool_execution_end"]
    assert all(e["isError"] for e in ends)
    assert outbox.records[-1]["text"] == "gave up"


def test_round_limit_exhaustion_sends_fallback(tmp_path: Path):
    provider = _ScriptedProvider(
        streams=[
            _tool(0, "a", "list_dir", "{}"),
            _tool(0, "b", "list_dir", "{}"),
        ]
    )
    bus, loop, _ = _make_loop(tmp_path, provider, max_iterations=2)
    outbox = _Outbox()

    asyncio.run(_deliver(bus, "cli", outbox, loop.handle_message(_cli("loop forever"))))

    assert [r["text"] for r in outbox.records] == [MAX_ROUNDS_REPLY]
    session = loop.sessions.get_or_create("cli:direct")
    assert session.messages[-1]["content"] == MAX_ROUNDS_REPLY


def test_provider_error_closes_stream_and_apologises(tmp_path: Path):
    provider = _ScriptedProvider(streams=[[StreamChunk(content="partial"), StreamChunk(error="upstream exploded")]])
    bus, loop, events = _make_loop(tmp_path, provider)
    outbox = _Outbox()

    asyncio.run(_deliver(bus, "cli", outbox, loop.handle_message(_cli("hi"))))

    assert len(outbox.records) == 2
    streamed = [r for r in outbox.records if r["stream"] is not None]
    assert streamed[0]["stream"].closed
    assert streamed[0]["text"] == "partial"
    apology = [r for r in outbox.records if r["stream"] is None][0]
    assert apology["text"] == "Sorry, I encountered an error: upstream exploded"
    assert any(e["type"] == "turn_error" for e in events)
    assert loop.sessions.get_or_create("cli:direct").messages == []


def test_round_deadline_becomes_apology(tmp_path: Path):
    provider = _ScriptedProvider(streams=[[1.0] + _text("too late")])
    bus, loop, _ = _make_loop(tmp_path, provider, request_timeout_s=0.05)
    outbox = _Outbox()

    asyncio.run(_deliver(bus, "cli", outbox, loop.handle_message(_cli("hi"))))

    assert len(outbox.records) == 1
    assert "timed out" in outbox.records[0]["text"]


def test_new_topic_clears_session_without_provider_call(tmp_path: Path):
    provider = _ScriptedProvider()
    bus, loop, _ = _make_loop(tmp_path, provider)
    outbox = _Outbox()

    async def _run():
        await loop.sessions.append_turns("cli:direct", [("user", "old"), ("assistant", "reply")])
        await _deliver(bus, "cli", outbox, loop.handle_message(_cli("  /new ")))

    asyncio.run(_run())

    assert provider.stream_calls == []
    assert [r["text"] for r in outbox.records] == [NEW_TOPIC_REPLY]
    assert loop.sessions.get_or_create("cli:direct").messages == []
    assert not Path(loop.sessions.session_path("cli:direct")).exists()


def test_message_tool_defaults_to_the_current_conversation(tmp_path: Path):
    provider = _ScriptedProvider(
        streams=[
            _tool(0, "call_1", "message", '{"content": "ping"}'),
            _text("sent"),
        ]
    )
    bus, loop, _ = _make_loop(tmp_path, provider)
    outbox = _Outbox()
    msg = InboundMessage(channel="telegram", sender_id="u", chat_id="123", content="notify me")

    asyncio.run(_deliver(bus, "telegram", outbox, loop.handle_message(msg)))

    assert [(r["chat_id"], r["text"]) for r in outbox.records] == [("123", "ping"), ("123", "sent")]


def test_history_is_included_in_later_turns(tmp_path: Path):
    provider = _ScriptedProvider(streams=[_text("first answer"), _text("second answer")])
    bus, loop, _ = _make_loop(tmp_path, provider)
    outbox = _Outbox()

    async def _run():
        await loop.handle_message(_cli("first"))
        await _deliver(bus, "cli", outbox, loop.handle_message(_cli("second")))

    asyncio.run(_run())

    second_call = provider.stream_calls[1]
    assert second_call[0]["role"] == "system"
    assert "## Current Session\nChannel: cli\nChat ID: direct" in second_call[0]["content"]
    assert [(m["role"], m["content"]) for m in second_call[1:]] == [
        ("user", "first"),
        ("assistant", "first answer"),
        ("user", "second"),
    ]


class _RendezvousProvider:
    """Chat "a" only finishes once chat "b" has started streaming."""

    def __init__(self) -> None:
        self.b_started = asyncio.Event()

    def get_default_model(self) -> str:
        return "stub-model"

    async def stream(self, messages, tools=None, model=None):
        content = messages[-1]["content"]
        if content == "a":
            await asyncio.wait_for(self.b_started.wait(), 2.0)
        else:
            self.b_started.set()
        yield StreamChunk(content=f"answer {content}")


def test_different_sessions_progress_concurrently(tmp_path: Path):
    async def _run():
        provider = _RendezvousProvider()
        bus, loop, _ = _make_loop(tmp_path, provider)
        outbox = _Outbox()
        bus.subscribe_outbound("cli", outbox)
        dispatcher = asyncio.create_task(bus.dispatch_outbound(poll_interval_s=0.02))
        runner = asyncio.create_task(loop.run(poll_interval_s=0.02))
        await bus.publish_inbound(_cli("a", chat_id="one"))
        await bus.publish_inbound(_cli("b", chat_id="two"))
        for _ in range(200):
            if len(outbox.records) == 2:
                break
            await asyncio.sleep(0.01)
        loop.stop()
        await runner
        await loop.wait_idle()
        await bus.drain()
        bus.stop()
        await dispatcher
        return outbox.records

    records = asyncio.run(_run())
    assert sorted((r["chat_id"], r["text"]) for r in records) == [("one", "answer a"), ("two", "answer b")]


def test_same_session_updates_are_not_lost(tmp_path: Path):
    provider = _ScriptedProvider(streams=[[0.02] + _text("one"), _text("two")])
    bus, loop, _ = _make_loop(tmp_path, provider)

    async def _run():
        await asyncio.gather(loop.handle_message(_cli("first")), loop.handle_message(_cli("second")))

    asyncio.run(_run())

    session = loop.sessions.get_or_create("cli:direct")
    assert len(session.messages) == 4
    roles = [m["role"] for m in session.messages]
    assert roles == ["user", "assistant", "user", "assistant"]
    reloaded = type(loop.sessions)(str(tmp_path)).get_or_create("cli:direct")
    assert [m["content"] for m in reloaded.messages] == [m["content"] for m in session.messages]


def test_default_tools_are_registered(tmp_path: Path):
    _, loop, _ = _make_loop(tmp_path, _ScriptedProvider())
    assert loop.tools.names() == [
        "read_file",
        "write_file",
        "append_file",
        "edit_file",
        "list_dir",
        "exec",
        "web_search",
        "web_fetch",
        "message",
        "spawn",
    ]
    assert loop.model == "stub-model"


def test_streamed_reply_reaches_every_handler_on_the_surface(tmp_path: Path):
    provider = _ScriptedProvider(streams=[[StreamChunk(content="Hel"), 0.01, StreamChunk(content="lo"), StreamChunk(finish_reason="stop")]])
    bus, loop, _ = _make_loop(tmp_path, provider)
    first, second = _Outbox(), _Outbox()

    async def _run():
        bus.subscribe_outbound("cli", second)
        await _deliver(bus, "cli", first, loop.handle_message(_cli("hi")))

    asyncio.run(asyncio.wait_for(_run(), 5))

    assert [r["text"] for r in first.records] == ["Hello"]
    assert [r["text"] for r in second.records] == ["Hello"]
