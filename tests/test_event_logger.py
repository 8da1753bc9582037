from nanobot.runtime.event_logger import make_event_logger, resolve_log_level


def _capture(level):
    lines = []
    return make_event_logger(level, sink=lines.append), lines


def test_resolve_log_level_aliases_and_numbers():
    assert resolve_log_level("") == 0
    assert resolve_log_level("messages") == 1
    assert resolve_log_level("stream") == 2
    assert resolve_log_level("3") == 3
    assert resolve_log_level("loud") == 0


def test_quiet_logs_nothing():
    log, lines = _capture("quiet")
    log({"type": "turn_error", "sessionKey": "cli:direct", "error": "x"})
    assert lines == []


def test_simple_logs_tools_with_exec_preview():
    log, lines = _capture("simple")
    log({"type": "tool_execution_start", "toolName": "exec", "toolCallId": "c1", "args": {"command": "ls -la /tmp a b c d e"}})
    log({"type": "tool_execution_end", "toolName": "exec", "toolCallId": "c1", "isError": False, "result": "ok"})
    log({"type": "tool_execution_start", "toolName": "read_file", "toolCallId": "c2"})
    log({"type": "text_delta", "delta": "hidden"})
    log({"type": "subagent_spawned", "label": "count", "taskId": "ab12"})

    assert lines == [
        "[tool:start] exec cmd=ls -la /tmp a b c",
        "[tool:end] exec error=False cmd=ls -la /tmp a b c",
        "[tool:start] read_file",
        "[subagent] count (id: ab12)",
    ]


def test_full_adds_stream_context_and_turns():
    log, lines = _capture("full")
    log({"type": "turn_start", "sessionKey": "telegram:1"})
    log({"type": "text_delta", "delta": "Hi"})
    log({"type": "tool_execution_end", "toolName": "web_fetch", "isError": True, "result": "x" * 300})
    log({"type": "turn_end", "sessionKey": "telegram:1", "rounds": 2})
    log({"type": "message_start"})

    assert lines[0] == "[turn:start] telegram:1"
    assert lines[1] == "[stream] Hi"
    assert lines[2] == "[tool:end] web_fetch error=True"
    assert lines[3] == "[context] web_fetch -> " + "x" * 200
    assert lines[4] == "[turn:end] telegram:1 rounds=2"
    assert len(lines) == 5


def test_debug_dumps_unknown_events_and_sink_errors_are_ignored():
    log, lines = _capture("debug")
    log({"type": "message_start"})
    assert lines == ["[debug] {'type': 'message_start'}"]

    def _broken(_text):
        raise RuntimeError("closed")

    make_event_logger("debug", sink=_broken)({"type": "anything"})
