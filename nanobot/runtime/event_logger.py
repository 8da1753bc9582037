from typing import Any, Callable, Dict

from .constants import LOG_LEVEL_ALIASES, LOG_LEVELS

PREVIEW_WORDS = 6


def resolve_log_level(value: str) -> int:
    if not value:
        return LOG_LEVELS["quiet"]
    key = str(value).strip().lower()
    if key.isdigit():
        return int(key)
    key = LOG_LEVEL_ALIASES.get(key, key)
    return LOG_LEVELS.get(key, LOG_LEVELS["quiet"])


def _command_preview(args: Any) -> str:
    if not isinstance(args, dict):
        return ""
    command = str(args.get("command", "")).strip()
    return " ".join(command.split()[:PREVIEW_WORDS])


def make_event_logger(level: str = "quiet", sink: Callable[[str], None] = print):
    """Create a user-visible event logger function for agent loop events.
    Levels:
    - quiet: no user-visible logging
    - simple: log tool calls, exec commands, subagents and turn errors
    - full: log simple output plus streamed text and turn boundaries
    - debug: log all events
    """
    level_value = resolve_log_level(level)
    commands: Dict[str, str] = {}

    def _emit(text: str) -> None:
        try:
            sink(text)
        except Exception:
            pass

    def log(event: Dict[str, Any]) -> None:
        etype = event.get("type")
        if level_value <= LOG_LEVELS["quiet"]:
            return

        if etype == "tool_execution_start":
            tool_name = str(event.get("toolName", "")).strip() or "unknown"
            preview = _command_preview(event.get("args")) if tool_name == "exec" else ""
            if preview:
                commands[str(event.get("toolCallId", ""))] = preview
                _emit(f"[tool:start] exec cmd={preview}")
            else:
                _emit(f"[tool:start] {tool_name}")
            return
        if etype == "tool_execution_end":
            tool_name = str(event.get("toolName", "")).strip() or "unknown"
            is_error = bool(event.get("isError"))
            preview = commands.pop(str(event.get("toolCallId", "")), "")
            if preview:
                _emit(f"[tool:end] {tool_name} error={is_error} cmd={preview}")
            else:
                _emit(f"[tool:end] {tool_name} error={is_error}")
            if level_value >= LOG_LEVELS["full"]:
                _emit(f"[context] {tool_name} -> {str(event.get('result', ''))[:200]}")
            return
        if etype == "subagent_spawned":
            _emit(f"[subagent] {event.get('label', '')} (id: {event.get('taskId', '')})")
            return
        if etype == "turn_error":
            _emit(f"[error] {event.get('sessionKey', '')}: {event.get('error', '')}")
            return
        if etype == "text_delta" and level_value >= LOG_LEVELS["full"]:
            delta = event.get("delta")
            if delta:
                _emit(f"[stream] {delta}")
            return
        if etype in {"turn_start", "turn_end"} and level_value >= LOG_LEVELS["full"]:
            suffix = f" rounds={event.get('rounds')}" if etype == "turn_end" else ""
            _emit(f"[{etype.replace('_', ':')}] {event.get('sessionKey', '')}{suffix}")
            return
        if level_value >= LOG_LEVELS["debug"]:
            _emit(f"[debug] {event}")

    return log
