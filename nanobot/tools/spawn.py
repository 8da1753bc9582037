from __future__ import annotations

from typing import Any, Dict, Optional, Protocol

from ..agent_types import AgentTool, AgentToolResult, ToolContext, text_result


class SubagentSpawner(Protocol):
    def spawn(self, task: str, label: str, origin_channel: str, origin_chat_id: str) -> str:
        ...  # pragma: no cover


class SpawnTool(AgentTool):
    name = "spawn"
    description = (
        "Spawn a subagent to handle a task in the background. "
        "Use this for complex or time-consuming tasks that can run independently. "
        "The subagent will complete the task and report back when done."
    )
    parameters = {
        "type": "object",
        "properties": {
            "task": {"type": "string", "description": "The task for the subagent to complete"},
            "label": {"type": "string", "description": "Optional short label for the task (for display)"},
        },
        "required": ["task"],
    }
    label = "Spawn"

    def __init__(self, manager: SubagentSpawner) -> None:
        self.manager = manager

    async def execute(
        self,
        tool_call_id: str,
        params: Dict[str, Any],
        context: Optional[ToolContext] = None,
    ) -> AgentToolResult:
        del tool_call_id
        task = str(params.get("task") or "").strip()
        if not task:
            return text_result("spawn error: task is required", ok=False)
        label = str(params.get("label") or "").strip()
        channel = context.channel if context else "cli"
        chat_id = context.chat_id if context else "direct"
        ack = self.manager.spawn(task, label, channel, chat_id)
        return text_result(ack, origin_channel=channel, origin_chat_id=chat_id)


__all__ = ["SpawnTool", "SubagentSpawner"]
