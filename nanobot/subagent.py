"""Background subagents.

A subagent takes one task, works on it with a restricted tool set (no
messaging, no further spawning) and reports back by publishing a
``system`` inbound message addressed to the conversation that spawned it.
The main agent then turns that report into a user-facing reply.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import Any, Callable, Dict, List, Optional

from .agent_types import InboundMessage, SubagentTask
from .bus import MessageBus
from .prompting import build_announcement, build_subagent_prompt
from .providers.base import LLMProvider
from .rounds import DEFAULT_REQUEST_TIMEOUT_S, run_chat_rounds
from .tools import (
    EditFileTool,
    ExecConfig,
    ExecTool,
    ListDirTool,
    ReadFileTool,
    ToolRegistry,
    WebFetchTool,
    WebSearchTool,
    WriteFileTool,
)

logger = logging.getLogger(__name__)

DEFAULT_SUBAGENT_ITERATIONS = 15
LABEL_MAX_CHARS = 30
NO_RESULT_TEXT = "Task completed but no final response was generated."
MAX_FINISHED_TASKS = 50


def build_subagent_registry(
    workspace: str,
    exec_config: Optional[ExecConfig] = None,
    brave_api_key: str = "",
    restrict_to_workspace: bool = False,
    web_fetch_max_chars: int = 50_000,
) -> ToolRegistry:
    """Tools available to subagents: files, shell and web only."""
    registry = ToolRegistry()
    registry.register(ReadFileTool(workspace, restrict_to_workspace))
    registry.register(WriteFileTool(workspace, restrict_to_workspace))
    registry.register(EditFileTool(workspace, restrict_to_workspace))
    registry.register(ListDirTool(workspace, restrict_to_workspace))
    registry.register(ExecTool(exec_config or ExecConfig(working_dir=workspace)))
    registry.register(WebSearchTool(api_key=brave_api_key))
    registry.register(WebFetchTool(max_chars=web_fetch_max_chars))
    return registry


def default_label(task: str) -> str:
    if len(task) > LABEL_MAX_CHARS:
        return task[:LABEL_MAX_CHARS] + "..."
    return task


class SubagentManager:
    """Spawns and tracks background subagent runs.

    Parameters
    ----------
    provider : LLMProvider
        Model provider shared with the main agent.
    bus : MessageBus
        Completion reports are published here as inbound ``system`` messages.
    workspace : str
        Workspace the subagent's tools operate on.
    registry_factory : callable, optional
        Returns a fresh tool registry per run.  Defaults to
        :func:`build_subagent_registry` for ``workspace``.
    """

    def __init__(
        self,
        provider: LLMProvider,
        bus: MessageBus,
        workspace: str,
        *,
        model: Optional[str] = None,
        max_iterations: int = DEFAULT_SUBAGENT_ITERATIONS,
        request_timeout_s: Optional[float] = DEFAULT_REQUEST_TIMEOUT_S,
        registry_factory: Optional[Callable[[], ToolRegistry]] = None,
        on_event: Optional[Callable[[Dict[str, Any]], None]] = None,
    ) -> None:
        self.provider = provider
        self.bus = bus
        self.workspace = str(workspace)
        self.model = model or provider.get_default_model()
        self.max_iterations = max(1, int(max_iterations))
        self.request_timeout_s = request_timeout_s
        self.registry_factory = registry_factory or (lambda: build_subagent_registry(self.workspace))
        self.on_event = on_event
        self._tasks: Dict[str, SubagentTask] = {}
        self._handles: Dict[str, asyncio.Task] = {}

    def spawn(self, task: str, label: str, origin_channel: str, origin_chat_id: str) -> str:
        """Start a background run and return the acknowledgement text immediately."""
        task_id = uuid.uuid4().hex[:8]
        label = label or default_label(task)
        record = SubagentTask(
            task_id=task_id,
            task=task,
            label=label,
            origin_channel=origin_channel,
            origin_chat_id=origin_chat_id,
        )
        self._tasks[task_id] = record
        handle = asyncio.create_task(self._run(record))
        self._handles[task_id] = handle
        handle.add_done_callback(lambda _: self._handles.pop(task_id, None))
        logger.info("Spawned subagent [%s]: %s", task_id, label)
        if self.on_event is not None:
            self.on_event({"type": "subagent_spawned", "taskId": task_id, "label": label})
        return f"Subagent [{label}] started (id: {task_id}). I'll notify you when it completes."

    async def _run(self, record: SubagentTask) -> None:
        logger.info("Subagent [%s] starting task: %s", record.task_id, record.label)
        messages: List[Dict[str, Any]] = [
            {"role": "system", "content": build_subagent_prompt(record.task, self.workspace)},
            {"role": "user", "content": record.task},
        ]
        try:
            outcome = await run_chat_rounds(
                self.provider,
                self.registry_factory(),
                messages,
                model=self.model,
                max_rounds=self.max_iterations,
                timeout_s=self.request_timeout_s,
            )
        except Exception as exc:
            logger.warning("Subagent [%s] error: %s", record.task_id, exc)
            record.status = "error"
            record.result = f"Error: {exc}"
        else:
            record.status = "ok"
            record.result = outcome.content or NO_RESULT_TEXT
            logger.info("Subagent [%s] completed successfully", record.task_id)
        record.finished_at = time.time()
        self._prune_finished()
        await self._announce(record)

    def _prune_finished(self) -> None:
        finished = [task_id for task_id, task in self._tasks.items() if task.status != "running"]
        for task_id in finished[: max(0, len(finished) - MAX_FINISHED_TASKS)]:
            del self._tasks[task_id]

    async def _announce(self, record: SubagentTask) -> None:
        content = build_announcement(record.label, record.task, record.result, record.status == "ok")
        await self.bus.publish_inbound(
            InboundMessage(
                channel="system",
                sender_id="subagent",
                chat_id=f"{record.origin_channel}:{record.origin_chat_id}",
                content=content,
                metadata={"task_id": record.task_id, "status": record.status},
            )
        )

    def get_task(self, task_id: str) -> Optional[SubagentTask]:
        return self._tasks.get(task_id)

    def list_tasks(self, running_only: bool = False) -> List[SubagentTask]:
        tasks = list(self._tasks.values())
        if running_only:
            tasks = [task for task in tasks if task.status == "running"]
        return tasks

    def running_count(self) -> int:
        return len(self._handles)

    async def wait_all(self) -> None:
        """Wait for every running subagent to finish and announce."""
        while self._handles:
            await asyncio.gather(*list(self._handles.values()), return_exceptions=True)


__all__ = ["SubagentManager", "build_subagent_registry", "default_label", "NO_RESULT_TEXT"]
