from __future__ import annotations

from typing import Any, Dict, Optional

from ..agent_types import AgentTool, AgentToolResult, ToolContext, text_result
from ..cron import CronSchedule, CronService, now_ms


def _positive_int(value: Any) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return 0
    return number if number > 0 else 0


class CronTool(AgentTool):
    name = "cron"
    description = (
        "Schedule reminders and recurring tasks. Actions: add, list, remove. "
        "Use run_in_seconds for one-time reminders, every_seconds for fixed intervals "
        "and cron_expr (e.g. '0 9 * * *') for calendar schedules."
    )
    parameters = {
        "type": "object",
        "properties": {
            "action": {"type": "string", "enum": ["add", "list", "remove"], "description": "Action to perform"},
            "message": {"type": "string", "description": "Reminder message (for add)"},
            "every_seconds": {"type": "integer", "description": "Interval in seconds (for recurring tasks)"},
            "run_in_seconds": {"type": "integer", "description": "Delay in seconds (for one-time tasks)"},
            "cron_expr": {"type": "string", "description": "Cron expression like '0 9 * * *' (for scheduled tasks)"},
            "job_id": {"type": "string", "description": "Job ID (for remove)"},
        },
        "required": ["action"],
    }
    label = "Cron"

    def __init__(self, service: CronService) -> None:
        self.service = service

    async def execute(
        self,
        tool_call_id: str,
        params: Dict[str, Any],
        context: Optional[ToolContext] = None,
    ) -> AgentToolResult:
        del tool_call_id
        action = str(params.get("action") or "").strip().lower()
        if action == "add":
            return self._add(params, context)
        if action == "list":
            return self._list()
        if action == "remove":
            return self._remove(params)
        return text_result(f"cron error: unknown action: {action}", ok=False)

    def _add(self, params: Dict[str, Any], context: Optional[ToolContext]) -> AgentToolResult:
        message = str(params.get("message") or "").strip()
        if not message:
            return text_result("cron error: message is required for add", ok=False)
        if context is None or not context.channel or not context.chat_id:
            return text_result("cron error: no session context (channel/chat_id)", ok=False)

        every_s = _positive_int(params.get("every_seconds"))
        run_in_s = _positive_int(params.get("run_in_seconds"))
        cron_expr = str(params.get("cron_expr") or "").strip()
        delete_after_run = False
        if run_in_s:
            schedule = CronSchedule(kind="at", at_ms=now_ms() + run_in_s * 1000)
            delete_after_run = True
        elif every_s:
            schedule = CronSchedule(kind="every", every_ms=every_s * 1000)
        elif cron_expr:
            schedule = CronSchedule(kind="cron", expr=cron_expr)
        else:
            return text_result(
                "cron error: one of every_seconds, cron_expr or run_in_seconds is required", ok=False
            )

        try:
            job = self.service.add_job(
                message[:30],
                schedule,
                message,
                deliver=True,
                channel=context.channel,
                to=context.chat_id,
                delete_after_run=delete_after_run,
            )
        except ValueError as exc:
            return text_result(f"cron error: {exc}", ok=False)
        return text_result(f"Created job '{job.name}' (id: {job.id})", job_id=job.id, kind=schedule.kind)

    def _list(self) -> AgentToolResult:
        jobs = self.service.list_jobs()
        if not jobs:
            return text_result("No scheduled jobs.", count=0)
        lines = ["Scheduled jobs:"]
        for job in jobs:
            lines.append(f"- {job.name} (id: {job.id}, {job.schedule.kind})")
        return text_result("\n".join(lines), count=len(jobs))

    def _remove(self, params: Dict[str, Any]) -> AgentToolResult:
        job_id = str(params.get("job_id") or "").strip()
        if not job_id:
            return text_result("cron error: job_id is required for remove", ok=False)
        if self.service.remove_job(job_id):
            return text_result(f"Removed job {job_id}", job_id=job_id)
        return text_result(f"Job {job_id} not found", ok=False, job_id=job_id)


__all__ = ["CronTool"]
