from __future__ import annotations

import asyncio
import json
from datetime import datetime
from pathlib import Path

import pytest

from nanobot.agent_types import ToolContext
from nanobot.cron import CronSchedule, CronService, compute_next_run, now_ms
from nanobot.tools import CronTool


def _service(tmp_path: Path, on_job=None) -> CronService:
    return CronService(str(tmp_path / "cron.json"), on_job=on_job)


def test_compute_next_run():
    assert compute_next_run(CronSchedule(kind="at", at_ms=5_000), 1_000) == 5_000
    assert compute_next_run(CronSchedule(kind="every", every_ms=2_000), 1_000) == 3_000
    assert compute_next_run(CronSchedule(kind="every"), 1_000) == 0


def test_jobs_persist_with_camel_case_keys(tmp_path: Path):
    service = _service(tmp_path)
    job = service.add_job("tea", CronSchedule(kind="every", every_ms=60_000), "drink tea", channel="cli", to="direct")

    data = json.loads((tmp_path / "cron.json").read_text(encoding="utf-8"))
    assert data["version"] == 1
    stored = data["jobs"][0]
    assert stored["schedule"] == {"kind": "every", "everyMs": 60_000}
    assert stored["payload"]["message"] == "drink tea"
    assert stored["state"]["nextRunAtMs"] > 0

    reloaded = _service(tmp_path).get_job(job.id)
    assert reloaded is not None
    assert reloaded.payload.to == "direct"


def test_unsupported_schedule_kind(tmp_path: Path):
    with pytest.raises(ValueError, match="unsupported schedule kind: hourly"):
        _service(tmp_path).add_job("x", CronSchedule(kind="hourly"), "m")
    with pytest.raises(ValueError, match="invalid cron expression: not a cron"):
        _service(tmp_path).add_job("x", CronSchedule(kind="cron", expr="not a cron"), "m")


def _local_ms(*parts: int) -> int:
    return int(datetime(*parts).timestamp() * 1000)


def test_cron_expression_next_run_uses_local_time():
    current = _local_ms(2024, 1, 1, 10, 2, 30)
    assert compute_next_run(CronSchedule(kind="cron", expr="*/5 * * * *"), current) == _local_ms(2024, 1, 1, 10, 5)
    assert compute_next_run(CronSchedule(kind="cron", expr="0 9 * * *"), current) == _local_ms(2024, 1, 2, 9, 0)
    assert compute_next_run(CronSchedule(kind="cron", expr="61 * * * *"), current) == 0
    assert compute_next_run(CronSchedule(kind="cron"), current) == 0


def test_cron_jobs_persist_expr_and_reschedule_after_running(tmp_path: Path):
    service = _service(tmp_path)
    job = service.add_job("standup", CronSchedule(kind="cron", expr="0 9 * * 1-5"), "standup time")

    stored = json.loads((tmp_path / "cron.json").read_text(encoding="utf-8"))["jobs"][0]
    assert stored["schedule"] == {"kind": "cron", "expr": "0 9 * * 1-5"}
    reloaded = _service(tmp_path).get_job(job.id)
    assert reloaded.schedule.expr == "0 9 * * 1-5"

    first_run = job.state.next_run_at_ms
    assert first_run > now_ms()
    ran = asyncio.run(service.process_due(current_ms=first_run))
    assert [j.id for j in ran] == [job.id]
    assert job.enabled is True
    assert job.state.next_run_at_ms > first_run


def test_list_jobs_orders_unscheduled_last(tmp_path: Path):
    service = _service(tmp_path)
    late = service.add_job("late", CronSchedule(kind="at", at_ms=now_ms() + 90_000), "l")
    never = service.add_job("never", CronSchedule(kind="every", every_ms=0), "n")
    soon = service.add_job("soon", CronSchedule(kind="at", at_ms=now_ms() + 1_000), "s")
    assert [job.id for job in service.list_jobs()] == [soon.id, late.id, never.id]


def test_process_due_runs_and_retires_one_shot_jobs(tmp_path: Path):
    seen = []

    async def _on_job(job):
        seen.append(job.payload.message)

    service = _service(tmp_path, on_job=_on_job)
    past = now_ms() - 1
    deleted = service.add_job("a", CronSchedule(kind="at", at_ms=past), "one-shot", delete_after_run=True)
    disabled = service.add_job("b", CronSchedule(kind="at", at_ms=past), "keep")
    recurring = service.add_job("c", CronSchedule(kind="every", every_ms=10_000), "tick")

    due = asyncio.run(service.process_due(now_ms() + 20_000))

    assert sorted(job.id for job in due) == sorted([deleted.id, disabled.id, recurring.id])
    assert sorted(seen) == ["keep", "one-shot", "tick"]
    assert service.get_job(deleted.id) is None
    kept = service.get_job(disabled.id)
    assert kept.enabled is False
    assert kept.state.last_status == "ok"
    assert service.get_job(recurring.id).state.next_run_at_ms > now_ms()


def test_failed_job_records_error(tmp_path: Path):
    def _on_job(job):
        raise RuntimeError("bus closed")

    service = _service(tmp_path, on_job=_on_job)
    job = service.add_job("x", CronSchedule(kind="every", every_ms=1_000), "m")
    asyncio.run(service.process_due(now_ms() + 5_000))

    stored = service.get_job(job.id)
    assert stored.state.last_status == "error"
    assert stored.state.last_error == "bus closed"


def _run_tool(tool: CronTool, params, context=None):
    return asyncio.run(tool.execute("tc1", params, context))


def test_cron_tool_add_list_remove(tmp_path: Path):
    service = _service(tmp_path)
    tool = CronTool(service)
    context = ToolContext(channel="telegram", chat_id="42")

    once = _run_tool(tool, {"action": "add", "message": "stretch", "run_in_seconds": 60}, context)
    job_id = once.details["job_id"]
    assert once.content[0].text == f"Created job 'stretch' (id: {job_id})"
    job = service.get_job(job_id)
    assert job.schedule.kind == "at"
    assert job.delete_after_run is True
    assert (job.payload.channel, job.payload.to, job.payload.deliver) == ("telegram", "42", True)

    _run_tool(tool, {"action": "add", "message": "water the plants every hour", "every_seconds": 3600}, context)
    listing = _run_tool(tool, {"action": "list"}).content[0].text
    assert listing.startswith("Scheduled jobs:\n")
    assert f"- stretch (id: {job_id}, at)" in listing
    assert "(every)" in listing

    assert _run_tool(tool, {"action": "remove", "job_id": job_id}).content[0].text == f"Removed job {job_id}"
    missing = _run_tool(tool, {"action": "remove", "job_id": job_id})
    assert missing.content[0].text == f"Job {job_id} not found"
    assert missing.details["ok"] is False


def test_cron_tool_validation(tmp_path: Path):
    tool = CronTool(_service(tmp_path))
    context = ToolContext(channel="cli", chat_id="direct")

    assert _run_tool(tool, {"action": "list"}).content[0].text == "No scheduled jobs."
    assert _run_tool(tool, {"action": "add"}, context).content[0].text == "cron error: message is required for add"
    assert (
        _run_tool(tool, {"action": "add", "message": "x", "every_seconds": 5}).content[0].text
        == "cron error: no session context (channel/chat_id)"
    )
    assert (
        _run_tool(tool, {"action": "add", "message": "x"}, context).content[0].text
        == "cron error: one of every_seconds, cron_expr or run_in_seconds is required"
    )
    assert _run_tool(tool, {"action": "remove"}).content[0].text == "cron error: job_id is required for remove"
    assert _run_tool(tool, {"action": "pause"}).content[0].text == "cron error: unknown action: pause"


def test_cron_tool_accepts_cron_expressions(tmp_path: Path):
    service = _service(tmp_path)
    tool = CronTool(service)
    context = ToolContext(channel="telegram", chat_id="42")

    created = _run_tool(tool, {"action": "add", "message": "morning digest", "cron_expr": "0 8 * * *"}, context)
    job = service.get_job(created.details["job_id"])
    assert created.details["kind"] == "cron"
    assert job.schedule.expr == "0 8 * * *"
    assert job.delete_after_run is False
    assert "(cron)" in _run_tool(tool, {"action": "list"}).content[0].text

    bad = _run_tool(tool, {"action": "add", "message": "x", "cron_expr": "every morning"}, context)
    assert bad.content[0].text == "cron error: invalid cron expression: every morning"
    assert bad.details["ok"] is False
