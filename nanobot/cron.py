"""Scheduled jobs that feed messages back into the agent.

Jobs are kept in a small JSON store (``{"version": 1, "jobs": [...]}``)
and executed by an asyncio timer loop.  Three schedule kinds are supported:

``at``
    Run once at an absolute time (milliseconds since the epoch).  After
    running, the job is removed when ``delete_after_run`` is set and
    disabled otherwise.
``every``
    Run repeatedly every ``every_ms`` milliseconds.
``cron``
    Run at the times matched by a five-field cron expression (``expr``),
    evaluated in local time.

The store is read and modified both by the timer loop and by the
``cron`` tool, so every access goes through one re-entrant lock.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import os
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from croniter import croniter

logger = logging.getLogger(__name__)

STORE_VERSION = 1
MAX_SLEEP_S = 10.0
SCHEDULE_KINDS = ("at", "every", "cron")
RECURRING_KINDS = ("every", "cron")

JobCallback = Callable[["CronJob"], Union[None, Awaitable[None]]]


def now_ms() -> int:
    return int(time.time() * 1000)


###############################################################################
# Job model
###############################################################################


@dataclass
class CronSchedule:
    kind: str
    at_ms: int = 0
    every_ms: int = 0
    expr: str = ""

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"kind": self.kind}
        if self.at_ms:
            data["atMs"] = self.at_ms
        if self.every_ms:
            data["everyMs"] = self.every_ms
        if self.expr:
            data["expr"] = self.expr
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CronSchedule":
        return cls(
            kind=str(data.get("kind") or ""),
            at_ms=int(data.get("atMs") or 0),
            every_ms=int(data.get("everyMs") or 0),
            expr=str(data.get("expr") or ""),
        )


@dataclass
class CronPayload:
    message: str
    kind: str = "agent_turn"
    deliver: bool = False
    channel: str = ""
    to: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "message": self.message,
            "deliver": self.deliver,
            "channel": self.channel,
            "to": self.to,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CronPayload":
        return cls(
            message=str(data.get("message") or ""),
            kind=str(data.get("kind") or "agent_turn"),
            deliver=bool(data.get("deliver", False)),
            channel=str(data.get("channel") or ""),
            to=str(data.get("to") or ""),
        )


@dataclass
class CronJobState:
    next_run_at_ms: int = 0
    last_run_at_ms: int = 0
    last_status: str = ""
    last_error: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nextRunAtMs": self.next_run_at_ms,
            "lastRunAtMs": self.last_run_at_ms,
            "lastStatus": self.last_status,
            "lastError": self.last_error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CronJobState":
        return cls(
            next_run_at_ms=int(data.get("nextRunAtMs") or 0),
            last_run_at_ms=int(data.get("lastRunAtMs") or 0),
            last_status=str(data.get("lastStatus") or ""),
            last_error=str(data.get("lastError") or ""),
        )


@dataclass
class CronJob:
    id: str
    name: str
    schedule: CronSchedule
    payload: CronPayload
    enabled: bool = True
    state: CronJobState = field(default_factory=CronJobState)
    created_at_ms: int = 0
    updated_at_ms: int = 0
    delete_after_run: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "enabled": self.enabled,
            "schedule": self.schedule.to_dict(),
            "payload": self.payload.to_dict(),
            "state": self.state.to_dict(),
            "createdAtMs": self.created_at_ms,
            "updatedAtMs": self.updated_at_ms,
            "deleteAfterRun": self.delete_after_run,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CronJob":
        return cls(
            id=str(data.get("id") or ""),
            name=str(data.get("name") or ""),
            enabled=bool(data.get("enabled", True)),
            schedule=CronSchedule.from_dict(data.get("schedule") or {}),
            payload=CronPayload.from_dict(data.get("payload") or {}),
            state=CronJobState.from_dict(data.get("state") or {}),
            created_at_ms=int(data.get("createdAtMs") or 0),
            updated_at_ms=int(data.get("updatedAtMs") or 0),
            delete_after_run=bool(data.get("deleteAfterRun", False)),
        )


def compute_next_run(schedule: CronSchedule, current_ms: int) -> int:
    """Return the next run time in ms, or 0 when the schedule never fires."""
    if schedule.kind == "at":
        return schedule.at_ms
    if schedule.kind == "every" and schedule.every_ms > 0:
        return current_ms + schedule.every_ms
    if schedule.kind == "cron" and schedule.expr:
        if not croniter.is_valid(schedule.expr):
            logger.warning("Invalid cron expression %r", schedule.expr)
            return 0
        start = datetime.fromtimestamp(current_ms / 1000.0).astimezone()
        return int(croniter(schedule.expr, start).get_next(float) * 1000)
    return 0


###############################################################################
# Service
###############################################################################


class CronService:
    """JSON-backed job store plus the timer loop that runs due jobs.

    Parameters
    ----------
    store_path : str
        Location of the JSON store (usually ``<workspace>/cron.json``).
    on_job : callable, optional
        Invoked with each due job.  May be a coroutine function.  An
        exception marks the run as failed; it does not stop the loop.
    """

    def __init__(self, store_path: str, on_job: Optional[JobCallback] = None) -> None:
        self.store_path = str(store_path)
        self.on_job = on_job
        self._jobs: List[CronJob] = []
        self._loaded = False
        self._lock = threading.RLock()
        self._running = False

    ###########################################################################
    # Persistence
    ###########################################################################

    def load(self) -> None:
        with self._lock:
            if self._loaded:
                return
            self._loaded = True
            self._jobs = []
            if not os.path.exists(self.store_path):
                return
            try:
                with open(self.store_path, "r", encoding="utf-8") as handle:
                    data = json.load(handle)
            except (OSError, ValueError) as exc:
                logger.warning("Failed to load cron store %s: %s", self.store_path, exc)
                return
            self._jobs = [CronJob.from_dict(item) for item in data.get("jobs") or []]

    def _save_locked(self) -> None:
        directory = os.path.dirname(self.store_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        payload = {"version": STORE_VERSION, "jobs": [job.to_dict() for job in self._jobs]}
        try:
            with open(self.store_path, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2, ensure_ascii=False)
        except OSError as exc:
            logger.warning("Failed to save cron store %s: %s", self.store_path, exc)

    ###########################################################################
    # Public API
    ###########################################################################

    def add_job(
        self,
        name: str,
        schedule: CronSchedule,
        message: str,
        *,
        deliver: bool = False,
        channel: str = "",
        to: str = "",
        delete_after_run: bool = False,
    ) -> CronJob:
        """Create, persist and return a job.

        Raises
        ------
        ValueError
            If the schedule kind is unsupported or a cron expression is
            missing or invalid.
        """
        if schedule.kind not in SCHEDULE_KINDS:
            raise ValueError(f"unsupported schedule kind: {schedule.kind}")
        if schedule.kind == "cron" and not croniter.is_valid(schedule.expr):
            raise ValueError(f"invalid cron expression: {schedule.expr}")
        self.load()
        with self._lock:
            current = now_ms()
            job = CronJob(
                id=uuid.uuid4().hex[:8],
                name=name,
                schedule=schedule,
                payload=CronPayload(message=message, deliver=deliver, channel=channel, to=to),
                state=CronJobState(next_run_at_ms=compute_next_run(schedule, current)),
                created_at_ms=current,
                updated_at_ms=current,
                delete_after_run=delete_after_run,
            )
            self._jobs.append(job)
            self._save_locked()
        logger.info("Cron: added job '%s' (%s)", job.name, job.id)
        return job

    def remove_job(self, job_id: str) -> bool:
        self.load()
        with self._lock:
            remaining = [job for job in self._jobs if job.id != job_id]
            found = len(remaining) != len(self._jobs)
            if found:
                self._jobs = remaining
                self._save_locked()
        return found

    def list_jobs(self) -> List[CronJob]:
        """Return jobs ordered by next run; unscheduled jobs come last."""
        self.load()
        with self._lock:
            jobs = list(self._jobs)
        return sorted(jobs, key=lambda job: (job.state.next_run_at_ms == 0, job.state.next_run_at_ms))

    def get_job(self, job_id: str) -> Optional[CronJob]:
        self.load()
        with self._lock:
            for job in self._jobs:
                if job.id == job_id:
                    return job
        return None

    ###########################################################################
    # Timer loop
    ###########################################################################

    def next_wake_ms(self) -> int:
        with self._lock:
            pending = [job.state.next_run_at_ms for job in self._jobs if job.enabled and job.state.next_run_at_ms > 0]
        return min(pending) if pending else 0

    async def run(self) -> None:
        """Run due jobs until :meth:`stop` is called."""
        self.load()
        with self._lock:
            current = now_ms()
            for job in self._jobs:
                if job.enabled and job.schedule.kind in RECURRING_KINDS:
                    job.state.next_run_at_ms = compute_next_run(job.schedule, current)
            self._save_locked()
        self._running = True
        logger.info("Cron service started with %d jobs", len(self._jobs))
        while self._running:
            wake = self.next_wake_ms()
            delay_s = MAX_SLEEP_S
            if wake:
                delay_s = min(max(0.0, (wake - now_ms()) / 1000.0), MAX_SLEEP_S)
            await asyncio.sleep(delay_s)
            if self._running:
                await self.process_due()

    def stop(self) -> None:
        self._running = False

    async def process_due(self, current_ms: Optional[int] = None) -> List[CronJob]:
        """Execute every enabled job whose next run time has passed."""
        self.load()
        current = now_ms() if current_ms is None else current_ms
        with self._lock:
            due = [
                job
                for job in self._jobs
                if job.enabled and job.state.next_run_at_ms > 0 and current >= job.state.next_run_at_ms
            ]
        for job in due:
            await self._execute(job)
            with self._lock:
                if job not in self._jobs:
                    continue
                if job.schedule.kind == "at":
                    if job.delete_after_run:
                        self._jobs.remove(job)
                    else:
                        job.enabled = False
                        job.state.next_run_at_ms = 0
                else:
                    job.state.next_run_at_ms = compute_next_run(job.schedule, max(now_ms(), current))
        if due:
            with self._lock:
                self._save_locked()
        return due

    async def _execute(self, job: CronJob) -> None:
        logger.info("Cron: executing job '%s' (%s)", job.name, job.id)
        started = now_ms()
        try:
            if self.on_job is not None:
                outcome = self.on_job(job)
                if inspect.isawaitable(outcome):
                    await outcome
        except Exception as exc:
            logger.exception("Cron: job %s failed", job.id)
            job.state.last_status = "error"
            job.state.last_error = str(exc)
        else:
            job.state.last_status = "ok"
            job.state.last_error = ""
        job.state.last_run_at_ms = started
        job.updated_at_ms = now_ms()


__all__ = [
    "CronService",
    "CronJob",
    "CronSchedule",
    "CronPayload",
    "CronJobState",
    "compute_next_run",
    "now_ms",
]
