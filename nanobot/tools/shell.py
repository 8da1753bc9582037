from __future__ import annotations

import asyncio
import os
import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Pattern

from ..agent_types import AgentTool, AgentToolResult, ToolContext, text_result

DEFAULT_DENY_PATTERNS: List[str] = [
    r"\brm\s+-[rf]{1,2}\b",
    r"\bdel\s+/[fq]\b",
    r"\brmdir\s+/s\b",
    r"\b(mkfs|diskpart)\b",
    r"\bdd\s+if=",
    r">\s*/dev/sd",
    r"\b(shutdown|reboot|poweroff)\b",
    r":\(\)\s*\{.*\};\s*:",
]


@dataclass
class ExecConfig:
    working_dir: str
    timeout_s: float = 60.0
    max_timeout_s: float = 600.0
    restrict_to_workspace: bool = False
    deny_patterns: List[str] = field(default_factory=lambda: list(DEFAULT_DENY_PATTERNS))
    allow_patterns: List[str] = field(default_factory=list)
    max_output_chars: int = 10_000


class ExecTool(AgentTool):
    name = "exec"
    description = (
        "Execute a shell command and return its output. "
        "Use with caution; destructive commands are blocked."
    )
    parameters = {
        "type": "object",
        "properties": {
            "command": {"type": "string", "description": "The shell command to execute"},
            "working_dir": {"type": "string", "description": "Optional working directory for the command"},
            "timeout_s": {"type": "number", "description": "Optional timeout in seconds."},
        },
        "required": ["command"],
    }
    label = "Exec"

    def __init__(self, config: ExecConfig) -> None:
        working_dir = self._normalize_path(config.working_dir or os.getcwd(), os.getcwd())
        self.config = ExecConfig(
            working_dir=working_dir,
            timeout_s=max(0.1, float(config.timeout_s or 60.0)),
            max_timeout_s=max(1.0, float(config.max_timeout_s or 600.0)),
            restrict_to_workspace=bool(config.restrict_to_workspace),
            deny_patterns=list(config.deny_patterns),
            allow_patterns=list(config.allow_patterns),
            max_output_chars=max(256, int(config.max_output_chars or 10_000)),
        )
        self._deny: List[Pattern[str]] = [re.compile(p) for p in self.config.deny_patterns]
        self._allow: List[Pattern[str]] = [re.compile(p) for p in self.config.allow_patterns]

    async def execute(
        self,
        tool_call_id: str,
        params: Dict[str, Any],
        context: Optional[ToolContext] = None,
    ) -> AgentToolResult:
        del tool_call_id, context
        started = time.perf_counter()
        command_raw = params.get("command", "")
        command = command_raw.strip() if isinstance(command_raw, str) else ""
        if not command:
            return text_result("exec error: command is required", ok=False, command="")

        try:
            cwd = self._resolve_cwd(params.get("working_dir"))
        except ValueError as exc:
            return self._blocked_result(command, "", str(exc), started)

        block_reason = self.guard_command(command, cwd)
        if block_reason is not None:
            return self._blocked_result(command, cwd, block_reason, started)

        timeout_s = self._coerce_timeout(params.get("timeout_s"))
        timed_out = False
        proc = await asyncio.create_subprocess_shell(
            command,
            cwd=cwd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            executable="/bin/bash" if os.path.exists("/bin/bash") else None,
        )
        try:
            stdout_raw, stderr_raw = await asyncio.wait_for(proc.communicate(), timeout=timeout_s)
        except asyncio.TimeoutError:
            timed_out = True
            proc.kill()
            await proc.communicate()
            return text_result(
                f"exec timed out after {timeout_s:.1f}s",
                ok=False,
                timed_out=True,
                command=command,
                cwd=cwd,
                duration_ms=self._duration_ms(started),
            )

        exit_code = proc.returncode
        output = self._format_output(
            stdout_raw.decode("utf-8", errors="replace"),
            stderr_raw.decode("utf-8", errors="replace"),
            exit_code,
        )
        output, truncated = self._truncate_output(output, self.config.max_output_chars)
        return text_result(
            output,
            ok=exit_code == 0,
            exit_code=exit_code,
            timed_out=timed_out,
            truncated=truncated,
            command=command,
            cwd=cwd,
            duration_ms=self._duration_ms(started),
        )

    def guard_command(self, command: str, cwd: str) -> Optional[str]:
        """Return a block reason for ``command`` or ``None`` when it may run."""
        lowered = command.lower()
        for pattern in self._deny:
            if pattern.search(lowered):
                return "dangerous pattern detected"
        if self._allow and not any(pattern.search(lowered) for pattern in self._allow):
            return "not in allowlist"
        if self.config.restrict_to_workspace:
            if "../" in command or "..\\" in command:
                return "path traversal detected"
            if not self._path_in_roots(cwd, [self.config.working_dir]):
                return "working directory outside workspace"
        return None

    def _resolve_cwd(self, raw: Any) -> str:
        if raw is None or not str(raw).strip():
            return self.config.working_dir
        cwd = self._normalize_path(str(raw).strip(), self.config.working_dir)
        if not os.path.isdir(cwd):
            raise ValueError(f"working directory not found: {raw}")
        return cwd

    def _coerce_timeout(self, raw: Any) -> float:
        if raw is None:
            return self.config.timeout_s
        try:
            value = float(raw)
        except (TypeError, ValueError):
            return self.config.timeout_s
        if value <= 0:
            return self.config.timeout_s
        return min(value, self.config.max_timeout_s)

    @staticmethod
    def _format_output(stdout: str, stderr: str, exit_code: Optional[int]) -> str:
        output = stdout
        if stderr.strip():
            output += "\nSTDERR:\n" + stderr
        if exit_code not in (0, None):
            output += f"\nExit code: {exit_code}"
        return output if output.strip() else "(no output)"

    @staticmethod
    def _truncate_output(text: str, limit: int) -> tuple:
        if len(text) <= limit:
            return text, False
        remaining = len(text) - limit
        return text[:limit] + f"\n... (truncated, {remaining} more chars)", True

    def _blocked_result(self, command: str, cwd: str, reason: str, started: float) -> AgentToolResult:
        return text_result(
            f"exec blocked: {reason}",
            ok=False,
            blocked=True,
            block_reason=reason,
            command=command,
            cwd=cwd,
            duration_ms=self._duration_ms(started),
        )

    @staticmethod
    def _duration_ms(started: float) -> int:
        return int((time.perf_counter() - started) * 1000)

    @staticmethod
    def _normalize_path(path: str, base: str) -> str:
        expanded = os.path.expanduser(path)
        absolute = expanded if os.path.isabs(expanded) else os.path.join(base, expanded)
        return os.path.realpath(absolute)

    @staticmethod
    def _path_in_roots(path: str, roots: List[str]) -> bool:
        for root in roots:
            try:
                if os.path.commonpath([root, path]) == root:
                    return True
            except ValueError:
                continue
        return False


__all__ = ["ExecTool", "ExecConfig", "DEFAULT_DENY_PATTERNS"]
