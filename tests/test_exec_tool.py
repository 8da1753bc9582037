from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Dict, List

from nanobot.tools import ExecConfig, ExecTool


class _FakeProcess:
    def __init__(
        self,
        *,
        stdout: bytes = b"",
        stderr: bytes = b"",
        returncode: int = 0,
        hang_first_communicate_s: float = 0.0,
    ) -> None:
        self._stdout = stdout
        self._stderr = stderr
        self.returncode = returncode
        self._hang_first_communicate_s = hang_first_communicate_s
        self._communicate_calls = 0
        self.killed = False

    async def communicate(self):
        self._communicate_calls += 1
        if self._hang_first_communicate_s > 0 and self._communicate_calls == 1 and not self.killed:
            await asyncio.sleep(self._hang_first_communicate_s)
        return self._stdout, self._stderr

    def kill(self) -> None:
        self.killed = True
        self.returncode = -9


def _patch_shell(monkeypatch, process: _FakeProcess) -> List[Dict[str, Any]]:
    calls: List[Dict[str, Any]] = []

    async def _fake_create_subprocess_shell(command, **kwargs):
        calls.append({"command": command, **kwargs})
        return process

    monkeypatch.setattr("nanobot.tools.shell.asyncio.create_subprocess_shell", _fake_create_subprocess_shell)
    return calls


def _run(tool: ExecTool, params: Dict[str, Any]):
    return asyncio.run(tool.execute("tc1", params))


def test_successful_command_returns_stdout(tmp_path: Path, monkeypatch):
    calls = _patch_shell(monkeypatch, _FakeProcess(stdout=b"hello\n"))
    tool = ExecTool(ExecConfig(working_dir=str(tmp_path)))
    result = _run(tool, {"command": "echo hello"})

    assert result.content[0].text == "hello\n"
    assert result.details["ok"] is True
    assert result.details["exit_code"] == 0
    assert calls[0]["command"] == "echo hello"
    assert calls[0]["cwd"] == str(tmp_path.resolve())


def test_stderr_and_exit_code_are_reported(tmp_path: Path, monkeypatch):
    _patch_shell(monkeypatch, _FakeProcess(stdout=b"out", stderr=b"bad thing", returncode=2))
    tool = ExecTool(ExecConfig(working_dir=str(tmp_path)))
    result = _run(tool, {"command": "false"})

    assert result.content[0].text == "out\nSTDERR:\nbad thing\nExit code: 2"
    assert result.details["ok"] is False


def test_empty_output_placeholder(tmp_path: Path, monkeypatch):
    _patch_shell(monkeypatch, _FakeProcess())
    result = _run(ExecTool(ExecConfig(working_dir=str(tmp_path))), {"command": "true"})
    assert result.content[0].text == "(no output)"


def test_output_is_truncated(tmp_path: Path, monkeypatch):
    _patch_shell(monkeypatch, _FakeProcess(stdout=b"x" * 1500))
    tool = ExecTool(ExecConfig(working_dir=str(tmp_path), max_output_chars=1000))
    result = _run(tool, {"command": "yes"})

    assert result.content[0].text == "x" * 1000 + "\n... (truncated, 500 more chars)"
    assert result.details["truncated"] is True


def test_timeout_kills_process(tmp_path: Path, monkeypatch):
    process = _FakeProcess(stdout=b"late", hang_first_communicate_s=1.0)
    _patch_shell(monkeypatch, process)
    tool = ExecTool(ExecConfig(working_dir=str(tmp_path), timeout_s=0.1))
    result = _run(tool, {"command": "sleep 10"})

    assert result.content[0].text == "exec timed out after 0.1s"
    assert result.details["timed_out"] is True
    assert process.killed is True


def test_dangerous_commands_are_blocked(tmp_path: Path, monkeypatch):
    calls = _patch_shell(monkeypatch, _FakeProcess())
    tool = ExecTool(ExecConfig(working_dir=str(tmp_path)))
    for command in (
        "rm -rf /",
        "RM -R build",
        "del /f secrets.txt",
        "rmdir /s C:\\",
        "mkfs.ext4 /dev/sda1",
        "dd if=/dev/zero of=disk.img",
        "echo x > /dev/sda",
        "sudo shutdown now",
        ":(){ :|:& };:",
    ):
        result = _run(tool, {"command": command})
        assert result.content[0].text == "exec blocked: dangerous pattern detected", command
        assert result.details["blocked"] is True
    assert calls == []


def test_allowlist_and_workspace_restriction(tmp_path: Path, monkeypatch):
    _patch_shell(monkeypatch, _FakeProcess(stdout=b"ok"))
    outside = tmp_path.parent
    tool = ExecTool(
        ExecConfig(working_dir=str(tmp_path), restrict_to_workspace=True, allow_patterns=[r"^(ls|cat)\b"])
    )

    assert _run(tool, {"command": "whoami"}).content[0].text == "exec blocked: not in allowlist"
    assert _run(tool, {"command": "cat ../secret"}).content[0].text == "exec blocked: path traversal detected"
    blocked = _run(tool, {"command": "ls", "working_dir": str(outside)})
    assert blocked.content[0].text == "exec blocked: working directory outside workspace"
    assert _run(tool, {"command": "ls"}).content[0].text == "ok"


def test_missing_command_is_a_validation_error(tmp_path: Path):
    result = _run(ExecTool(ExecConfig(working_dir=str(tmp_path))), {"command": "   "})
    assert result.content[0].text == "exec error: command is required"
    assert result.details["ok"] is False
