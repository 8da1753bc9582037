from __future__ import annotations

import asyncio
import json
from pathlib import Path

from nanobot.session import Session, SessionManager


def test_history_is_limited_to_recent_turns():
    session = Session(key="cli:direct")
    for i in range(5):
        session.add_message("user", f"m{i}")
    assert session.get_history(2) == [{"role": "user", "content": "m3"}, {"role": "user", "content": "m4"}]
    assert session.get_history(0) == []


def test_append_turns_persists_jsonl_and_reloads(tmp_path: Path):
    manager = SessionManager(str(tmp_path))
    asyncio.run(manager.append_turns("telegram:42", [("user", "hi"), ("assistant", "hello")]))

    path = Path(manager.session_path("telegram:42"))
    assert path.name == "telegram_42.jsonl"
    lines = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
    assert lines[0]["_type"] == "metadata"
    assert [(line["role"], line["content"]) for line in lines[1:]] == [("user", "hi"), ("assistant", "hello")]

    reloaded = SessionManager(str(tmp_path)).get_or_create("telegram:42")
    assert reloaded.get_history() == [{"role": "user", "content": "hi"}, {"role": "assistant", "content": "hello"}]


def test_corrupt_lines_are_skipped(tmp_path: Path):
    manager = SessionManager(str(tmp_path))
    Path(manager.session_path("cli:direct")).write_text(
        '{"_type": "metadata", "metadata": {"lang": "en"}}\nnot json\n{"role": "user", "content": "ok"}\n',
        encoding="utf-8",
    )
    session = manager.get_or_create("cli:direct")
    assert session.metadata == {"lang": "en"}
    assert session.get_history() == [{"role": "user", "content": "ok"}]


def test_clear_removes_history_and_file(tmp_path: Path):
    manager = SessionManager(str(tmp_path))

    async def _run():
        await manager.append_turns("cli:direct", [("user", "a")])
        await manager.clear("cli:direct")
        await manager.clear("cli:never-used")

    asyncio.run(_run())
    assert not Path(manager.session_path("cli:direct")).exists()
    assert manager.get_or_create("cli:direct").messages == []


def test_list_sessions_and_key_sanitizing(tmp_path: Path):
    manager = SessionManager(str(tmp_path))
    asyncio.run(manager.append_turns("feishu:a/b", [("user", "x")]))

    assert Path(manager.session_path("feishu:a/b")).name == "feishu_a_b.jsonl"
    listed = manager.list_sessions()
    assert [item["key"] for item in listed] == ["feishu:a_b"]
    assert listed[0]["path"].endswith("feishu_a_b.jsonl")


def test_failed_save_keeps_turns_in_memory(tmp_path: Path, monkeypatch):
    manager = SessionManager(str(tmp_path))

    def _broken_save(session):
        raise OSError("disk full")

    monkeypatch.setattr(manager, "save", _broken_save)
    session = asyncio.run(manager.append_turns("cli:direct", [("user", "kept")]))
    assert session.get_history() == [{"role": "user", "content": "kept"}]
