"""Flat-file memory: long-term notes plus one markdown file per day."""

from __future__ import annotations

import os
import re
from datetime import date, timedelta
from typing import List, Optional

_DAILY_FILE = re.compile(r"^\d{4}-\d{2}-\d{2}\.md$")


class MemoryStore:
    """Markdown memory under ``<workspace>/memory``.

    ``MEMORY.md`` holds long-term facts; ``YYYY-MM-DD.md`` files hold daily
    notes.
    """

    def __init__(self, workspace: str) -> None:
        self.workspace = str(workspace)
        self.memory_dir = os.path.join(self.workspace, "memory")
        self.memory_file = os.path.join(self.memory_dir, "MEMORY.md")
        os.makedirs(self.memory_dir, exist_ok=True)

    def _daily_file(self, day: date) -> str:
        return os.path.join(self.memory_dir, f"{day.isoformat()}.md")

    def today_file(self, today: Optional[date] = None) -> str:
        return self._daily_file(today or date.today())

    @staticmethod
    def _read(path: str) -> str:
        if not os.path.exists(path):
            return ""
        with open(path, "r", encoding="utf-8") as handle:
            return handle.read()

    def read_today(self, today: Optional[date] = None) -> str:
        return self._read(self.today_file(today))

    def append_today(self, content: str, today: Optional[date] = None) -> None:
        day = today or date.today()
        path = self._daily_file(day)
        existing = self._read(path)
        with open(path, "a", encoding="utf-8") as handle:
            if not existing:
                handle.write(f"# {day.isoformat()}\n\n")
            handle.write(content if content.endswith("\n") else content + "\n")

    def read_long_term(self) -> str:
        return self._read(self.memory_file)

    def write_long_term(self, content: str) -> None:
        with open(self.memory_file, "w", encoding="utf-8") as handle:
            handle.write(content)

    def get_recent_memories(self, days: int = 7, today: Optional[date] = None) -> str:
        start = today or date.today()
        memories: List[str] = []
        for offset in range(max(0, days)):
            text = self._read(self._daily_file(start - timedelta(days=offset)))
            if text:
                memories.append(text)
        return "\n\n---\n\n".join(memories)

    def list_memory_files(self) -> List[str]:
        """Daily memory files, newest first."""
        names = [name for name in os.listdir(self.memory_dir) if _DAILY_FILE.match(name)]
        return [os.path.join(self.memory_dir, name) for name in sorted(names, reverse=True)]

    def get_memory_context(self, today: Optional[date] = None) -> str:
        parts: List[str] = []
        long_term = self.read_long_term()
        if long_term:
            parts.append("## Long-term Memory\n" + long_term)
        notes = self.read_today(today)
        if notes:
            parts.append("## Today's Notes\n" + notes)
        return "\n\n".join(parts)


__all__ = ["MemoryStore"]
