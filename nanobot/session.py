"""Per-conversation history with JSONL persistence.

Each session lives in ``<workspace>/sessions/<key>.jsonl`` (``:`` in the
key replaced by ``_``).  The first line is a metadata record::

    {"_type": "metadata", "created_at": ..., "updated_at": ..., "metadata": {...}}

and every following line is one turn (``role``, ``content``,
``timestamp`` plus any extras).

Turns of one session are appended under that session's
:class:`asyncio.Lock`; different sessions never block each other.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 50


def _now_iso() -> str:
    return datetime.now().astimezone().isoformat(timespec="seconds")


@dataclass
class Session:
    key: str
    messages: List[Dict[str, Any]] = field(default_factory=list)
    created_at: str = field(default_factory=_now_iso)
    updated_at: str = field(default_factory=_now_iso)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def add_message(self, role: str, content: str, **extras: Any) -> Dict[str, Any]:
        turn: Dict[str, Any] = {"role": role, "content": content, "timestamp": _now_iso()}
        turn.update(extras)
        self.messages.append(turn)
        self.updated_at = turn["timestamp"]
        return turn

    def get_history(self, max_messages: int = DEFAULT_HISTORY_LIMIT) -> List[Dict[str, str]]:
        """Return the last ``max_messages`` turns as role/content pairs."""
        recent = self.messages[-max_messages:] if max_messages > 0 else []
        return [{"role": str(m.get("role", "")), "content": str(m.get("content", ""))} for m in recent]

    def clear(self) -> None:
        self.messages = []
        self.updated_at = _now_iso()


class SessionManager:
    """Cache of sessions backed by JSONL files."""

    def __init__(self, workspace: str) -> None:
        self.workspace = str(workspace)
        self.sessions_dir = os.path.join(self.workspace, "sessions")
        os.makedirs(self.sessions_dir, exist_ok=True)
        self._cache: Dict[str, Session] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def session_path(self, key: str) -> str:
        safe_key = key.replace(":", "_").replace("/", "_").replace("\\", "_")
        return os.path.join(self.sessions_dir, f"{safe_key}.jsonl")

    def lock(self, key: str) -> asyncio.Lock:
        """Return the lock guarding read-modify-persist sequences on ``key``."""
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def get_or_create(self, key: str) -> Session:
        session = self._cache.get(key)
        if session is None:
            session = self._load(key) or Session(key=key)
            self._cache[key] = session
        return session

    def _load(self, key: str) -> Optional[Session]:
        path = self.session_path(key)
        if not os.path.exists(path):
            return None
        session = Session(key=key)
        try:
            with open(path, "r", encoding="utf-8") as handle:
                for line in handle:
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        record = json.loads(line)
                    except ValueError:
                        logger.warning("Skipping corrupt line in %s", path)
                        continue
                    if record.get("_type") == "metadata":
                        session.metadata = dict(record.get("metadata") or {})
                        session.created_at = record.get("created_at") or session.created_at
                        session.updated_at = record.get("updated_at") or session.updated_at
                    else:
                        session.messages.append(record)
        except OSError as exc:
            logger.warning("Failed to load session %s: %s", key, exc)
            return None
        return session

    def save(self, session: Session) -> None:
        """Write the whole session file.

        Raises
        ------
        OSError
            If the file cannot be written.  The cached session stays
            authoritative either way.
        """
        self._cache[session.key] = session
        path = self.session_path(session.key)
        meta = {
            "_type": "metadata",
            "created_at": session.created_at,
            "updated_at": session.updated_at,
            "metadata": session.metadata,
        }
        with open(path, "w", encoding="utf-8") as handle:
            handle.write(json.dumps(meta, ensure_ascii=False) + "\n")
            for turn in session.messages:
                handle.write(json.dumps(turn, ensure_ascii=False) + "\n")

    async def append_turns(self, key: str, turns: Iterable[Tuple[str, str]]) -> Session:
        """Append ``(role, content)`` turns to ``key`` and persist, under its lock.

        A failed write is logged; the in-memory session keeps the turns.
        """
        async with self.lock(key):
            session = self.get_or_create(key)
            for role, content in turns:
                session.add_message(role, content)
            try:
                self.save(session)
            except OSError as exc:
                logger.warning("Failed to persist session %s: %s", key, exc)
            return session

    async def clear(self, key: str) -> None:
        """Forget ``key``: empty history and delete its file."""
        async with self.lock(key):
            session = self._cache.pop(key, None)
            if session is not None:
                session.clear()
            try:
                os.remove(self.session_path(key))
            except FileNotFoundError:
                pass
            except OSError as exc:
                logger.warning("Failed to delete session file for %s: %s", key, exc)

    def list_sessions(self) -> List[Dict[str, Any]]:
        """Describe stored sessions, most recently updated first."""
        sessions: List[Dict[str, Any]] = []
        for name in os.listdir(self.sessions_dir):
            if not name.endswith(".jsonl"):
                continue
            path = os.path.join(self.sessions_dir, name)
            try:
                with open(path, "r", encoding="utf-8") as handle:
                    first = json.loads(handle.readline() or "{}")
            except (OSError, ValueError):
                continue
            if first.get("_type") != "metadata":
                continue
            sessions.append(
                {
                    "key": name[: -len(".jsonl")].replace("_", ":", 1),
                    "created_at": first.get("created_at"),
                    "updated_at": first.get("updated_at"),
                    "path": path,
                }
            )
        return sorted(sessions, key=lambda item: item.get("updated_at") or "", reverse=True)


__all__ = ["Session", "SessionManager", "DEFAULT_HISTORY_LIMIT"]
