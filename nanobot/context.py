"""Assembly of the message list sent to the provider.

The system prompt is rebuilt for every turn from the identity section,
the workspace bootstrap files, memory and skills, joined by horizontal
rules.  History, the current user message and, during the round loop,
assistant tool calls and tool results follow in OpenAI message format.
"""

from __future__ import annotations

import base64
import logging
import mimetypes
import os
from typing import Any, Dict, List, Optional, Sequence, Union

from .memory import MemoryStore
from .prompting import build_identity_prompt, build_skills_section
from .providers.base import ToolCallRequest
from .skills import SkillsLoader

logger = logging.getLogger(__name__)

BOOTSTRAP_FILES = ("AGENTS.md", "SOUL.md", "USER.md", "TOOLS.md", "IDENTITY.md")
SECTION_SEPARATOR = "\n\n---\n\n"


class ContextBuilder:
    """Builds system prompts and message lists for one workspace."""

    def __init__(
        self,
        workspace: str,
        memory: Optional[MemoryStore] = None,
        skills: Optional[SkillsLoader] = None,
    ) -> None:
        self.workspace = os.path.abspath(str(workspace))
        self.memory = memory or MemoryStore(self.workspace)
        self.skills = skills or SkillsLoader(self.workspace)

    def build_system_prompt(self) -> str:
        parts: List[str] = [build_identity_prompt(self.workspace)]

        bootstrap = self._load_bootstrap_files()
        if bootstrap:
            parts.append(bootstrap)

        memory = self.memory.get_memory_context()
        if memory:
            parts.append(f"# Memory\n\n{memory}")

        always = self.skills.get_always_skills()
        if always:
            active = self.skills.load_skills_for_context(always)
            if active:
                parts.append(f"# Active Skills\n\n{active}")

        summary = self.skills.build_skills_summary()
        if summary:
            parts.append(build_skills_section(summary))

        return SECTION_SEPARATOR.join(parts)

    def _load_bootstrap_files(self) -> str:
        parts: List[str] = []
        for filename in BOOTSTRAP_FILES:
            path = os.path.join(self.workspace, filename)
            if not os.path.isfile(path):
                continue
            try:
                with open(path, "r", encoding="utf-8") as handle:
                    text = handle.read()
            except (OSError, UnicodeDecodeError) as exc:
                logger.warning("Skipping bootstrap file %s: %s", path, exc)
                continue
            parts.append(f"## {filename}\n\n{text}")
        return "\n\n".join(parts)

    def build_messages(
        self,
        history: Sequence[Dict[str, Any]],
        current_message: str,
        media: Sequence[str] = (),
        channel: str = "",
        chat_id: str = "",
    ) -> List[Dict[str, Any]]:
        system_prompt = self.build_system_prompt()
        if channel and chat_id:
            system_prompt += f"\n\n## Current Session\nChannel: {channel}\nChat ID: {chat_id}"
        messages: List[Dict[str, Any]] = [{"role": "system", "content": system_prompt}]
        messages.extend(dict(item) for item in history)
        messages.append({"role": "user", "content": self.build_user_content(current_message, media)})
        return messages

    @staticmethod
    def build_user_content(text: str, media: Sequence[str] = ()) -> Union[str, List[Dict[str, Any]]]:
        """Inline image files as ``image_url`` blocks; other media is ignored."""
        blocks: List[Dict[str, Any]] = []
        for path in media or ():
            if not os.path.isfile(path):
                continue
            mime_type, _ = mimetypes.guess_type(path)
            if not mime_type or not mime_type.startswith("image/"):
                continue
            with open(path, "rb") as handle:
                encoded = base64.b64encode(handle.read()).decode("ascii")
            blocks.append({"type": "image_url", "image_url": {"url": f"data:{mime_type};base64,{encoded}"}})
        if not blocks:
            return text
        blocks.append({"type": "text", "text": text})
        return blocks

    @staticmethod
    def add_assistant_message(
        messages: List[Dict[str, Any]],
        content: str,
        tool_calls: Sequence[ToolCallRequest] = (),
    ) -> List[Dict[str, Any]]:
        message: Dict[str, Any] = {"role": "assistant", "content": content}
        if tool_calls:
            message["tool_calls"] = [call.to_openai() for call in tool_calls]
        messages.append(message)
        return messages

    @staticmethod
    def add_tool_result(
        messages: List[Dict[str, Any]],
        tool_call_id: str,
        tool_name: str,
        result: str,
    ) -> List[Dict[str, Any]]:
        messages.append({"role": "tool", "tool_call_id": tool_call_id, "name": tool_name, "content": result})
        return messages


__all__ = ["ContextBuilder", "BOOTSTRAP_FILES"]
