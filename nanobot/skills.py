"""Workspace skills: ``skills/<name>/SKILL.md`` with YAML frontmatter.

A skill file looks like::

    ---
    description: Summarize GitHub issues
    nanobot:
      always: false
      requires:
        bins: [gh]
        env: [GITHUB_TOKEN]
    ---
    Instructions... use {baseDir}/scripts/run.sh

Skills whose requirements are missing are listed as unavailable.  Skills
marked ``always`` are inlined into every system prompt; the others are
summarized so the model can read their instruction file on demand.
"""

from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence, Tuple

import yaml

logger = logging.getLogger(__name__)


@dataclass
class Skill:
    name: str
    path: str
    description: str
    content: str
    always: bool = False
    available: bool = True
    missing: List[str] = field(default_factory=list)
    source: str = "workspace"


def split_frontmatter(text: str) -> Tuple[Dict[str, Any], str]:
    """Return ``(frontmatter, body)``; malformed frontmatter yields ``{}``."""
    if not text.startswith("---"):
        return {}, text
    parts = text.split("---", 2)
    if len(parts) < 3:
        return {}, text
    try:
        meta = yaml.safe_load(parts[1]) or {}
    except yaml.YAMLError as exc:
        logger.warning("Invalid skill frontmatter: %s", exc)
        meta = {}
    if not isinstance(meta, dict):
        meta = {}
    return meta, parts[2].strip()


def check_requirements(bins: Sequence[str], envs: Sequence[str]) -> List[str]:
    missing: List[str] = []
    for binary in bins or []:
        if shutil.which(str(binary)) is None:
            missing.append(f"CLI: {binary}")
    for name in envs or []:
        if not os.getenv(str(name)):
            missing.append(f"ENV: {name}")
    return missing


class SkillsLoader:
    def __init__(self, workspace: str) -> None:
        self.workspace = str(workspace)
        self.skills_dir = os.path.join(self.workspace, "skills")

    def list_skills(self) -> List[Skill]:
        if not os.path.isdir(self.skills_dir):
            return []
        skills: List[Skill] = []
        for name in sorted(os.listdir(self.skills_dir)):
            path = os.path.join(self.skills_dir, name, "SKILL.md")
            if not os.path.isfile(path):
                continue
            try:
                skills.append(self._load(name, path))
            except OSError as exc:
                logger.warning("Failed to load skill %s: %s", name, exc)
        return skills

    def _load(self, name: str, path: str) -> Skill:
        with open(path, "r", encoding="utf-8") as handle:
            content = handle.read()
        meta, _ = split_frontmatter(content)
        nanobot_meta = meta.get("nanobot") or {}
        requires = nanobot_meta.get("requires") or meta.get("requires") or {}
        missing = check_requirements(requires.get("bins") or [], requires.get("env") or [])
        return Skill(
            name=name,
            path=path,
            description=str(meta.get("description") or name),
            content=content,
            always=bool(nanobot_meta.get("always", meta.get("always", False))),
            available=not missing,
            missing=missing,
        )

    def get_always_skills(self) -> List[str]:
        return [skill.name for skill in self.list_skills() if skill.always and skill.available]

    def load_skills_for_context(self, names: Sequence[str]) -> str:
        parts: List[str] = []
        for name in names:
            skill_dir = os.path.join(self.skills_dir, name)
            path = os.path.join(skill_dir, "SKILL.md")
            if not os.path.isfile(path):
                continue
            with open(path, "r", encoding="utf-8") as handle:
                _, body = split_frontmatter(handle.read())
            body = body.replace("{baseDir}", os.path.abspath(skill_dir))
            parts.append(f"### Skill: {name}\n\n{body}")
        return "\n\n---\n\n".join(parts)

    def build_skills_summary(self) -> str:
        lines: List[str] = []
        for skill in self.list_skills():
            status = "Available" if skill.available else f"Unavailable (Missing: {', '.join(skill.missing)})"
            lines.append(f"- **{skill.name}** ({status})")
            lines.append(f"  Description: {skill.description}")
            lines.append(f"  Instruction File: {skill.path}")
            lines.append("")
        return "\n".join(lines)


__all__ = ["Skill", "SkillsLoader", "split_frontmatter", "check_requirements"]
