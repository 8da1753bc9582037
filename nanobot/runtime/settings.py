"""Environment-driven runtime settings.

Values are read from the process environment after loading an optional
``.env`` file.  Every numeric or boolean variable falls back to its
default when unset or unparseable.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from dotenv import load_dotenv

from ..providers.factory import PROVIDER_PRECEDENCE
from ..tools.media_gen import MediaConfig
from ..tools.shell import DEFAULT_DENY_PATTERNS, ExecConfig
from .constants import DEFAULT_WORKSPACE
from .env_utils import parse_bool_env, parse_float_env, parse_int_env, parse_str_env, parse_str_list_env

MEDIA_TASKS = ("text-to-image", "image-to-image", "image-to-video", "text-to-audio")


@dataclass
class Settings:
    workspace: str = DEFAULT_WORKSPACE
    model: str = ""
    provider: str = ""
    max_tool_iterations: int = 20
    system_max_iterations: int = 10
    subagent_max_iterations: int = 15
    history_limit: int = 50
    request_timeout_s: float = 120.0
    max_tokens: int = 8192
    temperature: float = 0.7
    exec_timeout_s: float = 60.0
    restrict_to_workspace: bool = False
    exec_deny_patterns: List[str] = field(default_factory=list)
    exec_allow_patterns: List[str] = field(default_factory=list)
    brave_api_key: str = ""
    web_search_max_results: int = 5
    web_fetch_max_chars: int = 50_000
    media_api_key: str = ""
    media_api_base: str = ""
    media_models: Dict[str, str] = field(default_factory=dict)
    log_level: str = "quiet"
    log_file_level: str = "INFO"
    provider_keys: Dict[str, str] = field(default_factory=dict)
    provider_bases: Dict[str, str] = field(default_factory=dict)

    @property
    def workspace_path(self) -> str:
        return os.path.abspath(os.path.expanduser(self.workspace))

    def exec_config(self) -> ExecConfig:
        return ExecConfig(
            working_dir=self.workspace_path,
            timeout_s=self.exec_timeout_s,
            restrict_to_workspace=self.restrict_to_workspace,
            deny_patterns=list(DEFAULT_DENY_PATTERNS) + list(self.exec_deny_patterns),
            allow_patterns=list(self.exec_allow_patterns),
        )

    def media_config(self) -> Optional[MediaConfig]:
        """Media settings, or None when no media backend has a key."""
        openai_key = self.provider_keys.get("openai", "")
        if not self.media_api_key and not openai_key:
            return None
        config = MediaConfig(
            output_dir=os.path.join(self.workspace_path, "media"),
            api_key=self.media_api_key,
            openai_api_key=openai_key,
        )
        if self.media_api_base:
            config.api_base = self.media_api_base
        for task, model in self.media_models.items():
            attr = task.replace("-", "_") + "_model"
            if model and hasattr(config, attr):
                setattr(config, attr, model)
        return config


def load_settings(env_file: Optional[str] = None) -> Settings:
    """Build :class:`Settings` from ``.env`` and the environment.

    Variables already present in the environment take precedence over
    the ``.env`` files; the workspace ``.env`` written by ``onboard`` is
    read last.
    """
    if env_file:
        load_dotenv(env_file)
    else:
        load_dotenv()
    workspace = parse_str_env("NANOBOT_WORKSPACE", DEFAULT_WORKSPACE)
    load_dotenv(os.path.join(os.path.expanduser(workspace), ".env"))

    provider_keys: Dict[str, str] = {}
    provider_bases: Dict[str, str] = {}
    for name in PROVIDER_PRECEDENCE:
        key = parse_str_env(f"{name.upper()}_API_KEY")
        if key:
            provider_keys[name] = key
        base = parse_str_env(f"{name.upper()}_API_BASE")
        if base:
            provider_bases[name] = base

    media_models: Dict[str, str] = {}
    for task in MEDIA_TASKS:
        model = parse_str_env(f"NANOBOT_MEDIA_{task.replace('-', '_').upper()}_MODEL")
        if model:
            media_models[task] = model

    return Settings(
        workspace=parse_str_env("NANOBOT_WORKSPACE", workspace),
        model=parse_str_env("NANOBOT_MODEL"),
        provider=parse_str_env("NANOBOT_PROVIDER").lower(),
        max_tool_iterations=parse_int_env("NANOBOT_MAX_TOOL_ITERATIONS", 20),
        system_max_iterations=parse_int_env("NANOBOT_SYSTEM_MAX_ITERATIONS", 10),
        subagent_max_iterations=parse_int_env("NANOBOT_SUBAGENT_MAX_ITERATIONS", 15),
        history_limit=parse_int_env("NANOBOT_HISTORY_LIMIT", 50),
        request_timeout_s=parse_float_env("NANOBOT_REQUEST_TIMEOUT_S", 120.0),
        max_tokens=parse_int_env("NANOBOT_MAX_TOKENS", 8192),
        temperature=parse_float_env("NANOBOT_TEMPERATURE", 0.7),
        exec_timeout_s=parse_float_env("NANOBOT_EXEC_TIMEOUT_S", 60.0),
        restrict_to_workspace=parse_bool_env("NANOBOT_RESTRICT_TO_WORKSPACE", False),
        exec_deny_patterns=parse_str_list_env("NANOBOT_EXEC_DENY_PATTERNS", sep=";"),
        exec_allow_patterns=parse_str_list_env("NANOBOT_EXEC_ALLOW_PATTERNS", sep=";"),
        brave_api_key=parse_str_env("BRAVE_API_KEY"),
        web_search_max_results=parse_int_env("NANOBOT_WEB_SEARCH_MAX_RESULTS", 5),
        web_fetch_max_chars=parse_int_env("NANOBOT_WEB_FETCH_MAX_CHARS", 50_000),
        media_api_key=parse_str_env("NANOBOT_MEDIA_API_KEY"),
        media_api_base=parse_str_env("NANOBOT_MEDIA_API_BASE"),
        media_models=media_models,
        log_level=parse_str_env("NANOBOT_LOG_LEVEL", "quiet"),
        log_file_level=parse_str_env("NANOBOT_LOG_FILE_LEVEL", "INFO").upper(),
        provider_keys=provider_keys,
        provider_bases=provider_bases,
    )


__all__ = ["Settings", "load_settings", "MEDIA_TASKS"]
