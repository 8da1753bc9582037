from __future__ import annotations

import os
from pathlib import Path

import pytest

from nanobot.providers.factory import PROVIDER_PRECEDENCE
from nanobot.runtime.env_utils import parse_bool_env, parse_float_env, parse_int_env, parse_str_list_env
from nanobot.runtime.settings import Settings, load_settings
from nanobot.tools.shell import DEFAULT_DENY_PATTERNS


@pytest.fixture
def clean_env(monkeypatch):
    monkeypatch.setattr(os, "environ", dict(os.environ))
    for name in list(os.environ):
        if name.startswith("NANOBOT_") or name == "BRAVE_API_KEY":
            monkeypatch.delenv(name, raising=False)
    for provider in PROVIDER_PRECEDENCE:
        monkeypatch.delenv(f"{provider.upper()}_API_KEY", raising=False)
        monkeypatch.delenv(f"{provider.upper()}_API_BASE", raising=False)
    return monkeypatch


def test_env_parsers_fall_back_on_bad_values(clean_env):
    clean_env.setenv("NANOBOT_X_BOOL", "maybe")
    clean_env.setenv("NANOBOT_X_INT", "ten")
    clean_env.setenv("NANOBOT_X_FLOAT", "1.5")
    clean_env.setenv("NANOBOT_X_LIST", "a; b;;a ;c")

    assert parse_bool_env("NANOBOT_X_BOOL", True) is True
    assert parse_int_env("NANOBOT_X_INT", 3) == 3
    assert parse_float_env("NANOBOT_X_FLOAT", 0.0) == 1.5
    assert parse_str_list_env("NANOBOT_X_LIST", sep=";") == ["a", "b", "c"]
    assert parse_str_list_env("NANOBOT_X_MISSING", default=["z"]) == ["z"]


def test_load_settings_from_env_file(clean_env, tmp_path: Path):
    env_file = tmp_path / ".env"
    env_file.write_text(
        "\n".join(
            [
                "DEEPSEEK_API_KEY=sk-deep",
                "VLLM_API_BASE=http://localhost:8000/v1",
                f"NANOBOT_WORKSPACE={tmp_path / 'ws'}",
                "NANOBOT_MAX_TOOL_ITERATIONS=7",
                "NANOBOT_RESTRICT_TO_WORKSPACE=yes",
                "NANOBOT_EXEC_DENY_PATTERNS=\\bcurl\\b;\\bwget\\b",
                "NANOBOT_MEDIA_TEXT_TO_IMAGE_MODEL=flux",
                "NANOBOT_LOG_LEVEL=simple",
            ]
        ),
        encoding="utf-8",
    )
    settings = load_settings(str(env_file))

    assert settings.provider_keys == {"deepseek": "sk-deep"}
    assert settings.provider_bases == {"vllm": "http://localhost:8000/v1"}
    assert settings.workspace_path == str(tmp_path / "ws")
    assert settings.max_tool_iterations == 7
    assert settings.system_max_iterations == 10
    assert settings.restrict_to_workspace is True
    assert settings.media_models == {"text-to-image": "flux"}
    assert settings.log_level == "simple"

    exec_config = settings.exec_config()
    assert exec_config.deny_patterns == list(DEFAULT_DENY_PATTERNS) + [r"\bcurl\b", r"\bwget\b"]
    assert exec_config.restrict_to_workspace is True
    assert exec_config.working_dir == str(tmp_path / "ws")


def test_media_config_requires_a_key(tmp_path: Path):
    assert Settings(workspace=str(tmp_path)).media_config() is None

    settings = Settings(
        workspace=str(tmp_path),
        media_api_key="sf",
        media_api_base="https://media.example/v1",
        media_models={"text-to-image": "flux", "image-to-video": ""},
    )
    config = settings.media_config()
    assert config.api_key == "sf"
    assert config.api_base == "https://media.example/v1"
    assert config.text_to_image_model == "flux"
    assert config.image_to_video_model == "Wan-AI/Wan2.2-I2V-A14B"
    assert config.output_dir == str(tmp_path / "media")
