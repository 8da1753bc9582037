from __future__ import annotations

import asyncio
import os
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import requests

from ..agent_types import AgentTool, AgentToolResult, ToolContext, text_result

OPENAI_MEDIA_BASE = "https://api.openai.com/v1"
DEFAULT_MEDIA_BASE = "https://api.siliconflow.cn/v1"
TASKS = ("text-to-image", "image-to-image", "image-to-video", "text-to-audio")


class MediaGenerationError(RuntimeError):
    pass


@dataclass
class MediaConfig:
    output_dir: str
    api_key: str = ""
    api_base: str = DEFAULT_MEDIA_BASE
    openai_api_key: str = ""
    openai_api_base: str = OPENAI_MEDIA_BASE
    text_to_image_model: str = "dall-e-3"
    image_to_image_model: str = "Qwen/Qwen-Image-Edit"
    image_to_video_model: str = "Wan-AI/Wan2.2-I2V-A14B"
    text_to_audio_model: str = "tts-1"
    timeout_s: float = 120.0

    def default_model(self, task: str) -> str:
        return {
            "text-to-image": self.text_to_image_model,
            "image-to-image": self.image_to_image_model,
            "image-to-video": self.image_to_video_model,
            "text-to-audio": self.text_to_audio_model,
        }.get(task, "")


def _is_openai_model(model: str) -> bool:
    return model.startswith("dall-e") or model.startswith("tts") or model.startswith("gpt-image")


def _first_url(payload: Dict[str, Any]) -> str:
    for key in ("images", "data"):
        items = payload.get(key) or []
        if items and isinstance(items[0], dict) and items[0].get("url"):
            return str(items[0]["url"])
    return ""


class MediaGenerationTool(AgentTool):
    name = "media_generation"
    description = (
        "Generate media content (images, videos, audio). Supports text-to-image, "
        "image-to-image (editing), image-to-video, and text-to-audio."
    )
    parameters = {
        "type": "object",
        "properties": {
            "task": {"type": "string", "description": "The generation task", "enum": list(TASKS)},
            "prompt": {"type": "string", "description": "Prompt, edit instruction or text to speak"},
            "image_url": {"type": "string", "description": "Source image URL (image-to-image, image-to-video)"},
            "model": {"type": "string", "description": "Optional model override"},
        },
        "required": ["task", "prompt"],
    }
    label = "Media Generation"

    def __init__(self, config: MediaConfig) -> None:
        self.config = config

    async def execute(
        self,
        tool_call_id: str,
        params: Dict[str, Any],
        context: Optional[ToolContext] = None,
    ) -> AgentToolResult:
        del tool_call_id, context
        prompt = str(params.get("prompt") or "").strip()
        task = str(params.get("task") or "").strip().lower()
        image_url = str(params.get("image_url") or "").strip()
        if not prompt:
            return text_result("media_generation error: prompt is required", ok=False)
        if task not in TASKS:
            return text_result(f"media_generation error: unsupported task: {task}", ok=False)
        if task in {"image-to-image", "image-to-video"} and not image_url:
            return text_result(f"media_generation error: image_url is required for {task}", ok=False)
        model = str(params.get("model") or "").strip() or self.config.default_model(task)

        try:
            result = await asyncio.to_thread(self._run_task, task, prompt, image_url, model)
        except (MediaGenerationError, requests.RequestException, OSError) as exc:
            return text_result(f"media_generation error: {exc}", ok=False, task=task, model=model)
        return text_result(result, task=task, model=model)

    ###########################################################################
    # Backends
    ###########################################################################

    def _backend(self, model: str) -> Tuple[str, str]:
        if _is_openai_model(model):
            return self.config.openai_api_base.rstrip("/"), self.config.openai_api_key
        return self.config.api_base.rstrip("/"), self.config.api_key

    def _run_task(self, task: str, prompt: str, image_url: str, model: str) -> str:
        base, api_key = self._backend(model)
        if not api_key:
            raise MediaGenerationError(f"no API key configured for model {model}")
        openai = _is_openai_model(model)

        if task == "text-to-audio":
            body: Dict[str, Any] = {"model": model, "input": prompt}
            body["voice"] = "alloy" if openai else "fishaudio/fish-speech-1.5:alex"
            body["response_format"] = "mp3"
            return self._save_audio(self._post(f"{base}/audio/speech", api_key, body).content)

        if task == "image-to-video":
            if openai:
                raise MediaGenerationError("OpenAI does not support video generation")
            body = {"model": model, "prompt": prompt, "image_url": image_url}
            payload = self._post(f"{base}/video/generations", api_key, body).json()
            url = _first_url(payload)
            if url:
                return url
            request_id = payload.get("requestId") or payload.get("request_id")
            if request_id:
                return f"Video generation submitted (request id: {request_id})"
            raise MediaGenerationError("no URL found in response")

        if task == "image-to-image":
            if openai:
                raise MediaGenerationError("OpenAI image editing requires file upload, not URL")
            body = {"model": model, "prompt": prompt, "image": image_url, "batch_size": 1}
        elif openai:
            body = {"model": model, "prompt": prompt, "size": "1024x1024", "n": 1}
        else:
            body = {"model": model, "prompt": prompt, "batch_size": 1}
        url = _first_url(self._post(f"{base}/images/generations", api_key, body).json())
        if not url:
            raise MediaGenerationError("no URL found in response")
        return url

    def _post(self, url: str, api_key: str, body: Dict[str, Any]) -> requests.Response:
        response = requests.post(
            url,
            json=body,
            headers={"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"},
            timeout=self.config.timeout_s,
        )
        if response.status_code != 200:
            raise MediaGenerationError(f"API error (status {response.status_code}): {response.text[:500]}")
        return response

    def _save_audio(self, data: bytes) -> str:
        os.makedirs(self.config.output_dir, exist_ok=True)
        path = os.path.join(self.config.output_dir, f"audio_{int(time.time() * 1000)}.mp3")
        with open(path, "wb") as handle:
            handle.write(data)
        return path


__all__ = ["MediaGenerationTool", "MediaConfig", "MediaGenerationError"]
