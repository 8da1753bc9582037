"""OpenAI-compatible chat completions provider.

Works against any endpoint that implements ``POST /chat/completions``
(OpenAI, OpenRouter, DeepSeek, vLLM, Groq, ...).  Streaming responses
are read as server-sent events: every ``data:`` line carries one JSON
chunk and ``data: [DONE]`` ends the stream.

Tool-call fragments are forwarded as they arrive; reassembling them is
the caller's job (see :class:`nanobot.rounds.ToolCallAccumulator`).
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from .base import LLMResponse, ProviderError, StreamChunk, ToolCallChunk, ToolCallRequest

logger = logging.getLogger(__name__)

DEFAULT_API_BASE = "https://api.openai.com/v1"
DEFAULT_MODEL = "anthropic/claude-opus-4-5"
OPENROUTER_HEADERS = {
    "HTTP-Referer": "https://github.com/HKUDS/nanobot",
    "X-Title": "nanobot",
}


def _parse_arguments(raw: Any) -> Dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        return {}
    return parsed if isinstance(parsed, dict) else {}


class OpenAICompatProvider:
    """Chat provider speaking the OpenAI HTTP API.

    Parameters
    ----------
    api_key : str
        Bearer token sent with every request.
    api_base : str
        Base URL without the trailing ``/chat/completions``.
    default_model : str
        Model used when a call does not name one.
    max_tokens, temperature : optional
        Sampling parameters forwarded verbatim when set.
    timeout_s : float, optional
        Per-request HTTP timeout.  ``None`` disables it; the agent loop
        enforces its own deadline around every round.
    transport : httpx.AsyncBaseTransport, optional
        Custom transport, mainly for tests (``httpx.MockTransport``).
    """

    def __init__(
        self,
        api_key: str,
        api_base: str = DEFAULT_API_BASE,
        default_model: str = DEFAULT_MODEL,
        *,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        timeout_s: Optional[float] = None,
        extra_headers: Optional[Dict[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = api_key
        self.api_base = (api_base or DEFAULT_API_BASE).rstrip("/")
        self.default_model = default_model or DEFAULT_MODEL
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.timeout_s = timeout_s
        self.extra_headers = dict(extra_headers or {})
        self._transport = transport

    def get_default_model(self) -> str:
        return self.default_model

    ###########################################################################
    # Request helpers
    ###########################################################################

    @property
    def url(self) -> str:
        return f"{self.api_base}/chat/completions"

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        if "openrouter.ai" in self.api_base:
            headers.update(OPENROUTER_HEADERS)
        headers.update(self.extra_headers)
        return headers

    def _body(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]],
        model: Optional[str],
        stream: bool,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {"model": model or self.default_model, "messages": messages}
        if tools:
            body["tools"] = tools
            body["tool_choice"] = "auto"
        if self.max_tokens is not None:
            body["max_tokens"] = self.max_tokens
        if self.temperature is not None:
            body["temperature"] = self.temperature
        if stream:
            body["stream"] = True
            body["stream_options"] = {"include_usage": True}
        return body

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout_s, transport=self._transport)

    ###########################################################################
    # Non-streaming
    ###########################################################################

    async def chat(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
        model: Optional[str] = None,
    ) -> LLMResponse:
        body = self._body(messages, tools, model, stream=False)
        try:
            async with self._client() as client:
                resp = await client.post(self.url, json=body, headers=self._headers())
        except httpx.HTTPError as exc:
            raise ProviderError(f"request failed: {exc}") from exc
        if resp.status_code >= 400:
            raise ProviderError(f"API request failed with status {resp.status_code}: {resp.text}")
        try:
            data = resp.json()
        except ValueError as exc:
            raise ProviderError(f"invalid JSON response: {exc}") from exc
        return self._parse_response(data)

    @staticmethod
    def _parse_response(data: Dict[str, Any]) -> LLMResponse:
        choices = data.get("choices") or []
        if not choices:
            raise ProviderError("no choices in response")
        choice = choices[0] or {}
        message = choice.get("message") or {}
        tool_calls: List[ToolCallRequest] = []
        for raw in message.get("tool_calls") or []:
            function = raw.get("function") or {}
            tool_calls.append(
                ToolCallRequest(
                    id=str(raw.get("id") or ""),
                    name=str(function.get("name") or ""),
                    arguments=_parse_arguments(function.get("arguments")),
                )
            )
        return LLMResponse(
            content=message.get("content") or "",
            tool_calls=tool_calls,
            finish_reason=choice.get("finish_reason") or "stop",
            usage=dict(data.get("usage") or {}),
        )

    ###########################################################################
    # Streaming
    ###########################################################################

    async def stream(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
        model: Optional[str] = None,
    ) -> AsyncIterator[StreamChunk]:
        """Stream a chat completion as :class:`StreamChunk` objects.

        Raises
        ------
        ProviderError
            If the request cannot be sent or the endpoint answers with an
            HTTP error status.  Failures after the stream has started are
            reported as a chunk with ``error`` set instead.
        """
        body = self._body(messages, tools, model, stream=True)
        async with self._client() as client:
            try:
                async with client.stream("POST", self.url, json=body, headers=self._headers()) as resp:
                    if resp.status_code >= 400:
                        text = (await resp.aread()).decode("utf-8", errors="replace")
                        raise ProviderError(f"API request failed with status {resp.status_code}: {text}")
                    async for line in resp.aiter_lines():
                        if not line.startswith("data:"):
                            continue
                        payload = line[len("data:"):].strip()
                        if payload == "[DONE]":
                            return
                        try:
                            data = json.loads(payload)
                        except ValueError:
                            logger.debug("Skipping undecodable stream line: %r", payload[:200])
                            continue
                        for chunk in self._parse_chunk(data):
                            yield chunk
            except httpx.HTTPError as exc:
                logger.warning("Provider stream failed: %s", exc)
                yield StreamChunk(error=f"stream failed: {exc}")

    @staticmethod
    def _parse_chunk(data: Dict[str, Any]) -> List[StreamChunk]:
        chunks: List[StreamChunk] = []
        if data.get("error"):
            error = data["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            return [StreamChunk(error=message or "unknown provider error")]
        for choice in data.get("choices") or []:
            delta = choice.get("delta") or {}
            if delta.get("content"):
                chunks.append(StreamChunk(content=delta["content"]))
            for raw in delta.get("tool_calls") or []:
                function = raw.get("function") or {}
                chunks.append(
                    StreamChunk(
                        tool_call=ToolCallChunk(
                            index=int(raw.get("index") or 0),
                            id=raw.get("id") or "",
                            name=function.get("name") or "",
                            arguments=function.get("arguments") or "",
                        )
                    )
                )
            if choice.get("finish_reason"):
                chunks.append(StreamChunk(finish_reason=choice["finish_reason"]))
        if data.get("usage"):
            chunks.append(StreamChunk(usage=dict(data["usage"])))
        return chunks


__all__ = ["OpenAICompatProvider", "DEFAULT_API_BASE", "DEFAULT_MODEL"]
