from __future__ import annotations

import json
import re
from typing import Any, Dict, Optional
from urllib.parse import urlparse

import httpx
from bs4 import BeautifulSoup
from markdownify import markdownify

from ...agent_types import AgentTool, AgentToolResult, TextContent, ToolContext

USER_AGENT = "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_7_2) AppleWebKit/537.36"
MAX_REDIRECTS = 5

_NEWLINES = re.compile(r"\n{3,}")
_DROPPED_TAGS = ("script", "style", "noscript")


def _parse(source: str) -> BeautifulSoup:
    soup = BeautifulSoup(source, "html.parser")
    for tag in soup(_DROPPED_TAGS):
        tag.decompose()
    return soup


def html_to_text(source: str) -> str:
    text = _parse(source).get_text(separator="\n", strip=True)
    return _NEWLINES.sub("\n\n", text).strip()


def html_to_markdown(source: str) -> str:
    """Convert HTML to markdown with ATX headings and dash bullets."""
    markdown = markdownify(str(_parse(source)), heading_style="ATX", bullets="-")
    return _NEWLINES.sub("\n\n", markdown).strip()


def _valid_url(url: str) -> bool:
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)


class WebFetchTool(AgentTool):
    name = "web_fetch"
    description = "Fetch URL and extract readable content (HTML -> markdown/text)."
    parameters = {
        "type": "object",
        "properties": {
            "url": {"type": "string", "description": "URL to fetch"},
            "extractMode": {"type": "string", "enum": ["markdown", "text"], "default": "markdown"},
            "maxChars": {"type": "integer", "minimum": 100},
        },
        "required": ["url"],
    }
    label = "Web Fetch"

    def __init__(
        self,
        max_chars: int = 50_000,
        timeout_s: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.max_chars = max(100, int(max_chars or 50_000))
        self.timeout_s = timeout_s
        self._transport = transport

    @staticmethod
    def _error(message: str, url: str, **extra: Any) -> AgentToolResult:
        payload = json.dumps({"error": message, "url": url}, ensure_ascii=False)
        details = {"ok": False, "error": message, "url": url}
        details.update(extra)
        return AgentToolResult(content=[TextContent(text=payload)], details=details)

    async def execute(
        self,
        tool_call_id: str,
        params: Dict[str, Any],
        context: Optional[ToolContext] = None,
    ) -> AgentToolResult:
        del tool_call_id, context
        url = str(params.get("url") or "").strip()
        if not _valid_url(url):
            return self._error(f"URL validation failed: {url}", url)
        extract_mode = str(params.get("extractMode") or "markdown").strip().lower()
        max_chars = self.max_chars
        if params.get("maxChars") is not None:
            try:
                max_chars = max(100, int(params["maxChars"]))
            except (TypeError, ValueError):
                pass

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_s,
                follow_redirects=True,
                max_redirects=MAX_REDIRECTS,
                transport=self._transport,
            ) as client:
                resp = await client.get(url, headers={"User-Agent": USER_AGENT})
        except httpx.TimeoutException:
            return self._error(f"web_fetch timed out after {self.timeout_s:g}s", url, timed_out=True)
        except httpx.HTTPError as exc:
            return self._error(str(exc) or type(exc).__name__, url)

        content_type = resp.headers.get("content-type", "")
        body = resp.text
        if "application/json" in content_type:
            text, extractor = body, "json"
        elif "text/html" in content_type:
            text = html_to_markdown(body) if extract_mode == "markdown" else html_to_text(body)
            extractor = "beautifulsoup"
        else:
            text, extractor = body, "raw"

        truncated = len(text) > max_chars
        if truncated:
            text = text[:max_chars]
        result = {
            "url": url,
            "finalUrl": str(resp.url),
            "status": resp.status_code,
            "extractor": extractor,
            "truncated": truncated,
            "length": len(text),
            "text": text,
        }
        return AgentToolResult(
            content=[TextContent(text=json.dumps(result, ensure_ascii=False))],
            details={"ok": True, "url": url, "status": resp.status_code, "extractor": extractor},
        )


__all__ = ["WebFetchTool", "html_to_markdown", "html_to_text"]
