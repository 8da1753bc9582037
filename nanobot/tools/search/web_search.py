from __future__ import annotations

import asyncio
import os
from typing import Any, Dict, Optional

import requests

from ...agent_types import AgentTool, AgentToolResult, TextContent, ToolContext

BRAVE_SEARCH_URL = "https://api.search.brave.com/res/v1/web/search"


def _to_int(value: Any, default: int) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


class WebSearchTool(AgentTool):
    name = "web_search"
    description = "Search the web. Returns titles, URLs, and snippets."
    parameters = {
        "type": "object",
        "properties": {
            "query": {"type": "string", "description": "Search query"},
            "count": {"type": "integer", "description": "Results (1-10)", "minimum": 1, "maximum": 10},
        },
        "required": ["query"],
    }
    label = "Web Search"

    def __init__(self, api_key: Optional[str] = None, max_results: int = 5, timeout_s: float = 10.0) -> None:
        self.api_key = api_key if api_key is not None else os.getenv("BRAVE_API_KEY", "")
        self.max_results = max(1, min(int(max_results), 10))
        self.timeout_s = timeout_s

    @staticmethod
    def _error(text: str, details: Dict[str, Any]) -> AgentToolResult:
        return AgentToolResult(content=[TextContent(text=text)], details={"ok": False, **details})

    @staticmethod
    def _ok(text: str, details: Dict[str, Any]) -> AgentToolResult:
        return AgentToolResult(content=[TextContent(text=text)], details={"ok": True, **details})

    async def execute(
        self,
        tool_call_id: str,
        params: Dict[str, Any],
        context: Optional[ToolContext] = None,
    ) -> AgentToolResult:
        del tool_call_id, context
        query = str(params.get("query") or "").strip()
        if not query:
            return self._error("web_search error: query is required", {"error": "missing query"})
        if not self.api_key:
            return self._error("web_search error: BRAVE_API_KEY not configured", {"error": "missing api key"})
        count = max(1, min(_to_int(params.get("count"), self.max_results), 10))

        try:
            response = await asyncio.to_thread(
                requests.get,
                BRAVE_SEARCH_URL,
                params={"q": query, "count": count},
                headers={"Accept": "application/json", "X-Subscription-Token": self.api_key},
                timeout=self.timeout_s,
            )
        except requests.RequestException as exc:
            return self._error(f"web_search error: {exc}", {"error": str(exc), "query": query})
        if response.status_code != 200:
            return self._error(
                f"web_search error: API returned status {response.status_code}",
                {"status": response.status_code, "query": query},
            )
        try:
            payload = response.json()
        except ValueError as exc:
            return self._error(f"web_search error: invalid response: {exc}", {"query": query})

        results = ((payload or {}).get("web") or {}).get("results") or []
        if not results:
            return self._ok(f"No results for: {query}", {"query": query, "count": 0})
        lines = [f"Results for: {query}"]
        for index, item in enumerate(results[:count], start=1):
            lines.append(f"{index}. {item.get('title', '')}\n   {item.get('url', '')}")
            if item.get("description"):
                lines.append(f"   {item['description']}")
        return self._ok("\n".join(lines), {"query": query, "count": min(len(results), count)})


__all__ = ["WebSearchTool", "BRAVE_SEARCH_URL"]
