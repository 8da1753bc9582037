"""Named tool registry.

The registry is populated when an agent (or subagent) is constructed and
read concurrently afterwards.  Unknown names are the only failure it
raises; everything a tool reports comes back as an
:class:`AgentToolResult`.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from ..agent_types import AgentTool, AgentToolResult, ToolContext

logger = logging.getLogger(__name__)


class ToolNotFoundError(KeyError):
    """Raised when a tool call names a tool that is not registered."""

    def __init__(self, name: str) -> None:
        super().__init__(name)
        self.name = name

    def __str__(self) -> str:
        return f"Tool {self.name} not found"


class ToolRegistry:
    """Insertion-ordered mapping of tool name to tool."""

    def __init__(self) -> None:
        self._tools: Dict[str, AgentTool] = {}

    def register(self, tool: AgentTool) -> None:
        if tool.name in self._tools:
            logger.debug("Replacing registered tool %s", tool.name)
        self._tools[tool.name] = tool

    def unregister(self, name: str) -> None:
        self._tools.pop(name, None)

    def get(self, name: str) -> Optional[AgentTool]:
        return self._tools.get(name)

    def has(self, name: str) -> bool:
        return name in self._tools

    def names(self) -> List[str]:
        return list(self._tools)

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def definitions(self) -> List[Dict[str, Any]]:
        """Return OpenAI function schemas for every registered tool."""
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.parameters,
                },
            }
            for tool in self._tools.values()
        ]

    async def execute(
        self,
        name: str,
        tool_call_id: str,
        params: Dict[str, Any],
        context: Optional[ToolContext] = None,
    ) -> AgentToolResult:
        """Run the named tool.

        Raises
        ------
        ToolNotFoundError
            If no tool with ``name`` is registered.
        """
        tool = self._tools.get(name)
        if tool is None:
            raise ToolNotFoundError(name)
        return await tool.execute(tool_call_id, params or {}, context)


__all__ = ["ToolRegistry", "ToolNotFoundError"]
