from .cron_tool import CronTool
from .filesystem import (
    AppendFileTool,
    EditFileTool,
    FileToolError,
    ListDirTool,
    ReadFileTool,
    WriteFileTool,
)
from .media_gen import MediaConfig, MediaGenerationTool
from .message import MessageTool
from .registry import ToolNotFoundError, ToolRegistry
from .search import WebFetchTool, WebSearchTool
from .shell import ExecConfig, ExecTool
from .spawn import SpawnTool

__all__ = [
    "ToolRegistry",
    "ToolNotFoundError",
    "ReadFileTool",
    "WriteFileTool",
    "AppendFileTool",
    "EditFileTool",
    "ListDirTool",
    "FileToolError",
    "ExecTool",
    "ExecConfig",
    "WebSearchTool",
    "WebFetchTool",
    "MessageTool",
    "SpawnTool",
    "CronTool",
    "MediaGenerationTool",
    "MediaConfig",
]
