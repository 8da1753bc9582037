from __future__ import annotations

import csv
import os
from io import StringIO
from typing import Any, Dict, List, Optional

from pypdf import PdfReader
from openpyxl import load_workbook

from ..agent_types import AgentTool, AgentToolResult, ToolContext, text_result

DEFAULT_MAX_READ_CHARS = 200_000


class FileToolError(RuntimeError):
    def __init__(self, code: str, message: str) -> None:
        super().__init__(str(message))
        self.code = str(code or "io_error")
        self.message = str(message or "unknown file error")


def _path_in_workspace(path: str, workspace_root: str) -> bool:
    try:
        return os.path.commonpath([workspace_root, path]) == workspace_root
    except ValueError:
        return False


def resolve_path(path_value: Any, workspace_root: str, restrict: bool = False) -> str:
    """Resolve ``path_value`` against the workspace, expanding ``~``."""
    candidate = str(path_value or "").strip()
    if not candidate:
        raise FileToolError("invalid_params", "path is required")
    candidate = os.path.expanduser(candidate)
    root = os.path.realpath(workspace_root)
    absolute = os.path.realpath(candidate if os.path.isabs(candidate) else os.path.join(root, candidate))
    if restrict and not _path_in_workspace(absolute, root):
        raise FileToolError("path_outside_workspace", f"path must be inside workspace: {path_value}")
    return absolute


def _require_str(params: Dict[str, Any], key: str) -> str:
    value = params.get(key)
    if not isinstance(value, str):
        raise FileToolError("invalid_params", f"{key} must be a string")
    return value


def _read_utf8_text(path: str) -> str:
    try:
        with open(path, "r", encoding="utf-8") as handle:
            return handle.read()
    except UnicodeDecodeError as exc:
        raise FileToolError("parse_error", f"unable to decode UTF-8 text: {exc}") from exc
    except PermissionError as exc:
        raise FileToolError("permission_denied", f"permission denied: {path}") from exc
    except OSError as exc:
        raise FileToolError("io_error", f"unable to read file: {exc}") from exc


def _read_pdf_text(path: str) -> str:
    try:
        with open(path, "rb") as handle:
            reader = PdfReader(handle)
            return "\n\n".join(str(page.extract_text() or "") for page in reader.pages)
    except OSError as exc:
        raise FileToolError("io_error", f"unable to read file: {exc}") from exc
    except Exception as exc:
        raise FileToolError("parse_error", f"unable to parse pdf: {exc}") from exc


def _read_xlsx_as_csv(path: str) -> str:
    try:
        workbook = load_workbook(path, data_only=True, read_only=True)
    except Exception as exc:
        raise FileToolError("parse_error", f"unable to parse xlsx: {exc}") from exc
    try:
        parts: List[str] = []
        with_banner = len(workbook.worksheets) > 1
        for sheet in workbook.worksheets:
            buffer = StringIO()
            writer = csv.writer(buffer, lineterminator="\n")
            for row in sheet.iter_rows(values_only=True):
                if any(cell not in (None, "") for cell in row):
                    writer.writerow(["" if cell is None else cell for cell in row])
            if with_banner:
                parts.append(f"# sheet: {sheet.title}")
            parts.append(buffer.getvalue().rstrip("\n"))
    finally:
        workbook.close()
    return "\n\n".join(parts).strip()


class _FileTool:
    """Shared plumbing: workspace resolution and result helpers."""

    name = ""

    def __init__(self, workspace: Optional[str] = None, restrict_to_workspace: bool = False) -> None:
        self.workspace = os.path.realpath(str(workspace or os.getcwd()))
        self.restrict_to_workspace = bool(restrict_to_workspace)

    def _resolve(self, params: Dict[str, Any]) -> str:
        return resolve_path(params.get("path"), self.workspace, self.restrict_to_workspace)

    def _error(self, exc: FileToolError) -> AgentToolResult:
        return text_result(f"{self.name} error: {exc.message}", ok=False, error_code=exc.code)


class ReadFileTool(_FileTool, AgentTool):
    name = "read_file"
    label = "Read File"
    description = (
        "Read the contents of a file at the given path. Text files are returned as-is; "
        "pdf files as extracted text and xlsx files as csv."
    )
    parameters = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "The file path to read"},
            "max_chars": {"type": "integer", "description": "Optional maximum number of characters to return."},
        },
        "required": ["path"],
    }

    def __init__(
        self,
        workspace: Optional[str] = None,
        restrict_to_workspace: bool = False,
        max_chars: int = DEFAULT_MAX_READ_CHARS,
    ) -> None:
        super().__init__(workspace, restrict_to_workspace)
        self.max_chars = max(1, int(max_chars))

    async def execute(
        self,
        tool_call_id: str,
        params: Dict[str, Any],
        context: Optional[ToolContext] = None,
    ) -> AgentToolResult:
        del tool_call_id, context
        try:
            path = self._resolve(params)
            if not os.path.exists(path):
                raise FileToolError("path_not_found", f"file not found: {params.get('path')}")
            if not os.path.isfile(path):
                raise FileToolError("path_not_file", f"path is not a file: {params.get('path')}")
            suffix = os.path.splitext(path)[1].lower()
            if suffix == ".pdf":
                text = _read_pdf_text(path)
            elif suffix == ".xlsx":
                text = _read_xlsx_as_csv(path)
            else:
                text = _read_utf8_text(path)
        except FileToolError as exc:
            return self._error(exc)

        limit = self.max_chars
        try:
            if params.get("max_chars") is not None:
                limit = max(1, min(int(params["max_chars"]), self.max_chars))
        except (TypeError, ValueError):
            pass
        truncated = len(text) > limit
        if truncated:
            text = text[:limit] + f"\n... (truncated, {len(text) - limit} more chars)"
        return text_result(text, path=path, truncated=truncated)


class WriteFileTool(_FileTool, AgentTool):
    name = "write_file"
    label = "Write File"
    description = "Write content to a file at the given path. Creates parent directories if needed."
    parameters = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "The file path to write to"},
            "content": {"type": "string", "description": "The content to write"},
        },
        "required": ["path", "content"],
    }

    async def execute(
        self,
        tool_call_id: str,
        params: Dict[str, Any],
        context: Optional[ToolContext] = None,
    ) -> AgentToolResult:
        del tool_call_id, context
        try:
            path = self._resolve(params)
            content = _require_str(params, "content")
            os.makedirs(os.path.dirname(path), exist_ok=True)
            with open(path, "w", encoding="utf-8") as handle:
                handle.write(content)
        except FileToolError as exc:
            return self._error(exc)
        except PermissionError:
            return self._error(FileToolError("permission_denied", f"permission denied: {params.get('path')}"))
        size = len(content.encode("utf-8"))
        return text_result(f"Successfully wrote {size} bytes to {params.get('path')}", path=path, bytes=size)


class AppendFileTool(_FileTool, AgentTool):
    name = "append_file"
    label = "Append File"
    description = "Append content to the end of a file. Creates the file if it doesn't exist."
    parameters = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "The file path to append to"},
            "content": {"type": "string", "description": "The content to append"},
        },
        "required": ["path", "content"],
    }

    async def execute(
        self,
        tool_call_id: str,
        params: Dict[str, Any],
        context: Optional[ToolContext] = None,
    ) -> AgentToolResult:
        del tool_call_id, context
        try:
            path = self._resolve(params)
            content = _require_str(params, "content")
            if not content.endswith("\n"):
                content += "\n"
            os.makedirs(os.path.dirname(path), exist_ok=True)
            with open(path, "a", encoding="utf-8") as handle:
                handle.write(content)
        except FileToolError as exc:
            return self._error(exc)
        except PermissionError:
            return self._error(FileToolError("permission_denied", f"permission denied: {params.get('path')}"))
        return text_result(f"Successfully appended to {params.get('path')}", path=path)


class EditFileTool(_FileTool, AgentTool):
    name = "edit_file"
    label = "Edit File"
    description = "Edit a file by replacing old_text with new_text. The old_text must exist exactly once in the file."
    parameters = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "The file path to edit"},
            "old_text": {"type": "string", "description": "The exact text to find and replace"},
            "new_text": {"type": "string", "description": "The text to replace with"},
        },
        "required": ["path", "old_text", "new_text"],
    }

    async def execute(
        self,
        tool_call_id: str,
        params: Dict[str, Any],
        context: Optional[ToolContext] = None,
    ) -> AgentToolResult:
        del tool_call_id, context
        try:
            path = self._resolve(params)
            old_text = _require_str(params, "old_text")
            new_text = _require_str(params, "new_text")
            if not os.path.isfile(path):
                raise FileToolError("path_not_found", f"file not found: {params.get('path')}")
            original = _read_utf8_text(path)
        except FileToolError as exc:
            return self._error(exc)

        count = original.count(old_text) if old_text else 0
        if count == 0:
            return self._error(
                FileToolError("not_found", "old_text not found in file. Make sure it matches exactly.")
            )
        if count > 1:
            return self._error(
                FileToolError(
                    "ambiguous",
                    f"old_text appears {count} times. Please provide more context to make it unique.",
                )
            )
        with open(path, "w", encoding="utf-8") as handle:
            handle.write(original.replace(old_text, new_text, 1))
        return text_result(f"Successfully edited {params.get('path')}", path=path)


class ListDirTool(_FileTool, AgentTool):
    name = "list_dir"
    label = "List Directory"
    description = "List the contents of a directory."
    parameters = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "The directory path to list"},
        },
        "required": ["path"],
    }

    async def execute(
        self,
        tool_call_id: str,
        params: Dict[str, Any],
        context: Optional[ToolContext] = None,
    ) -> AgentToolResult:
        del tool_call_id, context
        try:
            path = self._resolve(params)
            if not os.path.isdir(path):
                raise FileToolError("path_not_found", f"directory not found: {params.get('path')}")
            entries = sorted(os.listdir(path))
        except FileToolError as exc:
            return self._error(exc)
        if not entries:
            return text_result(f"Directory {params.get('path')} is empty", path=path, count=0)
        lines = []
        for entry in entries:
            prefix = "📁 " if os.path.isdir(os.path.join(path, entry)) else "📄 "
            lines.append(prefix + entry)
        return text_result("\n".join(lines), path=path, count=len(entries))


__all__ = [
    "FileToolError",
    "resolve_path",
    "ReadFileTool",
    "WriteFileTool",
    "AppendFileTool",
    "EditFileTool",
    "ListDirTool",
]
