"""Sandboxed local file operations."""

from __future__ import annotations

import shutil
from pathlib import Path
from typing import Any

from agent.errors import ToolExecutionError
from agent.models import ExecutionContext

from .base import ParameterSchema, Tool

ACTIONS = ("read", "write", "append", "list", "delete", "mkdir", "exists")


class FilesystemTool(Tool):
    """Read, write, list and delete files below a sandbox root."""

    def __init__(self, sandbox_root: str = "/tmp/taskloop-workspace"):
        self._root = Path(sandbox_root).resolve()
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def name(self) -> str:
        return "filesystem"

    @property
    def description(self) -> str:
        return "Read, write, list, and delete files in a sandboxed workspace"

    @property
    def parameters(self) -> list[ParameterSchema]:
        return [
            ParameterSchema(
                name="action",
                required=True,
                description=f"One of: {', '.join(ACTIONS)}",
            ),
            ParameterSchema(name="path", required=True, description="Relative path within sandbox"),
            ParameterSchema(name="content", description="Content to write (write/append)"),
        ]

    @property
    def root(self) -> Path:
        return self._root

    async def execute(self, params: dict[str, Any], context: ExecutionContext) -> Any:
        action = params.get("action", "")
        rel_path = str(params.get("path", ""))

        target = (self._root / rel_path).resolve()
        if target != self._root and not target.is_relative_to(self._root):
            raise ToolExecutionError(f"Path escapes sandbox: {rel_path}")

        if action == "read":
            return self._read(target)
        if action == "write":
            return self._write(target, str(params.get("content", "")), append=False)
        if action == "append":
            return self._write(target, str(params.get("content", "")), append=True)
        if action == "list":
            return self._list(target)
        if action == "delete":
            return self._delete(target)
        if action == "mkdir":
            target.mkdir(parents=True, exist_ok=True)
            return {"created": self._relative(target)}
        if action == "exists":
            return {"path": self._relative(target), "exists": target.exists()}
        raise ToolExecutionError(f"Unknown action: {action}")

    def _relative(self, path: Path) -> str:
        return str(path.relative_to(self._root)) if path != self._root else "."

    def _read(self, path: Path) -> dict[str, Any]:
        if not path.is_file():
            raise ToolExecutionError(f"File not found: {self._relative(path)}")
        content = path.read_text(encoding="utf-8")
        return {"path": self._relative(path), "content": content, "size": len(content)}

    def _write(self, path: Path, content: str, append: bool) -> dict[str, Any]:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "a" if append else "w", encoding="utf-8") as f:
            f.write(content)
        return {"path": self._relative(path), "size": path.stat().st_size}

    def _list(self, path: Path) -> list[dict[str, Any]]:
        if not path.is_dir():
            raise ToolExecutionError(f"Directory not found: {self._relative(path)}")
        return [
            {
                "name": entry.name,
                "type": "dir" if entry.is_dir() else "file",
                "size": entry.stat().st_size if entry.is_file() else 0,
            }
            for entry in sorted(path.iterdir())
        ]

    def _delete(self, path: Path) -> dict[str, Any]:
        if path == self._root:
            raise ToolExecutionError("Refusing to delete the sandbox root")
        if not path.exists():
            raise ToolExecutionError(f"Not found: {self._relative(path)}")
        if path.is_dir():
            shutil.rmtree(path)
        else:
            path.unlink()
        return {"deleted": self._relative(path)}
