"""Name -> Tool lookup shared across agent runs."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable

from .base import FunctionTool, ParameterSchema, Tool

logger = logging.getLogger(__name__)


class ToolRegistry:
    """Maps tool names to tools. Safe for concurrent registration and lookup.

    Usage:
        registry = ToolRegistry()
        registry.register(FilesystemTool())

        @registry.tool("echo", "Return the params unchanged")
        async def echo(params, context):
            return params
    """

    def __init__(self, tools: list[Tool] | None = None):
        self._tools: dict[str, Tool] = {}
        self._lock = threading.Lock()
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        with self._lock:
            if tool.name in self._tools:
                logger.warning("Tool '%s' re-registered, replacing previous", tool.name)
            self._tools[tool.name] = tool
        logger.debug("Tool registered: %s", tool.name)

    def tool(
        self,
        name: str,
        description: str,
        parameters: list[ParameterSchema] | None = None,
        circuit: str | None = None,
    ) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        """Decorator registering a function as a FunctionTool."""

        def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
            self.register(FunctionTool(name, description, fn, parameters, circuit))
            return fn

        return decorator

    def unregister(self, name: str) -> bool:
        with self._lock:
            return self._tools.pop(name, None) is not None

    def get(self, name: str) -> Tool | None:
        with self._lock:
            return self._tools.get(name)

    def has(self, name: str) -> bool:
        with self._lock:
            return name in self._tools

    def list(self) -> list[Tool]:
        with self._lock:
            return list(self._tools.values())

    def names(self) -> list[str]:
        with self._lock:
            return list(self._tools)

    def descriptions(self) -> str:
        """One line per tool, for LLM prompts."""
        lines = []
        for tool in self.list():
            params = ", ".join(p.name for p in tool.parameters)
            lines.append(f"- {tool.name}({params}): {tool.description}")
        return "\n".join(lines)

    def __len__(self) -> int:
        with self._lock:
            return len(self._tools)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._tools


def create_default_registry(sandbox_root: str | None = None) -> ToolRegistry:
    """Registry pre-loaded with the built-in tools."""
    from .builtin_tools import HelpTool, ProcessDataTool
    from .filesystem_tool import FilesystemTool
    from .web_search_tool import WebSearchTool

    registry = ToolRegistry()
    registry.register(
        FilesystemTool(sandbox_root) if sandbox_root else FilesystemTool()
    )
    registry.register(WebSearchTool())
    registry.register(ProcessDataTool())
    registry.register(HelpTool(registry))
    return registry
