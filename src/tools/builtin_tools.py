"""Small built-in tools: data post-processing and help."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from agent.errors import ToolExecutionError
from agent.models import ExecutionContext

from .base import ParameterSchema, Tool

if TYPE_CHECKING:
    from .registry import ToolRegistry

OPERATIONS = ("format", "deduplicate", "sort", "limit")


class ProcessDataTool(Tool):
    """Cleans up the output of an earlier step.

    ``source`` names a step whose successful data is used when ``data`` is
    not given. Lists are processed item-wise; a mapping with a ``results``
    list is unwrapped first.
    """

    @property
    def name(self) -> str:
        return "process_data"

    @property
    def description(self) -> str:
        return "Format, deduplicate, sort, or limit data from a previous step"

    @property
    def parameters(self) -> list[ParameterSchema]:
        return [
            ParameterSchema(name="operation", required=True, description=f"One of: {', '.join(OPERATIONS)}"),
            ParameterSchema(name="data", type="object", description="Data to process"),
            ParameterSchema(name="source", description="Step id whose output to process"),
            ParameterSchema(name="sort_by", description="Field to sort on"),
            ParameterSchema(name="limit", type="integer", description="Maximum number of items"),
        ]

    async def execute(self, params: dict[str, Any], context: ExecutionContext) -> Any:
        operation = params.get("operation", "format")
        if operation not in OPERATIONS:
            raise ToolExecutionError(f"Unknown operation: {operation}")

        data = params.get("data")
        source = params.get("source")
        if data is None and isinstance(source, str):
            source_result = context.previous_results.get(source)
            if source_result is None or not source_result.success:
                raise ToolExecutionError(f"Source step has no usable output: {source}")
            data = source_result.data

        items = _as_items(data)
        if operation == "deduplicate":
            items = _deduplicate(items)
        elif operation == "sort":
            items = _sort(items, params.get("sort_by"))

        limit = params.get("limit")
        if isinstance(limit, int) and limit >= 0:
            items = items[:limit]

        return {
            "operation": operation,
            "count": len(items),
            "items": items,
            "text": "\n".join(_format_item(i, n) for n, i in enumerate(items, 1)),
        }


class HelpTool(Tool):
    """Lists the registered tools and example queries."""

    def __init__(self, registry: ToolRegistry | None = None):
        self._registry = registry

    @property
    def name(self) -> str:
        return "show_help"

    @property
    def description(self) -> str:
        return "Display help information"

    async def execute(self, params: dict[str, Any], context: ExecutionContext) -> Any:
        tools = (
            [{"name": t.name, "description": t.description} for t in self._registry.list()]
            if self._registry is not None
            else []
        )
        return {
            "message": "taskloop help",
            "tools": tools,
            "examples": [
                "Search for Python asyncio tutorials",
                "List the top 5 static site generators",
                "Read file notes/todo.txt",
            ],
        }


def _as_items(data: Any) -> list[Any]:
    if data is None:
        return []
    if isinstance(data, dict) and isinstance(data.get("results"), list):
        return list(data["results"])
    if isinstance(data, (list, tuple)):
        return list(data)
    return [data]


def _deduplicate(items: list[Any]) -> list[Any]:
    seen: set[str] = set()
    unique = []
    for item in items:
        key = json.dumps(item, sort_keys=True, default=str)
        if key not in seen:
            seen.add(key)
            unique.append(item)
    return unique


def _sort(items: list[Any], sort_by: str | None) -> list[Any]:
    def key(item: Any) -> tuple[int, str]:
        value = item.get(sort_by) if sort_by and isinstance(item, dict) else item
        return (value is None, str(value))

    return sorted(items, key=key)


def _format_item(item: Any, number: int) -> str:
    if isinstance(item, dict):
        title = item.get("title") or item.get("name") or json.dumps(item, default=str)
        url = item.get("url")
        return f"{number}. {title}" + (f" ({url})" if url else "")
    return f"{number}. {item}"
