"""Web search over the DuckDuckGo Instant Answer API."""

from __future__ import annotations

from typing import Any

import httpx

from agent.errors import ToolExecutionError
from agent.models import ExecutionContext

from .base import ParameterSchema, Tool

DDG_URL = "https://api.duckduckgo.com/"


class WebSearchTool(Tool):
    """Web search using the DuckDuckGo Instant Answer API (no key required)."""

    circuit = "network"

    def __init__(self, client: httpx.AsyncClient | None = None, timeout: float = 15.0):
        self._client = client
        self._timeout = timeout

    @property
    def name(self) -> str:
        return "web_search"

    @property
    def description(self) -> str:
        return "Search the web and return structured results"

    @property
    def parameters(self) -> list[ParameterSchema]:
        return [
            ParameterSchema(name="query", required=True, description="Search query"),
            ParameterSchema(name="max_results", type="integer", default=5),
        ]

    async def execute(self, params: dict[str, Any], context: ExecutionContext) -> Any:
        query = str(params.get("query") or "").strip()
        max_results = int(params.get("max_results", 5))
        if not query:
            raise ToolExecutionError("Query is required")

        request_params = {"q": query, "format": "json", "no_html": 1, "skip_disambig": 1}
        try:
            if self._client is not None:
                resp = await self._client.get(DDG_URL, params=request_params)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    resp = await client.get(DDG_URL, params=request_params)
        except httpx.HTTPError as e:
            raise ToolExecutionError(f"HTTP error: {e}") from e

        if resp.status_code != 200:
            raise ToolExecutionError(f"Search failed: HTTP {resp.status_code}")

        return {"query": query, "results": self._parse(resp.json(), max_results)}

    @staticmethod
    def _parse(data: dict[str, Any], max_results: int) -> list[dict[str, Any]]:
        results = []

        # Abstract (direct answer)
        if data.get("Abstract"):
            results.append({
                "title": data.get("Heading", ""),
                "snippet": data["Abstract"],
                "url": data.get("AbstractURL", ""),
                "source": data.get("AbstractSource", ""),
            })

        for topic in data.get("RelatedTopics", []):
            # Grouped topics nest their entries one level down
            entries = topic.get("Topics", [topic]) if isinstance(topic, dict) else []
            for entry in entries:
                if isinstance(entry, dict) and "Text" in entry:
                    results.append({
                        "title": entry["Text"][:100],
                        "snippet": entry["Text"],
                        "url": entry.get("FirstURL", ""),
                    })

        return results[:max_results]
