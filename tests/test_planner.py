"""Tests for query analysis and planning."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from agent.config import PlannerConfig
from agent.models import IntentType, ParsedIntent, QueryEntities
from agent.planner import Planner
from tools.registry import create_default_registry

from stubs import ScriptedLLM


def intent(kind: IntentType, query: str = "query", **entities) -> ParsedIntent:
    return ParsedIntent(
        intent=kind,
        confidence=0.9,
        entities=QueryEntities(**entities),
        original_query=query,
    )


class TestQuickMatch:
    @pytest.fixture
    def planner(self, llm):
        return Planner(llm)

    def test_url_is_extract(self, planner):
        parsed = planner.quick_match("Get the title from https://example.com/page please")
        assert parsed.intent is IntentType.EXTRACT
        assert parsed.entities.url == "https://example.com/page"

    def test_help(self, planner):
        assert planner.quick_match("help").intent is IntentType.HELP
        assert planner.quick_match("What can you do?").intent is IntentType.HELP

    def test_file_operations(self, planner):
        parsed = planner.quick_match("Read file notes/todo.txt")
        assert parsed.intent is IntentType.FILES
        assert parsed.entities.path == "notes/todo.txt"
        assert parsed.entities.filters == {"action": "read"}

        listing = planner.quick_match("list files")
        assert listing.entities.path == "."
        assert listing.entities.filters == {"action": "list"}

    def test_places(self, planner):
        parsed = planner.quick_match("find the best ramen in Tokyo")
        assert parsed.intent is IntentType.FIND_PLACES
        assert parsed.entities.topic == "ramen"
        assert parsed.entities.location == "tokyo"

    def test_list_with_count(self, planner):
        parsed = planner.quick_match("List the top 5 static site generators")
        assert parsed.intent is IntentType.LIST
        assert parsed.entities.count == 5
        assert parsed.entities.topic == "static site generators"

    def test_compare_and_summarize(self, planner):
        assert planner.quick_match("django vs flask").intent is IntentType.COMPARE
        assert planner.quick_match("summarize the asyncio docs").intent is IntentType.SUMMARIZE

    def test_default_search(self, planner):
        parsed = planner.quick_match("python asyncio tutorials")
        assert parsed.intent is IntentType.SEARCH
        assert parsed.confidence == pytest.approx(0.7)
        assert parsed.entities.topic == "python asyncio tutorials"


class TestAnalyzeQuery:
    @pytest.mark.asyncio
    async def test_confident_quick_match_skips_llm(self, llm):
        planner = Planner(llm)
        parsed = await planner.analyze_query("help")
        assert parsed.intent is IntentType.HELP
        assert llm.calls == []

    @pytest.mark.asyncio
    async def test_llm_classification(self):
        llm = ScriptedLLM(
            intent={
                "intent": "compare",
                "confidence": 1.7,
                "entities": {"topic": "web frameworks", "keywords": ["django", "flask"], "count": "3"},
                "suggestedQueries": ["django vs fastapi"],
            }
        )
        parsed = await Planner(llm).analyze_query("django or flask")

        assert parsed.intent is IntentType.COMPARE
        assert parsed.confidence == 1.0
        assert parsed.entities.keywords == ["django", "flask"]
        assert parsed.entities.count is None
        assert parsed.suggested_queries == ["django vs fastapi"]

    @pytest.mark.asyncio
    async def test_unknown_intent_string(self):
        llm = ScriptedLLM(intent={"intent": "teleport", "confidence": 0.6})
        parsed = await Planner(llm).analyze_query("beam me up")
        assert parsed.intent is IntentType.UNKNOWN
        assert parsed.entities.topic == "beam me up"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw", ["NaN", "Infinity", "-Infinity"])
    async def test_non_finite_confidence(self, raw):
        llm = ScriptedLLM(intent=f'{{"intent": "extract", "confidence": {raw}}}')
        parsed = await Planner(llm).analyze_query("tell me something vague")
        assert parsed.intent is IntentType.EXTRACT
        assert parsed.confidence == 0.5

    @pytest.mark.asyncio
    async def test_fallback_intent_on_garbage(self):
        llm = ScriptedLLM(intent="no idea")
        parsed = await Planner(llm).analyze_query("python asyncio")
        assert parsed.intent is IntentType.SEARCH
        assert parsed.confidence == 0.5

    @pytest.mark.asyncio
    async def test_fallback_intent_on_llm_error(self):
        parsed = await Planner(ScriptedLLM(fail=True)).analyze_query("python asyncio")
        assert parsed.intent is IntentType.SEARCH
        assert parsed.entities.topic == "python asyncio"


class TestTemplates:
    @pytest.mark.asyncio
    async def test_search_template(self, llm):
        plan = await Planner(llm).create_plan(intent(IntentType.SEARCH, topic="asyncio", count=3))

        assert [s.tool for s in plan.steps] == ["web_search", "process_data"]
        assert plan.steps[0].params == {"query": "asyncio", "max_results": 3}
        assert plan.steps[1].params == {"operation": "format", "source": "step_1"}
        assert plan.steps[1].depends_on == ["step_1"]
        assert llm.calls == []

    @pytest.mark.asyncio
    async def test_places_template(self, llm):
        plan = await Planner(llm).create_plan(
            intent(IntentType.FIND_PLACES, topic="ramen", location="tokyo")
        )
        assert plan.steps[0].params["query"] == "ramen tokyo reviews ratings"
        assert plan.steps[1].params["operation"] == "deduplicate"

    @pytest.mark.asyncio
    async def test_help_template(self, llm):
        plan = await Planner(llm).create_plan(intent(IntentType.HELP))
        assert [s.tool for s in plan.steps] == ["show_help"]

    @pytest.mark.asyncio
    async def test_files_template(self, llm):
        plan = await Planner(llm).create_plan(
            intent(IntentType.FILES, path="notes.txt", filters={"action": "delete"})
        )
        only = plan.steps[0]
        assert only.tool == "filesystem"
        assert only.params == {"action": "delete", "path": "notes.txt"}
        assert only.retryable is False


class TestLLMPlanning:
    @pytest.mark.asyncio
    async def test_llm_plan_is_validated(self):
        llm = ScriptedLLM(
            planning={
                "steps": [
                    {"tool": "web_search", "params": {"query": "x"}, "timeout": -1},
                    {"id": "fmt", "order": 5, "tool": "process_data", "dependsOn": ["step_1"], "retryable": False},
                    "not a step",
                ],
                "estimatedTime": "soon",
            }
        )
        planner = Planner(llm, registry=create_default_registry())

        plan = await planner.create_plan(intent(IntentType.ANALYZE, "analyze trends"))

        assert [s.id for s in plan.steps] == ["step_1", "fmt"]
        assert plan.steps[0].order == 1
        assert plan.steps[0].timeout == 30.0
        assert plan.steps[1].order == 5
        assert plan.steps[1].depends_on == ["step_1"]
        assert plan.steps[1].retryable is False
        assert plan.estimated_time == 30.0
        assert plan.metadata["source"] == "llm"

    @pytest.mark.asyncio
    async def test_plan_truncated_to_max_steps(self):
        steps = [{"tool": "web_search", "params": {"query": str(i)}} for i in range(5)]
        llm = ScriptedLLM(planning={"steps": steps})
        planner = Planner(llm, PlannerConfig(max_steps=2))

        plan = await planner.create_plan(intent(IntentType.ANALYZE))

        assert len(plan.steps) == 2

    @pytest.mark.asyncio
    async def test_fallback_plan(self):
        llm = ScriptedLLM(planning={"nothing": True})
        plan = await Planner(llm).create_plan(intent(IntentType.ANALYZE, "weird query"))

        assert [s.tool for s in plan.steps] == ["web_search"]
        assert plan.steps[0].params["query"] == "weird query"
        assert plan.metadata["source"] == "fallback"

    @pytest.mark.asyncio
    async def test_fallback_plan_on_llm_error(self):
        plan = await Planner(ScriptedLLM(fail=True)).create_plan(intent(IntentType.MONITOR))
        assert plan.metadata["source"] == "fallback"


class TestCache:
    @pytest.mark.asyncio
    async def test_plans_are_cached(self, llm):
        planner = Planner(llm)
        first = await planner.create_plan(intent(IntentType.SEARCH, "Python", topic="python"))
        second = await planner.create_plan(intent(IntentType.SEARCH, "python", topic="python"))

        assert second is first
        assert planner.cache_stats() == {"size": 1, "hits": 1, "misses": 1}

        planner.clear_cache()
        assert planner.cache_stats()["size"] == 0

    @pytest.mark.asyncio
    async def test_cache_disabled(self, llm):
        planner = Planner(llm, PlannerConfig(enable_cache=False))
        first = await planner.create_plan(intent(IntentType.SEARCH, topic="python"))
        second = await planner.create_plan(intent(IntentType.SEARCH, topic="python"))
        assert second is not first

    @pytest.mark.asyncio
    async def test_plan_shortcut(self, llm):
        plan = await Planner(llm).plan("help")
        assert plan.intent is IntentType.HELP
