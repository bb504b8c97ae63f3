"""Tests for agent memory."""

from __future__ import annotations

import json
import sys
from datetime import timedelta
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from agent.config import MemoryConfig
from agent.memory import LONG_TERM_FILE, AgentMemory
from agent.models import ActionPlan, ToolResult, ToolResultMetadata


@pytest.fixture
def memory(tmp_path) -> AgentMemory:
    return AgentMemory(MemoryConfig(persist_path=str(tmp_path), max_messages=3, max_patterns=2))


class TestSessions:
    def test_create_and_switch(self, memory):
        first = memory.create_session()
        second = memory.create_session()

        assert memory.current_session.session_id == second
        assert memory.set_current_session(first) is True
        assert memory.current_session.session_id == first
        assert memory.set_current_session("nope") is False

    def test_ensure_session_reuses_current(self, memory):
        session_id = memory.ensure_session()
        assert memory.ensure_session() == session_id

    def test_operations_without_session_are_ignored(self, memory):
        memory.add_message("user", "hello")
        assert memory.add_thought("thinking") is None
        assert memory.get_messages() == []
        assert memory.session_summary() == {"active": False}

    def test_messages_are_trimmed(self, memory):
        memory.create_session()
        for i in range(5):
            memory.add_message("user", f"m{i}")

        assert [m.content for m in memory.get_messages()] == ["m2", "m3", "m4"]
        assert [m.content for m in memory.get_messages(limit=1)] == ["m4"]

    def test_step_results_plan_and_summary(self, memory):
        memory.create_session()
        result = ToolResult(success=True, data=1, metadata=ToolResultMetadata(tool="t", step_id="a"))
        memory.set_step_result("a", result)
        memory.set_current_plan(ActionPlan(query="q"))
        memory.add_thought("idea")
        memory.add_observation("a", "success", "fine")

        assert memory.get_step_result("a") is result
        summary = memory.session_summary()
        assert summary["active"] is True
        assert summary["thought_count"] == 1
        assert summary["observation_count"] == 1
        assert summary["has_active_plan"] is True

    def test_clear_and_end(self, memory):
        memory.create_session()
        memory.add_message("user", "hi")
        memory.clear_session()
        assert memory.get_messages() == []

        memory.end_session()
        assert memory.current_session is None

    def test_cleanup_drops_idle_sessions(self, memory):
        memory.create_session()
        assert memory.cleanup(max_age=timedelta(hours=1)) == 0
        assert memory.cleanup(max_age=timedelta(seconds=-1)) == 1
        assert memory.current_session is None


class TestPatterns:
    def test_similar_patterns_ranked_by_overlap(self, memory):
        memory.record_success("best pizza in rome", "find_places", ["web_search"])
        memory.record_failure("pizza recipes", "search", ["web_search"])

        patterns = memory.find_similar_patterns("best pizza")

        assert [p.query for p in patterns] == ["best pizza in rome", "pizza recipes"]

    def test_ties_prefer_most_recent(self, tmp_path):
        memory = AgentMemory(MemoryConfig(persist_path=str(tmp_path)))
        memory.record_success("python docs", "search", [])
        memory.record_success("python news", "search", [])

        patterns = memory.find_similar_patterns("python")

        assert patterns[0].query == "python news"

    def test_no_overlap(self, memory):
        memory.record_success("python docs", "search", [])
        assert memory.find_similar_patterns("weather today") == []
        assert memory.find_similar_patterns("   ") == []

    def test_patterns_are_capped(self, memory):
        for i in range(4):
            memory.record_success(f"query {i}", "search", [])
        assert memory.stats()["successful_patterns"] == 2

    def test_preferences(self, memory):
        memory.set_preference("units", "metric")
        assert memory.get_preference("units") == "metric"
        assert memory.get_preference("missing", "x") == "x"


class TestPersistence:
    def test_round_trip(self, tmp_path):
        config = MemoryConfig(persist_path=str(tmp_path))
        memory = AgentMemory(config)
        memory.record_success("python docs", "search", ["web_search", "process_data"])
        memory.set_preference("units", "metric")

        assert memory.persist() is True
        assert (tmp_path / LONG_TERM_FILE).exists()

        restored = AgentMemory(config)
        assert restored.restore() is True
        patterns = restored.find_similar_patterns("python")
        assert patterns[0].steps == ["web_search", "process_data"]
        assert restored.get_preference("units") == "metric"

    def test_restore_without_file(self, memory):
        assert memory.restore() is False

    def test_restore_corrupt_file(self, tmp_path):
        (tmp_path / LONG_TERM_FILE).write_text("{not json", encoding="utf-8")
        memory = AgentMemory(MemoryConfig(persist_path=str(tmp_path)))
        assert memory.restore() is False

    def test_restore_non_utf8_file(self, tmp_path):
        (tmp_path / LONG_TERM_FILE).write_bytes(b"\xff\xfe\x00garbage")
        memory = AgentMemory(MemoryConfig(persist_path=str(tmp_path)))
        assert memory.restore() is False

    def test_persist_unserializable_preference(self, tmp_path):
        memory = AgentMemory(MemoryConfig(persist_path=str(tmp_path)))
        memory.set_preference("when", object())

        assert memory.persist() is False
        assert not (tmp_path / LONG_TERM_FILE).exists()

    def test_sessions_are_not_persisted(self, tmp_path):
        memory = AgentMemory(MemoryConfig(persist_path=str(tmp_path)))
        memory.create_session()
        memory.add_message("user", "secret")
        memory.persist()

        data = json.loads((tmp_path / LONG_TERM_FILE).read_text(encoding="utf-8"))
        assert set(data) == {"successful_patterns", "failed_patterns", "preferences"}
