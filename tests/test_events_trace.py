"""Tests for the event bus and execution trace."""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from agent.config import ExecutorConfig
from agent.events import EventBus
from agent.executor import Executor
from agent.trace import ExecutionTrace
from tools.registry import ToolRegistry

from stubs import echo_tool, flaky_tool, make_plan, step


class TestEventBus:
    def test_subscribe_and_emit(self):
        bus = EventBus()
        seen = []
        bus.subscribe("ping", lambda e: seen.append(e.payload))

        event = bus.emit("ping", {"n": 1})

        assert seen == [{"n": 1}]
        assert event.name == "ping"

    def test_wildcard_receives_everything(self):
        bus = EventBus()
        names = []
        bus.subscribe("*", lambda e: names.append(e.name))
        bus.emit("a")
        bus.emit("b")
        assert names == ["a", "b"]

    def test_unsubscribe(self):
        bus = EventBus()
        seen = []
        unsubscribe = bus.subscribe("ping", seen.append)
        unsubscribe()
        bus.emit("ping")
        assert seen == []
        assert bus.listener_count("ping") == 0

    def test_handler_errors_are_isolated(self):
        bus = EventBus()
        seen = []

        def broken(event):
            raise RuntimeError("subscriber bug")

        bus.subscribe("ping", broken)
        bus.subscribe("ping", lambda e: seen.append(e.name))

        bus.emit("ping")

        assert seen == ["ping"]

    @pytest.mark.asyncio
    async def test_async_handlers_are_scheduled(self):
        bus = EventBus()
        seen = []

        async def handler(event):
            seen.append(event.name)

        bus.subscribe("ping", handler)
        bus.emit("ping")
        assert seen == []

        await asyncio.sleep(0)
        assert seen == ["ping"]

    def test_async_handler_without_loop_is_dropped(self):
        bus = EventBus()

        async def handler(event):
            raise AssertionError("should not run")

        bus.subscribe("ping", handler)
        bus.emit("ping")

    def test_clear(self):
        bus = EventBus()
        bus.subscribe("a", lambda e: None)
        bus.subscribe("b", lambda e: None)
        assert bus.listener_count() == 2
        bus.clear()
        assert bus.listener_count() == 0


class TestExecutionTrace:
    @pytest.fixture
    def traced(self):
        bus = EventBus()
        trace = ExecutionTrace().attach(bus)
        executor = Executor(
            ToolRegistry([echo_tool(), flaky_tool(10)]),
            ExecutorConfig(max_retries=2, retry_delay=0),
            events=bus,
        )
        return executor, trace

    @pytest.mark.asyncio
    async def test_records_step_events(self, traced):
        executor, trace = traced
        await executor.execute_plan(make_plan(step("a", 1), step("b", 2, tool="flaky")))

        completed = trace.get_entries(event="step:complete")
        assert [(e.step_id, e.tool, e.success) for e in completed] == [("a", "echo", True)]

        errors = trace.get_entries(event="step:error")
        assert errors[0].step_id == "b"
        assert errors[0].error == "failure 2"

    @pytest.mark.asyncio
    async def test_summary(self, traced):
        executor, trace = traced
        await executor.execute_plan(make_plan(step("a", 1), step("b", 2, tool="flaky")))

        summary = trace.summary()

        assert summary["failures"] == 1
        assert summary["retries"] == 1
        assert summary["by_tool"] == {"echo": 1, "flaky": 1}
        assert summary["by_event"]["plan:complete"] == 1

    @pytest.mark.asyncio
    async def test_filter_by_step(self, traced):
        executor, trace = traced
        await executor.execute_plan(make_plan(step("a", 1), step("b", 2)))
        assert {e.event for e in trace.get_entries(step_id="b")} == {"step:start", "step:complete"}

    @pytest.mark.asyncio
    async def test_export_and_jsonl_file(self, tmp_path):
        log_file = tmp_path / "trace" / "run.jsonl"
        bus = EventBus()
        trace = ExecutionTrace(str(log_file)).attach(bus)
        executor = Executor(ToolRegistry([echo_tool()]), ExecutorConfig(retry_delay=0), events=bus)

        await executor.execute_plan(make_plan(step("a", 1)))

        exported = json.loads(trace.export_json())
        lines = log_file.read_text(encoding="utf-8").splitlines()
        assert len(exported) == len(lines) == 4
        assert json.loads(lines[0])["event"] == "plan:start"
        assert exported[-1]["plan_id"] == "plan_test"

    def test_detach_and_clear(self):
        bus = EventBus()
        trace = ExecutionTrace().attach(bus)
        bus.emit("one")
        trace.detach()
        bus.emit("two")

        assert [e.event for e in trace.get_entries()] == ["one"]
        trace.clear()
        assert trace.get_entries() == []
