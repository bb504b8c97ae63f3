"""Shared fixtures: src on the path and scripted collaborators."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))
sys.path.insert(0, str(Path(__file__).parent))

from agent.models import ExecutionContext, ToolResult  # noqa: E402
from stubs import ScriptedLLM  # noqa: E402


@pytest.fixture
def llm() -> ScriptedLLM:
    return ScriptedLLM()


@pytest.fixture
def make_context():
    def factory(previous_results: dict[str, ToolResult] | None = None) -> ExecutionContext:
        return ExecutionContext(
            plan_id="plan_test",
            step_id="step_test",
            previous_results=previous_results or {},
            resolve_param=lambda value: value,
            emit=lambda name, payload=None: None,
        )

    return factory


@pytest.fixture
def context(make_context) -> ExecutionContext:
    return make_context()
