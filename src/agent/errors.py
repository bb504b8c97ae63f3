"""Exception hierarchy for the orchestration engine.

    TaskLoopError
    ├── ToolNotFoundError
    ├── ToolExecutionError
    ├── StepTimeoutError
    ├── ExecutionCancelledError
    └── AgentCancelledError

CircuitOpenError is defined by the resilience package and re-exported here.
"""

from __future__ import annotations

from resilience.circuit_breaker import CircuitOpenError


class TaskLoopError(Exception):
    """Base class for engine errors."""


class ToolNotFoundError(TaskLoopError):
    """No tool with the requested name is registered."""

    def __init__(self, name: str):
        super().__init__(f"Unknown tool: {name}")
        self.tool_name = name


class ToolExecutionError(TaskLoopError):
    """A tool could not complete its work."""


class StepTimeoutError(TaskLoopError):
    """A tool call exceeded its deadline."""

    def __init__(self, timeout: float):
        super().__init__(f"Operation timed out after {timeout:g}s")
        self.timeout = timeout


class ExecutionCancelledError(TaskLoopError):
    """Plan execution was cancelled."""


class AgentCancelledError(TaskLoopError):
    """An agent run was cancelled."""


__all__ = [
    "AgentCancelledError",
    "CircuitOpenError",
    "ExecutionCancelledError",
    "StepTimeoutError",
    "TaskLoopError",
    "ToolExecutionError",
    "ToolNotFoundError",
]
