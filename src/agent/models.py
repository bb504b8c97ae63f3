"""Core data models for the orchestration engine."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable

from pydantic import BaseModel, ConfigDict, Field


def _now() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


class AgentState(str, Enum):
    IDLE = "idle"
    THINKING = "thinking"
    PLANNING = "planning"
    ACTING = "acting"
    OBSERVING = "observing"
    CORRECTING = "correcting"
    COMPLETE = "complete"
    FAILED = "failed"


class RecoveryStrategy(str, Enum):
    RETRY = "retry"
    ALTERNATIVE = "alternative"
    SKIP = "skip"
    ABORT = "abort"
    BACKTRACK = "backtrack"


class IntentType(str, Enum):
    SEARCH = "search"
    FIND_PLACES = "find_places"
    COMPARE = "compare"
    LIST = "list"
    EXTRACT = "extract"
    SUMMARIZE = "summarize"
    MONITOR = "monitor"
    ANALYZE = "analyze"
    FILES = "files"
    HELP = "help"
    UNKNOWN = "unknown"


class ErrorKind(str, Enum):
    DEPENDENCY_UNMET = "dependency_unmet"
    TOOL_NOT_FOUND = "tool_not_found"
    TOOL_ERROR = "tool_error"
    TIMEOUT = "timeout"
    CIRCUIT_OPEN = "circuit_open"
    CANCELLED = "cancelled"


class QueryEntities(BaseModel):
    """Entities extracted from a user query."""

    model_config = ConfigDict(frozen=True)

    topic: str = ""
    location: str | None = None
    category: str | None = None
    count: int | None = None
    timeframe: str | None = None
    source: str | None = None
    url: str | None = None
    path: str | None = None
    keywords: list[str] = Field(default_factory=list)
    filters: dict[str, str] = Field(default_factory=dict)
    language: str | None = None


class ParsedIntent(BaseModel):
    """Classified intent of a query."""

    model_config = ConfigDict(frozen=True)

    intent: IntentType
    confidence: float = Field(ge=0.0, le=1.0)
    entities: QueryEntities = Field(default_factory=QueryEntities)
    original_query: str
    suggested_queries: list[str] = Field(default_factory=list)


class ActionStep(BaseModel):
    """A single unit of work in a plan."""

    model_config = ConfigDict(frozen=True)

    id: str
    order: int
    tool: str
    params: dict[str, Any] = Field(default_factory=dict)
    description: str = ""
    depends_on: list[str] = Field(default_factory=list)
    timeout: float | None = Field(default=None, gt=0)
    retryable: bool = True


class ActionPlan(BaseModel):
    """An ordered, dependency-annotated set of steps for one query."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: new_id("plan"))
    query: str
    intent: IntentType = IntentType.UNKNOWN
    entities: QueryEntities = Field(default_factory=QueryEntities)
    steps: list[ActionStep] = Field(default_factory=list)
    estimated_time: float = 0.0
    created_at: datetime = Field(default_factory=_now)
    metadata: dict[str, Any] = Field(default_factory=dict)

    def sorted_steps(self) -> list[ActionStep]:
        """Steps in execution order (stable on ties)."""
        return sorted(self.steps, key=lambda s: s.order)


class ToolResultMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    execution_time_ms: float = 0.0
    tool: str
    step_id: str
    timestamp: datetime = Field(default_factory=_now)
    retries: int | None = None


class ToolResult(BaseModel):
    """Outcome of one step."""

    model_config = ConfigDict(frozen=True)

    success: bool
    data: Any = None
    error: str | None = None
    error_kind: ErrorKind | None = None
    retry_after: float | None = None
    metadata: ToolResultMetadata


class ExecutionResult(BaseModel):
    """Outcome of one plan run."""

    model_config = ConfigDict(frozen=True)

    success: bool
    plan_id: str
    results: dict[str, ToolResult] = Field(default_factory=dict)
    final_output: Any = None
    total_time_ms: float = 0.0
    steps_completed: int = 0
    steps_failed: int = 0
    errors: list[str] = Field(default_factory=list)


class ExecutionContext(BaseModel):
    """Context handed to a tool while it runs."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    plan_id: str
    step_id: str
    previous_results: dict[str, ToolResult]
    resolve_param: Callable[[Any], Any]
    emit: Callable[[str, Any], None]


class AgentThought(BaseModel):
    id: str = Field(default_factory=lambda: new_id("thought"))
    content: str
    reasoning: str
    confidence: float = Field(ge=0.0, le=1.0)
    timestamp: datetime = Field(default_factory=_now)


class AgentObservation(BaseModel):
    id: str = Field(default_factory=lambda: new_id("obs"))
    step_id: str
    result: ToolResult | None = None
    analysis: str = ""
    is_expected: bool
    next_action: str = ""
    timestamp: datetime = Field(default_factory=_now)


class CorrectionContext(BaseModel):
    error: str
    failed_step: str
    attempt: int
    max_attempts: int
    strategy: RecoveryStrategy
    alternative_approach: str | None = None


class AgentRunResult(BaseModel):
    """Terminal summary of one agent run."""

    success: bool
    query: str
    intent: ParsedIntent
    plan: ActionPlan
    execution_result: ExecutionResult
    thoughts: list[AgentThought] = Field(default_factory=list)
    observations: list[AgentObservation] = Field(default_factory=list)
    corrections: list[CorrectionContext] = Field(default_factory=list)
    final_answer: str
    total_time_ms: float = 0.0
    iterations: int = 0


class Pattern(BaseModel):
    """A recorded (query, intent, tools, outcome) tuple."""

    id: str = Field(default_factory=lambda: new_id("pattern"))
    query: str
    intent: str
    success: bool
    steps: list[str] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=_now)
