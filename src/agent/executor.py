"""Plan executor — runs steps in order, resolves placeholders, retries failures."""

from __future__ import annotations

import asyncio
import inspect
import logging
import re
import time
from collections.abc import Mapping
from typing import Any

from resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerManager,
    CircuitOpenError,
)
from tools.base import Tool
from tools.registry import ToolRegistry

from .config import ExecutorConfig
from .errors import ExecutionCancelledError, StepTimeoutError
from .events import EventBus
from .models import (
    ActionPlan,
    ActionStep,
    ErrorKind,
    ExecutionContext,
    ExecutionResult,
    ToolResult,
    ToolResultMetadata,
)

logger = logging.getLogger(__name__)

_PLACEHOLDER_RE = re.compile(r"\{\{\s*(\w+)(?:\.(\w+))?\s*\}\}")

_MISSING = object()


class Executor:
    """Executes action plans step by step against a tool registry.

    Steps run strictly sequentially in ``order`` so later steps can read the
    output of earlier ones through ``{{step_id}}`` / ``{{step_id.field}}``
    placeholders. Tools that declare a ``circuit`` are called through the
    matching breaker when a manager is supplied.
    """

    def __init__(
        self,
        registry: ToolRegistry | None = None,
        config: ExecutorConfig | None = None,
        events: EventBus | None = None,
        breakers: CircuitBreakerManager | None = None,
    ):
        self.registry = registry if registry is not None else ToolRegistry()
        self.events = events or EventBus()
        self._config = config or ExecutorConfig()
        self._breakers = breakers
        self._current: ExecutionResult | None = None
        self._cancel_requested = False
        self._inflight: asyncio.Future | None = None

    @property
    def config(self) -> ExecutorConfig:
        return self._config

    @property
    def status(self) -> ExecutionResult | None:
        """Result of the most recent (or in-progress) plan."""
        return self._current

    def register_tool(self, tool: Tool) -> None:
        self.registry.register(tool)

    def cancel(self) -> None:
        """Stop before the next step or attempt and abandon the in-flight call."""
        self._cancel_requested = True
        if self._inflight is not None and not self._inflight.done():
            self._inflight.cancel()
        logger.info("Execution cancel requested")

    async def execute_plan(self, plan: ActionPlan) -> ExecutionResult:
        """Execute every step of ``plan`` and aggregate the outcome."""
        logger.info("Executing plan %s (%d steps)", plan.id, len(plan.steps))

        start = time.monotonic()
        self._cancel_requested = False
        results: dict[str, ToolResult] = {}
        errors: list[str] = []
        completed = 0
        failed = 0
        self._current = ExecutionResult(success=False, plan_id=plan.id)

        self.events.emit("plan:start", {"plan": plan})

        def build(success: bool, final_output: Any) -> ExecutionResult:
            return ExecutionResult(
                success=success,
                plan_id=plan.id,
                results=dict(results),
                final_output=final_output,
                total_time_ms=(time.monotonic() - start) * 1000,
                steps_completed=completed,
                steps_failed=failed,
                errors=list(errors),
            )

        steps = plan.sorted_steps()
        try:
            for step in steps:
                self._check_cancelled()

                unmet = [
                    dep for dep in step.depends_on
                    if dep not in results or not results[dep].success
                ]
                if unmet:
                    logger.warning("Step %s dependencies not met: %s", step.id, unmet)
                    results[step.id] = self._failure(
                        step,
                        f"Dependencies not met: {', '.join(unmet)}",
                        ErrorKind.DEPENDENCY_UNMET,
                    )
                    failed += 1
                    errors.append(f"Step {step.id}: Dependencies not met ({', '.join(unmet)})")
                    continue

                result = await self.execute_step(step, plan.id, results)
                results[step.id] = result
                if result.success:
                    completed += 1
                else:
                    failed += 1
                    errors.append(f"Step {step.id}: {result.error}")

            last = results.get(steps[-1].id) if steps else None
            execution = build(failed == 0, last.data if last else None)
            self._current = execution
            self.events.emit("plan:complete", {"result": execution})
            logger.info(
                "Plan %s complete: success=%s, %d ok, %d failed, %.0fms",
                plan.id,
                execution.success,
                completed,
                failed,
                execution.total_time_ms,
            )
            return execution

        except (ExecutionCancelledError, asyncio.CancelledError) as exc:
            if isinstance(exc, asyncio.CancelledError) and not self._cancel_requested:
                raise
            logger.info("Plan %s cancelled", plan.id)
            errors.append("Execution cancelled")
            execution = build(False, None)
            self._current = execution
            self.events.emit("execution:cancelled", {"plan_id": plan.id})
            return execution

        except Exception as exc:
            logger.error("Plan %s execution failed: %s", plan.id, exc)
            self.events.emit("plan:error", {"plan": plan, "error": exc})
            errors.append(str(exc))
            execution = build(False, None)
            self._current = execution
            return execution

    async def execute_step(
        self,
        step: ActionStep,
        plan_id: str,
        previous_results: dict[str, ToolResult],
    ) -> ToolResult:
        """Run one step with timeout and retry handling."""
        start = time.monotonic()
        self.events.emit("step:start", {"step": step, "plan_id": plan_id})

        tool = self.registry.get(step.tool)
        if tool is None:
            logger.warning("Step %s: unknown tool '%s'", step.id, step.tool)
            result = self._failure(step, f"Unknown tool: {step.tool}", ErrorKind.TOOL_NOT_FOUND)
            self.events.emit("step:error", {"step": step, "error": result.error})
            return result

        params = self.resolve_params(step.params, previous_results)
        context = ExecutionContext(
            plan_id=plan_id,
            step_id=step.id,
            previous_results=previous_results,
            resolve_param=lambda value: self.resolve_param(value, previous_results),
            emit=self.events.emit,
        )
        timeout = step.timeout or self._config.timeout
        max_attempts = self._config.max_retries if step.retryable else 1

        attempt = 0
        last_error: Exception | None = None
        kind = ErrorKind.TOOL_ERROR
        retry_after: float | None = None

        while attempt < max_attempts:
            self._check_cancelled()
            attempt += 1
            try:
                data = await self._invoke(tool, params, context, timeout)
            except CircuitOpenError as exc:
                logger.warning("Step %s rejected: %s", step.id, exc)
                last_error, kind, retry_after = exc, ErrorKind.CIRCUIT_OPEN, exc.retry_after
                break
            except StepTimeoutError as exc:
                last_error, kind = exc, ErrorKind.TIMEOUT
            except Exception as exc:
                last_error, kind = exc, ErrorKind.TOOL_ERROR
            else:
                result = ToolResult(
                    success=True,
                    data=data,
                    metadata=self._metadata(step, start, attempt - 1),
                )
                self.events.emit("step:complete", {"step": step, "result": result})
                logger.debug(
                    "Step %s completed in %.0fms",
                    step.id,
                    result.metadata.execution_time_ms,
                )
                return result

            logger.warning(
                "Step %s failed (attempt %d/%d): %s",
                step.id,
                attempt,
                max_attempts,
                last_error,
            )
            if attempt < max_attempts:
                self.events.emit(
                    "step:retry",
                    {"step": step, "attempt": attempt, "error": str(last_error)},
                )
                await self._backoff(self._config.retry_delay * attempt)

        result = ToolResult(
            success=False,
            error=str(last_error) or type(last_error).__name__,
            error_kind=kind,
            retry_after=retry_after,
            metadata=self._metadata(step, start, attempt - 1),
        )
        self.events.emit("step:error", {"step": step, "error": result.error})
        return result

    def resolve_params(
        self, params: Mapping[str, Any], previous_results: Mapping[str, ToolResult]
    ) -> dict[str, Any]:
        return {key: self.resolve_param(value, previous_results) for key, value in params.items()}

    def resolve_param(self, value: Any, previous_results: Mapping[str, ToolResult]) -> Any:
        """Replace placeholders in ``value`` with earlier step output.

        ``"{{a.url}}"`` becomes the ``url`` field of step ``a``'s data and
        ``"{{a}}"`` its whole data, keeping their types. Placeholders inside
        longer strings are substituted as text. Unresolvable placeholders are
        left untouched.
        """
        if isinstance(value, str):
            whole = _PLACEHOLDER_RE.fullmatch(value.strip())
            if whole:
                resolved = _lookup(previous_results, whole.group(1), whole.group(2))
                return value if resolved is _MISSING else resolved

            def substitute(match: re.Match) -> str:
                resolved = _lookup(previous_results, match.group(1), match.group(2))
                return match.group(0) if resolved is _MISSING else str(resolved)

            return _PLACEHOLDER_RE.sub(substitute, value)

        if isinstance(value, Mapping):
            return self.resolve_params(value, previous_results)
        if isinstance(value, (list, tuple)):
            return type(value)(self.resolve_param(v, previous_results) for v in value)
        return value

    async def _invoke(
        self,
        tool: Tool,
        params: dict[str, Any],
        context: ExecutionContext,
        timeout: float,
    ) -> Any:
        async def call() -> Any:
            task = asyncio.ensure_future(_run_tool(tool, params, context))
            self._inflight = task
            try:
                return await asyncio.wait_for(task, timeout)
            except asyncio.TimeoutError:
                raise StepTimeoutError(timeout) from None
            finally:
                self._inflight = None

        breaker = self._breaker_for(tool)
        if breaker is None:
            return await call()
        return await breaker.execute(call)

    async def _backoff(self, delay: float) -> None:
        """Sleep between attempts; ``cancel()`` wakes it early."""
        sleeper = asyncio.ensure_future(asyncio.sleep(delay))
        self._inflight = sleeper
        try:
            await sleeper
        finally:
            self._inflight = None

    def _breaker_for(self, tool: Tool) -> CircuitBreaker | None:
        circuit = getattr(tool, "circuit", None)
        if self._breakers is None or not circuit:
            return None
        return self._breakers.get_breaker(circuit)

    def _check_cancelled(self) -> None:
        if self._cancel_requested:
            raise ExecutionCancelledError("Execution cancelled")

    @staticmethod
    def _metadata(step: ActionStep, start: float, retries: int) -> ToolResultMetadata:
        return ToolResultMetadata(
            execution_time_ms=(time.monotonic() - start) * 1000,
            tool=step.tool,
            step_id=step.id,
            retries=retries or None,
        )

    @staticmethod
    def _failure(step: ActionStep, error: str, kind: ErrorKind) -> ToolResult:
        return ToolResult(
            success=False,
            error=error,
            error_kind=kind,
            metadata=ToolResultMetadata(tool=step.tool, step_id=step.id),
        )


async def _run_tool(tool: Tool, params: dict[str, Any], context: ExecutionContext) -> Any:
    result = tool.execute(params, context)
    if inspect.isawaitable(result):
        result = await result
    return result


def _lookup(results: Mapping[str, ToolResult], step_id: str, field: str | None) -> Any:
    result = results.get(step_id)
    if result is None or not result.success:
        return _MISSING
    if field is None:
        return result.data
    if isinstance(result.data, Mapping) and field in result.data:
        return result.data[field]
    return _MISSING
