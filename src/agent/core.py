"""Core agent loop — think, plan, act, observe, correct."""

from __future__ import annotations

import logging
import time
from typing import Any

from resilience.circuit_breaker import CircuitBreakerManager
from tools.base import Tool
from tools.registry import ToolRegistry

from .config import AgentConfig
from .errors import AgentCancelledError
from .events import Event, EventBus
from .executor import Executor
from .llm import LLMClient
from .memory import AgentMemory
from .models import (
    ActionPlan,
    AgentObservation,
    AgentRunResult,
    AgentState,
    AgentThought,
    CorrectionContext,
    ErrorKind,
    ExecutionResult,
    IntentType,
    ParsedIntent,
    RecoveryStrategy,
)
from .planner import Planner
from .reflection import Reflector, StrategyDecision

logger = logging.getLogger(__name__)


class Agent:
    """Autonomous agent that drives a plan to completion with self-correction.

    Usage:
        agent = Agent(OpenAIChatClient())
        agent.register_tool(FilesystemTool())
        result = await agent.run("List the files in the workspace")

    One ``Agent`` handles one run at a time. Concurrent runs use separate
    instances, which may share the memory, registry and breaker manager.
    """

    def __init__(
        self,
        llm: LLMClient,
        planner: Planner | None = None,
        executor: Executor | None = None,
        memory: AgentMemory | None = None,
        registry: ToolRegistry | None = None,
        config: AgentConfig | None = None,
        events: EventBus | None = None,
        breakers: CircuitBreakerManager | None = None,
    ):
        self.events = events or EventBus()
        self.executor = executor or Executor(registry=registry, breakers=breakers)
        self.planner = planner or Planner(llm, registry=self.executor.registry)
        self.memory = memory or AgentMemory()
        self.reflector = Reflector(llm)
        self._config = config or AgentConfig()

        self._state = AgentState.IDLE
        self._cancel_requested = False
        self._thoughts: list[AgentThought] = []
        self._observations: list[AgentObservation] = []
        self._corrections: list[CorrectionContext] = []
        self._iteration = 0

        if self.executor.events is not self.events:
            self.executor.events.subscribe("step:complete", self._forward_step_complete)

    # ── public surface ───────────────────────────────────────────────────────

    @property
    def state(self) -> AgentState:
        return self._state

    @property
    def config(self) -> AgentConfig:
        return self._config

    @property
    def registry(self) -> ToolRegistry:
        return self.executor.registry

    def register_tool(self, tool: Tool) -> None:
        self.executor.register_tool(tool)

    def cancel(self) -> None:
        """Abandon the current run and return to idle."""
        logger.info("Agent cancel requested")
        self._cancel_requested = True
        self.executor.cancel()
        self.reset()

    def reset(self) -> None:
        """Clear per-run artifacts. Memory and tools are untouched."""
        self._thoughts = []
        self._observations = []
        self._corrections = []
        self._iteration = 0
        self._set_state(AgentState.IDLE)

    def stats(self) -> dict[str, Any]:
        return {
            "state": self._state.value,
            "thoughts": len(self._thoughts),
            "observations": len(self._observations),
            "corrections": len(self._corrections),
            "tools": len(self.registry),
            "memory": self.memory.stats(),
        }

    async def run(self, query: str) -> AgentRunResult:
        """Process ``query`` end to end. Never raises; failures are reported
        through a result with ``success=False``."""
        start = time.monotonic()
        self._thoughts = []
        self._observations = []
        self._corrections = []
        self._iteration = 0
        self._cancel_requested = False
        logger.info("Agent run started: %s", query)

        try:
            self.memory.ensure_session()
            self.memory.add_message("user", query)

            # Think
            self._set_state(AgentState.THINKING)
            await self._think(query)
            self._check_cancelled()

            # Plan
            self._set_state(AgentState.PLANNING)
            intent = await self.planner.analyze_query(query)
            self._check_cancelled()
            plan = await self.planner.create_plan(intent)
            self._check_cancelled()
            self.memory.set_current_intent(intent)
            self.memory.set_current_plan(plan)
            self.events.emit("plan:created", {"plan": plan})
            logger.info("Plan %s created with %d steps", plan.id, len(plan.steps))

            # Act / observe / correct
            execution: ExecutionResult | None = None
            goal_achieved = False

            while self._iteration < self._config.max_iterations:
                self._check_cancelled()
                self._iteration += 1

                self._set_state(AgentState.ACTING)
                execution = await self.executor.execute_plan(plan)
                self._check_cancelled()

                self._set_state(AgentState.OBSERVING)
                observation = await self._observe(plan, execution)
                self._check_cancelled()

                if execution.success and observation.is_expected:
                    goal_achieved = True
                    break

                self._set_state(AgentState.CORRECTING)
                if not await self._correct(plan, execution):
                    break

            if execution is None:
                execution = ExecutionResult(success=False, plan_id=plan.id, errors=["Plan was never executed"])

            # Synthesize
            final_answer = await self.reflector.synthesize(query, intent, execution)
            self.memory.add_message("assistant", final_answer)

            success = goal_achieved or execution.success
            if self._config.enable_learning:
                self._learn(query, intent, plan, success)

            self._set_state(AgentState.COMPLETE if success else AgentState.FAILED)
            result = AgentRunResult(
                success=success,
                query=query,
                intent=intent,
                plan=plan,
                execution_result=execution,
                thoughts=list(self._thoughts),
                observations=list(self._observations),
                corrections=list(self._corrections),
                final_answer=final_answer,
                total_time_ms=(time.monotonic() - start) * 1000,
                iterations=self._iteration,
            )
            self.events.emit("goal:achieved" if success else "goal:failed", {"result": result})
            logger.info(
                "Agent run finished: success=%s, %d iterations, %d corrections, %.0fms",
                success,
                self._iteration,
                len(self._corrections),
                result.total_time_ms,
            )
            return result

        except Exception as exc:
            cancelled = isinstance(exc, AgentCancelledError) or self._cancel_requested
            if cancelled:
                logger.info("Agent run cancelled: %s", query)
            else:
                logger.exception("Agent run failed: %s", exc)
            self._set_state(AgentState.IDLE if cancelled else AgentState.FAILED)
            self.events.emit("goal:failed", {"query": query, "error": str(exc)})
            return self._degraded_result(query, exc, start)

    # ── phases ───────────────────────────────────────────────────────────────

    async def _think(self, query: str) -> AgentThought:
        patterns = self.memory.find_similar_patterns(query)
        reasoning, confidence = await self.reflector.think(query, patterns)

        thought = AgentThought(
            content=f"Analyzing query: {query}",
            reasoning=reasoning,
            confidence=confidence,
        )
        self._thoughts.append(thought)
        self.memory.add_thought(reasoning, "analysis")
        self.events.emit("thought", {"thought": thought})
        return thought

    async def _observe(self, plan: ActionPlan, execution: ExecutionResult) -> AgentObservation:
        steps = plan.sorted_steps()
        last = steps[-1] if steps else None
        step_result = execution.results.get(last.id) if last else None

        judgement = await self.reflector.observe(plan, last, step_result, execution)
        observation = AgentObservation(
            step_id=last.id if last else "none",
            result=step_result,
            analysis=judgement.analysis,
            is_expected=judgement.is_expected,
            next_action=judgement.next_action,
        )
        self._observations.append(observation)

        for step_id, result in execution.results.items():
            self.memory.set_step_result(step_id, result)
        self.memory.add_observation(
            observation.step_id,
            "success" if execution.success else "failure",
            judgement.analysis,
        )
        self.events.emit("observation", {"observation": observation})
        return observation

    async def _correct(self, plan: ActionPlan, execution: ExecutionResult) -> bool:
        """Pick a recovery strategy. Returns False when the loop should stop."""
        max_attempts = self._config.max_corrections
        if len(self._corrections) >= max_attempts:
            logger.warning("Correction budget exhausted after %d attempts", len(self._corrections))
            return False

        failed_step = None
        failed_result = None
        for step in plan.sorted_steps():
            result = execution.results.get(step.id)
            if result is not None and not result.success:
                failed_step, failed_result = step, result
                break

        error = execution.errors[0] if execution.errors else "Result did not meet expectations"
        attempt = len(self._corrections) + 1

        if failed_result is not None and failed_result.error_kind == ErrorKind.CIRCUIT_OPEN:
            decision = StrategyDecision(
                strategy=RecoveryStrategy.ABORT,
                reason=f"Circuit open, retry after {failed_result.retry_after or 0:.1f}s",
            )
        else:
            previous = self._corrections[-1].strategy if self._corrections else None
            decision = await self.reflector.choose_strategy(
                plan, failed_step, error, attempt, max_attempts, previous
            )

        correction = CorrectionContext(
            error=error,
            failed_step=failed_step.id if failed_step else "unknown",
            attempt=attempt,
            max_attempts=max_attempts,
            strategy=decision.strategy,
            alternative_approach=decision.alternative_approach,
        )
        self._corrections.append(correction)
        self.memory.add_thought(
            f"Correction {attempt}/{max_attempts}: {decision.strategy.value} ({decision.reason})",
            "analysis",
        )
        self.events.emit("correction", {"correction": correction})

        if decision.strategy == RecoveryStrategy.ABORT:
            logger.warning("Aborting after correction %d: %s", attempt, decision.reason)
            return False
        if decision.strategy == RecoveryStrategy.SKIP:
            logger.info("Skipping failed step %s", correction.failed_step)
        elif decision.strategy in (RecoveryStrategy.ALTERNATIVE, RecoveryStrategy.BACKTRACK):
            logger.info(
                "Strategy %s requested (%s); re-running current plan",
                decision.strategy.value,
                decision.alternative_approach or "no approach given",
            )
        else:
            logger.info("Retrying plan %s (correction %d/%d)", plan.id, attempt, max_attempts)
        return True

    def _learn(self, query: str, intent: ParsedIntent, plan: ActionPlan, success: bool) -> None:
        tools = [step.tool for step in plan.sorted_steps()]
        if success:
            self.memory.record_success(query, intent.intent.value, tools)
        else:
            self.memory.record_failure(query, intent.intent.value, tools)

    # ── helpers ──────────────────────────────────────────────────────────────

    def _set_state(self, state: AgentState) -> None:
        if state == self._state:
            return
        previous, self._state = self._state, state
        logger.debug("State: %s -> %s", previous.value, state.value)
        self.events.emit("state:change", {"from": previous, "to": state})

    def _check_cancelled(self) -> None:
        if self._cancel_requested:
            raise AgentCancelledError("Agent run cancelled")

    def _forward_step_complete(self, event: Event) -> None:
        self.events.emit("step:complete", event.payload)

    def _degraded_result(self, query: str, exc: Exception, start: float) -> AgentRunResult:
        intent = ParsedIntent(intent=IntentType.UNKNOWN, confidence=0.0, original_query=query)
        return AgentRunResult(
            success=False,
            query=query,
            intent=intent,
            plan=ActionPlan(id="failed", query=query),
            execution_result=ExecutionResult(success=False, plan_id="failed", errors=[str(exc)]),
            thoughts=list(self._thoughts),
            observations=list(self._observations),
            corrections=list(self._corrections),
            final_answer=f"I encountered an error while processing your request: {exc}",
            total_time_ms=(time.monotonic() - start) * 1000,
            iterations=self._iteration,
        )
