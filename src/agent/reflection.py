"""LLM-assisted reasoning: think, observe, pick a recovery strategy, synthesize.

Every call here falls back to a deterministic answer when the LLM fails or
returns something unusable; nothing raises to the caller.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import BaseModel

from .llm import LLMClient
from .models import (
    ActionPlan,
    ActionStep,
    ExecutionResult,
    ParsedIntent,
    Pattern,
    RecoveryStrategy,
    ToolResult,
)
from .parsing import extract_json_object
from .prompts import (
    CORRECTION_PROMPT,
    CORRECTION_SYSTEM_PROMPT,
    REFLECTION_PROMPT,
    REFLECTION_SYSTEM_PROMPT,
    SYNTHESIS_PROMPT,
    SYNTHESIS_SYSTEM_PROMPT,
    THINKING_PROMPT,
    THINKING_SYSTEM_PROMPT,
)

logger = logging.getLogger(__name__)

BASE_CONFIDENCE = 0.8
PATTERN_SUCCESS_CONFIDENCE = 0.85
PATTERN_FAILURE_CONFIDENCE = 0.7


class Judgement(BaseModel):
    """What the LLM made of an execution result."""

    analysis: str
    is_expected: bool
    next_action: str


class StrategyDecision(BaseModel):
    strategy: RecoveryStrategy
    reason: str = ""
    alternative_approach: str | None = None


def validate_strategy(value: Any) -> RecoveryStrategy:
    """Map an LLM-provided strategy onto the closed enum; unknown -> ABORT."""
    if isinstance(value, str):
        try:
            return RecoveryStrategy(value.strip().lower())
        except ValueError:
            pass
    return RecoveryStrategy.ABORT


def _dumps(value: Any, limit: int) -> str:
    return json.dumps(value, default=str)[:limit]


class Reflector:
    """Wraps the prompts the agent loop sends to the LLM."""

    def __init__(self, llm: LLMClient):
        self._llm = llm

    async def think(self, query: str, patterns: list[Pattern]) -> tuple[str, float]:
        """Short analysis of the query, biased by similar past patterns."""
        reasoning = ""
        confidence = BASE_CONFIDENCE
        pattern_note = ""

        if patterns:
            best = patterns[0]
            outcome = "successful" if best.success else "unsuccessful"
            reasoning = f"Found {len(patterns)} similar past queries. Best match was {outcome}. "
            confidence = PATTERN_SUCCESS_CONFIDENCE if best.success else PATTERN_FAILURE_CONFIDENCE
            pattern_note = f"Note: Found similar past queries ({outcome} pattern).\n"

        try:
            response = await self._llm.chat(
                [
                    {"role": "system", "content": THINKING_SYSTEM_PROMPT},
                    {
                        "role": "user",
                        "content": THINKING_PROMPT.format(query=query, pattern_note=pattern_note),
                    },
                ],
                temperature=0.3,
                max_tokens=200,
            )
            reasoning += response.content
        except Exception as exc:
            logger.warning("Thinking phase LLM call failed: %s", exc)
            reasoning += f'Basic analysis: Query appears to be about "{query}".'

        return reasoning, confidence

    async def observe(
        self,
        plan: ActionPlan,
        step: ActionStep | None,
        step_result: ToolResult | None,
        execution: ExecutionResult,
    ) -> Judgement:
        """Ask the LLM whether the last step's result satisfies the goal."""
        default = Judgement(
            analysis=(
                "Execution completed successfully."
                if execution.success
                else f"Execution failed: {', '.join(execution.errors)}"
            ),
            is_expected=execution.success,
            next_action="complete" if execution.success else "retry",
        )

        prompt = REFLECTION_PROMPT.format(
            goal=plan.query,
            step=(step.description or step.tool) if step else "Unknown step",
            result=_dumps(step_result.data if step_result and step_result.data is not None else "No data", 1000),
            success=str(execution.success).lower(),
        )
        try:
            response = await self._llm.chat(
                [
                    {"role": "system", "content": REFLECTION_SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                temperature=0.2,
                max_tokens=300,
            )
        except Exception as exc:
            logger.warning("Observation phase LLM call failed: %s", exc)
            return default

        parsed = extract_json_object(response.content)
        if parsed is None:
            logger.warning("Observation response had no JSON, using executor verdict")
            return default

        is_expected = parsed.get("isExpected")
        return Judgement(
            analysis=str(parsed.get("analysis") or default.analysis),
            is_expected=is_expected if isinstance(is_expected, bool) else execution.success,
            next_action=str(parsed.get("nextAction") or "continue"),
        )

    async def choose_strategy(
        self,
        plan: ActionPlan,
        failed_step: ActionStep | None,
        error: str,
        attempt: int,
        max_attempts: int,
        previous: RecoveryStrategy | None,
    ) -> StrategyDecision:
        """Let the LLM pick how to recover from a failure."""
        prompt = CORRECTION_PROMPT.format(
            goal=plan.query,
            step=(failed_step.description or failed_step.tool) if failed_step else "Unknown step",
            error=error,
            attempt=attempt,
            max_attempts=max_attempts,
            previous_strategy=previous.value if previous else "none",
        )
        try:
            response = await self._llm.chat(
                [
                    {"role": "system", "content": CORRECTION_SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                temperature=0.3,
                max_tokens=300,
            )
        except Exception as exc:
            logger.warning("Correction phase LLM call failed: %s", exc)
            strategy = RecoveryStrategy.RETRY if attempt == 1 else RecoveryStrategy.ABORT
            return StrategyDecision(strategy=strategy, reason=f"LLM unavailable: {exc}")

        parsed = extract_json_object(response.content)
        if parsed is None:
            logger.warning("Correction response had no JSON, aborting")
            return StrategyDecision(strategy=RecoveryStrategy.ABORT, reason="Unparseable response")

        strategy = validate_strategy(parsed.get("strategy"))
        if parsed.get("isCritical") is True:
            strategy = RecoveryStrategy.ABORT

        alternative = parsed.get("alternativeApproach")
        return StrategyDecision(
            strategy=strategy,
            reason=str(parsed.get("reason") or ""),
            alternative_approach=str(alternative) if alternative else None,
        )

    async def synthesize(
        self, query: str, intent: ParsedIntent, execution: ExecutionResult
    ) -> str:
        """Turn the execution result into a user-facing answer."""
        prompt = SYNTHESIS_PROMPT.format(
            query=query,
            intent=intent.intent.value,
            steps_completed=execution.steps_completed,
            steps_failed=execution.steps_failed,
            data=_dumps(execution.final_output if execution.final_output is not None else {}, 2000),
        )
        try:
            response = await self._llm.chat(
                [
                    {"role": "system", "content": SYNTHESIS_SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                temperature=0.5,
                max_tokens=500,
            )
            if response.content.strip():
                return response.content
            logger.warning("Synthesis returned empty content, using template")
        except Exception as exc:
            logger.warning("Synthesis phase LLM call failed: %s", exc)

        return fallback_answer(query, execution)


def fallback_answer(query: str, execution: ExecutionResult) -> str:
    if execution.success:
        return f'I completed your request: "{query}"\n\nResults have been processed successfully.'
    issues = ", ".join(execution.errors) or "unknown error"
    return f'I attempted to process: "{query}"\n\nUnfortunately, I encountered some issues: {issues}'
