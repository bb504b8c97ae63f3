"""Query analysis and plan construction.

Common query shapes are recognised with regular expressions and turned into
template plans without an LLM round trip; everything else is classified and
planned by the LLM, with a single web search as the fallback plan.
"""

from __future__ import annotations

import json
import logging
import math
import re
import threading
from typing import Any

from tools.registry import ToolRegistry

from .config import PlannerConfig
from .llm import LLMClient
from .models import ActionPlan, ActionStep, IntentType, ParsedIntent, QueryEntities
from .parsing import extract_json_object
from .prompts import (
    INTENT_PROMPT,
    INTENT_SYSTEM_PROMPT,
    PLANNING_PROMPT,
    PLANNING_SYSTEM_PROMPT,
)

logger = logging.getLogger(__name__)

_URL_RE = re.compile(r"https?://\S+")
_HELP_RE = re.compile(r"^(?:help|\?|what can you do|commands)\b")
_FILE_RE = re.compile(
    r"^(read|write|create|delete|remove|list|show)\s+(?:the\s+)?"
    r"(?:files?|directory|directories|folders?|dir)\b\s*(\S*)"
)
_PLACE_RES = (
    re.compile(
        r"(?:find|search|get|show|list|where|locate)\s+(?:me\s+)?(?:the\s+)?(?:best\s+)?"
        r"(.+?)\s+(?:in|near|around|at)\s+(.+)"
    ),
    re.compile(r"(?:best|top|popular)\s+(.+?)\s+(?:in|near|around)\s+(.+)"),
)
_LIST_RE = re.compile(r"^(?:list|show|get|what are|give me)\s+(?:the\s+)?(?:top\s+)?(\d+)?\s*(.+)")
_TOP_N_RE = re.compile(r"top\s+(\d+)")
_COMPARE_RE = re.compile(r"(?:compare|difference|\bvs\b|versus|better|which is)")
_SUMMARIZE_RE = re.compile(r"^(?:summarize|summary|tldr|explain|describe)")

_FILE_ACTIONS = {
    "read": "read",
    "write": "write",
    "create": "write",
    "delete": "delete",
    "remove": "delete",
    "list": "list",
    "show": "list",
}

_DEFAULT_TOOLS = """- web_search(query, max_results): Search the web
- process_data(operation, data, source, sort_by, limit): Format, deduplicate, sort, or limit data
- filesystem(action, path, content): Sandboxed file operations
- show_help(): Display help information"""


class Planner:
    """Turns a natural-language query into an ``ActionPlan``."""

    def __init__(
        self,
        llm: LLMClient,
        config: PlannerConfig | None = None,
        registry: ToolRegistry | None = None,
    ):
        self._llm = llm
        self._config = config or PlannerConfig()
        self._registry = registry
        self._cache: dict[str, ActionPlan] = {}
        self._cache_lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    async def analyze_query(self, query: str) -> ParsedIntent:
        """Classify ``query`` and extract its entities."""
        logger.info("Analyzing query: %s", query)

        quick = self.quick_match(query)
        if quick.confidence > self._config.quick_match_threshold:
            logger.debug("Quick intent match: %s (%.2f)", quick.intent.value, quick.confidence)
            return quick

        prompt = INTENT_PROMPT.format(
            query=query,
            intents=", ".join(i.value for i in IntentType),
        )
        try:
            response = await self._llm.chat(
                [
                    {"role": "system", "content": INTENT_SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                temperature=0.3,
            )
        except Exception as e:
            logger.error("Query analysis failed: %s", e)
            return _fallback_intent(query)

        parsed = extract_json_object(response.content)
        if parsed is None:
            logger.warning("Failed to parse intent response, using fallback")
            return _fallback_intent(query)

        entities = parsed.get("entities")
        suggested = parsed.get("suggestedQueries")
        intent = ParsedIntent(
            intent=_validate_intent(parsed.get("intent")),
            confidence=_clamp_confidence(parsed.get("confidence")),
            entities=_validate_entities(entities if isinstance(entities, dict) else {}, query),
            original_query=query,
            suggested_queries=[str(s) for s in suggested] if isinstance(suggested, list) else [],
        )
        logger.info("Query analyzed: %s (%.2f)", intent.intent.value, intent.confidence)
        return intent

    async def create_plan(self, intent: ParsedIntent) -> ActionPlan:
        """Build a plan for ``intent``: cache, then template, then LLM."""
        logger.info("Creating action plan for intent %s", intent.intent.value)

        key = f"{intent.intent.value}:{intent.original_query}".lower()
        if self._config.enable_cache:
            with self._cache_lock:
                cached = self._cache.get(key)
                if cached is not None:
                    self._hits += 1
                    logger.debug("Returning cached plan %s", cached.id)
                    return cached
                self._misses += 1

        plan = self.template_plan(intent)
        if plan is None:
            plan = await self._llm_plan(intent)
            if plan is None:
                return self.fallback_plan(intent)

        if self._config.enable_cache:
            with self._cache_lock:
                self._cache[key] = plan
        logger.info("Action plan %s created with %d steps", plan.id, len(plan.steps))
        return plan

    async def plan(self, query: str) -> ActionPlan:
        """Analyze ``query`` and plan it in one call."""
        intent = await self.analyze_query(query)
        return await self.create_plan(intent)

    def clear_cache(self) -> None:
        with self._cache_lock:
            self._cache.clear()
            self._hits = 0
            self._misses = 0
        logger.debug("Plan cache cleared")

    def cache_stats(self) -> dict[str, int]:
        with self._cache_lock:
            return {"size": len(self._cache), "hits": self._hits, "misses": self._misses}

    # ── quick paths ──────────────────────────────────────────────────────────

    def quick_match(self, query: str) -> ParsedIntent:
        """Regex classification. Always returns an intent, SEARCH at worst."""
        text = query.strip()
        lower = text.lower()

        def make(intent: IntentType, confidence: float, **entities: Any) -> ParsedIntent:
            entities.setdefault("topic", text)
            return ParsedIntent(
                intent=intent,
                confidence=confidence,
                entities=QueryEntities(**entities),
                original_query=query,
            )

        url = _URL_RE.search(text)
        if url:
            return make(IntentType.EXTRACT, 0.95, url=url.group(0))

        if _HELP_RE.match(lower):
            return make(IntentType.HELP, 1.0)

        match = _FILE_RE.match(lower)
        if match:
            verb, path = match.groups()
            return make(
                IntentType.FILES,
                0.92,
                path=text[match.start(2):match.end(2)] or ".",
                filters={"action": _FILE_ACTIONS[verb]},
            )

        for pattern in _PLACE_RES:
            match = pattern.search(lower)
            if match:
                return make(
                    IntentType.FIND_PLACES,
                    0.88,
                    topic=match.group(1).strip(),
                    location=match.group(2).strip(),
                )

        match = _LIST_RE.match(lower)
        if match:
            count = match.group(1)
            if not count:
                top = _TOP_N_RE.search(lower)
                count = top.group(1) if top else None
            return make(
                IntentType.LIST,
                0.85,
                topic=match.group(2).strip(),
                count=int(count) if count else None,
            )

        if _COMPARE_RE.search(lower):
            return make(IntentType.COMPARE, 0.85)

        if _SUMMARIZE_RE.match(lower):
            return make(IntentType.SUMMARIZE, 0.9)

        return make(IntentType.SEARCH, 0.7)

    def template_plan(self, intent: ParsedIntent) -> ActionPlan | None:
        """Canned plan for common intents, or None when the LLM should plan."""
        entities = intent.entities
        topic = entities.topic or intent.original_query
        timeout = self._config.step_timeout

        def plan(steps: list[ActionStep], estimated_time: float) -> ActionPlan:
            return ActionPlan(
                query=intent.original_query,
                intent=intent.intent,
                entities=entities,
                steps=steps,
                estimated_time=estimated_time,
                metadata={"source": "template"},
            )

        if intent.intent in (IntentType.SEARCH, IntentType.LIST, IntentType.COMPARE):
            return plan(
                [
                    ActionStep(
                        id="step_1",
                        order=1,
                        tool="web_search",
                        params={"query": topic, "max_results": entities.count or 10},
                        description=f"Search for: {topic}",
                        timeout=timeout,
                    ),
                    ActionStep(
                        id="step_2",
                        order=2,
                        tool="process_data",
                        params={"operation": "format", "source": "step_1"},
                        description="Format and display results",
                        depends_on=["step_1"],
                        timeout=timeout,
                    ),
                ],
                15,
            )

        if intent.intent == IntentType.FIND_PLACES:
            location = entities.location or ""
            return plan(
                [
                    ActionStep(
                        id="step_1",
                        order=1,
                        tool="web_search",
                        params={"query": f"{topic} {location} reviews ratings".strip(), "max_results": 15},
                        description=f"Search for {topic} in {location}".strip(),
                        timeout=timeout,
                    ),
                    ActionStep(
                        id="step_2",
                        order=2,
                        tool="process_data",
                        params={
                            "operation": "deduplicate",
                            "source": "step_1",
                            "limit": entities.count or 10,
                        },
                        description="Process and rank results",
                        depends_on=["step_1"],
                        timeout=timeout,
                    ),
                ],
                20,
            )

        if intent.intent == IntentType.HELP:
            return plan(
                [
                    ActionStep(
                        id="step_1",
                        order=1,
                        tool="show_help",
                        description="Display help information",
                        timeout=timeout,
                    )
                ],
                1,
            )

        if intent.intent == IntentType.FILES:
            action = entities.filters.get("action", "list")
            path = entities.path or "."
            return plan(
                [
                    ActionStep(
                        id="step_1",
                        order=1,
                        tool="filesystem",
                        params={"action": action, "path": path},
                        description=f"{action.capitalize()} {path}",
                        timeout=timeout,
                        retryable=action in ("read", "list"),
                    )
                ],
                2,
            )

        return None

    def fallback_plan(self, intent: ParsedIntent) -> ActionPlan:
        """Single web search for the raw query."""
        return ActionPlan(
            query=intent.original_query,
            intent=intent.intent,
            entities=intent.entities,
            steps=[
                ActionStep(
                    id="step_1",
                    order=1,
                    tool="web_search",
                    params={"query": intent.original_query, "max_results": 10},
                    description="Search the web",
                    timeout=self._config.step_timeout,
                )
            ],
            estimated_time=15,
            metadata={"source": "fallback"},
        )

    # ── LLM planning ─────────────────────────────────────────────────────────

    async def _llm_plan(self, intent: ParsedIntent) -> ActionPlan | None:
        tools = self._registry.descriptions() if self._registry is not None and len(self._registry) else _DEFAULT_TOOLS
        prompt = PLANNING_PROMPT.format(
            query=intent.original_query,
            intent=intent.intent.value,
            entities=json.dumps(intent.entities.model_dump(exclude_none=True)),
            tools=tools,
        )
        try:
            response = await self._llm.chat(
                [
                    {"role": "system", "content": PLANNING_SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                temperature=0.2,
            )
        except Exception as e:
            logger.error("Plan creation failed: %s", e)
            return None

        parsed = extract_json_object(response.content)
        if parsed is None or not isinstance(parsed.get("steps"), list):
            logger.warning("Plan response missing steps, using fallback")
            return None

        steps = self._validate_steps(parsed["steps"])
        if not steps:
            logger.warning("Plan response had no usable steps, using fallback")
            return None
        if len(steps) > self._config.max_steps:
            logger.warning("Plan truncated to %d steps", self._config.max_steps)
            steps = steps[: self._config.max_steps]

        try:
            estimated_time = float(parsed.get("estimatedTime") or 30)
        except (TypeError, ValueError):
            estimated_time = 30.0

        return ActionPlan(
            query=intent.original_query,
            intent=intent.intent,
            entities=intent.entities,
            steps=steps,
            estimated_time=estimated_time,
            metadata={"source": "llm"},
        )

    def _validate_steps(self, raw_steps: list[Any]) -> list[ActionStep]:
        steps = []
        for index, raw in enumerate(raw_steps):
            if not isinstance(raw, dict):
                continue
            order = raw.get("order")
            timeout = raw.get("timeout")
            depends_on = raw.get("dependsOn", raw.get("depends_on"))
            params = raw.get("params")
            steps.append(
                ActionStep(
                    id=str(raw.get("id") or f"step_{index + 1}"),
                    order=order if isinstance(order, int) and not isinstance(order, bool) else index + 1,
                    tool=str(raw.get("tool") or "unknown"),
                    params=params if isinstance(params, dict) else {},
                    description=str(raw.get("description") or ""),
                    depends_on=[str(d) for d in depends_on] if isinstance(depends_on, list) else [],
                    timeout=(
                        float(timeout)
                        if isinstance(timeout, (int, float)) and not isinstance(timeout, bool) and timeout > 0
                        else self._config.step_timeout
                    ),
                    retryable=raw.get("retryable") is not False,
                )
            )
        return steps


def _fallback_intent(query: str) -> ParsedIntent:
    return ParsedIntent(
        intent=IntentType.SEARCH,
        confidence=0.5,
        entities=QueryEntities(topic=query),
        original_query=query,
    )


def _validate_intent(value: Any) -> IntentType:
    try:
        return IntentType(str(value).strip().lower())
    except ValueError:
        return IntentType.UNKNOWN


def _clamp_confidence(value: Any) -> float:
    try:
        confidence = float(value) or 0.5
    except (TypeError, ValueError):
        confidence = 0.5
    if not math.isfinite(confidence):
        confidence = 0.5
    return min(max(confidence, 0.0), 1.0)


def _validate_entities(raw: dict[str, Any], query: str) -> QueryEntities:
    def text(key: str) -> str | None:
        value = raw.get(key)
        return str(value) if value else None

    count = raw.get("count")
    keywords = raw.get("keywords")
    filters = raw.get("filters")
    return QueryEntities(
        topic=str(raw.get("topic") or query),
        location=text("location"),
        category=text("category"),
        count=count if isinstance(count, int) and not isinstance(count, bool) else None,
        timeframe=text("timeframe"),
        source=text("source"),
        url=text("url"),
        path=text("path"),
        keywords=[str(k) for k in keywords] if isinstance(keywords, list) else [],
        filters={str(k): str(v) for k, v in filters.items()} if isinstance(filters, dict) else {},
        language=text("language"),
    )
