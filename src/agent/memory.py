"""Per-session agent context plus long-term learned patterns."""

from __future__ import annotations

import json
import logging
import threading
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError
from pydantic_core import PydanticSerializationError

from .config import MemoryConfig
from .models import ActionPlan, ParsedIntent, Pattern, ToolResult, new_id

logger = logging.getLogger(__name__)

LONG_TERM_FILE = "long_term.json"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Message(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str
    timestamp: datetime = Field(default_factory=_now)
    metadata: dict[str, Any] = Field(default_factory=dict)


class Thought(BaseModel):
    id: str = Field(default_factory=lambda: new_id("thought"))
    content: str
    type: Literal["analysis", "plan", "observation", "conclusion"] = "analysis"
    timestamp: datetime = Field(default_factory=_now)


class Observation(BaseModel):
    step_id: str
    result: Literal["success", "failure", "partial"]
    summary: str
    details: Any = None
    timestamp: datetime = Field(default_factory=_now)


class SessionContext(BaseModel):
    session_id: str
    start_time: datetime = Field(default_factory=_now)
    last_activity: datetime = Field(default_factory=_now)
    messages: list[Message] = Field(default_factory=list)
    current_plan: ActionPlan | None = None
    current_intent: ParsedIntent | None = None
    step_results: dict[str, ToolResult] = Field(default_factory=dict)
    thoughts: list[Thought] = Field(default_factory=list)
    observations: list[Observation] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)

    def touch(self) -> None:
        self.last_activity = _now()


class LongTermMemory(BaseModel):
    successful_patterns: list[Pattern] = Field(default_factory=list)
    failed_patterns: list[Pattern] = Field(default_factory=list)
    preferences: dict[str, Any] = Field(default_factory=dict)


class AgentMemory:
    """Session and long-term memory shared by agent runs.

    All public methods take an internal lock, so several agents may share one
    instance. Only long-term memory is persisted; sessions live in process.
    """

    def __init__(self, config: MemoryConfig | None = None):
        self._config = config or MemoryConfig()
        self._sessions: dict[str, SessionContext] = {}
        self._current_session_id: str | None = None
        self._long_term = LongTermMemory()
        self._lock = threading.RLock()

    # ── sessions ─────────────────────────────────────────────────────────────

    def create_session(self) -> str:
        session_id = f"session_{uuid.uuid4().hex[:12]}"
        with self._lock:
            self._sessions[session_id] = SessionContext(session_id=session_id)
            self._current_session_id = session_id
        logger.info("Session created: %s", session_id)
        return session_id

    @property
    def current_session(self) -> SessionContext | None:
        with self._lock:
            if self._current_session_id is None:
                return None
            return self._sessions.get(self._current_session_id)

    def get_session(self, session_id: str) -> SessionContext | None:
        with self._lock:
            return self._sessions.get(session_id)

    def set_current_session(self, session_id: str) -> bool:
        with self._lock:
            if session_id in self._sessions:
                self._current_session_id = session_id
                return True
            return False

    def ensure_session(self) -> str:
        """Return the current session id, creating a session if there is none."""
        with self._lock:
            if self.current_session is not None:
                return self._current_session_id  # type: ignore[return-value]
            return self.create_session()

    def add_message(self, role: str, content: str, **metadata: Any) -> None:
        with self._lock:
            session = self.current_session
            if session is None:
                logger.warning("No active session for message")
                return
            session.messages.append(Message(role=role, content=content, metadata=metadata))
            session.messages = session.messages[-self._config.max_messages:]
            session.touch()

    def get_messages(self, limit: int | None = None) -> list[Message]:
        with self._lock:
            session = self.current_session
            if session is None:
                return []
            messages = list(session.messages)
        return messages[-limit:] if limit else messages

    def add_thought(self, content: str, type: str = "analysis") -> Thought | None:
        with self._lock:
            session = self.current_session
            if session is None:
                logger.warning("No active session for thought")
                return None
            thought = Thought(content=content, type=type)
            session.thoughts.append(thought)
            session.thoughts = session.thoughts[-self._config.max_thoughts:]
            session.touch()
            return thought

    def add_observation(
        self, step_id: str, result: str, summary: str, details: Any = None
    ) -> Observation | None:
        with self._lock:
            session = self.current_session
            if session is None:
                logger.warning("No active session for observation")
                return None
            observation = Observation(step_id=step_id, result=result, summary=summary, details=details)
            session.observations.append(observation)
            session.touch()
            return observation

    def set_current_plan(self, plan: ActionPlan) -> None:
        with self._lock:
            session = self.current_session
            if session is None:
                logger.warning("No active session for plan")
                return
            session.current_plan = plan
            session.touch()

    def set_current_intent(self, intent: ParsedIntent) -> None:
        with self._lock:
            session = self.current_session
            if session is None:
                logger.warning("No active session for intent")
                return
            session.current_intent = intent
            session.touch()

    def set_step_result(self, step_id: str, result: ToolResult) -> None:
        with self._lock:
            session = self.current_session
            if session is None:
                return
            session.step_results[step_id] = result
            session.touch()

    def get_step_result(self, step_id: str) -> ToolResult | None:
        with self._lock:
            session = self.current_session
            return session.step_results.get(step_id) if session else None

    def clear_session(self) -> None:
        with self._lock:
            session = self.current_session
            if session is None:
                return
            session.messages.clear()
            session.thoughts.clear()
            session.observations.clear()
            session.step_results.clear()
            session.current_plan = None
            session.current_intent = None
        logger.info("Session cleared: %s", session.session_id)

    def end_session(self) -> None:
        with self._lock:
            if self._current_session_id is None:
                return
            self._sessions.pop(self._current_session_id, None)
            logger.info("Session ended: %s", self._current_session_id)
            self._current_session_id = None

    def session_summary(self) -> dict[str, Any]:
        with self._lock:
            session = self.current_session
            if session is None:
                return {"active": False}
            return {
                "active": True,
                "session_id": session.session_id,
                "start_time": session.start_time,
                "last_activity": session.last_activity,
                "message_count": len(session.messages),
                "thought_count": len(session.thoughts),
                "observation_count": len(session.observations),
                "has_active_plan": session.current_plan is not None,
            }

    def cleanup(self, max_age: timedelta = timedelta(hours=24)) -> int:
        """Drop sessions idle for longer than ``max_age``."""
        cutoff = _now() - max_age
        with self._lock:
            stale = [sid for sid, s in self._sessions.items() if s.last_activity < cutoff]
            for sid in stale:
                del self._sessions[sid]
                if sid == self._current_session_id:
                    self._current_session_id = None
        if stale:
            logger.info("Cleaned %d old sessions", len(stale))
        return len(stale)

    # ── long-term patterns ───────────────────────────────────────────────────

    def record_success(self, query: str, intent: str, steps: list[str]) -> Pattern:
        return self._record(query, intent, steps, success=True)

    def record_failure(self, query: str, intent: str, steps: list[str]) -> Pattern:
        return self._record(query, intent, steps, success=False)

    def _record(self, query: str, intent: str, steps: list[str], success: bool) -> Pattern:
        pattern = Pattern(query=query, intent=intent, success=success, steps=list(steps))
        limit = self._config.max_patterns
        with self._lock:
            if success:
                patterns = self._long_term.successful_patterns
                patterns.append(pattern)
                self._long_term.successful_patterns = patterns[-limit:]
            else:
                patterns = self._long_term.failed_patterns
                patterns.append(pattern)
                self._long_term.failed_patterns = patterns[-limit:]
        logger.debug("%s pattern recorded for intent %s", "Success" if success else "Failure", intent)
        return pattern

    def find_similar_patterns(self, query: str, limit: int = 5) -> list[Pattern]:
        """Patterns sharing words with ``query``, best overlap first, then newest."""
        words = {w for w in query.lower().split() if w}
        if not words:
            return []

        with self._lock:
            candidates = self._long_term.successful_patterns + self._long_term.failed_patterns

        scored = []
        for seq, pattern in enumerate(candidates):
            pattern_words = set(pattern.query.lower().split())
            score = len(words & pattern_words)
            if score:
                scored.append((score, pattern.timestamp, seq, pattern))

        scored.sort(key=lambda item: item[:3], reverse=True)
        return [item[3] for item in scored[:limit]]

    def set_preference(self, key: str, value: Any) -> None:
        with self._lock:
            self._long_term.preferences[key] = value

    def get_preference(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._long_term.preferences.get(key, default)

    # ── persistence ──────────────────────────────────────────────────────────

    @property
    def persist_file(self) -> Path:
        return Path(self._config.persist_path) / LONG_TERM_FILE

    def persist(self) -> bool:
        """Write long-term memory to disk. Errors are logged, not raised."""
        try:
            with self._lock:
                payload = self._long_term.model_dump(mode="json")
            self.persist_file.parent.mkdir(parents=True, exist_ok=True)
            self.persist_file.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        except (OSError, PydanticSerializationError) as e:
            logger.error("Failed to persist memory: %s", e)
            return False
        logger.debug("Memory persisted to %s", self.persist_file)
        return True

    def restore(self) -> bool:
        """Load long-term memory from disk if present. Errors are logged, not raised."""
        if not self.persist_file.exists():
            logger.debug("No persisted memory found")
            return False
        try:
            data = json.loads(self.persist_file.read_text(encoding="utf-8"))
            long_term = LongTermMemory.model_validate(data)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError, ValidationError) as e:
            logger.error("Failed to restore memory: %s", e)
            return False

        with self._lock:
            self._long_term = long_term
        logger.info(
            "Memory restored: %d successful, %d failed patterns",
            len(long_term.successful_patterns),
            len(long_term.failed_patterns),
        )
        return True

    def stats(self) -> dict[str, int]:
        with self._lock:
            return {
                "active_sessions": len(self._sessions),
                "successful_patterns": len(self._long_term.successful_patterns),
                "failed_patterns": len(self._long_term.failed_patterns),
                "preferences": len(self._long_term.preferences),
            }
