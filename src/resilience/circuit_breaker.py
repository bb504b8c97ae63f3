"""Circuit breaker: isolates a chronically failing dependency.

States:
    CLOSED     normal operation, failures inside the rolling window are counted
    OPEN       calls are rejected with CircuitOpenError until the reset deadline
    HALF_OPEN  trial calls; enough consecutive successes close the circuit,
               any failure reopens it

Usage:
    breaker = CircuitBreaker("llm", CircuitBreakerConfig(failure_threshold=3))
    reply = await breaker.execute(lambda: client.chat(messages))
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

T = TypeVar("T")

StateListener = Callable[["CircuitBreaker", "CircuitState", "CircuitState"], None]


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half-open"


class CircuitBreakerConfig(BaseModel):
    """Thresholds for a breaker. Durations are in seconds."""

    failure_threshold: int = Field(default=5, ge=1)
    reset_timeout: float = Field(default=30.0, ge=0)
    success_threshold: int = Field(default=2, ge=1)
    failure_window: float = Field(default=60.0, gt=0)
    log_state_changes: bool = True


class CircuitStats(BaseModel):
    name: str
    state: CircuitState
    failures: int
    successes: int
    last_failure: datetime | None = None
    last_success: datetime | None = None
    state_changed_at: datetime
    opened_at: datetime | None = None
    total_requests: int = 0
    total_failures: int = 0
    total_successes: int = 0


class CircuitOpenError(Exception):
    """Raised instead of calling the wrapped function while the circuit is open."""

    def __init__(self, name: str, retry_after: float):
        self.circuit_name = name
        self.retry_after = max(retry_after, 0.0)
        self.reset_at = datetime.now(timezone.utc) + timedelta(seconds=self.retry_after)
        super().__init__(
            f"Circuit '{name}' is open. Retry after {self.retry_after:.1f}s"
        )


class CircuitBreaker:
    """Failure-isolation state machine around one class of external calls.

    State reads and writes happen under a lock and never across an await, so
    concurrent ``execute()`` calls on the same breaker observe a totally
    ordered sequence of transitions. The wrapped call itself runs unlocked.
    """

    def __init__(
        self,
        name: str,
        config: CircuitBreakerConfig | None = None,
        *,
        on_state_change: StateListener | None = None,
        on_open: Callable[[BaseException, int], None] | None = None,
        on_close: Callable[[int], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._on_state_change = on_state_change
        self._on_open = on_open
        self._on_close = on_close
        self._clock = clock
        self._lock = threading.RLock()

        self._state = CircuitState.CLOSED
        self._failures: list[float] = []
        self._half_open_successes = 0
        self._opened_at: float | None = None
        self._opened_at_wall: datetime | None = None
        self._state_changed_at = datetime.now(timezone.utc)
        self._total_requests = 0
        self._total_failures = 0
        self._total_successes = 0
        self._last_failure: datetime | None = None
        self._last_success: datetime | None = None

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._state

    def is_open(self) -> bool:
        return self.state is CircuitState.OPEN

    def is_closed(self) -> bool:
        return self.state is CircuitState.CLOSED

    def is_half_open(self) -> bool:
        return self.state is CircuitState.HALF_OPEN

    def retry_after(self) -> float:
        """Seconds until an open circuit will admit a trial call (0 otherwise)."""
        with self._lock:
            return self._remaining_open_time()

    async def execute(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Run ``fn`` under breaker protection."""
        with self._lock:
            self._total_requests += 1
            if self._state is CircuitState.OPEN:
                remaining = self._remaining_open_time()
                if remaining > 0:
                    raise CircuitOpenError(self.name, remaining)
                self._transition(CircuitState.HALF_OPEN)

        try:
            result = await fn()
        except Exception as exc:
            self._record_failure(exc)
            raise

        self._record_success()
        return result

    def force_open(self) -> None:
        with self._lock:
            self._transition(CircuitState.OPEN)

    def force_close(self) -> None:
        with self._lock:
            self._transition(CircuitState.CLOSED)

    def reset(self) -> None:
        """Return to a pristine closed breaker, statistics included."""
        with self._lock:
            self._state = CircuitState.CLOSED
            self._failures = []
            self._half_open_successes = 0
            self._opened_at = None
            self._opened_at_wall = None
            self._state_changed_at = datetime.now(timezone.utc)
            self._total_requests = 0
            self._total_failures = 0
            self._total_successes = 0
            self._last_failure = None
            self._last_success = None

    def dispose(self) -> None:
        with self._lock:
            self._on_state_change = None
            self._on_open = None
            self._on_close = None

    def stats(self) -> CircuitStats:
        with self._lock:
            return CircuitStats(
                name=self.name,
                state=self._state,
                failures=len(self._failures),
                successes=self._half_open_successes,
                last_failure=self._last_failure,
                last_success=self._last_success,
                state_changed_at=self._state_changed_at,
                opened_at=self._opened_at_wall,
                total_requests=self._total_requests,
                total_failures=self._total_failures,
                total_successes=self._total_successes,
            )

    # ── internals (callers hold the lock) ────────────────────────────────────

    def _remaining_open_time(self) -> float:
        if self._state is not CircuitState.OPEN or self._opened_at is None:
            return 0.0
        return max(self._opened_at + self.config.reset_timeout - self._clock(), 0.0)

    def _record_success(self) -> None:
        with self._lock:
            self._total_successes += 1
            self._last_success = datetime.now(timezone.utc)
            if self._state is CircuitState.HALF_OPEN:
                self._half_open_successes += 1
                if self._half_open_successes >= self.config.success_threshold:
                    self._transition(CircuitState.CLOSED)

    def _record_failure(self, exc: BaseException) -> None:
        with self._lock:
            now = self._clock()
            self._total_failures += 1
            self._last_failure = datetime.now(timezone.utc)
            self._failures.append(now)
            cutoff = now - self.config.failure_window
            self._failures = [t for t in self._failures if t > cutoff]

            if self._state is CircuitState.HALF_OPEN or (
                self._state is CircuitState.CLOSED
                and len(self._failures) >= self.config.failure_threshold
            ):
                count = len(self._failures)
                self._transition(CircuitState.OPEN)
                if self._on_open:
                    self._notify(self._on_open, exc, count)

    def _transition(self, new_state: CircuitState) -> None:
        old_state = self._state
        if old_state is new_state:
            return

        self._state = new_state
        self._state_changed_at = datetime.now(timezone.utc)
        closed_after = self._half_open_successes

        if new_state is CircuitState.OPEN:
            self._opened_at = self._clock()
            self._opened_at_wall = self._state_changed_at
            self._half_open_successes = 0
        elif new_state is CircuitState.HALF_OPEN:
            self._half_open_successes = 0
        else:
            self._failures = []
            self._half_open_successes = 0
            self._opened_at = None
            self._opened_at_wall = None

        if self.config.log_state_changes:
            logger.info(
                "Circuit breaker '%s' transitioned: %s -> %s",
                self.name,
                old_state.value,
                new_state.value,
            )

        if self._on_state_change:
            self._notify(self._on_state_change, self, old_state, new_state)
        if new_state is CircuitState.CLOSED and self._on_close:
            self._notify(self._on_close, closed_after)

    def _notify(self, callback: Callable[..., Any], *args: Any) -> None:
        try:
            callback(*args)
        except Exception:
            logger.exception("Circuit breaker '%s' listener failed", self.name)


# Preset thresholds per external-call class
PRESETS: dict[str, CircuitBreakerConfig] = {
    "llm": CircuitBreakerConfig(failure_threshold=3, reset_timeout=60.0, success_threshold=2),
    "network": CircuitBreakerConfig(failure_threshold=5, reset_timeout=15.0, success_threshold=2),
    "scraping": CircuitBreakerConfig(failure_threshold=5, reset_timeout=30.0, success_threshold=3),
}


class CircuitBreakerManager:
    """Keeps one breaker per name; get-or-create is atomic."""

    def __init__(self, on_state_change: StateListener | None = None):
        self._breakers: dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()
        self._on_state_change = on_state_change

    def get_breaker(
        self, name: str, config: CircuitBreakerConfig | None = None
    ) -> CircuitBreaker:
        with self._lock:
            breaker = self._breakers.get(name)
            if breaker is None:
                breaker = CircuitBreaker(
                    name,
                    config or PRESETS.get(name),
                    on_state_change=self._on_state_change,
                )
                self._breakers[name] = breaker
                logger.debug("Circuit breaker created: %s", name)
            return breaker

    def all_breakers(self) -> dict[str, CircuitBreaker]:
        with self._lock:
            return dict(self._breakers)

    def all_stats(self) -> list[CircuitStats]:
        return [b.stats() for b in self.all_breakers().values()]

    def reset_all(self) -> None:
        for breaker in self.all_breakers().values():
            breaker.reset()

    def dispose_all(self) -> None:
        with self._lock:
            breakers = list(self._breakers.values())
            self._breakers.clear()
        for breaker in breakers:
            breaker.dispose()


_default_manager: CircuitBreakerManager | None = None
_default_lock = threading.Lock()


def default_manager() -> CircuitBreakerManager:
    """Process-wide manager for callers that do not inject their own."""
    global _default_manager
    with _default_lock:
        if _default_manager is None:
            _default_manager = CircuitBreakerManager()
        return _default_manager


async def with_circuit_breaker(
    name: str,
    fn: Callable[[], Awaitable[T]],
    manager: CircuitBreakerManager | None = None,
) -> T:
    """Run ``fn`` through the named breaker."""
    return await (manager or default_manager()).get_breaker(name).execute(fn)
