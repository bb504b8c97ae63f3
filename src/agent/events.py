"""Fire-and-forget event bus for lifecycle notifications."""

from __future__ import annotations

import asyncio
import inspect
import logging
import threading
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Callable

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

WILDCARD = "*"


class Event(BaseModel):
    """A single emitted notification."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str
    payload: Any = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


Handler = Callable[[Event], Any]


class EventBus:
    """Publish/subscribe channel between components and observers.

    Emitting never blocks on, or fails because of, a subscriber: handler
    exceptions are logged and swallowed, and coroutine handlers are scheduled
    as tasks on the running loop instead of being awaited.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = defaultdict(list)
        self._lock = threading.Lock()
        self._pending: set[asyncio.Task] = set()

    def subscribe(self, name: str, handler: Handler) -> Callable[[], None]:
        """Register ``handler`` for ``name`` (or ``"*"`` for all events).

        Returns a callable that removes the subscription.
        """
        with self._lock:
            self._handlers[name].append(handler)

        def unsubscribe() -> None:
            with self._lock:
                handlers = self._handlers.get(name, [])
                if handler in handlers:
                    handlers.remove(handler)

        return unsubscribe

    def emit(self, name: str, payload: Any = None) -> Event:
        event = Event(name=name, payload=payload)
        with self._lock:
            handlers = list(self._handlers.get(name, ())) + list(
                self._handlers.get(WILDCARD, ())
            )

        for handler in handlers:
            try:
                outcome = handler(event)
            except Exception:
                logger.exception("Event handler for '%s' failed", name)
                continue
            if inspect.isawaitable(outcome):
                self._schedule(name, outcome)
        return event

    def listener_count(self, name: str | None = None) -> int:
        with self._lock:
            if name is None:
                return sum(len(h) for h in self._handlers.values())
            return len(self._handlers.get(name, ()))

    def clear(self) -> None:
        with self._lock:
            self._handlers.clear()

    def _schedule(self, name: str, awaitable: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
            task = asyncio.ensure_future(awaitable, loop=loop)
        except RuntimeError:
            logger.warning("No running loop for async handler of '%s'", name)
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return
        self._pending.add(task)
        task.add_done_callback(self._finished)

    def _finished(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Async event handler failed: %s", task.exception())
