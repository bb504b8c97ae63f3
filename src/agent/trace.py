"""Execution trace: records lifecycle events for post-hoc review."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Callable

from pydantic import BaseModel

from .events import WILDCARD, Event, EventBus

logger = logging.getLogger(__name__)


class TraceEntry(BaseModel):
    """One recorded event, flattened for display and export."""

    timestamp: datetime
    event: str
    plan_id: str | None = None
    step_id: str | None = None
    tool: str | None = None
    success: bool | None = None
    error: str | None = None
    detail: str = ""


class ExecutionTrace:
    """Event-bus subscriber that keeps an inspectable record of a run.

    Entries are held in memory and, when ``log_file`` is given, appended to
    it as JSON Lines.
    """

    def __init__(self, log_file: str | None = None):
        self._entries: list[TraceEntry] = []
        self._log_file = Path(log_file) if log_file else None
        self._unsubscribe: list[Callable[[], None]] = []

        if self._log_file:
            self._log_file.parent.mkdir(parents=True, exist_ok=True)

    def attach(self, *buses: EventBus) -> ExecutionTrace:
        """Start recording every event emitted on ``buses``."""
        for bus in buses:
            self._unsubscribe.append(bus.subscribe(WILDCARD, self.record))
        return self

    def detach(self) -> None:
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe.clear()

    def record(self, event: Event) -> TraceEntry:
        entry = _to_entry(event)
        self._entries.append(entry)
        logger.debug("TRACE: %s | step=%s | tool=%s", entry.event, entry.step_id, entry.tool)

        if self._log_file:
            self._append_to_file(entry)
        return entry

    def get_entries(
        self,
        event: str | None = None,
        step_id: str | None = None,
        since: datetime | None = None,
    ) -> list[TraceEntry]:
        """Query trace entries with optional filters."""
        entries = self._entries

        if event:
            entries = [e for e in entries if e.event == event]

        if step_id:
            entries = [e for e in entries if e.step_id == step_id]

        if since:
            entries = [e for e in entries if e.timestamp >= since]

        return entries

    def summary(self) -> dict[str, Any]:
        by_event: dict[str, int] = {}
        by_tool: dict[str, int] = {}
        failures = 0
        retries = 0

        for entry in self._entries:
            by_event[entry.event] = by_event.get(entry.event, 0) + 1
            if entry.tool and entry.event in ("step:complete", "step:error"):
                by_tool[entry.tool] = by_tool.get(entry.tool, 0) + 1
            if entry.event == "step:error":
                failures += 1
            elif entry.event == "step:retry":
                retries += 1

        return {
            "total_entries": len(self._entries),
            "failures": failures,
            "retries": retries,
            "by_event": by_event,
            "by_tool": by_tool,
        }

    def clear(self) -> None:
        self._entries.clear()

    def export_json(self) -> str:
        """Export the full trace as JSON."""
        return json.dumps([e.model_dump(mode="json") for e in self._entries], indent=2)

    def _append_to_file(self, entry: TraceEntry) -> None:
        try:
            with open(self._log_file, "a", encoding="utf-8") as f:  # type: ignore[arg-type]
                f.write(entry.model_dump_json() + "\n")
        except OSError as e:
            logger.error("Failed to write trace log: %s", e)


def _to_entry(event: Event) -> TraceEntry:
    payload = event.payload if isinstance(event.payload, dict) else {}
    step = payload.get("step")
    result = payload.get("result")
    plan = payload.get("plan")

    entry = TraceEntry(timestamp=event.timestamp, event=event.name)
    if step is not None:
        entry.step_id = getattr(step, "id", None)
        entry.tool = getattr(step, "tool", None)
    if plan is not None:
        entry.plan_id = getattr(plan, "id", None)
    elif payload.get("plan_id"):
        entry.plan_id = str(payload["plan_id"])

    if event.name == "step:complete":
        entry.success = True
    elif event.name == "step:error":
        entry.success = False
        entry.error = str(payload.get("error"))
    elif event.name == "step:retry":
        entry.detail = f"attempt {payload.get('attempt')}: {payload.get('error')}"
    elif event.name == "plan:complete" and result is not None:
        entry.plan_id = getattr(result, "plan_id", None)
        entry.success = getattr(result, "success", None)
    elif event.name == "state:change":
        entry.detail = f"{_value(payload.get('from'))} -> {_value(payload.get('to'))}"
    elif event.name == "correction":
        correction = payload.get("correction")
        entry.step_id = getattr(correction, "failed_step", None)
        entry.detail = _value(getattr(correction, "strategy", ""))
    elif event.name in ("goal:achieved", "goal:failed"):
        entry.success = event.name == "goal:achieved"
        if payload.get("error"):
            entry.error = str(payload["error"])
    return entry


def _value(item: Any) -> str:
    return str(getattr(item, "value", item))
