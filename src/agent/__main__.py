"""CLI entry point for the agent."""

from __future__ import annotations

import asyncio
import sys

from openai import OpenAIError
from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from resilience.circuit_breaker import CircuitBreaker, CircuitBreakerManager, CircuitState
from tools.registry import create_default_registry

from .config import Settings, load_settings
from .core import Agent
from .events import EventBus
from .executor import Executor
from .llm import OpenAIChatClient
from .logging_setup import setup_logging
from .memory import AgentMemory
from .models import ActionPlan, AgentRunResult
from .planner import Planner
from .trace import ExecutionTrace

console = Console()


def build_agent(settings: Settings) -> tuple[Agent, ExecutionTrace]:
    """Wire the default collaborators from ``settings``."""
    events = EventBus()
    breakers = CircuitBreakerManager(on_state_change=_print_breaker_change)
    registry = create_default_registry()

    memory = AgentMemory(settings.memory)
    memory.restore()

    llm = OpenAIChatClient(
        settings.llm,
        breaker=breakers.get_breaker("llm") if settings.llm.use_circuit_breaker else None,
    )
    executor = Executor(registry, settings.executor, events=events, breakers=breakers)
    agent = Agent(
        llm,
        planner=Planner(llm, settings.planner, registry=registry),
        executor=executor,
        memory=memory,
        config=settings.agent,
        events=events,
        breakers=breakers,
    )
    trace = ExecutionTrace().attach(events)
    events.subscribe("plan:created", lambda event: _print_plan(event.payload["plan"]))
    return agent, trace


async def run_goal(goal: str, settings: Settings) -> AgentRunResult:
    agent, trace = build_agent(settings)
    console.print(Panel(f"[bold blue]Goal:[/] {goal}", title="🤖 Agent Started"))
    try:
        result = await agent.run(goal)
    finally:
        agent.memory.persist()

    _print_report(result, trace.summary())
    console.print(Panel(result.final_answer, title="Answer", border_style="green" if result.success else "red"))
    return result


def main() -> None:
    """Run the agent with a goal from command line args."""
    if len(sys.argv) < 2:
        console.print("[red]Usage: taskloop <goal>[/]")
        console.print('  Example: taskloop "Search for Python asyncio tutorials"')
        sys.exit(1)

    goal = " ".join(sys.argv[1:])
    try:
        settings = load_settings()
    except ValidationError as e:
        console.print(f"[red]Invalid configuration:[/]\n{e}")
        sys.exit(2)

    setup_logging(settings.log_level)

    try:
        result = asyncio.run(run_goal(goal, settings))
    except OpenAIError as e:
        console.print(f"[red]LLM client unavailable:[/] {e}")
        sys.exit(2)
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted[/]")
        sys.exit(130)

    sys.exit(0 if result.success else 1)


def _print_plan(plan: ActionPlan) -> None:
    table = Table(title="Execution Plan", show_lines=True)
    table.add_column("#", style="bold", width=4)
    table.add_column("Step", style="cyan")
    table.add_column("Tool", style="green")
    table.add_column("Depends on")

    for step in plan.sorted_steps():
        table.add_row(str(step.order), step.description or step.id, step.tool, ", ".join(step.depends_on))

    console.print(table)


def _print_report(result: AgentRunResult, trace_summary: dict) -> None:
    execution = result.execution_result
    status = "[green]✅ COMPLETED" if result.success else "[red]❌ INCOMPLETE"

    report = Table(title="Execution Report", show_lines=True)
    report.add_column("Metric", style="bold")
    report.add_column("Value")

    report.add_row("Goal", result.query)
    report.add_row("Intent", f"{result.intent.intent.value} ({result.intent.confidence:.2f})")
    report.add_row("Status", status)
    report.add_row("Duration", f"{result.total_time_ms / 1000:.1f}s")
    report.add_row("Iterations", str(result.iterations))
    report.add_row("Steps Completed", f"{execution.steps_completed}/{len(result.plan.steps)}")
    report.add_row("Steps Failed", str(execution.steps_failed))
    report.add_row("Retries", str(trace_summary.get("retries", 0)))
    report.add_row("Corrections", ", ".join(c.strategy.value for c in result.corrections) or "none")
    if execution.errors:
        report.add_row("Errors", "\n".join(execution.errors))

    console.print("\n")
    console.print(report)


def _print_breaker_change(breaker: CircuitBreaker, old: CircuitState, new: CircuitState) -> None:
    console.print(f"[yellow]⚡ Circuit '{breaker.name}': {old.value} → {new.value}[/]")


if __name__ == "__main__":
    main()
