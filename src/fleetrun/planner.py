"""Dry-run planning for fleetrun.

The planner records what an orchestrator run would do, task by task, using
the same host scheduling as a real run. Nothing is connected or executed.
"""

from dataclasses import dataclass, field
from typing import Any

from rich.console import Console
from rich.table import Table

from .orchestrator import schedule, target_name
from .types import LOCAL_HOST_NAME, Host, Task


@dataclass
class PlanStep:
    """One barrier of the plan: a task and the hosts it would run on."""

    task: str
    hosts: list[str]
    once: bool = False
    local: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "task": self.task,
            "hosts": self.hosts,
            "once": self.once,
            "local": self.local,
        }


@dataclass
class Plan:
    """Ordered description of a run.

    Attributes:
        hosts: Selected host aliases, in selection order
        steps: One entry per task, in execution order
    """

    hosts: list[str] = field(default_factory=list)
    steps: list[PlanStep] = field(default_factory=list)

    def executions(self) -> list[tuple[str, str]]:
        """The (task, host) pairs a run would execute, in order."""
        return [(step.task, host) for step in self.steps for host in step.hosts]

    def to_dict(self) -> dict[str, Any]:
        return {
            "plan": True,
            "hosts": self.hosts,
            "steps": [step.to_dict() for step in self.steps],
        }

    def to_table(self) -> Table:
        """Render as a table with one row per task and one column per host."""
        columns = list(self.hosts)
        if any(step.local for step in self.steps):
            columns.append(LOCAL_HOST_NAME)

        table = Table(show_lines=True)
        for column in columns:
            table.add_column(column)

        for step in self.steps:
            label = step.task + (" (once)" if step.once and not step.local else "")
            table.add_row(*[label if c in step.hosts else "-" for c in columns])

        return table


class Planner:
    """Collects plan steps as an orchestrator commits tasks.

    Example:
        >>> planner = Planner(hosts)
        >>> await orchestrator.run(tasks, hosts, planner=planner)
        >>> planner.render(console)
    """

    def __init__(self, hosts: list[Host]) -> None:
        self.plan = Plan(hosts=[h.alias for h in hosts])

    def commit(self, task: Task, targets: list[Host | None]) -> None:
        """Record that ``task`` runs on ``targets`` after the previous barrier."""
        self.plan.steps.append(
            PlanStep(
                task=task.name,
                hosts=[target_name(h) for h in targets],
                once=task.once,
                local=task.local,
            )
        )

    def render(self, console: Console | None = None) -> None:
        console = console or Console()
        console.print(self.plan.to_table())


def plan(tasks: list[Task], hosts: list[Host]) -> Plan:
    """Build the plan for running ``tasks`` on ``hosts``.

    Uses the orchestrator's scheduling, so ``plan(...).executions()`` lists
    exactly the (task, host) pairs a successful run would execute.
    """
    planner = Planner(hosts)
    for task in tasks:
        planner.commit(task, schedule(task, hosts))
    return planner.plan
