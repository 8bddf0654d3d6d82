"""Progress reporting for fleetrun.

Reporters receive callbacks from the orchestrator as tasks start and hosts
complete. Text output goes through a Rich console; the JSON reporter writes
NDJSON events and also backs the ``--profile`` sink.
"""

import json
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, TextIO

from rich.console import Console
from rich.markup import escape

from .types import HostResult, RunOutcome, Status


@dataclass
class ProgressEvent:
    """A progress event during a run.

    Attributes:
        event_type: Type of event (run_start, task_start, host_complete, ...)
        task: Task name, or "*" for run-level events
        timestamp: When the event occurred
        details: Additional event-specific details
    """

    event_type: str
    task: str
    timestamp: str
    details: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        result = {
            "event": self.event_type,
            "task": self.task,
            "timestamp": self.timestamp,
        }
        result.update(self.details)
        return result

    def to_json(self) -> str:
        """Convert to JSON string (NDJSON format)."""
        return json.dumps(self.to_dict())


class ProgressReporter(ABC):
    """Base class for progress reporters."""

    @abstractmethod
    def on_run_start(self, tasks: list[str], total_hosts: int) -> None:
        """Called once before the first task starts."""

    @abstractmethod
    def on_task_start(self, task: str, hosts: list[str]) -> None:
        """Called when a task barrier opens."""

    @abstractmethod
    def on_host_complete(self, result: HostResult) -> None:
        """Called when one (task, host) execution finishes."""

    @abstractmethod
    def on_task_complete(self, task: str, results: list[HostResult]) -> None:
        """Called when every execution of a task has finished."""

    @abstractmethod
    def on_run_complete(self, outcome: RunOutcome, duration: float) -> None:
        """Called when the run ends, whatever its outcome."""


class JsonProgressReporter(ProgressReporter):
    """Reports progress as NDJSON (newline-delimited JSON) events."""

    def __init__(self, output: TextIO | None = None) -> None:
        """Initialize JSON progress reporter.

        Args:
            output: Output stream (defaults to sys.stderr to not pollute stdout)
        """
        self.output = output or sys.stderr

    def _emit(self, event_type: str, task: str, **details: Any) -> None:
        event = ProgressEvent(
            event_type=event_type,
            task=task,
            timestamp=datetime.now(timezone.utc).isoformat(),
            details=details,
        )
        print(event.to_json(), file=self.output, flush=True)

    def on_run_start(self, tasks: list[str], total_hosts: int) -> None:
        self._emit("run_start", "*", tasks=tasks, total_hosts=total_hosts)

    def on_task_start(self, task: str, hosts: list[str]) -> None:
        self._emit("task_start", task, hosts=hosts)

    def on_host_complete(self, result: HostResult) -> None:
        details = result.to_dict()
        details.pop("task")
        self._emit("host_complete", result.task, **details)

    def on_task_complete(self, task: str, results: list[HostResult]) -> None:
        failed = [r.host for r in results if not r.is_success]
        self._emit(
            "task_complete",
            task,
            total=len(results),
            failed=failed,
            duration=round(max((r.duration for r in results), default=0.0), 3),
        )

    def on_run_complete(self, outcome: RunOutcome, duration: float) -> None:
        self._emit(
            "run_complete",
            "*",
            status=outcome.status.value,
            exit_code=outcome.exit_code,
            executions=len(outcome.results),
            duration=round(duration, 3),
        )


class TextProgressReporter(ProgressReporter):
    """Reports progress as human-readable text."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console(stderr=True, highlight=False)

    def on_run_start(self, tasks: list[str], total_hosts: int) -> None:
        self.console.print(f"Running {len(tasks)} task(s) on {total_hosts} host(s)")

    def on_task_start(self, task: str, hosts: list[str]) -> None:
        self.console.print(f"[bold]task[/bold] {task}")

    def on_host_complete(self, result: HostResult) -> None:
        if result.status is Status.SUCCESS:
            self.console.print(f"  [green]✓[/green] {result.host} ({result.duration:.2f}s)")
        elif result.status is Status.CANCELLED:
            self.console.print(f"  [yellow]⊘[/yellow] {result.host} cancelled")
        else:
            error_msg = f": {escape(result.error)}" if result.error else ""
            self.console.print(f"  [red]✗[/red] {result.host} FAILED (exit {result.exit_code}){error_msg}")

    def on_task_complete(self, task: str, results: list[HostResult]) -> None:
        # Per-host lines already cover the barrier
        pass

    def on_run_complete(self, outcome: RunOutcome, duration: float) -> None:
        if outcome.is_success:
            self.console.print(f"[green]Completed[/green] in {duration:.2f}s")
        elif outcome.is_graceful_shutdown:
            self.console.print(f"[yellow]Stopped[/yellow] after {duration:.2f}s")
        else:
            failed = outcome.failed
            where = f" on {failed.host} in {failed.task}" if failed else ""
            self.console.print(f"[red]Failed[/red]{where} after {duration:.2f}s")


class NullProgressReporter(ProgressReporter):
    """No-op progress reporter that discards all events."""

    def on_run_start(self, tasks: list[str], total_hosts: int) -> None:
        pass

    def on_task_start(self, task: str, hosts: list[str]) -> None:
        pass

    def on_host_complete(self, result: HostResult) -> None:
        pass

    def on_task_complete(self, task: str, results: list[HostResult]) -> None:
        pass

    def on_run_complete(self, outcome: RunOutcome, duration: float) -> None:
        pass


class MultiProgressReporter(ProgressReporter):
    """Fans every event out to several reporters."""

    def __init__(self, reporters: list[ProgressReporter]) -> None:
        self.reporters = reporters

    def on_run_start(self, tasks: list[str], total_hosts: int) -> None:
        for reporter in self.reporters:
            reporter.on_run_start(tasks, total_hosts)

    def on_task_start(self, task: str, hosts: list[str]) -> None:
        for reporter in self.reporters:
            reporter.on_task_start(task, hosts)

    def on_host_complete(self, result: HostResult) -> None:
        for reporter in self.reporters:
            reporter.on_host_complete(result)

    def on_task_complete(self, task: str, results: list[HostResult]) -> None:
        for reporter in self.reporters:
            reporter.on_task_complete(task, results)

    def on_run_complete(self, outcome: RunOutcome, duration: float) -> None:
        for reporter in self.reporters:
            reporter.on_run_complete(outcome, duration)


def create_progress_reporter(
    output_format: str = "text",
    enabled: bool = True,
    output: TextIO | None = None,
) -> ProgressReporter:
    """Create a progress reporter.

    Args:
        output_format: "text" or "json"
        enabled: Return a NullProgressReporter when False
        output: Stream for JSON events (defaults to stderr)

    Returns:
        ProgressReporter instance
    """
    if not enabled:
        return NullProgressReporter()
    if output_format == "json":
        return JsonProgressReporter(output)
    return TextProgressReporter()
