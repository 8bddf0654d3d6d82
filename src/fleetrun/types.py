"""Type definitions for fleetrun.

Tasks and hosts are plain dataclasses built once per invocation by the
deploy-file loader. Results are tagged values (``Status``) so that success,
failure and cancellation can be checked explicitly at every task barrier.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .config import Configuration
from .exceptions import GRACEFUL_SHUTDOWN_EXIT_CODE

# Host name recorded for tasks that run without a host context.
LOCAL_HOST_NAME = "local"


class TaskRole(str, Enum):
    """Where a task sits relative to the task it is attached to."""

    PRIMARY = "primary"
    BEFORE = "before"
    AFTER = "after"


@dataclass(frozen=True)
class Task:
    """A named unit of work.

    Attributes:
        name: Unique task name (e.g., "deploy:release")
        steps: Shell command templates run in order on each host
        group: Child task names; a group task runs its children instead of steps
        selector: Host selector expression limiting where the task applies
        once: Run on the first applicable host only
        local: Run once without a host context
        hidden: Leave out of default task listings
        role: Whether the task is registered as a hook or a primary task
        description: One-line description shown in listings

    Example:
        >>> task = Task(name="build", steps=("make build",), once=True)
        >>> task.is_group
        False
        >>> task.is_hook
        False
    """

    name: str
    steps: tuple[str, ...] = ()
    group: tuple[str, ...] = ()
    selector: str | None = None
    once: bool = False
    local: bool = False
    hidden: bool = False
    role: TaskRole = TaskRole.PRIMARY
    description: str = ""

    @property
    def is_group(self) -> bool:
        return bool(self.group)

    @property
    def is_hook(self) -> bool:
        return self.role is not TaskRole.PRIMARY


@dataclass
class Host:
    """A deployment target with its own configuration layer.

    Attributes:
        alias: Unique identifier for the host (e.g., "web1")
        hostname: Address used to connect (defaults to the alias)
        port: SSH port number
        remote_user: User to connect as (empty for the SSH default)
        connection: "ssh" for remote hosts, "local" to run on this machine
        labels: Labels matched by selector expressions (e.g., {"stage": "prod"})
        config: Host configuration layered over the global configuration

    Example:
        >>> host = Host(alias="web1", hostname="10.0.0.1", labels={"stage": "prod"})
        >>> host.is_local
        False
    """

    alias: str
    hostname: str = ""
    port: int = 22
    remote_user: str = ""
    connection: str = "ssh"
    labels: dict[str, str] = field(default_factory=dict)
    config: Configuration = field(default_factory=Configuration)

    def __post_init__(self) -> None:
        if not self.hostname:
            self.hostname = self.alias

    @property
    def is_local(self) -> bool:
        """Check if this host runs commands on this machine (no SSH)."""
        return self.connection == "local"

    def __hash__(self) -> int:
        return hash(self.alias)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Host):
            return NotImplemented
        return self.alias == other.alias


class Status(str, Enum):
    """Outcome of a single execution or of a whole run."""

    SUCCESS = "success"
    FAILURE = "failure"
    CANCELLED = "cancelled"


@dataclass
class HostResult:
    """Result from executing one task on one host.

    Attributes:
        task: Task name
        host: Host alias, or ``LOCAL_HOST_NAME`` for local tasks
        status: Tagged outcome of the execution
        exit_code: 0 on success, the failing step's exit status otherwise
        step: Index of the failing step, if any
        command: Rendered command of the failing step, if any
        error: Diagnostic message for failures and cancellations
        output: Collected stdout of the executed steps
        duration: Wall time in seconds
    """

    task: str
    host: str
    status: Status = Status.SUCCESS
    exit_code: int = 0
    step: int | None = None
    command: str | None = None
    error: str | None = None
    output: str = ""
    duration: float = 0.0

    @property
    def is_success(self) -> bool:
        return self.status is Status.SUCCESS

    @property
    def is_cancelled(self) -> bool:
        return self.status is Status.CANCELLED

    @classmethod
    def success(cls, task: str, host: str, output: str = "", duration: float = 0.0) -> "HostResult":
        return cls(task=task, host=host, output=output, duration=duration)

    @classmethod
    def failure(
        cls,
        task: str,
        host: str,
        error: str,
        exit_code: int = 1,
        step: int | None = None,
        command: str | None = None,
        output: str = "",
        duration: float = 0.0,
    ) -> "HostResult":
        return cls(
            task=task,
            host=host,
            status=Status.FAILURE,
            exit_code=exit_code or 1,
            step=step,
            command=command,
            error=error,
            output=output,
            duration=duration,
        )

    @classmethod
    def cancelled(cls, task: str, host: str, error: str = "Interrupted") -> "HostResult":
        return cls(
            task=task,
            host=host,
            status=Status.CANCELLED,
            exit_code=GRACEFUL_SHUTDOWN_EXIT_CODE,
            error=error,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result: dict[str, Any] = {
            "task": self.task,
            "host": self.host,
            "status": self.status.value,
            "exit_code": self.exit_code,
            "duration": round(self.duration, 3),
        }
        if self.error:
            result["error"] = self.error
        if self.step is not None:
            result["step"] = self.step
            result["command"] = self.command
        return result


@dataclass
class RunOutcome:
    """Aggregate result of an orchestrator run.

    Attributes:
        status: Success, failure (first failure wins) or cancellation
        exit_code: Process exit status for this outcome
        results: Every (task, host) result in execution order
        failed: The result that decided a non-successful outcome
        completed_tasks: Names of tasks whose barrier was passed
    """

    status: Status = Status.SUCCESS
    exit_code: int = 0
    results: list[HostResult] = field(default_factory=list)
    failed: HostResult | None = None
    completed_tasks: list[str] = field(default_factory=list)

    @property
    def is_success(self) -> bool:
        return self.status is Status.SUCCESS

    @property
    def is_graceful_shutdown(self) -> bool:
        return self.status is Status.CANCELLED

    @property
    def is_failure(self) -> bool:
        return self.status is Status.FAILURE

    def executions(self) -> list[tuple[str, str]]:
        """The (task, host) pairs that ran, in recorded order."""
        return [(r.task, r.host) for r in self.results]
