"""Exceptions raised by fleetrun.

Resolution errors (selection, unknown tasks, empty task lists) are raised
before any connection is opened. Execution problems on a single host are
reported as ``HostResult`` values instead, so that they never unwind across
the per-host concurrency boundary.
"""

# Exit status reported by a run that ended in a graceful shutdown.
GRACEFUL_SHUTDOWN_EXIT_CODE = 42


class FleetrunError(Exception):
    """Base class for all fleetrun errors."""


class ConfigurationError(FleetrunError):
    """Raised when the deploy file or a configuration value is invalid."""


class SelectionError(FleetrunError):
    """Raised when selection criteria match no hosts."""

    def __init__(self, criteria: str | None) -> None:
        self.criteria = criteria
        if criteria:
            message = f"No host selected for '{criteria}'"
        else:
            message = "No host selected"
        super().__init__(message)


class UnknownTaskError(FleetrunError):
    """Raised when a task name is not registered."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Task {name} does not exist.")
        self.name = name


class NoApplicableTaskError(FleetrunError):
    """Raised when task resolution leaves nothing to execute."""

    def __init__(self, command: str) -> None:
        super().__init__(
            "No task will be executed, because the selected hosts "
            "do not meet the conditions of the tasks"
        )
        self.command = command


class ExecutionFailure(FleetrunError):
    """A task failed on a host.

    Runners may raise this to abort a task with a specific exit status;
    the orchestrator turns it into a failed ``HostResult``.
    """

    def __init__(self, message: str, exit_code: int = 1) -> None:
        super().__init__(message)
        self.exit_code = exit_code


class GracefulShutdownError(FleetrunError):
    """Raised inside a task to stop the whole run without triggering recovery."""

    exit_code = GRACEFUL_SHUTDOWN_EXIT_CODE
