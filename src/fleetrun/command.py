"""Command frontend: wires selection, resolution, execution and recovery.

One ``CommandRunner`` handles one invocation. It owns the orchestrator for
that invocation and maps the run outcome to a process exit code.
"""

from dataclasses import dataclass, field

from .exceptions import FleetrunError
from .logging import get_logger
from .orchestrator import Orchestrator, TaskExecutor
from .planner import Plan, Planner
from .progress import NullProgressReporter, ProgressReporter
from .recipe import Project
from .resolver import resolve
from .runners import RunnerFactory
from .selector import apply_overrides, select_hosts
from .types import Host, RunOutcome
from .typos import Diagnostic, validate_config

# Process exit code for a run stopped by a graceful shutdown.
SHUTDOWN_EXIT_CODE = 1


@dataclass
class RunOptions:
    """Per-invocation options.

    Attributes:
        selector: Host selector expression (empty selects every host)
        overrides: ``key=value`` configuration overrides for selected hosts
        limit: Concurrent executions per task (0 for no limit)
        hooks_enabled: Include before/after hooks
        plan: Only build the plan, execute nothing
        start_from: Skip every task before this one
    """

    selector: str | None = None
    overrides: list[str] = field(default_factory=list)
    limit: int = 0
    hooks_enabled: bool = True
    plan: bool = False
    start_from: str | None = None


@dataclass
class CommandResult:
    """What a command invocation produced.

    Attributes:
        exit_code: Process exit code
        hosts: Selected hosts
        outcome: Outcome of the main run (None in plan mode)
        plan: The plan (plan mode only)
        recovery: Outcome of the fail task run, if one ran
        diagnostics: Configuration warnings found before the run
    """

    exit_code: int
    hosts: list[Host] = field(default_factory=list)
    outcome: RunOutcome | None = None
    plan: Plan | None = None
    recovery: RunOutcome | None = None
    diagnostics: list[Diagnostic] = field(default_factory=list)


class CommandRunner:
    """Runs a command of a project.

    Example:
        >>> runner = CommandRunner(project)
        >>> result = await runner.run("deploy", RunOptions(selector="stage=prod", limit=5))
        >>> result.exit_code
        0
    """

    def __init__(
        self,
        project: Project,
        runner_factory: TaskExecutor | None = None,
        reporter: ProgressReporter | None = None,
    ) -> None:
        self.project = project
        self.orchestrator = Orchestrator(
            runner_factory or RunnerFactory(project.config),
            reporter or NullProgressReporter(),
        )

    def interrupt(self) -> None:
        """Operator interrupt: shut the current run down gracefully."""
        self.orchestrator.shutdown()

    async def run(self, command: str, options: RunOptions) -> CommandResult:
        """Run a command.

        Raises:
            SelectionError: If no host matches and the command needs hosts
            UnknownTaskError: If the command or ``start_from`` is unknown
            NoApplicableTaskError: If no task applies to the selected hosts
            ConfigurationError: If an override is malformed
        """
        log = get_logger(__name__, command=command)
        registry = self.project.registry

        hosts = select_hosts(
            self.project.inventory,
            options.selector,
            required=registry.requires_hosts(command),
        )
        apply_overrides(hosts, options.overrides)

        tasks = resolve(
            registry,
            command,
            hosts,
            start_from=options.start_from,
            hooks_enabled=options.hooks_enabled,
        )

        if options.plan:
            planner = Planner(hosts)
            await self.orchestrator.run(tasks, hosts, options.limit, planner=planner)
            return CommandResult(exit_code=0, hosts=hosts, plan=planner.plan)

        diagnostics = validate_config(self.project.config, hosts, self.project.source)
        for diagnostic in diagnostics:
            log.warning(diagnostic.message)

        outcome = await self.orchestrator.run(tasks, hosts, options.limit)
        result = CommandResult(
            exit_code=outcome.exit_code,
            hosts=hosts,
            outcome=outcome,
            diagnostics=diagnostics,
        )

        if outcome.is_success:
            result.exit_code = 0
        elif outcome.is_graceful_shutdown:
            result.exit_code = SHUTDOWN_EXIT_CODE
        elif self.orchestrator.shutdown_requested:
            # Interrupted after the failure, while the run was cleaning up
            log.warning("Shutdown requested, fail task not run")
        else:
            result.recovery = await self._recover(command, hosts, options)

        return result

    async def _recover(
        self,
        command: str,
        hosts: list[Host],
        options: RunOptions,
    ) -> RunOutcome | None:
        """Run the fail task registered for a failed command, once.

        The fail task's own outcome is only logged; it never changes the
        exit code of the failed command and never triggers recovery itself.
        """
        failures = self.project.failures
        if not failures.has(command):
            return None

        recovery_task = failures.get(command)
        log = get_logger(__name__, command=command, fail_task=recovery_task)
        log.warning("Running fail task")
        try:
            tasks = resolve(
                self.project.registry,
                recovery_task,
                hosts,
                hooks_enabled=options.hooks_enabled,
            )
        except FleetrunError as e:
            log.error(f"Fail task not run: {e}")
            return None

        recovery = await self.orchestrator.run(tasks, hosts, options.limit)
        if not recovery.is_success:
            log.error("Fail task did not succeed", exit_code=recovery.exit_code)
        return recovery
