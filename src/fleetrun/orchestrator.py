"""Task execution orchestration for fleetrun.

Tasks run strictly in order with a barrier after each one. Within a task,
executions on the applicable hosts run concurrently, bounded by ``limit``.
An ordinary failure lets running siblings finish and stops the run at the
barrier; a graceful shutdown cancels everything still in flight.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import TYPE_CHECKING, Protocol

from .exceptions import GRACEFUL_SHUTDOWN_EXIT_CODE, ExecutionFailure, GracefulShutdownError
from .logging import get_logger
from .progress import NullProgressReporter, ProgressReporter
from .selector import host_matches
from .types import LOCAL_HOST_NAME, Host, HostResult, RunOutcome, Status, Task

if TYPE_CHECKING:
    from .planner import Planner

logger = get_logger(__name__)

# Exit status used when a host cannot be reached or a runner crashes.
CONNECTION_FAILURE_EXIT_CODE = 255


class RunState(str, Enum):
    """Lifecycle of one orchestrator run."""

    IDLE = "idle"
    CONNECTING = "connecting"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"
    GRACEFULLY_SHUTDOWN = "gracefully_shutdown"


class TaskExecutor(Protocol):
    """What the orchestrator needs from the runner layer."""

    async def connect(self, hosts: list[Host]) -> None: ...

    async def execute(self, task: Task, host: Host | None) -> HostResult: ...

    async def cleanup(self) -> None: ...


def schedule(task: Task, hosts: list[Host]) -> list[Host | None]:
    """Hosts a task executes on, in selection order.

    A ``local`` task runs exactly once with no host (``None``). A ``once``
    task runs on the first applicable host only. Every other task runs on
    each host its selector accepts.

    Example:
        >>> schedule(Task(name="build", once=True), [web1, web2])
        [web1]
        >>> schedule(Task(name="notify", local=True), [web1, web2])
        [None]
    """
    if task.local:
        return [None]
    applicable: list[Host | None] = [h for h in hosts if host_matches(task.selector, h)]
    if task.once:
        return applicable[:1]
    return applicable


def target_name(host: Host | None) -> str:
    return host.alias if host is not None else LOCAL_HOST_NAME


class Orchestrator:
    """Runs an ordered task list across a host set.

    Attributes:
        runner_factory: Collaborator that connects to hosts and executes tasks
        reporter: Receives task and host progress events
        state: Current ``RunState``
        task_index: Index of the task being executed, if any

    Example:
        >>> orchestrator = Orchestrator(RunnerFactory(config))
        >>> outcome = await orchestrator.run(tasks, hosts, limit=5)
        >>> outcome.exit_code
        0
    """

    def __init__(
        self,
        runner_factory: TaskExecutor,
        reporter: ProgressReporter | None = None,
    ) -> None:
        self.runner_factory = runner_factory
        self.reporter = reporter or NullProgressReporter()
        self.state = RunState.IDLE
        self.task_index: int | None = None
        self._shutdown_requested = False
        self._running = False
        self._inflight: set[asyncio.Task] = set()

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown_requested

    def shutdown(self) -> None:
        """Request a graceful shutdown of the current run.

        Cancels every in-flight execution; no further task starts. Safe to
        call from a signal handler running on the event loop.
        """
        if self._shutdown_requested:
            return
        self._shutdown_requested = True
        logger.warning("Graceful shutdown requested", inflight=len(self._inflight))
        current = asyncio.current_task()
        for inflight in list(self._inflight):
            if inflight is not current:
                inflight.cancel()

    async def run(
        self,
        tasks: list[Task],
        hosts: list[Host],
        limit: int | None = 0,
        planner: "Planner | None" = None,
    ) -> RunOutcome:
        """Execute tasks in order across hosts.

        Args:
            tasks: Resolved tasks in execution order
            hosts: Selected hosts in selection order
            limit: Maximum concurrent executions per task (0 or None: no limit)
            planner: When given, record the run in the planner instead of
                executing anything

        Returns:
            RunOutcome with every (task, host) result

        Raises:
            ValueError: If ``limit`` is negative
            RuntimeError: If this orchestrator is already running
        """
        if limit is not None and limit < 0:
            raise ValueError("limit must be a positive integer")

        if planner is not None:
            for task in tasks:
                planner.commit(task, schedule(task, hosts))
            return RunOutcome()

        if self._running:
            raise RuntimeError("Orchestrator is already running")
        self._running = True
        self._shutdown_requested = False
        self.task_index = None

        outcome = RunOutcome()
        start_time = time.perf_counter()
        self.reporter.on_run_start([t.name for t in tasks], len(hosts))

        try:
            self.state = RunState.CONNECTING
            connected = await self._connect(tasks, hosts, outcome)

            if connected:
                self.state = RunState.EXECUTING
                for index, task in enumerate(tasks):
                    if self._shutdown_requested:
                        break
                    self.task_index = index

                    with logger.performance(f"Task {task.name}", level=logging.DEBUG):
                        results = await self._run_task(task, hosts, limit or 0)
                    outcome.results.extend(results)

                    if self._shutdown_requested or any(r.is_cancelled for r in results):
                        break
                    if any(not r.is_success for r in results):
                        break
                    outcome.completed_tasks.append(task.name)

            self._finish(outcome)
        except asyncio.CancelledError:
            self.state = RunState.GRACEFULLY_SHUTDOWN
            raise
        finally:
            self._running = False
            try:
                await self.runner_factory.cleanup()
            finally:
                self.reporter.on_run_complete(outcome, time.perf_counter() - start_time)

        logger.info(
            "Run finished",
            state=self.state.value,
            executions=len(outcome.results),
            exit_code=outcome.exit_code,
        )
        return outcome

    async def _connect(self, tasks: list[Task], hosts: list[Host], outcome: RunOutcome) -> bool:
        """Open sessions to every host some task will run on."""
        targets: list[Host] = []
        for task in tasks:
            for host in schedule(task, hosts):
                if host is not None and host not in targets:
                    targets.append(host)
        if not targets:
            return True

        connecting = asyncio.ensure_future(self.runner_factory.connect(targets))
        self._inflight.add(connecting)
        try:
            await connecting
        except asyncio.CancelledError:
            if not self._shutdown_requested:
                raise
            return False
        except GracefulShutdownError as e:
            self._shutdown_requested = True
            outcome.results.append(HostResult.cancelled("connect", "*", str(e) or "Graceful shutdown"))
            return False
        except Exception as e:
            exit_code = e.exit_code if isinstance(e, ExecutionFailure) else CONNECTION_FAILURE_EXIT_CODE
            logger.error(f"Connection failed: {e}")
            outcome.results.append(HostResult.failure("connect", "*", str(e), exit_code=exit_code))
            return False
        finally:
            self._inflight.discard(connecting)
        return True

    async def _run_task(self, task: Task, hosts: list[Host], limit: int) -> list[HostResult]:
        """Run one task on its hosts and wait for the barrier.

        Returns:
            Results in selection order, one per scheduled host
        """
        targets = schedule(task, hosts)
        self.reporter.on_task_start(task.name, [target_name(h) for h in targets])
        logger.info(f"Task {task.name}", hosts=len(targets))

        semaphore = asyncio.Semaphore(limit if limit > 0 else max(len(targets), 1))
        results: list[HostResult | None] = [None] * len(targets)

        async def run_one(host: Host | None) -> HostResult:
            async with semaphore:
                if self._shutdown_requested:
                    return HostResult.cancelled(task.name, target_name(host))
                return await self._execute(task, host)

        pending = {asyncio.ensure_future(run_one(h)): i for i, h in enumerate(targets)}
        self._inflight.update(pending)
        waiting = set(pending)
        try:
            while waiting:
                done, waiting = await asyncio.wait(waiting, return_when=asyncio.FIRST_COMPLETED)
                for future in done:
                    index = pending[future]
                    if future.cancelled():
                        result = HostResult.cancelled(task.name, target_name(targets[index]))
                    else:
                        result = future.result()
                    results[index] = result
                    self.reporter.on_host_complete(result)

                    if result.is_cancelled:
                        self.shutdown()
                    elif not result.is_success:
                        logger.error(
                            f"Task {task.name} failed on {result.host}",
                            exit_code=result.exit_code,
                            step=result.step,
                        )
        except asyncio.CancelledError:
            for future in waiting:
                future.cancel()
            await asyncio.gather(*waiting, return_exceptions=True)
            raise
        finally:
            self._inflight.difference_update(pending)

        finished = [r for r in results if r is not None]
        self.reporter.on_task_complete(task.name, finished)
        return finished

    async def _execute(self, task: Task, host: Host | None) -> HostResult:
        """Execute on one host, turning every exception into a result."""
        name = target_name(host)
        try:
            return await self.runner_factory.execute(task, host)
        except asyncio.CancelledError:
            return HostResult.cancelled(task.name, name)
        except GracefulShutdownError as e:
            # Stop queued hosts before this execution releases its slot
            self.shutdown()
            return HostResult.cancelled(task.name, name, str(e) or "Graceful shutdown")
        except ExecutionFailure as e:
            return HostResult.failure(task.name, name, str(e), exit_code=e.exit_code)
        except Exception as e:
            logger.exception(f"Execution of {task.name} failed on {name}")
            return HostResult.failure(
                task.name, name, f"Execution failed: {e}", exit_code=CONNECTION_FAILURE_EXIT_CODE
            )

    def _finish(self, outcome: RunOutcome) -> None:
        """Aggregate results into the run status.

        Graceful shutdown wins over failures; otherwise the first failure in
        task order, then selection order, decides the exit status.
        """
        cancelled = next((r for r in outcome.results if r.is_cancelled), None)
        failed = next((r for r in outcome.results if r.status is Status.FAILURE), None)

        if self._shutdown_requested or cancelled is not None:
            outcome.status = Status.CANCELLED
            outcome.failed = cancelled
            outcome.exit_code = GRACEFUL_SHUTDOWN_EXIT_CODE
            self.state = RunState.GRACEFULLY_SHUTDOWN
        elif failed is not None:
            outcome.status = Status.FAILURE
            outcome.failed = failed
            outcome.exit_code = failed.exit_code
            self.state = RunState.FAILED
        else:
            self.state = RunState.COMPLETED
