"""Task runner interfaces and implementations for fleetrun.

Runners carry out the steps of one task on one host. The orchestrator only
talks to a ``RunnerFactory``, which picks a local or SSH runner per host and
owns every connection for the duration of a run.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Any

import asyncssh
from asyncssh.connection import SSHClientConnection

from .config import Configuration
from .exceptions import ConfigurationError, ExecutionFailure
from .logging import TRACE
from .types import LOCAL_HOST_NAME, Host, HostResult, Task

logger = logging.getLogger(__name__)


class TaskRunner(ABC):
    """Abstract base class for task execution strategies.

    Follows the Strategy pattern: the factory selects an implementation
    per host at runtime, and both share the same step loop.
    """

    async def connect(self, host: Host) -> None:
        """Open a session to the host ahead of the first task."""

    @abstractmethod
    async def run_command(self, host: Host | None, command: str) -> tuple[int, str]:
        """Run one rendered command.

        Returns:
            Tuple of (exit status, combined output)
        """

    @abstractmethod
    async def cleanup(self) -> None:
        """Release every resource held by this runner."""

    async def execute(
        self,
        task: Task,
        host: Host | None,
        config: Configuration,
    ) -> HostResult:
        """Run every step of a task, stopping at the first failing one.

        Args:
            task: Task to execute
            host: Target host, or None for local tasks
            config: Configuration used to render step templates

        Returns:
            HostResult for this (task, host) pair
        """
        host_name = host.alias if host else LOCAL_HOST_NAME
        start = time.perf_counter()
        output: list[str] = []

        for index, step in enumerate(task.steps):
            try:
                command = config.render(step)
            except ConfigurationError as e:
                return HostResult.failure(
                    task.name,
                    host_name,
                    error=str(e),
                    step=index,
                    command=step,
                    duration=time.perf_counter() - start,
                )

            logger.log(TRACE, f"[{host_name}] run {command}")
            exit_code, stdout = await self.run_command(host, command)
            output.append(stdout)

            if exit_code != 0:
                return HostResult.failure(
                    task.name,
                    host_name,
                    error=f"Command failed with exit code {exit_code}: {command}",
                    exit_code=exit_code,
                    step=index,
                    command=command,
                    output="".join(output),
                    duration=time.perf_counter() - start,
                )

        return HostResult.success(
            task.name,
            host_name,
            output="".join(output),
            duration=time.perf_counter() - start,
        )


class LocalTaskRunner(TaskRunner):
    """Runner for commands on this machine.

    Used for ``local`` tasks and for hosts declared with
    ``connection: local``.
    """

    async def run_command(self, host: Host | None, command: str) -> tuple[int, str]:
        proc = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
        try:
            stdout, _ = await proc.communicate()
        except asyncio.CancelledError:
            if proc.returncode is None:
                proc.kill()
            raise
        return proc.returncode or 0, stdout.decode(errors="replace")

    async def cleanup(self) -> None:
        """Local runner has no persistent resources."""


class SSHTaskRunner(TaskRunner):
    """Runner for remote hosts over pooled asyncssh connections.

    One connection is opened per host and reused by every task of the run.

    Example:
        >>> runner = SSHTaskRunner()
        >>> await runner.connect(host)
        >>> result = await runner.execute(task, host, host.config)
        >>> await runner.cleanup()
    """

    def __init__(self, connect_timeout: float = 30.0) -> None:
        self.connect_timeout = connect_timeout
        self._connections: dict[str, SSHClientConnection] = {}
        self._lock = asyncio.Lock()
        self._host_locks: dict[str, asyncio.Lock] = {}

    def connect_options(self, host: Host) -> dict[str, Any]:
        """Build asyncssh.connect() kwargs for a host."""
        options: dict[str, Any] = {
            "host": host.hostname,
            "port": host.port,
            "connect_timeout": self.connect_timeout,
        }
        if host.remote_user:
            options["username"] = host.remote_user
        identity_file = host.config.get("identity_file")
        if identity_file:
            options["client_keys"] = [identity_file]
        if host.config.has("known_hosts"):
            # An empty value disables host key checking
            options["known_hosts"] = host.config.get("known_hosts") or None
        return options

    async def connect(self, host: Host) -> None:
        await self._get_connection(host)

    async def _get_connection(self, host: Host) -> SSHClientConnection:
        async with self._lock:
            conn = self._connections.get(host.alias)
            if conn is not None:
                return conn
            host_lock = self._host_locks.setdefault(host.alias, asyncio.Lock())

        # Only connects to the same host wait on each other
        async with host_lock:
            conn = self._connections.get(host.alias)
            if conn is None:
                logger.debug(f"Connecting to {host.alias} ({host.hostname}:{host.port})")
                try:
                    conn = await asyncssh.connect(**self.connect_options(host))
                except (OSError, asyncssh.Error) as e:
                    raise ExecutionFailure(
                        f"Cannot connect to {host.alias}: {e}", exit_code=255
                    ) from e
                self._connections[host.alias] = conn
            return conn

    async def run_command(self, host: Host | None, command: str) -> tuple[int, str]:
        if host is None:
            raise ValueError("SSH runner needs a host")
        conn = await self._get_connection(host)
        result = await conn.run(command, check=False, stderr=asyncssh.STDOUT)
        exit_code = result.exit_status if result.exit_status is not None else 255
        stdout = result.stdout or ""
        if isinstance(stdout, bytes):
            stdout = stdout.decode(errors="replace")
        return exit_code, stdout

    async def cleanup(self) -> None:
        """Close every pooled connection."""
        connections = list(self._connections.values())
        self._connections.clear()
        for conn in connections:
            conn.close()
        for conn in connections:
            await conn.wait_closed()


class RunnerFactory:
    """Picks the runner for each host and owns their resources.

    This is the "run this task on this host" collaborator the orchestrator
    depends on: ``connect(hosts)``, ``execute(task, host)``, ``cleanup()``.

    Example:
        >>> factory = RunnerFactory(project.config)
        >>> await factory.connect(hosts)
        >>> result = await factory.execute(task, hosts[0])
        >>> await factory.cleanup()
    """

    def __init__(self, config: Configuration | None = None) -> None:
        self.config = config or Configuration()
        self._local_runner: LocalTaskRunner | None = None
        self._ssh_runner: SSHTaskRunner | None = None

    def create_runner(self, host: Host | None) -> TaskRunner:
        """Create the appropriate runner for a host (None for local tasks)."""
        if host is None or host.is_local:
            if self._local_runner is None:
                self._local_runner = LocalTaskRunner()
            return self._local_runner
        if self._ssh_runner is None:
            self._ssh_runner = SSHTaskRunner()
        return self._ssh_runner

    async def connect(self, hosts: list[Host]) -> None:
        """Open a session to every host before the first task.

        Hosts are connected concurrently. When one connection fails the
        others are cancelled before the error propagates.

        Raises:
            ExecutionFailure: If a host cannot be reached
        """
        connects = [
            asyncio.ensure_future(self.create_runner(h).connect(h)) for h in hosts
        ]
        try:
            await asyncio.gather(*connects)
        except BaseException:
            for future in connects:
                future.cancel()
            await asyncio.gather(*connects, return_exceptions=True)
            raise

    async def execute(self, task: Task, host: Host | None) -> HostResult:
        config = host.config if host is not None else self.config
        return await self.create_runner(host).execute(task, host, config)

    async def cleanup(self) -> None:
        """Clean up all created runners."""
        if self._local_runner:
            await self._local_runner.cleanup()
        if self._ssh_runner:
            await self._ssh_runner.cleanup()
