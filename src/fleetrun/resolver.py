"""Task resolution: which tasks a command runs, in which order."""

import logging

from .exceptions import NoApplicableTaskError, UnknownTaskError
from .registry import TaskRegistry
from .selector import host_matches
from .types import Host, Task

logger = logging.getLogger(__name__)


def applies_to_any(task: Task, hosts: list[Host]) -> bool:
    """Check if a task has at least one applicable host.

    A local task without a selector runs without a host context, so it
    applies even when no host is selected.
    """
    if task.local and not task.selector:
        return True
    return any(host_matches(task.selector, host) for host in hosts)


def resolve(
    registry: TaskRegistry,
    command: str,
    hosts: list[Host],
    start_from: str | None = None,
    hooks_enabled: bool = True,
) -> list[Task]:
    """Resolve a command into the ordered list of tasks to execute.

    Args:
        registry: Registered tasks and hooks
        command: Name of the task the operator asked for
        hosts: Selected hosts
        start_from: Skip every task before the first task with this name
        hooks_enabled: Whether before/after hooks are included

    Returns:
        Tasks in execution order, each applicable to at least one host

    Raises:
        UnknownTaskError: If ``command`` or ``start_from`` is not registered
        NoApplicableTaskError: If no task is left to execute

    Example:
        >>> tasks = resolve(registry, "deploy", hosts, hooks_enabled=False)
        >>> [t.name for t in tasks]
        ['build', 'release']
    """
    if start_from and not registry.has(start_from):
        raise UnknownTaskError(start_from)

    tasks = registry.sequence(command, hooks_enabled=hooks_enabled)

    if start_from:
        names = [t.name for t in tasks]
        if start_from in names:
            tasks = tasks[names.index(start_from):]
        else:
            logger.info(f"Task {start_from} is not part of {command}, nothing to run")
            tasks = []

    applicable = []
    for task in tasks:
        if applies_to_any(task, hosts):
            applicable.append(task)
        else:
            logger.debug(f"Skipping {task.name}: no selected host matches '{task.selector}'")

    if not applicable:
        raise NoApplicableTaskError(command)

    return applicable
