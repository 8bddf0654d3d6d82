"""Task and fail-task registries.

Both registries are filled once by the deploy-file loader and then treated
as read-only by resolution and execution.
"""

import logging
from dataclasses import replace

from .exceptions import ConfigurationError, UnknownTaskError
from .selector import combine_selectors
from .types import Task, TaskRole

logger = logging.getLogger(__name__)


class TaskRegistry:
    """Mapping of task name to Task, plus before/after hooks.

    Example:
        >>> registry = TaskRegistry()
        >>> registry.add(Task(name="build", steps=("make",)))
        >>> registry.add(Task(name="notify", steps=("echo built",)))
        >>> registry.after("build", "notify")
        >>> [t.name for t in registry.sequence("build")]
        ['build', 'notify']
        >>> [t.name for t in registry.sequence("build", hooks_enabled=False)]
        ['build']
    """

    def __init__(self) -> None:
        self._tasks: dict[str, Task] = {}
        self._before: dict[str, list[str]] = {}
        self._after: dict[str, list[str]] = {}

    def add(self, task: Task) -> None:
        """Register a task, replacing any task with the same name."""
        self._tasks[task.name] = task

    def has(self, name: str) -> bool:
        return name in self._tasks

    def get(self, name: str) -> Task:
        """Get a task by name.

        Raises:
            UnknownTaskError: If no task has this name
        """
        try:
            return self._tasks[name]
        except KeyError:
            raise UnknownTaskError(name) from None

    def list_tasks(self, include_hidden: bool = False) -> list[Task]:
        """Registered tasks in registration order."""
        return [t for t in self._tasks.values() if include_hidden or not t.hidden]

    def before(self, target: str, hook: str) -> None:
        """Run ``hook`` every time before ``target``."""
        self._add_hook(self._before, target, hook, TaskRole.BEFORE)

    def after(self, target: str, hook: str) -> None:
        """Run ``hook`` every time after ``target``."""
        self._add_hook(self._after, target, hook, TaskRole.AFTER)

    def _add_hook(
        self,
        hooks: dict[str, list[str]],
        target: str,
        hook: str,
        role: TaskRole,
    ) -> None:
        self.get(target)
        hook_task = self.get(hook)
        if not hook_task.is_hook:
            self._tasks[hook] = replace(hook_task, role=role)
        hooks.setdefault(target, []).append(hook)

    def sequence(self, command: str, hooks_enabled: bool = True) -> list[Task]:
        """Flatten a command into the ordered list of tasks it runs.

        Group tasks expand into their children; before and after hooks are
        interleaved around the task they are attached to. A group's
        ``select``, ``once`` and ``local`` carry over to everything expanded
        inside it, so a child runs only where both it and the group apply.
        With hooks disabled, hooks are not expanded and hook-role tasks are
        dropped. The command itself is always kept.

        Raises:
            UnknownTaskError: If the command or a referenced task is unknown
            ConfigurationError: If group or hook definitions form a cycle
        """
        tasks = self._expand(command, hooks_enabled, [])
        if hooks_enabled:
            return tasks
        return [t for t in tasks if not t.is_hook or t.name == command]

    def _expand(
        self,
        name: str,
        hooks_enabled: bool,
        path: list[str],
        selector: str | None = None,
        once: bool = False,
        local: bool = False,
    ) -> list[Task]:
        if name in path:
            cycle = " -> ".join(path + [name])
            raise ConfigurationError(f"Circular task definition: {cycle}")
        task = self.get(name)
        path = path + [name]

        # Hooks of a task share the constraints the task itself is expanded under
        tasks: list[Task] = []
        if hooks_enabled:
            for hook in self._before.get(name, []):
                tasks.extend(self._expand(hook, hooks_enabled, path, selector, once, local))

        if task.is_group:
            inner_selector = combine_selectors(selector, task.selector)
            for child in task.group:
                tasks.extend(
                    self._expand(
                        child,
                        hooks_enabled,
                        path,
                        inner_selector,
                        once or task.once,
                        local or task.local,
                    )
                )
        else:
            tasks.append(_narrow(task, selector, once, local))

        if hooks_enabled:
            for hook in self._after.get(name, []):
                tasks.extend(self._expand(hook, hooks_enabled, path, selector, once, local))

        return tasks

    def requires_hosts(self, command: str) -> bool:
        """Check if any task of the command needs a remote host."""
        return any(not t.local for t in self.sequence(command))

    def __len__(self) -> int:
        return len(self._tasks)


def _narrow(task: Task, selector: str | None, once: bool, local: bool) -> Task:
    """Apply the constraints of the groups a task is reached through."""
    if not selector and not once and not local:
        return task
    return replace(
        task,
        selector=combine_selectors(task.selector, selector),
        once=task.once or once,
        local=task.local or local,
    )


class FailureRegistry:
    """Maps a command name to the task that runs when the command fails.

    Example:
        >>> failures = FailureRegistry()
        >>> failures.register("deploy", "deploy:unlock")
        >>> failures.register("deploy", "rollback")
        >>> failures.get("deploy")
        'rollback'
    """

    def __init__(self) -> None:
        self._entries: dict[str, str] = {}

    def register(self, command: str, recovery_task: str) -> None:
        """Register the recovery task for a command; the last one wins."""
        if command in self._entries:
            logger.debug(f"Replacing fail task for {command}: {self._entries[command]} -> {recovery_task}")
        self._entries[command] = recovery_task

    def has(self, command: str) -> bool:
        return command in self._entries

    def get(self, command: str) -> str:
        """Get the recovery task for a command.

        Raises:
            KeyError: If no recovery task is registered for the command
        """
        return self._entries[command]
