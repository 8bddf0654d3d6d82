"""Deploy file loading for fleetrun.

A deploy file is a YAML document with global configuration, hosts, tasks,
hooks and fail tasks. Loading it produces a ``Project``: the explicit
context every command works with for one invocation.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .config import Configuration
from .exceptions import ConfigurationError, UnknownTaskError
from .inventory import Inventory, load_inventory
from .registry import FailureRegistry, TaskRegistry
from .types import Task

logger = logging.getLogger(__name__)

DEFAULT_DEPLOY_FILE = "deploy.yaml"

TASK_FIELDS = {"desc", "run", "group", "select", "once", "local", "hidden"}


@dataclass
class Project:
    """Everything loaded from one deploy file.

    Attributes:
        config: Global configuration
        inventory: Declared hosts
        registry: Tasks and hooks
        failures: Fail task per command
        source: Raw deploy file text, used to locate configuration keys
        path: Path the project was loaded from
    """

    config: Configuration = field(default_factory=Configuration)
    inventory: Inventory = field(default_factory=Inventory)
    registry: TaskRegistry = field(default_factory=TaskRegistry)
    failures: FailureRegistry = field(default_factory=FailureRegistry)
    source: str | None = None
    path: Path | None = None


def load_project(path: str | Path) -> Project:
    """Load a deploy file.

    Args:
        path: Path to the YAML deploy file

    Returns:
        Project with configuration, hosts, tasks, hooks and fail tasks

    Raises:
        ConfigurationError: If the file is missing, is not valid YAML, or
            references unknown tasks

    Example:
        >>> project = load_project("deploy.yaml")
        >>> project.registry.has("deploy")
        True
    """
    deploy_file = Path(path)
    try:
        source = deploy_file.read_text()
    except OSError as e:
        raise ConfigurationError(f"Cannot read deploy file {deploy_file}: {e}") from e

    try:
        data = yaml.safe_load(source)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {deploy_file}: {e}") from e

    project = load_project_data(data or {})
    project.source = source
    project.path = deploy_file
    logger.debug(
        f"Loaded {deploy_file}: {len(project.registry)} task(s), "
        f"{len(project.inventory)} host(s)"
    )
    return project


def load_project_data(data: dict[str, Any]) -> Project:
    """Build a project from an already parsed deploy file.

    Note:
        Expected structure:

            config:
              application: shop
              deploy_path: /var/www/{{ application }}
            hosts:
              web1: {hostname: 10.0.0.1, labels: {stage: prod}}
            tasks:
              build: {run: make build, once: true}
              release: {run: ["ln -sfn {{ deploy_path }}/next {{ deploy_path }}/current"]}
              deploy: [build, release]
            before: {release: [notify]}
            after: {deploy: [cleanup]}
            fail: {deploy: rollback}
    """
    if not isinstance(data, dict):
        raise ConfigurationError("Deploy file must be a YAML mapping")

    config_data = data.get("config") or {}
    if not isinstance(config_data, dict):
        raise ConfigurationError("'config' must be a mapping")
    config = Configuration(config_data)

    project = Project(
        config=config,
        inventory=load_inventory(data.get("hosts"), config),
    )

    tasks_data = data.get("tasks") or {}
    if not isinstance(tasks_data, dict):
        raise ConfigurationError("'tasks' must be a mapping of task name to task")
    for name, task_data in tasks_data.items():
        project.registry.add(_task_from_data(str(name), task_data))

    for task in project.registry.list_tasks(include_hidden=True):
        for child in task.group:
            if not project.registry.has(child):
                raise ConfigurationError(f"Task {task.name} groups unknown task {child}")

    try:
        for target, hooks in _hook_entries(data.get("before")):
            project.registry.before(target, hooks)
        for target, hooks in _hook_entries(data.get("after")):
            project.registry.after(target, hooks)
    except UnknownTaskError as e:
        raise ConfigurationError(f"Hook references unknown task: {e.name}") from e

    fail_data = data.get("fail") or {}
    if not isinstance(fail_data, dict):
        raise ConfigurationError("'fail' must be a mapping of command to fail task")
    for command, recovery in fail_data.items():
        if not project.registry.has(str(recovery)):
            raise ConfigurationError(f"Fail task {recovery} for {command} does not exist")
        project.failures.register(str(command), str(recovery))

    return project


def _task_from_data(name: str, task_data: Any) -> Task:
    """Create a Task from a task entry.

    A string is a single command, a list is a group of task names, and a
    mapping spells out the task's fields.
    """
    if isinstance(task_data, str):
        return Task(name=name, steps=(task_data,))
    if isinstance(task_data, list):
        return Task(name=name, group=tuple(str(t) for t in task_data))
    if not isinstance(task_data, dict):
        raise ConfigurationError(f"Task {name} must be a command, a list of tasks or a mapping")

    unknown = set(task_data) - TASK_FIELDS
    if unknown:
        raise ConfigurationError(f"Unknown field(s) in task {name}: {', '.join(sorted(unknown))}")

    run = task_data.get("run") or []
    if isinstance(run, str):
        run = [run]
    group = task_data.get("group") or []
    if run and group:
        raise ConfigurationError(f"Task {name} cannot have both 'run' and 'group'")

    select = task_data.get("select")
    return Task(
        name=name,
        steps=tuple(str(step) for step in run),
        group=tuple(str(t) for t in group),
        selector=str(select) if select else None,
        once=bool(task_data.get("once", False)),
        local=bool(task_data.get("local", False)),
        hidden=bool(task_data.get("hidden", False)),
        description=str(task_data.get("desc", "")),
    )


def _hook_entries(data: Any) -> list[tuple[str, str]]:
    """Flatten a ``before``/``after`` section into (target, hook) pairs."""
    if not data:
        return []
    if not isinstance(data, dict):
        raise ConfigurationError("Hook sections must map a task to hook task(s)")

    entries: list[tuple[str, str]] = []
    for target, hooks in data.items():
        if isinstance(hooks, str):
            hooks = [hooks]
        entries.extend((str(target), str(hook)) for hook in hooks)
    return entries
