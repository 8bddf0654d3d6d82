"""Shared fixtures for fleetrun tests."""

import asyncio
import copy
import logging

import pytest

from fleetrun.config import Configuration
from fleetrun.exceptions import GracefulShutdownError
from fleetrun.orchestrator import target_name
from fleetrun.types import Host, HostResult, Task


class FakeExecutor:
    """Deterministic stand-in for RunnerFactory.

    Records every start and end of a (task, host) execution so tests can
    check barriers and concurrency without touching a shell or SSH.

    Args:
        failures: (task, host) -> exit code for executions that fail
        delays: (task, host) -> seconds to sleep before finishing
        shutdown_on: (task, host) pairs that raise GracefulShutdownError
        connect_error: Exception raised by connect()
    """

    def __init__(
        self,
        failures=None,
        delays=None,
        shutdown_on=(),
        connect_error=None,
        default_delay=0.0,
    ):
        self.failures = failures or {}
        self.delays = delays or {}
        self.shutdown_on = set(shutdown_on)
        self.connect_error = connect_error
        self.default_delay = default_delay
        self.events: list[tuple[str, str, str]] = []
        self.connected: list[str] = []
        self.cleanups = 0
        self.active = 0
        self.max_active = 0

    async def connect(self, hosts):
        if self.connect_error is not None:
            raise self.connect_error
        self.connected.extend(h.alias for h in hosts)

    async def execute(self, task: Task, host):
        name = target_name(host)
        key = (task.name, name)
        self.events.append(("start", task.name, name))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.delays.get(key, self.default_delay))
            if key in self.shutdown_on:
                raise GracefulShutdownError("Stopped by operator")
            if key in self.failures:
                return HostResult.failure(
                    task.name, name, "boom", exit_code=self.failures[key], step=0, command="false"
                )
            return HostResult.success(task.name, name, output="ok\n")
        finally:
            self.active -= 1
            self.events.append(("end", task.name, name))

    async def cleanup(self):
        self.cleanups += 1

    def executed(self) -> list[tuple[str, str]]:
        """(task, host) pairs that started, in start order."""
        return [(t, h) for event, t, h in self.events if event == "start"]


@pytest.fixture
def global_config():
    return Configuration({"application": "shop", "deploy_path": "/var/www/{{ application }}"})


@pytest.fixture
def hosts(global_config):
    return [
        Host(alias="web1", labels={"stage": "prod", "role": "web"}, config=Configuration(parent=global_config)),
        Host(alias="web2", labels={"stage": "prod", "role": "web"}, config=Configuration(parent=global_config)),
        Host(alias="db1", labels={"stage": "prod", "role": "db"}, config=Configuration(parent=global_config)),
    ]


@pytest.fixture
def fake_executor():
    return FakeExecutor()


DEPLOY_DATA = {
    "config": {"application": "shop", "deploy_path": "/var/www/{{ application }}"},
    "hosts": {
        "web1": {"hostname": "10.0.0.1", "labels": {"stage": "prod", "role": "web"}},
        "web2": {"hostname": "10.0.0.2", "labels": {"stage": "prod", "role": "web"}},
        "staging1": {"hostname": "10.0.1.1", "labels": {"stage": "staging", "role": "web"}},
    },
    "tasks": {
        "build": {"desc": "Build the release", "run": "make build", "once": True},
        "release": {"desc": "Switch the current release", "run": ["ln -sfn next current"]},
        "notify": {"run": "echo released", "local": True},
        "lock": {"run": "touch deploy.lock", "hidden": True},
        "rollback": {"run": "ln -sfn previous current", "hidden": True},
        "deploy": {"desc": "Deploy the application", "group": ["build", "release"]},
    },
    "before": {"release": "lock"},
    "after": {"deploy": "notify"},
    "fail": {"deploy": "rollback"},
}


@pytest.fixture
def deploy_data():
    """A fresh copy of the sample deploy file contents."""
    return copy.deepcopy(DEPLOY_DATA)


@pytest.fixture(autouse=True)
def reset_logging_handlers():
    """Drop handlers installed by configure_logging() during a test."""
    yield
    root = logging.getLogger()
    for handler in root.handlers[:]:
        if type(handler) in (logging.StreamHandler, logging.FileHandler):
            root.removeHandler(handler)
            handler.close()
    root.setLevel(logging.WARNING)
