"""fleetrun - Ordered, partially parallel task execution across host fleets.

Runs named deployment tasks across a set of hosts with a barrier after each
task, bounded per-task concurrency, hook bypassing, dry-run planning and
failure-triggered recovery.

Quick Start:
    from fleetrun import Orchestrator, RunnerFactory, resolve

    tasks = resolve(project.registry, "deploy", hosts)
    outcome = await Orchestrator(RunnerFactory(project.config)).run(tasks, hosts)
"""

__version__ = "0.1.0"

from fleetrun.orchestrator import Orchestrator
from fleetrun.planner import Planner
from fleetrun.resolver import resolve
from fleetrun.runners import RunnerFactory

__all__ = ["__version__", "Orchestrator", "Planner", "RunnerFactory", "resolve"]
