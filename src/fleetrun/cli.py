"""Command-line interface for fleetrun."""

import asyncio
import json
import logging
import re
import signal
from contextlib import ExitStack
from typing import Optional

import click
from rich.console import Console
from rich.markup import escape

from fleetrun import __version__
from fleetrun.command import CommandResult, CommandRunner, RunOptions
from fleetrun.exceptions import FleetrunError
from fleetrun.logging import configure_logging, get_level_from_verbosity, get_logger
from fleetrun.progress import (
    JsonProgressReporter,
    MultiProgressReporter,
    ProgressReporter,
    create_progress_reporter,
)
from fleetrun.recipe import DEFAULT_DEPLOY_FILE, Project, load_project
from fleetrun.typos import Diagnostic

logger = get_logger("fleetrun.cli")


def format_diagnostics(diagnostics: list[Diagnostic]) -> list[str]:
    """Render typo diagnostics as Rich markup lines."""
    lines: list[str] = []
    for diagnostic in diagnostics:
        message = escape(diagnostic.message)
        for key in diagnostic.keys:
            message = message.replace(f'"{key}"', f'"[green]{key}[/green]"')
        lines.append(f"[yellow]Warning:[/yellow] {message}")
        for location in diagnostic.locations:
            text = escape(location.text)
            for key in diagnostic.keys:
                text = re.sub(rf"\b{re.escape(key)}\b", f"[red]{key}[/red]", text)
            lines.append(f"    {location.number}: {text}")
    return lines


def format_result_json(command: str, result: CommandResult) -> str:
    """Format a command result as JSON."""
    output: dict = {"command": command, "exit_code": result.exit_code}
    if result.plan is not None:
        output.update(result.plan.to_dict())
    if result.outcome is not None:
        output["status"] = result.outcome.status.value
        output["results"] = [r.to_dict() for r in result.outcome.results]
    if result.recovery is not None:
        output["recovery"] = {
            "status": result.recovery.status.value,
            "exit_code": result.recovery.exit_code,
            "results": [r.to_dict() for r in result.recovery.results],
        }
    if result.diagnostics:
        output["warnings"] = [
            {
                "kind": d.kind,
                "message": d.message,
                "locations": [{"line": loc.number, "text": loc.text} for loc in d.locations],
            }
            for d in result.diagnostics
        ]
    return json.dumps(output, indent=2)


def _load(deploy_file: str) -> Project:
    try:
        return load_project(deploy_file)
    except FleetrunError as e:
        raise click.ClickException(str(e))


async def _run_with_interrupts(runner: CommandRunner, command: str, options: RunOptions) -> CommandResult:
    """Run a command, turning SIGINT/SIGTERM into a graceful shutdown."""
    loop = asyncio.get_running_loop()
    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, runner.interrupt)
            installed.append(sig)
        except (NotImplementedError, RuntimeError):
            logger.debug(f"Signal handler for {sig.name} not available")
    try:
        return await runner.run(command, options)
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)


# Main CLI group
@click.group(invoke_without_command=True)
@click.option("--version", is_flag=True, help="Show version and exit")
@click.pass_context
def cli(ctx: click.Context, version: bool) -> None:
    """fleetrun - Ordered, parallel task execution across host fleets."""
    if version:
        click.echo(f"fleetrun {__version__}")
        ctx.exit(0)
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@cli.command("list")
@click.option("--file", "-f", "deploy_file", default=DEFAULT_DEPLOY_FILE, show_default=True,
              help="Deploy file (YAML format)")
@click.option("--all", "-a", "show_all", is_flag=True, help="Include hidden tasks")
def list_tasks(deploy_file: str, show_all: bool) -> None:
    """List the tasks defined in the deploy file."""
    project = _load(deploy_file)
    tasks = project.registry.list_tasks(include_hidden=show_all)
    if not tasks:
        click.echo("No tasks defined")
        return
    width = max(len(t.name) for t in tasks)
    for task in tasks:
        click.echo(f"  {task.name.ljust(width)}  {task.description}".rstrip())


@cli.command("run")
@click.argument("command")
@click.argument("selector", required=False)
@click.option("--file", "-f", "deploy_file", default=DEFAULT_DEPLOY_FILE, show_default=True,
              help="Deploy file (YAML format)")
@click.option("--option", "-o", "overrides", multiple=True,
              help="Set configuration option (key=value, repeatable)")
@click.option("--limit", "-l", type=click.IntRange(min=1), default=None,
              help="How many hosts to run a task on in parallel (default: all)")
@click.option("--no-hooks", is_flag=True, help="Run tasks without after/before hooks")
@click.option("--plan", is_flag=True, help="Show execution plan")
@click.option("--start-from", type=str, default=None, help="Start execution from this task")
@click.option("--log", "log_file", type=click.Path(), default=None, help="Write log to a file")
@click.option("--profile", "profile_file", type=click.Path(), default=None,
              help="Write profile to a file")
@click.option("--format", "output_format", type=click.Choice(["text", "json"]),
              default="text", help="Output format (default: text)")
@click.option("-v", "--verbose", count=True,
              help="Increase verbosity: -v=info, -vv=debug, -vvv=trace")
def run_command(
    command: str,
    selector: Optional[str],
    deploy_file: str,
    overrides: tuple[str, ...],
    limit: Optional[int],
    no_hooks: bool,
    plan: bool,
    start_from: Optional[str],
    log_file: Optional[str],
    profile_file: Optional[str],
    output_format: str,
    verbose: int,
) -> None:
    """Run COMMAND on the hosts matching SELECTOR.

    SELECTOR picks hosts by alias or label, e.g. "web1", "stage=prod",
    "stage=prod & role=web". Without it every host is selected.
    """
    configure_logging(level=get_level_from_verbosity(verbose), log_file=log_file)

    project = _load(deploy_file)
    options = RunOptions(
        selector=selector,
        overrides=list(overrides),
        limit=limit or 0,
        hooks_enabled=not no_hooks,
        plan=plan,
        start_from=start_from,
    )

    console = Console(highlight=False)
    err_console = Console(stderr=True, highlight=False)

    with ExitStack() as stack:
        reporters: list[ProgressReporter] = [
            create_progress_reporter(enabled=output_format == "text" and not plan)
        ]
        if profile_file and not plan:
            profile_output = stack.enter_context(open(profile_file, "w"))
            reporters.append(JsonProgressReporter(profile_output))

        runner = CommandRunner(project, reporter=MultiProgressReporter(reporters))
        with logger.performance("Command", level=logging.DEBUG, command=command):
            try:
                result = asyncio.run(_run_with_interrupts(runner, command, options))
            except FleetrunError as e:
                raise click.ClickException(str(e))

    if output_format == "json":
        click.echo(format_result_json(command, result))
    else:
        for line in format_diagnostics(result.diagnostics):
            err_console.print(line)
        if result.plan is not None:
            console.print(result.plan.to_table())
        elif result.outcome is not None and result.outcome.failed is not None:
            failed = result.outcome.failed
            err_console.print(
                f"[red]Error[/red] in task {escape(failed.task)} on {escape(failed.host)}: "
                f"{escape(failed.error or '')}"
            )
            if failed.output:
                err_console.print(escape(failed.output.rstrip()))

    if result.exit_code != 0:
        raise SystemExit(result.exit_code)


def main() -> None:
    """Package entry point for the fleetrun command-line interface."""
    cli()


if __name__ == "__main__":
    cli()
