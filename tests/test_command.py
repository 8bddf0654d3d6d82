"""Tests for the command frontend."""

import asyncio
import logging

import pytest

from conftest import FakeExecutor
from fleetrun.command import SHUTDOWN_EXIT_CODE, CommandRunner, RunOptions
from fleetrun.exceptions import NoApplicableTaskError, SelectionError, UnknownTaskError
from fleetrun.recipe import load_project_data


class InterruptedCleanupExecutor(FakeExecutor):
    """Executor that delivers an operator interrupt while cleaning up."""

    on_cleanup = None

    async def cleanup(self):
        await super().cleanup()
        if self.on_cleanup is not None:
            self.on_cleanup()


@pytest.fixture
def project(deploy_data):
    return load_project_data(deploy_data)


class TestCommandRun:
    """Tests for successful command runs."""

    @pytest.mark.asyncio
    async def test_no_hooks_end_to_end(self, project):
        executor = FakeExecutor()
        runner = CommandRunner(project, runner_factory=executor)

        result = await runner.run("deploy", RunOptions(selector="stage=prod", hooks_enabled=False))

        assert result.exit_code == 0
        assert [h.alias for h in result.hosts] == ["web1", "web2"]
        assert executor.executed() == [
            ("build", "web1"),
            ("release", "web1"),
            ("release", "web2"),
        ]

    @pytest.mark.asyncio
    async def test_hooks_included_by_default(self, project):
        executor = FakeExecutor()
        runner = CommandRunner(project, runner_factory=executor)

        result = await runner.run("deploy", RunOptions(selector="web1"))

        assert result.exit_code == 0
        assert result.outcome.completed_tasks == ["build", "lock", "release", "notify"]
        assert executor.executed()[-1] == ("notify", "local")

    @pytest.mark.asyncio
    async def test_overrides_reach_hosts(self, project):
        runner = CommandRunner(project, runner_factory=FakeExecutor())

        result = await runner.run("deploy", RunOptions(selector="web*", overrides=["branch=hotfix"]))

        assert all(h.config.get("branch") == "hotfix" for h in result.hosts)
        assert project.config.get("branch") is None

    @pytest.mark.asyncio
    async def test_start_from(self, project):
        executor = FakeExecutor()
        runner = CommandRunner(project, runner_factory=executor)

        await runner.run("deploy", RunOptions(selector="web1", start_from="release"))

        assert executor.executed() == [("release", "web1"), ("notify", "local")]

    @pytest.mark.asyncio
    async def test_local_command_without_hosts(self, project):
        executor = FakeExecutor()
        runner = CommandRunner(project, runner_factory=executor)

        result = await runner.run("notify", RunOptions(selector="stage=qa"))

        assert result.exit_code == 0
        assert result.hosts == []
        assert executor.executed() == [("notify", "local")]

    @pytest.mark.asyncio
    async def test_typo_warnings_do_not_stop_run(self, deploy_data):
        deploy_data["config"]["deploy_patth"] = "/srv"
        project = load_project_data(deploy_data)
        runner = CommandRunner(project, runner_factory=FakeExecutor())

        result = await runner.run("release", RunOptions(selector="web1"))

        assert result.exit_code == 0
        assert [d.keys for d in result.diagnostics] == [("deploy_path", "deploy_patth")]


class TestCommandErrors:
    """Resolution errors are raised before anything runs."""

    @pytest.mark.asyncio
    async def test_unknown_start_from(self, project):
        executor = FakeExecutor()
        runner = CommandRunner(project, runner_factory=executor)

        with pytest.raises(UnknownTaskError):
            await runner.run("deploy", RunOptions(start_from="missing"))
        assert executor.connected == []

    @pytest.mark.asyncio
    async def test_no_hosts(self, project):
        runner = CommandRunner(project, runner_factory=FakeExecutor())

        with pytest.raises(SelectionError):
            await runner.run("deploy", RunOptions(selector="stage=qa"))

    @pytest.mark.asyncio
    async def test_no_applicable_task(self, deploy_data):
        deploy_data["tasks"]["migrate"] = {"run": "migrate", "select": "role=db"}
        runner = CommandRunner(load_project_data(deploy_data), runner_factory=FakeExecutor())

        with pytest.raises(NoApplicableTaskError):
            await runner.run("migrate", RunOptions())


class TestFailureRecovery:
    """Tests for fail tasks."""

    @pytest.mark.asyncio
    async def test_recovery_runs_and_keeps_exit_code(self, project):
        executor = FakeExecutor(failures={("release", "web2"): 3})
        runner = CommandRunner(project, runner_factory=executor)

        result = await runner.run("deploy", RunOptions(selector="stage=prod"))

        assert result.exit_code == 3
        assert result.outcome.failed.task == "release"
        assert result.outcome.failed.host == "web2"
        assert result.recovery is not None
        assert result.recovery.is_success
        assert ("rollback", "web1") in executor.executed()
        assert ("rollback", "web2") in executor.executed()
        assert ("notify", "local") not in executor.executed()

    @pytest.mark.asyncio
    async def test_failed_recovery_keeps_original_exit_code(self, project):
        executor = FakeExecutor(failures={("release", "web2"): 3, ("rollback", "web1"): 9})
        runner = CommandRunner(project, runner_factory=executor)

        result = await runner.run("deploy", RunOptions(selector="stage=prod"))

        assert result.exit_code == 3
        assert result.recovery.exit_code == 9

    @pytest.mark.asyncio
    async def test_recovery_is_not_recursive(self, deploy_data):
        deploy_data["fail"]["rollback"] = "notify"
        executor = FakeExecutor(failures={("release", "web1"): 3, ("rollback", "web1"): 4})
        runner = CommandRunner(load_project_data(deploy_data), runner_factory=executor)

        result = await runner.run("deploy", RunOptions(selector="web1"))

        assert result.exit_code == 3
        assert ("notify", "local") not in executor.executed()

    @pytest.mark.asyncio
    async def test_no_recovery_registered(self, project):
        executor = FakeExecutor(failures={("build", "web1"): 2})
        runner = CommandRunner(project, runner_factory=executor)

        result = await runner.run("build", RunOptions(selector="web1"))

        assert result.exit_code == 2
        assert result.recovery is None

    @pytest.mark.asyncio
    async def test_graceful_shutdown_skips_recovery(self, project):
        executor = FakeExecutor(shutdown_on={("release", "web1")})
        runner = CommandRunner(project, runner_factory=executor)

        result = await runner.run("deploy", RunOptions(selector="stage=prod"))

        assert result.exit_code == SHUTDOWN_EXIT_CODE
        assert result.outcome.is_graceful_shutdown
        assert result.recovery is None
        assert not any(task == "rollback" for task, _ in executor.executed())

    @pytest.mark.asyncio
    async def test_shutdown_during_cleanup_skips_recovery(self, project):
        executor = InterruptedCleanupExecutor(failures={("release", "web2"): 3})
        runner = CommandRunner(project, runner_factory=executor)
        executor.on_cleanup = runner.interrupt

        result = await runner.run("deploy", RunOptions(selector="stage=prod"))

        assert result.outcome.is_failure
        assert result.exit_code == 3
        assert result.recovery is None
        assert not any(task == "rollback" for task, _ in executor.executed())
        assert executor.cleanups == 1

    @pytest.mark.asyncio
    async def test_log_context_is_per_run(self, deploy_data, caplog):
        caplog.set_level(logging.WARNING)
        deploy_data["fail"]["release"] = "notify"
        deploy = CommandRunner(
            load_project_data(deploy_data),
            runner_factory=FakeExecutor(failures={("release", "web1"): 3}),
        )
        release = CommandRunner(
            load_project_data(deploy_data),
            runner_factory=FakeExecutor(failures={("release", "web1"): 3}),
        )

        await asyncio.gather(
            deploy.run("deploy", RunOptions(selector="web1")),
            release.run("release", RunOptions(selector="web1")),
        )

        messages = [r.getMessage() for r in caplog.records if r.getMessage().startswith("Running fail task")]
        assert sorted(messages) == [
            "Running fail task (command=deploy, fail_task=rollback)",
            "Running fail task (command=release, fail_task=notify)",
        ]


class TestPlanMode:
    """Tests for --plan."""

    @pytest.mark.asyncio
    async def test_plan_executes_nothing(self, project):
        executor = FakeExecutor()
        runner = CommandRunner(project, runner_factory=executor)

        result = await runner.run("deploy", RunOptions(selector="stage=prod", plan=True))

        assert result.exit_code == 0
        assert result.outcome is None
        assert executor.events == []
        assert executor.connected == []
        assert result.plan.executions() == [
            ("build", "web1"),
            ("lock", "web1"),
            ("lock", "web2"),
            ("release", "web1"),
            ("release", "web2"),
            ("notify", "local"),
        ]

    @pytest.mark.asyncio
    async def test_plan_matches_real_run(self, project):
        planned = await CommandRunner(project, runner_factory=FakeExecutor()).run(
            "deploy", RunOptions(plan=True, limit=1)
        )
        executed = await CommandRunner(project, runner_factory=FakeExecutor()).run(
            "deploy", RunOptions(limit=1)
        )

        assert planned.plan.executions() == executed.outcome.executions()
