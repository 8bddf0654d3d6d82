"""Tests for deploy file loading."""

import pytest
import yaml

from fleetrun.exceptions import ConfigurationError
from fleetrun.recipe import load_project, load_project_data
from fleetrun.types import TaskRole


class TestLoadProjectData:
    """Tests for load_project_data()."""

    def test_sample_project(self, deploy_data):
        project = load_project_data(deploy_data)

        assert [h.alias for h in project.inventory.list_hosts()] == ["web1", "web2", "staging1"]
        assert project.registry.get("build").once
        assert project.registry.get("release").steps == ("ln -sfn next current",)
        assert project.registry.get("deploy").group == ("build", "release")
        assert project.registry.get("lock").role is TaskRole.BEFORE
        assert project.registry.get("notify").role is TaskRole.AFTER
        assert project.failures.get("deploy") == "rollback"

    def test_host_config_layers_over_global(self, deploy_data):
        deploy_data["hosts"]["web1"]["branch"] = "main"
        deploy_data["hosts"]["web1"]["config"] = {"keep_releases": 3}

        project = load_project_data(deploy_data)
        web1 = project.inventory.get_host("web1")

        assert web1.hostname == "10.0.0.1"
        assert web1.labels == {"stage": "prod", "role": "web"}
        assert web1.config.own_values() == {"keep_releases": 3, "branch": "main"}
        assert web1.config.render("{{ deploy_path }}") == "/var/www/shop"

    def test_short_task_forms(self):
        project = load_project_data({"tasks": {"build": "make", "all": ["build"]}})

        assert project.registry.get("build").steps == ("make",)
        assert project.registry.get("all").group == ("build",)

    def test_empty_document(self):
        project = load_project_data({})
        assert len(project.registry) == 0
        assert len(project.inventory) == 0

    @pytest.mark.parametrize(
        "data, message",
        [
            ({"tasks": {"build": {"run": "make", "retries": 3}}}, "Unknown field"),
            ({"tasks": {"build": {"run": "make", "group": ["x"]}}}, "both"),
            ({"tasks": {"all": ["missing"]}}, "unknown task missing"),
            ({"tasks": {"build": "make"}, "after": {"build": "missing"}}, "unknown task"),
            ({"tasks": {"build": "make"}, "fail": {"build": "rollback"}}, "does not exist"),
            ({"hosts": {"web1": {"port": "ssh"}}}, "Invalid port"),
            ({"hosts": ["web1"]}, "mapping"),
            ({"tasks": {"build": 5}}, "must be"),
        ],
    )
    def test_invalid(self, data, message):
        with pytest.raises(ConfigurationError, match=message):
            load_project_data(data)


class TestLoadProject:
    """Tests for load_project()."""

    def test_load_file(self, tmp_path, deploy_data):
        path = tmp_path / "deploy.yaml"
        path.write_text(yaml.safe_dump(deploy_data, sort_keys=False))

        project = load_project(path)

        assert project.path == path
        assert "deploy_path" in project.source
        assert project.registry.has("deploy")

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="Cannot read"):
            load_project(tmp_path / "missing.yaml")

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "deploy.yaml"
        path.write_text("tasks: [unclosed\n")

        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            load_project(path)
