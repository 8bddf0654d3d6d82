"""Tests for host selection and overrides."""

import pytest

from fleetrun.config import Configuration
from fleetrun.exceptions import ConfigurationError, SelectionError
from fleetrun.inventory import Inventory
from fleetrun.selector import (
    Condition,
    apply_overrides,
    combine_selectors,
    format_selection_summary,
    host_matches,
    parse_selector,
    select_hosts,
)
from fleetrun.types import Host


@pytest.fixture
def inventory(hosts):
    inventory = Inventory()
    for host in hosts:
        inventory.add_host(host)
    inventory.add_host(Host(alias="staging1", labels={"stage": "staging", "role": "web"}))
    return inventory


def aliases(hosts):
    return [h.alias for h in hosts]


class TestParseSelector:
    """Tests for parse_selector()."""

    def test_empty(self):
        assert parse_selector(None) == []
        assert parse_selector("") == []

    def test_alias(self):
        assert parse_selector("web1") == [[Condition("alias", "web1")]]

    def test_label_and_negation(self):
        assert parse_selector("stage=prod & role!=db") == [
            [Condition("stage", "prod"), Condition("role", "db", negate=True)]
        ]

    def test_alternatives(self):
        assert len(parse_selector("web1, db*")) == 2

    def test_invalid_condition(self):
        with pytest.raises(ConfigurationError):
            parse_selector("stage=")


class TestHostMatches:
    """Tests for host_matches()."""

    def test_glob(self, hosts):
        assert host_matches("web*", hosts[0])
        assert not host_matches("web*", hosts[2])

    def test_all(self, hosts):
        assert all(host_matches("all", h) for h in hosts)

    def test_missing_label_never_matches(self, hosts):
        assert not host_matches("zone=eu", hosts[0])
        assert host_matches("zone!=eu", hosts[0])


class TestCombineSelectors:
    """Tests for combine_selectors()."""

    def test_empty_side_does_not_restrict(self):
        assert combine_selectors(None, "stage=prod") == "stage=prod"
        assert combine_selectors("web*", "") == "web*"
        assert combine_selectors(None, None) is None

    def test_conditions_are_joined(self):
        assert combine_selectors("role=web", "stage!=dev") == "role=web & stage!=dev"

    def test_alternatives_distribute(self, hosts):
        combined = combine_selectors("web1, db1", "role=web, stage=staging")

        assert combined == "web1 & role=web, web1 & stage=staging, db1 & role=web, db1 & stage=staging"
        assert [h.alias for h in hosts if host_matches(combined, h)] == ["web1"]

    def test_all_keeps_matching_everything(self, hosts):
        combined = combine_selectors("all", "stage=prod")
        assert all(host_matches(combined, h) for h in hosts)


class TestSelectHosts:
    """Tests for select_hosts()."""

    def test_select_everything(self, inventory):
        assert aliases(select_hosts(inventory, None)) == ["web1", "web2", "db1", "staging1"]

    def test_select_by_label(self, inventory):
        assert aliases(select_hosts(inventory, "stage=prod & role=web")) == ["web1", "web2"]

    def test_inventory_order_and_unique(self, inventory):
        assert aliases(select_hosts(inventory, "db1, web*, web1")) == ["web1", "web2", "db1", "staging1"]

    def test_no_match(self, inventory):
        with pytest.raises(SelectionError, match="stage=qa"):
            select_hosts(inventory, "stage=qa")

    def test_no_match_not_required(self, inventory):
        assert select_hosts(inventory, "stage=qa", required=False) == []

    def test_empty_inventory(self):
        with pytest.raises(SelectionError):
            select_hosts(Inventory(), None)


class TestApplyOverrides:
    """Tests for apply_overrides()."""

    def test_applied_to_every_host(self, hosts):
        apply_overrides(hosts, ["branch=main", "keep_releases=3"])

        for host in hosts:
            assert host.config.own_values() == {"branch": "main", "keep_releases": 3}

    def test_last_write_wins(self, hosts):
        apply_overrides(hosts, ["branch=main", "branch=hotfix"])
        assert hosts[0].config.get("branch") == "hotfix"

    def test_overrides_shadow_global(self, hosts, global_config):
        apply_overrides(hosts[:1], ["application=blog"])

        assert hosts[0].config.render("{{ deploy_path }}") == "/var/www/blog"
        assert global_config.get("application") == "shop"
        assert hosts[1].config.get("application") == "shop"

    def test_invalid_override(self, hosts):
        with pytest.raises(ConfigurationError):
            apply_overrides(hosts, ["branch"])

    def test_no_overrides(self):
        host = Host(alias="web1", config=Configuration())
        apply_overrides([host], [])
        assert host.config.own_values() == {}


class TestSelectionSummary:
    """Tests for format_selection_summary()."""

    def test_all(self):
        assert format_selection_summary(3, 3, None) == "All 3 host(s) selected"

    def test_partial(self):
        assert format_selection_summary(4, 1, "db1") == "Selector 'db1': 1/4 hosts (3 excluded)"
