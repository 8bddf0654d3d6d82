"""Host selection for fleetrun.

Selector expressions pick hosts by alias or label:
- Everything: all
- Exact alias or glob: web1, web*
- Label match: stage=prod, role=web*
- Label exclusion: stage!=dev
- AND inside an alternative: stage=prod & role=web
- OR between alternatives: web1,db*

The same expressions are used by task ``select`` filters.
"""

import fnmatch
import logging
from dataclasses import dataclass
from typing import Iterable

from .config import parse_overrides
from .exceptions import ConfigurationError, SelectionError
from .inventory import Inventory
from .types import Host

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Condition:
    """A single ``key=value``, ``key!=value`` or alias condition."""

    key: str
    value: str
    negate: bool = False

    def matches(self, host: Host) -> bool:
        if self.key == "alias":
            actual: str | None = host.alias
        else:
            actual = host.labels.get(self.key)

        matched = actual is not None and fnmatch.fnmatchcase(actual, self.value)
        return not matched if self.negate else matched

    def __str__(self) -> str:
        if self.key == "alias" and not self.negate and self.value != "all":
            return self.value
        operator = "!=" if self.negate else "="
        return f"{self.key}{operator}{self.value}"


def parse_selector(expression: str | None) -> list[list[Condition]]:
    """Parse a selector expression into alternatives of conditions.

    Args:
        expression: Selector expression; empty or None selects everything

    Returns:
        List of alternatives, each a list of conditions that must all match.
        An empty list means "no restriction".

    Raises:
        ConfigurationError: If a condition has an empty key or value

    Example:
        >>> parse_selector("stage=prod & role=web, db1")
        [[Condition(key='stage', value='prod', negate=False), Condition(key='role', value='web', negate=False)], [Condition(key='alias', value='db1', negate=False)]]
    """
    alternatives: list[list[Condition]] = []
    if not expression:
        return alternatives

    for part in expression.split(","):
        part = part.strip()
        if not part:
            continue

        conditions: list[Condition] = []
        for term in part.split("&"):
            term = term.strip()
            if not term:
                continue
            if term == "all":
                conditions.append(Condition(key="alias", value="*"))
            elif "!=" in term:
                key, value = (s.strip() for s in term.split("!=", 1))
                conditions.append(_condition(term, key, value, negate=True))
            elif "=" in term:
                key, value = (s.strip() for s in term.split("=", 1))
                conditions.append(_condition(term, key, value))
            else:
                conditions.append(Condition(key="alias", value=term))

        if conditions:
            alternatives.append(conditions)

    return alternatives


def _condition(term: str, key: str, value: str, negate: bool = False) -> Condition:
    if not key or not value:
        raise ConfigurationError(f"Invalid selector condition: {term}")
    return Condition(key=key, value=value, negate=negate)


def combine_selectors(first: str | None, second: str | None) -> str | None:
    """Build a selector matching the hosts that satisfy both expressions.

    Every alternative of one side is ANDed with every alternative of the
    other, so "a, b" combined with "c" selects "a & c" or "b & c". An empty
    side does not restrict the other.

    Raises:
        ConfigurationError: If either expression has an invalid condition

    Example:
        >>> combine_selectors("web1, web2", "stage=prod")
        'web1 & stage=prod, web2 & stage=prod'
        >>> combine_selectors(None, "stage=prod")
        'stage=prod'
    """
    left = parse_selector(first)
    right = parse_selector(second)
    if not left:
        return second or None
    if not right:
        return first
    return ", ".join(
        " & ".join(str(c) for c in a + b) for a in left for b in right
    )


def host_matches(expression: str | None, host: Host) -> bool:
    """Check if a host satisfies a selector expression.

    Example:
        >>> host = Host(alias="web1", labels={"stage": "prod"})
        >>> host_matches("stage=prod", host)
        True
        >>> host_matches("stage!=prod", host)
        False
        >>> host_matches(None, host)
        True
    """
    alternatives = parse_selector(expression)
    if not alternatives:
        return True
    return any(all(c.matches(host) for c in conditions) for conditions in alternatives)


def select_hosts(
    inventory: Inventory,
    criteria: str | None,
    required: bool = True,
) -> list[Host]:
    """Select hosts from the inventory.

    Args:
        inventory: Inventory to select from
        criteria: Selector expression (empty selects every host)
        required: Raise when nothing matches

    Returns:
        Matching hosts in inventory order, unique by alias

    Raises:
        SelectionError: If no host matches and ``required`` is set
    """
    alternatives = parse_selector(criteria)
    selected: list[Host] = []
    seen: set[str] = set()

    for host in inventory.list_hosts():
        if host.alias in seen:
            continue
        if not alternatives or any(
            all(c.matches(host) for c in conditions) for conditions in alternatives
        ):
            selected.append(host)
            seen.add(host.alias)

    if not selected and required:
        raise SelectionError(criteria)

    logger.debug(format_selection_summary(len(inventory), len(selected), criteria))
    return selected


def apply_overrides(hosts: Iterable[Host], overrides: Iterable[str]) -> None:
    """Set ``key=value`` overrides on each host's own configuration.

    Overrides are parsed once and applied identically to every host; a key
    given more than once keeps its last value.

    Raises:
        ConfigurationError: If an override is not in ``key=value`` form
    """
    values = parse_overrides(overrides)
    if not values:
        return
    for host in hosts:
        host.config.update(values)
        logger.debug(f"Applied {len(values)} override(s) to {host.alias}")


def format_selection_summary(
    original_count: int,
    selected_count: int,
    criteria: str | None,
) -> str:
    """Format a summary of host selection.

    Args:
        original_count: Number of hosts in the inventory
        selected_count: Number of selected hosts
        criteria: The selector expression that was applied

    Returns:
        Human-readable summary string
    """
    if not criteria:
        return f"All {original_count} host(s) selected"
    if selected_count == original_count:
        return f"All {original_count} host(s) matched selector: {criteria}"

    excluded = original_count - selected_count
    return (
        f"Selector '{criteria}': {selected_count}/{original_count} hosts "
        f"({excluded} excluded)"
    )
