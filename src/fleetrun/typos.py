"""Configuration typo detection.

Before a real run, configuration keys that differ by a single character are
reported as likely typos (``deploy_path`` vs ``deploy_patth``). The check is
advisory: it produces diagnostics and never stops a run.
"""

import re
from dataclasses import dataclass, field
from typing import Iterable

from .config import Configuration
from .types import Host


@dataclass(frozen=True)
class SourceLine:
    """A line of the deploy file where a key is defined."""

    number: int
    text: str


@dataclass
class Diagnostic:
    """A structured warning, rendered by the CLI.

    Attributes:
        kind: Diagnostic kind (e.g., "typo")
        message: Human-readable message
        keys: Keys involved, in comparison order
        locations: Definition sites found in the deploy file
    """

    kind: str
    message: str
    keys: tuple[str, ...] = ()
    locations: list[SourceLine] = field(default_factory=list)


def levenshtein(a: str, b: str) -> int:
    """Single-character edit distance between two strings.

    Example:
        >>> levenshtein("deploy_path", "deploy_patth")
        1
        >>> levenshtein("deploy_path", "build_path")
        5
    """
    if a == b:
        return 0
    if len(a) < len(b):
        a, b = b, a
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, 1):
        current = [i]
        for j, cb in enumerate(b, 1):
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + (ca != cb),
            ))
        previous = current
    return previous[-1]


def find_config_line(source: str, key: str) -> list[SourceLine]:
    """Find the lines of a YAML deploy file where ``key`` is defined.

    Matches mapping keys, optionally quoted, at any indentation, as well as
    ``key=value`` entries in flow sequences of overrides.
    """
    pattern = re.compile(
        r"^\s*(?:-\s*)?['\"]?" + re.escape(key) + r"['\"]?\s*[:=]"
        r"|[{,]\s*['\"]?" + re.escape(key) + r"['\"]?\s*:"
    )
    return [
        SourceLine(number=n, text=line)
        for n, line in enumerate(source.splitlines(), 1)
        if pattern.search(line)
    ]


def check(
    config_a: Configuration,
    config_b: Configuration,
    source: str | None = None,
) -> list[Diagnostic]:
    """Report own keys of ``config_a`` and ``config_b`` one edit apart.

    Key ``i`` of A is compared against key ``j`` of B only when ``j > i``,
    which skips self-comparison and reports each pair once when A and B are
    the same configuration. With different configurations some pairs are
    never compared; this follows declaration order and is kept as is.

    Args:
        config_a: Configuration whose own keys are checked
        config_b: Configuration compared against
        source: Deploy file text used to locate each key's definition

    Returns:
        One diagnostic per suspicious pair
    """
    keys_a = list(config_a.own_values())
    keys_b = list(config_b.own_values())
    diagnostics: list[Diagnostic] = []

    for i, a in enumerate(keys_a):
        for b in keys_b[i + 1:]:
            if levenshtein(a, b) != 1:
                continue
            locations: list[SourceLine] = []
            if source:
                locations = find_config_line(source, a) + find_config_line(source, b)
            diagnostics.append(
                Diagnostic(
                    kind="typo",
                    message=f'Did you mean "{a}" or "{b}"?',
                    keys=(a, b),
                    locations=locations,
                )
            )

    return diagnostics


def validate_config(
    config: Configuration,
    hosts: Iterable[Host],
    source: str | None = None,
) -> list[Diagnostic]:
    """Check the global configuration, then each host against it.

    Hosts are never compared with each other.
    """
    diagnostics = check(config, config, source)
    for host in hosts:
        diagnostics.extend(check(host.config, config, source))
    return diagnostics
