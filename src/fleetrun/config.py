"""Layered configuration for fleetrun.

A ``Configuration`` holds its own values and falls back to a parent for
anything it does not define. Hosts get a configuration whose parent is the
global one, so ``own_values()`` only ever reports what the host set itself.
"""

from typing import Any, Iterable

import yaml
from jinja2 import Environment, StrictUndefined, TemplateError, UndefinedError

from .exceptions import ConfigurationError

_MISSING = object()

_environment = Environment(undefined=StrictUndefined, keep_trailing_newline=True)


class Configuration:
    """Key/value store with parent fallback and ``{{ key }}`` rendering.

    Example:
        >>> base = Configuration({"application": "shop"})
        >>> host = Configuration({"deploy_path": "/srv/{{ application }}"}, parent=base)
        >>> host.render("{{ deploy_path }}")
        '/srv/shop'
        >>> list(host.own_values())
        ['deploy_path']
    """

    def __init__(
        self,
        values: dict[str, Any] | None = None,
        parent: "Configuration | None" = None,
    ) -> None:
        self._values: dict[str, Any] = dict(values or {})
        self.parent = parent

    def own_values(self) -> dict[str, Any]:
        """Values set directly on this configuration, in insertion order."""
        return dict(self._values)

    def has(self, key: str) -> bool:
        if key in self._values:
            return True
        return self.parent is not None and self.parent.has(key)

    def get(self, key: str, default: Any = None) -> Any:
        value = self._lookup(key)
        if value is _MISSING:
            return default
        return value

    def set(self, key: str, value: Any) -> None:
        self._values[key] = value

    def update(self, values: dict[str, Any]) -> None:
        for key, value in values.items():
            self.set(key, value)

    def to_dict(self) -> dict[str, Any]:
        """Flatten the configuration chain, own values winning."""
        merged = self.parent.to_dict() if self.parent else {}
        merged.update(self._values)
        return merged

    def render(self, text: str, depth: int = 10) -> str:
        """Interpolate ``{{ key }}`` placeholders using this configuration.

        Values that themselves contain placeholders are rendered again,
        up to ``depth`` levels.

        Raises:
            ConfigurationError: If a placeholder names an unknown key or
                the template is malformed
        """
        if "{{" not in text:
            return text
        if depth <= 0:
            raise ConfigurationError(f"Configuration nesting too deep while rendering: {text}")
        try:
            rendered = _environment.from_string(text).render(**self.to_dict())
        except UndefinedError as e:
            raise ConfigurationError(f"Configuration parameter is not defined: {e.message}") from e
        except TemplateError as e:
            raise ConfigurationError(f"Invalid template '{text}': {e}") from e
        return self.render(rendered, depth - 1)

    def _lookup(self, key: str) -> Any:
        if key in self._values:
            return self._values[key]
        if self.parent is not None:
            return self.parent._lookup(key)
        return _MISSING

    def __repr__(self) -> str:
        return f"Configuration({self._values!r})"


def parse_override(option: str) -> tuple[str, Any]:
    """Parse a ``key=value`` command-line override.

    The value is decoded as a YAML scalar so ``true``, ``false`` and numbers
    get their natural types. Anything that is not a scalar stays a string.

    Raises:
        ConfigurationError: If the option has no ``=`` or an empty key

    Example:
        >>> parse_override("branch=main")
        ('branch', 'main')
        >>> parse_override("keep_releases=5")
        ('keep_releases', 5)
    """
    if "=" not in option:
        raise ConfigurationError(f"Invalid option format: {option}. Expected key=value")
    key, raw = option.split("=", 1)
    key = key.strip()
    if not key:
        raise ConfigurationError(f"Invalid option format: {option}. Expected key=value")

    try:
        value = yaml.safe_load(raw) if raw else ""
    except yaml.YAMLError:
        value = raw
    if value is None or isinstance(value, (dict, list)):
        value = raw
    return key, value


def parse_overrides(options: Iterable[str]) -> dict[str, Any]:
    """Parse overrides in order, later keys replacing earlier ones."""
    overrides: dict[str, Any] = {}
    for option in options:
        key, value = parse_override(option)
        overrides[key] = value
    return overrides
