"""Host inventory for fleetrun.

Hosts are declared in the ``hosts`` section of the deploy file and kept in
declaration order, which is the selection order used for ``once`` tasks.
"""

from dataclasses import dataclass, field
from typing import Any

from .config import Configuration
from .exceptions import ConfigurationError
from .types import Host

# Keys of a host entry that describe the connection rather than configuration.
CONNECTION_FIELDS = {"hostname", "port", "remote_user", "connection", "labels", "config"}


@dataclass
class Inventory:
    """Ordered collection of hosts, unique by alias.

    Example:
        >>> inventory = Inventory()
        >>> inventory.add_host(Host(alias="web1", hostname="10.0.0.1"))
        >>> [h.alias for h in inventory.list_hosts()]
        ['web1']
    """

    hosts: dict[str, Host] = field(default_factory=dict)

    def add_host(self, host: Host) -> None:
        """Add a host, replacing any host with the same alias."""
        self.hosts[host.alias] = host

    def get_host(self, alias: str) -> Host | None:
        return self.hosts.get(alias)

    def list_hosts(self) -> list[Host]:
        return list(self.hosts.values())

    def __len__(self) -> int:
        return len(self.hosts)

    def __contains__(self, alias: object) -> bool:
        return alias in self.hosts


def load_inventory(
    data: dict[str, Any] | None,
    config: Configuration,
) -> Inventory:
    """Build an inventory from the parsed ``hosts`` section.

    Args:
        data: Mapping of host alias to host entry
        config: Global configuration every host configuration inherits from

    Returns:
        Inventory with one Host per entry, in declaration order

    Raises:
        ConfigurationError: If an entry has an invalid shape

    Note:
        Expected structure:

            hosts:
              web1:
                hostname: 10.0.0.1
                remote_user: deploy
                labels:
                  stage: prod
                config:
                  branch: main
              localhost:
                connection: local
    """
    inventory = Inventory()
    if not data:
        return inventory
    if not isinstance(data, dict):
        raise ConfigurationError("'hosts' must be a mapping of host alias to host settings")

    for alias, host_data in data.items():
        if host_data is None:
            host_data = {}
        if not isinstance(host_data, dict):
            raise ConfigurationError(f"Host '{alias}' must be a mapping")
        inventory.add_host(_host_from_data(str(alias), host_data, config))

    return inventory


def _host_from_data(alias: str, host_data: dict[str, Any], config: Configuration) -> Host:
    """Create a Host from a host entry.

    Keys outside the connection fields are treated as host configuration,
    the same as entries under ``config``.
    """
    labels = host_data.get("labels") or {}
    if not isinstance(labels, dict):
        raise ConfigurationError(f"Labels of host '{alias}' must be a mapping")

    own = dict(host_data.get("config") or {})
    own.update({k: v for k, v in host_data.items() if k not in CONNECTION_FIELDS})

    try:
        port = int(host_data.get("port", 22))
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid port for host '{alias}': {host_data.get('port')}") from e

    return Host(
        alias=alias,
        hostname=str(host_data.get("hostname", alias)),
        port=port,
        remote_user=str(host_data.get("remote_user", "")),
        connection=str(host_data.get("connection", "ssh")),
        labels={str(k): str(v) for k, v in labels.items()},
        config=Configuration(own, parent=config),
    )
