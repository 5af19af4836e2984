from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any, Optional, Union

try:
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib  # type: ignore[no-redef]

from .errors import ConfigError
from .types import HostConfig, Role

logger = logging.getLogger(__name__)

GROUP_ROLES = {
    "control-plane": Role.CONTROL_PLANE,
    "control_plane": Role.CONTROL_PLANE,
    "controlplane": Role.CONTROL_PLANE,
    "masters": Role.CONTROL_PLANE,
    "workers": Role.WORKER,
    "worker": Role.WORKER,
    "k8s_workers": Role.WORKER,
    "nodes": Role.WORKER,
}
CONNECTIONS = {"ssh", "local"}
HOST_KEYS = {"groups", "address", "user", "port", "identity_file", "connection", "primary", "variables"}

RawHost = Union[Iterable[str], Mapping[str, Any]]


def classify(raw: Mapping[str, RawHost]) -> dict[str, HostConfig]:
    """Turn ``{host: groups}`` or ``{host: {groups = [...], ...}}`` into hosts with roles.

    The primary control-plane host is the one flagged ``primary``, otherwise
    the first control-plane host in declaration order.
    """
    hosts: dict[str, HostConfig] = {}
    for name, entry in raw.items():
        hosts[str(name)] = _host_from_entry(str(name), entry)
    validate_topology(hosts)
    return hosts


def validate_topology(hosts: Mapping[str, HostConfig]) -> HostConfig:
    if not hosts:
        raise ConfigError("inventory defines no hosts")
    for host in hosts.values():
        if not (host.roles - {Role.ALL}):
            groups = ", ".join(host.groups) or "none"
            raise ConfigError(f"host '{host.name}' has no cluster role (groups: {groups})")
    control_plane = [h for h in hosts.values() if h.has_role(Role.CONTROL_PLANE)]
    if not control_plane:
        raise ConfigError("inventory has no control-plane host")
    flagged = [h for h in hosts.values() if h.primary]
    if len(flagged) > 1:
        raise ConfigError(f"more than one primary host: {', '.join(h.name for h in flagged)}")
    if flagged and not flagged[0].has_role(Role.CONTROL_PLANE):
        raise ConfigError(f"primary host '{flagged[0].name}' is not a control-plane host")
    primary = flagged[0] if flagged else control_plane[0]
    if not primary.primary:
        primary.primary = True
        logger.debug("primary=%s (first control-plane host)", primary.name)
    return primary


def _host_from_entry(name: str, entry: RawHost) -> HostConfig:
    if isinstance(entry, str):
        payload: dict[str, Any] = {"groups": [entry]}
    elif isinstance(entry, Mapping):
        payload = dict(entry)
    elif isinstance(entry, Iterable):
        payload = {"groups": list(entry)}
    else:
        raise ConfigError(f"host '{name}' entry must be a group list or a table")

    unknown = set(payload) - HOST_KEYS
    if unknown:
        raise ConfigError(f"host '{name}' has unknown key(s): {', '.join(sorted(unknown))}")

    raw_groups = payload.get("groups", [])
    if isinstance(raw_groups, str):
        raw_groups = [raw_groups]
    if not isinstance(raw_groups, (list, tuple)):
        raise ConfigError(f"host '{name}' groups must be a list")
    groups: list[str] = []
    for group in raw_groups:
        group = str(group).strip()
        if group and group not in groups:
            groups.append(group)

    roles = {Role.ALL}
    for group in groups:
        role = GROUP_ROLES.get(group.lower())
        if role is not None:
            roles.add(role)

    connection = str(payload.get("connection", "ssh"))
    if connection not in CONNECTIONS:
        raise ConfigError(f"host '{name}' has unknown connection '{connection}'")
    variables = payload.get("variables", {}) or {}
    if not isinstance(variables, Mapping):
        raise ConfigError(f"host '{name}' variables must be a table")
    port = payload.get("port")
    try:
        port = int(port) if port is not None else None
    except (TypeError, ValueError):
        raise ConfigError(f"host '{name}' port must be an integer") from None

    return HostConfig(
        name=name,
        connection=connection,
        address=_optional_str(payload.get("address")),
        user=_optional_str(payload.get("user")),
        port=port,
        identity_file=_optional_str(payload.get("identity_file")),
        roles=frozenset(roles),
        groups=tuple(groups),
        primary=bool(payload.get("primary", False)),
        variables=dict(variables),
    )


def _optional_str(value: Any) -> Optional[str]:
    return str(value) if value not in (None, "") else None


class InventoryLoader:
    """Loads hosts from a TOML inventory.

    Hosts may be declared as ``[hosts.<name>]`` tables, as Ansible-style
    ``[groups]`` membership lists, or both::

        [hosts.cp1]
        address = "10.0.0.10"
        primary = true

        [groups]
        control_plane = ["cp1"]
        k8s_workers = ["w1", "w2"]

    Join bookkeeping compares inventory names with the node names the API
    server reports. When a host is listed by IP or alias, set its kubelet
    hostname as ``node_name``::

        [hosts.w1]
        address = "10.0.0.21"
        variables = { node_name = "worker-1.k8s.local" }
    """

    def load(self, path: Path) -> dict[str, HostConfig]:
        path = Path(path)
        try:
            data = tomllib.loads(path.read_text())
        except FileNotFoundError:
            raise ConfigError(f"{path}: inventory file not found") from None
        except tomllib.TOMLDecodeError as exc:
            raise ConfigError(f"{path}: {exc}") from None
        try:
            return classify(self.merge(data))
        except ConfigError as exc:
            raise ConfigError(f"{path}: {exc}") from None

    @staticmethod
    def merge(data: Mapping[str, Any]) -> dict[str, dict[str, Any]]:
        unknown = set(data) - {"hosts", "groups"}
        if unknown:
            raise ConfigError(f"unknown inventory section(s): {', '.join(sorted(unknown))}")
        hosts_data = data.get("hosts", {})
        if not isinstance(hosts_data, Mapping):
            raise ConfigError("[hosts] must be a table")
        merged: dict[str, dict[str, Any]] = {}
        for name, payload in hosts_data.items():
            if not isinstance(payload, Mapping):
                raise ConfigError(f"[hosts.{name}] must be a table")
            merged[name] = dict(payload)
            merged[name]["groups"] = list(payload.get("groups", []))
        groups_data = data.get("groups", {})
        if not isinstance(groups_data, Mapping):
            raise ConfigError("[groups] must be a table")
        for group, members in groups_data.items():
            if isinstance(members, str) or not isinstance(members, list):
                raise ConfigError(f"group '{group}' must list host names")
            for member in members:
                entry = merged.setdefault(str(member), {"groups": []})
                if group not in entry["groups"]:
                    entry["groups"].append(group)
        return merged
