from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

try:
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib  # type: ignore[no-redef]

from .types import FAILURE_POLICIES, RETRY, HostConfig, Inventory, TaskSpec

POLICY_ALIASES = {"retry-with-backoff": RETRY, "fail_fast": "fail-fast", "abort": "fail-fast"}


def read_toml(path: Path) -> dict[str, Any]:
    path = Path(path)
    try:
        return tomllib.loads(path.read_text())
    except tomllib.TOMLDecodeError as exc:
        # lineno/colno only exist on newer tomllib and tomli releases.
        if getattr(exc, "lineno", None) is None:
            raise ValueError(f"{path}: {exc}") from None
        raise ValueError(f"{path}:{exc.lineno}:{exc.colno} {exc.msg}") from None


class InventoryLoader:
    """Loads role to host mappings from TOML files."""

    def load(self, path: Path) -> Inventory:
        path = Path(path)
        data = read_toml(path)
        hosts = self._parse_hosts(data.get("hosts", {}), path)
        roles = self._parse_roles(data.get("roles", {}), hosts, path)
        orphans = sorted(name for name in hosts if not any(hosts[name] in members for members in roles.values()))
        if orphans:
            raise ValueError(f"{path}: hosts without a role: {', '.join(orphans)}")
        return Inventory(hosts=hosts, roles=roles)

    @staticmethod
    def _parse_hosts(host_data: dict[str, Any], path: Path) -> dict[str, HostConfig]:
        hosts: dict[str, HostConfig] = {}
        for name, payload in host_data.items():
            if not isinstance(payload, dict):
                raise ValueError(f"{path}: host '{name}' must be a table")
            connection = str(payload.get("connection", "ssh" if payload.get("address") else "local"))
            if connection not in {"local", "ssh"}:
                raise ValueError(f"{path}: host '{name}' has unknown connection '{connection}'")
            variables = payload.get("variables", {})
            if not isinstance(variables, dict):
                raise ValueError(f"{path}: host '{name}' variables must be a table")
            hosts[name] = HostConfig(
                name=name,
                address=payload.get("address"),
                connection=connection,
                user=payload.get("user"),
                key_file=payload.get("key_file"),
                port=int(payload.get("port", 22)),
                become=bool(payload.get("become", False)),
                variables=dict(variables),
            )
        return hosts

    @staticmethod
    def _parse_roles(
        role_data: dict[str, Any],
        hosts: dict[str, HostConfig],
        path: Path,
    ) -> dict[str, list[HostConfig]]:
        roles: dict[str, list[HostConfig]] = {}
        for role, members in role_data.items():
            if isinstance(members, dict):
                members = members.get("hosts", [])
            if isinstance(members, str):
                members = [members]
            resolved: list[HostConfig] = []
            for member in members:
                if member not in hosts:
                    raise ValueError(f"{path}: role '{role}' references undefined host '{member}'")
                resolved.append(hosts[member])
            roles[role] = resolved
        return roles


@dataclass
class TaskList:
    name: str
    tasks: list[TaskSpec]


class TaskListLoader:
    """Loads an ordered task list; one file is one deployment scenario."""

    def load(self, path: Path) -> TaskList:
        path = Path(path)
        data = read_toml(path)
        raw_tasks = data.get("tasks", [])
        if not isinstance(raw_tasks, list):
            raise ValueError(f"{path}: tasks must be an array of tables")
        default_role = data.get("role")
        tasks = [
            self._parse_task(raw, index, path, default_role)
            for index, raw in enumerate(raw_tasks, start=1)
        ]
        return TaskList(name=str(data.get("name", path.stem)), tasks=tasks)

    @staticmethod
    def _parse_task(raw: dict[str, Any], index: int, path: Path, default_role: Any) -> TaskSpec:
        where = f"{path}: task {index}"
        action = raw.get("action")
        if not action:
            raise ValueError(f"{where} is missing an action")
        role = raw.get("role", default_role)
        if not role:
            raise ValueError(f"{where} is missing a role")
        policy = str(raw.get("on_failure", "fail-fast"))
        policy = POLICY_ALIASES.get(policy, policy)
        if policy not in FAILURE_POLICIES:
            raise ValueError(f"{where} has unknown on_failure '{policy}'")
        args = raw.get("args", {})
        if not isinstance(args, dict):
            raise ValueError(f"{where} args must be a table")
        args = dict(args)
        args.setdefault("_base_dir", str(path.parent))
        retries = int(raw.get("retries", 3))
        delay = float(raw.get("delay", 1.0))
        backoff = float(raw.get("backoff", 2.0))
        if retries < 0 or delay < 0 or backoff < 1:
            raise ValueError(f"{where} needs retries >= 0, delay >= 0 and backoff >= 1")
        return TaskSpec(
            name=str(raw.get("name", f"{action}-{index}")),
            action=str(action),
            role=str(role),
            args=args,
            when=raw.get("when"),
            become=bool(raw.get("become", False)),
            failure_policy=policy,
            retries=retries,
            delay=delay,
            backoff=backoff,
        )
