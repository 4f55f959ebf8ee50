from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from .base import Operation
from ..executors import Executor
from ..types import ActionResult, HostConfig

logger = logging.getLogger(__name__)


@dataclass
class UserInfo:
    name: str
    shell: str
    home: str
    groups: set[str] = field(default_factory=set)


class UserManager:
    def get(self, executor: Executor, username: str) -> Optional[UserInfo]:
        entry = executor.run(["getent", "passwd", username], check=False, mutable=False)
        if entry.returncode != 0 or not entry.stdout.strip():
            return None
        fields = entry.stdout.strip().split(":")
        groups = executor.run(["id", "-nG", username], check=False, mutable=False)
        names = set(groups.stdout.split()) if groups.returncode == 0 else set()
        return UserInfo(name=fields[0], home=fields[5], shell=fields[6], groups=names)

    def add(self, executor: Executor, name: str, *, shell: Optional[str], groups: list[str], system: bool) -> None:
        cmd = ["useradd", "--create-home"]
        if shell:
            cmd += ["--shell", shell]
        if groups:
            cmd += ["--groups", ",".join(groups)]
        if system:
            cmd.append("--system")
        cmd.append(name)
        executor.run(cmd)

    def delete(self, executor: Executor, name: str) -> None:
        executor.run(["userdel", "--remove", name])

    def set_shell(self, executor: Executor, name: str, shell: str) -> None:
        executor.run(["usermod", "--shell", shell, name])

    def add_groups(self, executor: Executor, name: str, groups: list[str]) -> None:
        executor.run(["usermod", "--append", "--groups", ",".join(groups), name])


class UserOperation(Operation):
    """Ensure a user account exists with the requested supplementary groups.

    Adding the connecting user to a group only takes effect on a new login, so
    task lists follow such a change with a ``reset_connection`` task.
    """

    action = "user"

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        raw_name = spec.get("name")
        if not raw_name:
            raise ValueError("user operation requires a name")
        self.name = str(raw_name)
        self.state = str(spec.get("state", "present"))
        if self.state not in {"present", "absent"}:
            raise ValueError("user state must be 'present' or 'absent'")
        raw_groups = spec.get("groups", [])
        if isinstance(raw_groups, str):
            raw_groups = [raw_groups]
        self.groups = [str(g) for g in raw_groups]
        self.shell = str(spec["shell"]) if spec.get("shell") else None
        self.system = bool(spec.get("system", False))
        self.manager = UserManager()

    def is_satisfied(self, host: HostConfig, executor: Executor) -> bool:
        info = self.manager.get(executor, self.name)
        if self.state == "absent":
            return info is None
        return info is not None and not self._drift(info)

    def apply(self, host: HostConfig, executor: Executor) -> ActionResult:
        info = self.manager.get(executor, self.name)
        if self.state == "absent":
            if info is None:
                return self.result(host, False, "noop")
            self.manager.delete(executor, self.name)
            return self.result(host, True, "removed")

        if info is None:
            logger.debug("user=%s host=%s creating", self.name, host.name)
            self.manager.add(executor, self.name, shell=self.shell, groups=self.groups, system=self.system)
            return self.result(host, True, "created")

        changes: list[str] = []
        drift = self._drift(info)
        if "shell" in drift and self.shell:
            self.manager.set_shell(executor, self.name, self.shell)
            changes.append(f"shell->{self.shell}")
        missing = [g for g in self.groups if g not in info.groups]
        if missing:
            self.manager.add_groups(executor, self.name, missing)
            changes.append(f"groups+={','.join(missing)}")
        detail = ", ".join(changes) if changes else "noop"
        return self.result(host, bool(changes), detail)

    def _drift(self, info: UserInfo) -> set[str]:
        drift: set[str] = set()
        if self.shell and info.shell != self.shell:
            drift.add("shell")
        if any(g not in info.groups for g in self.groups):
            drift.add("groups")
        return drift
