from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from .base import Operation
from ..executors import Executor
from ..types import ActionResult, HostConfig

logger = logging.getLogger(__name__)


def coerce_bool(value: Any) -> Optional[bool]:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "yes", "on", "1"}:
            return True
        if lowered in {"false", "no", "off", "0"}:
            return False
        raise ValueError(f"Unable to interpret boolean value '{value}'")
    return bool(value)


@dataclass
class SystemCtl:
    executable: str = "systemctl"

    def is_enabled(self, executor: Executor, service: str) -> bool:
        result = executor.run([self.executable, "is-enabled", service], check=False, mutable=False)
        return result.returncode == 0

    def is_active(self, executor: Executor, service: str) -> bool:
        result = executor.run([self.executable, "is-active", service], check=False, mutable=False)
        return result.returncode == 0

    def command(self, executor: Executor, verb: str, service: str) -> None:
        executor.run([self.executable, verb, service])


class ServiceOperation(Operation):
    """Manage systemd services."""

    action = "service"

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        raw_name = spec.get("name")
        if not raw_name:
            raise ValueError("service operation requires a name")
        self.name = str(raw_name)
        self.enabled = coerce_bool(spec.get("enabled"))
        self.state = spec.get("state")
        if self.state not in {None, "running", "stopped"}:
            raise ValueError("service state must be 'running' or 'stopped'")
        self.systemctl = SystemCtl()

    def is_satisfied(self, host: HostConfig, executor: Executor) -> bool:
        return not self._changes(executor)

    def apply(self, host: HostConfig, executor: Executor) -> ActionResult:
        changes = self._changes(executor)
        for verb in changes:
            logger.debug("service=%s host=%s %s", self.name, host.name, verb)
            self.systemctl.command(executor, verb, self.name)
        past = {"enable": "enabled", "disable": "disabled", "start": "started", "stop": "stopped"}
        detail = ", ".join(past[verb] for verb in changes) if changes else "noop"
        return self.result(host, bool(changes), detail)

    def _changes(self, executor: Executor) -> list[str]:
        verbs: list[str] = []
        if self.enabled is not None:
            enabled = self.systemctl.is_enabled(executor, self.name)
            if self.enabled and not enabled:
                verbs.append("enable")
            elif not self.enabled and enabled:
                verbs.append("disable")
        if self.state is not None:
            active = self.systemctl.is_active(executor, self.name)
            if self.state == "running" and not active:
                verbs.append("start")
            elif self.state == "stopped" and active:
                verbs.append("stop")
        return verbs
