from __future__ import annotations

from typing import Any, Iterable, Optional, Sequence
from string import Template
import logging

from .base import Operation
from ..executors import CommandResult, Executor
from ..types import ActionResult, HostConfig

logger = logging.getLogger(__name__)


class ExecOperation(Operation):
    """Run arbitrary commands with simple guards.

    ``creates``, ``unless`` and ``only_if`` make up the idempotency check: the
    command is considered already applied when the path exists, when
    ``unless`` exits 0, or when ``only_if`` exits non-zero.
    """

    action = "exec"

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        raw_command = spec.get("command") or spec.get("cmd")
        if raw_command is None:
            raise ValueError("exec operation requires a command")
        self.raw_command = raw_command
        self.name = str(spec.get("name") or raw_command)

        self.only_if = spec.get("only_if")
        self.unless = spec.get("unless")
        self.creates = str(spec["creates"]) if spec.get("creates") else None
        self.cwd = str(spec["cwd"]) if spec.get("cwd") else None

        self.env = self._normalize_env(spec.get("env") or spec.get("environment"))
        self.allowed_returns = self._normalize_returns(spec.get("returns", [0]))
        self.timeout = self._normalize_timeout(spec.get("timeout"))

    def is_satisfied(self, host: HostConfig, executor: Executor) -> bool:
        context = dict(host.variables)
        if self.creates:
            probe = executor.run(["test", "-e", self.creates], check=False, mutable=False, cwd=self.cwd)
            if probe.returncode == 0:
                return True
        if self.unless:
            guard = self._run_guard(self._render(self.unless, context), executor)
            if guard.returncode == 0:
                return True
        if self.only_if:
            guard = self._run_guard(self._render(self.only_if, context), executor)
            if guard.returncode != 0:
                return True
        return False

    def apply(self, host: HostConfig, executor: Executor) -> ActionResult:
        command = self._render(self.raw_command, dict(host.variables))
        result = executor.run(
            command,
            check=False,
            mutable=True,
            env=self.env,
            cwd=self.cwd,
            timeout=self.timeout,
        )

        if result.returncode not in self.allowed_returns:
            logger.debug("exec failed name=%s rc=%s cmd=%s", self.name, result.returncode, " ".join(command))
            return self.result(host, False, self._error_detail(result), failed=True)

        detail = "dry-run" if executor.dry_run else f"ran (rc={result.returncode})"
        return self.result(host, True, detail)

    def _run_guard(self, command: Sequence[str], executor: Executor) -> CommandResult:
        return executor.run(
            command,
            check=False,
            mutable=False,
            env=self.env,
            cwd=self.cwd,
            timeout=self.timeout,
        )

    @staticmethod
    def _render(value: Any, context: dict[str, Any]) -> list[str]:
        if isinstance(value, str):
            return ["sh", "-c", Template(value).safe_substitute(context)]
        if isinstance(value, Sequence):
            return [Template(str(v)).safe_substitute(context) for v in value]
        raise ValueError("exec command/guard must be a string or list")

    @staticmethod
    def _normalize_env(value: Any) -> Optional[dict[str, str]]:
        if value is None:
            return None
        if isinstance(value, dict):
            return {str(k): str(v) for k, v in value.items()}
        if isinstance(value, Iterable) and not isinstance(value, (str, bytes)):
            env: dict[str, str] = {}
            for item in value:
                key, sep, val = str(item).partition("=")
                if not sep:
                    raise ValueError("env list entries must be KEY=VALUE")
                env[key] = val
            return env
        raise ValueError("exec env must be a mapping or list of KEY=VALUE strings")

    @staticmethod
    def _normalize_returns(value: Any) -> list[int]:
        if value is None:
            return [0]
        if isinstance(value, int):
            return [value]
        return [int(v) for v in value]

    @staticmethod
    def _normalize_timeout(value: Any) -> Optional[float]:
        if value is None:
            return None
        try:
            return float(value)
        except (TypeError, ValueError) as exc:
            raise ValueError("exec timeout must be numeric") from exc

    @staticmethod
    def _error_detail(result: CommandResult) -> str:
        prefix = f"rc={result.returncode}"
        for text in (result.stderr, result.stdout):
            stripped = (text or "").strip()
            if stripped:
                line = stripped.splitlines()[0]
                return f"{prefix}: {(line[:157] + '...') if len(line) > 160 else line}"
        return prefix
