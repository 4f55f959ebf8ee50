from __future__ import annotations

import logging
import time
from typing import Any

from .base import Operation
from ..errors import Timeout
from ..executors import Executor
from ..types import ActionResult, HostConfig

logger = logging.getLogger(__name__)


class WaitReachableOperation(Operation):
    """Block until the host accepts connections or ``timeout`` seconds pass."""

    action = "wait_reachable"

    clock = staticmethod(time.monotonic)
    sleep = staticmethod(time.sleep)

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        self.timeout = float(spec.get("timeout", 300))
        self.interval = float(spec.get("interval", 2))
        self.probe_timeout = float(spec.get("probe_timeout", 5))
        if self.timeout <= 0:
            raise ValueError("wait_reachable timeout must be positive")

    def apply(self, host: HostConfig, executor: Executor) -> ActionResult:
        start = self.clock()
        deadline = start + self.timeout
        attempts = 0
        while True:
            attempts += 1
            remaining = deadline - self.clock()
            if executor.probe(min(self.probe_timeout, max(remaining, 0.1))):
                waited = self.clock() - start
                return self.result(host, False, f"reachable after {attempts} probe(s), {waited:.1f}s")
            now = self.clock()
            if now >= deadline:
                break
            logger.debug("host=%s not reachable yet (attempt %d)", host.name, attempts)
            self.sleep(min(self.interval, deadline - now))
        raise Timeout(
            f"{host.name} not reachable after {self.timeout:g}s ({attempts} probes)",
            host=host.name,
        )


class ResetConnectionOperation(Operation):
    """Close the cached connection so the next task opens a fresh login."""

    action = "reset_connection"

    def apply(self, host: HostConfig, executor: Executor) -> ActionResult:
        executor.reset()
        return self.result(host, True, "connection reset")
