from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from ..types import ActionResult, HostConfig
from ..executors import Executor


class Operation(ABC):
    """Shared surface for runnable task actions.

    ``is_satisfied`` is the idempotency contract: the runner calls it before
    ``apply`` and records success without acting when it returns True.
    """

    action = "operation"

    def __init__(self, spec: dict[str, Any]):
        self.spec = spec

    def is_satisfied(self, host: HostConfig, executor: Executor) -> bool:
        return False

    @abstractmethod
    def apply(self, host: HostConfig, executor: Executor) -> ActionResult:
        """Perform the operation against ``host`` using ``executor``."""

    def result(self, host: HostConfig, changed: bool, details: str, *, failed: bool = False) -> ActionResult:
        return ActionResult(host=host.name, action=self.action, changed=changed, details=details, failed=failed)
