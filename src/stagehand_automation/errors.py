"""
Error taxonomy.

Planning errors stop before any operation is attempted. Apply errors halt the
remaining operations. Task errors are scoped to one host and one task and are
turned into results by the runner.
"""

from __future__ import annotations

from typing import Iterable, Optional


class StagehandError(Exception):
    """Base class for all Stagehand exceptions."""


class PlanError(StagehandError):
    """Raised when a desired-state declaration cannot be planned."""


class CycleDetected(PlanError):
    def __init__(self, resource_ids: Iterable[str]):
        self.resource_ids = sorted(resource_ids)
        super().__init__(f"dependency cycle between: {', '.join(self.resource_ids)}")


class ReplacementRequired(PlanError):
    def __init__(self, resource_id: str, properties: Iterable[str]):
        self.resource_id = resource_id
        self.properties = sorted(properties)
        joined = ", ".join(self.properties)
        super().__init__(f"{resource_id}: immutable properties changed ({joined}); replacement required")


class UnknownReference(PlanError):
    def __init__(self, resource_id: str, reference: str):
        self.resource_id = resource_id
        self.reference = reference
        super().__init__(f"{resource_id}: depends on undeclared resource '{reference}'")


class OperationFailed(StagehandError):
    def __init__(self, resource_id: str, cause: BaseException | str):
        self.resource_id = resource_id
        self.cause = cause
        super().__init__(f"{resource_id}: {cause}")


class TaskError(StagehandError):
    """Failure scoped to a single task on a single host."""

    def __init__(self, message: str, *, task: Optional[str] = None, host: Optional[str] = None):
        super().__init__(message)
        self.task = task
        self.host = host


class GuardFailed(TaskError):
    """The ``when`` guard could not be evaluated; the task is skipped."""


class IdempotencyCheckFailed(TaskError):
    """The already-satisfied check raised; the action is attempted anyway."""


class Timeout(TaskError):
    """A wait or connect did not succeed before its deadline."""


class ConnectionLost(TaskError):
    """The transport to the host dropped while running a command."""
