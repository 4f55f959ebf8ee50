from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class ResourceNode:
    id: str
    kind: str
    properties: dict[str, Any] = field(default_factory=dict)
    depends_on: list[str] = field(default_factory=list)
    force_new: list[str] = field(default_factory=list)
    variables: dict[str, Any] = field(default_factory=dict, repr=False)


@dataclass
class ObservedResource:
    id: str
    kind: str
    properties: dict[str, Any]
    provider_id: str
    outputs: dict[str, Any] = field(default_factory=dict)
    depends_on: list[str] = field(default_factory=list)
    fingerprints: dict[str, str] = field(default_factory=dict)


ObservedState = dict[str, ObservedResource]


CREATE = "create"
UPDATE = "update"
DELETE = "delete"


@dataclass
class ResourceOperation:
    kind: str
    resource_id: str
    node: Optional[ResourceNode] = None
    diff: dict[str, tuple[Any, Any]] = field(default_factory=dict)
    replacement: bool = False

    def describe(self) -> str:
        if self.kind == UPDATE:
            keys = ", ".join(sorted(self.diff))
            return f"update {self.resource_id} ({keys})"
        suffix = " (replace)" if self.replacement else ""
        return f"{self.kind} {self.resource_id}{suffix}"


@dataclass(frozen=True)
class OperationResult:
    operation: ResourceOperation
    status: str
    details: str = ""
    provider_id: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.status == "failed"


@dataclass
class ApplyReport:
    results: list[OperationResult] = field(default_factory=list)
    cancelled: bool = False

    @property
    def failed(self) -> bool:
        return any(result.failed for result in self.results)


@dataclass
class HostConfig:
    name: str
    address: Optional[str] = None
    connection: str = "local"
    user: Optional[str] = None
    key_file: Optional[str] = None
    port: int = 22
    become: bool = False
    variables: dict[str, Any] = field(default_factory=dict)


FAIL_FAST = "fail-fast"
CONTINUE = "continue"
RETRY = "retry"
FAILURE_POLICIES = {FAIL_FAST, CONTINUE, RETRY}


@dataclass
class TaskSpec:
    name: str
    action: str
    role: str
    args: dict[str, Any] = field(default_factory=dict)
    when: Optional[str] = None
    become: bool = False
    failure_policy: str = FAIL_FAST
    retries: int = 3
    delay: float = 1.0
    backoff: float = 2.0


@dataclass
class Inventory:
    hosts: dict[str, HostConfig]
    roles: dict[str, list[HostConfig]]


@dataclass
class ActionResult:
    host: str
    action: str
    changed: bool
    details: str
    failed: bool = False


SUCCESS = "success"
FAILED = "failed"
SKIPPED = "skipped"
NOT_ATTEMPTED = "not-attempted"


@dataclass(frozen=True)
class ExecutionResult:
    host: str
    task: str
    action: str
    status: str
    details: str = ""
    changed: bool = False
    attempts: int = 0
