"""
Handoff from provisioning to configuration.

When the reconciler creates a compute instance that has a binding, the bridge
runs the bound task list against the new instance's address. It triggers at
most once per resource per apply and never retries the task run itself: task
level retries belong to the runner's failure policies.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from .runner import TaskRunner
from .types import ExecutionResult, FAILED, HostConfig, ObservedResource, ResourceNode, TaskSpec

logger = logging.getLogger(__name__)


@dataclass
class Handoff:
    resource: str
    role: str
    tasks: list[TaskSpec]
    wait_timeout: Optional[float] = 300.0
    user: Optional[str] = None
    key_file: Optional[str] = None
    port: int = 22
    become: bool = False
    address_output: str = "address"
    variables: dict[str, Any] = field(default_factory=dict)


@dataclass
class HandoffOutcome:
    resource_id: str
    host: Optional[HostConfig]
    results: dict[str, list[ExecutionResult]] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        if self.error:
            return True
        return any(r.status == FAILED for host_results in self.results.values() for r in host_results)


class HandoffBridge:
    def __init__(self, runner: TaskRunner, handoffs: list[Handoff]):
        self.runner = runner
        self.handoffs = {handoff.resource: handoff for handoff in handoffs}
        self.outcomes: dict[str, HandoffOutcome] = {}
        self._triggered: set[str] = set()

    def begin_cycle(self) -> None:
        self._triggered.clear()
        self.outcomes.clear()

    def on_resource_created(self, node: ResourceNode, resource: ObservedResource) -> None:
        if node.kind != "compute-instance":
            return
        handoff = self.handoffs.get(node.id)
        if handoff is None:
            logger.debug("resource=%s created without a handoff binding", node.id)
            return
        if node.id in self._triggered:
            logger.debug("resource=%s handoff already triggered this cycle", node.id)
            return
        self._triggered.add(node.id)

        address = resource.outputs.get(handoff.address_output)
        if not address:
            self.outcomes[node.id] = HandoffOutcome(
                resource_id=node.id,
                host=None,
                error=f"created resource has no '{handoff.address_output}' output",
            )
            logger.error("resource=%s handoff skipped: %s", node.id, self.outcomes[node.id].error)
            return

        host = HostConfig(
            name=node.id,
            address=str(address),
            connection="ssh",
            user=handoff.user,
            key_file=handoff.key_file,
            port=handoff.port,
            become=handoff.become,
            variables={**handoff.variables, "provider_id": resource.provider_id},
        )
        tasks = self._bound_tasks(handoff)
        logger.info("resource=%s handing off to role=%s at %s (%d tasks)", node.id, handoff.role, address, len(tasks))
        try:
            results = self.runner.run(tasks, {handoff.role: [host]})
        except ValueError as exc:
            self.outcomes[node.id] = HandoffOutcome(resource_id=node.id, host=host, error=str(exc))
            logger.error("resource=%s handoff failed: %s", node.id, exc)
            return
        self.outcomes[node.id] = HandoffOutcome(resource_id=node.id, host=host, results=results)

    @staticmethod
    def _bound_tasks(handoff: Handoff) -> list[TaskSpec]:
        tasks = [task for task in handoff.tasks if task.role == handoff.role]
        skipped = len(handoff.tasks) - len(tasks)
        if skipped:
            logger.debug("resource=%s ignoring %d tasks for other roles", handoff.resource, skipped)
        if handoff.wait_timeout:
            wait = TaskSpec(
                name="wait for connection",
                action="wait_reachable",
                role=handoff.role,
                args={"timeout": handoff.wait_timeout},
            )
            tasks.insert(0, wait)
        return tasks
