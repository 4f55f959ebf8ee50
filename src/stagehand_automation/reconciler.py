"""
Resource reconciler.

Compares declared resources with observed state, produces an ordered list of
create/update/delete operations and applies them one at a time through a
provider. Plans are deterministic: the same declaration and state always yield
the same operations in the same order.
"""

from __future__ import annotations

import copy
import hashlib
import json
import logging
import threading
from typing import Any, Optional, Protocol, Sequence

from .errors import OperationFailed, PlanError, ReplacementRequired, UnknownReference
from .graph import topological_order
from .providers.base import Provider
from .resources import RESOURCE_KINDS, collect_references, immutable_properties, resolve_references
from .state import StateStore
from .types import (
    CREATE,
    DELETE,
    UPDATE,
    ApplyReport,
    ObservedResource,
    ObservedState,
    OperationResult,
    ResourceNode,
    ResourceOperation,
)
from .variables import render_value

logger = logging.getLogger(__name__)

APPLIED = "applied"
FAILED = "failed"
NOT_ATTEMPTED = "not-attempted"

_MISSING = object()


def _fingerprint(value: Any) -> str:
    encoded = json.dumps(value, sort_keys=True, default=str).encode()
    return "sha256:" + hashlib.sha256(encoded).hexdigest()


class CreationListener(Protocol):
    def begin_cycle(self) -> None:
        """Called once at the start of every apply."""

    def on_resource_created(self, node: ResourceNode, resource: ObservedResource) -> None:
        """Called after a Create has completed and been recorded."""


class Reconciler:
    def __init__(
        self,
        provider: Provider,
        *,
        allow_replace: bool = True,
        state_store: Optional[StateStore] = None,
    ):
        self.provider = provider
        self.allow_replace = allow_replace
        self.state_store = state_store
        self.listeners: list[CreationListener] = []

    def add_listener(self, listener: CreationListener) -> None:
        self.listeners.append(listener)

    def refresh(self, observed: ObservedState) -> ObservedState:
        """Re-read every known resource; drop the ones that no longer exist."""

        refreshed: ObservedState = {}
        for rid, current in observed.items():
            live = self.provider.read(current)
            if live is None:
                logger.info("resource=%s provider_id=%s no longer exists", rid, current.provider_id)
                continue
            refreshed[rid] = live
        return refreshed

    def plan(self, desired: Sequence[ResourceNode], observed: ObservedState) -> list[ResourceOperation]:
        nodes = self._index(desired)
        dependencies = {rid: self.dependencies(node) for rid, node in nodes.items()}
        for rid, deps in dependencies.items():
            for dep in deps:
                if dep not in nodes:
                    raise UnknownReference(rid, dep)
        order = topological_order(list(nodes), dependencies)

        removed = [rid for rid in observed if rid not in nodes]
        removal_order = topological_order(
            removed,
            {rid: observed[rid].depends_on for rid in removed},
            reverse=True,
        )
        operations = [ResourceOperation(DELETE, rid) for rid in removal_order]

        # Replacement deletes run dependents first, ahead of every create.
        replacement_deletes: list[ResourceOperation] = []
        forward: list[ResourceOperation] = []
        replaced: set[str] = set()
        for rid in order:
            node = nodes[rid]
            current = observed.get(rid)
            if current is None:
                forward.append(ResourceOperation(CREATE, rid, node=node))
                continue
            diff = self._changes(node, current, replaced)
            forced = set(diff) & immutable_properties(node)
            if current.kind != node.kind:
                forced.add("kind")
            if forced:
                if not self.allow_replace:
                    raise ReplacementRequired(rid, forced)
                logger.debug("resource=%s replacement forced by %s", rid, ",".join(sorted(forced)))
                replaced.add(rid)
                replacement_deletes.append(ResourceOperation(DELETE, rid, diff=diff, replacement=True))
                forward.append(ResourceOperation(CREATE, rid, node=node, diff=diff, replacement=True))
            elif diff:
                forward.append(ResourceOperation(UPDATE, rid, node=node, diff=diff))
        operations.extend(reversed(replacement_deletes))
        operations.extend(forward)
        return operations

    def _changes(
        self,
        node: ResourceNode,
        current: ObservedResource,
        replaced: set[str],
    ) -> dict[str, tuple[Any, Any]]:
        """Declared differences plus keys whose resolved value moved underneath them.

        A key moves when its rendered value no longer matches the recorded
        fingerprint, or when it references a resource being replaced.
        """

        diff = self.diff(current.properties, node.properties)
        fingerprints = self.fingerprints(node, self.render(node))
        moved = {
            key
            for key in set(current.fingerprints) | set(fingerprints)
            if current.fingerprints.get(key) != fingerprints.get(key)
        }
        moved.update(
            key for key, value in node.properties.items() if replaced.intersection(collect_references(value))
        )
        for key in moved - set(diff):
            diff[key] = (current.properties.get(key), node.properties.get(key))
        return dict(sorted(diff.items()))

    def destroy(self, observed: ObservedState) -> list[ResourceOperation]:
        return self.plan([], observed)

    def apply(
        self,
        operations: Sequence[ResourceOperation],
        observed: ObservedState,
        *,
        cancel: Optional[threading.Event] = None,
    ) -> ApplyReport:
        """Execute ``operations`` in order, updating ``observed`` as they land.

        The first failure halts the run; nothing already applied is undone.
        """

        for listener in self.listeners:
            listener.begin_cycle()

        report = ApplyReport()
        halted_by: Optional[str] = None
        for operation in operations:
            if halted_by is not None:
                report.results.append(
                    OperationResult(operation, NOT_ATTEMPTED, f"halted after {halted_by} failed")
                )
                continue
            if cancel is not None and cancel.is_set():
                report.cancelled = True
                report.results.append(OperationResult(operation, NOT_ATTEMPTED, "cancelled"))
                continue

            logger.info("applying %s", operation.describe())
            try:
                result, created = self._execute(operation, observed)
            except Exception as exc:  # noqa: BLE001
                error = OperationFailed(operation.resource_id, exc)
                logger.error("%s failed: %s", operation.describe(), exc, exc_info=True)
                report.results.append(OperationResult(operation, FAILED, str(error)))
                halted_by = operation.resource_id
                continue

            report.results.append(result)
            if self.state_store is not None:
                self.state_store.save(observed)
            if created is not None and operation.node is not None:
                for listener in self.listeners:
                    listener.on_resource_created(operation.node, created)
        return report

    def _execute(
        self,
        operation: ResourceOperation,
        observed: ObservedState,
    ) -> tuple[OperationResult, Optional[ObservedResource]]:
        rid = operation.resource_id
        if operation.kind == DELETE:
            current = observed[rid]
            self.provider.delete(current)
            del observed[rid]
            return OperationResult(operation, APPLIED, f"deleted {current.provider_id}", current.provider_id), None

        node = operation.node
        if node is None:
            raise PlanError(f"{operation.kind} {rid} has no resource declaration")
        rendered = self.render(node)
        properties = self._resolve(rendered, observed)

        if operation.kind == CREATE:
            response = self.provider.create(node, properties)
            created = ObservedResource(
                id=rid,
                kind=node.kind,
                properties=copy.deepcopy(node.properties),
                provider_id=response.provider_id,
                outputs=dict(response.outputs),
                depends_on=self.dependencies(node),
                fingerprints=self.fingerprints(node, rendered),
            )
            observed[rid] = created
            return OperationResult(operation, APPLIED, f"created {response.provider_id}", response.provider_id), created

        current = observed[rid]
        outputs = self.provider.update(node, current, properties, operation.diff)
        current.properties = copy.deepcopy(node.properties)
        current.outputs = dict(outputs)
        current.depends_on = self.dependencies(node)
        current.fingerprints = self.fingerprints(node, rendered)
        changed = ", ".join(sorted(operation.diff))
        return OperationResult(operation, APPLIED, f"updated {changed}", current.provider_id), None

    @staticmethod
    def _resolve(properties: dict[str, Any], observed: ObservedState) -> dict[str, Any]:
        def lookup(ref: str, attribute: Optional[str]) -> Any:
            target = observed.get(ref)
            if target is None:
                raise RuntimeError(f"referenced resource '{ref}' does not exist")
            if attribute is None or attribute == "id":
                return target.provider_id
            if attribute not in target.outputs:
                raise RuntimeError(f"resource '{ref}' has no attribute '{attribute}'")
            return target.outputs[attribute]

        return resolve_references(properties, lookup)

    @staticmethod
    def render(node: ResourceNode) -> dict[str, Any]:
        return render_value(node.properties, node.variables)

    @staticmethod
    def fingerprints(node: ResourceNode, rendered: dict[str, Any]) -> dict[str, str]:
        """Digests of the properties whose rendered value differs from the declared one."""

        return {
            key: _fingerprint(value)
            for key, value in rendered.items()
            if value != node.properties.get(key)
        }

    @staticmethod
    def dependencies(node: ResourceNode) -> list[str]:
        return list(dict.fromkeys([*node.depends_on, *collect_references(node.properties)]))

    @staticmethod
    def diff(current: dict[str, Any], desired: dict[str, Any]) -> dict[str, tuple[Any, Any]]:
        changes: dict[str, tuple[Any, Any]] = {}
        for key in sorted(set(current) | set(desired)):
            old = current.get(key, _MISSING)
            new = desired.get(key, _MISSING)
            if old != new:
                changes[key] = (None if old is _MISSING else old, None if new is _MISSING else new)
        return changes

    @staticmethod
    def _index(desired: Sequence[ResourceNode]) -> dict[str, ResourceNode]:
        nodes: dict[str, ResourceNode] = {}
        for node in desired:
            if node.id in nodes:
                raise PlanError(f"resource '{node.id}' is declared more than once")
            if node.kind not in RESOURCE_KINDS:
                raise PlanError(f"resource '{node.id}' has unknown kind '{node.kind}'")
            nodes[node.id] = node
        return nodes
