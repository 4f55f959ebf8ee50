from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from .bridge import Handoff
from .inventory import TaskListLoader, read_toml
from .types import ResourceNode
from .variables import render_value


@dataclass
class Declaration:
    resources: list[ResourceNode]
    handoffs: list[Handoff] = field(default_factory=list)


class DeclarationLoader:
    """Loads desired-state declarations.

    Resources keep their declaration order, which is the tie-breaker for
    planning. Properties keep their declared placeholders; the variables
    travel with each node and are rendered at apply time, so resolved
    values (secrets included) never reach state or plan output.
    """

    def load(self, path: Path, variables: Optional[dict[str, Any]] = None) -> Declaration:
        path = Path(path)
        data = read_toml(path)
        context = dict(variables or {})
        raw_resources = data.get("resources", {})
        if not isinstance(raw_resources, dict):
            raise ValueError(f"{path}: resources must be a table")
        resources = [
            self._parse_resource(rid, raw, path, context)
            for rid, raw in raw_resources.items()
        ]
        declared = {node.id for node in resources}
        handoffs = [
            self._parse_handoff(raw, index, path, context, declared)
            for index, raw in enumerate(data.get("handoff", []), start=1)
        ]
        return Declaration(resources=resources, handoffs=handoffs)

    @staticmethod
    def _parse_resource(rid: str, raw: Any, path: Path, context: dict[str, Any]) -> ResourceNode:
        if not isinstance(raw, dict):
            raise ValueError(f"{path}: resource '{rid}' must be a table")
        kind = raw.get("kind")
        if not kind:
            raise ValueError(f"{path}: resource '{rid}' is missing a kind")
        properties = raw.get("properties", {})
        if not isinstance(properties, dict):
            raise ValueError(f"{path}: resource '{rid}' properties must be a table")
        depends = raw.get("depends_on", [])
        if isinstance(depends, str):
            depends = [depends]
        try:
            render_value(properties, context)
        except ValueError as exc:
            raise ValueError(f"{path}: resource '{rid}': {exc}") from None
        return ResourceNode(
            id=rid,
            kind=str(kind),
            properties=properties,
            depends_on=[str(dep) for dep in depends],
            force_new=[str(key) for key in raw.get("force_new", [])],
            variables=context,
        )

    @staticmethod
    def _parse_handoff(
        raw: dict[str, Any],
        index: int,
        path: Path,
        context: dict[str, Any],
        declared: set[str],
    ) -> Handoff:
        where = f"{path}: handoff {index}"
        resource = raw.get("resource")
        if resource not in declared:
            raise ValueError(f"{where} targets undeclared resource '{resource}'")
        role = raw.get("role")
        tasklist = raw.get("tasklist")
        if not role or not tasklist:
            raise ValueError(f"{where} needs both role and tasklist")
        tasklist_path = Path(str(tasklist)).expanduser()
        if not tasklist_path.is_absolute():
            tasklist_path = path.parent / tasklist_path
        wait_timeout = raw.get("wait_timeout", 300)
        return Handoff(
            resource=str(resource),
            role=str(role),
            tasks=TaskListLoader().load(tasklist_path).tasks,
            wait_timeout=float(wait_timeout) if wait_timeout else None,
            user=render_value(raw.get("user"), context),
            key_file=render_value(raw.get("key_file"), context),
            port=int(raw.get("port", 22)),
            become=bool(raw.get("become", False)),
            address_output=str(raw.get("address_output", "address")),
            variables=dict(raw.get("variables", {})),
        )
