from __future__ import annotations

from typing import Any, Optional

from .types import ResourceNode

RESOURCE_KINDS = (
    "network",
    "subnet",
    "gateway",
    "route-table",
    "firewall-rule",
    "compute-instance",
)

# Changing any of these on an existing resource forces delete + create.
IMMUTABLE_PROPERTIES: dict[str, frozenset[str]] = {
    "network": frozenset({"cidr_block", "region"}),
    "subnet": frozenset({"cidr_block", "availability_zone", "network"}),
    "gateway": frozenset({"network"}),
    "route-table": frozenset({"network"}),
    "firewall-rule": frozenset({"network", "direction"}),
    "compute-instance": frozenset({"image", "availability_zone", "subnet"}),
}

ID_PREFIXES = {
    "network": "net",
    "subnet": "subnet",
    "gateway": "gw",
    "route-table": "rtb",
    "firewall-rule": "fw",
    "compute-instance": "i",
}


def immutable_properties(node: ResourceNode) -> frozenset[str]:
    return IMMUTABLE_PROPERTIES.get(node.kind, frozenset()) | frozenset(node.force_new)


def is_reference(value: Any) -> bool:
    return isinstance(value, dict) and set(value) <= {"ref", "attribute"} and "ref" in value


def collect_references(value: Any) -> list[str]:
    """Return resource ids referenced anywhere inside ``value``."""

    if is_reference(value):
        return [str(value["ref"])]
    found: list[str] = []
    if isinstance(value, dict):
        for item in value.values():
            found.extend(collect_references(item))
    elif isinstance(value, list):
        for item in value:
            found.extend(collect_references(item))
    return found


def resolve_references(value: Any, lookup) -> Any:
    """Replace ``{ref = ...}`` tables using ``lookup(resource_id, attribute)``."""

    if is_reference(value):
        attribute: Optional[str] = value.get("attribute")
        return lookup(str(value["ref"]), attribute)
    if isinstance(value, dict):
        return {k: resolve_references(v, lookup) for k, v in value.items()}
    if isinstance(value, list):
        return [resolve_references(v, lookup) for v in value]
    return value
