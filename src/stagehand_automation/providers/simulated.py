from __future__ import annotations

import ipaddress
import logging
from typing import Any, Iterable, Optional

from .base import Provider, ProviderResponse
from ..resources import ID_PREFIXES
from ..types import ObservedResource, ResourceNode

logger = logging.getLogger(__name__)


class SimulatedProvider(Provider):
    """
    Deterministic provider for rehearsals and tests.

    Identifiers are ``<prefix>-<n>`` per kind, skipping any in ``taken``
    (ids already recorded in state). Compute instances receive an
    ``address`` output: the ``private_ip`` property when declared, otherwise
    the next host address in ``address_pool`` not listed in
    ``taken_addresses``.

    fail_on
    Resource ids whose create/update/delete raises, to exercise halting.
    """

    def __init__(
        self,
        *,
        fail_on: Iterable[str] = (),
        address_pool: str = "10.0.1.0/24",
        taken: Iterable[str] = (),
        taken_addresses: Iterable[str] = (),
    ):
        self.fail_on = set(fail_on)
        self._counters: dict[str, int] = {}
        self._taken = set(taken)
        used = set(taken_addresses)
        self._addresses = (
            str(host) for host in ipaddress.ip_network(address_pool).hosts() if str(host) not in used
        )
        self.calls: list[tuple[str, str]] = []
        self.gone: set[str] = set()

    def create(self, node: ResourceNode, properties: dict[str, Any]) -> ProviderResponse:
        self._record("create", node.id)
        provider_id = self._next_id(node.kind)
        outputs: dict[str, Any] = {"id": provider_id}
        if node.kind == "compute-instance":
            outputs["address"] = str(properties.get("private_ip") or next(self._addresses))
            if properties.get("public_ip"):
                outputs["public_address"] = str(properties["public_ip"])
        logger.debug("simulated create id=%s provider_id=%s", node.id, provider_id)
        return ProviderResponse(provider_id=provider_id, outputs=outputs)

    def update(self, node, current, properties, diff) -> dict[str, Any]:
        self._record("update", node.id)
        outputs = dict(current.outputs)
        if node.kind == "compute-instance" and "private_ip" in diff and properties.get("private_ip"):
            outputs["address"] = str(properties["private_ip"])
        return outputs

    def delete(self, current: ObservedResource) -> None:
        self._record("delete", current.id)

    def read(self, current: ObservedResource) -> Optional[ObservedResource]:
        if current.provider_id in self.gone:
            return None
        return current

    def _record(self, verb: str, resource_id: str) -> None:
        self.calls.append((verb, resource_id))
        if resource_id in self.fail_on:
            raise RuntimeError(f"simulated {verb} failure")

    def _next_id(self, kind: str) -> str:
        prefix = ID_PREFIXES.get(kind, kind)
        while True:
            count = self._counters.get(kind, 0) + 1
            self._counters[kind] = count
            provider_id = f"{prefix}-{count:04d}"
            if provider_id not in self._taken:
                self._taken.add(provider_id)
                return provider_id
