"""
Provider interface.

A provider is the only component that talks to whatever actually hosts the
resources. The reconciler hands it fully resolved properties and records what
it returns.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

from ..types import ObservedResource, ResourceNode


@dataclass
class ProviderResponse:
    provider_id: str
    outputs: dict[str, Any] = field(default_factory=dict)


class Provider(ABC):
    """Shared surface for resource backends."""

    @abstractmethod
    def create(self, node: ResourceNode, properties: dict[str, Any]) -> ProviderResponse:
        """Create ``node`` with resolved ``properties``."""

    @abstractmethod
    def update(
        self,
        node: ResourceNode,
        current: ObservedResource,
        properties: dict[str, Any],
        diff: dict[str, tuple[Any, Any]],
    ) -> dict[str, Any]:
        """Apply mutable property changes in place and return fresh outputs."""

    @abstractmethod
    def delete(self, current: ObservedResource) -> None:
        """Remove the resource identified by ``current.provider_id``."""

    def read(self, current: ObservedResource) -> Optional[ObservedResource]:
        """Return the live view of ``current`` or ``None`` when it is gone."""
        return current
