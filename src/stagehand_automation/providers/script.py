from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Optional

from .base import Provider, ProviderResponse
from ..executors import Executor, LocalExecutor
from ..types import HostConfig, ObservedResource, ResourceNode

logger = logging.getLogger(__name__)


class ScriptProvider(Provider):
    """
    Provider backed by hook executables, one per resource kind.

    ``<hooks_dir>/<kind>`` receives a JSON request on stdin::

        {"action": "create", "id": "...", "kind": "...", "properties": {...}}

    and answers on stdout with ``{"provider_id": "...", "outputs": {...}}``.
    ``read`` requests may answer ``{"exists": false}``. A non-zero exit is a
    failure and its stderr is the cause.
    """

    def __init__(self, hooks_dir: Path, *, executor: Optional[Executor] = None, timeout: float = 600):
        self.hooks_dir = Path(hooks_dir)
        self.executor = executor or LocalExecutor(HostConfig(name="localhost"))
        self.timeout = timeout

    def create(self, node: ResourceNode, properties: dict[str, Any]) -> ProviderResponse:
        reply = self._call(node.kind, {"action": "create", "id": node.id, "kind": node.kind, "properties": properties})
        if not reply.get("provider_id"):
            raise RuntimeError(f"{self._hook(node.kind)} returned no provider_id for {node.id}")
        return ProviderResponse(provider_id=str(reply["provider_id"]), outputs=dict(reply.get("outputs", {})))

    def update(self, node, current, properties, diff) -> dict[str, Any]:
        reply = self._call(
            node.kind,
            {
                "action": "update",
                "id": node.id,
                "kind": node.kind,
                "provider_id": current.provider_id,
                "properties": properties,
                "changed": sorted(diff),
            },
        )
        return dict(reply.get("outputs", current.outputs))

    def delete(self, current: ObservedResource) -> None:
        self._call(
            current.kind,
            {"action": "delete", "id": current.id, "kind": current.kind, "provider_id": current.provider_id},
        )

    def read(self, current: ObservedResource) -> Optional[ObservedResource]:
        reply = self._call(
            current.kind,
            {"action": "read", "id": current.id, "kind": current.kind, "provider_id": current.provider_id},
        )
        if reply.get("exists") is False:
            return None
        if "outputs" in reply:
            current.outputs = dict(reply["outputs"])
        return current

    def _hook(self, kind: str) -> Path:
        return self.hooks_dir / kind

    def _call(self, kind: str, request: dict[str, Any]) -> dict[str, Any]:
        hook = self._hook(kind)
        if not hook.exists():
            raise FileNotFoundError(f"No provider hook for kind '{kind}' at {hook}")
        logger.debug("hook=%s action=%s id=%s", hook, request["action"], request["id"])
        result = self.executor.run(
            [str(hook)],
            check=False,
            mutable=False,
            timeout=self.timeout,
            input=json.dumps(request),
        )
        if result.returncode != 0:
            message = result.stderr.strip() or result.stdout.strip() or f"rc={result.returncode}"
            raise RuntimeError(f"{hook.name} {request['action']} failed: {message}")
        text = result.stdout.strip()
        if not text:
            return {}
        try:
            reply = json.loads(text)
        except json.JSONDecodeError as exc:
            raise RuntimeError(f"{hook.name} returned invalid JSON: {exc}") from None
        if not isinstance(reply, dict):
            raise RuntimeError(f"{hook.name} must answer with a JSON object")
        return reply
