from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from .types import ObservedResource, ObservedState

logger = logging.getLogger(__name__)


def _normalize_value(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _normalize_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_normalize_value(v) for v in value]
    if isinstance(value, Path):
        return str(value)
    return value


class StateStore:
    """Persists observed resource state between runs as JSON.

    Properties are stored in their declared form. Values that came from
    variable rendering are represented only by their fingerprints.
    """

    VERSION = 1

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> ObservedState:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text())
        except json.JSONDecodeError:
            logger.warning("State file %s is corrupt; starting fresh", self.path)
            return {}
        observed: ObservedState = {}
        for rid, entry in data.get("resources", {}).items():
            observed[rid] = ObservedResource(
                id=rid,
                kind=entry["kind"],
                properties=entry.get("properties", {}),
                provider_id=entry["provider_id"],
                outputs=entry.get("outputs", {}),
                depends_on=list(entry.get("depends_on", [])),
                fingerprints=dict(entry.get("fingerprints", {})),
            )
        return observed

    def save(self, observed: ObservedState) -> None:
        payload = {
            "version": self.VERSION,
            "resources": {
                rid: {
                    "kind": res.kind,
                    "properties": _normalize_value(res.properties),
                    "provider_id": res.provider_id,
                    "outputs": _normalize_value(res.outputs),
                    "depends_on": list(res.depends_on),
                    "fingerprints": dict(res.fingerprints),
                }
                for rid, res in observed.items()
            },
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        tmp.write_text(json.dumps(payload, indent=2, sort_keys=True))
        try:
            os.chmod(tmp, 0o600)
        except OSError:
            logger.debug("Unable to chmod state file %s", tmp, exc_info=True)
        os.replace(tmp, self.path)
