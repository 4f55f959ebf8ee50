from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

from .base import Operation
from ..executors import Executor
from ..types import ActionResult, HostConfig
from ..variables import render_value


class FileOperation(Operation):
    """Ensure files exist with the requested contents."""

    action = "file"

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        raw_path = spec.get("path")
        if not raw_path:
            raise ValueError("file operation requires a path")
        self.path = Path(str(raw_path))
        self.state = str(spec.get("state", "present"))
        if self.state not in {"present", "absent"}:
            raise ValueError("file operation state must be 'present' or 'absent'")
        raw_content = spec.get("content")
        self.content = "" if raw_content is None else str(raw_content)
        self.mode = self._parse_mode(spec.get("mode"))
        self.template = str(spec["template"]) if spec.get("template") else None
        self.variables = spec.get("variables", {})
        if not isinstance(self.variables, dict):
            raise ValueError("file operation variables must be a mapping")
        base_dir = spec.get("_base_dir")
        self.base_dir = Path(str(base_dir)) if base_dir else None

    def is_satisfied(self, host: HostConfig, executor: Executor) -> bool:
        current = executor.read_file(self.path)
        if self.state == "absent":
            return current is None
        if current != self._render_content(host):
            return False
        # Mode drift is only visible to write_file.
        return self.mode is None

    def apply(self, host: HostConfig, executor: Executor) -> ActionResult:
        if self.state == "present":
            content = self._render_content(host)
            changed, detail = executor.write_file(self.path, content=content, mode=self.mode)
        else:
            changed = executor.remove_path(self.path)
            detail = "removed" if changed else "noop"
        return self.result(host, changed, detail)

    def _render_content(self, host: HostConfig) -> str:
        if not self.template:
            return self.content
        template_path = Path(self.template).expanduser()
        if not template_path.is_absolute() and self.base_dir is not None:
            template_path = self.base_dir / template_path
        context: dict[str, Any] = dict(host.variables)
        context.update(self.variables)
        context.setdefault("inventory_hostname", host.name)
        return str(render_value(template_path.read_text(), context))

    @staticmethod
    def _parse_mode(value: Optional[object]) -> Optional[int]:
        if value is None:
            return None
        if isinstance(value, int):
            return value
        text = str(value).strip()
        if not text:
            return None
        return int(text, 8)
