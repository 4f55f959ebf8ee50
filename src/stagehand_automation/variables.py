from __future__ import annotations

import re
from pathlib import Path
from string import Template
from typing import Any, Optional

import jinja2

from .inventory import read_toml
from .secrets import SecretResolver

_JINJA_RE = re.compile(r"{[{%]")
_WHOLE_VAR_RE = re.compile(r"^\$\{([A-Za-z_][A-Za-z0-9_]*)\}$")

_env = jinja2.Environment(undefined=jinja2.StrictUndefined, autoescape=False)


def load_variables(path: Optional[Path], resolver: Optional[SecretResolver] = None) -> dict[str, Any]:
    """Read a variable file and resolve any secret references it holds."""

    if path is None:
        return {}
    path = Path(path)
    data = read_toml(path)
    values = data.get("variables", data)
    if not isinstance(values, dict):
        raise ValueError(f"{path}: variables must be a table")
    resolver = resolver or SecretResolver()
    return resolver.resolve(values)


def render_value(value: Any, context: dict[str, Any]) -> Any:
    """Substitute ``${name}`` and ``{{ name }}`` placeholders recursively.

    A string that is exactly ``${name}`` takes the variable's value unchanged,
    so lists and numbers survive substitution.
    """

    if isinstance(value, str):
        whole = _WHOLE_VAR_RE.match(value)
        if whole and whole.group(1) in context:
            return context[whole.group(1)]
        if _JINJA_RE.search(value):
            try:
                return _env.from_string(value).render(**context)
            except jinja2.UndefinedError as exc:
                raise ValueError(f"cannot render '{value}': {exc}") from None
        return Template(value).safe_substitute(context)
    if isinstance(value, dict):
        return {k: render_value(v, context) for k, v in value.items()}
    if isinstance(value, list):
        return [render_value(v, context) for v in value]
    return value


def evaluate_guard(expression: str, context: dict[str, Any]) -> bool:
    """Evaluate a ``when`` expression such as ``os_family == 'debian'``."""

    compiled = _env.compile_expression(expression, undefined_to_none=False)
    return bool(compiled(**context))
