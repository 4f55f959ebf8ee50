from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

try:
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib  # type: ignore[no-redef]


DEFAULT_CONFIG = Path("/etc/stagehand/main.conf")


@dataclass
class StagehandConfig:
    state_file: Optional[Path] = None
    variable_file: Optional[Path] = None
    provider: str = "simulated"
    hooks_dir: Optional[Path] = None
    max_workers: int = 8
    aws_region: Optional[str] = None
    aws_profile: Optional[str] = None
    plugin_dirs: list[Path] = field(default_factory=list)
    plugin_modules: list[str] = field(default_factory=list)


def load_config(path: Path) -> StagehandConfig:
    if not path.exists():
        return StagehandConfig()
    data = tomllib.loads(path.read_text())
    defaults = data.get("defaults", {})
    state_file = defaults.get("state_file")
    variable_file = defaults.get("variable_file")
    hooks_dir = defaults.get("hooks_dir")
    provider = str(defaults.get("provider", "simulated"))
    if provider not in {"simulated", "script"}:
        raise ValueError(f"{path}: unknown provider '{provider}'")
    aws_region = defaults.get("aws_region")
    aws_profile = defaults.get("aws_profile")
    return StagehandConfig(
        state_file=Path(state_file) if state_file else None,
        variable_file=Path(variable_file) if variable_file else None,
        provider=provider,
        hooks_dir=Path(hooks_dir) if hooks_dir else None,
        max_workers=int(defaults.get("max_workers", 8)),
        aws_region=str(aws_region) if aws_region else None,
        aws_profile=str(aws_profile) if aws_profile else None,
        plugin_dirs=[Path(p) for p in defaults.get("plugin_dirs", [])],
        plugin_modules=[str(m) for m in defaults.get("plugin_modules", [])],
    )
