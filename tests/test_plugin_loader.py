from pathlib import Path

import stagehand_automation.operations as ops
from stagehand_automation import cli
from stagehand_automation.cli import _load_plugins
from stagehand_automation.config import StagehandConfig
from stagehand_automation.operations.base import Operation
from stagehand_automation.types import HostConfig

EXAMPLE_PLUGINS = Path(__file__).resolve().parents[1] / "examples" / "plugins"


def test_plugin_directory_registration(monkeypatch):
    registry: dict = {}
    monkeypatch.setattr(ops, "OPERATION_REGISTRY", registry)
    monkeypatch.setattr(cli, "OPERATION_REGISTRY", registry)

    _load_plugins(StagehandConfig(plugin_dirs=[EXAMPLE_PLUGINS]))

    assert issubclass(registry["say_hello"], Operation)
    result = registry["say_hello"]({"message": "hi"}).apply(HostConfig("web1"), None)
    assert result.details == "greeting: hi from web1"


def test_plugin_module_import(monkeypatch, tmp_path: Path):
    mod_path = tmp_path / "myplugin"
    mod_path.mkdir()
    (mod_path / "__init__.py").write_text("")
    (mod_path / "extra_ops.py").write_text(
        """
from stagehand_automation.operations.base import Operation


class ExtraOp(Operation):
    action = "extra_op"

    def apply(self, host, executor):
        return self.result(host, False, "noop")


def register_operations(registry):
    registry["extra_op"] = ExtraOp
"""
    )
    monkeypatch.syspath_prepend(str(tmp_path))
    registry: dict = {}
    monkeypatch.setattr(cli, "OPERATION_REGISTRY", registry)

    _load_plugins(StagehandConfig(plugin_modules=["myplugin.extra_ops"]))

    assert registry["extra_op"].action == "extra_op"


def test_module_without_hook_is_ignored(monkeypatch, tmp_path: Path, caplog):
    plugin_dir = tmp_path / "plugins"
    plugin_dir.mkdir()
    (plugin_dir / "empty.py").write_text("VALUE = 1\n")
    registry: dict = {}
    monkeypatch.setattr(cli, "OPERATION_REGISTRY", registry)

    _load_plugins(StagehandConfig(plugin_dirs=[plugin_dir]))

    assert registry == {}
    assert "no register_operations" in caplog.text
