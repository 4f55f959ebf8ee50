"""
Example plugin module for Stagehand.

Drop this file into a plugin directory (see plugin_dirs in main.conf) or make it
importable (plugin_modules) and it registers a task action called `say_hello`
that reports a greeting without changing the host.
"""

from stagehand_automation.operations.base import Operation
from stagehand_automation.types import ActionResult, HostConfig


class SayHelloOperation(Operation):
    action = "say_hello"

    def __init__(self, spec: dict):
        super().__init__(spec)
        self.message = spec.get("message", "hello")

    def is_satisfied(self, host: HostConfig, executor) -> bool:
        return bool(self.spec.get("quiet"))

    def apply(self, host: HostConfig, executor) -> ActionResult:
        return self.result(host, False, f"greeting: {self.message} from {host.name}")


def register_operations(registry) -> None:
    registry["say_hello"] = SayHelloOperation
