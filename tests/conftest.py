from typing import Callable, Optional

import pytest

from stagehand_automation.executors import CommandResult, Executor
from stagehand_automation.types import HostConfig


class ScriptedExecutor(Executor):
    """Records commands and answers them from ``responder``."""

    def __init__(self, responder: Optional[Callable[[list[str]], tuple[int, str]]] = None, *, dry_run=False):
        super().__init__(HostConfig("scripted"), dry_run=dry_run)
        self.responder = responder or (lambda argv: (0, ""))
        self.commands: list[list[str]] = []
        self.envs: list[Optional[dict]] = []

    def run(self, command, *, check=True, mutable=True, env=None, cwd=None, timeout=None, input=None):
        argv = list(command)
        if self.dry_run and mutable:
            return CommandResult(argv, "", "skipped (dry-run)", 0)
        self.commands.append(argv)
        self.envs.append(env)
        rc, stdout = self.responder(argv)
        return CommandResult(argv, stdout, "", rc)


@pytest.fixture
def scripted():
    return ScriptedExecutor
