from __future__ import annotations

import argparse
import importlib
import importlib.util
import logging
import os
import signal
import sys
import threading
from pathlib import Path
from typing import Iterable, Optional, Sequence

from .bridge import HandoffBridge
from .config import DEFAULT_CONFIG, StagehandConfig, load_config
from .declarations import DeclarationLoader
from .errors import PlanError
from .inventory import InventoryLoader, TaskListLoader
from .operations import OPERATION_REGISTRY
from .providers import Provider, ScriptProvider, SimulatedProvider
from .reconciler import Reconciler
from .runner import TaskRunner
from .state import StateStore
from .types import (
    CREATE,
    DELETE,
    FAILED,
    NOT_ATTEMPTED,
    SKIPPED,
    UPDATE,
    ExecutionResult,
    ObservedState,
    OperationResult,
    ResourceOperation,
)
from .variables import load_variables

EXIT_OK = 0
EXIT_PLAN_ERROR = 2
EXIT_PARTIAL_FAILURE = 3
EXIT_CANCELLED = 130


class Ansi:
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    RED = "\033[91m"
    BLUE = "\033[94m"
    RESET = "\033[0m"


def colorize(text: str, color: Optional[str]) -> str:
    if not color:
        return text
    if not sys.stdout.isatty() or os.environ.get("NO_COLOR"):
        return text
    return f"{color}{text}{Ansi.RESET}"


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG,
        help=f"Path to stagehand config file (default: {DEFAULT_CONFIG})",
    )
    common.add_argument("--var-file", type=Path, help="TOML file of variable overrides")
    common.add_argument(
        "--log-level",
        default="WARNING",
        help="Python logging level (default: WARNING)",
    )

    parser = argparse.ArgumentParser(description="Stagehand provisioning and configuration runner")
    sub = parser.add_subparsers(dest="command", required=True)
    for name, help_text in (
        ("plan", "Show the operations needed to reach the declared state"),
        ("apply", "Plan and apply the declared state"),
        ("destroy", "Delete every resource recorded in state"),
    ):
        cmd = sub.add_parser(name, parents=[common], help=help_text)
        cmd.add_argument("declaration", type=Path, help="Desired-state declaration (TOML)")
        cmd.add_argument(
            "--state-file",
            type=Path,
            help="Location for observed state (default: declaration + .state.json)",
        )
        cmd.add_argument(
            "--no-replace",
            action="store_true",
            help="Fail instead of replacing resources whose immutable properties changed",
        )

    run = sub.add_parser("run", parents=[common], help="Run a task list against an inventory")
    run.add_argument("tasklist", type=Path, help="Task list file (TOML)")
    run.add_argument("--inventory", "-i", type=Path, required=True, help="Inventory file (TOML)")
    run.add_argument("--dry-run", action="store_true", help="Check tasks without executing them")
    run.add_argument("--max-workers", type=int, help="Hosts worked in parallel")
    return parser.parse_args(argv)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(levelname)s %(name)s - %(message)s",
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level)

    try:
        cfg = load_config(args.config)
        _apply_aws_env(cfg)
        _load_plugins(cfg)
        variables = load_variables(args.var_file or cfg.variable_file)
    except (ValueError, ImportError, OSError, RuntimeError) as exc:
        print(colorize(f"Configuration failed: {exc}", Ansi.RED), file=sys.stderr)
        return EXIT_PLAN_ERROR

    cancel, previous_handler = _install_cancel_handler()
    try:
        if args.command == "run":
            return _run_tasks(args, cfg, variables, cancel)
        return _reconcile(args, cfg, variables, cancel)
    finally:
        if previous_handler is not None:
            signal.signal(signal.SIGINT, previous_handler)


def _reconcile(args: argparse.Namespace, cfg: StagehandConfig, variables: dict, cancel: threading.Event) -> int:
    decl_path: Path = args.declaration
    try:
        declaration = DeclarationLoader().load(decl_path, variables)
    except (ValueError, OSError) as exc:
        print(colorize(f"Declaration invalid: {exc}", Ansi.RED), file=sys.stderr)
        return EXIT_PLAN_ERROR

    state_path = args.state_file or cfg.state_file or decl_path.with_name(decl_path.name + ".state.json")
    store = StateStore(state_path)
    observed = store.load()
    try:
        reconciler = Reconciler(
            _build_provider(cfg, observed),
            allow_replace=not args.no_replace,
            state_store=None if args.command == "plan" else store,
        )
        observed = reconciler.refresh(observed)
        if args.command == "destroy":
            operations = reconciler.destroy(observed)
        else:
            operations = reconciler.plan(declaration.resources, observed)
    except (PlanError, ValueError, RuntimeError, OSError) as exc:
        print(colorize(f"Plan failed: {exc}", Ansi.RED), file=sys.stderr)
        return EXIT_PLAN_ERROR

    for operation in operations:
        print(format_operation(operation))
    print(PlanSummary(operations).render())
    if args.command == "plan":
        return EXIT_OK
    if not operations:
        store.save(observed)
        return EXIT_OK

    runner = TaskRunner(variables=variables, max_workers=cfg.max_workers, cancel=cancel)
    bridge = HandoffBridge(runner, declaration.handoffs)
    if args.command == "apply":
        reconciler.add_listener(bridge)

    report = reconciler.apply(operations, observed, cancel=cancel)
    store.save(observed)
    for result in report.results:
        print(format_operation_result(result))

    handoff_failed = False
    for outcome in bridge.outcomes.values():
        if outcome.error:
            print(colorize(f"{outcome.resource_id}::handoff failed - {outcome.error}", Ansi.RED))
        for host_results in outcome.results.values():
            for result in host_results:
                print(format_result(result))
        handoff_failed = handoff_failed or outcome.failed

    if report.cancelled or cancel.is_set():
        return EXIT_CANCELLED
    if report.failed or handoff_failed:
        return EXIT_PARTIAL_FAILURE
    return EXIT_OK


def _run_tasks(args: argparse.Namespace, cfg: StagehandConfig, variables: dict, cancel: threading.Event) -> int:
    try:
        inventory = InventoryLoader().load(args.inventory)
        tasklist = TaskListLoader().load(args.tasklist)
    except (ValueError, OSError) as exc:
        print(colorize(f"Task list validation failed: {exc}", Ansi.RED), file=sys.stderr)
        return EXIT_PLAN_ERROR

    runner = TaskRunner(
        variables=variables,
        dry_run=args.dry_run,
        max_workers=args.max_workers or cfg.max_workers,
        cancel=cancel,
    )
    try:
        results = runner.run(tasklist.tasks, inventory.roles)
    except ValueError as exc:
        print(colorize(f"Task list validation failed: {exc}", Ansi.RED), file=sys.stderr)
        return EXIT_PLAN_ERROR

    summary = RunSummary()
    for host_results in results.values():
        for result in host_results:
            summary.add(result)
            print(format_result(result))
    print(summary.render())

    if cancel.is_set():
        return EXIT_CANCELLED
    if summary.failures:
        return EXIT_PARTIAL_FAILURE
    return EXIT_OK


def format_operation(operation: ResourceOperation) -> str:
    if operation.replacement:
        symbol, color = "-/+", Ansi.YELLOW
    elif operation.kind == CREATE:
        symbol, color = "+", Ansi.GREEN
    elif operation.kind == UPDATE:
        symbol, color = "~", Ansi.YELLOW
    else:
        symbol, color = "-", Ansi.RED
    line = f"{symbol} {operation.describe()}"
    for key, (old, new) in operation.diff.items():
        if old == new:
            line += f"\n    {key}: {new!r} (resolved value changed)"
        else:
            line += f"\n    {key}: {old!r} -> {new!r}"
    return colorize(line, color)


def format_operation_result(result: OperationResult) -> str:
    color = {"applied": Ansi.GREEN, "failed": Ansi.RED}.get(result.status, Ansi.YELLOW)
    line = f"{result.operation.resource_id}::{result.operation.kind} {result.status} - {result.details}"
    return colorize(line, color)


def format_result(result: ExecutionResult) -> str:
    status = result.status
    if status == FAILED:
        color: Optional[str] = Ansi.RED
    elif status in {SKIPPED, NOT_ATTEMPTED}:
        color = Ansi.YELLOW
    elif result.changed:
        status, color = "changed", Ansi.GREEN
    else:
        status, color = "ok", Ansi.BLUE
    line = f"{result.host}::{result.task} {status} - {result.details}"
    return colorize(line, color)


class PlanSummary:
    def __init__(self, operations: Iterable[ResourceOperation]) -> None:
        operations = list(operations)
        self.creates = sum(1 for op in operations if op.kind == CREATE and not op.replacement)
        self.updates = sum(1 for op in operations if op.kind == UPDATE)
        self.deletes = sum(1 for op in operations if op.kind == DELETE and not op.replacement)
        self.replacements = sum(1 for op in operations if op.kind == CREATE and op.replacement)

    def render(self) -> str:
        if not (self.creates or self.updates or self.deletes or self.replacements):
            return colorize("No changes.", Ansi.GREEN)
        text = (
            f"Plan: {self.creates} to create, {self.updates} to update, "
            f"{self.replacements} to replace, {self.deletes} to delete"
        )
        return colorize(text, Ansi.YELLOW)


class RunSummary:
    def __init__(self) -> None:
        self.ok = 0
        self.changes = 0
        self.skipped = 0
        self.failures = 0

    def add(self, result: ExecutionResult) -> None:
        if result.status == FAILED:
            self.failures += 1
        elif result.status in {SKIPPED, NOT_ATTEMPTED}:
            self.skipped += 1
        elif result.changed:
            self.changes += 1
        else:
            self.ok += 1

    def render(self) -> str:
        parts = [
            f"Ok: {self.ok}",
            f"Changes: {self.changes}",
            f"Skipped: {self.skipped}",
            f"Failures: {self.failures}",
        ]
        color = Ansi.GREEN if self.failures == 0 else Ansi.RED
        return colorize(" | ".join(parts), color)


def _build_provider(cfg: StagehandConfig, observed: ObservedState) -> Provider:
    if cfg.provider == "script":
        if not cfg.hooks_dir:
            raise ValueError("provider 'script' requires hooks_dir")
        return ScriptProvider(cfg.hooks_dir)
    return SimulatedProvider(
        taken=(res.provider_id for res in observed.values()),
        taken_addresses=(res.outputs["address"] for res in observed.values() if "address" in res.outputs),
    )


def _install_cancel_handler():
    cancel = threading.Event()

    def _handler(signum, frame) -> None:  # noqa: ARG001
        if cancel.is_set():
            raise KeyboardInterrupt
        logging.warning("Cancellation requested; finishing in-flight actions")
        cancel.set()

    previous = None
    if threading.current_thread() is threading.main_thread():
        previous = signal.signal(signal.SIGINT, _handler)
    return cancel, previous


def _load_plugins(cfg: StagehandConfig) -> None:
    for directory in cfg.plugin_dirs:
        for path in sorted(Path(directory).glob("*.py")):
            spec = importlib.util.spec_from_file_location(f"stagehand_plugin_{path.stem}", path)
            if spec is None or spec.loader is None:
                raise ImportError(f"Cannot load plugin {path}")
            module = importlib.util.module_from_spec(spec)
            spec.loader.exec_module(module)
            _register(module, str(path))
    for name in cfg.plugin_modules:
        _register(importlib.import_module(name), name)


def _register(module, origin: str) -> None:
    register = getattr(module, "register_operations", None)
    if register is None:
        logging.warning("Plugin %s has no register_operations()", origin)
        return
    register(OPERATION_REGISTRY)
    logging.debug("Loaded plugin %s", origin)


def _apply_aws_env(cfg: StagehandConfig) -> None:
    if cfg.aws_profile and "AWS_PROFILE" not in os.environ:
        os.environ["AWS_PROFILE"] = cfg.aws_profile
    if cfg.aws_region:
        os.environ.setdefault("AWS_REGION", cfg.aws_region)
        os.environ.setdefault("AWS_DEFAULT_REGION", cfg.aws_region)


if __name__ == "__main__":
    raise SystemExit(main())
