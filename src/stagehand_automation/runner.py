from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from typing import Any, Callable, Mapping, Optional, Sequence

from .errors import ConnectionLost, GuardFailed, IdempotencyCheckFailed
from .executors import Executor, executor_for
from .operations import OPERATION_REGISTRY, Operation
from .types import (
    CONTINUE,
    FAILED,
    NOT_ATTEMPTED,
    RETRY,
    SKIPPED,
    SUCCESS,
    ActionResult,
    ExecutionResult,
    HostConfig,
    TaskSpec,
)
from .variables import evaluate_guard, render_value

logger = logging.getLogger(__name__)

ExecutorFactory = Callable[..., Executor]


class TaskRunner:
    """Runs ordered task lists against the hosts of their target roles.

    Hosts are worked in parallel; the tasks of one host always run in the
    declared order. Failures never cross from one host to another.
    """

    def __init__(
        self,
        *,
        variables: Optional[dict[str, Any]] = None,
        dry_run: bool = False,
        max_workers: int = 8,
        cancel: Optional[threading.Event] = None,
        executor_factory: ExecutorFactory = executor_for,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.variables = dict(variables or {})
        self.dry_run = dry_run
        self.max_workers = max(1, max_workers)
        self.cancel = cancel or threading.Event()
        self.executor_factory = executor_factory
        self.sleep = sleep

    def run(
        self,
        tasks: Sequence[TaskSpec],
        roles: Mapping[str, Sequence[HostConfig]],
    ) -> dict[str, list[ExecutionResult]]:
        missing = sorted({task.role for task in tasks if task.role not in roles})
        if missing:
            raise ValueError(f"Tasks target undefined roles: {', '.join(missing)}")

        hosts: dict[str, HostConfig] = {}
        per_host: dict[str, list[TaskSpec]] = {}
        for task in tasks:
            for host in roles[task.role]:
                hosts.setdefault(host.name, host)
                per_host.setdefault(host.name, []).append(task)

        logger.debug("run tasks=%d hosts=%s", len(tasks), ",".join(hosts))
        if len(hosts) <= 1 or self.max_workers == 1:
            return {name: self._run_host(hosts[name], per_host[name]) for name in hosts}

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(hosts))) as pool:
            futures = {name: pool.submit(self._run_host, hosts[name], per_host[name]) for name in hosts}
            return {name: future.result() for name, future in futures.items()}

    def _run_host(self, host: HostConfig, tasks: list[TaskSpec]) -> list[ExecutionResult]:
        results: list[ExecutionResult] = []
        # Operations see run-wide variables underneath the host's own.
        host = replace(host, variables={**self.variables, **host.variables})
        try:
            executor = self.executor_factory(host, dry_run=self.dry_run)
        except (ValueError, OSError) as exc:
            logger.error("host=%s cannot connect: %s", host.name, exc)
            return [self._result(host, t, FAILED, f"executor unavailable: {exc}") for t in tasks]

        aborted_by: Optional[str] = None
        try:
            for task in tasks:
                if aborted_by is not None:
                    results.append(self._result(host, task, NOT_ATTEMPTED, f"aborted after '{aborted_by}' failed"))
                    continue
                if self.cancel.is_set():
                    results.append(self._result(host, task, SKIPPED, "cancelled"))
                    continue
                try:
                    result = self._run_task(task, host, executor)
                except ConnectionLost as exc:
                    logger.error("host=%s task=%s connection lost twice: %s", host.name, task.name, exc)
                    results.append(self._result(host, task, FAILED, f"connection lost: {exc}"))
                    aborted_by = task.name
                    continue
                results.append(result)
                if result.status == FAILED and task.failure_policy != CONTINUE:
                    logger.info("host=%s task=%s failed; skipping remaining tasks", host.name, task.name)
                    aborted_by = task.name
        finally:
            executor.close()
        return results

    def _run_task(self, task: TaskSpec, host: HostConfig, executor: Executor) -> ExecutionResult:
        context = self._context(host)
        if task.when:
            try:
                allowed = evaluate_guard(task.when, context)
            except Exception as exc:  # noqa: BLE001
                error = GuardFailed(f"cannot evaluate when '{task.when}': {exc}", task=task.name, host=host.name)
                logger.warning("host=%s task=%s %s", host.name, task.name, error)
                return self._result(host, task, SKIPPED, str(error))
            if not allowed:
                return self._result(host, task, SKIPPED, f"when: {task.when} is false")

        operation_cls = OPERATION_REGISTRY.get(task.action)
        if not operation_cls:
            detail = f"unknown operation '{task.action}'"
            logger.warning("host=%s task=%s %s", host.name, task.name, detail)
            return self._result(host, task, FAILED, detail)
        try:
            operation: Operation = operation_cls(render_value(task.args, context))
        except Exception as exc:  # noqa: BLE001
            return self._result(host, task, FAILED, f"invalid arguments: {exc}")

        max_attempts = 1 + max(0, task.retries) if task.failure_policy == RETRY else 1
        attempts = 0
        reconnected = False
        while True:
            attempts += 1
            try:
                outcome = self._attempt(operation, task, host, executor)
            except ConnectionLost as exc:
                if not reconnected:
                    logger.warning("host=%s task=%s connection lost; reconnecting", host.name, task.name)
                    reconnected = True
                    executor.reset()
                    attempts -= 1
                    continue
                raise
            except Exception as exc:  # noqa: BLE001
                logger.error("host=%s task=%s failed: %s", host.name, task.name, exc, exc_info=True)
                detail = str(exc) or exc.__class__.__name__
            else:
                if not outcome.failed:
                    return self._result(host, task, SUCCESS, outcome.details, changed=outcome.changed, attempts=attempts)
                detail = outcome.details

            if attempts >= max_attempts or self.cancel.is_set():
                return self._result(host, task, FAILED, detail, attempts=attempts)
            delay = task.delay * (task.backoff ** (attempts - 1))
            logger.info(
                "host=%s task=%s attempt %d/%d failed (%s); retrying in %.1fs",
                host.name, task.name, attempts, max_attempts, detail, delay,
            )
            self.sleep(delay)

    def _attempt(self, operation: Operation, task: TaskSpec, host: HostConfig, executor: Executor) -> ActionResult:
        with executor.elevated(task.become or host.become):
            try:
                satisfied = operation.is_satisfied(host, executor)
            except ConnectionLost:
                raise
            except Exception as exc:  # noqa: BLE001
                error = IdempotencyCheckFailed(str(exc), task=task.name, host=host.name)
                logger.warning("host=%s task=%s idempotency check failed: %s", host.name, task.name, error)
                satisfied = False
            if satisfied:
                return operation.result(host, False, "already satisfied")
            if self.dry_run:
                return operation.result(host, True, "would change")
            return operation.apply(host, executor)

    def _context(self, host: HostConfig) -> dict[str, Any]:
        context = dict(host.variables)
        context["inventory_hostname"] = host.name
        context["host_address"] = host.address
        return context

    @staticmethod
    def _result(
        host: HostConfig,
        task: TaskSpec,
        status: str,
        details: str,
        *,
        changed: bool = False,
        attempts: int = 0,
    ) -> ExecutionResult:
        return ExecutionResult(
            host=host.name,
            task=task.name,
            action=task.action,
            status=status,
            details=details,
            changed=changed,
            attempts=attempts,
        )
