from __future__ import annotations

from typing import Optional
import logging

from .base import Operation
from ..executors import Executor
from ..types import ActionResult, HostConfig

logger = logging.getLogger(__name__)


class PackageOperation(Operation):
    """Install or remove packages using the host's package manager."""

    action = "package"

    def __init__(self, spec: dict[str, object]):
        super().__init__(spec)
        packages = spec.get("name") or spec.get("packages")
        if isinstance(packages, str):
            self.packages = [packages]
        else:
            self.packages = [str(p) for p in (packages or [])]
        if not self.packages:
            raise ValueError("package operation requires at least one package")
        self.state = str(spec.get("state", "present"))
        if self.state not in {"present", "absent"}:
            raise ValueError("package operation state must be 'present' or 'absent'")
        self.preferred_manager = spec.get("manager")
        self.update_cache = bool(spec.get("update_cache", False))

    def is_satisfied(self, host: HostConfig, executor: Executor) -> bool:
        return not self._pending(executor)

    def apply(self, host: HostConfig, executor: Executor) -> ActionResult:
        manager = PackageManagerFactory.create(executor, self.preferred_manager)
        pending = self._pending(executor, manager)
        logger.debug("package-manager=%s host=%s pending=%s", manager.name, host.name, pending)
        if not pending:
            return self.result(host, False, f"manager={manager.name} noop")
        if self.state == "present":
            if self.update_cache:
                manager.refresh(executor)
            manager.install(executor, pending)
            detail = f"installed={','.join(pending)}"
        else:
            manager.remove(executor, pending)
            detail = f"removed={','.join(pending)}"
        return self.result(host, True, f"manager={manager.name} {detail}")

    def _pending(self, executor: Executor, manager: Optional["PackageManager"] = None) -> list[str]:
        manager = manager or PackageManagerFactory.create(executor, self.preferred_manager)
        want_installed = self.state == "present"
        return [pkg for pkg in self.packages if manager.is_installed(executor, pkg) != want_installed]


class PackageManager:
    name = "generic"
    probe = ""

    def refresh(self, executor: Executor) -> None:
        return None

    def install(self, executor: Executor, packages: list[str]) -> None:
        raise NotImplementedError

    def remove(self, executor: Executor, packages: list[str]) -> None:
        raise NotImplementedError

    def is_installed(self, executor: Executor, package: str) -> bool:
        raise NotImplementedError


class AptPackageManager(PackageManager):
    name = "apt"
    probe = "apt-get"

    def refresh(self, executor: Executor) -> None:
        executor.run(["apt-get", "update"])

    def install(self, executor: Executor, packages: list[str]) -> None:
        executor.run(["apt-get", "install", "-y", *packages], env={"DEBIAN_FRONTEND": "noninteractive"})

    def remove(self, executor: Executor, packages: list[str]) -> None:
        executor.run(["apt-get", "remove", "-y", *packages], env={"DEBIAN_FRONTEND": "noninteractive"})

    def is_installed(self, executor: Executor, package: str) -> bool:
        result = executor.run(
            ["dpkg-query", "-W", "-f", "${Status}", package],
            check=False,
            mutable=False,
        )
        return result.returncode == 0 and "install ok installed" in result.stdout


class DnfPackageManager(PackageManager):
    name = "dnf"
    probe = "dnf"

    def install(self, executor: Executor, packages: list[str]) -> None:
        executor.run([self.name, "install", "-y", *packages])

    def remove(self, executor: Executor, packages: list[str]) -> None:
        executor.run([self.name, "remove", "-y", *packages])

    def is_installed(self, executor: Executor, package: str) -> bool:
        result = executor.run(["rpm", "-q", package], check=False, mutable=False)
        return result.returncode == 0


class YumPackageManager(DnfPackageManager):
    name = "yum"
    probe = "yum"


class PackageManagerFactory:
    _MANAGERS = [AptPackageManager, DnfPackageManager, YumPackageManager]

    @classmethod
    def create(cls, executor: Executor, preferred: Optional[object]) -> PackageManager:
        if isinstance(preferred, str):
            for manager_cls in cls._MANAGERS:
                if manager_cls.name == preferred.lower():
                    return manager_cls()
            raise ValueError(f"Unknown package manager '{preferred}'")
        for manager_cls in cls._MANAGERS:
            found = executor.run(["sh", "-c", f"command -v {manager_cls.probe}"], check=False, mutable=False)
            if found.returncode == 0:
                return manager_cls()
        raise RuntimeError(f"No supported package manager found on {executor.host.name}")
