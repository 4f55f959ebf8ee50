from __future__ import annotations

import logging
import os
import shlex
import socket
import stat
import subprocess
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional, Sequence, Union

from .errors import ConnectionLost
from .types import HostConfig

logger = logging.getLogger(__name__)

SSH_CONNECTION_ERROR = 255


@dataclass
class CommandResult:
    command: list[str]
    stdout: str
    stderr: str
    returncode: int


class Executor:
    """Base executor abstraction used by operations."""

    become_command: Sequence[str] = ("sudo", "-n", "--")

    def __init__(self, host: HostConfig, *, dry_run: bool = False):
        self.host = host
        self.dry_run = dry_run
        self.become = False

    @contextmanager
    def elevated(self, enabled: bool = True) -> Iterator["Executor"]:
        """Run commands issued inside the block under the elevated identity."""

        previous = self.become
        self.become = enabled
        try:
            yield self
        finally:
            self.become = previous

    def run(
        self,
        command: Sequence[str],
        *,
        check: bool = True,
        mutable: bool = True,
        env: Optional[dict[str, str]] = None,
        cwd: Optional[Union[str, Path]] = None,
        timeout: Optional[float] = None,
        input: Optional[str] = None,
    ) -> CommandResult:
        """Run ``command`` and optionally skip it during dry-runs."""

        cmd_list = list(command)
        if self.dry_run and mutable:
            return CommandResult(cmd_list, "", "skipped (dry-run)", 0)

        argv = self._wrap(cmd_list, env=env, cwd=cwd)
        exec_env = None
        if env and self.host.connection == "local":
            exec_env = os.environ.copy()
            exec_env.update(env)

        logger.debug("host=%s run=%s", self.host.name, " ".join(argv))
        try:
            proc = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                check=False,
                env=exec_env,
                cwd=str(cwd) if cwd is not None and self.host.connection == "local" else None,
                timeout=timeout,
                input=input,
            )
        except subprocess.TimeoutExpired as exc:
            proc = subprocess.CompletedProcess(argv, -1, "", f"timed out after {exc.timeout}s")
        self._check_transport(proc)
        if check and proc.returncode != 0:
            raise subprocess.CalledProcessError(
                proc.returncode,
                cmd_list,
                proc.stdout,
                proc.stderr,
            )
        return CommandResult(cmd_list, proc.stdout, proc.stderr, proc.returncode)

    def _wrap(
        self,
        command: list[str],
        *,
        env: Optional[dict[str, str]] = None,
        cwd: Optional[Union[str, Path]] = None,
    ) -> list[str]:
        if self.become:
            return [*self.become_command, *command]
        return command

    def _check_transport(self, proc: subprocess.CompletedProcess) -> None:
        return None

    # Connection lifecycle ------------------------------------------------
    def probe(self, timeout: float) -> bool:
        return True

    def reset(self) -> None:
        """Drop any cached connection so the next command reconnects."""

    def close(self) -> None:
        self.reset()

    # File primitives -----------------------------------------------------
    def read_file(self, path: Path) -> Optional[str]:
        raise NotImplementedError

    def write_file(self, path: Path, *, content: str, mode: Optional[int]) -> tuple[bool, str]:
        raise NotImplementedError

    def remove_path(self, path: Path) -> bool:
        raise NotImplementedError


class LocalExecutor(Executor):
    """Executor that acts directly on the local host."""

    def read_file(self, path: Path) -> Optional[str]:
        if self.become:
            result = self.run(["cat", str(path)], check=False, mutable=False)
            return result.stdout if result.returncode == 0 else None
        try:
            return path.read_text()
        except FileNotFoundError:
            return None

    def write_file(self, path: Path, *, content: str, mode: Optional[int]) -> tuple[bool, str]:
        current = self.read_file(path)
        reasons: list[str] = []

        if current != content:
            reasons.append("content")
            if not self.dry_run:
                if self.become:
                    self.run(["mkdir", "-p", str(path.parent)])
                    self.run(["tee", str(path)], input=content)
                else:
                    path.parent.mkdir(parents=True, exist_ok=True)
                    path.write_text(content)

        if mode is not None and self._file_mode(path) != mode:
            reasons.append(f"mode->{mode:04o}")
            # ``chmod`` fails if the file is absent, which only happens in dry-run.
            if not self.dry_run and path.exists():
                if self.become:
                    self.run(["chmod", f"{mode:04o}", str(path)])
                else:
                    os.chmod(path, mode)
        detail = ", ".join(reasons) if reasons else "noop"
        return bool(reasons), detail

    def remove_path(self, path: Path) -> bool:
        if not path.exists() and not path.is_symlink():
            return False
        if not self.dry_run:
            self.run(["rm", "-rf", "--", str(path)])
        return True

    @staticmethod
    def _file_mode(path: Path) -> Optional[int]:
        try:
            return stat.S_IMODE(path.stat().st_mode)
        except FileNotFoundError:
            return None


class SSHExecutor(Executor):
    """Executor that runs commands on a remote host through ``ssh``.

    Connections are multiplexed with ControlMaster; ``reset`` closes the master
    so that changes to the login session (new group membership) take effect.
    """

    def __init__(self, host: HostConfig, *, dry_run: bool = False, connect_timeout: int = 10):
        super().__init__(host, dry_run=dry_run)
        if not host.address:
            raise ValueError(f"Host '{host.name}' has no address for an ssh connection")
        self.connect_timeout = connect_timeout
        self.control_path = Path(tempfile.gettempdir()) / f"stagehand-{os.getpid()}-{host.name}.sock"

    @property
    def destination(self) -> str:
        if self.host.user:
            return f"{self.host.user}@{self.host.address}"
        return str(self.host.address)

    def ssh_base(self) -> list[str]:
        argv = [
            "ssh",
            "-o", "BatchMode=yes",
            "-o", "StrictHostKeyChecking=accept-new",
            "-o", f"ConnectTimeout={self.connect_timeout}",
            "-o", "ControlMaster=auto",
            "-o", f"ControlPath={self.control_path}",
            "-o", "ControlPersist=60",
            "-p", str(self.host.port),
        ]
        if self.host.key_file:
            argv += ["-i", str(Path(self.host.key_file).expanduser())]
        return argv

    def _wrap(self, command, *, env=None, cwd=None) -> list[str]:
        remote = " ".join(shlex.quote(part) for part in command)
        if env:
            assignments = " ".join(f"{k}={shlex.quote(v)}" for k, v in env.items())
            remote = f"env {assignments} {remote}"
        if cwd is not None:
            remote = f"cd {shlex.quote(str(cwd))} && {remote}"
        if self.become:
            remote = " ".join(self.become_command) + " sh -c " + shlex.quote(remote)
        return [*self.ssh_base(), self.destination, remote]

    def _check_transport(self, proc: subprocess.CompletedProcess) -> None:
        if proc.returncode == SSH_CONNECTION_ERROR:
            raise ConnectionLost(
                f"ssh to {self.destination} failed: {proc.stderr.strip() or 'connection error'}",
                host=self.host.name,
            )

    def probe(self, timeout: float) -> bool:
        try:
            sock = socket.create_connection((str(self.host.address), self.host.port), timeout=timeout)
        except OSError as exc:
            logger.debug("probe host=%s failed: %s", self.host.name, exc)
            return False
        sock.close()
        return True

    def reset(self) -> None:
        if not self.control_path.exists():
            return
        logger.debug("host=%s closing control connection", self.host.name)
        subprocess.run(
            [*self.ssh_base(), "-O", "exit", self.destination],
            capture_output=True,
            text=True,
            check=False,
        )

    def read_file(self, path: Path) -> Optional[str]:
        result = self.run(["cat", str(path)], check=False, mutable=False)
        if result.returncode != 0:
            return None
        return result.stdout

    def write_file(self, path: Path, *, content: str, mode: Optional[int]) -> tuple[bool, str]:
        reasons: list[str] = []
        if self.read_file(path) != content:
            reasons.append("content")
            self.run(["mkdir", "-p", str(path.parent)])
            self.run(["tee", str(path)], input=content)
        if mode is not None:
            result = self.run(["stat", "-c", "%a", str(path)], check=False, mutable=False)
            current = int(result.stdout.strip(), 8) if result.returncode == 0 and result.stdout.strip() else None
            if current != mode:
                reasons.append(f"mode->{mode:04o}")
                self.run(["chmod", f"{mode:04o}", str(path)])
        detail = ", ".join(reasons) if reasons else "noop"
        return bool(reasons), detail

    def remove_path(self, path: Path) -> bool:
        exists = self.run(["test", "-e", str(path)], check=False, mutable=False)
        if exists.returncode != 0:
            return False
        self.run(["rm", "-rf", "--", str(path)])
        return True


def executor_for(host: HostConfig, *, dry_run: bool = False) -> Executor:
    if host.connection == "local":
        return LocalExecutor(host, dry_run=dry_run)
    if host.connection == "ssh":
        return SSHExecutor(host, dry_run=dry_run)
    raise ValueError(f"Unknown connection type '{host.connection}'")
