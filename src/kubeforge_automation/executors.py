from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Optional, Sequence, Union
import logging
import os
import shlex
import shutil
import stat
import subprocess

from .errors import TransientFailure
from .types import HostConfig

logger = logging.getLogger(__name__)

SSH_OPTIONS = [
    "-o", "BatchMode=yes",
    "-o", "StrictHostKeyChecking=no",
    "-o", "UserKnownHostsFile=/dev/null",
    "-o", "LogLevel=ERROR",
]
SSH_UNREACHABLE = 255


@dataclass
class CommandResult:
    command: list[str]
    stdout: str
    stderr: str
    returncode: int
    unreachable: bool = False


class Executor:
    """Host action boundary used by operations.

    The base class drives every primitive through ``run`` so it works against
    any POSIX host; subclasses only decide how a command reaches the host.
    """

    def __init__(self, host: HostConfig, *, dry_run: bool = False):
        self.host = host
        self.dry_run = dry_run

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

        cmd_list = [str(part) for part in command]
        if self.dry_run and mutable:
            return CommandResult(cmd_list, "", "skipped (dry-run)", 0)

        argv, exec_env, exec_cwd = self._prepare(cmd_list, env=env, cwd=cwd)
        logger.debug("host=%s run=%s", self.host.name, shlex.join(cmd_list))
        try:
            proc = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                check=False,
                env=exec_env,
                cwd=exec_cwd,
                timeout=timeout,
                input=input,
            )
        except subprocess.TimeoutExpired as exc:
            raise TransientFailure(
                f"command timed out after {timeout}s: {shlex.join(cmd_list)}"
            ) from exc
        result = CommandResult(
            cmd_list,
            proc.stdout,
            proc.stderr,
            proc.returncode,
            unreachable=self._is_unreachable(proc.returncode),
        )
        if check and proc.returncode != 0:
            raise subprocess.CalledProcessError(
                proc.returncode,
                cmd_list,
                proc.stdout,
                proc.stderr,
            )
        return result

    def _prepare(
        self,
        command: list[str],
        *,
        env: Optional[dict[str, str]],
        cwd: Optional[Union[str, Path]],
    ) -> tuple[list[str], Optional[dict[str, str]], Optional[str]]:
        exec_env = None
        if env:
            exec_env = os.environ.copy()
            exec_env.update(env)
        return command, exec_env, str(cwd) if cwd is not None else None

    def _is_unreachable(self, returncode: int) -> bool:
        return False

    # File primitives -----------------------------------------------------
    def read_file(self, path: Path) -> Optional[str]:
        result = self.run(["cat", str(path)], check=False, mutable=False)
        if result.returncode != 0:
            return None
        return result.stdout

    def path_exists(self, path: Path) -> bool:
        result = self.run(["test", "-e", str(path)], check=False, mutable=False)
        return result.returncode == 0

    def write_file(self, path: Path, *, content: str, mode: Optional[int]) -> tuple[bool, str]:
        current = self.read_file(path)
        changed = False
        reasons: list[str] = []

        if current != content:
            changed = True
            reasons.append("content")
            parent = str(PurePosixPath(str(path)).parent)
            self.run(["mkdir", "-p", parent])
            self.run(["tee", str(path)], input=content)

        if mode is not None:
            existing_mode = self.file_mode(path)
            if existing_mode != mode:
                changed = True
                reasons.append(f"mode->{mode:04o}")
                self.run(["chmod", f"{mode:04o}", str(path)])
        detail = ", ".join(reasons) if reasons else "noop"
        return changed, detail

    def ensure_directory(self, path: Path, *, mode: Optional[int]) -> tuple[bool, str]:
        changed = False
        reasons: list[str] = []
        probe = self.run(["test", "-d", str(path)], check=False, mutable=False)
        if probe.returncode != 0:
            changed = True
            reasons.append("created")
            self.run(["mkdir", "-p", str(path)])
        if mode is not None and self.file_mode(path) != mode:
            changed = True
            reasons.append(f"mode->{mode:04o}")
            self.run(["chmod", f"{mode:04o}", str(path)])
        detail = ", ".join(reasons) if reasons else "noop"
        return changed, detail

    def remove_path(self, path: Path) -> bool:
        if not self.path_exists(path):
            return False
        self.run(["rm", "-rf", str(path)])
        return True

    def set_ownership(
        self, path: Path, *, owner: Optional[str], group: Optional[str]
    ) -> tuple[bool, str]:
        current_owner, current_group = self.ownership(path) or ("", "")
        wanted_owner = owner or current_owner
        wanted_group = group or current_group
        if current_owner and (wanted_owner, wanted_group) == (current_owner, current_group):
            return False, "noop"
        self.run(["chown", f"{wanted_owner}:{wanted_group}", str(path)])
        return True, f"owner->{wanted_owner}:{wanted_group}"

    def file_mode(self, path: Path) -> Optional[int]:
        result = self.run(["stat", "-c", "%a", str(path)], check=False, mutable=False)
        if result.returncode != 0:
            return None
        try:
            return int(result.stdout.strip(), 8)
        except ValueError:
            return None

    def ownership(self, path: Path) -> Optional[tuple[str, str]]:
        result = self.run(["stat", "-c", "%U:%G", str(path)], check=False, mutable=False)
        if result.returncode != 0:
            return None
        owner, _, group = result.stdout.strip().partition(":")
        return owner, group


class LocalExecutor(Executor):
    """Executor that acts directly on the local host."""

    def read_file(self, path: Path) -> Optional[str]:
        try:
            return Path(path).read_text()
        except FileNotFoundError:
            return None

    def path_exists(self, path: Path) -> bool:
        return Path(path).exists()

    def write_file(self, path: Path, *, content: str, mode: Optional[int]) -> tuple[bool, str]:
        path = Path(path)
        current = self.read_file(path)
        changed = False
        reasons: list[str] = []

        if current != content:
            changed = True
            reasons.append("content")
            if not self.dry_run:
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_text(content)

        if mode is not None:
            existing_mode = self.file_mode(path)
            if existing_mode != mode:
                changed = True
                reasons.append(f"mode->{mode:04o}")
                if not self.dry_run:
                    # ``chmod`` fails if the file is absent, so guard it.
                    if path.exists():
                        os.chmod(path, mode)
        detail = ", ".join(reasons) if reasons else "noop"
        return changed, detail

    def ensure_directory(self, path: Path, *, mode: Optional[int]) -> tuple[bool, str]:
        path = Path(path)
        changed = False
        reasons: list[str] = []

        if not path.exists():
            changed = True
            reasons.append("created")
            if not self.dry_run:
                path.mkdir(parents=True, exist_ok=True)
        elif not path.is_dir():
            changed = True
            reasons.append("replaced-non-dir")
            if not self.dry_run:
                self.remove_path(path)
                path.mkdir(parents=True, exist_ok=True)

        if mode is not None:
            existing_mode = self.file_mode(path)
            if existing_mode != mode:
                changed = True
                reasons.append(f"mode->{mode:04o}")
                if not self.dry_run and path.exists():
                    os.chmod(path, mode)
        detail = ", ".join(reasons) if reasons else "noop"
        return changed, detail

    def remove_path(self, path: Path) -> bool:
        path = Path(path)
        if not path.exists():
            return False
        if self.dry_run:
            return True
        if path.is_dir():
            shutil.rmtree(path)
        else:
            path.unlink()
        return True

    def set_ownership(
        self, path: Path, *, owner: Optional[str], group: Optional[str]
    ) -> tuple[bool, str]:
        path = Path(path)
        try:
            current_owner, current_group = path.owner(), path.group()
        except (FileNotFoundError, KeyError):
            current_owner = current_group = None
        if (owner in (None, current_owner)) and (group in (None, current_group)):
            return False, "noop"
        if not self.dry_run:
            shutil.chown(path, user=owner, group=group)
        return True, f"owner->{owner or current_owner}:{group or current_group}"

    def file_mode(self, path: Path) -> Optional[int]:
        try:
            return stat.S_IMODE(Path(path).stat().st_mode)
        except FileNotFoundError:
            return None

    def ownership(self, path: Path) -> Optional[tuple[str, str]]:
        path = Path(path)
        try:
            return path.owner(), path.group()
        except (FileNotFoundError, KeyError):
            return None


class SshExecutor(Executor):
    """Executor that reaches the host through the ``ssh`` client."""

    def __init__(self, host: HostConfig, *, dry_run: bool = False, connect_timeout: int = 10):
        super().__init__(host, dry_run=dry_run)
        if not (host.address or host.name):
            raise ValueError(f"host {host.name!r} has no address")
        self.connect_timeout = connect_timeout

    @property
    def become(self) -> bool:
        value = self.host.variables.get("become")
        if value is None:
            return (self.host.user or "root") != "root"
        return bool(value)

    def _prepare(self, command, *, env, cwd):
        remote = shlex.join(command)
        if env:
            exports = " ".join(f"{k}={shlex.quote(str(v))}" for k, v in env.items())
            remote = f"env {exports} {remote}"
        if cwd is not None:
            remote = f"cd {shlex.quote(str(cwd))} && {remote}"
        if self.become:
            remote = f"sudo -n sh -c {shlex.quote(remote)}"
        argv = ["ssh", *SSH_OPTIONS, "-o", f"ConnectTimeout={self.connect_timeout}"]
        if self.host.port:
            argv.extend(["-p", str(self.host.port)])
        if self.host.identity_file:
            argv.extend(["-i", str(self.host.identity_file)])
        target = self.host.address or self.host.name
        if self.host.user:
            target = f"{self.host.user}@{target}"
        argv.extend([target, remote])
        return argv, None, None

    def _is_unreachable(self, returncode: int) -> bool:
        return returncode == SSH_UNREACHABLE


def executor_for(host: HostConfig, *, dry_run: bool = False) -> Executor:
    if host.connection == "local":
        return LocalExecutor(host, dry_run=dry_run)
    if host.connection == "ssh":
        return SshExecutor(host, dry_run=dry_run)
    raise ValueError(f"Unknown connection type '{host.connection}'")
