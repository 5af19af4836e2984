from __future__ import annotations

from typing import Iterable, Optional
import logging

from .base import Operation, run_checked
from ..errors import PreconditionFailed
from ..executors import Executor
from ..facts import FactStore
from ..types import ActionResult, HostConfig

logger = logging.getLogger(__name__)


class PackageOperation(Operation):
    """Install packages using the package manager found on the host."""

    action_type = "package"

    def __init__(self, spec: dict[str, object]):
        super().__init__(spec)
        packages = spec.get("packages") or spec.get("name")
        if isinstance(packages, str):
            self.packages = [packages]
        else:
            self.packages = list(packages or [])  # type: ignore[call-overload]
        if not self.packages:
            raise ValueError("package operation requires at least one package")
        self.state = str(spec.get("state", "present"))
        if self.state not in {"present", "latest"}:
            raise ValueError("package operation state must be 'present' or 'latest'")
        self.version: Optional[str] = str(spec["version"]) if spec.get("version") else None
        self.preferred_manager = spec.get("manager")

    def is_satisfied(self, host: HostConfig, executor: Executor, facts: FactStore) -> bool:
        manager = PackageManagerFactory.create(self.preferred_manager, executor)
        if manager.missing(executor, self.packages, self.version):
            return False
        if self.state == "latest":
            return not manager.has_updates(executor, self.packages)
        return True

    def apply(self, host: HostConfig, executor: Executor, facts: FactStore) -> ActionResult:
        manager = PackageManagerFactory.create(self.preferred_manager, executor)
        logger.debug(
            "package-manager=%s host=%s packages=%s", manager.name, host.name, self.packages
        )
        changed, details = manager.ensure_present(executor, self.packages, self.version)
        if self.state == "latest" and manager.has_updates(executor, self.packages):
            manager.upgrade(executor, self.packages)
            changed = True
            details = f"{details}, upgraded" if details else "upgraded"
        detail_msg = f"manager={manager.name} {details}" if details else f"manager={manager.name}"
        return self._result(host, changed, detail_msg)


class PackageManagerFactory:
    @classmethod
    def _managers(cls) -> list[tuple[str, str, type["PackageManager"]]]:
        return [
            ("dnf", "dnf", DnfPackageManager),
            ("yum", "yum", YumPackageManager),
            ("apt-get", "apt", AptPackageManager),
        ]

    @classmethod
    def create(cls, preferred: Optional[object], executor: Executor) -> "PackageManager":
        if isinstance(preferred, str):
            preferred = preferred.lower()
            for _, key, factory in cls._managers():
                if key == preferred:
                    return factory()
            raise ValueError(f"Unknown package manager '{preferred}'")
        for binary, _, factory in cls._managers():
            probe = executor.run(["sh", "-c", f"command -v {binary}"], check=False, mutable=False)
            if probe.returncode == 0:
                return factory()
        raise PreconditionFailed("No supported package manager found on PATH")


class PackageManager:
    name = "generic"

    def ensure_present(
        self, executor: Executor, packages: Iterable[str], version: Optional[str] = None
    ) -> tuple[bool, str]:
        needed = self.missing(executor, packages, version)
        if not needed:
            return False, "already-installed"
        self.install(executor, [self.pin(pkg, version) for pkg in needed])
        return True, f"installed={','.join(needed)}"

    def missing(self, executor: Executor, packages: Iterable[str], version: Optional[str] = None) -> list[str]:
        return [pkg for pkg in packages if not self.is_installed(executor, self.pin(pkg, version))]

    def pin(self, package: str, version: Optional[str]) -> str:
        return package

    def install(self, executor: Executor, packages: list[str]) -> None:
        raise NotImplementedError

    def upgrade(self, executor: Executor, packages: list[str]) -> None:
        raise NotImplementedError

    def has_updates(self, executor: Executor, packages: list[str]) -> bool:
        raise NotImplementedError

    def is_installed(self, executor: Executor, package: str) -> bool:
        raise NotImplementedError


class DnfPackageManager(PackageManager):
    name = "dnf"

    def pin(self, package: str, version: Optional[str]) -> str:
        return f"{package}-{version}" if version else package

    def install(self, executor: Executor, packages: list[str]) -> None:
        run_checked(executor, [self.name, "install", "-y", *packages], transient=True)

    def upgrade(self, executor: Executor, packages: list[str]) -> None:
        run_checked(executor, [self.name, "upgrade", "-y", *packages], transient=True)

    def has_updates(self, executor: Executor, packages: list[str]) -> bool:
        # check-update exits 100 when updates are available
        result = executor.run([self.name, "check-update", "-q", *packages], check=False, mutable=False)
        return result.returncode == 100

    def is_installed(self, executor: Executor, package: str) -> bool:
        result = executor.run(["rpm", "-q", package], check=False, mutable=False)
        return result.returncode == 0


class YumPackageManager(DnfPackageManager):
    name = "yum"


class AptPackageManager(PackageManager):
    name = "apt"

    def pin(self, package: str, version: Optional[str]) -> str:
        return f"{package}={version}*" if version else package

    def install(self, executor: Executor, packages: list[str]) -> None:
        run_checked(executor, ["apt-get", "install", "-y", *packages], transient=True)

    def upgrade(self, executor: Executor, packages: list[str]) -> None:
        run_checked(
            executor, ["apt-get", "install", "-y", "--only-upgrade", *packages], transient=True
        )

    def has_updates(self, executor: Executor, packages: list[str]) -> bool:
        result = executor.run(["apt", "list", "--upgradable", *packages], check=False, mutable=False)
        return any(line.split("/", 1)[0] in packages for line in result.stdout.splitlines())

    def is_installed(self, executor: Executor, package: str) -> bool:
        name = package.split("=", 1)[0]
        result = executor.run(
            ["dpkg-query", "-W", "-f", "${Status} ${Version}", name],
            check=False,
            mutable=False,
        )
        if result.returncode != 0 or "install ok installed" not in result.stdout:
            return False
        if "=" in package:
            wanted = package.split("=", 1)[1].rstrip("*")
            return result.stdout.split()[-1].startswith(wanted)
        return True
