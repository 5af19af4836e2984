from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from .base import Operation, coerce_bool, run_checked
from .edit_file import PENDING_RESTARTS
from ..errors import PreconditionFailed
from ..executors import Executor
from ..facts import FactStore
from ..types import ActionResult, HostConfig

logger = logging.getLogger(__name__)


@dataclass
class SystemCtl:
    executable: str = "systemctl"

    def available(self, executor: Executor) -> bool:
        result = executor.run(["sh", "-c", f"command -v {self.executable}"], check=False, mutable=False)
        return result.returncode == 0

    def is_enabled(self, executor: Executor, service: str) -> bool:
        result = executor.run([self.executable, "is-enabled", service], check=False, mutable=False)
        return result.returncode == 0

    def is_active(self, executor: Executor, service: str) -> bool:
        result = executor.run([self.executable, "is-active", service], check=False, mutable=False)
        return result.returncode == 0

    def enable(self, executor: Executor, service: str) -> None:
        run_checked(executor, [self.executable, "enable", service])

    def disable(self, executor: Executor, service: str) -> None:
        run_checked(executor, [self.executable, "disable", service])

    def start(self, executor: Executor, service: str) -> None:
        run_checked(executor, [self.executable, "start", service])

    def stop(self, executor: Executor, service: str) -> None:
        run_checked(executor, [self.executable, "stop", service])

    def restart(self, executor: Executor, service: str) -> None:
        run_checked(executor, [self.executable, "restart", service])


class ServiceOperation(Operation):
    """Manage systemd services."""

    action_type = "service"

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        raw_name = spec.get("service") or spec.get("name")
        if not raw_name:
            raise ValueError("service operation requires a name")
        self.name = str(raw_name)
        enabled = spec.get("enabled")
        self._enabled: Optional[bool] = None if enabled is None else coerce_bool(enabled)
        self._state = spec.get("state")
        if self._state not in {None, "running", "stopped"}:
            raise ValueError("service state must be 'running' or 'stopped'")
        self.systemctl = SystemCtl()

    def is_satisfied(self, host: HostConfig, executor: Executor, facts: FactStore) -> bool:
        if self._restart_pending(host):
            return False
        if self._enabled is not None:
            if self.systemctl.is_enabled(executor, self.name) != self._enabled:
                return False
        if self._state is not None:
            if self.systemctl.is_active(executor, self.name) != (self._state == "running"):
                return False
        return True

    def apply(self, host: HostConfig, executor: Executor, facts: FactStore) -> ActionResult:
        if not self.systemctl.available(executor):
            raise PreconditionFailed("systemctl is not available on this host")

        changes: list[str] = []

        if self._enabled is not None:
            enabled = self.systemctl.is_enabled(executor, self.name)
            if self._enabled and not enabled:
                logger.debug("Enabling service %s", self.name)
                self.systemctl.enable(executor, self.name)
                changes.append("enabled")
            elif not self._enabled and enabled:
                logger.debug("Disabling service %s", self.name)
                self.systemctl.disable(executor, self.name)
                changes.append("disabled")

        started = False
        if self._state is not None:
            active = self.systemctl.is_active(executor, self.name)
            if self._state == "running" and not active:
                logger.debug("Starting service %s", self.name)
                self.systemctl.start(executor, self.name)
                changes.append("started")
                started = True
            elif self._state == "stopped" and active:
                logger.debug("Stopping service %s", self.name)
                self.systemctl.stop(executor, self.name)
                changes.append("stopped")

        if self._restart_pending(host):
            if not started and self._state != "stopped":
                logger.debug("Restarting service %s", self.name)
                self.systemctl.restart(executor, self.name)
                changes.append("restarted")
            host.facts[PENDING_RESTARTS].discard(self.name)

        changed = bool(changes)
        detail = ", ".join(changes) if changes else "noop"
        return self._result(host, changed, detail)

    def _restart_pending(self, host: HostConfig) -> bool:
        return self.name in host.facts.get(PENDING_RESTARTS, ())
