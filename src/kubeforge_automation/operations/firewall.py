from __future__ import annotations

import logging
from typing import Any, Optional

from .base import Operation, run_checked
from ..errors import PreconditionFailed
from ..executors import Executor
from ..facts import FactStore
from ..types import ActionResult, HostConfig

logger = logging.getLogger(__name__)


class FirewallPortOperation(Operation):
    """Open ports in firewalld, both permanently and in the running config."""

    action_type = "firewall"

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        ports = spec.get("ports") or spec.get("port")
        if isinstance(ports, str):
            ports = [ports]
        self.ports = [str(p) for p in (ports or [])]
        if not self.ports:
            raise ValueError("firewall operation requires at least one port")
        for port in self.ports:
            if "/" not in port:
                raise ValueError(f"firewall port '{port}' must look like '6443/tcp'")
        self.zone: Optional[str] = spec.get("zone")
        # firewalld not running means there is nothing to open.
        self.skip_when_inactive = bool(spec.get("skip_when_inactive", True))

    @property
    def resource(self) -> Optional[str]:
        return ",".join(self.ports)

    def is_satisfied(self, host: HostConfig, executor: Executor, facts: FactStore) -> bool:
        if not self._running(executor):
            return self.skip_when_inactive
        return not self._missing_ports(executor)

    def apply(self, host: HostConfig, executor: Executor, facts: FactStore) -> ActionResult:
        if not self._running(executor):
            if self.skip_when_inactive:
                return self._result(host, False, "firewalld inactive")
            raise PreconditionFailed("firewalld is not running")
        missing = self._missing_ports(executor)
        for port in missing:
            logger.debug("host=%s opening port %s", host.name, port)
            run_checked(executor, self._command("--permanent", f"--add-port={port}"))
            run_checked(executor, self._command(f"--add-port={port}"))
        if not missing:
            return self._result(host, False, "noop")
        return self._result(host, True, f"opened={','.join(missing)}")

    def _running(self, executor: Executor) -> bool:
        result = executor.run(["firewall-cmd", "--state"], check=False, mutable=False)
        return result.returncode == 0

    def _missing_ports(self, executor: Executor) -> list[str]:
        missing: list[str] = []
        for port in self.ports:
            runtime = executor.run(self._command(f"--query-port={port}"), check=False, mutable=False)
            permanent = executor.run(
                self._command("--permanent", f"--query-port={port}"), check=False, mutable=False
            )
            if runtime.returncode != 0 or permanent.returncode != 0:
                missing.append(port)
        return missing

    def _command(self, *args: str) -> list[str]:
        command = ["firewall-cmd"]
        if self.zone:
            command.append(f"--zone={self.zone}")
        command.extend(args)
        return command
