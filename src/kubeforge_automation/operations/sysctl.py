from __future__ import annotations

from pathlib import Path
from typing import Any

from .base import Operation, run_checked
from ..executors import Executor
from ..facts import FactStore
from ..types import ActionResult, HostConfig


class SysctlOperation(Operation):
    action_type = "sysctl"

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        raw_name = spec.get("name")
        if not raw_name:
            raise ValueError("sysctl operation requires a name")
        self.name = str(raw_name)
        if "=" in self.name:
            raise ValueError("sysctl name should not contain '='")
        raw_value = spec.get("value")
        if raw_value is None:
            raise ValueError("sysctl operation requires a value")
        self.value = str(raw_value)
        self.persist = bool(spec.get("persist", True))
        default_conf = f"/etc/sysctl.d/{self.name.replace('.', '_')}.conf"
        self.conf_file = Path(spec.get("conf_file", default_conf))

    @property
    def content(self) -> str:
        return f"{self.name} = {self.value}\n"

    def is_satisfied(self, host: HostConfig, executor: Executor, facts: FactStore) -> bool:
        if self._runtime_value(executor) != self.value:
            return False
        if self.persist and executor.read_file(self.conf_file) != self.content:
            return False
        return True

    def apply(self, host: HostConfig, executor: Executor, facts: FactStore) -> ActionResult:
        details: list[str] = []

        if self._runtime_value(executor) != self.value:
            run_checked(executor, ["sysctl", "-w", f"{self.name}={self.value}"])
            details.append("runtime")

        if self.persist:
            changed, _ = executor.write_file(self.conf_file, content=self.content, mode=0o644)
            if changed:
                details.append("persist")

        detail = ", ".join(details) if details else "noop"
        return self._result(host, bool(details), detail)

    def _runtime_value(self, executor: Executor) -> str:
        result = executor.run(["sysctl", "-n", self.name], check=False, mutable=False)
        if result.returncode != 0:
            return ""
        return result.stdout.strip()
