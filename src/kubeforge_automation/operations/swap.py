from __future__ import annotations

import re
from pathlib import Path
from typing import Any

from .base import Operation, run_checked
from ..executors import Executor
from ..facts import FactStore
from ..types import ActionResult, HostConfig

SWAP_ENTRY = re.compile(r"^\s*[^#\s]\S*\s+\S+\s+swap(\s|$)")


class SwapOffOperation(Operation):
    """Disable swap now and drop swap entries from fstab so it stays off."""

    action_type = "swap"

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        self.fstab = Path(spec.get("fstab", "/etc/fstab"))

    @property
    def resource(self) -> str:
        return str(self.fstab)

    def is_satisfied(self, host: HostConfig, executor: Executor, facts: FactStore) -> bool:
        content = executor.read_file(self.fstab) or ""
        return not self._swap_lines(content) and not self._swap_active(executor)

    def apply(self, host: HostConfig, executor: Executor, facts: FactStore) -> ActionResult:
        details: list[str] = []
        content = executor.read_file(self.fstab)
        if content is not None and self._swap_lines(content):
            kept = [line for line in content.splitlines(keepends=True) if not SWAP_ENTRY.match(line)]
            executor.write_file(self.fstab, content="".join(kept), mode=None)
            details.append("fstab")
        if self._swap_active(executor):
            run_checked(executor, ["swapoff", "-a"])
            details.append("swapoff")
        host.facts["swap_enabled"] = False
        detail = ", ".join(details) if details else "noop"
        return self._result(host, bool(details), detail)

    @staticmethod
    def _swap_lines(content: str) -> list[str]:
        return [line for line in content.splitlines() if SWAP_ENTRY.match(line)]

    @staticmethod
    def _swap_active(executor: Executor) -> bool:
        result = executor.run(["swapon", "--show", "--noheadings"], check=False, mutable=False)
        return result.returncode == 0 and bool(result.stdout.strip())
