from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Optional

from .base import Operation
from ..errors import PreconditionFailed
from ..executors import Executor
from ..facts import FactStore
from ..types import ActionResult, HostConfig

PENDING_RESTARTS = "pending_restarts"


class EditFileOperation(Operation):
    """Rewrite the lines of an existing file that match ``regexp``.

    ``replacement`` may use backreferences. When the file changes and
    ``notify`` names a service, that service is queued for a restart in the
    host's fact cache.
    """

    action_type = "edit_file"

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        raw_path = spec.get("path")
        if not raw_path:
            raise ValueError("edit_file operation requires a path")
        self.path = Path(str(raw_path))
        raw_regexp = spec.get("regexp")
        if not raw_regexp:
            raise ValueError("edit_file operation requires a regexp")
        try:
            self.pattern = re.compile(str(raw_regexp), re.MULTILINE)
        except re.error as exc:
            raise ValueError(f"edit_file regexp is invalid: {exc}") from exc
        if "replacement" not in spec and "line" not in spec:
            raise ValueError("edit_file operation requires a replacement")
        self.replacement = str(spec.get("replacement", spec.get("line")))
        self.notify: Optional[str] = spec.get("notify")

    def transform(self, content: str) -> str:
        return self.pattern.sub(self.replacement, content)

    def is_satisfied(self, host: HostConfig, executor: Executor, facts: FactStore) -> bool:
        content = executor.read_file(self.path)
        return content is not None and self.transform(content) == content

    def apply(self, host: HostConfig, executor: Executor, facts: FactStore) -> ActionResult:
        content = executor.read_file(self.path)
        if content is None:
            raise PreconditionFailed(f"{self.path} does not exist")
        updated = self.transform(content)
        if updated == content:
            return self._result(host, False, "noop")
        executor.write_file(self.path, content=updated, mode=None)
        if self.notify:
            host.facts.setdefault(PENDING_RESTARTS, set()).add(self.notify)
        return self._result(host, True, "edited")
