from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional, Sequence

from ..errors import FatalFailure, TransientFailure
from ..executors import CommandResult, Executor
from ..facts import FactStore
from ..types import ActionResult, HostConfig


class Operation(ABC):
    """Shared surface for the bodies of bootstrap actions.

    ``is_satisfied`` is the guard: it may only issue read-only commands.
    ``apply`` performs the change and reports any facts it emits in
    ``ActionResult.facts``.
    """

    action_type = "operation"

    def __init__(self, spec: dict[str, Any]):
        self.spec = spec

    def is_satisfied(self, host: HostConfig, executor: Executor, facts: FactStore) -> bool:
        return False

    @abstractmethod
    def apply(self, host: HostConfig, executor: Executor, facts: FactStore) -> ActionResult:
        """Perform the operation against ``host`` using ``executor``."""

    @property
    def resource(self) -> Optional[str]:
        for key in ("service", "id", "path", "name"):
            value = self.spec.get(key)
            if value:
                return str(value)
        packages = self.spec.get("packages")
        if isinstance(packages, (list, tuple)) and packages:
            rendered = ", ".join(str(p) for p in packages[:3])
            if len(packages) > 3:
                rendered += ", ..."
            return rendered
        return None

    def _result(self, host: HostConfig, changed: bool, details: str, **kwargs: Any) -> ActionResult:
        return ActionResult(
            host=host.name,
            action=self.action_type,
            changed=changed,
            details=details,
            resource=self.resource,
            **kwargs,
        )


def error_detail(result: CommandResult) -> str:
    prefix = f"{' '.join(result.command[:3])} rc={result.returncode}"
    message = summarize_output(result)
    if message:
        return f"{prefix}: {message}"
    return prefix


def summarize_output(result: CommandResult) -> Optional[str]:
    for text in (result.stderr, result.stdout):
        if not text:
            continue
        stripped = text.strip()
        if not stripped:
            continue
        line = stripped.splitlines()[0]
        return (line[:157] + "...") if len(line) > 160 else line
    return None


def coerce_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
        raise ValueError(f"Unable to interpret boolean value '{value}'")
    return bool(value)


def parse_mode(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if not text:
        return None
    base = 8 if text.startswith("0") else 10
    return int(text, base)


def run_checked(
    executor: Executor,
    command: Sequence[str],
    *,
    transient: bool = False,
    **kwargs: Any,
) -> CommandResult:
    """Run ``command`` and raise a typed failure on a non-zero exit."""
    result = executor.run(command, check=False, **kwargs)
    if result.returncode == 0:
        return result
    message = error_detail(result)
    if result.unreachable or transient:
        raise TransientFailure(message)
    raise FatalFailure(message)
