"""Action descriptors: one guarded, idempotent unit of host-local work."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .errors import FactError
from .executors import Executor
from .facts import FactStore
from .operations import Operation
from .retry import RetryPolicy
from .types import ActionResult, HostConfig, Readiness


class Idempotency(str, Enum):
    SAFE_TO_REPEAT = "safe-to-repeat"
    RUN_ONCE_GUARDED = "run-once-guarded"


@dataclass(frozen=True)
class Action:
    """Stateless template invoked once per host.

    ``operation`` carries both the guard and the effect. ``publishes`` and
    ``consumes`` name the run facts the action writes and reads; ``effects``
    are labels such as ``mutates:/etc/fstab`` shown in dry-run output.
    """

    name: str
    operation: Operation
    idempotency: Idempotency = Idempotency.SAFE_TO_REPEAT
    retry: Optional[RetryPolicy] = None
    required: bool = True
    primary_only: bool = False
    publishes: tuple[str, ...] = ()
    consumes: tuple[str, ...] = ()
    effects: tuple[str, ...] = ()

    def evaluate(self, host: HostConfig, executor: Executor, facts: FactStore) -> Readiness:
        if self.operation.is_satisfied(host, executor, facts):
            return Readiness.ALREADY_SATISFIED
        if any(not facts.has(key) for key in self.consumes):
            return Readiness.INPUTS_MISSING
        return Readiness.READY

    def missing_inputs(self, facts: FactStore) -> list[str]:
        return [key for key in self.consumes if not facts.has(key)]

    def apply(self, host: HostConfig, executor: Executor, facts: FactStore) -> ActionResult:
        result = self.operation.apply(host, executor, facts)
        undeclared = sorted(set(result.facts) - set(self.publishes))
        if undeclared:
            raise FactError(f"action '{self.name}' emitted undeclared fact(s): {', '.join(undeclared)}")
        for key, value in result.facts.items():
            facts.publish(key, value, producer=host.name)
        result.action = self.name
        return result

    def describe_effects(self) -> str:
        return ", ".join(self.effects) if self.effects else self.operation.action_type
