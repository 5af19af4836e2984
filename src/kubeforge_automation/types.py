from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class Role(str, Enum):
    ALL = "all"
    CONTROL_PLANE = "control-plane"
    WORKER = "worker"


class Readiness(str, Enum):
    """Outcome of evaluating an action's guard against a host."""

    ALREADY_SATISFIED = "already-satisfied"
    INPUTS_MISSING = "inputs-missing"
    READY = "ready"


class Status(str, Enum):
    SUCCEEDED = "succeeded"
    SKIPPED = "skipped-already-satisfied"
    FAILED = "failed"
    RETRIED = "retried"
    PLANNED = "planned"


@dataclass
class HostConfig:
    name: str
    connection: str = "ssh"
    address: Optional[str] = None
    user: Optional[str] = None
    port: Optional[int] = None
    identity_file: Optional[str] = None
    roles: frozenset[Role] = frozenset({Role.ALL})
    groups: tuple[str, ...] = ()
    primary: bool = False
    variables: dict[str, Any] = field(default_factory=dict)
    # Host-local fact cache, only touched by the worker running this host.
    facts: dict[str, Any] = field(default_factory=dict)

    def has_role(self, role: Role) -> bool:
        return role is Role.ALL or role in self.roles

    @property
    def node_name(self) -> str:
        return str(self.variables.get("node_name") or self.name)


@dataclass
class ActionResult:
    """Outcome of one action on one host (the run report's RunResult)."""

    host: str
    action: str
    changed: bool
    details: str
    failed: bool = False
    resource: Optional[str] = None
    status: Optional[Status] = None
    phase: Optional[str] = None
    attempts: int = 1
    error: Optional[str] = None
    facts: dict[str, Any] = field(default_factory=dict)
    started_at: Optional[float] = None
    finished_at: Optional[float] = None

    def __post_init__(self) -> None:
        if self.status is None:
            self.status = Status.FAILED if self.failed else Status.SUCCEEDED
        elif self.status is Status.FAILED:
            self.failed = True

    @property
    def skipped(self) -> bool:
        return self.status is Status.SKIPPED

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "status": self.status.value if self.status else None,
            "attempts": self.attempts,
            "changed": self.changed,
            "details": self.details,
        }
        if self.resource:
            data["resource"] = self.resource
        if self.error:
            data["error"] = self.error
        if self.started_at is not None and self.finished_at is not None:
            data["duration"] = round(self.finished_at - self.started_at, 3)
        return data


RunResult = ActionResult
