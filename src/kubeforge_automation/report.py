"""Run report and cluster readiness verdict."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator, Optional

from .types import ActionResult, Status

READY = "ClusterReady"
NOT_READY = "ClusterNotReady"


@dataclass
class PhaseReport:
    """Outcome of one phase across its hosts."""
    name: str
    description: str
    status: str  # 'succeeded', 'degraded', 'failed', 'cancelled', 'skipped', 'excluded', 'not-run'
    hosts: list[str] = field(default_factory=list)
    message: str = ''
    duration: float = 0.0


@dataclass
class BlockingFailure:
    host: str
    phase: str
    action: str
    reason: str
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            'host': self.host,
            'phase': self.phase,
            'action': self.action,
            'reason': self.reason,
            'error': self.error,
        }


@dataclass
class ClusterReadinessReport:
    """Aggregated per-host, per-phase, per-action outcome of a bootstrap run.

    Fact values never appear here, only the keys that were published.
    """
    verdict: str = NOT_READY
    phases: list[PhaseReport] = field(default_factory=list)
    results: dict[str, dict[str, dict[str, ActionResult]]] = field(default_factory=dict)
    blocking_failure: Optional[BlockingFailure] = None
    published_facts: list[str] = field(default_factory=list)
    dry_run: bool = False
    cancelled: bool = False
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def ready(self) -> bool:
        return self.verdict == READY

    def add(self, result: ActionResult) -> None:
        phase = result.phase or 'unknown'
        self.results.setdefault(result.host, {}).setdefault(phase, {})[result.action] = result

    def iter_results(self) -> Iterator[ActionResult]:
        for phases in self.results.values():
            for actions in phases.values():
                yield from actions.values()

    def result_for(self, host: str, phase: str, action: str) -> Optional[ActionResult]:
        return self.results.get(host, {}).get(phase, {}).get(action)

    def phase(self, name: str) -> Optional[PhaseReport]:
        for p in self.phases:
            if p.name == name:
                return p
        return None

    def count(self, status: Status) -> int:
        return sum(1 for r in self.iter_results() if r.status is status)

    def to_dict(self) -> dict[str, Any]:
        duration = (self.finished_at - self.started_at).total_seconds() if self.finished_at and self.started_at else 0
        data: dict[str, Any] = {
            'verdict': self.verdict,
            'dry_run': self.dry_run,
            'cancelled': self.cancelled,
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'finished_at': self.finished_at.isoformat() if self.finished_at else None,
            'duration_seconds': round(duration, 1),
            'phases': [
                {
                    'name': p.name,
                    'description': p.description,
                    'status': p.status,
                    'hosts': list(p.hosts),
                    'message': p.message,
                    'duration': round(p.duration, 1),
                }
                for p in self.phases
            ],
            'hosts': {
                host: {
                    phase: {action: result.to_dict() for action, result in actions.items()}
                    for phase, actions in phases.items()
                }
                for host, phases in self.results.items()
            },
            'facts': list(self.published_facts),
        }
        if self.blocking_failure is not None:
            data['blocking_failure'] = self.blocking_failure.to_dict()
        return data

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    def write(self, path: Path) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w', encoding="utf-8") as f:
            f.write(self.to_json())
            f.write('\n')
        return path
