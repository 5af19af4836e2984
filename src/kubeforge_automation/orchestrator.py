from __future__ import annotations

import logging
import threading
import time
from datetime import datetime
from pathlib import Path
from typing import Mapping, Optional, Union

from .actions import Action
from .config import BootstrapOptions
from .errors import FactError, FatalFailure
from .facts import FactStore
from .inventory import InventoryLoader, RawHost, classify, validate_topology
from .phases import Phase, build_phases
from .report import NOT_READY, READY, BlockingFailure, ClusterReadinessReport, PhaseReport
from .runner import ExecutorFactory, PhaseRunner, stops_host
from .types import ActionResult, HostConfig, Status

logger = logging.getLogger(__name__)


class Orchestrator:
    """Drives the fixed phase sequence over the classified hosts.

    A phase starts only after the previous one reached a terminal state on
    every host. A failure that stops the primary control-plane host,
    or any fact store violation, blocks the run: no later phase starts and the
    verdict is ``ClusterNotReady``. Other host failures only exclude that host
    from the remaining phases, but a phase that fails on every host it ran on,
    or whose hosts were all excluded earlier, also makes the cluster not ready.
    """

    def __init__(
        self,
        options: Optional[BootstrapOptions] = None,
        *,
        phases: Optional[list[Phase]] = None,
        executor_factory: Optional[ExecutorFactory] = None,
        cancel_event: Optional[threading.Event] = None,
        sleep=time.sleep,
    ):
        self.options = options or BootstrapOptions()
        self.phases = phases
        self.executor_factory = executor_factory
        self.cancel_event = cancel_event or threading.Event()
        self.sleep = sleep
        self._lock = threading.Lock()
        self._blocking: Optional[BlockingFailure] = None

    def run_all(self, hosts: Mapping[str, HostConfig]) -> ClusterReadinessReport:
        validate_topology(hosts)
        phases = self.phases if self.phases is not None else build_phases(self.options.cluster, dict(hosts))
        facts = FactStore()
        report = ClusterReadinessReport(dry_run=self.options.dry_run, started_at=datetime.now())
        self._blocking = None
        excluded: set[str] = set()

        runner = PhaseRunner(
            concurrency=self.options.concurrency,
            dry_run=self.options.dry_run,
            executor_factory=self.executor_factory,
            retry_overrides=self.options.retry_overrides,
            fact_timeout=self.options.fact_timeout,
            cancel_event=self.cancel_event,
            grace_period=self.options.cancel_grace_period,
            on_failure=self._on_failure,
            abort_on_blocking=self.options.abort_on_critical_failure,
            sleep=self.sleep,
        )

        stop_reason: Optional[str] = None
        for phase in phases:
            if stop_reason is not None:
                report.phases.append(PhaseReport(phase.name, phase.description, "not-run", message=stop_reason))
                for key in phase.publishes:
                    facts.abandon(key, f"phase {phase.name} not run")
                continue
            if self.cancel_event.is_set():
                stop_reason = "cancelled"
                report.cancelled = True
                report.phases.append(PhaseReport(phase.name, phase.description, "cancelled"))
                continue

            selected = [h for h in hosts.values() if phase.selects(h) and h.name not in excluded]
            skipped_hosts = [h.name for h in hosts.values() if phase.selects(h) and h.name in excluded]
            for key in phase.publishes:
                facts.expect(key)

            if not selected:
                # Eligible hosts that all failed earlier leave the phase undone, not empty.
                status, message = "skipped", "no eligible hosts"
                if skipped_hosts:
                    status = "excluded"
                    message = f"hosts excluded after earlier failures: {', '.join(skipped_hosts)}"
                report.phases.append(PhaseReport(phase.name, phase.description, status, message=message))
                for key in phase.publishes:
                    facts.abandon(key, f"phase {phase.name} had no eligible hosts")
                continue

            started = time.monotonic()
            results = runner.run(phase, selected, facts)
            duration = time.monotonic() - started

            failed_hosts: list[str] = []
            for host_name, host_results in results.items():
                for result in host_results:
                    report.add(result)
                if self._host_failed(phase, host_results):
                    failed_hosts.append(host_name)
                    excluded.add(host_name)
                    if hosts[host_name].primary:
                        self._block_on(phase, host_results)

            for key in phase.publishes:
                if not facts.has(key):
                    facts.abandon(key, f"phase {phase.name} did not publish it")

            status = "succeeded"
            message = ""
            if self.cancel_event.is_set():
                status = "cancelled"
                report.cancelled = True
                stop_reason = "cancelled"
            elif self._blocking is not None:
                status = "failed"
                stop_reason = f"blocked by {self._blocking.host}/{self._blocking.action}"
                message = self._blocking.reason
            elif failed_hosts and len(failed_hosts) == len(selected):
                status = "failed"
            elif failed_hosts:
                status = "degraded"
            if failed_hosts and not message:
                message = f"failed hosts: {', '.join(sorted(failed_hosts))}"
            logger.info("phase=%s status=%s duration=%.1fs", phase.name, status, duration)
            report.phases.append(
                PhaseReport(
                    phase.name,
                    phase.description,
                    status,
                    hosts=[h.name for h in selected],
                    message=message,
                    duration=duration,
                )
            )

        report.blocking_failure = self._blocking
        report.published_facts = facts.keys()
        report.finished_at = datetime.now()
        report.verdict = READY if self._is_ready(report) else NOT_READY
        logger.info("verdict=%s", report.verdict)
        return report

    def _on_failure(self, phase: Phase, host: HostConfig, action: Action, exc: BaseException) -> bool:
        stopped = action.required or isinstance(exc, FatalFailure)
        blocking = isinstance(exc, FactError) or (stopped and host.primary)
        if blocking:
            with self._lock:
                if self._blocking is None:
                    self._blocking = BlockingFailure(
                        host=host.name,
                        phase=phase.name,
                        action=action.name,
                        reason=str(exc),
                        error=type(exc).__name__,
                    )
        return blocking

    def _block_on(self, phase: Phase, results: list[ActionResult]) -> None:
        # Failures raised outside an action (connect, abandon) never reach _on_failure.
        with self._lock:
            if self._blocking is not None:
                return
            failed = [r for r in results if r.status is Status.FAILED][-1]
            self._blocking = BlockingFailure(
                host=failed.host,
                phase=phase.name,
                action=failed.action,
                reason=failed.details,
                error=failed.error,
            )

    @staticmethod
    def _host_failed(phase: Phase, results: list[ActionResult]) -> bool:
        actions = {a.name: a for a in phase.actions}
        for result in results:
            if result.status is not Status.FAILED:
                continue
            action = actions.get(result.action)
            if action is None or stops_host(action, result):
                return True
        return False

    @staticmethod
    def _is_ready(report: ClusterReadinessReport) -> bool:
        # A degraded phase (some, not all, non-primary hosts failed) still counts as ready.
        if report.cancelled or report.blocking_failure is not None:
            return False
        return all(p.status in {"succeeded", "degraded", "skipped"} for p in report.phases)


def bootstrap_cluster(
    inventory: Union[Path, str, Mapping[str, HostConfig], Mapping[str, RawHost]],
    options: Optional[BootstrapOptions] = None,
    *,
    phases: Optional[list[Phase]] = None,
    executor_factory: Optional[ExecutorFactory] = None,
    cancel_event: Optional[threading.Event] = None,
    sleep=time.sleep,
) -> ClusterReadinessReport:
    """Bootstrap a cluster from an inventory file, ``{host: groups}`` or classified hosts."""
    if isinstance(inventory, (str, Path)):
        hosts = InventoryLoader().load(Path(inventory))
    elif all(isinstance(entry, HostConfig) for entry in inventory.values()):
        hosts = dict(inventory)
    else:
        hosts = classify(inventory)
    orchestrator = Orchestrator(
        options,
        phases=phases,
        executor_factory=executor_factory,
        cancel_event=cancel_event,
        sleep=sleep,
    )
    return orchestrator.run_all(hosts)
