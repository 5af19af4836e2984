from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Callable, Optional

from .actions import Action
from .errors import ActionError, FactError, FatalFailure
from .executors import Executor, executor_for
from .facts import FactStore
from .phases import Phase
from .retry import SINGLE_ATTEMPT, AttemptSkipped, RetryController, RetryPolicy
from .types import ActionResult, HostConfig, Readiness, Status

logger = logging.getLogger(__name__)

ExecutorFactory = Callable[..., Executor]
FailureHook = Callable[[Phase, HostConfig, Action, BaseException], bool]

ABANDONED = "Abandoned"


def stops_host(action: Action, result: ActionResult) -> bool:
    """A failed required action, or any ``FatalFailure``, ends the host's run."""
    return action.required or result.error == FatalFailure.__name__


class PhaseRunner:
    """Runs one phase: hosts in parallel, actions sequential per host.

    ``on_failure`` is told about every failed action and answers whether the
    failure blocks the run; with ``abort_on_blocking`` a blocking failure stops
    dispatching further actions on every host of the phase. Setting
    ``cancel_event`` does the same and, after ``grace_period`` seconds,
    abandons hosts still in flight.

    Abandoned hosts keep their worker thread until the remote command returns.
    The pool threads are not daemons, so a process that wants to exit right
    after a cancelled run has to call ``os._exit`` (the CLI does).
    """

    def __init__(
        self,
        *,
        concurrency: int = 10,
        dry_run: bool = False,
        executor_factory: Optional[ExecutorFactory] = None,
        retry_overrides: Optional[dict[str, RetryPolicy]] = None,
        fact_timeout: float = 600.0,
        cancel_event: Optional[threading.Event] = None,
        grace_period: float = 30.0,
        on_failure: Optional[FailureHook] = None,
        abort_on_blocking: bool = True,
        sleep: Callable[[float], None] = time.sleep,
        poll_interval: float = 0.1,
    ):
        self.concurrency = max(1, concurrency)
        self.dry_run = dry_run
        self.executor_factory = executor_factory or executor_for
        self.retry_overrides = dict(retry_overrides or {})
        self.fact_timeout = fact_timeout
        self.cancel_event = cancel_event or threading.Event()
        self.grace_period = grace_period
        self.on_failure = on_failure
        self.abort_on_blocking = abort_on_blocking
        self.sleep = sleep
        self.poll_interval = poll_interval
        self._abort = threading.Event()

    @property
    def aborted(self) -> bool:
        return self._abort.is_set()

    def run(self, phase: Phase, hosts: list[HostConfig], facts: FactStore) -> dict[str, list[ActionResult]]:
        self._abort.clear()
        sinks: dict[str, list[ActionResult]] = {host.name: [] for host in hosts}
        in_flight: dict[str, str] = {}
        if not hosts:
            return sinks

        logger.info("phase=%s hosts=%s", phase.name, ",".join(h.name for h in hosts))
        pool = ThreadPoolExecutor(max_workers=self.concurrency, thread_name_prefix=f"kubeforge-{phase.name}")
        futures: dict[Future, HostConfig] = {
            pool.submit(self._run_host, phase, host, facts, sinks[host.name], in_flight): host
            for host in hosts
        }
        pending = set(futures)
        deadline: Optional[float] = None
        while pending:
            _, pending = wait(pending, timeout=self.poll_interval, return_when=FIRST_COMPLETED)
            if deadline is None and self.cancel_event.is_set():
                deadline = time.monotonic() + self.grace_period
                logger.warning("phase=%s cancellation requested; grace=%ss", phase.name, self.grace_period)
            if pending and deadline is not None and time.monotonic() >= deadline:
                break
        pool.shutdown(wait=not pending, cancel_futures=True)

        results: dict[str, list[ActionResult]] = {}
        for future, host in futures.items():
            if future in pending:
                results[host.name] = self._abandon(phase, host, sinks[host.name], in_flight)
                continue
            if future.cancelled():
                results[host.name] = list(sinks[host.name])
                continue
            exc = future.exception()
            if exc is not None:
                # Raised outside any action, e.g. while connecting to the host.
                logger.error("phase=%s host=%s failed: %s", phase.name, host.name, exc)
                failed = ActionResult(
                    host=host.name,
                    action="connect",
                    changed=False,
                    details=str(exc),
                    status=Status.FAILED,
                    phase=phase.name,
                    error=type(exc).__name__,
                )
                results[host.name] = [*sinks[host.name], failed]
                continue
            results[host.name] = list(sinks[host.name])
        return results

    def _stopped(self) -> bool:
        return self.cancel_event.is_set() or self._abort.is_set()

    def _run_host(
        self,
        phase: Phase,
        host: HostConfig,
        facts: FactStore,
        sink: list[ActionResult],
        in_flight: dict[str, str],
    ) -> None:
        executor = self.executor_factory(host, dry_run=self.dry_run)
        for action in phase.actions:
            if self._stopped():
                logger.info("phase=%s host=%s stopping before action=%s", phase.name, host.name, action.name)
                break
            if action.primary_only and not host.primary:
                continue
            in_flight[host.name] = action.name
            result = self.run_action(phase, action, host, executor, facts)
            in_flight.pop(host.name, None)
            sink.append(result)
            if result.failed and stops_host(action, result):
                logger.error(
                    "phase=%s host=%s action=%s failed; skipping remaining actions",
                    phase.name,
                    host.name,
                    action.name,
                )
                break

    def run_action(
        self,
        phase: Phase,
        action: Action,
        host: HostConfig,
        executor: Executor,
        facts: FactStore,
    ) -> ActionResult:
        started = time.time()
        attempts = 1
        try:
            readiness = action.evaluate(host, executor, facts)
            if readiness is Readiness.INPUTS_MISSING:
                missing = action.missing_inputs(facts)
                if self.dry_run:
                    return self._record(
                        phase, action, host, Status.PLANNED, f"awaiting fact(s): {', '.join(missing)}", started
                    )
                for key in missing:
                    facts.wait(key, self.fact_timeout)
                readiness = action.evaluate(host, executor, facts)
            if readiness is Readiness.ALREADY_SATISFIED:
                return self._record(phase, action, host, Status.SKIPPED, "already satisfied", started)
            if self.dry_run:
                return self._record(
                    phase, action, host, Status.PLANNED, f"would apply: {action.describe_effects()}", started
                )

            def recheck(attempt: int) -> None:
                nonlocal attempts
                attempts = attempt
                if action.evaluate(host, executor, facts) is Readiness.ALREADY_SATISFIED:
                    raise AttemptSkipped(f"{action.name} satisfied before attempt {attempt}")

            controller = RetryController(self.policy_for(action), sleep=self.sleep)
            result, attempts = controller.call(
                lambda: action.apply(host, executor, facts),
                before_attempt=recheck,
                label=f"phase={phase.name} host={host.name} action={action.name}",
            )
        except AttemptSkipped:
            return self._record(
                phase, action, host, Status.SKIPPED, "satisfied before retry", started, attempts=attempts - 1
            )
        except FactError as exc:
            return self._failed(phase, action, host, exc, started, attempts)
        except ActionError as exc:
            return self._failed(phase, action, host, exc, started, exc.attempts or attempts)
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "phase=%s host=%s action=%s raised: %s", phase.name, host.name, action.name, exc, exc_info=True
            )
            fatal = FatalFailure(f"{type(exc).__name__}: {exc}", attempts=attempts)
            return self._failed(phase, action, host, fatal, started, attempts)

        result.phase = phase.name
        result.attempts = attempts
        result.status = Status.RETRIED if attempts > 1 else Status.SUCCEEDED
        result.started_at = started
        result.finished_at = time.time()
        # Fact values are secrets and live only in the fact store.
        result.facts = {}
        logger.info(
            "phase=%s host=%s action=%s status=%s changed=%s attempts=%d",
            phase.name,
            host.name,
            action.name,
            result.status.value,
            result.changed,
            attempts,
        )
        return result

    def policy_for(self, action: Action) -> RetryPolicy:
        if action.retry is None:
            return SINGLE_ATTEMPT
        return self.retry_overrides.get(action.idempotency.value, action.retry)

    def _record(
        self,
        phase: Phase,
        action: Action,
        host: HostConfig,
        status: Status,
        details: str,
        started: float,
        *,
        attempts: int = 0,
    ) -> ActionResult:
        logger.info("phase=%s host=%s action=%s status=%s", phase.name, host.name, action.name, status.value)
        return ActionResult(
            host=host.name,
            action=action.name,
            changed=False,
            details=details,
            resource=action.operation.resource,
            status=status,
            phase=phase.name,
            attempts=attempts,
            started_at=started,
            finished_at=time.time(),
        )

    def _failed(
        self,
        phase: Phase,
        action: Action,
        host: HostConfig,
        exc: BaseException,
        started: float,
        attempts: int,
    ) -> ActionResult:
        logger.error(
            "phase=%s host=%s action=%s status=failed error=%s: %s",
            phase.name,
            host.name,
            action.name,
            type(exc).__name__,
            exc,
        )
        result = ActionResult(
            host=host.name,
            action=action.name,
            changed=False,
            details=str(exc),
            resource=action.operation.resource,
            status=Status.FAILED,
            phase=phase.name,
            attempts=attempts,
            error=type(exc).__name__,
            started_at=started,
            finished_at=time.time(),
        )
        if self.on_failure is not None and self.on_failure(phase, host, action, exc):
            if self.abort_on_blocking and not self._abort.is_set():
                logger.error("phase=%s blocking failure on host=%s; stopping dispatch", phase.name, host.name)
                self._abort.set()
        return result

    def _abandon(
        self,
        phase: Phase,
        host: HostConfig,
        sink: list[ActionResult],
        in_flight: dict[str, str],
    ) -> list[ActionResult]:
        results = list(sink)
        action_name = in_flight.get(host.name)
        logger.warning("phase=%s host=%s abandoned during action=%s", phase.name, host.name, action_name)
        if action_name is not None:
            results.append(
                ActionResult(
                    host=host.name,
                    action=action_name,
                    changed=False,
                    details=f"abandoned after {self.grace_period}s cancellation grace period",
                    status=Status.FAILED,
                    phase=phase.name,
                    error=ABANDONED,
                )
            )
        return results
