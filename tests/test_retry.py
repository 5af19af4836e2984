import time

import pytest

from kubeforge_automation.errors import FatalFailure, PreconditionFailed, TransientFailure
from kubeforge_automation.retry import AttemptSkipped, RetryController, RetryPolicy


class Flaky:
    def __init__(self, failures: int):
        self.failures = failures
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise TransientFailure(f"mirror unreachable ({self.calls})")
        return "ok"


def test_retry_recovers_from_transient_failures():
    sleeps: list[float] = []
    controller = RetryController(RetryPolicy(max_attempts=3, delay=10), sleep=sleeps.append)

    value, attempts = controller.call(Flaky(2))

    assert value == "ok"
    assert attempts == 3
    assert sleeps == [10, 10]


def test_retry_escalates_after_max_attempts():
    sleeps: list[float] = []
    fn = Flaky(10)
    controller = RetryController(RetryPolicy(max_attempts=5, delay=10), sleep=sleeps.append)

    with pytest.raises(FatalFailure) as excinfo:
        controller.call(fn)

    assert fn.calls == 5
    assert excinfo.value.attempts == 5
    assert len(sleeps) == 4
    assert isinstance(excinfo.value.__cause__, TransientFailure)


def test_without_policy_transient_failure_is_fatal_after_one_attempt():
    fn = Flaky(1)

    with pytest.raises(FatalFailure) as excinfo:
        RetryController(sleep=lambda _: None).call(fn)

    assert fn.calls == 1
    assert excinfo.value.attempts == 1


def test_non_transient_errors_are_not_retried():
    calls = []

    def fail():
        calls.append(1)
        raise PreconditionFailed("no package manager")

    with pytest.raises(PreconditionFailed) as excinfo:
        RetryController(RetryPolicy(3, 0), sleep=lambda _: None).call(fail)

    assert len(calls) == 1
    assert excinfo.value.attempts == 1


def test_before_attempt_can_skip_remaining_attempts():
    seen: list[int] = []

    def before(attempt: int) -> None:
        seen.append(attempt)
        raise AttemptSkipped("already joined")

    fn = Flaky(5)
    with pytest.raises(AttemptSkipped):
        RetryController(RetryPolicy(3, 0), sleep=lambda _: None).call(fn, before_attempt=before)

    assert fn.calls == 1
    assert seen == [2]


def test_retry_wall_clock_is_bounded():
    delay = 0.02
    policy = RetryPolicy(max_attempts=4, delay=delay)
    started = time.monotonic()

    with pytest.raises(FatalFailure):
        RetryController(policy).call(Flaky(10))

    elapsed = time.monotonic() - started
    assert (policy.max_attempts - 1) * delay <= elapsed < policy.max_attempts * delay + 0.5


def test_policy_validation():
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=0)
    with pytest.raises(ValueError):
        RetryPolicy(delay=-1)
