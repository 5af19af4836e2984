from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from .errors import ActionError, FatalFailure, TransientFailure

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_DELAY = 10.0


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    delay: float = DEFAULT_DELAY

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("retry max_attempts must be at least 1")
        if self.delay < 0:
            raise ValueError("retry delay must not be negative")


SINGLE_ATTEMPT = RetryPolicy(max_attempts=1, delay=0.0)


class AttemptSkipped(Exception):
    """Raised by a ``before_attempt`` hook when the work no longer needs doing."""


class RetryController:
    """Bounded retry with a fixed delay around one apply call.

    Only :class:`TransientFailure` is retried. Once the attempts are used up it
    is escalated to :class:`FatalFailure`. Any other exception propagates on
    the first occurrence. The attempt counter lives in the call, so a
    controller can be shared freely between hosts.
    """

    def __init__(self, policy: Optional[RetryPolicy] = None, *, sleep: Callable[[float], None] = time.sleep):
        self.policy = policy or SINGLE_ATTEMPT
        self.sleep = sleep

    def call(
        self,
        fn: Callable[[], T],
        *,
        before_attempt: Optional[Callable[[int], None]] = None,
        label: str = "action",
    ) -> tuple[T, int]:
        attempt = 0
        while True:
            attempt += 1
            if before_attempt is not None and attempt > 1:
                before_attempt(attempt)
            try:
                return fn(), attempt
            except TransientFailure as exc:
                if attempt >= self.policy.max_attempts:
                    raise FatalFailure(
                        f"gave up after {attempt} attempt(s): {exc}", attempts=attempt
                    ) from exc
                logger.warning(
                    "%s attempt=%d/%d transient failure: %s; retrying in %ss",
                    label,
                    attempt,
                    self.policy.max_attempts,
                    exc,
                    self.policy.delay,
                )
                self.sleep(self.policy.delay)
            except ActionError as exc:
                if exc.attempts is None:
                    exc.attempts = attempt
                raise
