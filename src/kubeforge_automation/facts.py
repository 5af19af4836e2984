"""Run-scoped fact store shared by every host in a bootstrap run."""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Optional

from .errors import FactConflict, FactTimeout, MissingFact

logger = logging.getLogger(__name__)


class FactStore:
    """Key/value facts published by one host and consumed by others.

    The first publish of a key wins. Publishing the same value again is a
    no-op; publishing a different value raises :class:`FactConflict`.
    ``wait`` is the only cross-host synchronization point: it returns as soon
    as the key is published and fails fast with :class:`MissingFact` when no
    pending producer is left for the key.
    """

    def __init__(self) -> None:
        self._values: dict[str, Any] = {}
        self._producers: dict[str, str] = {}
        self._expected: set[str] = set()
        self._abandoned: dict[str, str] = {}
        self._cond = threading.Condition()

    def publish(self, key: str, value: Any, *, producer: Optional[str] = None) -> bool:
        with self._cond:
            if key in self._values:
                if self._values[key] != value:
                    raise FactConflict(
                        f"fact '{key}' already published by {self._producers.get(key) or 'unknown'}"
                        " with a different value"
                    )
                return False
            self._values[key] = value
            self._producers[key] = producer or "unknown"
            self._expected.discard(key)
            self._abandoned.pop(key, None)
            self._cond.notify_all()
        logger.info("fact=%s published by=%s", key, producer or "unknown")
        return True

    def expect(self, key: str) -> None:
        """Declare that some phase is going to publish ``key``."""
        with self._cond:
            if key not in self._values:
                self._expected.add(key)
                self._abandoned.pop(key, None)

    def abandon(self, key: str, reason: str) -> None:
        """The producer of ``key`` finished without publishing it."""
        with self._cond:
            if key in self._values:
                return
            self._expected.discard(key)
            self._abandoned[key] = reason
            self._cond.notify_all()
        logger.warning("fact=%s abandoned: %s", key, reason)

    def wait(self, key: str, timeout: float) -> Any:
        deadline = time.monotonic() + timeout
        with self._cond:
            while True:
                if key in self._values:
                    return self._values[key]
                if key in self._abandoned:
                    raise MissingFact(f"fact '{key}' will not be published: {self._abandoned[key]}")
                if key not in self._expected:
                    raise MissingFact(f"fact '{key}' has no pending producer")
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise FactTimeout(f"timed out after {timeout}s waiting for fact '{key}'")
                self._cond.wait(remaining)

    def get(self, key: str, default: Any = None) -> Any:
        with self._cond:
            return self._values.get(key, default)

    def has(self, key: str) -> bool:
        with self._cond:
            return key in self._values

    def producer(self, key: str) -> Optional[str]:
        with self._cond:
            return self._producers.get(key)

    def keys(self) -> list[str]:
        with self._cond:
            return sorted(self._values)

    def snapshot(self) -> dict[str, Any]:
        with self._cond:
            return dict(self._values)
