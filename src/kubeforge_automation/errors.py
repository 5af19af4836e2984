from __future__ import annotations

from typing import Optional


class BootstrapError(Exception):
    """Base class for every error raised by the bootstrap engine."""


class ConfigError(BootstrapError, ValueError):
    """Inventory or topology is malformed; raised before any host is touched."""


class ActionError(BootstrapError):
    def __init__(self, message: str, *, attempts: Optional[int] = None):
        super().__init__(message)
        self.attempts = attempts


class PreconditionFailed(ActionError):
    """The guard is unmet and no retry can help."""


class TransientFailure(ActionError):
    """Network or service hiccup; eligible for retry."""


class FatalFailure(ActionError):
    """Host-local unrecoverable failure; stops that host's remaining actions."""


class FactError(BootstrapError):
    """Fact store contract violation. Escalates to a phase-level failure."""


class FactConflict(FactError):
    pass


class MissingFact(FactError):
    pass


class FactTimeout(FactError, TimeoutError):
    pass
