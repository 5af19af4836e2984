from __future__ import annotations

import logging
from pathlib import PurePosixPath
from string import Template
from typing import Any, Iterable, Optional, Sequence

from .base import Operation, coerce_bool, summarize_output
from ..errors import FatalFailure, TransientFailure
from ..executors import CommandResult, Executor
from ..facts import FactStore
from ..secrets import SecretResolver
from ..types import ActionResult, HostConfig

logger = logging.getLogger(__name__)


class ExecOperation(Operation):
    """Run a command with ``creates``/``unless``/``only_if`` guards.

    ``$name`` placeholders in the command and guards are filled from the host
    variables, the operation's own ``variables`` and the run facts named in
    ``consumes``. With ``publish`` set, the command's stdout (shaped by
    ``publish_template``) is emitted as that fact.
    """

    action_type = "exec"

    secret_resolver = SecretResolver()

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        raw_name = spec.get("name")
        if not raw_name:
            raise ValueError("exec operation requires a name")
        self.name = str(raw_name)

        raw_command = spec.get("command") or spec.get("cmd")
        if raw_command is None:
            raise ValueError("exec operation requires a command")
        self.raw_command = raw_command

        self.only_if = spec.get("only_if")
        self.unless = spec.get("unless")

        self.creates = PurePosixPath(str(spec["creates"])) if spec.get("creates") else None
        self.cwd = PurePosixPath(str(spec["cwd"])) if spec.get("cwd") else None

        self.env = _environment(spec.get("env") or spec.get("environment"))
        raw_vars = spec.get("variables", {})
        if raw_vars is not None and not isinstance(raw_vars, dict):
            raise ValueError("exec variables must be a mapping")
        self.variables = dict(raw_vars or {})

        self.consumes = tuple(str(k) for k in spec.get("consumes", ()) or ())
        self.publish: Optional[str] = spec.get("publish")
        self.publish_template = str(spec.get("publish_template", "$stdout"))

        returns = spec.get("returns", 0)
        self.allowed_returns = {int(rc) for rc in (returns if isinstance(returns, (list, tuple)) else [returns])}
        self.timeout = float(spec["timeout"]) if spec.get("timeout") is not None else None
        self.transient = coerce_bool(spec.get("transient", False))

    def is_satisfied(self, host: HostConfig, executor: Executor, facts: FactStore) -> bool:
        if self.creates is not None and executor.path_exists(self._resolve_path(self.creates)):
            return True
        if self.unless is None and self.only_if is None:
            return False
        context = self._context(host, facts)
        if self.unless is not None:
            guard = self._invoke(self._render(self.unless, context), executor, mutable=False)
            if guard.returncode == 0:
                return True
        if self.only_if is not None:
            guard = self._invoke(self._render(self.only_if, context), executor, mutable=False)
            if guard.returncode != 0:
                return True
        return False

    def apply(self, host: HostConfig, executor: Executor, facts: FactStore) -> ActionResult:
        command = self._render(self.raw_command, self._context(host, facts))
        result = self._invoke(command, executor, mutable=True)

        if result.returncode not in self.allowed_returns:
            logger.debug("exec failed name=%s rc=%s", self.name, result.returncode)
            detail = self._error_detail(result)
            if result.unreachable or self.transient:
                raise TransientFailure(detail)
            raise FatalFailure(detail)

        emitted: dict[str, Any] = {}
        if self.publish and not executor.dry_run:
            emitted[self.publish] = self._published_value(result)

        detail = "dry-run" if executor.dry_run else f"ran (rc={result.returncode})"
        return self._result(host, True, detail, facts=emitted)

    def _published_value(self, result: CommandResult) -> str:
        value = Template(self.publish_template).safe_substitute(stdout=result.stdout.strip())
        if not value.strip():
            raise FatalFailure(f"{self.name} produced no output to publish as '{self.publish}'")
        return value

    def _context(self, host: HostConfig, facts: FactStore) -> dict[str, Any]:
        context = self.secret_resolver.resolve({**host.variables, **self.variables})
        for key in self.consumes:
            if facts.has(key):
                context[key] = facts.get(key)
        return context

    def _invoke(self, command: Sequence[str], executor: Executor, *, mutable: bool) -> CommandResult:
        # Guards are read-only, so only the command itself is skipped in dry-run.
        return executor.run(
            command,
            check=False,
            mutable=mutable,
            env=self.env,
            cwd=self.cwd,
            timeout=self.timeout,
        )

    def _render(self, value: Any, context: dict[str, Any]) -> list[str]:
        if isinstance(value, str):
            return ["sh", "-c", Template(value).safe_substitute(context)]
        if isinstance(value, Sequence):
            return [Template(str(v)).safe_substitute(context) for v in value]
        raise ValueError("exec command/guard must be a string or list")

    def _resolve_path(self, path: PurePosixPath) -> PurePosixPath:
        if path.is_absolute() or self.cwd is None:
            return path
        return self.cwd / path

    @staticmethod
    def _error_detail(result: CommandResult) -> str:
        # The rendered command may carry consumed secrets, so only rc and output.
        message = summarize_output(result)
        prefix = f"rc={result.returncode}"
        if message:
            return f"{prefix}: {message}"
        return prefix


def _environment(value: Any) -> Optional[dict[str, str]]:
    """Accept ``{KEY = "v"}`` or ``["KEY=v", ...]``."""
    if value is None:
        return None
    if isinstance(value, dict):
        return {str(k): str(v) for k, v in value.items()}
    if isinstance(value, (str, bytes)) or not isinstance(value, Iterable):
        raise ValueError("exec env must be a mapping or a list of KEY=VALUE strings")
    pairs = [str(item).partition("=") for item in value]
    if any(not sep for _, sep, _ in pairs):
        raise ValueError("env list entries must be KEY=VALUE")
    return {key: val for key, _, val in pairs}
