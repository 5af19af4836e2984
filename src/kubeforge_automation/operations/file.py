from __future__ import annotations

from pathlib import Path, PurePosixPath
from typing import Any, Optional

import jinja2

from .base import Operation, parse_mode
from ..errors import PreconditionFailed
from ..executors import Executor
from ..facts import FactStore
from ..secrets import SecretResolver
from ..types import ActionResult, HostConfig


class FileOperation(Operation):
    """Ensure a file or directory exists with the requested contents.

    Content comes from exactly one of ``content``, ``template`` (a Jinja2
    string), ``template_file`` (a Jinja2 file on the controller) or
    ``source`` (a path on the target host, e.g. ``/etc/kubernetes/admin.conf``).
    """

    action_type = "file"

    secret_resolver = SecretResolver()

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        raw_path = spec.get("path")
        if not raw_path:
            raise ValueError("file operation requires a path")
        self.path = PurePosixPath(str(raw_path))
        self.state = str(spec.get("state", "present"))
        if self.state not in {"present", "absent", "directory"}:
            raise ValueError("file operation state must be 'present', 'absent', or 'directory'")

        sources = [key for key in ("content", "template", "template_file", "source") if spec.get(key) is not None]
        if len(sources) > 1:
            raise ValueError(f"file operation accepts only one of {', '.join(sources)}")
        raw_content = spec.get("content")
        self.content = "" if raw_content is None else str(raw_content)
        self.template = spec.get("template")
        self.template_file = spec.get("template_file")
        self.source = PurePosixPath(str(spec["source"])) if spec.get("source") else None

        self.mode = parse_mode(spec.get("mode"))
        self.owner: Optional[str] = _name_or_none(spec.get("owner"))
        self.group: Optional[str] = _name_or_none(spec.get("group"))
        self.variables = spec.get("variables", {})
        if not isinstance(self.variables, dict):
            raise ValueError("file operation variables must be a mapping")

    def is_satisfied(self, host: HostConfig, executor: Executor, facts: FactStore) -> bool:
        if self.state == "absent":
            return not executor.path_exists(self.path)
        if self.state == "directory":
            probe = executor.run(["test", "-d", str(self.path)], check=False, mutable=False)
            if probe.returncode != 0:
                return False
        else:
            desired = self._desired_content(host, executor)
            if desired is None or executor.read_file(self.path) != desired:
                return False
        if self.mode is not None and executor.file_mode(self.path) != self.mode:
            return False
        return self._ownership_matches(executor)

    def apply(self, host: HostConfig, executor: Executor, facts: FactStore) -> ActionResult:
        if self.state == "absent":
            removed = executor.remove_path(self.path)
            return self._result(host, removed, "removed" if removed else "noop")
        if self.state == "directory":
            changed, detail = executor.ensure_directory(self.path, mode=self.mode)
        else:
            content = self._desired_content(host, executor)
            if content is None:
                raise PreconditionFailed(f"source {self.source} does not exist")
            changed, detail = executor.write_file(self.path, content=content, mode=self.mode)
        changed, detail = self._apply_ownership(executor, changed, detail)
        return self._result(host, changed, detail)

    def _desired_content(self, host: HostConfig, executor: Executor) -> Optional[str]:
        if self.source is not None:
            return executor.read_file(self.source)
        if self.template is not None:
            return self._render(str(self.template), host)
        if self.template_file is not None:
            return self._render(Path(str(self.template_file)).expanduser().read_text(), host)
        return self.content

    def _render(self, template_text: str, host: HostConfig) -> str:
        env = jinja2.Environment(undefined=jinja2.StrictUndefined, autoescape=False, keep_trailing_newline=True)
        context: dict[str, Any] = dict(host.variables)
        context.update(self.variables)
        context = self.secret_resolver.resolve(context)
        return env.from_string(template_text).render(host=host.name, **context)

    def _ownership_matches(self, executor: Executor) -> bool:
        if self.owner is None and self.group is None:
            return True
        current = executor.ownership(self.path)
        if current is None:
            return False
        owner, group = current
        return self.owner in (None, owner) and self.group in (None, group)

    def _apply_ownership(self, executor: Executor, changed: bool, detail: str) -> tuple[bool, str]:
        if self.owner is None and self.group is None:
            return changed, detail
        if self._ownership_matches(executor):
            return changed, detail
        chown_changed, chown_detail = executor.set_ownership(self.path, owner=self.owner, group=self.group)
        if chown_changed:
            changed = True
            detail = f"{detail}, {chown_detail}" if detail and detail != "noop" else chown_detail
        return changed, detail


def _name_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None
