from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

from .base import Operation, coerce_bool, parse_mode
from ..executors import Executor
from ..facts import FactStore
from ..types import ActionResult, HostConfig

REPO_DIR = Path("/etc/yum.repos.d")
FLAGS = ("enabled", "gpgcheck", "repo_gpgcheck")


class YumRepoOperation(Operation):
    """Write a single-stanza ``.repo`` file, e.g. the Docker CE or pkgs.k8s.io repo.

    Keys are written in a fixed order so the guard can compare the rendered
    stanza with what is on disk.
    """

    action_type = "yum_repo"

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        repo_id = spec.get("id") or spec.get("repoid") or spec.get("name")
        if not repo_id:
            raise ValueError("yum_repo requires an id")
        self.repo_id = str(repo_id)
        if not (spec.get("baseurl") or spec.get("mirrorlist")):
            raise ValueError(f"yum_repo '{self.repo_id}' requires baseurl or mirrorlist")

        self.stanza: dict[str, str] = {"name": str(spec.get("description") or self.repo_id)}
        for key in ("baseurl", "mirrorlist"):
            if spec.get(key):
                self.stanza[key] = str(spec[key])
        for flag in FLAGS:
            value = spec.get(flag, None if flag == "repo_gpgcheck" else True)
            if value is not None:
                self.stanza[flag] = "1" if coerce_bool(value) else "0"
        for key in ("gpgkey", "exclude"):
            value = spec.get(key)
            if value:
                self.stanza[key] = " ".join(value) if isinstance(value, (list, tuple)) else str(value)
        extra = spec.get("options") or {}
        if not isinstance(extra, dict):
            raise ValueError("yum_repo options must be a mapping")
        self.stanza.update({str(k): str(v) for k, v in sorted(extra.items())})

        self.path = Path(spec.get("path") or REPO_DIR / f"{self.repo_id}.repo")
        self.mode: Optional[int] = parse_mode(spec.get("mode", "0644"))

    @property
    def resource(self) -> str:
        return self.repo_id

    def render(self) -> str:
        body = "".join(f"{key}={value}\n" for key, value in self.stanza.items())
        return f"[{self.repo_id}]\n{body}"

    def is_satisfied(self, host: HostConfig, executor: Executor, facts: FactStore) -> bool:
        if executor.read_file(self.path) != self.render():
            return False
        return self.mode is None or executor.file_mode(self.path) == self.mode

    def apply(self, host: HostConfig, executor: Executor, facts: FactStore) -> ActionResult:
        changed, detail = executor.write_file(self.path, content=self.render(), mode=self.mode)
        return self._result(host, changed, detail)
