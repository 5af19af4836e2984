from pathlib import Path

import pytest

from kubeforge_automation.errors import PreconditionFailed
from kubeforge_automation.executors import LocalExecutor
from kubeforge_automation.facts import FactStore
from kubeforge_automation.operations.edit_file import PENDING_RESTARTS, EditFileOperation
from kubeforge_automation.types import HostConfig

CONFIG = """\
[plugins."io.containerd.grpc.v1.cri".containerd.runtimes.runc.options]
            SystemdCgroup = false
"""


def build_op(path: Path) -> EditFileOperation:
    return EditFileOperation(
        {
            "path": str(path),
            "regexp": r"^(\s*)SystemdCgroup = false",
            "replacement": r"\1SystemdCgroup = true",
            "notify": "containerd",
        }
    )


def test_edit_keeps_indentation_and_notifies(tmp_path: Path) -> None:
    path = tmp_path / "config.toml"
    path.write_text(CONFIG)
    host = HostConfig("local", connection="local")
    executor = LocalExecutor(host)
    op = build_op(path)

    assert op.is_satisfied(host, executor, FactStore()) is False
    result = op.apply(host, executor, FactStore())

    assert result.changed is True
    assert "            SystemdCgroup = true\n" in path.read_text()
    assert host.facts[PENDING_RESTARTS] == {"containerd"}
    assert op.is_satisfied(host, executor, FactStore()) is True


def test_edit_without_match_is_noop(tmp_path: Path) -> None:
    path = tmp_path / "config.toml"
    path.write_text("SystemdCgroup = true\n")
    host = HostConfig("local", connection="local")

    result = build_op(path).apply(host, LocalExecutor(host), FactStore())

    assert result.changed is False
    assert PENDING_RESTARTS not in host.facts


def test_edit_missing_file_fails(tmp_path: Path) -> None:
    host = HostConfig("local", connection="local")
    op = build_op(tmp_path / "missing.toml")

    assert op.is_satisfied(host, LocalExecutor(host), FactStore()) is False
    with pytest.raises(PreconditionFailed):
        op.apply(host, LocalExecutor(host), FactStore())
