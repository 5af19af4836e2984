import os
import pwd
from pathlib import Path

import jinja2
import pytest

from kubeforge_automation.errors import PreconditionFailed
from kubeforge_automation.executors import LocalExecutor
from kubeforge_automation.facts import FactStore
from kubeforge_automation.operations.file import FileOperation
from kubeforge_automation.types import HostConfig


def local_host(**variables) -> HostConfig:
    return HostConfig(name="local", connection="local", variables=dict(variables))


def test_file_content_and_mode(tmp_path: Path) -> None:
    path = tmp_path / "k8s.conf"
    host = local_host()
    op = FileOperation({"path": str(path), "content": "overlay\nbr_netfilter\n", "mode": "0600"})

    assert op.is_satisfied(host, LocalExecutor(host), FactStore()) is False
    result = op.apply(host, LocalExecutor(host), FactStore())

    assert result.changed is True
    assert path.read_text() == "overlay\nbr_netfilter\n"
    assert oct(path.stat().st_mode & 0o777) == "0o600"
    assert op.is_satisfied(host, LocalExecutor(host), FactStore()) is True


def test_file_copies_from_source_on_the_host(tmp_path: Path) -> None:
    source = tmp_path / "admin.conf"
    source.write_text("apiVersion: v1\nkind: Config\n")
    dest = tmp_path / ".kube" / "config"
    host = local_host()
    op = FileOperation({"path": str(dest), "source": str(source), "mode": "0644"})

    op.apply(host, LocalExecutor(host), FactStore())

    assert dest.read_text() == source.read_text()
    assert op.is_satisfied(host, LocalExecutor(host), FactStore()) is True


def test_file_missing_source_fails(tmp_path: Path) -> None:
    host = local_host()
    op = FileOperation({"path": str(tmp_path / "config"), "source": str(tmp_path / "absent.conf")})

    assert op.is_satisfied(host, LocalExecutor(host), FactStore()) is False
    with pytest.raises(PreconditionFailed):
        op.apply(host, LocalExecutor(host), FactStore())


def test_file_renders_jinja_template(tmp_path: Path) -> None:
    path = tmp_path / "kubeadm.yaml"
    host = local_host(pod_cidr="10.244.0.0/16")
    op = FileOperation(
        {
            "path": str(path),
            "template": "networking:\n  podSubnet: {{ pod_cidr }}\n# {{ host }}\n",
        }
    )

    op.apply(host, LocalExecutor(host), FactStore())

    assert path.read_text() == "networking:\n  podSubnet: 10.244.0.0/16\n# local\n"


def test_file_template_with_undefined_variable_fails(tmp_path: Path) -> None:
    host = local_host()
    op = FileOperation({"path": str(tmp_path / "x"), "template": "{{ missing }}"})

    with pytest.raises(jinja2.UndefinedError):
        op.apply(host, LocalExecutor(host), FactStore())


def test_file_directory_state(tmp_path: Path) -> None:
    path = tmp_path / ".kube"
    host = local_host()
    op = FileOperation({"path": str(path), "state": "directory", "mode": "0755"})

    result = op.apply(host, LocalExecutor(host), FactStore())

    assert result.changed is True
    assert path.is_dir()
    assert op.is_satisfied(host, LocalExecutor(host), FactStore()) is True


def test_file_ownership_uses_current_owner(tmp_path: Path) -> None:
    path = tmp_path / "owned"
    path.write_text("x")
    owner = pwd.getpwuid(os.getuid()).pw_name
    host = local_host()
    op = FileOperation({"path": str(path), "content": "x", "owner": owner})

    assert op.is_satisfied(host, LocalExecutor(host), FactStore()) is True


def test_file_rejects_two_content_sources():
    with pytest.raises(ValueError):
        FileOperation({"path": "/tmp/x", "content": "a", "source": "/tmp/y"})
