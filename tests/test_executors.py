import subprocess
from pathlib import Path

import pytest

from kubeforge_automation.errors import TransientFailure
from kubeforge_automation.executors import LocalExecutor, SshExecutor, executor_for
from kubeforge_automation.operations.base import run_checked
from kubeforge_automation.types import HostConfig


def fake_run(calls, returncode=0, stdout=""):
    def run(argv, **kwargs):
        calls.append((argv, kwargs))
        return subprocess.CompletedProcess(argv, returncode, stdout, "")

    return run


def test_ssh_argv_with_port_identity_and_sudo(monkeypatch):
    calls = []
    monkeypatch.setattr("kubeforge_automation.executors.subprocess.run", fake_run(calls))
    host = HostConfig("w1", address="10.0.0.21", user="rocky", port=2222, identity_file="~/.ssh/k8s")

    SshExecutor(host).run(["systemctl", "enable", "kubelet"], env={"LANG": "C"})

    argv = calls[0][0]
    assert argv[0] == "ssh"
    assert "BatchMode=yes" in argv
    assert argv[argv.index("-p") + 1] == "2222"
    assert argv[argv.index("-i") + 1] == "~/.ssh/k8s"
    assert argv[-2] == "rocky@10.0.0.21"
    assert argv[-1] == "sudo -n sh -c 'env LANG=C systemctl enable kubelet'"


def test_ssh_as_root_skips_sudo(monkeypatch):
    calls = []
    monkeypatch.setattr("kubeforge_automation.executors.subprocess.run", fake_run(calls))

    SshExecutor(HostConfig("cp1", user="root")).run(["swapoff", "-a"])

    assert calls[0][0][-2:] == ["root@cp1", "swapoff -a"]


def test_ssh_exit_255_is_unreachable(monkeypatch):
    monkeypatch.setattr("kubeforge_automation.executors.subprocess.run", fake_run([], returncode=255))
    executor = SshExecutor(HostConfig("w2", address="10.0.0.22"))

    result = executor.run(["true"], check=False)

    assert result.unreachable is True
    with pytest.raises(TransientFailure):
        run_checked(executor, ["true"])


def test_timeout_is_transient(monkeypatch):
    def run(argv, **kwargs):
        raise subprocess.TimeoutExpired(argv, kwargs["timeout"])

    monkeypatch.setattr("kubeforge_automation.executors.subprocess.run", run)

    with pytest.raises(TransientFailure, match="timed out"):
        SshExecutor(HostConfig("w1")).run(["kubeadm", "join"], timeout=5)


def test_dry_run_skips_mutable_commands(monkeypatch):
    calls = []
    monkeypatch.setattr("kubeforge_automation.executors.subprocess.run", fake_run(calls, stdout="1\n"))
    executor = SshExecutor(HostConfig("w1"), dry_run=True)

    skipped = executor.run(["sysctl", "-w", "net.ipv4.ip_forward=1"])
    probe = executor.run(["sysctl", "-n", "net.ipv4.ip_forward"], mutable=False)

    assert skipped.stderr == "skipped (dry-run)"
    assert probe.stdout == "1\n"
    assert len(calls) == 1


def test_local_executor_write_file(tmp_path: Path):
    executor = LocalExecutor(HostConfig("local", connection="local"))
    target = tmp_path / "etc" / "modules-load.d" / "k8s.conf"

    assert executor.write_file(target, content="br_netfilter\n", mode=0o600) == (True, "content, mode->0600")
    assert executor.write_file(target, content="br_netfilter\n", mode=0o600) == (False, "noop")
    assert executor.file_mode(target) == 0o600


def test_local_executor_dry_run_leaves_disk_alone(tmp_path: Path):
    executor = LocalExecutor(HostConfig("local", connection="local"), dry_run=True)
    target = tmp_path / "fstab"

    changed, _ = executor.write_file(target, content="x\n", mode=None)

    assert changed is True
    assert not target.exists()


def test_executor_for_picks_by_connection():
    assert isinstance(executor_for(HostConfig("a", connection="local")), LocalExecutor)
    assert isinstance(executor_for(HostConfig("b")), SshExecutor)
    with pytest.raises(ValueError):
        executor_for(HostConfig("c", connection="winrm"))
