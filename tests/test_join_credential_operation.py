import pytest

from kubeforge_automation.errors import FatalFailure, TransientFailure
from kubeforge_automation.executors import CommandResult
from kubeforge_automation.facts import FactStore
from kubeforge_automation.operations.join_credential import JoinCredentialOperation
from kubeforge_automation.types import HostConfig

JOIN = "kubeadm join 10.0.0.1:6443 --token tok-123 --discovery-token-ca-cert-hash sha256:abc"


class ControlPlaneExecutor:
    def __init__(self, nodes=(), token_rc: int = 0, token_out: str = JOIN + "\n"):
        self.host = HostConfig(name="cp1")
        self.dry_run = False
        self.nodes = list(nodes)
        self.token_rc = token_rc
        self.token_out = token_out
        self.commands: list[list[str]] = []

    def run(self, command, *, check=True, mutable=True, **kwargs):  # noqa: ARG002
        command = list(command)
        self.commands.append(command)
        if command[0] == "kubectl":
            out = "".join(f"node/{n}\n" for n in self.nodes)
            return CommandResult(command, out, "", 0)
        if command[:3] == ["kubeadm", "token", "create"]:
            return CommandResult(command, self.token_out, "timed out", self.token_rc)
        return CommandResult(command, "", "", 0)


def build_op(**extra) -> JoinCredentialOperation:
    spec = {
        "expected_nodes": ["w1", "w2"],
        "cri_socket": "unix:///run/containerd/containerd.sock",
    }
    spec.update(extra)
    return JoinCredentialOperation(spec)


def test_join_credential_mints_and_appends_cri_socket():
    op = build_op()
    executor = ControlPlaneExecutor(nodes=["cp1"])

    assert op.is_satisfied(HostConfig("cp1"), executor, FactStore()) is False
    result = op.apply(HostConfig("cp1"), executor, FactStore())

    assert result.facts == {"join_command": JOIN + " --cri-socket unix:///run/containerd/containerd.sock"}
    assert "tok-123" not in result.details


def test_join_credential_satisfied_when_every_worker_registered():
    op = build_op()
    executor = ControlPlaneExecutor(nodes=["cp1", "w1", "w2"])

    assert op.is_satisfied(HostConfig("cp1"), executor, FactStore()) is True
    assert all(cmd[0] != "kubeadm" for cmd in executor.commands)


def test_join_credential_partial_registration_still_mints():
    op = build_op()

    assert op.is_satisfied(HostConfig("cp1"), ControlPlaneExecutor(nodes=["w1"]), FactStore()) is False


def test_join_credential_satisfied_once_published():
    facts = FactStore()
    facts.publish("join_command", JOIN)

    assert build_op().is_satisfied(HostConfig("cp1"), ControlPlaneExecutor(), facts) is True


def test_join_credential_token_failure_is_transient():
    with pytest.raises(TransientFailure):
        build_op().apply(HostConfig("cp1"), ControlPlaneExecutor(token_rc=1), FactStore())


def test_join_credential_rejects_unexpected_output():
    executor = ControlPlaneExecutor(token_out="error: something\n")

    with pytest.raises(FatalFailure):
        build_op().apply(HostConfig("cp1"), executor, FactStore())
