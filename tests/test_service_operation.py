from kubeforge_automation.facts import FactStore
from kubeforge_automation.operations.edit_file import PENDING_RESTARTS
from kubeforge_automation.operations.service import ServiceOperation
from kubeforge_automation.types import HostConfig


class FakeSystemCtl:
    def __init__(self, enabled: bool = False, active: bool = False):
        self.enabled = enabled
        self.active = active
        self.actions: list[str] = []

    def available(self, executor) -> bool:  # noqa: ARG002
        return True

    def is_enabled(self, executor, service: str) -> bool:  # noqa: ARG002
        return self.enabled

    def is_active(self, executor, service: str) -> bool:  # noqa: ARG002
        return self.active

    def enable(self, executor, service: str) -> None:  # noqa: ARG002
        self.enabled = True
        self.actions.append("enable")

    def disable(self, executor, service: str) -> None:  # noqa: ARG002
        self.enabled = False
        self.actions.append("disable")

    def start(self, executor, service: str) -> None:  # noqa: ARG002
        self.active = True
        self.actions.append("start")

    def stop(self, executor, service: str) -> None:  # noqa: ARG002
        self.active = False
        self.actions.append("stop")

    def restart(self, executor, service: str) -> None:  # noqa: ARG002
        self.actions.append("restart")


class DummyExecutor:
    def __init__(self):
        self.host = HostConfig(name="node1")
        self.dry_run = False


def test_service_enable_and_start():
    op = ServiceOperation({"name": "containerd-service", "service": "containerd", "enabled": True, "state": "running"})
    fake = FakeSystemCtl(enabled=False, active=False)
    op.systemctl = fake
    host = HostConfig("node1")

    assert op.is_satisfied(host, DummyExecutor(), FactStore()) is False
    result = op.apply(host, DummyExecutor(), FactStore())

    assert result.changed is True
    assert result.details == "enabled, started"
    assert result.resource == "containerd"
    assert fake.actions == ["enable", "start"]


def test_service_restarts_when_notified():
    op = ServiceOperation({"service": "containerd", "enabled": True, "state": "running"})
    fake = FakeSystemCtl(enabled=True, active=True)
    op.systemctl = fake
    host = HostConfig("node1", facts={PENDING_RESTARTS: {"containerd"}})

    assert op.is_satisfied(host, DummyExecutor(), FactStore()) is False
    result = op.apply(host, DummyExecutor(), FactStore())

    assert result.details == "restarted"
    assert fake.actions == ["restart"]
    assert host.facts[PENDING_RESTARTS] == set()
    assert op.is_satisfied(host, DummyExecutor(), FactStore()) is True


def test_service_fresh_start_absorbs_pending_restart():
    op = ServiceOperation({"service": "containerd", "state": "running"})
    fake = FakeSystemCtl(active=False)
    op.systemctl = fake
    host = HostConfig("node1", facts={PENDING_RESTARTS: {"containerd"}})

    op.apply(host, DummyExecutor(), FactStore())

    assert fake.actions == ["start"]


def test_service_no_changes_returns_noop():
    op = ServiceOperation({"service": "kubelet", "enabled": True})
    fake = FakeSystemCtl(enabled=True, active=False)
    op.systemctl = fake
    host = HostConfig("node1")

    assert op.is_satisfied(host, DummyExecutor(), FactStore()) is True
    result = op.apply(host, DummyExecutor(), FactStore())

    assert result.changed is False
    assert result.details == "noop"
