from kubeforge_automation.executors import CommandResult
from kubeforge_automation.facts import FactStore
from kubeforge_automation.operations.swap import SwapOffOperation
from kubeforge_automation.types import HostConfig

FSTAB = """\
/dev/mapper/rl-root /                       xfs     defaults        0 0
UUID=1234 /boot                   xfs     defaults        0 0
/dev/mapper/rl-swap none                    swap    defaults        0 0
# /dev/sdb1 none swap defaults 0 0
"""


class SwapExecutor:
    def __init__(self, fstab: str, active: bool):
        self.host = HostConfig(name="node1")
        self.dry_run = False
        self.files = {"/etc/fstab": fstab}
        self.active = active
        self.commands: list[list[str]] = []

    def run(self, command, *, check=True, mutable=True, **kwargs):  # noqa: ARG002
        command = list(command)
        self.commands.append(command)
        if command[0] == "swapon":
            out = "/dev/dm-1 partition 2G 0B -2\n" if self.active else ""
            return CommandResult(command, out, "", 0)
        if command == ["swapoff", "-a"]:
            self.active = False
        return CommandResult(command, "", "", 0)

    def read_file(self, path):
        return self.files.get(str(path))

    def write_file(self, path, *, content, mode):  # noqa: ARG002
        self.files[str(path)] = content
        return True, "content"


def test_swap_off_rewrites_fstab_and_disables_swap():
    executor = SwapExecutor(FSTAB, active=True)
    host = HostConfig("node1")
    op = SwapOffOperation({})

    assert op.is_satisfied(host, executor, FactStore()) is False
    result = op.apply(host, executor, FactStore())

    assert result.changed is True
    assert result.details == "fstab, swapoff"
    assert "rl-swap" not in executor.files["/etc/fstab"]
    assert "# /dev/sdb1 none swap" in executor.files["/etc/fstab"]
    assert host.facts["swap_enabled"] is False
    assert op.is_satisfied(host, executor, FactStore()) is True


def test_swap_guard_leaves_host_facts_alone():
    executor = SwapExecutor(FSTAB, active=True)
    host = HostConfig("node1")

    SwapOffOperation({}).is_satisfied(host, executor, FactStore())

    assert host.facts == {}
    assert ["swapoff", "-a"] not in executor.commands


def test_indented_comments_kept_and_short_fields_matched():
    fstab = "  #/dev/x none swap defaults 0 0\n\t# /dev/y none swap sw 0 0\nz n swap sw 0 0\n/dev/sda1 /data xfs defaults 0 0\n"
    executor = SwapExecutor(fstab, active=False)
    host = HostConfig("node1")

    SwapOffOperation({}).apply(host, executor, FactStore())

    assert executor.files["/etc/fstab"] == (
        "  #/dev/x none swap defaults 0 0\n\t# /dev/y none swap sw 0 0\n/dev/sda1 /data xfs defaults 0 0\n"
    )
