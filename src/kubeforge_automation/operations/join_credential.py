from __future__ import annotations

import logging
import shlex
from typing import Any

from .base import Operation, run_checked
from ..errors import FatalFailure
from ..executors import Executor
from ..facts import FactStore
from ..types import ActionResult, HostConfig

logger = logging.getLogger(__name__)

DEFAULT_KUBECONFIG = "/etc/kubernetes/admin.conf"


class JoinCredentialOperation(Operation):
    """Mint a ``kubeadm join`` command on the control plane and emit it as a fact.

    The guard is satisfied once every expected node is registered with the
    API server, so a converged cluster never gets a fresh bootstrap token.
    """

    action_type = "join_credential"

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        self.publish = str(spec.get("publish") or "join_command")
        self.kubeconfig = str(spec.get("kubeconfig") or DEFAULT_KUBECONFIG)
        self.expected_nodes = tuple(str(n) for n in spec.get("expected_nodes", ()) or ())
        self.cri_socket = spec.get("cri_socket")
        self.ttl = spec.get("ttl")

    @property
    def resource(self) -> str:
        return self.publish

    def registered_nodes(self, executor: Executor) -> set[str]:
        result = executor.run(
            ["kubectl", "--kubeconfig", self.kubeconfig, "get", "nodes", "-o", "name"],
            check=False,
            mutable=False,
        )
        if result.returncode != 0:
            return set()
        nodes = set()
        for line in result.stdout.splitlines():
            name = line.strip()
            if name:
                nodes.add(name.split("/", 1)[-1])
        return nodes

    def is_satisfied(self, host: HostConfig, executor: Executor, facts: FactStore) -> bool:
        if facts.has(self.publish):
            return True
        if not self.expected_nodes:
            return False
        missing = set(self.expected_nodes) - self.registered_nodes(executor)
        if missing:
            logger.debug("host=%s nodes not yet registered: %s", host.name, ", ".join(sorted(missing)))
        return not missing

    def apply(self, host: HostConfig, executor: Executor, facts: FactStore) -> ActionResult:
        command = ["kubeadm", "token", "create", "--print-join-command"]
        if self.ttl:
            command.extend(["--ttl", str(self.ttl)])
        result = run_checked(executor, command, transient=True)
        if executor.dry_run:
            return self._result(host, True, "dry-run")
        join_command = result.stdout.strip()
        if not join_command.startswith("kubeadm join"):
            raise FatalFailure("kubeadm did not print a join command")
        if self.cri_socket and "--cri-socket" not in join_command:
            join_command = f"{join_command} --cri-socket {shlex.quote(str(self.cri_socket))}"
        return self._result(host, True, f"minted {self.publish}", facts={self.publish: join_command})
