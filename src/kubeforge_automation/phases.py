"""The static five-phase bootstrap profile."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Optional

import jinja2

from .actions import Action, Idempotency
from .config import ClusterSettings
from .operations import OPERATION_REGISTRY
from .retry import RetryPolicy
from .types import HostConfig, Role

ADMIN_CONF = "/etc/kubernetes/admin.conf"
KUBELET_CONF = "/etc/kubernetes/kubelet.conf"
CONTAINERD_CONFIG = "/etc/containerd/config.toml"
JOIN_COMMAND = "join_command"

NETWORK_RETRY = RetryPolicy(max_attempts=3, delay=10.0)
CNI_RETRY = RetryPolicy(max_attempts=5, delay=10.0)

COMMANDS = {
    "containerd_config": "mkdir -p /etc/containerd && containerd config default > {{ containerd_config }}",
    "kubeadm_init": (
        "kubeadm init --pod-network-cidr={{ pod_network_cidr }} --cri-socket {{ cri_socket }}"
    ),
    "cni_apply": "kubectl apply --kubeconfig {{ admin_conf }} -f {{ cni_manifest }}",
    "cni_installed": "kubectl --kubeconfig {{ admin_conf }} -n kube-system get daemonset calico-node",
    "kube_repo_url": "https://pkgs.k8s.io/core:/stable:/{{ k8s_version }}/rpm/",
    "kube_repo_key": "https://pkgs.k8s.io/core:/stable:/{{ k8s_version }}/rpm/repodata/repomd.xml.key",
}

_jinja = jinja2.Environment(undefined=jinja2.StrictUndefined, autoescape=False)


@dataclass
class Phase:
    name: str
    description: str
    role: Role
    actions: list[Action]
    primary_only: bool = False

    @property
    def publishes(self) -> list[str]:
        keys: list[str] = []
        for action in self.actions:
            keys.extend(k for k in action.publishes if k not in keys)
        return keys

    def selects(self, host: HostConfig) -> bool:
        if not host.has_role(self.role):
            return False
        return host.primary or not self.primary_only


def render(name: str, settings: ClusterSettings, **extra: Any) -> str:
    context = {
        "k8s_version": settings.k8s_version,
        "pod_network_cidr": settings.pod_network_cidr,
        "cri_socket": settings.cri_socket,
        "cni_manifest": settings.cni_manifest,
        "admin_conf": ADMIN_CONF,
        "containerd_config": CONTAINERD_CONFIG,
    }
    context.update(extra)
    return _jinja.from_string(COMMANDS[name]).render(**context)


def action(
    name: str,
    action_type: str,
    spec: dict[str, Any],
    *,
    idempotency: Idempotency = Idempotency.SAFE_TO_REPEAT,
    retry: Optional[RetryPolicy] = None,
    required: bool = True,
    primary_only: bool = False,
    publishes: Iterable[str] = (),
    consumes: Iterable[str] = (),
    effects: Iterable[str] = (),
) -> Action:
    operation_cls = OPERATION_REGISTRY[action_type]
    return Action(
        name=name,
        operation=operation_cls({"name": name, **spec}),
        idempotency=idempotency,
        retry=retry,
        required=required,
        primary_only=primary_only,
        publishes=tuple(publishes),
        consumes=tuple(consumes),
        effects=tuple(effects),
    )


def build_phases(settings: ClusterSettings, hosts: dict[str, HostConfig]) -> list[Phase]:
    primary = next((h for h in hosts.values() if h.primary), None)
    workers = [h.node_name for h in hosts.values() if h.has_role(Role.WORKER)]
    return [
        _system_prep(),
        _runtime_install(settings),
        _control_plane_init(settings, primary, workers),
        _cni(settings),
        _worker_join(),
    ]


def _system_prep() -> Phase:
    return Phase(
        name="system-prep",
        description="Kernel forwarding, firewall ports and swap",
        role=Role.ALL,
        actions=[
            action(
                "ip-forward",
                "sysctl",
                {"name": "net.ipv4.ip_forward", "value": "1"},
                effects=("mutates:/etc/sysctl.d/net_ipv4_ip_forward.conf",),
            ),
            action(
                "node-firewall",
                "firewall",
                {"ports": ["6443/tcp", "10250/tcp", "30000-32767/tcp"]},
                required=False,
                effects=("mutates:firewalld",),
            ),
            action(
                "swap-off",
                "swap",
                {"fstab": "/etc/fstab"},
                effects=("mutates:/etc/fstab", "runs:swapoff"),
            ),
        ],
    )


def _runtime_install(settings: ClusterSettings) -> Phase:
    manager = settings.package_manager
    return Phase(
        name="runtime-install",
        description="containerd and the Kubernetes packages",
        role=Role.ALL,
        actions=[
            action(
                "container-selinux",
                "package",
                {"packages": ["container-selinux"], "manager": manager},
                retry=NETWORK_RETRY,
                effects=("installs:container-selinux",),
            ),
            action(
                "base-packages",
                "package",
                {"packages": ["yum-utils", "device-mapper-persistent-data", "lvm2"], "manager": manager},
                retry=NETWORK_RETRY,
                effects=("installs:yum-utils,device-mapper-persistent-data,lvm2",),
            ),
            action(
                "docker-ce-repo",
                "yum_repo",
                {
                    "id": "docker-ce",
                    "description": "Docker CE Stable",
                    "baseurl": "https://download.docker.com/linux/centos/$releasever/$basearch/stable",
                    "gpgkey": "https://download.docker.com/linux/centos/gpg",
                },
                effects=("mutates:/etc/yum.repos.d/docker-ce.repo",),
            ),
            action(
                "containerd",
                "package",
                {"packages": ["containerd.io"], "state": "latest", "manager": manager},
                retry=NETWORK_RETRY,
                effects=("installs:containerd.io",),
            ),
            action(
                "containerd-default-config",
                "exec",
                {"command": render("containerd_config", settings), "creates": CONTAINERD_CONFIG},
                idempotency=Idempotency.RUN_ONCE_GUARDED,
                effects=(f"mutates:{CONTAINERD_CONFIG}",),
            ),
            action(
                "containerd-systemd-cgroup",
                "edit_file",
                {
                    "path": CONTAINERD_CONFIG,
                    "regexp": r"^(\s*)SystemdCgroup = false",
                    "replacement": r"\1SystemdCgroup = true",
                    "notify": "containerd",
                },
                effects=(f"mutates:{CONTAINERD_CONFIG}",),
            ),
            action(
                "containerd-service",
                "service",
                {"service": "containerd", "state": "running", "enabled": True},
                effects=("starts:containerd",),
            ),
            action(
                "kubernetes-repo",
                "yum_repo",
                {
                    "id": "kubernetes",
                    "description": f"Kubernetes ({settings.k8s_version})",
                    "baseurl": render("kube_repo_url", settings),
                    "repo_gpgcheck": True,
                    "gpgkey": render("kube_repo_key", settings),
                },
                effects=("mutates:/etc/yum.repos.d/kubernetes.repo",),
            ),
            action(
                "kubernetes-packages",
                "package",
                {"packages": ["kubeadm", "kubelet", "kubectl"], "state": "latest", "manager": manager},
                retry=NETWORK_RETRY,
                effects=("installs:kubeadm,kubelet,kubectl",),
            ),
            action(
                "kubelet-service",
                "service",
                {"service": "kubelet", "enabled": True},
                effects=("enables:kubelet",),
            ),
        ],
    )


def _control_plane_init(
    settings: ClusterSettings, primary: Optional[HostConfig], workers: list[str]
) -> Phase:
    admin_user = settings.admin_user or (primary.user if primary and primary.user else "root")
    home = "/root" if admin_user == "root" else f"/home/{admin_user}"
    if primary is not None and primary.variables.get("admin_home"):
        home = str(primary.variables["admin_home"])
    return Phase(
        name="control-plane-init",
        description="kubeadm init on the primary control-plane host",
        role=Role.CONTROL_PLANE,
        primary_only=True,
        actions=[
            action(
                "kubeadm-init",
                "exec",
                {"command": render("kubeadm_init", settings), "creates": ADMIN_CONF, "timeout": 900},
                idempotency=Idempotency.RUN_ONCE_GUARDED,
                primary_only=True,
                effects=("initializes:control-plane", f"creates:{ADMIN_CONF}"),
            ),
            action(
                "kubeconfig-dir",
                "file",
                {
                    "path": f"{home}/.kube",
                    "state": "directory",
                    "owner": admin_user,
                    "group": admin_user,
                    "mode": "0755",
                },
                effects=(f"creates:{home}/.kube",),
            ),
            action(
                "kubeconfig",
                "file",
                {
                    "path": f"{home}/.kube/config",
                    "source": ADMIN_CONF,
                    "owner": admin_user,
                    "group": admin_user,
                    "mode": "0644",
                },
                effects=(f"mutates:{home}/.kube/config",),
            ),
            action(
                "join-credential",
                "join_credential",
                {
                    "publish": JOIN_COMMAND,
                    "kubeconfig": ADMIN_CONF,
                    "expected_nodes": workers,
                    "cri_socket": settings.cri_socket,
                },
                idempotency=Idempotency.RUN_ONCE_GUARDED,
                retry=NETWORK_RETRY,
                primary_only=True,
                publishes=(JOIN_COMMAND,),
                effects=(f"publishes:{JOIN_COMMAND}",),
            ),
        ],
    )


def _cni(settings: ClusterSettings) -> Phase:
    return Phase(
        name="cni",
        description="Calico pod network",
        role=Role.CONTROL_PLANE,
        primary_only=True,
        actions=[
            action(
                "calico",
                "exec",
                {
                    "command": render("cni_apply", settings),
                    "unless": render("cni_installed", settings),
                    "transient": True,
                },
                retry=CNI_RETRY,
                primary_only=True,
                effects=("applies:calico",),
            ),
            action(
                "control-plane-firewall",
                "firewall",
                {"ports": ["6443/tcp", "2379-2380/tcp", "10251/tcp", "10252/tcp"]},
                required=False,
                effects=("mutates:firewalld",),
            ),
        ],
    )


def _worker_join() -> Phase:
    return Phase(
        name="worker-join",
        description="kubeadm join on every worker",
        role=Role.WORKER,
        actions=[
            action(
                "kubeadm-join",
                "exec",
                {
                    "command": f"${JOIN_COMMAND}",
                    "consumes": [JOIN_COMMAND],
                    "creates": KUBELET_CONF,
                    "transient": True,
                    "timeout": 600,
                },
                idempotency=Idempotency.RUN_ONCE_GUARDED,
                retry=NETWORK_RETRY,
                consumes=(JOIN_COMMAND,),
                effects=("joins:cluster", f"creates:{KUBELET_CONF}"),
            ),
        ],
    )
