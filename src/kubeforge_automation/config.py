from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

try:
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib  # type: ignore[no-redef]

from .errors import ConfigError
from .retry import RetryPolicy

DEFAULT_CONFIG = Path("/etc/kubeforge/main.conf")
DEFAULT_INVENTORY = Path("/etc/kubeforge/inventory.toml")
DEFAULT_CONCURRENCY = 10
DEFAULT_FACT_TIMEOUT = 600.0
DEFAULT_CANCEL_GRACE_PERIOD = 30.0
IDEMPOTENCY_CLASSES = ("safe-to-repeat", "run-once-guarded")


@dataclass
class ClusterSettings:
    k8s_version: str = "v1.32"
    pod_network_cidr: str = "10.244.0.0/16"
    cri_socket: str = "unix:///run/containerd/containerd.sock"
    cni_manifest: str = "https://raw.githubusercontent.com/projectcalico/calico/v3.25.0/manifests/calico.yaml"
    admin_user: Optional[str] = None
    package_manager: Optional[str] = None


@dataclass
class BootstrapOptions:
    concurrency: int = DEFAULT_CONCURRENCY
    retry_overrides: dict[str, RetryPolicy] = field(default_factory=dict)
    dry_run: bool = False
    abort_on_critical_failure: bool = True
    fact_timeout: float = DEFAULT_FACT_TIMEOUT
    cancel_grace_period: float = DEFAULT_CANCEL_GRACE_PERIOD
    cluster: ClusterSettings = field(default_factory=ClusterSettings)

    def __post_init__(self) -> None:
        if self.concurrency < 1:
            raise ConfigError("concurrency must be at least 1")
        unknown = set(self.retry_overrides) - set(IDEMPOTENCY_CLASSES)
        if unknown:
            raise ConfigError(f"unknown idempotency class(es) in retry overrides: {', '.join(sorted(unknown))}")


@dataclass
class KubeforgeConfig:
    inventory: Path = DEFAULT_INVENTORY
    report_file: Optional[Path] = None
    aws_region: Optional[str] = None
    aws_profile: Optional[str] = None
    options: BootstrapOptions = field(default_factory=BootstrapOptions)


def load_config(path: Path) -> KubeforgeConfig:
    if not path.exists():
        return KubeforgeConfig()
    try:
        data = tomllib.loads(path.read_text())
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"{path}: {exc}") from exc
    defaults = data.get("defaults", {})
    inventory = defaults.get("inventory", DEFAULT_INVENTORY)
    report_file = defaults.get("report_file")
    aws_region = defaults.get("aws_region")
    aws_profile = defaults.get("aws_profile")
    try:
        options = BootstrapOptions(
            concurrency=int(defaults.get("concurrency", DEFAULT_CONCURRENCY)),
            retry_overrides=_retry_overrides(data.get("retry", {})),
            abort_on_critical_failure=bool(defaults.get("abort_on_critical_failure", True)),
            fact_timeout=float(defaults.get("fact_timeout", DEFAULT_FACT_TIMEOUT)),
            cancel_grace_period=float(defaults.get("cancel_grace_period", DEFAULT_CANCEL_GRACE_PERIOD)),
            cluster=_cluster_settings(data.get("cluster", {})),
        )
    except ConfigError:
        raise
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{path}: {exc}") from exc
    return KubeforgeConfig(
        inventory=Path(inventory),
        report_file=Path(report_file) if report_file else None,
        aws_region=str(aws_region) if aws_region else None,
        aws_profile=str(aws_profile) if aws_profile else None,
        options=options,
    )


def _cluster_settings(raw: dict[str, Any]) -> ClusterSettings:
    settings = ClusterSettings()
    for key, value in raw.items():
        if not hasattr(settings, key):
            raise ConfigError(f"unknown [cluster] setting '{key}'")
        setattr(settings, key, str(value))
    return settings


def _retry_overrides(raw: dict[str, Any]) -> dict[str, RetryPolicy]:
    overrides: dict[str, RetryPolicy] = {}
    for name, values in raw.items():
        if not isinstance(values, dict):
            raise ConfigError(f"[retry.{name}] must be a table")
        defaults = RetryPolicy()
        overrides[name] = RetryPolicy(
            max_attempts=int(values.get("max_attempts", defaults.max_attempts)),
            delay=float(values.get("delay", defaults.delay)),
        )
    return overrides
