import re
from pathlib import Path

import pytest

from kubeforge_automation.config import BootstrapOptions, KubeforgeConfig, load_config
from kubeforge_automation.errors import ConfigError
from kubeforge_automation.retry import RetryPolicy


def test_load_config_defaults(tmp_path: Path) -> None:
    config = load_config(tmp_path / "missing.conf")
    assert isinstance(config, KubeforgeConfig)
    assert config.inventory == Path("/etc/kubeforge/inventory.toml")
    assert config.options.concurrency == 10
    assert config.options.abort_on_critical_failure is True
    assert config.options.cluster.k8s_version == "v1.32"


def test_load_config_overrides(tmp_path: Path) -> None:
    cfg_path = tmp_path / "main.conf"
    cfg_path.write_text(
        """
        [defaults]
        inventory = "/opt/kubeforge/inventory.toml"
        report_file = "/var/lib/kubeforge/report.json"
        aws_region = "ap-southeast-2"
        aws_profile = "myprofile"
        concurrency = 4
        abort_on_critical_failure = false
        fact_timeout = 120
        cancel_grace_period = 5

        [cluster]
        k8s_version = "v1.31"
        pod_network_cidr = "192.168.0.0/16"
        admin_user = "rocky"

        [retry.run-once-guarded]
        max_attempts = 5
        delay = 2
        """
    )

    config = load_config(cfg_path)
    assert config.inventory == Path("/opt/kubeforge/inventory.toml")
    assert config.report_file == Path("/var/lib/kubeforge/report.json")
    assert config.aws_region == "ap-southeast-2"
    assert config.aws_profile == "myprofile"
    options = config.options
    assert options.concurrency == 4
    assert options.abort_on_critical_failure is False
    assert options.fact_timeout == 120.0
    assert options.cancel_grace_period == 5.0
    assert options.cluster.k8s_version == "v1.31"
    assert options.cluster.pod_network_cidr == "192.168.0.0/16"
    assert options.cluster.admin_user == "rocky"
    assert options.retry_overrides == {"run-once-guarded": RetryPolicy(max_attempts=5, delay=2.0)}


def test_unknown_cluster_setting(tmp_path: Path) -> None:
    cfg_path = tmp_path / "main.conf"
    cfg_path.write_text('[cluster]\nkube_version = "v1.30"\n')

    with pytest.raises(ConfigError, match="kube_version"):
        load_config(cfg_path)


def test_unknown_retry_class(tmp_path: Path) -> None:
    cfg_path = tmp_path / "main.conf"
    cfg_path.write_text("[retry.sometimes]\nmax_attempts = 2\n")

    with pytest.raises(ConfigError, match="sometimes"):
        load_config(cfg_path)


def test_bad_values_are_config_errors(tmp_path: Path) -> None:
    cfg_path = tmp_path / "main.conf"
    cfg_path.write_text('[defaults]\nconcurrency = "many"\n')

    with pytest.raises(ConfigError, match=re.escape(str(cfg_path))):
        load_config(cfg_path)


def test_broken_toml(tmp_path: Path) -> None:
    cfg_path = tmp_path / "main.conf"
    cfg_path.write_text("[defaults\n")

    with pytest.raises(ConfigError):
        load_config(cfg_path)


def test_concurrency_must_be_positive() -> None:
    with pytest.raises(ConfigError):
        BootstrapOptions(concurrency=0)
