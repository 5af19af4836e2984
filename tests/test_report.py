import json
from datetime import datetime, timedelta

from kubeforge_automation.report import NOT_READY, BlockingFailure, ClusterReadinessReport, PhaseReport
from kubeforge_automation.types import ActionResult, Status


def sample_report():
    started = datetime(2026, 1, 1, 12, 0, 0)
    report = ClusterReadinessReport(
        verdict=NOT_READY,
        phases=[
            PhaseReport("system-prep", "prep", "succeeded", hosts=["cp1", "w1"], duration=1.25),
            PhaseReport("control-plane-init", "init", "failed", hosts=["cp1"], message="rc=1: port in use"),
            PhaseReport("worker-join", "join", "not-run", message="blocked by cp1/kubeadm-init"),
        ],
        blocking_failure=BlockingFailure("cp1", "control-plane-init", "kubeadm-init", "rc=1: port in use", "FatalFailure"),
        published_facts=["join_command"],
        started_at=started,
        finished_at=started + timedelta(seconds=42),
    )
    report.add(ActionResult(host="cp1", action="ip-forward", changed=True, details="runtime", phase="system-prep"))
    report.add(
        ActionResult(host="w1", action="ip-forward", changed=False, details="", phase="system-prep", status=Status.SKIPPED)
    )
    report.add(
        ActionResult(
            host="cp1",
            action="kubeadm-init",
            changed=False,
            details="rc=1: port in use",
            phase="control-plane-init",
            status=Status.FAILED,
            error="FatalFailure",
            facts={"join_command": "kubeadm join --token secret"},
        )
    )
    return report


def test_to_dict_shape():
    data = sample_report().to_dict()

    assert data["verdict"] == "ClusterNotReady"
    assert data["duration_seconds"] == 42.0
    assert [p["status"] for p in data["phases"]] == ["succeeded", "failed", "not-run"]
    assert data["hosts"]["cp1"]["control-plane-init"]["kubeadm-init"]["error"] == "FatalFailure"
    assert data["hosts"]["w1"]["system-prep"]["ip-forward"]["status"] == "skipped-already-satisfied"
    assert data["blocking_failure"]["action"] == "kubeadm-init"
    assert data["facts"] == ["join_command"]


def test_fact_values_never_serialized():
    assert "secret" not in sample_report().to_json()


def test_lookup_helpers():
    report = sample_report()

    assert report.count(Status.FAILED) == 1
    assert report.phase("worker-join").status == "not-run"
    assert report.phase("cni") is None
    assert report.result_for("cp1", "system-prep", "ip-forward").changed is True
    assert report.ready is False


def test_write_creates_parent_directories(tmp_path):
    path = sample_report().write(tmp_path / "reports" / "run.json")

    assert json.loads(path.read_text())["verdict"] == "ClusterNotReady"
