from __future__ import annotations

import argparse
import dataclasses
import logging
import os
import signal
import sys
import threading
from pathlib import Path
from typing import Optional, Sequence

from .config import DEFAULT_CONFIG, load_config
from .errors import ConfigError
from .orchestrator import bootstrap_cluster
from .report import ClusterReadinessReport
from .types import ActionResult, Status


class Ansi:
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    RED = "\033[91m"
    BLUE = "\033[94m"
    ORANGE = "\033[38;5;208m"
    RESET = "\033[0m"


def colorize(text: str, color: Optional[str]) -> str:
    if not color:
        return text
    if not sys.stdout.isatty() or os.environ.get("NO_COLOR"):
        return text
    return f"{color}{text}{Ansi.RESET}"


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Kubernetes cluster bootstrap")
    parser.add_argument(
        "inventory",
        nargs="?",
        default=None,
        type=Path,
        help="Path to an inventory file (default from config or /etc/kubeforge/inventory.toml)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG,
        help=f"Path to kubeforge config file (default: {DEFAULT_CONFIG})",
    )
    parser.add_argument("--dry-run", action="store_true", help="Evaluate guards and report planned actions")
    parser.add_argument("--concurrency", type=int, help="Number of hosts worked on in parallel")
    parser.add_argument("--report", type=Path, help="Write the JSON run report to this file")
    parser.add_argument(
        "--no-abort",
        action="store_true",
        help="Let the current phase drain after a blocking failure",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Python logging level (default: INFO)",
    )
    return parser.parse_args(argv)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(levelname)s %(name)s - %(message)s",
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level)

    try:
        cfg = load_config(args.config)
    except ConfigError as exc:
        print(colorize(f"Config invalid: {exc}", Ansi.RED), file=sys.stderr)
        return 1
    _apply_aws_env(cfg)

    overrides: dict[str, object] = {"dry_run": args.dry_run}
    if args.concurrency is not None:
        overrides["concurrency"] = args.concurrency
    if args.no_abort:
        overrides["abort_on_critical_failure"] = False

    cancel_event = threading.Event()
    previous = signal.signal(signal.SIGINT, _cancel_handler(cancel_event))
    try:
        options = dataclasses.replace(cfg.options, **overrides)
        report = bootstrap_cluster(args.inventory or cfg.inventory, options, cancel_event=cancel_event)
    except ConfigError as exc:
        print(colorize(f"Inventory validation failed: {exc}", Ansi.RED), file=sys.stderr)
        return 1
    except Exception as exc:  # noqa: BLE001
        if logging.getLogger().isEnabledFor(logging.DEBUG):
            raise
        print(colorize(f"Execution failed: {exc}", Ansi.RED), file=sys.stderr)
        return 1
    finally:
        signal.signal(signal.SIGINT, previous)

    effective_level = logging.getLogger().getEffectiveLevel()
    summary = Summary()
    for result in report.iter_results():
        summary.add(result)
        if should_display_result(result, effective_level):
            print(format_result(result))
    print(summary.render())
    print(render_verdict(report))

    report_path = args.report or cfg.report_file
    if report_path:
        report.write(report_path)
        logging.info("report written to %s", report_path)

    code = 0 if report.ready else 1
    if report.cancelled:
        # Abandoned hosts may still hold pool threads; don't join them on exit.
        sys.stdout.flush()
        sys.stderr.flush()
        os._exit(code)
    return code


def _cancel_handler(event: threading.Event):
    def handler(signum, frame) -> None:
        if event.is_set():
            raise KeyboardInterrupt
        logging.warning("Interrupt received; finishing in-flight actions (press Ctrl-C again to abort)")
        event.set()

    return handler


def format_result(result: ActionResult) -> str:
    status = "changed" if result.changed else "ok"
    color: Optional[str] = None
    if result.failed:
        status = "failed"
        color = Ansi.RED
    elif result.status is Status.SKIPPED:
        status = "skipped"
        color = Ansi.BLUE
    elif result.status is Status.PLANNED:
        status = "planned"
        color = Ansi.YELLOW
    elif result.status is Status.RETRIED:
        status = f"{status} after {result.attempts} attempts"
        color = Ansi.ORANGE
    elif result.changed:
        color = Ansi.GREEN
    else:
        color = Ansi.BLUE
    phase = f"{result.phase}/" if result.phase else ""
    resource = f"[{result.resource}]" if result.resource else ""
    line = f"{result.host}::{phase}{result.action}{resource} {status} - {result.details}"
    return colorize(line, color)


def should_display_result(result: ActionResult, log_level: int) -> bool:
    if result.failed or result.changed:
        return True
    if result.status in (Status.PLANNED, Status.RETRIED):
        return True
    return log_level <= logging.DEBUG


def render_verdict(report: ClusterReadinessReport) -> str:
    if report.ready:
        return colorize(report.verdict, Ansi.GREEN)
    line = report.verdict
    failure = report.blocking_failure
    if failure is not None:
        line = f"{line}: {failure.host}::{failure.phase}/{failure.action} - {failure.reason}"
    elif report.cancelled:
        line = f"{line}: cancelled"
    return colorize(line, Ansi.RED)


def _apply_aws_env(cfg) -> None:
    if getattr(cfg, "aws_profile", None) and "AWS_PROFILE" not in os.environ:
        os.environ["AWS_PROFILE"] = cfg.aws_profile  # type: ignore[assignment]
    if getattr(cfg, "aws_region", None):
        if "AWS_REGION" not in os.environ:
            os.environ["AWS_REGION"] = cfg.aws_region  # type: ignore[assignment]
        if "AWS_DEFAULT_REGION" not in os.environ:
            os.environ["AWS_DEFAULT_REGION"] = cfg.aws_region  # type: ignore[assignment]


class Summary:
    def __init__(self) -> None:
        self.changes = 0
        self.skipped = 0
        self.retried = 0
        self.planned = 0
        self.failures = 0

    def add(self, result: ActionResult) -> None:
        if result.failed:
            self.failures += 1
            return
        if result.status is Status.SKIPPED:
            self.skipped += 1
            return
        if result.status is Status.PLANNED:
            self.planned += 1
            return
        if result.status is Status.RETRIED:
            self.retried += 1
        if result.changed:
            self.changes += 1

    def render(self) -> str:
        parts = [
            f"Changes: {self.changes}",
            f"Skipped: {self.skipped}",
            f"Retried: {self.retried}",
            f"Failures: {self.failures}",
        ]
        if self.planned:
            parts.append(f"Planned: {self.planned}")
        text = " | ".join(parts)
        color = Ansi.GREEN if self.failures == 0 else Ansi.RED
        return colorize(text, color)


if __name__ == "__main__":
    raise SystemExit(main())
