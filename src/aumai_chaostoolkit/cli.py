"""CLI entry point for aumai-chaostoolkit."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import click
from pydantic import ValidationError

from aumai_chaostoolkit import __version__
from aumai_chaostoolkit.collaborators import SubprocessRunner
from aumai_chaostoolkit.config import OrchestratorSettings, load_settings, load_spec
from aumai_chaostoolkit.errors import ConfigurationError
from aumai_chaostoolkit.k6 import K6LoadEngine
from aumai_chaostoolkit.kubectl import KubectlClusterClient, LitmusFaultBackend
from aumai_chaostoolkit.log import configure_logging
from aumai_chaostoolkit.models import ExperimentReport
from aumai_chaostoolkit.orchestrator import ExperimentOrchestrator
from aumai_chaostoolkit.report import render_markdown

# Exit code for a run that completed with a Fail verdict.
EXIT_FAILED_VERDICT = 2


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def build_orchestrator(
    settings: OrchestratorSettings, kubectl: str = "kubectl", k6: str = "k6"
) -> ExperimentOrchestrator:
    """Wire the kubectl, Litmus and k6 adapters into an orchestrator."""
    runner = SubprocessRunner()
    cluster = KubectlClusterClient(runner, kubectl=kubectl)
    return ExperimentOrchestrator.from_clients(
        cluster,
        K6LoadEngine(runner, k6=k6),
        fault_backend=LitmusFaultBackend(cluster),
        settings=settings,
    )


def _print_summary(report: ExperimentReport) -> None:
    click.echo(f"\nStatus    : {report.status.value}")
    click.echo(f"Verdict   : {report.verdict.label} ({report.verdict.comparison.value})")
    for reason in report.verdict.reasons:
        click.echo(f"  - {reason}")
    for label, snapshot in (("Baseline", report.baseline), ("Fault", report.under_fault)):
        if snapshot is None:
            continue
        click.echo(
            f"{label:<10}: error rate {snapshot.error_rate:.2f}%, "
            f"p99 {snapshot.p99_latency_ms:.0f}ms, "
            f"throughput {snapshot.throughput:.1f}/s"
        )
    if report.recovery_seconds is not None:
        click.echo(f"Recovery  : {report.recovery_seconds:.1f}s")
    click.echo("Phases    :")
    for result in report.phases:
        suffix = f" ({result.reason})" if result.reason else ""
        click.echo(f"  {result.phase.value}: {result.outcome.value}{suffix}")
    for warning in report.warnings:
        click.echo(f"Warning   : {warning.step}: {warning.message}", err=True)
    if report.artifact_path:
        click.echo(f"Report    : {report.artifact_path}")
    if report.render_error:
        click.echo(f"Report    : not written ({report.render_error})", err=True)


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__)
def main() -> None:
    """AumAI Chaos Toolkit: run chaos experiments and report a verdict."""


@main.command("run")
@click.option(
    "--experiment",
    "experiment_path",
    required=True,
    metavar="PATH",
    help="Path to experiment definition (YAML or JSON).",
)
@click.option(
    "--settings",
    "settings_path",
    default=None,
    metavar="PATH",
    help="Path to orchestrator settings (YAML or JSON).",
)
@click.option(
    "--report",
    "report_path",
    default=None,
    metavar="PATH",
    help="Write the report artifact here (.json or .md).",
)
@click.option("--kubectl", default="kubectl", show_default=True, help="kubectl binary.")
@click.option("--k6", "k6_binary", default="k6", show_default=True, help="k6 binary.")
@click.option("--json-output", is_flag=True, help="Emit the report as JSON.")
@click.option("--log-level", default="INFO", show_default=True, help="Log level.")
@click.option("--json-logs", is_flag=True, help="Emit logs as JSON lines on stderr.")
def run_command(
    experiment_path: str,
    settings_path: str | None,
    report_path: str | None,
    kubectl: str,
    k6_binary: str,
    json_output: bool,
    log_level: str,
    json_logs: bool,
) -> None:
    """Run a chaos experiment defined in a YAML/JSON file."""
    configure_logging(log_level, json_logs=json_logs)
    try:
        spec = load_spec(experiment_path)
        settings = load_settings(settings_path)
    except ConfigurationError as exc:
        click.echo(f"Error loading experiment: {exc}", err=True)
        sys.exit(1)

    if report_path:
        settings = settings.model_copy(update={"report_path": Path(report_path)})

    orchestrator = build_orchestrator(settings, kubectl=kubectl, k6=k6_binary)
    click.echo(
        f"Running experiment '{spec.name}' (id={spec.experiment_id}) against {spec.target}: "
        f"{spec.fault.kind} for {spec.fault_duration_seconds:g}s, "
        f"{spec.load_concurrency} VUs for {spec.load_duration_seconds:g}s..."
    )
    report = asyncio.run(orchestrator.run(spec))

    if json_output:
        click.echo(report.model_dump_json(indent=2))
    else:
        _print_summary(report)
    sys.exit(0 if report.verdict.passed else EXIT_FAILED_VERDICT)


@main.command("validate")
@click.option(
    "--experiment",
    "experiment_path",
    required=True,
    metavar="PATH",
    help="Path to experiment definition (YAML or JSON).",
)
def validate_command(experiment_path: str) -> None:
    """Check an experiment definition without touching the cluster."""
    try:
        spec = load_spec(experiment_path)
    except ConfigurationError as exc:
        click.echo(f"Invalid experiment: {exc}", err=True)
        sys.exit(1)

    click.echo(f"Experiment '{spec.name}' is valid.")
    click.echo(f"Target    : {spec.target}")
    click.echo(f"Fault     : {spec.fault.model_dump_json()}")
    click.echo(f"Duration  : fault {spec.fault_duration_seconds:g}s, load {spec.load_duration_seconds:g}s")
    click.echo(f"Baseline  : {'yes' if spec.run_baseline else 'no'}")


@main.command("report")
@click.option(
    "--input",
    "input_path",
    required=True,
    metavar="PATH",
    help="Report JSON written by `run --report PATH.json`.",
)
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["markdown", "json"], case_sensitive=False),
    default="markdown",
    show_default=True,
)
def report_command(input_path: str, output_format: str) -> None:
    """Render a saved experiment report."""
    try:
        raw = Path(input_path).read_text(encoding="utf-8")
        report = ExperimentReport.model_validate_json(raw)
    except (OSError, ValidationError) as exc:
        click.echo(f"Error loading report: {exc}", err=True)
        sys.exit(1)

    if output_format.lower() == "json":
        click.echo(report.model_dump_json(indent=2))
    else:
        click.echo(render_markdown(report))


if __name__ == "__main__":
    main()
