"""Verdict computation and report rendering."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime
from pathlib import Path

import structlog

from aumai_chaostoolkit.config import OrchestratorSettings
from aumai_chaostoolkit.models import (
    CleanupWarning,
    Comparison,
    ExperimentReport,
    ExperimentSpec,
    ExperimentStatus,
    MetricsSnapshot,
    Phase,
    PhaseOutcome,
    PhaseResult,
    Verdict,
)

logger = structlog.get_logger(__name__)


class ReportBuilder:
    """Judge an experiment and assemble its :class:`ExperimentReport`.

    Fault-phase metrics are compared against the baseline when one was
    recorded, and against the absolute limits in the settings otherwise.
    Rendering happens after the verdict and can never change it.
    """

    def __init__(self, settings: OrchestratorSettings | None = None) -> None:
        self.settings = settings or OrchestratorSettings()

    # ------------------------------------------------------------------
    # Verdict
    # ------------------------------------------------------------------

    def evaluate(
        self,
        phases: Sequence[PhaseResult],
        baseline: MetricsSnapshot | None,
        under_fault: MetricsSnapshot | None,
        recovery_seconds: float | None,
    ) -> Verdict:
        """Return the verdict for the given run trail and measurements.

        Cleanup results are ignored: a failed cleanup never masks an
        otherwise passing experiment.
        """
        s = self.settings
        reasons: list[str] = []

        preflight = next((p for p in phases if p.phase == Phase.preflight), None)
        if preflight is None:
            reasons.append("preflight was not run")

        for result in phases:
            if result.phase == Phase.cleanup:
                continue
            if result.outcome == PhaseOutcome.failed:
                reasons.append(f"{result.phase.value} failed: {result.reason}")

        comparison = Comparison.relative if baseline is not None else Comparison.absolute
        error_rate_delta: float | None = None
        p99_delta_ms: float | None = None

        if under_fault is None:
            if not reasons:
                reasons.append("no fault-phase metrics")
        elif baseline is not None:
            error_rate_delta = under_fault.error_rate - baseline.error_rate
            p99_delta_ms = under_fault.p99_latency_ms - baseline.p99_latency_ms
            if error_rate_delta > s.max_error_rate_delta:
                reasons.append(
                    f"error-rate regression {error_rate_delta:.1f} > {s.max_error_rate_delta:.1f}"
                )
            if s.max_p99_delta_ms is not None and p99_delta_ms > s.max_p99_delta_ms:
                reasons.append(
                    f"p99 latency regression {p99_delta_ms:.0f}ms > {s.max_p99_delta_ms:.0f}ms"
                )
        else:
            if under_fault.error_rate > s.max_error_rate:
                reasons.append(
                    f"error rate {under_fault.error_rate:.1f} > {s.max_error_rate:.1f}"
                )
            if (
                s.max_p99_latency_ms is not None
                and under_fault.p99_latency_ms > s.max_p99_latency_ms
            ):
                reasons.append(
                    f"p99 latency {under_fault.p99_latency_ms:.0f}ms > {s.max_p99_latency_ms:.0f}ms"
                )

        if recovery_seconds is not None:
            if recovery_seconds > s.max_recovery_seconds:
                reasons.append(
                    f"recovery took {recovery_seconds:.1f}s > {s.max_recovery_seconds:.1f}s"
                )
        elif not reasons:
            reasons.append("recovery not measured")

        return Verdict(
            passed=not reasons,
            reasons=tuple(reasons),
            comparison=comparison,
            error_rate_delta=error_rate_delta,
            p99_delta_ms=p99_delta_ms,
        )

    def build(
        self,
        spec: ExperimentSpec,
        phases: Sequence[PhaseResult],
        baseline: MetricsSnapshot | None,
        under_fault: MetricsSnapshot | None,
        recovery_seconds: float | None,
        *,
        status: ExperimentStatus,
        started_at: datetime,
        ended_at: datetime,
        post_recovery: MetricsSnapshot | None = None,
        warnings: Iterable[CleanupWarning] = (),
        render_error: str | None = None,
        artifact_path: str | None = None,
    ) -> ExperimentReport:
        """Compute the verdict and freeze everything into a report."""
        verdict = self.evaluate(phases, baseline, under_fault, recovery_seconds)
        return ExperimentReport(
            spec=spec,
            status=status,
            phases=tuple(phases),
            baseline=baseline,
            under_fault=under_fault,
            post_recovery=post_recovery,
            recovery_seconds=recovery_seconds,
            verdict=verdict,
            warnings=tuple(warnings),
            render_error=render_error,
            artifact_path=artifact_path,
            started_at=started_at,
            ended_at=ended_at,
        )

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def render(self, report: ExperimentReport, path: str | Path) -> str | None:
        """Write *report* to *path* as JSON, or Markdown for ``.md`` paths.

        Returns:
            None on success, otherwise a description of the failure.  The
            report itself is never modified.
        """
        file_path = Path(path)
        try:
            if file_path.suffix in (".md", ".markdown"):
                content = render_markdown(report)
            else:
                content = report.model_dump_json(indent=2)
            file_path.parent.mkdir(parents=True, exist_ok=True)
            file_path.write_text(content, encoding="utf-8")
        except OSError as exc:
            logger.error("report.render_failed", path=str(file_path), error=str(exc))
            return f"failed to write report to {file_path}: {exc}"
        logger.info("report.rendered", path=str(file_path), verdict=report.verdict.label)
        return None


def _metric_row(label: str, snapshot: MetricsSnapshot | None) -> str:
    if snapshot is None:
        return f"| {label} | - | - | - | - |"
    return (
        f"| {label} | {snapshot.error_rate:.2f}% | {snapshot.p99_latency_ms:.0f}ms "
        f"| {snapshot.throughput:.1f}/s | {snapshot.success_rate:.2f}% |"
    )


def render_markdown(report: ExperimentReport) -> str:
    """Render *report* as a Markdown document."""
    spec = report.spec
    lines = [
        f"# Chaos experiment: {spec.name}",
        "",
        f"- Experiment: `{spec.experiment_id}`",
        f"- Target: `{spec.target}`",
        f"- Fault: `{spec.fault.kind}` for {spec.fault_duration_seconds:g}s",
        f"- Load: {spec.load_concurrency} VUs for {spec.load_duration_seconds:g}s",
        f"- Status: {report.status.value}",
        f"- Verdict: **{report.verdict.label}** ({report.verdict.comparison.value} comparison)",
    ]
    if report.recovery_seconds is not None:
        lines.append(f"- Recovery time: {report.recovery_seconds:.1f}s")
    if report.verdict.reasons:
        lines += ["", "## Failure reasons", ""]
        lines += [f"- {reason}" for reason in report.verdict.reasons]

    lines += [
        "",
        "## Metrics",
        "",
        "| Window | Error rate | p99 | Throughput | Success rate |",
        "|---|---|---|---|---|",
        _metric_row("baseline", report.baseline),
        _metric_row("under fault", report.under_fault),
        _metric_row("post recovery", report.post_recovery),
        "",
        "## Phases",
        "",
        "| Phase | Outcome | Duration | Reason |",
        "|---|---|---|---|",
    ]
    for result in report.phases:
        lines.append(
            f"| {result.phase.value} | {result.outcome.value} "
            f"| {result.duration_seconds:.1f}s | {result.reason or ''} |"
        )

    if report.warnings:
        lines += ["", "## Cleanup warnings", ""]
        lines += [f"- {w.step}: {w.message}" for w in report.warnings]
    if report.render_error:
        lines += ["", f"Render error: {report.render_error}"]
    return "\n".join(lines) + "\n"


__all__ = ["ReportBuilder", "render_markdown"]
