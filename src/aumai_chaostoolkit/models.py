"""Pydantic models for aumai-chaostoolkit."""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from aumai_chaostoolkit.errors import ConfigurationError

# ---------------------------------------------------------------------------
# Experiment input
# ---------------------------------------------------------------------------


class FaultKind(str, Enum):
    """Categories of injectable faults."""

    instance_kill = "instance-kill"
    network_latency = "network-latency"
    cpu_hog = "cpu-hog"
    memory_hog = "memory-hog"


class Target(BaseModel):
    """The workload under test."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    namespace: str = Field(min_length=1)
    workload: str = Field(min_length=1)
    service_url: str | None = None

    def resolved_service_url(self) -> str:
        """Return the URL the load engine should hit."""
        if self.service_url:
            return self.service_url
        return f"http://{self.workload}.{self.namespace}.svc.cluster.local"

    def __str__(self) -> str:
        return f"{self.namespace}/{self.workload}"


class InstanceKill(BaseModel):
    """Terminate the workload's running instances."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["instance-kill"] = "instance-kill"


class NetworkLatency(BaseModel):
    """Add egress latency to the workload's instances."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["network-latency"] = "network-latency"
    latency_ms: int = Field(default=2000, gt=0)
    jitter_ms: int = Field(default=0, ge=0)


class CPUHog(BaseModel):
    """Saturate CPU inside the workload's instances."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["cpu-hog"] = "cpu-hog"
    intensity: int = Field(default=100, ge=1, le=100)
    cores: int = Field(default=1, ge=1)


class MemoryHog(BaseModel):
    """Consume memory inside the workload's instances."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["memory-hog"] = "memory-hog"
    amount_mb: int = Field(default=500, gt=0)


FaultSpec = Annotated[
    Union[InstanceKill, NetworkLatency, CPUHog, MemoryHog],
    Field(discriminator="kind"),
]


def _invalid_experiment(exc: ValidationError) -> ConfigurationError:
    return ConfigurationError(f"invalid experiment definition: {exc}")


class ExperimentSpec(BaseModel):
    """Immutable definition of a single chaos experiment run.

    Every way of building a spec (the constructor, ``model_validate``,
    ``model_validate_json`` and :meth:`from_mapping`) raises
    :class:`ConfigurationError` for invalid input, so an unknown fault kind
    or a malformed fault parameter is rejected before any collaborator is
    touched.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    experiment_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str = "chaos-experiment"
    target: Target
    fault: FaultSpec
    fault_duration_seconds: float = Field(default=60.0, gt=0)
    load_concurrency: int = Field(default=10, ge=1)
    load_duration_seconds: float = Field(default=300.0, gt=0)
    run_baseline: bool = True
    cleanup: bool = True

    def __init__(self, **data: Any) -> None:
        try:
            super().__init__(**data)
        except ValidationError as exc:
            raise _invalid_experiment(exc) from exc

    # Keep pydantic's own validation paths (nested specs, model_validate) off
    # this __init__; they are wrapped separately below.
    __init__.__pydantic_base_init__ = True  # type: ignore[attr-defined]

    @classmethod
    def model_validate(cls, obj: Any, **kwargs: Any) -> ExperimentSpec:
        try:
            return super().model_validate(obj, **kwargs)
        except ValidationError as exc:
            raise _invalid_experiment(exc) from exc

    @classmethod
    def model_validate_json(cls, json_data: str | bytes, **kwargs: Any) -> ExperimentSpec:
        try:
            return super().model_validate_json(json_data, **kwargs)
        except ValidationError as exc:
            raise _invalid_experiment(exc) from exc

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> ExperimentSpec:
        """Validate raw *data* loaded from a YAML or JSON document."""
        return cls.model_validate(data)


# ---------------------------------------------------------------------------
# Measurements
# ---------------------------------------------------------------------------


class MetricsSnapshot(BaseModel):
    """Performance of the target over one load window."""

    model_config = ConfigDict(frozen=True)

    error_rate: float = Field(ge=0.0, le=100.0)
    p99_latency_ms: float = Field(ge=0.0)
    throughput: float = Field(ge=0.0)
    success_rate: float = Field(ge=0.0, le=100.0)


# ---------------------------------------------------------------------------
# Run trail
# ---------------------------------------------------------------------------


class Phase(str, Enum):
    """Experiment phases, in execution order."""

    preflight = "preflight"
    baseline = "baseline"
    fault_and_load = "fault_and_load"
    recovery = "recovery"
    report = "report"
    cleanup = "cleanup"


class PhaseOutcome(str, Enum):
    success = "success"
    failed = "failed"
    skipped = "skipped"


class PhaseResult(BaseModel):
    """One entry of the experiment's append-only audit trail."""

    model_config = ConfigDict(frozen=True)

    phase: Phase
    outcome: PhaseOutcome
    reason: str | None = None
    started_at: datetime
    ended_at: datetime

    @property
    def duration_seconds(self) -> float:
        return (self.ended_at - self.started_at).total_seconds()


class RunState(str, Enum):
    """States of the orchestrator's linear state machine."""

    init = "init"
    preflight = "preflight"
    baseline = "baseline"
    fault_and_load = "fault_and_load"
    recovery = "recovery"
    report = "report"
    cleanup = "cleanup"
    aborted = "aborted"
    done = "done"


class ExperimentStatus(str, Enum):
    """How the run ended."""

    completed = "completed"
    aborted = "aborted"


# ---------------------------------------------------------------------------
# Verdict and report
# ---------------------------------------------------------------------------


class Comparison(str, Enum):
    """Whether fault metrics were judged against a baseline or fixed limits."""

    relative = "relative"
    absolute = "absolute"


class Verdict(BaseModel):
    """Pass/fail determination with the reasons behind a failure."""

    model_config = ConfigDict(frozen=True)

    passed: bool
    reasons: tuple[str, ...] = ()
    comparison: Comparison
    error_rate_delta: float | None = None
    p99_delta_ms: float | None = None

    @property
    def label(self) -> str:
        return "PASS" if self.passed else "FAIL"


class CleanupWarning(BaseModel):
    """A non-fatal cleanup failure attached to the report."""

    model_config = ConfigDict(frozen=True)

    step: str
    message: str


class ExperimentReport(BaseModel):
    """Complete, immutable record of an experiment run."""

    model_config = ConfigDict(frozen=True)

    spec: ExperimentSpec
    status: ExperimentStatus
    phases: tuple[PhaseResult, ...]
    baseline: MetricsSnapshot | None = None
    under_fault: MetricsSnapshot | None = None
    post_recovery: MetricsSnapshot | None = None
    recovery_seconds: float | None = None
    verdict: Verdict
    warnings: tuple[CleanupWarning, ...] = ()
    render_error: str | None = None
    artifact_path: str | None = None
    started_at: datetime
    ended_at: datetime

    def phase(self, phase: Phase) -> PhaseResult | None:
        """Return the recorded result for *phase*, or None if it never ran."""
        for result in self.phases:
            if result.phase == phase:
                return result
        return None


__all__ = [
    "CPUHog",
    "CleanupWarning",
    "Comparison",
    "ExperimentReport",
    "ExperimentSpec",
    "ExperimentStatus",
    "FaultKind",
    "FaultSpec",
    "InstanceKill",
    "MemoryHog",
    "MetricsSnapshot",
    "NetworkLatency",
    "Phase",
    "PhaseOutcome",
    "PhaseResult",
    "RunState",
    "Target",
    "Verdict",
]
