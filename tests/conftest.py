"""Shared pytest fixtures and fake collaborators for aumai-chaostoolkit."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence
from typing import Any

import pytest

from aumai_chaostoolkit.cleanup import CleanupCoordinator
from aumai_chaostoolkit.collaborators import (
    CommandResult,
    Readiness,
    ResourceRef,
    TerminationResult,
)
from aumai_chaostoolkit.config import OrchestratorSettings
from aumai_chaostoolkit.errors import ClusterCommandError, FaultInjectionError
from aumai_chaostoolkit.faults import FaultHandle, FaultInjector
from aumai_chaostoolkit.load import LoadDriver
from aumai_chaostoolkit.models import (
    ExperimentSpec,
    FaultKind,
    InstanceKill,
    MetricsSnapshot,
    Target,
)
from aumai_chaostoolkit.orchestrator import ExperimentOrchestrator
from aumai_chaostoolkit.preflight import PreflightValidator
from aumai_chaostoolkit.recovery import RecoveryMonitor

HEALTHY_METRICS: dict[str, float] = {
    "error_rate": 0.5,
    "p99_latency_ms": 120.0,
    "throughput": 50.0,
    "success_rate": 99.5,
}

DEGRADED_METRICS: dict[str, float] = {
    "error_rate": 3.2,
    "p99_latency_ms": 450.0,
    "throughput": 42.0,
    "success_rate": 96.8,
}

# ---------------------------------------------------------------------------
# Fake collaborators
# ---------------------------------------------------------------------------


class FakeCluster:
    """In-memory ClusterClient.

    ``readiness_sequence`` is consumed one entry per readiness call; the last
    entry repeats once the sequence is exhausted.
    """

    def __init__(
        self,
        namespaces: Sequence[str] = ("shop",),
        workloads: Sequence[tuple[str, str]] = (("shop", "checkout"),),
        readiness_sequence: Sequence[Readiness] = (Readiness(ready=3, desired=3),),
        termination: TerminationResult | None = None,
    ) -> None:
        self.namespaces = set(namespaces)
        self.workloads = set(workloads)
        self.readiness_sequence = list(readiness_sequence)
        self.termination = termination or TerminationResult(terminated=("pod-a", "pod-b"))
        self.ping_error: ClusterCommandError | None = None
        self.delete_error: Exception | None = None
        self.readiness_calls = 0
        self.terminate_calls = 0
        self.applied: list[Mapping[str, Any]] = []
        self.patched: list[tuple[str, str, str, Mapping[str, Any]]] = []
        self.deleted: list[ResourceRef] = []

    async def ping(self) -> None:
        if self.ping_error is not None:
            raise self.ping_error

    async def namespace_exists(self, namespace: str) -> bool:
        return namespace in self.namespaces

    async def workload_exists(self, namespace: str, workload: str) -> bool:
        return (namespace, workload) in self.workloads

    async def readiness(self, namespace: str, workload: str) -> Readiness:
        index = min(self.readiness_calls, len(self.readiness_sequence) - 1)
        self.readiness_calls += 1
        return self.readiness_sequence[index]

    async def terminate_instances(self, namespace: str, workload: str) -> TerminationResult:
        self.terminate_calls += 1
        return self.termination

    async def apply(self, manifest: Mapping[str, Any]) -> None:
        self.applied.append(manifest)

    async def patch(
        self, kind: str, name: str, namespace: str, body: Mapping[str, Any]
    ) -> None:
        self.patched.append((kind, name, namespace, body))

    async def delete(self, ref: ResourceRef) -> None:
        if self.delete_error is not None:
            raise self.delete_error
        self.deleted.append(ref)


class FakeLoadEngine:
    """LoadEngine that sleeps for a fixed delay and returns canned metrics.

    Results are consumed one per run; the last entry repeats.  An entry that
    is an exception instance is raised instead of returned.
    """

    def __init__(
        self,
        results: Sequence[Mapping[str, float] | Exception] = (HEALTHY_METRICS,),
        delay: float = 0.0,
    ) -> None:
        self.results = list(results)
        self.delay = delay
        self.calls = 0
        self.cancelled = 0

    async def run(
        self, target: Target, concurrency: int, duration_seconds: float
    ) -> Mapping[str, float]:
        index = min(self.calls, len(self.results) - 1)
        self.calls += 1
        try:
            await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled += 1
            raise
        result = self.results[index]
        if isinstance(result, Exception):
            raise result
        return result


class FakeInjector(FaultInjector):
    """FaultInjector that records every apply and revert."""

    kind = FaultKind.instance_kill

    def __init__(
        self,
        fail_start: bool = False,
        fail_stop: bool = False,
        resources: Sequence[ResourceRef] = (),
    ) -> None:
        self.fail_start = fail_start
        self.fail_stop = fail_stop
        self.resources = tuple(resources)
        self.apply_calls = 0
        self.revert_calls = 0

    async def _apply(self, target: Target, duration_seconds: float) -> FaultHandle:
        self.apply_calls += 1
        if self.fail_start:
            raise FaultInjectionError("injection refused")
        return FaultHandle(self.kind, target, affected=("pod-a",), resources=self.resources)

    async def _revert(self, handle: FaultHandle) -> None:
        self.revert_calls += 1
        if self.fail_stop:
            raise FaultInjectionError("revert refused", handle=handle)


class FakeRunner:
    """CommandRunner that replays queued results and records argv."""

    def __init__(self, results: Sequence[CommandResult] = ()) -> None:
        self.results = list(results)
        self.calls: list[list[str]] = []
        self.inputs: list[str | None] = []

    async def execute(
        self,
        argv: Sequence[str],
        *,
        input: str | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        self.calls.append(list(argv))
        self.inputs.append(input)
        if self.results:
            return self.results.pop(0)
        return CommandResult(exit_code=0)


# ---------------------------------------------------------------------------
# Model fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def target() -> Target:
    """The checkout workload in the shop namespace."""
    return Target(namespace="shop", workload="checkout")


@pytest.fixture()
def spec(target: Target) -> ExperimentSpec:
    """An instance-kill experiment with very short windows."""
    return ExperimentSpec(
        experiment_id="exp-test",
        name="Checkout pod kill",
        target=target,
        fault=InstanceKill(),
        fault_duration_seconds=0.05,
        load_concurrency=2,
        load_duration_seconds=0.05,
    )


@pytest.fixture()
def settings() -> OrchestratorSettings:
    """Settings scaled down so a full run finishes in well under a second."""
    return OrchestratorSettings(
        recovery_timeout_seconds=0.5,
        poll_interval_seconds=0.01,
        stable_polls=2,
        preflight_timeout_seconds=1.0,
        report_timeout_seconds=1.0,
        phase_slack_seconds=1.0,
        deadline_slack_seconds=1.0,
        max_recovery_seconds=5.0,
    )


@pytest.fixture()
def healthy_snapshot() -> MetricsSnapshot:
    return MetricsSnapshot(**HEALTHY_METRICS)


# ---------------------------------------------------------------------------
# Collaborator fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def cluster() -> FakeCluster:
    """A cluster where shop/checkout exists and is fully ready."""
    return FakeCluster()


@pytest.fixture()
def engine() -> FakeLoadEngine:
    """Healthy baseline followed by a mildly degraded fault window."""
    return FakeLoadEngine(results=[HEALTHY_METRICS, DEGRADED_METRICS])


@pytest.fixture()
def injector() -> FakeInjector:
    return FakeInjector()


def build_orchestrator(
    cluster: FakeCluster,
    engine: FakeLoadEngine,
    injector: FaultInjector,
    settings: OrchestratorSettings,
    cleanup: CleanupCoordinator | None = None,
    report_history: int = 100,
) -> ExperimentOrchestrator:
    """Wire the fakes into an orchestrator that always uses *injector*."""
    return ExperimentOrchestrator(
        preflight=PreflightValidator(cluster),
        fault_injectors=lambda fault: injector,
        load_driver=LoadDriver(engine),
        recovery_monitor=RecoveryMonitor(
            cluster,
            poll_interval_seconds=settings.poll_interval_seconds,
            stable_polls=settings.stable_polls,
        ),
        cleanup=cleanup or CleanupCoordinator(cluster),
        settings=settings,
        report_history=report_history,
    )


@pytest.fixture()
def orchestrator(
    cluster: FakeCluster,
    engine: FakeLoadEngine,
    injector: FakeInjector,
    settings: OrchestratorSettings,
) -> ExperimentOrchestrator:
    """An orchestrator over the default fakes."""
    return build_orchestrator(cluster, engine, injector, settings)
