"""aumai-chaostoolkit quickstart — an experiment run against a simulated cluster.

Run this file directly to verify your installation:

    python examples/quickstart.py

No cluster, kubectl or k6 is needed: a small in-memory cluster and load
engine stand in for the real adapters.  Each demo shows a different way an
experiment can end.
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Mapping
from typing import Any

from aumai_chaostoolkit import (
    ExperimentOrchestrator,
    ExperimentReport,
    ExperimentSpec,
    InstanceKill,
    OrchestratorSettings,
    Phase,
    Target,
)
from aumai_chaostoolkit.collaborators import (
    Readiness,
    ResourceRef,
    TerminationResult,
)

# ---------------------------------------------------------------------------
# Simulated collaborators
# ---------------------------------------------------------------------------


class SimulatedCluster:
    """A deployment whose pods come back a few polls after being killed."""

    def __init__(self, replicas: int = 3, restart_polls: int = 3, namespace: str = "shop") -> None:
        self.replicas = replicas
        self.restart_polls = restart_polls
        self.namespace = namespace
        self._pending_polls = 0

    async def ping(self) -> None:
        return None

    async def namespace_exists(self, namespace: str) -> bool:
        return namespace == self.namespace

    async def workload_exists(self, namespace: str, workload: str) -> bool:
        return namespace == self.namespace

    async def readiness(self, namespace: str, workload: str) -> Readiness:
        if self._pending_polls > 0:
            self._pending_polls -= 1
            return Readiness(ready=self.replicas - 1, desired=self.replicas)
        return Readiness(ready=self.replicas, desired=self.replicas)

    async def terminate_instances(self, namespace: str, workload: str) -> TerminationResult:
        self._pending_polls = self.restart_polls
        pods = tuple(f"{workload}-{i}" for i in range(self.replicas))
        return TerminationResult(terminated=pods)

    async def apply(self, manifest: Mapping[str, Any]) -> None:
        return None

    async def patch(
        self, kind: str, name: str, namespace: str, body: Mapping[str, Any]
    ) -> None:
        return None

    async def delete(self, ref: ResourceRef) -> None:
        return None


class SimulatedLoadEngine:
    """Returns a healthy baseline, then an error rate of *fault_error_rate*."""

    def __init__(self, fault_error_rate: float) -> None:
        self.fault_error_rate = fault_error_rate
        self._runs = 0

    async def run(
        self, target: Target, concurrency: int, duration_seconds: float
    ) -> dict[str, float]:
        await asyncio.sleep(duration_seconds)
        self._runs += 1
        error_rate = 0.4 if self._runs == 1 else self.fault_error_rate
        return {
            "error_rate": error_rate,
            "p99_latency_ms": 110.0 + random.uniform(0, 20) + error_rate * 40,
            "throughput": concurrency * 9.5,
            "success_rate": 100.0 - error_rate,
        }


SETTINGS = OrchestratorSettings(
    poll_interval_seconds=0.05,
    recovery_timeout_seconds=2.0,
    max_recovery_seconds=1.0,
    preflight_timeout_seconds=2.0,
    report_timeout_seconds=2.0,
    phase_slack_seconds=2.0,
    deadline_slack_seconds=2.0,
)


def _spec(name: str, namespace: str = "shop") -> ExperimentSpec:
    return ExperimentSpec(
        name=name,
        target=Target(namespace=namespace, workload="checkout"),
        fault=InstanceKill(),
        fault_duration_seconds=0.2,
        load_concurrency=4,
        load_duration_seconds=0.3,
    )


def _print_report(report: ExperimentReport) -> None:
    print(f"  status={report.status.value} verdict={report.verdict.label}")
    for result in report.phases:
        reason = f" ({result.reason})" if result.reason else ""
        print(f"    {result.phase.value:<15} {result.outcome.value}{reason}")
    for reason in report.verdict.reasons:
        print(f"  reason: {reason}")


# ---------------------------------------------------------------------------
# Demo 1: A resilient workload passes
# ---------------------------------------------------------------------------


async def demo_passing_experiment() -> None:
    """Pods are killed, the error rate barely moves and recovery is quick."""

    print("\n=== Demo 1: Passing experiment ===")

    orchestrator = ExperimentOrchestrator.from_clients(
        SimulatedCluster(), SimulatedLoadEngine(fault_error_rate=2.1), settings=SETTINGS
    )
    report = await orchestrator.run(_spec("resilient checkout"))
    _print_report(report)
    assert report.verdict.passed
    assert report.recovery_seconds is not None

    print("  Demo 1 passed.")


# ---------------------------------------------------------------------------
# Demo 2: An error-rate regression fails the verdict
# ---------------------------------------------------------------------------


async def demo_regression() -> None:
    """The error rate under fault climbs far past the baseline."""

    print("\n=== Demo 2: Error-rate regression ===")

    orchestrator = ExperimentOrchestrator.from_clients(
        SimulatedCluster(), SimulatedLoadEngine(fault_error_rate=12.0), settings=SETTINGS
    )
    report = await orchestrator.run(_spec("fragile checkout"))
    _print_report(report)
    assert not report.verdict.passed
    assert any(r.startswith("error-rate regression") for r in report.verdict.reasons)

    print("  Demo 2 passed.")


# ---------------------------------------------------------------------------
# Demo 3: Preflight stops the run before any fault
# ---------------------------------------------------------------------------


async def demo_preflight_failure() -> None:
    """Targeting a namespace that does not exist never touches a pod."""

    print("\n=== Demo 3: Preflight failure ===")

    cluster = SimulatedCluster()
    orchestrator = ExperimentOrchestrator.from_clients(
        cluster, SimulatedLoadEngine(fault_error_rate=0.0), settings=SETTINGS
    )
    report = await orchestrator.run(_spec("wrong namespace", namespace="staging"))
    _print_report(report)
    assert report.phase(Phase.fault_and_load) is None
    assert report.phases[-1].phase == Phase.cleanup

    print("  Demo 3 passed.")


# ---------------------------------------------------------------------------
# Demo 4: Aborting a running experiment
# ---------------------------------------------------------------------------


async def demo_abort() -> None:
    """Abort mid-load: the load run is cancelled and the fault is stopped."""

    print("\n=== Demo 4: Abort ===")

    orchestrator = ExperimentOrchestrator.from_clients(
        SimulatedCluster(), SimulatedLoadEngine(fault_error_rate=1.0), settings=SETTINGS
    )
    spec = _spec("aborted checkout").model_copy(update={"run_baseline": False})
    task = asyncio.create_task(orchestrator.run(spec))
    await asyncio.sleep(0.1)
    orchestrator.abort(spec.experiment_id)
    report = await task
    _print_report(report)
    assert report.status.value == "aborted"

    print("  Demo 4 passed.")


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


async def run_all() -> None:
    await demo_passing_experiment()
    await demo_regression()
    await demo_preflight_failure()
    await demo_abort()


def main() -> None:
    """Run all quickstart demos in sequence."""
    print("aumai-chaostoolkit quickstart demos")
    print("=" * 45)

    asyncio.run(run_all())

    print("\n" + "=" * 45)
    print("All demos completed successfully.")


if __name__ == "__main__":
    main()
