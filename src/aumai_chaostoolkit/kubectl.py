"""kubectl-backed cluster client and Litmus fault backend."""

from __future__ import annotations

import json
import math
import uuid
from collections.abc import Mapping
from typing import Any

import structlog

from aumai_chaostoolkit.collaborators import (
    BackendInjection,
    ClusterClient,
    CommandResult,
    CommandRunner,
    Readiness,
    ResourceRef,
    TerminationResult,
)
from aumai_chaostoolkit.errors import ClusterCommandError, ConfigurationError
from aumai_chaostoolkit.models import CPUHog, FaultSpec, MemoryHog, NetworkLatency, Target

logger = structlog.get_logger(__name__)

MANAGED_BY_LABEL = {"app.kubernetes.io/managed-by": "aumai-chaostoolkit"}


class KubectlClusterClient:
    """:class:`~aumai_chaostoolkit.collaborators.ClusterClient` over the kubectl CLI.

    Uses whatever kubeconfig the command runner's environment provides.
    Workloads are Deployments.
    """

    def __init__(
        self,
        runner: CommandRunner,
        kubectl: str = "kubectl",
        context: str | None = None,
        request_timeout: float = 60.0,
    ) -> None:
        self._runner = runner
        self._kubectl = kubectl
        self._context = context
        self._timeout = request_timeout

    async def _run(
        self, *args: str, input: str | None = None, check: bool = True
    ) -> CommandResult:
        argv = [self._kubectl]
        if self._context:
            argv += ["--context", self._context]
        argv += list(args)
        result = await self._runner.execute(argv, input=input, timeout=self._timeout)
        if check and not result.ok:
            raise ClusterCommandError(argv, result.exit_code, result.stderr)
        return result

    async def _exists(self, *args: str) -> bool:
        result = await self._run(*args, "-o", "name", check=False)
        if result.ok:
            return True
        if "NotFound" in result.stderr or "not found" in result.stderr:
            return False
        raise ClusterCommandError([self._kubectl, *args], result.exit_code, result.stderr)

    async def _json(self, *args: str) -> dict[str, Any]:
        result = await self._run(*args, "-o", "json")
        try:
            return json.loads(result.stdout)
        except json.JSONDecodeError as exc:
            raise ClusterCommandError(
                [self._kubectl, *args], result.exit_code, f"unparseable output: {exc}"
            ) from exc

    async def ping(self) -> None:
        await self._run("cluster-info")

    async def namespace_exists(self, namespace: str) -> bool:
        return await self._exists("get", "namespace", namespace)

    async def workload_exists(self, namespace: str, workload: str) -> bool:
        return await self._exists("get", "deployment", workload, "-n", namespace)

    async def readiness(self, namespace: str, workload: str) -> Readiness:
        deployment = await self._json("get", "deployment", workload, "-n", namespace)
        desired = deployment.get("spec", {}).get("replicas", 1)
        ready = deployment.get("status", {}).get("readyReplicas", 0)
        return Readiness(ready=ready or 0, desired=desired or 0)

    async def terminate_instances(self, namespace: str, workload: str) -> TerminationResult:
        deployment = await self._json("get", "deployment", workload, "-n", namespace)
        match_labels = deployment.get("spec", {}).get("selector", {}).get("matchLabels", {})
        if not match_labels:
            raise ClusterCommandError(
                [self._kubectl, "get", "deployment", workload], 0, "deployment has no matchLabels"
            )
        selector = selector_from_labels(match_labels)
        listing = await self._run(
            "get",
            "pods",
            "-n",
            namespace,
            "-l",
            selector,
            "-o",
            "jsonpath={.items[*].metadata.name}",
        )
        pods = listing.stdout.split()

        terminated: list[str] = []
        failed: list[str] = []
        for pod in pods:
            result = await self._run(
                "delete",
                "pod",
                pod,
                "-n",
                namespace,
                "--grace-period=0",
                "--wait=false",
                check=False,
            )
            if result.ok:
                terminated.append(pod)
            else:
                logger.warning("kubectl.pod_delete_failed", pod=pod, stderr=result.stderr.strip())
                failed.append(pod)
        return TerminationResult(terminated=tuple(terminated), failed=tuple(failed))

    async def apply(self, manifest: Mapping[str, Any]) -> None:
        await self._run("apply", "-f", "-", input=json.dumps(manifest))

    async def patch(
        self, kind: str, name: str, namespace: str, body: Mapping[str, Any]
    ) -> None:
        await self._run(
            "patch", kind, name, "-n", namespace, "--type", "merge", "-p", json.dumps(body)
        )

    async def delete(self, ref: ResourceRef) -> None:
        await self._run("delete", ref.kind, ref.name, "-n", ref.namespace, "--ignore-not-found")


class LitmusFaultBackend:
    """Run network and resource faults as Litmus ``ChaosEngine`` objects.

    Starting a fault applies a ChaosEngine; stopping it sets the engine's
    ``engineState`` to ``stop``.  The engine object itself is left behind as
    an auxiliary resource for the cleanup coordinator to delete.
    """

    _EXPERIMENTS: Mapping[type, str] = {
        NetworkLatency: "pod-network-latency",
        CPUHog: "pod-cpu-hog",
        MemoryHog: "pod-memory-hog",
    }

    def __init__(
        self,
        cluster: ClusterClient,
        service_account: str = "litmus-admin",
        app_label: str = "app={workload}",
    ) -> None:
        self._cluster = cluster
        self._service_account = service_account
        self._app_label = app_label

    def build_manifest(
        self, target: Target, fault: FaultSpec, duration_seconds: float, name: str
    ) -> dict[str, Any]:
        """Return the ChaosEngine manifest for *fault* against *target*."""
        experiment = self._EXPERIMENTS.get(type(fault))
        if experiment is None:
            raise ConfigurationError(f"{fault.kind} is not a Litmus fault")

        env: list[dict[str, str]] = [
            {"name": "TOTAL_CHAOS_DURATION", "value": str(math.ceil(duration_seconds))},
        ]
        if isinstance(fault, NetworkLatency):
            env += [
                {"name": "NETWORK_LATENCY", "value": str(fault.latency_ms)},
                {"name": "JITTER", "value": str(fault.jitter_ms)},
            ]
        elif isinstance(fault, CPUHog):
            env += [
                {"name": "CPU_CORES", "value": str(fault.cores)},
                {"name": "CPU_LOAD", "value": str(fault.intensity)},
            ]
        elif isinstance(fault, MemoryHog):
            env += [{"name": "MEMORY_CONSUMPTION", "value": str(fault.amount_mb)}]

        return {
            "apiVersion": "litmuschaos.io/v1alpha1",
            "kind": "ChaosEngine",
            "metadata": {
                "name": name,
                "namespace": target.namespace,
                "labels": dict(MANAGED_BY_LABEL),
            },
            "spec": {
                "engineState": "active",
                "annotationCheck": "false",
                "appinfo": {
                    "appns": target.namespace,
                    "applabel": self._app_label.format(workload=target.workload),
                    "appkind": "deployment",
                },
                "chaosServiceAccount": self._service_account,
                "experiments": [
                    {"name": experiment, "spec": {"components": {"env": env}}},
                ],
            },
        }

    async def inject(
        self, target: Target, fault: FaultSpec, duration_seconds: float
    ) -> BackendInjection:
        name = f"{target.workload}-{fault.kind}-{uuid.uuid4().hex[:6]}"[-63:].lstrip("-")
        manifest = self.build_manifest(target, fault, duration_seconds, name)
        await self._cluster.apply(manifest)
        logger.info("litmus.engine_applied", engine=name, namespace=target.namespace)
        return BackendInjection(
            reference=name,
            resources=(ResourceRef(kind="chaosengine", name=name, namespace=target.namespace),),
        )

    async def revert(self, injection: BackendInjection) -> None:
        for ref in injection.resources:
            await self._cluster.patch(
                ref.kind, ref.name, ref.namespace, {"spec": {"engineState": "stop"}}
            )
            logger.info("litmus.engine_stopped", engine=ref.name, namespace=ref.namespace)


def selector_from_labels(labels: Mapping[str, str]) -> str:
    """Render a label mapping as a kubectl ``-l`` selector."""
    return ",".join(f"{key}={value}" for key, value in sorted(labels.items()))


__all__ = ["KubectlClusterClient", "LitmusFaultBackend", "MANAGED_BY_LABEL"]
