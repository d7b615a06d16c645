"""Preflight validation of the experiment target."""

from __future__ import annotations

import structlog

from aumai_chaostoolkit.collaborators import ClusterClient, Readiness
from aumai_chaostoolkit.errors import ClusterCommandError, PreflightError
from aumai_chaostoolkit.models import Target

logger = structlog.get_logger(__name__)


class PreflightValidator:
    """Confirm the target exists and is ready before any fault is injected."""

    def __init__(self, cluster: ClusterClient) -> None:
        self._cluster = cluster

    async def validate(self, target: Target) -> Readiness:
        """Check connectivity, namespace, workload and readiness, in that order.

        Returns:
            The readiness observed for the workload.

        Raises:
            PreflightError: on the first failed check.  Cluster command
                failures are reported as preflight failures too.
        """
        try:
            await self._cluster.ping()
        except ClusterCommandError as exc:
            raise PreflightError(f"cannot connect to cluster: {exc}") from exc

        try:
            if not await self._cluster.namespace_exists(target.namespace):
                raise PreflightError(f"namespace {target.namespace} not found")
            if not await self._cluster.workload_exists(target.namespace, target.workload):
                raise PreflightError(
                    f"workload {target.workload} not found in namespace {target.namespace}"
                )
            readiness = await self._cluster.readiness(target.namespace, target.workload)
        except ClusterCommandError as exc:
            raise PreflightError(f"cluster query failed: {exc}") from exc

        if not readiness.at_parity:
            raise PreflightError(
                f"workload {target} not ready: "
                f"{readiness.ready}/{readiness.desired} instances ready"
            )

        logger.info(
            "preflight.passed",
            target=str(target),
            ready=readiness.ready,
            desired=readiness.desired,
        )
        return readiness


__all__ = ["PreflightValidator"]
