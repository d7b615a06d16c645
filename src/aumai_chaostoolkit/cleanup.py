"""Best-effort reversal of everything an experiment left behind."""

from __future__ import annotations

import structlog

from aumai_chaostoolkit.collaborators import ClusterClient, ResourceRef
from aumai_chaostoolkit.faults import FaultHandle, FaultInjector
from aumai_chaostoolkit.models import CleanupWarning, ExperimentSpec

logger = structlog.get_logger(__name__)


class ExperimentState:
    """Mutable per-run state owned by the orchestrator.

    Holds the single outstanding :class:`FaultHandle` (with the injector that
    can stop it) and the auxiliary cluster resources created for the run.
    """

    def __init__(self, spec: ExperimentSpec) -> None:
        self.spec = spec
        self.injector: FaultInjector | None = None
        self.handle: FaultHandle | None = None
        self.resources: list[ResourceRef] = []
        self.cleaned_up = False

    def adopt(self, injector: FaultInjector, handle: FaultHandle) -> None:
        """Take ownership of *handle* and the resources it created."""
        if self.handle is not None and not self.handle.stopped:
            raise RuntimeError(f"a fault is already active: {self.handle!r}")
        self.injector = injector
        self.handle = handle
        for ref in handle.resources:
            if ref not in self.resources:
                self.resources.append(ref)

    @property
    def active_handle(self) -> FaultHandle | None:
        if self.handle is not None and not self.handle.stopped:
            return self.handle
        return None


class CleanupCoordinator:
    """Stop any outstanding fault and release auxiliary resources.

    An active fault is always stopped, even when the experiment asked for no
    cleanup; ``spec.cleanup`` only governs deletion of auxiliary resources.
    Failures are returned as :class:`CleanupWarning` objects and never raised.
    """

    def __init__(self, cluster: ClusterClient | None = None) -> None:
        self._cluster = cluster

    async def cleanup(self, state: ExperimentState) -> list[CleanupWarning]:
        """Run cleanup for *state*.  A second call for the same state is a no-op."""
        if state.cleaned_up:
            logger.debug("cleanup.already_done", experiment_id=state.spec.experiment_id)
            return []
        state.cleaned_up = True
        warnings: list[CleanupWarning] = []

        handle = state.active_handle
        if handle is not None and state.injector is not None:
            logger.info("cleanup.stopping_fault", handle_id=handle.handle_id)
            try:
                await state.injector.stop(handle)
            except Exception as exc:  # noqa: BLE001
                logger.warning("cleanup.stop_failed", handle_id=handle.handle_id, error=str(exc))
                warnings.append(CleanupWarning(step="stop_fault", message=str(exc)))

        if not state.spec.cleanup:
            if state.resources:
                logger.info(
                    "cleanup.resources_kept",
                    resources=[str(ref) for ref in state.resources],
                )
            return warnings

        while state.resources:
            ref = state.resources.pop()
            if self._cluster is None:
                warnings.append(
                    CleanupWarning(step=f"delete {ref}", message="no cluster client available")
                )
                continue
            try:
                await self._cluster.delete(ref)
            except Exception as exc:  # noqa: BLE001
                logger.warning("cleanup.delete_failed", resource=str(ref), error=str(exc))
                warnings.append(CleanupWarning(step=f"delete {ref}", message=str(exc)))
            else:
                logger.info("cleanup.deleted", resource=str(ref))

        return warnings


__all__ = ["CleanupCoordinator", "ExperimentState"]
