"""Fault injection strategies for aumai-chaostoolkit."""

from __future__ import annotations

import asyncio
import time
import uuid
from abc import ABC, abstractmethod
from collections.abc import Iterable

import structlog

from aumai_chaostoolkit.collaborators import (
    BackendInjection,
    ClusterClient,
    FaultBackend,
    ResourceRef,
)
from aumai_chaostoolkit.errors import (
    ChaosToolkitError,
    ConfigurationError,
    FaultInjectionError,
)
from aumai_chaostoolkit.models import (
    CPUHog,
    FaultKind,
    FaultSpec,
    InstanceKill,
    MemoryHog,
    NetworkLatency,
    Target,
)

logger = structlog.get_logger(__name__)

# ---------------------------------------------------------------------------
# FaultHandle
# ---------------------------------------------------------------------------


class FaultHandle:
    """Token for a running fault, returned by :meth:`FaultInjector.start`.

    The orchestrator owns the handle for the lifetime of the experiment and
    passes it back to :meth:`FaultInjector.stop` or to the cleanup
    coordinator.  Once stopped, further stops are no-ops.
    """

    def __init__(
        self,
        kind: FaultKind,
        target: Target,
        injection: BackendInjection | None = None,
        affected: Iterable[str] = (),
        resources: Iterable[ResourceRef] = (),
        partial: bool = False,
    ) -> None:
        self.handle_id = uuid.uuid4().hex[:12]
        self.kind = kind
        self.target = target
        self.injection = injection
        self.affected = tuple(affected)
        self.resources = tuple(resources)
        self.partial = partial
        self.started_at = time.monotonic()
        self.stopped_at: float | None = None
        self._lock = asyncio.Lock()

    @property
    def stopped(self) -> bool:
        return self.stopped_at is not None

    def __repr__(self) -> str:
        state = "stopped" if self.stopped else "active"
        return f"FaultHandle({self.kind.value}, {self.target}, {state})"


# ---------------------------------------------------------------------------
# FaultInjector
# ---------------------------------------------------------------------------


class FaultInjector(ABC):
    """Start and stop one kind of fault against a target.

    Subclasses implement :meth:`_apply` and :meth:`_revert`; the public
    methods add logging, error mapping and stop idempotence.
    """

    kind: FaultKind

    async def start(self, target: Target, duration_seconds: float) -> FaultHandle:
        """Start the fault for at most *duration_seconds*.

        Raises:
            FaultInjectionError: if the fault could not be applied at all.  A
                fault that applied only partially still returns a handle with
                ``partial=True``.
        """
        logger.info(
            "fault.starting",
            kind=self.kind.value,
            target=str(target),
            duration_seconds=duration_seconds,
        )
        try:
            handle = await self._apply(target, duration_seconds)
        except FaultInjectionError:
            raise
        except ChaosToolkitError as exc:
            raise FaultInjectionError(f"failed to start {self.kind.value}: {exc}") from exc

        logger.info(
            "fault.started",
            kind=self.kind.value,
            handle_id=handle.handle_id,
            affected=len(handle.affected),
            partial=handle.partial,
        )
        return handle

    async def stop(self, handle: FaultHandle) -> None:
        """Revert the fault behind *handle*.  Stopping twice is a no-op."""
        async with handle._lock:
            if handle.stopped:
                logger.debug("fault.stop_noop", handle_id=handle.handle_id)
                return
            try:
                await self._revert(handle)
            except FaultInjectionError:
                raise
            except ChaosToolkitError as exc:
                raise FaultInjectionError(
                    f"failed to stop {self.kind.value}: {exc}", handle=handle
                ) from exc
            handle.stopped_at = time.monotonic()
        logger.info("fault.stopped", kind=self.kind.value, handle_id=handle.handle_id)

    @abstractmethod
    async def _apply(self, target: Target, duration_seconds: float) -> FaultHandle:
        """Apply the fault and return a handle describing it."""

    @abstractmethod
    async def _revert(self, handle: FaultHandle) -> None:
        """Undo whatever :meth:`_apply` did."""


class InstanceKillInjector(FaultInjector):
    """Terminate every instance of the target workload."""

    kind = FaultKind.instance_kill

    def __init__(self, cluster: ClusterClient) -> None:
        self._cluster = cluster

    async def _apply(self, target: Target, duration_seconds: float) -> FaultHandle:
        result = await self._cluster.terminate_instances(target.namespace, target.workload)
        if not result.terminated:
            if result.failed:
                raise FaultInjectionError(
                    f"could not terminate any of {len(result.failed)} instances of {target}"
                )
            raise FaultInjectionError(f"no running instances matched {target}")
        if result.failed:
            logger.warning(
                "fault.partial_termination",
                target=str(target),
                terminated=list(result.terminated),
                failed=list(result.failed),
            )
        return FaultHandle(
            self.kind,
            target,
            affected=result.terminated,
            partial=bool(result.failed),
        )

    async def _revert(self, handle: FaultHandle) -> None:
        # Terminated instances are replaced by the workload controller.
        logger.debug("fault.kill_revert_noop", handle_id=handle.handle_id)


class BackendFaultInjector(FaultInjector):
    """Delegate a resource or network fault to a :class:`FaultBackend`."""

    def __init__(self, fault: FaultSpec, backend: FaultBackend) -> None:
        self.fault = fault
        self._backend = backend

    async def _apply(self, target: Target, duration_seconds: float) -> FaultHandle:
        injection = await self._backend.inject(target, self.fault, duration_seconds)
        return FaultHandle(
            self.kind,
            target,
            injection=injection,
            affected=injection.affected,
            resources=injection.resources,
        )

    async def _revert(self, handle: FaultHandle) -> None:
        if handle.injection is not None:
            await self._backend.revert(handle.injection)


class NetworkLatencyInjector(BackendFaultInjector):
    kind = FaultKind.network_latency


class CPUHogInjector(BackendFaultInjector):
    kind = FaultKind.cpu_hog


class MemoryHogInjector(BackendFaultInjector):
    kind = FaultKind.memory_hog


def build_fault_injector(
    fault: FaultSpec,
    cluster: ClusterClient,
    backend: FaultBackend | None = None,
) -> FaultInjector:
    """Resolve *fault* to its injector.

    Raises:
        ConfigurationError: for an unknown fault variant, or a backend-driven
            fault when no backend is available.  Nothing has been touched on
            the cluster when this is raised.
    """
    if isinstance(fault, InstanceKill):
        return InstanceKillInjector(cluster)

    if isinstance(fault, NetworkLatency):
        injector_cls: type[BackendFaultInjector] = NetworkLatencyInjector
    elif isinstance(fault, CPUHog):
        injector_cls = CPUHogInjector
    elif isinstance(fault, MemoryHog):
        injector_cls = MemoryHogInjector
    else:
        raise ConfigurationError(f"unknown fault kind: {getattr(fault, 'kind', fault)!r}")

    if backend is None:
        raise ConfigurationError(f"{fault.kind} faults require a fault backend")
    return injector_cls(fault, backend)


__all__ = [
    "BackendFaultInjector",
    "CPUHogInjector",
    "FaultHandle",
    "FaultInjector",
    "InstanceKillInjector",
    "MemoryHogInjector",
    "NetworkLatencyInjector",
    "build_fault_injector",
]
