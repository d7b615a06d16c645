"""Interfaces to the external systems the orchestrator drives.

The orchestrator never talks to a cluster, a load engine or a fault backend
directly; it is handed objects satisfying the protocols below.  Reference
adapters live in :mod:`aumai_chaostoolkit.kubectl` and
:mod:`aumai_chaostoolkit.k6`.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Mapping, Sequence
from typing import Any, Protocol

import structlog
from pydantic import BaseModel, ConfigDict, Field

from aumai_chaostoolkit.models import FaultSpec, Target

logger = structlog.get_logger(__name__)

# ---------------------------------------------------------------------------
# Value types exchanged with collaborators
# ---------------------------------------------------------------------------


class CommandResult(BaseModel):
    """Exit code and captured output of a single command."""

    model_config = ConfigDict(frozen=True)

    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class Readiness(BaseModel):
    """Ready vs desired instance counts for a workload."""

    model_config = ConfigDict(frozen=True)

    ready: int = Field(ge=0)
    desired: int = Field(ge=0)

    @property
    def at_parity(self) -> bool:
        return self.desired > 0 and self.ready >= self.desired


class TerminationResult(BaseModel):
    """Instances a terminate call did and did not manage to remove."""

    model_config = ConfigDict(frozen=True)

    terminated: tuple[str, ...] = ()
    failed: tuple[str, ...] = ()


class ResourceRef(BaseModel):
    """A cluster object created on the experiment's behalf."""

    model_config = ConfigDict(frozen=True)

    kind: str
    name: str
    namespace: str

    def __str__(self) -> str:
        return f"{self.kind}/{self.name} -n {self.namespace}"


class BackendInjection(BaseModel):
    """What a fault backend reports after starting a fault."""

    model_config = ConfigDict(frozen=True)

    reference: str
    affected: tuple[str, ...] = ()
    resources: tuple[ResourceRef, ...] = ()


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


class CommandRunner(Protocol):
    """Execute a command and capture its exit code and output."""

    async def execute(
        self,
        argv: Sequence[str],
        *,
        input: str | None = None,
        timeout: float | None = None,
    ) -> CommandResult: ...


class ClusterClient(Protocol):
    """Control-plane operations the orchestrator consumes.

    Implementations raise :class:`~aumai_chaostoolkit.errors.ClusterCommandError`
    on failure and never retry on their own behalf.
    """

    async def ping(self) -> None: ...

    async def namespace_exists(self, namespace: str) -> bool: ...

    async def workload_exists(self, namespace: str, workload: str) -> bool: ...

    async def readiness(self, namespace: str, workload: str) -> Readiness: ...

    async def terminate_instances(
        self, namespace: str, workload: str
    ) -> TerminationResult: ...

    async def apply(self, manifest: Mapping[str, Any]) -> None: ...

    async def patch(
        self, kind: str, name: str, namespace: str, body: Mapping[str, Any]
    ) -> None: ...

    async def delete(self, ref: ResourceRef) -> None: ...


class LoadEngine(Protocol):
    """Run synthetic load and return the four summary fields.

    The mapping must hold ``error_rate``, ``p99_latency_ms``, ``throughput``
    and ``success_rate``.
    """

    async def run(
        self, target: Target, concurrency: int, duration_seconds: float
    ) -> Mapping[str, float]: ...


class FaultBackend(Protocol):
    """Mechanism that applies and reverts non-kill faults."""

    async def inject(
        self, target: Target, fault: FaultSpec, duration_seconds: float
    ) -> BackendInjection: ...

    async def revert(self, injection: BackendInjection) -> None: ...


# ---------------------------------------------------------------------------
# Local command runner
# ---------------------------------------------------------------------------


class SubprocessRunner:
    """Run commands as local subprocesses.

    A command that outlives *timeout* (or whose awaiting task is cancelled)
    is killed before the error propagates, so no child process survives its
    caller.
    """

    def __init__(
        self,
        env: Mapping[str, str] | None = None,
        default_timeout: float | None = None,
    ) -> None:
        self._env = {**os.environ, **env} if env else None
        self._default_timeout = default_timeout

    async def execute(
        self,
        argv: Sequence[str],
        *,
        input: str | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        logger.debug("command.exec", argv=list(argv))
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE if input is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self._env,
            )
        except FileNotFoundError as exc:
            return CommandResult(exit_code=127, stderr=str(exc))

        try:
            async with asyncio.timeout(timeout or self._default_timeout):
                stdout, stderr = await process.communicate(
                    input.encode("utf-8") if input is not None else None
                )
        except (TimeoutError, asyncio.CancelledError):
            if process.returncode is None:
                process.kill()
                await process.wait()
            raise

        return CommandResult(
            exit_code=process.returncode if process.returncode is not None else -1,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
        )


__all__ = [
    "BackendInjection",
    "ClusterClient",
    "CommandResult",
    "CommandRunner",
    "FaultBackend",
    "LoadEngine",
    "Readiness",
    "ResourceRef",
    "SubprocessRunner",
    "TerminationResult",
]
