"""Exception taxonomy for aumai-chaostoolkit."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from aumai_chaostoolkit.faults import FaultHandle


class ChaosToolkitError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(ChaosToolkitError, ValueError):
    """Invalid experiment definition or settings; raised before any side effect."""


class ClusterCommandError(ChaosToolkitError):
    """A cluster control-plane command exited non-zero."""

    def __init__(self, command: list[str], exit_code: int, stderr: str = "") -> None:
        detail = stderr.strip() or "no output"
        super().__init__(f"`{' '.join(command)}` exited {exit_code}: {detail}")
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr


class PreflightError(ChaosToolkitError):
    """The target is missing or not ready; no fault may be injected."""


class FaultInjectionError(ChaosToolkitError):
    """The fault mechanism failed to start or stop.

    When the fault partially applied before failing, *handle* carries enough
    state for a later stop or cleanup to attempt full reversal.
    """

    def __init__(self, message: str, handle: FaultHandle | None = None) -> None:
        super().__init__(message)
        self.handle = handle


class LoadRunError(ChaosToolkitError):
    """The load engine failed or produced unusable metrics."""


class LoadCancelledError(LoadRunError):
    """The load run was cancelled before completing its window."""


class RecoveryTimeoutError(ChaosToolkitError, TimeoutError):
    """The target did not return to steady state within the allotted time.

    This is an expected experiment outcome (a Fail verdict), not a crash.
    """

    def __init__(self, timeout_seconds: float) -> None:
        super().__init__(f"recovery timeout after {timeout_seconds:.1f}s")
        self.timeout_seconds = timeout_seconds


class ExperimentAbortedError(ChaosToolkitError):
    """The experiment was aborted through its cancellation signal."""


__all__ = [
    "ChaosToolkitError",
    "ClusterCommandError",
    "ConfigurationError",
    "ExperimentAbortedError",
    "FaultInjectionError",
    "LoadCancelledError",
    "LoadRunError",
    "PreflightError",
    "RecoveryTimeoutError",
]
