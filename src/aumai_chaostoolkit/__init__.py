"""aumai-chaostoolkit: Orchestrated chaos experiments against cluster workloads."""

from aumai_chaostoolkit.cleanup import CleanupCoordinator, ExperimentState
from aumai_chaostoolkit.config import OrchestratorSettings, load_settings, load_spec
from aumai_chaostoolkit.errors import (
    ChaosToolkitError,
    ClusterCommandError,
    ConfigurationError,
    ExperimentAbortedError,
    FaultInjectionError,
    LoadCancelledError,
    LoadRunError,
    PreflightError,
    RecoveryTimeoutError,
)
from aumai_chaostoolkit.faults import FaultHandle, FaultInjector, build_fault_injector
from aumai_chaostoolkit.load import LoadDriver
from aumai_chaostoolkit.models import (
    CPUHog,
    CleanupWarning,
    ExperimentReport,
    ExperimentSpec,
    ExperimentStatus,
    FaultKind,
    InstanceKill,
    MemoryHog,
    MetricsSnapshot,
    NetworkLatency,
    Phase,
    PhaseOutcome,
    PhaseResult,
    Target,
    Verdict,
)
from aumai_chaostoolkit.orchestrator import (
    ExperimentAlreadyRunningError,
    ExperimentNotFoundError,
    ExperimentOrchestrator,
)
from aumai_chaostoolkit.preflight import PreflightValidator
from aumai_chaostoolkit.recovery import RecoveryMonitor
from aumai_chaostoolkit.report import ReportBuilder

__version__ = "0.1.0"

__all__ = [
    "CPUHog",
    "ChaosToolkitError",
    "CleanupCoordinator",
    "CleanupWarning",
    "ClusterCommandError",
    "ConfigurationError",
    "ExperimentAbortedError",
    "ExperimentAlreadyRunningError",
    "ExperimentNotFoundError",
    "ExperimentOrchestrator",
    "ExperimentReport",
    "ExperimentSpec",
    "ExperimentState",
    "ExperimentStatus",
    "FaultHandle",
    "FaultInjectionError",
    "FaultInjector",
    "FaultKind",
    "InstanceKill",
    "LoadCancelledError",
    "LoadDriver",
    "LoadRunError",
    "MemoryHog",
    "MetricsSnapshot",
    "NetworkLatency",
    "OrchestratorSettings",
    "Phase",
    "PhaseOutcome",
    "PhaseResult",
    "PreflightError",
    "PreflightValidator",
    "RecoveryMonitor",
    "RecoveryTimeoutError",
    "ReportBuilder",
    "Target",
    "Verdict",
    "build_fault_injector",
    "load_settings",
    "load_spec",
]
