"""Experiment orchestration for aumai-chaostoolkit."""

from __future__ import annotations

import asyncio
import functools
from collections import OrderedDict
from collections.abc import Callable
from datetime import UTC, datetime

import structlog

from aumai_chaostoolkit.cleanup import CleanupCoordinator, ExperimentState
from aumai_chaostoolkit.collaborators import ClusterClient, FaultBackend, LoadEngine
from aumai_chaostoolkit.config import OrchestratorSettings
from aumai_chaostoolkit.errors import (
    ChaosToolkitError,
    ExperimentAbortedError,
    FaultInjectionError,
    RecoveryTimeoutError,
)
from aumai_chaostoolkit.faults import FaultInjector, build_fault_injector
from aumai_chaostoolkit.load import LoadDriver
from aumai_chaostoolkit.models import (
    CleanupWarning,
    ExperimentReport,
    ExperimentSpec,
    ExperimentStatus,
    FaultSpec,
    MetricsSnapshot,
    Phase,
    PhaseOutcome,
    RunState,
)
from aumai_chaostoolkit.preflight import PreflightValidator
from aumai_chaostoolkit.recorder import PhaseRecorder, describe_error
from aumai_chaostoolkit.recovery import RecoveryMonitor
from aumai_chaostoolkit.report import ReportBuilder

logger = structlog.get_logger(__name__)

FaultInjectorFactory = Callable[[FaultSpec], FaultInjector]


class ExperimentNotFoundError(KeyError):
    """Raised when an experiment_id does not name a running experiment."""


class ExperimentAlreadyRunningError(ChaosToolkitError):
    """Raised when a run is started for an experiment_id that is still in flight."""


class _Run:
    """Everything one call to :meth:`ExperimentOrchestrator.run` accumulates."""

    def __init__(self, spec: ExperimentSpec) -> None:
        self.spec = spec
        self.state = ExperimentState(spec)
        self.recorder = PhaseRecorder()
        self.cancel = asyncio.Event()
        self.run_state = RunState.init
        self.started_at = datetime.now(tz=UTC)
        self.baseline: MetricsSnapshot | None = None
        self.under_fault: MetricsSnapshot | None = None
        self.post_recovery: MetricsSnapshot | None = None
        self.recovery_seconds: float | None = None
        self.render_error: str | None = None
        self.artifact_path: str | None = None
        self.log = logger.bind(experiment_id=spec.experiment_id, target=str(spec.target))

    def enter(self, state: RunState) -> None:
        self.log.info("orchestrator.transition", previous=self.run_state.value, state=state.value)
        self.run_state = state


class ExperimentOrchestrator:
    """Drive a chaos experiment through its phases and judge the outcome.

    The run is a linear state machine::

        init -> preflight -> baseline -> fault_and_load -> recovery
             -> report -> cleanup -> done

    A failed phase moves the run to ``aborted``; cleanup still runs before
    ``done``.  :meth:`run` always returns an :class:`ExperimentReport` whose
    phase trail shows where the run stopped.

    All collaborators are passed in; use :meth:`from_clients` to wire the
    default components around a cluster client, a load engine and a fault
    backend.
    """

    def __init__(
        self,
        preflight: PreflightValidator,
        fault_injectors: FaultInjectorFactory,
        load_driver: LoadDriver,
        recovery_monitor: RecoveryMonitor,
        report_builder: ReportBuilder | None = None,
        cleanup: CleanupCoordinator | None = None,
        settings: OrchestratorSettings | None = None,
        report_history: int = 100,
    ) -> None:
        if report_history < 1:
            raise ValueError(f"report_history must be at least 1, got {report_history}")
        self.settings = settings or OrchestratorSettings()
        self._preflight = preflight
        self._fault_injectors = fault_injectors
        self._load_driver = load_driver
        self._recovery = recovery_monitor
        self._report_builder = report_builder or ReportBuilder(self.settings)
        self._cleanup = cleanup or CleanupCoordinator()
        self._runs: dict[str, _Run] = {}
        # Most recent finished reports, oldest first.
        self._reports: OrderedDict[str, ExperimentReport] = OrderedDict()
        self._report_history = report_history

    @classmethod
    def from_clients(
        cls,
        cluster: ClusterClient,
        load_engine: LoadEngine,
        fault_backend: FaultBackend | None = None,
        settings: OrchestratorSettings | None = None,
    ) -> ExperimentOrchestrator:
        """Build an orchestrator with the default components."""
        settings = settings or OrchestratorSettings()
        return cls(
            preflight=PreflightValidator(cluster),
            fault_injectors=functools.partial(
                build_fault_injector, cluster=cluster, backend=fault_backend
            ),
            load_driver=LoadDriver(load_engine),
            recovery_monitor=RecoveryMonitor(
                cluster,
                poll_interval_seconds=settings.poll_interval_seconds,
                stable_polls=settings.stable_polls,
            ),
            report_builder=ReportBuilder(settings),
            cleanup=CleanupCoordinator(cluster),
            settings=settings,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run(self, spec: ExperimentSpec) -> ExperimentReport:
        """Execute *spec* end to end.

        Phase failures never escape: they are recorded and reflected in the
        verdict.  Only cancellation of the calling task propagates, after
        cleanup has run.

        Raises:
            ExperimentAlreadyRunningError: if a run with the same
                ``experiment_id`` has not finished yet.  Nothing is touched.
        """
        if spec.experiment_id in self._runs:
            raise ExperimentAlreadyRunningError(
                f"experiment {spec.experiment_id!r} is already running"
            )
        run = _Run(spec)
        self._runs[spec.experiment_id] = run
        status = ExperimentStatus.completed
        deadline = self.settings.run_deadline(spec)
        run.log.info("orchestrator.run_started", deadline_seconds=deadline)

        try:
            timer = asyncio.timeout(deadline)
            try:
                async with timer:
                    await self._pipeline(run)
            except TimeoutError as exc:
                status = ExperimentStatus.aborted
                if timer.expired():
                    run.log.error("orchestrator.deadline_exceeded", deadline_seconds=deadline)
                else:
                    run.log.warning(
                        "orchestrator.aborted", phase=run.run_state.value, error=describe_error(exc)
                    )
            except Exception as exc:  # noqa: BLE001
                status = ExperimentStatus.aborted
                run.log.warning(
                    "orchestrator.aborted", phase=run.run_state.value, error=describe_error(exc)
                )
        finally:
            warnings = await self._run_cleanup(run)
            self._runs.pop(spec.experiment_id, None)

        if status == ExperimentStatus.aborted:
            run.enter(RunState.aborted)
        run.enter(RunState.done)
        report = self._report_builder.build(
            spec,
            run.recorder.results(),
            run.baseline,
            run.under_fault,
            run.recovery_seconds,
            status=status,
            started_at=run.started_at,
            ended_at=datetime.now(tz=UTC),
            post_recovery=run.post_recovery,
            warnings=warnings,
            render_error=run.render_error,
            artifact_path=run.artifact_path,
        )
        self._reports.pop(spec.experiment_id, None)
        self._reports[spec.experiment_id] = report
        while len(self._reports) > self._report_history:
            self._reports.popitem(last=False)
        run.log.info(
            "orchestrator.run_finished",
            status=status.value,
            verdict=report.verdict.label,
            reasons=list(report.verdict.reasons),
        )
        return report

    def abort(self, experiment_id: str) -> None:
        """Signal the running experiment to stop.

        An in-flight load run is cancelled, the fault is stopped and the run
        returns an ``aborted`` report.  Must be called from the event loop
        running the experiment.

        Raises:
            ExperimentNotFoundError: if *experiment_id* is not running.
        """
        run = self._runs.get(experiment_id)
        if run is None:
            raise ExperimentNotFoundError(experiment_id)
        run.log.warning("orchestrator.abort_requested", phase=run.run_state.value)
        run.cancel.set()

    def get_report(self, experiment_id: str) -> ExperimentReport | None:
        """Return the report of a recently finished run, or None.

        Only the last ``report_history`` reports are kept.
        """
        return self._reports.get(experiment_id)

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    async def _pipeline(self, run: _Run) -> None:
        spec = run.spec
        s = self.settings
        recorder = run.recorder

        run.enter(RunState.preflight)
        async with recorder.scope(Phase.preflight, timeout=s.preflight_timeout_seconds):
            self._check_abort(run)
            injector = self._fault_injectors(spec.fault)
            await self._preflight.validate(spec.target)

        run.enter(RunState.baseline)
        if spec.run_baseline:
            async with recorder.scope(
                Phase.baseline, timeout=spec.load_duration_seconds + s.phase_slack_seconds
            ):
                self._check_abort(run)
                run.baseline = await self._load_driver.run_load(
                    spec.target,
                    spec.load_concurrency,
                    spec.load_duration_seconds,
                    cancel=run.cancel,
                )
        else:
            recorder.skip(Phase.baseline, "baseline disabled; absolute thresholds apply")

        run.enter(RunState.fault_and_load)
        window = max(spec.fault_duration_seconds, spec.load_duration_seconds)
        async with recorder.scope(Phase.fault_and_load, timeout=window + s.phase_slack_seconds):
            self._check_abort(run)
            run.under_fault = await self._fault_and_load(run, injector)

        run.enter(RunState.recovery)
        try:
            async with recorder.scope(
                Phase.recovery,
                timeout=s.recovery_timeout_seconds
                + s.post_recovery_load_seconds
                + s.phase_slack_seconds,
            ):
                self._check_abort(run)
                handle = run.state.handle
                run.recovery_seconds = await self._recovery.wait_for_recovery(
                    spec.target,
                    s.recovery_timeout_seconds,
                    since=handle.stopped_at if handle is not None else None,
                    cancel=run.cancel,
                )
                if s.post_recovery_load_seconds > 0:
                    run.post_recovery = await self._load_driver.run_load(
                        spec.target,
                        spec.load_concurrency,
                        s.post_recovery_load_seconds,
                        cancel=run.cancel,
                    )
        except RecoveryTimeoutError:
            # Recorded as a failed recovery phase; the report still gets built.
            run.log.warning("orchestrator.recovery_timeout")

        run.enter(RunState.report)
        async with recorder.scope(Phase.report, timeout=s.report_timeout_seconds):
            self._check_abort(run)
            if s.report_path is not None:
                provisional = self._report_builder.build(
                    spec,
                    recorder.results(),
                    run.baseline,
                    run.under_fault,
                    run.recovery_seconds,
                    status=ExperimentStatus.completed,
                    started_at=run.started_at,
                    ended_at=datetime.now(tz=UTC),
                    post_recovery=run.post_recovery,
                    artifact_path=str(s.report_path),
                )
                run.render_error = await asyncio.to_thread(
                    self._report_builder.render, provisional, s.report_path
                )
                if run.render_error is None:
                    run.artifact_path = str(s.report_path)

    async def _fault_and_load(self, run: _Run, injector: FaultInjector) -> MetricsSnapshot:
        """Run the fault and the load concurrently and join both.

        The load window only opens once the fault is confirmed started, and
        the fault is held for at least ``fault_duration_seconds`` and until
        the load run has returned, so the whole measured window runs under
        the fault and recovery is timed from a removal that follows it.  If
        the fault task fails the load run is cancelled; if the load task
        fails the fault is stopped early.
        """
        started = asyncio.Event()
        load_done = asyncio.Event()
        fault_task = asyncio.create_task(
            self._hold_fault(run, injector, started, load_done), name="fault"
        )
        load_task = asyncio.create_task(
            self._load_under_fault(run, started, load_done), name="load"
        )
        tasks = (fault_task, load_task)
        try:
            await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
            if _task_error(fault_task) is not None:
                load_task.cancel()
            elif _task_error(load_task) is not None:
                fault_task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        fault_error = _task_error(fault_task)
        if fault_error is not None:
            raise fault_error

        load_error = _task_error(load_task)
        if load_error is not None:
            handle = run.state.active_handle
            if handle is not None:
                try:
                    await injector.stop(handle)
                except FaultInjectionError as exc:
                    run.log.warning("orchestrator.early_stop_failed", error=str(exc))
            raise load_error

        return load_task.result()

    async def _hold_fault(
        self,
        run: _Run,
        injector: FaultInjector,
        started: asyncio.Event,
        load_done: asyncio.Event,
    ) -> None:
        spec = run.spec
        try:
            handle = await injector.start(spec.target, spec.fault_duration_seconds)
        except FaultInjectionError as exc:
            if exc.handle is not None:
                run.state.adopt(injector, exc.handle)
            raise
        run.state.adopt(injector, handle)
        started.set()

        await asyncio.sleep(spec.fault_duration_seconds)
        run.log.info("orchestrator.fault_window_elapsed", handle_id=handle.handle_id)
        if not load_done.is_set():
            run.log.info("orchestrator.fault_held_for_load", handle_id=handle.handle_id)
            await load_done.wait()
        await injector.stop(handle)

    async def _load_under_fault(
        self, run: _Run, started: asyncio.Event, load_done: asyncio.Event
    ) -> MetricsSnapshot:
        spec = run.spec
        await started.wait()
        snapshot = await self._load_driver.run_load(
            spec.target,
            spec.load_concurrency,
            spec.load_duration_seconds,
            cancel=run.cancel,
        )
        load_done.set()
        return snapshot

    async def _run_cleanup(self, run: _Run) -> list[CleanupWarning]:
        run.enter(RunState.cleanup)
        started_at = datetime.now(tz=UTC)
        try:
            warnings = await self._cleanup.cleanup(run.state)
        except asyncio.CancelledError:
            run.recorder.record(Phase.cleanup, PhaseOutcome.failed, started_at, "cancelled")
            raise
        except Exception as exc:  # noqa: BLE001
            warnings = [CleanupWarning(step="cleanup", message=describe_error(exc))]

        for warning in warnings:
            run.log.warning("orchestrator.cleanup_warning", step=warning.step, message=warning.message)
        if warnings:
            run.recorder.record(
                Phase.cleanup,
                PhaseOutcome.failed,
                started_at,
                f"{len(warnings)} cleanup warning(s)",
            )
        else:
            run.recorder.record(Phase.cleanup, PhaseOutcome.success, started_at)
        return warnings

    @staticmethod
    def _check_abort(run: _Run) -> None:
        if run.cancel.is_set():
            raise ExperimentAbortedError("experiment aborted")


def _task_error(task: asyncio.Task[object]) -> BaseException | None:
    """Exception raised by a finished *task*; None if pending, cancelled or successful."""
    if not task.done() or task.cancelled():
        return None
    return task.exception()


__all__ = [
    "ExperimentAlreadyRunningError",
    "ExperimentNotFoundError",
    "ExperimentOrchestrator",
    "FaultInjectorFactory",
]
