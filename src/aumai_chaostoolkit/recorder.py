"""Phase result recording for chaos experiments."""

from __future__ import annotations

import asyncio
import threading
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from aumai_chaostoolkit.models import Phase, PhaseOutcome, PhaseResult


def _now() -> datetime:
    return datetime.now(tz=UTC)


def describe_error(exc: BaseException) -> str:
    """Short human-readable description of *exc*."""
    message = str(exc)
    return message if message else type(exc).__name__


class PhaseRecorder:
    """Append-only trail of :class:`PhaseResult` entries for one run.

    Every entered phase gets exactly one result.  Timestamps are clamped so
    that each result starts no earlier than the previous one ended, keeping
    the trail time-monotonic even if the wall clock steps backwards.

    Mutations and snapshot reads are guarded by a :class:`threading.Lock`.
    """

    def __init__(self) -> None:
        self._results: list[PhaseResult] = []
        self._lock: threading.Lock = threading.Lock()

    def record(
        self,
        phase: Phase,
        outcome: PhaseOutcome,
        started_at: datetime,
        reason: str | None = None,
    ) -> PhaseResult:
        """Append the result for *phase*.

        Raises:
            ValueError: if *phase* already has a result.
        """
        with self._lock:
            if any(r.phase == phase for r in self._results):
                raise ValueError(f"phase {phase.value} already recorded")
            if self._results:
                started_at = max(started_at, self._results[-1].ended_at)
            result = PhaseResult(
                phase=phase,
                outcome=outcome,
                reason=reason,
                started_at=started_at,
                ended_at=max(_now(), started_at),
            )
            self._results.append(result)
            return result

    def skip(self, phase: Phase, reason: str) -> PhaseResult:
        """Record *phase* as skipped."""
        return self.record(phase, PhaseOutcome.skipped, _now(), reason)

    def results(self) -> list[PhaseResult]:
        """Return a shallow copy of the trail so far."""
        with self._lock:
            return list(self._results)

    def outcome_of(self, phase: Phase) -> PhaseOutcome | None:
        with self._lock:
            for result in self._results:
                if result.phase == phase:
                    return result.outcome
        return None

    @asynccontextmanager
    async def scope(
        self, phase: Phase, timeout: float | None = None
    ) -> AsyncGenerator[None, None]:
        """Run the body as *phase*, recording success or failure.

        A body that exceeds *timeout* seconds is cancelled and recorded as
        failed; the resulting :class:`TimeoutError` propagates.  Any other
        exception, including cancellation, is recorded and re-raised.

        Example::

            async with recorder.scope(Phase.preflight, timeout=60):
                await validator.validate(target)
        """
        started_at = _now()
        timer = asyncio.timeout(timeout)
        try:
            async with timer:
                yield
        except asyncio.CancelledError:
            self.record(phase, PhaseOutcome.failed, started_at, "cancelled")
            raise
        except TimeoutError as exc:
            if timer.expired():
                reason = f"timed out after {timeout:g}s"
            else:
                reason = describe_error(exc)
            self.record(phase, PhaseOutcome.failed, started_at, reason)
            raise
        except Exception as exc:
            self.record(phase, PhaseOutcome.failed, started_at, describe_error(exc))
            raise
        else:
            self.record(phase, PhaseOutcome.success, started_at)


__all__ = ["PhaseRecorder", "describe_error"]
