"""Load generation driver."""

from __future__ import annotations

import asyncio
import time

import structlog
from pydantic import ValidationError

from aumai_chaostoolkit.collaborators import LoadEngine
from aumai_chaostoolkit.errors import LoadCancelledError, LoadRunError
from aumai_chaostoolkit.models import MetricsSnapshot, Target

logger = structlog.get_logger(__name__)


class LoadDriver:
    """Run the load engine for a fixed window and return a :class:`MetricsSnapshot`.

    The call blocks for as long as the engine runs.  Setting the *cancel*
    event passed to :meth:`run_load` terminates the engine run; the caller
    then gets :class:`LoadCancelledError`, never a partial snapshot.
    """

    def __init__(self, engine: LoadEngine) -> None:
        self._engine = engine

    async def run_load(
        self,
        target: Target,
        concurrency: int,
        duration_seconds: float,
        cancel: asyncio.Event | None = None,
    ) -> MetricsSnapshot:
        if cancel is not None and cancel.is_set():
            raise LoadCancelledError("load run cancelled before it started")

        logger.info(
            "load.starting",
            target=str(target),
            concurrency=concurrency,
            duration_seconds=duration_seconds,
        )
        started = time.monotonic()
        engine_task = asyncio.create_task(
            self._engine.run(target, concurrency, duration_seconds), name="load-engine"
        )
        cancel_task = asyncio.create_task(
            cancel.wait() if cancel is not None else asyncio.Event().wait(),
            name="load-cancel-signal",
        )
        try:
            await asyncio.wait({engine_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancel_task.cancel()
            if not engine_task.done():
                engine_task.cancel()
                await asyncio.gather(engine_task, return_exceptions=True)

        if engine_task.cancelled():
            elapsed = time.monotonic() - started
            logger.warning("load.cancelled", target=str(target), elapsed_seconds=round(elapsed, 3))
            raise LoadCancelledError(f"load run cancelled after {elapsed:.1f}s")

        try:
            raw = engine_task.result()
        except LoadRunError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise LoadRunError(f"load engine failed: {exc}") from exc

        try:
            snapshot = MetricsSnapshot(
                error_rate=raw["error_rate"],
                p99_latency_ms=raw["p99_latency_ms"],
                throughput=raw["throughput"],
                success_rate=raw["success_rate"],
            )
        except (KeyError, TypeError, ValidationError) as exc:
            raise LoadRunError(f"load engine returned unusable metrics: {exc}") from exc

        logger.info(
            "load.finished",
            target=str(target),
            error_rate=snapshot.error_rate,
            p99_latency_ms=snapshot.p99_latency_ms,
            throughput=snapshot.throughput,
        )
        return snapshot


__all__ = ["LoadDriver"]
