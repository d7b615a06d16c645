"""Post-fault recovery monitoring."""

from __future__ import annotations

import asyncio
import time

import structlog

from aumai_chaostoolkit.collaborators import ClusterClient
from aumai_chaostoolkit.errors import ExperimentAbortedError, RecoveryTimeoutError
from aumai_chaostoolkit.models import Target

logger = structlog.get_logger(__name__)


class RecoveryMonitor:
    """Poll workload readiness until it is steady again.

    A workload counts as recovered once ready and desired instance counts
    match on *stable_polls* consecutive polls, which filters out flapping.
    Cluster query errors propagate unchanged; no poll is retried.
    """

    def __init__(
        self,
        cluster: ClusterClient,
        poll_interval_seconds: float = 5.0,
        stable_polls: int = 2,
    ) -> None:
        if poll_interval_seconds <= 0:
            raise ValueError("poll_interval_seconds must be positive")
        if stable_polls < 1:
            raise ValueError("stable_polls must be at least 1")
        self._cluster = cluster
        self._poll_interval = poll_interval_seconds
        self._stable_polls = stable_polls

    async def wait_for_recovery(
        self,
        target: Target,
        timeout_seconds: float,
        since: float | None = None,
        cancel: asyncio.Event | None = None,
    ) -> float:
        """Block until *target* recovers and return the recovery time in seconds.

        Args:
            target:          Workload to watch.
            timeout_seconds: Give up after this long.
            since:           ``time.monotonic()`` value the recovery time is
                             measured from (normally when the fault was
                             removed).  Defaults to the moment of the call.
            cancel:          Optional signal that aborts the wait.

        Returns:
            Seconds from *since* to the first poll of the streak that
            confirmed parity.

        Raises:
            RecoveryTimeoutError: if parity was not confirmed in time.
            ExperimentAbortedError: if *cancel* was set while waiting.
        """
        origin = since if since is not None else time.monotonic()
        deadline = time.monotonic() + timeout_seconds
        streak = 0
        streak_started = origin

        while True:
            readiness = await self._cluster.readiness(target.namespace, target.workload)
            polled_at = time.monotonic()
            logger.debug(
                "recovery.poll",
                target=str(target),
                ready=readiness.ready,
                desired=readiness.desired,
                streak=streak,
            )

            if readiness.at_parity:
                if streak == 0:
                    streak_started = polled_at
                streak += 1
                if streak >= self._stable_polls:
                    recovery_seconds = max(0.0, streak_started - origin)
                    logger.info(
                        "recovery.reached",
                        target=str(target),
                        recovery_seconds=round(recovery_seconds, 3),
                    )
                    return recovery_seconds
            else:
                streak = 0

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.warning(
                    "recovery.timeout", target=str(target), timeout_seconds=timeout_seconds
                )
                raise RecoveryTimeoutError(timeout_seconds)
            await self._pause(min(self._poll_interval, remaining), cancel)

    async def _pause(self, delay: float, cancel: asyncio.Event | None) -> None:
        if cancel is None:
            await asyncio.sleep(delay)
            return
        try:
            await asyncio.wait_for(cancel.wait(), timeout=delay)
        except TimeoutError:
            return
        raise ExperimentAbortedError("recovery monitoring aborted")


__all__ = ["RecoveryMonitor"]
