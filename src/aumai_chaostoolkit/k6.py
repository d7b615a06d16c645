"""k6-backed load engine."""

from __future__ import annotations

import json
import math
import tempfile
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import structlog

from aumai_chaostoolkit.collaborators import CommandRunner
from aumai_chaostoolkit.errors import LoadRunError
from aumai_chaostoolkit.models import Target

logger = structlog.get_logger(__name__)

DEFAULT_SCRIPT = Path(__file__).parent / "scripts" / "load_test.js"

# k6 exits 99 when a script threshold is crossed; the run itself completed.
THRESHOLDS_CROSSED_EXIT_CODE = 99


def parse_summary(summary: Mapping[str, Any]) -> dict[str, float]:
    """Extract the four load metrics from a ``--summary-export`` document.

    Raises:
        LoadRunError: if the summary lacks request failure or duration data.
    """
    metrics = summary.get("metrics", {})
    failed = metrics.get("http_req_failed", {})
    durations = metrics.get("http_req_duration", {})
    requests = metrics.get("http_reqs", {})

    failure_rate = failed.get("value", failed.get("rate"))
    p99 = durations.get("p(99)")
    if failure_rate is None or p99 is None:
        raise LoadRunError("k6 summary is missing http_req_failed or http_req_duration p(99)")

    error_rate = float(failure_rate) * 100.0
    return {
        "error_rate": error_rate,
        "p99_latency_ms": float(p99),
        "throughput": float(requests.get("rate", 0.0)),
        "success_rate": 100.0 - error_rate,
    }


class K6LoadEngine:
    """:class:`~aumai_chaostoolkit.collaborators.LoadEngine` that shells out to k6.

    The target URL and workload coordinates reach the script through
    ``--env``; virtual users and duration through ``--vus`` / ``--duration``.
    """

    def __init__(
        self,
        runner: CommandRunner,
        script: str | Path = DEFAULT_SCRIPT,
        k6: str = "k6",
        env: Mapping[str, str] | None = None,
        grace_seconds: float = 60.0,
    ) -> None:
        self._runner = runner
        self._script = Path(script)
        self._k6 = k6
        self._env = dict(env or {})
        self._grace = grace_seconds

    def command(
        self, target: Target, concurrency: int, duration_seconds: float, summary_path: Path
    ) -> list[str]:
        """Build the k6 command line for one run."""
        env = {
            "SERVICE_URL": target.resolved_service_url(),
            "NAMESPACE": target.namespace,
            "DEPLOYMENT": target.workload,
            **self._env,
        }
        argv = [
            self._k6,
            "run",
            "--quiet",
            "--vus",
            str(concurrency),
            "--duration",
            f"{math.ceil(duration_seconds)}s",
            "--summary-trend-stats",
            "avg,p(95),p(99)",
            "--summary-export",
            str(summary_path),
        ]
        for key, value in env.items():
            argv += ["--env", f"{key}={value}"]
        argv.append(str(self._script))
        return argv

    async def run(
        self, target: Target, concurrency: int, duration_seconds: float
    ) -> dict[str, float]:
        with tempfile.TemporaryDirectory(prefix="aumai-k6-") as tmp:
            summary_path = Path(tmp) / "summary.json"
            argv = self.command(target, concurrency, duration_seconds, summary_path)
            result = await self._runner.execute(argv, timeout=duration_seconds + self._grace)
            if result.exit_code not in (0, THRESHOLDS_CROSSED_EXIT_CODE):
                raise LoadRunError(
                    f"k6 exited {result.exit_code}: {result.stderr.strip() or 'no output'}"
                )
            if result.exit_code == THRESHOLDS_CROSSED_EXIT_CODE:
                logger.info("k6.thresholds_crossed", target=str(target))
            try:
                summary = json.loads(summary_path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as exc:
                raise LoadRunError(f"cannot read k6 summary: {exc}") from exc
        return parse_summary(summary)


__all__ = ["DEFAULT_SCRIPT", "K6LoadEngine", "parse_summary"]
