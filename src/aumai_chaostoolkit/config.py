"""Settings and experiment-file loading for aumai-chaostoolkit."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from aumai_chaostoolkit.errors import ConfigurationError
from aumai_chaostoolkit.models import ExperimentSpec


class OrchestratorSettings(BaseModel):
    """Thresholds, timeouts and polling cadence for an orchestrator.

    Error-rate thresholds are absolute percentage points.  When a baseline
    exists the fault-phase error rate may exceed it by at most
    ``max_error_rate_delta``; without a baseline it may not exceed
    ``max_error_rate``.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    # Verdict thresholds
    max_error_rate_delta: float = Field(default=5.0, ge=0.0)
    max_error_rate: float = Field(default=5.0, ge=0.0, le=100.0)
    max_p99_delta_ms: float | None = Field(default=None, ge=0.0)
    max_p99_latency_ms: float | None = Field(default=None, ge=0.0)
    max_recovery_seconds: float = Field(default=300.0, gt=0)

    # Recovery polling
    recovery_timeout_seconds: float = Field(default=300.0, gt=0)
    poll_interval_seconds: float = Field(default=5.0, gt=0)
    stable_polls: int = Field(default=2, ge=1)

    # Timeouts
    preflight_timeout_seconds: float = Field(default=60.0, gt=0)
    report_timeout_seconds: float = Field(default=30.0, gt=0)
    phase_slack_seconds: float = Field(default=30.0, ge=0)
    deadline_slack_seconds: float = Field(default=60.0, ge=0)

    post_recovery_load_seconds: float = Field(default=0.0, ge=0)
    report_path: Path | None = None

    def run_deadline(self, spec: ExperimentSpec) -> float:
        """Upper bound, in seconds, for a whole run of *spec* (cleanup excluded)."""
        load_windows = spec.load_duration_seconds
        if spec.run_baseline:
            load_windows += spec.load_duration_seconds
        return (
            self.preflight_timeout_seconds
            + spec.fault_duration_seconds
            + load_windows
            + self.post_recovery_load_seconds
            + self.recovery_timeout_seconds
            + self.report_timeout_seconds
            + self.deadline_slack_seconds
        )


def _read_mapping(path: str | Path) -> dict[str, Any]:
    """Read a YAML or JSON file into a dict."""
    file_path = Path(path)
    try:
        raw = file_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigurationError(f"cannot read {file_path}: {exc}") from exc

    try:
        if file_path.suffix in (".yaml", ".yml"):
            data = yaml.safe_load(raw)
        else:
            data = json.loads(raw)
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        raise ConfigurationError(f"cannot parse {file_path}: {exc}") from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"{file_path} must contain a mapping at the top level")
    return data


def load_spec(path: str | Path) -> ExperimentSpec:
    """Load an :class:`ExperimentSpec` from a YAML or JSON file."""
    return ExperimentSpec.from_mapping(_read_mapping(path))


def load_settings(path: str | Path | None = None) -> OrchestratorSettings:
    """Load :class:`OrchestratorSettings`, or the defaults when *path* is None."""
    if path is None:
        return OrchestratorSettings()
    try:
        return OrchestratorSettings.model_validate(_read_mapping(path))
    except ValidationError as exc:
        raise ConfigurationError(f"invalid settings in {path}: {exc}") from exc


__all__ = ["OrchestratorSettings", "load_settings", "load_spec"]
