"""Tests for aumai_chaostoolkit.cli — Click command interface."""

from __future__ import annotations

import json
from collections.abc import Iterator
from pathlib import Path
from unittest.mock import patch

import pytest
import yaml
from click.testing import CliRunner

from aumai_chaostoolkit.cli import main
from aumai_chaostoolkit.config import OrchestratorSettings
from aumai_chaostoolkit.orchestrator import ExperimentOrchestrator

from conftest import (
    DEGRADED_METRICS,
    HEALTHY_METRICS,
    FakeCluster,
    FakeInjector,
    FakeLoadEngine,
    build_orchestrator,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_EXPERIMENT: dict[str, object] = {
    "experiment_id": "cli-test",
    "name": "CLI Test Experiment",
    "target": {"namespace": "shop", "workload": "checkout"},
    "fault": {"kind": "instance-kill"},
    "fault_duration_seconds": 0.05,
    "load_concurrency": 2,
    "load_duration_seconds": 0.05,
}

_SETTINGS: dict[str, object] = {
    "recovery_timeout_seconds": 0.5,
    "poll_interval_seconds": 0.01,
    "preflight_timeout_seconds": 1,
    "report_timeout_seconds": 1,
    "phase_slack_seconds": 1,
    "deadline_slack_seconds": 1,
}


def _write_yaml(tmp_path: Path, name: str, data: dict[str, object]) -> Path:
    file_path = tmp_path / name
    file_path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return file_path


def _run_args(tmp_path: Path, *extra: str) -> list[str]:
    return [
        "run",
        "--experiment",
        str(_write_yaml(tmp_path, "experiment.yaml", _EXPERIMENT)),
        "--settings",
        str(_write_yaml(tmp_path, "settings.yaml", _SETTINGS)),
        *extra,
    ]


def _fake_builder(engine: FakeLoadEngine):
    def build(
        settings: OrchestratorSettings, kubectl: str = "kubectl", k6: str = "k6"
    ) -> ExperimentOrchestrator:
        return build_orchestrator(FakeCluster(), engine, FakeInjector(), settings)

    return build


@pytest.fixture(autouse=True)
def _quiet_logging() -> Iterator[None]:
    with patch("aumai_chaostoolkit.cli.configure_logging"):
        yield


@pytest.fixture()
def passing_engine() -> Iterator[FakeLoadEngine]:
    engine = FakeLoadEngine(results=[HEALTHY_METRICS, DEGRADED_METRICS])
    with patch("aumai_chaostoolkit.cli.build_orchestrator", _fake_builder(engine)):
        yield engine


@pytest.fixture()
def failing_engine() -> Iterator[FakeLoadEngine]:
    regressed = {**DEGRADED_METRICS, "error_rate": 8.0, "success_rate": 92.0}
    engine = FakeLoadEngine(results=[HEALTHY_METRICS, regressed])
    with patch("aumai_chaostoolkit.cli.build_orchestrator", _fake_builder(engine)):
        yield engine


# ---------------------------------------------------------------------------
# --version / --help
# ---------------------------------------------------------------------------


class TestVersionFlag:
    def test_version_contains_expected_string(self) -> None:
        result = CliRunner().invoke(main, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output


class TestHelpFlag:
    def test_help_lists_subcommands(self) -> None:
        result = CliRunner().invoke(main, ["--help"])
        assert result.exit_code == 0
        for command in ("run", "validate", "report"):
            assert command in result.output


# ---------------------------------------------------------------------------
# run
# ---------------------------------------------------------------------------


class TestRunCommand:
    def test_run_no_experiment_flag_fails(self) -> None:
        result = CliRunner().invoke(main, ["run"])
        assert result.exit_code != 0

    def test_run_missing_file_exits_one(self, tmp_path: Path) -> None:
        result = CliRunner().invoke(
            main, ["run", "--experiment", str(tmp_path / "absent.yaml")]
        )
        assert result.exit_code == 1
        assert "Error loading experiment" in result.output

    def test_run_unknown_fault_kind_exits_one(self, tmp_path: Path) -> None:
        bad = {**_EXPERIMENT, "fault": {"kind": "disk-fill"}}
        path = _write_yaml(tmp_path, "bad.yaml", bad)
        result = CliRunner().invoke(main, ["run", "--experiment", str(path)])
        assert result.exit_code == 1

    def test_run_pass_exits_zero(
        self, tmp_path: Path, passing_engine: FakeLoadEngine
    ) -> None:
        result = CliRunner().invoke(main, _run_args(tmp_path))
        assert result.exit_code == 0, result.output
        assert "CLI Test Experiment" in result.output
        assert "Verdict   : PASS" in result.output
        assert "fault_and_load: success" in result.output
        assert passing_engine.calls == 2

    def test_run_fail_exits_two(self, tmp_path: Path, failing_engine: FakeLoadEngine) -> None:
        result = CliRunner().invoke(main, _run_args(tmp_path))
        assert result.exit_code == 2
        assert "Verdict   : FAIL" in result.output
        assert "error-rate regression 7.5 > 5.0" in result.output

    def test_run_json_output(self, tmp_path: Path, passing_engine: FakeLoadEngine) -> None:
        result = CliRunner().invoke(main, _run_args(tmp_path, "--json-output"))
        assert result.exit_code == 0
        data = json.loads(result.output[result.output.index("{\n  \"spec\"") :])
        assert data["verdict"]["passed"] is True
        assert data["spec"]["experiment_id"] == "cli-test"

    def test_run_writes_report(self, tmp_path: Path, passing_engine: FakeLoadEngine) -> None:
        report_path = tmp_path / "out" / "report.md"
        result = CliRunner().invoke(main, _run_args(tmp_path, "--report", str(report_path)))
        assert result.exit_code == 0
        assert report_path.is_file()
        assert f"Report    : {report_path}" in result.output

    def test_json_logs_flag_configures_json_rendering(
        self, tmp_path: Path, passing_engine: FakeLoadEngine
    ) -> None:
        with patch("aumai_chaostoolkit.cli.configure_logging") as configure:
            result = CliRunner().invoke(
                main, _run_args(tmp_path, "--json-logs", "--log-level", "DEBUG")
            )
        assert result.exit_code == 0
        configure.assert_called_once_with("DEBUG", json_logs=True)

    def test_console_logs_by_default(
        self, tmp_path: Path, passing_engine: FakeLoadEngine
    ) -> None:
        with patch("aumai_chaostoolkit.cli.configure_logging") as configure:
            result = CliRunner().invoke(main, _run_args(tmp_path))
        assert result.exit_code == 0
        configure.assert_called_once_with("INFO", json_logs=False)


# ---------------------------------------------------------------------------
# validate
# ---------------------------------------------------------------------------


class TestValidateCommand:
    def test_valid_experiment(self, tmp_path: Path) -> None:
        path = _write_yaml(tmp_path, "experiment.yaml", _EXPERIMENT)
        result = CliRunner().invoke(main, ["validate", "--experiment", str(path)])
        assert result.exit_code == 0
        assert "is valid" in result.output
        assert "shop/checkout" in result.output
        assert "instance-kill" in result.output

    def test_invalid_experiment(self, tmp_path: Path) -> None:
        bad = {**_EXPERIMENT, "fault": {"kind": "cpu-hog", "intensity": 500}}
        path = _write_yaml(tmp_path, "bad.yaml", bad)
        result = CliRunner().invoke(main, ["validate", "--experiment", str(path)])
        assert result.exit_code == 1
        assert "Invalid experiment" in result.output


# ---------------------------------------------------------------------------
# report
# ---------------------------------------------------------------------------


class TestReportCommand:
    @pytest.fixture()
    def saved_report(self, tmp_path: Path, passing_engine: FakeLoadEngine) -> Path:
        report_path = tmp_path / "report.json"
        result = CliRunner().invoke(main, _run_args(tmp_path, "--report", str(report_path)))
        assert result.exit_code == 0
        return report_path

    def test_renders_markdown(self, saved_report: Path) -> None:
        result = CliRunner().invoke(main, ["report", "--input", str(saved_report)])
        assert result.exit_code == 0
        assert result.output.startswith("# Chaos experiment: CLI Test Experiment")

    def test_renders_json(self, saved_report: Path) -> None:
        result = CliRunner().invoke(
            main, ["report", "--input", str(saved_report), "--format", "json"]
        )
        assert result.exit_code == 0
        assert json.loads(result.output)["spec"]["name"] == "CLI Test Experiment"

    def test_missing_report_exits_one(self, tmp_path: Path) -> None:
        result = CliRunner().invoke(main, ["report", "--input", str(tmp_path / "none.json")])
        assert result.exit_code == 1
        assert "Error loading report" in result.output

    def test_invalid_report_exits_one(self, tmp_path: Path) -> None:
        path = tmp_path / "junk.json"
        path.write_text('{"status": "completed"}', encoding="utf-8")
        result = CliRunner().invoke(main, ["report", "--input", str(path)])
        assert result.exit_code == 1
