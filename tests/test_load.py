"""Tests for aumai_chaostoolkit.load — LoadDriver."""

from __future__ import annotations

import asyncio

import pytest

from aumai_chaostoolkit.errors import LoadCancelledError, LoadRunError
from aumai_chaostoolkit.load import LoadDriver
from aumai_chaostoolkit.models import Target

from conftest import HEALTHY_METRICS, FakeLoadEngine


class TestLoadDriver:
    @pytest.mark.asyncio
    async def test_returns_snapshot(self, target: Target) -> None:
        snapshot = await LoadDriver(FakeLoadEngine()).run_load(target, 5, 0.01)
        assert snapshot.error_rate == HEALTHY_METRICS["error_rate"]
        assert snapshot.p99_latency_ms == HEALTHY_METRICS["p99_latency_ms"]

    @pytest.mark.asyncio
    async def test_cancel_mid_run_raises_cancelled(self, target: Target) -> None:
        engine = FakeLoadEngine(delay=10.0)
        cancel = asyncio.Event()
        loop = asyncio.get_running_loop()
        loop.call_later(0.02, cancel.set)

        with pytest.raises(LoadCancelledError, match="cancelled after"):
            await LoadDriver(engine).run_load(target, 5, 10.0, cancel=cancel)
        assert engine.cancelled == 1

    @pytest.mark.asyncio
    async def test_cancel_before_start_never_calls_engine(self, target: Target) -> None:
        engine = FakeLoadEngine()
        cancel = asyncio.Event()
        cancel.set()
        with pytest.raises(LoadCancelledError):
            await LoadDriver(engine).run_load(target, 5, 1.0, cancel=cancel)
        assert engine.calls == 0

    @pytest.mark.asyncio
    async def test_cancelled_is_a_load_run_error(self, target: Target) -> None:
        cancel = asyncio.Event()
        cancel.set()
        with pytest.raises(LoadRunError):
            await LoadDriver(FakeLoadEngine()).run_load(target, 5, 1.0, cancel=cancel)

    @pytest.mark.asyncio
    async def test_engine_error_maps_to_load_run_error(self, target: Target) -> None:
        engine = FakeLoadEngine(results=[RuntimeError("k6 crashed")])
        with pytest.raises(LoadRunError, match="k6 crashed"):
            await LoadDriver(engine).run_load(target, 5, 0.01)

    @pytest.mark.asyncio
    async def test_missing_metric_raises(self, target: Target) -> None:
        engine = FakeLoadEngine(results=[{"error_rate": 1.0}])
        with pytest.raises(LoadRunError, match="unusable metrics"):
            await LoadDriver(engine).run_load(target, 5, 0.01)

    @pytest.mark.asyncio
    async def test_out_of_range_metric_raises(self, target: Target) -> None:
        engine = FakeLoadEngine(results=[{**HEALTHY_METRICS, "error_rate": 250.0}])
        with pytest.raises(LoadRunError):
            await LoadDriver(engine).run_load(target, 5, 0.01)

    @pytest.mark.asyncio
    async def test_unset_cancel_event_does_not_interfere(self, target: Target) -> None:
        snapshot = await LoadDriver(FakeLoadEngine(delay=0.01)).run_load(
            target, 5, 0.01, cancel=asyncio.Event()
        )
        assert snapshot.success_rate == HEALTHY_METRICS["success_rate"]
