"""Tests for aumai_chaostoolkit.collaborators — value types and SubprocessRunner."""

from __future__ import annotations

import sys

import pytest

from aumai_chaostoolkit.collaborators import (
    CommandResult,
    Readiness,
    ResourceRef,
    SubprocessRunner,
)


class TestValueTypes:
    def test_command_result_ok(self) -> None:
        assert CommandResult(exit_code=0).ok
        assert not CommandResult(exit_code=2).ok

    @pytest.mark.parametrize(
        ("ready", "desired", "expected"),
        [(3, 3, True), (4, 3, True), (2, 3, False), (0, 0, False)],
    )
    def test_readiness_parity(self, ready: int, desired: int, expected: bool) -> None:
        assert Readiness(ready=ready, desired=desired).at_parity is expected

    def test_resource_ref_str(self) -> None:
        ref = ResourceRef(kind="chaosengine", name="e1", namespace="shop")
        assert str(ref) == "chaosengine/e1 -n shop"


class TestSubprocessRunner:
    @pytest.mark.asyncio
    async def test_captures_output_and_stdin(self) -> None:
        result = await SubprocessRunner().execute(
            [sys.executable, "-c", "import sys; print(sys.stdin.read().upper())"],
            input="abc",
        )
        assert result.ok
        assert result.stdout.strip() == "ABC"

    @pytest.mark.asyncio
    async def test_nonzero_exit(self) -> None:
        result = await SubprocessRunner().execute(
            [sys.executable, "-c", "import sys; sys.stderr.write('bad'); sys.exit(3)"]
        )
        assert result.exit_code == 3
        assert result.stderr == "bad"

    @pytest.mark.asyncio
    async def test_missing_binary_is_exit_127(self) -> None:
        result = await SubprocessRunner().execute(["definitely-not-a-real-binary-xyz"])
        assert result.exit_code == 127

    @pytest.mark.asyncio
    async def test_timeout_kills_process(self) -> None:
        with pytest.raises(TimeoutError):
            await SubprocessRunner().execute(
                [sys.executable, "-c", "import time; time.sleep(30)"], timeout=0.2
            )

    @pytest.mark.asyncio
    async def test_env_is_merged(self) -> None:
        runner = SubprocessRunner(env={"CHAOS_TEST_VALUE": "42"})
        result = await runner.execute(
            [sys.executable, "-c", "import os; print(os.environ['CHAOS_TEST_VALUE'])"]
        )
        assert result.stdout.strip() == "42"
