"""Tests for wait_for_path.

A fake clock advances only when the injected sleep is awaited, so backoff
sequences and budgets are checked exactly and without real delays.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from firecracker_ctl.subprocess_utils import wait_for_path

# ============================================================================
# Test Helpers
# ============================================================================


class FakeClock:
    """Monotonic clock driven by FakeClock.sleep."""

    def __init__(self) -> None:
        self.now = 100.0
        self.sleeps: list[float] = []
        self.on_sleep = None

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        if self.on_sleep is not None:
            self.on_sleep(len(self.sleeps))


# ============================================================================
# Tests
# ============================================================================


class TestWaitForPath:
    """Bounded exponential backoff on file existence."""

    async def test_existing_path_returns_immediately(self, tmp_path: Path) -> None:
        """No sleep when the path already exists."""
        target = tmp_path / "sock"
        target.touch()
        clock = FakeClock()

        assert await wait_for_path(target, timeout_ms=10_000, sleep=clock.sleep, clock=clock) is True
        assert clock.sleeps == []

    async def test_backoff_doubles_from_first_delay(self, tmp_path: Path) -> None:
        """Delays go 1, 2, 4, 8 ms until the path appears."""
        target = tmp_path / "sock"
        clock = FakeClock()

        def appear_after_four(count: int) -> None:
            if count == 4:
                target.touch()

        clock.on_sleep = appear_after_four
        assert await wait_for_path(target, timeout_ms=10_000, sleep=clock.sleep, clock=clock) is True
        assert clock.sleeps == pytest.approx([0.001, 0.002, 0.004, 0.008])

    async def test_delay_capped(self, tmp_path: Path) -> None:
        """No single delay exceeds max_delay_ms."""
        clock = FakeClock()

        result = await wait_for_path(
            tmp_path / "never",
            timeout_ms=5_000,
            first_delay_ms=1,
            max_delay_ms=100,
            sleep=clock.sleep,
            clock=clock,
        )

        assert result is False
        assert max(clock.sleeps) == pytest.approx(0.1)

    async def test_budget_exhausted(self, tmp_path: Path) -> None:
        """Gives up once the total budget is spent, never overshooting it."""
        clock = FakeClock()
        start = clock.now

        result = await wait_for_path(tmp_path / "never", timeout_ms=10_000, sleep=clock.sleep, clock=clock)

        assert result is False
        assert clock.now - start == pytest.approx(10.0)
        assert sum(clock.sleeps) == pytest.approx(10.0)

    async def test_abort_check_stops_early(self, tmp_path: Path) -> None:
        """An exception from abort_check propagates unchanged."""
        clock = FakeClock()
        calls = 0

        def abort_on_third() -> None:
            nonlocal calls
            calls += 1
            if calls == 3:
                raise RuntimeError("child exited")

        with pytest.raises(RuntimeError, match="child exited"):
            await wait_for_path(
                tmp_path / "never",
                timeout_ms=10_000,
                abort_check=abort_on_third,
                sleep=clock.sleep,
                clock=clock,
            )
        assert len(clock.sleeps) == 2

    async def test_real_sleep_short_budget(self, tmp_path: Path) -> None:
        """Works with the default asyncio.sleep and monotonic clock."""
        assert await wait_for_path(tmp_path / "never", timeout_ms=20) is False
