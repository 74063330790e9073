"""
Scan Scheduler Tests.

Cadence is asserted through MockClock.sleeps; no test waits in
real time.
"""

import asyncio

import pytest

from arbitrage_engine.config import ScannerConfig
from arbitrage_engine.scanner import ScanOptions, ScanScheduler, ScanStrategy


class RecordingScanner:
    """SmartScanner stand-in that records calls and can fail or take time."""

    def __init__(self, clock=None, scan_seconds=0.0, failures=0):
        self.config = ScannerConfig(polling_interval_ms=250)
        self.calls = []
        self._clock = clock
        self._scan_seconds = scan_seconds
        self._failures = failures

    async def _cycle(self, label):
        self.calls.append(label)
        if self._clock is not None and self._scan_seconds:
            self._clock.advance(self._scan_seconds)
        if self._failures:
            self._failures -= 1
            raise RuntimeError("exchange outage")
        return [label]

    async def scan(self, strategy, options):
        return await self._cycle(strategy)

    async def scan_all_strategies(self, options):
        return await self._cycle("all")


# ============================================================
# CADENCE
# ============================================================

class TestCadence:
    """Tests for the polling interval."""

    @pytest.mark.asyncio
    async def test_runs_requested_cycles(self, mock_clock):
        scanner = RecordingScanner()
        scheduler = ScanScheduler(scanner, interval_ms=500, clock=mock_clock)

        await scheduler.run(max_cycles=3)

        assert scheduler.cycles == 3
        assert scanner.calls == [ScanStrategy.ARBITRAGE_BEST] * 3
        assert mock_clock.sleeps == [0.5, 0.5]
        assert scheduler.is_running is False

    @pytest.mark.asyncio
    async def test_interval_defaults_to_config(self, mock_clock):
        scheduler = ScanScheduler(RecordingScanner(), clock=mock_clock)

        await scheduler.run(max_cycles=2)

        assert mock_clock.sleeps == [0.25]

    @pytest.mark.asyncio
    async def test_scan_time_is_subtracted(self, mock_clock):
        scanner = RecordingScanner(clock=mock_clock, scan_seconds=0.3)
        scheduler = ScanScheduler(scanner, interval_ms=500, clock=mock_clock)

        await scheduler.run(max_cycles=2)

        assert mock_clock.sleeps == [pytest.approx(0.2, abs=1e-4)]

    @pytest.mark.asyncio
    async def test_slow_scan_does_not_sleep_negative(self, mock_clock):
        scanner = RecordingScanner(clock=mock_clock, scan_seconds=2)
        scheduler = ScanScheduler(scanner, interval_ms=500, clock=mock_clock)

        await scheduler.run(max_cycles=2)

        assert mock_clock.sleeps == [0.0]

    def test_interval_must_be_positive(self, mock_clock):
        with pytest.raises(ValueError):
            ScanScheduler(RecordingScanner(), interval_ms=0, clock=mock_clock)


# ============================================================
# CYCLES
# ============================================================

class TestCycles:
    """Tests for what a cycle runs and how failures are handled."""

    @pytest.mark.asyncio
    async def test_all_strategies_when_no_strategy(self, mock_clock):
        scanner = RecordingScanner()
        scheduler = ScanScheduler(scanner, strategy=None, clock=mock_clock)

        await scheduler.run(max_cycles=1)

        assert scanner.calls == ["all"]

    @pytest.mark.asyncio
    async def test_results_are_delivered(self, mock_clock):
        delivered = []
        scheduler = ScanScheduler(
            RecordingScanner(),
            strategy=ScanStrategy.TOP_GAINERS,
            options=ScanOptions(max_results=5),
            clock=mock_clock,
            on_results=delivered.append,
        )

        await scheduler.run(max_cycles=2)

        assert delivered == [[ScanStrategy.TOP_GAINERS], [ScanStrategy.TOP_GAINERS]]

    @pytest.mark.asyncio
    async def test_failed_cycle_does_not_stop_loop(self, mock_clock):
        delivered = []
        scanner = RecordingScanner(failures=2)
        scheduler = ScanScheduler(scanner, clock=mock_clock, on_results=delivered.append)

        await scheduler.run(max_cycles=3)

        assert scheduler.cycles == 3
        assert scheduler.failures == 2
        assert len(delivered) == 1


# ============================================================
# LIFECYCLE
# ============================================================

class TestLifecycle:
    """Tests for start and stop."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self, mock_clock):
        scanner = RecordingScanner()
        scheduler = ScanScheduler(scanner, clock=mock_clock)

        await scheduler.start()
        assert scheduler.is_running
        for _ in range(5):
            await asyncio.sleep(0)

        await scheduler.stop()

        assert scheduler.is_running is False
        assert scheduler.cycles >= 1
        stopped_at = scheduler.cycles
        await asyncio.sleep(0)
        assert scheduler.cycles == stopped_at

    @pytest.mark.asyncio
    async def test_start_twice_is_noop(self, mock_clock):
        scheduler = ScanScheduler(RecordingScanner(), clock=mock_clock)

        await scheduler.start()
        task = scheduler._task
        await scheduler.start()

        assert scheduler._task is task
        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_stop_without_start(self, mock_clock):
        scheduler = ScanScheduler(RecordingScanner(), clock=mock_clock)
        await scheduler.stop()
        assert scheduler.is_running is False
