"""
Scanner - Polling Scheduler.

Runs one scan cycle every polling interval. Time is read and slept
through the injected clock, so with MockClock the cadence can be
asserted without waiting.
"""

import asyncio
import logging
from typing import Callable, List, Optional

from ..clock import ClockProtocol, get_clock
from .models import ScanOptions, ScanResult, ScanStrategy
from .service import SmartScanner


logger = logging.getLogger(__name__)


class ScanScheduler:
    """
    Periodic scan loop.

    strategy=None scans all strategies each cycle.
    """

    def __init__(
        self,
        scanner: SmartScanner,
        strategy: Optional[ScanStrategy] = ScanStrategy.ARBITRAGE_BEST,
        options: Optional[ScanOptions] = None,
        interval_ms: Optional[int] = None,
        clock: Optional[ClockProtocol] = None,
        on_results: Optional[Callable[[List[ScanResult]], None]] = None,
    ):
        self._scanner = scanner
        self._strategy = strategy
        self._options = options or ScanOptions()
        if interval_ms is None:
            interval_ms = scanner.config.polling_interval_ms
        if interval_ms <= 0:
            raise ValueError("interval_ms must be positive")
        self._interval = interval_ms / 1000
        self._clock = clock or get_clock()
        self._on_results = on_results

        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._cycles = 0
        self._failures = 0

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def cycles(self) -> int:
        return self._cycles

    @property
    def failures(self) -> int:
        return self._failures

    # --------------------------------------------------------
    # LIFECYCLE
    # --------------------------------------------------------

    async def start(self) -> None:
        """Run the loop as a background task."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self.run())
        logger.info("Scan scheduler started")

    async def stop(self) -> None:
        """Stop the loop; an in-flight cycle is cancelled."""
        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info("Scan scheduler stopped")

    async def run(self, max_cycles: Optional[int] = None) -> None:
        """
        Scan until stopped, cancelled, or max_cycles cycles have run.

        A failing cycle is logged and the loop continues. Cancellation
        propagates to the caller.
        """
        self._running = True
        try:
            while self._running:
                started = self._clock.timestamp()
                await self._run_cycle()

                if max_cycles is not None and self._cycles >= max_cycles:
                    break
                if not self._running:
                    break

                elapsed = self._clock.timestamp() - started
                await self._clock.sleep(max(0.0, self._interval - elapsed))
        finally:
            self._running = False

    async def _run_cycle(self) -> None:
        self._cycles += 1
        try:
            if self._strategy is None:
                results = await self._scanner.scan_all_strategies(self._options)
            else:
                results = await self._scanner.scan(self._strategy, self._options)
        except Exception as e:
            self._failures += 1
            logger.error(f"Scan cycle {self._cycles} failed: {e}", exc_info=True)
            return

        if self._on_results:
            self._on_results(results)
