"""Tick-driven scrape scheduling with additive backoff on rate limits."""

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Awaitable, Callable

from .errors import CollectorError, RateLimitedError, ScrapeTimeoutError
from .metrics import ExporterMetrics
from .watermarks import WatermarkTable


logger = logging.getLogger(__name__)


class SchedulerState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    SKIPPING = "skipping"


@dataclass
class ScrapeState:
    watermarks: WatermarkTable = field(default_factory=WatermarkTable)
    rate_limit_count: int = 0
    skip_count: int = 0


class ScrapeScheduler:
    """Runs one scrape pass per tick of a fixed interval timer.

    Each rate-limited pass adds one more skipped tick than the last
    (1, 2, 3, ...). Any successful pass clears the backoff. Other failures
    are logged and counted but leave the backoff untouched.
    """

    def __init__(
        self,
        scrape_pass: Callable[[], Awaitable[None]],
        state: ScrapeState,
        lock: threading.Lock,
        metrics: ExporterMetrics,
        interval: timedelta,
        timeout: timedelta,
    ):
        self.scrape_pass = scrape_pass
        self.scrape_state = state
        self.lock = lock
        self.metrics = metrics
        self.interval = interval
        self.timeout = timeout
        self.running = False
        self._in_pass = False

    @property
    def state(self) -> SchedulerState:
        if self._in_pass:
            return SchedulerState.RUNNING
        if self.scrape_state.skip_count > 0:
            return SchedulerState.SKIPPING
        return SchedulerState.IDLE

    async def run_pass(self):
        """Run one pass under the scrape lock and the per-pass deadline."""
        self.metrics.scrapes.inc()
        self._in_pass = True
        try:
            # Held across awaits; only the exposition thread ever contends for it.
            with self.lock, self.metrics.scrape_duration_seconds.time():
                try:
                    await asyncio.wait_for(
                        self.scrape_pass(), self.timeout.total_seconds()
                    )
                except asyncio.TimeoutError as e:
                    raise ScrapeTimeoutError(
                        f"scrape did not finish within {self.timeout.total_seconds():.0f}s"
                    ) from e
        except Exception:
            self.metrics.scrape_errors.inc()
            raise
        finally:
            self._in_pass = False

    async def tick(self) -> bool:
        """Handle one timer tick; return whether a pass was attempted."""
        state = self.scrape_state
        if state.skip_count > 0:
            state.skip_count -= 1
            self.metrics.skipped_scrapes.inc()
            self.metrics.backoff_skip_remaining.set(state.skip_count)
            logger.info(f"Skipping scrape after rate limiting, {state.skip_count} more to skip")
            return False

        try:
            await self.run_pass()
        except RateLimitedError as e:
            state.rate_limit_count += 1
            state.skip_count = state.rate_limit_count
            self.metrics.rate_limited.inc()
            logger.warning(
                f"Rate limited by Cloudflare ({state.rate_limit_count} in a row), "
                f"skipping next {state.skip_count} scrape(s): {e}"
            )
        except CollectorError as e:
            # Not fatal: the counters only live in memory. Alert on scrape errors.
            logger.error(f"Scrape failed: {e}")
        else:
            if state.rate_limit_count:
                logger.info(f"Recovered after {state.rate_limit_count} rate limited scrape(s)")
            state.rate_limit_count = 0
            state.skip_count = 0

        self.metrics.backoff_skip_remaining.set(state.skip_count)
        return True

    async def run(self):
        """Tick every ``interval`` until cancelled or stopped."""
        loop = asyncio.get_running_loop()
        interval = self.interval.total_seconds()
        next_tick = loop.time() + interval
        self.running = True

        while self.running:
            await asyncio.sleep(max(0.0, next_tick - loop.time()))
            try:
                await self.tick()
            except Exception as e:
                logger.error(f"Unexpected error in scrape loop: {e}", exc_info=True)

            # Ticks that fell due while a pass was running are dropped.
            next_tick += interval
            while next_tick <= loop.time():
                next_tick += interval

    def stop(self):
        self.running = False
