"""Tick scheduler for the Clawfolio runner.

This module provides the RunnerScheduler class that drives the
simulation across the whole bot fleet: one best-effort boot tick, then a
repeating tick at a fixed interval. Ticks never overlap; a tick that is
requested while another is running is refused.

Tick flow:
    latest height + roster size → process_bot(0..N-1) → watermarks
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from clawfolio_runner.chain.reader import ChainReader, create_chain_reader
from clawfolio_runner.chain.retry import RetryPolicy, retry_call
from clawfolio_runner.config import Settings, get_settings
from clawfolio_runner.simulation.engine import BotOutcome, SimulationEngine
from clawfolio_runner.storage.database import DatabaseManager
from clawfolio_runner.storage.repos import (
    LAST_TICK_TS_KEY,
    LATEST_BLOCK_KEY,
    RunnerStateRepository,
)

logger = logging.getLogger(__name__)


class TickInProgressError(RuntimeError):
    """Raised when a tick is requested while another one is running."""


class SchedulerState(str, Enum):
    """Whether a tick is currently executing."""

    IDLE = "idle"
    TICKING = "ticking"


class SchedulerLifecycle(str, Enum):
    """Scheduler lifecycle states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass(frozen=True)
class TickSummary:
    """Outcome of one tick."""

    indexed_bots: int
    updated_perf: int
    ts: int
    skipped: int = 0
    errors: int = 0


@dataclass
class SchedulerStats:
    """Statistics for the scheduler."""

    started_at: datetime | None = None
    ticks_completed: int = 0
    ticks_skipped: int = 0
    ticks_failed: int = 0
    bot_errors: int = 0
    last_summary: TickSummary | None = None
    last_error: str | None = None


def _unix_now() -> int:
    return int(time.time())


class RunnerScheduler:
    """Drives simulation ticks over the bot roster.

    Example:
        ```python
        from clawfolio_runner.config import get_settings
        from clawfolio_runner.scheduler import RunnerScheduler

        scheduler = RunnerScheduler(get_settings())
        await scheduler.start()
        summary = await scheduler.tick()
        await scheduler.stop()
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        reader: ChainReader | None = None,
        db: DatabaseManager | None = None,
        clock: Callable[[], int] | None = None,
    ) -> None:
        """Initialize the scheduler.

        Args:
            settings: Application settings. If not provided, uses get_settings().
            reader: Chain reader. Built from settings when omitted.
            db: Database manager. Built from settings when omitted.
            clock: Returns the current UNIX time in seconds.
        """
        self._settings = settings or get_settings()
        self._reader: ChainReader = reader or create_chain_reader(self._settings)
        self._db = db or DatabaseManager(self._settings.database_url)
        self._clock = clock or _unix_now
        self._retry_policy = RetryPolicy.from_settings(self._settings.retry)
        self._engine = SimulationEngine.from_settings(self._settings, self._reader, self._db)

        self._lifecycle = SchedulerLifecycle.STOPPED
        self._state = SchedulerState.IDLE
        self._stats = SchedulerStats()

        self._tick_lock = asyncio.Lock()
        self._stop_event: asyncio.Event | None = None
        self._loop_task: asyncio.Task[None] | None = None

    @property
    def state(self) -> SchedulerState:
        """Whether a tick is running right now."""
        return self._state

    @property
    def lifecycle(self) -> SchedulerLifecycle:
        return self._lifecycle

    @property
    def stats(self) -> SchedulerStats:
        return self._stats

    @property
    def db(self) -> DatabaseManager:
        return self._db

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def is_running(self) -> bool:
        return self._lifecycle == SchedulerLifecycle.RUNNING

    async def start(self) -> None:
        """Initialize storage and arm the timer task.

        The timer task runs a best-effort boot tick before its first
        interval; its failure is logged and the timer keeps going. This
        method returns without waiting for the boot tick. With
        ``RUNNER_DISABLE_LOOP`` neither the boot tick nor the timer runs;
        ticks then only happen on demand.

        Raises:
            RuntimeError: If the scheduler is not stopped.
        """
        if self._lifecycle != SchedulerLifecycle.STOPPED:
            raise RuntimeError(f"Cannot start scheduler in state {self._lifecycle}")

        self._lifecycle = SchedulerLifecycle.STARTING
        self._stop_event = asyncio.Event()
        logger.info("Starting scheduler...")

        try:
            await self._db.init_schema_async()
        except Exception as e:
            self._lifecycle = SchedulerLifecycle.ERROR
            self._stats.last_error = str(e)
            logger.error("Failed to start scheduler: %s", e)
            await self._cleanup()
            raise

        self._stats.started_at = datetime.now(UTC)
        self._lifecycle = SchedulerLifecycle.RUNNING

        if self._settings.server.disable_loop:
            logger.info("Tick loop disabled (RUNNER_DISABLE_LOOP); waiting for admin ticks")
            return

        self._loop_task = asyncio.create_task(self._run_tick_loop())
        logger.info(
            "Scheduler started (interval=%ds)", self._settings.simulation.tick_interval_seconds
        )

    async def stop(self) -> None:
        """Stop the timer and release resources.

        A tick already in flight is allowed to finish first.
        """
        if self._lifecycle == SchedulerLifecycle.STOPPED:
            return

        self._lifecycle = SchedulerLifecycle.STOPPING
        logger.info("Stopping scheduler...")

        if self._stop_event:
            self._stop_event.set()

        async with self._tick_lock:
            pass

        if self._loop_task:
            self._loop_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._loop_task
            self._loop_task = None

        await self._cleanup()
        self._lifecycle = SchedulerLifecycle.STOPPED
        logger.info("Scheduler stopped")

    async def run_once(self) -> TickSummary:
        """Run a single tick without arming the timer, then release resources."""
        try:
            await self._db.init_schema_async()
            return await self.tick()
        finally:
            await self._cleanup()

    async def _cleanup(self) -> None:
        """Clean up resources."""
        try:
            await self._reader.aclose()
        except Exception as e:
            logger.warning("Failed to close chain reader: %s", e)
        await self._db.dispose_async()
        logger.debug("Resources cleaned up")

    async def _boot_tick(self) -> None:
        try:
            summary = await self.tick()
            logger.info(
                "Boot tick complete: indexed=%d perf=%d", summary.indexed_bots, summary.updated_perf
            )
        except TickInProgressError:
            logger.info("Boot tick skipped; a tick is already in progress")
        except Exception as e:
            logger.error("Boot tick failed: %s", e)

    async def _run_tick_loop(self) -> None:
        if not self._stop_event:
            return

        # start() has already returned; the boot tick never blocks it
        await self._boot_tick()

        interval = self._settings.simulation.tick_interval_seconds
        while not self._stop_event.is_set():
            try:
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
                    break
                except TimeoutError:
                    pass

                summary = await self.tick()
                logger.info(
                    "Tick complete: indexed=%d perf=%d skipped=%d errors=%d",
                    summary.indexed_bots,
                    summary.updated_perf,
                    summary.skipped,
                    summary.errors,
                )
            except asyncio.CancelledError:
                break
            except TickInProgressError:
                logger.info("Previous tick still running; skipping this interval")
            except Exception as e:
                logger.exception("Tick failed: %s", e)

    async def tick(self) -> TickSummary:
        """Process every bot once and write the tick watermarks.

        Per-bot failures are logged and counted; they never abort the
        tick and are not retried until the next one.

        Returns:
            Counts of processed, skipped and failed bots.

        Raises:
            TickInProgressError: If another tick is still running.
        """
        if self._tick_lock.locked():
            self._stats.ticks_skipped += 1
            raise TickInProgressError("A tick is already in progress")

        async with self._tick_lock:
            self._state = SchedulerState.TICKING
            try:
                summary = await self._tick()
            except Exception as e:
                self._stats.ticks_failed += 1
                self._stats.last_error = str(e)
                raise
            finally:
                self._state = SchedulerState.IDLE

        self._stats.ticks_completed += 1
        self._stats.bot_errors += summary.errors
        self._stats.last_summary = summary
        return summary

    async def _tick(self) -> TickSummary:
        now = self._clock()
        latest_block = await retry_call(
            self._reader.get_latest_block_height, self._retry_policy, label="blockNumber"
        )
        roster = await retry_call(self._reader.get_roster_size, self._retry_policy, label="botCount")
        max_bots = self._settings.chain.max_bots
        bot_count = min(roster, max_bots) if max_bots else roster

        indexed = skipped = errors = 0
        for bot_id in range(bot_count):
            try:
                outcome = await self._engine.process_bot(bot_id, now, latest_block)
            except Exception:
                errors += 1
                logger.exception("Tick failed for bot %d", bot_id)
                continue
            if outcome == BotOutcome.SKIPPED:
                skipped += 1
            else:
                indexed += 1

        async with self._db.get_async_session() as session:
            runner_state = RunnerStateRepository(session)
            await runner_state.set(LAST_TICK_TS_KEY, now)
            await runner_state.set(LATEST_BLOCK_KEY, latest_block)

        return TickSummary(
            indexed_bots=indexed,
            updated_perf=indexed,
            ts=now,
            skipped=skipped,
            errors=errors,
        )

    async def run(self) -> None:
        """Start the scheduler and run until stopped."""
        await self.start()

        try:
            if self._stop_event:
                await self._stop_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            await self.stop()

    async def __aenter__(self) -> RunnerScheduler:
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        await self.stop()
