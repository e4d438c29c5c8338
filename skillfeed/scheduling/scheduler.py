"""
Ingestion Scheduler
===================

Periodic tick loop that dispatches due sources as independent jobs.

Features:
- Due set: not disabled, backoff expired, fetch interval elapsed, not running
- Oldest ``last_attempt_at`` first (never attempted first), ties by ID
- Global job semaphore and per-source single-flight guard
- Overall timeout per job; a job that times out or raises is recorded as a
  transient failure
- Graceful stop: in-flight jobs get a grace period, then are cancelled
"""

import asyncio
from datetime import datetime, timedelta
from typing import List, Optional, Set

from ..config.settings import SkillFeedSettings, get_settings
from ..database.models import JobOutcome, JobResult, Source, StrategyKind
from ..storage.base import SourceStore
from ..utils.clock import Clock, SystemClock
from ..utils.exceptions import ErrorKind, SkillFeedError, handle_exception
from ..utils.logging import get_logger_for_component
from .dispatcher import FeedStrategy, StrategyDispatcher, select_strategy
from .health import SourceHealthTracker
from .single_flight import SingleFlight


class Scheduler:
    """Schedules ingestion jobs for every registered source."""

    def __init__(
        self,
        store: SourceStore,
        dispatcher: StrategyDispatcher,
        tracker: SourceHealthTracker,
        settings: Optional[SkillFeedSettings] = None,
        clock: Optional[Clock] = None,
        single_flight: Optional[SingleFlight] = None,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.tracker = tracker
        self.settings = settings or get_settings()
        self.scheduler_settings = self.settings.scheduler
        self.clock = clock or SystemClock()
        self.single_flight = single_flight or SingleFlight()
        self.logger = get_logger_for_component("scheduler")

        self._semaphore = asyncio.Semaphore(self.scheduler_settings.max_concurrent_jobs)
        self._tasks: Set[asyncio.Task] = set()
        self._loop_task: Optional[asyncio.Task] = None
        self._running = False
        self._last_tick: Optional[datetime] = None
        self._jobs_completed = 0
        self._jobs_failed = 0

    def _fetch_interval(self, source: Source) -> timedelta:
        minutes = source.fetch_interval_minutes or self.scheduler_settings.default_fetch_interval_minutes
        return timedelta(minutes=minutes)

    def due_sources(self, now: datetime) -> List[Source]:
        """Sources that should get a job at ``now``, in dispatch order."""
        due = []
        for source in self.store.list_due(now):
            if self.single_flight.is_active(source.id):
                continue
            if source.last_attempt_at is not None and now - source.last_attempt_at < self._fetch_interval(source):
                continue
            due.append(source)

        def order(source: Source):
            last = source.last_attempt_at
            if last is None:
                return (0, 0.0, source.id)
            return (1, last.timestamp(), source.id)

        return sorted(due, key=order)

    def tick(self, now: Optional[datetime] = None) -> List[asyncio.Task]:
        """Dispatch every due source as its own task.

        Sources still running from an earlier tick are skipped.

        Returns:
            Tasks started by this tick
        """
        now = now or self.clock.now()
        self._last_tick = now
        started = []

        for source in self.due_sources(now):
            if not self.single_flight.try_acquire(source.id):
                continue
            task = asyncio.get_running_loop().create_task(
                self._run_job(source), name=f"job:{source.id}"
            )
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            started.append(task)

        if started:
            self.logger.info(
                f"Tick dispatched {len(started)} jobs",
                extra={"jobs": len(started), "in_flight": len(self.single_flight)},
            )
        return started

    async def run_once(self, now: Optional[datetime] = None) -> List[JobResult]:
        """Run one tick and wait for the jobs it started."""
        tasks = self.tick(now)
        if not tasks:
            return []
        results = await asyncio.gather(*tasks)
        return [result for result in results if result is not None]

    async def _run_job(self, source: Source) -> Optional[JobResult]:
        try:
            async with self._semaphore:
                current = self.store.load(source.id)
                if current is None or current.is_disabled:
                    return None

                try:
                    result = await asyncio.wait_for(
                        self.dispatcher.run(current),
                        timeout=self.scheduler_settings.job_timeout_seconds,
                    )
                except asyncio.TimeoutError:
                    result = self._failure_result(
                        current,
                        f"Job timed out after {self.scheduler_settings.job_timeout_seconds}s",
                    )
                    self.logger.warning(
                        f"Job for {current.id} timed out", extra={"source_id": current.id}
                    )
                    self.tracker.record(result)
                except Exception as e:
                    error = handle_exception(e, self.logger, "ingestion job", {"source_id": current.id})
                    result = self._failure_result(current, str(error))
                    try:
                        self.tracker.record(result)
                    except SkillFeedError as record_error:
                        handle_exception(
                            record_error, self.logger, "job outcome", {"source_id": current.id}
                        )

                self._jobs_completed += 1
                if not result.succeeded:
                    self._jobs_failed += 1
                return result
        finally:
            self.single_flight.release(source.id)

    def _failure_result(self, source: Source, error: str) -> JobResult:
        if isinstance(select_strategy(source), FeedStrategy):
            kind = StrategyKind.FEED
        else:
            kind = StrategyKind.SKILL
        return JobResult(
            source_id=source.id,
            strategy=kind,
            started_at=self.clock.now(),
            outcome=JobOutcome.TRANSIENT_FAILURE,
            error_kind=ErrorKind.TRANSIENT,
            error=error,
        )

    async def start(self) -> None:
        """Start the tick loop."""
        if self._running:
            self.logger.warning("Scheduler already running")
            return

        self._running = True
        self.logger.info(
            f"Starting scheduler (tick every {self.scheduler_settings.tick_interval_seconds}s, "
            f"max {self.scheduler_settings.max_concurrent_jobs} concurrent jobs)"
        )
        self._loop_task = asyncio.get_running_loop().create_task(self._tick_loop())

    async def _tick_loop(self) -> None:
        while self._running:
            try:
                self.tick()
            except SkillFeedError as e:
                handle_exception(e, self.logger, "scheduler tick")
            await asyncio.sleep(self.scheduler_settings.tick_interval_seconds)

    async def stop(self, grace: Optional[float] = None) -> None:
        """Stop ticking, give in-flight jobs ``grace`` seconds, cancel the rest."""
        grace = self.scheduler_settings.shutdown_grace_seconds if grace is None else grace
        self._running = False

        if self._loop_task is not None:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None

        pending = set(self._tasks)
        if pending:
            self.logger.info(f"Waiting up to {grace}s for {len(pending)} in-flight jobs")
            done, pending = await asyncio.wait(pending, timeout=grace)

        if pending:
            self.logger.warning(f"Cancelling {len(pending)} jobs still running after grace period")
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        self.logger.info("Scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    def get_status(self) -> dict:
        """Scheduler status snapshot."""
        return {
            "running": self._running,
            "last_tick": self._last_tick.isoformat() if self._last_tick else None,
            "in_flight": self.single_flight.active_keys(),
            "jobs_completed": self._jobs_completed,
            "jobs_failed": self._jobs_failed,
            "tick_interval_seconds": self.scheduler_settings.tick_interval_seconds,
            "max_concurrent_jobs": self.scheduler_settings.max_concurrent_jobs,
            "job_timeout_seconds": self.scheduler_settings.job_timeout_seconds,
        }
