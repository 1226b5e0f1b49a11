"""Periodic job scheduling with single-flight execution.

Each job fires on a fixed cadence (interval or daily wall-clock time). A
firing that finds the previous run still in progress, here or on another
replica holding the Redis lock, is skipped.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta, timezone
from typing import Any
from zoneinfo import ZoneInfo

from redis.exceptions import LockError, RedisError

from sla_cascade.core.constants import SCHEDULER_LOCK_PREFIX
from sla_cascade.core.structured_logging import build_log_context

logger = logging.getLogger(__name__)

JobBody = Callable[[], Awaitable[Any]]


@dataclass
class JobState:
    runs: int = 0
    skipped: int = 0
    failures: int = 0
    running: bool = False
    last_started_at: datetime | None = None
    last_finished_at: datetime | None = None
    last_error: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "runs": self.runs,
            "skipped": self.skipped,
            "failures": self.failures,
            "running": self.running,
            "last_started_at": self.last_started_at.isoformat() if self.last_started_at else None,
            "last_finished_at": self.last_finished_at.isoformat() if self.last_finished_at else None,
            "last_error": self.last_error,
        }


@dataclass
class PeriodicJob:
    """A recurring job: every `interval_seconds`, or daily at `daily_at` in `timezone`."""

    name: str
    body: JobBody
    interval_seconds: float | None = None
    daily_at: time | None = None
    timezone: str = "UTC"
    state: JobState = field(default_factory=JobState)

    def __post_init__(self) -> None:
        if (self.interval_seconds is None) == (self.daily_at is None):
            raise ValueError(f"Job {self.name} needs exactly one of interval_seconds or daily_at")
        if self.interval_seconds is not None and self.interval_seconds <= 0:
            raise ValueError(f"Job {self.name} interval must be positive")

    def seconds_until_next_run(self, now: datetime) -> float:
        if self.interval_seconds is not None:
            return float(self.interval_seconds)
        tz = ZoneInfo(self.timezone)
        local = now.astimezone(tz)
        target = datetime.combine(local.date(), self.daily_at, tzinfo=tz)
        if target <= local:
            target = datetime.combine(local.date() + timedelta(days=1), self.daily_at, tzinfo=tz)
        return max((target.astimezone(timezone.utc) - now.astimezone(timezone.utc)).total_seconds(), 0.0)


class SingleFlightGuard:
    """
    In-process lock plus an optional Redis lock shared across replicas.

    `hold()` never waits: it yields False when the job is already running.
    """

    def __init__(self, name: str, ttl_seconds: int, redis_client=None):
        self.name = name
        self.ttl_seconds = ttl_seconds
        self.redis_client = redis_client
        self._lock = asyncio.Lock()

    @property
    def key(self) -> str:
        return f"{SCHEDULER_LOCK_PREFIX}{self.name}"

    @contextlib.asynccontextmanager
    async def hold(self) -> AsyncIterator[bool]:
        if self._lock.locked():
            yield False
            return
        async with self._lock:
            redis_lock = None
            acquired = True
            if self.redis_client is not None:
                redis_lock = self.redis_client.lock(self.key, timeout=self.ttl_seconds)
                try:
                    acquired = await redis_lock.acquire(blocking=False)
                except RedisError as exc:
                    # Redis unreachable: fall back to the in-process lock only
                    logger.warning("Scheduler lock %s unavailable: %s", self.key, type(exc).__name__)
                    redis_lock = None
            if not acquired:
                yield False
                return
            try:
                yield True
            finally:
                if redis_lock is not None:
                    try:
                        await redis_lock.release()
                    except (LockError, RedisError) as exc:
                        logger.warning("Failed to release scheduler lock %s: %s", self.key, type(exc).__name__)


async def run_once(job: PeriodicJob, guard: SingleFlightGuard) -> bool:
    """Run the job body if nobody else is. Returns False when skipped."""
    context = build_log_context(job=job.name)
    async with guard.hold() as acquired:
        if not acquired:
            job.state.skipped += 1
            logger.info("Job %s still running; skipping this run", job.name, extra=context)
            return False
        job.state.running = True
        job.state.last_started_at = datetime.now(timezone.utc)
        try:
            await job.body()
            job.state.runs += 1
            job.state.last_error = None
        except Exception as exc:
            job.state.failures += 1
            job.state.last_error = type(exc).__name__
            logger.exception("Job %s failed", job.name, extra=context)
        finally:
            job.state.running = False
            job.state.last_finished_at = datetime.now(timezone.utc)
    return True


async def run_periodic(
    job: PeriodicJob,
    guard: SingleFlightGuard,
    stop_event: asyncio.Event | None = None,
    run_immediately: bool = False,
) -> None:
    """Fire `job` on its cadence until cancelled or `stop_event` is set."""
    stop_event = stop_event or asyncio.Event()
    in_flight: set[asyncio.Task] = set()

    def _fire() -> None:
        task = asyncio.create_task(run_once(job, guard))
        in_flight.add(task)
        task.add_done_callback(in_flight.discard)

    logger.info("Scheduling job %s", job.name, extra=build_log_context(job=job.name))
    if run_immediately:
        _fire()
    try:
        while not stop_event.is_set():
            delay = job.seconds_until_next_run(datetime.now(timezone.utc))
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(stop_event.wait(), timeout=delay)
            if stop_event.is_set():
                break
            # Fire without awaiting so a slow run cannot drift the cadence
            _fire()
    finally:
        for task in list(in_flight):
            task.cancel()
        for task in list(in_flight):
            with contextlib.suppress(asyncio.CancelledError):
                await task
