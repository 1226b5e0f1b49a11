"""
Background worker for the SLA cascade jobs.

Usage:
    python -m sla_cascade.worker

Runs the cascade tick, retention sweep, daily report and near-expiry probe
on their own cadences. Safe to run on several replicas when REDIS_URL is
set: each job then holds a shared lock while it runs.
"""

import asyncio
import logging

from sla_cascade.core.config import settings
from sla_cascade.core.redis_client import close_async_redis_client, get_async_redis_client
from sla_cascade.jobs.registry import CASCADE_TICK, build_periodic_jobs
from sla_cascade.jobs.scheduling import PeriodicJob, SingleFlightGuard, run_periodic

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

# Populated by worker_loop; read by the /health/jobs endpoint
JOBS: list[PeriodicJob] = []


def build_guards(jobs: list[PeriodicJob]) -> dict[str, SingleFlightGuard]:
    redis_client = get_async_redis_client()
    if redis_client is None:
        logger.info("REDIS_URL not set - single-flight is per process only")
    return {
        job.name: SingleFlightGuard(
            job.name, settings.SCHEDULER_LOCK_TTL_SECONDS, redis_client=redis_client
        )
        for job in jobs
    }


async def worker_loop(stop_event: asyncio.Event | None = None) -> None:
    """Main worker loop - schedules every periodic job until stopped."""
    stop_event = stop_event or asyncio.Event()
    jobs = build_periodic_jobs()
    JOBS[:] = jobs
    guards = build_guards(jobs)
    logger.info(
        "Worker %s starting (tick interval: %ss, jobs: %s)",
        settings.WORKER_NAME,
        settings.CASCADE_TICK_INTERVAL_SECONDS,
        ", ".join(job.name for job in jobs),
    )
    try:
        await asyncio.gather(
            *(
                run_periodic(
                    job,
                    guards[job.name],
                    stop_event=stop_event,
                    run_immediately=job.name == CASCADE_TICK,
                )
                for job in jobs
            )
        )
    finally:
        await close_async_redis_client()
        logger.info("Worker %s stopped", settings.WORKER_NAME)


def jobs_status() -> dict:
    return {job.name: job.state.as_dict() for job in JOBS}


def main() -> None:
    try:
        asyncio.run(worker_loop())
    except KeyboardInterrupt:
        logger.info("Worker interrupted")


if __name__ == "__main__":
    main()
