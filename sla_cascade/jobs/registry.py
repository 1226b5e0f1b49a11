"""Job handler registry."""

from __future__ import annotations

from datetime import time
from typing import Awaitable, Callable, Mapping

from sla_cascade.core.config import settings
from sla_cascade.jobs.handlers import cascade, metrics, retention
from sla_cascade.jobs.scheduling import PeriodicJob

JobHandler = Callable[[], Awaitable[dict]]

CASCADE_TICK = "cascade_tick"
RETENTION_SWEEP = "retention_sweep"
DAILY_REPORT = "daily_report"
EXPIRING_SOON_CHECK = "expiring_soon_check"

JOB_HANDLERS: Mapping[str, JobHandler] = {
    CASCADE_TICK: cascade.process_cascade_tick,
    RETENTION_SWEEP: retention.process_retention_sweep,
    DAILY_REPORT: metrics.process_daily_report,
    EXPIRING_SOON_CHECK: cascade.process_expiring_soon_check,
}


def resolve_job_handler(name: str) -> JobHandler:
    handler = JOB_HANDLERS.get(name)
    if not handler:
        raise ValueError(f"Unknown job: {name}")
    return handler


def build_periodic_jobs() -> list[PeriodicJob]:
    """Cadences for every background job, from settings."""
    return [
        PeriodicJob(
            name=CASCADE_TICK,
            body=resolve_job_handler(CASCADE_TICK),
            interval_seconds=settings.CASCADE_TICK_INTERVAL_SECONDS,
        ),
        PeriodicJob(
            name=RETENTION_SWEEP,
            body=resolve_job_handler(RETENTION_SWEEP),
            interval_seconds=settings.RETENTION_SWEEP_INTERVAL_SECONDS,
        ),
        PeriodicJob(
            name=DAILY_REPORT,
            body=resolve_job_handler(DAILY_REPORT),
            daily_at=time(settings.DAILY_REPORT_HOUR, settings.DAILY_REPORT_MINUTE),
            timezone=settings.REPORT_TIMEZONE,
        ),
        PeriodicJob(
            name=EXPIRING_SOON_CHECK,
            body=resolve_job_handler(EXPIRING_SOON_CHECK),
            interval_seconds=settings.HEALTH_CHECK_INTERVAL_SECONDS,
        ),
    ]
