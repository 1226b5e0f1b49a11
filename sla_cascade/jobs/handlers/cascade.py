"""Cascade tick job handler."""

from __future__ import annotations

import logging

import anyio

from sla_cascade.db.session import SessionLocal
from sla_cascade.services import cascade_metrics_service, cascade_scheduler

logger = logging.getLogger(__name__)


def _run_tick(session_factory) -> dict:
    with session_factory() as db:
        return cascade_scheduler.run_tick(db)


def _run_health_check(session_factory) -> dict:
    with session_factory() as db:
        return cascade_metrics_service.check_expiring_soon(db)


async def process_cascade_tick(session_factory=SessionLocal) -> dict:
    """Run one scheduler tick in a worker thread with its own session."""
    stats = await anyio.to_thread.run_sync(_run_tick, session_factory)
    logger.info(
        "Cascade tick complete (scanned=%s transitions=%s expired=%s redistributed=%s "
        "escalated=%s notified=%s conflicts=%s errors=%s)",
        stats.get("scanned", 0),
        stats.get("transitions", 0),
        stats.get("expired", 0),
        stats.get("redistributed", 0),
        stats.get("escalated", 0),
        stats.get("notified", 0),
        stats.get("conflicts", 0),
        len(stats.get("errors", [])),
    )
    return stats


async def process_expiring_soon_check(session_factory=SessionLocal) -> dict:
    """Count open assignments about to breach their SLA."""
    return await anyio.to_thread.run_sync(_run_health_check, session_factory)
