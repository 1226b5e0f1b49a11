"""Daily cascade report job handler."""

from __future__ import annotations

import logging

import anyio

from sla_cascade.db.session import SessionLocal
from sla_cascade.services import cascade_metrics_service

logger = logging.getLogger(__name__)


def _run_report(session_factory) -> dict:
    with session_factory() as db:
        return cascade_metrics_service.send_daily_report(db)


async def process_daily_report(session_factory=SessionLocal) -> dict:
    stats = await anyio.to_thread.run_sync(_run_report, session_factory)
    logger.info(
        "Daily report job complete (date=%s managers=%s sent=%s errors=%s)",
        stats.get("report_date"),
        stats.get("managers", 0),
        stats.get("sent", 0),
        len(stats.get("errors", [])),
    )
    return stats
