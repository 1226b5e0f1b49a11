"""Retention sweep job handler."""

from __future__ import annotations

import logging

import anyio

from sla_cascade.db.session import SessionLocal
from sla_cascade.services import retention_service

logger = logging.getLogger(__name__)


def _run_sweep(session_factory) -> dict:
    with session_factory() as db:
        return retention_service.purge_finalized_assignments(db)


async def process_retention_sweep(session_factory=SessionLocal) -> dict:
    """Purge terminal cascade rows past the retention window."""
    stats = await anyio.to_thread.run_sync(_run_sweep, session_factory)
    logger.info(
        "Retention sweep complete (retention_days=%s deleted=%s)",
        stats.get("retention_days"),
        stats.get("deleted", 0),
    )
    return stats
