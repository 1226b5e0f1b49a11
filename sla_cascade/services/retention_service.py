"""RetentionSweeper: purge old terminal cascade rows."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from sla_cascade.core.config import settings
from sla_cascade.services import automation_config_service, cascade_ledger

logger = logging.getLogger(__name__)


def get_retention_days(db: Session) -> int:
    """Retention window from the active config, falling back to settings."""
    config = automation_config_service.get_active_config(db)
    if config is not None and config.retention_days and config.retention_days > 0:
        return config.retention_days
    return settings.CASCADE_RETENTION_DAYS


def purge_finalized_assignments(
    db: Session,
    now: datetime | None = None,
    retention_days: int | None = None,
) -> dict:
    """
    Delete completed/expired/redistributed rows finalized before the cutoff.

    Open and escalated rows are never touched, whatever their age.

    Returns stats: {retention_days, cutoff, deleted}
    """
    now = now or datetime.now(timezone.utc)
    days = retention_days or get_retention_days(db)
    cutoff = now - timedelta(days=days)
    try:
        deleted = cascade_ledger.purge_terminal(db, cutoff)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise cascade_ledger.PersistenceError("Retention sweep failed") from exc

    if deleted:
        logger.info("Purged %s cascade assignments finalized before %s", deleted, cutoff.isoformat())
    return {"retention_days": days, "cutoff": cutoff.isoformat(), "deleted": deleted}
