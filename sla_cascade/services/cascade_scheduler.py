"""CascadeScheduler tick: stage transitions, escalation and redistribution.

One tick scans the ledger and handles each record independently. Every
status write is a conditional update, so a tick that lost a race to
`mark_contacted` (or to another tick) simply skips the record.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.orm import Session

from sla_cascade.core.config import settings
from sla_cascade.core.structured_logging import build_log_context
from sla_cascade.db.enums import CascadeStatus, FinalizeReason, NotificationLevel
from sla_cascade.db.models import Client
from sla_cascade.schemas.automation import ConfigSnapshot
from sla_cascade.services import (
    assignment_service,
    automation_config_service,
    cascade_ledger,
    cascade_state,
)
from sla_cascade.services.cascade_ledger import LedgerEntry
from sla_cascade.services.notification_dispatcher import NotificationDispatcher, build_transport

logger = logging.getLogger(__name__)


def _new_stats() -> dict[str, Any]:
    return {
        "scanned": 0,
        "transitions": 0,
        "expired": 0,
        "redistributed": 0,
        "escalated": 0,
        "notified": 0,
        "conflicts": 0,
        "errors": [],
    }


def redistribution_snapshot(db: Session, entry: LedgerEntry) -> ConfigSnapshot:
    """
    Snapshot for the next attempt: the current active config when valid,
    otherwise the expiring record's own snapshot.
    """
    config = automation_config_service.get_active_config(db)
    if config is not None:
        try:
            automation_config_service.validate_config(config)
            return automation_config_service.build_snapshot(config)
        except automation_config_service.ConfigurationError as exc:
            logger.warning(
                "Active config invalid, redistributing with frozen snapshot: %s",
                exc,
                extra=build_log_context(assignment_id=entry.id),
            )
    return entry.snapshot


def _notify(
    db: Session,
    dispatcher: NotificationDispatcher,
    entry: LedgerEntry,
    level: NotificationLevel,
    now: datetime,
    stats: dict[str, Any],
) -> None:
    if entry.last_notified_level >= level:
        return
    if dispatcher.dispatch(db, entry, level, now):
        stats["notified"] += 1


def _expire(db: Session, entry: LedgerEntry, now: datetime, stats: dict[str, Any]) -> None:
    moved = cascade_ledger.transition(
        db,
        entry.id,
        entry.status,
        CascadeStatus.EXPIRED,
        finalized_at=now,
        finalize_reason=FinalizeReason.SLA_EXPIRED.value,
    )
    db.commit()
    if not moved:
        stats["conflicts"] += 1
        return
    stats["expired"] += 1
    logger.warning(
        "First-contact SLA breached (attempt=%s)",
        entry.attempt_count,
        extra=build_log_context(
            assignment_id=entry.id, lead_id=entry.lead_id, consultant_id=entry.consultant_id
        ),
    )


def _escalate(
    db: Session,
    dispatcher: NotificationDispatcher,
    entry: LedgerEntry,
    now: datetime,
    stats: dict[str, Any],
) -> None:
    moved = cascade_ledger.transition(
        db, entry.id, entry.status, CascadeStatus.ESCALATED, escalated_at=now
    )
    db.commit()
    if not moved:
        stats["conflicts"] += 1
        return
    stats["escalated"] += 1
    logger.warning(
        "No eligible consultant; lead escalated",
        extra=build_log_context(assignment_id=entry.id, lead_id=entry.lead_id),
    )
    # Always dispatched so the level is recorded; targets are empty when
    # escalate_to_manager is off
    _notify(db, dispatcher, entry, NotificationLevel.ESCALATED, now, stats)


def _redistribute(
    db: Session,
    dispatcher: NotificationDispatcher,
    entry: LedgerEntry,
    now: datetime,
    stats: dict[str, Any],
) -> None:
    snapshot = redistribution_snapshot(db, entry)
    lead = db.get(Client, entry.lead_id)
    excluded = cascade_ledger.chain_consultant_ids(db, entry.id)
    try:
        consultant = assignment_service.select_consultant(
            db,
            snapshot,
            region=lead.region if lead else None,
            specialty=lead.specialty if lead else None,
            exclude_ids=excluded,
            now=now,
        )
    except assignment_service.NoEligibleAgentError:
        db.rollback()
        _escalate(db, dispatcher, entry, now, stats)
        return

    moved = cascade_ledger.transition(
        db,
        entry.id,
        entry.status,
        CascadeStatus.REDISTRIBUTED,
        finalized_at=now,
        finalize_reason=FinalizeReason.REDISTRIBUTED.value,
        broker_id=consultant.id,
    )
    if not moved:
        db.rollback()
        stats["conflicts"] += 1
        return

    successor = cascade_ledger.create_assignment(
        db,
        lead_id=entry.lead_id,
        consultant_id=consultant.id,
        snapshot=snapshot,
        assigned_at=now,
        attempt_count=entry.attempt_count + 1,
        previous_assignment_id=entry.id,
    )
    if lead is not None:
        lead.assigned_to_user_id = consultant.id
    db.commit()
    stats["redistributed"] += 1
    logger.info(
        "Lead redistributed to consultant %s (attempt=%s)",
        consultant.id,
        successor.attempt_count,
        extra=build_log_context(assignment_id=entry.id, lead_id=entry.lead_id),
    )
    _notify(db, dispatcher, LedgerEntry.from_model(successor), NotificationLevel.ASSIGNED, now, stats)


def process_entry(
    db: Session,
    dispatcher: NotificationDispatcher,
    entry: LedgerEntry,
    now: datetime,
    stats: dict[str, Any],
) -> None:
    """Advance one record as far as its elapsed working time allows."""
    if entry.status == CascadeStatus.ESCALATED:
        # Escalation notification that failed on an earlier tick
        _notify(db, dispatcher, entry, NotificationLevel.ESCALATED, now, stats)
        return

    snapshot = entry.snapshot
    evaluation = cascade_state.evaluate(entry.status, entry.assigned_at, now, snapshot)

    if evaluation.stage == cascade_state.Stage.DUE or now >= entry.expires_at:
        if snapshot.auto_redistribute:
            _redistribute(db, dispatcher, entry, now, stats)
        else:
            _expire(db, entry, now, stats)
        return

    status = entry.status
    if evaluation.target is not None:
        moved = cascade_ledger.transition(db, entry.id, entry.status, evaluation.target)
        db.commit()
        if not moved:
            stats["conflicts"] += 1
            return
        stats["transitions"] += 1
        status = evaluation.target
        logger.info(
            "Assignment moved %s -> %s (elapsed=%.1f min)",
            entry.status.value,
            status.value,
            evaluation.elapsed_minutes,
            extra=build_log_context(assignment_id=entry.id, lead_id=entry.lead_id),
        )

    _notify(db, dispatcher, entry, cascade_ledger.level_for_status(status), now, stats)


def run_tick(
    db: Session,
    now: datetime | None = None,
    dispatcher: NotificationDispatcher | None = None,
    batch_size: int | None = None,
) -> dict[str, Any]:
    """
    Run one scheduler pass.

    Raises PersistenceError if the ledger scan fails (the whole tick is
    retried on the next run). Per-record failures are rolled back and
    collected in `errors`.
    """
    now = now or datetime.now(timezone.utc)
    dispatcher = dispatcher or NotificationDispatcher(build_transport(db))
    stats = _new_stats()

    entries = cascade_ledger.scan_due(db, limit=batch_size or settings.CASCADE_TICK_BATCH_SIZE)
    stats["scanned"] = len(entries)

    for entry in entries:
        try:
            process_entry(db, dispatcher, entry, now, stats)
        except Exception as exc:
            db.rollback()
            logger.exception(
                "Cascade tick failed for assignment",
                extra=build_log_context(assignment_id=entry.id, lead_id=entry.lead_id),
            )
            stats["errors"].append({"assignment_id": str(entry.id), "error": type(exc).__name__})

    return stats
