"""CascadeLedger: durable assignment rows and their conditional-update operations.

Every status change is a compare-and-swap: an UPDATE guarded by the expected
current status. Losing a race returns False; it is not an error. Functions
here flush but never commit; the caller owns the transaction.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from sla_cascade.db.enums import (
    CascadeStatus,
    NotificationLevel,
    OPEN_CASCADE_STATUSES,
    TERMINAL_CASCADE_STATUSES,
)
from sla_cascade.db.models import CascadeAssignment, CascadeNotificationDelivery
from sla_cascade.schemas.automation import ConfigSnapshot
from sla_cascade.services.cascade_state import STATUS_LEVELS, ensure_transition
from sla_cascade.utils.business_hours import add_working_minutes

logger = logging.getLogger(__name__)


class LedgerError(Exception):
    """Base exception for cascade ledger errors."""

    pass


class PersistenceError(LedgerError):
    """The ledger could not be read or written."""

    pass


class DuplicateOpenAssignmentError(LedgerError):
    """The lead already has an active/warning/critical assignment."""

    def __init__(self, lead_id: uuid.UUID):
        super().__init__(f"Lead {lead_id} already has an open assignment")
        self.lead_id = lead_id


class AssignmentNotFoundError(LedgerError):
    """Assignment id does not exist."""

    pass


@dataclass(frozen=True)
class LedgerEntry:
    """Immutable read of one assignment, taken at scan time."""

    id: uuid.UUID
    lead_id: uuid.UUID
    consultant_id: uuid.UUID | None
    previous_assignment_id: uuid.UUID | None
    status: CascadeStatus
    assigned_at: datetime
    expires_at: datetime
    last_notified_level: int
    attempt_count: int
    config_snapshot: dict[str, Any]

    @classmethod
    def from_model(cls, row: CascadeAssignment) -> "LedgerEntry":
        return cls(
            id=row.id,
            lead_id=row.lead_id,
            consultant_id=row.consultant_id,
            previous_assignment_id=row.previous_assignment_id,
            status=CascadeStatus(row.status),
            assigned_at=row.assigned_at,
            expires_at=row.expires_at,
            last_notified_level=row.last_notified_level,
            attempt_count=row.attempt_count,
            config_snapshot=dict(row.config_snapshot or {}),
        )

    @property
    def snapshot(self) -> ConfigSnapshot:
        return ConfigSnapshot.model_validate(self.config_snapshot)


# =============================================================================
# Reads
# =============================================================================


def get_assignment(db: Session, assignment_id: uuid.UUID) -> CascadeAssignment:
    assignment = db.get(CascadeAssignment, assignment_id)
    if assignment is None:
        raise AssignmentNotFoundError(f"Assignment {assignment_id} not found")
    return assignment


def get_open_assignment(db: Session, lead_id: uuid.UUID) -> CascadeAssignment | None:
    return db.execute(
        select(CascadeAssignment).where(
            CascadeAssignment.lead_id == lead_id,
            CascadeAssignment.status.in_(OPEN_CASCADE_STATUSES),
        )
    ).scalar_one_or_none()


def get_pending_escalation(db: Session, lead_id: uuid.UUID) -> CascadeAssignment | None:
    """Latest escalated record of a lead still waiting on a manager."""
    return db.execute(
        select(CascadeAssignment)
        .where(
            CascadeAssignment.lead_id == lead_id,
            CascadeAssignment.status == CascadeStatus.ESCALATED.value,
        )
        .order_by(CascadeAssignment.assigned_at.desc())
        .limit(1)
    ).scalar_one_or_none()


def scan_due(db: Session, limit: int = 500) -> list[LedgerEntry]:
    """
    Snapshot every record the scheduler may need to act on.

    Open records (stage checks) first, then escalated records whose
    escalation notification has not been delivered yet. Each kind gets its
    own `limit`, so undeliverable escalations never crowd out open work.
    """
    try:
        open_rows = db.execute(
            select(CascadeAssignment)
            .where(CascadeAssignment.status.in_(OPEN_CASCADE_STATUSES))
            .order_by(CascadeAssignment.expires_at.asc())
            .limit(limit)
        ).scalars().all()
        escalated_rows = db.execute(
            select(CascadeAssignment)
            .where(
                CascadeAssignment.status == CascadeStatus.ESCALATED.value,
                CascadeAssignment.last_notified_level < NotificationLevel.ESCALATED.value,
            )
            .order_by(CascadeAssignment.escalated_at.asc())
            .limit(limit)
        ).scalars().all()
        return [LedgerEntry.from_model(row) for row in [*open_rows, *escalated_rows]]
    except SQLAlchemyError as exc:
        raise PersistenceError("Failed to scan cascade ledger") from exc


def chain_consultant_ids(db: Session, assignment_id: uuid.UUID) -> set[uuid.UUID]:
    """Consultants that already held this lead's cascade (walks previous links)."""
    seen: set[uuid.UUID] = set()
    consultants: set[uuid.UUID] = set()
    current: uuid.UUID | None = assignment_id
    while current is not None and current not in seen:
        seen.add(current)
        row = db.execute(
            select(CascadeAssignment.consultant_id, CascadeAssignment.previous_assignment_id)
            .where(CascadeAssignment.id == current)
        ).one_or_none()
        if row is None:
            break
        if row.consultant_id is not None:
            consultants.add(row.consultant_id)
        current = row.previous_assignment_id
    return consultants


# =============================================================================
# Writes
# =============================================================================


def create_assignment(
    db: Session,
    *,
    lead_id: uuid.UUID,
    consultant_id: uuid.UUID | None,
    snapshot: ConfigSnapshot,
    assigned_at: datetime,
    status: CascadeStatus = CascadeStatus.ACTIVE,
    attempt_count: int = 1,
    previous_assignment_id: uuid.UUID | None = None,
) -> CascadeAssignment:
    """
    Insert a new assignment with its deadline and frozen config.

    Raises DuplicateOpenAssignmentError when the lead already has an open
    record (checked up front and enforced by the partial unique index).
    """
    if status.value in OPEN_CASCADE_STATUSES and get_open_assignment(db, lead_id) is not None:
        raise DuplicateOpenAssignmentError(lead_id)

    assignment = CascadeAssignment(
        lead_id=lead_id,
        consultant_id=consultant_id,
        previous_assignment_id=previous_assignment_id,
        config_id=snapshot.config_id,
        status=status.value,
        assigned_at=assigned_at,
        expires_at=add_working_minutes(assigned_at, snapshot.first_contact_sla, snapshot.schedule),
        escalated_at=assigned_at if status == CascadeStatus.ESCALATED else None,
        last_notified_level=NotificationLevel.NONE.value,
        attempt_count=attempt_count,
        config_snapshot=snapshot.to_json(),
    )
    db.add(assignment)
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise DuplicateOpenAssignmentError(lead_id) from exc
    return assignment


def transition(
    db: Session,
    assignment_id: uuid.UUID,
    expected: CascadeStatus,
    target: CascadeStatus,
    **values: Any,
) -> bool:
    """
    Compare-and-swap the status of one assignment.

    Returns True if this call moved the record, False if the stored status
    was no longer `expected` (another writer won).
    """
    ensure_transition(expected, target)
    result = db.execute(
        update(CascadeAssignment)
        .where(
            CascadeAssignment.id == assignment_id,
            CascadeAssignment.status == expected.value,
        )
        .values(status=target.value, **values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


# =============================================================================
# Notification claims
# =============================================================================


def level_for_status(status: CascadeStatus) -> NotificationLevel:
    return STATUS_LEVELS.get(status, NotificationLevel.NONE)


def claim_notification(
    db: Session,
    assignment_id: uuid.UUID,
    level: NotificationLevel,
    now: datetime,
    claim_ttl_seconds: int,
) -> bool:
    """
    Claim the right to dispatch `level` for an assignment.

    Fails if the level (or a higher one) is already notified, or another
    dispatcher holds a claim younger than the TTL.
    """
    stale_before = now - timedelta(seconds=claim_ttl_seconds)
    result = db.execute(
        update(CascadeAssignment)
        .where(
            CascadeAssignment.id == assignment_id,
            CascadeAssignment.last_notified_level < level.value,
            or_(
                CascadeAssignment.notify_claim_level.is_(None),
                CascadeAssignment.notify_claimed_at < stale_before,
            ),
        )
        .values(notify_claim_level=level.value, notify_claimed_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def release_notification(
    db: Session,
    assignment_id: uuid.UUID,
    level: NotificationLevel,
    delivered: bool,
) -> None:
    """Clear the claim; advance `last_notified_level` only when fully delivered."""
    values: dict[str, Any] = {"notify_claim_level": None, "notify_claimed_at": None}
    stmt = update(CascadeAssignment).where(CascadeAssignment.id == assignment_id)
    if delivered:
        db.execute(
            stmt.where(CascadeAssignment.last_notified_level < level.value)
            .values(last_notified_level=level.value, **values)
            .execution_options(synchronize_session=False)
        )
    db.execute(stmt.values(**values).execution_options(synchronize_session=False))


def delivered_keys(db: Session, assignment_id: uuid.UUID, level: NotificationLevel) -> set[str]:
    return set(
        db.execute(
            select(CascadeNotificationDelivery.dedupe_key).where(
                CascadeNotificationDelivery.assignment_id == assignment_id,
                CascadeNotificationDelivery.level == level.value,
            )
        ).scalars().all()
    )


def record_delivery(
    db: Session,
    *,
    assignment_id: uuid.UUID,
    level: NotificationLevel,
    channel: str,
    recipient_id: uuid.UUID,
    dedupe_key: str,
    delivered_at: datetime,
) -> None:
    db.add(
        CascadeNotificationDelivery(
            assignment_id=assignment_id,
            level=level.value,
            channel=channel,
            recipient_id=recipient_id,
            dedupe_key=dedupe_key,
            delivered_at=delivered_at,
        )
    )
    db.flush()


# =============================================================================
# Retention
# =============================================================================


def purge_terminal(db: Session, cutoff: datetime) -> int:
    """Delete terminal assignments finalized before `cutoff`. Returns rows removed."""
    ids = list(
        db.execute(
            select(CascadeAssignment.id).where(
                CascadeAssignment.status.in_(TERMINAL_CASCADE_STATUSES),
                CascadeAssignment.finalized_at.is_not(None),
                CascadeAssignment.finalized_at < cutoff,
            )
        ).scalars().all()
    )
    if not ids:
        return 0

    db.execute(
        delete(CascadeNotificationDelivery)
        .where(CascadeNotificationDelivery.assignment_id.in_(ids))
        .execution_options(synchronize_session=False)
    )
    # Newer records may still point at a purged predecessor
    db.execute(
        update(CascadeAssignment)
        .where(CascadeAssignment.previous_assignment_id.in_(ids))
        .values(previous_assignment_id=None)
        .execution_options(synchronize_session=False)
    )
    result = db.execute(
        delete(CascadeAssignment)
        .where(
            CascadeAssignment.id.in_(ids),
            CascadeAssignment.status.in_(TERMINAL_CASCADE_STATUSES),
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount
