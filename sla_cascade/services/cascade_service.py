"""Inbound engine operations: intake, contact, escalation resolution, reads."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from sla_cascade.core.structured_logging import build_log_context
from sla_cascade.db.enums import CascadeStatus, FinalizeReason, OPEN_CASCADE_STATUSES, Role
from sla_cascade.db.models import CascadeAssignment, Client, User
from sla_cascade.schemas.cascade import (
    AssignmentResult,
    CascadeAssignmentRead,
    EscalationResolution,
    LeadIntake,
)
from sla_cascade.services import (
    assignment_service,
    automation_config_service,
    cascade_ledger,
    cascade_state,
    identity_service,
)

logger = logging.getLogger(__name__)

MAX_CONTACT_RETRIES = 3


class CascadeServiceError(Exception):
    """Base exception for cascade service errors."""

    pass


class LeadNotFoundError(CascadeServiceError):
    """Client referenced by the intake does not exist."""

    pass


class InvalidConsultantError(CascadeServiceError):
    """Chosen user cannot receive leads."""

    pass


def _result(
    assignment: CascadeAssignment,
    *,
    created: bool,
    match=None,
    continuity: bool = False,
) -> AssignmentResult:
    return AssignmentResult(
        assignment=CascadeAssignmentRead.model_validate(assignment),
        created=created,
        is_recurring=bool(match and match.is_recurring),
        matched_client_id=match.client_id if match else None,
        continuity=continuity,
    )


def create_assignment(
    db: Session,
    intake: LeadIntake,
    now: datetime | None = None,
) -> AssignmentResult:
    """
    Assign an inbound lead.

    Recurring leads may keep their prior consultant; otherwise the
    AssignmentSelector picks one. With no eligible consultant the record is
    created already escalated so a manager picks it up.

    Raises:
        ConfigurationError: no valid active config (no new work is accepted)
        LeadNotFoundError: intake.client_id does not exist
    """
    now = now or datetime.now(timezone.utc)
    config = automation_config_service.require_active_config(db)
    snapshot = automation_config_service.build_snapshot(config)

    client = db.get(Client, intake.client_id)
    if client is None:
        raise LeadNotFoundError(f"Client {intake.client_id} not found")

    existing = cascade_ledger.get_open_assignment(db, client.id)
    if existing is None:
        # Repeat inquiries wait on the manager instead of opening a parallel attempt
        existing = cascade_ledger.get_pending_escalation(db, client.id)
    if existing is not None:
        return _result(existing, created=False)

    match = identity_service.resolve_identity(db, config, intake, now=now)
    consultant_id = match.previous_consultant_id
    continuity = consultant_id is not None

    if consultant_id is None:
        try:
            consultant = assignment_service.select_consultant(
                db,
                snapshot,
                region=intake.region or client.region,
                specialty=intake.specialty or client.specialty,
                now=now,
            )
            consultant_id = consultant.id
        except assignment_service.NoEligibleAgentError:
            consultant_id = None
    else:
        db.get(User, consultant_id).last_assigned_at = now

    status = CascadeStatus.ACTIVE if consultant_id else CascadeStatus.ESCALATED
    try:
        assignment = cascade_ledger.create_assignment(
            db,
            lead_id=client.id,
            consultant_id=consultant_id,
            snapshot=snapshot,
            assigned_at=now,
            status=status,
        )
    except cascade_ledger.DuplicateOpenAssignmentError:
        # Concurrent intake for the same lead won
        existing = cascade_ledger.get_open_assignment(db, client.id)
        if existing is None:
            raise
        return _result(existing, created=False)

    if consultant_id is not None:
        client.assigned_to_user_id = consultant_id
    db.commit()
    db.refresh(assignment)

    log_context = build_log_context(
        assignment_id=assignment.id, lead_id=client.id, consultant_id=consultant_id
    )
    if status == CascadeStatus.ESCALATED:
        logger.warning("Lead created escalated: no eligible consultant", extra=log_context)
    else:
        logger.info(
            "Lead assigned (recurring=%s continuity=%s)",
            match.is_recurring,
            continuity,
            extra=log_context,
        )
    return _result(assignment, created=True, match=match, continuity=continuity)


def mark_contacted(
    db: Session,
    assignment_id: uuid.UUID,
    now: datetime | None = None,
) -> CascadeAssignment:
    """
    Record first contact and complete the assignment.

    Idempotent. If the scheduler already closed the record (expired or
    redistributed) this is a no-op and the stored record is returned.
    """
    now = now or datetime.now(timezone.utc)
    assignment = cascade_ledger.get_assignment(db, assignment_id)

    for _ in range(MAX_CONTACT_RETRIES):
        current = CascadeStatus(assignment.status)
        if cascade_state.is_terminal(current):
            break
        moved = cascade_ledger.transition(
            db,
            assignment.id,
            current,
            CascadeStatus.COMPLETED,
            contacted_at=now,
            finalized_at=now,
            finalize_reason=FinalizeReason.CONTACTED.value,
        )
        db.commit()
        if moved:
            logger.info(
                "First contact recorded",
                extra=build_log_context(assignment_id=assignment.id, lead_id=assignment.lead_id),
            )
            break
        # A tick advanced the stage between read and write; re-read and retry
        db.refresh(assignment)

    db.refresh(assignment)
    return assignment


def resolve_escalation(
    db: Session,
    assignment_id: uuid.UUID,
    resolution: EscalationResolution,
    now: datetime | None = None,
) -> CascadeAssignment:
    """
    Manager decision on an escalated assignment: hand the lead to a chosen
    consultant (new attempt) or close it.

    Returns the assignment now responsible for the lead (the new one on
    reassignment, the closed one otherwise). If the lead already has an open
    attempt, the escalated record is closed as superseded and that attempt
    is returned.
    """
    now = now or datetime.now(timezone.utc)
    assignment = cascade_ledger.get_assignment(db, assignment_id)
    if assignment.status != CascadeStatus.ESCALATED.value:
        raise cascade_state.InvalidTransitionError(
            CascadeStatus(assignment.status), CascadeStatus.EXPIRED
        )

    if resolution.close:
        cascade_ledger.transition(
            db,
            assignment.id,
            CascadeStatus.ESCALATED,
            CascadeStatus.EXPIRED,
            finalized_at=now,
            finalize_reason=FinalizeReason.MANAGER_CLOSED.value,
        )
        db.commit()
        db.refresh(assignment)
        return assignment

    consultant = db.get(User, resolution.consultant_id)
    if consultant is None or not consultant.is_active or consultant.role != Role.CONSULTANT.value:
        raise InvalidConsultantError(f"User {resolution.consultant_id} cannot receive leads")

    open_assignment = cascade_ledger.get_open_assignment(db, assignment.lead_id)
    if open_assignment is not None:
        return _supersede(db, assignment, open_assignment, now)

    config = automation_config_service.get_active_config(db)
    snapshot = (
        automation_config_service.build_snapshot(config)
        if config is not None
        else automation_config_service.load_snapshot(assignment.config_snapshot)
    )

    moved = cascade_ledger.transition(
        db,
        assignment.id,
        CascadeStatus.ESCALATED,
        CascadeStatus.EXPIRED,
        finalized_at=now,
        finalize_reason=FinalizeReason.MANAGER_REASSIGNED.value,
        broker_id=consultant.id,
    )
    if not moved:
        db.rollback()
        db.refresh(assignment)
        return assignment

    try:
        successor = cascade_ledger.create_assignment(
            db,
            lead_id=assignment.lead_id,
            consultant_id=consultant.id,
            snapshot=snapshot,
            assigned_at=now,
            attempt_count=assignment.attempt_count + 1,
            previous_assignment_id=assignment.id,
        )
    except cascade_ledger.DuplicateOpenAssignmentError:
        # An intake opened a new attempt after the check above
        db.rollback()
        open_assignment = cascade_ledger.get_open_assignment(db, assignment.lead_id)
        if open_assignment is None:
            raise
        return _supersede(db, assignment, open_assignment, now)
    consultant.last_assigned_at = now
    client = db.get(Client, assignment.lead_id)
    if client is not None:
        client.assigned_to_user_id = consultant.id
    db.commit()
    db.refresh(successor)
    logger.info(
        "Escalation resolved by reassignment",
        extra=build_log_context(
            assignment_id=successor.id, lead_id=successor.lead_id, consultant_id=consultant.id
        ),
    )
    return successor


def _supersede(
    db: Session,
    escalated: CascadeAssignment,
    open_assignment: CascadeAssignment,
    now: datetime,
) -> CascadeAssignment:
    cascade_ledger.transition(
        db,
        escalated.id,
        CascadeStatus.ESCALATED,
        CascadeStatus.EXPIRED,
        finalized_at=now,
        finalize_reason=FinalizeReason.SUPERSEDED.value,
    )
    db.commit()
    logger.warning(
        "Escalation superseded by open assignment %s",
        open_assignment.id,
        extra=build_log_context(assignment_id=escalated.id, lead_id=escalated.lead_id),
    )
    db.refresh(escalated)
    db.refresh(open_assignment)
    return open_assignment


def list_consultant_queue(db: Session, consultant_id: uuid.UUID) -> list[CascadeAssignment]:
    """Open assignments of a consultant, most urgent first."""
    return list(
        db.execute(
            select(CascadeAssignment)
            .where(
                CascadeAssignment.consultant_id == consultant_id,
                CascadeAssignment.status.in_(OPEN_CASCADE_STATUSES),
            )
            .order_by(CascadeAssignment.expires_at.asc())
        ).scalars().all()
    )


def list_lead_history(db: Session, lead_id: uuid.UUID) -> list[CascadeAssignment]:
    """Every cascade attempt for a lead, oldest first."""
    return list(
        db.execute(
            select(CascadeAssignment)
            .where(CascadeAssignment.lead_id == lead_id)
            .order_by(CascadeAssignment.assigned_at.asc(), CascadeAssignment.attempt_count.asc())
        ).scalars().all()
    )
