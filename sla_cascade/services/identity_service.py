"""IdentityResolver: recurring-lead detection and consultant continuity."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from sla_cascade.core.config import settings
from sla_cascade.db.enums import (
    CascadeStatus,
    ClientStatus,
    IdentityField,
    Role,
    TERMINAL_CLIENT_STATUSES,
)
from sla_cascade.db.models import AutomationConfig, CascadeAssignment, Client, User
from sla_cascade.schemas.cascade import IdentityMatch, LeadIntake
from sla_cascade.utils.normalization import (
    normalize_document,
    normalize_email,
    normalize_phone,
    phone_match_variants,
)

logger = logging.getLogger(__name__)

# Prior outcomes that void continuity when based_on_outcome is set
NEGATIVE_ASSIGNMENT_STATUSES = (CascadeStatus.EXPIRED.value,)
NEGATIVE_CLIENT_STATUSES = (ClientStatus.LOST.value,)


def _enabled_identifiers(config: AutomationConfig, order: list[str]) -> list[str]:
    flags = {
        IdentityField.EMAIL.value: config.identify_by_email,
        IdentityField.PHONE.value: config.identify_by_phone,
        IdentityField.DOCUMENT.value: config.identify_by_document,
    }
    return [name for name in order if flags.get(name)]


def _identifier_clause(field: str, intake: LeadIntake):
    if field == IdentityField.EMAIL.value:
        email = normalize_email(intake.email)
        return Client.email_normalized == email if email else None
    if field == IdentityField.PHONE.value:
        variants = phone_match_variants(normalize_phone(intake.phone))
        return Client.phone_normalized.in_(variants) if variants else None
    if field == IdentityField.DOCUMENT.value:
        document = normalize_document(intake.document)
        return Client.document_normalized == document if document else None
    return None


def find_matching_client(
    db: Session,
    config: AutomationConfig,
    intake: LeadIntake,
    now: datetime | None = None,
    match_order: list[str] | None = None,
) -> tuple[Client, str] | None:
    """
    Find an existing client matching the intake by the first enabled identifier.

    Only non-terminal clients, or terminal ones whose status changed within
    the continuity window, are eligible. The intake's own client row is skipped.
    """
    now = now or datetime.now(timezone.utc)
    order = match_order or settings.identity_match_order
    recent_cutoff = now - timedelta(days=config.continuity_window_days)

    eligible = or_(
        Client.status.notin_(TERMINAL_CLIENT_STATUSES),
        and_(Client.status.in_(TERMINAL_CLIENT_STATUSES), Client.status_changed_at >= recent_cutoff),
    )

    for field in _enabled_identifiers(config, order):
        clause = _identifier_clause(field, intake)
        if clause is None:
            continue
        client = db.execute(
            select(Client)
            .where(clause, eligible, Client.id != intake.client_id)
            .order_by(Client.status_changed_at.desc(), Client.created_at.desc())
            .limit(1)
        ).scalar_one_or_none()
        if client is not None:
            return client, field
    return None


def _latest_assignment(db: Session, client_id: uuid.UUID) -> CascadeAssignment | None:
    return db.execute(
        select(CascadeAssignment)
        .where(
            CascadeAssignment.lead_id == client_id,
            CascadeAssignment.consultant_id.is_not(None),
        )
        .order_by(CascadeAssignment.assigned_at.desc())
        .limit(1)
    ).scalar_one_or_none()


def _final_consultant_id(assignment: CascadeAssignment) -> uuid.UUID | None:
    # A redistributed record points at the consultant the lead moved to
    if assignment.status == CascadeStatus.REDISTRIBUTED.value and assignment.broker_id:
        return assignment.broker_id
    return assignment.consultant_id


def decide_continuity(
    db: Session,
    config: AutomationConfig | None,
    client: Client,
    now: datetime | None = None,
) -> tuple[uuid.UUID | None, uuid.UUID | None]:
    """
    Decide whether a recurring lead keeps its prior consultant.

    Returns (consultant_id, prior_assignment_id); consultant_id is None when
    the lead must go through the AssignmentSelector.
    """
    now = now or datetime.now(timezone.utc)
    if config is None or not config.keep_same_consultant or config.assign_new_consultant:
        return None, None

    prior = _latest_assignment(db, client.id)
    if prior is None:
        # No ledger history; fall back to the CRM owner
        consultant_id = client.assigned_to_user_id
        reference_at = client.status_changed_at
        negative = client.status in NEGATIVE_CLIENT_STATUSES
        prior_id = None
    else:
        consultant_id = _final_consultant_id(prior)
        reference_at = prior.finalized_at or prior.assigned_at
        negative = (
            prior.status in NEGATIVE_ASSIGNMENT_STATUSES
            or client.status in NEGATIVE_CLIENT_STATUSES
        )
        prior_id = prior.id

    if consultant_id is None:
        return None, None

    if config.based_on_time:
        window = timedelta(days=config.continuity_window_days)
        if reference_at is None or now - reference_at > window:
            return None, None

    if config.based_on_outcome and negative:
        return None, None

    consultant = db.get(User, consultant_id)
    if consultant is None or not consultant.is_active or consultant.role != Role.CONSULTANT.value:
        return None, None
    return consultant.id, prior_id


def resolve_identity(
    db: Session,
    config: AutomationConfig | None,
    intake: LeadIntake,
    now: datetime | None = None,
) -> IdentityMatch:
    """Classify an intake as new or recurring, with the continuity decision applied."""
    if config is None:
        return IdentityMatch()

    found = find_matching_client(db, config, intake, now=now)
    if found is None:
        return IdentityMatch()

    client, field = found
    consultant_id, prior_id = decide_continuity(db, config, client, now=now)
    logger.info(
        "Recurring lead matched on %s (client=%s continuity=%s)",
        field,
        client.id,
        consultant_id is not None,
    )
    return IdentityMatch(
        is_recurring=True,
        client_id=client.id,
        matched_on=field,
        previous_consultant_id=consultant_id,
        previous_assignment_id=prior_id,
    )
