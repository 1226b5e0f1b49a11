"""AssignmentSelector: pick the next consultant for a lead."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from sla_cascade.db.enums import DistributionMethod, OPEN_CASCADE_STATUSES, Role
from sla_cascade.db.models import CascadeAssignment, User
from sla_cascade.schemas.automation import ConfigSnapshot
from sla_cascade.utils.business_hours import MIDNIGHT

logger = logging.getLogger(__name__)

_NEVER = datetime.min.replace(tzinfo=timezone.utc)


class AssignmentSelectorError(Exception):
    """Base exception for assignment selection errors."""

    pass


class NoEligibleAgentError(AssignmentSelectorError):
    """No consultant passed the configured filters."""

    pass


def is_within_working_hours(user: User, now: datetime, default_timezone: str) -> bool:
    """
    Check a consultant's weekly working rows.

    A consultant without rows is always in hours. End 00:00 (or empty)
    means the window runs to midnight.
    """
    rows = user.working_hours
    if not rows:
        return True
    local = now.astimezone(ZoneInfo(user.timezone or default_timezone))
    current = local.time()
    for row in rows:
        if row.weekday != local.weekday():
            continue
        if row.all_day:
            return True
        start = row.start_time or MIDNIGHT
        end = row.end_time
        if current < start:
            continue
        if end is None or end == MIDNIGHT or current < end:
            return True
    return False


def count_open_assignments(db: Session, user_ids: Iterable[uuid.UUID]) -> dict[uuid.UUID, int]:
    """Open (active/warning/critical) assignment count per consultant."""
    ids = list(user_ids)
    if not ids:
        return {}
    rows = db.execute(
        select(CascadeAssignment.consultant_id, func.count(CascadeAssignment.id))
        .where(
            CascadeAssignment.consultant_id.in_(ids),
            CascadeAssignment.status.in_(OPEN_CASCADE_STATUSES),
        )
        .group_by(CascadeAssignment.consultant_id)
    ).all()
    counts = {user_id: 0 for user_id in ids}
    counts.update({user_id: count for user_id, count in rows})
    return counts


def _rotation_ids(snapshot: ConfigSnapshot) -> list[uuid.UUID]:
    return [uuid.UUID(str(user_id)) for user_id in snapshot.rotation_user_ids]


def get_candidate_pool(
    db: Session,
    snapshot: ConfigSnapshot,
    *,
    region: str | None = None,
    specialty: str | None = None,
    exclude_ids: Iterable[uuid.UUID] = (),
    now: datetime | None = None,
) -> list[User]:
    """Active consultants that pass every enabled filter, minus excluded ids."""
    now = now or datetime.now(timezone.utc)
    method = snapshot.distribution_method
    use_specialty = snapshot.use_specialty or method == DistributionMethod.SPECIALTY
    use_availability = snapshot.use_availability or method == DistributionMethod.AVAILABILITY
    use_region = snapshot.use_region or method == DistributionMethod.REGION

    stmt = select(User).where(User.is_active.is_(True), User.role == Role.CONSULTANT.value)
    rotation = _rotation_ids(snapshot)
    if rotation:
        stmt = stmt.where(User.id.in_(rotation))
    excluded = set(exclude_ids)
    if excluded:
        stmt = stmt.where(User.id.notin_(excluded))
    if use_specialty and specialty:
        stmt = stmt.where(func.lower(User.specialty) == specialty.strip().lower())
    if use_region and region:
        stmt = stmt.where(func.lower(User.region) == region.strip().lower())
    if use_availability:
        stmt = stmt.where(User.is_available.is_(True))

    users = list(db.execute(stmt).scalars().all())
    if use_availability:
        users = [user for user in users if is_within_working_hours(user, now, snapshot.timezone)]
    return users


def _pick_by_volume(db: Session, pool: list[User]) -> User:
    counts = count_open_assignments(db, [user.id for user in pool])
    return min(
        pool,
        key=lambda user: (counts.get(user.id, 0), user.last_assigned_at or _NEVER, str(user.id)),
    )


def _pick_round_robin(db: Session, snapshot: ConfigSnapshot, pool: list[User]) -> User:
    rotation = _rotation_ids(snapshot)
    if rotation:
        by_id = {user.id: user for user in pool}
        ordered = [by_id[user_id] for user_id in rotation if user_id in by_id]
    else:
        ordered = sorted(pool, key=lambda user: (user.created_at or _NEVER, str(user.id)))
    order_ids = rotation or [user.id for user in ordered]

    # Rotation advances on first-attempt assignments only
    last_consultant_id = db.execute(
        select(CascadeAssignment.consultant_id)
        .where(
            CascadeAssignment.attempt_count == 1,
            CascadeAssignment.consultant_id.in_(order_ids),
        )
        .order_by(CascadeAssignment.assigned_at.desc())
        .limit(1)
    ).scalar_one_or_none()

    if last_consultant_id is None or last_consultant_id not in order_ids:
        return ordered[0]
    start = order_ids.index(last_consultant_id) + 1
    eligible = {user.id for user in ordered}
    for offset in range(len(order_ids)):
        candidate = order_ids[(start + offset) % len(order_ids)]
        if candidate in eligible:
            return next(user for user in ordered if user.id == candidate)
    return ordered[0]


def select_consultant(
    db: Session,
    snapshot: ConfigSnapshot,
    *,
    region: str | None = None,
    specialty: str | None = None,
    exclude_ids: Iterable[uuid.UUID] = (),
    now: datetime | None = None,
) -> User:
    """
    Choose the next consultant and stamp `last_assigned_at`.

    Raises NoEligibleAgentError when the filtered pool is empty. Callers
    escalate instead of dropping the lead.
    """
    now = now or datetime.now(timezone.utc)
    pool = get_candidate_pool(
        db,
        snapshot,
        region=region,
        specialty=specialty,
        exclude_ids=exclude_ids,
        now=now,
    )
    if not pool:
        raise NoEligibleAgentError(
            f"No eligible consultant (method={snapshot.distribution_method.value})"
        )

    if snapshot.distribution_method == DistributionMethod.ROUND_ROBIN:
        chosen = _pick_round_robin(db, snapshot, pool)
    else:
        chosen = _pick_by_volume(db, pool)

    chosen.last_assigned_at = now
    db.flush()
    logger.info(
        "Selected consultant %s via %s (pool=%s)",
        chosen.id,
        snapshot.distribution_method.value,
        len(pool),
    )
    return chosen
