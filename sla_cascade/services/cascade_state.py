"""Cascade assignment state machine.

Statuses only move forward:

    active → warning → critical → {escalated | redistributed} → {completed | expired}

A missed tick may skip intermediate stages, and contact can complete any
open or escalated record.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from sla_cascade.db.enums import CascadeStatus, NotificationLevel
from sla_cascade.schemas.automation import ConfigSnapshot
from sla_cascade.utils.business_hours import working_minutes_between

S = CascadeStatus

ALLOWED_TRANSITIONS: dict[CascadeStatus, frozenset[CascadeStatus]] = {
    S.ACTIVE: frozenset(
        {S.WARNING, S.CRITICAL, S.COMPLETED, S.EXPIRED, S.ESCALATED, S.REDISTRIBUTED}
    ),
    S.WARNING: frozenset({S.CRITICAL, S.COMPLETED, S.EXPIRED, S.ESCALATED, S.REDISTRIBUTED}),
    S.CRITICAL: frozenset({S.COMPLETED, S.EXPIRED, S.ESCALATED, S.REDISTRIBUTED}),
    S.ESCALATED: frozenset({S.COMPLETED, S.EXPIRED}),
    S.REDISTRIBUTED: frozenset(),
    S.COMPLETED: frozenset(),
    S.EXPIRED: frozenset(),
}

# Notification level reached on entering a status
STATUS_LEVELS: dict[CascadeStatus, NotificationLevel] = {
    S.ACTIVE: NotificationLevel.ASSIGNED,
    S.WARNING: NotificationLevel.WARNING,
    S.CRITICAL: NotificationLevel.CRITICAL,
    S.ESCALATED: NotificationLevel.ESCALATED,
}


class InvalidTransitionError(Exception):
    """Transition not allowed by the state machine."""

    def __init__(self, current: CascadeStatus, target: CascadeStatus):
        super().__init__(f"Cannot move assignment from {current.value} to {target.value}")
        self.current = current
        self.target = target


def can_transition(current: CascadeStatus | str, target: CascadeStatus | str) -> bool:
    return CascadeStatus(target) in ALLOWED_TRANSITIONS[CascadeStatus(current)]


def ensure_transition(current: CascadeStatus | str, target: CascadeStatus | str) -> None:
    if not can_transition(current, target):
        raise InvalidTransitionError(CascadeStatus(current), CascadeStatus(target))


def is_open(status: CascadeStatus | str) -> bool:
    return CascadeStatus(status) in (S.ACTIVE, S.WARNING, S.CRITICAL)


def is_terminal(status: CascadeStatus | str) -> bool:
    return not ALLOWED_TRANSITIONS[CascadeStatus(status)]


class Stage(str, Enum):
    """Where the SLA clock stands, independent of the stored status."""

    ACTIVE = "active"
    WARNING = "warning"
    CRITICAL = "critical"
    DUE = "due"


_STAGE_RANK = {Stage.ACTIVE: 0, Stage.WARNING: 1, Stage.CRITICAL: 2, Stage.DUE: 3}
_STATUS_RANK = {S.ACTIVE: 0, S.WARNING: 1, S.CRITICAL: 2}


def stage_for_elapsed(elapsed_minutes: float, snapshot: ConfigSnapshot) -> Stage:
    """Map elapsed working minutes to a stage (thresholds are inclusive)."""
    if elapsed_minutes >= snapshot.first_contact_sla:
        return Stage.DUE
    if elapsed_minutes >= snapshot.critical_minutes:
        return Stage.CRITICAL
    if elapsed_minutes >= snapshot.warning_minutes:
        return Stage.WARNING
    return Stage.ACTIVE


@dataclass(frozen=True)
class Evaluation:
    elapsed_minutes: float
    stage: Stage
    # Status the record should move to (None = nothing to do / due handled separately)
    target: CascadeStatus | None


def evaluate(
    status: CascadeStatus | str,
    assigned_at: datetime,
    now: datetime,
    snapshot: ConfigSnapshot,
) -> Evaluation:
    """
    Evaluate an open record against its snapshot.

    Never proposes a backwards move. DUE yields target None; the scheduler
    decides between redistribution, escalation and expiry.
    """
    status = CascadeStatus(status)
    elapsed = working_minutes_between(assigned_at, now, snapshot.schedule)
    stage = stage_for_elapsed(elapsed, snapshot)
    if not is_open(status) or stage == Stage.DUE:
        return Evaluation(elapsed, stage, None)
    if _STAGE_RANK[stage] <= _STATUS_RANK[status]:
        return Evaluation(elapsed, stage, None)
    return Evaluation(elapsed, stage, CascadeStatus(stage.value))
