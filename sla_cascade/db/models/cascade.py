"""Cascade ledger models."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import ForeignKey, Index, Integer, String, func, text
from sqlalchemy.orm import Mapped, mapped_column

from sla_cascade.db.base import Base
from sla_cascade.db.enums import CascadeStatus, NotificationLevel

_OPEN_STATUS_SQL = "status IN ('active', 'warning', 'critical')"


class CascadeAssignment(Base):
    """
    One lead-to-consultant assignment attempt.

    Status only moves forward (see services/cascade_state.py). All status
    writes go through a conditional update on the expected current status.
    """

    __tablename__ = "cascade_assignments"
    __table_args__ = (
        # At most one open assignment per lead
        Index(
            "uq_cascade_assignments_open_lead",
            "lead_id",
            unique=True,
            postgresql_where=text(_OPEN_STATUS_SQL),
            sqlite_where=text(_OPEN_STATUS_SQL),
        ),
        Index("idx_cascade_assignments_status_expires", "status", "expires_at"),
        Index("idx_cascade_assignments_consultant_status", "consultant_id", "status"),
        Index("idx_cascade_assignments_finalized", "status", "finalized_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    lead_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("clients.id", ondelete="CASCADE"), nullable=False
    )
    # Null only when intake found no eligible consultant (created escalated)
    consultant_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    # Consultant the lead was handed to on redistribution
    broker_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    previous_assignment_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("cascade_assignments.id", ondelete="SET NULL"), nullable=True
    )
    config_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("automation_configs.id", ondelete="SET NULL"), nullable=True
    )

    status: Mapped[str] = mapped_column(
        String(20), default=CascadeStatus.ACTIVE.value, nullable=False
    )

    assigned_at: Mapped[datetime] = mapped_column(nullable=False)
    expires_at: Mapped[datetime] = mapped_column(nullable=False)
    contacted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    escalated_at: Mapped[datetime | None] = mapped_column(nullable=True)
    finalized_at: Mapped[datetime | None] = mapped_column(nullable=True)
    finalize_reason: Mapped[str | None] = mapped_column(String(40), nullable=True)

    # Highest level whose notifications were all delivered
    last_notified_level: Mapped[int] = mapped_column(
        Integer, default=NotificationLevel.NONE.value, nullable=False
    )
    # In-flight dispatch claim
    notify_claim_level: Mapped[int | None] = mapped_column(Integer, nullable=True)
    notify_claimed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    attempt_count: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    # Operative config values frozen at assignment time
    config_snapshot: Mapped[dict[str, Any]] = mapped_column(nullable=False)

    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False
    )


class CascadeNotificationDelivery(Base):
    """
    Delivery ledger: one row per successful (assignment, level, channel, recipient) send.

    Lets a partially failed dispatch retry only the targets that did not go out.
    """

    __tablename__ = "cascade_notification_deliveries"
    __table_args__ = (Index("idx_cascade_deliveries_assignment", "assignment_id"),)

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    assignment_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("cascade_assignments.id", ondelete="CASCADE"), nullable=False
    )
    level: Mapped[int] = mapped_column(Integer, nullable=False)
    channel: Mapped[str] = mapped_column(String(20), nullable=False)
    recipient_id: Mapped[uuid.UUID] = mapped_column(nullable=False)

    # {assignment_id}:{level}:{channel}:{recipient_id}
    dedupe_key: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)

    delivered_at: Mapped[datetime] = mapped_column(nullable=False)
