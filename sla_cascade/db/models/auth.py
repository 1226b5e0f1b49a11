"""User and working-hours models."""

from __future__ import annotations

import uuid
from datetime import datetime, time

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Index, String, Time, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from sla_cascade.db.base import Base
from sla_cascade.db.enums import Role


class User(Base):
    """
    A CRM user. Consultants receive leads; managers receive escalations.

    Owned by the surrounding CRM; the engine reads role/availability and
    writes only `last_assigned_at`.
    """

    __tablename__ = "users"
    __table_args__ = (Index("idx_users_role_active", "role", "is_active"),)

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)

    role: Mapped[str] = mapped_column(
        String(20), default=Role.CONSULTANT.value, server_default=Role.CONSULTANT.value, nullable=False
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, server_default="1", nullable=False)
    # Manual "accepting leads" toggle
    is_available: Mapped[bool] = mapped_column(Boolean, default=True, server_default="1", nullable=False)

    specialty: Mapped[str | None] = mapped_column(String(100), nullable=True)
    region: Mapped[str | None] = mapped_column(String(100), nullable=True)
    timezone: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # Volume tie-break: oldest first
    last_assigned_at: Mapped[datetime | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)

    working_hours: Mapped[list["UserWorkingHours"]] = relationship(
        back_populates="user", cascade="all, delete-orphan", lazy="selectin"
    )


class UserWorkingHours(Base):
    """
    Weekly working window for a consultant.

    Uses ISO weekday: Monday=0, Sunday=6. A consultant with no rows is
    treated as always available (subject to `is_available`).
    """

    __tablename__ = "user_working_hours"
    __table_args__ = (
        Index("idx_user_working_hours_user", "user_id"),
        CheckConstraint("weekday >= 0 AND weekday <= 6", name="ck_valid_weekday"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    weekday: Mapped[int] = mapped_column(nullable=False)
    start_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    end_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    all_day: Mapped[bool] = mapped_column(Boolean, default=False, server_default="0", nullable=False)

    user: Mapped[User] = relationship(back_populates="working_hours")
