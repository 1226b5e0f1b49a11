"""Automation configuration model."""

from __future__ import annotations

import uuid
from datetime import datetime, time

from sqlalchemy import Boolean, ForeignKey, Index, String, Time, func, text
from sqlalchemy.orm import Mapped, mapped_column

from sla_cascade.core import constants
from sla_cascade.db.base import Base
from sla_cascade.db.enums import DistributionMethod


class AutomationConfig(Base):
    """
    SLA cascade automation settings.

    Exactly one row is active at a time. Assignments copy the operative
    values into `CascadeAssignment.config_snapshot`, so edits here never
    move an in-flight deadline.
    """

    __tablename__ = "automation_configs"
    __table_args__ = (
        Index(
            "uq_automation_configs_active",
            "active",
            unique=True,
            postgresql_where=text("active"),
            sqlite_where=text("active = 1"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(100), default=constants.DEFAULT_CONFIG_NAME, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Distribution
    distribution_method: Mapped[str] = mapped_column(
        String(20), default=DistributionMethod.VOLUME.value, nullable=False
    )
    use_specialty: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    use_availability: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    use_region: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    # Ordered pool restriction / round-robin order (empty = all active consultants)
    rotation_user_ids: Mapped[list[str]] = mapped_column(default=list, nullable=False)

    # Working hours (local to `timezone`; end 00:00 = midnight)
    working_hours_start: Mapped[time] = mapped_column(Time, default=time(8, 0), nullable=False)
    working_hours_end: Mapped[time] = mapped_column(Time, default=time(18, 0), nullable=False)
    working_hours_weekend: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    timezone: Mapped[str] = mapped_column(String(50), default=constants.DEFAULT_TIMEZONE, nullable=False)
    holiday_country: Mapped[str] = mapped_column(
        String(10), default=constants.DEFAULT_HOLIDAY_COUNTRY, nullable=False
    )

    # SLA (working minutes) and thresholds (percent of SLA)
    first_contact_sla: Mapped[int] = mapped_column(
        default=constants.DEFAULT_FIRST_CONTACT_SLA_MINUTES, nullable=False
    )
    warning_percentage: Mapped[int] = mapped_column(
        default=constants.DEFAULT_WARNING_PERCENTAGE, nullable=False
    )
    critical_percentage: Mapped[int] = mapped_column(
        default=constants.DEFAULT_CRITICAL_PERCENTAGE, nullable=False
    )

    # Side effects
    notify_visual: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    notify_system: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    notify_manager: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    auto_redistribute: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    escalate_to_manager: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Recurring-lead detection
    identify_by_email: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    identify_by_phone: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    identify_by_document: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Continuity policy
    keep_same_consultant: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    assign_new_consultant: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    based_on_time: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    based_on_outcome: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    continuity_window_days: Mapped[int] = mapped_column(
        default=constants.DEFAULT_CONTINUITY_WINDOW_DAYS, nullable=False
    )

    # Consumed by intake collaborators
    inactivity_period: Mapped[int] = mapped_column(
        default=constants.DEFAULT_INACTIVITY_PERIOD_DAYS, nullable=False
    )
    contact_attempts: Mapped[int] = mapped_column(
        default=constants.DEFAULT_CONTACT_ATTEMPTS, nullable=False
    )

    retention_days: Mapped[int] = mapped_column(default=constants.DEFAULT_RETENTION_DAYS, nullable=False)

    created_by_user_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False
    )
