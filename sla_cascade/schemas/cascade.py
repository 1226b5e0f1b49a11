"""Pydantic schemas for cascade intake, results and reports."""

from __future__ import annotations

import uuid
from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field, model_validator

from sla_cascade.db.enums import CascadeStatus


class LeadIntake(BaseModel):
    """Inbound lead handed over by the intake collaborator.

    `client_id` references the client row the CRM already created for this lead.
    """

    client_id: uuid.UUID
    full_name: str | None = None
    email: str | None = Field(None, max_length=255)
    phone: str | None = Field(None, max_length=50)
    document: str | None = Field(None, max_length=50)
    region: str | None = None
    specialty: str | None = None
    source: str | None = None


class IdentityMatch(BaseModel):
    """Outcome of recurring-lead detection."""

    is_recurring: bool = False
    client_id: uuid.UUID | None = None
    matched_on: str | None = None
    previous_consultant_id: uuid.UUID | None = None
    previous_assignment_id: uuid.UUID | None = None


class CascadeAssignmentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    lead_id: uuid.UUID
    consultant_id: uuid.UUID | None
    broker_id: uuid.UUID | None
    previous_assignment_id: uuid.UUID | None
    status: CascadeStatus
    assigned_at: datetime
    expires_at: datetime
    contacted_at: datetime | None
    escalated_at: datetime | None
    finalized_at: datetime | None
    finalize_reason: str | None
    last_notified_level: int
    attempt_count: int


class AssignmentResult(BaseModel):
    """Response from create_assignment."""

    assignment: CascadeAssignmentRead
    created: bool = True
    is_recurring: bool = False
    matched_client_id: uuid.UUID | None = None
    continuity: bool = False  # Prior consultant reused


class EscalationResolution(BaseModel):
    """Manager decision on an escalated assignment."""

    consultant_id: uuid.UUID | None = None
    close: bool = False

    @model_validator(mode="after")
    def _validate_choice(self):
        if self.close == (self.consultant_id is not None):
            raise ValueError("Provide exactly one of consultant_id or close=True")
        return self


class ConsultantDailyMetrics(BaseModel):
    consultant_id: uuid.UUID
    display_name: str | None = None
    total: int = 0
    completed: int = 0
    expired: int = 0
    redistributed: int = 0
    conversion_rate: float = 0.0


class DailyCascadeMetrics(BaseModel):
    """Aggregate of one local day's terminal assignments."""

    report_date: date
    timezone: str
    total: int = 0
    completed: int = 0
    expired: int = 0
    redistributed: int = 0
    escalated: int = 0
    conversion_rate: float = 0.0
    expiration_rate: float = 0.0
    by_consultant: list[ConsultantDailyMetrics] = Field(default_factory=list)
