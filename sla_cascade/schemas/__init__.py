"""Pydantic schemas for engine inputs, outputs and config."""

from sla_cascade.schemas.automation import (
    AutomationConfigCreate,
    AutomationConfigRead,
    AutomationConfigUpdate,
    ConfigSnapshot,
)
from sla_cascade.schemas.cascade import (
    AssignmentResult,
    CascadeAssignmentRead,
    ConsultantDailyMetrics,
    DailyCascadeMetrics,
    EscalationResolution,
    IdentityMatch,
    LeadIntake,
)
