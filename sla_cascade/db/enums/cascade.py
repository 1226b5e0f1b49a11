"""Cascade assignment lifecycle enums."""

from enum import Enum, IntEnum


class CascadeStatus(str, Enum):
    """
    Lifecycle status of one lead-to-consultant assignment attempt.

    - ACTIVE/WARNING/CRITICAL: SLA clock running (open)
    - ESCALATED: no agent available, waiting on a manager
    - REDISTRIBUTED/COMPLETED/EXPIRED: terminal
    """

    ACTIVE = "active"
    WARNING = "warning"
    CRITICAL = "critical"
    ESCALATED = "escalated"
    REDISTRIBUTED = "redistributed"
    COMPLETED = "completed"
    EXPIRED = "expired"


OPEN_CASCADE_STATUSES = (
    CascadeStatus.ACTIVE.value,
    CascadeStatus.WARNING.value,
    CascadeStatus.CRITICAL.value,
)

TERMINAL_CASCADE_STATUSES = (
    CascadeStatus.REDISTRIBUTED.value,
    CascadeStatus.COMPLETED.value,
    CascadeStatus.EXPIRED.value,
)


class NotificationLevel(IntEnum):
    """Escalation stages a notification can be sent for (ordered)."""

    NONE = 0
    ASSIGNED = 1
    WARNING = 2
    CRITICAL = 3
    ESCALATED = 4


class FinalizeReason(str, Enum):
    """Why an assignment reached a terminal status."""

    CONTACTED = "contacted"
    SLA_EXPIRED = "sla_expired"
    REDISTRIBUTED = "redistributed"
    MANAGER_REASSIGNED = "manager_reassigned"
    MANAGER_CLOSED = "manager_closed"
    SUPERSEDED = "superseded"
