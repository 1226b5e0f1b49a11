"""Enum definitions for application constants."""

from sla_cascade.db.enums.auth import Role
from sla_cascade.db.enums.automation import DistributionMethod, IdentityField
from sla_cascade.db.enums.cascade import (
    CascadeStatus,
    FinalizeReason,
    NotificationLevel,
    OPEN_CASCADE_STATUSES,
    TERMINAL_CASCADE_STATUSES,
)
from sla_cascade.db.enums.clients import ClientStatus, TERMINAL_CLIENT_STATUSES
from sla_cascade.db.enums.notifications import (
    NotificationChannel,
    NotificationType,
)

__all__ = [
    "CascadeStatus",
    "ClientStatus",
    "DistributionMethod",
    "FinalizeReason",
    "IdentityField",
    "NotificationChannel",
    "NotificationLevel",
    "NotificationType",
    "OPEN_CASCADE_STATUSES",
    "Role",
    "TERMINAL_CASCADE_STATUSES",
    "TERMINAL_CLIENT_STATUSES",
]
