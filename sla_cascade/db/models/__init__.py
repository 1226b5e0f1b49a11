"""SQLAlchemy ORM models."""

from sla_cascade.db.models.auth import User, UserWorkingHours
from sla_cascade.db.models.automation import AutomationConfig
from sla_cascade.db.models.cascade import CascadeAssignment, CascadeNotificationDelivery
from sla_cascade.db.models.clients import Client
from sla_cascade.db.models.notifications import Notification

__all__ = [
    "AutomationConfig",
    "CascadeAssignment",
    "CascadeNotificationDelivery",
    "Client",
    "Notification",
    "User",
    "UserWorkingHours",
]
