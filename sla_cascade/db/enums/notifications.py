"""Notification enums."""

from enum import Enum


class NotificationChannel(str, Enum):
    """Channels passed to the transport's send(channel, recipient, payload)."""

    VISUAL = "visual"  # In-app notification row
    SYSTEM = "system"  # External push/webhook
    MANAGER = "manager"  # Manager alert (critical/escalated), one per manager
    REPORT = "report"  # Daily metrics report


class NotificationType(str, Enum):
    CASCADE_ASSIGNED = "cascade_assigned"
    CASCADE_HANDOFF = "cascade_handoff"
    CASCADE_WARNING = "cascade_warning"
    CASCADE_CRITICAL = "cascade_critical"
    CASCADE_ESCALATED = "cascade_escalated"
    DAILY_REPORT = "daily_report"
