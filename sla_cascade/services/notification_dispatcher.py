"""NotificationDispatcher: at-most-once alerts per (assignment, level).

Delivery is claim → send each target → release. `last_notified_level` only
advances when every target went out; failed targets are retried on the
next tick, and targets already in the delivery ledger are never resent.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Mapping, Protocol

import httpx
from sqlalchemy import select
from sqlalchemy.orm import Session

from sla_cascade.core.config import settings
from sla_cascade.core.structured_logging import build_log_context, mask_email
from sla_cascade.db.enums import NotificationChannel, NotificationLevel, NotificationType, Role
from sla_cascade.db.models import Notification, User
from sla_cascade.schemas.automation import ConfigSnapshot
from sla_cascade.services import cascade_ledger

logger = logging.getLogger(__name__)


class NotificationDeliveryError(Exception):
    """A transport failed to deliver a notification."""

    pass


class NotificationTransport(Protocol):
    def send(self, channel: str, recipient: User, payload: dict[str, Any]) -> None: ...


# =============================================================================
# Transports
# =============================================================================


class InAppTransport:
    """Writes in-app notification rows in the caller's session."""

    def __init__(self, db: Session):
        self.db = db

    def send(self, channel: str, recipient: User, payload: dict[str, Any]) -> None:
        self.db.add(
            Notification(
                user_id=recipient.id,
                type=payload.get("type", "general"),
                title=payload.get("title", "Notification")[:255],
                body=payload.get("body"),
                entity_type=payload.get("entity_type"),
                entity_id=payload.get("entity_id"),
                dedupe_key=payload.get("dedupe_key"),
            )
        )
        self.db.flush()


class WebhookTransport:
    """POSTs notifications to an external gateway (push/SMS/WhatsApp bridge)."""

    def __init__(self, url: str, secret: str = "", timeout: float = 5.0, client: httpx.Client | None = None):
        self.url = url
        self.secret = secret
        self.client = client or httpx.Client(timeout=httpx.Timeout(timeout))

    def _headers(self, body: bytes) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.secret:
            signature = hmac.new(self.secret.encode(), body, hashlib.sha256).hexdigest()
            headers["X-Signature-SHA256"] = signature
        return headers

    def send(self, channel: str, recipient: User, payload: dict[str, Any]) -> None:
        body = json.dumps(
            {
                "channel": channel,
                "recipient": {
                    "id": str(recipient.id),
                    "email": recipient.email,
                    "phone": recipient.phone,
                },
                "payload": payload,
            },
            default=str,
        ).encode()
        try:
            response = self.client.post(self.url, content=body, headers=self._headers(body))
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise NotificationDeliveryError(
                f"Webhook delivery failed ({type(exc).__name__})"
            ) from exc


class LoggingTransport:
    """Dry-run transport used when no external gateway is configured."""

    def send(self, channel: str, recipient: User, payload: dict[str, Any]) -> None:
        logger.info(
            "[DRY RUN] %s notification %s for user=%s (%s)",
            channel,
            payload.get("type"),
            recipient.id,
            mask_email(recipient.email),
        )


class ChannelRouter:
    """Routes each channel to its transport."""

    def __init__(self, routes: Mapping[str, NotificationTransport], default: NotificationTransport):
        self.routes = dict(routes)
        self.default = default

    def send(self, channel: str, recipient: User, payload: dict[str, Any]) -> None:
        self.routes.get(channel, self.default).send(channel, recipient, payload)


def build_transport(db: Session) -> ChannelRouter:
    """Default wiring: in-app rows for visual and manager alerts, webhook (or log) for the rest."""
    if settings.NOTIFICATION_WEBHOOK_URL:
        external: NotificationTransport = WebhookTransport(
            settings.NOTIFICATION_WEBHOOK_URL,
            secret=settings.NOTIFICATION_WEBHOOK_SECRET,
            timeout=settings.NOTIFICATION_TIMEOUT_SECONDS,
        )
    else:
        external = LoggingTransport()
    in_app = InAppTransport(db)
    return ChannelRouter(
        {NotificationChannel.VISUAL.value: in_app, NotificationChannel.MANAGER.value: in_app},
        default=external,
    )


# =============================================================================
# Targets and payloads
# =============================================================================


def get_managers(db: Session) -> list[User]:
    return list(
        db.execute(
            select(User)
            .where(User.role == Role.MANAGER.value, User.is_active.is_(True))
            .order_by(User.created_at, User.id)
        ).scalars().all()
    )


def _agent_channels(snapshot: ConfigSnapshot) -> list[str]:
    channels = []
    if snapshot.notify_visual:
        channels.append(NotificationChannel.VISUAL.value)
    if snapshot.notify_system:
        channels.append(NotificationChannel.SYSTEM.value)
    return channels


def build_targets(
    db: Session,
    entry: cascade_ledger.LedgerEntry,
    level: NotificationLevel,
) -> list[tuple[str, User]]:
    """(channel, recipient) pairs for a level, per the snapshot's notify flags."""
    snapshot = entry.snapshot
    targets: list[tuple[str, User]] = []

    if level in (NotificationLevel.ASSIGNED, NotificationLevel.WARNING, NotificationLevel.CRITICAL):
        agent = db.get(User, entry.consultant_id) if entry.consultant_id else None
        if agent is not None:
            targets.extend((channel, agent) for channel in _agent_channels(snapshot))

    manager_wanted = (level == NotificationLevel.CRITICAL and snapshot.notify_manager) or (
        level == NotificationLevel.ESCALATED and snapshot.escalate_to_manager
    )
    if manager_wanted:
        targets.extend((NotificationChannel.MANAGER.value, manager) for manager in get_managers(db))
    return targets


def build_payload(entry: cascade_ledger.LedgerEntry, level: NotificationLevel) -> dict[str, Any]:
    snapshot = entry.snapshot
    if level == NotificationLevel.ASSIGNED:
        if entry.attempt_count > 1:
            notif_type = NotificationType.CASCADE_HANDOFF
            title = "Lead handed over to you"
            body = f"Attempt #{entry.attempt_count}: previous consultant missed the first-contact SLA."
        else:
            notif_type = NotificationType.CASCADE_ASSIGNED
            title = "New lead assigned"
            body = f"First contact due within {snapshot.first_contact_sla} working minutes."
    elif level == NotificationLevel.WARNING:
        notif_type = NotificationType.CASCADE_WARNING
        title = "First-contact SLA warning"
        body = f"{snapshot.warning_percentage}% of the first-contact SLA has elapsed."
    elif level == NotificationLevel.CRITICAL:
        notif_type = NotificationType.CASCADE_CRITICAL
        title = "First-contact SLA critical"
        body = f"{snapshot.critical_percentage}% of the first-contact SLA has elapsed."
    else:
        notif_type = NotificationType.CASCADE_ESCALATED
        title = "Lead escalated: no consultant available"
        body = "A lead needs manual assignment."
    return {
        "type": notif_type.value,
        "title": title,
        "body": body,
        "level": int(level),
        "assignment_id": str(entry.id),
        "lead_id": str(entry.lead_id),
        "expires_at": entry.expires_at.isoformat(),
        "attempt_count": entry.attempt_count,
        "entity_type": "client",
        "entity_id": entry.lead_id,
    }


def dedupe_key(assignment_id: uuid.UUID, level: NotificationLevel, channel: str, recipient_id: uuid.UUID) -> str:
    return f"{assignment_id}:{int(level)}:{channel}:{recipient_id}"


# =============================================================================
# Dispatch
# =============================================================================


class NotificationDispatcher:
    def __init__(self, transport: NotificationTransport, claim_ttl_seconds: int | None = None):
        self.transport = transport
        self.claim_ttl_seconds = claim_ttl_seconds or settings.NOTIFICATION_CLAIM_TTL_SECONDS

    def dispatch(
        self,
        db: Session,
        entry: cascade_ledger.LedgerEntry,
        level: NotificationLevel,
        now: datetime | None = None,
    ) -> bool:
        """
        Deliver `level` for one assignment.

        Returns True when the level is fully delivered by this call. Returns
        False if it was already delivered, claimed elsewhere, or any target
        failed (those are retried next tick).
        """
        now = now or datetime.now(timezone.utc)
        log_context = build_log_context(assignment_id=entry.id, lead_id=entry.lead_id)

        if not cascade_ledger.claim_notification(db, entry.id, level, now, self.claim_ttl_seconds):
            db.rollback()
            return False
        db.commit()

        delivered_all = False
        failures = 0
        try:
            already = cascade_ledger.delivered_keys(db, entry.id, level)
            payload = build_payload(entry, level)
            for channel, recipient in build_targets(db, entry, level):
                key = dedupe_key(entry.id, level, channel, recipient.id)
                if key in already:
                    continue
                try:
                    self.transport.send(channel, recipient, {**payload, "dedupe_key": key})
                    cascade_ledger.record_delivery(
                        db,
                        assignment_id=entry.id,
                        level=level,
                        channel=channel,
                        recipient_id=recipient.id,
                        dedupe_key=key,
                        delivered_at=now,
                    )
                    db.commit()
                except Exception as exc:
                    db.rollback()
                    failures += 1
                    logger.warning(
                        "Notification %s/%s to user=%s failed: %s",
                        level.name,
                        channel,
                        recipient.id,
                        type(exc).__name__,
                        extra=log_context,
                    )
            delivered_all = failures == 0
        except Exception:
            db.rollback()
            raise
        finally:
            cascade_ledger.release_notification(db, entry.id, level, delivered_all)
            db.commit()

        if delivered_all:
            logger.info("Notified level %s", level.name, extra=log_context)
        return delivered_all
