import hashlib
import hmac
import json
import logging
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from sqlalchemy import select

from sla_cascade.core.structured_logging import mask_email
from sla_cascade.db.enums import NotificationLevel, NotificationType, Role
from sla_cascade.db.models import CascadeNotificationDelivery, Notification
from sla_cascade.schemas.cascade import LeadIntake
from sla_cascade.services import cascade_ledger, cascade_service
from sla_cascade.services.notification_dispatcher import (
    ChannelRouter,
    InAppTransport,
    LoggingTransport,
    NotificationDeliveryError,
    WebhookTransport,
    build_payload,
    build_targets,
    build_transport,
)

T0 = datetime(2026, 3, 11, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
def entry(db, make_client, consultant):
    def _make():
        lead = make_client()
        result = cascade_service.create_assignment(db, LeadIntake(client_id=lead.id), now=T0)
        return cascade_ledger.LedgerEntry.from_model(cascade_ledger.get_assignment(db, result.assignment.id))

    return _make


def _level(db, assignment_id):
    db.expire_all()
    return cascade_ledger.get_assignment(db, assignment_id).last_notified_level


# =============================================================================
# Targets
# =============================================================================

def test_agent_targets_follow_notify_flags(db, make_config, entry, consultant, manager):
    make_config(notify_system=False)
    targets = build_targets(db, entry(), NotificationLevel.WARNING)
    assert [(channel, user.id) for channel, user in targets] == [("visual", consultant.id)]


def test_critical_includes_managers_only_when_enabled(db, make_config, entry, consultant, manager):
    make_config(notify_manager=False)
    without = build_targets(db, entry(), NotificationLevel.CRITICAL)
    assert manager.id not in {user.id for _, user in without}

    make_config(notify_manager=True)
    with_manager = build_targets(db, entry(), NotificationLevel.CRITICAL)
    assert {user.id for _, user in with_manager} == {consultant.id, manager.id}


@pytest.mark.parametrize(
    "flags",
    [
        {},
        {"notify_visual": False, "notify_system": False},
        {"notify_visual": True, "notify_system": False},
    ],
)
def test_managers_get_one_alert_regardless_of_agent_channels(db, make_config, entry, manager, flags):
    make_config(**flags)
    targets = build_targets(db, entry(), NotificationLevel.ESCALATED)
    assert [(channel, user.id) for channel, user in targets] == [("manager", manager.id)]


def test_handoff_payload_for_later_attempts(db, make_config, entry):
    make_config()
    first = entry()
    payload = build_payload(first, NotificationLevel.ASSIGNED)
    assert payload["type"] == NotificationType.CASCADE_ASSIGNED.value
    assert payload["lead_id"] == str(first.lead_id)

    second = cascade_ledger.LedgerEntry(**{**first.__dict__, "attempt_count": 2})
    assert build_payload(second, NotificationLevel.ASSIGNED)["type"] == NotificationType.CASCADE_HANDOFF.value


# =============================================================================
# Dispatch
# =============================================================================

def test_dispatch_advances_level_once(db, make_config, entry, consultant, transport, dispatcher):
    make_config()
    item = entry()

    assert dispatcher.dispatch(db, item, NotificationLevel.ASSIGNED, T0) is True
    assert dispatcher.dispatch(db, item, NotificationLevel.ASSIGNED, T0) is False

    assert len(transport.sent) == 2
    assert _level(db, item.id) == NotificationLevel.ASSIGNED
    deliveries = db.execute(select(CascadeNotificationDelivery)).scalars().all()
    assert {d.channel for d in deliveries} == {"visual", "system"}


def test_partial_failure_retries_only_missing_targets(
    db, make_config, entry, consultant, make_user, transport, dispatcher
):
    make_config(notify_manager=True)
    healthy = make_user(Role.MANAGER)
    flaky = make_user(Role.MANAGER)
    item = entry()
    transport.failing_user_ids.add(flaky.id)

    assert dispatcher.dispatch(db, item, NotificationLevel.CRITICAL, T0) is False
    assert _level(db, item.id) == NotificationLevel.NONE
    assert len(transport.sent) == 3

    transport.failing_user_ids.clear()
    assert dispatcher.dispatch(db, item, NotificationLevel.CRITICAL, T0 + timedelta(minutes=1)) is True

    assert len(transport.sent) == 4
    assert len(transport.sent_to(healthy.id)) == 1
    assert len(transport.sent_to(flaky.id)) == 1
    assert len(transport.sent_to(consultant.id)) == 2
    assert _level(db, item.id) == NotificationLevel.CRITICAL


def test_dispatch_skipped_while_claimed_elsewhere(db, make_config, entry, transport, dispatcher):
    make_config()
    item = entry()
    assert cascade_ledger.claim_notification(db, item.id, NotificationLevel.ASSIGNED, T0, 300)
    db.commit()

    assert dispatcher.dispatch(db, item, NotificationLevel.ASSIGNED, T0 + timedelta(seconds=10)) is False
    assert transport.sent == []


def test_no_channels_enabled_still_records_level(db, make_config, entry, transport, dispatcher):
    make_config(notify_visual=False, notify_system=False)
    item = entry()

    assert dispatcher.dispatch(db, item, NotificationLevel.WARNING, T0) is True
    assert transport.sent == []
    assert _level(db, item.id) == NotificationLevel.WARNING


def test_unexpected_error_releases_claim(db, make_config, entry, dispatcher, monkeypatch):
    make_config()
    item = entry()

    def _broken(*_args, **_kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr(cascade_ledger, "delivered_keys", _broken)
    with pytest.raises(RuntimeError):
        dispatcher.dispatch(db, item, NotificationLevel.ASSIGNED, T0)

    db.expire_all()
    row = cascade_ledger.get_assignment(db, item.id)
    assert row.notify_claim_level is None
    assert row.last_notified_level == NotificationLevel.NONE


# =============================================================================
# Transports
# =============================================================================

def test_in_app_transport_writes_notification(db, consultant):
    InAppTransport(db).send(
        "visual",
        consultant,
        {"type": "cascade_warning", "title": "Heads up", "body": "75%", "dedupe_key": "k1"},
    )
    db.commit()

    [row] = db.execute(select(Notification)).scalars().all()
    assert row.user_id == consultant.id
    assert row.type == "cascade_warning"
    assert row.dedupe_key == "k1"


def test_channel_router_uses_default_for_unrouted_channels(consultant):
    calls = []

    class _Recorder:
        def __init__(self, name):
            self.name = name

        def send(self, channel, recipient, payload):
            calls.append((self.name, channel))

    router = ChannelRouter({"visual": _Recorder("in_app")}, default=_Recorder("external"))
    router.send("visual", consultant, {})
    router.send("system", consultant, {})

    assert calls == [("in_app", "visual"), ("external", "system")]


def test_default_wiring_keeps_manager_alerts_in_app(db, manager, caplog):
    router = build_transport(db)
    with caplog.at_level(logging.INFO, logger="sla_cascade.services.notification_dispatcher"):
        router.send("manager", manager, {"type": "cascade_escalated", "title": "Lead escalated"})
        router.send("system", manager, {"type": "cascade_escalated"})
    db.commit()

    [row] = db.execute(select(Notification)).scalars().all()
    assert row.user_id == manager.id
    assert row.type == "cascade_escalated"
    assert "[DRY RUN] system notification cascade_escalated" in caplog.text


def test_webhook_transport_signs_body(consultant):
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["body"] = request.content
        captured["signature"] = request.headers.get("X-Signature-SHA256")
        return httpx.Response(202)

    client = httpx.Client(transport=httpx.MockTransport(handler))
    transport = WebhookTransport("https://gateway.test/notify", secret="s3cret", client=client)

    transport.send("system", consultant, {"type": "cascade_assigned", "title": "New lead"})

    body = json.loads(captured["body"])
    assert body["channel"] == "system"
    assert body["recipient"]["id"] == str(consultant.id)
    assert body["payload"]["type"] == "cascade_assigned"
    expected = hmac.new(b"s3cret", captured["body"], hashlib.sha256).hexdigest()
    assert captured["signature"] == expected


def test_webhook_transport_raises_on_gateway_error(consultant):
    client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(500)))
    transport = WebhookTransport("https://gateway.test/notify", client=client)

    with pytest.raises(NotificationDeliveryError):
        transport.send("system", consultant, {"type": "cascade_warning"})


def test_dry_run_transport_masks_recipient_email(consultant, caplog):
    with caplog.at_level(logging.INFO):
        LoggingTransport().send("system", consultant, {"type": "cascade_warning"})

    assert "[DRY RUN]" in caplog.text
    assert consultant.email not in caplog.text
    assert mask_email(consultant.email) in caplog.text
