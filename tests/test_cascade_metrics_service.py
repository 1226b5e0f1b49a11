from datetime import date, datetime, timedelta, timezone

import pytest

from sla_cascade.core.config import settings
from sla_cascade.db.enums import CascadeStatus, NotificationType, Role
from sla_cascade.db.models import CascadeAssignment
from sla_cascade.services import cascade_metrics_service

NOW = datetime(2026, 3, 11, 10, 0, tzinfo=timezone.utc)
REPORT_DAY = date(2026, 3, 10)


@pytest.fixture
def make_row(db, make_client):
    def _make(consultant, status: CascadeStatus, at: datetime, **kwargs):
        terminal = status in (CascadeStatus.COMPLETED, CascadeStatus.EXPIRED, CascadeStatus.REDISTRIBUTED)
        row = CascadeAssignment(
            lead_id=make_client().id,
            consultant_id=consultant.id if consultant else None,
            status=status.value,
            assigned_at=at - timedelta(minutes=30),
            expires_at=kwargs.pop("expires_at", at),
            finalized_at=at if terminal else None,
            config_snapshot={},
            **kwargs,
        )
        db.add(row)
        db.commit()
        return row

    return _make


@pytest.fixture
def report_rows(make_user, make_row):
    top = make_user(display_name="Ana")
    other = make_user(display_name="Bruno")
    day = datetime(2026, 3, 10, 14, 0, tzinfo=timezone.utc)
    for _ in range(3):
        make_row(top, CascadeStatus.COMPLETED, day)
    make_row(top, CascadeStatus.EXPIRED, day)
    make_row(other, CascadeStatus.REDISTRIBUTED, day)
    make_row(None, CascadeStatus.ESCALATED, day, escalated_at=day)
    # Next day: excluded
    make_row(top, CascadeStatus.COMPLETED, NOW)
    return top, other


def test_aggregate_counts_and_rates(db, report_rows):
    top, other = report_rows

    metrics = cascade_metrics_service.aggregate_daily_metrics(db, REPORT_DAY, "UTC")

    assert metrics.total == 5
    assert metrics.completed == 3
    assert metrics.expired == 1
    assert metrics.redistributed == 1
    assert metrics.escalated == 1
    assert metrics.conversion_rate == 60.0
    assert metrics.expiration_rate == 20.0
    assert [item.consultant_id for item in metrics.by_consultant] == [top.id, other.id]
    assert metrics.by_consultant[0].conversion_rate == 75.0
    assert metrics.by_consultant[0].display_name == "Ana"


def test_empty_day_has_zero_rates(db):
    metrics = cascade_metrics_service.aggregate_daily_metrics(db, REPORT_DAY, "UTC")
    assert metrics.total == 0
    assert metrics.conversion_rate == 0.0
    assert metrics.by_consultant == []


def test_day_bounds_follow_report_timezone():
    start, end = cascade_metrics_service.day_bounds_utc(REPORT_DAY, "America/Sao_Paulo")
    assert start == datetime(2026, 3, 10, 3, 0, tzinfo=timezone.utc)
    assert end == datetime(2026, 3, 11, 3, 0, tzinfo=timezone.utc)
    assert cascade_metrics_service.previous_local_day(
        datetime(2026, 3, 11, 2, 0, tzinfo=timezone.utc), "America/Sao_Paulo"
    ) == date(2026, 3, 9)


def test_daily_report_continues_after_manager_failure(db, report_rows, make_user, transport, monkeypatch):
    monkeypatch.setattr(settings, "REPORT_TIMEZONE", "UTC")
    reachable = make_user(Role.MANAGER)
    unreachable = make_user(Role.MANAGER)
    transport.failing_user_ids.add(unreachable.id)

    stats = cascade_metrics_service.send_daily_report(db, now=NOW, transport=transport)

    assert stats["report_date"] == "2026-03-10"
    assert stats["managers"] == 2
    assert stats["sent"] == 1
    assert stats["errors"] == [{"manager_id": str(unreachable.id), "error": "NotificationDeliveryError"}]
    [(channel, user_id, payload)] = transport.sent
    assert channel == "report"
    assert user_id == reachable.id
    assert payload["type"] == NotificationType.DAILY_REPORT.value
    assert payload["metrics"]["total"] == 5


def test_expiring_soon_counts_open_rows_in_window(db, consultant, make_row, monkeypatch):
    make_row(consultant, CascadeStatus.ACTIVE, NOW, expires_at=NOW + timedelta(minutes=30))
    make_row(consultant, CascadeStatus.CRITICAL, NOW, expires_at=NOW + timedelta(minutes=59))
    make_row(consultant, CascadeStatus.ACTIVE, NOW, expires_at=NOW + timedelta(minutes=90))
    make_row(consultant, CascadeStatus.COMPLETED, NOW, expires_at=NOW + timedelta(minutes=10))

    assert cascade_metrics_service.count_expiring_soon(db, NOW) == 2

    monkeypatch.setattr(settings, "EXPIRING_SOON_WARN_THRESHOLD", 1)
    result = cascade_metrics_service.check_expiring_soon(db, now=NOW)
    assert result == {"expiring_soon": 2, "threshold": 1, "alert": True}
