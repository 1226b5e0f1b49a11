"""MetricsReporter: daily cascade statistics for managers, plus the near-expiry probe."""

from __future__ import annotations

import logging
import uuid
from collections import defaultdict
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from sla_cascade.core import constants
from sla_cascade.core.config import settings
from sla_cascade.db.enums import (
    CascadeStatus,
    NotificationChannel,
    NotificationType,
    OPEN_CASCADE_STATUSES,
    TERMINAL_CASCADE_STATUSES,
)
from sla_cascade.db.models import CascadeAssignment, User
from sla_cascade.schemas.cascade import ConsultantDailyMetrics, DailyCascadeMetrics
from sla_cascade.services.notification_dispatcher import (
    NotificationTransport,
    build_transport,
    get_managers,
)

logger = logging.getLogger(__name__)


def _rate(part: int, total: int) -> float:
    return round(part / total * 100, 2) if total else 0.0


def previous_local_day(now: datetime, timezone_name: str) -> date:
    return now.astimezone(ZoneInfo(timezone_name)).date() - timedelta(days=1)


def day_bounds_utc(day: date, timezone_name: str) -> tuple[datetime, datetime]:
    tz = ZoneInfo(timezone_name)
    start = datetime.combine(day, time(0, 0), tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time(0, 0), tzinfo=tz)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def aggregate_daily_metrics(
    db: Session,
    report_date: date,
    timezone_name: str | None = None,
) -> DailyCascadeMetrics:
    """
    Aggregate terminal assignments finalized on one local day.

    Escalations are counted by `escalated_at` since escalated rows are not
    terminal. Rates are percentages rounded to 2 decimals.
    """
    tz_name = timezone_name or settings.REPORT_TIMEZONE
    start, end = day_bounds_utc(report_date, tz_name)

    rows = db.execute(
        select(CascadeAssignment.consultant_id, CascadeAssignment.status).where(
            CascadeAssignment.status.in_(TERMINAL_CASCADE_STATUSES),
            CascadeAssignment.finalized_at >= start,
            CascadeAssignment.finalized_at < end,
        )
    ).all()
    escalated = db.execute(
        select(func.count(CascadeAssignment.id)).where(
            CascadeAssignment.escalated_at >= start,
            CascadeAssignment.escalated_at < end,
        )
    ).scalar_one()

    totals: dict[str, int] = defaultdict(int)
    per_consultant: dict[uuid.UUID, dict[str, int]] = defaultdict(lambda: defaultdict(int))
    for consultant_id, status in rows:
        totals[status] += 1
        if consultant_id is not None:
            per_consultant[consultant_id][status] += 1

    names = {}
    if per_consultant:
        names = dict(
            db.execute(
                select(User.id, User.display_name).where(User.id.in_(list(per_consultant)))
            ).all()
        )

    breakdown = []
    for consultant_id, counts in per_consultant.items():
        total = sum(counts.values())
        completed = counts[CascadeStatus.COMPLETED.value]
        breakdown.append(
            ConsultantDailyMetrics(
                consultant_id=consultant_id,
                display_name=names.get(consultant_id),
                total=total,
                completed=completed,
                expired=counts[CascadeStatus.EXPIRED.value],
                redistributed=counts[CascadeStatus.REDISTRIBUTED.value],
                conversion_rate=_rate(completed, total),
            )
        )
    breakdown.sort(key=lambda item: (-item.conversion_rate, -item.total, str(item.consultant_id)))

    total = len(rows)
    completed = totals[CascadeStatus.COMPLETED.value]
    expired = totals[CascadeStatus.EXPIRED.value]
    return DailyCascadeMetrics(
        report_date=report_date,
        timezone=tz_name,
        total=total,
        completed=completed,
        expired=expired,
        redistributed=totals[CascadeStatus.REDISTRIBUTED.value],
        escalated=escalated,
        conversion_rate=_rate(completed, total),
        expiration_rate=_rate(expired, total),
        by_consultant=breakdown,
    )


def _report_payload(metrics: DailyCascadeMetrics) -> dict:
    return {
        "type": NotificationType.DAILY_REPORT.value,
        "title": f"Cascade report {metrics.report_date.isoformat()}",
        "body": (
            f"{metrics.total} leads closed: {metrics.completed} contacted, "
            f"{metrics.expired} expired, {metrics.redistributed} redistributed "
            f"(conversion {metrics.conversion_rate:.2f}%)."
        ),
        "metrics": metrics.model_dump(mode="json"),
    }


def send_daily_report(
    db: Session,
    now: datetime | None = None,
    transport: NotificationTransport | None = None,
) -> dict:
    """
    Aggregate yesterday (report timezone) and send it to every active manager.

    A failed manager is recorded in `errors`; delivery to the others continues.

    Returns stats: {report_date, managers, sent, errors}
    """
    now = now or datetime.now(timezone.utc)
    transport = transport or build_transport(db)
    report_date = previous_local_day(now, settings.REPORT_TIMEZONE)
    metrics = aggregate_daily_metrics(db, report_date, settings.REPORT_TIMEZONE)
    payload = _report_payload(metrics)

    managers = get_managers(db)
    sent = 0
    errors: list[dict] = []
    for manager in managers:
        try:
            transport.send(NotificationChannel.REPORT.value, manager, payload)
            sent += 1
        except Exception as exc:
            logger.warning(
                "Daily report to manager %s failed: %s", manager.id, type(exc).__name__
            )
            errors.append({"manager_id": str(manager.id), "error": type(exc).__name__})
    db.commit()

    logger.info(
        "Daily cascade report %s sent (managers=%s sent=%s errors=%s)",
        report_date.isoformat(),
        len(managers),
        sent,
        len(errors),
    )
    return {
        "report_date": report_date.isoformat(),
        "metrics": metrics,
        "managers": len(managers),
        "sent": sent,
        "errors": errors,
    }


def count_expiring_soon(
    db: Session,
    now: datetime,
    window_minutes: int = constants.EXPIRING_SOON_WINDOW_MINUTES,
) -> int:
    """Open assignments whose deadline falls within the next window."""
    horizon = now + timedelta(minutes=window_minutes)
    return db.execute(
        select(func.count(CascadeAssignment.id)).where(
            CascadeAssignment.status.in_(OPEN_CASCADE_STATUSES),
            CascadeAssignment.expires_at > now,
            CascadeAssignment.expires_at <= horizon,
        )
    ).scalar_one()


def check_expiring_soon(db: Session, now: datetime | None = None) -> dict:
    """Health probe: warn when too many leads are about to breach their SLA."""
    now = now or datetime.now(timezone.utc)
    count = count_expiring_soon(db, now)
    threshold = settings.EXPIRING_SOON_WARN_THRESHOLD
    if count > threshold:
        logger.warning(
            "%s assignments expire within %s minutes (threshold=%s)",
            count,
            constants.EXPIRING_SOON_WINDOW_MINUTES,
            threshold,
        )
    return {"expiring_soon": count, "threshold": threshold, "alert": count > threshold}
