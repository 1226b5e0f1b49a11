import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select

from sla_cascade.db.models import Notification
from sla_cascade.jobs import registry
from sla_cascade.jobs.handlers import cascade, metrics, retention
from sla_cascade.schemas.cascade import LeadIntake
from sla_cascade.services import cascade_service


# =============================================================================
# Registry
# =============================================================================

@pytest.mark.parametrize(
    "name",
    [registry.CASCADE_TICK, registry.RETENTION_SWEEP, registry.DAILY_REPORT, registry.EXPIRING_SOON_CHECK],
)
def test_job_registry_resolves_known_handler(name):
    assert callable(registry.resolve_job_handler(name))


def test_job_registry_rejects_unknown_job():
    with pytest.raises(ValueError):
        registry.resolve_job_handler("send_email")


def test_periodic_jobs_follow_settings():
    jobs = {job.name: job for job in registry.build_periodic_jobs()}

    assert set(jobs) == set(registry.JOB_HANDLERS)
    assert jobs[registry.CASCADE_TICK].interval_seconds == 60
    assert jobs[registry.DAILY_REPORT].daily_at is not None
    assert jobs[registry.DAILY_REPORT].interval_seconds is None


# =============================================================================
# Handlers
# =============================================================================

@pytest.mark.asyncio
async def test_cascade_tick_handler_uses_its_own_session(db, session_factory, make_config, make_client, consultant):
    make_config()
    consultant_id = consultant.id
    lead = make_client()
    cascade_service.create_assignment(db, LeadIntake(client_id=lead.id))
    db.close()

    stats = await cascade.process_cascade_tick(session_factory)

    assert stats["scanned"] == 1
    assert stats["notified"] == 1
    assert stats["errors"] == []
    with session_factory() as session:
        [notification] = session.execute(select(Notification)).scalars().all()
        assert notification.user_id == consultant_id


@pytest.mark.asyncio
async def test_maintenance_handlers_run_on_empty_database(session_factory):
    sweep = await retention.process_retention_sweep(session_factory)
    report = await metrics.process_daily_report(session_factory)
    probe = await cascade.process_expiring_soon_check(session_factory)

    assert sweep["deleted"] == 0
    assert report["managers"] == 0
    assert probe["expiring_soon"] == 0


# =============================================================================
# Worker service
# =============================================================================

@pytest.mark.asyncio
async def test_worker_service_health():
    from sla_cascade.worker_service import app

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/health")
        jobs = await client.get("/health/jobs")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    assert jobs.status_code == 200
    assert jobs.json()["worker_running"] is False
