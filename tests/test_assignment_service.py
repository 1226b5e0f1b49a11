from datetime import datetime, time, timedelta, timezone

import pytest

from sla_cascade.db.enums import CascadeStatus, DistributionMethod, Role
from sla_cascade.db.models import UserWorkingHours
from sla_cascade.services import assignment_service, automation_config_service, cascade_ledger

# Wednesday
T0 = datetime(2026, 3, 11, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
def snapshot_for(make_config):
    def _make(**overrides):
        return automation_config_service.build_snapshot(make_config(**overrides))

    return _make


@pytest.fixture
def open_assignment(db, make_client):
    def _make(consultant, snapshot, assigned_at=T0, attempt_count=1):
        lead = make_client()
        assignment = cascade_ledger.create_assignment(
            db,
            lead_id=lead.id,
            consultant_id=consultant.id,
            snapshot=snapshot,
            assigned_at=assigned_at,
            attempt_count=attempt_count,
        )
        db.commit()
        return assignment

    return _make


# =============================================================================
# Volume
# =============================================================================

def test_volume_picks_consultant_with_fewest_open_leads(db, make_user, snapshot_for, open_assignment):
    snapshot = snapshot_for()
    busy = make_user()
    idle = make_user()
    open_assignment(busy, snapshot)
    open_assignment(busy, snapshot)

    chosen = assignment_service.select_consultant(db, snapshot, now=T0)

    assert chosen.id == idle.id
    assert chosen.last_assigned_at == T0


def test_volume_tie_breaks_on_oldest_last_assignment(db, make_user, snapshot_for):
    snapshot = snapshot_for()
    make_user(last_assigned_at=T0 - timedelta(hours=1))
    longest_idle = make_user(last_assigned_at=T0 - timedelta(hours=2))

    chosen = assignment_service.select_consultant(db, snapshot, now=T0)
    assert chosen.id == longest_idle.id


def test_never_assigned_consultant_goes_first(db, make_user, snapshot_for):
    snapshot = snapshot_for()
    make_user(last_assigned_at=T0 - timedelta(days=3))
    newcomer = make_user()

    chosen = assignment_service.select_consultant(db, snapshot, now=T0)
    assert chosen.id == newcomer.id


def test_counts_only_open_assignments(db, make_user, snapshot_for, open_assignment):
    snapshot = snapshot_for()
    consultant = make_user()
    assignment = open_assignment(consultant, snapshot)
    cascade_ledger.transition(db, assignment.id, CascadeStatus.ACTIVE, CascadeStatus.COMPLETED)
    db.commit()

    counts = assignment_service.count_open_assignments(db, [consultant.id])
    assert counts == {consultant.id: 0}


# =============================================================================
# Filters
# =============================================================================

def test_excluded_consultants_are_skipped(db, make_user, snapshot_for):
    snapshot = snapshot_for()
    first = make_user()
    second = make_user()

    chosen = assignment_service.select_consultant(db, snapshot, exclude_ids={first.id}, now=T0)
    assert chosen.id == second.id

    with pytest.raises(assignment_service.NoEligibleAgentError):
        assignment_service.select_consultant(db, snapshot, exclude_ids={first.id, second.id}, now=T0)


def test_managers_and_inactive_users_are_not_candidates(db, make_user, snapshot_for):
    snapshot = snapshot_for()
    make_user(Role.MANAGER)
    make_user(is_active=False)

    with pytest.raises(assignment_service.NoEligibleAgentError):
        assignment_service.select_consultant(db, snapshot, now=T0)


def test_specialty_filter_is_case_insensitive(db, make_user, snapshot_for):
    snapshot = snapshot_for(use_specialty=True)
    make_user(specialty="Residential")
    commercial = make_user(specialty="Commercial")

    chosen = assignment_service.select_consultant(db, snapshot, specialty="commercial ", now=T0)
    assert chosen.id == commercial.id


def test_specialty_filter_ignored_when_lead_has_none(db, make_user, snapshot_for):
    snapshot = snapshot_for(use_specialty=True)
    make_user(specialty="Commercial")

    pool = assignment_service.get_candidate_pool(db, snapshot, specialty=None, now=T0)
    assert len(pool) == 1


def test_region_method_forces_region_filter(db, make_user, snapshot_for):
    snapshot = snapshot_for(distribution_method=DistributionMethod.REGION)
    make_user(region="South")
    north = make_user(region="North")

    chosen = assignment_service.select_consultant(db, snapshot, region="NORTH", now=T0)
    assert chosen.id == north.id


def test_availability_respects_toggle_and_working_hours(db, make_user, snapshot_for):
    snapshot = snapshot_for(use_availability=True)
    make_user(is_available=False)
    afternoon = make_user()
    afternoon.working_hours.append(
        UserWorkingHours(weekday=T0.weekday(), start_time=time(14, 0), end_time=time(18, 0))
    )
    morning = make_user()
    morning.working_hours.append(
        UserWorkingHours(weekday=T0.weekday(), start_time=time(8, 0), end_time=time(12, 0))
    )
    db.commit()

    pool = assignment_service.get_candidate_pool(db, snapshot, now=T0)
    assert [user.id for user in pool] == [morning.id]


def test_working_hours_without_rows_means_always_available(make_user):
    user = make_user()
    assert assignment_service.is_within_working_hours(user, T0, "UTC") is True


def test_working_hours_end_at_midnight(db, make_user):
    user = make_user(timezone="UTC")
    user.working_hours.append(
        UserWorkingHours(weekday=T0.weekday(), start_time=time(20, 0), end_time=time(0, 0))
    )
    db.commit()

    assert assignment_service.is_within_working_hours(user, T0.replace(hour=23, minute=30), "UTC")
    assert not assignment_service.is_within_working_hours(user, T0, "UTC")


def test_rotation_list_restricts_pool(db, make_user, make_config):
    outsider = make_user()
    member = make_user()
    snapshot = automation_config_service.build_snapshot(make_config(rotation_user_ids=[member.id]))

    pool = assignment_service.get_candidate_pool(db, snapshot, now=T0)
    assert [user.id for user in pool] == [member.id]
    assert outsider.id not in {user.id for user in pool}


# =============================================================================
# Round robin
# =============================================================================

def test_round_robin_follows_rotation_order(db, make_user, make_config, open_assignment):
    first, second, third = make_user(), make_user(), make_user()
    snapshot = automation_config_service.build_snapshot(
        make_config(
            distribution_method=DistributionMethod.ROUND_ROBIN,
            rotation_user_ids=[first.id, second.id, third.id],
        )
    )

    picks = []
    for minute in range(4):
        chosen = assignment_service.select_consultant(db, snapshot, now=T0)
        picks.append(chosen.id)
        open_assignment(chosen, snapshot, assigned_at=T0 + timedelta(minutes=minute))

    assert picks == [first.id, second.id, third.id, first.id]


def test_round_robin_skips_unavailable_member(db, make_user, make_config, open_assignment):
    first, second, third = make_user(), make_user(), make_user()
    snapshot = automation_config_service.build_snapshot(
        make_config(
            distribution_method=DistributionMethod.ROUND_ROBIN,
            rotation_user_ids=[first.id, second.id, third.id],
        )
    )
    open_assignment(first, snapshot)
    second.is_active = False
    db.commit()

    chosen = assignment_service.select_consultant(db, snapshot, now=T0)
    assert chosen.id == third.id
