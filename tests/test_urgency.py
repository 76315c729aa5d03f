"""Urgency bucket tests for :mod:`healit.services.urgency`."""

from datetime import datetime, time, timedelta
from itertools import count

from healit.models import Organization, ReminderInstance, Routine, ScheduleRule
from healit.services.urgency import UrgencyWindows, build_today_view, classify

NOW = datetime(2026, 1, 13, 7, 50)
WINDOWS = UrgencyWindows(critical_now_window_minutes=15, next_window_minutes=120, next_bucket_limit=5)

_ids = count(1)


def _instance(at: datetime, priority: str = "important", status: str = "pending", snooze_until=None,
              buffer_minutes: int = 0) -> ReminderInstance:
    return ReminderInstance(
        id=next(_ids),
        scheduled_at=at,
        status=status,
        snooze_until=snooze_until,
        routine=Routine(name=f"{priority} routine", type="custom", priority=priority),
        schedule_rule=ScheduleRule(days_of_week=[], time_of_day=time(0), buffer_minutes=buffer_minutes),
    )


def test_buckets_partition_visible_instances():
    instances = [
        _instance(NOW - timedelta(minutes=50)),
        _instance(NOW + timedelta(minutes=10), priority="critical"),
        _instance(NOW + timedelta(minutes=10)),
        _instance(NOW + timedelta(hours=6)),
        _instance(NOW - timedelta(hours=1), status="confirmed"),
    ]

    buckets = classify(instances, NOW, WINDOWS)

    visible = {i.id for i in instances if i.status != "confirmed"}
    assert len(buckets.all_ids()) == len(set(buckets.all_ids()))
    assert set(buckets.all_ids()) == visible


def test_critical_within_window_goes_to_now():
    critical = _instance(datetime(2026, 1, 13, 8, 0), priority="critical")
    relaxed = _instance(datetime(2026, 1, 13, 8, 0), priority="flexible")

    buckets = classify([critical, relaxed], NOW, WINDOWS)

    assert buckets.now == [critical]
    assert buckets.next == [relaxed]


def test_overdue_items_are_now_with_critical_first():
    overdue = _instance(NOW - timedelta(minutes=30))
    critical_soon = _instance(NOW + timedelta(minutes=5), priority="critical")

    buckets = classify([overdue, critical_soon], NOW, WINDOWS)

    assert buckets.now == [critical_soon, overdue]


def test_next_bucket_overflow_lands_in_today():
    upcoming = [_instance(NOW + timedelta(minutes=20 + i)) for i in range(7)]
    later = _instance(NOW + timedelta(hours=5))

    buckets = classify(list(reversed(upcoming)) + [later], NOW, WINDOWS)

    assert buckets.next == upcoming[:5]
    assert buckets.today == upcoming[5:] + [later]


def test_snoozed_instance_hidden_until_snooze_ends():
    snoozed = _instance(NOW - timedelta(minutes=5), status="snoozed", snooze_until=NOW + timedelta(minutes=5))

    assert classify([snoozed], NOW, WINDOWS).all_ids() == []
    assert classify([snoozed], NOW + timedelta(minutes=5), WINDOWS).now == [snoozed]


def test_escalated_instance_stays_visible():
    escalated = _instance(NOW - timedelta(minutes=40), status="escalated")
    assert classify([escalated], NOW, WINDOWS).now == [escalated]


def test_buffer_makes_instance_actionable_before_nominal_time():
    # 15:00 픽업, 15분 전 출발
    now = datetime(2026, 1, 13, 14, 50)
    pickup = _instance(datetime(2026, 1, 13, 15, 0), buffer_minutes=15)
    plain = _instance(datetime(2026, 1, 13, 15, 0))

    buckets = classify([plain, pickup], now, WINDOWS)

    assert buckets.now == [pickup]
    assert buckets.next == [plain]
    assert pickup.scheduled_at == datetime(2026, 1, 13, 15, 0)
    assert pickup.actionable_at == datetime(2026, 1, 13, 14, 45)


def test_organization_overrides_replace_settings():
    org = Organization(id=7, name="Override", urgency_overrides={"next_bucket_limit": 2, "critical_now_window_minutes": "soon"})

    windows = UrgencyWindows.for_organization(org)

    assert windows.next_bucket_limit == 2
    assert windows.critical_now_window_minutes == UrgencyWindows.from_settings().critical_now_window_minutes


def test_organization_without_overrides_uses_settings():
    assert UrgencyWindows.for_organization(Organization(id=8, name="Plain")) == UrgencyWindows.from_settings()


def test_today_view_generates_and_buckets(db, patient, make_routine):
    make_routine(name="Morning pills", at=time(8, 0))
    make_routine(name="Brush teeth", type="hygiene", priority="flexible", at=time(8, 30))
    make_routine(name="Laundry", type="chore", priority="flexible", at=time(20, 0))

    view = build_today_view(db, patient.organization_id, patient.id, NOW)

    assert [i.routine.name for i in view["now"]] == ["Morning pills"]
    assert [i.routine.name for i in view["next"]] == ["Brush teeth"]
    assert [i.routine.name for i in view["today"]] == ["Laundry"]
    assert view["stats"]["total"] == 3
    assert view["stats"]["overdue"] == 0
    assert view["stats"]["pending"] == 3
    assert view["gate_cleared"] is True


def test_today_view_counts_overdue(db, patient, make_routine):
    make_routine(name="Morning pills", at=time(7, 0))

    view = build_today_view(db, patient.organization_id, patient.id, NOW)

    assert view["stats"]["overdue"] == 1
    assert len(view["now"]) == 1
