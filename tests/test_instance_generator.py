"""Instance generation tests for :mod:`healit.services.instance_generator`."""

from datetime import date, datetime, time

import pytest

from healit.exceptions import NotFound
from healit.models import ReminderInstance
from healit.services.instance_generator import InstanceGenerator
from healit.services.routine import RoutineService

NOW = datetime(2026, 1, 13, 6, 0)


def _instances(db):
    return db.query(ReminderInstance).order_by(ReminderInstance.id).all()


def test_generates_one_instance_per_rule_and_day(db, patient, make_routine):
    routine = make_routine()

    first = InstanceGenerator.ensure_today_instances(db, patient.organization_id, patient.id, NOW)
    second = InstanceGenerator.ensure_today_instances(db, patient.organization_id, patient.id, NOW)

    assert first == second
    instances = _instances(db)
    assert len(instances) == 1
    assert instances[0].routine_id == routine.id
    assert instances[0].calendar_day == date(2026, 1, 13)
    assert instances[0].scheduled_at == datetime(2026, 1, 13, 8, 0)
    assert instances[0].status == "pending"


def test_calendar_day_follows_routine_timezone(db, patient, make_routine):
    make_routine(timezone="Asia/Jerusalem")

    # 23:30 UTC is already the next day in Jerusalem
    InstanceGenerator.ensure_today_instances(db, patient.organization_id, patient.id, datetime(2026, 1, 13, 23, 30))

    instance = _instances(db)[0]
    assert instance.calendar_day == date(2026, 1, 14)
    assert instance.scheduled_at == datetime(2026, 1, 14, 6, 0)


def test_skips_rules_not_firing_today(db, patient, make_routine):
    make_routine(days=["wednesday"])

    assert InstanceGenerator.ensure_today_instances(db, patient.organization_id, patient.id, NOW) == []
    assert _instances(db) == []


def test_concurrent_insert_returns_existing_instance(db, patient, make_routine, monkeypatch):
    make_routine()
    [existing_id] = InstanceGenerator.ensure_today_instances(db, patient.organization_id, patient.id, NOW)

    original = InstanceGenerator.find_active_instance
    calls = []

    def lagging_lookup(session, schedule_rule_id, calendar_day):
        # 첫 조회는 다른 생성기의 커밋을 아직 못 본 상황
        calls.append(schedule_rule_id)
        if len(calls) == 1:
            return None
        return original(session, schedule_rule_id, calendar_day)

    monkeypatch.setattr(InstanceGenerator, "find_active_instance", staticmethod(lagging_lookup))

    ids = InstanceGenerator.ensure_today_instances(db, patient.organization_id, patient.id, NOW)

    assert ids == [existing_id]
    assert len(calls) == 2
    assert len(_instances(db)) == 1


def test_unknown_patient_raises_not_found(db, organization):
    with pytest.raises(NotFound):
        InstanceGenerator.ensure_today_instances(db, organization.id, 9999, NOW)


def test_patient_from_other_organization_is_not_found(db, patient, make_routine):
    make_routine()
    with pytest.raises(NotFound):
        InstanceGenerator.ensure_today_instances(db, patient.organization_id + 1, patient.id, NOW)


def test_deactivated_rule_cancels_instances_and_stops_generation(db, patient, make_routine):
    routine = make_routine()
    InstanceGenerator.ensure_today_instances(db, patient.organization_id, patient.id, NOW)
    rule = routine.schedule_rules[0]

    canceled = RoutineService(db).deactivate_schedule_rule(rule.id, patient.organization_id)

    assert canceled == 1
    db.expire_all()
    assert [i.status for i in _instances(db)] == ["canceled"]
    assert InstanceGenerator.ensure_today_instances(db, patient.organization_id, patient.id, NOW) == []


def test_canceled_instance_does_not_block_new_rule_on_same_day(db, patient, make_routine):
    routine = make_routine()
    service = RoutineService(db)
    InstanceGenerator.ensure_today_instances(db, patient.organization_id, patient.id, NOW)
    service.deactivate_routine(routine.id, patient.organization_id)

    replacement = make_routine(name="Evening pills", at=time(20, 0))
    ids = InstanceGenerator.ensure_today_instances(db, patient.organization_id, patient.id, NOW)

    assert len(ids) == 1
    db.expire_all()
    statuses = {i.routine_id: i.status for i in _instances(db)}
    assert statuses == {routine.id: "canceled", replacement.id: "pending"}


def test_generate_for_all_patients_reports_counts(db, organization, patient, make_routine):
    from healit.models import Patient

    other = Patient(organization_id=organization.id, name="Noa Cohen")
    db.add(other)
    db.commit()
    make_routine()
    make_routine(target_patient=other, name="Pickup", type="pickup")

    result = InstanceGenerator.ensure_instances_for_all_patients(db, NOW)

    assert result == {"patients": 2, "instances": 2, "errors": 0}
