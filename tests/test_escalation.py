"""Escalation scheduling, sweeping and dispatch tests."""

from datetime import datetime, timedelta

import pytest

from healit.exceptions import NotFound, ValidationError
from healit.models import AuditLog, Escalation, Patient, Reminder, ReminderInstance
from healit.services.escalation import (
    EscalationSweeper,
    LadderEscalationPolicy,
    schedule_escalation,
)
from healit.services.instance_generator import InstanceGenerator
from healit.services.notification import ReminderDispatcher
from healit.services.responses import respond_to_reminder

NOW = datetime(2026, 1, 13, 9, 0)
TRIGGER = NOW + timedelta(hours=2)


def _escalate(db, item, trigger_at=TRIGGER, **kwargs):
    return schedule_escalation(db, item.organization_id, trigger_at, followup_item_id=item.id, **kwargs)


def test_sweep_ignores_escalations_not_yet_due(db, make_followup):
    item = make_followup(due_at=NOW)
    _escalate(db, item)

    result = EscalationSweeper().sweep(db, TRIGGER - timedelta(minutes=1))

    assert result.processed == 0


def test_sweep_resolves_when_parent_already_closed(db, make_followup):
    item = make_followup(due_at=NOW)
    escalation = _escalate(db, item)
    # 상태 변경 경로를 거치지 않고 종료된 경우
    item.status = "done"
    db.commit()

    result = EscalationSweeper().sweep(db, TRIGGER)

    assert (result.processed, result.resolved, result.triggered) == (1, 1, 0)
    db.refresh(escalation)
    assert escalation.status == "resolved"
    assert db.query(Reminder).count() == 0
    assert db.query(AuditLog).filter(AuditLog.action == "escalate").count() == 0


def test_sweep_triggers_and_queues_notification(db, make_followup):
    item = make_followup(due_at=NOW, priority="high")
    escalation = _escalate(db, item, level=2, target_role="clinician")

    result = EscalationSweeper().sweep(db, TRIGGER)

    assert (result.triggered, result.notifications_queued, result.failed) == (1, 1, 0)
    db.refresh(escalation)
    assert escalation.status == "triggered"
    assert escalation.triggered_at == TRIGGER

    audit = db.query(AuditLog).filter(AuditLog.action == "escalate").one()
    assert audit.entity_type == "followup_item"
    assert audit.entity_id == item.id
    assert audit.meta == {"escalation_id": escalation.id, "level": 2, "target_role": "clinician"}

    notification = db.query(Reminder).one()
    assert notification.status == "queued"
    assert notification.escalation_id == escalation.id
    assert notification.followup_item_id == item.id
    assert notification.scheduled_at == TRIGGER
    assert "2단계" in notification.message_content


def test_second_sweep_does_not_retrigger(db, make_followup):
    item = make_followup(due_at=NOW)
    _escalate(db, item)
    sweeper = EscalationSweeper()

    sweeper.sweep(db, TRIGGER)
    again = sweeper.sweep(db, TRIGGER + timedelta(minutes=5))

    assert again.processed == 0
    assert db.query(AuditLog).filter(AuditLog.action == "escalate").count() == 1
    assert db.query(Reminder).count() == 1


def test_one_failure_does_not_stop_the_batch(db, make_followup, monkeypatch):
    broken = _escalate(db, make_followup(due_at=NOW))
    healthy = _escalate(db, make_followup(due_at=NOW))
    original = EscalationSweeper._build_notification

    def flaky(session, escalation, now):
        if escalation.id == broken.id:
            raise RuntimeError("notification template missing")
        return original(session, escalation, now)

    monkeypatch.setattr(EscalationSweeper, "_build_notification", staticmethod(flaky))

    result = EscalationSweeper().sweep(db, TRIGGER)

    assert (result.processed, result.triggered, result.failed) == (2, 1, 1)
    assert result.notifications_queued == 1
    assert result.errors[0]["escalation_id"] == broken.id
    db.expire_all()
    assert db.get(Escalation, broken.id).status == "pending"
    assert db.get(Escalation, healthy.id).status == "triggered"


def test_reminder_escalation_marks_instance(db, patient, make_routine):
    make_routine()
    [instance_id] = InstanceGenerator.ensure_today_instances(db, patient.organization_id, patient.id, NOW)
    schedule_escalation(db, patient.organization_id, NOW, level=2, target_role="patient",
                        reminder_instance_id=instance_id)

    EscalationSweeper().sweep(db, NOW)

    instance = db.get(ReminderInstance, instance_id)
    db.refresh(instance)
    assert instance.status == "escalated"
    assert instance.escalation_level == 2

    notification = db.query(Reminder).one()
    assert notification.channel == "email"
    assert notification.recipient_email == patient.email

    # 에스컬레이션된 인스턴스도 응답 가능
    assert respond_to_reminder(db, instance_id, "taken", now=NOW).status == "confirmed"


def test_ladder_policy_schedules_next_level(db, make_followup):
    item = make_followup(due_at=NOW)
    _escalate(db, item)
    sweeper = EscalationSweeper(policy=LadderEscalationPolicy([(30, "clinician")]))

    first = sweeper.sweep(db, TRIGGER)

    assert first.follow_on_scheduled == 1
    follow_on = db.query(Escalation).filter(Escalation.status == "pending").one()
    assert (follow_on.level, follow_on.target_role) == (2, "clinician")
    assert follow_on.trigger_at == TRIGGER + timedelta(minutes=30)

    second = sweeper.sweep(db, TRIGGER + timedelta(minutes=30))

    assert (second.triggered, second.follow_on_scheduled) == (1, 0)
    assert db.query(Escalation).filter(Escalation.status == "pending").count() == 0


def test_follow_on_failure_keeps_trigger_committed(db, make_followup):
    item = make_followup(due_at=NOW)
    first = _escalate(db, item)
    # 이미 더 높은 단계가 예약되어 있어 2단계 예약은 거부됨
    third = _escalate(db, item, level=3, trigger_at=TRIGGER + timedelta(days=1))
    sweeper = EscalationSweeper(policy=LadderEscalationPolicy([(30, "staff")]))

    result = sweeper.sweep(db, TRIGGER)

    assert (result.triggered, result.failed, result.notifications_queued) == (1, 0, 1)
    assert result.follow_on_scheduled == 0
    db.expire_all()
    assert db.get(Escalation, first.id).status == "triggered"
    assert db.get(Escalation, third.id).status == "pending"
    assert db.query(Reminder).filter(Reminder.escalation_id == first.id).count() == 1
    assert db.query(AuditLog).filter(AuditLog.action == "escalate").count() == 1

    assert sweeper.sweep(db, TRIGGER + timedelta(minutes=5)).processed == 0

def test_ladder_rejects_unknown_role():
    with pytest.raises(ValidationError):
        LadderEscalationPolicy([(30, "janitor")])


def test_schedule_validation(db, make_followup, patient, make_routine):
    item = make_followup(due_at=NOW)
    make_routine()
    [instance_id] = InstanceGenerator.ensure_today_instances(db, patient.organization_id, patient.id, NOW)

    with pytest.raises(ValidationError):
        schedule_escalation(db, item.organization_id, TRIGGER)
    with pytest.raises(ValidationError):
        schedule_escalation(db, item.organization_id, TRIGGER, followup_item_id=item.id,
                            reminder_instance_id=instance_id)
    with pytest.raises(ValidationError):
        _escalate(db, item, level=0)
    with pytest.raises(ValidationError):
        _escalate(db, item, target_role="janitor")
    with pytest.raises(NotFound):
        schedule_escalation(db, item.organization_id + 1, TRIGGER, followup_item_id=item.id)


def test_levels_never_decrease(db, make_followup):
    item = make_followup(due_at=NOW)
    _escalate(db, item, level=2)

    with pytest.raises(ValidationError):
        _escalate(db, item, level=1)
    assert _escalate(db, item, level=2, trigger_at=TRIGGER + timedelta(hours=1)).level == 2


def test_cannot_escalate_closed_item(db, make_followup):
    item = make_followup(due_at=NOW, status="dismissed")
    with pytest.raises(ValidationError):
        _escalate(db, item)


def _queue(db, item, channel="email", scheduled_at=NOW, **fields):
    reminder = Reminder(
        organization_id=item.organization_id,
        followup_item_id=item.id,
        channel=channel,
        message_content="Book the cardiology visit",
        scheduled_at=scheduled_at,
        status="queued",
        **fields,
    )
    db.add(reminder)
    db.commit()
    return reminder


def test_dispatcher_sends_payload(db, make_followup, fake_transport, patient):
    item = make_followup(due_at=NOW + timedelta(days=2), priority="high")
    reminder = _queue(db, item)

    result = ReminderDispatcher(transport=fake_transport).dispatch_due(db, NOW)

    assert result["sent"] == 1
    db.refresh(reminder)
    assert reminder.status == "sent"
    assert reminder.sent_at == NOW
    assert fake_transport.sent == [{
        "recipient": patient.email,
        "patientName": patient.name,
        "followupDescription": item.description,
        "dueAt": item.due_at.isoformat(),
        "priority": "high",
    }]


def test_dispatcher_records_transport_failure(db, make_followup, fake_transport):
    reminder = _queue(db, make_followup(due_at=NOW))
    fake_transport.fail = True

    result = ReminderDispatcher(transport=fake_transport).dispatch_due(db, NOW)

    assert result["failed"] == 1
    assert result["errors"] == []
    db.refresh(reminder)
    assert reminder.status == "failed"
    assert reminder.error_message == "webhook unavailable"


def test_dispatcher_fails_without_recipient(db, organization, make_followup, fake_transport):
    silent = Patient(organization_id=organization.id, name="No Contact")
    db.add(silent)
    db.commit()
    reminder = _queue(db, make_followup(due_at=NOW, target_patient=silent), channel="sms")

    ReminderDispatcher(transport=fake_transport).dispatch_due(db, NOW)

    db.refresh(reminder)
    assert reminder.status == "failed"
    assert reminder.error_message == "수신자 연락처가 없습니다."
    assert fake_transport.sent == []


def test_dispatcher_cancels_for_closed_items_and_delivers_in_app(db, make_followup, fake_transport):
    closed = make_followup(due_at=NOW)
    stale = _queue(db, closed)
    closed.status = "done"
    db.commit()
    in_app = _queue(db, make_followup(due_at=NOW), channel="in_app")
    future = _queue(db, make_followup(due_at=NOW), scheduled_at=NOW + timedelta(hours=1))

    result = ReminderDispatcher(transport=fake_transport).dispatch_due(db, NOW)

    assert (result["canceled"], result["delivered"]) == (1, 1)
    db.refresh(stale)
    db.refresh(in_app)
    assert stale.status == "canceled"
    assert in_app.status == "delivered"
    assert fake_transport.sent == []
    db.refresh(future)
    assert future.status == "queued"


def test_dispatcher_cancels_when_escalated_reminder_is_answered(db, patient, make_routine, fake_transport):
    make_routine()
    [instance_id] = InstanceGenerator.ensure_today_instances(db, patient.organization_id, patient.id, NOW)
    escalation = schedule_escalation(db, patient.organization_id, NOW, target_role="patient",
                                     reminder_instance_id=instance_id)
    EscalationSweeper().sweep(db, NOW)
    respond_to_reminder(db, instance_id, "taken", now=NOW + timedelta(minutes=1))

    result = ReminderDispatcher(transport=fake_transport).dispatch_due(db, NOW + timedelta(minutes=2))

    assert (result["canceled"], result["sent"]) == (1, 0)
    notification = db.query(Reminder).filter(Reminder.escalation_id == escalation.id).one()
    db.refresh(notification)
    assert notification.status == "canceled"
    assert fake_transport.sent == []
