"""Follow-up service tests for :mod:`healit.services.followup`."""

from datetime import datetime, timedelta

import pytest

from healit.exceptions import InvalidStateTransition, NotFound, ValidationError
from healit.models import AuditLog, Escalation, FollowupItem, Reminder
from healit.services.escalation import schedule_escalation
from healit.services.followup import FollowupService, create_followups_from_extraction, parse_extraction_block

NOW = datetime(2026, 1, 13, 12, 0)

ASSISTANT_MESSAGE = """Here is what I found in the discharge letter.

```json
{"followups": [
  {"category": "repeat_test", "description": "Repeat CBC", "due_in_days": 3, "priority": "high"},
  "not an object",
  {"description": "Call the pharmacy"}
]}
```
"""


def test_parse_extraction_block_reads_followups():
    parsed = parse_extraction_block(ASSISTANT_MESSAGE)

    assert [item["description"] for item in parsed] == ["Repeat CBC", "Call the pharmacy"]


@pytest.mark.parametrize("text", [None, "", "no block here", "```json\n{broken\n```", "```json\n[1, 2]\n```"])
def test_parse_extraction_block_tolerates_bad_input(text):
    assert parse_extraction_block(text) == []


def test_extraction_creates_items_with_defaults(db, patient):
    items = create_followups_from_extraction(
        db, patient.organization_id, patient.id, parse_extraction_block(ASSISTANT_MESSAGE), now=NOW
    )

    assert len(items) == 2
    cbc, pharmacy = items
    assert (cbc.category, cbc.priority, cbc.due_at) == ("repeat_test", "high", NOW + timedelta(days=3))
    assert (pharmacy.category, pharmacy.priority) == ("admin_other", "medium")
    assert pharmacy.due_at == NOW + timedelta(days=7)
    assert all(i.status == "open" and i.created_by == "assistant" for i in items)
    assert db.query(AuditLog).filter(AuditLog.entity_type == "followup_item").count() == 2


@pytest.mark.parametrize("bad", [
    {"category": "astrology", "description": "Read the stars"},
    {"description": "   "},
    {"description": "Soon", "due_in_days": "tomorrow"},
    {"description": "Past", "due_in_days": -1},
    {"description": "Odd", "priority": "urgent"},
])
def test_extraction_is_all_or_nothing(db, patient, bad):
    requests = [{"description": "Valid first item", "due_in_days": 1}, bad]

    with pytest.raises(ValidationError):
        create_followups_from_extraction(db, patient.organization_id, patient.id, requests, now=NOW)

    db.rollback()
    assert db.query(FollowupItem).count() == 0


def test_extraction_for_unknown_patient(db, organization):
    with pytest.raises(NotFound):
        create_followups_from_extraction(db, organization.id, 4242, [{"description": "x"}], now=NOW)


def test_status_transitions(db, make_followup):
    service = FollowupService(db)
    item = make_followup(due_at=NOW)

    assert service.update_followup_status(item.id, item.organization_id, "in_progress", now=NOW).status == "in_progress"
    done = service.update_followup_status(item.id, item.organization_id, "done", closure_reason="Booked", now=NOW)
    assert (done.status, done.closure_reason) == ("done", "Booked")

    for target in ("open", "in_progress", "dismissed"):
        with pytest.raises(InvalidStateTransition):
            service.update_followup_status(item.id, item.organization_id, target, now=NOW)

    audit = db.query(AuditLog).filter(AuditLog.action == "status_change").order_by(AuditLog.id).all()
    assert [(a.before_state["status"], a.after_state["status"]) for a in audit] == [
        ("open", "in_progress"), ("in_progress", "done")
    ]


def test_unknown_status_is_rejected(db, make_followup):
    item = make_followup(due_at=NOW)
    with pytest.raises(ValidationError):
        FollowupService(db).update_followup_status(item.id, item.organization_id, "archived")


def test_closing_resolves_escalations_and_cancels_reminders(db, make_followup):
    service = FollowupService(db)
    item = make_followup(due_at=NOW)
    escalation = schedule_escalation(db, item.organization_id, NOW + timedelta(hours=4), followup_item_id=item.id)
    reminder = service.schedule_reminder(item.id, item.organization_id, NOW + timedelta(hours=1), channel="email")

    service.update_followup_status(item.id, item.organization_id, "dismissed", closure_reason="Duplicate", now=NOW)

    db.refresh(escalation)
    db.refresh(reminder)
    assert escalation.status == "resolved"
    assert escalation.resolved_at == NOW
    assert reminder.status == "canceled"
    assert db.query(Escalation).filter(Escalation.status == "pending").count() == 0


def test_assign_and_reminder_rules(db, make_followup):
    service = FollowupService(db)
    item = make_followup(due_at=NOW)

    assert service.assign(item.id, item.organization_id, "nurse-7").assigned_to == "nurse-7"
    assert service.assign(item.id, item.organization_id, "").assigned_to is None

    with pytest.raises(ValidationError):
        service.schedule_reminder(item.id, item.organization_id, NOW, channel="pigeon")

    reminder = service.schedule_reminder(item.id, item.organization_id, NOW)
    assert (reminder.status, reminder.message_content) == ("queued", item.description)

    service.update_followup_status(item.id, item.organization_id, "done", now=NOW)
    with pytest.raises(InvalidStateTransition):
        service.assign(item.id, item.organization_id, "nurse-8")
    with pytest.raises(InvalidStateTransition):
        service.schedule_reminder(item.id, item.organization_id, NOW)
    assert db.query(Reminder).filter(Reminder.status == "queued").count() == 0


def test_create_followup_validates_event_ownership(db, patient):
    service = FollowupService(db)
    with pytest.raises(NotFound):
        service.create_followup(patient.organization_id, patient.id, category="review_result",
                                description="Review MRI", due_at=NOW, event_id=999)

    event = service.create_event(patient.organization_id, patient.id, "lab_result", {"test": "MRI"}, occurred_at=NOW)
    item = service.create_followup(patient.organization_id, patient.id, category="review_result",
                                   description="Review MRI", due_at=NOW + timedelta(days=2), event_id=event.id)
    assert item.event_id == event.id

    with pytest.raises(ValidationError):
        service.create_event(patient.organization_id, patient.id, "telepathy")


def test_list_followups_defaults_to_open_sorted_by_due(db, make_followup):
    later = make_followup(due_at=NOW + timedelta(days=2))
    sooner = make_followup(due_at=NOW + timedelta(days=1))
    make_followup(due_at=NOW, status="done")

    items, total = FollowupService(db).list_followups(later.organization_id)

    assert total == 2
    assert [i.id for i in items] == [sooner.id, later.id]
