"""
리마인더 응답 상태 머신

pending/sent/snoozed/escalated 상태의 인스턴스만 응답을 받을 수 있고,
상태 변경은 조건부 UPDATE 로 처리해 동시 응답 중 하나만 성공한다.
"""
import logging
from datetime import datetime, time, timedelta, timezone
from typing import Optional

from sqlalchemy.orm import Session, joinedload

from healit.config import settings
from healit.exceptions import InvalidStateTransition, NotFound, ValidationError, ErrorCodes
from healit.logging_config import log_reminder_response
from healit.models import ReminderInstance, Routine, RoutineCompletion
from healit.models.reminder import LIVE_REMINDER_STATUSES, TERMINAL_REMINDER_STATUSES
from healit.services.audit import record_audit
from healit.services.escalation import resolve_escalations_for
from healit.services.events import change_feed
from healit.time_utils import get_zone, local_date, to_storage, utc_now

logger = logging.getLogger(__name__)

RESPONSE_TYPES = ("taken", "snoozed", "skipped")

# 응답 유형 → (인스턴스 상태, 완료 기록 유형)
RESPONSE_TRANSITIONS = {
    "taken": ("confirmed", "confirmed"),
    "snoozed": ("snoozed", "snoozed"),
    "skipped": ("skipped", "skipped"),
}

class ResponseStateMachine:

    @staticmethod
    def get_instance(db: Session, reminder_id: int, organization_id: Optional[int] = None) -> ReminderInstance:
        query = db.query(ReminderInstance).filter(ReminderInstance.id == reminder_id)
        if organization_id is not None:
            query = query.filter(ReminderInstance.organization_id == organization_id)
        instance = query.first()
        if not instance:
            raise NotFound("리마인더", reminder_id, ErrorCodes.REMINDER_NOT_FOUND)
        return instance

    @staticmethod
    def respond(
        db: Session,
        reminder_id: int,
        response_type: str,
        snooze_minutes: Optional[int] = None,
        skip_reason: Optional[str] = None,
        completed_by: str = "patient",
        now: Optional[datetime] = None,
        organization_id: Optional[int] = None
    ) -> ReminderInstance:
        if response_type not in RESPONSE_TRANSITIONS:
            raise ValidationError(f"응답 유형은 {', '.join(RESPONSE_TYPES)} 중 하나여야 합니다.")

        instance = ResponseStateMachine.get_instance(db, reminder_id, organization_id)
        target_status, completion_type = RESPONSE_TRANSITIONS[response_type]

        if instance.status in TERMINAL_REMINDER_STATUSES:
            raise InvalidStateTransition("리마인더", instance.status, target_status)

        now = to_storage(now) if now else utc_now()
        routine = instance.routine
        values = {
            "status": target_status,
            "response_type": response_type,
            "responded_at": now,
            "updated_at": now,
        }
        notes = None

        if response_type == "snoozed":
            minutes = settings.default_snooze_minutes if snooze_minutes is None else snooze_minutes
            if minutes <= 0 or minutes > settings.max_snooze_minutes:
                raise ValidationError(
                    f"다시 알림 시간은 1~{settings.max_snooze_minutes}분 사이여야 합니다.",
                    ErrorCodes.INVALID_SNOOZE
                )
            values["snooze_until"] = now + timedelta(minutes=minutes)
            notes = f"{minutes}분 후 다시 알림"
        elif response_type == "skipped":
            reason = (skip_reason or "").strip()
            if routine.type == "medication" and not reason:
                raise ValidationError("복약 루틴을 건너뛰려면 사유를 입력해야 합니다.", ErrorCodes.SKIP_REASON_REQUIRED)
            values["skip_reason"] = reason or None
            notes = reason or None

        # 조건부 전이 - 다른 요청이 먼저 종료시켰으면 0건
        updated = db.query(ReminderInstance).filter(
            ReminderInstance.id == instance.id,
            ReminderInstance.status.in_(LIVE_REMINDER_STATUSES)
        ).update(values, synchronize_session=False)

        if updated == 0:
            db.rollback()
            db.refresh(instance)
            raise InvalidStateTransition("리마인더", instance.status, target_status)

        db.add(RoutineCompletion(
            organization_id=instance.organization_id,
            patient_id=instance.patient_id,
            routine_id=instance.routine_id,
            reminder_id=instance.id,
            step_id=instance.step_id,
            completion_type=completion_type,
            completed_by=completed_by,
            notes=notes,
            completed_at=now
        ))

        terminal = target_status in TERMINAL_REMINDER_STATUSES
        if terminal:
            resolve_escalations_for(db, reminder_instance_id=instance.id, now=now, commit=False)
            record_audit(
                db, instance.organization_id, f"reminder_{target_status}", "reminder_instance", instance.id,
                metadata={"response_type": response_type, "completed_by": completed_by, "skip_reason": values.get("skip_reason")},
                after_state={"status": target_status}
            )

        db.commit()
        db.refresh(instance)

        log_reminder_response(instance.id, response_type, instance.status, instance.organization_id)
        change_feed.publish(
            "reminder_instances", "update", instance.id,
            organization_id=instance.organization_id,
            patient_id=instance.patient_id,
            data={"status": instance.status, "response_type": response_type}
        )
        return instance

def respond_to_reminder(
    db: Session,
    reminder_id: int,
    response_type: str,
    snooze_minutes: Optional[int] = None,
    skip_reason: Optional[str] = None,
    completed_by: str = "patient",
    now: Optional[datetime] = None,
    organization_id: Optional[int] = None
) -> ReminderInstance:
    """리마인더 응답 처리 (taken / snoozed / skipped)"""
    return ResponseStateMachine.respond(
        db, reminder_id, response_type,
        snooze_minutes=snooze_minutes,
        skip_reason=skip_reason,
        completed_by=completed_by,
        now=now,
        organization_id=organization_id
    )

def in_quiet_hours(routine: Routine, instant: datetime) -> bool:
    """루틴 현지 시각이 방해 금지 시간대인지 (자정을 넘는 구간 지원)"""
    start, end = routine.quiet_hours_start, routine.quiet_hours_end
    if start is None or end is None or start == end:
        return False

    local = _local_time(instant, routine.timezone)
    if start < end:
        return start <= local < end
    return local >= start or local < end

def _local_time(instant: datetime, tz_name: Optional[str]) -> time:
    aware = to_storage(instant).replace(tzinfo=timezone.utc)
    return aware.astimezone(get_zone(tz_name)).time().replace(tzinfo=None)

def mark_due_instances_sent(db: Session, now: Optional[datetime] = None) -> int:
    """
    실행 가능 시각(actionable_at)이 된 pending 인스턴스를 sent 로 전환

    critical 이 아닌 루틴은 방해 금지 시간대에 보류한다.
    """
    now = to_storage(now) if now else utc_now()
    pending = db.query(ReminderInstance).join(Routine, ReminderInstance.routine_id == Routine.id).options(
        joinedload(ReminderInstance.schedule_rule)
    ).filter(
        ReminderInstance.status == "pending",
        Routine.is_active == True
    ).order_by(ReminderInstance.scheduled_at).all()

    sent = 0
    for instance in pending:
        if instance.actionable_at > now:
            continue
        routine = instance.routine
        if routine.priority != "critical" and in_quiet_hours(routine, now):
            continue
        sent += db.query(ReminderInstance).filter(
            ReminderInstance.id == instance.id,
            ReminderInstance.status == "pending"
        ).update({"status": "sent", "updated_at": now}, synchronize_session=False)

    db.commit()
    if sent:
        logger.info(f"리마인더 발송 처리: {sent}건")
    return sent

def expire_stale_instances(db: Session, now: Optional[datetime] = None) -> int:
    """지난 날짜의 미응답 인스턴스를 expired 로 종료"""
    now = to_storage(now) if now else utc_now()
    candidates = db.query(ReminderInstance).filter(
        ReminderInstance.status.in_(LIVE_REMINDER_STATUSES)
    ).all()

    expired = 0
    for instance in candidates:
        if instance.calendar_day >= local_date(now, instance.routine.timezone):
            continue
        updated = db.query(ReminderInstance).filter(
            ReminderInstance.id == instance.id,
            ReminderInstance.status.in_(LIVE_REMINDER_STATUSES)
        ).update({"status": "expired", "updated_at": now}, synchronize_session=False)
        if updated:
            resolve_escalations_for(db, reminder_instance_id=instance.id, now=now, commit=False)
            expired += updated

    db.commit()
    if expired:
        logger.info(f"리마인더 만료 처리: {expired}건")
    return expired
