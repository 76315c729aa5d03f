"""
에스컬레이션 스위퍼

기한이 지난 pending 에스컬레이션을 찾아, 대상이 이미 종료됐으면 스스로 해결 처리하고
아니면 triggered 로 전환한 뒤 담당 역할에게 보낼 알림을 큐에 넣는다.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from healit.config import settings
from healit.exceptions import NotFound, ValidationError, ErrorCodes
from healit.logging_config import log_escalation_event
from healit.models import Escalation, FollowupItem, Reminder, ReminderInstance, Patient
from healit.models.followup import OWNER_ROLES, TERMINAL_FOLLOWUP_STATUSES
from healit.models.reminder import LIVE_REMINDER_STATUSES, TERMINAL_REMINDER_STATUSES
from healit.services.audit import record_audit
from healit.services.events import change_feed
from healit.time_utils import to_storage, utc_now

logger = logging.getLogger(__name__)

@dataclass
class SweepResult:
    processed: int = 0
    triggered: int = 0
    resolved: int = 0
    failed: int = 0
    notifications_queued: int = 0
    follow_on_scheduled: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "processed": self.processed,
            "triggered": self.triggered,
            "resolved": self.resolved,
            "failed": self.failed,
            "notifications_queued": self.notifications_queued,
            "follow_on_scheduled": self.follow_on_scheduled,
            "errors": self.errors,
        }

class EscalationPolicy:
    """발동된 에스컬레이션 다음 단계 결정 (기본: 다음 단계 없음)"""

    def next_step(self, escalation: Escalation, now: datetime) -> Optional[Tuple[int, str, datetime]]:
        return None

class LadderEscalationPolicy(EscalationPolicy):
    """
    단계별 (지연 분, 대상 역할) 사다리

    예: [(30, "staff"), (120, "clinician")] 이면 1단계 발동 30분 후 2단계(staff),
    2단계 발동 120분 후 3단계(clinician)가 예약된다.
    """

    def __init__(self, ladder: Sequence[Tuple[int, str]]):
        for delay, role in ladder:
            if delay < 0 or role not in OWNER_ROLES:
                raise ValidationError(f"잘못된 에스컬레이션 단계: ({delay}, {role})")
        self.ladder = list(ladder)

    def next_step(self, escalation: Escalation, now: datetime) -> Optional[Tuple[int, str, datetime]]:
        index = escalation.level - 1
        if index >= len(self.ladder):
            return None
        delay, role = self.ladder[index]
        return escalation.level + 1, role, now + timedelta(minutes=delay)

def _parent_status(db: Session, escalation: Escalation) -> Optional[str]:
    if escalation.followup_item_id is not None:
        item = db.query(FollowupItem.status).filter(FollowupItem.id == escalation.followup_item_id).first()
    else:
        item = db.query(ReminderInstance.status).filter(ReminderInstance.id == escalation.reminder_instance_id).first()
    return item[0] if item else None

def is_parent_terminal(status: Optional[str]) -> bool:
    # 대상이 사라진 경우도 종료로 취급
    return status is None or status in TERMINAL_FOLLOWUP_STATUSES or status in TERMINAL_REMINDER_STATUSES

def schedule_escalation(
    db: Session,
    organization_id: int,
    trigger_at: datetime,
    level: int = 1,
    target_role: str = "staff",
    followup_item_id: Optional[int] = None,
    reminder_instance_id: Optional[int] = None,
    commit: bool = True
) -> Escalation:
    """에스컬레이션 예약 (대상은 후속조치 또는 리마인더 중 정확히 하나)"""

    if (followup_item_id is None) == (reminder_instance_id is None):
        raise ValidationError("에스컬레이션 대상은 후속조치 또는 리마인더 중 하나여야 합니다.")
    if level < 1:
        raise ValidationError("에스컬레이션 단계는 1 이상이어야 합니다.")
    if target_role not in OWNER_ROLES:
        raise ValidationError(f"대상 역할은 {', '.join(OWNER_ROLES)} 중 하나여야 합니다.")

    if followup_item_id is not None:
        parent = db.query(FollowupItem).filter(
            FollowupItem.id == followup_item_id,
            FollowupItem.organization_id == organization_id
        ).first()
        if not parent:
            raise NotFound("후속조치", followup_item_id, ErrorCodes.FOLLOWUP_NOT_FOUND)
        target_filter = Escalation.followup_item_id == followup_item_id
    else:
        parent = db.query(ReminderInstance).filter(
            ReminderInstance.id == reminder_instance_id,
            ReminderInstance.organization_id == organization_id
        ).first()
        if not parent:
            raise NotFound("리마인더", reminder_instance_id, ErrorCodes.REMINDER_NOT_FOUND)
        target_filter = Escalation.reminder_instance_id == reminder_instance_id

    if is_parent_terminal(parent.status):
        raise ValidationError("이미 종료된 항목에는 에스컬레이션을 예약할 수 없습니다.")

    # 단계는 대상별로 감소하지 않음
    highest = db.query(func.max(Escalation.level)).filter(target_filter).scalar() or 0
    if level < highest:
        raise ValidationError(f"에스컬레이션 단계는 기존 최고 단계({highest}) 이상이어야 합니다.")

    escalation = Escalation(
        organization_id=organization_id,
        followup_item_id=followup_item_id,
        reminder_instance_id=reminder_instance_id,
        level=level,
        target_role=target_role,
        trigger_at=to_storage(trigger_at),
        status="pending"
    )
    db.add(escalation)
    db.flush()

    if commit:
        db.commit()
        db.refresh(escalation)
        change_feed.publish("escalations", "insert", escalation.id, organization_id, data={"level": level})

    logger.info(f"에스컬레이션 예약: id={escalation.id}, level={level}, trigger_at={escalation.trigger_at}")
    return escalation

def resolve_escalations_for(
    db: Session,
    followup_item_id: Optional[int] = None,
    reminder_instance_id: Optional[int] = None,
    now: Optional[datetime] = None,
    commit: bool = True
) -> int:
    """대상이 종료됐을 때 남은 pending 에스컬레이션 해결 처리"""
    if followup_item_id is None and reminder_instance_id is None:
        return 0

    now = to_storage(now) if now else utc_now()
    query = db.query(Escalation).filter(Escalation.status == "pending")
    if followup_item_id is not None:
        query = query.filter(Escalation.followup_item_id == followup_item_id)
    else:
        query = query.filter(Escalation.reminder_instance_id == reminder_instance_id)

    resolved = query.update({"status": "resolved", "resolved_at": now}, synchronize_session=False)
    if commit:
        db.commit()
    if resolved:
        logger.info(f"에스컬레이션 해결: followup_item_id={followup_item_id}, reminder_instance_id={reminder_instance_id}, count={resolved}")
    return resolved

class EscalationSweeper:
    def __init__(self, policy: Optional[EscalationPolicy] = None, batch_size: Optional[int] = None):
        self.policy = policy or EscalationPolicy()
        self.batch_size = batch_size or settings.sweep_batch_size

    def sweep(self, db: Session, now: Optional[datetime] = None) -> SweepResult:
        now = to_storage(now) if now else utc_now()
        result = SweepResult()

        due_ids = [row.id for row in db.query(Escalation.id).filter(
            Escalation.status == "pending",
            Escalation.trigger_at <= now
        ).order_by(Escalation.trigger_at, Escalation.id).limit(self.batch_size).all()]

        for escalation_id in due_ids:
            result.processed += 1
            try:
                self._process(db, escalation_id, now, result)
            except Exception as e:
                # 한 건의 실패가 배치 전체를 중단시키지 않음
                db.rollback()
                result.failed += 1
                result.errors.append({"escalation_id": escalation_id, "error": str(e)})
                logger.exception(f"에스컬레이션 처리 실패: id={escalation_id}")
                log_escalation_event(escalation_id, "failed", {"error": str(e)})

        if result.processed:
            logger.info(f"에스컬레이션 스윕 완료: {result.to_dict()}")
        return result

    def _process(self, db: Session, escalation_id: int, now: datetime, result: SweepResult):
        escalation = db.query(Escalation).filter(Escalation.id == escalation_id).first()
        if escalation is None or escalation.status != "pending":
            return

        parent_status = _parent_status(db, escalation)
        if is_parent_terminal(parent_status):
            resolved = db.query(Escalation).filter(
                Escalation.id == escalation_id,
                Escalation.status == "pending"
            ).update({"status": "resolved", "resolved_at": now}, synchronize_session=False)
            db.commit()
            if resolved:
                result.resolved += 1
                log_escalation_event(escalation_id, "resolved", {"parent_status": parent_status})
            return

        # 조건부 전이 - 동시에 실행된 다른 스위퍼가 먼저 처리했으면 0건
        claimed = db.query(Escalation).filter(
            Escalation.id == escalation_id,
            Escalation.status == "pending"
        ).update({"status": "triggered", "triggered_at": now}, synchronize_session=False)
        if not claimed:
            db.rollback()
            return

        entity_type = "followup_item" if escalation.followup_item_id is not None else "reminder_instance"
        entity_id = escalation.followup_item_id or escalation.reminder_instance_id

        if escalation.reminder_instance_id is not None:
            instance = db.query(ReminderInstance).filter(ReminderInstance.id == escalation.reminder_instance_id).first()
            db.query(ReminderInstance).filter(
                ReminderInstance.id == instance.id,
                ReminderInstance.status.in_(LIVE_REMINDER_STATUSES)
            ).update({
                "status": "escalated",
                "escalation_level": max(instance.escalation_level or 0, escalation.level),
                "updated_at": now
            }, synchronize_session=False)

        record_audit(
            db, escalation.organization_id, "escalate", entity_type, entity_id,
            metadata={"escalation_id": escalation.id, "level": escalation.level, "target_role": escalation.target_role}
        )

        db.add(self._build_notification(db, escalation, now))

        # 발동 상태, 감사 기록, 알림은 다음 단계 예약과 별개로 먼저 커밋
        db.commit()
        result.triggered += 1
        result.notifications_queued += 1

        log_escalation_event(escalation.id, "triggered", {
            "level": escalation.level,
            "target_role": escalation.target_role,
            "entity_type": entity_type,
            "entity_id": entity_id
        })
        change_feed.publish(
            "escalations", "update", escalation.id,
            organization_id=escalation.organization_id,
            data={"status": "triggered", "level": escalation.level, "entity_type": entity_type, "entity_id": entity_id}
        )

        self._schedule_follow_on(db, escalation, now, result)

    def _schedule_follow_on(self, db: Session, escalation: Escalation, now: datetime, result: SweepResult):
        """정책이 정한 다음 단계 예약 (실패해도 이미 발동된 에스컬레이션에는 영향 없음)"""
        next_step = self.policy.next_step(escalation, now)
        if next_step is None:
            return

        level, role, trigger_at = next_step
        try:
            schedule_escalation(
                db, escalation.organization_id, trigger_at,
                level=level,
                target_role=role,
                followup_item_id=escalation.followup_item_id,
                reminder_instance_id=escalation.reminder_instance_id
            )
        except Exception as e:
            db.rollback()
            logger.exception(f"다음 단계 에스컬레이션 예약 실패: id={escalation.id}, level={level}")
            log_escalation_event(escalation.id, "follow_on_failed", {"level": level, "error": str(e)})
            return
        result.follow_on_scheduled += 1

    @staticmethod
    def _build_notification(db: Session, escalation: Escalation, now: datetime) -> Reminder:
        """담당 역할에게 보낼 알림 레코드 (전송은 커밋 이후 디스패처가 처리)"""
        if escalation.followup_item_id is not None:
            item = escalation.followup_item
            patient = item.patient
            subject = item.description
        else:
            instance = escalation.reminder_instance
            patient = db.query(Patient).filter(Patient.id == instance.patient_id).first()
            subject = instance.routine.name

        recipient_email = patient.email if escalation.target_role == "patient" and patient else None
        recipient_phone = patient.phone if escalation.target_role == "patient" and patient else None
        channel = "email" if recipient_email else settings.default_reminder_channel

        return Reminder(
            organization_id=escalation.organization_id,
            followup_item_id=escalation.followup_item_id,
            escalation_id=escalation.id,
            channel=channel,
            recipient_email=recipient_email,
            recipient_phone=recipient_phone,
            message_content=f"[에스컬레이션 {escalation.level}단계 / {escalation.target_role}] {subject}",
            scheduled_at=now,
            status="queued"
        )
