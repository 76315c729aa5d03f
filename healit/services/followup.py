"""
후속조치 서비스 - 임상 이벤트, 후속조치 항목, 상태 변경, 어시스턴트 추출 결과 등록
"""
import json
import logging
import re
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from healit.config import settings
from healit.exceptions import InvalidStateTransition, NotFound, ValidationError, ErrorCodes
from healit.models import ClinicalEvent, FollowupItem, Patient, Reminder
from healit.models.followup import (
    EVENT_TYPES, FOLLOWUP_CATEGORIES, FOLLOWUP_PRIORITIES, FOLLOWUP_STATUSES,
    OPEN_FOLLOWUP_STATUSES, OWNER_ROLES, REMINDER_CHANNELS, TERMINAL_FOLLOWUP_STATUSES
)
from healit.services.audit import record_audit
from healit.services.escalation import resolve_escalations_for
from healit.services.events import change_feed
from healit.time_utils import to_storage, utc_now

logger = logging.getLogger(__name__)

DEFAULT_DUE_IN_DAYS = 7

# 허용되는 상태 전이
FOLLOWUP_TRANSITIONS = {
    "open": ("in_progress", "done", "dismissed"),
    "in_progress": ("done", "dismissed"),
}

_JSON_BLOCK = re.compile(r"```json\s*(.*?)\s*```", re.DOTALL)

def parse_extraction_block(text: Optional[str]) -> List[Dict[str, Any]]:
    """어시스턴트 응답의 ```json 블록에서 followups 목록 추출 (없거나 깨졌으면 빈 목록)"""
    if not text:
        return []
    match = _JSON_BLOCK.search(text)
    if not match:
        return []
    try:
        parsed = json.loads(match.group(1))
    except json.JSONDecodeError as e:
        logger.warning(f"추출 블록 JSON 파싱 실패: {e}")
        return []
    if not isinstance(parsed, dict):
        return []
    followups = parsed.get("followups") or []
    return [item for item in followups if isinstance(item, dict)]

class FollowupService:
    def __init__(self, db: Session):
        self.db = db

    def _get_patient(self, organization_id: int, patient_id: int) -> Patient:
        patient = self.db.query(Patient).filter(
            Patient.id == patient_id,
            Patient.organization_id == organization_id
        ).first()
        if not patient:
            raise NotFound("환자", patient_id, ErrorCodes.PATIENT_NOT_FOUND)
        return patient

    def get_followup(self, followup_id: int, organization_id: int) -> FollowupItem:
        item = self.db.query(FollowupItem).filter(
            FollowupItem.id == followup_id,
            FollowupItem.organization_id == organization_id
        ).first()
        if not item:
            raise NotFound("후속조치", followup_id, ErrorCodes.FOLLOWUP_NOT_FOUND)
        return item

    def list_followups(
        self,
        organization_id: int,
        patient_id: Optional[int] = None,
        statuses: Optional[List[str]] = None,
        skip: int = 0,
        limit: int = 20
    ):
        """후속조치 목록 (기본: 열린 항목, 기한 오름차순)"""
        query = self.db.query(FollowupItem).filter(
            FollowupItem.organization_id == organization_id,
            FollowupItem.status.in_(statuses or OPEN_FOLLOWUP_STATUSES)
        )
        if patient_id is not None:
            query = query.filter(FollowupItem.patient_id == patient_id)

        total = query.count()
        items = query.order_by(FollowupItem.due_at, FollowupItem.id).offset(skip).limit(limit).all()
        return items, total

    def create_event(
        self,
        organization_id: int,
        patient_id: int,
        type: str,
        payload: Optional[Dict[str, Any]] = None,
        source: str = "manual",
        occurred_at: Optional[datetime] = None
    ) -> ClinicalEvent:
        self._get_patient(organization_id, patient_id)
        if type not in EVENT_TYPES:
            raise ValidationError(f"이벤트 유형은 {', '.join(EVENT_TYPES)} 중 하나여야 합니다.")

        event = ClinicalEvent(
            organization_id=organization_id,
            patient_id=patient_id,
            type=type,
            source=source,
            payload_json=payload or {},
            occurred_at=to_storage(occurred_at) if occurred_at else utc_now()
        )
        self.db.add(event)
        self.db.commit()
        self.db.refresh(event)

        change_feed.publish("clinical_events", "insert", event.id, organization_id, patient_id, {"type": type})
        return event

    def _build_followup(
        self,
        organization_id: int,
        patient_id: int,
        category: str,
        description: str,
        due_at: datetime,
        priority: str = "medium",
        owner_role: str = "staff",
        assigned_to: Optional[str] = None,
        event_id: Optional[int] = None,
        created_by: str = "system"
    ) -> FollowupItem:
        if category not in FOLLOWUP_CATEGORIES:
            raise ValidationError(f"알 수 없는 후속조치 분류입니다: {category}")
        if priority not in FOLLOWUP_PRIORITIES:
            raise ValidationError(f"우선순위는 {', '.join(FOLLOWUP_PRIORITIES)} 중 하나여야 합니다.")
        if owner_role not in OWNER_ROLES:
            raise ValidationError(f"담당 역할은 {', '.join(OWNER_ROLES)} 중 하나여야 합니다.")
        if not description or not description.strip():
            raise ValidationError("후속조치 설명은 빈 값일 수 없습니다.")

        return FollowupItem(
            organization_id=organization_id,
            patient_id=patient_id,
            event_id=event_id,
            category=category,
            description=description.strip(),
            due_at=to_storage(due_at),
            priority=priority,
            status="open",
            owner_role=owner_role,
            assigned_to=assigned_to,
            created_by=created_by
        )

    def create_followup(self, organization_id: int, patient_id: int, **fields) -> FollowupItem:
        self._get_patient(organization_id, patient_id)
        event_id = fields.get("event_id")
        if event_id is not None:
            event = self.db.query(ClinicalEvent).filter(
                ClinicalEvent.id == event_id,
                ClinicalEvent.patient_id == patient_id
            ).first()
            if not event:
                raise NotFound("임상 이벤트", event_id)

        item = self._build_followup(organization_id, patient_id, **fields)
        self.db.add(item)
        self.db.flush()
        record_audit(self.db, organization_id, "create", "followup_item", item.id,
                     after_state={"status": "open", "category": item.category, "priority": item.priority},
                     user_id=item.created_by)
        self.db.commit()
        self.db.refresh(item)

        logger.info(f"후속조치 생성: id={item.id}, category={item.category}, due_at={item.due_at}")
        change_feed.publish("followup_items", "insert", item.id, organization_id, patient_id, {"status": "open"})
        return item

    def create_followups_from_extraction(
        self,
        organization_id: int,
        patient_id: int,
        requests: List[Dict[str, Any]],
        created_by: str = "assistant",
        now: Optional[datetime] = None,
        event_id: Optional[int] = None
    ) -> List[FollowupItem]:
        """
        추출된 후속조치 요청 일괄 등록

        요청 형식: {category, description, due_in_days, priority, owner_role}
        하나라도 유효하지 않으면 아무것도 저장하지 않는다.
        """
        self._get_patient(organization_id, patient_id)
        now = to_storage(now) if now else utc_now()

        items = []
        for index, request in enumerate(requests):
            due_in_days = request.get("due_in_days", DEFAULT_DUE_IN_DAYS)
            try:
                due_in_days = int(due_in_days)
            except (TypeError, ValueError):
                raise ValidationError(f"{index + 1}번째 항목의 due_in_days가 숫자가 아닙니다.")
            if due_in_days < 0:
                raise ValidationError(f"{index + 1}번째 항목의 due_in_days는 0 이상이어야 합니다.")

            items.append(self._build_followup(
                organization_id,
                patient_id,
                category=request.get("category") or "admin_other",
                description=request.get("description") or "",
                due_at=now + timedelta(days=due_in_days),
                priority=request.get("priority") or "medium",
                owner_role=request.get("owner_role") or "staff",
                event_id=event_id,
                created_by=created_by
            ))

        self.db.add_all(items)
        self.db.flush()
        for item in items:
            record_audit(self.db, organization_id, "create", "followup_item", item.id,
                         metadata={"source": "extraction"}, user_id=created_by)
        self.db.commit()

        for item in items:
            self.db.refresh(item)
            change_feed.publish("followup_items", "insert", item.id, organization_id, patient_id, {"status": "open"})

        logger.info(f"추출 후속조치 등록: patient_id={patient_id}, count={len(items)}")
        return items

    def update_followup_status(
        self,
        followup_id: int,
        organization_id: int,
        status: str,
        closure_reason: Optional[str] = None,
        user_id: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> FollowupItem:
        """상태 변경 - 종료 시 남은 에스컬레이션 해결 및 대기 알림 취소"""
        if status not in FOLLOWUP_STATUSES:
            raise ValidationError(f"상태는 {', '.join(FOLLOWUP_STATUSES)} 중 하나여야 합니다.")

        item = self.get_followup(followup_id, organization_id)
        before = item.status
        if status not in FOLLOWUP_TRANSITIONS.get(before, ()):
            raise InvalidStateTransition("후속조치", before, status)

        now = to_storage(now) if now else utc_now()
        updated = self.db.query(FollowupItem).filter(
            FollowupItem.id == item.id,
            FollowupItem.status == before
        ).update({"status": status, "closure_reason": closure_reason, "updated_at": now}, synchronize_session=False)
        if not updated:
            self.db.rollback()
            self.db.refresh(item)
            raise InvalidStateTransition("후속조치", item.status, status)

        if status in TERMINAL_FOLLOWUP_STATUSES:
            resolve_escalations_for(self.db, followup_item_id=item.id, now=now, commit=False)
            self.db.query(Reminder).filter(
                Reminder.followup_item_id == item.id,
                Reminder.status == "queued"
            ).update({"status": "canceled"}, synchronize_session=False)

        record_audit(self.db, organization_id, "status_change", "followup_item", item.id,
                     before_state={"status": before},
                     after_state={"status": status, "closure_reason": closure_reason},
                     user_id=user_id)
        self.db.commit()
        self.db.refresh(item)

        logger.info(f"후속조치 상태 변경: id={item.id}, {before} -> {status}")
        change_feed.publish("followup_items", "update", item.id, organization_id, item.patient_id, {"status": status})
        return item

    def assign(self, followup_id: int, organization_id: int, assigned_to: Optional[str], user_id: Optional[str] = None) -> FollowupItem:
        item = self.get_followup(followup_id, organization_id)
        if item.status in TERMINAL_FOLLOWUP_STATUSES:
            raise InvalidStateTransition("후속조치", item.status)

        before = item.assigned_to
        item.assigned_to = assigned_to or None
        record_audit(self.db, organization_id, "assign", "followup_item", item.id,
                     before_state={"assigned_to": before}, after_state={"assigned_to": item.assigned_to},
                     user_id=user_id)
        self.db.commit()
        self.db.refresh(item)
        change_feed.publish("followup_items", "update", item.id, organization_id, item.patient_id, {"assigned_to": item.assigned_to})
        return item

    def schedule_reminder(
        self,
        followup_id: int,
        organization_id: int,
        scheduled_at: datetime,
        channel: Optional[str] = None,
        recipient_email: Optional[str] = None,
        message_content: Optional[str] = None
    ) -> Reminder:
        """후속조치 알림 예약 (queued 상태로 저장, 디스패처가 전송)"""
        item = self.get_followup(followup_id, organization_id)
        if item.status in TERMINAL_FOLLOWUP_STATUSES:
            raise InvalidStateTransition("후속조치", item.status)

        channel = channel or settings.default_reminder_channel
        if channel not in REMINDER_CHANNELS:
            raise ValidationError(f"알림 채널은 {', '.join(REMINDER_CHANNELS)} 중 하나여야 합니다.")

        reminder = Reminder(
            organization_id=organization_id,
            followup_item_id=item.id,
            channel=channel,
            recipient_email=recipient_email,
            message_content=message_content or item.description,
            scheduled_at=to_storage(scheduled_at),
            status="queued"
        )
        self.db.add(reminder)
        self.db.commit()
        self.db.refresh(reminder)
        return reminder

def create_followups_from_extraction(
    db: Session,
    organization_id: int,
    patient_id: int,
    requests: List[Dict[str, Any]],
    created_by: str = "assistant",
    now: Optional[datetime] = None
) -> List[FollowupItem]:
    return FollowupService(db).create_followups_from_extraction(
        organization_id, patient_id, requests, created_by=created_by, now=now
    )
