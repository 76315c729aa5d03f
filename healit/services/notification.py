"""
알림 전송 서비스
큐에 쌓인 Reminder 레코드를 외부 전송 웹훅(이메일 발송 등)으로 넘긴다.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

import requests
from sqlalchemy.orm import Session

from healit.config import settings
from healit.exceptions import TransportFailure
from healit.models import FollowupItem, Patient, Reminder, ReminderInstance
from healit.models.followup import TERMINAL_FOLLOWUP_STATUSES
from healit.models.reminder import TERMINAL_REMINDER_STATUSES
from healit.time_utils import to_storage, utc_now

# 로거 설정
logger = logging.getLogger(__name__)

class NotificationTransport:
    """외부 알림 전송 웹훅 클라이언트"""

    def __init__(self, webhook_url: Optional[str] = None, timeout: Optional[int] = None, api_key: Optional[str] = None):
        self.webhook_url = webhook_url or settings.notification_webhook_url
        self.timeout = timeout or settings.notification_timeout
        self.api_key = api_key if api_key is not None else settings.notification_api_key

    def send(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        알림 전송

        payload: {recipient, patientName, followupDescription, dueAt, priority}
        실패 시 TransportFailure 발생 (재시도는 하지 않음)
        """
        headers = {
            "Content-Type": "application/json",
            "User-Agent": f"HealIT-Backend/{settings.app_version}"
        }
        if self.api_key:
            headers["X-API-Key"] = self.api_key

        try:
            logger.info(f"알림 웹훅 호출 시작: {self.webhook_url}")
            response = requests.post(
                url=self.webhook_url,
                json=payload,
                timeout=self.timeout,
                headers=headers
            )
            response.raise_for_status()
        except requests.exceptions.Timeout:
            raise TransportFailure(f"알림 웹훅 타임아웃 ({self.timeout}초)")
        except requests.exceptions.HTTPError as e:
            status_code = e.response.status_code if e.response is not None else None
            raise TransportFailure(f"알림 웹훅 HTTP 오류: {status_code}", status_code=status_code)
        except requests.exceptions.RequestException as e:
            raise TransportFailure(f"알림 웹훅 연결 실패: {str(e)}")

        try:
            return response.json()
        except ValueError:
            return {"raw_response": response.text}

class ReminderDispatcher:
    def __init__(self, transport: Optional[NotificationTransport] = None, batch_size: Optional[int] = None):
        self.transport = transport or NotificationTransport()
        self.batch_size = batch_size or settings.sweep_batch_size

    def dispatch_due(self, db: Session, now: Optional[datetime] = None) -> Dict[str, Any]:
        """전송 시각이 된 queued 알림 처리"""
        now = to_storage(now) if now else utc_now()
        results = {"processed": 0, "sent": 0, "delivered": 0, "failed": 0, "canceled": 0, "skipped": 0, "errors": []}

        due = db.query(Reminder).filter(
            Reminder.status == "queued",
            Reminder.scheduled_at <= now
        ).order_by(Reminder.scheduled_at, Reminder.id).limit(self.batch_size).all()

        for reminder in due:
            try:
                outcome = self._dispatch_one(db, reminder, now)
                db.commit()
                results[outcome] += 1
                results["processed"] += 1
            except Exception as e:
                db.rollback()
                results["errors"].append(f"알림 {reminder.id}: {str(e)}")
                logger.exception(f"알림 처리 실패: reminder_id={reminder.id}")

        if results["processed"] or results["errors"]:
            logger.info(f"알림 처리 완료: {results}")
        return results

    def _dispatch_one(self, db: Session, reminder: Reminder, now: datetime) -> str:
        item = reminder.followup_item
        escalation = reminder.escalation

        # 이미 끝난 항목에 대한 알림은 취소
        if self._is_stale(item, escalation):
            reminder.status = "canceled"
            return "canceled"

        if reminder.channel == "in_app":
            # 인앱 알림은 화면에 표시되므로 전달 완료로 처리
            reminder.status = "delivered"
            reminder.sent_at = now
            return "delivered"

        if not settings.notification_enabled:
            # 전송 비활성화 시 큐에 그대로 둠
            return "skipped"

        payload = self._build_payload(db, reminder)
        if not payload["recipient"]:
            reminder.status = "failed"
            reminder.error_message = "수신자 연락처가 없습니다."
            reminder.sent_at = now
            return "failed"

        try:
            self.transport.send(payload)
        except TransportFailure as e:
            reminder.status = "failed"
            reminder.error_message = e.message
            reminder.sent_at = now
            logger.warning(f"알림 전송 실패: reminder_id={reminder.id} - {e.message}")
            return "failed"

        reminder.status = "sent"
        reminder.sent_at = now
        return "sent"

    @staticmethod
    def _is_stale(item: Optional[FollowupItem], escalation) -> bool:
        if item is not None and item.status in TERMINAL_FOLLOWUP_STATUSES:
            return True
        if escalation is None:
            return False
        if escalation.status == "resolved":
            return True
        instance = escalation.reminder_instance
        return instance is not None and instance.status in TERMINAL_REMINDER_STATUSES

    @staticmethod
    def _build_payload(db: Session, reminder: Reminder) -> Dict[str, Any]:
        item: Optional[FollowupItem] = reminder.followup_item
        patient: Optional[Patient] = item.patient if item is not None else None
        if patient is None and reminder.escalation is not None and reminder.escalation.reminder_instance_id:
            instance = db.query(ReminderInstance).filter(
                ReminderInstance.id == reminder.escalation.reminder_instance_id
            ).first()
            if instance is not None:
                patient = db.query(Patient).filter(Patient.id == instance.patient_id).first()

        if reminder.channel == "email":
            recipient = reminder.recipient_email or (patient.email if patient else None)
        else:
            recipient = reminder.recipient_phone or (patient.phone if patient else None)

        return {
            "recipient": recipient,
            "patientName": patient.name if patient else "Patient",
            "followupDescription": (item.description if item else None) or reminder.message_content or "Follow-up reminder",
            "dueAt": item.due_at.isoformat() if item else None,
            "priority": item.priority if item else None,
        }
