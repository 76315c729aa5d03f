from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, JSON, Boolean, CheckConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from healit.database import Base

EVENT_TYPES = ("referral", "lab_result", "discharge", "visit_note", "message", "appointment")
FOLLOWUP_CATEGORIES = ("schedule_appointment", "repeat_test", "review_result", "medication_check", "admin_other", "referral")
FOLLOWUP_PRIORITIES = ("high", "medium", "low")
FOLLOWUP_STATUSES = ("open", "in_progress", "done", "dismissed")
OPEN_FOLLOWUP_STATUSES = ("open", "in_progress")
TERMINAL_FOLLOWUP_STATUSES = ("done", "dismissed")
OWNER_ROLES = ("patient", "staff", "clinician")
ESCALATION_STATUSES = ("pending", "triggered", "resolved")
REMINDER_CHANNELS = ("email", "sms", "whatsapp", "push", "in_app")
OUTBOUND_STATUSES = ("queued", "sent", "delivered", "failed", "canceled")

# 외부 임상 이벤트 (의뢰, 검사 결과, 예약 등)
class ClinicalEvent(Base):
    __tablename__ = "clinical_events"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False, index=True)
    type = Column(String(30), nullable=False)  # referral, lab_result, discharge, visit_note, message, appointment
    source = Column(String(50), default="manual")
    payload_json = Column(JSON)
    processed = Column(Boolean, default=False)
    occurred_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, server_default=func.now())

# 후속조치 항목
class FollowupItem(Base):
    __tablename__ = "followup_items"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False, index=True)
    event_id = Column(Integer, ForeignKey("clinical_events.id"))
    category = Column(String(30), nullable=False)
    description = Column(Text, nullable=False)
    due_at = Column(DateTime, nullable=False)  # UTC
    priority = Column(String(10), nullable=False, default="medium")  # high, medium, low
    status = Column(String(20), nullable=False, default="open")  # open, in_progress, done, dismissed
    owner_role = Column(String(20), nullable=False, default="staff")  # patient, staff, clinician
    assigned_to = Column(String(64))
    closure_reason = Column(Text)
    created_by = Column(String(64), nullable=False, default="system")
    meta = Column("metadata", JSON)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    # 관계 설정
    patient = relationship("Patient")
    event = relationship("ClinicalEvent")

# "이 시각까지 미해결이면 이 역할에게 알림" 지시
class Escalation(Base):
    __tablename__ = "escalations"
    __table_args__ = (
        CheckConstraint(
            "(followup_item_id IS NULL) <> (reminder_instance_id IS NULL)",
            name="ck_escalation_single_target",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False)
    followup_item_id = Column(Integer, ForeignKey("followup_items.id"), index=True)
    reminder_instance_id = Column(Integer, ForeignKey("reminder_instances.id"), index=True)
    level = Column(Integer, nullable=False, default=1)
    target_role = Column(String(20), nullable=False, default="staff")
    trigger_at = Column(DateTime, nullable=False, index=True)
    status = Column(String(20), nullable=False, default="pending")  # pending, triggered, resolved
    triggered_at = Column(DateTime)
    resolved_at = Column(DateTime)
    created_at = Column(DateTime, server_default=func.now())

    # 관계 설정
    followup_item = relationship("FollowupItem")
    reminder_instance = relationship("ReminderInstance")

# 외부 알림 전송 기록 (이메일/인앱 등)
class Reminder(Base):
    __tablename__ = "reminders"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False)
    followup_item_id = Column(Integer, ForeignKey("followup_items.id"), index=True)
    escalation_id = Column(Integer, ForeignKey("escalations.id"))
    channel = Column(String(20), nullable=False, default="in_app")  # email, sms, whatsapp, push, in_app
    recipient_email = Column(String(255))
    recipient_phone = Column(String(30))
    message_content = Column(Text)
    scheduled_at = Column(DateTime, nullable=False, index=True)
    status = Column(String(20), nullable=False, default="queued")  # queued, sent, delivered, failed, canceled
    sent_at = Column(DateTime)
    error_message = Column(Text)
    created_at = Column(DateTime, server_default=func.now())

    # 관계 설정
    followup_item = relationship("FollowupItem")
    escalation = relationship("Escalation")
