from datetime import timedelta

from sqlalchemy import Column, Integer, String, Text, DateTime, Date, ForeignKey, JSON, Index, text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from healit.database import Base

REMINDER_STATUSES = ("pending", "sent", "confirmed", "snoozed", "skipped", "escalated", "expired", "canceled")
# 응답 가능한(아직 끝나지 않은) 상태, escalated 도 환자가 응답할 수 있으므로 포함
LIVE_REMINDER_STATUSES = ("pending", "sent", "snoozed", "escalated")
TERMINAL_REMINDER_STATUSES = ("confirmed", "skipped", "expired", "canceled")

# 스케줄 규칙의 하루치 발생 인스턴스
class ReminderInstance(Base):
    __tablename__ = "reminder_instances"
    __table_args__ = (
        # (규칙, 날짜)당 취소되지 않은 인스턴스는 최대 1개
        Index(
            "uq_reminder_rule_day_active",
            "schedule_rule_id",
            "calendar_day",
            unique=True,
            sqlite_where=text("status != 'canceled'"),
            postgresql_where=text("status != 'canceled'"),
        ),
        Index("ix_reminder_patient_scheduled", "patient_id", "scheduled_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False)
    routine_id = Column(Integer, ForeignKey("routines.id"), nullable=False, index=True)
    schedule_rule_id = Column(Integer, ForeignKey("schedule_rules.id"))
    step_id = Column(Integer, ForeignKey("routine_steps.id"))
    calendar_day = Column(Date, nullable=False)  # 루틴 시간대 기준 날짜
    scheduled_at = Column(DateTime, nullable=False)  # UTC
    status = Column(String(20), nullable=False, default="pending")
    escalation_level = Column(Integer, nullable=False, default=0)
    responded_at = Column(DateTime)
    response_type = Column(String(20))  # taken, snoozed, skipped
    skip_reason = Column(Text)
    snooze_until = Column(DateTime)
    meta = Column("metadata", JSON)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    # 관계 설정 (그룹핑용 약한 참조, 규칙 삭제 시 연쇄 삭제 금지)
    routine = relationship("Routine")
    schedule_rule = relationship("ScheduleRule")

    @property
    def actionable_at(self):
        """buffer_minutes 만큼 앞당긴 실행 가능 시각 (scheduled_at 은 명목 시각 그대로)"""
        buffer = self.schedule_rule.buffer_minutes if self.schedule_rule is not None else 0
        return self.scheduled_at - timedelta(minutes=buffer or 0)
