from sqlalchemy import Column, Integer, String, Text, DateTime, Boolean, ForeignKey, JSON, Time
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from healit.database import Base

ROUTINE_TYPES = ("medication", "pickup", "hygiene", "chore", "gate", "custom")
ROUTINE_PRIORITIES = ("critical", "important", "flexible")
TRIGGER_TYPES = ("clock", "event")
COMPLETION_TYPES = ("confirmed", "snoozed", "skipped")

# 환자별 반복 루틴 (비활성화만 가능, 삭제 금지)
class Routine(Base):
    __tablename__ = "routines"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    type = Column(String(20), nullable=False)  # medication, pickup, hygiene, chore, gate, custom
    priority = Column(String(20), nullable=False, default="important")  # critical, important, flexible
    is_active = Column(Boolean, default=True, nullable=False)
    description = Column(Text)
    medication_info = Column(JSON)  # {"dosage": ..., "instructions": ...}
    quiet_hours_start = Column(Time)
    quiet_hours_end = Column(Time)
    timezone = Column(String(64))
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    # 관계 설정
    patient = relationship("Patient", back_populates="routines")
    schedule_rules = relationship("ScheduleRule", back_populates="routine")
    steps = relationship("RoutineStep", back_populates="routine", order_by="RoutineStep.step_order")

class ScheduleRule(Base):
    __tablename__ = "schedule_rules"

    id = Column(Integer, primary_key=True, index=True)
    routine_id = Column(Integer, ForeignKey("routines.id"), nullable=False, index=True)
    days_of_week = Column(JSON, nullable=False, default=list)  # ["monday", "wednesday", ...]
    time_of_day = Column(Time, nullable=False)
    buffer_minutes = Column(Integer, default=0, nullable=False)  # 실제 시각보다 몇 분 전에 알릴지
    trigger_type = Column(String(20), default="clock", nullable=False)  # clock, event
    trigger_description = Column(Text)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    # 관계 설정
    routine = relationship("Routine", back_populates="schedule_rules")

# 게이트 루틴 전용 단계
class RoutineStep(Base):
    __tablename__ = "routine_steps"

    id = Column(Integer, primary_key=True, index=True)
    routine_id = Column(Integer, ForeignKey("routines.id"), nullable=False, index=True)
    label = Column(String(200), nullable=False)
    is_optional = Column(Boolean, default=False, nullable=False)
    step_order = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, server_default=func.now())

    # 관계 설정
    routine = relationship("Routine", back_populates="steps")

# 완료 기록 (추가 전용 감사 로그, 수정 금지)
class RoutineCompletion(Base):
    __tablename__ = "routine_completions"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False, index=True)
    routine_id = Column(Integer, ForeignKey("routines.id"), nullable=False)
    reminder_id = Column(Integer, ForeignKey("reminder_instances.id"), index=True)
    step_id = Column(Integer, ForeignKey("routine_steps.id"), index=True)
    completion_type = Column(String(20), nullable=False)  # confirmed, snoozed, skipped
    completed_by = Column(String(20), default="patient")  # patient, staff
    notes = Column(Text)
    completed_at = Column(DateTime, nullable=False)

    # 관계 설정
    routine = relationship("Routine")
    step = relationship("RoutineStep")
