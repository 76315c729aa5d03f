"""
리마인더/오늘 화면 스키마
"""
from pydantic import BaseModel, validator
from typing import Optional, List, Dict
from datetime import date, datetime

from healit.services.responses import RESPONSE_TYPES

class ReminderInstanceResponse(BaseModel):
    id: int
    routine_id: int
    schedule_rule_id: Optional[int] = None
    step_id: Optional[int] = None
    calendar_day: date
    scheduled_at: datetime
    actionable_at: Optional[datetime] = None
    status: str
    escalation_level: int
    responded_at: Optional[datetime] = None
    response_type: Optional[str] = None
    skip_reason: Optional[str] = None
    snooze_until: Optional[datetime] = None
    routine_name: Optional[str] = None
    routine_type: Optional[str] = None
    priority: Optional[str] = None

    class Config:
        from_attributes = True

    @classmethod
    def from_instance(cls, instance) -> "ReminderInstanceResponse":
        data = cls.model_validate(instance)
        if instance.routine is not None:
            data.routine_name = instance.routine.name
            data.routine_type = instance.routine.type
            data.priority = instance.routine.priority
        return data

class ReminderRespondRequest(BaseModel):
    response_type: str
    snooze_minutes: Optional[int] = None
    skip_reason: Optional[str] = None
    completed_by: str = "patient"

    @validator('response_type')
    def validate_response_type(cls, v):
        if v not in RESPONSE_TYPES:
            raise ValueError('응답 유형은 taken, snoozed, skipped 중 하나여야 합니다.')
        return v

    @validator('completed_by')
    def validate_completed_by(cls, v):
        if v not in ('patient', 'staff'):
            raise ValueError('completed_by는 patient 또는 staff 여야 합니다.')
        return v

class TodayStats(BaseModel):
    total: int
    overdue: int
    pending: int
    completed: int
    skipped: int
    closed: int

class TodayViewResponse(BaseModel):
    generated_at: datetime
    now: List[ReminderInstanceResponse]
    next: List[ReminderInstanceResponse]
    today: List[ReminderInstanceResponse]
    stats: TodayStats
    gate_cleared: bool

    @classmethod
    def from_view(cls, view: Dict) -> "TodayViewResponse":
        return cls(
            generated_at=view["generated_at"],
            now=[ReminderInstanceResponse.from_instance(i) for i in view["now"]],
            next=[ReminderInstanceResponse.from_instance(i) for i in view["next"]],
            today=[ReminderInstanceResponse.from_instance(i) for i in view["today"]],
            stats=TodayStats(**view["stats"]),
            gate_cleared=view["gate_cleared"]
        )

class GateStepItem(BaseModel):
    routine_id: int
    routine_name: str
    step_id: int
    label: str
    is_optional: bool
    step_order: int
    completed: bool
    completed_at: Optional[datetime] = None
    calendar_day: date

class GateChecklistResponse(BaseModel):
    cleared: bool
    steps: List[GateStepItem]

class GateStepConfirm(BaseModel):
    completed_by: str = "patient"
    notes: Optional[str] = None

class CompletionResponse(BaseModel):
    id: int
    routine_id: int
    reminder_id: Optional[int] = None
    step_id: Optional[int] = None
    completion_type: str
    completed_by: Optional[str] = None
    notes: Optional[str] = None
    completed_at: datetime

    class Config:
        from_attributes = True
