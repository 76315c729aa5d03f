"""
루틴 관련 스키마
"""
from pydantic import BaseModel, validator, Field
from typing import Optional, List, Dict, Any
from datetime import datetime, time

from healit.models.routine import ROUTINE_TYPES, ROUTINE_PRIORITIES, TRIGGER_TYPES

class ScheduleRuleCreate(BaseModel):
    days_of_week: List[str] = Field(default_factory=list)
    time_of_day: time
    buffer_minutes: int = 0
    trigger_type: str = "clock"
    trigger_description: Optional[str] = None

    @validator('buffer_minutes')
    def validate_buffer(cls, v):
        if v < 0:
            raise ValueError('buffer_minutes는 0 이상이어야 합니다.')
        return v

    @validator('trigger_type')
    def validate_trigger_type(cls, v):
        if v not in TRIGGER_TYPES:
            raise ValueError('트리거 유형은 clock, event 중 하나여야 합니다.')
        return v

class ScheduleRuleResponse(BaseModel):
    id: int
    routine_id: int
    days_of_week: List[str]
    time_of_day: time
    buffer_minutes: int
    trigger_type: str
    trigger_description: Optional[str] = None
    is_active: bool

    class Config:
        from_attributes = True

class RoutineStepCreate(BaseModel):
    label: str
    is_optional: bool = False

    @validator('label')
    def validate_label(cls, v):
        if not v or not v.strip():
            raise ValueError('단계 이름은 빈 값일 수 없습니다.')
        return v.strip()

class RoutineStepRename(BaseModel):
    label: str

class RoutineStepResponse(BaseModel):
    id: int
    routine_id: int
    label: str
    is_optional: bool
    step_order: int

    class Config:
        from_attributes = True

class RoutineCreate(BaseModel):
    name: str
    type: str
    priority: Optional[str] = None
    description: Optional[str] = None
    medication_info: Optional[Dict[str, Any]] = None
    quiet_hours_start: Optional[time] = None
    quiet_hours_end: Optional[time] = None
    timezone: Optional[str] = None
    schedules: List[ScheduleRuleCreate] = Field(default_factory=list)
    steps: List[RoutineStepCreate] = Field(default_factory=list)

    @validator('type')
    def validate_type(cls, v):
        if v not in ROUTINE_TYPES:
            raise ValueError(f'루틴 유형은 {", ".join(ROUTINE_TYPES)} 중 하나여야 합니다.')
        return v

    @validator('priority')
    def validate_priority(cls, v):
        if v is not None and v not in ROUTINE_PRIORITIES:
            raise ValueError('우선순위는 critical, important, flexible 중 하나여야 합니다.')
        return v

class RoutineResponse(BaseModel):
    id: int
    organization_id: int
    patient_id: int
    name: str
    type: str
    priority: str
    is_active: bool
    description: Optional[str] = None
    medication_info: Optional[Dict[str, Any]] = None
    quiet_hours_start: Optional[time] = None
    quiet_hours_end: Optional[time] = None
    timezone: Optional[str] = None
    schedule_rules: List[ScheduleRuleResponse] = []
    steps: List[RoutineStepResponse] = []
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class DeactivationResult(BaseModel):
    id: int
    canceled_instances: int
