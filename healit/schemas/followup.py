"""
후속조치/에스컬레이션 스키마
"""
from pydantic import BaseModel, validator, Field
from typing import Optional, List, Dict, Any
from datetime import datetime

from healit.models.followup import (
    EVENT_TYPES, FOLLOWUP_CATEGORIES, FOLLOWUP_PRIORITIES, FOLLOWUP_STATUSES, OWNER_ROLES
)

class ClinicalEventCreate(BaseModel):
    patient_id: int
    type: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    source: str = "manual"
    occurred_at: Optional[datetime] = None

    @validator('type')
    def validate_type(cls, v):
        if v not in EVENT_TYPES:
            raise ValueError(f'이벤트 유형은 {", ".join(EVENT_TYPES)} 중 하나여야 합니다.')
        return v

class ClinicalEventResponse(BaseModel):
    id: int
    patient_id: int
    type: str
    source: Optional[str] = None
    payload_json: Optional[Dict[str, Any]] = None
    occurred_at: datetime

    class Config:
        from_attributes = True

class FollowupCreate(BaseModel):
    patient_id: int
    category: str
    description: str
    due_at: datetime
    priority: str = "medium"
    owner_role: str = "staff"
    assigned_to: Optional[str] = None
    event_id: Optional[int] = None

    @validator('category')
    def validate_category(cls, v):
        if v not in FOLLOWUP_CATEGORIES:
            raise ValueError('알 수 없는 후속조치 분류입니다.')
        return v

    @validator('priority')
    def validate_priority(cls, v):
        if v not in FOLLOWUP_PRIORITIES:
            raise ValueError('우선순위는 high, medium, low 중 하나여야 합니다.')
        return v

    @validator('owner_role')
    def validate_owner_role(cls, v):
        if v not in OWNER_ROLES:
            raise ValueError('담당 역할은 patient, staff, clinician 중 하나여야 합니다.')
        return v

class FollowupResponse(BaseModel):
    id: int
    organization_id: int
    patient_id: int
    event_id: Optional[int] = None
    category: str
    description: str
    due_at: datetime
    priority: str
    status: str
    owner_role: str
    assigned_to: Optional[str] = None
    closure_reason: Optional[str] = None
    created_by: str
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class FollowupStatusUpdate(BaseModel):
    status: str
    closure_reason: Optional[str] = None

    @validator('status')
    def validate_status(cls, v):
        if v not in FOLLOWUP_STATUSES:
            raise ValueError('상태는 open, in_progress, done, dismissed 중 하나여야 합니다.')
        return v

class FollowupAssign(BaseModel):
    assigned_to: Optional[str] = None

class ExtractionItem(BaseModel):
    category: Optional[str] = None
    description: str
    due_in_days: Optional[int] = None
    priority: Optional[str] = None
    owner_role: Optional[str] = None

class ExtractionRequest(BaseModel):
    """어시스턴트 추출 결과 등록 (followups 목록 또는 응답 원문 중 하나)"""
    patient_id: int
    followups: Optional[List[ExtractionItem]] = None
    assistant_message: Optional[str] = None

class EscalationCreate(BaseModel):
    trigger_at: datetime
    level: int = 1
    target_role: str = "staff"

    @validator('level')
    def validate_level(cls, v):
        if v < 1:
            raise ValueError('에스컬레이션 단계는 1 이상이어야 합니다.')
        return v

class EscalationResponse(BaseModel):
    id: int
    followup_item_id: Optional[int] = None
    reminder_instance_id: Optional[int] = None
    level: int
    target_role: str
    trigger_at: datetime
    status: str
    triggered_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class ReminderScheduleRequest(BaseModel):
    scheduled_at: datetime
    channel: Optional[str] = None
    recipient_email: Optional[str] = None
    message_content: Optional[str] = None

class OutboundReminderResponse(BaseModel):
    id: int
    followup_item_id: Optional[int] = None
    escalation_id: Optional[int] = None
    channel: str
    recipient_email: Optional[str] = None
    scheduled_at: datetime
    status: str
    sent_at: Optional[datetime] = None
    error_message: Optional[str] = None

    class Config:
        from_attributes = True

class SlipCheckResponse(BaseModel):
    organization_id: int
    generated_at: datetime
    open_count: int
    overdue_count: int
    unassigned_count: int
    high_priority_overdue: int
    referrals_without_appointments: int
    overdue_item_ids: List[int] = []
