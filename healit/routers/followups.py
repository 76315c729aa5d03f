"""
후속조치 라우터
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import List, Optional

from ..config import settings
from ..database import get_db
from ..exceptions import ValidationError
from ..response_models import APIResponse, PaginatedResponse, success_response, paginated_response
from ..schemas import (
    ClinicalEventCreate, ClinicalEventResponse,
    FollowupCreate, FollowupResponse, FollowupStatusUpdate, FollowupAssign,
    ExtractionRequest, EscalationCreate, EscalationResponse,
    ReminderScheduleRequest, OutboundReminderResponse, SlipCheckResponse
)
from ..services.auth import Principal, require_capability
from ..services.escalation import schedule_escalation
from ..services.followup import FollowupService, parse_extraction_block
from ..services.slip_check import compute_slip_check
from ..time_utils import utc_now

router = APIRouter()

@router.get("/slip-check", response_model=APIResponse[SlipCheckResponse])
async def get_slip_check(
    patient_id: Optional[int] = None,
    principal: Principal = Depends(require_capability("view", "dashboard")),
    db: Session = Depends(get_db)
):
    """놓치고 있는 후속조치 요약"""
    summary = compute_slip_check(db, principal.organization_id, utc_now(), patient_id=patient_id)
    return success_response(data=SlipCheckResponse(**summary.to_dict()))

@router.get("", response_model=PaginatedResponse[FollowupResponse])
async def list_followups(
    patient_id: Optional[int] = None,
    status: Optional[List[str]] = Query(None),
    page: int = Query(1, ge=1),
    size: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    principal: Principal = Depends(require_capability("view", "followups")),
    db: Session = Depends(get_db)
):
    """후속조치 목록 (기본: open, in_progress)"""
    items, total = FollowupService(db).list_followups(
        principal.organization_id,
        patient_id=patient_id,
        statuses=status,
        skip=(page - 1) * size,
        limit=size
    )
    return paginated_response([FollowupResponse.model_validate(i) for i in items], total, page, size)

@router.post("", response_model=APIResponse[FollowupResponse])
async def create_followup(
    body: FollowupCreate,
    principal: Principal = Depends(require_capability("edit", "followups")),
    db: Session = Depends(get_db)
):
    data = body.model_dump()
    patient_id = data.pop("patient_id")
    item = FollowupService(db).create_followup(
        principal.organization_id, patient_id, created_by=principal.user_id, **data
    )
    return success_response(data=FollowupResponse.model_validate(item), message="후속조치가 등록되었습니다.")

@router.post("/events", response_model=APIResponse[ClinicalEventResponse])
async def create_event(
    body: ClinicalEventCreate,
    principal: Principal = Depends(require_capability("edit", "followups")),
    db: Session = Depends(get_db)
):
    """임상 이벤트 등록 (의뢰, 검사 결과, 예약 등)"""
    event = FollowupService(db).create_event(
        principal.organization_id, body.patient_id, body.type,
        payload=body.payload, source=body.source, occurred_at=body.occurred_at
    )
    return success_response(data=ClinicalEventResponse.model_validate(event))

@router.post("/extract", response_model=APIResponse[List[FollowupResponse]])
async def create_from_extraction(
    body: ExtractionRequest,
    principal: Principal = Depends(require_capability("edit", "followups")),
    db: Session = Depends(get_db)
):
    """어시스턴트가 추출한 후속조치 등록"""
    if body.followups is not None:
        requests = [f.model_dump(exclude_none=True) for f in body.followups]
    elif body.assistant_message is not None:
        requests = parse_extraction_block(body.assistant_message)
    else:
        raise ValidationError("followups 또는 assistant_message 중 하나가 필요합니다.")

    items = FollowupService(db).create_followups_from_extraction(
        principal.organization_id, body.patient_id, requests, created_by=principal.user_id
    )
    return success_response(
        data=[FollowupResponse.model_validate(i) for i in items],
        message=f"후속조치 {len(items)}건이 등록되었습니다."
    )

@router.get("/{followup_id}", response_model=APIResponse[FollowupResponse])
async def get_followup(
    followup_id: int,
    principal: Principal = Depends(require_capability("view", "followups")),
    db: Session = Depends(get_db)
):
    item = FollowupService(db).get_followup(followup_id, principal.organization_id)
    return success_response(data=FollowupResponse.model_validate(item))

@router.patch("/{followup_id}/status", response_model=APIResponse[FollowupResponse])
async def update_status(
    followup_id: int,
    body: FollowupStatusUpdate,
    principal: Principal = Depends(require_capability("edit", "followups")),
    db: Session = Depends(get_db)
):
    """상태 변경 (종료 시 에스컬레이션 해결, 대기 알림 취소)"""
    item = FollowupService(db).update_followup_status(
        followup_id, principal.organization_id, body.status,
        closure_reason=body.closure_reason,
        user_id=principal.user_id
    )
    return success_response(data=FollowupResponse.model_validate(item))

@router.patch("/{followup_id}/assign", response_model=APIResponse[FollowupResponse])
async def assign_followup(
    followup_id: int,
    body: FollowupAssign,
    principal: Principal = Depends(require_capability("edit", "followups")),
    db: Session = Depends(get_db)
):
    item = FollowupService(db).assign(followup_id, principal.organization_id, body.assigned_to, user_id=principal.user_id)
    return success_response(data=FollowupResponse.model_validate(item))

@router.post("/{followup_id}/escalations", response_model=APIResponse[EscalationResponse])
async def schedule_followup_escalation(
    followup_id: int,
    body: EscalationCreate,
    principal: Principal = Depends(require_capability("edit", "escalations")),
    db: Session = Depends(get_db)
):
    escalation = schedule_escalation(
        db, principal.organization_id, body.trigger_at,
        level=body.level,
        target_role=body.target_role,
        followup_item_id=followup_id
    )
    return success_response(data=EscalationResponse.model_validate(escalation))

@router.post("/{followup_id}/reminders", response_model=APIResponse[OutboundReminderResponse])
async def schedule_followup_reminder(
    followup_id: int,
    body: ReminderScheduleRequest,
    principal: Principal = Depends(require_capability("edit", "followups")),
    db: Session = Depends(get_db)
):
    """후속조치 알림 예약"""
    reminder = FollowupService(db).schedule_reminder(
        followup_id, principal.organization_id, body.scheduled_at,
        channel=body.channel,
        recipient_email=body.recipient_email,
        message_content=body.message_content
    )
    return success_response(data=OutboundReminderResponse.model_validate(reminder))
