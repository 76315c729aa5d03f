"""
환자별 루틴/리마인더/게이트 라우터
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List

from ..database import get_db
from ..exceptions import NotFound, ErrorCodes
from ..response_models import APIResponse, success_response
from ..schemas import (
    RoutineCreate, RoutineResponse, ScheduleRuleCreate, ScheduleRuleResponse,
    RoutineStepRename, RoutineStepResponse, DeactivationResult,
    TodayViewResponse, ReminderInstanceResponse, ReminderRespondRequest,
    GateChecklistResponse, GateStepItem, GateStepConfirm, CompletionResponse,
    EscalationCreate, EscalationResponse
)
from ..services.auth import Principal, require_capability, ensure_patient_access
from ..services.escalation import schedule_escalation
from ..services.gate import confirm_gate_step, get_gate_checklist, is_gate_cleared
from ..services.responses import ResponseStateMachine, respond_to_reminder
from ..services.routine import RoutineService
from ..services.urgency import build_today_view
from ..time_utils import utc_now

router = APIRouter()

def _get_patient_reminder(db: Session, principal: Principal, patient_id: int, reminder_id: int):
    instance = ResponseStateMachine.get_instance(db, reminder_id, principal.organization_id)
    if instance.patient_id != patient_id:
        raise NotFound("리마인더", reminder_id, ErrorCodes.REMINDER_NOT_FOUND)
    return instance

# ==========================================
# 루틴 관리
# ==========================================

@router.get("/{patient_id}/routines", response_model=APIResponse[List[RoutineResponse]])
async def list_routines(
    patient_id: int,
    include_inactive: bool = False,
    principal: Principal = Depends(require_capability("view", "routines")),
    db: Session = Depends(get_db)
):
    """환자 루틴 목록"""
    ensure_patient_access(principal, patient_id)
    routines = RoutineService(db).list_routines(principal.organization_id, patient_id, include_inactive)
    return success_response(data=[RoutineResponse.model_validate(r) for r in routines])

@router.post("/{patient_id}/routines", response_model=APIResponse[RoutineResponse])
async def create_routine(
    patient_id: int,
    body: RoutineCreate,
    principal: Principal = Depends(require_capability("edit", "routines")),
    db: Session = Depends(get_db)
):
    """루틴 생성 (스케줄 규칙, 게이트 단계 포함)"""
    ensure_patient_access(principal, patient_id)
    data = body.model_dump()
    routine = RoutineService(db).create_routine(principal.organization_id, patient_id, **data)
    return success_response(data=RoutineResponse.model_validate(routine), message="루틴이 생성되었습니다.")

@router.post("/{patient_id}/routines/{routine_id}/schedules", response_model=APIResponse[ScheduleRuleResponse])
async def add_schedule_rule(
    patient_id: int,
    routine_id: int,
    body: ScheduleRuleCreate,
    principal: Principal = Depends(require_capability("edit", "routines")),
    db: Session = Depends(get_db)
):
    ensure_patient_access(principal, patient_id)
    service = RoutineService(db)
    routine = service.get_routine(routine_id, principal.organization_id)
    if routine.patient_id != patient_id:
        raise NotFound("루틴", routine_id, ErrorCodes.ROUTINE_NOT_FOUND)
    rule = service.add_schedule_rule(routine_id, principal.organization_id, **body.model_dump())
    return success_response(data=ScheduleRuleResponse.model_validate(rule))

@router.post("/{patient_id}/routines/{routine_id}/deactivate", response_model=APIResponse[DeactivationResult])
async def deactivate_routine(
    patient_id: int,
    routine_id: int,
    principal: Principal = Depends(require_capability("edit", "routines")),
    db: Session = Depends(get_db)
):
    """루틴 비활성화 - 남은 오늘 인스턴스는 취소 처리"""
    ensure_patient_access(principal, patient_id)
    service = RoutineService(db)
    routine = service.get_routine(routine_id, principal.organization_id)
    if routine.patient_id != patient_id:
        raise NotFound("루틴", routine_id, ErrorCodes.ROUTINE_NOT_FOUND)
    canceled = service.deactivate_routine(routine_id, principal.organization_id)
    return success_response(data=DeactivationResult(id=routine_id, canceled_instances=canceled))

@router.post("/{patient_id}/schedules/{rule_id}/deactivate", response_model=APIResponse[DeactivationResult])
async def deactivate_schedule_rule(
    patient_id: int,
    rule_id: int,
    principal: Principal = Depends(require_capability("edit", "routines")),
    db: Session = Depends(get_db)
):
    ensure_patient_access(principal, patient_id)
    canceled = RoutineService(db).deactivate_schedule_rule(rule_id, principal.organization_id, patient_id)
    return success_response(data=DeactivationResult(id=rule_id, canceled_instances=canceled))

@router.patch("/{patient_id}/steps/{step_id}", response_model=APIResponse[RoutineStepResponse])
async def rename_step(
    patient_id: int,
    step_id: int,
    body: RoutineStepRename,
    principal: Principal = Depends(require_capability("edit", "routines")),
    db: Session = Depends(get_db)
):
    ensure_patient_access(principal, patient_id)
    step = RoutineService(db).rename_step(step_id, principal.organization_id, body.label, patient_id)
    return success_response(data=RoutineStepResponse.model_validate(step))

# ==========================================
# 오늘 화면 & 응답
# ==========================================

@router.get("/{patient_id}/today", response_model=APIResponse[TodayViewResponse])
async def get_today_view(
    patient_id: int,
    principal: Principal = Depends(require_capability("view", "reminders")),
    db: Session = Depends(get_db)
):
    """오늘의 리마인더 (NOW / NEXT / TODAY)"""
    ensure_patient_access(principal, patient_id)
    view = build_today_view(db, principal.organization_id, patient_id, utc_now())
    return success_response(data=TodayViewResponse.from_view(view))

@router.post("/{patient_id}/reminders/{reminder_id}/respond", response_model=APIResponse[ReminderInstanceResponse])
async def respond(
    patient_id: int,
    reminder_id: int,
    body: ReminderRespondRequest,
    principal: Principal = Depends(require_capability("edit", "reminders")),
    db: Session = Depends(get_db)
):
    """리마인더 응답 (taken / snoozed / skipped)"""
    ensure_patient_access(principal, patient_id)
    _get_patient_reminder(db, principal, patient_id, reminder_id)

    # 환자 본인은 항상 patient 로 기록
    completed_by = "patient" if principal.role == "patient" else body.completed_by
    instance = respond_to_reminder(
        db, reminder_id, body.response_type,
        snooze_minutes=body.snooze_minutes,
        skip_reason=body.skip_reason,
        completed_by=completed_by,
        organization_id=principal.organization_id
    )
    return success_response(data=ReminderInstanceResponse.from_instance(instance))

@router.post("/{patient_id}/reminders/{reminder_id}/escalations", response_model=APIResponse[EscalationResponse])
async def schedule_reminder_escalation(
    patient_id: int,
    reminder_id: int,
    body: EscalationCreate,
    principal: Principal = Depends(require_capability("edit", "escalations")),
    db: Session = Depends(get_db)
):
    """리마인더 미응답 시 에스컬레이션 예약"""
    _get_patient_reminder(db, principal, patient_id, reminder_id)
    escalation = schedule_escalation(
        db, principal.organization_id, body.trigger_at,
        level=body.level,
        target_role=body.target_role,
        reminder_instance_id=reminder_id
    )
    return success_response(data=EscalationResponse.model_validate(escalation))

# ==========================================
# 게이트 체크리스트
# ==========================================

@router.get("/{patient_id}/gate", response_model=APIResponse[GateChecklistResponse])
async def get_gate(
    patient_id: int,
    principal: Principal = Depends(require_capability("view", "reminders")),
    db: Session = Depends(get_db)
):
    ensure_patient_access(principal, patient_id)
    RoutineService(db).get_patient(principal.organization_id, patient_id)
    now = utc_now()
    steps = [GateStepItem(**item) for item in get_gate_checklist(db, patient_id, now)]
    return success_response(data=GateChecklistResponse(cleared=is_gate_cleared(db, patient_id, now), steps=steps))

@router.post("/{patient_id}/gate/steps/{step_id}/confirm", response_model=APIResponse[CompletionResponse])
async def confirm_step(
    patient_id: int,
    step_id: int,
    body: GateStepConfirm,
    principal: Principal = Depends(require_capability("edit", "reminders")),
    db: Session = Depends(get_db)
):
    """게이트 단계 확인"""
    ensure_patient_access(principal, patient_id)
    completed_by = "patient" if principal.role == "patient" else body.completed_by
    completion = confirm_gate_step(
        db, step_id,
        completed_by=completed_by,
        now=utc_now(),
        organization_id=principal.organization_id,
        notes=body.notes,
        patient_id=patient_id
    )
    return success_response(data=CompletionResponse.model_validate(completion))
