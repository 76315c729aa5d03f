"""
게이트 평가기 - 외출 전 체크리스트 같은 게이트 루틴의 통과 여부
"""
import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Union

from sqlalchemy.orm import Session

from healit.exceptions import NotFound, ValidationError, ErrorCodes
from healit.models import Routine, RoutineStep, RoutineCompletion
from healit.services.audit import record_audit
from healit.services.events import change_feed
from healit.time_utils import local_date, local_day_bounds, to_storage, utc_now

logger = logging.getLogger(__name__)

DayOrInstant = Union[date, datetime]

def _gate_routines(db: Session, patient_id: int) -> List[Routine]:
    return db.query(Routine).filter(
        Routine.patient_id == patient_id,
        Routine.type == "gate",
        Routine.is_active == True
    ).order_by(Routine.id).all()

def _resolve_day(as_of: DayOrInstant, routine: Routine) -> date:
    # datetime 은 UTC 시각으로 보고 루틴 시간대의 날짜로 변환
    if isinstance(as_of, datetime):
        return local_date(to_storage(as_of), routine.timezone)
    return as_of

def _confirmed_step_ids(db: Session, routine: Routine, day: date) -> Dict[int, datetime]:
    start, end = local_day_bounds(day, routine.timezone)
    rows = db.query(RoutineCompletion.step_id, RoutineCompletion.completed_at).filter(
        RoutineCompletion.routine_id == routine.id,
        RoutineCompletion.step_id.isnot(None),
        RoutineCompletion.completion_type == "confirmed",
        RoutineCompletion.completed_at >= start,
        RoutineCompletion.completed_at < end
    ).order_by(RoutineCompletion.completed_at).all()

    confirmed = {}
    for step_id, completed_at in rows:
        confirmed.setdefault(step_id, completed_at)
    return confirmed

def is_gate_cleared(db: Session, patient_id: int, as_of: DayOrInstant) -> bool:
    """필수 단계가 모두 해당 날짜에 확인되었는지 여부 (게이트 루틴 없으면 통과)"""
    for routine in _gate_routines(db, patient_id):
        day = _resolve_day(as_of, routine)
        confirmed = _confirmed_step_ids(db, routine, day)
        for step in routine.steps:
            if not step.is_optional and step.id not in confirmed:
                return False
    return True

def get_gate_checklist(db: Session, patient_id: int, as_of: DayOrInstant) -> List[Dict[str, Any]]:
    checklist = []
    for routine in _gate_routines(db, patient_id):
        day = _resolve_day(as_of, routine)
        confirmed = _confirmed_step_ids(db, routine, day)
        for step in routine.steps:
            checklist.append({
                "routine_id": routine.id,
                "routine_name": routine.name,
                "step_id": step.id,
                "label": step.label,
                "is_optional": step.is_optional,
                "step_order": step.step_order,
                "completed": step.id in confirmed,
                "completed_at": confirmed.get(step.id),
                "calendar_day": day
            })
    return checklist

def confirm_gate_step(
    db: Session,
    step_id: int,
    completed_by: str = "patient",
    now: Optional[datetime] = None,
    organization_id: Optional[int] = None,
    notes: Optional[str] = None,
    patient_id: Optional[int] = None
) -> RoutineCompletion:
    """
    게이트 단계 확인 기록

    같은 날 이미 확인된 단계면 기존 기록을 반환한다.
    완료 기록은 추가 전용이므로 확인 취소는 지원하지 않는다.
    """
    query = db.query(RoutineStep).join(Routine, RoutineStep.routine_id == Routine.id).filter(RoutineStep.id == step_id)
    if organization_id is not None:
        query = query.filter(Routine.organization_id == organization_id)
    if patient_id is not None:
        query = query.filter(Routine.patient_id == patient_id)
    step = query.first()
    if not step:
        raise NotFound("루틴 단계", step_id, ErrorCodes.STEP_NOT_FOUND)

    routine = step.routine
    if routine.type != "gate" or not routine.is_active:
        raise ValidationError("활성 게이트 루틴의 단계만 확인할 수 있습니다.")
    if completed_by not in ("patient", "staff"):
        raise ValidationError("completed_by는 patient 또는 staff 여야 합니다.")

    now = to_storage(now) if now else utc_now()
    day = local_date(now, routine.timezone)
    start, end = local_day_bounds(day, routine.timezone)

    existing = db.query(RoutineCompletion).filter(
        RoutineCompletion.step_id == step.id,
        RoutineCompletion.completion_type == "confirmed",
        RoutineCompletion.completed_at >= start,
        RoutineCompletion.completed_at < end
    ).first()
    if existing:
        return existing

    completion = RoutineCompletion(
        organization_id=routine.organization_id,
        patient_id=routine.patient_id,
        routine_id=routine.id,
        step_id=step.id,
        completion_type="confirmed",
        completed_by=completed_by,
        notes=notes,
        completed_at=now
    )
    db.add(completion)
    db.flush()
    record_audit(
        db, routine.organization_id, "confirm_step", "routine_step", step.id,
        metadata={"routine_id": routine.id, "completed_by": completed_by, "calendar_day": day.isoformat()}
    )
    db.commit()
    db.refresh(completion)

    logger.info(f"게이트 단계 확인: step_id={step.id}, routine_id={routine.id}")
    change_feed.publish(
        "routine_completions", "insert", completion.id,
        organization_id=routine.organization_id,
        patient_id=routine.patient_id,
        data={"step_id": step.id, "completion_type": "confirmed"}
    )
    return completion
