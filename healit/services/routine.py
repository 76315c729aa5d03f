"""
루틴/스케줄 규칙 관리 서비스
"""
import logging
from datetime import time
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from healit.exceptions import NotFound, ValidationError, ErrorCodes
from healit.models import Patient, Routine, ScheduleRule, RoutineStep, ReminderInstance, Escalation
from healit.models.reminder import LIVE_REMINDER_STATUSES
from healit.models.routine import ROUTINE_TYPES, ROUTINE_PRIORITIES, TRIGGER_TYPES
from healit.services.events import change_feed
from healit.services.recurrence import normalize_days
from healit.time_utils import WEEKDAY_NAMES, utc_now

logger = logging.getLogger(__name__)

# 유형별 기본 우선순위 (복약/픽업은 놓치면 안 되는 일정)
DEFAULT_PRIORITY_BY_TYPE = {
    "medication": "critical",
    "pickup": "critical",
    "gate": "important",
}

class RoutineService:
    def __init__(self, db: Session):
        self.db = db

    def get_patient(self, organization_id: int, patient_id: int) -> Patient:
        patient = self.db.query(Patient).filter(
            Patient.id == patient_id,
            Patient.organization_id == organization_id
        ).first()
        if not patient:
            raise NotFound("환자", patient_id, ErrorCodes.PATIENT_NOT_FOUND)
        return patient

    def get_routine(self, routine_id: int, organization_id: Optional[int] = None) -> Routine:
        query = self.db.query(Routine).filter(Routine.id == routine_id)
        if organization_id is not None:
            query = query.filter(Routine.organization_id == organization_id)
        routine = query.first()
        if not routine:
            raise NotFound("루틴", routine_id, ErrorCodes.ROUTINE_NOT_FOUND)
        return routine

    def list_routines(self, organization_id: int, patient_id: int, include_inactive: bool = False) -> List[Routine]:
        query = self.db.query(Routine).filter(
            Routine.organization_id == organization_id,
            Routine.patient_id == patient_id
        )
        if not include_inactive:
            query = query.filter(Routine.is_active == True)
        return query.order_by(Routine.id).all()

    def create_routine(
        self,
        organization_id: int,
        patient_id: int,
        name: str,
        type: str,
        priority: Optional[str] = None,
        schedules: Optional[List[Dict[str, Any]]] = None,
        steps: Optional[List[Dict[str, Any]]] = None,
        description: Optional[str] = None,
        medication_info: Optional[Dict[str, Any]] = None,
        quiet_hours_start: Optional[time] = None,
        quiet_hours_end: Optional[time] = None,
        timezone: Optional[str] = None
    ) -> Routine:
        """루틴 생성 (스케줄 규칙, 게이트 단계 포함)"""

        self.get_patient(organization_id, patient_id)

        if type not in ROUTINE_TYPES:
            raise ValidationError(f"루틴 유형은 {', '.join(ROUTINE_TYPES)} 중 하나여야 합니다.")
        priority = priority or DEFAULT_PRIORITY_BY_TYPE.get(type, "important")
        if priority not in ROUTINE_PRIORITIES:
            raise ValidationError(f"우선순위는 {', '.join(ROUTINE_PRIORITIES)} 중 하나여야 합니다.")
        if steps and type != "gate":
            raise ValidationError("단계는 게이트 루틴에만 추가할 수 있습니다.")

        routine = Routine(
            organization_id=organization_id,
            patient_id=patient_id,
            name=name,
            type=type,
            priority=priority,
            is_active=True,
            description=description,
            medication_info=medication_info or {},
            quiet_hours_start=quiet_hours_start,
            quiet_hours_end=quiet_hours_end,
            timezone=timezone
        )
        self.db.add(routine)
        self.db.flush()

        for schedule in schedules or []:
            self._build_rule(routine, **schedule)
        for order, step in enumerate(steps or []):
            self.db.add(RoutineStep(
                routine_id=routine.id,
                label=step["label"],
                is_optional=bool(step.get("is_optional", False)),
                step_order=step.get("step_order", order)
            ))

        self.db.commit()
        self.db.refresh(routine)

        logger.info(f"루틴 생성: id={routine.id}, type={type}, priority={priority}")
        change_feed.publish("routines", "insert", routine.id, organization_id, patient_id)
        return routine

    def add_schedule_rule(self, routine_id: int, organization_id: int, **schedule) -> ScheduleRule:
        routine = self.get_routine(routine_id, organization_id)
        rule = self._build_rule(routine, **schedule)
        self.db.commit()
        self.db.refresh(rule)
        change_feed.publish("schedule_rules", "insert", rule.id, organization_id, routine.patient_id)
        return rule

    def _build_rule(
        self,
        routine: Routine,
        days_of_week: List[str],
        time_of_day: time,
        buffer_minutes: int = 0,
        trigger_type: str = "clock",
        trigger_description: Optional[str] = None
    ) -> ScheduleRule:
        if trigger_type not in TRIGGER_TYPES:
            raise ValidationError(f"트리거 유형은 {', '.join(TRIGGER_TYPES)} 중 하나여야 합니다.")
        if buffer_minutes is None or buffer_minutes < 0:
            raise ValidationError("buffer_minutes는 0 이상이어야 합니다.")

        # 알 수 없는 요일 값은 버림 (요일이 없는 규칙은 발동하지 않음)
        days = sorted(normalize_days(days_of_week), key=WEEKDAY_NAMES.index)
        rule = ScheduleRule(
            routine_id=routine.id,
            days_of_week=days,
            time_of_day=time_of_day,
            buffer_minutes=buffer_minutes,
            trigger_type=trigger_type,
            trigger_description=trigger_description,
            is_active=True
        )
        self.db.add(rule)
        return rule

    def rename_step(self, step_id: int, organization_id: int, label: str, patient_id: Optional[int] = None) -> RoutineStep:
        """단계 이름 변경 (완료 기록이 참조하므로 그 외 수정 불가)"""
        query = self.db.query(RoutineStep).join(Routine).filter(
            RoutineStep.id == step_id,
            Routine.organization_id == organization_id
        )
        if patient_id is not None:
            query = query.filter(Routine.patient_id == patient_id)
        step = query.first()
        if not step:
            raise NotFound("루틴 단계", step_id, ErrorCodes.STEP_NOT_FOUND)
        if not label or not label.strip():
            raise ValidationError("단계 이름은 빈 값일 수 없습니다.")
        step.label = label.strip()
        self.db.commit()
        return step

    def deactivate_schedule_rule(self, rule_id: int, organization_id: int, patient_id: Optional[int] = None) -> int:
        """규칙 비활성화 - 인스턴스는 삭제하지 않고 취소 처리"""
        query = self.db.query(ScheduleRule).join(Routine).filter(
            ScheduleRule.id == rule_id,
            Routine.organization_id == organization_id
        )
        if patient_id is not None:
            query = query.filter(Routine.patient_id == patient_id)
        rule = query.first()
        if not rule:
            raise NotFound("스케줄 규칙", rule_id, ErrorCodes.SCHEDULE_RULE_NOT_FOUND)

        rule.is_active = False
        canceled = self._cancel_live_instances(ReminderInstance.schedule_rule_id == rule.id)
        self.db.commit()

        logger.info(f"스케줄 규칙 비활성화: id={rule_id}, canceled={canceled}")
        change_feed.publish("schedule_rules", "update", rule.id, organization_id, rule.routine.patient_id, {"is_active": False})
        return canceled

    def deactivate_routine(self, routine_id: int, organization_id: int) -> int:
        """루틴 비활성화 (이력 보존을 위해 삭제하지 않음)"""
        routine = self.get_routine(routine_id, organization_id)
        routine.is_active = False
        for rule in routine.schedule_rules:
            rule.is_active = False
        canceled = self._cancel_live_instances(ReminderInstance.routine_id == routine.id)
        self.db.commit()

        logger.info(f"루틴 비활성화: id={routine_id}, canceled={canceled}")
        change_feed.publish("routines", "update", routine.id, organization_id, routine.patient_id, {"is_active": False})
        return canceled

    def _cancel_live_instances(self, criterion) -> int:
        now = utc_now()
        live_ids = [row.id for row in self.db.query(ReminderInstance.id).filter(
            criterion,
            ReminderInstance.status.in_(LIVE_REMINDER_STATUSES)
        ).all()]
        if not live_ids:
            return 0

        canceled = self.db.query(ReminderInstance).filter(
            ReminderInstance.id.in_(live_ids),
            ReminderInstance.status.in_(LIVE_REMINDER_STATUSES)
        ).update({"status": "canceled", "updated_at": now}, synchronize_session=False)

        # 취소된 인스턴스에 걸린 에스컬레이션은 즉시 해결 처리
        self.db.query(Escalation).filter(
            Escalation.reminder_instance_id.in_(live_ids),
            Escalation.status == "pending"
        ).update({"status": "resolved", "resolved_at": now}, synchronize_session=False)
        return canceled
