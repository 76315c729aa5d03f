"""
리마인더 인스턴스 생성기
타이머가 주기적으로 호출하며, 같은 날 여러 번(동시에) 호출돼도 중복 생성하지 않는다.
"""
import logging
from datetime import date, datetime
from typing import Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from healit.exceptions import NotFound, ErrorCodes
from healit.models import Patient, Routine, ScheduleRule, ReminderInstance
from healit.services.events import change_feed
from healit.services.recurrence import resolve_scheduled_at
from healit.time_utils import local_date, to_storage, utc_now

logger = logging.getLogger(__name__)

class InstanceGenerator:

    @staticmethod
    def find_active_instance(db: Session, schedule_rule_id: int, calendar_day: date) -> Optional[ReminderInstance]:
        """(규칙, 날짜)의 취소되지 않은 인스턴스 조회"""
        return db.query(ReminderInstance).filter(
            ReminderInstance.schedule_rule_id == schedule_rule_id,
            ReminderInstance.calendar_day == calendar_day,
            ReminderInstance.status != "canceled"
        ).first()

    @staticmethod
    def ensure_today_instances(
        db: Session,
        organization_id: int,
        patient_id: int,
        as_of: Optional[datetime] = None
    ) -> List[int]:
        """환자의 오늘 리마인더 인스턴스를 보장하고 ID 목록 반환"""

        patient = db.query(Patient).filter(
            Patient.id == patient_id,
            Patient.organization_id == organization_id
        ).first()
        if not patient:
            raise NotFound("환자", patient_id, ErrorCodes.PATIENT_NOT_FOUND)

        as_of = to_storage(as_of) if as_of else utc_now()

        rules = db.query(ScheduleRule).join(Routine, ScheduleRule.routine_id == Routine.id).filter(
            Routine.organization_id == organization_id,
            Routine.patient_id == patient_id,
            Routine.is_active == True,
            ScheduleRule.is_active == True
        ).order_by(ScheduleRule.id).all()

        instance_ids = []
        for rule in rules:
            routine = rule.routine
            calendar_day = local_date(as_of, routine.timezone)
            scheduled_at = resolve_scheduled_at(rule, calendar_day, routine.timezone)
            if scheduled_at is None:
                continue

            instance_ids.append(
                InstanceGenerator._create_if_absent(db, routine, rule, calendar_day, scheduled_at)
            )

        return instance_ids

    @staticmethod
    def _create_if_absent(
        db: Session,
        routine: Routine,
        rule: ScheduleRule,
        calendar_day: date,
        scheduled_at: datetime
    ) -> int:
        existing = InstanceGenerator.find_active_instance(db, rule.id, calendar_day)
        if existing:
            return existing.id

        instance = ReminderInstance(
            organization_id=routine.organization_id,
            patient_id=routine.patient_id,
            routine_id=routine.id,
            schedule_rule_id=rule.id,
            calendar_day=calendar_day,
            scheduled_at=scheduled_at,
            status="pending",
            escalation_level=0
        )
        db.add(instance)

        try:
            db.commit()
        except IntegrityError:
            # 동시 실행된 다른 생성기가 먼저 만든 경우 - 정상 결과로 취급
            db.rollback()
            existing = InstanceGenerator.find_active_instance(db, rule.id, calendar_day)
            if existing is None:
                raise
            logger.info(f"리마인더 인스턴스 이미 존재: rule_id={rule.id}, day={calendar_day}")
            return existing.id

        logger.info(f"리마인더 인스턴스 생성: id={instance.id}, rule_id={rule.id}, scheduled_at={scheduled_at.isoformat()}")
        change_feed.publish(
            "reminder_instances", "insert", instance.id,
            organization_id=instance.organization_id,
            patient_id=instance.patient_id,
            data={"status": "pending", "scheduled_at": scheduled_at.isoformat()}
        )
        return instance.id

    @staticmethod
    def ensure_instances_for_all_patients(db: Session, as_of: Optional[datetime] = None) -> Dict[str, int]:
        """활성 루틴이 있는 모든 환자에 대해 인스턴스 생성 (타이머용)"""

        as_of = to_storage(as_of) if as_of else utc_now()
        targets = db.query(Routine.organization_id, Routine.patient_id).filter(
            Routine.is_active == True
        ).distinct().all()

        result = {"patients": 0, "instances": 0, "errors": 0}
        for organization_id, patient_id in targets:
            try:
                ids = InstanceGenerator.ensure_today_instances(db, organization_id, patient_id, as_of)
                result["patients"] += 1
                result["instances"] += len(ids)
            except Exception as e:
                # 한 환자의 실패가 전체 배치를 중단시키지 않음
                db.rollback()
                result["errors"] += 1
                logger.error(f"인스턴스 생성 실패: patient_id={patient_id} - {str(e)}")

        return result
