"""
긴급도 분류기 - 오늘의 인스턴스를 NOW / NEXT / TODAY 버킷으로 나눈다.
"""
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

from sqlalchemy.orm import Session, joinedload

from healit.config import settings
from healit.exceptions import NotFound, ErrorCodes
from healit.models import Organization, Patient, Routine, ReminderInstance
from healit.models.reminder import LIVE_REMINDER_STATUSES, TERMINAL_REMINDER_STATUSES
from healit.services.gate import is_gate_cleared
from healit.services.instance_generator import InstanceGenerator
from healit.time_utils import local_date, to_storage, utc_now

logger = logging.getLogger(__name__)

@dataclass(frozen=True)
class UrgencyWindows:
    critical_now_window_minutes: int = 15
    next_window_minutes: int = 120
    next_bucket_limit: int = 5

    @classmethod
    def from_settings(cls) -> "UrgencyWindows":
        return cls(
            critical_now_window_minutes=settings.critical_now_window_minutes,
            next_window_minutes=settings.next_window_minutes,
            next_bucket_limit=settings.next_bucket_limit
        )

    @classmethod
    def for_organization(cls, organization: Optional[Organization]) -> "UrgencyWindows":
        """설정값에 조직별 재정의를 덮어씀 (알 수 없는 키/잘못된 값은 무시)"""
        base = cls.from_settings()
        overrides = (organization.urgency_overrides if organization else None) or {}

        values = {}
        for key in ("critical_now_window_minutes", "next_window_minutes", "next_bucket_limit"):
            raw = overrides.get(key)
            if raw is None:
                continue
            try:
                value = int(raw)
            except (TypeError, ValueError):
                logger.warning(f"잘못된 긴급도 설정 무시: organization_id={organization.id}, {key}={raw!r}")
                continue
            if value >= 0:
                values[key] = value

        if not values:
            return base
        return replace(base, **values)

@dataclass
class UrgencyBuckets:
    now: List[ReminderInstance] = field(default_factory=list)
    next: List[ReminderInstance] = field(default_factory=list)
    today: List[ReminderInstance] = field(default_factory=list)

    def all_ids(self) -> List[int]:
        return [i.id for i in self.now + self.next + self.today]

def _is_critical(instance: ReminderInstance) -> bool:
    return instance.routine is not None and instance.routine.priority == "critical"

def is_visible(instance: ReminderInstance, now: datetime) -> bool:
    """분류 대상 여부 (종료 상태, 다시 알림 대기 중인 인스턴스 제외)"""
    if instance.status not in LIVE_REMINDER_STATUSES:
        return False
    if instance.status == "snoozed" and instance.snooze_until and instance.snooze_until > now:
        return False
    return True

def classify(
    instances: Iterable[ReminderInstance],
    now: datetime,
    windows: Optional[UrgencyWindows] = None
) -> UrgencyBuckets:
    """
    인스턴스를 NOW / NEXT / TODAY 로 분류

    - NOW: 실행 가능 시각이 지났거나, critical 루틴이면서 critical 창 이내
    - NEXT: NOW가 아니고 next 창 이내인 항목 중 가장 이른 next_bucket_limit 개
    - TODAY: 나머지 (NEXT 초과분 포함)

    기준 시각은 actionable_at (예정 시각에서 buffer_minutes 를 뺀 시각)이다.
    pending, sent, snoozed 외에 escalated 인스턴스도 아직 응답 가능하므로 분류에 포함한다.
    세 버킷은 표시 대상 인스턴스 집합을 정확히 분할한다.
    """
    windows = windows or UrgencyWindows.from_settings()
    now = to_storage(now)
    critical_cutoff = now + timedelta(minutes=windows.critical_now_window_minutes)
    next_cutoff = now + timedelta(minutes=windows.next_window_minutes)

    buckets = UrgencyBuckets()
    upcoming = []
    for instance in instances:
        if not is_visible(instance, now):
            continue
        actionable_at = instance.actionable_at
        if actionable_at <= now or (_is_critical(instance) and actionable_at <= critical_cutoff):
            buckets.now.append(instance)
        elif actionable_at <= next_cutoff:
            upcoming.append(instance)
        else:
            buckets.today.append(instance)

    buckets.now.sort(key=lambda i: (0 if _is_critical(i) else 1, i.actionable_at, i.id))
    upcoming.sort(key=lambda i: (i.actionable_at, i.id))
    buckets.next = upcoming[:windows.next_bucket_limit]
    buckets.today.extend(upcoming[windows.next_bucket_limit:])
    buckets.today.sort(key=lambda i: (i.actionable_at, i.id))
    return buckets

def load_today_instances(db: Session, organization_id: int, patient_id: int, now: datetime) -> List[ReminderInstance]:
    """환자의 오늘(각 루틴 시간대 기준) 인스턴스 조회"""
    routines = db.query(Routine).filter(
        Routine.organization_id == organization_id,
        Routine.patient_id == patient_id
    ).all()

    instances = []
    for routine in routines:
        day = local_date(now, routine.timezone)
        instances.extend(
            db.query(ReminderInstance).options(
                joinedload(ReminderInstance.routine),
                joinedload(ReminderInstance.schedule_rule)
            ).filter(
                ReminderInstance.routine_id == routine.id,
                ReminderInstance.calendar_day == day
            ).all()
        )
    return instances

def build_today_view(
    db: Session,
    organization_id: int,
    patient_id: int,
    now: Optional[datetime] = None,
    generate: bool = True
) -> Dict:
    """오늘 화면 데이터 (버킷 + 통계 + 게이트 상태)"""
    patient = db.query(Patient).filter(
        Patient.id == patient_id,
        Patient.organization_id == organization_id
    ).first()
    if not patient:
        raise NotFound("환자", patient_id, ErrorCodes.PATIENT_NOT_FOUND)

    now = to_storage(now) if now else utc_now()
    if generate:
        InstanceGenerator.ensure_today_instances(db, organization_id, patient_id, now)

    instances = load_today_instances(db, organization_id, patient_id, now)
    windows = UrgencyWindows.for_organization(patient.organization)
    buckets = classify(instances, now, windows)

    overdue = [i for i in buckets.now if i.actionable_at <= now]
    stats = {
        "total": len(instances),
        "overdue": len(overdue),
        "pending": len([i for i in instances if i.status in LIVE_REMINDER_STATUSES]),
        "completed": len([i for i in instances if i.status == "confirmed"]),
        "skipped": len([i for i in instances if i.status == "skipped"]),
        "closed": len([i for i in instances if i.status in TERMINAL_REMINDER_STATUSES]),
    }

    # 게이트 날짜는 게이트 루틴 시간대 기준으로 계산
    return {
        "generated_at": now,
        "now": buckets.now,
        "next": buckets.next,
        "today": buckets.today,
        "stats": stats,
        "gate_cleared": is_gate_cleared(db, patient_id, now),
        "windows": windows
    }

__all__ = [
    "UrgencyWindows", "UrgencyBuckets", "classify", "is_visible",
    "load_today_instances", "build_today_view"
]
