"""
반복 규칙 해석기 - 규칙 + 날짜 → 예정 시각 (순수 함수)
"""
from datetime import date, datetime
from typing import Iterable, Optional

from healit.models.routine import ScheduleRule
from healit.time_utils import WEEKDAY_NAMES, localize, to_storage, weekday_name

def normalize_days(days: Optional[Iterable[str]]) -> set:
    """요일 목록 정규화 (대소문자/약어 허용)"""
    normalized = set()
    for day in days or []:
        key = str(day).strip().lower()
        for name in WEEKDAY_NAMES:
            if key == name or (len(key) >= 3 and name.startswith(key)):
                normalized.add(name)
                break
    return normalized

def rule_fires_on(rule: ScheduleRule, target_date: date) -> bool:
    """해당 날짜에 규칙이 발동하는지 여부"""
    if not rule.is_active:
        return False
    if (rule.trigger_type or "clock") != "clock":
        # 이벤트 기반 규칙은 시계로 발동하지 않음
        return False
    return weekday_name(target_date) in normalize_days(rule.days_of_week)

def resolve_scheduled_at(rule: ScheduleRule, target_date: date, tz_name: Optional[str] = None) -> Optional[datetime]:
    """
    규칙의 예정 시각(UTC, naive)을 계산

    루틴 시간대 기준 현지 시각으로 해석하므로 08:00 규칙은 서머타임과 무관하게
    항상 현지 08:00을 의미한다. buffer_minutes 는 여기서 빼지 않는다
    (실행 가능 시각은 ReminderInstance.actionable_at).
    """
    if not rule_fires_on(rule, target_date):
        return None

    return to_storage(localize(target_date, rule.time_of_day, tz_name))
