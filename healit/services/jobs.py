"""
주기 작업 - 인스턴스 생성, 스윕(발송/만료/에스컬레이션/알림 전송)
HTTP 잡 엔드포인트와 내장 스케줄러가 같은 함수를 호출한다.
"""
import time
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from healit.logging_config import log_job_run
from healit.services.escalation import EscalationPolicy, EscalationSweeper
from healit.services.instance_generator import InstanceGenerator
from healit.services.notification import NotificationTransport, ReminderDispatcher
from healit.services.responses import expire_stale_instances, mark_due_instances_sent
from healit.time_utils import to_storage, utc_now

def run_generate(db: Session, now: Optional[datetime] = None) -> Dict[str, Any]:
    start = time.time()
    now = to_storage(now) if now else utc_now()

    result = InstanceGenerator.ensure_instances_for_all_patients(db, now)

    log_job_run("generate_instances", time.time() - start, result)
    return result

def run_sweep(
    db: Session,
    now: Optional[datetime] = None,
    transport: Optional[NotificationTransport] = None,
    policy: Optional[EscalationPolicy] = None
) -> Dict[str, Any]:
    start = time.time()
    now = to_storage(now) if now else utc_now()

    result = {
        "sent": mark_due_instances_sent(db, now),
        "expired": expire_stale_instances(db, now),
        "escalations": EscalationSweeper(policy=policy).sweep(db, now).to_dict(),
        # 에스컬레이션 커밋 이후 큐에 들어간 알림까지 같은 실행에서 전송
        "notifications": ReminderDispatcher(transport=transport).dispatch_due(db, now),
    }

    log_job_run("sweep", time.time() - start, result)
    return result
