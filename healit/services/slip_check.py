"""
슬립 체크 - 조용히 놓치고 있는 후속조치 집계
"""
import logging
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session, joinedload

from healit.models import ClinicalEvent, FollowupItem
from healit.models.followup import OPEN_FOLLOWUP_STATUSES
from healit.time_utils import to_storage, utc_now

logger = logging.getLogger(__name__)

@dataclass
class SlipCheckSummary:
    organization_id: int
    generated_at: datetime
    open_count: int = 0
    overdue_count: int = 0
    unassigned_count: int = 0
    high_priority_overdue: int = 0
    referrals_without_appointments: int = 0
    overdue_item_ids: List[int] = field(default_factory=list)

    def to_dict(self):
        return asdict(self)

def _is_referral(item: FollowupItem) -> bool:
    return item.category == "referral" or (item.event is not None and item.event.type == "referral")

def compute_slip_check(
    db: Session,
    organization_id: int,
    now: Optional[datetime] = None,
    patient_id: Optional[int] = None
) -> SlipCheckSummary:
    """
    열린 후속조치 통계

    모든 카운트는 한 번 읽은 목록에서 계산하므로
    high_priority_overdue <= overdue_count <= open_count 가 항상 성립한다.
    """
    now = to_storage(now) if now else utc_now()

    query = db.query(FollowupItem).options(joinedload(FollowupItem.event)).filter(
        FollowupItem.organization_id == organization_id,
        FollowupItem.status.in_(OPEN_FOLLOWUP_STATUSES)
    )
    if patient_id is not None:
        query = query.filter(FollowupItem.patient_id == patient_id)
    items = query.all()

    summary = SlipCheckSummary(organization_id=organization_id, generated_at=now)
    summary.open_count = len(items)

    referrals = []
    for item in items:
        if item.due_at < now:
            summary.overdue_count += 1
            summary.overdue_item_ids.append(item.id)
            if item.priority == "high":
                summary.high_priority_overdue += 1
        if not item.assigned_to:
            summary.unassigned_count += 1
        if _is_referral(item):
            referrals.append(item)

    if referrals:
        appointments = defaultdict(list)
        rows = db.query(ClinicalEvent.patient_id, ClinicalEvent.occurred_at).filter(
            ClinicalEvent.organization_id == organization_id,
            ClinicalEvent.type == "appointment",
            ClinicalEvent.patient_id.in_({item.patient_id for item in referrals})
        ).all()
        for row_patient_id, occurred_at in rows:
            appointments[row_patient_id].append(occurred_at)

        for item in referrals:
            since = item.event.occurred_at if item.event is not None else item.created_at
            booked = any(since is None or occurred_at >= since for occurred_at in appointments[item.patient_id])
            if not booked:
                summary.referrals_without_appointments += 1

    logger.info(
        f"슬립 체크: organization_id={organization_id}, open={summary.open_count}, "
        f"overdue={summary.overdue_count}, high_overdue={summary.high_priority_overdue}"
    )
    return summary
