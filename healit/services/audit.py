"""
감사 로그 기록
"""
from typing import Any, Dict, Optional
from sqlalchemy.orm import Session

from healit.models.audit import AuditLog
from healit.logging_config import log_database_operation

def record_audit(
    db: Session,
    organization_id: int,
    action: str,
    entity_type: str,
    entity_id: int,
    metadata: Optional[Dict[str, Any]] = None,
    before_state: Optional[Dict[str, Any]] = None,
    after_state: Optional[Dict[str, Any]] = None,
    user_id: Optional[str] = None
) -> AuditLog:
    """감사 로그 추가 (커밋은 호출자 트랜잭션에서)"""
    entry = AuditLog(
        organization_id=organization_id,
        user_id=user_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        before_state=before_state,
        after_state=after_state,
        meta=metadata
    )
    db.add(entry)
    log_database_operation(action, AuditLog.__tablename__, entity_id)
    return entry
