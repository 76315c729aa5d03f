from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON
from sqlalchemy.sql import func
from healit.database import Base

# 감사 로그 (추가 전용, 엔진은 읽지 않음)
class AuditLog(Base):
    __tablename__ = "audit_log"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    user_id = Column(String(64))
    action = Column(String(50), nullable=False)  # escalate, respond, update_status ...
    entity_type = Column(String(50), nullable=False)  # followup_item, reminder_instance ...
    entity_id = Column(Integer, nullable=False)
    before_state = Column(JSON)
    after_state = Column(JSON)
    meta = Column("metadata", JSON)
    created_at = Column(DateTime, server_default=func.now())
