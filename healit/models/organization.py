from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from healit.database import Base

# 조직(테넌트) 및 환자 모델
class Organization(Base):
    __tablename__ = "organizations"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    urgency_overrides = Column(JSON)  # {"critical_now_window_minutes": 15, "next_window_minutes": 120, "next_bucket_limit": 5}
    created_at = Column(DateTime, server_default=func.now())

    # 관계 설정
    patients = relationship("Patient", back_populates="organization")

class Patient(Base):
    __tablename__ = "patients"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    email = Column(String(255))
    phone = Column(String(30))
    created_at = Column(DateTime, server_default=func.now())

    # 관계 설정
    organization = relationship("Organization", back_populates="patients")
    routines = relationship("Routine", back_populates="patient")
