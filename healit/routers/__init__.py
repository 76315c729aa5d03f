"""
라우터 초기화 파일
"""
from .patients import router as patients_router
from .followups import router as followups_router
from .jobs import router as jobs_router

__all__ = [
    "patients_router",
    "followups_router",
    "jobs_router",
]
