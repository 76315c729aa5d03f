"""
주기 작업 라우터 - 외부 타이머(cron 등) 전용 엔드포인트
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..database import get_db
from ..response_models import success_response
from ..services.auth import verify_scheduler_api_key
from ..services.jobs import run_generate, run_sweep

router = APIRouter()

@router.post("/generate-instances")
async def generate_instances(
    _: bool = Depends(verify_scheduler_api_key),  # 스케줄러 전용 인증
    db: Session = Depends(get_db)
):
    """오늘의 리마인더 인스턴스 생성 (여러 번 호출해도 안전)"""
    return success_response(data=run_generate(db), message="인스턴스 생성 완료")

@router.post("/sweep")
async def sweep(
    _: bool = Depends(verify_scheduler_api_key),
    db: Session = Depends(get_db)
):
    """발송/만료/에스컬레이션/알림 전송 처리"""
    return success_response(data=run_sweep(db), message="스윕 완료")
