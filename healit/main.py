from datetime import datetime

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from healit.config import settings
from healit.exceptions import http_exception_handler, general_exception_handler
from healit.logging_config import LoggingMiddleware, setup_logging
from healit.response_models import ErrorResponse

# 라우터 임포트
from healit.routers import patients_router, followups_router, jobs_router

# 로깅 설정
setup_logging()

# 태그 설명 정의
tags_metadata = [
    {
        "name": "patients",
        "description": "환자별 루틴, 오늘의 리마인더(NOW/NEXT/TODAY), 응답, 게이트 체크리스트",
    },
    {
        "name": "followups",
        "description": "후속조치 등록/상태 변경, 에스컬레이션 예약, 슬립 체크",
    },
    {
        "name": "jobs",
        "description": "외부 타이머 전용 API (인스턴스 생성, 스윕)",
    }
]

app = FastAPI(
    title="HealIT Routine & Follow-up API",
    description="""
## 루틴 & 후속조치 엔진 API

### 주요 기능
- **루틴**: 복약/픽업/게이트 등 반복 루틴과 스케줄 규칙 관리
- **오늘 화면**: 긴급도(NOW / NEXT / TODAY) 기준 리마인더 분류
- **후속조치**: 임상 이벤트 기반 후속조치 추적, 에스컬레이션, 슬립 체크

### 인증
- Bearer JWT (`sub`, `role`, `organization_id` 클레임)
- 잡 엔드포인트는 `X-API-Key` 헤더
    """,
    version=settings.app_version,
    openapi_tags=tags_metadata,
    debug=settings.debug
)

# 미들웨어 추가
app.add_middleware(LoggingMiddleware)

# CORS 설정
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 예외 핸들러 등록
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(Exception, general_exception_handler)

# 공통 에러 응답 (OpenAPI 문서용)
error_responses = {
    400: {"model": ErrorResponse, "description": "입력값 검증 실패"},
    401: {"model": ErrorResponse, "description": "인증 실패"},
    403: {"model": ErrorResponse, "description": "권한 부족"},
    404: {"model": ErrorResponse, "description": "대상 없음"},
    409: {"model": ErrorResponse, "description": "허용되지 않는 상태 전이"},
}

# 라우터 연결
app.include_router(patients_router, prefix="/api/patients", tags=["patients"], responses=error_responses)
app.include_router(followups_router, prefix="/api/followups", tags=["followups"], responses=error_responses)
app.include_router(jobs_router, prefix="/api/jobs", tags=["jobs"], responses={401: error_responses[401]})

@app.get("/")
async def root():
    return {"message": "HealIT Routine & Follow-up API", "version": settings.app_version, "status": "running"}

@app.get("/health")
async def health_check():
    return {"status": "healthy", "timestamp": datetime.utcnow().isoformat()}
