"""
표준화된 에러 응답 시스템
"""
from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from datetime import datetime
import traceback

class StandardHTTPException(HTTPException):
    """표준화된 HTTP 예외"""

    def __init__(
        self,
        status_code: int,
        detail: str = None,
        error_code: str = None,
        headers: dict = None
    ):
        super().__init__(status_code, detail, headers)
        self.error_code = error_code or f"HTTP_{status_code}"

# 에러 코드 정의
class ErrorCodes:
    # 인증 관련
    INVALID_CREDENTIALS = "AUTH_001"
    TOKEN_EXPIRED = "AUTH_002"
    INSUFFICIENT_PERMISSIONS = "AUTH_003"
    INVALID_API_KEY = "AUTH_004"

    # 리소스 조회
    PATIENT_NOT_FOUND = "REF_001"
    ROUTINE_NOT_FOUND = "REF_002"
    SCHEDULE_RULE_NOT_FOUND = "REF_003"
    REMINDER_NOT_FOUND = "REF_004"
    FOLLOWUP_NOT_FOUND = "REF_005"
    STEP_NOT_FOUND = "REF_006"
    ESCALATION_NOT_FOUND = "REF_007"

    # 루틴/리마인더 관련
    VALIDATION_FAILED = "ROUTINE_001"
    SKIP_REASON_REQUIRED = "ROUTINE_002"
    INVALID_SNOOZE = "ROUTINE_003"
    INVALID_STATE_TRANSITION = "ROUTINE_004"

    # 알림 관련
    TRANSPORT_FAILED = "NOTIFY_001"

    # 데이터베이스 관련
    DATABASE_ERROR = "DB_001"
    CONSTRAINT_VIOLATION = "DB_002"

async def http_exception_handler(request: Request, exc: HTTPException):
    """HTTP 예외 핸들러"""

    error_code = getattr(exc, 'error_code', f"HTTP_{exc.status_code}")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "detail": exc.detail,
            "error_code": error_code,
            "timestamp": datetime.now().isoformat(),
            "path": str(request.url.path)
        }
    )

async def general_exception_handler(request: Request, exc: Exception):
    """일반 예외 핸들러"""

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "detail": "내부 서버 오류가 발생했습니다",
            "error_code": "INTERNAL_SERVER_ERROR",
            "timestamp": datetime.now().isoformat(),
            "path": str(request.url.path),
            # 개발 환경에서만 스택 트레이스 포함
            **({"traceback": traceback.format_exc()} if request.app.debug else {})
        }
    )

def raise_unauthorized(message: str = "인증이 필요합니다"):
    """401 Unauthorized 예외 발생"""
    raise StandardHTTPException(
        status_code=401,
        detail=message,
        error_code=ErrorCodes.INVALID_CREDENTIALS,
        headers={"WWW-Authenticate": "Bearer"}
    )

def raise_forbidden(message: str = "권한이 부족합니다"):
    """403 Forbidden 예외 발생"""
    raise StandardHTTPException(
        status_code=403,
        detail=message,
        error_code=ErrorCodes.INSUFFICIENT_PERMISSIONS
    )

# === 루틴 & 후속조치 엔진 전용 예외들 ===

class ValidationError(StandardHTTPException):
    """입력값 검증 실패 (부분 저장 없음)"""
    def __init__(self, message: str, error_code: str = None):
        super().__init__(
            status_code=400,
            detail=message,
            error_code=error_code or ErrorCodes.VALIDATION_FAILED
        )

class InvalidStateTransition(StandardHTTPException):
    """허용되지 않는 상태 전이 (종료 상태에서의 응답 등)"""
    def __init__(self, entity: str, current_status: str, target: str = None):
        self.entity = entity
        self.current_status = current_status
        self.target = target
        if target:
            message = f"{entity}의 상태를 '{current_status}'에서 '{target}'(으)로 변경할 수 없습니다."
        else:
            message = f"{entity}은(는) 이미 '{current_status}' 상태입니다."
        super().__init__(
            status_code=409,
            detail=message,
            error_code=ErrorCodes.INVALID_STATE_TRANSITION
        )

class NotFound(StandardHTTPException):
    """참조 대상 없음"""
    def __init__(self, entity: str, entity_id=None, error_code: str = None):
        self.entity = entity
        self.entity_id = entity_id
        suffix = f" (id={entity_id})" if entity_id is not None else ""
        super().__init__(
            status_code=404,
            detail=f"{entity}을(를) 찾을 수 없습니다{suffix}.",
            error_code=error_code or "NOT_FOUND"
        )

class TransportFailure(Exception):
    """알림 전송 실패 - 호출자 레코드에 기록되며 API 오류로 전파되지 않음"""
    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = ErrorCodes.TRANSPORT_FAILED
