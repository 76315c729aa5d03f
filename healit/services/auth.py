from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from fastapi import Depends, Header, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import ExpiredSignatureError, JWTError, jwt

from healit.config import settings
from healit.exceptions import StandardHTTPException, ErrorCodes, raise_forbidden, raise_unauthorized
from healit.logging_config import log_security_event
from healit.services.permissions import has_permission

security = HTTPBearer(auto_error=False)

@dataclass
class Principal:
    """토큰에서 확인된 호출자 (sub, role, organization_id)"""
    user_id: str
    role: str
    organization_id: int
    patient_id: Optional[int] = None

def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    """JWT 토큰 생성 (운영에서는 외부 인증 서비스가 발급, 개발/테스트용)"""
    to_encode = data.copy()
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=30))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)

def get_current_principal(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)) -> Principal:
    """현재 호출자 정보 조회"""
    if credentials is None:
        raise_unauthorized()

    try:
        payload = jwt.decode(credentials.credentials, settings.secret_key, algorithms=[settings.algorithm])
    except ExpiredSignatureError:
        raise StandardHTTPException(
            status_code=401,
            detail="토큰이 만료되었습니다",
            error_code=ErrorCodes.TOKEN_EXPIRED,
            headers={"WWW-Authenticate": "Bearer"}
        )
    except JWTError:
        raise_unauthorized("유효하지 않은 토큰입니다")

    user_id = payload.get("sub")
    role = payload.get("role")
    organization_id = payload.get("organization_id")
    if user_id is None or role is None or organization_id is None:
        raise_unauthorized("토큰에 필수 정보가 없습니다")

    try:
        organization_id = int(organization_id)
        patient_id = int(payload["patient_id"]) if payload.get("patient_id") is not None else None
    except (TypeError, ValueError):
        raise_unauthorized("토큰 정보 형식이 올바르지 않습니다")

    return Principal(user_id=str(user_id), role=role, organization_id=organization_id, patient_id=patient_id)

def require_capability(action: str, resource: str):
    """라우터용 권한 체크 의존성 생성"""
    permission = f"{action}:{resource}"

    def dependency(principal: Principal = Depends(get_current_principal)) -> Principal:
        if not has_permission(principal.role, permission):
            raise_forbidden(f"'{permission}' 권한이 없습니다")
        return principal

    return dependency

def ensure_patient_access(principal: Principal, patient_id: int):
    """환자 역할은 본인 데이터만 접근 가능"""
    if principal.role == "patient" and principal.patient_id != patient_id:
        raise_forbidden("다른 환자의 정보에 접근할 수 없습니다")

def verify_scheduler_api_key(request: Request, x_api_key: Optional[str] = Header(None)) -> bool:
    """스케줄러(외부 타이머) 전용 API 키 검증"""
    if x_api_key != settings.scheduler_api_key:
        client_ip = request.client.host if request.client else None
        log_security_event("invalid_scheduler_api_key", ip_address=client_ip, details={"path": request.url.path})
        raise StandardHTTPException(
            status_code=401,
            detail="유효하지 않은 API 키입니다",
            error_code=ErrorCodes.INVALID_API_KEY
        )
    return True
