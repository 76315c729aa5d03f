"""
표준화된 API 응답 모델
"""
from pydantic import BaseModel, Field
from typing import Generic, TypeVar, Optional, List
from datetime import datetime

T = TypeVar('T')

class APIResponse(BaseModel, Generic[T]):
    """표준 API 응답 모델"""
    success: bool = True
    data: Optional[T] = None
    message: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.now)

class PaginatedResponse(BaseModel, Generic[T]):
    """페이지네이션 응답 모델"""
    success: bool = True
    items: List[T]
    total: int
    page: int
    size: int
    has_next: bool
    has_previous: bool
    total_pages: int
    timestamp: datetime = Field(default_factory=datetime.now)

class ErrorResponse(BaseModel):
    """에러 응답 모델"""
    success: bool = False
    detail: str
    error_code: str
    timestamp: datetime = Field(default_factory=datetime.now)
    path: Optional[str] = None

# 공통 응답 생성 함수들
def success_response(data: T = None, message: str = None) -> APIResponse[T]:
    """성공 응답 생성"""
    return APIResponse(
        success=True,
        data=data,
        message=message,
        timestamp=datetime.now()
    )

def paginated_response(
    items: List[T],
    total: int,
    page: int,
    size: int
) -> PaginatedResponse[T]:
    """페이지네이션 응답 생성"""
    total_pages = (total + size - 1) // size if size else 0

    return PaginatedResponse(
        success=True,
        items=items,
        total=total,
        page=page,
        size=size,
        has_next=page < total_pages,
        has_previous=page > 1,
        total_pages=total_pages,
        timestamp=datetime.now()
    )
