"""
구조화된 로깅 시스템
"""
import logging
import json
from datetime import datetime
from typing import Dict, Any, Optional
import time

from .config import settings

class StructuredFormatter(logging.Formatter):
    """구조화된 로그 포맷터"""

    def format(self, record):
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno
        }

        # 추가 컨텍스트 정보 포함
        if hasattr(record, 'organization_id'):
            log_data['organization_id'] = record.organization_id
        if hasattr(record, 'request_id'):
            log_data['request_id'] = record.request_id
        if hasattr(record, 'execution_time'):
            log_data['execution_time'] = record.execution_time
        if hasattr(record, 'extra_data'):
            log_data['extra_data'] = record.extra_data
        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)

_configured = False

def setup_logging():
    """로깅 설정"""
    global _configured

    logger = logging.getLogger()
    if _configured:
        return logger

    # 루트 로거 설정
    logger.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))

    # 핸들러 생성
    structured_formatter = StructuredFormatter()
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(structured_formatter)
    logger.addHandler(console_handler)

    if settings.log_file:
        file_handler = logging.FileHandler(settings.log_file, encoding='utf-8')
        file_handler.setFormatter(structured_formatter)
        logger.addHandler(file_handler)

    _configured = True
    return logger

def get_logger(name: str) -> logging.Logger:
    """로거 인스턴스 반환"""
    return logging.getLogger(name)

def log_database_operation(operation: str, table: str, record_id: Optional[int] = None):
    """데이터베이스 작업 로깅"""
    logger = get_logger("database")
    logger.info(
        f"DB 작업: {operation}",
        extra={
            'extra_data': {
                'operation': operation,
                'table': table,
                'record_id': record_id
            }
        }
    )

def log_reminder_response(reminder_id: int, response_type: str, status: str, organization_id: Optional[int] = None):
    """리마인더 응답 로깅"""
    logger = get_logger("reminder_response")
    logger.info(
        f"리마인더 응답 처리: {response_type}",
        extra={
            'organization_id': organization_id,
            'extra_data': {
                'reminder_id': reminder_id,
                'response_type': response_type,
                'status': status
            }
        }
    )

def log_escalation_event(escalation_id: int, outcome: str, details: Dict[str, Any] = None):
    """에스컬레이션 처리 로깅"""
    logger = get_logger("escalation")
    logger.info(
        f"에스컬레이션 {outcome}",
        extra={
            'extra_data': {
                'escalation_id': escalation_id,
                'outcome': outcome,
                'details': details or {}
            }
        }
    )

def log_job_run(job_name: str, execution_time: float, result: Dict[str, Any]):
    """주기 작업 실행 로깅"""
    logger = get_logger("jobs")
    logger.info(
        f"주기 작업 완료: {job_name}",
        extra={
            'execution_time': execution_time,
            'extra_data': {
                'job': job_name,
                'result': result
            }
        }
    )

def log_security_event(event_type: str, ip_address: str = None, details: Dict[str, Any] = None):
    """보안 이벤트 로깅"""
    logger = get_logger("security")
    logger.warning(
        f"보안 이벤트: {event_type}",
        extra={
            'extra_data': {
                'event_type': event_type,
                'ip_address': ip_address,
                'details': details or {}
            }
        }
    )

class LoggingMiddleware:
    """로깅 미들웨어"""

    def __init__(self, app):
        self.app = app
        self.logger = get_logger("middleware")

    async def __call__(self, scope, receive, send):
        if scope["type"] == "http":
            start_time = time.time()

            # 요청 정보 추출
            method = scope["method"]
            path = scope["path"]
            client = scope.get("client") or ("unknown",)
            client_ip = client[0]

            # 요청 로깅
            self.logger.info(
                f"HTTP 요청: {method} {path}",
                extra={
                    'extra_data': {
                        'method': method,
                        'path': path,
                        'client_ip': client_ip
                    }
                }
            )

            # 응답 후 로깅을 위한 래퍼
            async def send_wrapper(message):
                if message["type"] == "http.response.start":
                    status_code = message["status"]
                    execution_time = time.time() - start_time

                    # 응답 로깅
                    self.logger.info(
                        f"HTTP 응답: {method} {path} - {status_code}",
                        extra={
                            'execution_time': execution_time,
                            'extra_data': {
                                'method': method,
                                'path': path,
                                'status_code': status_code,
                                'client_ip': client_ip
                            }
                        }
                    )

                await send(message)

            await self.app(scope, receive, send_wrapper)
        else:
            await self.app(scope, receive, send)
