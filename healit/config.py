from pydantic_settings import BaseSettings
from typing import List
import os

class Settings(BaseSettings):
    # 데이터베이스 설정 (환경변수에서 읽어오기)
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./healit.db")
    database_echo: bool = os.getenv("DATABASE_ECHO", "False").lower() == "true"

    # JWT 설정 (토큰 발급은 외부 인증 서비스, 여기서는 검증만)
    secret_key: str = os.getenv("SECRET_KEY", "your-secret-key-here-please-change-in-production")
    algorithm: str = os.getenv("ALGORITHM", "HS256")

    # 스케줄러(외부 타이머) 전용 인증 설정
    scheduler_api_key: str = os.getenv("SCHEDULER_API_KEY", "healit-scheduler-api-key")

    # 루틴 & 리마인더 설정
    default_timezone: str = os.getenv("DEFAULT_TIMEZONE", "Asia/Jerusalem")
    critical_now_window_minutes: int = int(os.getenv("CRITICAL_NOW_WINDOW_MINUTES", "15"))
    next_window_minutes: int = int(os.getenv("NEXT_WINDOW_MINUTES", "120"))
    next_bucket_limit: int = int(os.getenv("NEXT_BUCKET_LIMIT", "5"))
    default_snooze_minutes: int = int(os.getenv("DEFAULT_SNOOZE_MINUTES", "10"))
    max_snooze_minutes: int = int(os.getenv("MAX_SNOOZE_MINUTES", "240"))

    # 주기 작업 설정
    generate_interval_seconds: int = int(os.getenv("GENERATE_INTERVAL_SECONDS", "300"))
    sweep_interval_seconds: int = int(os.getenv("SWEEP_INTERVAL_SECONDS", "60"))
    sweep_batch_size: int = int(os.getenv("SWEEP_BATCH_SIZE", "50"))

    # 알림 전송 설정 (이메일/푸시 전송은 외부 서비스)
    notification_enabled: bool = os.getenv("NOTIFICATION_ENABLED", "True").lower() == "true"
    notification_webhook_url: str = os.getenv("NOTIFICATION_WEBHOOK_URL", "http://localhost:8002/send-reminder")
    notification_api_key: str = os.getenv("NOTIFICATION_API_KEY", "")
    notification_timeout: int = int(os.getenv("NOTIFICATION_TIMEOUT", "10"))
    default_reminder_channel: str = os.getenv("DEFAULT_REMINDER_CHANNEL", "in_app")

    # 환경 설정
    environment: str = os.getenv("ENVIRONMENT", "development")
    debug: bool = os.getenv("DEBUG", "True").lower() == "true"
    app_version: str = os.getenv("APP_VERSION", "1.0.0")

    # CORS 설정
    cors_origins: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",  # Vite 개발 서버
        "http://localhost:8080"
    ]

    # 페이지네이션 설정
    default_page_size: int = 20
    max_page_size: int = 100

    # 로깅 설정
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    log_file: str = os.getenv("LOG_FILE", "app.log")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # 추가 필드 무시

settings = Settings()
