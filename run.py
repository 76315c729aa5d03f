#!/usr/bin/env python3
"""
HealIT Routine & Follow-up Engine 실행 스크립트
"""
import uvicorn
import os
from dotenv import load_dotenv

# 환경 변수 로드
load_dotenv()

if __name__ == "__main__":
    from healit.database import init_db

    # 개발 환경에서는 테이블 자동 생성
    if os.getenv("ENVIRONMENT", "development") == "development":
        init_db()

    uvicorn.run(
        "healit.main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", 8000)),
        reload=True if os.getenv("DEBUG", "True") == "True" else False,
        log_level="info"
    )
