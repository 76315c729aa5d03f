"""
내장 스케줄러 - 외부 타이머 없이 인스턴스 생성/스윕을 주기 실행

    python -m healit.scheduler
"""
import logging

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.interval import IntervalTrigger

from healit.config import settings
from healit.database import SessionLocal, init_db
from healit.logging_config import setup_logging
from healit.services.jobs import run_generate, run_sweep

logger = logging.getLogger(__name__)

class EngineScheduler:
    """인스턴스 생성 / 스윕 주기 작업"""

    def __init__(self, scheduler=None, session_factory=SessionLocal):
        self.scheduler = scheduler or BlockingScheduler(timezone="UTC")
        self.session_factory = session_factory

    def register_jobs(self):
        self.scheduler.add_job(
            self.generate_instances,
            IntervalTrigger(seconds=settings.generate_interval_seconds),
            id="generate_instances",
            name="Generate today's reminder instances",
            replace_existing=True,
            max_instances=1,
            coalesce=True
        )
        self.scheduler.add_job(
            self.sweep,
            IntervalTrigger(seconds=settings.sweep_interval_seconds),
            id="sweep",
            name="Send due reminders and run escalations",
            replace_existing=True,
            max_instances=1,
            coalesce=True
        )

    def generate_instances(self):
        db = self.session_factory()
        try:
            return run_generate(db)
        except Exception:
            db.rollback()
            logger.exception("인스턴스 생성 작업 실패")
        finally:
            db.close()

    def sweep(self):
        db = self.session_factory()
        try:
            return run_sweep(db)
        except Exception:
            db.rollback()
            logger.exception("스윕 작업 실패")
        finally:
            db.close()

    def start(self):
        logger.info("스케줄러 시작...")
        self.register_jobs()
        # 시작 직후 한 번 실행
        self.generate_instances()
        self.scheduler.start()

    def stop(self):
        logger.info("스케줄러 중지...")
        self.scheduler.shutdown()

def main():
    setup_logging()
    init_db()
    scheduler = EngineScheduler()
    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        scheduler.stop()

if __name__ == "__main__":
    main()
