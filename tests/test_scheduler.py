"""Embedded scheduler wiring for :mod:`healit.scheduler`."""

from apscheduler.schedulers.background import BackgroundScheduler

from healit.models import ReminderInstance
from healit.scheduler import EngineScheduler


def _scheduler(session_factory):
    return EngineScheduler(scheduler=BackgroundScheduler(timezone="UTC"), session_factory=session_factory)


def test_register_jobs(session_factory):
    engine_scheduler = _scheduler(session_factory)

    engine_scheduler.register_jobs()

    jobs = engine_scheduler.scheduler.get_jobs()
    assert sorted(job.id for job in jobs) == ["generate_instances", "sweep"]


def test_jobs_run_in_their_own_session(session_factory, db, patient, make_routine):
    make_routine()
    engine_scheduler = _scheduler(session_factory)

    generated = engine_scheduler.generate_instances()
    swept = engine_scheduler.sweep()

    assert generated["errors"] == 0
    assert set(swept) == {"sent", "expired", "escalations", "notifications"}
    assert db.query(ReminderInstance).filter(ReminderInstance.patient_id == patient.id).count() == 1


def test_job_failure_is_logged_not_raised(session_factory, monkeypatch):
    def boom(db):
        raise RuntimeError("database unavailable")

    monkeypatch.setattr("healit.scheduler.run_sweep", boom)

    assert _scheduler(session_factory).sweep() is None
