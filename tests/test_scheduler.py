import logging

import pytest

from webrana import scheduler
from webrana.core.logging import MaskingJsonFormatter, build_logging_config


@pytest.fixture
def scheduler_sessions(monkeypatch, session_factory):
    monkeypatch.setattr(scheduler, "SessionLocal", session_factory)


async def test_run_job_returns_result(scheduler_sessions):
    async def job(db):
        return {"processed": 0}

    assert await scheduler.run_job("noop", job) == {"processed": 0}


async def test_failing_job_is_logged_not_raised(scheduler_sessions, caplog):
    async def job(db):
        raise RuntimeError("boom")

    with caplog.at_level(logging.ERROR, logger="webrana.scheduler"):
        assert await scheduler.run_job("broken", job) is None
    assert caplog.records[-1].job == "broken"


async def test_lifecycle_jobs_run_in_order(scheduler_sessions, monkeypatch):
    seen = []

    def make(name):
        async def job(db):
            seen.append(name)
            return name

        return job

    monkeypatch.setattr(scheduler, "LIFECYCLE_JOBS", [(n, make(n)) for n in ("a", "b", "c")])

    assert await scheduler.run_lifecycle_jobs() == {"a": "a", "b": "b", "c": "c"}
    assert seen == ["a", "b", "c"]


async def test_scheduler_start_and_stop(monkeypatch):
    async def idle():
        return None

    monkeypatch.setattr(scheduler, "run_lifecycle_jobs", idle)
    monkeypatch.setattr(scheduler, "run_health_jobs", idle)

    sched = scheduler.Scheduler(interval=60, health_interval=60)
    sched.start()
    assert sched.running
    await sched.stop()
    assert not sched.running


def test_logging_config_switches_formatter():
    assert build_logging_config("debug", as_json=True)["handlers"]["console"]["formatter"] == "json"
    cfg = build_logging_config("info", as_json=False)
    assert cfg["handlers"]["console"]["formatter"] == "plain"
    assert cfg["root"]["level"] == "INFO"


def test_json_formatter_masks_credentials():
    formatter = MaskingJsonFormatter("%(message)s")
    record = logging.LogRecord("webrana", logging.INFO, __file__, 1, "login", None, None)
    record.password = "hunter2"
    record.user_id = 5

    out = formatter.format(record)

    assert '"password": "***"' in out
    assert '"user_id": 5' in out
