"""
Job consumer: dispatch, retry bookkeeping, end-to-end scenarios.
"""
import threading
import time
from datetime import date, datetime, timedelta

import pytest
from sqlalchemy.exc import OperationalError

from habitpods import worker
from habitpods.checkins import submit_check_in
from habitpods.clock import utcnow
from habitpods.db import SessionLocal
from habitpods.job_queue import claim_job, dedupe_key, enqueue_job, get_job_by_key
from habitpods.models import CheckIn, Goal
from habitpods.scheduler import resync_all_goals
from habitpods.worker import drain_due_jobs, process_job, run_claimed_job, start_consumers

CHICAGO = "America/Chicago"
D = date(2026, 10, 14)
NOW = datetime(2026, 10, 14, 12, 0)


class TestProcessJob:
    def test_unknown_kind(self):
        with pytest.raises(ValueError):
            process_job("weekly_digest", {})

    def test_payload_required(self):
        with pytest.raises(ValueError):
            process_job("deadline", {"goal_id": 1})

    def test_dispatch(self, make_goal, notifier):
        goal = make_goal(reminder_time="09:00")
        res = process_job("reminder", {"goal_id": goal.id, "date": D.isoformat()}, notifier=notifier)
        assert res == {"ok": True, "outcome": "reminded"}


class TestRetries:
    def _failing(self, monkeypatch):
        def boom(*a, **k):
            raise RuntimeError("database unavailable")

        monkeypatch.setattr(worker, "evaluate_deadline", boom)
        enqueue_job("deadline", {"goal_id": 1, "date": D.isoformat()}, dedupe_key=dedupe_key("deadline", 1, D), available_at=NOW)

    def test_failure_schedules_retry(self, monkeypatch):
        self._failing(monkeypatch)
        assert drain_due_jobs(NOW) == {"done": 0, "failed": 1}
        job = get_job_by_key(dedupe_key("deadline", 1, D))
        assert job.status == "retry"
        assert "database unavailable" in job.error
        assert job.available_at > NOW

    def test_gives_up_after_max_attempts(self, monkeypatch):
        self._failing(monkeypatch)
        job = claim_job(worker_id="w1", now=NOW)
        assert run_claimed_job(job, max_attempts=1, now=NOW) is False
        assert get_job_by_key(dedupe_key("deadline", 1, D)).status == "error"


class TestScenarios:
    def test_missed_deadline_end_to_end(self, make_goal, notifier):
        goal = make_goal(timezone=CHICAGO, deadline_time="20:00")
        resync_all_goals(now=NOW)

        assert drain_due_jobs(datetime(2026, 10, 15, 1, 1), notifier=notifier) == {"done": 1, "failed": 0}

        with SessionLocal() as s:
            rows = s.query(CheckIn).filter(CheckIn.goal_id == goal.id).all()
            assert [(r.date, r.status) for r in rows] == [(D, "MISSED")]
            assert s.get(Goal, goal.id).current_streak == 0
        assert len(notifier.of_type("missed")) == 1
        assert get_job_by_key(dedupe_key("deadline", goal.id, D)).result["outcome"] == "missed"

        # a later sweep on the same day cannot schedule the date again
        resync_all_goals(now=datetime(2026, 10, 15, 1, 2))
        assert drain_due_jobs(datetime(2026, 10, 15, 2, 0), notifier=notifier) == {"done": 0, "failed": 0}
        assert len(notifier.sent) == 1

    def test_checked_in_before_deadline(self, make_goal, notifier):
        goal = make_goal(timezone=CHICAGO, deadline_time="20:00", reminder_time="18:00")
        resync_all_goals(now=NOW)
        submit_check_in(goal.id, now=datetime(2026, 10, 14, 22, 30))  # 17:30 CDT

        drain_due_jobs(datetime(2026, 10, 15, 1, 1), notifier=notifier)

        with SessionLocal() as s:
            statuses = [r.status for r in s.query(CheckIn).filter(CheckIn.goal_id == goal.id)]
            assert statuses == ["COMPLETED"]
            assert s.get(Goal, goal.id).current_streak == 1
        assert notifier.sent == []


def test_consumer_survives_failed_status_write(monkeypatch):
    real_mark_done = worker.mark_done
    calls = []

    def flaky_mark_done(job_id, result=None):
        calls.append(job_id)
        if len(calls) == 1:
            raise OperationalError("UPDATE background_jobs", {}, Exception("database is locked"))
        real_mark_done(job_id, result)

    monkeypatch.setattr(worker, "mark_done", flaky_mark_done)
    due = utcnow() - timedelta(minutes=1)
    # reminders for goals that do not exist finish as no-ops
    for goal_id in (901, 902):
        enqueue_job("reminder", {"goal_id": goal_id, "date": D.isoformat()},
                    dedupe_key=dedupe_key("reminder", goal_id, D), available_at=due)

    stop = threading.Event()
    threads = start_consumers(1, stop, poll_seconds=1)
    deadline = time.monotonic() + 10
    while len(calls) < 2 and time.monotonic() < deadline:
        time.sleep(0.1)
    alive = threads[0].is_alive()
    stop.set()
    threads[0].join(timeout=5)

    assert alive
    assert len(calls) == 2
    statuses = sorted(get_job_by_key(dedupe_key("reminder", g, D)).status for g in (901, 902))
    assert statuses == ["done", "running"]


def test_consumers_stop_on_event():
    stop = threading.Event()
    threads = start_consumers(2, stop, poll_seconds=1)
    assert len(threads) == 2
    stop.set()
    for t in threads:
        t.join(timeout=5)
    assert not any(t.is_alive() for t in threads)
