# habitpods/scheduler.py
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.jobstores.sqlalchemy import SQLAlchemyJobStore
from apscheduler.executors.pool import ThreadPoolExecutor

from .clock import is_valid_timezone, local_today, utcnow
from .config import settings
from .db import DATABASE_URL, SessionLocal
from .deadlines import schedule_deadline_check
from .frequency import Frequency
from .goals import get_goal, is_active_on, list_active_goals
from .job_queue import purge_finished_jobs
from .logging_config import get_logger
from .models import Goal
from .reminders import schedule_reminder

logger = get_logger(__name__)

# ──────────────────────────────────────────────────────────────────────────────
# APScheduler setup (periodic maintenance only; goal jobs live in background_jobs)
# ──────────────────────────────────────────────────────────────────────────────

jobstores = {"default": SQLAlchemyJobStore(url=DATABASE_URL)}
executors = {"default": ThreadPoolExecutor(2)}
scheduler = BackgroundScheduler(jobstores=jobstores, executors=executors, timezone="UTC")

RESYNC_JOB_ID = "resync_all_goals"
PURGE_JOB_ID = "purge_finished_jobs"


def register_jobs(sched: BackgroundScheduler) -> None:
    """Resync at startup and every RESYNC_INTERVAL_MINUTES; purge finished jobs daily."""
    sched.add_job(
        resync_all_goals,
        "interval",
        minutes=max(1, int(settings.RESYNC_INTERVAL_MINUTES)),
        id=RESYNC_JOB_ID,
        replace_existing=True,
        next_run_time=datetime.now(timezone.utc),
        coalesce=True,
        max_instances=1,
    )
    sched.add_job(
        purge_finished_jobs,
        "cron",
        hour=3,
        minute=15,
        id=PURGE_JOB_ID,
        replace_existing=True,
        coalesce=True,
        max_instances=1,
    )


def start_scheduler():
    if not scheduler.running:
        register_jobs(scheduler)
        scheduler.start()
        logger.info("scheduler_started", resync_minutes=settings.RESYNC_INTERVAL_MINUTES)


def shutdown_scheduler():
    if scheduler.running:
        scheduler.shutdown(wait=False)


# ──────────────────────────────────────────────────────────────────────────────
# Resync sweeper
# ──────────────────────────────────────────────────────────────────────────────

def _schedule_goal(goal: Goal, now: datetime) -> dict[str, bool]:
    """
    Enqueue the deadline and reminder for one goal's today and tomorrow, both
    in the goal's own calendar. Tomorrow is covered so that instants between
    local midnight and the first sweep of the day are already queued.
    Instants that already passed are left alone.
    """
    out = {"deadline": False, "reminder": False}
    if goal.archived:
        return out
    if not is_valid_timezone(goal.timezone):
        logger.warning("goal_invalid_timezone", goal_id=goal.id, timezone=goal.timezone)
        return out
    try:
        frequency = Frequency.from_goal(goal)
    except ValueError as e:
        logger.warning("goal_invalid_frequency", goal_id=goal.id, error=str(e))
        return out

    today = local_today(goal.timezone, now)
    for day in (today, today + timedelta(days=1)):
        if not is_active_on(goal, day) or not frequency.is_expected_on(day):
            continue
        deadline = schedule_deadline_check(goal, day, now=now)
        out["deadline"] |= bool(deadline and deadline[1])
        reminder = schedule_reminder(goal, day, now=now)
        out["reminder"] |= bool(reminder and reminder[1])
    return out


def resync_goal_schedule(goal_id: int, now: datetime | None = None) -> dict[str, bool]:
    """
    Schedule one goal immediately (goal create/edit handlers). Returns which
    jobs were newly enqueued; an existing job for the same key is left as is.
    """
    now = now or utcnow()
    with SessionLocal() as s:
        goal = get_goal(s, goal_id)
        if goal is None:
            return {"deadline": False, "reminder": False}
        return _schedule_goal(goal, now)


def resync_all_goals(now: datetime | None = None) -> dict[str, Any]:
    now = now or utcnow()
    summary = {"goals": 0, "deadlines": 0, "reminders": 0, "errors": 0}
    with SessionLocal() as s:
        goals = list_active_goals(s)
    for goal in goals:
        summary["goals"] += 1
        try:
            res = _schedule_goal(goal, now)
        except Exception:
            # one broken goal must not stop the sweep
            summary["errors"] += 1
            logger.exception("goal_resync_failed", goal_id=goal.id)
            continue
        summary["deadlines"] += int(res["deadline"])
        summary["reminders"] += int(res["reminder"])
    logger.info("resync_complete", **summary)
    return summary
