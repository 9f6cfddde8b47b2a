"""
Pre-deadline nudges. Read-only with respect to goals and check-ins, so a
re-delivered job at worst repeats a push, and only while nothing is recorded.
"""
from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from .checkins import get_check_in
from .clock import fire_instant
from .db import SessionLocal
from .frequency import Frequency
from .goals import get_goal, is_active_on
from .job_queue import dedupe_key, enqueue_job
from .logging_config import get_logger
from .models import Goal, JOB_KIND_REMINDER
from .notifications import Notifier, get_notifier, notify_reminder

logger = get_logger(__name__)

GOAL_NOT_FOUND = "goal_not_found"
GOAL_ARCHIVED = "goal_archived"
GOAL_INACTIVE = "goal_inactive"
NO_REMINDER = "no_reminder"
NOT_EXPECTED = "not_expected"
ALREADY_RECORDED = "already_recorded"
REMINDED = "reminded"
NOTIFY_FAILED = "notify_failed"


def schedule_reminder(goal: Goal, day: date, now: Optional[datetime] = None) -> Optional[tuple[int, bool]]:
    if not goal.reminder_time:
        return None
    fire_at = fire_instant(day, goal.reminder_time, goal.timezone)
    if now is not None and fire_at < now:
        return None
    return enqueue_job(
        JOB_KIND_REMINDER,
        {"goal_id": goal.id, "date": day.isoformat()},
        dedupe_key=dedupe_key(JOB_KIND_REMINDER, goal.id, day),
        available_at=fire_at,
    )


def evaluate_reminder(goal_id: int, day: date, notifier: Optional[Notifier] = None) -> str:
    skip = None
    with SessionLocal() as s:
        goal = get_goal(s, goal_id)
        if goal is None:
            skip = GOAL_NOT_FOUND
        elif goal.archived:
            skip = GOAL_ARCHIVED
        elif not goal.reminder_time:
            skip = NO_REMINDER
        elif not is_active_on(goal, day):
            skip = GOAL_INACTIVE
        elif not Frequency.from_goal(goal).is_expected_on(day):
            skip = NOT_EXPECTED
        elif get_check_in(s, goal_id, day) is not None:
            skip = ALREADY_RECORDED
    if skip is not None:
        logger.info("reminder_skipped", goal_id=goal_id, date=day.isoformat(), reason=skip)
        return skip

    try:
        notify_reminder(notifier or get_notifier(), goal)
    except Exception as e:
        logger.warning("reminder_notification_failed", goal_id=goal_id, date=day.isoformat(), error=repr(e), exc_info=True)
        return NOTIFY_FAILED
    logger.info("reminder_sent", goal_id=goal_id, user_id=goal.user_id, date=day.isoformat())
    return REMINDED
