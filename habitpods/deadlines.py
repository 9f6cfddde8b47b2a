"""
Deadline evaluation: turn "the deadline for (goal, date) has passed with no
check-in" into exactly one MISSED row, a streak reset and one push.

Delivery is at-least-once, so every branch short of the insert is a no-op and
a second run for the same pair changes nothing.
"""
from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from .checkins import get_check_in, insert_check_in_if_absent
from .clock import fire_instant, local_today, utcnow
from .db import SessionLocal
from .frequency import Frequency
from .goals import get_goal, get_goal_for_update, is_active_on, recompute_streak
from .job_queue import dedupe_key, enqueue_job
from .logging_config import get_logger
from .models import Goal, JOB_KIND_DEADLINE, STATUS_MISSED
from .notifications import Notifier, get_notifier, notify_missed

logger = get_logger(__name__)

GOAL_NOT_FOUND = "goal_not_found"
GOAL_ARCHIVED = "goal_archived"
GOAL_INACTIVE = "goal_inactive"
NOT_EXPECTED = "not_expected"
ALREADY_RECORDED = "already_recorded"
LOST_RACE = "lost_race"
MISSED = "missed"


def schedule_deadline_check(goal: Goal, day: date, now: Optional[datetime] = None) -> Optional[tuple[int, bool]]:
    """
    Enqueue the deadline job for (goal, day) at its fire instant, computed now
    and only now. With `now`, an instant already in the past is not enqueued.
    """
    fire_at = fire_instant(day, goal.deadline_time, goal.timezone)
    if now is not None and fire_at < now:
        return None
    return enqueue_job(
        JOB_KIND_DEADLINE,
        {"goal_id": goal.id, "date": day.isoformat()},
        dedupe_key=dedupe_key(JOB_KIND_DEADLINE, goal.id, day),
        available_at=fire_at,
    )


def evaluate_deadline(
    goal_id: int,
    day: date,
    notifier: Optional[Notifier] = None,
    now: Optional[datetime] = None,
) -> str:
    now = now or utcnow()
    with SessionLocal() as s:
        goal = get_goal(s, goal_id)
        if goal is None:
            logger.info("deadline_skipped", goal_id=goal_id, date=day.isoformat(), reason=GOAL_NOT_FOUND)
            return GOAL_NOT_FOUND
        if goal.archived:
            logger.info("deadline_skipped", goal_id=goal_id, date=day.isoformat(), reason=GOAL_ARCHIVED)
            return GOAL_ARCHIVED
        if not is_active_on(goal, day):
            logger.info("deadline_skipped", goal_id=goal_id, date=day.isoformat(), reason=GOAL_INACTIVE)
            return GOAL_INACTIVE
        if not Frequency.from_goal(goal).is_expected_on(day):
            logger.info("deadline_skipped", goal_id=goal_id, date=day.isoformat(), reason=NOT_EXPECTED)
            return NOT_EXPECTED
        if get_check_in(s, goal_id, day) is not None:
            logger.debug("deadline_noop", goal_id=goal_id, date=day.isoformat(), reason=ALREADY_RECORDED)
            return ALREADY_RECORDED

        if insert_check_in_if_absent(s, goal, day, STATUS_MISSED) is None:
            logger.info("deadline_noop", goal_id=goal_id, date=day.isoformat(), reason=LOST_RACE)
            return LOST_RACE

        # A late delivery must not drop completions logged after `day`
        as_of = max(day, local_today(goal.timezone, now))
        locked = get_goal_for_update(s, goal_id)
        streak = recompute_streak(s, locked, as_of=as_of)
        s.commit()

    logger.info(
        "check_in_missed",
        goal_id=goal_id,
        user_id=locked.user_id,
        date=day.isoformat(),
        current_streak=streak.current,
        longest_streak=streak.longest,
    )

    # The MISSED row is committed; delivery problems stop here
    try:
        notify_missed(notifier or get_notifier(), locked)
    except Exception as e:
        logger.warning("missed_notification_failed", goal_id=goal_id, date=day.isoformat(), error=repr(e), exc_info=True)
    return MISSED
