"""
Goal store: goal configuration plus the cached streak fields.

Streak fields are written only through `recompute_streak`, inside the same
transaction as the check-in write that justified it.
"""
from __future__ import annotations

from datetime import date, datetime
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from .clock import is_valid_timezone, local_today, parse_hhmm
from .config import settings
from .db import SessionLocal
from .errors import GoalNotFound, ImmutableGoalField, InvalidGoalConfig, InvalidTimezone
from .frequency import Frequency
from .logging_config import get_logger
from .models import Goal, User
from .streaks import StreakResult, calculate_streak

logger = get_logger(__name__)

TITLE_MAX = 100
_EDITABLE = {
    "title", "description", "frequency", "reminder_time", "deadline_time",
    "requires_proof", "end_date",
}


def get_goal(session: Session, goal_id: int) -> Optional[Goal]:
    return session.get(Goal, goal_id)


def get_goal_for_update(session: Session, goal_id: int) -> Optional[Goal]:
    """Row-locked read (SELECT ... FOR UPDATE) for the streak write path."""
    return session.execute(
        select(Goal).where(Goal.id == goal_id).with_for_update()
    ).scalar_one_or_none()


def list_active_goals(session: Session) -> list[Goal]:
    return list(
        session.execute(
            select(Goal).where(Goal.archived.is_(False)).order_by(Goal.id.asc())
        ).scalars().all()
    )


def is_active_on(goal: Goal, day: date) -> bool:
    if goal.archived:
        return False
    if goal.start_date and day < goal.start_date:
        return False
    if goal.end_date and day > goal.end_date:
        return False
    return True


def recompute_streak(session: Session, goal: Goal, as_of: date) -> StreakResult:
    """
    Recalculate from the full outcome history and persist on the goal row.
    The caller commits. `longest_streak` never decreases.
    """
    # Local import: checkins depends on this module
    from .checkins import outcome_history

    result = calculate_streak(
        Frequency.from_goal(goal),
        outcome_history(session, goal.id),
        as_of,
        longest_so_far=goal.longest_streak or 0,
    )
    goal.current_streak = result.current
    goal.longest_streak = result.longest
    session.add(goal)
    return result


# ──────────────────────────────────────────────────────────────────────────────
# Create / edit / archive
# ──────────────────────────────────────────────────────────────────────────────

def _validate_time(value: Optional[str], field: str) -> Optional[str]:
    if value is None:
        return None
    try:
        parse_hhmm(value)
    except ValueError:
        raise InvalidGoalConfig(f"Invalid {field} format (use HH:MM)", field)
    return str(value).strip()


def _validate_title(title: Any) -> str:
    clean = str(title or "").strip()
    if not clean:
        raise InvalidGoalConfig("Goal title is required", "title")
    if len(clean) > TITLE_MAX:
        raise InvalidGoalConfig(f"Title must be {TITLE_MAX} characters or less", "title")
    return clean


def _coerce_frequency(frequency: Frequency | str | None, weekdays=None) -> Frequency:
    if isinstance(frequency, Frequency):
        return frequency
    try:
        return Frequency.parse(frequency, weekdays)
    except ValueError as e:
        raise InvalidGoalConfig(str(e), "frequency")


def create_goal(
    user_id: int,
    title: str,
    frequency: Frequency | str | None = None,
    *,
    weekdays=None,
    deadline_time: Optional[str] = None,
    reminder_time: Optional[str] = None,
    timezone: Optional[str] = None,
    requires_proof: bool = False,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    pod_id: Optional[int] = None,
    description: Optional[str] = None,
    schedule_now: bool = False,
    now: Optional[datetime] = None,
) -> Goal:
    """
    Create a goal. The zone is snapshotted here (explicit value, else the
    owner's live zone, else TZ_DEFAULT) and never recalculated afterwards.
    """
    freq = _coerce_frequency(frequency, weekdays)
    clean_title = _validate_title(title)
    deadline = _validate_time(deadline_time or settings.DEFAULT_DEADLINE_TIME, "deadline_time")
    reminder = _validate_time(reminder_time, "reminder_time")

    with SessionLocal() as s:
        user = s.get(User, user_id)
        if not user:
            raise InvalidGoalConfig("Owner not found", "user_id")
        tz_name = timezone or user.tz or settings.TZ_DEFAULT
        if not is_valid_timezone(tz_name):
            raise InvalidTimezone(tz_name)
        start = start_date or local_today(tz_name, now)
        if end_date is not None and end_date <= start:
            raise InvalidGoalConfig("End date must be after start date", "end_date")

        goal = Goal(
            user_id=user_id,
            pod_id=pod_id,
            title=clean_title,
            description=(description or "").strip() or None,
            frequency_type=freq.kind.value,
            frequency_days=freq.stored_days(),
            reminder_time=reminder,
            deadline_time=deadline,
            timezone=tz_name,
            requires_proof=bool(requires_proof),
            start_date=start,
            end_date=end_date,
            current_streak=0,
            longest_streak=0,
            archived=False,
        )
        s.add(goal)
        s.commit()
        s.refresh(goal)
        s.expunge(goal)

    logger.info("goal_created", goal_id=goal.id, user_id=user_id, timezone=tz_name, frequency=freq.kind.value)
    if schedule_now:
        from .scheduler import resync_goal_schedule
        resync_goal_schedule(goal.id, now=now)
    return goal


def update_goal(goal_id: int, *, schedule_now: bool = False, now: Optional[datetime] = None, **changes) -> Goal:
    """
    Edit goal configuration. Jobs already queued keep their fire instant;
    the new values apply from the next enqueue.
    """
    if "timezone" in changes:
        raise ImmutableGoalField(goal_id, "timezone")
    unknown = set(changes) - _EDITABLE - {"weekdays"}
    if unknown:
        raise InvalidGoalConfig(f"Unknown or read-only fields: {sorted(unknown)}", sorted(unknown)[0])

    with SessionLocal() as s:
        goal = get_goal_for_update(s, goal_id)
        if not goal:
            raise GoalNotFound(goal_id)
        if "title" in changes:
            goal.title = _validate_title(changes["title"])
        if "description" in changes:
            goal.description = (changes["description"] or "").strip() or None
        if "frequency" in changes or "weekdays" in changes:
            freq = _coerce_frequency(changes.get("frequency", goal.frequency_type), changes.get("weekdays", goal.frequency_days))
            goal.frequency_type = freq.kind.value
            goal.frequency_days = freq.stored_days()
        if "deadline_time" in changes:
            goal.deadline_time = _validate_time(changes["deadline_time"] or settings.DEFAULT_DEADLINE_TIME, "deadline_time")
        if "reminder_time" in changes:
            goal.reminder_time = _validate_time(changes["reminder_time"], "reminder_time")
        if "requires_proof" in changes:
            goal.requires_proof = bool(changes["requires_proof"])
        if "end_date" in changes:
            end = changes["end_date"]
            if end is not None and end <= goal.start_date:
                raise InvalidGoalConfig("End date must be after start date", "end_date")
            goal.end_date = end
        s.commit()
        s.refresh(goal)
        s.expunge(goal)

    logger.info("goal_updated", goal_id=goal_id, fields=sorted(changes))
    if schedule_now:
        from .scheduler import resync_goal_schedule
        resync_goal_schedule(goal_id, now=now)
    return goal


def archive_goal(goal_id: int) -> bool:
    """Stop future scheduling. History and already-queued jobs stay; evaluators no-op on archived goals."""
    with SessionLocal() as s:
        goal = s.get(Goal, goal_id)
        if not goal:
            return False
        goal.archived = True
        s.commit()
    logger.info("goal_archived", goal_id=goal_id)
    return True
