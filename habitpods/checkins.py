"""
Check-in store and the user-facing submission path.

One row per (goal, logical date). Every writer goes through
`insert_check_in_if_absent`; the unique constraint decides races, and the
loser re-reads the winner instead of writing a second row.

Offline backfill: a submission carrying a client timestamp within
BACKFILL_WINDOW_HOURS of server time is dated by that timestamp in the goal's
zone, and may convert that date's MISSED row to COMPLETED in place.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .clock import local_today, logical_date, to_naive_utc, utcnow
from .config import settings
from .db import SessionLocal
from .errors import CheckInConflict, GoalArchived, GoalNotFound, InvalidCheckIn
from .goals import get_goal, get_goal_for_update, recompute_streak
from .logging_config import get_logger
from .models import CheckIn, Goal, STATUS_COMPLETED, STATUS_MISSED, STATUS_SKIPPED

logger = get_logger(__name__)

USER_STATUSES = (STATUS_COMPLETED, STATUS_SKIPPED)
LIST_LIMIT_MAX = 100


@dataclass(frozen=True)
class CheckInResult:
    check_in_id: int
    goal_id: int
    date: date
    status: str
    converted: bool
    backfilled: bool
    current_streak: int
    longest_streak: int


# ──────────────────────────────────────────────────────────────────────────────
# Store primitives (caller owns the session/transaction)
# ──────────────────────────────────────────────────────────────────────────────

def get_check_in(session: Session, goal_id: int, day: date) -> Optional[CheckIn]:
    return session.execute(
        select(CheckIn).where(CheckIn.goal_id == goal_id, CheckIn.date == day)
    ).scalar_one_or_none()


def outcome_history(session: Session, goal_id: int) -> Dict[date, str]:
    rows = session.execute(
        select(CheckIn.date, CheckIn.status).where(CheckIn.goal_id == goal_id)
    ).all()
    return {d: status for d, status in rows}


def insert_check_in_if_absent(
    session: Session,
    goal: Goal,
    day: date,
    status: str,
    *,
    comment: Optional[str] = None,
    proof_ref: Optional[str] = None,
    client_timestamp: Optional[datetime] = None,
) -> Optional[CheckIn]:
    """
    Insert the outcome for (goal, day), or return None if a row already exists.
    Must be the first write of the transaction: on conflict the whole
    transaction is rolled back.
    """
    ci = CheckIn(
        goal_id=goal.id,
        user_id=goal.user_id,
        date=day,
        status=status,
        comment=comment,
        proof_ref=proof_ref,
        client_timestamp=client_timestamp,
    )
    session.add(ci)
    try:
        session.flush()
    except IntegrityError:
        session.rollback()
        return None
    return ci


def _convert_missed(
    session: Session,
    existing: CheckIn,
    *,
    comment: Optional[str],
    proof_ref: Optional[str],
    client_timestamp: Optional[datetime],
) -> bool:
    # Conditional on the row still being MISSED; a concurrent converter wins once
    res = session.execute(
        update(CheckIn)
        .where(CheckIn.id == existing.id, CheckIn.status == STATUS_MISSED)
        .values(
            status=STATUS_COMPLETED,
            comment=comment,
            proof_ref=proof_ref,
            client_timestamp=client_timestamp,
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        return False
    session.refresh(existing)
    return True


# ──────────────────────────────────────────────────────────────────────────────
# Submission
# ──────────────────────────────────────────────────────────────────────────────

def backfill_window() -> timedelta:
    return timedelta(hours=max(0, int(settings.BACKFILL_WINDOW_HOURS)))


def derive_check_in_date(
    tz_name: str,
    now: datetime,
    client_timestamp: Optional[datetime] = None,
    window: Optional[timedelta] = None,
) -> tuple[date, bool]:
    """
    Logical date for a submission, and whether the client timestamp was used.
    Outside the window the server clock decides.
    """
    window = backfill_window() if window is None else window
    if client_timestamp is not None:
        ts = to_naive_utc(client_timestamp)
        if abs(now - ts) <= window:
            # a client clock running ahead cannot date a check-in into the future
            return logical_date(min(ts, now), tz_name), True
        logger.info(
            "backfill_outside_window",
            client_timestamp=ts.isoformat(),
            server_now=now.isoformat(),
            window_hours=window.total_seconds() / 3600,
        )
    return local_today(tz_name, now), False


def submit_check_in(
    goal_id: int,
    status: str = STATUS_COMPLETED,
    *,
    comment: Optional[str] = None,
    proof_ref: Optional[str] = None,
    client_timestamp: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> CheckInResult:
    """
    Record a user check-in (COMPLETED or SKIPPED) and refresh the streak.

    Raises GoalNotFound, GoalArchived, InvalidCheckIn, or CheckInConflict when
    the derived date already has an outcome that cannot be converted.
    """
    clean_status = str(status or STATUS_COMPLETED).strip().upper()
    if clean_status not in USER_STATUSES:
        raise InvalidCheckIn("Invalid status. Use COMPLETED or SKIPPED", {"status": status})
    now = to_naive_utc(now) if now else utcnow()
    ts = to_naive_utc(client_timestamp) if client_timestamp else None
    clean_comment = (comment or "").strip() or None

    with SessionLocal() as s:
        goal = get_goal(s, goal_id)
        if not goal:
            raise GoalNotFound(goal_id)
        if goal.archived:
            raise GoalArchived(goal_id)

        day, backfilled = derive_check_in_date(goal.timezone, now, ts)
        today = local_today(goal.timezone, now)

        ci = None
        converted = False
        # Two passes: the second one runs only if a concurrent writer beat our insert
        for _ in range(2):
            existing = get_check_in(s, goal_id, day)
            if existing is None:
                ci = insert_check_in_if_absent(
                    s, goal, day, clean_status,
                    comment=clean_comment, proof_ref=proof_ref, client_timestamp=ts,
                )
                if ci is not None:
                    break
                continue
            if backfilled and clean_status == STATUS_COMPLETED and existing.status == STATUS_MISSED:
                if _convert_missed(s, existing, comment=clean_comment, proof_ref=proof_ref, client_timestamp=ts):
                    ci, converted = existing, True
                    break
                s.rollback()
                continue
            raise CheckInConflict(goal_id, day, existing.status)

        if ci is None:
            existing = get_check_in(s, goal_id, day)
            raise CheckInConflict(goal_id, day, existing.status if existing else "unknown")

        locked = get_goal_for_update(s, goal_id)
        streak = recompute_streak(s, locked, as_of=today)
        s.commit()

        result = CheckInResult(
            check_in_id=ci.id,
            goal_id=goal_id,
            date=day,
            status=ci.status,
            converted=converted,
            backfilled=backfilled,
            current_streak=streak.current,
            longest_streak=streak.longest,
        )

    logger.info(
        "check_in_recorded",
        goal_id=goal_id,
        date=day.isoformat(),
        status=result.status,
        converted=converted,
        backfilled=backfilled,
        current_streak=result.current_streak,
    )
    return result


def reconcile_backfill(
    goal_id: int,
    client_timestamp: datetime,
    *,
    comment: Optional[str] = None,
    proof_ref: Optional[str] = None,
    now: Optional[datetime] = None,
) -> CheckInResult:
    """Entry point for offline completions: COMPLETED with a client-asserted instant."""
    if client_timestamp is None:
        raise InvalidCheckIn("Backfill requires a client timestamp")
    return submit_check_in(
        goal_id,
        STATUS_COMPLETED,
        comment=comment,
        proof_ref=proof_ref,
        client_timestamp=client_timestamp,
        now=now,
    )


# ──────────────────────────────────────────────────────────────────────────────
# Reads
# ──────────────────────────────────────────────────────────────────────────────

def list_check_ins(goal_id: int, limit: int = 30, offset: int = 0) -> List[Dict[str, Any]]:
    """Newest first, as dicts for the feed."""
    with SessionLocal() as s:
        rows = s.execute(
            select(CheckIn)
            .where(CheckIn.goal_id == goal_id)
            .order_by(CheckIn.date.desc())
            .limit(max(1, min(int(limit), LIST_LIMIT_MAX)))
            .offset(max(0, int(offset)))
        ).scalars().all()
        return [
            {
                "id": ci.id,
                "date": ci.date,
                "status": ci.status,
                "comment": ci.comment,
                "proof_ref": ci.proof_ref,
                "created_at": ci.created_at,
            }
            for ci in rows
        ]


def is_checked_in_today(goal_id: int, now: Optional[datetime] = None) -> bool:
    with SessionLocal() as s:
        goal = get_goal(s, goal_id)
        if not goal:
            raise GoalNotFound(goal_id)
        return get_check_in(s, goal_id, local_today(goal.timezone, now)) is not None
