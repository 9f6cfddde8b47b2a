"""
Streak calculator. Pure: no session, no clock.

Input is a goal's outcome history ({date: status}) and the reference day
("today" in the goal's zone). The walk goes backwards from the reference day:

  DAILY / SPECIFIC_WEEKDAYS
    COMPLETED on an expected day extends, SKIPPED is neutral, a gap on an
    expected day breaks. Days the frequency does not expect are transparent.
    The reference day itself may still be open, so a gap there is not a break.
  WEEKLY
    Same walk at ISO-week granularity: a week with a completion extends, a
    week with only skips is neutral, an empty past week breaks.

MISSED breaks the streak wherever it is met, for every frequency type.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Mapping

from .clock import week_start
from .frequency import Frequency, FrequencyType
from .models import STATUS_COMPLETED, STATUS_MISSED, STATUS_SKIPPED


@dataclass(frozen=True)
class StreakResult:
    current: int
    longest: int


def calculate_streak(
    frequency: Frequency,
    history: Mapping[date, str],
    today: date,
    longest_so_far: int = 0,
) -> StreakResult:
    # Records dated after the reference day are not part of this evaluation
    outcomes = {d: s for d, s in history.items() if d <= today}
    if frequency.kind is FrequencyType.WEEKLY:
        current = _weekly_streak(outcomes, today)
    else:
        current = _daily_streak(frequency, outcomes, today)
    return StreakResult(current=current, longest=max(int(longest_so_far or 0), current))


def _daily_streak(frequency: Frequency, outcomes: Mapping[date, str], today: date) -> int:
    if not outcomes:
        return 0
    earliest = min(outcomes)
    current = 0
    cursor = today
    while cursor >= earliest:
        status = outcomes.get(cursor)
        if status == STATUS_MISSED:
            break
        if frequency.is_expected_on(cursor):
            if status == STATUS_COMPLETED:
                current += 1
            elif status is None and cursor != today:
                break
        cursor -= timedelta(days=1)
    return current


def _weekly_streak(outcomes: Mapping[date, str], today: date) -> int:
    if not outcomes:
        return 0
    by_week: dict[date, list[tuple[date, str]]] = {}
    for d, status in outcomes.items():
        by_week.setdefault(week_start(d), []).append((d, status))

    this_week = week_start(today)
    earliest_week = min(by_week)
    current = 0
    cursor = this_week
    while cursor >= earliest_week:
        statuses = [s for _, s in sorted(by_week.get(cursor, []), reverse=True)]
        decisive = next((s for s in statuses if s != STATUS_SKIPPED), None)
        if decisive == STATUS_MISSED:
            break
        if decisive == STATUS_COMPLETED:
            current += 1
            # a miss earlier in the same week still ends the run here
            if STATUS_MISSED in statuses:
                break
        elif not statuses and cursor != this_week:
            break
        cursor -= timedelta(days=7)
    return current
