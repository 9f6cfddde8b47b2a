"""
Goal frequency as a closed set of variants.

    Frequency.daily()
    Frequency.weekly()
    Frequency.specific_weekdays({1, 3, 5})   # Mon, Wed, Fri (0 = Sunday)

The one question the evaluators and the sweeper ask is `is_expected_on(day)`.
WEEKLY treats every day as expected; continuity is judged per week by the
streak calculator.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Iterable, Optional

from .clock import sunday_weekday


class FrequencyType(str, Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    SPECIFIC_WEEKDAYS = "SPECIFIC_WEEKDAYS"


# Legacy label from the mobile client
_ALIASES = {"SPECIFIC_DAYS": FrequencyType.SPECIFIC_WEEKDAYS}


@dataclass(frozen=True)
class Frequency:
    kind: FrequencyType
    weekdays: frozenset[int] = field(default_factory=frozenset)

    @classmethod
    def daily(cls) -> "Frequency":
        return cls(FrequencyType.DAILY)

    @classmethod
    def weekly(cls, weekdays: Optional[Iterable[int]] = None) -> "Frequency":
        days = _clean_days(weekdays) if weekdays else frozenset({0})
        return cls(FrequencyType.WEEKLY, days or frozenset({0}))

    @classmethod
    def specific_weekdays(cls, weekdays: Iterable[int]) -> "Frequency":
        days = _clean_days(weekdays)
        if not days:
            raise ValueError("SPECIFIC_WEEKDAYS needs at least one weekday in 0..6")
        return cls(FrequencyType.SPECIFIC_WEEKDAYS, days)

    @classmethod
    def parse(cls, kind: str | FrequencyType | None, weekdays: Optional[Iterable[int]] = None) -> "Frequency":
        raw = kind.value if isinstance(kind, FrequencyType) else str(kind or "DAILY").strip().upper()
        try:
            ftype = _ALIASES.get(raw) or FrequencyType(raw)
        except ValueError:
            raise ValueError(f"unknown frequency type: {kind!r}")
        if ftype is FrequencyType.DAILY:
            return cls.daily()
        if ftype is FrequencyType.WEEKLY:
            return cls.weekly(weekdays)
        return cls.specific_weekdays(weekdays or ())

    @classmethod
    def from_goal(cls, goal) -> "Frequency":
        return cls.parse(goal.frequency_type, goal.frequency_days)

    def is_expected_on(self, day: date) -> bool:
        if self.kind is FrequencyType.SPECIFIC_WEEKDAYS:
            return sunday_weekday(day) in self.weekdays
        return True

    def stored_days(self) -> list[int]:
        if self.kind is FrequencyType.DAILY:
            return []
        return sorted(self.weekdays)


def _clean_days(weekdays: Optional[Iterable[int]]) -> frozenset[int]:
    out = set()
    for d in weekdays or ():
        try:
            n = int(d)
        except (TypeError, ValueError):
            continue
        if 0 <= n <= 6:
            out.add(n)
    return frozenset(out)
