"""
Streak calculator rules. Pure function, no database.
"""
from datetime import date, timedelta

from habitpods.frequency import Frequency
from habitpods.models import STATUS_COMPLETED as C, STATUS_MISSED as M, STATUS_SKIPPED as S
from habitpods.streaks import calculate_streak

TODAY = date(2026, 10, 14)  # Wednesday


def days_back(*statuses):
    """Map statuses onto TODAY, TODAY-1, ... (None leaves a gap)."""
    return {TODAY - timedelta(days=i): s for i, s in enumerate(statuses) if s is not None}


class TestDaily:
    def test_empty_history(self):
        assert calculate_streak(Frequency.daily(), {}, TODAY).current == 0

    def test_consecutive_completions(self):
        r = calculate_streak(Frequency.daily(), days_back(C, C, C), TODAY)
        assert r.current == 3
        assert r.longest == 3

    def test_today_still_open_is_not_a_break(self):
        r = calculate_streak(Frequency.daily(), days_back(None, C, C), TODAY)
        assert r.current == 2

    def test_gap_on_past_day_breaks(self):
        r = calculate_streak(Frequency.daily(), days_back(C, None, C, C), TODAY)
        assert r.current == 1

    def test_skipped_is_neutral(self):
        r = calculate_streak(Frequency.daily(), days_back(C, S, C), TODAY)
        assert r.current == 2

    def test_missed_today_resets(self):
        r = calculate_streak(Frequency.daily(), days_back(M, C, C, C), TODAY, longest_so_far=3)
        assert r.current == 0
        assert r.longest == 3

    def test_longest_never_decreases(self):
        r = calculate_streak(Frequency.daily(), days_back(C), TODAY, longest_so_far=10)
        assert r.longest == 10

    def test_future_records_ignored(self):
        history = days_back(C)
        history[TODAY + timedelta(days=1)] = M
        assert calculate_streak(Frequency.daily(), history, TODAY).current == 1


class TestSpecificWeekdays:
    # Mon (1) and Wed (3)
    FREQ = Frequency.specific_weekdays([1, 3])

    def test_unexpected_days_are_transparent(self):
        history = {date(2026, 10, 14): C, date(2026, 10, 12): C, date(2026, 10, 7): C}
        assert calculate_streak(self.FREQ, history, TODAY).current == 3

    def test_missing_expected_day_breaks(self):
        # Monday 12th has no record
        history = {date(2026, 10, 14): C, date(2026, 10, 7): C}
        assert calculate_streak(self.FREQ, history, TODAY).current == 1

    def test_missed_on_any_day_breaks(self):
        history = {date(2026, 10, 14): C, date(2026, 10, 13): M, date(2026, 10, 12): C}
        assert calculate_streak(self.FREQ, history, TODAY).current == 1


class TestWeekly:
    FREQ = Frequency.weekly()

    def test_one_completion_per_week(self):
        history = {date(2026, 10, 13): C, date(2026, 10, 8): C, date(2026, 9, 29): C}
        assert calculate_streak(self.FREQ, history, TODAY).current == 3

    def test_current_week_open(self):
        history = {date(2026, 10, 8): C, date(2026, 10, 1): C}
        assert calculate_streak(self.FREQ, history, TODAY).current == 2

    def test_empty_past_week_breaks(self):
        history = {date(2026, 10, 13): C, date(2026, 9, 29): C}
        assert calculate_streak(self.FREQ, history, TODAY).current == 1

    def test_skip_only_week_is_neutral(self):
        history = {date(2026, 10, 13): C, date(2026, 10, 6): S, date(2026, 9, 29): C}
        assert calculate_streak(self.FREQ, history, TODAY).current == 2

    def test_missed_resets(self):
        history = {date(2026, 10, 14): M, date(2026, 10, 13): C, date(2026, 10, 8): C}
        assert calculate_streak(self.FREQ, history, TODAY).current == 0
