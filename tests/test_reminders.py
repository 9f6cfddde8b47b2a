"""
Reminder evaluator: nudges only while the day is still open, never writes.
"""
from datetime import date

from conftest import RecordingLogger, RecordingNotifier

from habitpods import reminders
from habitpods.db import SessionLocal
from habitpods.models import CheckIn, Goal
from habitpods.reminders import evaluate_reminder

D = date(2026, 10, 14)


def test_reminds_when_nothing_recorded(make_goal, notifier):
    goal = make_goal(reminder_time="09:00", title="Meditate")

    assert evaluate_reminder(goal.id, D, notifier=notifier) == "reminded"
    assert notifier.sent == [
        {
            "user_id": goal.user_id,
            "title": "⏰ Reminder",
            "body": "Don't forget: Meditate",
            "data": {"type": "reminder", "goalId": goal.id},
        }
    ]


def test_safe_to_rerun_and_read_only(make_goal, notifier):
    goal = make_goal(reminder_time="09:00")
    evaluate_reminder(goal.id, D, notifier=notifier)
    evaluate_reminder(goal.id, D, notifier=notifier)

    with SessionLocal() as s:
        assert s.query(CheckIn).count() == 0
        assert s.get(Goal, goal.id).current_streak == 0
    assert len(notifier.sent) == 2


def test_already_checked_in(make_goal, add_check_in, notifier):
    goal = make_goal(reminder_time="09:00")
    add_check_in(goal, D, "COMPLETED")
    assert evaluate_reminder(goal.id, D, notifier=notifier) == "already_recorded"
    assert notifier.sent == []


def test_no_reminder_configured(make_goal, notifier):
    goal = make_goal(reminder_time=None)
    assert evaluate_reminder(goal.id, D, notifier=notifier) == "no_reminder"


def test_archived_or_missing(make_goal, notifier):
    goal = make_goal(reminder_time="09:00", archived=True)
    assert evaluate_reminder(goal.id, D, notifier=notifier) == "goal_archived"
    assert evaluate_reminder(goal.id + 100, D, notifier=notifier) == "goal_not_found"
    assert notifier.sent == []


def test_unexpected_weekday(make_goal, notifier):
    goal = make_goal(reminder_time="09:00", frequency_type="SPECIFIC_WEEKDAYS", frequency_days=[0, 6])
    assert evaluate_reminder(goal.id, D, notifier=notifier) == "not_expected"


def test_push_failure_is_swallowed(make_goal):
    goal = make_goal(reminder_time="09:00")
    assert evaluate_reminder(goal.id, D, notifier=RecordingNotifier(fail=True)) == "notify_failed"


def test_every_skip_is_logged(make_goal, add_check_in, notifier, monkeypatch):
    log = RecordingLogger()
    monkeypatch.setattr(reminders, "logger", log)
    checked = make_goal(reminder_time="09:00")
    add_check_in(checked, D, "COMPLETED")
    archived = make_goal(reminder_time="09:00", archived=True)
    silent = make_goal(reminder_time=None)
    weekends = make_goal(reminder_time="09:00", frequency_type="SPECIFIC_WEEKDAYS", frequency_days=[0, 6])
    later = make_goal(reminder_time="09:00", start_date=date(2026, 11, 1))

    for goal_id in (31337, archived.id, silent.id, later.id, weekends.id, checked.id):
        evaluate_reminder(goal_id, D, notifier=notifier)

    assert log.reasons("reminder_skipped") == [
        "goal_not_found", "goal_archived", "no_reminder", "goal_inactive", "not_expected", "already_recorded",
    ]
    assert notifier.sent == []
