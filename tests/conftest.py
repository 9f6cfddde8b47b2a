"""
Pytest configuration and fixtures.

Each test gets a fresh SQLite schema. DATABASE_URL must be set before any
habitpods module is imported, because the engine is built at import time.
"""
import os
import tempfile
from datetime import date

import pytest

_DB_DIR = tempfile.mkdtemp(prefix="habitpods-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ["NOTIFIER_BACKEND"] = "log"

from habitpods.db import engine  # noqa: E402
from habitpods.models import Base, Goal, User  # noqa: E402


class RecordingNotifier:
    """Collects pushes instead of sending them."""

    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail

    def send(self, user_id, title, body, data):
        if self.fail:
            raise RuntimeError("push gateway down")
        self.sent.append({"user_id": user_id, "title": title, "body": body, "data": data})

    def of_type(self, kind):
        return [m for m in self.sent if m["data"].get("type") == kind]


class RecordingLogger:
    """Stands in for a module-level structlog logger."""

    def __init__(self):
        self.events = []

    def _record(self, level):
        def log(event, **kw):
            self.events.append((level, event, kw))
        return log

    def __getattr__(self, level):
        return self._record(level)

    def reasons(self, event):
        return [kw.get("reason") for _, name, kw in self.events if name == event]


@pytest.fixture(autouse=True)
def db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def make_user():
    from habitpods.db import SessionLocal

    def _make(tz="UTC", phone=None, name="Test User"):
        with SessionLocal() as s:
            user = User(display_name=name, tz=tz, phone=phone)
            s.add(user)
            s.commit()
            s.refresh(user)
            return user

    return _make


@pytest.fixture
def make_goal(make_user):
    """Insert a goal row directly, bypassing create_goal validation."""
    from habitpods.db import SessionLocal

    def _make(
        timezone="UTC",
        deadline_time="23:59",
        reminder_time=None,
        frequency_type="DAILY",
        frequency_days=None,
        start_date=date(2026, 1, 1),
        end_date=None,
        archived=False,
        title="Read 20 pages",
        user=None,
    ):
        owner = user or make_user(tz=timezone)
        with SessionLocal() as s:
            goal = Goal(
                user_id=owner.id,
                title=title,
                frequency_type=frequency_type,
                frequency_days=frequency_days or [],
                reminder_time=reminder_time,
                deadline_time=deadline_time,
                timezone=timezone,
                start_date=start_date,
                end_date=end_date,
                archived=archived,
            )
            s.add(goal)
            s.commit()
            s.refresh(goal)
            return goal

    return _make


@pytest.fixture
def add_check_in():
    from habitpods.db import SessionLocal
    from habitpods.models import CheckIn

    def _add(goal, day, status):
        with SessionLocal() as s:
            s.add(CheckIn(goal_id=goal.id, user_id=goal.user_id, date=day, status=status))
            s.commit()

    return _add
