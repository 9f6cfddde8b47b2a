from __future__ import annotations

from .clock import utcnow
from sqlalchemy import (
    Column, Integer, String, Text, Date, DateTime, Boolean, ForeignKey,
    UniqueConstraint, Index, JSON, text
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()

# JSONB on Postgres, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")

# Check-in outcomes
STATUS_COMPLETED = "COMPLETED"
STATUS_MISSED = "MISSED"
STATUS_SKIPPED = "SKIPPED"

# Background job kinds
JOB_KIND_DEADLINE = "deadline"
JOB_KIND_REMINDER = "reminder"

# ──────────────────────────────────────────────────────────────────────────────
# Core
# ──────────────────────────────────────────────────────────────────────────────
class User(Base):
    __tablename__ = "users"
    id           = Column(Integer, primary_key=True)
    display_name = Column(String(120), nullable=True)
    phone        = Column(String(64), unique=True, nullable=True, index=True)   # E.164, for WhatsApp pushes
    tz           = Column(String(64), nullable=True)                           # live zone; goals snapshot it
    created_at   = Column(DateTime, nullable=False, server_default=func.now())

    goals        = relationship("Goal", back_populates="user")


# ──────────────────────────────────────────────────────────────────────────────
# Goals + daily outcomes
# ──────────────────────────────────────────────────────────────────────────────

class Goal(Base):
    __tablename__ = "goals"

    id              = Column(Integer, primary_key=True)
    user_id         = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    pod_id          = Column(Integer, nullable=True, index=True)           # owned by the pods service
    title           = Column(String(100), nullable=False)
    description     = Column(Text, nullable=True)

    frequency_type  = Column(String(32), nullable=False, default="DAILY", server_default=text("'DAILY'"))  # DAILY|WEEKLY|SPECIFIC_WEEKDAYS
    frequency_days  = Column(JSONType, nullable=True)                      # [0..6], 0 = Sunday
    reminder_time   = Column(String(5), nullable=True)                     # "HH:MM" local
    deadline_time   = Column(String(5), nullable=False, default="23:59", server_default=text("'23:59'"))
    timezone        = Column(String(64), nullable=False)                   # IANA id, fixed at creation
    requires_proof  = Column(Boolean, nullable=False, default=False, server_default=text("false"))

    start_date      = Column(Date, nullable=False)
    end_date        = Column(Date, nullable=True)

    current_streak  = Column(Integer, nullable=False, default=0, server_default=text("0"))
    longest_streak  = Column(Integer, nullable=False, default=0, server_default=text("0"))
    archived        = Column(Boolean, nullable=False, default=False, server_default=text("false"), index=True)

    created_at      = Column(DateTime, nullable=False, server_default=func.now())
    updated_at      = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())

    user            = relationship("User", back_populates="goals")
    check_ins       = relationship("CheckIn", back_populates="goal", cascade="all, delete-orphan")


class CheckIn(Base):
    __tablename__ = "check_ins"

    # Exactly one outcome per (goal, logical date); the unique constraint is load-bearing
    id               = Column(Integer, primary_key=True)
    goal_id          = Column(Integer, ForeignKey("goals.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id          = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    date             = Column(Date, nullable=False)                        # logical date in the goal's zone
    status           = Column(String(16), nullable=False)                  # COMPLETED|MISSED|SKIPPED
    proof_ref        = Column(String(512), nullable=True)
    comment          = Column(Text, nullable=True)
    client_timestamp = Column(DateTime, nullable=True)                     # naive UTC, client-asserted
    created_at       = Column(DateTime, nullable=False, server_default=func.now())
    updated_at       = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())

    goal             = relationship("Goal", back_populates="check_ins")

    __table_args__ = (
        UniqueConstraint("goal_id", "date", name="uq_check_ins_goal_date"),
        Index("ix_check_ins_goal_status_date", "goal_id", "status", "date"),
    )


# ──────────────────────────────────────────────────────────────────────────────
# Durable delayed job queue
# ──────────────────────────────────────────────────────────────────────────────

class BackgroundJob(Base):
    __tablename__ = "background_jobs"

    id           = Column(Integer, primary_key=True)
    kind         = Column(String(32), nullable=False, index=True)          # deadline|reminder
    dedupe_key   = Column(String(128), nullable=False, unique=True)        # "<kind>:<goal_id>:<YYYY-MM-DD>"
    payload      = Column(JSONType, nullable=True)
    status       = Column(String(16), nullable=False, default="pending")   # pending|running|retry|done|error
    attempts     = Column(Integer, nullable=False, default=0)
    available_at = Column(DateTime, nullable=True)                         # fire instant, naive UTC
    locked_at    = Column(DateTime, nullable=True)
    locked_by    = Column(String(128), nullable=True)
    result       = Column(JSONType, nullable=True)
    error        = Column(Text, nullable=True)
    created_at   = Column(DateTime, nullable=False, default=utcnow)
    updated_at   = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("ix_background_jobs_status_available_at", "status", "available_at"),
    )
