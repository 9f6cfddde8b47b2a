from __future__ import annotations

import socket
from datetime import date, datetime, timedelta
from typing import Any, Iterable

from sqlalchemy import and_, or_
from sqlalchemy.exc import IntegrityError

from .clock import utcnow
from .config import settings
from .db import SessionLocal
from .logging_config import get_logger
from .models import BackgroundJob

logger = get_logger(__name__)

JOB_PENDING = "pending"
JOB_RUNNING = "running"
JOB_RETRY = "retry"
JOB_DONE = "done"
JOB_ERROR = "error"
FINISHED_STATUSES = (JOB_DONE, JOB_ERROR)


def dedupe_key(kind: str, goal_id: int, day: date) -> str:
    return f"{kind}:{int(goal_id)}:{day.isoformat()}"


def queue_requeue_delay_seconds(requeue_count: int) -> int:
    """
    Generic queue-level retry delay policy.
    Delay grows linearly and is capped.
    """
    base = max(1, int(settings.QUEUE_REQUEUE_BASE_DELAY_SECONDS))
    step = max(0, int(settings.QUEUE_REQUEUE_STEP_SECONDS))
    max_delay = max(base, int(settings.QUEUE_REQUEUE_MAX_DELAY_SECONDS))
    delay = base + (max(0, int(requeue_count)) * step)
    return min(max_delay, max(base, delay))


def get_job_by_key(key: str) -> BackgroundJob | None:
    with SessionLocal() as s:
        job = s.query(BackgroundJob).filter(BackgroundJob.dedupe_key == key).one_or_none()
        if job is not None:
            s.expunge(job)
        return job


def enqueue_job(
    kind: str,
    payload: dict[str, Any],
    *,
    dedupe_key: str,
    available_at: datetime | None = None,
) -> tuple[int, bool]:
    """
    Insert a delayed job unless one with the same key already exists.
    Returns (job_id, created). The key stays taken after the job finishes,
    until `purge_finished_jobs` removes the row.
    """
    with SessionLocal() as s:
        existing = s.query(BackgroundJob.id).filter(BackgroundJob.dedupe_key == dedupe_key).scalar()
        if existing is not None:
            logger.debug("job_duplicate", job_id=existing, key=dedupe_key)
            return int(existing), False
        job = BackgroundJob(
            kind=kind,
            dedupe_key=dedupe_key,
            payload=payload,
            status=JOB_PENDING,
            available_at=available_at,
        )
        s.add(job)
        try:
            s.commit()
        except IntegrityError:
            # another sweeper got there first
            s.rollback()
            existing = s.query(BackgroundJob.id).filter(BackgroundJob.dedupe_key == dedupe_key).scalar()
            if existing is None:
                raise
            return int(existing), False
        s.refresh(job)
        logger.debug("job_enqueued", job_id=job.id, kind=kind, key=dedupe_key,
                     available_at=available_at.isoformat() if available_at else None)
        return int(job.id), True


def claim_job(
    *,
    worker_id: str | None = None,
    kinds: Iterable[str] | None = None,
    lock_timeout_minutes: int | None = None,
    now: datetime | None = None,
) -> BackgroundJob | None:
    now = now or utcnow()
    timeout = settings.WORKER_LOCK_TIMEOUT_MINUTES if lock_timeout_minutes is None else lock_timeout_minutes
    stale = now - timedelta(minutes=max(1, int(timeout)))
    worker_id = worker_id or settings.WORKER_ID or socket.gethostname()
    with SessionLocal() as s:
        q = s.query(BackgroundJob).filter(
            or_(
                BackgroundJob.status == JOB_PENDING,
                BackgroundJob.status == JOB_RETRY,
                and_(BackgroundJob.status == JOB_RUNNING, BackgroundJob.locked_at.isnot(None), BackgroundJob.locked_at < stale),
            )
        )
        q = q.filter(or_(BackgroundJob.available_at.is_(None), BackgroundJob.available_at <= now))
        if kinds:
            q = q.filter(BackgroundJob.kind.in_(list(kinds)))
        job = (
            q.order_by(BackgroundJob.available_at.asc(), BackgroundJob.id.asc())
            .with_for_update(skip_locked=True)
            .first()
        )
        if not job:
            return None
        if job.status == JOB_RUNNING:
            logger.warning("job_lock_reclaimed", job_id=job.id, previous_owner=job.locked_by, locked_at=job.locked_at.isoformat())
        job.status = JOB_RUNNING
        job.locked_at = now
        job.locked_by = worker_id
        job.attempts = int(job.attempts or 0) + 1
        s.add(job)
        s.commit()
        s.refresh(job)
        s.expunge(job)
        logger.debug("job_claimed", job_id=job.id, kind=job.kind, worker_id=worker_id, attempts=job.attempts)
        return job


def mark_done(job_id: int, result: dict[str, Any] | None = None) -> None:
    with SessionLocal() as s:
        job = s.get(BackgroundJob, job_id)
        if not job:
            return
        job.status = JOB_DONE
        job.result = result
        job.error = None
        job.locked_at = None
        job.locked_by = None
        s.add(job)
        s.commit()


def mark_error(job_id: int, error: str, *, retry: bool, now: datetime | None = None) -> None:
    """Record a failure. A retry becomes claimable again after the backoff delay."""
    with SessionLocal() as s:
        job = s.get(BackgroundJob, job_id)
        if not job:
            return
        job.error = error
        job.locked_at = None
        job.locked_by = None
        if retry:
            delay = queue_requeue_delay_seconds(max(0, int(job.attempts or 1) - 1))
            job.status = JOB_RETRY
            job.available_at = (now or utcnow()) + timedelta(seconds=delay)
        else:
            job.status = JOB_ERROR
        s.add(job)
        s.commit()


def purge_finished_jobs(older_than: timedelta | None = None, now: datetime | None = None) -> int:
    """
    Delete done/error jobs last touched before the cutoff. The retention must
    outlive the scheduling horizon, or a resync could re-enqueue a finished key.
    """
    keep = older_than if older_than is not None else timedelta(days=max(1, int(settings.JOB_RETENTION_DAYS)))
    cutoff = (now or utcnow()) - keep
    with SessionLocal() as s:
        n = (
            s.query(BackgroundJob)
            .filter(BackgroundJob.status.in_(FINISHED_STATUSES), BackgroundJob.updated_at < cutoff)
            .delete(synchronize_session=False)
        )
        s.commit()
    if n:
        logger.info("jobs_purged", count=n, cutoff=cutoff.isoformat())
    return int(n)
