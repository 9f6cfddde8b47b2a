"""
Job consumer: claims due jobs from background_jobs and hands them to the
deadline / reminder evaluators. Several consumers (threads or processes) may
poll the same table; claims use SKIP LOCKED on PostgreSQL.
"""
from __future__ import annotations

import socket
import threading
import traceback
from datetime import date, datetime
from typing import Any

from .clock import utcnow
from .config import settings
from .deadlines import evaluate_deadline
from .job_queue import claim_job, mark_done, mark_error
from .logging_config import get_logger
from .models import BackgroundJob, JOB_KIND_DEADLINE, JOB_KIND_REMINDER
from .notifications import Notifier
from .reminders import evaluate_reminder

logger = get_logger(__name__)

JOB_KINDS = (JOB_KIND_DEADLINE, JOB_KIND_REMINDER)


def _goal_and_date(kind: str, payload: dict) -> tuple[int, date]:
    goal_id = payload.get("goal_id")
    day = payload.get("date")
    if not goal_id or not day:
        raise ValueError(f"{kind} requires goal_id and date")
    return int(goal_id), date.fromisoformat(str(day))


def process_job(kind: str, payload: dict, notifier: Notifier | None = None, now: datetime | None = None) -> dict:
    if kind == JOB_KIND_DEADLINE:
        goal_id, day = _goal_and_date(kind, payload)
        return {"ok": True, "outcome": evaluate_deadline(goal_id, day, notifier=notifier, now=now)}
    if kind == JOB_KIND_REMINDER:
        goal_id, day = _goal_and_date(kind, payload)
        return {"ok": True, "outcome": evaluate_reminder(goal_id, day, notifier=notifier)}
    raise ValueError(f"Unknown job kind: {kind}")


def run_claimed_job(
    job: BackgroundJob,
    *,
    notifier: Notifier | None = None,
    max_attempts: int | None = None,
    now: datetime | None = None,
) -> bool:
    """Run one claimed job and record the outcome. Returns True on success."""
    max_attempts = settings.WORKER_MAX_ATTEMPTS if max_attempts is None else max_attempts
    try:
        result = process_job(job.kind, job.payload or {}, notifier=notifier, now=now)
    except Exception as e:
        retry = int(job.attempts or 0) < max_attempts
        mark_error(job.id, f"{e!r}\n{traceback.format_exc()}", retry=retry, now=now)
        logger.error("job_failed", job_id=job.id, kind=job.kind, attempts=job.attempts, retry=retry, error=repr(e))
        return False
    mark_done(job.id, result)
    logger.info("job_done", job_id=job.id, kind=job.kind, outcome=result.get("outcome"))
    return True


def drain_due_jobs(
    now: datetime | None = None,
    *,
    notifier: Notifier | None = None,
    worker_id: str | None = None,
    limit: int = 1000,
) -> dict[str, int]:
    """Run every job due at `now` once, in this thread. Retries land after `now` and are not picked up again."""
    now = now or utcnow()
    stats = {"done": 0, "failed": 0}
    for _ in range(max(0, int(limit))):
        job = claim_job(worker_id=worker_id or "drain", kinds=JOB_KINDS, now=now)
        if job is None:
            break
        if run_claimed_job(job, notifier=notifier, now=now):
            stats["done"] += 1
        else:
            stats["failed"] += 1
    return stats


def _consumer_loop(worker_id: str, stop_event: threading.Event, notifier: Notifier | None, poll_seconds: int) -> None:
    logger.info("consumer_started", worker_id=worker_id, poll_seconds=poll_seconds)
    while not stop_event.is_set():
        try:
            job = claim_job(worker_id=worker_id, kinds=JOB_KINDS)
        except Exception as e:
            # store unreachable: back off and keep polling
            logger.error("job_claim_failed", worker_id=worker_id, error=repr(e))
            stop_event.wait(max(1, poll_seconds))
            continue
        if job is None:
            stop_event.wait(max(1, poll_seconds))
            continue
        try:
            run_claimed_job(job, notifier=notifier)
        except Exception as e:
            # status write failed; the lock goes stale and the job is reclaimed
            logger.error("job_finalize_failed", worker_id=worker_id, job_id=job.id, error=repr(e), exc_info=True)
            stop_event.wait(max(1, poll_seconds))
    logger.info("consumer_stopped", worker_id=worker_id)


def start_consumers(
    concurrency: int | None = None,
    stop_event: threading.Event | None = None,
    *,
    notifier: Notifier | None = None,
    poll_seconds: int | None = None,
) -> list[threading.Thread]:
    """Start a bounded pool of consumer threads. Set `stop_event` to stop them."""
    concurrency = max(1, int(concurrency or settings.WORKER_CONCURRENCY))
    stop_event = stop_event or threading.Event()
    poll = int(poll_seconds or settings.WORKER_POLL_SECONDS)
    base_id = settings.WORKER_ID or socket.gethostname()
    threads = []
    for i in range(concurrency):
        t = threading.Thread(
            target=_consumer_loop,
            args=(f"{base_id}-{i}", stop_event, notifier, poll),
            name=f"habitpods-consumer-{i}",
            daemon=True,
        )
        t.start()
        threads.append(t)
    return threads
