#!/usr/bin/env python3
from __future__ import annotations

import signal
import threading

from habitpods.config import settings
from habitpods.db import init_db
from habitpods.logging_config import get_logger, setup_logging
from habitpods.notifications import get_notifier
from habitpods.scheduler import shutdown_scheduler, start_scheduler
from habitpods.worker import start_consumers


def main() -> None:
    setup_logging(settings.LOG_LEVEL, json_logs=settings.JSON_LOGS)
    logger = get_logger("run_worker")
    init_db()

    stop = threading.Event()

    def _stop(signum, _frame):
        logger.info("worker_stopping", signal=signum)
        stop.set()

    signal.signal(signal.SIGINT, _stop)
    signal.signal(signal.SIGTERM, _stop)

    start_scheduler()
    threads = start_consumers(settings.WORKER_CONCURRENCY, stop, notifier=get_notifier())
    logger.info(
        "worker_started",
        concurrency=settings.WORKER_CONCURRENCY,
        poll_seconds=settings.WORKER_POLL_SECONDS,
        lock_timeout_minutes=settings.WORKER_LOCK_TIMEOUT_MINUTES,
        max_attempts=settings.WORKER_MAX_ATTEMPTS,
    )
    stop.wait()
    shutdown_scheduler()
    for t in threads:
        t.join(timeout=max(5, settings.WORKER_POLL_SECONDS * 2))


if __name__ == "__main__":
    main()
