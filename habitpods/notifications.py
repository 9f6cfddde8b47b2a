# habitpods/notifications.py
from __future__ import annotations

import re
import threading
import time
from typing import Any, Protocol

from twilio.rest import Client
from twilio.base.exceptions import TwilioRestException

from .config import settings
from .db import SessionLocal
from .logging_config import get_logger
from .models import Goal, User

logger = get_logger(__name__)

NOTIFY_MISSED = "missed"
NOTIFY_REMINDER = "reminder"


class Notifier(Protocol):
    """Fire-and-forget push. Callers treat any exception as non-fatal."""

    def send(self, user_id: int, title: str, body: str, data: dict[str, Any]) -> None:
        ...


class LogNotifier:
    """Writes the push to the log instead of delivering it."""

    def send(self, user_id: int, title: str, body: str, data: dict[str, Any]) -> None:
        logger.info("push_notification", user_id=user_id, title=title, body=body, data=data)


# ──────────────────────────────────────────────────────────────────────────────
# WhatsApp delivery (multi-user safe)
# ──────────────────────────────────────────────────────────────────────────────

E164 = re.compile(r"^\+?[1-9]\d{7,14}$")  # simple E.164 validator


def _normalize_whatsapp_phone(raw: str | None) -> str | None:
    """
    Return a number in the 'whatsapp:+441234567890' format, or None.
    """
    if not raw:
        return None
    s = str(raw).strip()
    if s.startswith("whatsapp:"):
        num = s.split("whatsapp:", 1)[1]
        if E164.match(num):
            return s
        return None
    if E164.match(s):
        return f"whatsapp:{s if s.startswith('+') else '+' + s}"
    return None


class TwilioNotifier:
    """
    Sends pushes as WhatsApp messages to the user's phone.
    Sends to one destination are serialised and spaced by `min_gap` seconds.
    """

    # idle destinations are dropped once this many are tracked
    max_tracked = 1024

    def __init__(self, client: Client | None = None, from_: str | None = None, min_gap: float | None = None):
        self._client = client
        self.from_ = from_ or settings.TWILIO_FROM
        self.min_gap = settings.NOTIFY_MIN_SEND_GAP_SECONDS if min_gap is None else float(min_gap)
        self._lock_guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}
        self._last_send: dict[str, float] = {}

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = Client(settings.TWILIO_ACCOUNT_SID, settings.TWILIO_AUTH_TOKEN)
        return self._client

    def _lock_for_destination(self, dest: str) -> threading.Lock:
        with self._lock_guard:
            lock = self._locks.get(dest)
            if lock is None:
                if len(self._locks) >= self.max_tracked:
                    self._prune_idle()
                lock = threading.Lock()
                self._locks[dest] = lock
            return lock

    def _prune_idle(self) -> None:
        # caller holds _lock_guard
        now = time.monotonic()
        for d, lock in list(self._locks.items()):
            if not lock.locked() and now - self._last_send.get(d, 0.0) >= self.min_gap:
                del self._locks[d]
                self._last_send.pop(d, None)

    def _throttle_destination(self, dest: str) -> None:
        gap = self.min_gap - (time.monotonic() - self._last_send.get(dest, 0.0))
        if gap > 0:
            time.sleep(gap)

    def _phone_for_user(self, user_id: int) -> str | None:
        with SessionLocal() as s:
            user = s.get(User, user_id)
            return user.phone if user else None

    def send(self, user_id: int, title: str, body: str, data: dict[str, Any]) -> None:
        to_norm = _normalize_whatsapp_phone(self._phone_for_user(user_id))
        if not to_norm:
            logger.warning("push_skipped_no_phone", user_id=user_id, type=data.get("type"))
            return

        lock = self._lock_for_destination(to_norm)
        with lock:
            self._throttle_destination(to_norm)
            try:
                msg = self.client.messages.create(
                    from_=self.from_,
                    body=f"{title}\n{body}",
                    to=to_norm,
                )
            except TwilioRestException as exc:
                code = getattr(exc, "code", None)
                logger.error("twilio_send_failed", to=to_norm, code=code, error=str(exc))
                if code == 63016:
                    logger.warning("whatsapp_session_expired", to=to_norm)
                raise
            self._last_send[to_norm] = time.monotonic()

        logger.info("push_sent", user_id=user_id, sid=getattr(msg, "sid", None), type=data.get("type"))


def get_notifier() -> Notifier:
    backend = (settings.NOTIFIER_BACKEND or "log").strip().lower()
    if backend == "twilio":
        return TwilioNotifier()
    if backend != "log":
        logger.warning("unknown_notifier_backend", backend=backend)
    return LogNotifier()


# ──────────────────────────────────────────────────────────────────────────────
# Message builders
# ──────────────────────────────────────────────────────────────────────────────

def notify_missed(notifier: Notifier, goal: Goal) -> None:
    notifier.send(
        goal.user_id,
        "😢 Missed Check-in",
        f'You missed your check-in for "{goal.title}"',
        {"type": NOTIFY_MISSED, "goalId": goal.id},
    )


def notify_reminder(notifier: Notifier, goal: Goal) -> None:
    notifier.send(
        goal.user_id,
        "⏰ Reminder",
        f"Don't forget: {goal.title}",
        {"type": NOTIFY_REMINDER, "goalId": goal.id},
    )
