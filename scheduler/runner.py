# scheduler/runner.py
"""
Background reminder scheduler.

One daemon thread wakes on every interval boundary (by default at the top of
each minute), fires the due reminders through a notification channel and
purges fired reminders past the retention window.

Delivery and mark-as-sent are not atomic: a crash in between re-delivers on
the next tick. Duplicates are acceptable, missed reminders are not.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from scheduler.ports import AfterSent, DueReminder, NotificationChannel, ReminderStore

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 60
DEFAULT_RETENTION = timedelta(days=7)


@dataclass
class TickResult:
    due: int = 0
    delivered: int = 0
    failed: int = 0
    purged: int = 0
    skipped: bool = False      # another tick was still running
    aborted: bool = False      # the due set could not be loaded

    def to_dict(self) -> dict:
        return {
            "due": self.due,
            "delivered": self.delivered,
            "failed": self.failed,
            "purged": self.purged,
            "skipped": self.skipped,
            "aborted": self.aborted,
        }


class ReminderScheduler:
    """
    Owns the tick loop. Construct once per process, then start()/stop() it
    from the application lifecycle.
    """

    def __init__(
        self,
        store: ReminderStore,
        channel: NotificationChannel,
        *,
        interval_seconds: int = DEFAULT_INTERVAL_SECONDS,
        retention: timedelta = DEFAULT_RETENTION,
        clock: Callable[[], datetime] = datetime.now,
        after_sent: Optional[AfterSent] = None,
    ):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.store = store
        self.channel = channel
        self.interval_seconds = interval_seconds
        self.retention = retention
        self._clock = clock
        self.after_sent = after_sent

        self._tick_lock = threading.Lock()
        self._stopping = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # ── lifecycle ────────────────────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            logger.warning("Reminder scheduler already running")
            return
        self._stopping.clear()
        self._thread = threading.Thread(
            target=self._loop,
            daemon=True,
            name="reminder-scheduler",
        )
        self._thread.start()
        logger.info("Reminder scheduler started (every %ds)", self.interval_seconds)

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stopping.set()
        thread, self._thread = self._thread, None
        if thread is not None:
            thread.join(timeout)
            if thread.is_alive():
                logger.warning("Reminder scheduler thread did not stop within %ss", timeout)
        logger.info("Reminder scheduler stopped")

    def _seconds_until_next_tick(self) -> float:
        return self.interval_seconds - (time.time() % self.interval_seconds)

    def _loop(self) -> None:
        while not self._stopping.wait(timeout=self._seconds_until_next_tick()):
            try:
                self.tick()
            except Exception:
                # tick() isolates its own failures; this only guards the thread
                logger.exception("Unexpected error in reminder scheduler loop")

    # ── one tick ─────────────────────────────────────────────────────────────

    def tick(self) -> TickResult:
        """
        Fire every due reminder, then purge old fired ones.
        Returns immediately with skipped=True if a tick is already running.
        """
        if not self._tick_lock.acquire(blocking=False):
            logger.warning("Previous reminder tick still running; skipping this one")
            return TickResult(skipped=True)
        try:
            return self._run_tick()
        finally:
            self._tick_lock.release()

    def _run_tick(self) -> TickResult:
        result = TickResult()
        now = self._clock()

        try:
            due = self.store.find_due_reminders(now)
        except Exception:
            logger.exception("Could not load due reminders; aborting tick")
            result.aborted = True
            return result

        result.due = len(due)
        if due:
            logger.info("%d reminder(s) to send", len(due))

        for reminder in due:
            if self._fire(reminder):
                result.delivered += 1
            else:
                result.failed += 1

        try:
            result.purged = self.store.purge_older_than(now - self.retention)
            if result.purged:
                logger.info("Purged %d sent reminder(s) older than %s", result.purged, self.retention)
        except Exception:
            logger.exception("Could not purge sent reminders")

        return result

    def _fire(self, reminder: DueReminder) -> bool:
        """Deliver then mark sent. Any failure leaves the reminder pending for the next tick."""
        try:
            ok = self.channel.deliver(
                reminder.family_id,
                reminder.title,
                reminder.body,
                reminder.metadata(),
            )
            if not ok:
                logger.warning("Delivery of reminder %s failed; will retry", reminder.id)
                return False
            self.store.mark_sent(reminder.id, self._clock())
        except Exception:
            logger.exception("Error while sending reminder %s; will retry", reminder.id)
            return False
        logger.info("Reminder %s sent: %s", reminder.id, reminder.title)
        if self.after_sent is not None:
            try:
                self.after_sent(reminder, self._clock())
            except Exception:
                logger.exception("Follow-up after reminder %s failed", reminder.id)
        return True
