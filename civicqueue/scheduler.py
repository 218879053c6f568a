"""
APScheduler job for automated reminders:

  - Every REMINDER_TICK_SECONDS: text each pending appointment once, as soon
    as its start time is REMINDER_HOURS_BEFORE hours away or less

An appointment is due when the threshold has been crossed since it was
booked, so any tick spacing catches it exactly once. Bookings made already
inside the window, and appointments whose time has passed, get no reminder.
The flag is only set once the SMS is accepted; a failed send is retried on
the next tick.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import zoneinfo
from datetime import datetime, tzinfo
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from civicqueue import appointment_store, sms
from civicqueue.appointment_store import PENDING
from civicqueue.config import settings
from civicqueue.errors import DispatchError

logger = logging.getLogger(__name__)

_scheduler: AsyncIOScheduler | None = None

# Held for a whole scan so a slow send can't overlap the next tick
_tick_lock = threading.Lock()


def appointment_datetime(appt: dict, tz: tzinfo) -> datetime:
    naive = datetime.strptime(f"{appt['date']} {appt['time']}", "%Y-%m-%d %H:%M")
    return naive.replace(tzinfo=tz)


def _hours_between(later: datetime, earlier: datetime) -> float:
    return (later - earlier).total_seconds() / 3600


def is_due(appt: dict, now: datetime, hours_before: float, tz: tzinfo) -> bool:
    if appt["status"] != PENDING or appt.get("reminder_sent"):
        return False
    start = appointment_datetime(appt, tz)
    hours_until = _hours_between(start, now)
    if not 0 < hours_until <= hours_before:
        return False
    booked_at = datetime.fromisoformat(appt["created_at"])
    return _hours_between(start, booked_at) > hours_before


# ---------------------------------------------------------------------------
# Job functions
# ---------------------------------------------------------------------------


def run_tick(now: Optional[datetime] = None, hours_before: Optional[float] = None) -> dict:
    """Scan pending appointments once and send any due reminders."""
    if not _tick_lock.acquire(blocking=False):
        logger.warning("Previous reminder scan still running; skipping this tick")
        return {"sent": 0, "failed": 0, "errors": 0, "skipped": True}

    try:
        tz = zoneinfo.ZoneInfo(settings.office_timezone)
        if hours_before is None:
            hours_before = settings.reminder_hours_before
        now = now or datetime.now(tz)

        sent = failed = errors = 0
        for listed in appointment_store.list_by_status(PENDING):
            # Re-read: a clerk may have called it while an earlier send was in flight
            appt = appointment_store.get(listed["id"])
            try:
                if appt is None or not is_due(appt, now, hours_before, tz):
                    continue
                sms.send_reminder(appt)
            except DispatchError as exc:
                failed += 1
                logger.warning("Reminder for %s not delivered, retrying next tick: %s", appt["id"], exc)
                continue
            except Exception as exc:
                errors += 1
                logger.error("Reminder check failed for %s: %s", appt.get("id"), exc)
                continue

            if appointment_store.mark_reminder_sent(appt["id"], now.isoformat()):
                sent += 1
                logger.info("Reminder sent for %s", appt["id"])
            else:
                logger.info("Reminder for %s not recorded; it is no longer pending", appt["id"])

        return {"sent": sent, "failed": failed, "errors": errors, "skipped": False}
    finally:
        _tick_lock.release()


async def _send_due_reminders(hours_before: float) -> None:
    summary = await asyncio.to_thread(run_tick, hours_before=hours_before)
    if summary["sent"] or summary["failed"] or summary["errors"]:
        logger.info(
            "Reminder tick: %d sent, %d failed, %d errors",
            summary["sent"], summary["failed"], summary["errors"],
        )


# ---------------------------------------------------------------------------
# Scheduler lifecycle
# ---------------------------------------------------------------------------


def get_scheduler() -> AsyncIOScheduler:
    global _scheduler
    if _scheduler is None:
        _scheduler = AsyncIOScheduler()

        # Read once; changing REMINDER_HOURS_BEFORE needs a restart
        hours_before = settings.reminder_hours_before

        _scheduler.add_job(
            _send_due_reminders,
            IntervalTrigger(seconds=settings.reminder_tick_seconds),
            kwargs={"hours_before": hours_before},
            id="appointment_reminders",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        logger.info(
            "Reminder window: %.2f hours before appointment, checked every %ds",
            hours_before, settings.reminder_tick_seconds,
        )

    return _scheduler
