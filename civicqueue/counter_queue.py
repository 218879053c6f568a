"""
Counter queue: booking, calling and serving walk-in appointments.

Status only moves forward: pending -> called -> served. Every transition is
stamped (``called_at`` / ``served_at``) and committed before any SMS goes out;
a failed SMS never undoes it.
"""

from __future__ import annotations

import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Optional

from civicqueue import allocator, appointment_store, sms
from civicqueue.appointment_store import CALLED, PENDING, SERVED
from civicqueue.config import settings
from civicqueue.errors import EmptyQueue, InvalidTransition, NotFound, ValidationError

logger = logging.getLogger(__name__)

# Serialises call-next / mark-served so two clerks never call the same person
_transition_lock = threading.Lock()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _text(value) -> str:
    return "" if value is None else str(value).strip()


def _validate(name, phone, service, date_str, time_str) -> dict:
    fields = {
        "name": _text(name),
        "phone": _text(phone),
        "service": _text(service),
        "date": _text(date_str),
        "time": _text(time_str),
    }
    missing = [key for key, value in fields.items() if not value]
    if missing:
        raise ValidationError(f"Missing fields: {', '.join(missing)}")
    try:
        datetime.strptime(fields["date"], "%Y-%m-%d")
    except ValueError:
        raise ValidationError(f"Invalid date {fields['date']!r}; expected YYYY-MM-DD.")
    try:
        datetime.strptime(fields["time"], "%H:%M")
    except ValueError:
        raise ValidationError(f"Invalid time {fields['time']!r}; expected HH:MM.")
    return fields


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def book(
    name: str,
    phone: str,
    service: str,
    date_str: str,
    time_str: str,
    client_ref: Optional[str] = None,
) -> dict:
    """Book a new pending appointment and fire a confirmation SMS.

    A ``client_ref`` seen before returns the original booking unchanged, so an
    offline client can replay its buffer safely.
    """
    fields = _validate(name, phone, service, date_str, time_str)
    client_ref = _text(client_ref) or None

    def build(queue_number: int) -> dict:
        return {
            "id": uuid.uuid4().hex[:12].upper(),
            **fields,
            "created_at": _now(),
            "queue_number": queue_number,
            "status": PENDING,
            "called_at": None,
            "served_at": None,
            "reminder_sent": False,
            "reminder_sent_at": None,
            "client_ref": client_ref,
        }

    with allocator.date_lock(fields["date"]):
        if client_ref:
            existing = appointment_store.find_by_client_ref(client_ref)
            if existing:
                logger.info("Duplicate booking %s ignored (appt %s)", client_ref, existing["id"])
                return {
                    "id": existing["id"],
                    "queue_number": existing["queue_number"],
                    "duplicate": True,
                }
        appt = allocator.allocate(fields["date"], build)

    logger.info("Appointment booked: %s (%s, queue #%d)", appt["id"], appt["date"], appt["queue_number"])
    sms.send_booking_confirmation(appt)
    return {"id": appt["id"], "queue_number": appt["queue_number"], "duplicate": False}


def list_queue() -> list[dict]:
    """Pending appointments across all dates, oldest booking first."""
    return appointment_store.list_by_status(PENDING)


def call_next() -> dict:
    """Call the longest-waiting pending appointment and text them."""
    with _transition_lock:
        pending = appointment_store.list_by_status(PENDING)
        if not pending:
            raise EmptyQueue("No pending appointments.")
        appt = appointment_store.update(pending[0]["id"], status=CALLED, called_at=_now())

    logger.info("Called queue #%d (%s)", appt["queue_number"], appt["id"])
    sms.send_called_notice(appt)
    return {"id": appt["id"], "queue_number": appt["queue_number"], "name": appt["name"]}


def mark_served(appt_id: str) -> dict:
    """
    Mark an appointment served.

    Pending appointments may be served directly unless STRICT_SERVE is set.
    Serving an already-served appointment is a no-op and keeps the first
    ``served_at``.
    """
    appt_id = _text(appt_id)
    if not appt_id:
        raise ValidationError("Missing id")

    with _transition_lock:
        appt = appointment_store.get(appt_id)
        if appt is None:
            raise NotFound(f"No appointment found with ID {appt_id}.")
        if appt["status"] == SERVED:
            return appt
        if settings.strict_serve and appt["status"] != CALLED:
            raise InvalidTransition(
                f"Appointment {appt_id} is {appt['status']}; call it before marking it served."
            )
        appt = appointment_store.update(appt_id, status=SERVED, served_at=_now())

    logger.info("Served queue #%d (%s)", appt["queue_number"], appt_id)
    return appt


def search(query: str) -> list[dict]:
    """Case-insensitive substring match on name, phone or queue number."""
    q = _text(query).lower()
    if not q:
        return []
    return [
        a for a in appointment_store.list_all()
        if q in a["name"].lower()
        or q in a["phone"].lower()
        or q in str(a["queue_number"])
    ]
