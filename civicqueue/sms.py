"""
SMS module: Twilio SMS for booking confirmations, "now calling" notices and
appointment reminders.

When the Twilio credentials are not configured every message is logged
instead of sent and reported as delivered with the reference ``"MOCK"``, so
callers never need to branch on the transport.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

from twilio.base.exceptions import TwilioRestException
from twilio.http.http_client import TwilioHttpClient
from twilio.rest import Client

from civicqueue.config import settings
from civicqueue.errors import DispatchError

logger = logging.getLogger(__name__)

MOCK_REFERENCE = "MOCK"

# Twilio responses worth another attempt
_TRANSIENT_STATUSES = {429, 500, 502, 503, 504}


def _client() -> Client:
    return Client(
        settings.twilio_account_sid,
        settings.twilio_auth_token,
        http_client=TwilioHttpClient(timeout=settings.sms_timeout_seconds),
    )


def _deliver(to: str, body: str) -> str:
    try:
        msg = _client().messages.create(
            to=to,
            from_=settings.twilio_phone_number,
            body=body,
        )
    except TwilioRestException as exc:
        raise DispatchError(
            f"Twilio rejected SMS to {to}: {exc.msg}",
            transient=exc.status in _TRANSIENT_STATUSES,
        ) from exc
    except Exception as exc:  # connection errors and timeouts from the HTTP client
        raise DispatchError(f"SMS transport error for {to}: {exc}", transient=True) from exc
    return msg.sid


def send(to: str, body: str) -> str:
    """
    Send an SMS and return its delivery reference.

    Transient failures are retried with exponential backoff up to
    SMS_MAX_ATTEMPTS; each attempt is bounded by SMS_TIMEOUT_SECONDS.
    Raises DispatchError once delivery is given up.
    """
    if not settings.sms_enabled:
        logger.info("[MOCK SMS] To: %s: %s", to, body)
        return MOCK_REFERENCE

    if not to or not to.startswith("+"):
        logger.warning("Invalid phone number for SMS: %s", to)
        raise DispatchError(f"Invalid phone number for SMS: {to}")

    attempts = settings.sms_max_attempts
    delay = settings.sms_backoff_seconds
    for attempt in range(1, attempts + 1):
        try:
            sid = _deliver(to, body)
        except DispatchError as exc:
            if not exc.transient or attempt == attempts:
                logger.error("SMS failed to %s after %d attempt(s): %s", to, attempt, exc)
                raise
            logger.warning(
                "SMS attempt %d/%d to %s failed: %s. Retrying in %.1fs...",
                attempt, attempts, to, exc, delay,
            )
            time.sleep(delay)
            delay *= 2
            continue
        logger.info("SMS sent to %s, SID %s", to, sid)
        return sid

    raise DispatchError(f"SMS to {to} was never attempted")


def notify(to: str, body: str) -> Optional[str]:
    """Best-effort send: failures are logged and reported as None."""
    try:
        return send(to, body)
    except DispatchError as exc:
        logger.warning("Notification to %s dropped: %s", to, exc)
        return None


# ---------------------------------------------------------------------------
# Queue notifications
# ---------------------------------------------------------------------------


def send_booking_confirmation(appt: dict) -> Optional[str]:
    body = (
        f"{settings.business_name}\n"
        f"Your appointment is confirmed.\n"
        f"  Service: {appt['service']}\n"
        f"  Date: {appt['date']} {appt['time']}\n"
        f"  Queue #: {appt['queue_number']}"
    )
    return notify(appt["phone"], body)


def send_called_notice(appt: dict) -> Optional[str]:
    body = (
        f"Dear {appt['name']}, your queue number {appt['queue_number']} is being called. "
        f"Please proceed to the counter."
    )
    return notify(appt["phone"], body)


def send_reminder(appt: dict) -> str:
    """Reminder SMS. Raises DispatchError so the scheduler can retry next tick."""
    body = (
        f"Reminder from {settings.business_name}:\n"
        f"Your appointment for {appt['service']} is on {appt['date']} {appt['time']}.\n"
        f"Queue #: {appt['queue_number']}"
    )
    return send(appt["phone"], body)
