"""
Appointment store: in-memory record of every booking at the counter.

Records are plain dicts keyed by appointment id. All access goes through the
functions below: each one holds the store lock for its whole read or write and
hands back copies, so request handlers and the reminder scheduler never see a
half-written record.

Set STORE_PATH in .env to keep a JSON snapshot on disk. It is reloaded on
startup and rewritten after every change.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from typing import Optional

from civicqueue.errors import AllocationConflict, NotFound

logger = logging.getLogger(__name__)

PENDING = "pending"
CALLED = "called"
SERVED = "served"
STATUSES = (PENDING, CALLED, SERVED)

# ---------------------------------------------------------------------------
# Data store
# ---------------------------------------------------------------------------

appointments: dict[str, dict] = {}
_client_refs: dict[str, str] = {}  # client_ref -> appointment id
_seq = 0
_lock = threading.RLock()
_snapshot_path = ""


def _creation_order(appt: dict) -> tuple[str, int]:
    return (appt["created_at"], appt["seq"])


def _flush(records: dict[str, dict], seq: int) -> None:
    """Write ``records`` as the snapshot. Called before a change is applied in
    memory, so a failed write leaves both copies unchanged."""
    if not _snapshot_path:
        return
    payload = {"seq": seq, "appointments": sorted(records.values(), key=_creation_order)}
    directory = os.path.dirname(os.path.abspath(_snapshot_path))
    fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".appointments-", suffix=".json")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(payload, fh, indent=2)
        os.replace(tmp_path, _snapshot_path)
    except Exception:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


def _commit(record: dict, seq: int) -> None:
    _flush({**appointments, record["id"]: record}, seq)
    appointments[record["id"]] = record


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


def configure(path: str) -> int:
    """Attach a snapshot file and load it if it exists. Returns records loaded."""
    global _snapshot_path, _seq
    with _lock:
        _snapshot_path = path
        if not path or not os.path.exists(path):
            return 0
        with open(path, encoding="utf-8") as fh:
            data = json.load(fh)
        appointments.clear()
        _client_refs.clear()
        for record in data.get("appointments", []):
            appointments[record["id"]] = record
            if record.get("client_ref"):
                _client_refs[record["client_ref"]] = record["id"]
        _seq = max([data.get("seq", 0)] + [a.get("seq", 0) for a in appointments.values()])
        logger.info("Loaded %d appointments from %s", len(appointments), path)
        return len(appointments)


def reset() -> None:
    """Drop every record and detach the snapshot file."""
    global _seq, _snapshot_path
    with _lock:
        appointments.clear()
        _client_refs.clear()
        _seq = 0
        _snapshot_path = ""


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


def count_for_date(date_str: str) -> int:
    with _lock:
        return sum(1 for a in appointments.values() if a["date"] == date_str)


def get(appt_id: str) -> Optional[dict]:
    with _lock:
        appt = appointments.get(appt_id)
        return dict(appt) if appt else None


def find_by_client_ref(client_ref: str) -> Optional[dict]:
    with _lock:
        appt_id = _client_refs.get(client_ref)
        return dict(appointments[appt_id]) if appt_id else None


def list_by_status(status: str) -> list[dict]:
    """Appointments with ``status``, oldest-created first."""
    with _lock:
        matches = [dict(a) for a in appointments.values() if a["status"] == status]
    return sorted(matches, key=_creation_order)


def list_all(date_str: Optional[str] = None, status: Optional[str] = None) -> list[dict]:
    with _lock:
        matches = [
            dict(a) for a in appointments.values()
            if (not date_str or a["date"] == date_str)
            and (not status or a["status"] == status)
        ]
    return sorted(matches, key=_creation_order)


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


def insert(record: dict) -> dict:
    """Append a new record, stamping its insertion sequence."""
    global _seq
    with _lock:
        clash = next(
            (
                a for a in appointments.values()
                if a["date"] == record["date"] and a["queue_number"] == record["queue_number"]
            ),
            None,
        )
        if clash is not None:
            logger.error(
                "Queue number %d on %s already taken by %s",
                record["queue_number"], record["date"], clash["id"],
            )
            raise AllocationConflict(
                f"Queue number {record['queue_number']} is already assigned on {record['date']}."
            )
        stored = dict(record, seq=_seq + 1)
        _commit(stored, _seq + 1)
        _seq += 1
        if stored.get("client_ref"):
            _client_refs[stored["client_ref"]] = stored["id"]
        return dict(stored)


def update(appt_id: str, **fields) -> dict:
    with _lock:
        appt = appointments.get(appt_id)
        if appt is None:
            raise NotFound(f"No appointment found with ID {appt_id}.")
        appt = dict(appt, **fields)
        _commit(appt, _seq)
        return dict(appt)


def mark_reminder_sent(appt_id: str, sent_at: str) -> bool:
    """
    Flip ``reminder_sent`` false -> true on a pending appointment.

    Returns False, changing nothing, if the flag is already set or the
    appointment has been called or served since it was read.
    """
    with _lock:
        appt = appointments.get(appt_id)
        if appt is None:
            raise NotFound(f"No appointment found with ID {appt_id}.")
        if appt.get("reminder_sent") or appt["status"] != PENDING:
            return False
        _commit(dict(appt, reminder_sent=True, reminder_sent_at=sent_at), _seq)
        return True
