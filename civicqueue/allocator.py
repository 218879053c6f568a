"""Per-date queue number allocation."""

from __future__ import annotations

import threading
from typing import Callable

from civicqueue import appointment_store

_guard = threading.Lock()
_date_locks: dict[str, threading.RLock] = {}


def date_lock(date_str: str) -> threading.RLock:
    with _guard:
        lock = _date_locks.get(date_str)
        if lock is None:
            lock = _date_locks[date_str] = threading.RLock()
        return lock


def next_number(date_str: str) -> int:
    """Next queue number for ``date_str``. Only meaningful while holding its lock."""
    return appointment_store.count_for_date(date_str) + 1


def allocate(date_str: str, build_record: Callable[[int], dict]) -> dict:
    """
    Mint the next queue number for ``date_str`` and insert the record built
    from it, as one step.

    Bookings for the same date are serialised on a per-date lock so no two
    callers can see the same count; other dates proceed in parallel. The date
    is an opaque key: "2025-06-01" and "2025-6-1" are different queues.
    """
    with date_lock(date_str):
        record = build_record(next_number(date_str))
        return appointment_store.insert(record)
