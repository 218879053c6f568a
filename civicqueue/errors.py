"""
Error taxonomy for the counter queue.

Every error carries a human-readable message; the HTTP layer maps each class
to a status code via ``status_code``.
"""

from __future__ import annotations


class QueueError(Exception):
    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(QueueError):
    """Missing or malformed booking fields. Raised before any side effect."""

    status_code = 400


class EmptyQueue(QueueError):
    """No pending appointments to call."""

    status_code = 200


class NotFound(QueueError):
    status_code = 404


class InvalidTransition(QueueError):
    """Status change not allowed (only raised when STRICT_SERVE is on)."""

    status_code = 409


class AllocationConflict(QueueError):
    """Duplicate queue number for a date.

    Only reachable if bookings for the same date stop being serialised, so
    seeing one means a concurrency bug rather than bad input.
    """

    status_code = 500


class DispatchError(Exception):
    """SMS delivery failed. Never surfaced to HTTP callers."""

    def __init__(self, message: str, transient: bool = False) -> None:
        super().__init__(message)
        self.transient = transient
