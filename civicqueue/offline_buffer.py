"""
Offline booking buffer: bookings taken while the counter server is
unreachable are appended to a local JSON file and replayed later.

Each entry gets a ``client_ref`` when it is buffered. The server ignores a
client_ref it has already booked, so replaying the same file twice never
double-books anyone.
"""

from __future__ import annotations

import json
import logging
import os
import uuid
from datetime import datetime, timezone
from typing import Optional

import httpx

from civicqueue.config import settings

logger = logging.getLogger(__name__)

# buffer_entry = {
#   "name": str, "phone": str, "service": str,
#   "date": str,            # YYYY-MM-DD
#   "time": str,            # HH:MM
#   "client_ref": str,
#   "queued_at": str,
# }


class OfflineBookingBuffer:
    def __init__(self, path: str) -> None:
        self.path = path

    def entries(self) -> list[dict]:
        if not os.path.exists(self.path):
            return []
        with open(self.path, encoding="utf-8") as fh:
            return json.load(fh)

    def _write(self, entries: list[dict]) -> None:
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as fh:
            json.dump(entries, fh, indent=2)
        os.replace(tmp_path, self.path)

    def append(self, booking: dict) -> dict:
        """Buffer a booking payload for later replay."""
        entry = dict(booking)
        entry.setdefault("client_ref", uuid.uuid4().hex)
        entry["queued_at"] = datetime.now(timezone.utc).isoformat()
        entries = self.entries()
        entries.append(entry)
        self._write(entries)
        return entry

    def search(self, query: str) -> list[dict]:
        """Offline search over buffered entries (any field, case-insensitive)."""
        q = query.strip().lower()
        if not q:
            return []
        return [
            e for e in self.entries()
            if q in " ".join(str(v) for v in e.values()).lower()
        ]

    def replay(
        self,
        client: Optional[httpx.Client] = None,
        base_url: Optional[str] = None,
    ) -> dict:
        """
        Post every buffered booking to ``/api/book``.

        Accepted bookings and ones the server rejects as invalid (400) leave
        the buffer. The first network error or server failure stops the replay
        and keeps that entry and everything after it. Entries appended while
        the replay runs are kept too; only one process should replay a given
        buffer file.
        """
        base_url = (base_url or settings.server_base_url).rstrip("/")
        owns_client = client is None
        client = client or httpx.Client(timeout=10.0)

        entries = self.entries()
        synced: list[dict] = []
        rejected: list[dict] = []
        remaining: list[dict] = []
        try:
            for idx, entry in enumerate(entries):
                try:
                    response = client.post(f"{base_url}/api/book", json=entry)
                except httpx.TransportError as exc:
                    logger.warning("Counter server unreachable: %s", exc)
                    remaining = entries[idx:]
                    break
                if response.status_code == 400:
                    logger.warning(
                        "Buffered booking %s rejected: %s", entry["client_ref"], response.text
                    )
                    rejected.append(entry)
                elif response.is_success:
                    synced.append(dict(entry, **response.json()))
                else:
                    logger.warning(
                        "Replay stopped: server returned %d for %s",
                        response.status_code, entry["client_ref"],
                    )
                    remaining = entries[idx:]
                    break
        finally:
            if owns_client:
                client.close()

        # Keep anything buffered while the replay was running
        replayed = {e["client_ref"] for e in entries}
        added = [e for e in self.entries() if e.get("client_ref") not in replayed]
        self._write(remaining + added)
        logger.info(
            "Offline replay: %d synced, %d rejected, %d remaining",
            len(synced), len(rejected), len(remaining) + len(added),
        )
        return {"synced": synced, "rejected": rejected, "remaining": len(remaining) + len(added)}
