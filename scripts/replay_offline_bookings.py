#!/usr/bin/env python3
"""
Replay bookings buffered while the counter server was unreachable.

Run:
    python scripts/replay_offline_bookings.py offline_bookings.json

SERVER_BASE_URL in .env selects the server. Entries already booked are
recognised by their client_ref and not booked twice.
"""

import logging
import os
import sys

# Allow running from repo root
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from dotenv import load_dotenv
load_dotenv()

from civicqueue.config import settings
from civicqueue.offline_buffer import OfflineBookingBuffer


def main():
    if len(sys.argv) != 2:
        print("Usage: python scripts/replay_offline_bookings.py BUFFER_FILE")
        sys.exit(1)

    logging.basicConfig(level=logging.INFO)
    buffer = OfflineBookingBuffer(sys.argv[1])
    pending = len(buffer.entries())
    print(f"Replaying {pending} buffered booking(s) to {settings.server_base_url}...\n")

    result = buffer.replay()

    for entry in result["synced"]:
        print(f"✓ {entry['name']}: {entry['date']} queue #{entry['queue_number']}")
    for entry in result["rejected"]:
        print(f"✗ {entry.get('name', '?')}: rejected by server")
    if result["remaining"]:
        print(f"\n{result['remaining']} booking(s) still buffered; run again later.")
        sys.exit(1)


if __name__ == "__main__":
    main()
