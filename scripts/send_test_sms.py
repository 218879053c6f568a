#!/usr/bin/env python3
"""
Send one test SMS to check the Twilio settings in .env.

Run:
    python scripts/send_test_sms.py +15551234567

Without TWILIO_* settings the message is only logged (mock mode).
"""

import logging
import os
import sys

# Allow running from repo root
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from dotenv import load_dotenv
load_dotenv()

from civicqueue import sms
from civicqueue.config import settings
from civicqueue.errors import DispatchError


def main():
    if len(sys.argv) != 2:
        print("Usage: python scripts/send_test_sms.py +1XXXXXXXXXX")
        sys.exit(1)

    logging.basicConfig(level=logging.INFO)
    to_number = sys.argv[1]
    mode = "Twilio" if settings.sms_enabled else "mock"
    print(f"Sending test SMS to {to_number} ({mode} mode)...")

    try:
        reference = sms.send(to_number, f"Test message from {settings.business_name}.")
    except DispatchError as exc:
        print(f"✗ SMS failed: {exc}")
        sys.exit(1)

    print(f"✓ SMS accepted, reference {reference}")


if __name__ == "__main__":
    main()
