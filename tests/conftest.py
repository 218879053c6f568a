"""
Shared fixtures for the counter queue tests.

Every test starts with an empty store, SMS in mock mode and a fixed reminder
policy, whatever the local .env says.
"""

import pytest
from fastapi.testclient import TestClient

from civicqueue import appointment_store, scheduler, sms
from civicqueue.config import settings


@pytest.fixture(autouse=True)
def clean_store():
    appointment_store.reset()
    yield
    appointment_store.reset()


@pytest.fixture(autouse=True)
def test_settings(monkeypatch):
    monkeypatch.setattr(settings, "twilio_account_sid", "")
    monkeypatch.setattr(settings, "twilio_auth_token", "")
    monkeypatch.setattr(settings, "twilio_phone_number", "")
    monkeypatch.setattr(settings, "reminder_hours_before", 24.0)
    monkeypatch.setattr(settings, "reminder_tick_seconds", 60)
    monkeypatch.setattr(settings, "strict_serve", False)
    monkeypatch.setattr(settings, "store_path", "")
    monkeypatch.setattr(settings, "office_timezone", "UTC")
    return settings


@pytest.fixture
def outbox(monkeypatch):
    """Capture every SMS handed to the dispatcher instead of sending it."""
    sent = []

    def fake_send(to, body):
        sent.append({"to": to, "body": body})
        return f"SM{len(sent):04d}"

    monkeypatch.setattr(sms, "send", fake_send)
    return sent


@pytest.fixture
def fresh_scheduler(monkeypatch):
    monkeypatch.setattr(scheduler, "_scheduler", None)
    yield
    monkeypatch.setattr(scheduler, "_scheduler", None)


@pytest.fixture
def client(outbox, fresh_scheduler):
    """FastAPI test client. Used without ``with`` so the lifespan (and the
    real scheduler) never starts."""
    from civicqueue.main import app

    return TestClient(app)


@pytest.fixture
def booking():
    return {
        "name": "Ada Lovelace",
        "phone": "+15550001111",
        "service": "Passport renewal",
        "date": "2025-06-01",
        "time": "09:30",
    }
