"""
Tests for the SMS dispatcher: mock mode, retries and timeouts.
"""

import logging
from unittest.mock import MagicMock

import pytest
from twilio.base.exceptions import TwilioRestException

from civicqueue import sms
from civicqueue.errors import DispatchError


@pytest.fixture
def twilio_enabled(test_settings, monkeypatch):
    monkeypatch.setattr(test_settings, "twilio_account_sid", "ACtest")
    monkeypatch.setattr(test_settings, "twilio_auth_token", "secret")
    monkeypatch.setattr(test_settings, "twilio_phone_number", "+15550009999")
    monkeypatch.setattr(test_settings, "sms_max_attempts", 3)
    monkeypatch.setattr(test_settings, "sms_backoff_seconds", 1.0)
    return test_settings


@pytest.fixture
def twilio(twilio_enabled, monkeypatch):
    """Mock Twilio REST client returned by sms._client()."""
    client = MagicMock()
    client.messages.create.return_value = MagicMock(sid="SM123")
    monkeypatch.setattr(sms, "_client", lambda: client)
    return client


@pytest.fixture
def sleeps(monkeypatch):
    delays = []
    monkeypatch.setattr(sms.time, "sleep", delays.append)
    return delays


class TestMockMode:
    def test_unconfigured_twilio_logs_instead(self, caplog):
        with caplog.at_level(logging.INFO, logger="civicqueue.sms"):
            reference = sms.send("+15550001111", "hello")
        assert reference == sms.MOCK_REFERENCE
        assert "[MOCK SMS]" in caplog.text

    def test_mock_mode_accepts_any_address(self):
        assert sms.send("not-a-number", "hello") == "MOCK"


class TestTwilioDelivery:
    def test_send_returns_message_sid(self, twilio):
        assert sms.send("+15550001111", "hello") == "SM123"
        twilio.messages.create.assert_called_once_with(
            to="+15550001111", from_="+15550009999", body="hello"
        )

    def test_invalid_number_is_not_sent(self, twilio):
        with pytest.raises(DispatchError):
            sms.send("5550001111", "hello")
        twilio.messages.create.assert_not_called()

    def test_transient_error_is_retried(self, twilio, sleeps):
        twilio.messages.create.side_effect = [
            TwilioRestException(503, "/Messages.json", "Service Unavailable"),
            MagicMock(sid="SM456"),
        ]
        assert sms.send("+15550001111", "hello") == "SM456"
        assert sleeps == [1.0]

    def test_network_errors_give_up_after_max_attempts(self, twilio, sleeps):
        twilio.messages.create.side_effect = ConnectionError("connection reset")
        with pytest.raises(DispatchError) as exc_info:
            sms.send("+15550001111", "hello")
        assert exc_info.value.transient is True
        assert twilio.messages.create.call_count == 3
        assert sleeps == [1.0, 2.0]

    def test_permanent_error_fails_immediately(self, twilio, sleeps):
        twilio.messages.create.side_effect = TwilioRestException(
            400, "/Messages.json", "The 'To' number is not a valid phone number."
        )
        with pytest.raises(DispatchError) as exc_info:
            sms.send("+15550001111", "hello")
        assert exc_info.value.transient is False
        assert twilio.messages.create.call_count == 1
        assert sleeps == []

    def test_client_uses_bounded_timeout(self, twilio_enabled, monkeypatch):
        monkeypatch.setattr(twilio_enabled, "sms_timeout_seconds", 4.5)
        http_client = MagicMock()
        http_factory = MagicMock(return_value=http_client)
        client_factory = MagicMock()
        monkeypatch.setattr(sms, "TwilioHttpClient", http_factory)
        monkeypatch.setattr(sms, "Client", client_factory)

        sms._client()

        http_factory.assert_called_once_with(timeout=4.5)
        client_factory.assert_called_once_with("ACtest", "secret", http_client=http_client)


class TestNotify:
    def test_failure_is_swallowed(self, twilio, sleeps, caplog):
        twilio.messages.create.side_effect = ConnectionError("down")
        with caplog.at_level(logging.WARNING, logger="civicqueue.sms"):
            assert sms.notify("+15550001111", "hello") is None
        assert "dropped" in caplog.text

    def test_message_bodies(self, outbox):
        appt = {
            "name": "Ada",
            "phone": "+15550001111",
            "service": "Permit",
            "date": "2025-06-01",
            "time": "09:30",
            "queue_number": 7,
        }
        sms.send_booking_confirmation(appt)
        sms.send_called_notice(appt)
        sms.send_reminder(appt)

        confirmation, called, reminder = (m["body"] for m in outbox)
        assert "Queue #: 7" in confirmation
        assert "queue number 7 is being called" in called
        assert "2025-06-01 09:30" in reminder
