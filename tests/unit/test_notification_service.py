"""
Unit tests for NotificationService.
"""
from datetime import datetime
from types import SimpleNamespace
from unittest.mock import MagicMock
from uuid import uuid4

import pytest
from tenacity import wait_none

from homeserve.lib.metrics import MetricsCollector
from homeserve.services.notification_service import (
    ConsoleNotificationProvider,
    LogNotificationProvider,
    Message,
    NotificationService,
    get_notification_service,
    notify_safely,
)


def _appointment():
    return SimpleNamespace(
        id=uuid4(),
        customer_id=uuid4(),
        provider_id=uuid4(),
        scheduled_date=datetime(2026, 3, 9, 9, 0),
    )


@pytest.fixture
def collector():
    return MetricsCollector()


@pytest.mark.unit
def test_console_provider_prints(capsys):
    """Test console provider writes the message to stdout."""
    provider = ConsoleNotificationProvider()
    recipient = uuid4()

    provider.send(Message(recipient, "customer", "Booking confirmed", "See you Monday"))

    out = capsys.readouterr().out
    assert provider.name == "console"
    assert f"To customer {recipient}: Booking confirmed" in out
    assert "See you Monday" in out


@pytest.mark.unit
def test_log_provider_logs(caplog):
    """Test log provider emits one INFO record per message."""
    provider = LogNotificationProvider()

    with caplog.at_level("INFO"):
        provider.send(Message(uuid4(), "provider", "New booking", "Monday 09:00"))

    assert any(record.getMessage() == "New booking" for record in caplog.records)


@pytest.mark.unit
def test_booking_confirmed_reaches_both_parties(collector):
    """Test a confirmation goes to the customer and the provider."""
    provider = MagicMock()
    provider.name = "mock"
    service = NotificationService(provider, wait=wait_none(), metrics=collector)
    appointment = _appointment()

    service.notify_booking_confirmed(appointment)

    recipients = [call.args[0].recipient_id for call in provider.send.call_args_list]
    assert recipients == [appointment.customer_id, appointment.provider_id]
    assert "Monday 09 March 2026 at 09:00" in provider.send.call_args_list[0].args[0].body
    assert collector.get_counter_value(
        "notifications_total", {"event": "booking_confirmed", "status": "sent"}
    ) == 2


@pytest.mark.unit
def test_cancellation_carries_reason(collector):
    """Test the cancellation reason is included in the message body."""
    provider = MagicMock()
    provider.name = "mock"
    service = NotificationService(provider, wait=wait_none(), metrics=collector)

    service.notify_booking_cancelled(_appointment(), "Provider sick")

    assert all("Reason: Provider sick" in call.args[0].body for call in provider.send.call_args_list)


@pytest.mark.unit
def test_transient_failure_is_retried(collector):
    """Test a send that fails once succeeds on retry."""
    provider = MagicMock()
    provider.name = "mock"
    provider.send.side_effect = [ConnectionError("gateway timeout"), None, None]
    service = NotificationService(provider, max_attempts=3, wait=wait_none(), metrics=collector)

    service.notify_completion(_appointment())

    assert provider.send.call_count == 3
    assert collector.get_counter_value(
        "notifications_total", {"event": "appointment_completed", "status": "sent"}
    ) == 2


@pytest.mark.unit
def test_exhausted_retries_are_swallowed(collector, caplog):
    """Test permanent failures are counted and logged, never raised."""
    provider = MagicMock()
    provider.name = "mock"
    provider.send.side_effect = ConnectionError("gateway down")
    service = NotificationService(provider, max_attempts=2, wait=wait_none(), metrics=collector)

    with caplog.at_level("ERROR"):
        service.notify_rescheduled(_appointment())

    assert provider.send.call_count == 4
    assert collector.get_counter_value(
        "notifications_total", {"event": "booking_rescheduled", "status": "failed"}
    ) == 2
    assert any("booking_rescheduled" in record.getMessage() for record in caplog.records)


@pytest.mark.unit
def test_notify_safely_swallows_errors():
    """Test notifier exceptions do not escape."""
    notifier = MagicMock()
    notifier.notify_completion.side_effect = RuntimeError("boom")

    notify_safely(notifier, "notify_completion", _appointment())
    notify_safely(None, "notify_completion", _appointment())

    notifier.notify_completion.assert_called_once()


@pytest.mark.unit
@pytest.mark.parametrize("name,expected", [
    ("console", ConsoleNotificationProvider),
    ("LOG", LogNotificationProvider),
    ("carrier-pigeon", ConsoleNotificationProvider),
])
def test_get_notification_service(name, expected):
    """Test provider selection by name with console fallback."""
    service = get_notification_service(name)
    assert isinstance(service.provider, expected)
