"""
Notification side effects of the appointment lifecycle.

The scheduling core talks to a ``Notifier``; delivery is fire-and-forget.
A failed notification is logged and counted but never fails or rolls back
the transition that triggered it.

Delivery channels are pluggable ``NotificationProvider`` implementations:
console (development) and structured log. Each message is retried with
bounded exponential backoff before being given up on.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from tenacity import Retrying, stop_after_attempt, wait_exponential

from homeserve.lib.logging import get_logger
from homeserve.lib.metrics import MetricsCollector, get_metrics_collector
from homeserve.lib.settings import settings
from homeserve.models.appointments import Appointment


logger = get_logger(__name__)


@dataclass(frozen=True)
class Message:
    """One outbound message to one party of an appointment."""
    recipient_id: UUID
    role: str
    subject: str
    body: str


class NotificationProvider(ABC):
    """
    Abstract base class for notification delivery providers.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Short provider name used in logs."""

    @abstractmethod
    def send(self, message: Message) -> None:
        """
        Deliver one message.

        Raises:
            Exception: any delivery failure; the caller decides on retries
        """


class ConsoleNotificationProvider(NotificationProvider):
    """
    Console provider for development/testing.
    Prints messages to stdout instead of sending.
    """

    @property
    def name(self) -> str:
        return "console"

    def send(self, message: Message) -> None:
        print("\n" + "=" * 60)
        print(f"To {message.role} {message.recipient_id}: {message.subject}")
        print(f"   {message.body}")
        print("=" * 60 + "\n")


class LogNotificationProvider(NotificationProvider):
    """Writes each message as a structured log line."""

    @property
    def name(self) -> str:
        return "log"

    def send(self, message: Message) -> None:
        logger.info(
            message.subject,
            extra={
                "recipient_id": str(message.recipient_id),
                "role": message.role,
                "body": message.body,
            },
        )


class Notifier(ABC):
    """Side-effect interface consumed by the scheduling core."""

    @abstractmethod
    def notify_booking_confirmed(self, appointment: Appointment) -> None: ...

    @abstractmethod
    def notify_booking_cancelled(self, appointment: Appointment, reason: Optional[str]) -> None: ...

    @abstractmethod
    def notify_completion(self, appointment: Appointment) -> None: ...

    @abstractmethod
    def notify_rescheduled(self, appointment: Appointment) -> None: ...


def _when(appointment: Appointment) -> str:
    return appointment.scheduled_date.strftime("%A %d %B %Y at %H:%M")


class NotificationService(Notifier):
    """
    Notifier that fans each lifecycle event out to the customer and the
    provider through a delivery provider.
    """

    def __init__(
        self,
        provider: NotificationProvider,
        max_attempts: int = 3,
        wait=None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.provider = provider
        self.max_attempts = max(1, max_attempts)
        self.wait = wait if wait is not None else wait_exponential(multiplier=0.2, max=2)
        self.metrics = metrics or get_metrics_collector()

    def notify_booking_confirmed(self, appointment: Appointment) -> None:
        when = _when(appointment)
        self._deliver("booking_confirmed", appointment, [
            Message(appointment.customer_id, "customer", "Booking confirmed",
                    f"Your appointment on {when} is confirmed."),
            Message(appointment.provider_id, "provider", "New booking",
                    f"A customer booked you for {when}."),
        ])

    def notify_booking_cancelled(self, appointment: Appointment, reason: Optional[str]) -> None:
        when = _when(appointment)
        suffix = f" Reason: {reason}" if reason else ""
        self._deliver("booking_cancelled", appointment, [
            Message(appointment.customer_id, "customer", "Booking cancelled",
                    f"The appointment on {when} was cancelled.{suffix}"),
            Message(appointment.provider_id, "provider", "Booking cancelled",
                    f"The appointment on {when} was cancelled.{suffix}"),
        ])

    def notify_completion(self, appointment: Appointment) -> None:
        when = _when(appointment)
        self._deliver("appointment_completed", appointment, [
            Message(appointment.customer_id, "customer", "Service completed",
                    f"Your appointment on {when} is complete. You can now rate your provider."),
            Message(appointment.provider_id, "provider", "Job completed",
                    f"The appointment on {when} was marked completed."),
        ])

    def notify_rescheduled(self, appointment: Appointment) -> None:
        when = _when(appointment)
        self._deliver("booking_rescheduled", appointment, [
            Message(appointment.customer_id, "customer", "Booking rescheduled",
                    f"Your appointment moved to {when} and awaits confirmation."),
            Message(appointment.provider_id, "provider", "Booking rescheduled",
                    f"An appointment moved to {when} and awaits your confirmation."),
        ])

    def _deliver(self, event: str, appointment: Appointment, messages: list[Message]) -> None:
        for message in messages:
            try:
                for attempt in Retrying(
                    stop=stop_after_attempt(self.max_attempts),
                    wait=self.wait,
                    reraise=True,
                ):
                    with attempt:
                        self.provider.send(message)
            except Exception:
                self.metrics.increment_notifications(event, status="failed")
                logger.error(
                    f"Notification {event} to {message.role} failed",
                    extra={
                        "appointment_id": str(appointment.id),
                        "provider": self.provider.name,
                    },
                    exc_info=True,
                )
            else:
                self.metrics.increment_notifications(event, status="sent")


def notify_safely(notifier: Optional[Notifier], method: str, *args) -> None:
    """
    Fire a notifier call after the triggering transaction committed.

    Any exception from the notifier is logged and swallowed.
    """
    if notifier is None:
        return
    try:
        getattr(notifier, method)(*args)
    except Exception:
        logger.error(f"Notifier call {method} failed", exc_info=True)


_PROVIDERS = {
    "console": ConsoleNotificationProvider,
    "log": LogNotificationProvider,
}


def get_notification_service(provider_name: Optional[str] = None) -> NotificationService:
    """
    Build a NotificationService for the configured delivery provider.

    Args:
        provider_name: Override for ``settings.notification_provider``

    Returns:
        NotificationService instance
    """
    name = (provider_name or settings.notification_provider).lower()
    provider_cls = _PROVIDERS.get(name)
    if provider_cls is None:
        logger.warning(f"Unknown notification provider '{name}', using console")
        provider_cls = ConsoleNotificationProvider
    return NotificationService(provider_cls(), max_attempts=settings.notification_max_attempts)
