"""
Prometheus-compatible metrics for observability.

Tracks key scheduling indicators:
- Bookings created and booking rejections (by reason)
- Appointment status transitions (by from/to status and actor)
- Ratings submitted
- Notification outcomes (by event and delivery status)

Usage:
    from homeserve.lib.metrics import get_metrics_collector

    metrics = get_metrics_collector()
    metrics.increment_bookings_created()
    metrics.increment_booking_conflicts(reason="slot_already_booked")

    # Export for Prometheus
    prometheus_output = metrics.export_prometheus()
"""

from typing import Dict, Tuple
from threading import Lock


class MetricsCollector:
    """
    Prometheus-style metrics collector for the scheduling core.

    Counters:
    - bookings_created_total: Appointments created through booking
    - booking_conflicts_total: Rejected bookings/reschedules (labels: reason)
    - appointment_transitions_total: Status changes (labels: from_status, to_status, actor)
    - ratings_submitted_total: Ratings attached to completed appointments
    - notifications_total: Notifier calls (labels: event, status)

    Thread-safe for concurrent increments.
    """

    HELP_TEXTS = {
        "bookings_created_total": "Total number of appointments created by booking",
        "booking_conflicts_total": "Total number of rejected booking or reschedule attempts",
        "appointment_transitions_total": "Total number of appointment status transitions",
        "ratings_submitted_total": "Total number of ratings submitted",
        "notifications_total": "Total number of notifications by outcome",
    }

    def __init__(self):
        self._lock = Lock()

        # key = (metric_name, labels_tuple), value = count
        self._counters: Dict[Tuple[str, Tuple[Tuple[str, str], ...]], int] = {}

    def _get_counter_key(self, metric_name: str, labels: Dict[str, str]) -> Tuple[str, Tuple[Tuple[str, str], ...]]:
        """Generate unique key for counter with sorted labels."""
        return (metric_name, tuple(sorted(labels.items())))

    def _increment(self, metric_name: str, labels: Dict[str, str], amount: int = 1):
        key = self._get_counter_key(metric_name, labels)
        with self._lock:
            self._counters[key] = self._counters.get(key, 0) + amount

    # ===== Scheduling Metrics =====

    def increment_bookings_created(self, amount: int = 1):
        self._increment("bookings_created_total", {}, amount)

    def increment_booking_conflicts(self, reason: str, amount: int = 1):
        """
        Increment rejected booking counter.

        Args:
            reason: Error code that rejected the request (slot_already_booked, past_date_time, ...)
            amount: Increment amount
        """
        self._increment("booking_conflicts_total", {"reason": reason.lower()}, amount)

    def increment_transitions(self, from_status: str, to_status: str, actor: str, amount: int = 1):
        labels = {
            "from_status": from_status.lower(),
            "to_status": to_status.lower(),
            "actor": actor.lower(),
        }
        self._increment("appointment_transitions_total", labels, amount)

    def increment_ratings(self, amount: int = 1):
        self._increment("ratings_submitted_total", {}, amount)

    def increment_notifications(self, event: str, status: str = "sent", amount: int = 1):
        """
        Increment notification counter.

        Args:
            event: Notification event (booking_confirmed, booking_cancelled, ...)
            status: Delivery outcome (sent, failed)
            amount: Increment amount
        """
        self._increment("notifications_total", {"event": event.lower(), "status": status.lower()}, amount)

    # ===== Export =====

    def export_prometheus(self) -> str:
        """
        Export all metrics in Prometheus text format.

        Returns:
            Prometheus-compatible text output
        """
        output_lines = []

        metrics_by_name: Dict[str, list] = {}
        with self._lock:
            for (metric_name, labels_tuple), value in self._counters.items():
                metrics_by_name.setdefault(metric_name, []).append((dict(labels_tuple), value))

        for metric_name in sorted(metrics_by_name.keys()):
            help_text = self.HELP_TEXTS.get(metric_name, "Counter metric")
            output_lines.append(f"# HELP {metric_name} {help_text}")
            output_lines.append(f"# TYPE {metric_name} counter")

            for labels_dict, value in sorted(metrics_by_name[metric_name], key=lambda x: str(x[0])):
                if labels_dict:
                    labels_str = ",".join(f'{k}="{v}"' for k, v in sorted(labels_dict.items()))
                    output_lines.append(f"{metric_name}{{{labels_str}}} {value}")
                else:
                    output_lines.append(f"{metric_name} {value}")

            output_lines.append("")

        return "\n".join(output_lines)

    def get_counter_value(self, metric_name: str, labels: Dict[str, str] | None = None) -> int:
        """
        Get current value of a specific counter.

        Args:
            metric_name: Name of the metric
            labels: Exact label set

        Returns:
            Current counter value
        """
        key = self._get_counter_key(metric_name, labels or {})
        with self._lock:
            return self._counters.get(key, 0)

    def reset_all(self):
        """Reset all counters (for testing)."""
        with self._lock:
            self._counters.clear()


# Process-wide collector shared by request handlers
_metrics_collector: MetricsCollector | None = None
_metrics_lock = Lock()


def get_metrics_collector() -> MetricsCollector:
    """
    Get the process-wide metrics collector.

    Returns:
        MetricsCollector instance
    """
    global _metrics_collector
    if _metrics_collector is None:
        with _metrics_lock:
            if _metrics_collector is None:
                _metrics_collector = MetricsCollector()
    return _metrics_collector


def reset_metrics():
    """Reset the process-wide collector (for testing)."""
    with _metrics_lock:
        if _metrics_collector is not None:
            _metrics_collector.reset_all()
