"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Booking metrics
booking_attempts = Counter(
    'booking_attempts_total',
    'Total booking attempts',
    ['status']  # success, conflict, error
)

booking_latency = Histogram(
    'booking_latency_seconds',
    'Booking creation latency',
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0]
)

booking_version_conflicts = Counter(
    'booking_version_conflicts_total',
    'Seat reservations retried because a concurrent booking committed first'
)

booking_transitions = Counter(
    'booking_transitions_total',
    'Booking state transitions',
    ['transition']  # confirmed, cancelled, expired, deleted
)

# Reconciliation metrics
expired_bookings_cleaned = Counter(
    'expired_bookings_cleaned_total',
    'Unpaid bookings deleted by the cleanup sweep'
)

payment_discrepancies = Gauge(
    'payment_discrepancies',
    'Orphan payments found by the last discrepancy check'
)

# External collaborators
gateway_errors = Counter(
    'gateway_errors_total',
    'Payment gateway call failures',
    ['operation']
)

notification_failures = Counter(
    'notification_failures_total',
    'Notifications that could not be delivered',
    ['kind']  # confirmation, alert
)


def metrics_endpoint() -> Response:
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


def record_booking_attempt(status: str):
    """Record booking attempt. Status: success, conflict, error"""
    booking_attempts.labels(status=status).inc()


def record_transition(transition: str):
    booking_transitions.labels(transition=transition).inc()


def record_gateway_error(operation: str):
    gateway_errors.labels(operation=operation).inc()


def record_notification_failure(kind: str):
    notification_failures.labels(kind=kind).inc()
