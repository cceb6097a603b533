"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Booking state machine
booking_transitions = Counter(
    'booking_transitions_total',
    'Booking state machine transitions',
    ['transition', 'outcome']  # book/cancel/check_in/..., success/<error code>
)

session_unit_latency = Histogram(
    'session_unit_latency_seconds',
    'Time spent inside a per-session atomic unit (lock wait included)',
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0]
)

session_unit_retries = Counter(
    'session_unit_retries_total',
    'Atomic unit retries due to session version conflicts'
)

# Waitlist
waitlist_promotions = Counter(
    'waitlist_promotions_total',
    'Waitlist promotion engine results',
    ['result']  # promoted, skipped, empty
)

# Credit ledger
credit_operations = Counter(
    'credit_ledger_operations_total',
    'Credit pack ledger operations',
    ['operation']  # deduct, refund
)

# Post-commit side effects
signal_dispatch_failures = Counter(
    'signal_dispatch_failures_total',
    'Deferred notification/activity signals that failed to deliver',
    ['kind']
)


def metrics_endpoint() -> Response:
    """
    Prometheus metrics endpoint.

    Usage:
        @app.get("/metrics")
        def metrics():
            return metrics_endpoint()
    """
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


def record_transition(transition: str, outcome: str = "success"):
    booking_transitions.labels(transition=transition, outcome=outcome).inc()


def record_promotion(result: str):
    """Result: promoted, skipped, empty"""
    waitlist_promotions.labels(result=result).inc()


def record_credit_operation(operation: str):
    credit_operations.labels(operation=operation).inc()


def record_signal_failure(kind: str):
    signal_dispatch_failures.labels(kind=kind).inc()
