"""
Prometheus metrics for payment integrity and dispute monitoring.

Tracks:
- Payment record creation and idempotent replays
- Webhook processing outcomes (including rejected replays)
- Dispute lifecycle transitions and match forfeits
- Classified API errors by code
"""
from prometheus_client import Counter, Histogram

# Payment metrics
payment_records_created_total = Counter(
    "payment_records_created_total",
    "Total payment records created",
    ["payment_method", "currency"],
)

idempotent_replays_total = Counter(
    "idempotent_replays_total",
    "Requests answered with an existing payment record",
    ["operation"],  # deposit, withdrawal
)

# Webhook metrics
webhook_events_processed_total = Counter(
    "webhook_events_processed_total",
    "Total webhook events processed",
    ["event_type", "status"],  # success, duplicate, no_handler, failed
)

webhook_processing_duration_seconds = Histogram(
    "webhook_processing_duration_seconds",
    "Webhook processing duration in seconds",
    ["event_type"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

# Dispute metrics
dispute_transitions_total = Counter(
    "dispute_transitions_total",
    "Dispute status transitions",
    ["from_status", "to_status"],
)

match_resolutions_total = Counter(
    "match_resolutions_total",
    "Matches resolved outside normal play",
    ["outcome", "resolver"],
)

# API error metrics
api_errors_total = Counter(
    "api_errors_total",
    "Errors returned at the API boundary",
    ["code", "status"],
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_payment_record_created(payment_method: str, currency: str) -> None:
        """Record a newly persisted payment record."""
        payment_records_created_total.labels(
            payment_method=payment_method, currency=currency
        ).inc()

    @staticmethod
    def record_idempotent_replay(operation: str) -> None:
        """Record a request answered from an existing record."""
        idempotent_replays_total.labels(operation=operation).inc()

    @staticmethod
    def record_webhook_event(event_type: str, status: str, duration_seconds: float) -> None:
        """Record webhook event processing."""
        webhook_events_processed_total.labels(event_type=event_type, status=status).inc()
        webhook_processing_duration_seconds.labels(event_type=event_type).observe(
            duration_seconds
        )

    @staticmethod
    def record_dispute_transition(from_status: str, to_status: str) -> None:
        """Record a dispute status change."""
        dispute_transitions_total.labels(from_status=from_status, to_status=to_status).inc()

    @staticmethod
    def record_match_resolution(outcome: str, resolved_by: str) -> None:
        """
        Record a forfeit or no-contest resolution.

        ``resolved_by`` may name an individual admin (``admin:<id>``); the
        label only keeps whether an admin or the system acted.
        """
        resolver = "admin" if resolved_by.startswith("admin") else "system"
        match_resolutions_total.labels(outcome=outcome, resolver=resolver).inc()

    @staticmethod
    def record_api_error(code: str | None, status: int) -> None:
        """Record an error response."""
        api_errors_total.labels(code=code or "NONE", status=str(status)).inc()


# Export singleton instance
metrics = MetricsCollector()
