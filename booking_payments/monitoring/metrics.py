"""
Prometheus metrics for booking payment monitoring.

Tracks:
- Webhook events by type and outcome
- Reconciliation outcomes and anomalies
- Idempotency hits
- Checkout session requests
- Stripe API errors and circuit breaker state
- Sweep repairs
"""
from prometheus_client import Counter, Gauge, Histogram

# Webhook metrics
webhook_events_received_total = Counter(
    "webhook_events_received_total",
    "Total webhook events received",
    ["event_type"],
)

webhook_events_processed_total = Counter(
    "webhook_events_processed_total",
    "Total webhook events processed",
    ["event_type", "status"],  # reconciled, duplicate, ignored, booking_not_found, ...
)

webhook_rejections_total = Counter(
    "webhook_rejections_total",
    "Total webhook deliveries rejected during verification",
    ["reason"],  # signature_invalid, payload_malformed, timestamp_expired
)

webhook_processing_duration_seconds = Histogram(
    "webhook_processing_duration_seconds",
    "Webhook processing duration in seconds",
    ["event_type"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

# Reconciliation metrics
reconciliation_outcomes_total = Counter(
    "reconciliation_outcomes_total",
    "Reconciliation outcomes",
    ["status"],
)

reconciliation_anomalies_total = Counter(
    "reconciliation_anomalies_total",
    "Anomaly records written for manual follow-up",
    ["kind"],
)

booking_update_retries_total = Counter(
    "booking_update_retries_total",
    "Booking payment status update attempts that failed and were retried",
)

# Idempotency metrics
idempotency_hits_total = Counter(
    "idempotency_hits_total",
    "Webhook events recognised as already processed",
    ["source"],  # redis, database
)

# Checkout metrics
checkout_sessions_total = Counter(
    "checkout_sessions_total",
    "Checkout session requests",
    ["status"],  # created, invalid, provider_error
)

# Stripe API metrics
stripe_api_errors_total = Counter(
    "stripe_api_errors_total",
    "Total Stripe API errors",
    ["error_type"],  # transient, permanent, rate_limit
)

stripe_api_duration_seconds = Histogram(
    "stripe_api_duration_seconds",
    "Stripe API call duration in seconds",
    ["operation"],
    buckets=(0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0),
)

stripe_circuit_breaker_state = Gauge(
    "stripe_circuit_breaker_state",
    "Stripe circuit breaker state (0=closed, 1=open, 2=half_open)",
)

# Sweep metrics
sweep_bookings_repaired_total = Counter(
    "sweep_bookings_repaired_total",
    "Bookings whose payment status was repaired by the sweep",
)

sweep_processed_events_pruned_total = Counter(
    "sweep_processed_events_pruned_total",
    "Processed event markers pruned after the retention window",
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_webhook_event(event_type: str, status: str, duration_seconds: float) -> None:
        """Record webhook event processing."""
        webhook_events_received_total.labels(event_type=event_type).inc()
        webhook_events_processed_total.labels(event_type=event_type, status=status).inc()
        webhook_processing_duration_seconds.labels(event_type=event_type).observe(
            duration_seconds
        )

    @staticmethod
    def record_webhook_rejection(reason: str) -> None:
        webhook_rejections_total.labels(reason=reason).inc()

    @staticmethod
    def record_reconciliation(status: str) -> None:
        reconciliation_outcomes_total.labels(status=status).inc()

    @staticmethod
    def record_anomaly(kind: str) -> None:
        reconciliation_anomalies_total.labels(kind=kind).inc()

    @staticmethod
    def record_booking_update_retry() -> None:
        booking_update_retries_total.inc()

    @staticmethod
    def record_idempotency_hit(source: str) -> None:
        """Record an already-processed event."""
        idempotency_hits_total.labels(source=source).inc()

    @staticmethod
    def record_checkout_session(status: str) -> None:
        checkout_sessions_total.labels(status=status).inc()

    @staticmethod
    def record_stripe_api_call(operation: str, duration_seconds: float) -> None:
        stripe_api_duration_seconds.labels(operation=operation).observe(duration_seconds)

    @staticmethod
    def record_stripe_api_error(error_type: str) -> None:
        """Record Stripe API error."""
        stripe_api_errors_total.labels(error_type=error_type).inc()

    @staticmethod
    def set_circuit_breaker_state(state: str) -> None:
        """Set circuit breaker state."""
        state_map = {"closed": 0, "open": 1, "half_open": 2}
        stripe_circuit_breaker_state.set(state_map.get(state, 0))

    @staticmethod
    def record_sweep(repaired: int, pruned: int) -> None:
        sweep_bookings_repaired_total.inc(repaired)
        sweep_processed_events_pruned_total.inc(pruned)


# Export singleton instance
metrics = MetricsCollector()
