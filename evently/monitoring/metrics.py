"""
Prometheus metrics for the registration engine.

Tracks:
- Registration operations by outcome
- Atomic seat reservations and releases
- Settlement deliveries by outcome, including overbooked settlements
- Notification failures
- Store retries
- Counter audit discrepancies
"""
from prometheus_client import Counter, Gauge, Histogram

# HTTP metrics
http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "route", "status_code"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

# Registration metrics
registration_operations_total = Counter(
    "registration_operations_total",
    "Total registration engine operations",
    ["operation", "outcome"],  # operation: register, approve, reject, unregister
)

registration_operation_duration_seconds = Histogram(
    "registration_operation_duration_seconds",
    "Registration engine operation duration in seconds",
    ["operation"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

# Seat counter metrics
seat_reservations_total = Counter(
    "seat_reservations_total",
    "Atomic seat reservation attempts",
    ["result"],  # reserved, capacity_exceeded, not_found
)

seats_released_total = Counter(
    "seats_released_total",
    "Seats released back to events",
)

# Settlement metrics
settlements_processed_total = Counter(
    "settlements_processed_total",
    "Settlement deliveries processed",
    ["outcome"],  # completed, duplicate, failed, overbooked, unchanged, ignored
)

settlement_processing_duration_seconds = Histogram(
    "settlement_processing_duration_seconds",
    "Settlement processing duration in seconds",
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0),
)

overbooked_settlements_open = Gauge(
    "overbooked_settlements_open",
    "Completed payments still waiting for operator resolution",
)

# Notification metrics
notification_failures_total = Counter(
    "notification_failures_total",
    "Best-effort notifications that failed or timed out",
    ["kind"],
)

notifications_published_total = Counter(
    "notifications_published_total",
    "Notifications handed to the external publisher",
    ["kind"],
)

# Store metrics
store_retries_total = Counter(
    "store_retries_total",
    "Units of work retried after a transient store failure",
    ["operation"],
)

# Counter audit metrics
counter_audit_discrepancies = Gauge(
    "counter_audit_discrepancies",
    "Events whose cached attendee counter disagrees with source rows",
)

counter_audit_last_run_timestamp = Gauge(
    "counter_audit_last_run_timestamp",
    "Timestamp of last counter audit sweep",
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_http_request(
        method: str, route: str, status_code: int, duration_seconds: float
    ) -> None:
        """Record a served HTTP request."""
        http_request_duration_seconds.labels(
            method=method, route=route, status_code=str(status_code)
        ).observe(duration_seconds)

    @staticmethod
    def record_registration_operation(
        operation: str, outcome: str, duration_seconds: float
    ) -> None:
        """Record a registration engine operation."""
        registration_operations_total.labels(operation=operation, outcome=outcome).inc()
        registration_operation_duration_seconds.labels(operation=operation).observe(
            duration_seconds
        )

    @staticmethod
    def record_seat_reservation(result: str) -> None:
        """Record an atomic reservation attempt."""
        seat_reservations_total.labels(result=result).inc()

    @staticmethod
    def record_seats_released(seats: int) -> None:
        seats_released_total.inc(seats)

    @staticmethod
    def record_settlement(outcome: str, duration_seconds: float) -> None:
        """Record a settlement delivery."""
        settlements_processed_total.labels(outcome=outcome).inc()
        settlement_processing_duration_seconds.observe(duration_seconds)

    @staticmethod
    def set_overbooked_open(count: int) -> None:
        overbooked_settlements_open.set(count)

    @staticmethod
    def record_notification_failure(kind: str) -> None:
        notification_failures_total.labels(kind=kind).inc()

    @staticmethod
    def record_notification_published(kind: str) -> None:
        notifications_published_total.labels(kind=kind).inc()

    @staticmethod
    def record_store_retry(operation: str) -> None:
        store_retries_total.labels(operation=operation).inc()

    @staticmethod
    def set_counter_audit_result(drifted_events: int, timestamp: float) -> None:
        """Record the outcome of a counter audit sweep."""
        counter_audit_discrepancies.set(drifted_events)
        counter_audit_last_run_timestamp.set(timestamp)


# Export singleton instance
metrics = MetricsCollector()
