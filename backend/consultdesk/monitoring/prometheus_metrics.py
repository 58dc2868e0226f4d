"""
Prometheus metrics for the consultdesk backend.

Service timings come from ``@BaseService.measure_operation``. Payment
transitions, webhook deliveries, meeting provisioning and outbox delivery
are counted by the code that owns them.
"""

from typing import Optional, cast

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

# Private registry; tests import the app many times
REGISTRY = CollectorRegistry()

http_request_duration_seconds = Histogram(
    "consultdesk_http_request_duration_seconds",
    "HTTP request latency by route template",
    ["method", "endpoint", "status_code"],
    registry=REGISTRY,
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

service_operation_duration_seconds = Histogram(
    "consultdesk_service_operation_duration_seconds",
    "Duration of measured service operations",
    ["service", "operation"],
    registry=REGISTRY,
    buckets=(0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

service_operations_total = Counter(
    "consultdesk_service_operations_total",
    "Measured service operations by result",
    ["service", "operation", "status", "error_type"],
    registry=REGISTRY,
)

payment_transitions_total = Counter(
    "consultdesk_payment_transitions_total",
    "Payment transaction transitions (completion, failure, refund) by outcome",
    ["transition", "outcome"],
    registry=REGISTRY,
)

webhook_events_total = Counter(
    "consultdesk_webhook_events_total",
    "Gateway webhook deliveries by event type and outcome",
    ["event_type", "outcome"],
    registry=REGISTRY,
)

meeting_links_total = Counter(
    "consultdesk_meeting_links_total",
    "Meeting link creation attempts by platform and outcome",
    ["platform", "outcome"],
    registry=REGISTRY,
)

outbox_delivery_attempts_total = Counter(
    "consultdesk_outbox_delivery_attempts_total",
    "Notification outbox delivery attempts",
    ["event_type"],
    registry=REGISTRY,
)

outbox_deliveries_total = Counter(
    "consultdesk_outbox_deliveries_total",
    "Notification outbox rows reaching a terminal status",
    ["event_type", "status"],
    registry=REGISTRY,
)


class PrometheusMetrics:
    """Thin recording facade over the module-level collectors."""

    @staticmethod
    def record_http_request(method: str, endpoint: str, duration: float, status_code: int) -> None:
        http_request_duration_seconds.labels(
            method=method, endpoint=endpoint, status_code=str(status_code)
        ).observe(duration)

    @staticmethod
    def record_service_operation(
        service: str,
        operation: str,
        duration: float,
        status: str = "success",
        error_type: Optional[str] = None,
    ) -> None:
        service_operation_duration_seconds.labels(service=service, operation=operation).observe(
            duration
        )
        service_operations_total.labels(
            service=service,
            operation=operation,
            status=status,
            error_type=error_type or "",
        ).inc()

    @staticmethod
    def record_payment_transition(transition: str, outcome: str) -> None:
        """``outcome`` is applied, noop or rejected."""
        payment_transitions_total.labels(transition=transition, outcome=outcome).inc()

    @staticmethod
    def record_webhook_event(event_type: str, outcome: str) -> None:
        webhook_events_total.labels(event_type=event_type, outcome=outcome).inc()

    @staticmethod
    def record_meeting_link(platform: str, outcome: str) -> None:
        """``outcome`` is created or a MeetingErrorKind value."""
        meeting_links_total.labels(platform=platform, outcome=outcome).inc()

    @staticmethod
    def record_notification_attempt(event_type: str) -> None:
        outbox_delivery_attempts_total.labels(event_type=event_type).inc()

    @staticmethod
    def record_notification_outcome(event_type: str, status: str) -> None:
        outbox_deliveries_total.labels(event_type=event_type, status=status).inc()

    @staticmethod
    def get_metrics() -> bytes:
        return cast(bytes, generate_latest(REGISTRY))

    @staticmethod
    def get_content_type() -> str:
        return cast(str, CONTENT_TYPE_LATEST)


prometheus_metrics = PrometheusMetrics()
