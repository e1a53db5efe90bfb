"""
Metrics Collection with Prometheus.

Exposes reconciliation and system metrics for monitoring.
"""

from enum import Enum

from prometheus_client import Counter, Gauge, Histogram, Info

from app.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    OUTCOME = "outcome"
    PROVIDER = "provider"
    ERROR_TYPE = "error_type"


class ProvisioningMetrics:
    """
    Centralized metrics for the billing and provisioning API.

    Covers:
    - HTTP requests (rate, duration, in progress)
    - Webhook events by kind and resulting action
    - Provisioning, polling, cancellation and sync outcomes
    - Outbound provider calls (latency and failure classification)
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        # ====================================================================
        # Service Info
        # ====================================================================
        self.service_info = Info(
            "vps_billing_service",
            "Service information",
        )
        self.service_info.info(
            {
                "version": settings.api_version,
                "service_name": settings.service_name,
            }
        )

        # ====================================================================
        # HTTP Metrics
        # ====================================================================
        self.http_requests_total = Counter(
            "vps_billing_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "vps_billing_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self.http_requests_in_progress = Gauge(
            "vps_billing_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
        )

        # ====================================================================
        # Reconciliation Metrics
        # ====================================================================
        self.webhook_events_total = Counter(
            "vps_billing_webhook_events_total",
            "Webhook events processed by kind and resulting action",
            ["kind", "action"],
        )

        self.provisioning_total = Counter(
            "vps_billing_provisioning_total",
            "Provisioning orchestrator outcomes",
            [MetricLabels.OUTCOME],
        )

        self.poller_checks_total = Counter(
            "vps_billing_poller_checks_total",
            "Status poller checks by outcome",
            [MetricLabels.OUTCOME],
        )

        self.cancellation_steps_total = Counter(
            "vps_billing_cancellation_steps_total",
            "Cancellation steps by step name and success",
            ["step", "success"],
        )

        self.subscription_syncs_total = Counter(
            "vps_billing_subscription_syncs_total",
            "Subscription sync results",
            [MetricLabels.OUTCOME],
        )

        # ====================================================================
        # Provider Metrics
        # ====================================================================
        self.provider_calls_total = Counter(
            "vps_billing_provider_calls_total",
            "Outbound provider calls by outcome (success, transient, fatal)",
            [MetricLabels.PROVIDER, MetricLabels.OPERATION, MetricLabels.OUTCOME],
        )

        self.provider_call_duration_seconds = Histogram(
            "vps_billing_provider_call_duration_seconds",
            "Outbound provider call duration in seconds",
            [MetricLabels.PROVIDER, MetricLabels.OPERATION],
            buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "vps_billing_errors_total",
            "Total errors by type",
            [MetricLabels.ERROR_TYPE, MetricLabels.OPERATION],
        )

    # ========================================================================
    # Helper Methods
    # ========================================================================

    def record_http_request(
        self, endpoint: str, method: str, status_code: int, duration: float
    ) -> None:
        """Record HTTP request metrics."""
        self.http_requests_total.labels(
            endpoint=endpoint, method=method, status_code=status_code
        ).inc()
        self.http_request_duration_seconds.labels(endpoint=endpoint, method=method).observe(
            duration
        )

    def record_webhook_event(self, kind: str, action: str) -> None:
        """Record a processed webhook event."""
        self.webhook_events_total.labels(kind=kind, action=action).inc()

    def record_provisioning(self, outcome: str) -> None:
        """Record a provisioning orchestrator outcome."""
        self.provisioning_total.labels(outcome=outcome).inc()

    def record_poller_check(self, outcome: str) -> None:
        """Record one status poller check."""
        self.poller_checks_total.labels(outcome=outcome).inc()

    def record_cancellation_step(self, step: str, success: bool) -> None:
        """Record the result of one cancellation step."""
        self.cancellation_steps_total.labels(step=step, success=str(success)).inc()

    def record_subscription_sync(self, outcome: str) -> None:
        """Record a subscription sync result."""
        self.subscription_syncs_total.labels(outcome=outcome).inc()

    def record_provider_call(
        self, provider: str, operation: str, outcome: str, duration: float
    ) -> None:
        """Record an outbound provider call."""
        self.provider_calls_total.labels(
            provider=provider, operation=operation, outcome=outcome
        ).inc()
        self.provider_call_duration_seconds.labels(
            provider=provider, operation=operation
        ).observe(duration)

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = ProvisioningMetrics()
