"""
Prometheus metrics for billing reconciliation.

Exposes:
- HTTP request metrics (count, duration, status codes)
- Reconciliation runs by trigger, lookup method and outcome
- Provider and store call latency
- Fast-path cache write failures
- Webhook events by type and result
"""

import logging
import time
from contextlib import contextmanager

from prometheus_client import Counter, Histogram

logger = logging.getLogger(__name__)

# ==================== HTTP Request Metrics ====================
http_request_count = Counter(
    "http_requests_total",
    "Total number of HTTP requests by method, endpoint and status code",
    ["method", "endpoint", "status_code"],
)

http_request_duration = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds by method and endpoint",
    ["method", "endpoint"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5),
)

# ==================== Reconciliation Metrics ====================
billing_reconciliations = Counter(
    "billing_reconciliations_total",
    "Billing reconciliations by trigger (sync/webhook/manual), lookup method and outcome",
    ["trigger", "method", "outcome"],
)

billing_reconciliation_duration = Histogram(
    "billing_reconciliation_duration_seconds",
    "End-to-end reconciliation latency in seconds by trigger",
    ["trigger"],
    buckets=(0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30),
)

billing_cache_write_failures = Counter(
    "billing_cache_write_failures_total",
    "Fast-path metadata cache writes that failed after the durable write succeeded",
)

# ==================== External Call Metrics ====================
billing_provider_calls = Counter(
    "billing_provider_calls_total",
    "Calls to external billing dependencies by service, operation and status",
    ["service", "operation", "status"],
)

billing_provider_call_duration = Histogram(
    "billing_provider_call_duration_seconds",
    "External call duration in seconds by service and operation",
    ["service", "operation"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 15),
)

# ==================== Webhook Metrics ====================
stripe_webhook_events = Counter(
    "stripe_webhook_events_total",
    "Stripe webhook events by type and result (processed/duplicate/ignored/error)",
    ["event_type", "result"],
)


# ==================== Context Managers & Helpers ====================


def record_http_response(method: str, endpoint: str, status_code: int):
    """Record HTTP response metrics."""
    http_request_count.labels(
        method=method, endpoint=endpoint, status_code=status_code
    ).inc()


@contextmanager
def track_provider_call(service: str, operation: str):
    """Context manager to track an external call (stripe, clerk, supabase)."""
    start_time = time.time()
    status = "success"
    try:
        yield
    except Exception:
        status = "error"
        raise
    finally:
        duration = time.time() - start_time
        billing_provider_call_duration.labels(service=service, operation=operation).observe(
            duration
        )
        billing_provider_calls.labels(service=service, operation=operation, status=status).inc()


@contextmanager
def track_reconciliation(trigger: str):
    """Context manager timing one reconciliation run."""
    start_time = time.time()
    try:
        yield
    finally:
        billing_reconciliation_duration.labels(trigger=trigger).observe(time.time() - start_time)


def record_reconciliation(trigger: str, method: str | None, outcome: str):
    """Record the outcome of a reconciliation run."""
    billing_reconciliations.labels(
        trigger=trigger, method=method or "none", outcome=outcome
    ).inc()


def record_cache_write_failure():
    billing_cache_write_failures.inc()


def record_webhook_event(event_type: str, result: str):
    stripe_webhook_events.labels(event_type=event_type, result=result).inc()
