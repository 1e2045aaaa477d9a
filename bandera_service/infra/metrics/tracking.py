"""Helper functions for tracking operational metrics."""

from __future__ import annotations

import logging

from opentelemetry import trace

from bandera_service.infra.metrics import prometheus

logger = logging.getLogger(__name__)


def current_trace_id() -> str | None:
    """Return the active trace id as a 32-char hex string, if any."""
    span = trace.get_current_span()
    if span and span.get_span_context().is_valid:
        return format(span.get_span_context().trace_id, "032x")
    return None


# ============================================================================
# Cache Tracking
# ============================================================================


def track_cache_lookup(cache_name: str, hit: bool) -> None:
    """Record a cache hit or miss, linking it to the current trace.

    Args:
        cache_name: Backend name ("memory" or "redis")
        hit: Whether the key was found

    Example:
        track_cache_lookup("redis", hit=True)
    """
    counter = prometheus.cache_hits_total if hit else prometheus.cache_misses_total
    trace_id = current_trace_id()
    if trace_id:
        counter.labels(cache_name=cache_name).inc(exemplar={"trace_id": trace_id})
    else:
        counter.labels(cache_name=cache_name).inc()


def track_cache_operation(operation: str, cache_name: str, duration: float) -> None:
    """Record the duration of a cache backend operation."""
    histogram = prometheus.cache_operation_duration_seconds.labels(
        operation=operation, cache_name=cache_name,
    )
    trace_id = current_trace_id()
    if trace_id:
        histogram.observe(duration, exemplar={"trace_id": trace_id})
    else:
        histogram.observe(duration)


def track_cache_error(operation: str, cache_name: str) -> None:
    prometheus.cache_errors_total.labels(operation=operation, cache_name=cache_name).inc()


def track_cache_decode_failure(shape: str) -> None:
    prometheus.cache_decode_failures_total.labels(shape=shape).inc()


def track_cache_invalidation(scope: str) -> None:
    """Track a cache invalidation.

    Args:
        scope: One of "flag", "user", "organization"
    """
    prometheus.cache_invalidations_total.labels(scope=scope).inc()


def track_cache_expired(reason: str, count: int = 1) -> None:
    """Track expired in-memory entries.

    Args:
        reason: "lazy" when dropped on read, "sweep" when dropped by the sweeper
        count: Number of entries removed
    """
    if count > 0:
        prometheus.cache_expired_keys_total.labels(reason=reason).inc(count)


def track_cache_fallback() -> None:
    prometheus.cache_backend_fallbacks_total.inc()


# ============================================================================
# Retry Tracking
# ============================================================================


def track_retry_attempt(operation: str, attempt_number: int) -> None:
    """Track a retry attempt.

    Args:
        operation: Name of the operation being retried
        attempt_number: Current attempt number (1-indexed)

    Example:
        track_retry_attempt("get", 2)
    """
    prometheus.retry_attempts_total.labels(
        operation=operation,
        attempt_number=str(attempt_number),
    ).inc()


def track_retry_exhausted(operation: str) -> None:
    """Track when all retry attempts are exhausted."""
    prometheus.retry_exhausted_total.labels(operation=operation).inc()


def track_retry_success(operation: str, attempts_needed: int) -> None:
    """Track successful operation after retries.

    Args:
        operation: Name of the operation
        attempts_needed: Number of attempts needed to succeed
    """
    prometheus.retry_success_after_failure_total.labels(
        operation=operation,
        attempts_needed=str(attempts_needed),
    ).inc()


# ============================================================================
# Realtime Tracking
# ============================================================================


def update_connection_count(count: int) -> None:
    prometheus.websocket_connections_total.set(count)


def track_message_sent(message_type: str) -> None:
    prometheus.websocket_messages_sent_total.labels(message_type=message_type).inc()


def track_send_failure(message_type: str) -> None:
    prometheus.websocket_send_failures_total.labels(message_type=message_type).inc()


def track_event_dropped(message_type: str) -> None:
    prometheus.websocket_events_dropped_total.labels(message_type=message_type).inc()


def track_broadcast(recipients: int) -> None:
    prometheus.websocket_broadcast_recipients.observe(recipients)


# ============================================================================
# Feature Flag Tracking
# ============================================================================


def track_flag_mutation(operation: str) -> None:
    """Track a feature flag mutation.

    Args:
        operation: Mutation name, e.g. "create", "toggle", "override.create"
    """
    prometheus.feature_flag_mutations_total.labels(operation=operation).inc()
