"""Prometheus metrics for monitoring with exemplar support."""

from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

# Custom registry so tests and embedding apps control what is exported
REGISTRY = CollectorRegistry()

# Cache round-trips are expected in the sub-millisecond to tens of ms range
CACHE_LATENCY_BUCKETS = (
    0.0005,
    0.001,
    0.0025,
    0.005,
    0.01,
    0.025,
    0.05,
    0.1,
    0.25,
    0.5,
    1.0,
)

# ============================================================================
# Cache metrics
# ============================================================================

cache_hits_total = Counter(
    "cache_hits_total",
    "Total number of cache hits",
    ["cache_name"],
    registry=REGISTRY,
)

cache_misses_total = Counter(
    "cache_misses_total",
    "Total number of cache misses",
    ["cache_name"],
    registry=REGISTRY,
)

cache_operation_duration_seconds = Histogram(
    "cache_operation_duration_seconds",
    "Cache operation duration in seconds",
    ["operation", "cache_name"],
    buckets=CACHE_LATENCY_BUCKETS,
    registry=REGISTRY,
)

cache_errors_total = Counter(
    "cache_errors_total",
    "Cache backend faults converted to a miss or no-op",
    ["operation", "cache_name"],
    registry=REGISTRY,
)

cache_decode_failures_total = Counter(
    "cache_decode_failures_total",
    "Cached payloads that failed to decode and were treated as a miss",
    ["shape"],
    registry=REGISTRY,
)

cache_invalidations_total = Counter(
    "cache_invalidations_total",
    "Total number of cache invalidations by scope",
    ["scope"],
    registry=REGISTRY,
)

cache_expired_keys_total = Counter(
    "cache_expired_keys_total",
    "Entries removed from the in-memory cache after expiry",
    ["reason"],
    registry=REGISTRY,
)

cache_backend_fallbacks_total = Counter(
    "cache_backend_fallbacks_total",
    "Times startup fell back from the shared backend to the in-memory backend",
    registry=REGISTRY,
)

# ============================================================================
# Retry metrics
# ============================================================================

retry_attempts_total = Counter(
    "retry_attempts_total",
    "Total number of retry attempts",
    ["operation", "attempt_number"],
    registry=REGISTRY,
)

retry_exhausted_total = Counter(
    "retry_exhausted_total",
    "Total number of operations that exhausted all retries",
    ["operation"],
    registry=REGISTRY,
)

retry_success_after_failure_total = Counter(
    "retry_success_after_failure_total",
    "Total number of operations that succeeded after retry",
    ["operation", "attempts_needed"],
    registry=REGISTRY,
)

# ============================================================================
# Realtime fanout metrics
# ============================================================================

websocket_connections_total = Gauge(
    "websocket_connections_total",
    "Current number of active WebSocket connections",
    registry=REGISTRY,
)

websocket_messages_sent_total = Counter(
    "websocket_messages_sent_total",
    "Total number of WebSocket messages sent to clients",
    ["message_type"],
    registry=REGISTRY,
)

websocket_send_failures_total = Counter(
    "websocket_send_failures_total",
    "Deliveries to a single connection that raised",
    ["message_type"],
    registry=REGISTRY,
)

websocket_events_dropped_total = Counter(
    "websocket_events_dropped_total",
    "Published events dropped because the dispatch queue was full",
    ["message_type"],
    registry=REGISTRY,
)

websocket_broadcast_recipients = Histogram(
    "websocket_broadcast_recipients",
    "Number of recipients per broadcast message",
    buckets=(1, 5, 10, 25, 50, 100, 250, 500, 1000),
    registry=REGISTRY,
)

# ============================================================================
# Feature flag metrics
# ============================================================================

feature_flag_mutations_total = Counter(
    "feature_flag_mutations_total",
    "Feature flag mutations that completed their store write",
    ["operation"],
    registry=REGISTRY,
)

# ============================================================================
# Application metrics
# ============================================================================

application_info = Gauge(
    "application_info",
    "Application information",
    ["version", "service", "environment"],
    registry=REGISTRY,
)
