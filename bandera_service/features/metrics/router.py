"""Prometheus metrics endpoint for observability.

Endpoints:
    GET /metrics - Prometheus scrape endpoint

Metrics Exposed:
    Cache Metrics:
        - cache_hits_total / cache_misses_total - Hit ratio per view shape
        - cache_operation_duration_seconds - Backend latency with exemplars
        - cache_backend_fallbacks_total - Redis to in-memory fallbacks at startup

    Realtime Metrics:
        - websocket_connections_total - Connected subscribers
        - websocket_messages_sent_total / websocket_send_failures_total

    Feature Flag Metrics:
        - feature_flag_mutations_total - Completed mutations by operation
"""

from __future__ import annotations

from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from bandera_service.infra.metrics.prometheus import REGISTRY

router = APIRouter(tags=["observability"])


@router.get("/metrics")
async def metrics() -> Response:
    """Expose Prometheus metrics from the service registry."""
    data = generate_latest(REGISTRY)
    return Response(
        content=data,
        media_type=CONTENT_TYPE_LATEST,
        headers={"Cache-Control": "no-cache, no-store, must-revalidate"},
    )
