"""Prometheus scrape endpoint."""

from bandera_service.features.metrics.router import router

__all__ = ["router"]
