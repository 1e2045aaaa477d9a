"""Async retry decorator with exponential backoff."""

from __future__ import annotations

from bandera_service.utils.retry.decorator import retry
from bandera_service.utils.retry.exceptions import RetryError, RetryStatistics
from bandera_service.utils.retry.strategies import RetryStrategy

__all__ = ["RetryError", "RetryStatistics", "RetryStrategy", "retry"]
