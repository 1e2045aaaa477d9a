"""Tests for the async retry decorator."""

from __future__ import annotations

import pytest

from bandera_service.infra.metrics.prometheus import REGISTRY
from bandera_service.utils.retry import RetryError, RetryStrategy, retry


@pytest.mark.unit
class TestRetryDecorator:
    """Tests for retry attempts, filtering and exhaustion."""

    @pytest.mark.asyncio
    async def test_returns_after_transient_failures(self) -> None:
        calls = 0

        @retry(max_attempts=3, initial_delay=0.001, exceptions=(ConnectionError,))
        async def flaky() -> str:
            nonlocal calls
            calls += 1
            if calls < 3:
                raise ConnectionError("reset")
            return "ok"

        assert await flaky() == "ok"
        assert calls == 3

    @pytest.mark.asyncio
    async def test_wraps_last_error_when_exhausted(self) -> None:
        @retry(max_attempts=2, initial_delay=0.001, exceptions=(ConnectionError,))
        async def always_down() -> None:
            raise ConnectionError("refused")

        with pytest.raises(RetryError) as exc_info:
            await always_down()

        assert exc_info.value.attempts == 2
        assert isinstance(exc_info.value.last_exception, ConnectionError)
        assert str(exc_info.value) == "Failed after 2 attempts. Last error: refused"

    @pytest.mark.asyncio
    async def test_non_matching_exception_propagates(self) -> None:
        calls = 0

        @retry(max_attempts=5, initial_delay=0.001, exceptions=(ConnectionError,))
        async def broken() -> None:
            nonlocal calls
            calls += 1
            raise KeyError("bug")

        with pytest.raises(KeyError):
            await broken()
        assert calls == 1

    @pytest.mark.asyncio
    async def test_stop_after_delay(self) -> None:
        calls = 0

        @retry(
            max_attempts=10,
            initial_delay=0.02,
            jitter=False,
            exceptions=(ConnectionError,),
            stop_after_delay=0.01,
        )
        async def down() -> None:
            nonlocal calls
            calls += 1
            raise ConnectionError

        with pytest.raises(RetryError):
            await down()
        assert calls == 2


@pytest.mark.unit
class TestRetryMetrics:
    """Retry counters are labelled by operation name."""

    @staticmethod
    def _sample(name: str, labels: dict[str, str]) -> float:
        return REGISTRY.get_sample_value(name, labels) or 0.0

    @pytest.mark.asyncio
    async def test_operation_label_on_recovered_call(self) -> None:
        attempts_before = self._sample(
            "retry_attempts_total", {"operation": "redis.test_get", "attempt_number": "2"}
        )
        success_before = self._sample(
            "retry_success_after_failure_total",
            {"operation": "redis.test_get", "attempts_needed": "2"},
        )
        calls = 0

        @retry(
            max_attempts=3,
            initial_delay=0.001,
            exceptions=(ConnectionError,),
            operation="redis.test_get",
        )
        async def get() -> bytes:
            nonlocal calls
            calls += 1
            if calls == 1:
                raise ConnectionError("reset")
            return b"v"

        assert await get() == b"v"
        assert (
            self._sample(
                "retry_attempts_total",
                {"operation": "redis.test_get", "attempt_number": "2"},
            )
            == attempts_before + 1
        )
        assert (
            self._sample(
                "retry_success_after_failure_total",
                {"operation": "redis.test_get", "attempts_needed": "2"},
            )
            == success_before + 1
        )

    @pytest.mark.asyncio
    async def test_function_name_used_without_operation(self) -> None:
        before = self._sample("retry_exhausted_total", {"operation": "unlabelled_call"})

        @retry(max_attempts=1, initial_delay=0.001, exceptions=(TimeoutError,))
        async def unlabelled_call() -> None:
            raise TimeoutError

        with pytest.raises(RetryError):
            await unlabelled_call()
        assert self._sample("retry_exhausted_total", {"operation": "unlabelled_call"}) == before + 1

    @pytest.mark.asyncio
    async def test_first_try_success_records_nothing(self) -> None:
        before = self._sample(
            "retry_success_after_failure_total",
            {"operation": "redis.test_set", "attempts_needed": "1"},
        )

        @retry(max_attempts=3, operation="redis.test_set")
        async def put() -> bool:
            return True

        assert await put() is True
        assert (
            self._sample(
                "retry_success_after_failure_total",
                {"operation": "redis.test_set", "attempts_needed": "1"},
            )
            == before
        )


@pytest.mark.unit
class TestRetryStrategy:
    def test_rejects_zero_attempts(self) -> None:
        with pytest.raises(ValueError, match="max_attempts"):
            RetryStrategy(max_attempts=0)

    def test_exponential_delay_capped(self) -> None:
        strategy = RetryStrategy(initial_delay=1.0, max_delay=5.0, jitter=False)

        assert strategy.calculate_delay(0) == 1.0
        assert strategy.calculate_delay(2) == 4.0
        assert strategy.calculate_delay(10) == 5.0

    def test_jitter_stays_in_range(self) -> None:
        strategy = RetryStrategy(initial_delay=1.0, jitter_range=(0.5, 1.5))

        for _ in range(20):
            assert 0.5 <= strategy.calculate_delay(0) <= 1.5
