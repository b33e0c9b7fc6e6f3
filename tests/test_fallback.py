"""Tests for the fallback executor."""

import asyncio
import logging
from unittest.mock import AsyncMock, patch

import pytest

from docsmith.core.cache import ResultCache
from docsmith.core.error_recovery import (
    AllProvidersExhausted,
    ProviderTimeout,
    ProviderUnavailable,
    QuotaExceeded,
)
from docsmith.core.fallback import FallbackExecutor, Operation


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def executor() -> FallbackExecutor:
    return FallbackExecutor(cache=ResultCache(), base_delay=0)


class TestOperation:
    """Tests for the Operation wrapper."""

    @pytest.mark.asyncio
    async def test_call_delegates(self):
        """Test calling an operation awaits the wrapped coroutine function."""
        call = AsyncMock(return_value=42)
        operation = Operation(label="answer", call=call)
        assert await operation() == 42
        call.assert_awaited_once()


class TestFallbackExecutor:
    """Tests for FallbackExecutor.execute."""

    @pytest.mark.asyncio
    async def test_first_provider_wins(self, executor):
        """Test later providers are never invoked when the first succeeds."""
        first = AsyncMock(return_value="one")
        second = AsyncMock(return_value="two")

        result = await executor.execute(
            [Operation("first", first), Operation("second", second)], cache_key="k"
        )

        assert result.data == "one"
        assert result.provider_label == "first"
        assert result.from_cache is False
        second.assert_not_called()

    @pytest.mark.asyncio
    async def test_failing_provider_falls_through(self, executor):
        """Test a failing provider is retried max_retries + 1 times, then the next one wins."""
        failing = AsyncMock(side_effect=RuntimeError("boom"))
        working = AsyncMock(return_value="ok")

        result = await executor.execute(
            [Operation("A", failing), Operation("B", working)],
            max_retries=2,
            cache_key="scenario-a",
        )

        assert result.provider_label == "B"
        assert result.data == "ok"
        assert failing.await_count == 3
        assert working.await_count == 1

    @pytest.mark.asyncio
    async def test_provider_k_wins(self, executor):
        """Test the k-th provider wins and providers after it are untouched."""
        calls = []

        def make(index, succeed):
            async def call():
                calls.append(index)
                if not succeed:
                    raise RuntimeError(f"provider {index} down")
                return index

            return Operation(f"p{index}", call)

        operations = [make(0, False), make(1, False), make(2, True), make(3, True)]
        result = await executor.execute(operations, max_retries=1, cache_key="k")

        assert result.data == 2
        assert calls == [0, 0, 1, 1, 2]

    @pytest.mark.asyncio
    async def test_exhaustion_lists_every_error(self, executor):
        """Test exhaustion raises with every underlying error in attempt order."""
        first = AsyncMock(side_effect=RuntimeError("first down"))
        second = AsyncMock(side_effect=ValueError("second broken"))

        with pytest.raises(AllProvidersExhausted) as exc_info:
            await executor.execute(
                [Operation("a", first), Operation("b", second)],
                max_retries=1,
                cache_results=False,
            )

        assert exc_info.value.messages == [
            "first down",
            "first down",
            "second broken",
            "second broken",
        ]
        assert "All providers failed after retries" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_empty_chain(self, executor):
        """Test an empty chain raises ProviderUnavailable, not exhaustion."""
        with pytest.raises(ProviderUnavailable):
            await executor.execute([], cache_key="k")

    @pytest.mark.asyncio
    async def test_timeout_counts_as_failure(self, executor):
        """Test an attempt exceeding the timeout is cancelled and recorded."""
        cancelled = asyncio.Event()

        async def slow():
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        with pytest.raises(AllProvidersExhausted) as exc_info:
            await executor.execute(
                [Operation("slow", slow)], max_retries=0, timeout=0.01, cache_results=False
            )

        assert isinstance(exc_info.value.errors[0], ProviderTimeout)
        assert "slow timed out" in exc_info.value.messages[0]
        assert cancelled.is_set()

    @pytest.mark.asyncio
    async def test_non_retryable_errors_skip_retries(self, executor):
        """Test quota and configuration errors move straight to the next provider."""
        quota = AsyncMock(side_effect=QuotaExceeded("no units left"))
        working = AsyncMock(return_value="fallback")

        result = await executor.execute(
            [Operation("youtube", quota), Operation("web", working)], max_retries=3, cache_key="k"
        )

        assert result.provider_label == "web"
        assert quota.await_count == 1

    @pytest.mark.asyncio
    async def test_bare_callables_get_labels(self, executor):
        """Test plain coroutine functions are labelled by position."""
        failing = AsyncMock(side_effect=RuntimeError("down"))
        working = AsyncMock(return_value="ok")

        result = await executor.execute([failing, working], max_retries=0, cache_key="k")

        assert result.provider_label == "provider-2"

    @pytest.mark.asyncio
    async def test_serves_cache_after_exhaustion(self):
        """Test a live cached value is returned when every provider fails."""
        executor = FallbackExecutor(cache=ResultCache(ttl=60), base_delay=0)
        healthy = AsyncMock(return_value=["cached item"])
        await executor.execute([Operation("serpapi", healthy)], cache_key="search:q:5")

        broken = AsyncMock(side_effect=RuntimeError("outage"))
        result = await executor.execute(
            [Operation("serpapi", broken)], max_retries=0, cache_key="search:q:5"
        )

        assert result.from_cache is True
        assert result.data == ["cached item"]
        assert result.provider_label == "serpapi"

    @pytest.mark.asyncio
    async def test_expired_cache_is_not_served(self):
        """Test an expired entry never satisfies the fallback."""
        clock = FakeClock()
        executor = FallbackExecutor(cache=ResultCache(ttl=60, clock=clock), base_delay=0)
        await executor.execute([Operation("p", AsyncMock(return_value=1))], cache_key="k")

        clock.now = 61
        with pytest.raises(AllProvidersExhausted):
            await executor.execute(
                [Operation("p", AsyncMock(side_effect=RuntimeError("down")))],
                max_retries=0,
                cache_key="k",
            )

    @pytest.mark.asyncio
    async def test_missing_cache_key_disables_caching(self, executor, caplog):
        """Test caching without a key logs a warning and stores nothing."""
        with caplog.at_level(logging.WARNING):
            await executor.execute([Operation("p", AsyncMock(return_value=1))], cache_results=True)

        assert "without a cache key" in caplog.text
        assert len(executor.cache) == 0

    @pytest.mark.asyncio
    async def test_no_cache_no_warning(self, caplog):
        """Test an executor without a cache does not warn about a missing key."""
        executor = FallbackExecutor(base_delay=0)
        with caplog.at_level(logging.WARNING):
            result = await executor.execute([Operation("p", AsyncMock(return_value=1))])

        assert result.data == 1
        assert "without a cache key" not in caplog.text

    @pytest.mark.asyncio
    async def test_backoff_sleeps_between_attempts(self):
        """Test retries sleep base then 2*base, with no sleep after the last attempt."""
        executor = FallbackExecutor(base_delay=0.5)
        failing = AsyncMock(side_effect=RuntimeError("down"))

        with patch("docsmith.core.fallback.asyncio.sleep", new_callable=AsyncMock) as sleep:
            with pytest.raises(AllProvidersExhausted):
                await executor.execute(
                    [Operation("p", failing)], max_retries=2, exponential_backoff=True, cache_results=False
                )

        assert failing.await_count == 3
        assert [c.args for c in sleep.await_args_list] == [(0.5,), (1.0,)]

    @pytest.mark.asyncio
    async def test_fixed_delay_without_backoff(self):
        """Test retries sleep base_delay each time when backoff is off."""
        executor = FallbackExecutor(base_delay=0.5)
        flaky = AsyncMock(side_effect=[RuntimeError("a"), RuntimeError("b"), "ok"])

        with patch("docsmith.core.fallback.asyncio.sleep", new_callable=AsyncMock) as sleep:
            result = await executor.execute([Operation("p", flaky)], max_retries=2, exponential_backoff=False)

        assert result.data == "ok"
        assert [c.args for c in sleep.await_args_list] == [(0.5,), (0.5,)]

    def test_calculate_delay(self):
        """Test exponential backoff is capped at max_delay."""
        executor = FallbackExecutor(base_delay=1.0, max_delay=5.0)
        assert executor._calculate_delay(0, True) == 1.0
        assert executor._calculate_delay(2, True) == 4.0
        assert executor._calculate_delay(5, True) == 5.0
        assert executor._calculate_delay(3, False) == 1.0
