"""Ordered fallback execution across interchangeable providers.

``FallbackExecutor`` is the single place where retry, backoff, per-attempt
timeout and last-resort caching happen.  Callers describe a use case as an
ordered list of zero-argument coroutine functions (one per provider) and the
executor tries them strictly one at a time, in priority order, until one
succeeds.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Hashable, List, Optional, Sequence, TypeVar, Union

from docsmith.core.cache import ResultCache
from docsmith.core.data_models import ChainResult
from docsmith.core.error_recovery import (
    AllProvidersExhausted,
    ProviderTimeout,
    ProviderUnavailable,
    QuotaExceeded,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Failures that retrying the same provider cannot fix
NON_RETRYABLE_ERRORS = (ProviderUnavailable, QuotaExceeded)


@dataclass(frozen=True)
class Operation(Generic[T]):
    """One provider attempt: a label for logs plus a zero-argument coroutine function."""

    label: str
    call: Callable[[], Awaitable[T]]

    async def __call__(self) -> T:
        return await self.call()


OperationLike = Union[Operation, Callable[[], Awaitable[Any]]]


class FallbackExecutor:
    """Runs an ordered chain of operations with retries, timeouts and a TTL cache."""

    def __init__(
        self,
        cache: Optional[ResultCache] = None,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
    ) -> None:
        """Initialize the executor.

        Args:
            cache: Shared TTL cache used for last-resort fallback (optional)
            base_delay: Base delay between retries in seconds
            max_delay: Maximum delay between retries in seconds
        """
        self.cache = cache
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.logger = logging.getLogger(self.__class__.__name__)

    @staticmethod
    def _normalize(operations: Sequence[OperationLike]) -> List[Operation]:
        chain: List[Operation] = []
        for index, operation in enumerate(operations):
            if isinstance(operation, Operation):
                chain.append(operation)
            else:
                chain.append(Operation(label=f"provider-{index + 1}", call=operation))
        return chain

    def _calculate_delay(self, attempt: int, exponential_backoff: bool) -> float:
        """Calculate delay after a failed attempt (zero-based)."""
        if exponential_backoff:
            delay = self.base_delay * (2**attempt)
        else:
            delay = self.base_delay
        return min(delay, self.max_delay)

    async def execute(
        self,
        operations: Sequence[OperationLike],
        *,
        max_retries: int = 3,
        timeout: float = 10.0,
        exponential_backoff: bool = True,
        cache_results: bool = True,
        cache_key: Optional[Hashable] = None,
    ) -> ChainResult[Any]:
        """Execute ``operations`` in order until one succeeds.

        Args:
            operations: Ordered operations, highest priority first
            max_retries: Retries per operation; each gets ``max_retries + 1`` attempts
            timeout: Per-attempt timeout in seconds
            exponential_backoff: Double the delay after every failed attempt
            cache_results: Store successes and fall back to the cache on exhaustion
            cache_key: Key identifying this request in the cache

        Returns:
            ChainResult with the winning provider's data

        Raises:
            ProviderUnavailable: If ``operations`` is empty
            AllProvidersExhausted: If every attempt failed and no cached value is live
        """
        chain = self._normalize(operations)
        if not chain:
            raise ProviderUnavailable("No providers configured for this request")

        use_cache = cache_results and self.cache is not None and self.cache.enabled
        if use_cache and cache_key is None:
            self.logger.warning("Caching requested without a cache key; caching disabled for this call")
            use_cache = False

        errors: List[BaseException] = []
        for index, operation in enumerate(chain):
            for attempt in range(max_retries + 1):
                try:
                    # wait_for cancels the pending call when the timeout wins
                    data = await asyncio.wait_for(operation.call(), timeout)
                except asyncio.TimeoutError:
                    error: BaseException = ProviderTimeout(operation.label, timeout)
                except Exception as exc:
                    error = exc
                else:
                    if use_cache:
                        self.cache.set((cache_key, index), data, operation.label)
                    if index > 0 or attempt > 0:
                        self.logger.info(
                            "%s succeeded on attempt %d after %d earlier failures",
                            operation.label,
                            attempt + 1,
                            len(errors),
                        )
                    return ChainResult(data=data, provider_label=operation.label)

                errors.append(error)
                self.logger.warning(
                    "%s attempt %d/%d failed: %s",
                    operation.label,
                    attempt + 1,
                    max_retries + 1,
                    error,
                )

                if isinstance(error, NON_RETRYABLE_ERRORS):
                    self.logger.debug("Skipping remaining retries for %s", operation.label)
                    break
                if attempt < max_retries:
                    await asyncio.sleep(self._calculate_delay(attempt, exponential_backoff))

        if use_cache:
            for index in range(len(chain)):
                entry = self.cache.get((cache_key, index))
                if entry is not None:
                    self.logger.warning(
                        "All providers failed; serving cached result from %s",
                        entry.provider_label,
                    )
                    return ChainResult(
                        data=entry.data,
                        provider_label=entry.provider_label,
                        from_cache=True,
                    )

        self.logger.error("All %d providers failed (%d attempts)", len(chain), len(errors))
        raise AllProvidersExhausted(errors)
