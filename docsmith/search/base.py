"""Base class for research source clients.

A source client turns one query into a ``SourceResult``.  Its provider chain
is the source's own API (when it has one) followed by web-search operations
restricted to the source's site, so a dead or rate-limited API still yields
results as long as some web-search provider is configured.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import math
from typing import Any, Awaitable, Callable, List, Optional, Sequence

from docsmith.core.config import Config
from docsmith.core.data_models import RetrievedItem, SourceResult, SourceType
from docsmith.core.deduplication import deduplicate_items
from docsmith.core.error_recovery import ProviderUnavailable
from docsmith.core.fallback import FallbackExecutor, Operation
from docsmith.core.http_client import AsyncHTTPClient
from docsmith.core.scoring import aggregate_quality, score_items
from docsmith.integrations.api_clients import BaseAPIClient
from docsmith.integrations.web_search import WebSearchClient

logger = logging.getLogger(__name__)

SNIPPET_LENGTH = 500


async def gather_isolated(service: str, labels: Sequence[str], calls: Sequence[Awaitable[List[Any]]]) -> List[Any]:
    """Run sub-requests concurrently and flatten the ones that succeeded.

    A failed sub-request is logged and dropped. The first error is raised
    only when every sub-request failed, so the operation still counts as a
    provider failure and the chain moves on.
    """
    outcomes = await asyncio.gather(*calls, return_exceptions=True)
    items: List[Any] = []
    errors: List[Exception] = []
    for label, outcome in zip(labels, outcomes):
        if isinstance(outcome, Exception):
            logger.warning("%s: %s failed: %s", service, label, outcome, extra={"provider": service})
            errors.append(outcome)
        elif isinstance(outcome, BaseException):
            raise outcome
        else:
            items.extend(outcome)
    if errors and len(errors) == len(outcomes):
        raise errors[0]
    return items


def truncate(text: str, length: int = SNIPPET_LENGTH) -> str:
    """Cut ``text`` to ``length`` characters, marking the cut with an ellipsis."""
    text = (text or "").strip()
    if len(text) <= length:
        return text
    return text[: length - 3].rstrip() + "..."


class SourceSearch(BaseAPIClient):
    """Searches one research source through its fallback chain."""

    source_type: SourceType = SourceType.SEARCH
    service = "search"
    # Query sent to web search when the source's own API is unusable
    web_fallback_template: Optional[str] = None

    def __init__(
        self,
        http_client: AsyncHTTPClient,
        executor: Optional[FallbackExecutor] = None,
        web: Optional[WebSearchClient] = None,
        config: Optional[Config] = None,
        api_key: Optional[str] = None,
    ) -> None:
        """Initialize the source client.

        Args:
            http_client: Shared HTTP transport
            executor: Fallback executor (shares the process cache)
            web: Web search client used for site-restricted fallbacks
            config: Application configuration
            api_key: API key override
        """
        super().__init__(http_client, config, api_key=api_key)
        self.executor = executor or FallbackExecutor()
        self.web = web
        self.max_retries = int(self.app_config.get("retry.max_retries", 3))
        self.timeout = float(self.app_config.get("retry.timeout_seconds", 10))

    @property
    def enabled(self) -> bool:
        return self.app_config.is_source_enabled(self.source_type.value)

    def primary_operations(self, query: str, limit: int) -> List[Operation]:
        """Operations backed by the source's own API, highest priority first."""
        return []

    def fallback_queries(self, query: str) -> List[str]:
        """Web search queries that stand in for the source's API."""
        if not self.web_fallback_template:
            return []
        return [self.web_fallback_template.format(query=query)]

    def build_operations(self, query: str, limit: int) -> List[Operation]:
        operations = list(self.primary_operations(query, limit))
        queries = self.fallback_queries(query)
        if queries and self.web is not None:
            operations.extend(self.web_operations(queries, limit))
        return operations

    def web_operations(self, queries: Sequence[str], limit: int) -> List[Operation]:
        """One operation per web provider, each running every query in ``queries``."""
        per_query = max(1, math.ceil(limit / len(queries)))
        chains = [self.web.build_operations(query, per_query) for query in queries]
        if not chains or not chains[0]:
            return []

        operations = []
        for position, head in enumerate(chains[0]):
            calls = [chain[position].call for chain in chains]
            operations.append(
                Operation(label=f"web:{head.label}", call=functools.partial(self._run_web, queries, calls))
            )
        return operations

    async def _run_web(
        self, queries: Sequence[str], calls: Sequence[Callable[[], Awaitable[List[RetrievedItem]]]]
    ) -> List[RetrievedItem]:
        hits = await gather_isolated(self.service, queries, [call() for call in calls])
        items = [self.from_web_item(item) for item in hits]
        return deduplicate_items(items)

    def from_web_item(self, item: RetrievedItem) -> RetrievedItem:
        """Re-label a web search hit as an item of this source."""
        return RetrievedItem(
            title=item.title,
            url=item.url,
            source_type=self.source_type,
            snippet=item.snippet,
            metadata={**item.metadata, "via": "web_search"},
        )

    async def search(self, query: str, limit: int) -> SourceResult:
        """Search this source.

        Args:
            query: Research query
            limit: Maximum number of items to return

        Returns:
            SourceResult with trust-scored items, best first

        Raises:
            ProviderUnavailable: If no provider can serve this source
            AllProvidersExhausted: If every provider failed and nothing is cached
        """
        if limit <= 0:
            return SourceResult(source_type=self.source_type)

        operations = self.build_operations(query, limit)
        if not operations:
            raise ProviderUnavailable(
                f"No providers available for {self.source_type.value}", self.service
            )

        result = await self.executor.execute(
            operations,
            max_retries=self.max_retries,
            timeout=self.timeout,
            cache_results=True,
            cache_key=f"{self.source_type.value}:{query}:{limit}",
        )
        items = score_items(result.data)[:limit]
        quality = aggregate_quality(items)

        self.logger.info(
            "Found %d %s items via %s%s (quality %.2f)",
            len(items),
            self.source_type.value,
            result.provider_label,
            " (cached)" if result.from_cache else "",
            quality,
        )
        return SourceResult(
            source_type=self.source_type,
            items=items,
            quality_score=quality,
            provider_label=result.provider_label,
            from_cache=result.from_cache,
        )
