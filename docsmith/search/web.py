"""General web research for a product.

Runs a fixed set of research queries (official docs, tutorials, videos,
troubleshooting, comparisons) through the validated web search chain and
merges the results.
"""

from __future__ import annotations

import logging
import math
from typing import Any, List, Optional

from docsmith.core.data_models import RetrievedItem, SourceResult, SourceType
from docsmith.core.deduplication import deduplicate_items
from docsmith.core.error_recovery import ProviderUnavailable
from docsmith.core.scoring import aggregate_quality, score_items
from docsmith.integrations.web_search import product_queries
from docsmith.search.base import SourceSearch, gather_isolated

logger = logging.getLogger(__name__)


class ProductWebSearch(SourceSearch):
    """Product research queries through the web search chain."""

    source_type = SourceType.SEARCH
    service = "search"

    def __init__(self, *args: Any, product_url: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.product_url = product_url
        self.max_queries = int(self.app_config.get("research.max_queries", 8))

    def queries_for(self, query: str) -> List[str]:
        if not self.product_url:
            return [query]
        return product_queries(query, self.product_url, self.max_queries)

    async def search(self, query: str, limit: int) -> SourceResult:
        """Run every research query for ``query`` and merge the validated hits.

        Raises:
            ProviderUnavailable: If no web search provider is configured
        """
        if limit <= 0:
            return SourceResult(source_type=self.source_type)
        if self.web is None or not self.web.is_configured:
            raise ProviderUnavailable("No web search providers configured", self.service)

        queries = self.queries_for(query)
        per_query = max(1, math.ceil(limit / 2))
        merged: List[RetrievedItem] = await gather_isolated(
            self.service, queries, [self.web.search(q, per_query) for q in queries]
        )
        items = deduplicate_items(score_items(merged))[:limit]
        quality = aggregate_quality(items)
        self.logger.info(
            "Web research for '%s': %d queries, %d unique results (quality %.2f)",
            query,
            len(queries),
            len(items),
            quality,
        )
        return SourceResult(
            source_type=self.source_type,
            items=items,
            quality_score=quality,
            provider_label="web",
        )
