"""Fan-out over research sources with failure isolation.

Sources are queried in small concurrent batches with a pause between
batches so that a research pass stays inside every provider's rate limits.
A failing source contributes nothing and is recorded as a ``SourceFailure``;
it never aborts its siblings.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence, Tuple

from docsmith.core.data_models import RetrievedItem, SourceLimits, SourceResult, SourceType
from docsmith.core.deduplication import merge_item_lists
from docsmith.core.error_recovery import SourceFailure
from docsmith.core.scoring import TRUSTED_THRESHOLD

logger = logging.getLogger(__name__)


class SourceClient(Protocol):
    """Anything that can search one research source."""

    async def search(self, query: str, limit: int) -> SourceResult:
        ...


@dataclass
class AggregationResult:
    """Per-source outcomes plus the merged, deduplicated item list."""

    query: str
    results: Dict[SourceType, SourceResult] = field(default_factory=dict)
    items: List[RetrievedItem] = field(default_factory=list)
    completed: List[SourceType] = field(default_factory=list)
    failures: List[SourceFailure] = field(default_factory=list)
    duration_ms: float = 0.0

    @property
    def failed(self) -> List[SourceType]:
        return [SourceType(failure.source) for failure in self.failures]

    @property
    def attempted(self) -> int:
        return len(self.completed) + len(self.failures)

    @property
    def success_rate(self) -> float:
        """Percentage of attempted sources that completed."""
        if not self.attempted:
            return 0.0
        return len(self.completed) / self.attempted * 100

    @property
    def quality_score(self) -> float:
        """Mean per-source quality; failed sources count as zero."""
        if not self.results:
            return 0.0
        return sum(result.quality_score for result in self.results.values()) / len(self.results)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query": self.query,
            "results": {source.value: result.to_dict() for source, result in self.results.items()},
            "items": [item.to_dict() for item in self.items],
            "completed": [source.value for source in self.completed],
            "failed": [failure.to_dict() for failure in self.failures],
            "success_rate": round(self.success_rate, 2),
            "quality_score": round(self.quality_score, 4),
            "duration_ms": round(self.duration_ms, 2),
        }


def truncate_snippets(items: Sequence[RetrievedItem], limit: int) -> List[RetrievedItem]:
    """Cut every snippet to ``limit`` characters."""
    return [
        dataclasses.replace(item, snippet=item.snippet[:limit]) if len(item.snippet) > limit else item
        for item in items
    ]


class SourceAggregator:
    """Queries sources in bounded batches and merges their results."""

    def __init__(
        self,
        max_concurrency: int = 3,
        inter_batch_delay: float = 1.0,
        min_score: float = TRUSTED_THRESHOLD,
    ) -> None:
        """Initialize the aggregator.

        Args:
            max_concurrency: Sources queried concurrently per batch
            inter_batch_delay: Pause between batches in seconds
            min_score: Items scoring below this are dropped from the merged list
        """
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.max_concurrency = max_concurrency
        self.inter_batch_delay = inter_batch_delay
        self.min_score = min_score
        self.logger = logging.getLogger(self.__class__.__name__)

    async def aggregate(
        self,
        clients: Mapping[SourceType, SourceClient],
        query: str,
        limits: SourceLimits,
        total_limit: Optional[int] = None,
        truncation_limit: Optional[int] = None,
    ) -> AggregationResult:
        """Query every source with a positive limit and merge the results.

        Args:
            clients: Source client per source type
            query: Research query sent to every source
            limits: Per-source item counts; zero skips the source
            total_limit: Maximum size of the merged list
            truncation_limit: Snippet length cap (defaults to ``limits.truncation_limit``)

        Returns:
            AggregationResult with per-source outcomes and the merged list
        """
        start = time.monotonic()
        truncation = truncation_limit or limits.truncation_limit
        jobs: List[Tuple[SourceType, SourceClient, int]] = []
        for source in SourceType:
            limit = limits[source]
            if limit <= 0:
                continue
            client = clients.get(source)
            if client is None:
                self.logger.debug("No client for %s, skipping", source.value)
                continue
            jobs.append((source, client, limit))

        aggregation = AggregationResult(query=query)
        for offset in range(0, len(jobs), self.max_concurrency):
            if offset:
                await asyncio.sleep(self.inter_batch_delay)
            batch = jobs[offset : offset + self.max_concurrency]
            outcomes = await asyncio.gather(
                *(self._run_source(source, client, query, limit, truncation) for source, client, limit in batch)
            )
            for (source, _, _), (result, failure) in zip(batch, outcomes):
                aggregation.results[source] = result
                if failure is None:
                    aggregation.completed.append(source)
                else:
                    aggregation.failures.append(failure)

        aggregation.items = self.merge(aggregation.results.values(), total_limit)
        aggregation.duration_ms = (time.monotonic() - start) * 1000
        self.logger.info(
            "Aggregated %d items for '%s' from %d/%d sources (%.1f%% success)",
            len(aggregation.items),
            query,
            len(aggregation.completed),
            aggregation.attempted,
            aggregation.success_rate,
        )
        return aggregation

    async def _run_source(
        self,
        source: SourceType,
        client: SourceClient,
        query: str,
        limit: int,
        truncation: int,
    ) -> Tuple[SourceResult, Optional[SourceFailure]]:
        try:
            result = await client.search(query, limit)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            failure = SourceFailure.from_exception(source.value, query, exc)
            self.logger.warning(
                "Source %s failed (%s): %s", source.value, failure.severity.value, failure.message
            )
            return SourceResult(source_type=source), failure

        result.items = truncate_snippets(result.items[:limit], truncation)
        return result, None

    def merge(
        self,
        results: Iterable[SourceResult],
        total_limit: Optional[int] = None,
    ) -> List[RetrievedItem]:
        """Deduplicate across sources, apply ``min_score`` and truncate.

        When ``min_score`` would remove every item, the best items are kept
        instead of returning nothing.
        """
        pool = merge_item_lists(*(result.items for result in results))
        kept = [item for item in pool if item.rank_score >= self.min_score]
        if pool and not kept:
            self.logger.warning(
                "No items reached score %.2f; keeping the best %d of %d",
                self.min_score,
                min(len(pool), total_limit or len(pool)),
                len(pool),
            )
            kept = pool
        if total_limit is not None:
            kept = kept[:total_limit]
        return kept
