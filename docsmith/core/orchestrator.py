"""Central orchestrator for docsmith.

``ResearchOrchestrator`` wires one shared HTTP client, TTL cache, quota
tracker and rate limiter into the LLM chain, the web search chain and every
research source client.  It exposes the high-level API used by the CLI:
plan the depth of a research pass, run it, and generate completions.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence

import httpx

from docsmith.core.aggregator import SourceAggregator
from docsmith.core.cache import ResultCache
from docsmith.core.config import Config, get_config
from docsmith.core.data_models import (
    ComplexityClass,
    RetrievedItem,
    SourceLimits,
    SourceResult,
    SourceType,
    VideoItem,
)
from docsmith.core.error_recovery import ProviderError, ProviderUnavailable, SourceFailure
from docsmith.core.fallback import FallbackExecutor
from docsmith.core.http_client import AsyncHTTPClient
from docsmith.core.logging_setup import PerformanceLogger, log_performance
from docsmith.core.quota import QuotaTracker
from docsmith.core.rate_limiter import RateLimiter
from docsmith.core.scoring import ContentValidator
from docsmith.core.tiers import EnforcedLimits, ResearchPlan, TierResolver
from docsmith.integrations.llm import ChatMessage, CompletionResult, LLMProvider
from docsmith.integrations.web_search import WebSearchClient
from docsmith.search import (
    CodeProjectSearch,
    DevToSearch,
    ForumsSearch,
    GitHubIssueSearch,
    ProductWebSearch,
    QuoraSearch,
    RedditSearch,
    SourceSearch,
    StackExchangeSearch,
    StackOverflowSearch,
    YouTubeSearch,
)

logger = logging.getLogger(__name__)

TRANSCRIPT_LIMIT = 5000

# Field names of the per-source arrays in a serialised report
REPORT_FIELDS: Dict[SourceType, str] = {
    SourceType.SEARCH: "search_results",
    SourceType.STACKOVERFLOW: "stackoverflow_answers",
    SourceType.GITHUB: "github_issues",
    SourceType.YOUTUBE: "youtube_videos",
    SourceType.REDDIT: "reddit_posts",
    SourceType.DEVTO: "devto_articles",
    SourceType.CODEPROJECT: "codeproject_articles",
    SourceType.STACKEXCHANGE: "stackexchange_questions",
    SourceType.QUORA: "quora_answers",
    SourceType.FORUMS: "forum_posts",
}


@dataclass
class ResearchReport:
    """Outcome of one comprehensive research pass."""

    product_name: str
    base_url: str
    results: Dict[SourceType, SourceResult] = field(default_factory=dict)
    items: List[RetrievedItem] = field(default_factory=list)
    quality_score: float = 0.0
    complexity: Optional[ComplexityClass] = None
    failures: List[SourceFailure] = field(default_factory=list)
    tier: Optional[EnforcedLimits] = None
    generated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def items_for(self, source: SourceType) -> List[RetrievedItem]:
        result = self.results.get(source)
        return list(result.items) if result else []

    @property
    def total_sources(self) -> int:
        return sum(len(result.items) for result in self.results.values())

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            name: [item.to_dict() for item in self.items_for(source)] for source, name in REPORT_FIELDS.items()
        }
        data.update(
            {
                "product_name": self.product_name,
                "base_url": self.base_url,
                "quality_score": round(self.quality_score, 4),
                "total_sources": self.total_sources,
                "product_complexity": self.complexity.value if self.complexity else None,
                "merged_results": [item.to_dict() for item in self.items],
                "failed_sources": [failure.to_dict() for failure in self.failures],
                "tier": self.tier.to_dict() if self.tier else None,
                "generated_at": self.generated_at.isoformat(),
            }
        )
        return data


class ResearchOrchestrator:
    """Coordinates research across every source and the LLM chain."""

    def __init__(
        self,
        config: Optional[Config] = None,
        *,
        http_client: Optional[AsyncHTTPClient] = None,
        cache: Optional[ResultCache] = None,
        quota: Optional[QuotaTracker] = None,
        rate_limiter: Optional[RateLimiter] = None,
        sources: Optional[Mapping[SourceType, Any]] = None,
        performance_logger: Optional[PerformanceLogger] = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            config: Application configuration (defaults to the global config)
            http_client: Shared HTTP transport
            cache: Shared TTL cache for every provider chain
            quota: YouTube daily quota tracker
            rate_limiter: Per-service rate limiter
            sources: Source clients overriding the defaults
            performance_logger: Receives one timing record per research pass
        """
        self.config = config or get_config()
        self.logger = logging.getLogger(self.__class__.__name__)
        self.performance_logger = performance_logger

        self.rate_limiter = rate_limiter or RateLimiter.from_config(self.config)
        self.http = http_client or AsyncHTTPClient(
            timeout=float(self.config.get("retry.timeout_seconds", 10)),
            user_agent=self.config.get("research.user_agent"),
            rate_limiter=self.rate_limiter,
        )
        self.cache = cache or ResultCache(
            ttl=float(self.config.get("cache.ttl_seconds", 1800)),
            enabled=bool(self.config.get("cache.enabled", True)),
        )
        self.quota = quota or QuotaTracker(
            daily_limit=int(self.config.get("quota.youtube_daily_units", 10000)), service="youtube"
        )
        self.executor = self._new_executor()

        self.validator = ContentValidator(
            self.http,
            threshold=float(self.config.get("scoring.trusted_threshold", 0.6)),
            check_links=bool(self.config.get("scoring.check_links", True)),
            cross_verify_top_k=int(self.config.get("scoring.cross_verify_top_k", 10)),
        )
        self.web = WebSearchClient(self.http, self.executor, self.config, self.validator)
        self.llm = LLMProvider(self.http, self.executor, self.config)
        self.tiers = TierResolver.from_config(self.config)
        self.aggregator = SourceAggregator(
            max_concurrency=int(self.config.get("research.max_concurrency", 3)),
            inter_batch_delay=float(self.config.get("research.inter_batch_delay_seconds", 1.0)),
            min_score=float(self.config.get("research.min_score", 0.6)),
        )
        self.sources: Dict[SourceType, Any] = dict(sources) if sources is not None else self.build_sources()

    def _new_executor(self) -> FallbackExecutor:
        """Fallback executor with its own stats, sharing the result cache."""
        return FallbackExecutor(
            cache=self.cache, base_delay=float(self.config.get("retry.base_delay_seconds", 1.0))
        )

    def build_sources(self) -> Dict[SourceType, SourceSearch]:
        """Default client for every source except general web research."""
        common = {"web": self.web, "config": self.config}
        return {
            SourceType.STACKOVERFLOW: StackOverflowSearch(self.http, executor=self._new_executor(), **common),
            SourceType.STACKEXCHANGE: StackExchangeSearch(self.http, executor=self._new_executor(), **common),
            SourceType.QUORA: QuoraSearch(self.http, executor=self._new_executor(), **common),
            SourceType.GITHUB: GitHubIssueSearch(self.http, executor=self._new_executor(), **common),
            SourceType.YOUTUBE: YouTubeSearch(self.http, quota=self.quota, executor=self._new_executor(), **common),
            SourceType.REDDIT: RedditSearch(self.http, executor=self._new_executor(), **common),
            SourceType.FORUMS: ForumsSearch(self.http, executor=self._new_executor(), **common),
            SourceType.DEVTO: DevToSearch(self.http, executor=self._new_executor(), **common),
            SourceType.CODEPROJECT: CodeProjectSearch(self.http, executor=self._new_executor(), **common),
        }

    async def __aenter__(self) -> "ResearchOrchestrator":
        self.cache.start_sweeper(float(self.config.get("cache.sweep_interval_seconds", 600)))
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.cache.stop_sweeper()
        await self.http.aclose()

    def plan(self, plan: Optional[str], page_count: int, popularity: Optional[int] = None) -> ResearchPlan:
        """Resolve research depth for a subscription plan and product size."""
        return self.tiers.resolve(plan, page_count, popularity)

    def _clients_for(
        self, base_url: str, youtube_api_access: bool
    ) -> Dict[SourceType, Any]:
        clients: Dict[SourceType, Any] = {}
        for source in SourceType:
            if not self.config.is_source_enabled(source.value):
                continue
            if source is SourceType.YOUTUBE and not youtube_api_access:
                self.logger.info("Skipping YouTube: plan has no API access")
                continue
            client = self.sources.get(source)
            if client is None and source is SourceType.SEARCH:
                client = ProductWebSearch(
                    self.http, executor=self._new_executor(), web=self.web, config=self.config, product_url=base_url
                )
            if client is not None:
                clients[source] = client
        return clients

    async def perform_comprehensive_research(
        self,
        product_name: str,
        base_url: str,
        limits: SourceLimits,
        *,
        complexity: Optional[ComplexityClass] = None,
        youtube_api_access: Optional[bool] = None,
        youtube_transcripts: Optional[bool] = None,
        total_limit: Optional[int] = None,
        tier: Optional[EnforcedLimits] = None,
    ) -> ResearchReport:
        """Research a product across every enabled source.

        Args:
            product_name: Product to research
            base_url: Product homepage, used to target official documentation
            limits: Per-source item counts
            complexity: Complexity class recorded in the report
            youtube_api_access: Query YouTube (defaults to the tier flag, else True)
            youtube_transcripts: Fetch video transcripts (defaults to the tier flag, else False)
            total_limit: Maximum size of the merged result list
            tier: Enforced plan limits recorded in the report

        Returns:
            ResearchReport with per-source results and the merged list

        Raises:
            ProviderUnavailable: If no research source is enabled
        """
        if youtube_api_access is None:
            youtube_api_access = tier.youtube_api_access if tier else True
        if youtube_transcripts is None:
            youtube_transcripts = tier.youtube_transcripts if tier else False

        clients = self._clients_for(base_url, youtube_api_access)
        if not clients:
            raise ProviderUnavailable("No research sources are enabled")

        self.logger.info("Researching %s (%s) across %d sources", product_name, base_url, len(clients))
        with log_performance(f"research:{product_name}", self.logger) as fields:
            aggregation = await self.aggregator.aggregate(clients, product_name, limits, total_limit)
            fields["sources"] = aggregation.attempted
            fields["failed"] = len(aggregation.failures)

        if youtube_transcripts and SourceType.YOUTUBE in aggregation.results:
            await self._attach_transcripts(aggregation.results[SourceType.YOUTUBE], clients[SourceType.YOUTUBE])

        report = ResearchReport(
            product_name=product_name,
            base_url=base_url,
            results=aggregation.results,
            items=aggregation.items,
            quality_score=aggregation.quality_score,
            complexity=complexity,
            failures=aggregation.failures,
            tier=tier,
        )
        if self.performance_logger is not None:
            self.performance_logger.log_aggregation(
                "research",
                aggregation,
                metadata={"product": product_name, "total_sources": report.total_sources},
            )
        self.logger.info(
            "Research for %s complete: %d items, quality %.2f, %d failed sources",
            product_name,
            report.total_sources,
            report.quality_score,
            len(report.failures),
        )
        return report

    async def _attach_transcripts(self, result: SourceResult, client: Any) -> None:
        if not hasattr(client, "fetch_transcript"):
            return
        enriched: List[RetrievedItem] = []
        for item in result.items:
            if isinstance(item, VideoItem) and item.video_id:
                try:
                    transcript = await client.fetch_transcript(item.video_id)
                except (ProviderError, httpx.HTTPError) as exc:
                    self.logger.warning("Transcript unavailable for %s: %s", item.video_id, exc)
                    transcript = None
                if transcript:
                    item = dataclasses.replace(item, transcript=transcript[:TRANSCRIPT_LIMIT])
            enriched.append(item)
        result.items = enriched

    async def generate_completion(
        self,
        messages: Sequence[ChatMessage],
        *,
        json_mode: bool = False,
        max_retries: Optional[int] = None,
        timeout: Optional[float] = None,
        cache: bool = False,
    ) -> CompletionResult:
        """Run the LLM completion chain with configured retry settings.

        With ``cache`` set, a completion for the same conversation is reused
        when every provider fails.
        """
        return await self.llm.generate_completion(
            messages,
            json_mode=json_mode,
            cache_key=self._completion_key("completion", messages, json_mode) if cache else None,
            **self._llm_settings(max_retries, timeout),
        )

    async def generate_json(
        self,
        messages: Sequence[ChatMessage],
        *,
        instruction: str = "",
        max_retries: Optional[int] = None,
        timeout: Optional[float] = None,
        cache: bool = False,
    ) -> Any:
        """Run the chain in JSON mode and return the decoded, repaired document."""
        return await self.llm.generate_json(
            messages,
            instruction=instruction,
            cache_key=self._completion_key("json", messages, True) if cache else None,
            **self._llm_settings(max_retries, timeout),
        )

    def _llm_settings(self, max_retries: Optional[int], timeout: Optional[float]) -> Dict[str, Any]:
        return {
            "max_retries": max_retries if max_retries is not None else int(self.config.get("retry.max_retries", 3)),
            "timeout": timeout if timeout is not None else float(self.config.get("retry.llm_timeout_seconds", 30)),
        }

    @staticmethod
    def _completion_key(prefix: str, messages: Sequence[ChatMessage], json_mode: bool) -> str:
        return ResultCache.generate_key(
            prefix, *(f"{message.role}:{message.content}" for message in messages), json_mode=json_mode
        )
