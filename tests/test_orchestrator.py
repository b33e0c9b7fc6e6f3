"""Tests for the research orchestrator."""

from typing import List, Optional, Sequence
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from docsmith.core.config import Config
from docsmith.core.data_models import (
    ComplexityClass,
    QuestionItem,
    RetrievedItem,
    SourceLimits,
    SourceResult,
    SourceType,
    VideoItem,
)
from docsmith.core.error_recovery import ProviderHTTPError, ProviderUnavailable
from docsmith.core.orchestrator import TRANSCRIPT_LIMIT, ResearchOrchestrator
from docsmith.integrations.llm import ChatMessage, CompletionResult
from docsmith.search import ProductWebSearch


class FakeSource:
    """Source client returning canned items or raising."""

    def __init__(
        self,
        source_type: SourceType,
        items: Sequence[RetrievedItem] = (),
        error: Optional[Exception] = None,
        transcripts: Optional[dict] = None,
    ) -> None:
        self.source_type = source_type
        self.items = list(items)
        self.error = error
        self.transcripts = transcripts or {}
        self.calls: List[tuple] = []

    async def search(self, query: str, limit: int) -> SourceResult:
        self.calls.append((query, limit))
        if self.error is not None:
            raise self.error
        return SourceResult(
            source_type=self.source_type,
            items=self.items[:limit],
            quality_score=0.8,
            provider_label="fake",
        )

    async def fetch_transcript(self, video_id: str) -> Optional[str]:
        transcript = self.transcripts.get(video_id)
        if isinstance(transcript, Exception):
            raise transcript
        return transcript


def question(n: int) -> QuestionItem:
    return QuestionItem(
        title=f"Stripe question {n}",
        url=f"https://stackoverflow.com/questions/{n}",
        source_type=SourceType.STACKOVERFLOW,
        trust_score=0.9,
    )


@pytest.fixture
def research_config(config: Config) -> Config:
    config.set("research.inter_batch_delay_seconds", 0)
    config.set("scoring.check_links", False)
    config.set("sources.search.enabled", False)
    return config


@pytest.fixture
def build(research_config, make_http, unthrottled):
    def factory(sources, **kwargs) -> ResearchOrchestrator:
        return ResearchOrchestrator(
            research_config,
            http_client=make_http(lambda r: httpx.Response(500)),
            rate_limiter=unthrottled,
            sources=sources,
            **kwargs,
        )

    return factory


class TestResearch:
    """Tests for perform_comprehensive_research."""

    @pytest.mark.asyncio
    async def test_failures_are_isolated(self, build):
        """Test one failing source does not abort the research pass."""
        so = FakeSource(SourceType.STACKOVERFLOW, [question(1), question(2), question(3)])
        reddit = FakeSource(SourceType.REDDIT, error=ProviderHTTPError(503, "reddit"))
        limits = SourceLimits({SourceType.STACKOVERFLOW: 2, SourceType.REDDIT: 1})

        async with build({SourceType.STACKOVERFLOW: so, SourceType.REDDIT: reddit}) as orchestrator:
            report = await orchestrator.perform_comprehensive_research("Stripe", "https://stripe.com", limits)

        assert so.calls == [("Stripe", 2)]
        assert reddit.calls == [("Stripe", 1)]
        assert report.total_sources == 2
        assert [failure.source for failure in report.failures] == ["reddit"]
        assert len(report.items) == 2
        assert report.quality_score == pytest.approx(0.4)

        data = report.to_dict()
        assert len(data["stackoverflow_answers"]) == 2
        assert data["reddit_posts"] == []
        assert data["failed_sources"][0]["source"] == "reddit"
        assert data["product_complexity"] is None

    @pytest.mark.asyncio
    async def test_youtube_skipped_without_api_access(self, build):
        """Test plans without YouTube access never query YouTube."""
        youtube = FakeSource(SourceType.YOUTUBE)
        so = FakeSource(SourceType.STACKOVERFLOW, [question(1)])
        limits = SourceLimits({SourceType.YOUTUBE: 3, SourceType.STACKOVERFLOW: 1})

        async with build({SourceType.YOUTUBE: youtube, SourceType.STACKOVERFLOW: so}) as orchestrator:
            plan = orchestrator.plan("free", 1)
            report = await orchestrator.perform_comprehensive_research(
                "Stripe", "https://stripe.com", limits, tier=plan.enforced, complexity=plan.complexity
            )

        assert youtube.calls == []
        assert SourceType.YOUTUBE not in report.results
        assert report.to_dict()["tier"]["plan"] == "free"
        assert report.to_dict()["product_complexity"] == "small"

    @pytest.mark.asyncio
    async def test_transcripts_attached(self, build):
        """Test transcripts are fetched, truncated and failures tolerated."""
        videos = [
            VideoItem(title="Intro", url="https://www.youtube.com/watch?v=v1", source_type=SourceType.YOUTUBE,
                      video_id="v1", trust_score=0.9),
            VideoItem(title="Deep dive", url="https://www.youtube.com/watch?v=v2", source_type=SourceType.YOUTUBE,
                      video_id="v2", trust_score=0.9),
        ]
        youtube = FakeSource(
            SourceType.YOUTUBE,
            videos,
            transcripts={"v1": "x" * (TRANSCRIPT_LIMIT + 100), "v2": ProviderHTTPError(404, "youtube")},
        )

        async with build({SourceType.YOUTUBE: youtube}) as orchestrator:
            report = await orchestrator.perform_comprehensive_research(
                "Stripe",
                "https://stripe.com",
                SourceLimits({SourceType.YOUTUBE: 2}),
                youtube_transcripts=True,
            )

        by_id = {item.video_id: item for item in report.items_for(SourceType.YOUTUBE)}
        assert len(by_id["v1"].transcript) == TRANSCRIPT_LIMIT
        assert by_id["v2"].transcript is None

    @pytest.mark.asyncio
    async def test_no_enabled_sources(self, build, research_config):
        """Test research fails fast when every source is disabled."""
        for source in SourceType:
            research_config.set(f"sources.{source.value}.enabled", False)

        async with build({SourceType.REDDIT: FakeSource(SourceType.REDDIT)}) as orchestrator:
            with pytest.raises(ProviderUnavailable):
                await orchestrator.perform_comprehensive_research(
                    "Stripe", "https://stripe.com", SourceLimits({SourceType.REDDIT: 1})
                )

    @pytest.mark.asyncio
    async def test_performance_record(self, build):
        """Test each research pass writes one performance record."""
        perf = MagicMock()
        so = FakeSource(SourceType.STACKOVERFLOW, [question(1)])

        async with build({SourceType.STACKOVERFLOW: so}, performance_logger=perf) as orchestrator:
            await orchestrator.perform_comprehensive_research(
                "Stripe", "https://stripe.com", SourceLimits({SourceType.STACKOVERFLOW: 1})
            )

        perf.log_aggregation.assert_called_once()
        args, kwargs = perf.log_aggregation.call_args
        assert args[0] == "research"
        assert args[1].completed == [SourceType.STACKOVERFLOW]
        assert kwargs["metadata"] == {"product": "Stripe", "total_sources": 1}

    def test_web_research_client_per_product(self, build, research_config):
        """Test general web research is built for the product URL."""
        research_config.set("sources.search.enabled", True)
        orchestrator = build({})

        clients = orchestrator._clients_for("https://stripe.com", youtube_api_access=True)

        assert isinstance(clients[SourceType.SEARCH], ProductWebSearch)
        assert clients[SourceType.SEARCH].product_url == "https://stripe.com"


class TestOrchestrator:
    """Tests for planning and completions."""

    def test_default_sources(self, research_config, make_http, unthrottled):
        """Test every non-web source has a default client."""
        orchestrator = ResearchOrchestrator(
            research_config, http_client=make_http(lambda r: httpx.Response(500)), rate_limiter=unthrottled
        )

        assert set(orchestrator.sources) == set(SourceType) - {SourceType.SEARCH}
        assert orchestrator.sources[SourceType.YOUTUBE].quota is orchestrator.quota

    def test_plan(self, build):
        """Test plans are clamped to the subscription ceiling."""
        plan = build({}).plan("free", 60)

        assert plan.complexity is ComplexityClass.LARGE
        assert plan.enforced.limited_by_tier is True
        assert plan.limits[SourceType.STACKOVERFLOW] == 5
        assert plan.desired[SourceType.STACKOVERFLOW] == 20

    @pytest.mark.asyncio
    async def test_generate_completion_uses_config(self, build, research_config):
        """Test completion requests use configured retries and timeout."""
        orchestrator = build({})
        completion = CompletionResult(content="ok", provider_label="groq", model_id="llama")
        orchestrator.llm = MagicMock(generate_completion=AsyncMock(return_value=completion))
        messages = [ChatMessage("user", "hi")]

        result = await orchestrator.generate_completion(messages, json_mode=True)

        assert result is completion
        orchestrator.llm.generate_completion.assert_awaited_once_with(
            messages, json_mode=True, cache_key=None, max_retries=0, timeout=30.0
        )

    @pytest.mark.asyncio
    async def test_cached_completion_key(self, build):
        """Test cached completions are keyed by a hash of the conversation."""
        orchestrator = build({})
        completion = CompletionResult(content="ok", provider_label="groq", model_id="llama")
        orchestrator.llm = MagicMock(generate_completion=AsyncMock(return_value=completion))

        await orchestrator.generate_completion([ChatMessage("user", "hi")], cache=True)
        await orchestrator.generate_completion([ChatMessage("user", "hi")], cache=True)
        await orchestrator.generate_completion([ChatMessage("user", "bye")], cache=True)

        keys = [call.kwargs["cache_key"] for call in orchestrator.llm.generate_completion.await_args_list]
        assert keys[0] == keys[1] != keys[2]
        assert keys[0].startswith("completion:")

    @pytest.mark.asyncio
    async def test_generate_json_delegates(self, build):
        """Test generate_json forwards the instruction and configured settings."""
        orchestrator = build({})
        orchestrator.llm = MagicMock(generate_json=AsyncMock(return_value={"a": 1}))
        messages = [ChatMessage("user", "hi")]

        assert await orchestrator.generate_json(messages, instruction="Use snake_case") == {"a": 1}
        orchestrator.llm.generate_json.assert_awaited_once_with(
            messages, instruction="Use snake_case", cache_key=None, max_retries=0, timeout=30.0
        )

    def test_sources_get_their_own_executor(self, research_config, make_http, unthrottled):
        """Test each source owns a fallback executor and all of them share one cache."""
        orchestrator = ResearchOrchestrator(
            research_config, http_client=make_http(lambda r: httpx.Response(500)), rate_limiter=unthrottled
        )

        executors = [source.executor for source in orchestrator.sources.values()]
        assert len({id(executor) for executor in executors}) == len(executors)
        assert orchestrator.executor not in executors
        assert all(executor.cache is orchestrator.cache for executor in executors)
