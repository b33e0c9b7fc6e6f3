"""Tests for the web search provider chain."""

import httpx
import pytest

from docsmith.core.cache import ResultCache
from docsmith.core.data_models import SourceType
from docsmith.core.error_recovery import MalformedResponse, ProviderUnavailable
from docsmith.core.fallback import FallbackExecutor
from docsmith.core.scoring import ContentValidator
from docsmith.integrations.web_search import (
    BraveSearchClient,
    SerpAPIClient,
    SiteCrawler,
    WebSearchClient,
    domain_from_query,
    html_to_text,
    product_queries,
)

HOME_PAGE = """
<html><body>
  <a href="/docs/start">Getting started</a>
  <a href="/pricing">Pricing</a>
  <a href="mailto:team@stripe.com">Contact docs team</a>
  <a href="#api">API</a>
  <a href="https://support.stripe.com/questions">Help center</a>
  <a href="/docs/start">Docs again</a>
</body></html>
"""


def serp_results(*links):
    return {
        "organic_results": [
            {"position": i + 1, "title": f"Result {i + 1}", "link": link, "snippet": "About <b>webhooks</b>"}
            for i, link in enumerate(links)
        ]
    }


def brave_results(*links):
    return {"web": {"results": [{"title": "Brave hit", "url": link, "description": "desc"} for link in links]}}


def web_client(http, config, **kwargs):
    executor = FallbackExecutor(cache=ResultCache(), base_delay=0)
    return WebSearchClient(http, executor, config, validator=ContentValidator(check_links=False), **kwargs)


class TestHelpers:
    """Tests for query helpers."""

    def test_html_to_text(self):
        """Test highlight markup is stripped from snippets."""
        assert html_to_text("Verify <strong>webhook</strong> signatures") == "Verify webhook signatures"
        assert html_to_text("plain") == "plain"
        assert html_to_text(None) == ""

    def test_domain_from_query(self):
        """Test the first domain-looking token is extracted."""
        assert domain_from_query('"Stripe" documentation site:Stripe.com') == "stripe.com"
        assert domain_from_query("https://docs.example.io/start guide") == "docs.example.io"
        assert domain_from_query("how to verify webhooks") is None

    def test_product_queries(self):
        """Test product queries target the product's domain first."""
        queries = product_queries("Stripe", "https://www.stripe.com/", max_queries=3)

        assert len(queries) == 3
        assert queries[0] == '"Stripe" documentation site:stripe.com'
        assert queries[1] == '"Stripe" tutorial getting started -site:stripe.com'
        assert len(product_queries("Stripe", "https://stripe.com")) == 14


class TestSerpAPIClient:
    """Tests for SerpAPIClient."""

    @pytest.mark.asyncio
    async def test_parses_organic_results(self, config, make_http):
        """Test organic results become web items and bad links are skipped."""
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json=serp_results("https://stripe.com/docs", "ftp://old", "https://dev.to/a"))

        http = make_http(handler)
        items = await SerpAPIClient(http, config, api_key="serp-key").search("stripe webhooks", 5)

        assert [item.url for item in items] == ["https://stripe.com/docs", "https://dev.to/a"]
        assert items[0].source_type is SourceType.SEARCH
        assert items[0].snippet == "About webhooks"
        assert items[0].metadata == {"position": 1, "provider": "serpapi"}
        params = requests[0].url.params
        assert params["api_key"] == "serp-key"
        assert params["engine"] == "google"
        assert params["num"] == "5"
        await http.aclose()

    @pytest.mark.asyncio
    async def test_error_payload(self, config, make_http):
        """Test an error document is a malformed response."""
        http = make_http(lambda r: httpx.Response(200, json={"error": "Invalid API key."}))
        with pytest.raises(MalformedResponse, match="Invalid API key"):
            await SerpAPIClient(http, config, api_key="bad").search("q")
        await http.aclose()

    @pytest.mark.asyncio
    async def test_requires_key(self, config, make_http):
        """Test the client refuses to run without a key."""
        http = make_http(lambda r: httpx.Response(200, json={}))
        with pytest.raises(ProviderUnavailable):
            await SerpAPIClient(http, config).search("q")


class TestBraveSearchClient:
    """Tests for BraveSearchClient."""

    @pytest.mark.asyncio
    async def test_parses_results(self, config, make_http):
        """Test the token header is sent and the count is capped."""
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json=brave_results("https://stripe.com/docs/webhooks"))

        http = make_http(handler)
        items = await BraveSearchClient(http, config, api_key="brave-key").search("stripe", 50)

        assert items[0].url == "https://stripe.com/docs/webhooks"
        assert items[0].metadata["provider"] == "brave"
        assert requests[0].headers["x-subscription-token"] == "brave-key"
        assert requests[0].url.params["count"] == "20"
        await http.aclose()

    @pytest.mark.asyncio
    async def test_no_web_section(self, config, make_http):
        """Test a response without web results is simply empty."""
        http = make_http(lambda r: httpx.Response(200, json={"type": "search"}))
        assert await BraveSearchClient(http, config, api_key="k").search("q") == []
        await http.aclose()


class TestSiteCrawler:
    """Tests for SiteCrawler."""

    @pytest.mark.asyncio
    async def test_collects_documentation_links(self, make_http):
        """Test only documentation-like links are kept, made absolute and deduplicated."""
        http = make_http(lambda r: httpx.Response(200, text=HOME_PAGE))

        items = await SiteCrawler(http).crawl("stripe.com")

        assert [item.url for item in items] == [
            "https://stripe.com/docs/start",
            "https://support.stripe.com/questions",
        ]
        assert items[0].title == "Getting started"
        assert items[0].snippet == "Discovered via basic crawl on stripe.com"
        assert items[0].metadata["provider"] == "crawl"
        await http.aclose()

    @pytest.mark.asyncio
    async def test_respects_limit(self, make_http):
        """Test the crawl stops at num_results."""
        http = make_http(lambda r: httpx.Response(200, text=HOME_PAGE))
        assert len(await SiteCrawler(http).crawl("stripe.com", num_results=1)) == 1
        await http.aclose()


class TestWebSearchClient:
    """Tests for WebSearchClient."""

    def test_unconfigured(self, config, make_http):
        """Test no keys means no operations."""
        client = web_client(make_http(lambda r: httpx.Response(500)), config)

        assert client.is_configured is False
        assert client.build_operations("q", 5, include_crawl=True) == []

    @pytest.mark.asyncio
    async def test_search_requires_provider(self, config, make_http):
        """Test searching without providers raises ProviderUnavailable."""
        client = web_client(make_http(lambda r: httpx.Response(500)), config)
        with pytest.raises(ProviderUnavailable):
            await client.search("q")

    def test_crawl_appended_for_domain_queries(self, config, make_http, monkeypatch):
        """Test the crawl only joins the chain when the query names a domain."""
        monkeypatch.setenv("SERPAPI_API_KEY", "serp")
        client = web_client(make_http(lambda r: httpx.Response(500)), config)

        labels = [op.label for op in client.build_operations("docs site:stripe.com", 5, include_crawl=True)]
        assert labels == ["serpapi", "crawl"]
        assert [op.label for op in client.build_operations("webhooks", 5, include_crawl=True)] == ["serpapi"]
        assert [op.label for op in client.build_operations("docs site:stripe.com", 5)] == ["serpapi"]

    @pytest.mark.asyncio
    async def test_falls_back_to_brave(self, config, make_http, monkeypatch):
        """Test a failing SerpAPI hands over to Brave."""
        monkeypatch.setenv("SERPAPI_API_KEY", "serp")
        monkeypatch.setenv("BRAVE_API_KEY", "brave")

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "serpapi.com":
                return httpx.Response(500)
            return httpx.Response(200, json=brave_results("https://github.com/stripe/stripe-node"))

        http = make_http(handler)
        items = await web_client(http, config).lookup("stripe node webhooks", 5)

        assert [item.metadata["provider"] for item in items] == ["brave"]
        await http.aclose()

    @pytest.mark.asyncio
    async def test_exhaustion_degrades_to_empty(self, config, make_http, monkeypatch):
        """Test a fully failed chain returns no items rather than raising."""
        monkeypatch.setenv("SERPAPI_API_KEY", "serp")
        http = make_http(lambda r: httpx.Response(502))

        assert await web_client(http, config).lookup("anything", 5) == []
        await http.aclose()

    def test_order_override(self, config, make_http, monkeypatch):
        """Test SEARCH_PROVIDER_ORDER puts Brave first."""
        monkeypatch.setenv("SERPAPI_API_KEY", "serp")
        monkeypatch.setenv("BRAVE_API_KEY", "brave")
        monkeypatch.setenv("SEARCH_PROVIDER_ORDER", "brave,serpapi")

        client = web_client(make_http(lambda r: httpx.Response(500)), config)

        assert [c.service for c in client.clients] == ["brave", "serpapi"]

    @pytest.mark.asyncio
    async def test_search_validates_results(self, config, make_http, monkeypatch):
        """Test search returns validated, ranked items."""
        monkeypatch.setenv("SERPAPI_API_KEY", "serp")

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={
                    "organic_results": [
                        {"title": "Stripe webhooks", "link": "https://docs.stripe.com/webhooks"},
                        {"title": "Cooking", "link": "https://recipes.example.com/soup"},
                    ]
                },
            )

        http = make_http(handler)
        items = await web_client(http, config).search("stripe webhooks", 5)

        assert [item.url for item in items] == ["https://docs.stripe.com/webhooks"]
        assert items[0].quality_score is not None
        await http.aclose()
