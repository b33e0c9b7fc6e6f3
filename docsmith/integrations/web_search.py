"""Web search provider chain.

Providers are tried in ``providers.search_order`` (default SerpAPI, then
Brave).  For product research queries that name a domain, a basic crawl of
that domain's home page is appended as a last resort.  Results go through
the content validator so callers always get live, relevant, deduplicated
links, or a degraded-but-non-empty ranking.
"""

from __future__ import annotations

import logging
import re
from typing import Any, List, Optional, Sequence
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from docsmith.core.config import SEARCH_PROVIDERS, Config, get_config
from docsmith.core.data_models import RetrievedItem, SourceType, extract_domain
from docsmith.core.error_recovery import AllProvidersExhausted, MalformedResponse, ProviderUnavailable
from docsmith.core.fallback import FallbackExecutor, Operation
from docsmith.core.http_client import AsyncHTTPClient
from docsmith.core.scoring import ContentValidator
from docsmith.integrations.api_clients import BaseAPIClient

logger = logging.getLogger(__name__)

BRAVE_MAX_COUNT = 20
DOC_LINK_RE = re.compile(
    r"doc|help|support|guide|tutorial|api|developer|faq|question|blog|article", re.IGNORECASE
)
QUERY_DOMAIN_RE = re.compile(r"(?:https?://)?([a-z0-9.-]+\.[a-z]{2,})(?:/\S*)?", re.IGNORECASE)


def html_to_text(fragment: str) -> str:
    """Strip markup (e.g. ``<strong>`` highlights) from a snippet."""
    if not fragment or "<" not in fragment:
        return fragment or ""
    return BeautifulSoup(fragment, "html.parser").get_text(" ", strip=True)


def domain_from_query(query: str) -> Optional[str]:
    """First domain-looking token in ``query``, lower-cased."""
    match = QUERY_DOMAIN_RE.search(query)
    return match.group(1).lower() if match else None


PRODUCT_QUERY_TEMPLATES = (
    '"{product}" documentation site:{domain}',
    '"{product}" tutorial getting started -site:{domain}',
    '"{product}" guide how to use',
    '"{product}" tutorial site:youtube.com',
    '"{product}" demo site:youtube.com',
    '"{product}" walkthrough site:youtube.com',
    '"{product}" error troubleshooting site:stackoverflow.com',
    '"{product}" common issues problems',
    '"{product}" not working fix',
    '"{product}" issues site:github.com',
    '"{product}" best practices tips',
    '"{product}" vs alternatives comparison',
    '"{product}" integration guide',
    '"{product}" API examples code',
)


def product_queries(product: str, base_url: str, max_queries: Optional[int] = None) -> List[str]:
    """Research queries for a product, most authoritative first.

    Args:
        product: Product name, quoted in every query
        base_url: Product homepage, used for ``site:`` filters
        max_queries: Keep only the first N queries

    Returns:
        List of web search queries
    """
    domain = extract_domain(base_url) or base_url
    queries = [template.format(product=product, domain=domain) for template in PRODUCT_QUERY_TEMPLATES]
    return queries[:max_queries] if max_queries is not None else queries


def _web_item(title: Any, url: Any, snippet: Any, position: int, provider: str) -> Optional[RetrievedItem]:
    if not isinstance(url, str) or not url.startswith(("http://", "https://")):
        return None
    title_text = title if isinstance(title, str) and title.strip() else url
    return RetrievedItem(
        title=title_text,
        url=url,
        source_type=SourceType.SEARCH,
        snippet=html_to_text(snippet if isinstance(snippet, str) else ""),
        metadata={"position": position, "provider": provider},
    )


class SerpAPIClient(BaseAPIClient):
    """Google results through SerpAPI."""

    service = "serpapi"

    async def search(self, query: str, num_results: int = 10) -> List[RetrievedItem]:
        data = await self.get_json(
            "search",
            params={"api_key": self.api_key, "q": query, "num": num_results, "engine": "google"},
        )
        if not isinstance(data, dict):
            raise MalformedResponse("SerpAPI response is not an object", self.service)
        if data.get("error"):
            raise MalformedResponse(f"SerpAPI error: {data['error']}", self.service)

        organic = data.get("organic_results", [])
        if not isinstance(organic, list):
            raise MalformedResponse("SerpAPI organic_results is not a list", self.service)

        items = []
        for index, entry in enumerate(organic):
            if not isinstance(entry, dict):
                continue
            item = _web_item(
                entry.get("title"),
                entry.get("link"),
                entry.get("snippet"),
                entry.get("position", index + 1),
                self.service,
            )
            if item is not None:
                items.append(item)
        return items[:num_results]


class BraveSearchClient(BaseAPIClient):
    """Brave Search web results."""

    service = "brave"

    def _build_headers(self):
        return {"Accept": "application/json", "X-Subscription-Token": self.api_key or ""}

    async def search(self, query: str, num_results: int = 10) -> List[RetrievedItem]:
        data = await self.get_json(
            "web/search",
            params={"q": query, "count": min(num_results, BRAVE_MAX_COUNT)},
        )
        if not isinstance(data, dict):
            raise MalformedResponse("Brave response is not an object", self.service)

        web = data.get("web") or {}
        results = web.get("results", []) if isinstance(web, dict) else None
        if not isinstance(results, list):
            raise MalformedResponse("Brave web.results is not a list", self.service)

        items = []
        for index, entry in enumerate(results):
            if not isinstance(entry, dict):
                continue
            item = _web_item(
                entry.get("title"), entry.get("url"), entry.get("description"), index + 1, self.service
            )
            if item is not None:
                items.append(item)
        return items[:num_results]


class SiteCrawler:
    """Collects documentation-like links from a domain's home page."""

    def __init__(self, http_client: AsyncHTTPClient) -> None:
        self.http = http_client
        self.logger = logging.getLogger(self.__class__.__name__)

    async def crawl(self, domain: str, num_results: int = 10) -> List[RetrievedItem]:
        origin = f"https://{domain}"
        html = await self.http.get_text(origin, service="default")
        soup = BeautifulSoup(html, "html.parser")

        items: List[RetrievedItem] = []
        seen = set()
        for anchor in soup.find_all("a", href=True):
            if len(items) >= num_results:
                break
            href = anchor["href"].strip()
            text = anchor.get_text(" ", strip=True)
            if not href or href.startswith(("#", "mailto:", "javascript:")):
                continue
            if not DOC_LINK_RE.search(f"{href} {text}"):
                continue
            absolute = urljoin(origin + "/", href)
            if absolute in seen:
                continue
            seen.add(absolute)
            items.append(
                RetrievedItem(
                    title=text or absolute,
                    url=absolute,
                    source_type=SourceType.SEARCH,
                    snippet=f"Discovered via basic crawl on {domain}",
                    metadata={"position": len(items) + 1, "provider": "crawl"},
                )
            )

        self.logger.debug("Crawl of %s found %d documentation links", domain, len(items))
        return items


class WebSearchClient:
    """Ordered web-search chain with validation of the winning results."""

    def __init__(
        self,
        http_client: AsyncHTTPClient,
        executor: Optional[FallbackExecutor] = None,
        config: Optional[Config] = None,
        validator: Optional[ContentValidator] = None,
        order: Optional[Sequence[str]] = None,
    ) -> None:
        self.config = config or get_config()
        self.http = http_client
        self.executor = executor or FallbackExecutor()
        self.validator = validator or ContentValidator(http_client)
        self.crawler = SiteCrawler(http_client)

        classes = {"serpapi": SerpAPIClient, "brave": BraveSearchClient}
        names = order or self.config.get_list("providers.search_order", "SEARCH_PROVIDER_ORDER")
        self.clients: List[BaseAPIClient] = [
            classes[name](http_client, self.config) for name in names if name in SEARCH_PROVIDERS
        ]
        self.max_retries = int(self.config.get("retry.max_retries", 3))
        self.timeout = float(self.config.get("retry.timeout_seconds", 10))
        self.logger = logging.getLogger(self.__class__.__name__)

    @property
    def is_configured(self) -> bool:
        return any(client.is_configured for client in self.clients)

    def build_operations(
        self, query: str, num_results: int, include_crawl: bool = False
    ) -> List[Operation]:
        """One operation per configured provider, plus an optional crawl."""
        operations: List[Operation] = [
            Operation(
                label=client.service,
                call=lambda client=client: client.search(query, num_results),
            )
            for client in self.clients
            if client.is_configured
        ]
        if include_crawl and operations:
            domain = domain_from_query(query)
            if domain:
                operations.append(
                    Operation(label="crawl", call=lambda: self.crawler.crawl(domain, num_results))
                )
        return operations

    async def lookup(self, query: str, num_results: int = 10, include_crawl: bool = False) -> List[RetrievedItem]:
        """Raw chain results without validation.

        Degrades to an empty list when every provider fails.

        Raises:
            ProviderUnavailable: If no web-search provider is configured
        """
        operations = self.build_operations(query, num_results, include_crawl)
        try:
            result = await self.executor.execute(
                operations,
                max_retries=self.max_retries,
                timeout=self.timeout,
                cache_results=True,
                cache_key=f"search:{query}:{num_results}",
            )
        except AllProvidersExhausted as exc:
            self.logger.error("Web search failed for '%s': %s", query, exc)
            return []
        if result.from_cache:
            self.logger.info("Serving cached web results for '%s'", query)
        return list(result.data)

    async def search(self, query: str, num_results: int = 10) -> List[RetrievedItem]:
        """Search the web and validate the results.

        Raises:
            ProviderUnavailable: If no web-search provider is configured
        """
        if not self.is_configured:
            raise ProviderUnavailable(
                "No web search providers configured. Set SERPAPI_API_KEY or BRAVE_API_KEY."
            )
        items = await self.lookup(query, num_results, include_crawl=True)
        outcome = await self.validator.validate(query, items, num_results)
        if outcome.degraded:
            self.logger.warning("Returning %d unvalidated results for '%s'", len(outcome.items), query)
        return outcome.items
