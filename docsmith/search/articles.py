"""Long-form article sources: DEV.to and CodeProject."""

from __future__ import annotations

import logging
import math
import re
from typing import List, Sequence
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from docsmith.core.data_models import ArticleItem, RetrievedItem, SourceType
from docsmith.core.deduplication import merge_item_lists
from docsmith.core.error_recovery import MalformedResponse
from docsmith.core.fallback import Operation
from docsmith.search.base import SourceSearch, gather_isolated, truncate

logger = logging.getLogger(__name__)

MIN_DEVTO_REACTIONS = 5
_TAG_RE = re.compile(r"[^a-z0-9]+")


def devto_tag(text: str) -> str:
    """DEV.to tags are lower-case alphanumerics ("Next.js" -> "nextjs")."""
    return _TAG_RE.sub("", text.lower())


class DevToSearch(SourceSearch):
    """DEV.to community articles."""

    source_type = SourceType.DEVTO
    service = "devto"
    web_fallback_template = "site:dev.to {query}"

    def _build_headers(self):
        return {"Accept": "application/json"}

    def primary_operations(self, query: str, limit: int) -> List[Operation]:
        tag = devto_tag(query)
        if not tag:
            return []
        return [Operation(label="devto", call=lambda: self.search_tag(tag, limit))]

    async def search_tag(self, tag: str, limit: int) -> List[ArticleItem]:
        data = await self.get_json("articles", params={"tag": tag, "per_page": limit})
        if not isinstance(data, list):
            raise MalformedResponse("DEV.to articles response is not a list", self.service)

        items = []
        for article in data:
            if not isinstance(article, dict) or not article.get("url") or not article.get("title"):
                continue
            reactions = int(article.get("public_reactions_count") or article.get("positive_reactions_count") or 0)
            if reactions <= MIN_DEVTO_REACTIONS:
                continue
            tags = article.get("tag_list") or []
            if isinstance(tags, str):
                tags = [part.strip() for part in tags.split(",") if part.strip()]
            items.append(
                ArticleItem(
                    title=article["title"],
                    url=article["url"],
                    source_type=self.source_type,
                    snippet=truncate(article.get("description") or ""),
                    reactions=reactions,
                    comments=int(article.get("comments_count") or 0),
                    reading_time=int(article.get("reading_time_minutes") or 0),
                    tags=list(tags),
                    author=(article.get("user") or {}).get("name", ""),
                    metadata={"published_at": article.get("published_at")},
                )
            )
        return items

    async def search_by_tags(self, tags: Sequence[str], limit: int = 15) -> List[ArticleItem]:
        """Search several tags and merge the results, best-trusted first."""
        per_tag = max(1, math.ceil(limit / max(len(tags), 1)))
        names = [name for name in (devto_tag(tag) for tag in tags) if name]
        found = await gather_isolated(self.service, names, [self.search_tag(name, per_tag) for name in names])
        merged = merge_item_lists(found)
        return merged[:limit]

    def from_web_item(self, item: RetrievedItem) -> RetrievedItem:
        return ArticleItem(
            title=item.title,
            url=item.url,
            source_type=self.source_type,
            snippet=item.snippet,
            metadata={**item.metadata, "via": "web_search"},
        )


class CodeProjectSearch(SourceSearch):
    """CodeProject articles scraped from the site's search page."""

    source_type = SourceType.CODEPROJECT
    service = "codeproject"
    web_fallback_template = "site:codeproject.com {query}"

    def primary_operations(self, query: str, limit: int) -> List[Operation]:
        return [Operation(label="codeproject", call=lambda: self.search_articles(query, limit))]

    async def search_articles(self, query: str, limit: int) -> List[ArticleItem]:
        page = await self.get_text("search.aspx", params={"q": query, "doctypeid": 1})
        return self.parse_search_page(page, limit)

    def parse_search_page(self, page: str, limit: int) -> List[ArticleItem]:
        """Pull article links, summaries and authors out of a search results page."""
        soup = BeautifulSoup(page, "html.parser")
        items: List[ArticleItem] = []
        seen = set()
        for entry in soup.select("div.entry, div.search-result, tr.result"):
            link = entry.select_one("a[href*='/Articles/'], a[href*='/Tips/']")
            if link is None:
                continue
            url = urljoin(self.base_url + "/", link["href"])
            title = link.get_text(" ", strip=True)
            if not title or url in seen:
                continue
            seen.add(url)
            summary = entry.select_one(".summary, .description")
            author = entry.select_one(".author")
            items.append(
                ArticleItem(
                    title=title,
                    url=url,
                    source_type=self.source_type,
                    snippet=truncate(summary.get_text(" ", strip=True) if summary else ""),
                    author=author.get_text(strip=True) if author else "",
                )
            )
            if len(items) >= limit:
                break

        self.logger.debug("Parsed %d CodeProject articles", len(items))
        return items

    def from_web_item(self, item: RetrievedItem) -> RetrievedItem:
        return ArticleItem(
            title=item.title,
            url=item.url,
            source_type=self.source_type,
            snippet=item.snippet,
            metadata={**item.metadata, "via": "web_search"},
        )
