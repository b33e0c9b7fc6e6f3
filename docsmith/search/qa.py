"""Question-and-answer sources: Stack Overflow, Stack Exchange and Quora.

Stack Overflow and the wider Stack Exchange network are queried through the
Stack Exchange API (``/search/advanced``).  Quora has no public API and is
searched through the web search chain only.
"""

from __future__ import annotations

import html
import logging
import math
from typing import Any, Dict, List, Optional, Sequence

from bs4 import BeautifulSoup

from docsmith.core.data_models import QuestionItem, RetrievedItem, SourceType
from docsmith.core.error_recovery import MalformedResponse
from docsmith.core.fallback import Operation
from docsmith.integrations.web_search import html_to_text
from docsmith.search.base import SourceSearch, gather_isolated, truncate

logger = logging.getLogger(__name__)

ANSWER_TEXT_LIMIT = 2000
STACKEXCHANGE_SITES = (
    "softwareengineering",
    "codereview",
    "webmasters",
    "security",
    "dba",
    "serverfault",
)


def question_from_api(entry: Dict[str, Any], source_type: SourceType, site: str) -> Optional[QuestionItem]:
    """Map one ``/search/advanced`` entry to a ``QuestionItem``."""
    link = entry.get("link")
    title = entry.get("title")
    if not isinstance(link, str) or not isinstance(title, str):
        return None
    return QuestionItem(
        title=html.unescape(title),
        url=link,
        source_type=source_type,
        snippet=truncate(html_to_text(entry.get("body") or "")),
        votes=int(entry.get("score") or 0),
        answers=int(entry.get("answer_count") or 0),
        views=int(entry.get("view_count") or 0),
        accepted="accepted_answer_id" in entry,
        tags=list(entry.get("tags") or []),
        site=site,
        metadata={"question_id": entry.get("question_id"), "is_answered": bool(entry.get("is_answered"))},
    )


class StackExchangeAPIMixin:
    """Shared ``/search/advanced`` call for Stack Exchange network sites."""

    async def search_site(self, site: str, query: str, limit: int) -> List[QuestionItem]:
        params: Dict[str, Any] = {
            "site": site,
            "q": query,
            "order": "desc",
            "sort": "relevance",
            "pagesize": limit,
            "filter": "withbody",
        }
        if self.api_key:
            params["key"] = self.api_key

        data = await self.get_json("search/advanced", params=params)
        entries = data.get("items") if isinstance(data, dict) else None
        if not isinstance(entries, list):
            raise MalformedResponse(f"Stack Exchange response for {site} has no items list", self.service)
        if data.get("quota_remaining") is not None and data["quota_remaining"] < 10:
            self.logger.warning("Stack Exchange quota nearly exhausted: %s left", data["quota_remaining"])

        items = []
        for entry in entries:
            if isinstance(entry, dict):
                item = question_from_api(entry, self.source_type, site)
                if item is not None:
                    items.append(item)
        return items


class StackOverflowSearch(StackExchangeAPIMixin, SourceSearch):
    """Stack Overflow questions."""

    source_type = SourceType.STACKOVERFLOW
    service = "stackexchange"
    web_fallback_template = "site:stackoverflow.com {query}"

    def primary_operations(self, query: str, limit: int) -> List[Operation]:
        return [
            Operation(label="stackexchange", call=lambda: self.search_site("stackoverflow", query, limit))
        ]

    def from_web_item(self, item: RetrievedItem) -> RetrievedItem:
        return QuestionItem(
            title=item.title,
            url=item.url,
            source_type=self.source_type,
            snippet=item.snippet,
            site="stackoverflow",
            metadata={**item.metadata, "via": "web_search"},
        )

    async def extract_answers(self, url: str, max_answers: int = 3) -> Dict[str, Any]:
        """Scrape a question page for its accepted and highest-voted answers.

        Args:
            url: Stack Overflow question URL
            max_answers: Maximum number of answers to return

        Returns:
            Dictionary with ``title``, ``tags`` and ``answers`` (each with
            ``text``, ``votes`` and ``accepted``), accepted answer first
        """
        page = await self.http.get_text(url, service=self.service)
        soup = BeautifulSoup(page, "html.parser")

        heading = soup.select_one("#question-header h1")
        tags = [tag.get_text(strip=True) for tag in soup.select(".post-tag")]

        answers = []
        for block in soup.select(".answer"):
            body = block.select_one(".s-prose")
            if body is None:
                continue
            vote_node = block.select_one(".js-vote-count")
            try:
                votes = int(vote_node.get_text(strip=True)) if vote_node else 0
            except ValueError:
                votes = 0
            answers.append(
                {
                    "text": body.get_text("\n", strip=True)[:ANSWER_TEXT_LIMIT],
                    "votes": votes,
                    "accepted": "accepted-answer" in (block.get("class") or []),
                }
            )

        answers.sort(key=lambda answer: (answer["accepted"], answer["votes"]), reverse=True)
        return {
            "url": url,
            "title": heading.get_text(strip=True) if heading else "",
            "tags": list(dict.fromkeys(tags)),
            "answers": answers[:max_answers],
        }


class StackExchangeSearch(StackExchangeAPIMixin, SourceSearch):
    """Questions from the wider Stack Exchange network."""

    source_type = SourceType.STACKEXCHANGE
    service = "stackexchange"
    web_fallback_template = "site:stackexchange.com {query}"

    def __init__(self, *args: Any, sites: Optional[Sequence[str]] = None, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.sites = list(sites or STACKEXCHANGE_SITES[:3])

    def primary_operations(self, query: str, limit: int) -> List[Operation]:
        return [Operation(label="stackexchange", call=lambda: self.search_network(query, limit))]

    async def search_network(self, query: str, limit: int) -> List[QuestionItem]:
        """Search every configured site and merge the results."""
        per_site = max(1, math.ceil(limit / len(self.sites)))
        return await gather_isolated(
            self.service, self.sites, [self.search_site(site, query, per_site) for site in self.sites]
        )

    def from_web_item(self, item: RetrievedItem) -> RetrievedItem:
        site = item.domain.split(".")[0] if item.domain.endswith("stackexchange.com") else "stackexchange"
        return QuestionItem(
            title=item.title,
            url=item.url,
            source_type=self.source_type,
            snippet=item.snippet,
            site=site,
            metadata={**item.metadata, "via": "web_search"},
        )


class QuoraSearch(SourceSearch):
    """Quora questions, found through web search."""

    source_type = SourceType.QUORA
    service = "quora"
    web_fallback_template = "site:quora.com {query}"

    def from_web_item(self, item: RetrievedItem) -> RetrievedItem:
        return QuestionItem(
            title=item.title,
            url=item.url,
            source_type=self.source_type,
            snippet=item.snippet,
            site="quora",
            metadata={**item.metadata, "via": "web_search"},
        )
