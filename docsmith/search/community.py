"""Community discussion sources: Reddit, developer forums and GitHub issues."""

from __future__ import annotations

import logging
import math
from typing import Any, Dict, List, Optional, Sequence

from docsmith.core.data_models import PostItem, RetrievedItem, SourceType
from docsmith.core.error_recovery import MalformedResponse
from docsmith.core.fallback import Operation
from docsmith.search.base import SourceSearch, gather_isolated, truncate

logger = logging.getLogger(__name__)

SUBREDDITS = ("webdev", "learnprogramming", "programming", "javascript", "reactjs")
MIN_REDDIT_UPVOTES = 5

FORUM_SITES = (
    "community.stripe.com",
    "vercel.com/community",
    "supabase.com/community",
    "discord.com/developers",
    "github.community",
)

OFFICIAL_ASSOCIATIONS = frozenset({"OWNER", "MEMBER", "COLLABORATOR"})


class RedditSearch(SourceSearch):
    """Reddit threads from programming subreddits."""

    source_type = SourceType.REDDIT
    service = "reddit"
    web_fallback_template = "site:reddit.com {query}"

    def __init__(self, *args: Any, subreddits: Optional[Sequence[str]] = None, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.subreddits = list(subreddits or SUBREDDITS)
        self.user_agent = str(self.app_config.get("research.user_agent", "docsmith/0.1"))

    def _build_headers(self) -> Dict[str, str]:
        return {"User-Agent": self.user_agent}

    def primary_operations(self, query: str, limit: int) -> List[Operation]:
        return [Operation(label="reddit", call=lambda: self.search_subreddits(query, limit))]

    async def search_subreddits(self, query: str, limit: int) -> List[PostItem]:
        """Search every subreddit and keep posts with enough upvotes."""
        per_subreddit = max(1, math.ceil(limit / len(self.subreddits)))
        return await gather_isolated(
            self.service,
            [f"r/{name}" for name in self.subreddits],
            [self.search_subreddit(name, query, per_subreddit) for name in self.subreddits],
        )

    async def search_subreddit(self, subreddit: str, query: str, limit: int) -> List[PostItem]:
        data = await self.get_json(
            f"r/{subreddit}/search.json",
            params={"q": query, "sort": "relevance", "limit": limit, "t": "year", "restrict_sr": 1},
        )
        try:
            children = data["data"]["children"]
        except (KeyError, TypeError) as exc:
            raise MalformedResponse(f"Reddit response for r/{subreddit} has no listing", self.service) from exc

        items = []
        for child in children:
            post = child.get("data") if isinstance(child, dict) else None
            if not isinstance(post, dict) or not post.get("permalink") or not post.get("title"):
                continue
            upvotes = int(post.get("ups") or 0)
            if upvotes < MIN_REDDIT_UPVOTES:
                continue
            items.append(
                PostItem(
                    title=post["title"],
                    url=f"https://reddit.com{post['permalink']}",
                    source_type=self.source_type,
                    snippet=truncate(post.get("selftext") or ""),
                    upvotes=upvotes,
                    comments=int(post.get("num_comments") or 0),
                    community=post.get("subreddit") or subreddit,
                    author=post.get("author") or "",
                    metadata={"gilded": int(post.get("gilded") or 0)},
                )
            )
        return items

    def from_web_item(self, item: RetrievedItem) -> RetrievedItem:
        parts = item.url.split("/r/", 1)
        community = parts[1].split("/", 1)[0] if len(parts) == 2 else ""
        return PostItem(
            title=item.title,
            url=item.url,
            source_type=self.source_type,
            snippet=item.snippet,
            community=community,
            metadata={**item.metadata, "via": "web_search"},
        )


class ForumsSearch(SourceSearch):
    """Official developer community forums, found through web search."""

    source_type = SourceType.FORUMS
    service = "forums"

    def __init__(self, *args: Any, sites: Optional[Sequence[str]] = None, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.sites = list(sites or FORUM_SITES[:3])

    def fallback_queries(self, query: str) -> List[str]:
        return [f"site:{site} {query}" for site in self.sites]

    def from_web_item(self, item: RetrievedItem) -> RetrievedItem:
        community = next((site for site in self.sites if site.split("/")[0] in item.domain), item.domain)
        return PostItem(
            title=item.title,
            url=item.url,
            source_type=self.source_type,
            snippet=item.snippet,
            community=community,
            is_official=True,
            metadata={**item.metadata, "via": "web_search"},
        )


class GitHubIssueSearch(SourceSearch):
    """GitHub issues discussing the product."""

    source_type = SourceType.GITHUB
    service = "github"
    web_fallback_template = "site:github.com {query} issues"

    def _build_headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/vnd.github+json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def primary_operations(self, query: str, limit: int) -> List[Operation]:
        return [Operation(label="github", call=lambda: self.search_issues(query, limit))]

    async def search_issues(self, query: str, limit: int) -> List[PostItem]:
        data = await self.get_json(
            "search/issues",
            params={"q": f"{query} is:issue", "per_page": min(limit, 100), "sort": "reactions"},
        )
        entries = data.get("items") if isinstance(data, dict) else None
        if not isinstance(entries, list):
            raise MalformedResponse("GitHub issue search response has no items list", self.service)

        items = []
        for entry in entries:
            if not isinstance(entry, dict) or not entry.get("html_url") or not entry.get("title"):
                continue
            repository = (entry.get("repository_url") or "").split("/repos/")[-1]
            items.append(
                PostItem(
                    title=entry["title"],
                    url=entry["html_url"],
                    source_type=self.source_type,
                    snippet=truncate(entry.get("body") or ""),
                    upvotes=int((entry.get("reactions") or {}).get("total_count") or 0),
                    comments=int(entry.get("comments") or 0),
                    community=repository,
                    author=(entry.get("user") or {}).get("login", ""),
                    is_official=entry.get("author_association") in OFFICIAL_ASSOCIATIONS,
                    metadata={
                        "state": entry.get("state"),
                        "labels": [label.get("name") for label in entry.get("labels") or [] if isinstance(label, dict)],
                    },
                )
            )
        return items

    def from_web_item(self, item: RetrievedItem) -> RetrievedItem:
        return PostItem(
            title=item.title,
            url=item.url,
            source_type=self.source_type,
            snippet=item.snippet,
            metadata={**item.metadata, "via": "web_search"},
        )
